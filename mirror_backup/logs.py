from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

from colorama import init as colorama_init

LOGGER_NAME = "mirror_backup"


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "MKDIR": Ansi.LIGHT_BROWN,
    "WATCH": Ansi.WHITE,
    "SYNC": Ansi.WHITE,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except (AttributeError, ValueError):
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action:
            action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        path_text = getattr(record, "path_text", None)
        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if getattr(record, "is_dir", False) else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def _today_log_name(prefix: str = "mirror") -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


CONSOLE_HANDLER = "mirror_backup.console"
FILE_HANDLER = "mirror_backup.file"


def _own_handler(logger: logging.Logger, name: str) -> Optional[logging.Handler]:
    for h in logger.handlers:
        if h.get_name() == name:
            return h
    return None


def setup_logger(log_dir: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Attach the console handler and, when log_dir is given, a plain file handler.

    Only handlers installed here count; one already present is not added again.
    """
    logger = get_logger()
    logger.setLevel(level)
    logger.propagate = False

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    if _own_handler(logger, CONSOLE_HANDLER) is None:
        colorama_init()
        ch = logging.StreamHandler(sys.stdout)
        ch.set_name(CONSOLE_HANDLER)
        ch.setLevel(level)
        ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))
        logger.addHandler(ch)

    if log_dir is not None and _own_handler(logger, FILE_HANDLER) is None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.set_name(FILE_HANDLER)
        fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        fh.setLevel(level)
        logger.addHandler(fh)
        logger.info("Logging to: %s", log_path)

    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else path.is_dir()
    logger.log(level, f"{action} | {message}", extra=extra)
