from __future__ import annotations

import sys
import threading
from typing import Optional

from . import config as config_mod
from .config import build_effective_config, parse_args, save_config_file, validate_config
from .dispatcher import run
from .errors import SetupError
from .logs import setup_logger


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_effective_config(args)
    except SetupError as e:
        logger = setup_logger()
        logger.error("Config error: %s", e)
        return 2

    logger = setup_logger(cfg.log_dir.expanduser().resolve() if cfg.log_dir else None)

    try:
        cfg = validate_config(cfg)
        logger.info("Source     : %s", cfg.source_root)
        logger.info("Destination: %s", cfg.dest_root)
        if cfg.include:
            logger.info("Include    : %s", ", ".join(cfg.include))
    except SetupError as e:
        logger.error("Config error: %s", e)
        return 2

    if not args.no_save:
        try:
            path = save_config_file(cfg)
            logger.info("Saved config: %s", path)
        except OSError as e:
            logger.error("Could not save config to %s: %s", config_mod.CONFIG_PATH, e)

    stop_event = threading.Event()
    try:
        run(cfg, stop_event=stop_event, logger=logger)
    except SetupError as e:
        logger.error("Setup error: %s", e)
        return 2
    except KeyboardInterrupt:
        logger.info("Stopping...")
        stop_event.set()
    logger.info("Stopped.")
    return 0
