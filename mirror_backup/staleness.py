from __future__ import annotations

import os
from pathlib import Path


def needs_copy(src_stat: os.stat_result, dst: Path) -> bool:
    """Return True when ``dst`` is missing or older than the source.

    Any stat failure other than "not found" answers False so that an
    ambiguous error never turns into an overwrite.
    """
    try:
        dst_stat = dst.stat()
    except FileNotFoundError:
        return True
    except OSError:
        return False
    return src_stat.st_mtime_ns > dst_stat.st_mtime_ns
