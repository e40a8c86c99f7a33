import os
import sys

from loguru import logger

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function} | {message}"


def setup_logging(log_path: str | None = None, level: str | None = None) -> int:
    """Route habitcache logs to stdout and a rotating file; returns the file sink id."""
    from habitcache.config import settings

    path = log_path or settings.log_path
    level = (level or settings.log_level).upper()

    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=level)
    return logger.add(path, rotation="10 MB", retention=5, level=level, format=_FILE_FORMAT, encoding="utf-8")
