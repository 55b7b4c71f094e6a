# common/logging.py
from __future__ import annotations
import logging, os
from logging.handlers import RotatingFileHandler
from typing import List

LOG_FILE = "cam_poster.log"

_handlers: List[logging.Handler] = []

def _level(name: str) -> int:
    lvl = logging.getLevelName(str(name).upper())
    return lvl if isinstance(lvl, int) else logging.INFO

def _run_handlers() -> List[logging.Handler]:
    """Console plus one rotating $LOG_DIR/cam_poster.log (5MB x 5), shared by every stage."""
    if not _handlers:
        log_dir = os.getenv("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        fmt = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        fh = RotatingFileHandler(os.path.join(log_dir, LOG_FILE), maxBytes=5_000_000, backupCount=5, encoding="utf-8")
        ch = logging.StreamHandler()
        for h in (fh, ch):
            h.setFormatter(fmt)
            _handlers.append(h)
    return _handlers

def get_logger(name: str) -> logging.Logger:
    """Stage logger at $LOG_LEVEL; calling twice returns the same configured logger."""
    logger = logging.getLogger(name)
    if logger.handlers:  # already configured
        return logger
    for h in _run_handlers():
        logger.addHandler(h)
    logger.setLevel(_level(os.getenv("LOG_LEVEL", "INFO")))
    logger.propagate = False
    return logger

def set_level(level: str, *names: str) -> None:
    """Re-level stage loggers once the config file has been read."""
    lvl = _level(level)
    for name in names:
        logging.getLogger(name).setLevel(lvl)
