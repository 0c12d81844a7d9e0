"""Logger setup for command-line use."""

from __future__ import annotations

import logging
import os
from datetime import datetime


def setup_logger(log_dir: str, level: str = "WARNING") -> logging.Logger:
    """
    Configure the ``doc_sync`` logger.

    A timestamped file under *log_dir* receives everything (DEBUG); stderr
    receives records at *level* and above.  Calling this twice does not
    stack handlers.
    """
    logger = logging.getLogger("doc_sync")
    logger.setLevel(logging.DEBUG)
    if getattr(logger, "_doc_sync_configured", False):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"doc_sync_{timestamp}.log")

    # File handler captures everything
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(getattr(logging, str(level).upper(), logging.WARNING))
    sh.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(sh)

    logger._doc_sync_configured = True  # type: ignore[attr-defined]
    return logger
