"""
Simulated Souls — Logging

One named logger for the whole app. Modules call log() instead of print();
the entry points call setup_logging() once to attach file + console output.
"""
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

LOGGER_NAME = "simulated_souls"


def setup_logging(log_dir=None):
    """Attach a dated log file and a console stream to the app logger.

    Args:
        log_dir: Folder for simulated_souls_YYYY-MM-DD.log (defaults to
            $LOG_DIR, then ./logs). Created if missing.

    Returns:
        The configured logger. A logger that already has handlers is
        returned untouched.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)

    log_dir = Path(log_dir or os.environ.get("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    today = datetime.now().strftime("%Y-%m-%d")
    log_path = log_dir / f"simulated_souls_{today}.log"

    fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(message)s",
                                      datefmt="%H:%M:%S"))

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info(f"[Log] Writing to {log_path}")
    return logger


def log(msg, level="info"):
    """Log a message on the app logger at the given level name."""
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level, logger.info)(msg)
