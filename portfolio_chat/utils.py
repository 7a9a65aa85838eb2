"""Logging helpers shared by the API entry points."""

from __future__ import annotations

import logging
import os
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FILENAME = "portfolio_chat.log"


def setup_logging(log_dir: str, level: int = logging.INFO) -> Path:
    """Send package logs to ``log_dir/portfolio_chat.log`` and the console.

    Safe to call more than once: handlers pointing at the same file are not
    added twice. Returns the path of the log file.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILENAME

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    existing = {
        getattr(handler, "baseFilename", None)
        for handler in root.handlers
        if isinstance(handler, logging.FileHandler)
    }
    if os.path.abspath(log_path) not in existing:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    logging.getLogger(__name__).debug("Logging to %s", log_path)
    return log_path
