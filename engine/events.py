"""Structured logging helpers shared by the pipeline."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

from engine.paths import ensure_dir

LOG_FILE_NAME = "ingestr.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def utc_now():
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logging.log(level, json.dumps(payload, sort_keys=True, default=str))
    except Exception as exc:
        logging.log(level, f"log_event_serialization_failed: {exc} message={message}")


def setup_logging(log_dir, level=logging.INFO):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.abspath(os.path.join(log_dir, LOG_FILE_NAME))
    root.setLevel(level)
    has_file = False
    has_console = False
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == log_path:
                has_file = True
        elif isinstance(handler, logging.StreamHandler):
            has_console = True
    formatter = logging.Formatter(LOG_FORMAT)
    if not has_file:
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        root.addHandler(file_handler)
    if not has_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        console.setLevel(level)
        root.addHandler(console)
    return log_path
