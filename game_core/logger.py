# game_core/logger.py
import json
import logging
import logging.handlers
import threading
from datetime import datetime
from pathlib import Path

from game_core.settings import get_settings

LOG_MAX_MB = 5
LOG_BACKUPS = 3

_write_lock = threading.Lock()


def _log_dir() -> Path:
    path = Path(get_settings().log_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _log_path():
    date = datetime.now().strftime("%Y-%m-%d")
    return _log_dir() / f"{date}.jsonl"


def setup_logger(name: str = "sketchmatch") -> logging.Logger:
    """Configure a rotating file logger plus a console handler for warnings."""
    logger = logging.getLogger(name)
    logger.setLevel(get_settings().log_level.upper())
    logger.propagate = False

    if not logger.handlers:
        formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(module)s %(message)s")

        handler = logging.handlers.RotatingFileHandler(
            _log_dir() / "sketchmatch.log",
            maxBytes=LOG_MAX_MB * 1024 * 1024,
            backupCount=LOG_BACKUPS,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        console = logging.StreamHandler()
        console.setLevel(logging.WARNING)
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def log_event(event_type, payload):
    """Append an event to today's JSON-lines log."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "type": event_type,
        "payload": payload,
    }
    line = json.dumps(entry, default=str)
    with _write_lock:
        with open(_log_path(), "a", encoding="utf-8") as f:
            f.write(line + "\n")
    return entry
