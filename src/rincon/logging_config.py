from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# logger name -> file, on top of app.log and errors.log
DEDICATED_LOGS = {
    "rincon.sales": "sales.log",
    "rincon.remote": "remote.log",
    "rincon.services": "catalog.log",
}


def _fields(message: str) -> dict[str, str]:
    """Services log "event key=value key=value"; lift the pairs into the record."""
    words = message.split(" ")
    fields = {"event": words[0]} if words and "=" not in words[0] else {}
    for word in words:
        key, sep, value = word.partition("=")
        if sep and key.isidentifier():
            fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            **_fields(message),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _file_handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO, console: bool = False) -> None:
    """Configure JSON file logging once per process; later calls only adjust the level."""
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return

    root.addHandler(_file_handler(logs_dir / "app.log", level))
    root.addHandler(_file_handler(logs_dir / "errors.log", logging.ERROR))

    for name, filename in DEDICATED_LOGS.items():
        logger = logging.getLogger(name)
        logger.addHandler(_file_handler(logs_dir / filename, level))
        logger.setLevel(level)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        stream.setLevel(logging.WARNING)
        root.addHandler(stream)
