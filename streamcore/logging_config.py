"""Logging setup. Extra fields are attached to records; credentials never reach the output."""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any

_SENSITIVE_KEYS = ("api_key", "apikey", "authorization", "token", "password", "secret")
_BEARER = re.compile(r"(bearer\s+)\S+", re.IGNORECASE)
_KEY_LIKE = re.compile(r"\b(sk-[A-Za-z0-9_\-]{8,}|AIza[0-9A-Za-z_\-]{20,})")

_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def _redact(obj: Any, key: str = "") -> Any:
    if key and any(s in key.lower() for s in _SENSITIVE_KEYS):
        return "[REDACTED]"
    if isinstance(obj, dict):
        return {k: _redact(v, str(k)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str):
        return _KEY_LIKE.sub("[REDACTED]", _BEARER.sub(r"\1[REDACTED]", obj))
    return obj


class StructuredFormatter(logging.Formatter):
    """JSON lines or `time level logger: message key=value` text; redacts credentials."""

    def __init__(self, use_json: bool = False) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": _redact(record.getMessage()),
        }
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        extras = {
            key: _redact(value, key)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        if self.use_json:
            return json.dumps({**log_dict, **extras}, default=str)

        line = f"{log_dict['timestamp']} {record.levelname:<7} {record.name}: {log_dict['message']}"
        if extras:
            line += " " + " ".join(f"{k}={v!r}" for k, v in extras.items())
        if "exception" in log_dict:
            line += "\n" + log_dict["exception"]
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    # stdout carries the streamed completion text
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(StructuredFormatter(use_json=use_json))
        root.addHandler(handler)
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
