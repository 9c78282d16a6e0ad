"""
Custom logging formatters.

  - JsonFormatter: one JSON object per record, for log collectors. Carries the
    service/env/version fields plus every `extra` key passed at the call site
    (e.g. `model`, `operation`, `rowcount`, `sql` from the record handles).

  - ColorFormatter: compact ANSI-coloured lines for local development.

builder.py picks one per handler from `settings.LOG_FORMAT`.
"""

import json
import logging
from logging import LogRecord
from typing import Any

from rowguard.utils.logging import get_project_version

PROJECT_VERSION = get_project_version()

# Attributes every LogRecord has; anything else on the record came from `extra`.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    Structured JSON formatter.

    Construction:
      - env: environment name (e.g. "development" | "production"); optional.
      - service: logical service name included in every line.
      - datefmt: passed through to logging.Formatter.formatTime.

    Non-serializable extras are converted with str(); format() never raises on them.
    """

    def __init__(self, *, env: str | None = None, service: str = "rowguard", datefmt: str | None = None):
        super().__init__(datefmt=datefmt)
        self.env = env
        self.service = service

    def format(self, record: LogRecord) -> str:
        log_record: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pathname": record.pathname,
            "lineno": record.lineno,
            "operation_id": getattr(record, "operation_id", "-"),
            "service": self.service,
            "env": self.env,
            "version": PROJECT_VERSION,
        }

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)

        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS or k in log_record or k.startswith("_"):
                continue
            try:
                json.dumps(v)
                log_record[k] = v
            except (TypeError, ValueError):
                log_record[k] = str(v)

        return json.dumps(log_record, ensure_ascii=False, default=str)


class ColorFormatter(logging.Formatter):
    """
    Development-friendly coloured formatter:

        TIMESTAMP | LEVEL | LOGGER | OPERATION_ID | MESSAGE [key=value ...]

    Only the level name is coloured. Extras are appended as key=value pairs so
    that event-style messages ("record.delete.mismatch") stay readable.
    """

    COLOR_CODES = {
        "DEBUG": "\033[1;36;47m",   # bold cyan on white
        "INFO": "\033[32m",         # green
        "WARNING": "\033[33m",      # yellow
        "ERROR": "\033[31m",        # red
        "CRITICAL": "\033[1;41m",   # bold on red
        "RESET": "\033[0m",
    }

    def format(self, record: LogRecord) -> str:
        color = self.COLOR_CODES.get(record.levelname, "")
        reset = self.COLOR_CODES["RESET"]
        timestamp = self.formatTime(record, self.datefmt)

        extras = " ".join(
            f"{k}={v!r}"
            for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS and k != "operation_id" and not k.startswith("_")
        )

        base = (
            f"{timestamp} | {color}{record.levelname:<8}{reset} | "
            f"{record.name:<30} | "
            f"{getattr(record, 'operation_id', '-'):<12} | "
            f"{record.getMessage()}"
        )
        if extras:
            base = f"{base} {extras}"

        if record.exc_info:
            base = base + "\n" + self.formatException(record.exc_info)

        return base
