"""
Logging builder: create and apply a dictConfig logging configuration from Settings.

Handlers wired in:
| LOG_TO_STDOUT | LOG_DIR set | Active handlers                  |
| ------------- | ----------- | -------------------------------- |
| true          | any         | console + error_console          |
| false         | no          | console + error_console          |
| false         | yes         | console + file + error_file      |

The `rowguard` logger gets the configured level; `sqlalchemy.engine` stays at
WARNING unless ENABLE_SQL_LOGGING is on (statement logs may contain row values).
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path

from rowguard.config.settings import Settings
from rowguard.utils.logging import get_project_name

from .filters import OperationIdFilter, RedactFilter
from .formatters import ColorFormatter, JsonFormatter
from .handlers import (
    get_console_handler,
    get_error_console_handler,
    get_error_file_handler,
    get_file_handler,
)


def _writes_files(settings: Settings) -> bool:
    return (not settings.LOG_TO_STDOUT) and bool(settings.LOG_DIR)


def make_dict_config(settings: Settings) -> dict:
    """
    Build the dictConfig mapping for the given settings.

    The returned mapping includes:
      - formatters: "standard" (colour in text mode) and "json"
      - filters: "operation_id", "redact"
      - handlers: console, plus file/error_file or error_console
      - loggers: root, rowguard, sqlalchemy.engine
    """
    formatters = {
        "standard": {
            "()": ColorFormatter if settings.LOG_FORMAT == "text" else logging.Formatter,
            "fmt": "%(asctime)s | %(levelname)s | %(name)s | %(operation_id)s | %(message)s",
        },
        "json": {
            "()": JsonFormatter,
            "env": settings.ENV,
            "service": get_project_name(),
        },
    }

    filters = {
        "operation_id": {"()": OperationIdFilter},
        "redact": {"()": RedactFilter},
    }

    handlers: dict[str, dict] = {"console": get_console_handler(settings)}
    if _writes_files(settings):
        handlers["file"] = get_file_handler(settings)
        handlers["error_file"] = get_error_file_handler(settings)
    else:
        handlers["error_console"] = get_error_console_handler(settings)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": list(handlers.keys()),
                "level": settings.LOG_LEVEL,
            },
            "rowguard": {
                "level": settings.LOG_LEVEL,
                "propagate": True,
            },
            # Be cautious with SQL logging (may contain sensitive data)
            "sqlalchemy.engine": {
                "level": "DEBUG" if settings.ENABLE_SQL_LOGGING else "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging(settings: Settings) -> None:
    """
    Initialize logging from settings.

    Creates LOG_DIR when file handlers are active, applies the dictConfig and
    adds an OperationIdFilter to the root logger so `%(operation_id)s` is always
    resolvable, even for handlers added later by other code.
    """
    if _writes_files(settings):
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(make_dict_config(settings))
    logging.getLogger().addFilter(OperationIdFilter())
