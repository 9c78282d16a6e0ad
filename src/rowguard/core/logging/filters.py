"""
Logging filters

Operation ID filter and helpers.

A guarded delete or update usually runs as part of a larger unit of work
(a request, a job, a CLI command). `operation_scope()` puts a correlation id
in a `contextvars.ContextVar` so that every record logged inside the scope,
including records from the repository and record-handle layers, carries the
same `operation_id`. ContextVar rather than threading.local() because the
session API is async and the id has to survive `await` boundaries.

Records logged outside any scope get the sentinel "-" so that format strings
referencing `%(operation_id)s` never KeyError.
"""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from logging import LogRecord
from typing import Iterator

_operation_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation_id", default=None
)


def set_operation_id(operation_id: str | None) -> contextvars.Token:
    """
    Set the operation id in the current context and return the token to allow reset.
    """
    return _operation_id_ctx.set(operation_id)


def reset_operation_id(token: contextvars.Token) -> None:
    _operation_id_ctx.reset(token)


def get_operation_id() -> str | None:
    return _operation_id_ctx.get()


@contextmanager
def operation_scope(operation_id: str | None = None) -> Iterator[str]:
    """
    Run a block with an operation id set (a fresh uuid4 hex if none is given).

        with operation_scope() as op_id:
            await handle.delete()
    """
    op_id = operation_id or uuid.uuid4().hex
    token = set_operation_id(op_id)
    try:
        yield op_id
    finally:
        reset_operation_id(token)


class OperationIdFilter(logging.Filter):
    """
    Guarantee every LogRecord has an `operation_id` attribute.

    Precedence: an explicit `extra={"operation_id": ...}`, then the contextvar,
    then "-". Always returns True; the filter only annotates.
    """

    def filter(self, record: LogRecord) -> bool:
        record.operation_id = (
            getattr(record, "operation_id", None) or get_operation_id() or "-"
        )
        return True


class RedactFilter(logging.Filter):
    """Mask values of sensitive `extra` keys before any handler formats the record."""

    SENSITIVE = {"password", "secret", "token", "access_token", "refresh_token", "ssn", "authorization"}

    def __init__(self, name: str = "", extra_keys: set[str] | None = None):
        super().__init__(name)
        self.sensitive = self.SENSITIVE | {k.lower() for k in (extra_keys or ())}

    def filter(self, record: LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.sensitive:
                record.__dict__[key] = "***REDACTED***"
        return True
