"""
Errors raised by repositories and record handles.

Every error carries a short `error_code` and can describe itself as a JSON
payload plus an HTTP status, for services that surface them to clients.
"""

from typing import Iterable


class RepositoryError(Exception):
    """
    Base error.

    Attributes:
        message: human-readable text
        fields: column names involved, if known (e.g. ["name"])
        constraint: database constraint name, if known; kept out of payloads
        error_code: canonical code, defaults to the class's `default_code`
    """

    default_code: str | None = None

    STATUS_BY_CODE = {
        "not_found": 404,
        "duplicate": 409,
        "instance_filter_mismatch": 409,
        "invalid_field": 422,
    }

    def __init__(self, message: str, *, fields: Iterable[str] | None = None,
                 constraint: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.fields = list(fields) if fields else None
        self.constraint = constraint
        self.error_code = error_code or self.default_code

    def __str__(self) -> str:
        details = [
            label + value
            for label, value in (
                ("fields: ", ", ".join(self.fields or ())),
                ("constraint: ", self.constraint or ""),
                ("code: ", self.error_code or ""),
            )
            if value
        ]
        return f"{self.message} ({'; '.join(details)})" if details else self.message

    def to_payload(self) -> dict:
        """`{"detail": ..., "code": ..., "fields": [...]}`, empty keys left out."""
        payload = {"detail": self.message, "code": self.error_code, "fields": self.fields}
        return {k: v for k, v in payload.items() if v}

    def http_status(self) -> int:
        return self.STATUS_BY_CODE.get(self.error_code, 400)


class NotFoundError(RepositoryError):
    default_code = "not_found"


class DuplicateError(RepositoryError):
    default_code = "duplicate"


class InvalidFieldError(RepositoryError):
    """Unknown column, or a column that may not be written (primary key)."""

    default_code = "invalid_field"


class InstanceFilterMismatch(RepositoryError):
    """
    Raised when a guarded delete/update does not affect exactly one row.

    Zero rows means the row is gone or one of the handle's instance filters
    excluded it; more than one means the identity condition was not unique.
    The rendered statement is part of the message so the caller can see which
    condition failed to match.

    Attributes:
        sql: the rendered DELETE/UPDATE statement that was executed
        rowcount: the affected-row count the database reported
        operation: "delete" or "update"
        model_name: name of the mapped class, if known
    """

    default_code = "instance_filter_mismatch"

    def __init__(self, sql: str, *, rowcount: int, operation: str, model_name: str | None = None):
        super().__init__(f"No matching object for instance filtered dataset (SQL: {sql})")
        self.sql = sql
        self.rowcount = rowcount
        self.operation = operation
        self.model_name = model_name

    def to_payload(self) -> dict:
        return {**super().to_payload(), "operation": self.operation, "rowcount": self.rowcount}


__all__ = [
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "InvalidFieldError",
    "InstanceFilterMismatch",
]
