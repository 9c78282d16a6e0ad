"""
Classification of SQLAlchemy IntegrityErrors by constraint kind.

Postgres drivers expose a SQLSTATE (and usually the constraint name); other
drivers (SQLite, MySQL) only give a message, so those are matched on keywords.
"""
import logging
from enum import Enum

from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class ConstraintKind(str, Enum):
    UNIQUE = "unique"
    NOT_NULL = "not_null"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    UNKNOWN = "unknown"


# https://www.postgresql.org/docs/current/errcodes-appendix.html
SQLSTATE_KINDS = {
    "23505": ConstraintKind.UNIQUE,
    "23502": ConstraintKind.NOT_NULL,
    "23503": ConstraintKind.FOREIGN_KEY,
    "23514": ConstraintKind.CHECK,
}

# Checked in order; the first match wins.
MESSAGE_KEYWORDS: list[tuple[ConstraintKind, tuple[str, ...]]] = [
    (ConstraintKind.UNIQUE, ("unique constraint", "unique failed", "unique violation", "duplicate")),
    (ConstraintKind.NOT_NULL, ("not null constraint", "not null", "null value in column")),
    (ConstraintKind.FOREIGN_KEY, ("foreign key constraint", "foreign key", "is not present in table")),
    (ConstraintKind.CHECK, ("check constraint", "check failed")),
]


def _kind_from_sqlstate(orig) -> tuple[ConstraintKind, str | None] | None:
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if not sqlstate:
        return None

    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)

    kind = SQLSTATE_KINDS.get(sqlstate, ConstraintKind.UNKNOWN)
    if kind is ConstraintKind.UNKNOWN:
        logger.warning("integrity.unknown_sqlstate", extra={"sqlstate": sqlstate, "constraint_name": constraint_name})
    return kind, constraint_name


def _kind_from_message(msg: str) -> ConstraintKind:
    normalized = msg.lower()
    for kind, keywords in MESSAGE_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return kind

    logger.warning("integrity.unknown_message", extra={"message_snippet": normalized[:200]})
    return ConstraintKind.UNKNOWN


def classify_integrity_error(exc: IntegrityError) -> tuple[ConstraintKind, str | None]:
    """
    Returns:
        (kind, constraint name if the driver reported one)
    """
    from_sqlstate = _kind_from_sqlstate(exc.orig)
    if from_sqlstate is not None:
        return from_sqlstate
    return _kind_from_message(str(exc.orig) if exc.orig is not None else str(exc)), None
