"""
Translation of database failures into repository errors, and the
`db_error_handler` context manager every write in the package runs under.
"""
import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, NoReturn

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .base import DuplicateError, RepositoryError
from .integrity_classifier import ConstraintKind, classify_integrity_error

logger = logging.getLogger(__name__)

# Postgres:  'null value in column "name" ...'  /  'Key (warehouse, sku)=(...) already exists.'
# SQLite:    'UNIQUE constraint failed: items.name'  /  'NOT NULL constraint failed: items.name'
_COLUMN_PATTERNS = (
    re.compile(r'null value in column "(?P<cols>[^"]+)"', re.IGNORECASE),
    re.compile(r'key \((?P<cols>[^)]+)\)=', re.IGNORECASE),
    re.compile(r'(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>.+)$', re.IGNORECASE),
)

# constraint kind -> log event; all of these are client-level outcomes (INFO)
_LOG_EVENTS = {
    ConstraintKind.UNIQUE: "mapper.duplicate_detected",
    ConstraintKind.NOT_NULL: "mapper.not_null_violation",
    ConstraintKind.FOREIGN_KEY: "mapper.foreign_key_violation",
    ConstraintKind.CHECK: "mapper.check_constraint_failure",
}


def extract_columns_from_integrity(exc: IntegrityError) -> list[str] | None:
    """
    Column names mentioned in the driver message, table prefixes stripped.
    None when the message names no column.
    """
    msg = str(exc.orig) if exc.orig is not None else str(exc)
    for pattern in _COLUMN_PATTERNS:
        m = pattern.search(msg)
        if m:
            return [c.strip().strip('"').split(".")[-1] for c in m.group("cols").split(",")]
    return None


def map_integrity_error(exc: IntegrityError, model_name: str | None = None) -> RepositoryError:
    """Build (without raising) the repository error that stands for `exc`."""
    kind, constraint = classify_integrity_error(exc)
    columns = extract_columns_from_integrity(exc)
    model = model_name or "Record"
    on_columns = f" for field(s): {', '.join(columns)}" if columns else ""

    event = _LOG_EVENTS.get(kind)
    if event is None:
        logger.warning("mapper.unknown_integrity_error", extra={"model": model, "constraint": constraint})
        return RepositoryError(f"{model} database integrity error.")

    logger.info(event, extra={"model": model, "fields": columns, "constraint": constraint})

    if kind is ConstraintKind.UNIQUE:
        return DuplicateError(f"{model} already exists{on_columns}", fields=columns, constraint=constraint)
    if kind is ConstraintKind.NOT_NULL:
        return RepositoryError(f"Missing required field{on_columns} for {model}", fields=columns, constraint=constraint)
    if kind is ConstraintKind.FOREIGN_KEY:
        return RepositoryError(f"{model} foreign key constraint violated", fields=columns, constraint=constraint)
    # check constraint: the raw text can leak data, it is not part of the message
    return RepositoryError(f"{model} business rule violated (check constraint).", constraint=constraint)


def raise_mapped_integrity_error(exc: IntegrityError, model_name: str | None = None) -> NoReturn:
    raise map_integrity_error(exc, model_name) from exc


async def _rollback_quietly(db: AsyncSession, model_name: str | None) -> None:
    try:
        await db.rollback()
    except Exception:
        logger.exception("mapper.rollback_failed", extra={"model": model_name})


@asynccontextmanager
async def db_error_handler(db: AsyncSession, model_name: str | None = None) -> AsyncIterator[None]:
    """
    Run a block of writes; on any error roll the session back, then

      - re-raise RepositoryError (and subclasses such as InstanceFilterMismatch) as is,
      - turn IntegrityError into DuplicateError / RepositoryError,
      - wrap anything else in RepositoryError, chaining the original.

        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(statement)
    """
    try:
        yield
    except RepositoryError:
        await _rollback_quietly(db, model_name)
        raise
    except IntegrityError as exc:
        await _rollback_quietly(db, model_name)
        raise_mapped_integrity_error(exc, model_name)
    except Exception as exc:
        await _rollback_quietly(db, model_name)
        logger.exception("mapper.unexpected_db_error", extra={"model": model_name})
        raise RepositoryError(f"Failed to operate on {model_name or 'database'}") from exc
