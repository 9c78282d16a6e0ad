"""
Record handles.

A `RecordHandle` is a detached snapshot of one row of a mapped table. It is not
an ORM instance and is not tracked by the session's identity map, so loading the
same row twice gives two independent handles, each with its own instance filters.

Deletes and updates go through a small pipeline:

    identity statement  ->  hooks.rewrite()  ->  execute  ->  exactly-one-row check  ->  after-hooks

The handle's `InstanceFilterSet` registers itself as a rewriter and as the
after-delete / after-update observer that clears it.
"""
import logging
import time
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.database.base import Base
from rowguard.exceptions.base import InvalidFieldError, NotFoundError, RepositoryError
from rowguard.exceptions.mapper import db_error_handler
from rowguard.filters.instance_filters import DynamicRestriction, InstanceFilterSet
from rowguard.validators.model_validators import (
    column_keys,
    find_unknown_model_kwargs,
    primary_key_keys,
)

from .hooks import MutationHooks

ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


def identity_criteria(model: type, identity: dict[str, Any]) -> list[Any]:
    """`pk_col == value` for each primary key column, in primary key order."""
    return [getattr(model, key) == value for key, value in identity.items()]


async def fetch_row(db: AsyncSession, model: type, identity: dict[str, Any]) -> dict[str, Any] | None:
    """
    Load one row as `{attribute_key: value}` without going through the identity map.
    """
    mapper = sa_inspect(model)
    keys = column_keys(model)
    query = select(*[mapper.columns[k] for k in keys]).where(*identity_criteria(model, identity))
    result = await db.execute(query)
    row = result.first()
    if row is None:
        return None
    return dict(zip(keys, row))


class RecordHandle(Generic[ModelType]):
    """
    In-memory handle on one persisted row.

    Attributes:
        model: the mapped class the row belongs to
        db: the AsyncSession statements are executed on
        filters: this handle's InstanceFilterSet (starts empty)
        hooks: interception points of the delete/update pipeline
        deleted: True once a delete succeeded

    Column values are readable as attributes (`handle.name`) or items
    (`handle["name"]`); `values` returns a copy of the whole snapshot.
    Attribute access only falls back to columns, so a column named like one of
    the handle's own attributes (`model`, `db`, `filters`, `hooks`, `deleted`,
    `identity`, `values`, ...) is shadowed and must be read as `handle["deleted"]`.

    After an update the snapshot also picks up columns the database set through
    an `onupdate` default (e.g. `updated_at`). Server-side triggers are not seen
    until `refresh()`.
    """

    def __init__(self, model: type[ModelType], db: AsyncSession, values: dict[str, Any], *, log_sql: bool = True):
        unknown = find_unknown_model_kwargs(model, values)
        if unknown:
            raise InvalidFieldError(f"Unknown field(s) for {model.__name__}: {', '.join(unknown)}", fields=unknown)

        pk_keys = primary_key_keys(model)
        missing = [k for k in pk_keys if values.get(k) is None]
        if missing:
            raise InvalidFieldError(
                f"Missing primary key value(s) for {model.__name__}: {', '.join(missing)}", fields=missing
            )

        self.model = model
        self.db = db
        self._values: dict[str, Any] = dict(values)
        self._identity: dict[str, Any] = {k: values[k] for k in pk_keys}
        self._changed: set[str] = set()
        self.deleted = False

        self.filters = InstanceFilterSet(log_sql=log_sql)
        self.hooks = MutationHooks()
        self.filters.register(self.hooks)

    # =================================================================================================================
    # Values
    # =================================================================================================================

    @property
    def model_name(self) -> str:
        return self.model.__name__

    @property
    def identity(self) -> dict[str, Any]:
        return dict(self._identity)

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    @property
    def changed_columns(self) -> list[str]:
        """Columns modified with `set()` and not yet written."""
        return sorted(self._changed)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __getattr__(self, key: str) -> Any:
        values = self.__dict__.get("_values")
        if values is not None and key in values:
            return values[key]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {key!r}")

    def set(self, **values: Any) -> None:
        """Change column values locally; nothing is written until save()/save_changes()."""
        self._check_writable(values)
        self._values.update(values)
        self._changed.update(values)

    # =================================================================================================================
    # Instance filters
    # =================================================================================================================

    def instance_filter(self, *args: Any, dynamic: DynamicRestriction | None = None) -> None:
        """
        Restrict this handle's next successful delete/update to rows that also match.

        Args:
            *args: restrictions: `{column: value}` mappings, SQLAlchemy boolean
                expressions (`Item.quantity > 0`) or `text()` clauses.
            dynamic: optional callable receiving the mapped class and returning a
                restriction; called each time the statement is built.

        Filters accumulate and are cleared after the next successful delete or update.
        """
        self.filters.add(*args, dynamic=dynamic)

    # =================================================================================================================
    # Statements
    # =================================================================================================================

    def delete_statement(self):
        """DELETE scoped to this row, with every registered rewriter applied."""
        base = delete(self.model.__table__).where(*identity_criteria(self.model, self._identity))
        return self.hooks.rewrite(base, self.model)

    def update_statement(self, values: dict[str, Any]):
        """UPDATE ... SET `values` scoped to this row, with every registered rewriter applied."""
        mapper = sa_inspect(self.model)
        base = (
            update(self.model.__table__)
            .where(*identity_criteria(self.model, self._identity))
            .values({mapper.columns[k]: v for k, v in values.items()})
        )
        return self.hooks.rewrite(base, self.model)

    # =================================================================================================================
    # Mutations
    # =================================================================================================================

    async def delete(self) -> "RecordHandle[ModelType]":
        """
        Delete the row this handle represents.

        Raises:
            InstanceFilterMismatch: if the filtered DELETE did not affect exactly one row.
                The filters are kept. On zero rows the session is left as it was;
                on several rows it is rolled back.
            RepositoryError: if the handle was already deleted, or for database errors.
        """
        self._ensure_not_deleted("delete")
        statement = self.delete_statement()

        logger.debug(
            "record.delete.start",
            extra={"model": self.model_name, "operation": "delete", "filter_count": len(self.filters)},
        )
        start = time.perf_counter()

        await self._execute_guarded(statement, "delete")

        self.deleted = True
        self.hooks.fire_after_delete()

        logger.info(
            "record.delete.success",
            extra={
                "model": self.model_name,
                "operation": "delete",
                "identity": self._identity,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return self

    async def update(self, **values: Any) -> "RecordHandle[ModelType]":
        """
        Write the given column values to this row.

        Only the given columns are written. The snapshot takes the new values once
        the write succeeded; on failure it is left as it was.

        Raises:
            InvalidFieldError: unknown column or primary key column (no SQL is run).
            InstanceFilterMismatch: the filtered UPDATE did not affect exactly one row.
            RepositoryError: handle already deleted, or database errors.
        """
        self._ensure_not_deleted("update")

        if not values:
            logger.warning("record.update.no_values", extra={"model": self.model_name, "operation": "update"})
            return self

        self._check_writable(values)
        await self._write(values)
        return self

    async def save_changes(self) -> "RecordHandle[ModelType]":
        """Write the columns changed with set() since the last write (no-op when nothing changed)."""
        self._ensure_not_deleted("update")
        if not self._changed:
            logger.debug("record.save_changes.nothing_to_save", extra={"model": self.model_name})
            return self
        await self._write({k: self._values[k] for k in sorted(self._changed)})
        return self

    async def save(self) -> "RecordHandle[ModelType]":
        """
        Write every non primary key column of the snapshot.

        Columns with an `onupdate` default (e.g. `updated_at`) are left to it.
        A model with nothing else to write makes this a no-op.
        """
        self._ensure_not_deleted("update")
        pk_keys = set(self._identity)
        mapper = sa_inspect(self.model)
        values = {
            k: v for k, v in self._values.items()
            if k not in pk_keys and mapper.columns[k].onupdate is None
        }
        if not values:
            logger.warning("record.save.no_values", extra={"model": self.model_name, "operation": "update"})
            return self
        await self._write(values)
        return self

    async def refresh(self) -> "RecordHandle[ModelType]":
        """
        Reload the snapshot from the database. Instance filters are kept.

        Raises:
            NotFoundError: the row no longer exists.
        """
        try:
            row = await fetch_row(self.db, self.model, self._identity)
        except Exception as e:
            logger.error(f"Error refreshing {self.model_name} {self._identity}: {e}")
            raise RepositoryError(f"Failed to refresh {self.model_name}") from e

        if row is None:
            raise NotFoundError(f"{self.model_name} with identity {self._identity} not found")

        self._values = row
        self._changed.clear()
        return self

    # =================================================================================================================
    # Internals
    # =================================================================================================================

    async def _write(self, values: dict[str, Any]) -> None:
        statement = self.update_statement(values)

        logger.debug(
            "record.update.start",
            extra={
                "model": self.model_name,
                "operation": "update",
                # keys only, values may be sensitive
                "columns": sorted(values),
                "filter_count": len(self.filters),
            },
        )
        start = time.perf_counter()

        generated = await self._execute_guarded(statement, "update", reload=self._onupdate_keys(values))

        self._values.update(values)
        self._values.update(generated)
        self._changed.difference_update(values)
        self.hooks.fire_after_update()

        logger.info(
            "record.update.success",
            extra={
                "model": self.model_name,
                "operation": "update",
                "identity": self._identity,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )

    async def _execute_guarded(self, statement, operation: str, reload: list[str] | None = None) -> dict[str, Any]:
        """
        Execute a DELETE/UPDATE and check that it affected exactly one row.

        On success, the columns named in `reload` are read back and returned.
        Zero affected rows raise outside `db_error_handler`: nothing was changed,
        so the caller's pending work stays in the session. Several affected rows
        raise inside it and are rolled back.
        """
        reloaded: dict[str, Any] = {}
        async with db_error_handler(self.db, self.model_name):
            result = await self.db.execute(statement)
            rowcount = result.rowcount
            if rowcount > 1:
                self._enforce_single_row(rowcount, statement, operation)
            if rowcount == 1 and reload:
                mapper = sa_inspect(self.model)
                query = select(*[mapper.columns[k] for k in reload]).where(
                    *identity_criteria(self.model, self._identity)
                )
                row = (await self.db.execute(query)).first()
                if row is not None:
                    reloaded = dict(zip(reload, row))

        self._enforce_single_row(rowcount, statement, operation)
        return reloaded

    def _onupdate_keys(self, values: dict[str, Any]) -> list[str]:
        """Columns an UPDATE of `values` fills in through their `onupdate` default."""
        mapper = sa_inspect(self.model)
        return [k for k in column_keys(self.model) if k not in values and mapper.columns[k].onupdate is not None]

    def _enforce_single_row(self, rowcount: int, statement, operation: str) -> None:
        dialect = self.db.get_bind().dialect
        if not dialect.supports_sane_rowcount:
            logger.warning(
                "record.rowcount_unreliable",
                extra={"model": self.model_name, "operation": operation, "dialect": dialect.name},
            )
        self.filters.enforce_single_row_affected(
            rowcount, statement, operation=operation, dialect=dialect, model_name=self.model_name
        )

    def _check_writable(self, values: dict[str, Any]) -> None:
        unknown = find_unknown_model_kwargs(self.model, values)
        if unknown:
            logger.info(
                "record.invalid_fields",
                extra={"model": self.model_name, "invalid_fields": sorted(unknown)},
            )
            raise InvalidFieldError(f"Unknown field(s) for {self.model_name}: {', '.join(unknown)}", fields=unknown)

        pk_fields = [k for k in values if k in self._identity]
        if pk_fields:
            raise InvalidFieldError(
                f"Primary key field(s) of {self.model_name} cannot be changed: {', '.join(pk_fields)}",
                fields=pk_fields,
            )

    def _ensure_not_deleted(self, operation: str) -> None:
        if self.deleted:
            raise RepositoryError(f"Cannot {operation} {self.model_name} {self._identity}: already deleted")

    def __repr__(self) -> str:
        identity = ", ".join(f"{k}={v!r}" for k, v in self._identity.items())
        return f"<RecordHandle {self.model_name}({identity}) filters={len(self.filters)}>"
