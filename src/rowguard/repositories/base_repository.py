"""
Base repository class returning record handles.

The repository is the only place rows are read or inserted. Every row it hands
out is wrapped in a fresh `RecordHandle` (see `rowguard.records`), which carries
its own instance filters and runs guarded deletes and updates:

    repo = ItemRepository(db)
    item = await repo.get_or_raise(item_id)
    item.instance_filter({"delete_allowed": True})
    await item.delete()

Model-specific repositories inherit from this class and add their own queries.
"""
from rowguard.config.settings import Settings, get_settings
from rowguard.exceptions.base import (
    RepositoryError,
    DuplicateError,
    NotFoundError,
    InvalidFieldError
)
from rowguard.exceptions.mapper import db_error_handler
from rowguard.records.handle import RecordHandle, fetch_row, identity_criteria
from rowguard.validators.model_validators import (
    column_keys,
    find_unknown_model_kwargs,
    find_unique_conflicts,
    get_required_columns,
    normalize_identity,
    primary_key_keys,
)

import time
from typing import TypeVar, Generic, Type, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy import inspect as sa_inspect
import logging

from rowguard.database.base import Base

# Type variable for the model class
ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelType]):
    """
    Generic base repository for one mapped class.

    Type Parameters:
        ModelType: The SQLAlchemy model class this repository manages.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession, settings: Settings | None = None):
        """
        Args:
            model: The SQLAlchemy model class (not an instance), e.g. Item.
            db: The async database session statements run on. The repository
                flushes but never commits; the caller owns the transaction.
            settings: Defaults to `get_settings()`.
        """
        self.model = model
        self.db = db
        self.settings = settings or get_settings()

    def handle(self, **values: Any) -> RecordHandle[ModelType]:
        """
        Wrap already-known column values in a new handle. No SQL is run.

        Raises:
            InvalidFieldError: unknown column, or a primary key value is missing.
        """
        return RecordHandle(
            self.model, self.db, values, log_sql=self.settings.INSTANCE_FILTER_LOG_SQL
        )

    async def create(self, **kwargs) -> RecordHandle[ModelType]:
        """
        Insert a row and return a handle on it. Logging:
        - DEBUG: start event with model name and provided keys (not values).
        - INFO: expected domain errors (invalid fields, missing required, duplicate).
        - INFO: success event with the new identity and duration_ms.
        """
        logger.debug(
            "repo.create.start",
            extra={
                "model": self.model.__name__,
                "operation": "create",
                "provided_keys": sorted(kwargs.keys()),
            },
        )

        unknown = find_unknown_model_kwargs(self.model, kwargs)
        if unknown:
            logger.info(
                "repo.create.invalid_fields",
                extra={
                    "model": self.model.__name__,
                    "operation": "create",
                    "invalid_fields": sorted(unknown),
                },
            )
            raise InvalidFieldError(f"Unknown field(s) for {self.model.__name__}: {', '.join(unknown)}", fields=unknown)

        required_cols = get_required_columns(self.model)
        missing = [c for c in required_cols if kwargs.get(c) is None]
        if missing:
            logger.info(
                "repo.create.missing_required",
                extra={
                    "model": self.model.__name__,
                    "operation": "create",
                    "missing_fields": sorted(missing),
                },
            )
            raise RepositoryError(f"Missing required field(s): {', '.join(missing)} for {self.model.__name__}", fields=missing)

        conflicts = await find_unique_conflicts(self.db, self.model, kwargs)
        if conflicts:
            logger.info(
                "repo.create.duplicate_precheck",
                extra={
                    "model": self.model.__name__,
                    "operation": "create",
                    "conflict_fields": sorted(conflicts),
                },
            )
            raise DuplicateError(f"{self.model.__name__} already exists for field(s): {', '.join(sorted(conflicts))}", fields=sorted(conflicts))

        start = time.perf_counter()

        async with db_error_handler(self.db, self.model.__name__):
            entity = self.model(**kwargs)
            self.db.add(entity)
            await self.db.flush()
            await self.db.refresh(entity)
            values = {key: getattr(entity, key) for key in column_keys(self.model)}
            # handles are snapshots; keep the identity map free of this row
            self.db.expunge(entity)

        handle = self.handle(**values)
        logger.info(
            "repo.create.success",
            extra={
                "model": self.model.__name__,
                "operation": "create",
                "identity": handle.identity,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return handle

    async def get(self, entity_id: Any) -> RecordHandle[ModelType] | None:
        """
        Load a row by primary key.

        Args:
            entity_id: a scalar for single-column keys, or a tuple / mapping for
                composite keys.

        Returns:
            A new handle, or None if no row matches.

        Raises:
            RepositoryError: the key does not fit the primary key, or the query fails.
        """
        try:
            identity = normalize_identity(self.model, entity_id)
        except ValueError as e:
            raise RepositoryError(str(e)) from e

        try:
            row = await fetch_row(self.db, self.model, identity)
        except Exception as e:
            logger.error(f"Error retrieving {self.model.__name__} by ID {entity_id}: {e}")
            raise RepositoryError(f"Failed to retrieve {self.model.__name__}") from e

        logger.debug(f"Retrieved {self.model.__name__} by ID: {entity_id} (found={row is not None})")
        return self.handle(**row) if row is not None else None

    async def get_or_raise(self, entity_id: Any) -> RecordHandle[ModelType]:
        """
        Raises:
            NotFoundError: If no row has this primary key.
        """
        handle = await self.get(entity_id)
        if handle is None:
            raise NotFoundError(f"{self.model.__name__} with ID {entity_id} not found")
        return handle

    async def find_by_field(self, field: str, value: Any) -> RecordHandle[ModelType] | None:
        """
        Find a single row by any column.

        Raises:
            RepositoryError: If the column does not exist, or the query fails
                (including several rows matching).
        """
        if field not in column_keys(self.model):
            raise RepositoryError(f"{self.model.__name__} has no field '{field}'")

        try:
            query = self._select_columns().where(getattr(self.model, field) == value)
            result = await self.db.execute(query)
            row = result.one_or_none()
        except Exception as e:
            logger.error(f"Error finding {self.model.__name__} by {field}={value}: {e}")
            raise RepositoryError(f"Failed to find {self.model.__name__}") from e

        logger.debug(f"Found {self.model.__name__} by {field}: {value} (found={row is not None})")
        return self._wrap_row(row) if row is not None else None

    async def get_all(
        self,
        offset: int = 0,                # how many rows to skip
        limit: int = 100,               # page size
        order_by: str | None = None     # column key to sort by
    ) -> list[RecordHandle[ModelType]]:
        """
        Get a page of rows, one new handle each.

        An unknown `order_by` is ignored with a warning. Without `order_by` rows
        are ordered by primary key, so pages are stable.
        """
        query = self._select_columns()

        if order_by and order_by in column_keys(self.model):
            query = query.order_by(getattr(self.model, order_by))
            logger.debug(f"Ordering {self.model.__name__} by field: '{order_by}'")
        else:
            if order_by:
                logger.warning(
                    f"Ignored invalid 'order_by' field: '{order_by}' does not exist on {self.model.__name__}")
            query = query.order_by(*[getattr(self.model, k) for k in primary_key_keys(self.model)])

        query = query.offset(offset).limit(limit)

        try:
            result = await self.db.execute(query)
            rows = result.all()
        except Exception as e:
            logger.error(f"Error retrieving all {self.model.__name__}: {e}")
            raise RepositoryError(f"Failed to retrieve {self.model.__name__} entities") from e

        logger.debug(f"Retrieved {len(rows)} {self.model.__name__} entities")
        return [self._wrap_row(row) for row in rows]

    async def exists(self, entity_id: Any) -> bool:
        try:
            identity = normalize_identity(self.model, entity_id)
        except ValueError as e:
            raise RepositoryError(str(e)) from e

        pk_columns = sa_inspect(self.model).primary_key
        query = select(*pk_columns).where(*identity_criteria(self.model, identity)).limit(1)
        try:
            result = await self.db.execute(query)
            return result.first() is not None
        except Exception as e:
            logger.error(f"Error checking existence of {self.model.__name__} {entity_id}: {e}")
            raise RepositoryError(f"Failed to check {self.model.__name__} existence") from e

    async def count(self, **filters) -> int:
        """
        Count rows, optionally filtered by column equality.

        Raises:
            InvalidFieldError: a filter key is not a column.
        """
        unknown = find_unknown_model_kwargs(self.model, filters)
        if unknown:
            raise InvalidFieldError(f"Unknown field(s) for {self.model.__name__}: {', '.join(unknown)}", fields=unknown)

        query = select(func.count()).select_from(self.model)
        for key, value in filters.items():
            query = query.where(getattr(self.model, key) == value)

        try:
            result = await self.db.execute(query)
            return result.scalar_one()
        except Exception as e:
            logger.error(f"Error counting {self.model.__name__}: {e}")
            raise RepositoryError(f"Failed to count {self.model.__name__}") from e

    async def delete(self, entity_id: Any) -> None:
        """
        Delete a row by primary key through a handle, so the exactly-one-row
        check applies.

        Raises:
            NotFoundError: no row has this primary key.
            InstanceFilterMismatch: the row disappeared between load and delete.
        """
        handle = await self.get_or_raise(entity_id)
        await handle.delete()

    def _select_columns(self):
        mapper = sa_inspect(self.model)
        return select(*[mapper.columns[k] for k in column_keys(self.model)])

    def _wrap_row(self, row) -> RecordHandle[ModelType]:
        return self.handle(**dict(zip(column_keys(self.model), row)))
