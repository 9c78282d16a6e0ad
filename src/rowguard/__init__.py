"""
rowguard: per-record instance filters for SQLAlchemy deletes and updates.

    repo = ItemRepository(db)
    item = await repo.get_or_raise(item_id)
    item.instance_filter({"delete_allowed": True})
    await item.delete()     # raises InstanceFilterMismatch unless exactly one row was deleted
"""
from rowguard.exceptions import (
    DuplicateError,
    InstanceFilterMismatch,
    InvalidFieldError,
    NotFoundError,
    RepositoryError,
)
from rowguard.filters import FilterPredicate, InstanceFilterSet, render_sql
from rowguard.records import MutationHooks, RecordHandle
from rowguard.repositories import BaseRepository, ItemRepository, StockLevelRepository

__all__ = [
    "BaseRepository",
    "DuplicateError",
    "FilterPredicate",
    "InstanceFilterMismatch",
    "InstanceFilterSet",
    "InvalidFieldError",
    "ItemRepository",
    "MutationHooks",
    "NotFoundError",
    "RecordHandle",
    "RepositoryError",
    "StockLevelRepository",
    "render_sql",
]
