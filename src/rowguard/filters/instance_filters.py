"""
Instance filters: per-handle restrictions on update and delete.

A record handle owns one `InstanceFilterSet`. Filters added to it are ANDed,
in insertion order, onto the handle's identity-scoped DELETE/UPDATE statement,
so the mutation only happens if the row still matches them in the database:

    item = await repo.get_or_raise(item_id)
    item.instance_filter({"delete_allowed": True})
    await item.delete()         # InstanceFilterMismatch unless the row allows it

Every guarded mutation must affect exactly one row. The check also runs for a
handle without filters, so a delete/update that hits zero rows (row already
gone) or several rows (identity not unique) never passes silently.

Filters stay in effect until a delete or update succeeds; a failed mutation
keeps them so the caller can retry after reloading or relaxing them.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator

from sqlalchemy.engine import Dialect

from rowguard.exceptions.base import InstanceFilterMismatch

from .rendering import render_sql

if TYPE_CHECKING:
    from rowguard.records.hooks import MutationHooks

logger = logging.getLogger(__name__)

# (model class) -> restriction; evaluated when the statement is built, not when added
DynamicRestriction = Callable[[type], Any]


def _restriction_clauses(restriction: Any, model: type) -> list[Any]:
    """
    Expand one restriction into WHERE criteria.

    Mappings become one equality per key, in key order (None -> IS NULL,
    list/tuple/set -> IN). Anything else is handed to `.where()` untouched, so
    SQLAlchemy decides whether it is a valid criterion.
    """
    if not isinstance(restriction, Mapping):
        return [restriction]

    clauses = []
    for key, value in restriction.items():
        column = getattr(model, key)
        if value is None:
            clauses.append(column.is_(None))
        elif isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_(list(value)))
        else:
            clauses.append(column == value)
    return clauses


@dataclass(frozen=True)
class FilterPredicate:
    """One `instance_filter(...)` call: positional restrictions plus an optional dynamic one."""

    args: tuple[Any, ...]
    dynamic: DynamicRestriction | None = None

    def clauses(self, model: type) -> list[Any]:
        criteria: list[Any] = []
        for restriction in self.args:
            criteria.extend(_restriction_clauses(restriction, model))
        if self.dynamic is not None:
            produced = self.dynamic(model)
            if produced is not None:
                criteria.extend(_restriction_clauses(produced, model))
        return criteria


class InstanceFilterSet:
    """
    Ordered filters attached to exactly one record handle.

    Not shared between handles, not persisted, not serializable.
    """

    def __init__(self, *, log_sql: bool = True):
        self._predicates: list[FilterPredicate] = []
        self.log_sql = log_sql

    def add(self, *args: Any, dynamic: DynamicRestriction | None = None) -> None:
        """
        Append a filter. No validation and no deduplication happen here: a
        malformed restriction fails when the statement is built.
        """
        self._predicates.append(FilterPredicate(tuple(args), dynamic))

    def apply(self, statement: Any, model: type) -> Any:
        """
        Return `statement` narrowed by every filter, in insertion order.

        With no filters the same statement object is returned.
        """
        for predicate in self._predicates:
            criteria = predicate.clauses(model)
            if criteria:
                statement = statement.where(*criteria)
        return statement

    def enforce_single_row_affected(
        self,
        rowcount: int,
        statement: Any,
        *,
        operation: str,
        dialect: Dialect | None = None,
        model_name: str | None = None,
    ) -> None:
        """
        Raise InstanceFilterMismatch unless exactly one row was affected.

        The statement is only rendered on failure.
        """
        if rowcount == 1:
            return

        sql = render_sql(statement, dialect)
        extra = {
            "model": model_name,
            "operation": operation,
            "rowcount": rowcount,
            "filter_count": len(self._predicates),
        }
        if self.log_sql:
            extra["sql"] = sql

        if rowcount > 1:
            # identity condition matched several rows: schema or mapping problem
            logger.warning("instance_filters.multiple_rows_affected", extra=extra)
        else:
            logger.info("instance_filters.mismatch", extra=extra)

        raise InstanceFilterMismatch(sql, rowcount=rowcount, operation=operation, model_name=model_name)

    def clear(self) -> None:
        self._predicates.clear()

    def register(self, hooks: MutationHooks) -> None:
        """Plug this set into a handle's mutation pipeline."""
        hooks.add_rewriter(self.apply)
        hooks.on_after_delete(self.clear)
        hooks.on_after_update(self.clear)

    def __len__(self) -> int:
        return len(self._predicates)

    def __iter__(self) -> Iterator[FilterPredicate]:
        return iter(tuple(self._predicates))

    def __reduce__(self):
        raise TypeError(f"{type(self).__name__} is bound to one record handle and cannot be serialized")

    def __repr__(self) -> str:
        return f"<InstanceFilterSet(filters={len(self._predicates)})>"
