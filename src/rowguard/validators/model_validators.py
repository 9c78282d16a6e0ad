"""
Introspection helpers for mapped classes.

Record handles work on plain column values keyed by attribute name, so every
helper here speaks in mapper attribute keys (which can differ from the table's
column names when a model maps `foo = mapped_column("foo_col", ...)`).
"""
from typing import Any, Iterable

from sqlalchemy import UniqueConstraint, and_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession


def column_keys(model) -> list[str]:
    """Attribute keys of all mapped columns, in mapper order."""
    return [attr.key for attr in sa_inspect(model).column_attrs]


def primary_key_keys(model) -> list[str]:
    """Attribute keys of the primary key columns, in mapper (primary key) order."""
    mapper = sa_inspect(model)
    return [mapper.get_property_by_column(col).key for col in mapper.primary_key]


def _key_for_column(model, column) -> str:
    return sa_inspect(model).get_property_by_column(column).key


def find_unknown_model_kwargs(model, kwargs: dict) -> list[str]:
    """
    Return the keys of `kwargs` that are not mapped column attributes of `model`.
    - model: the SQLAlchemy model class (not instance)
    - kwargs: dict of incoming kwargs to validate
    """
    allowed = set(column_keys(model))
    return [k for k in kwargs.keys() if k not in allowed]


def get_required_columns(model) -> list[str]:
    """
    Columns that are NOT NULL and have no server/default and are not simple auto PKs.
    """
    cols = []
    for col in model.__table__.columns:
        # Exclude columns that have server defaults or client defaults or are autoincrement PKs
        has_default = col.default is not None or col.server_default is not None
        is_auto_pk = col.primary_key and col.autoincrement is True
        if not col.nullable and not has_default and not is_auto_pk:
            cols.append(_key_for_column(model, col))
    return cols


def get_unique_column_sets(model) -> list[list[str]]:
    """
    Return a list of unique attribute-key sets. Covers:
      - Column(unique=True)
      - UniqueConstraint in the table
      - Index(..., unique=True)
    """
    table = model.__table__
    unique_sets: list[list[str]] = []

    for col in table.columns:
        if col.unique:
            unique_sets.append([_key_for_column(model, col)])

    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint):
            unique_sets.append([_key_for_column(model, c) for c in constraint.columns])

    for idx in table.indexes:
        if idx.unique:
            unique_sets.append([_key_for_column(model, c) for c in idx.columns])

    return unique_sets


async def find_unique_conflicts(db: AsyncSession, model, kwargs: dict[str, Any]) -> set[str]:
    """
    Run pre-insert queries to detect existing rows that would violate unique constraints.
    Returns a set of attribute keys that conflict (best-effort).
    """
    conflicts: set[str] = set()

    for keys in get_unique_column_sets(model):
        # only check if every column of this unique set is provided
        if not all(k in kwargs for k in keys):
            continue

        conditions = [getattr(model, k) == kwargs[k] for k in keys]
        q = select(*sa_inspect(model).primary_key).where(and_(*conditions)).limit(1)

        res = await db.execute(q)
        if res.first() is not None:
            conflicts.update(keys)

    return conflicts


def normalize_identity(model, entity_id: Any) -> dict[str, Any]:
    """
    Turn a caller-supplied primary key into an `{attribute_key: value}` mapping.

    Accepts a scalar for single-column keys, a tuple/list in primary key order,
    or a mapping keyed by attribute name.
    """
    pk_keys = primary_key_keys(model)

    if isinstance(entity_id, dict):
        missing = [k for k in pk_keys if k not in entity_id]
        if missing:
            raise ValueError(f"Missing primary key value(s) for {model.__name__}: {', '.join(missing)}")
        return {k: entity_id[k] for k in pk_keys}

    if isinstance(entity_id, (tuple, list)):
        values: Iterable[Any] = entity_id
    else:
        values = (entity_id,)

    values = list(values)
    if len(values) != len(pk_keys):
        raise ValueError(
            f"{model.__name__} primary key has {len(pk_keys)} column(s), got {len(values)} value(s)"
        )
    return dict(zip(pk_keys, values))
