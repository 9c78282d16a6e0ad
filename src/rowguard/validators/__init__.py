from .model_validators import (
    column_keys,
    primary_key_keys,
    find_unknown_model_kwargs,
    get_required_columns,
    find_unique_conflicts,
    normalize_identity,
)

__all__ = [
    "column_keys",
    "primary_key_keys",
    "find_unknown_model_kwargs",
    "get_required_columns",
    "find_unique_conflicts",
    "normalize_identity",
]
