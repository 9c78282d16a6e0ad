from .builder import setup_logging, make_dict_config
from .filters import (
    OperationIdFilter,
    RedactFilter,
    get_operation_id,
    operation_scope,
    set_operation_id,
)

__all__ = [
    "setup_logging",
    "make_dict_config",
    "OperationIdFilter",
    "RedactFilter",
    "get_operation_id",
    "operation_scope",
    "set_operation_id",
]
