from .base import (
    RepositoryError,
    NotFoundError,
    DuplicateError,
    InvalidFieldError,
    InstanceFilterMismatch,
)
from .mapper import db_error_handler

__all__ = [
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "InvalidFieldError",
    "InstanceFilterMismatch",
    "db_error_handler",
]
