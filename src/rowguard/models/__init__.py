r"""
Centralized access to the mapped models.

Importing this package also registers every model with `Base.metadata`, which
is what `create_all` relies on.

    from rowguard.models import Item, StockLevel
"""

from .item import Item
from .stock import StockLevel

__all__ = [
    "Item",
    "StockLevel",
]
