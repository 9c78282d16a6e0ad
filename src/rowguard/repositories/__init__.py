from .base_repository import BaseRepository
from .item_repository import ItemRepository
from .stock_repository import StockLevelRepository

__all__ = ["BaseRepository", "ItemRepository", "StockLevelRepository"]
