"""
Stock level repository (composite primary key: warehouse, sku).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.config.settings import Settings
from rowguard.models.stock import StockLevel
from rowguard.records.handle import RecordHandle
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class StockLevelRepository(BaseRepository[StockLevel]):

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        super().__init__(StockLevel, db, settings)

    async def reserve(self, warehouse: str, sku: str, quantity: int) -> RecordHandle[StockLevel]:
        """
        Reserve `quantity` units.

        The update only applies if `reserved` is unchanged since the read and
        enough unreserved stock is left at the time the UPDATE runs.

        Raises:
            NotFoundError: unknown (warehouse, sku).
            InstanceFilterMismatch: not enough stock, or a concurrent reservation won.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        level = await self.get_or_raise((warehouse, sku))
        level.instance_filter(
            {"reserved": level.reserved},
            dynamic=lambda model: model.on_hand - model.reserved >= quantity,
        )
        await level.update(reserved=level.reserved + quantity)

        logger.info(
            "stock.reserved",
            extra={"warehouse": warehouse, "sku": sku, "quantity": quantity},
        )
        return level

    async def release(self, warehouse: str, sku: str, quantity: int) -> RecordHandle[StockLevel]:
        """Give back `quantity` reserved units; never drives `reserved` below zero."""
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        level = await self.get_or_raise((warehouse, sku))
        level.instance_filter({"reserved": level.reserved}, StockLevel.reserved >= quantity)
        return await level.update(reserved=level.reserved - quantity)
