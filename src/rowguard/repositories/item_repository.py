"""
Item repository.

Adds item lookups and the guarded state transitions used across the catalogue:
each one loads a handle, narrows it with instance filters describing the state
the row must still be in, and mutates it. If another transaction moved the row
out of that state in the meantime, `InstanceFilterMismatch` is raised and
nothing is written.
"""

from typing import Any
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.config.settings import Settings
from rowguard.models.item import Item
from rowguard.records.handle import RecordHandle
from .base_repository import BaseRepository, RepositoryError

logger = logging.getLogger(__name__)


class ItemRepository(BaseRepository[Item]):
    """
    Repository for Item rows.
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        super().__init__(Item, db, settings)

    # =================================================================================================================
    # Read Operations
    # =================================================================================================================

    async def get_by_name(self, name: str) -> RecordHandle[Item] | None:
        return await self.find_by_field("name", name)

    async def list_by_status(self, status: str, offset: int = 0, limit: int = 100) -> list[RecordHandle[Item]]:
        query = (
            self._select_columns()
            .where(Item.status == status)
            .order_by(Item.name)
            .offset(offset)
            .limit(limit)
        )
        try:
            result = await self.db.execute(query)
            rows = result.all()
        except Exception as e:
            logger.error(f"Error listing items with status {status!r}: {e}")
            raise RepositoryError("Failed to list items") from e
        return [self._wrap_row(row) for row in rows]

    # =================================================================================================================
    # Guarded Transitions
    # =================================================================================================================

    async def delete_if_allowed(self, item_id: Any) -> None:
        """
        Delete the item only while its row has `delete_allowed` set.

        Raises:
            NotFoundError: no such item.
            InstanceFilterMismatch: the row does not (or no longer) allow deletion.
        """
        item = await self.get_or_raise(item_id)
        item.instance_filter({"delete_allowed": True})
        await item.delete()
        logger.info("item.deleted", extra={"item_id": str(item.id)})

    async def publish(self, item_id: Any) -> RecordHandle[Item]:
        """draft -> published, only for items with stock."""
        item = await self.get_or_raise(item_id)
        item.instance_filter({"status": "draft"}, Item.quantity > 0)
        return await item.update(status="published")

    async def archive(self, item_id: Any) -> RecordHandle[Item]:
        """published -> archived; archived items can be deleted."""
        item = await self.get_or_raise(item_id)
        item.instance_filter({"status": "published"})
        return await item.update(status="archived", delete_allowed=True)

    async def adjust_quantity(self, item_id: Any, delta: int) -> RecordHandle[Item]:
        """
        Change the quantity by `delta`, checking the row still holds the quantity
        that was read (so two concurrent adjustments cannot both apply) and that
        the result would not go negative.
        """
        item = await self.get_or_raise(item_id)
        item.instance_filter({"quantity": item.quantity})
        if delta < 0:
            item.instance_filter(Item.quantity >= -delta)
        return await item.update(quantity=item.quantity + delta)
