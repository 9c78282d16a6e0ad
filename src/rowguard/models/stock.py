from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from rowguard.database.base import Base


class StockLevel(Base):
    """
    Per-warehouse stock for a SKU.

    Uses a composite primary key (warehouse, sku) so identity conditions span
    more than one column.
    """
    __tablename__ = "stock_levels"

    warehouse: Mapped[str] = mapped_column(String(20), primary_key=True)
    sku: Mapped[str] = mapped_column(String(40), primary_key=True)

    on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<StockLevel(warehouse={self.warehouse!r}, sku={self.sku!r}, on_hand={self.on_hand!r})>"
