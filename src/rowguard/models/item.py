from sqlalchemy import String, DateTime, Boolean, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from datetime import datetime
from rowguard.database.base import Base
import uuid


class Item(Base):
    """
    SQLAlchemy model for Item.

    A small catalogue row with a few state columns (`delete_allowed`, `status`,
    `quantity`) that callers typically guard updates and deletes with.
    """
    __tablename__ = "items"

    # Unique identifier for the item (primary key)
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Display name (must be unique and non-null)
    name: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        index=True,
        nullable=False
    )

    # Whether deleting this row is currently permitted
    delete_allowed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default="draft",
        nullable=False
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False
    )

    # Free-form note; nullable so IS NULL restrictions can be exercised
    note: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    # Timestamp for last update (auto-updated on modification)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Item(id={self.id!r}, name={self.name!r}, status={self.status!r})>"
