from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

MOVEMENT_SALE = "sale"
MOVEMENT_RESTOCK = "restock"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_TRANSFER_OUT = "transfer_out"
MOVEMENT_TRANSFER_IN = "transfer_in"
MOVEMENT_RESERVATION_HOLD = "reservation_hold"
MOVEMENT_RESERVATION_RELEASE = "reservation_release"

ON_HAND_MOVEMENT_TYPES = frozenset(
    {
        MOVEMENT_SALE,
        MOVEMENT_RESTOCK,
        MOVEMENT_ADJUSTMENT,
        MOVEMENT_RETURN,
        MOVEMENT_TRANSFER_OUT,
        MOVEMENT_TRANSFER_IN,
    }
)
RESERVED_MOVEMENT_TYPES = frozenset({MOVEMENT_RESERVATION_HOLD, MOVEMENT_RESERVATION_RELEASE})
MOVEMENT_TYPES = ON_HAND_MOVEMENT_TYPES | RESERVED_MOVEMENT_TYPES

# +1: delta must be positive, -1: negative, 0: any non-zero delta.
MOVEMENT_SIGNS: dict[str, int] = {
    MOVEMENT_SALE: -1,
    MOVEMENT_TRANSFER_OUT: -1,
    MOVEMENT_RESTOCK: 1,
    MOVEMENT_RETURN: 1,
    MOVEMENT_TRANSFER_IN: 1,
    MOVEMENT_ADJUSTMENT: 0,
    MOVEMENT_RESERVATION_HOLD: 1,
    MOVEMENT_RESERVATION_RELEASE: -1,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryItem(Base):
    """
    Materialised counters for one (tenant, variant, location).
    Counters only change through the ledger service, which appends a StockMovement
    in the same transaction. Rows are zeroed, never deleted.
    """
    __tablename__ = "inventory_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    variant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    safety_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    channel_buffers: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    last_counted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "variant_id", "location_id", name="uq_inventory_items_tenant_variant_location"),
        Index("ix_inventory_items_tenant_location", "tenant_id", "location_id"),
        CheckConstraint("on_hand >= 0", name="ck_inventory_items_on_hand_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_inventory_items_reserved_non_negative"),
        CheckConstraint("reserved <= on_hand", name="ck_inventory_items_reserved_within_on_hand"),
    )

    def buffer_for(self, channel: str) -> int:
        return int((self.channel_buffers or {}).get(channel, 0))


class StockMovement(Base):
    """
    One row per signed quantity change. Append-only: see db/immutability.py.
    on_hand_after / reserved_after snapshot the counters right after the change.
    The integer id is the tie-breaker for movements sharing a timestamp.
    """
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    variant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), nullable=False)

    type: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # order id, transfer id
    actor: Mapped[str] = mapped_column(String(64), nullable=False)

    on_hand_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index(
            "ix_stock_movements_tenant_variant_location_created_at",
            "tenant_id",
            "variant_id",
            "location_id",
            "created_at",
        ),
        Index("ix_stock_movements_tenant_type_created_at", "tenant_id", "type", "created_at"),
    )
