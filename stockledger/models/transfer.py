from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

TRANSFER_PENDING = "pending"
TRANSFER_COMPLETED = "completed"
TRANSFER_CANCELLED = "cancelled"

TRANSFER_STATUSES = (TRANSFER_PENDING, TRANSFER_COMPLETED, TRANSFER_CANCELLED)


class StockTransfer(Base):
    """
    Units in transit between two locations of one tenant.
    Source stock is debited when the row is created as `pending`; the destination is
    credited on completion, or the source re-credited on cancellation.
    """
    __tablename__ = "inventory_transfers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    variant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    from_location_id: Mapped[str] = mapped_column(String(36), nullable=False)
    to_location_id: Mapped[str] = mapped_column(String(36), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TRANSFER_PENDING)
    reason: Mapped[str] = mapped_column(String(100), nullable=False, default="rebalance")
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_inventory_transfers_tenant_status_created_at", "tenant_id", "status", "created_at"),
        Index("ix_inventory_transfers_tenant_variant", "tenant_id", "variant_id"),
        CheckConstraint("quantity > 0", name="ck_inventory_transfers_quantity_positive"),
        CheckConstraint("from_location_id <> to_location_id", name="ck_inventory_transfers_distinct_locations"),
    )
