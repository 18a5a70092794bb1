from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base

RESERVATION_ACTIVE = "active"
RESERVATION_RELEASED = "released"
RESERVATION_CONSUMED = "consumed"
RESERVATION_EXPIRED = "expired"

RESERVATION_STATUSES = (
    RESERVATION_ACTIVE,
    RESERVATION_RELEASED,
    RESERVATION_CONSUMED,
    RESERVATION_EXPIRED,
)


class Reservation(Base):
    """
    A hold of `quantity` units for one order line at one location.
    active -> released | consumed | expired; the last three are terminal.
    """
    __tablename__ = "inventory_reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    variant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), nullable=False)
    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RESERVATION_ACTIVE)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    release_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_inventory_reservations_tenant_order", "tenant_id", "order_id"),
        Index("ix_inventory_reservations_tenant_status_expires_at", "tenant_id", "status", "expires_at"),
        Index("ix_inventory_reservations_tenant_variant_location", "tenant_id", "variant_id", "location_id"),
        CheckConstraint("quantity > 0", name="ck_inventory_reservations_quantity_positive"),
    )
