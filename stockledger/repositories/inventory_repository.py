"""
Tenant-scoped data access for the inventory engine.

Every method takes the tenant id and filters by it inside the query. The one
deliberate exception is `list_expired_reservations(tenant_id=None)`, used by the
system sweeper; it only returns (tenant_id, id) pairs and every follow-up write
is tenant-scoped again.
"""
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from stockledger.models.inventory import (
    MOVEMENT_SALE,
    ON_HAND_MOVEMENT_TYPES,
    RESERVED_MOVEMENT_TYPES,
    InventoryItem,
    StockMovement,
)
from stockledger.models.location import Location
from stockledger.models.product import Product, ProductVariant
from stockledger.models.reservation import RESERVATION_ACTIVE, Reservation
from stockledger.models.transfer import StockTransfer


class InventoryRepository:
    def __init__(self, db: Session):
        self.db = db

    # catalog

    def get_variant(self, tenant_id: str, variant_id: str) -> ProductVariant | None:
        return self.db.execute(
            select(ProductVariant).where(
                ProductVariant.tenant_id == tenant_id,
                ProductVariant.id == variant_id,
            )
        ).scalar_one_or_none()

    def get_location(self, tenant_id: str, location_id: str) -> Location | None:
        return self.db.execute(
            select(Location).where(
                Location.tenant_id == tenant_id,
                Location.id == location_id,
            )
        ).scalar_one_or_none()

    def list_locations(self, tenant_id: str, *, active_only: bool = True) -> list[Location]:
        stmt = select(Location).where(Location.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(Location.is_active.is_(True))
        return list(self.db.execute(stmt.order_by(Location.code.asc())).scalars().all())

    def variant_catalog(
        self,
        tenant_id: str,
        variant_ids: Iterable[str],
    ) -> dict[str, tuple[ProductVariant, Product]]:
        ids = list(set(variant_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductVariant, Product)
            .join(
                Product,
                (Product.id == ProductVariant.product_id) & (Product.tenant_id == ProductVariant.tenant_id),
            )
            .where(
                ProductVariant.tenant_id == tenant_id,
                ProductVariant.id.in_(ids),
            )
        ).all()
        return {variant.id: (variant, product) for variant, product in rows}

    # items

    def get_item(
        self,
        tenant_id: str,
        variant_id: str,
        location_id: str,
        *,
        for_update: bool = False,
    ) -> InventoryItem | None:
        stmt = select(InventoryItem).where(
            InventoryItem.tenant_id == tenant_id,
            InventoryItem.variant_id == variant_id,
            InventoryItem.location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add_item(self, item: InventoryItem) -> InventoryItem:
        self.db.add(item)
        # Surfaces a concurrent lazy-create as IntegrityError inside the atomic unit.
        self.db.flush()
        return item

    def list_items(
        self,
        tenant_id: str,
        *,
        variant_id: str | None = None,
        location_id: str | None = None,
    ) -> list[InventoryItem]:
        stmt = select(InventoryItem).where(InventoryItem.tenant_id == tenant_id)
        if variant_id:
            stmt = stmt.where(InventoryItem.variant_id == variant_id)
        if location_id:
            stmt = stmt.where(InventoryItem.location_id == location_id)
        stmt = stmt.order_by(InventoryItem.variant_id.asc(), InventoryItem.location_id.asc())
        return list(self.db.execute(stmt).scalars().all())

    # movements

    def add_movement(self, movement: StockMovement) -> StockMovement:
        self.db.add(movement)
        self.db.flush()
        return movement

    def list_movements(
        self,
        tenant_id: str,
        variant_id: str,
        *,
        location_id: str | None = None,
        limit: int = 50,
    ) -> list[StockMovement]:
        stmt = select(StockMovement).where(
            StockMovement.tenant_id == tenant_id,
            StockMovement.variant_id == variant_id,
        )
        if location_id:
            stmt = stmt.where(StockMovement.location_id == location_id)
        stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def movement_totals(self, tenant_id: str, variant_id: str, location_id: str) -> tuple[int, int, int]:
        """Replays the log: (sum of on-hand deltas, sum of reserved deltas, movement count)."""
        on_hand_sum = func.coalesce(
            func.sum(
                case(
                    (StockMovement.type.in_(ON_HAND_MOVEMENT_TYPES), StockMovement.quantity_delta),
                    else_=0,
                )
            ),
            0,
        )
        reserved_sum = func.coalesce(
            func.sum(
                case(
                    (StockMovement.type.in_(RESERVED_MOVEMENT_TYPES), StockMovement.quantity_delta),
                    else_=0,
                )
            ),
            0,
        )
        row = self.db.execute(
            select(on_hand_sum, reserved_sum, func.count(StockMovement.id)).where(
                StockMovement.tenant_id == tenant_id,
                StockMovement.variant_id == variant_id,
                StockMovement.location_id == location_id,
            )
        ).one()
        return int(row[0]), int(row[1]), int(row[2])

    def sale_totals(
        self,
        tenant_id: str,
        *,
        since: datetime,
        until: datetime | None = None,
        variant_id: str | None = None,
        location_id: str | None = None,
    ) -> dict[tuple[str, str], tuple[int, int]]:
        """Units sold and number of sale movements per (variant, location) in [since, until)."""
        stmt = select(
            StockMovement.variant_id,
            StockMovement.location_id,
            func.coalesce(func.sum(-StockMovement.quantity_delta), 0),
            func.count(StockMovement.id),
        ).where(
            StockMovement.tenant_id == tenant_id,
            StockMovement.type == MOVEMENT_SALE,
            StockMovement.created_at >= since,
        )
        if until is not None:
            stmt = stmt.where(StockMovement.created_at < until)
        if variant_id:
            stmt = stmt.where(StockMovement.variant_id == variant_id)
        if location_id:
            stmt = stmt.where(StockMovement.location_id == location_id)
        stmt = stmt.group_by(StockMovement.variant_id, StockMovement.location_id)
        return {
            (row_variant, row_location): (int(units), int(count))
            for row_variant, row_location, units, count in self.db.execute(stmt).all()
        }

    def last_sale_dates(
        self,
        tenant_id: str,
        *,
        location_id: str | None = None,
    ) -> dict[tuple[str, str], datetime]:
        stmt = select(
            StockMovement.variant_id,
            StockMovement.location_id,
            func.max(StockMovement.created_at),
        ).where(
            StockMovement.tenant_id == tenant_id,
            StockMovement.type == MOVEMENT_SALE,
        )
        if location_id:
            stmt = stmt.where(StockMovement.location_id == location_id)
        stmt = stmt.group_by(StockMovement.variant_id, StockMovement.location_id)
        return {
            (row_variant, row_location): last_sale
            for row_variant, row_location, last_sale in self.db.execute(stmt).all()
        }

    # reservations

    def get_reservation(self, tenant_id: str, reservation_id: str) -> Reservation | None:
        return self.db.execute(
            select(Reservation).where(
                Reservation.tenant_id == tenant_id,
                Reservation.id == reservation_id,
            )
        ).scalar_one_or_none()

    def add_reservation(self, reservation: Reservation) -> Reservation:
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def list_reservations(
        self,
        tenant_id: str,
        *,
        order_id: str | None = None,
        status: str | None = None,
        variant_id: str | None = None,
        created_since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Reservation]:
        stmt = select(Reservation).where(Reservation.tenant_id == tenant_id)
        if order_id:
            stmt = stmt.where(Reservation.order_id == order_id)
        if status:
            stmt = stmt.where(Reservation.status == status)
        if variant_id:
            stmt = stmt.where(Reservation.variant_id == variant_id)
        if created_since is not None:
            stmt = stmt.where(Reservation.created_at >= created_since)
        stmt = stmt.order_by(Reservation.created_at.asc(), Reservation.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def list_expired_reservations(
        self,
        now: datetime,
        *,
        tenant_id: str | None = None,
        limit: int = 50,
    ) -> list[tuple[str, str]]:
        stmt = select(Reservation.tenant_id, Reservation.id).where(
            Reservation.status == RESERVATION_ACTIVE,
            Reservation.expires_at <= now,
        )
        if tenant_id is not None:
            stmt = stmt.where(Reservation.tenant_id == tenant_id)
        stmt = stmt.order_by(Reservation.expires_at.asc()).limit(limit)
        return [(row_tenant, row_id) for row_tenant, row_id in self.db.execute(stmt).all()]

    def transition_reservation(
        self,
        tenant_id: str,
        reservation_id: str,
        *,
        from_status: str,
        **values,
    ) -> bool:
        """Conditional UPDATE gated on the current status. False means another writer got there first."""
        result = self.db.execute(
            update(Reservation)
            .where(
                Reservation.tenant_id == tenant_id,
                Reservation.id == reservation_id,
                Reservation.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # transfers

    def get_transfer(self, tenant_id: str, transfer_id: str) -> StockTransfer | None:
        return self.db.execute(
            select(StockTransfer).where(
                StockTransfer.tenant_id == tenant_id,
                StockTransfer.id == transfer_id,
            )
        ).scalar_one_or_none()

    def add_transfer(self, transfer: StockTransfer) -> StockTransfer:
        self.db.add(transfer)
        self.db.flush()
        return transfer

    def list_transfers(
        self,
        tenant_id: str,
        *,
        variant_id: str | None = None,
        location_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[StockTransfer], int]:
        filters = [StockTransfer.tenant_id == tenant_id]
        if variant_id:
            filters.append(StockTransfer.variant_id == variant_id)
        if location_id:
            filters.append(
                (StockTransfer.from_location_id == location_id) | (StockTransfer.to_location_id == location_id)
            )
        if status:
            filters.append(StockTransfer.status == status)
        total = int(self.db.execute(select(func.count(StockTransfer.id)).where(*filters)).scalar_one())
        rows = self.db.execute(
            select(StockTransfer)
            .where(*filters)
            .order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return list(rows), total

    def transition_transfer(
        self,
        tenant_id: str,
        transfer_id: str,
        *,
        from_status: str,
        **values,
    ) -> bool:
        result = self.db.execute(
            update(StockTransfer)
            .where(
                StockTransfer.tenant_id == tenant_id,
                StockTransfer.id == transfer_id,
                StockTransfer.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
