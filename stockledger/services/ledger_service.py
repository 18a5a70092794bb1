"""
Ledger store and movement log.

`record_movement` is the only code path that changes `on_hand` or `reserved`.
Reservation and transfer services call it inside their own atomic units;
everything else goes through `apply_movement`, `apply_movements` or `set_level`.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, system_clock
from stockledger.core.config import settings
from stockledger.core.errors import (
    InsufficientInventoryError,
    InventoryError,
    ValidationError,
    require_tenant,
)
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.observability import log_event
from stockledger.models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_SIGNS,
    RESERVED_MOVEMENT_TYPES,
    InventoryItem,
    StockMovement,
)
from stockledger.models.location import Location
from stockledger.models.product import ProductVariant
from stockledger.repositories.inventory_repository import InventoryRepository
from stockledger.services.audit_service import log_audit_event
from stockledger.services.unit_of_work import run_atomic

logger = logging.getLogger("stockledger.ledger")


@dataclass
class MovementRequest:
    tenant_id: str
    variant_id: str
    location_id: str
    quantity_delta: int
    movement_type: str
    reason: str
    reference: str | None = None
    actor: str = "system"


@dataclass
class AppliedMovement:
    index: int
    item: InventoryItem


@dataclass
class FailedMovement:
    index: int
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class BulkMovementResult:
    applied: list[AppliedMovement] = field(default_factory=list)
    failed: list[FailedMovement] = field(default_factory=list)


@dataclass
class LedgerCheck:
    tenant_id: str
    variant_id: str
    location_id: str
    on_hand: int
    reserved: int
    replayed_on_hand: int
    replayed_reserved: int
    movement_count: int

    @property
    def consistent(self) -> bool:
        return self.on_hand == self.replayed_on_hand and self.reserved == self.replayed_reserved


def zero_item(tenant_id: str, variant_id: str, location_id: str) -> InventoryItem:
    """Unsaved all-zero snapshot for a pair that has never moved."""
    return InventoryItem(
        id=None,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        on_hand=0,
        reserved=0,
        safety_stock=0,
        channel_buffers={},
        last_counted_at=None,
    )


def validate_movement(movement_type: str, quantity_delta: int) -> None:
    if movement_type not in MOVEMENT_SIGNS:
        raise ValidationError(
            f"Unknown movement type '{movement_type}'",
            details={"type": movement_type, "allowed": sorted(MOVEMENT_SIGNS)},
        )
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer", details={"field": "quantity_delta"})
    if quantity_delta == 0:
        raise ValidationError("quantity_delta cannot be zero", details={"field": "quantity_delta"})

    sign = MOVEMENT_SIGNS[movement_type]
    if (sign > 0 and quantity_delta < 0) or (sign < 0 and quantity_delta > 0):
        expected = "positive" if sign > 0 else "negative"
        raise ValidationError(
            f"{movement_type} movements must have a {expected} quantity_delta",
            details={"type": movement_type, "quantity_delta": quantity_delta},
        )


def require_text(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required", details={"field": field_name})
    return str(value).strip()


def require_catalog(
    repo: InventoryRepository,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    require_active_location: bool = False,
) -> tuple[ProductVariant, Location]:
    variant = repo.get_variant(tenant_id, variant_id)
    if variant is None:
        raise ValidationError("Unknown variant", details={"variant_id": variant_id})
    location = repo.get_location(tenant_id, location_id)
    if location is None:
        raise ValidationError("Unknown location", details={"location_id": location_id})
    if require_active_location and not location.is_active:
        raise ValidationError("Location is inactive", details={"location_id": location_id})
    return variant, location


def lock_item(
    repo: InventoryRepository,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    now: datetime,
) -> InventoryItem:
    item = repo.get_item(tenant_id, variant_id, location_id, for_update=True)
    if item is not None:
        return item
    return repo.add_item(
        InventoryItem(
            id=generate_shortuuid(),
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            on_hand=0,
            reserved=0,
            safety_stock=0,
            channel_buffers={},
            created_at=now,
            updated_at=now,
        )
    )


def record_movement(
    repo: InventoryRepository,
    item: InventoryItem,
    *,
    quantity_delta: int,
    movement_type: str,
    reason: str,
    reference: str | None,
    actor: str,
    now: datetime,
) -> StockMovement:
    """Apply one signed change to a locked item and append its movement row. Caller owns the transaction."""
    validate_movement(movement_type, quantity_delta)

    on_hand = item.on_hand
    reserved = item.reserved
    if movement_type in RESERVED_MOVEMENT_TYPES:
        reserved += quantity_delta
    else:
        on_hand += quantity_delta

    context = {
        "variant_id": item.variant_id,
        "location_id": item.location_id,
        "type": movement_type,
        "reference": reference,
    }
    if on_hand < 0:
        raise InsufficientInventoryError(
            f"Only {item.on_hand} units on hand",
            requested=-quantity_delta,
            available=item.on_hand,
            details=context,
        )
    if reserved < 0:
        raise InsufficientInventoryError(
            f"Only {item.reserved} units reserved",
            requested=-quantity_delta,
            available=item.reserved,
            details=context,
        )
    if reserved > on_hand:
        requested = quantity_delta if movement_type in RESERVED_MOVEMENT_TYPES else -quantity_delta
        raise InsufficientInventoryError(
            f"Only {item.on_hand - item.reserved} unreserved units available",
            requested=requested,
            available=item.on_hand - item.reserved,
            details=context,
        )

    item.on_hand = on_hand
    item.reserved = reserved
    item.updated_at = now

    return repo.add_movement(
        StockMovement(
            tenant_id=item.tenant_id,
            variant_id=item.variant_id,
            location_id=item.location_id,
            type=movement_type,
            quantity_delta=quantity_delta,
            reason=reason,
            reference=reference,
            actor=actor,
            on_hand_after=on_hand,
            reserved_after=reserved,
            created_at=now,
        )
    )


def log_movement(movement: StockMovement, event: str = "ledger.movement_applied") -> None:
    """Emit the structured record of a committed movement."""
    log_event(
        event,
        log=logger,
        tenant_id=movement.tenant_id,
        variant_id=movement.variant_id,
        location_id=movement.location_id,
        movement_id=movement.id,
        type=movement.type,
        quantity_delta=movement.quantity_delta,
        on_hand=movement.on_hand_after,
        reserved=movement.reserved_after,
        reason=movement.reason,
        reference=movement.reference,
        actor=movement.actor,
    )


def get_item(db: Session, *, tenant_id: str, variant_id: str, location_id: str) -> InventoryItem | None:
    tenant_id = require_tenant(tenant_id)
    return InventoryRepository(db).get_item(tenant_id, variant_id, location_id)


def get_item_or_zero(db: Session, *, tenant_id: str, variant_id: str, location_id: str) -> InventoryItem:
    item = get_item(db, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
    if item is None:
        return zero_item(require_tenant(tenant_id), variant_id, location_id)
    return item


def list_items(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str | None = None,
    location_id: str | None = None,
) -> list[InventoryItem]:
    tenant_id = require_tenant(tenant_id)
    return InventoryRepository(db).list_items(tenant_id, variant_id=variant_id, location_id=location_id)


def apply_movement(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    quantity_delta: int,
    movement_type: str,
    reason: str,
    reference: str | None = None,
    actor: str,
    clock: Clock = system_clock,
) -> InventoryItem:
    tenant_id = require_tenant(tenant_id)
    validate_movement(movement_type, quantity_delta)
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")

    def _apply(session: Session) -> tuple[InventoryItem, StockMovement]:
        repo = InventoryRepository(session)
        require_catalog(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
        now = clock.now()
        item = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id, now=now)
        movement = record_movement(
            repo,
            item,
            quantity_delta=quantity_delta,
            movement_type=movement_type,
            reason=reason,
            reference=reference,
            actor=actor,
            now=now,
        )
        return item, movement

    item, movement = run_atomic(db, "apply_movement", _apply)
    log_movement(movement)
    return item


def apply_movements(
    db: Session,
    requests: list[MovementRequest],
    *,
    clock: Clock = system_clock,
) -> BulkMovementResult:
    """Each entry is its own atomic unit; earlier successes stay committed when a later one fails."""
    result = BulkMovementResult()
    for index, request in enumerate(requests):
        try:
            item = apply_movement(
                db,
                tenant_id=request.tenant_id,
                variant_id=request.variant_id,
                location_id=request.location_id,
                quantity_delta=request.quantity_delta,
                movement_type=request.movement_type,
                reason=request.reason,
                reference=request.reference,
                actor=request.actor,
                clock=clock,
            )
        except InventoryError as exc:
            result.failed.append(
                FailedMovement(index=index, code=exc.code, message=exc.message, details=exc.details)
            )
            continue
        result.applied.append(AppliedMovement(index=index, item=item))

    log_event(
        "ledger.bulk_applied",
        log=logger,
        applied=len(result.applied),
        failed=len(result.failed),
    )
    return result


def set_level(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    new_on_hand: int,
    reason: str = "physical_count",
    actor: str,
    clock: Clock = system_clock,
) -> InventoryItem:
    tenant_id = require_tenant(tenant_id)
    if isinstance(new_on_hand, bool) or not isinstance(new_on_hand, int) or new_on_hand < 0:
        raise ValidationError("new_on_hand must be a non-negative integer", details={"field": "new_on_hand"})
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")

    def _set(session: Session) -> tuple[InventoryItem, StockMovement | None]:
        repo = InventoryRepository(session)
        require_catalog(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
        now = clock.now()
        item = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id, now=now)
        previous = item.on_hand
        delta = new_on_hand - previous
        movement = None
        if delta != 0:
            movement = record_movement(
                repo,
                item,
                quantity_delta=delta,
                movement_type=MOVEMENT_ADJUSTMENT,
                reason=reason,
                reference=None,
                actor=actor,
                now=now,
            )
        item.last_counted_at = now
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="inventory.level.set",
            target_type="inventory_item",
            target_id=item.id,
            metadata_json={
                "variant_id": variant_id,
                "location_id": location_id,
                "previous_on_hand": previous,
                "new_on_hand": new_on_hand,
                "reason": reason,
            },
        )
        return item, movement

    item, movement = run_atomic(db, "set_level", _set)
    if movement is not None:
        log_movement(movement)
    return item


def set_safety_stock(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    safety_stock: int,
    actor: str,
    clock: Clock = system_clock,
) -> InventoryItem:
    tenant_id = require_tenant(tenant_id)
    if isinstance(safety_stock, bool) or not isinstance(safety_stock, int) or safety_stock < 0:
        raise ValidationError("safety_stock must be a non-negative integer", details={"field": "safety_stock"})
    actor = require_text(actor, "actor")

    def _set(session: Session) -> tuple[InventoryItem, int]:
        repo = InventoryRepository(session)
        require_catalog(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
        now = clock.now()
        item = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id, now=now)
        previous = item.safety_stock
        item.safety_stock = safety_stock
        item.updated_at = now
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="inventory.safety_stock.set",
            target_type="inventory_item",
            target_id=item.id,
            metadata_json={
                "variant_id": variant_id,
                "location_id": location_id,
                "previous": previous,
                "safety_stock": safety_stock,
            },
        )
        return item, previous

    item, previous = run_atomic(db, "set_safety_stock", _set)
    log_event(
        "ledger.safety_stock_set",
        log=logger,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        previous=previous,
        safety_stock=safety_stock,
        actor=actor,
    )
    return item


def get_stock_history(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str | None = None,
    limit: int | None = None,
) -> list[StockMovement]:
    tenant_id = require_tenant(tenant_id)
    if limit is None:
        limit = settings.stock_history_default_limit
    if limit <= 0:
        raise ValidationError("limit must be greater than 0", details={"field": "limit"})
    return InventoryRepository(db).list_movements(tenant_id, variant_id, location_id=location_id, limit=limit)


def verify_item(db: Session, *, tenant_id: str, variant_id: str, location_id: str) -> LedgerCheck:
    tenant_id = require_tenant(tenant_id)
    repo = InventoryRepository(db)
    item = repo.get_item(tenant_id, variant_id, location_id) or zero_item(tenant_id, variant_id, location_id)
    replayed_on_hand, replayed_reserved, movement_count = repo.movement_totals(tenant_id, variant_id, location_id)
    check = LedgerCheck(
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        on_hand=item.on_hand,
        reserved=item.reserved,
        replayed_on_hand=replayed_on_hand,
        replayed_reserved=replayed_reserved,
        movement_count=movement_count,
    )
    if not check.consistent:
        log_event(
            "ledger.drift_detected",
            level=logging.ERROR,
            log=logger,
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            on_hand=check.on_hand,
            replayed_on_hand=replayed_on_hand,
            reserved=check.reserved,
            replayed_reserved=replayed_reserved,
        )
    return check
