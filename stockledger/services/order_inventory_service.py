"""
Order lifecycle signals translated into ledger operations.

Each signal is one atomic unit across all of the order's lines: either every
line is reserved (consumed, released, returned) or none is.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, system_clock
from stockledger.core.errors import ValidationError, require_positive_quantity, require_tenant
from stockledger.core.observability import log_event
from stockledger.models.inventory import MOVEMENT_RETURN, InventoryItem, StockMovement
from stockledger.models.reservation import RESERVATION_ACTIVE, RESERVATION_CONSUMED, Reservation
from stockledger.repositories.inventory_repository import InventoryRepository
from stockledger.services.audit_service import log_audit_event
from stockledger.services.ledger_service import (
    lock_item,
    log_movement,
    record_movement,
    require_catalog,
    require_text,
)
from stockledger.services.reservation_service import (
    consume_in_transaction,
    hold_in_transaction,
    log_transition,
    release_in_transaction,
    resolve_ttl,
)
from stockledger.services.unit_of_work import run_atomic

logger = logging.getLogger("stockledger.orders")


@dataclass
class OrderLine:
    variant_id: str
    location_id: str
    quantity: int


def _validate_lines(line_items: list[OrderLine]) -> list[OrderLine]:
    if not line_items:
        raise ValidationError("line_items cannot be empty", details={"field": "line_items"})
    for index, line in enumerate(line_items):
        require_positive_quantity(line.quantity, field=f"line_items[{index}].quantity")
    # Stable lock order across concurrent orders touching the same items.
    return sorted(line_items, key=lambda line: (line.variant_id, line.location_id))


def _log_order(event: str, *, tenant_id: str, order_id: str, actor: str, **fields) -> None:
    log_event(event, log=logger, tenant_id=tenant_id, order_id=order_id, actor=actor, **fields)


def order_created(
    db: Session,
    *,
    tenant_id: str,
    order_id: str,
    line_items: list[OrderLine],
    ttl: timedelta | None = None,
    actor: str,
    clock: Clock = system_clock,
) -> list[Reservation]:
    """
    Reserve every line or none. An order that already holds active reservations
    gets them back unchanged, so a redelivered signal does not double-reserve.
    """
    tenant_id = require_tenant(tenant_id)
    order_id = require_text(order_id, "order_id")
    actor = require_text(actor, "actor")
    lines = _validate_lines(line_items)
    ttl = resolve_ttl(ttl)

    def _reserve_all(session: Session) -> tuple[list[Reservation], list[StockMovement]]:
        existing = InventoryRepository(session).list_reservations(
            tenant_id,
            order_id=order_id,
            status=RESERVATION_ACTIVE,
        )
        if existing:
            return existing, []
        now = clock.now()
        reservations: list[Reservation] = []
        movements: list[StockMovement] = []
        for line in lines:
            reservation, movement = hold_in_transaction(
                session,
                tenant_id=tenant_id,
                variant_id=line.variant_id,
                location_id=line.location_id,
                quantity=line.quantity,
                order_id=order_id,
                ttl=ttl,
                actor=actor,
                now=now,
            )
            reservations.append(reservation)
            movements.append(movement)
        return reservations, movements

    reservations, movements = run_atomic(db, "order_created", _reserve_all)
    for movement in movements:
        log_movement(movement)
    if movements:
        for reservation in reservations:
            log_transition("reservation.created", reservation, actor, expires_at=reservation.expires_at)
    _log_order(
        "order.reserved",
        tenant_id=tenant_id,
        order_id=order_id,
        actor=actor,
        reservations=len(reservations),
        replayed=not movements,
    )
    return reservations


def order_fulfilled(
    db: Session,
    *,
    tenant_id: str,
    order_id: str,
    actor: str,
    clock: Clock = system_clock,
) -> list[Reservation]:
    """Consume every active reservation of the order. Already-consumed ones are returned as they are."""
    tenant_id = require_tenant(tenant_id)
    order_id = require_text(order_id, "order_id")
    actor = require_text(actor, "actor")

    def _consume_all(session: Session) -> tuple[list[Reservation], list[StockMovement], int]:
        reservations = InventoryRepository(session).list_reservations(tenant_id, order_id=order_id)
        now = clock.now()
        movements: list[StockMovement] = []
        settled: list[Reservation] = []
        consumed = 0
        for reservation in reservations:
            if reservation.status == RESERVATION_ACTIVE:
                reservation, step = consume_in_transaction(
                    session,
                    tenant_id=tenant_id,
                    reservation_id=reservation.id,
                    actor=actor,
                    now=now,
                )
                movements.extend(step)
                consumed += 1
                settled.append(reservation)
            elif reservation.status == RESERVATION_CONSUMED:
                settled.append(reservation)
        return settled, movements, consumed

    reservations, movements, consumed = run_atomic(db, "order_fulfilled", _consume_all)
    for movement in movements:
        log_movement(movement)
    _log_order("order.fulfilled", tenant_id=tenant_id, order_id=order_id, actor=actor, consumed=consumed)
    return reservations


def order_cancelled(
    db: Session,
    *,
    tenant_id: str,
    order_id: str,
    reason: str = "order_cancelled",
    actor: str,
    clock: Clock = system_clock,
) -> list[Reservation]:
    """Release every active reservation of the order; consumed ones are left alone."""
    tenant_id = require_tenant(tenant_id)
    order_id = require_text(order_id, "order_id")
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")

    def _release_all(session: Session) -> tuple[list[Reservation], list[StockMovement]]:
        reservations = InventoryRepository(session).list_reservations(
            tenant_id,
            order_id=order_id,
            status=RESERVATION_ACTIVE,
        )
        now = clock.now()
        released: list[Reservation] = []
        movements: list[StockMovement] = []
        for reservation in reservations:
            reservation, movement = release_in_transaction(
                session,
                tenant_id=tenant_id,
                reservation_id=reservation.id,
                reason=reason,
                actor=actor,
                now=now,
            )
            released.append(reservation)
            if movement is not None:
                movements.append(movement)
        return released, movements

    reservations, movements = run_atomic(db, "order_cancelled", _release_all)
    for movement in movements:
        log_movement(movement)
    for reservation in reservations:
        log_transition("reservation.released", reservation, actor, reason=reason)
    _log_order("order.cancelled", tenant_id=tenant_id, order_id=order_id, actor=actor, released=len(movements))
    return reservations


def order_returned(
    db: Session,
    *,
    tenant_id: str,
    order_id: str,
    line_items: list[OrderLine],
    reason: str = "order_returned",
    actor: str,
    clock: Clock = system_clock,
) -> list[InventoryItem]:
    """Compensating `return` movements for the returned lines."""
    tenant_id = require_tenant(tenant_id)
    order_id = require_text(order_id, "order_id")
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")
    lines = _validate_lines(line_items)

    def _return_all(session: Session) -> tuple[list[InventoryItem], list[StockMovement]]:
        repo = InventoryRepository(session)
        now = clock.now()
        items: list[InventoryItem] = []
        movements: list[StockMovement] = []
        for line in lines:
            require_catalog(repo, tenant_id=tenant_id, variant_id=line.variant_id, location_id=line.location_id)
            item = lock_item(
                repo,
                tenant_id=tenant_id,
                variant_id=line.variant_id,
                location_id=line.location_id,
                now=now,
            )
            movements.append(
                record_movement(
                    repo,
                    item,
                    quantity_delta=line.quantity,
                    movement_type=MOVEMENT_RETURN,
                    reason=reason,
                    reference=order_id,
                    actor=actor,
                    now=now,
                )
            )
            if item not in items:
                items.append(item)
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="order.return",
            target_type="order",
            target_id=order_id,
            metadata_json={
                "order_id": order_id,
                "lines": [
                    {"variant_id": line.variant_id, "location_id": line.location_id, "quantity": line.quantity}
                    for line in lines
                ],
            },
        )
        return items, movements

    items, movements = run_atomic(db, "order_returned", _return_all)
    for movement in movements:
        log_movement(movement)
    _log_order("order.returned", tenant_id=tenant_id, order_id=order_id, actor=actor, lines=len(lines))
    return items
