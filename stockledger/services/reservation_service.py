"""
Reservation manager: holds against the ledger on behalf of orders.

A reservation's status column is the single-writer gate. Every transition out
of `active` is a conditional UPDATE ... WHERE status = 'active'; whichever
transaction commits first wins and the other sees zero rows.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, as_utc, system_clock
from stockledger.core.config import settings
from stockledger.core.errors import (
    InsufficientInventoryError,
    InvalidStateTransitionError,
    InventoryError,
    NotFoundError,
    ValidationError,
    require_positive_quantity,
    require_tenant,
)
from stockledger.core.id_utils import generate_shortuuid
from stockledger.core.observability import log_event
from stockledger.models.inventory import (
    MOVEMENT_RESERVATION_HOLD,
    MOVEMENT_RESERVATION_RELEASE,
    MOVEMENT_SALE,
    StockMovement,
)
from stockledger.models.reservation import (
    RESERVATION_ACTIVE,
    RESERVATION_CONSUMED,
    RESERVATION_EXPIRED,
    RESERVATION_RELEASED,
    RESERVATION_STATUSES,
    Reservation,
)
from stockledger.repositories.inventory_repository import InventoryRepository
from stockledger.services.audit_service import log_audit_event
from stockledger.services.ledger_service import (
    lock_item,
    log_movement,
    record_movement,
    require_catalog,
    require_text,
)
from stockledger.services.unit_of_work import run_atomic

logger = logging.getLogger("stockledger.reservations")

SWEEPER_ACTOR = "system:reservation-sweeper"


@dataclass
class ReleasedInventory:
    variant_id: str
    location_id: str
    quantity: int


@dataclass
class SweepResult:
    total_expired: int = 0
    total_released: int = 0
    total_failed: int = 0
    released_inventory: list[ReleasedInventory] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def add_release(self, variant_id: str, location_id: str, quantity: int) -> None:
        self.total_released += 1
        for entry in self.released_inventory:
            if entry.variant_id == variant_id and entry.location_id == location_id:
                entry.quantity += quantity
                return
        self.released_inventory.append(ReleasedInventory(variant_id, location_id, quantity))


def resolve_ttl(ttl: timedelta | None) -> timedelta:
    if ttl is None:
        return timedelta(minutes=settings.reservation_default_ttl_minutes)
    if ttl <= timedelta(0):
        raise ValidationError("ttl must be positive", details={"field": "ttl"})
    if ttl > timedelta(minutes=settings.reservation_max_ttl_minutes):
        raise ValidationError(
            f"ttl cannot exceed {settings.reservation_max_ttl_minutes} minutes",
            details={"field": "ttl", "max_minutes": settings.reservation_max_ttl_minutes},
        )
    return ttl


def log_transition(event: str, reservation: Reservation, actor: str, **fields) -> None:
    log_event(
        event,
        log=logger,
        tenant_id=reservation.tenant_id,
        reservation_id=reservation.id,
        order_id=reservation.order_id,
        variant_id=reservation.variant_id,
        location_id=reservation.location_id,
        quantity=reservation.quantity,
        status=reservation.status,
        actor=actor,
        **fields,
    )


def hold_in_transaction(
    session: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    quantity: int,
    order_id: str,
    ttl: timedelta,
    actor: str,
    now: datetime,
) -> tuple[Reservation, StockMovement]:
    """Check the unreserved pool, write the hold and the reservation row. Caller commits."""
    repo = InventoryRepository(session)
    require_catalog(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
    item = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id, now=now)

    # Channel buffers only apply at listing time; safety stock always applies.
    available = item.on_hand - item.reserved - item.safety_stock
    if available < quantity:
        raise InsufficientInventoryError(
            f"Only {max(0, available)} units available to reserve",
            requested=quantity,
            available=max(0, available),
            details={"variant_id": variant_id, "location_id": location_id, "order_id": order_id},
        )

    reservation = repo.add_reservation(
        Reservation(
            id=generate_shortuuid(),
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            order_id=order_id,
            quantity=quantity,
            status=RESERVATION_ACTIVE,
            expires_at=now + ttl,
            created_by=actor,
            created_at=now,
        )
    )
    movement = record_movement(
        repo,
        item,
        quantity_delta=quantity,
        movement_type=MOVEMENT_RESERVATION_HOLD,
        reason="reservation_hold",
        reference=order_id,
        actor=actor,
        now=now,
    )
    log_audit_event(
        session,
        tenant_id=tenant_id,
        actor=actor,
        action="reservation.create",
        target_type="reservation",
        target_id=reservation.id,
        metadata_json={
            "order_id": order_id,
            "variant_id": variant_id,
            "location_id": location_id,
            "quantity": quantity,
            "expires_at": reservation.expires_at.isoformat(),
        },
    )
    return reservation, movement


def reserve(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    quantity: int,
    order_id: str,
    ttl: timedelta | None = None,
    actor: str,
    clock: Clock = system_clock,
) -> Reservation:
    tenant_id = require_tenant(tenant_id)
    require_positive_quantity(quantity)
    order_id = require_text(order_id, "order_id")
    actor = require_text(actor, "actor")
    ttl = resolve_ttl(ttl)

    def _reserve(session: Session) -> tuple[Reservation, StockMovement]:
        return hold_in_transaction(
            session,
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            quantity=quantity,
            order_id=order_id,
            ttl=ttl,
            actor=actor,
            now=clock.now(),
        )

    reservation, movement = run_atomic(db, "reserve", _reserve)
    log_movement(movement)
    log_transition("reservation.created", reservation, actor, expires_at=reservation.expires_at)
    return reservation


def _get_or_404(repo: InventoryRepository, tenant_id: str, reservation_id: str) -> Reservation:
    reservation = repo.get_reservation(tenant_id, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found", details={"reservation_id": reservation_id})
    return reservation


def _settle(
    session: Session,
    repo: InventoryRepository,
    reservation: Reservation,
    *,
    status: str,
    reason: str,
    actor: str,
    now: datetime,
) -> StockMovement | None:
    """
    Move an active reservation to released/expired and return its units to the pool.
    Returns None when another writer settled it first; the caller inspects the fresh status.
    """
    claimed = repo.transition_reservation(
        reservation.tenant_id,
        reservation.id,
        from_status=RESERVATION_ACTIVE,
        status=status,
        released_at=now,
        release_reason=reason,
    )
    session.refresh(reservation)
    if not claimed:
        return None

    item = lock_item(
        repo,
        tenant_id=reservation.tenant_id,
        variant_id=reservation.variant_id,
        location_id=reservation.location_id,
        now=now,
    )
    movement = record_movement(
        repo,
        item,
        quantity_delta=-reservation.quantity,
        movement_type=MOVEMENT_RESERVATION_RELEASE,
        reason=reason,
        reference=reservation.order_id,
        actor=actor,
        now=now,
    )
    log_audit_event(
        session,
        tenant_id=reservation.tenant_id,
        actor=actor,
        action=f"reservation.{'expire' if status == RESERVATION_EXPIRED else 'release'}",
        target_type="reservation",
        target_id=reservation.id,
        metadata_json={
            "order_id": reservation.order_id,
            "variant_id": reservation.variant_id,
            "location_id": reservation.location_id,
            "quantity": reservation.quantity,
            "reason": reason,
        },
    )
    return movement


def _already_released(reservation: Reservation) -> Reservation:
    if reservation.status in (RESERVATION_RELEASED, RESERVATION_EXPIRED):
        return reservation
    raise InvalidStateTransitionError("reservation", reservation.id, reservation.status, RESERVATION_RELEASED)


def release_in_transaction(
    session: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    reason: str,
    actor: str,
    now: datetime,
) -> tuple[Reservation, StockMovement | None]:
    repo = InventoryRepository(session)
    reservation = _get_or_404(repo, tenant_id, reservation_id)
    if reservation.status != RESERVATION_ACTIVE:
        return _already_released(reservation), None
    movement = _settle(
        session,
        repo,
        reservation,
        status=RESERVATION_RELEASED,
        reason=reason,
        actor=actor,
        now=now,
    )
    if movement is None:
        return _already_released(reservation), None
    return reservation, movement


def release(
    db: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    reason: str = "released",
    actor: str,
    clock: Clock = system_clock,
) -> Reservation:
    """Idempotent: releasing a released or expired reservation returns it unchanged."""
    tenant_id = require_tenant(tenant_id)
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")

    def _release(session: Session) -> tuple[Reservation, StockMovement | None]:
        return release_in_transaction(
            session,
            tenant_id=tenant_id,
            reservation_id=reservation_id,
            reason=reason,
            actor=actor,
            now=clock.now(),
        )

    reservation, movement = run_atomic(db, "release_reservation", _release)
    if movement is not None:
        log_movement(movement)
        log_transition("reservation.released", reservation, actor, reason=reason)
    return reservation


def consume_in_transaction(
    session: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    actor: str,
    now: datetime,
) -> tuple[Reservation, list[StockMovement]]:
    repo = InventoryRepository(session)
    reservation = _get_or_404(repo, tenant_id, reservation_id)
    if reservation.status != RESERVATION_ACTIVE:
        raise InvalidStateTransitionError("reservation", reservation.id, reservation.status, RESERVATION_CONSUMED)

    claimed = repo.transition_reservation(
        tenant_id,
        reservation.id,
        from_status=RESERVATION_ACTIVE,
        status=RESERVATION_CONSUMED,
        consumed_at=now,
    )
    session.refresh(reservation)
    if not claimed:
        raise InvalidStateTransitionError("reservation", reservation.id, reservation.status, RESERVATION_CONSUMED)

    item = lock_item(
        repo,
        tenant_id=tenant_id,
        variant_id=reservation.variant_id,
        location_id=reservation.location_id,
        now=now,
    )
    # Release before the sale so reserved <= on_hand holds after each step.
    movements = [
        record_movement(
            repo,
            item,
            quantity_delta=-reservation.quantity,
            movement_type=MOVEMENT_RESERVATION_RELEASE,
            reason="reservation_consumed",
            reference=reservation.order_id,
            actor=actor,
            now=now,
        ),
        record_movement(
            repo,
            item,
            quantity_delta=-reservation.quantity,
            movement_type=MOVEMENT_SALE,
            reason="order_fulfilled",
            reference=reservation.order_id,
            actor=actor,
            now=now,
        ),
    ]
    log_audit_event(
        session,
        tenant_id=tenant_id,
        actor=actor,
        action="reservation.consume",
        target_type="reservation",
        target_id=reservation.id,
        metadata_json={
            "order_id": reservation.order_id,
            "variant_id": reservation.variant_id,
            "location_id": reservation.location_id,
            "quantity": reservation.quantity,
        },
    )
    return reservation, movements


def consume(
    db: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    actor: str,
    clock: Clock = system_clock,
) -> Reservation:
    """Fulfilment: the held units leave inventory. reserved and on_hand both drop by the quantity."""
    tenant_id = require_tenant(tenant_id)
    actor = require_text(actor, "actor")

    def _consume(session: Session) -> tuple[Reservation, list[StockMovement]]:
        return consume_in_transaction(
            session,
            tenant_id=tenant_id,
            reservation_id=reservation_id,
            actor=actor,
            now=clock.now(),
        )

    reservation, movements = run_atomic(db, "consume_reservation", _consume)
    for movement in movements:
        log_movement(movement)
    log_transition("reservation.consumed", reservation, actor)
    return reservation


def extend(
    db: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    additional_minutes: int,
    actor: str,
    clock: Clock = system_clock,
) -> Reservation:
    tenant_id = require_tenant(tenant_id)
    require_positive_quantity(additional_minutes, field="additional_minutes")
    actor = require_text(actor, "actor")

    def _extend(session: Session) -> tuple[Reservation, datetime]:
        repo = InventoryRepository(session)
        reservation = _get_or_404(repo, tenant_id, reservation_id)
        if reservation.status != RESERVATION_ACTIVE:
            raise InvalidStateTransitionError("reservation", reservation.id, reservation.status, RESERVATION_ACTIVE)

        now = clock.now()
        previous = as_utc(reservation.expires_at)
        new_expiry = previous + timedelta(minutes=additional_minutes)
        if new_expiry - now > timedelta(minutes=settings.reservation_max_ttl_minutes):
            raise ValidationError(
                f"Reservations cannot be held more than {settings.reservation_max_ttl_minutes} minutes ahead",
                details={"field": "additional_minutes", "max_minutes": settings.reservation_max_ttl_minutes},
            )

        claimed = repo.transition_reservation(
            tenant_id,
            reservation.id,
            from_status=RESERVATION_ACTIVE,
            expires_at=new_expiry,
        )
        session.refresh(reservation)
        if not claimed:
            raise InvalidStateTransitionError("reservation", reservation.id, reservation.status, RESERVATION_ACTIVE)

        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="reservation.extend",
            target_type="reservation",
            target_id=reservation.id,
            metadata_json={
                "previous_expires_at": previous.isoformat(),
                "expires_at": new_expiry.isoformat(),
                "additional_minutes": additional_minutes,
            },
        )
        return reservation, previous

    reservation, previous = run_atomic(db, "extend_reservation", _extend)
    log_transition(
        "reservation.extended",
        reservation,
        actor,
        previous_expires_at=previous,
        expires_at=reservation.expires_at,
    )
    return reservation


def get_reservation(db: Session, *, tenant_id: str, reservation_id: str) -> Reservation:
    tenant_id = require_tenant(tenant_id)
    return _get_or_404(InventoryRepository(db), tenant_id, reservation_id)


def list_reservations(
    db: Session,
    *,
    tenant_id: str,
    order_id: str | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[Reservation]:
    tenant_id = require_tenant(tenant_id)
    if status is not None and status not in RESERVATION_STATUSES:
        raise ValidationError(
            f"Unknown reservation status '{status}'",
            details={"status": status, "allowed": list(RESERVATION_STATUSES)},
        )
    return InventoryRepository(db).list_reservations(tenant_id, order_id=order_id, status=status, limit=limit)


def sweep_expired(
    db: Session,
    *,
    now: datetime | None = None,
    tenant_id: str | None = None,
    batch_size: int | None = None,
    actor: str = SWEEPER_ACTOR,
    clock: Clock = system_clock,
) -> SweepResult:
    """
    Expire active reservations whose expires_at has passed, one atomic unit each.
    A reservation settled concurrently (consumed or released) is skipped, not failed.
    tenant_id=None sweeps every tenant.
    """
    now = as_utc(now) if now is not None else clock.now()
    limit = batch_size if batch_size is not None else settings.reservation_sweep_batch_size
    if tenant_id is not None:
        tenant_id = require_tenant(tenant_id)

    candidates = InventoryRepository(db).list_expired_reservations(now, tenant_id=tenant_id, limit=limit)
    result = SweepResult()

    for candidate_tenant, reservation_id in candidates:

        def _expire(session: Session) -> tuple[Reservation, StockMovement | None]:
            repo = InventoryRepository(session)
            reservation = _get_or_404(repo, candidate_tenant, reservation_id)
            if reservation.status != RESERVATION_ACTIVE:
                return reservation, None
            movement = _settle(
                session,
                repo,
                reservation,
                status=RESERVATION_EXPIRED,
                reason="reservation_expired",
                actor=actor,
                now=now,
            )
            return reservation, movement

        try:
            reservation, movement = run_atomic(db, "expire_reservation", _expire)
        except InventoryError as exc:
            result.total_failed += 1
            result.errors.append(f"{reservation_id}: {exc.message}")
            log_event(
                "reservation.expire_failed",
                level=logging.ERROR,
                log=logger,
                tenant_id=candidate_tenant,
                reservation_id=reservation_id,
                code=exc.code,
                error=exc.message,
            )
            continue

        if movement is None:
            continue
        result.total_expired += 1
        log_movement(movement)
        log_transition("reservation.expired", reservation, actor, expires_at=reservation.expires_at)
        result.add_release(reservation.variant_id, reservation.location_id, reservation.quantity)

    return result
