from datetime import timedelta

import pytest
from sqlalchemy import select

from stockledger.core.errors import (
    InsufficientInventoryError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from stockledger.models.audit_log import AuditLog
from stockledger.services import channel_buffer_service, ledger_service, reservation_service, transfer_service


@pytest.fixture()
def stocked(db, catalog, clock):
    """10 on hand with 2 units of safety stock at the warehouse."""
    ledger_service.apply_movement(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        quantity_delta=10,
        movement_type="restock",
        reason="supplier_delivery",
        actor="tester",
        clock=clock,
    )
    ledger_service.set_safety_stock(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        safety_stock=2,
        actor="tester",
        clock=clock,
    )
    return catalog


def _reserve(db, catalog, clock, quantity, *, order_id="ORD-1", ttl=None):
    return reservation_service.reserve(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        quantity=quantity,
        order_id=order_id,
        ttl=ttl,
        actor="checkout",
        clock=clock,
    )


def _item(db, catalog):
    return ledger_service.get_item(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
    )


def _ats(db, catalog, channel="web"):
    return channel_buffer_service.available_to_sell(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        channel=channel,
    )


def test_reserve_release_transfer_walkthrough(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 5)
    assert reservation.status == "active"
    assert _item(db, stocked).reserved == 5
    assert _ats(db, stocked) == 3

    with pytest.raises(InsufficientInventoryError) as exc_info:
        _reserve(db, stocked, clock, 4, order_id="ORD-2")
    assert exc_info.value.available == 3
    assert _item(db, stocked).reserved == 5

    released = reservation_service.release(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="checkout",
        clock=clock,
    )
    assert released.status == "released"
    assert _ats(db, stocked) == 8

    transfer = transfer_service.create_transfer(
        db,
        tenant_id=stocked.tenant_id,
        variant_id=stocked.variant_id,
        from_location_id=stocked.warehouse_id,
        to_location_id=stocked.store_id,
        quantity=6,
        actor="ops",
        clock=clock,
    )
    assert transfer.status == "pending"
    assert _item(db, stocked).on_hand == 4


def test_reserve_uses_default_ttl(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 1)
    expires_at = reservation.expires_at.replace(tzinfo=None)
    assert expires_at == (clock.now() + timedelta(minutes=1440)).replace(tzinfo=None)


def test_reserve_rejects_bad_input(db, stocked, clock):
    with pytest.raises(ValidationError):
        _reserve(db, stocked, clock, 0)
    with pytest.raises(ValidationError):
        _reserve(db, stocked, clock, 1, order_id=" ")
    with pytest.raises(ValidationError):
        _reserve(db, stocked, clock, 1, ttl=timedelta(minutes=-5))
    with pytest.raises(ValidationError):
        _reserve(db, stocked, clock, 1, ttl=timedelta(days=30))


def test_release_is_idempotent(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 3)
    for _ in range(2):
        reservation_service.release(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            actor="checkout",
            clock=clock,
        )
    assert _item(db, stocked).reserved == 0
    history = ledger_service.get_stock_history(db, tenant_id=stocked.tenant_id, variant_id=stocked.variant_id)
    assert [movement.type for movement in history].count("reservation_release") == 1


def test_consume_moves_units_out_of_both_counters(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 4)

    consumed = reservation_service.consume(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="fulfilment",
        clock=clock,
    )

    assert consumed.status == "consumed"
    assert consumed.consumed_at is not None
    item = _item(db, stocked)
    assert (item.on_hand, item.reserved) == (6, 0)
    history = ledger_service.get_stock_history(db, tenant_id=stocked.tenant_id, variant_id=stocked.variant_id)
    assert [movement.type for movement in history[:2]] == ["sale", "reservation_release"]


def test_consumed_reservation_cannot_be_released_or_consumed_again(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 1)
    reservation_service.consume(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="fulfilment",
        clock=clock,
    )

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        reservation_service.release(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            actor="checkout",
            clock=clock,
        )
    assert exc_info.value.current_status == "consumed"

    with pytest.raises(InvalidStateTransitionError):
        reservation_service.consume(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            actor="fulfilment",
            clock=clock,
        )


def test_released_reservation_cannot_be_consumed(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 2)
    reservation_service.release(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="checkout",
        clock=clock,
    )
    with pytest.raises(InvalidStateTransitionError):
        reservation_service.consume(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            actor="fulfilment",
            clock=clock,
        )
    assert _item(db, stocked).on_hand == 10


def test_extend_pushes_expiry_and_caps_it(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 1, ttl=timedelta(minutes=30))
    original = reservation.expires_at.replace(tzinfo=None)

    extended = reservation_service.extend(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        additional_minutes=15,
        actor="checkout",
        clock=clock,
    )
    assert extended.expires_at.replace(tzinfo=None) == original + timedelta(minutes=15)

    with pytest.raises(ValidationError):
        reservation_service.extend(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            additional_minutes=20_000,
            actor="checkout",
            clock=clock,
        )

    actions = db.execute(select(AuditLog.action).where(AuditLog.target_id == reservation.id)).scalars().all()
    assert "reservation.extend" in actions


def test_extend_requires_active_reservation(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 1)
    reservation_service.release(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="checkout",
        clock=clock,
    )
    with pytest.raises(InvalidStateTransitionError):
        reservation_service.extend(
            db,
            tenant_id=stocked.tenant_id,
            reservation_id=reservation.id,
            additional_minutes=5,
            actor="checkout",
            clock=clock,
        )


def test_reservations_are_tenant_scoped(db, stocked, seed_catalog, clock):
    other = seed_catalog("tenant-b")
    reservation = _reserve(db, stocked, clock, 1)

    with pytest.raises(NotFoundError):
        reservation_service.get_reservation(db, tenant_id=other.tenant_id, reservation_id=reservation.id)
    with pytest.raises(NotFoundError):
        reservation_service.release(
            db,
            tenant_id=other.tenant_id,
            reservation_id=reservation.id,
            actor="intruder",
            clock=clock,
        )
    assert reservation_service.list_reservations(db, tenant_id=other.tenant_id) == []


def test_list_reservations_filters(db, stocked, clock):
    first = _reserve(db, stocked, clock, 1, order_id="ORD-A")
    _reserve(db, stocked, clock, 1, order_id="ORD-B")
    reservation_service.release(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=first.id,
        actor="checkout",
        clock=clock,
    )

    by_order = reservation_service.list_reservations(db, tenant_id=stocked.tenant_id, order_id="ORD-B")
    assert [reservation.order_id for reservation in by_order] == ["ORD-B"]
    active = reservation_service.list_reservations(db, tenant_id=stocked.tenant_id, status="active")
    assert [reservation.order_id for reservation in active] == ["ORD-B"]
    with pytest.raises(ValidationError):
        reservation_service.list_reservations(db, tenant_id=stocked.tenant_id, status="pending")


def test_reservation_writes_audit_trail(db, stocked, clock):
    reservation = _reserve(db, stocked, clock, 2)
    reservation_service.consume(
        db,
        tenant_id=stocked.tenant_id,
        reservation_id=reservation.id,
        actor="fulfilment",
        clock=clock,
    )
    actions = db.execute(
        select(AuditLog.action).where(AuditLog.target_id == reservation.id).order_by(AuditLog.action)
    ).scalars().all()
    assert actions == ["reservation.consume", "reservation.create"]
