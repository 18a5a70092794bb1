from datetime import timedelta

from stockledger.jobs.reservation_sweeper import ReservationSweeper, run_sweep
from stockledger.models.audit_log import AuditLog
from stockledger.repositories.inventory_repository import InventoryRepository
from stockledger.services import ledger_service, reservation_service
from sqlalchemy import select


def _stock(db, catalog, clock, quantity=10):
    ledger_service.apply_movement(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        quantity_delta=quantity,
        movement_type="restock",
        reason="supplier_delivery",
        actor="tester",
        clock=clock,
    )


def _hold(db, catalog, clock, quantity, order_id, minutes):
    return reservation_service.reserve(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        quantity=quantity,
        order_id=order_id,
        ttl=timedelta(minutes=minutes),
        actor="checkout",
        clock=clock,
    )


def test_sweep_expires_only_lapsed_reservations(db, catalog, clock):
    _stock(db, catalog, clock)
    short = _hold(db, catalog, clock, 3, "ORD-SHORT", 10)
    long = _hold(db, catalog, clock, 2, "ORD-LONG", 120)

    result = reservation_service.sweep_expired(db, now=clock.now() + timedelta(minutes=30))

    assert result.total_expired == 1
    assert result.total_released == 1
    assert result.total_failed == 0
    assert [(entry.variant_id, entry.quantity) for entry in result.released_inventory] == [(catalog.variant_id, 3)]

    assert reservation_service.get_reservation(db, tenant_id=catalog.tenant_id, reservation_id=short.id).status == (
        "expired"
    )
    assert reservation_service.get_reservation(db, tenant_id=catalog.tenant_id, reservation_id=long.id).status == (
        "active"
    )
    item = ledger_service.get_item(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
    )
    assert item.reserved == 2

    expired = reservation_service.get_reservation(db, tenant_id=catalog.tenant_id, reservation_id=short.id)
    assert expired.release_reason == "reservation_expired"
    audit = db.execute(select(AuditLog).where(AuditLog.action == "reservation.expire")).scalar_one()
    assert audit.actor == "system:reservation-sweeper"


def test_sweep_is_a_no_op_the_second_time(db, catalog, clock):
    _stock(db, catalog, clock)
    _hold(db, catalog, clock, 1, "ORD-1", 5)
    later = clock.now() + timedelta(hours=1)

    assert reservation_service.sweep_expired(db, now=later).total_released == 1
    second = reservation_service.sweep_expired(db, now=later)
    assert (second.total_expired, second.total_released) == (0, 0)


def test_expired_reservation_release_is_a_no_op(db, catalog, clock):
    _stock(db, catalog, clock)
    reservation = _hold(db, catalog, clock, 2, "ORD-1", 5)
    reservation_service.sweep_expired(db, now=clock.now() + timedelta(hours=1))

    again = reservation_service.release(
        db,
        tenant_id=catalog.tenant_id,
        reservation_id=reservation.id,
        actor="checkout",
        clock=clock,
    )
    assert again.status == "expired"
    item = ledger_service.get_item(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
    )
    assert item.reserved == 0


def test_active_reservation_past_expiry_can_still_be_consumed(db, catalog, clock):
    _stock(db, catalog, clock)
    reservation = _hold(db, catalog, clock, 2, "ORD-1", 5)
    clock.advance(minutes=30)

    consumed = reservation_service.consume(
        db,
        tenant_id=catalog.tenant_id,
        reservation_id=reservation.id,
        actor="fulfilment",
        clock=clock,
    )
    assert consumed.status == "consumed"
    # The sweeper finds nothing left to expire.
    assert reservation_service.sweep_expired(db, now=clock.now()).total_expired == 0


def test_sweep_can_be_limited_to_one_tenant(db, seed_catalog, clock):
    first = seed_catalog("tenant-a")
    second = seed_catalog("tenant-b")
    for catalog in (first, second):
        _stock(db, catalog, clock)
        _hold(db, catalog, clock, 1, "ORD-1", 5)
    later = clock.now() + timedelta(hours=1)

    scoped = reservation_service.sweep_expired(db, now=later, tenant_id=second.tenant_id)
    assert scoped.total_released == 1
    assert reservation_service.list_reservations(db, tenant_id=first.tenant_id, status="active") != []

    everything = reservation_service.sweep_expired(db, now=later)
    assert everything.total_released == 1
    assert reservation_service.list_reservations(db, tenant_id=first.tenant_id, status="active") == []


def test_sweep_respects_batch_size(db, catalog, clock):
    _stock(db, catalog, clock)
    for index in range(3):
        _hold(db, catalog, clock, 1, f"ORD-{index}", 5)

    result = reservation_service.sweep_expired(db, now=clock.now() + timedelta(hours=1), batch_size=2)
    assert result.total_released == 2
    assert len(result.released_inventory) == 1
    assert result.released_inventory[0].quantity == 2


def test_sweep_skips_reservation_settled_after_listing(db, catalog, clock, monkeypatch):
    _stock(db, catalog, clock)
    settled = _hold(db, catalog, clock, 2, "ORD-SETTLED", 5)
    lapsed = _hold(db, catalog, clock, 1, "ORD-LAPSED", 5)
    reservation_service.consume(
        db,
        tenant_id=catalog.tenant_id,
        reservation_id=settled.id,
        actor="fulfilment",
        clock=clock,
    )

    # The consumed reservation is still in the candidate list the sweeper read.
    monkeypatch.setattr(
        InventoryRepository,
        "list_expired_reservations",
        lambda self, now, tenant_id=None, limit=None: [
            (catalog.tenant_id, settled.id),
            (catalog.tenant_id, lapsed.id),
        ],
    )

    result = reservation_service.sweep_expired(db, now=clock.now() + timedelta(hours=1))

    assert (result.total_expired, result.total_released, result.total_failed) == (1, 1, 0)
    assert [(entry.variant_id, entry.quantity) for entry in result.released_inventory] == [(catalog.variant_id, 1)]
    assert reservation_service.get_reservation(db, tenant_id=catalog.tenant_id, reservation_id=settled.id).status == (
        "consumed"
    )


def test_run_sweep_opens_its_own_session(session_local, db, catalog, clock):
    _stock(db, catalog, clock)
    reservation = _hold(db, catalog, clock, 1, "ORD-1", 1)

    # Reservations created at the fixed clock time are long lapsed in real time.
    result = run_sweep(session_local)

    assert result.total_released == 1
    db.expire_all()
    assert reservation_service.get_reservation(
        db,
        tenant_id=catalog.tenant_id,
        reservation_id=reservation.id,
    ).status == "expired"


def test_sweeper_tick_survives_a_crash():
    def broken_factory():
        raise RuntimeError("database unavailable")

    sweeper = ReservationSweeper(interval_seconds=60, session_factory=broken_factory)
    assert sweeper.tick() is None
    assert not sweeper.running


def test_sweeper_thread_starts_and_stops(session_local):
    sweeper = ReservationSweeper(interval_seconds=60, session_factory=session_local)
    sweeper.start()
    assert sweeper.running
    sweeper.stop()
    assert not sweeper.running
