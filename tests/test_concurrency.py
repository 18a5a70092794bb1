"""
Concurrent writers on one inventory row against a file-backed SQLite database.

Every thread opens its own session and connection; a Barrier releases them
together so the reservations genuinely race for the same counters.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stockledger.core.errors import ConcurrencyConflictError, InsufficientInventoryError
from stockledger.db.base import Base
from stockledger.services import ledger_service, reservation_service

ON_HAND = 5
THREADS = 12


@pytest.fixture()
def session_local(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def _stock(session_local, catalog, quantity):
    db = session_local()
    try:
        ledger_service.apply_movement(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            location_id=catalog.warehouse_id,
            quantity_delta=quantity,
            movement_type="restock",
            reason="supplier_delivery",
            actor="tester",
        )
    finally:
        db.close()


def _race(session_local, task, threads):
    barrier = Barrier(threads, timeout=30)

    def run(index: int) -> str:
        barrier.wait()
        db = session_local()
        try:
            return task(db, index)
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=threads) as executor:
        futures = [executor.submit(run, index) for index in range(threads)]
        # Anything other than the expected outcomes fails the test here.
        return [future.result() for future in futures]


def test_concurrent_reservations_never_oversell(session_local, catalog):
    _stock(session_local, catalog, ON_HAND)

    def reserve_one(db, index):
        try:
            reservation_service.reserve(
                db,
                tenant_id=catalog.tenant_id,
                variant_id=catalog.variant_id,
                location_id=catalog.warehouse_id,
                quantity=1,
                order_id=f"ORD-{index}",
                ttl=timedelta(minutes=15),
                actor="checkout",
            )
        except InsufficientInventoryError:
            return "insufficient"
        except ConcurrencyConflictError:
            return "conflict"
        return "ok"

    outcomes = _race(session_local, reserve_one, THREADS)
    successes = outcomes.count("ok")

    assert len(outcomes) == THREADS
    assert 1 <= successes <= ON_HAND

    db = session_local()
    try:
        item = ledger_service.get_item(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            location_id=catalog.warehouse_id,
        )
        assert item.on_hand == ON_HAND
        assert item.reserved == successes
        assert item.reserved <= item.on_hand

        active = reservation_service.list_reservations(db, tenant_id=catalog.tenant_id, status="active")
        assert len(active) == successes

        check = ledger_service.verify_item(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            location_id=catalog.warehouse_id,
        )
        assert check.consistent
    finally:
        db.close()


def test_concurrent_sales_keep_on_hand_non_negative(session_local, catalog):
    _stock(session_local, catalog, ON_HAND)

    def sell_two(db, index):
        try:
            ledger_service.apply_movement(
                db,
                tenant_id=catalog.tenant_id,
                variant_id=catalog.variant_id,
                location_id=catalog.warehouse_id,
                quantity_delta=-2,
                movement_type="sale",
                reason="pos_sale",
                reference=f"SALE-{index}",
                actor="till",
            )
        except InsufficientInventoryError:
            return "insufficient"
        except ConcurrencyConflictError:
            return "conflict"
        return "ok"

    outcomes = _race(session_local, sell_two, 8)
    successes = outcomes.count("ok")

    assert 1 <= successes <= ON_HAND // 2

    db = session_local()
    try:
        item = ledger_service.get_item(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            location_id=catalog.warehouse_id,
        )
        assert item.on_hand == ON_HAND - 2 * successes
        assert item.on_hand >= 0
        assert ledger_service.verify_item(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            location_id=catalog.warehouse_id,
        ).consistent
    finally:
        db.close()
