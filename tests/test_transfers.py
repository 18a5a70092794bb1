import pytest

from stockledger.core.errors import (
    InvalidStateTransitionError,
    InvalidTransferError,
    NotFoundError,
    ValidationError,
)
from stockledger.services import ledger_service, reservation_service, transfer_service


def _restock(db, catalog, location_id, quantity, clock=None):
    kwargs = {"clock": clock} if clock is not None else {}
    ledger_service.apply_movement(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=location_id,
        quantity_delta=quantity,
        movement_type="restock",
        reason="supplier_delivery",
        actor="tester",
        **kwargs,
    )


def _on_hand(db, catalog, location_id):
    return ledger_service.get_item_or_zero(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=location_id,
    ).on_hand


def _create(db, catalog, quantity, *, to_location_id=None, clock=None, **kwargs):
    if clock is not None:
        kwargs["clock"] = clock
    return transfer_service.create_transfer(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        from_location_id=catalog.warehouse_id,
        to_location_id=to_location_id or catalog.store_id,
        quantity=quantity,
        actor="ops",
        **kwargs,
    )


def test_validate_reports_every_problem_without_writing(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 4)

    ok = transfer_service.validate_transfer(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        from_location_id=catalog.warehouse_id,
        to_location_id=catalog.store_id,
        quantity=3,
    )
    assert ok.is_valid
    assert ok.errors == []
    assert ok.available_quantity == 4

    bad = transfer_service.validate_transfer(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        from_location_id=catalog.warehouse_id,
        to_location_id=catalog.outlet_id,
        quantity=9,
    )
    assert not bad.is_valid
    assert "Destination location not found or inactive" in bad.errors
    assert "Insufficient inventory: 4 available, 9 requested" in bad.errors

    same = transfer_service.validate_transfer(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        from_location_id=catalog.warehouse_id,
        to_location_id=catalog.warehouse_id,
        quantity=0,
    )
    assert "Source and destination locations must be different" in same.errors
    assert "Quantity must be greater than 0" in same.errors
    assert transfer_service.list_transfers(db, tenant_id=catalog.tenant_id) == ([], 0)


def test_create_debits_source_and_leaves_transfer_pending(db, catalog, clock):
    _restock(db, catalog, catalog.warehouse_id, 10, clock=clock)
    clock.advance(minutes=1)

    transfer = _create(db, catalog, 6, clock=clock, reference="REB-7", notes="weekend promo")

    assert transfer.status == "pending"
    assert transfer.reference == "REB-7"
    assert transfer.reason == "rebalance"
    assert _on_hand(db, catalog, catalog.warehouse_id) == 4
    assert _on_hand(db, catalog, catalog.store_id) == 0
    latest = ledger_service.get_stock_history(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
    )[0]
    assert (latest.type, latest.quantity_delta, latest.reference) == ("transfer_out", -6, transfer.id)


def test_create_generates_reference_when_missing(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 2)
    transfer = _create(db, catalog, 1)
    assert transfer.reference.startswith("trf_")


def test_complete_credits_destination_once(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)
    transfer = _create(db, catalog, 6)

    completed = transfer_service.complete_transfer(
        db,
        tenant_id=catalog.tenant_id,
        transfer_id=transfer.id,
        actor="receiver",
    )

    assert completed.status == "completed"
    assert completed.completed_by == "receiver"
    assert completed.completed_at is not None
    assert _on_hand(db, catalog, catalog.warehouse_id) == 4
    assert _on_hand(db, catalog, catalog.store_id) == 6

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        transfer_service.complete_transfer(
            db,
            tenant_id=catalog.tenant_id,
            transfer_id=transfer.id,
            actor="receiver",
        )
    assert exc_info.value.current_status == "completed"
    with pytest.raises(InvalidStateTransitionError):
        transfer_service.cancel_transfer(
            db,
            tenant_id=catalog.tenant_id,
            transfer_id=transfer.id,
            actor="ops",
        )
    assert _on_hand(db, catalog, catalog.store_id) == 6


def test_cancel_returns_units_to_source(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)
    transfer = _create(db, catalog, 6)

    cancelled = transfer_service.cancel_transfer(
        db,
        tenant_id=catalog.tenant_id,
        transfer_id=transfer.id,
        reason="truck unavailable",
        actor="ops",
    )

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "ops"
    assert _on_hand(db, catalog, catalog.warehouse_id) == 10
    assert _on_hand(db, catalog, catalog.store_id) == 0
    latest = ledger_service.get_stock_history(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
    )[0]
    assert (latest.type, latest.reason) == ("transfer_in", "transfer_cancelled")

    with pytest.raises(InvalidStateTransitionError):
        transfer_service.complete_transfer(
            db,
            tenant_id=catalog.tenant_id,
            transfer_id=transfer.id,
            actor="receiver",
        )


def test_reserved_units_cannot_travel(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)
    reservation_service.reserve(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        quantity=8,
        order_id="ORD-1",
        actor="checkout",
    )

    with pytest.raises(InvalidTransferError) as exc_info:
        _create(db, catalog, 3)
    assert exc_info.value.available_quantity == 2
    assert _on_hand(db, catalog, catalog.warehouse_id) == 10
    assert transfer_service.list_transfers(db, tenant_id=catalog.tenant_id)[1] == 0


def test_create_rejects_same_location_and_inactive_destination(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)

    with pytest.raises(InvalidTransferError):
        _create(db, catalog, 1, to_location_id=catalog.warehouse_id)
    with pytest.raises(InvalidTransferError):
        _create(db, catalog, 0)
    with pytest.raises(ValidationError):
        _create(db, catalog, 1, to_location_id=catalog.outlet_id)
    assert _on_hand(db, catalog, catalog.warehouse_id) == 10


def test_transfers_are_tenant_scoped(db, catalog, seed_catalog):
    other = seed_catalog("tenant-b")
    _restock(db, catalog, catalog.warehouse_id, 3)
    transfer = _create(db, catalog, 1)

    with pytest.raises(NotFoundError):
        transfer_service.get_transfer(db, tenant_id=other.tenant_id, transfer_id=transfer.id)
    with pytest.raises(NotFoundError):
        transfer_service.complete_transfer(
            db,
            tenant_id=other.tenant_id,
            transfer_id=transfer.id,
            actor="intruder",
        )


def test_list_transfers_filters_and_paginates(db, catalog, clock):
    _restock(db, catalog, catalog.warehouse_id, 10, clock=clock)
    created = []
    for _ in range(3):
        created.append(_create(db, catalog, 1, clock=clock))
        clock.advance(minutes=1)
    transfer_service.complete_transfer(
        db,
        tenant_id=catalog.tenant_id,
        transfer_id=created[0].id,
        actor="receiver",
    )

    page, total = transfer_service.list_transfers(db, tenant_id=catalog.tenant_id, limit=2)
    assert total == 3
    assert [transfer.id for transfer in page] == [created[2].id, created[1].id]

    pending, pending_total = transfer_service.list_transfers(db, tenant_id=catalog.tenant_id, status="pending")
    assert pending_total == 2
    assert {transfer.id for transfer in pending} == {created[1].id, created[2].id}

    at_store, _ = transfer_service.list_transfers(db, tenant_id=catalog.tenant_id, location_id=catalog.store_id)
    assert len(at_store) == 3

    with pytest.raises(ValidationError):
        transfer_service.list_transfers(db, tenant_id=catalog.tenant_id, status="lost")


def test_suggestions_move_surplus_to_locations_below_target(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 20)
    ledger_service.set_safety_stock(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.store_id,
        safety_stock=5,
        actor="planner",
    )

    suggestions = transfer_service.get_transfer_suggestions(db, tenant_id=catalog.tenant_id)

    assert len(suggestions) == 1
    suggestion = suggestions[0]
    assert suggestion.from_location_id == catalog.warehouse_id
    assert suggestion.to_location_id == catalog.store_id
    assert suggestion.suggested_quantity == 5
    assert suggestion.variant_title == "Alpha Starter - NM"
    # Read-only.
    assert _on_hand(db, catalog, catalog.store_id) == 0


def test_suggestions_ignore_inactive_locations(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 20)
    ledger_service.set_safety_stock(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.outlet_id,
        safety_stock=5,
        actor="planner",
    )
    assert transfer_service.get_transfer_suggestions(db, tenant_id=catalog.tenant_id) == []
