import pytest

from stockledger.core.errors import ValidationError
from stockledger.services import channel_buffer_service, ledger_service


def _restock(db, catalog, location_id, quantity):
    ledger_service.apply_movement(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=location_id,
        quantity_delta=quantity,
        movement_type="restock",
        reason="supplier_delivery",
        actor="tester",
    )


def _buffer(db, catalog, location_id, channel, quantity):
    return channel_buffer_service.set_channel_buffer(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=location_id,
        channel=channel,
        buffer_quantity=quantity,
        actor="merchandiser",
    )


def test_buffers_only_apply_to_their_channel(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 20)
    item = _buffer(db, catalog, catalog.warehouse_id, "marketplace", 5)

    assert item.channel_buffers == {"marketplace": 5}
    assert item.on_hand == 20
    for channel, expected in (("marketplace", 15), ("web", 20)):
        assert channel_buffer_service.available_to_sell(
            db,
            tenant_id=catalog.tenant_id,
            variant_id=catalog.variant_id,
            channel=channel,
        ) == expected


def test_each_location_is_floored_before_summing(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)
    _restock(db, catalog, catalog.store_id, 2)
    _buffer(db, catalog, catalog.store_id, "web", 5)

    availability = channel_buffer_service.channel_availability(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        channel="web",
    )
    by_location = {entry.location_id: entry.available_to_sell for entry in availability.locations}
    assert by_location == {catalog.warehouse_id: 10, catalog.store_id: 0}
    assert availability.total_available == 10


def test_safety_stock_and_reservations_reduce_availability(db, catalog):
    _restock(db, catalog, catalog.warehouse_id, 10)
    ledger_service.set_safety_stock(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        location_id=catalog.warehouse_id,
        safety_stock=3,
        actor="planner",
    )
    _buffer(db, catalog, catalog.warehouse_id, "pos", 2)

    assert channel_buffer_service.available_to_sell(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.variant_id,
        channel="pos",
        location_id=catalog.warehouse_id,
    ) == 5


def test_updating_a_buffer_replaces_it(db, catalog):
    _buffer(db, catalog, catalog.warehouse_id, "web", 4)
    _buffer(db, catalog, catalog.warehouse_id, "pos", 1)
    item = _buffer(db, catalog, catalog.warehouse_id, "web", 0)
    assert item.channel_buffers == {"web": 0, "pos": 1}
    assert ledger_service.get_stock_history(db, tenant_id=catalog.tenant_id, variant_id=catalog.variant_id) == []


def test_unknown_pair_has_nothing_to_sell(db, catalog):
    assert channel_buffer_service.available_to_sell(
        db,
        tenant_id=catalog.tenant_id,
        variant_id=catalog.second_variant_id,
        channel="web",
    ) == 0


@pytest.mark.parametrize("channel, quantity", [("", 1), ("web", -1), ("x" * 51, 1)])
def test_buffer_input_is_validated(db, catalog, channel, quantity):
    with pytest.raises(ValidationError):
        _buffer(db, catalog, catalog.warehouse_id, channel, quantity)
