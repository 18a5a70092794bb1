from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_actor, get_db, get_tenant_id
from stockledger.models.inventory import InventoryItem, StockMovement
from stockledger.schemas.inventory import (
    AppliedMovementOut,
    AvailableToSellOut,
    BulkMovementIn,
    BulkMovementOut,
    ChannelBufferIn,
    FailedMovementOut,
    InventoryItemListOut,
    InventoryItemOut,
    LedgerCheckOut,
    LocationAvailabilityOut,
    MovementIn,
    SafetyStockIn,
    SetLevelIn,
    StockHistoryOut,
    StockMovementOut,
)
from stockledger.services import channel_buffer_service, ledger_service
from stockledger.services.ledger_service import MovementRequest

router = APIRouter(prefix="/inventory", tags=["inventory"])


def item_out(item: InventoryItem) -> InventoryItemOut:
    return InventoryItemOut(
        id=item.id,
        variant_id=item.variant_id,
        location_id=item.location_id,
        on_hand=item.on_hand,
        reserved=item.reserved,
        unreserved=item.on_hand - item.reserved,
        safety_stock=item.safety_stock,
        channel_buffers=dict(item.channel_buffers or {}),
        last_counted_at=item.last_counted_at,
        updated_at=item.updated_at,
    )


def _movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        variant_id=movement.variant_id,
        location_id=movement.location_id,
        type=movement.type,
        quantity_delta=movement.quantity_delta,
        reason=movement.reason,
        reference=movement.reference,
        actor=movement.actor,
        on_hand_after=movement.on_hand_after,
        reserved_after=movement.reserved_after,
        created_at=movement.created_at,
    )


@router.get(
    "/items",
    response_model=InventoryItemListOut,
    summary="List stock counters",
    responses=error_responses(422, 500),
)
def list_items(
    variant_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    items = ledger_service.list_items(db, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
    return InventoryItemListOut(items=[item_out(item) for item in items])


@router.get(
    "/items/{variant_id}/{location_id}",
    response_model=InventoryItemOut,
    summary="Get stock counters for one variant at one location",
    responses=error_responses(422, 500),
)
def get_item(
    variant_id: str,
    location_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    item = ledger_service.get_item_or_zero(db, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
    return item_out(item)


@router.post(
    "/movements",
    response_model=InventoryItemOut,
    summary="Apply a stock movement",
    responses=error_responses(404, 409, 422, 500),
)
def apply_movement(
    payload: MovementIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    item = ledger_service.apply_movement(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        location_id=payload.location_id,
        quantity_delta=payload.quantity_delta,
        movement_type=payload.type,
        reason=payload.reason,
        reference=payload.reference,
        actor=actor,
    )
    return item_out(item)


@router.post(
    "/movements/bulk",
    response_model=BulkMovementOut,
    summary="Apply many stock movements, each independently",
    responses=error_responses(422, 500),
)
def apply_movements(
    payload: BulkMovementIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    result = ledger_service.apply_movements(
        db,
        [
            MovementRequest(
                tenant_id=tenant_id,
                variant_id=entry.variant_id,
                location_id=entry.location_id,
                quantity_delta=entry.quantity_delta,
                movement_type=entry.type,
                reason=entry.reason,
                reference=entry.reference,
                actor=actor,
            )
            for entry in payload.movements
        ],
    )
    return BulkMovementOut(
        applied=[AppliedMovementOut(index=entry.index, item=item_out(entry.item)) for entry in result.applied],
        failed=[
            FailedMovementOut(index=entry.index, code=entry.code, message=entry.message, details=entry.details)
            for entry in result.failed
        ],
    )


@router.post(
    "/set-level",
    response_model=InventoryItemOut,
    summary="Set on-hand to a counted quantity",
    responses=error_responses(404, 409, 422, 500),
)
def set_level(
    payload: SetLevelIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    item = ledger_service.set_level(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        location_id=payload.location_id,
        new_on_hand=payload.new_on_hand,
        reason=payload.reason,
        actor=actor,
    )
    return item_out(item)


@router.put(
    "/safety-stock",
    response_model=InventoryItemOut,
    summary="Set the safety stock held back from sale",
    responses=error_responses(404, 422, 500),
)
def set_safety_stock(
    payload: SafetyStockIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    item = ledger_service.set_safety_stock(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        location_id=payload.location_id,
        safety_stock=payload.safety_stock,
        actor=actor,
    )
    return item_out(item)


@router.put(
    "/channel-buffers",
    response_model=InventoryItemOut,
    summary="Set the units withheld from one sales channel",
    responses=error_responses(404, 422, 500),
)
def set_channel_buffer(
    payload: ChannelBufferIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    item = channel_buffer_service.set_channel_buffer(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        location_id=payload.location_id,
        channel=payload.channel,
        buffer_quantity=payload.buffer_quantity,
        actor=actor,
    )
    return item_out(item)


@router.get(
    "/available-to-sell/{variant_id}",
    response_model=AvailableToSellOut,
    summary="Units a channel may sell right now",
    responses=error_responses(422, 500),
)
def available_to_sell(
    variant_id: str,
    channel: str = Query(..., min_length=1, max_length=50),
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    availability = channel_buffer_service.channel_availability(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        channel=channel,
        location_id=location_id,
    )
    return AvailableToSellOut(
        variant_id=availability.variant_id,
        channel=availability.channel,
        available_to_sell=availability.total_available,
        locations=[
            LocationAvailabilityOut(
                location_id=entry.location_id,
                on_hand=entry.on_hand,
                reserved=entry.reserved,
                safety_stock=entry.safety_stock,
                channel_buffer=entry.channel_buffer,
                available_to_sell=entry.available_to_sell,
            )
            for entry in availability.locations
        ],
    )


@router.get(
    "/history/{variant_id}",
    response_model=StockHistoryOut,
    summary="Movement history, newest first",
    responses=error_responses(422, 500),
)
def get_stock_history(
    variant_id: str,
    location_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    movements = ledger_service.get_stock_history(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        limit=limit,
    )
    return StockHistoryOut(items=[_movement_out(movement) for movement in movements])


@router.get(
    "/verify/{variant_id}/{location_id}",
    response_model=LedgerCheckOut,
    summary="Replay the movement log against the stored counters",
    responses=error_responses(422, 500),
)
def verify_item(
    variant_id: str,
    location_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    check = ledger_service.verify_item(db, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
    return LedgerCheckOut(
        variant_id=check.variant_id,
        location_id=check.location_id,
        on_hand=check.on_hand,
        reserved=check.reserved,
        replayed_on_hand=check.replayed_on_hand,
        replayed_reserved=check.replayed_reserved,
        movement_count=check.movement_count,
        consistent=check.consistent,
    )
