from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_actor, get_db, get_tenant_id
from stockledger.models.reservation import Reservation
from stockledger.routers.inventory import item_out
from stockledger.schemas.inventory import InventoryItemListOut
from stockledger.schemas.reservation import (
    OrderCancelledIn,
    OrderCreatedIn,
    OrderReturnedIn,
    ReleasedInventoryOut,
    ReservationCreateIn,
    ReservationExtendIn,
    ReservationListOut,
    ReservationOut,
    ReservationReleaseIn,
    SweepIn,
    SweepOut,
)
from stockledger.services import order_inventory_service, reservation_service
from stockledger.services.order_inventory_service import OrderLine

router = APIRouter(prefix="/reservations", tags=["reservations"])
orders_router = APIRouter(prefix="/orders", tags=["orders"])


def _ttl(minutes: int | None) -> timedelta | None:
    return timedelta(minutes=minutes) if minutes is not None else None


def _reservation_out(reservation: Reservation) -> ReservationOut:
    return ReservationOut(
        id=reservation.id,
        variant_id=reservation.variant_id,
        location_id=reservation.location_id,
        order_id=reservation.order_id,
        quantity=reservation.quantity,
        status=reservation.status,
        expires_at=reservation.expires_at,
        created_by=reservation.created_by,
        created_at=reservation.created_at,
        released_at=reservation.released_at,
        release_reason=reservation.release_reason,
        consumed_at=reservation.consumed_at,
    )


def _reservation_list(reservations: list[Reservation]) -> ReservationListOut:
    return ReservationListOut(items=[_reservation_out(reservation) for reservation in reservations])


@router.post(
    "",
    response_model=ReservationOut,
    status_code=201,
    summary="Hold stock for an order line",
    responses=error_responses(404, 409, 422, 500),
)
def create_reservation(
    payload: ReservationCreateIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reservation = reservation_service.reserve(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        location_id=payload.location_id,
        quantity=payload.quantity,
        order_id=payload.order_id,
        ttl=_ttl(payload.ttl_minutes),
        actor=actor,
    )
    return _reservation_out(reservation)


@router.get(
    "",
    response_model=ReservationListOut,
    summary="List reservations",
    responses=error_responses(422, 500),
)
def list_reservations(
    order_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    reservations = reservation_service.list_reservations(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        status=status,
        limit=limit,
    )
    return _reservation_list(reservations)


@router.post(
    "/sweep",
    response_model=SweepOut,
    summary="Expire this tenant's lapsed reservations now",
    responses=error_responses(422, 500),
)
def sweep_reservations(
    payload: SweepIn | None = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    payload = payload or SweepIn()
    result = reservation_service.sweep_expired(
        db,
        tenant_id=tenant_id,
        batch_size=payload.batch_size,
        actor=actor,
    )
    return SweepOut(
        total_expired=result.total_expired,
        total_released=result.total_released,
        total_failed=result.total_failed,
        released_inventory=[
            ReleasedInventoryOut(variant_id=entry.variant_id, location_id=entry.location_id, quantity=entry.quantity)
            for entry in result.released_inventory
        ],
        errors=result.errors,
    )


@router.get(
    "/{reservation_id}",
    response_model=ReservationOut,
    summary="Get reservation",
    responses=error_responses(404, 422, 500),
)
def get_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    return _reservation_out(
        reservation_service.get_reservation(db, tenant_id=tenant_id, reservation_id=reservation_id)
    )


@router.post(
    "/{reservation_id}/release",
    response_model=ReservationOut,
    summary="Release a reservation back to available stock",
    responses=error_responses(404, 409, 422, 500),
)
def release_reservation(
    reservation_id: str,
    payload: ReservationReleaseIn | None = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    payload = payload or ReservationReleaseIn()
    reservation = reservation_service.release(
        db,
        tenant_id=tenant_id,
        reservation_id=reservation_id,
        reason=payload.reason,
        actor=actor,
    )
    return _reservation_out(reservation)


@router.post(
    "/{reservation_id}/consume",
    response_model=ReservationOut,
    summary="Fulfil a reservation; held units leave inventory",
    responses=error_responses(404, 409, 422, 500),
)
def consume_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reservation = reservation_service.consume(
        db,
        tenant_id=tenant_id,
        reservation_id=reservation_id,
        actor=actor,
    )
    return _reservation_out(reservation)


@router.post(
    "/{reservation_id}/extend",
    response_model=ReservationOut,
    summary="Push a reservation's expiry further out",
    responses=error_responses(404, 409, 422, 500),
)
def extend_reservation(
    reservation_id: str,
    payload: ReservationExtendIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reservation = reservation_service.extend(
        db,
        tenant_id=tenant_id,
        reservation_id=reservation_id,
        additional_minutes=payload.additional_minutes,
        actor=actor,
    )
    return _reservation_out(reservation)


def _lines(payload: OrderCreatedIn | OrderReturnedIn) -> list[OrderLine]:
    return [
        OrderLine(variant_id=line.variant_id, location_id=line.location_id, quantity=line.quantity)
        for line in payload.line_items
    ]


@orders_router.post(
    "/{order_id}/created",
    response_model=ReservationListOut,
    summary="Reserve every line of a new order",
    responses=error_responses(404, 409, 422, 500),
)
def order_created(
    order_id: str,
    payload: OrderCreatedIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reservations = order_inventory_service.order_created(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        line_items=_lines(payload),
        ttl=_ttl(payload.ttl_minutes),
        actor=actor,
    )
    return _reservation_list(reservations)


@orders_router.post(
    "/{order_id}/fulfilled",
    response_model=ReservationListOut,
    summary="Consume the order's reservations",
    responses=error_responses(409, 422, 500),
)
def order_fulfilled(
    order_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reservations = order_inventory_service.order_fulfilled(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        actor=actor,
    )
    return _reservation_list(reservations)


@orders_router.post(
    "/{order_id}/cancelled",
    response_model=ReservationListOut,
    summary="Release the order's reservations",
    responses=error_responses(409, 422, 500),
)
def order_cancelled(
    order_id: str,
    payload: OrderCancelledIn | None = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    payload = payload or OrderCancelledIn()
    reservations = order_inventory_service.order_cancelled(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        reason=payload.reason,
        actor=actor,
    )
    return _reservation_list(reservations)


@orders_router.post(
    "/{order_id}/returned",
    response_model=InventoryItemListOut,
    summary="Put returned units back on hand",
    responses=error_responses(404, 409, 422, 500),
)
def order_returned(
    order_id: str,
    payload: OrderReturnedIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    items = order_inventory_service.order_returned(
        db,
        tenant_id=tenant_id,
        order_id=order_id,
        line_items=_lines(payload),
        reason=payload.reason,
        actor=actor,
    )
    return InventoryItemListOut(items=[item_out(item) for item in items])
