from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_actor, get_db, get_tenant_id
from stockledger.models.transfer import StockTransfer
from stockledger.schemas.common import PaginationMeta
from stockledger.schemas.transfer import (
    TransferCancelIn,
    TransferCreateIn,
    TransferListOut,
    TransferOut,
    TransferSuggestionListOut,
    TransferSuggestionOut,
    TransferValidateIn,
    TransferValidationOut,
)
from stockledger.services import transfer_service

router = APIRouter(prefix="/transfers", tags=["transfers"])


def _transfer_out(transfer: StockTransfer) -> TransferOut:
    return TransferOut(
        id=transfer.id,
        variant_id=transfer.variant_id,
        from_location_id=transfer.from_location_id,
        to_location_id=transfer.to_location_id,
        quantity=transfer.quantity,
        status=transfer.status,
        reason=transfer.reason,
        reference=transfer.reference,
        notes=transfer.notes,
        created_by=transfer.created_by,
        created_at=transfer.created_at,
        completed_at=transfer.completed_at,
        completed_by=transfer.completed_by,
        cancelled_at=transfer.cancelled_at,
        cancelled_by=transfer.cancelled_by,
    )


@router.post(
    "/validate",
    response_model=TransferValidationOut,
    summary="Dry-run a transfer without moving stock",
    responses=error_responses(422, 500),
)
def validate_transfer(
    payload: TransferValidateIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    validation = transfer_service.validate_transfer(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
    )
    return TransferValidationOut(
        is_valid=validation.is_valid,
        errors=validation.errors,
        available_quantity=validation.available_quantity,
    )


@router.post(
    "",
    response_model=TransferOut,
    status_code=201,
    summary="Start a transfer; source stock is debited immediately",
    responses=error_responses(400, 409, 422, 500),
)
def create_transfer(
    payload: TransferCreateIn,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    transfer = transfer_service.create_transfer(
        db,
        tenant_id=tenant_id,
        variant_id=payload.variant_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
        reason=payload.reason,
        reference=payload.reference,
        notes=payload.notes,
        actor=actor,
    )
    return _transfer_out(transfer)


@router.get(
    "",
    response_model=TransferListOut,
    summary="List transfers",
    responses=error_responses(422, 500),
)
def list_transfers(
    variant_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None, description="Matches either end of the transfer."),
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    rows, total = transfer_service.list_transfers(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    count = len(rows)
    return TransferListOut(
        items=[_transfer_out(transfer) for transfer in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/suggestions",
    response_model=TransferSuggestionListOut,
    summary="Suggest transfers that rebalance stock between locations",
    responses=error_responses(422, 500),
)
def get_transfer_suggestions(
    variant_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    suggestions = transfer_service.get_transfer_suggestions(db, tenant_id=tenant_id, variant_id=variant_id)
    return TransferSuggestionListOut(
        items=[
            TransferSuggestionOut(
                variant_id=entry.variant_id,
                variant_title=entry.variant_title,
                from_location_id=entry.from_location_id,
                from_location_name=entry.from_location_name,
                to_location_id=entry.to_location_id,
                to_location_name=entry.to_location_name,
                suggested_quantity=entry.suggested_quantity,
                reason=entry.reason,
            )
            for entry in suggestions
        ]
    )


@router.get(
    "/{transfer_id}",
    response_model=TransferOut,
    summary="Get transfer",
    responses=error_responses(404, 422, 500),
)
def get_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    return _transfer_out(transfer_service.get_transfer(db, tenant_id=tenant_id, transfer_id=transfer_id))


@router.post(
    "/{transfer_id}/complete",
    response_model=TransferOut,
    summary="Receive a pending transfer at its destination",
    responses=error_responses(404, 409, 422, 500),
)
def complete_transfer(
    transfer_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    transfer = transfer_service.complete_transfer(db, tenant_id=tenant_id, transfer_id=transfer_id, actor=actor)
    return _transfer_out(transfer)


@router.post(
    "/{transfer_id}/cancel",
    response_model=TransferOut,
    summary="Cancel a pending transfer and return stock to the source",
    responses=error_responses(404, 409, 422, 500),
)
def cancel_transfer(
    transfer_id: str,
    payload: TransferCancelIn | None = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    actor: str = Depends(get_actor),
):
    reason = payload.reason if payload is not None else None
    transfer = transfer_service.cancel_transfer(
        db,
        tenant_id=tenant_id,
        transfer_id=transfer_id,
        reason=reason,
        actor=actor,
    )
    return _transfer_out(transfer)
