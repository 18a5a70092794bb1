"""
Transfer coordinator.

A transfer moves in two committed steps with the durable `pending` row between
them: creation debits the source (transfer_out), completion credits the
destination (transfer_in), cancellation re-credits the source.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, system_clock
from stockledger.core.config import settings
from stockledger.core.errors import (
    InvalidStateTransitionError,
    InvalidTransferError,
    NotFoundError,
    ValidationError,
    require_tenant,
)
from stockledger.core.id_utils import generate_reference_code, generate_shortuuid
from stockledger.core.observability import log_event
from stockledger.models.inventory import MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT, StockMovement
from stockledger.models.transfer import (
    TRANSFER_CANCELLED,
    TRANSFER_COMPLETED,
    TRANSFER_PENDING,
    TRANSFER_STATUSES,
    StockTransfer,
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

logger = logging.getLogger("stockledger.transfers")


@dataclass
class TransferValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    available_quantity: int = 0


@dataclass
class TransferSuggestion:
    variant_id: str
    variant_title: str | None
    from_location_id: str
    from_location_name: str
    to_location_id: str
    to_location_name: str
    suggested_quantity: int
    reason: str


def _shape_errors(from_location_id: str, to_location_id: str, quantity: int) -> list[str]:
    errors: list[str] = []
    if from_location_id == to_location_id:
        errors.append("Source and destination locations must be different")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        errors.append("Quantity must be greater than 0")
    return errors


def validate_transfer(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    from_location_id: str,
    to_location_id: str,
    quantity: int,
) -> TransferValidation:
    """Dry run of create_transfer's checks. Writes nothing."""
    tenant_id = require_tenant(tenant_id)
    repo = InventoryRepository(db)
    errors = _shape_errors(from_location_id, to_location_id, quantity)

    source = repo.get_location(tenant_id, from_location_id)
    if source is None or not source.is_active:
        errors.append("Source location not found or inactive")
    destination = repo.get_location(tenant_id, to_location_id)
    if destination is None or not destination.is_active:
        errors.append("Destination location not found or inactive")
    variant = repo.get_variant(tenant_id, variant_id)
    if variant is None:
        errors.append("Product variant not found")

    available = 0
    if source is not None and variant is not None:
        item = repo.get_item(tenant_id, variant_id, from_location_id)
        if item is None:
            errors.append("No inventory found at source location")
        else:
            available = item.on_hand - item.reserved
            if isinstance(quantity, int) and quantity > available:
                errors.append(f"Insufficient inventory: {available} available, {quantity} requested")

    return TransferValidation(is_valid=not errors, errors=errors, available_quantity=available)


def create_transfer(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    from_location_id: str,
    to_location_id: str,
    quantity: int,
    reason: str = "rebalance",
    reference: str | None = None,
    notes: str | None = None,
    actor: str,
    clock: Clock = system_clock,
) -> StockTransfer:
    tenant_id = require_tenant(tenant_id)
    errors = _shape_errors(from_location_id, to_location_id, quantity)
    if errors:
        raise InvalidTransferError(errors)
    reason = require_text(reason, "reason")
    actor = require_text(actor, "actor")
    reference = reference.strip() if reference and reference.strip() else generate_reference_code("trf")

    def _create(session: Session) -> tuple[StockTransfer, StockMovement]:
        repo = InventoryRepository(session)
        require_catalog(
            repo,
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=from_location_id,
            require_active_location=True,
        )
        require_catalog(
            repo,
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=to_location_id,
            require_active_location=True,
        )
        now = clock.now()
        source = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=from_location_id, now=now)
        # Reserved units stay put; only the unreserved pool can travel.
        available = source.on_hand - source.reserved
        if quantity > available:
            raise InvalidTransferError(
                [f"Insufficient inventory: {available} available, {quantity} requested"],
                available_quantity=available,
            )

        transfer = repo.add_transfer(
            StockTransfer(
                id=generate_shortuuid(),
                tenant_id=tenant_id,
                variant_id=variant_id,
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                quantity=quantity,
                status=TRANSFER_PENDING,
                reason=reason,
                reference=reference,
                notes=notes,
                created_by=actor,
                created_at=now,
            )
        )
        movement = record_movement(
            repo,
            source,
            quantity_delta=-quantity,
            movement_type=MOVEMENT_TRANSFER_OUT,
            reason=reason,
            reference=transfer.id,
            actor=actor,
            now=now,
        )
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="transfer.create",
            target_type="stock_transfer",
            target_id=transfer.id,
            metadata_json={
                "variant_id": variant_id,
                "from_location_id": from_location_id,
                "to_location_id": to_location_id,
                "quantity": quantity,
                "reference": reference,
            },
        )
        return transfer, movement

    transfer, movement = run_atomic(db, "create_transfer", _create)
    log_movement(movement)
    _log_transition("transfer.created", transfer, actor)
    return transfer


def _get_or_404(repo: InventoryRepository, tenant_id: str, transfer_id: str) -> StockTransfer:
    transfer = repo.get_transfer(tenant_id, transfer_id)
    if transfer is None:
        raise NotFoundError("Transfer not found", details={"transfer_id": transfer_id})
    return transfer


def _log_transition(event: str, transfer: StockTransfer, actor: str, **fields) -> None:
    log_event(
        event,
        log=logger,
        tenant_id=transfer.tenant_id,
        transfer_id=transfer.id,
        variant_id=transfer.variant_id,
        from_location_id=transfer.from_location_id,
        to_location_id=transfer.to_location_id,
        quantity=transfer.quantity,
        status=transfer.status,
        reference=transfer.reference,
        actor=actor,
        **fields,
    )


def _settle(
    db: Session,
    *,
    tenant_id: str,
    transfer_id: str,
    target_status: str,
    actor: str,
    clock: Clock,
    cancel_reason: str | None = None,
) -> StockTransfer:
    def _run(session: Session) -> tuple[StockTransfer, StockMovement]:
        repo = InventoryRepository(session)
        transfer = _get_or_404(repo, tenant_id, transfer_id)
        if transfer.status != TRANSFER_PENDING:
            raise InvalidStateTransitionError("transfer", transfer.id, transfer.status, target_status)

        now = clock.now()
        if target_status == TRANSFER_COMPLETED:
            values = {"status": TRANSFER_COMPLETED, "completed_at": now, "completed_by": actor}
            location_id = transfer.to_location_id
            reason = "transfer_in"
        else:
            values = {"status": TRANSFER_CANCELLED, "cancelled_at": now, "cancelled_by": actor}
            location_id = transfer.from_location_id
            reason = "transfer_cancelled"

        claimed = repo.transition_transfer(tenant_id, transfer.id, from_status=TRANSFER_PENDING, **values)
        session.refresh(transfer)
        if not claimed:
            raise InvalidStateTransitionError("transfer", transfer.id, transfer.status, target_status)

        item = lock_item(
            repo,
            tenant_id=tenant_id,
            variant_id=transfer.variant_id,
            location_id=location_id,
            now=now,
        )
        movement = record_movement(
            repo,
            item,
            quantity_delta=transfer.quantity,
            movement_type=MOVEMENT_TRANSFER_IN,
            reason=reason,
            reference=transfer.id,
            actor=actor,
            now=now,
        )
        metadata = {
            "variant_id": transfer.variant_id,
            "location_id": location_id,
            "quantity": transfer.quantity,
        }
        if cancel_reason:
            metadata["reason"] = cancel_reason
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="transfer.complete" if target_status == TRANSFER_COMPLETED else "transfer.cancel",
            target_type="stock_transfer",
            target_id=transfer.id,
            metadata_json=metadata,
        )
        return transfer, movement

    transfer, movement = run_atomic(db, f"{target_status}_transfer", _run)
    log_movement(movement)
    if target_status == TRANSFER_COMPLETED:
        _log_transition("transfer.completed", transfer, actor)
    else:
        _log_transition("transfer.cancelled", transfer, actor, reason=cancel_reason)
    return transfer


def complete_transfer(
    db: Session,
    *,
    tenant_id: str,
    transfer_id: str,
    actor: str,
    clock: Clock = system_clock,
) -> StockTransfer:
    return _settle(
        db,
        tenant_id=require_tenant(tenant_id),
        transfer_id=transfer_id,
        target_status=TRANSFER_COMPLETED,
        actor=require_text(actor, "actor"),
        clock=clock,
    )


def cancel_transfer(
    db: Session,
    *,
    tenant_id: str,
    transfer_id: str,
    reason: str | None = None,
    actor: str,
    clock: Clock = system_clock,
) -> StockTransfer:
    return _settle(
        db,
        tenant_id=require_tenant(tenant_id),
        transfer_id=transfer_id,
        target_status=TRANSFER_CANCELLED,
        actor=require_text(actor, "actor"),
        clock=clock,
        cancel_reason=reason,
    )


def get_transfer(db: Session, *, tenant_id: str, transfer_id: str) -> StockTransfer:
    return _get_or_404(InventoryRepository(db), require_tenant(tenant_id), transfer_id)


def list_transfers(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str | None = None,
    location_id: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockTransfer], int]:
    tenant_id = require_tenant(tenant_id)
    if status is not None and status not in TRANSFER_STATUSES:
        raise ValidationError(
            f"Unknown transfer status '{status}'",
            details={"status": status, "allowed": list(TRANSFER_STATUSES)},
        )
    return InventoryRepository(db).list_transfers(
        tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        status=status,
        limit=limit,
        offset=offset,
    )


def get_transfer_suggestions(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str | None = None,
    clock: Clock = system_clock,
) -> list[TransferSuggestion]:
    """
    Read-only rebalancing proposals.

    Each active location's target is safety stock plus `transfer_suggestion_cover_days`
    of demand at its trailing sales velocity. Locations holding more unreserved stock
    than their target donate the surplus to locations below theirs, largest first.
    """
    tenant_id = require_tenant(tenant_id)
    repo = InventoryRepository(db)
    now = clock.now()
    window_days = settings.sales_velocity_window_days
    cover_days = settings.transfer_suggestion_cover_days

    locations = {location.id: location for location in repo.list_locations(tenant_id)}
    items = [
        item
        for item in repo.list_items(tenant_id, variant_id=variant_id)
        if item.location_id in locations
    ]
    sales = repo.sale_totals(tenant_id, since=now - timedelta(days=window_days), variant_id=variant_id)
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))

    by_variant: dict[str, list] = {}
    for item in items:
        by_variant.setdefault(item.variant_id, []).append(item)

    suggestions: list[TransferSuggestion] = []
    for current_variant, variant_items in sorted(by_variant.items()):
        if len(variant_items) < 2:
            continue

        donors: list[list] = []
        recipients: list[list] = []
        for item in variant_items:
            units_sold, _ = sales.get((current_variant, item.location_id), (0, 0))
            velocity = units_sold / window_days
            target = item.safety_stock + math.ceil(velocity * cover_days)
            unreserved = item.on_hand - item.reserved
            if unreserved > target:
                donors.append([item, unreserved - target])
            elif unreserved < target:
                recipients.append([item, target - unreserved, unreserved, target])

        donors.sort(key=lambda entry: (-entry[1], entry[0].location_id))
        recipients.sort(key=lambda entry: (-entry[1], entry[0].location_id))

        title = catalog[current_variant][0].title if current_variant in catalog else None
        for recipient in recipients:
            for donor in donors:
                if recipient[1] <= 0:
                    break
                if donor[1] <= 0:
                    continue
                quantity = min(donor[1], recipient[1])
                donor[1] -= quantity
                recipient[1] -= quantity
                source = locations[donor[0].location_id]
                destination = locations[recipient[0].location_id]
                suggestions.append(
                    TransferSuggestion(
                        variant_id=current_variant,
                        variant_title=title,
                        from_location_id=source.id,
                        from_location_name=source.name,
                        to_location_id=destination.id,
                        to_location_name=destination.name,
                        suggested_quantity=quantity,
                        reason=(
                            f"Rebalance: {destination.name} holds {recipient[2]} unreserved "
                            f"against a target of {recipient[3]}"
                        ),
                    )
                )

    return suggestions[: settings.transfer_suggestion_limit]
