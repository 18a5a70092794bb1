import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, system_clock
from stockledger.core.errors import ValidationError, require_tenant
from stockledger.core.observability import log_event
from stockledger.models.inventory import InventoryItem
from stockledger.repositories.inventory_repository import InventoryRepository
from stockledger.services.audit_service import log_audit_event
from stockledger.services.ledger_service import lock_item, require_catalog, require_text
from stockledger.services.unit_of_work import run_atomic

logger = logging.getLogger("stockledger.channels")


@dataclass
class LocationAvailability:
    location_id: str
    on_hand: int
    reserved: int
    safety_stock: int
    channel_buffer: int
    available_to_sell: int


@dataclass
class ChannelAvailability:
    variant_id: str
    channel: str
    total_available: int
    locations: list[LocationAvailability]


def available_for_channel(item: InventoryItem, channel: str) -> int:
    return max(0, item.on_hand - item.reserved - item.safety_stock - item.buffer_for(channel))


def _require_channel(channel: str) -> str:
    channel = require_text(channel, "channel")
    if len(channel) > 50:
        raise ValidationError("channel must be at most 50 characters", details={"field": "channel"})
    return channel


def channel_availability(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    channel: str,
    location_id: str | None = None,
) -> ChannelAvailability:
    tenant_id = require_tenant(tenant_id)
    channel = _require_channel(channel)
    items = InventoryRepository(db).list_items(tenant_id, variant_id=variant_id, location_id=location_id)
    locations = [
        LocationAvailability(
            location_id=item.location_id,
            on_hand=item.on_hand,
            reserved=item.reserved,
            safety_stock=item.safety_stock,
            channel_buffer=item.buffer_for(channel),
            available_to_sell=available_for_channel(item, channel),
        )
        for item in items
    ]
    return ChannelAvailability(
        variant_id=variant_id,
        channel=channel,
        total_available=sum(entry.available_to_sell for entry in locations),
        locations=locations,
    )


def available_to_sell(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    channel: str,
    location_id: str | None = None,
) -> int:
    """Per-location availability summed across locations; each location is floored at zero first."""
    return channel_availability(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        channel=channel,
        location_id=location_id,
    ).total_available


def set_channel_buffer(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str,
    channel: str,
    buffer_quantity: int,
    actor: str,
    clock: Clock = system_clock,
) -> InventoryItem:
    """Policy write on the item; not a movement."""
    tenant_id = require_tenant(tenant_id)
    channel = _require_channel(channel)
    actor = require_text(actor, "actor")
    if isinstance(buffer_quantity, bool) or not isinstance(buffer_quantity, int) or buffer_quantity < 0:
        raise ValidationError(
            "buffer_quantity must be a non-negative integer",
            details={"field": "buffer_quantity", "value": buffer_quantity},
        )

    def _set(session: Session) -> tuple[InventoryItem, int]:
        repo = InventoryRepository(session)
        require_catalog(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
        now = clock.now()
        item = lock_item(repo, tenant_id=tenant_id, variant_id=variant_id, location_id=location_id, now=now)
        previous = item.buffer_for(channel)
        buffers = dict(item.channel_buffers or {})
        buffers[channel] = buffer_quantity
        # Reassign so the JSON column is flagged dirty.
        item.channel_buffers = buffers
        item.updated_at = now
        log_audit_event(
            session,
            tenant_id=tenant_id,
            actor=actor,
            action="inventory.channel_buffer.set",
            target_type="inventory_item",
            target_id=item.id,
            metadata_json={
                "variant_id": variant_id,
                "location_id": location_id,
                "channel": channel,
                "previous": previous,
                "buffer_quantity": buffer_quantity,
            },
        )
        return item, previous

    item, previous = run_atomic(db, "set_channel_buffer", _set)
    log_event(
        "channel_buffer.set",
        log=logger,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        channel=channel,
        previous=previous,
        buffer_quantity=buffer_quantity,
        actor=actor,
    )
    return item
