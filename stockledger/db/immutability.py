"""
Append-only enforcement for the movement log and the audit trail.

Mapper events fire during flush, before any SQL for the row is emitted, so a
forbidden UPDATE or DELETE aborts the flush and the surrounding transaction
rolls back. Bulk `update()`/`delete()` statements bypass the ORM and are not
covered here; nothing in the engine issues them against these tables.
"""
import json
import logging

from sqlalchemy import event

from stockledger.core.errors import ImmutableRecordError
from stockledger.models.audit_log import AuditLog
from stockledger.models.inventory import StockMovement

logger = logging.getLogger("stockledger.db")


def _reject(operation: str, target) -> None:
    entity = type(target).__name__
    logger.error(
        json.dumps(
            {
                "event": "immutability_violation_blocked",
                "entity": entity,
                "entity_id": getattr(target, "id", None),
                "operation": operation,
            }
        )
    )
    raise ImmutableRecordError(
        f"{entity} rows are append-only; {operation} is not allowed",
        details={"entity": entity, "entity_id": getattr(target, "id", None), "operation": operation},
    )


@event.listens_for(StockMovement, "before_update")
@event.listens_for(AuditLog, "before_update")
def _block_update(mapper, connection, target):
    _reject("update", target)


@event.listens_for(StockMovement, "before_delete")
@event.listens_for(AuditLog, "before_delete")
def _block_delete(mapper, connection, target):
    _reject("delete", target)
