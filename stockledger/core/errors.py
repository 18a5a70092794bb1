from typing import Any


class InventoryError(Exception):
    """Base class for every failure the inventory engine reports to callers."""

    code: str = "inventory_error"
    status_code: int = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(InventoryError):
    code = "validation_error"
    status_code = 422


class NotFoundError(InventoryError):
    code = "not_found"
    status_code = 404


class InsufficientInventoryError(InventoryError):
    """Requested quantity exceeds what the ledger can give. Never retried."""

    code = "insufficient_inventory"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        requested: int,
        available: int,
        details: dict[str, Any] | None = None,
    ):
        self.requested = requested
        self.available = available
        merged = {"requested": requested, "available": available}
        merged.update(details or {})
        super().__init__(message, details=merged)


class InvalidTransferError(InventoryError):
    code = "invalid_transfer"
    status_code = 400

    def __init__(self, errors: list[str], *, available_quantity: int | None = None):
        self.errors = errors
        self.available_quantity = available_quantity
        super().__init__(
            "; ".join(errors) if errors else "Invalid transfer",
            details={"errors": errors, "available_quantity": available_quantity},
        )


class InvalidStateTransitionError(InventoryError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, entity: str, entity_id: str, current_status: str, target_status: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current_status} to {target_status}",
            details={
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )


class ConcurrencyConflictError(InventoryError):
    code = "concurrency_conflict"
    status_code = 409

    def __init__(self, action: str, attempts: int):
        self.action = action
        self.attempts = attempts
        super().__init__(
            f"{action} could not be committed after {attempts} attempts",
            details={"action": action, "attempts": attempts},
        )


def require_tenant(tenant_id: str | None) -> str:
    if tenant_id is None or not str(tenant_id).strip():
        raise ValidationError("tenant_id is required")
    return str(tenant_id).strip()


def require_positive_quantity(quantity: int, *, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if quantity <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={"field": field, "value": quantity})
    return quantity


class ImmutableRecordError(InventoryError):
    code = "immutable_record"
    status_code = 409
