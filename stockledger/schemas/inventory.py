from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MovementTypeIn = Literal["sale", "restock", "adjustment", "return", "transfer_out", "transfer_in"]


class InventoryItemOut(BaseModel):
    id: str | None = None
    variant_id: str
    location_id: str
    on_hand: int
    reserved: int
    unreserved: int
    safety_stock: int
    channel_buffers: dict[str, int] = Field(default_factory=dict)
    last_counted_at: datetime | None = None
    updated_at: datetime | None = None


class InventoryItemListOut(BaseModel):
    items: list[InventoryItemOut]


class MovementIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    type: MovementTypeIn
    quantity_delta: int = Field(
        ..., description="Signed change to on_hand. Sales and transfer_out are negative; restock and returns positive."
    )
    reason: str = Field(min_length=1, max_length=100)
    reference: str | None = Field(default=None, max_length=100)

    @field_validator("quantity_delta")
    @classmethod
    def validate_non_zero_quantity_delta(cls, value: int) -> int:
        if value == 0:
            raise ValueError("quantity_delta cannot be zero")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "location_id": "location-id-here",
                "type": "restock",
                "quantity_delta": 20,
                "reason": "supplier_delivery",
                "reference": "PO-1042",
            }
        }
    )


class BulkMovementIn(BaseModel):
    movements: list[MovementIn] = Field(min_length=1, max_length=500)


class AppliedMovementOut(BaseModel):
    index: int
    item: InventoryItemOut


class FailedMovementOut(BaseModel):
    index: int
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class BulkMovementOut(BaseModel):
    applied: list[AppliedMovementOut]
    failed: list[FailedMovementOut]


class SetLevelIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    new_on_hand: int = Field(ge=0)
    reason: str = Field(default="physical_count", min_length=1, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "location_id": "location-id-here",
                "new_on_hand": 42,
                "reason": "physical_count",
            }
        }
    )


class SafetyStockIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    safety_stock: int = Field(ge=0)


class ChannelBufferIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    channel: str = Field(min_length=1, max_length=50)
    buffer_quantity: int = Field(ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "location_id": "location-id-here",
                "channel": "marketplace",
                "buffer_quantity": 3,
            }
        }
    )


class LocationAvailabilityOut(BaseModel):
    location_id: str
    on_hand: int
    reserved: int
    safety_stock: int
    channel_buffer: int
    available_to_sell: int


class AvailableToSellOut(BaseModel):
    variant_id: str
    channel: str
    available_to_sell: int
    locations: list[LocationAvailabilityOut]


class StockMovementOut(BaseModel):
    id: int
    variant_id: str
    location_id: str
    type: str
    quantity_delta: int
    reason: str
    reference: str | None = None
    actor: str
    on_hand_after: int
    reserved_after: int
    created_at: datetime


class StockHistoryOut(BaseModel):
    items: list[StockMovementOut]


class LedgerCheckOut(BaseModel):
    variant_id: str
    location_id: str
    on_hand: int
    reserved: int
    replayed_on_hand: int
    replayed_reserved: int
    movement_count: int
    consistent: bool
