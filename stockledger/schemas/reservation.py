from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ReservationCreateIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(gt=0)
    order_id: str = Field(min_length=1, max_length=100)
    ttl_minutes: int | None = Field(default=None, gt=0, description="Defaults to RESERVATION_DEFAULT_TTL_MINUTES.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "location_id": "location-id-here",
                "quantity": 2,
                "order_id": "ORD-20260301-0001",
                "ttl_minutes": 30,
            }
        }
    )


class ReservationReleaseIn(BaseModel):
    reason: str = Field(default="released", min_length=1, max_length=100)


class ReservationExtendIn(BaseModel):
    additional_minutes: int = Field(gt=0)


class ReservationOut(BaseModel):
    id: str
    variant_id: str
    location_id: str
    order_id: str
    quantity: int
    status: str
    expires_at: datetime
    created_by: str
    created_at: datetime | None = None
    released_at: datetime | None = None
    release_reason: str | None = None
    consumed_at: datetime | None = None


class ReservationListOut(BaseModel):
    items: list[ReservationOut]


class SweepIn(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=5000)


class ReleasedInventoryOut(BaseModel):
    variant_id: str
    location_id: str
    quantity: int


class SweepOut(BaseModel):
    total_expired: int
    total_released: int
    total_failed: int
    released_inventory: list[ReleasedInventoryOut]
    errors: list[str]


class OrderLineIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    location_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(gt=0)


class OrderCreatedIn(BaseModel):
    line_items: list[OrderLineIn] = Field(min_length=1)
    ttl_minutes: int | None = Field(default=None, gt=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "line_items": [
                    {"variant_id": "variant-id-here", "location_id": "location-id-here", "quantity": 1},
                ],
                "ttl_minutes": 60,
            }
        }
    )


class OrderCancelledIn(BaseModel):
    reason: str = Field(default="order_cancelled", min_length=1, max_length=100)


class OrderReturnedIn(BaseModel):
    line_items: list[OrderLineIn] = Field(min_length=1)
    reason: str = Field(default="order_returned", min_length=1, max_length=100)
