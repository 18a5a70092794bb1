from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from stockledger.schemas.common import PaginationMeta


class TransferValidateIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    from_location_id: str = Field(min_length=1, max_length=36)
    to_location_id: str = Field(min_length=1, max_length=36)
    quantity: int


class TransferCreateIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=36)
    from_location_id: str = Field(min_length=1, max_length=36)
    to_location_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(gt=0)
    reason: str = Field(default="rebalance", min_length=1, max_length=100)
    reference: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=1000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "from_location_id": "warehouse-id",
                "to_location_id": "store-id",
                "quantity": 6,
                "reason": "rebalance",
                "notes": "Weekend demand at the high street store",
            }
        }
    )


class TransferCancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=100)


class TransferValidationOut(BaseModel):
    is_valid: bool
    errors: list[str]
    available_quantity: int


class TransferOut(BaseModel):
    id: str
    variant_id: str
    from_location_id: str
    to_location_id: str
    quantity: int
    status: str
    reason: str
    reference: str
    notes: str | None = None
    created_by: str
    created_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None


class TransferListOut(BaseModel):
    items: list[TransferOut]
    pagination: PaginationMeta


class TransferSuggestionOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    from_location_id: str
    from_location_name: str
    to_location_id: str
    to_location_name: str
    suggested_quantity: int
    reason: str


class TransferSuggestionListOut(BaseModel):
    items: list[TransferSuggestionOut]
