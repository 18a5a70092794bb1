from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class LowStockItemOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    sku: str | None = None
    location_id: str
    location_name: str | None = None
    on_hand: int
    reserved: int
    safety_stock: int
    available: int
    threshold: int
    urgency: float
    sales_velocity: float
    days_of_stock: float | None = None
    reorder_suggestion: int
    last_sale_at: datetime | None = None


class LowStockListOut(BaseModel):
    items: list[LowStockItemOut]


class SalesVelocityOut(BaseModel):
    variant_id: str
    location_id: str | None = None
    window_days: int
    units_sold: int
    sale_count: int
    daily_average: float
    weekly_average: float
    monthly_average: float
    trend: str


class ForecastItemOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    location_id: str
    location_name: str | None = None
    on_hand: int
    daily_velocity: float
    horizon_days: int
    projected_stock: float
    days_until_stockout: float | None = None
    recommended_reorder_quantity: int
    recommended_reorder_date: datetime | None = None
    confidence: float


class ForecastOut(BaseModel):
    items: list[ForecastItemOut]


class AgingItemOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    sku: str | None = None
    location_id: str
    location_name: str | None = None
    quantity: int
    value: float
    last_movement_at: datetime
    days_without_sale: int
    aging_category: str
    recommended_action: str


class AgingOut(BaseModel):
    items: list[AgingItemOut]


class ValuationBucketOut(BaseModel):
    key: str
    name: str
    value: float
    units: int
    percentage: float


class ValuationOut(BaseModel):
    total_value: float
    total_units: int
    average_unit_value: float
    fast_moving_value: float
    slow_moving_value: float
    by_location: list[ValuationBucketOut]
    by_category: list[ValuationBucketOut]


class ExpiredVariantOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    expired_count: int
    total_quantity: int


class ReservationStatisticsOut(BaseModel):
    days: int
    total_reservations: int
    expired_reservations: int
    expiration_rate: float
    average_reservation_minutes: float
    top_expired_variants: list[ExpiredVariantOut]


class SafetyStockRecommendationOut(BaseModel):
    variant_id: str
    variant_title: str | None = None
    sku: str | None = None
    location_id: str
    location_name: str | None = None
    current_safety_stock: int
    recommended_safety_stock: int
    method: str
    lead_time_days: int
    average_demand: float
    demand_variability: float
    service_level: float
    seasonal_factor: float
    trend: str
    confidence: float


class SafetyStockRecommendationListOut(BaseModel):
    items: list[SafetyStockRecommendationOut]


class ReservationAlertOut(BaseModel):
    type: str
    severity: str
    message: str
    created_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class ReservationHealthOut(BaseModel):
    days: int
    alerts: list[ReservationAlertOut]
