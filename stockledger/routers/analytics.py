from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db, get_tenant_id
from stockledger.schemas.analytics import (
    AgingItemOut,
    AgingOut,
    ExpiredVariantOut,
    ForecastItemOut,
    ForecastOut,
    LowStockItemOut,
    LowStockListOut,
    ReservationAlertOut,
    ReservationHealthOut,
    ReservationStatisticsOut,
    SafetyStockRecommendationListOut,
    SafetyStockRecommendationOut,
    SalesVelocityOut,
    ValuationBucketOut,
    ValuationOut,
)
from stockledger.services import analytics_service
from stockledger.services.analytics_service import ValuationBucket

router = APIRouter(prefix="/analytics", tags=["analytics"])


def _bucket_out(bucket: ValuationBucket) -> ValuationBucketOut:
    return ValuationBucketOut(
        key=bucket.key,
        name=bucket.name,
        value=float(bucket.value),
        units=bucket.units,
        percentage=bucket.percentage,
    )


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="Items below their low-stock threshold, most urgent first",
    responses=error_responses(422, 500),
)
def low_stock(
    location_id: str | None = Query(default=None),
    threshold: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    report = analytics_service.low_stock_report(db, tenant_id=tenant_id, location_id=location_id, threshold=threshold)
    return LowStockListOut(items=[LowStockItemOut(**asdict(entry)) for entry in report])


@router.get(
    "/velocity/{variant_id}",
    response_model=SalesVelocityOut,
    summary="Units sold per day, week and month",
    responses=error_responses(422, 500),
)
def sales_velocity(
    variant_id: str,
    location_id: str | None = Query(default=None),
    window_days: int | None = Query(default=None, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    velocity = analytics_service.sales_velocity(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        window_days=window_days,
    )
    return SalesVelocityOut(**asdict(velocity))


@router.get(
    "/forecast",
    response_model=ForecastOut,
    summary="Projected stock and reorder recommendations",
    responses=error_responses(422, 500),
)
def forecast(
    variant_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    horizon_days: int | None = Query(default=None, ge=1, le=365),
    window_days: int | None = Query(default=None, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    entries = analytics_service.forecast(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        horizon_days=horizon_days,
        window_days=window_days,
    )
    return ForecastOut(items=[ForecastItemOut(**asdict(entry)) for entry in entries])


@router.get(
    "/aging",
    response_model=AgingOut,
    summary="Stock grouped by time since last sale",
    responses=error_responses(422, 500),
)
def aging(
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    entries = analytics_service.aging_report(db, tenant_id=tenant_id, location_id=location_id)
    return AgingOut(
        items=[
            AgingItemOut(**{**asdict(entry), "value": float(entry.value)})
            for entry in entries
        ]
    )


@router.get(
    "/valuation",
    response_model=ValuationOut,
    summary="Stock value by location, category and sales pace",
    responses=error_responses(422, 500),
)
def valuation(
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    result = analytics_service.valuation(db, tenant_id=tenant_id, location_id=location_id)
    return ValuationOut(
        total_value=float(result.total_value),
        total_units=result.total_units,
        average_unit_value=float(result.average_unit_value),
        fast_moving_value=float(result.fast_moving_value),
        slow_moving_value=float(result.slow_moving_value),
        by_location=[_bucket_out(bucket) for bucket in result.by_location],
        by_category=[_bucket_out(bucket) for bucket in result.by_category],
    )


@router.get(
    "/reservations",
    response_model=ReservationStatisticsOut,
    summary="Reservation expiry statistics",
    responses=error_responses(422, 500),
)
def reservation_statistics(
    days: int = Query(default=7, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    stats = analytics_service.reservation_statistics(db, tenant_id=tenant_id, days=days)
    return ReservationStatisticsOut(
        days=stats.days,
        total_reservations=stats.total_reservations,
        expired_reservations=stats.expired_reservations,
        expiration_rate=stats.expiration_rate,
        average_reservation_minutes=stats.average_reservation_minutes,
        top_expired_variants=[ExpiredVariantOut(**asdict(entry)) for entry in stats.top_expired_variants],
    )


@router.get(
    "/reservations/health",
    response_model=ReservationHealthOut,
    summary="Alerts on reservation expiry rate and stock left after expiry",
    responses=error_responses(422, 500),
)
def reservation_health(
    days: int = Query(default=7, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    alerts = analytics_service.reservation_health_alerts(db, tenant_id=tenant_id, days=days)
    return ReservationHealthOut(days=days, alerts=[ReservationAlertOut(**asdict(alert)) for alert in alerts])


@router.get(
    "/safety-stock",
    response_model=SafetyStockRecommendationListOut,
    summary="Recommended safety stock from recent sales velocity",
    responses=error_responses(422, 500),
)
def safety_stock_recommendations(
    variant_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    window_days: int | None = Query(default=None, ge=1, le=365),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
):
    recommendations = analytics_service.recommended_safety_stock(
        db,
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        window_days=window_days,
    )
    return SafetyStockRecommendationListOut(
        items=[SafetyStockRecommendationOut(**asdict(entry)) for entry in recommendations]
    )
