"""
Read-only reports over the ledger and the movement log. Nothing here writes.

Velocity is units sold per day, taken from `sale` movements over a trailing
window. Low-stock, forecast and transfer suggestions all share that definition.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from stockledger.core.clock import Clock, as_utc, system_clock
from stockledger.core.config import settings
from stockledger.core.errors import ValidationError, require_tenant
from stockledger.core.money import ZERO_MONEY, share_percent, stock_value, to_money
from stockledger.core.observability import log_event
from stockledger.models.inventory import InventoryItem
from stockledger.models.reservation import (
    RESERVATION_CONSUMED,
    RESERVATION_EXPIRED,
    RESERVATION_RELEASED,
)
from stockledger.repositories.inventory_repository import InventoryRepository

AGING_FRESH = "fresh"
AGING_SLOW = "slow"
AGING_DEAD = "dead"

AGING_ACTIONS = {
    AGING_FRESH: "Monitor",
    AGING_SLOW: "Promote or discount to move inventory",
    AGING_DEAD: "Consider liquidation or return to vendor",
}

# Daily velocity above which stock counts as fast-moving in the valuation split.
FAST_MOVING_DAILY_UNITS = 0.5

# Statistical safety stock at a 95% service level. Demand deviation is taken as a
# fixed share of average daily demand.
SAFETY_SERVICE_LEVEL = 0.95
SAFETY_Z_SCORE = 1.65
DEMAND_VARIATION = 0.3
TREND_FACTORS = {"increasing": 1.2, "decreasing": 0.8, "stable": 1.0}

ALERT_CRITICAL_EXPIRATION_RATE = 30.0

logger = logging.getLogger("stockledger.analytics")


@dataclass
class LowStockItem:
    variant_id: str
    variant_title: str | None
    sku: str | None
    location_id: str
    location_name: str | None
    on_hand: int
    reserved: int
    safety_stock: int
    available: int
    threshold: int
    urgency: float
    sales_velocity: float
    days_of_stock: float | None
    reorder_suggestion: int
    last_sale_at: datetime | None


@dataclass
class SalesVelocity:
    variant_id: str
    location_id: str | None
    window_days: int
    units_sold: int
    sale_count: int
    daily_average: float
    weekly_average: float
    monthly_average: float
    trend: str


@dataclass
class ForecastEntry:
    variant_id: str
    variant_title: str | None
    location_id: str
    location_name: str | None
    on_hand: int
    daily_velocity: float
    horizon_days: int
    projected_stock: float
    days_until_stockout: float | None
    recommended_reorder_quantity: int
    recommended_reorder_date: datetime | None
    confidence: float


@dataclass
class AgingEntry:
    variant_id: str
    variant_title: str | None
    sku: str | None
    location_id: str
    location_name: str | None
    quantity: int
    value: Decimal
    last_movement_at: datetime
    days_without_sale: int
    aging_category: str
    recommended_action: str


@dataclass
class ValuationBucket:
    key: str
    name: str
    value: Decimal
    units: int
    percentage: float = 0.0


@dataclass
class Valuation:
    total_value: Decimal
    total_units: int
    average_unit_value: Decimal
    fast_moving_value: Decimal
    slow_moving_value: Decimal
    by_location: list[ValuationBucket] = field(default_factory=list)
    by_category: list[ValuationBucket] = field(default_factory=list)


@dataclass
class ExpiredVariantStat:
    variant_id: str
    variant_title: str | None
    expired_count: int
    total_quantity: int


@dataclass
class ReservationStatistics:
    days: int
    total_reservations: int
    expired_reservations: int
    expiration_rate: float
    average_reservation_minutes: float
    top_expired_variants: list[ExpiredVariantStat] = field(default_factory=list)


@dataclass
class SafetyStockRecommendation:
    variant_id: str
    variant_title: str | None
    sku: str | None
    location_id: str
    location_name: str | None
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


@dataclass
class ReservationAlert:
    type: str
    severity: str
    message: str
    created_at: datetime
    data: dict = field(default_factory=dict)


def _window(window_days: int | None) -> int:
    days = window_days if window_days is not None else settings.sales_velocity_window_days
    if days <= 0:
        raise ValidationError("window_days must be greater than 0", details={"field": "window_days"})
    return days


def low_stock_threshold(item: InventoryItem, override: int | None = None) -> int:
    if override is not None:
        return override
    if item.safety_stock > 0:
        return item.safety_stock * 2
    return settings.low_stock_default_threshold


def urgency_score(available: int, threshold: int) -> float:
    if threshold <= 0:
        return 0.0
    return round(min(1.0, max(0.0, 1 - available / threshold)), 4)


def reorder_quantity(daily_velocity: float, safety_stock: int) -> int:
    lead_time_demand = daily_velocity * settings.reorder_lead_time_days
    return max(math.ceil(lead_time_demand + safety_stock), safety_stock * 2)


def _trend(first_half_units: int, second_half_units: int) -> str:
    if second_half_units > first_half_units * 1.1:
        return "increasing"
    if second_half_units < first_half_units * 0.9:
        return "decreasing"
    return "stable"


def seasonal_factor(moment: datetime) -> float:
    # Holiday quarter runs hot, the quarter after it runs cold.
    if moment.month >= 10:
        return 1.3
    if moment.month <= 3:
        return 0.8
    return 1.0


def _location_names(repo: InventoryRepository, tenant_id: str) -> dict[str, str]:
    return {location.id: location.name for location in repo.list_locations(tenant_id, active_only=False)}


def low_stock_report(
    db: Session,
    *,
    tenant_id: str,
    location_id: str | None = None,
    threshold: int | None = None,
    clock: Clock = system_clock,
) -> list[LowStockItem]:
    """
    Items whose channel-agnostic availability (on_hand - reserved - safety_stock) is
    below their threshold, most urgent first.
    """
    tenant_id = require_tenant(tenant_id)
    if threshold is not None and threshold < 0:
        raise ValidationError("threshold cannot be negative", details={"field": "threshold"})
    repo = InventoryRepository(db)
    now = clock.now()
    window_days = settings.sales_velocity_window_days

    items = repo.list_items(tenant_id, location_id=location_id)
    sales = repo.sale_totals(tenant_id, since=now - timedelta(days=window_days), location_id=location_id)
    last_sales = repo.last_sale_dates(tenant_id, location_id=location_id)
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))
    names = _location_names(repo, tenant_id)

    report: list[LowStockItem] = []
    for item in items:
        limit = low_stock_threshold(item, threshold)
        available = max(0, item.on_hand - item.reserved - item.safety_stock)
        if available >= limit:
            continue
        units_sold, _ = sales.get((item.variant_id, item.location_id), (0, 0))
        velocity = units_sold / window_days
        variant = catalog.get(item.variant_id, (None, None))[0]
        last_sale = last_sales.get((item.variant_id, item.location_id))
        report.append(
            LowStockItem(
                variant_id=item.variant_id,
                variant_title=variant.title if variant else None,
                sku=variant.sku if variant else None,
                location_id=item.location_id,
                location_name=names.get(item.location_id),
                on_hand=item.on_hand,
                reserved=item.reserved,
                safety_stock=item.safety_stock,
                available=available,
                threshold=limit,
                urgency=urgency_score(available, limit),
                sales_velocity=round(velocity, 4),
                days_of_stock=round(available / velocity, 2) if velocity > 0 else None,
                reorder_suggestion=reorder_quantity(velocity, item.safety_stock),
                last_sale_at=as_utc(last_sale) if last_sale else None,
            )
        )

    report.sort(key=lambda entry: (-entry.urgency, entry.available, entry.variant_id, entry.location_id))
    return report


def sales_velocity(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str,
    location_id: str | None = None,
    window_days: int | None = None,
    clock: Clock = system_clock,
) -> SalesVelocity:
    tenant_id = require_tenant(tenant_id)
    days = _window(window_days)
    repo = InventoryRepository(db)
    now = clock.now()
    since = now - timedelta(days=days)
    midpoint = now - timedelta(days=days / 2)

    def _sum(totals: dict[tuple[str, str], tuple[int, int]]) -> tuple[int, int]:
        return (
            sum(units for units, _ in totals.values()),
            sum(count for _, count in totals.values()),
        )

    units_sold, sale_count = _sum(
        repo.sale_totals(tenant_id, since=since, variant_id=variant_id, location_id=location_id)
    )
    first_half, _ = _sum(
        repo.sale_totals(tenant_id, since=since, until=midpoint, variant_id=variant_id, location_id=location_id)
    )
    daily = units_sold / days
    return SalesVelocity(
        variant_id=variant_id,
        location_id=location_id,
        window_days=days,
        units_sold=units_sold,
        sale_count=sale_count,
        daily_average=round(daily, 4),
        weekly_average=round(daily * 7, 4),
        monthly_average=round(daily * 30, 4),
        trend=_trend(first_half, units_sold - first_half),
    )


def forecast(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str | None = None,
    location_id: str | None = None,
    horizon_days: int | None = None,
    window_days: int | None = None,
    clock: Clock = system_clock,
) -> list[ForecastEntry]:
    """projected_stock = on_hand - velocity * horizon; days_until_stockout is None at zero velocity."""
    tenant_id = require_tenant(tenant_id)
    days = _window(window_days)
    horizon = horizon_days if horizon_days is not None else settings.forecast_horizon_days
    if horizon <= 0:
        raise ValidationError("horizon_days must be greater than 0", details={"field": "horizon_days"})
    repo = InventoryRepository(db)
    now = clock.now()

    items = repo.list_items(tenant_id, variant_id=variant_id, location_id=location_id)
    sales = repo.sale_totals(
        tenant_id,
        since=now - timedelta(days=days),
        variant_id=variant_id,
        location_id=location_id,
    )
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))
    names = _location_names(repo, tenant_id)

    entries: list[ForecastEntry] = []
    for item in items:
        units_sold, sale_count = sales.get((item.variant_id, item.location_id), (0, 0))
        velocity = units_sold / days
        stockout = item.on_hand / velocity if velocity > 0 else None
        reorder_at = None
        if stockout is not None:
            reorder_at = now + timedelta(days=max(0.0, stockout - settings.reorder_lead_time_days))
        variant = catalog.get(item.variant_id, (None, None))[0]
        entries.append(
            ForecastEntry(
                variant_id=item.variant_id,
                variant_title=variant.title if variant else None,
                location_id=item.location_id,
                location_name=names.get(item.location_id),
                on_hand=item.on_hand,
                daily_velocity=round(velocity, 4),
                horizon_days=horizon,
                projected_stock=round(item.on_hand - velocity * horizon, 2),
                days_until_stockout=round(stockout, 2) if stockout is not None else None,
                recommended_reorder_quantity=reorder_quantity(velocity, item.safety_stock),
                recommended_reorder_date=reorder_at,
                confidence=round(min(1.0, sale_count / settings.forecast_full_confidence_samples), 4),
            )
        )

    entries.sort(
        key=lambda entry: (
            entry.days_until_stockout is None,
            entry.days_until_stockout or 0,
            entry.variant_id,
            entry.location_id,
        )
    )
    return entries


def aging_category(days_without_sale: int) -> str:
    if days_without_sale > settings.aging_dead_after_days:
        return AGING_DEAD
    if days_without_sale > settings.aging_slow_after_days:
        return AGING_SLOW
    return AGING_FRESH


def aging_report(
    db: Session,
    *,
    tenant_id: str,
    location_id: str | None = None,
    clock: Clock = system_clock,
) -> list[AgingEntry]:
    """On-hand stock bucketed by days since its last sale; never-sold stock ages from item creation."""
    tenant_id = require_tenant(tenant_id)
    repo = InventoryRepository(db)
    now = clock.now()

    items = [item for item in repo.list_items(tenant_id, location_id=location_id) if item.on_hand > 0]
    last_sales = repo.last_sale_dates(tenant_id, location_id=location_id)
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))
    names = _location_names(repo, tenant_id)

    entries: list[AgingEntry] = []
    for item in items:
        reference = last_sales.get((item.variant_id, item.location_id)) or item.created_at
        reference = as_utc(reference)
        days_idle = max(0, (now - reference).days)
        category = aging_category(days_idle)
        variant = catalog.get(item.variant_id, (None, None))[0]
        entries.append(
            AgingEntry(
                variant_id=item.variant_id,
                variant_title=variant.title if variant else None,
                sku=variant.sku if variant else None,
                location_id=item.location_id,
                location_name=names.get(item.location_id),
                quantity=item.on_hand,
                value=stock_value(item.on_hand, variant.unit_price if variant else None),
                last_movement_at=reference,
                days_without_sale=days_idle,
                aging_category=category,
                recommended_action=AGING_ACTIONS[category],
            )
        )

    entries.sort(key=lambda entry: (-entry.days_without_sale, entry.variant_id, entry.location_id))
    return entries


def valuation(
    db: Session,
    *,
    tenant_id: str,
    location_id: str | None = None,
    clock: Clock = system_clock,
) -> Valuation:
    """Sum of on_hand x unit_price, split by location, category and sales pace."""
    tenant_id = require_tenant(tenant_id)
    repo = InventoryRepository(db)
    now = clock.now()
    window_days = settings.sales_velocity_window_days

    items = repo.list_items(tenant_id, location_id=location_id)
    sales = repo.sale_totals(tenant_id, since=now - timedelta(days=window_days), location_id=location_id)
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))
    names = _location_names(repo, tenant_id)

    total_value = ZERO_MONEY
    total_units = 0
    fast_value = ZERO_MONEY
    slow_value = ZERO_MONEY
    by_location: dict[str, ValuationBucket] = {}
    by_category: dict[str, ValuationBucket] = {}

    for item in items:
        variant, product = catalog.get(item.variant_id, (None, None))
        value = stock_value(item.on_hand, variant.unit_price if variant else None)
        total_value += value
        total_units += item.on_hand

        location_bucket = by_location.setdefault(
            item.location_id,
            ValuationBucket(
                key=item.location_id,
                name=names.get(item.location_id, item.location_id),
                value=ZERO_MONEY,
                units=0,
            ),
        )
        location_bucket.value += value
        location_bucket.units += item.on_hand

        category = (product.category if product and product.category else None) or "Uncategorized"
        category_bucket = by_category.setdefault(
            category,
            ValuationBucket(key=category, name=category, value=ZERO_MONEY, units=0),
        )
        category_bucket.value += value
        category_bucket.units += item.on_hand

        units_sold, _ = sales.get((item.variant_id, item.location_id), (0, 0))
        if units_sold / window_days > FAST_MOVING_DAILY_UNITS:
            fast_value += value
        else:
            slow_value += value

    for bucket in (*by_location.values(), *by_category.values()):
        bucket.percentage = share_percent(bucket.value, total_value)

    return Valuation(
        total_value=to_money(total_value),
        total_units=total_units,
        average_unit_value=to_money(total_value / total_units) if total_units else ZERO_MONEY,
        fast_moving_value=to_money(fast_value),
        slow_moving_value=to_money(slow_value),
        by_location=sorted(by_location.values(), key=lambda bucket: (-bucket.value, bucket.key)),
        by_category=sorted(by_category.values(), key=lambda bucket: (-bucket.value, bucket.key)),
    )


def reservation_statistics(
    db: Session,
    *,
    tenant_id: str,
    days: int = 7,
    clock: Clock = system_clock,
) -> ReservationStatistics:
    tenant_id = require_tenant(tenant_id)
    if days <= 0:
        raise ValidationError("days must be greater than 0", details={"field": "days"})
    repo = InventoryRepository(db)
    since = clock.now() - timedelta(days=days)

    reservations = repo.list_reservations(tenant_id, created_since=since)
    expired = [reservation for reservation in reservations if reservation.status == RESERVATION_EXPIRED]

    durations: list[float] = []
    for reservation in reservations:
        ended_at = None
        if reservation.status in (RESERVATION_RELEASED, RESERVATION_EXPIRED):
            ended_at = reservation.released_at
        elif reservation.status == RESERVATION_CONSUMED:
            ended_at = reservation.consumed_at
        if ended_at is not None and reservation.created_at is not None:
            durations.append((as_utc(ended_at) - as_utc(reservation.created_at)).total_seconds() / 60)

    per_variant: dict[str, list[int]] = {}
    for reservation in expired:
        stat = per_variant.setdefault(reservation.variant_id, [0, 0])
        stat[0] += 1
        stat[1] += reservation.quantity
    catalog = repo.variant_catalog(tenant_id, per_variant.keys())
    top = sorted(per_variant.items(), key=lambda entry: (-entry[1][0], -entry[1][1], entry[0]))[:5]

    return ReservationStatistics(
        days=days,
        total_reservations=len(reservations),
        expired_reservations=len(expired),
        expiration_rate=round(len(expired) / len(reservations) * 100, 2) if reservations else 0.0,
        average_reservation_minutes=round(sum(durations) / len(durations), 2) if durations else 0.0,
        top_expired_variants=[
            ExpiredVariantStat(
                variant_id=variant_id,
                variant_title=catalog[variant_id][0].title if variant_id in catalog else None,
                expired_count=count,
                total_quantity=quantity,
            )
            for variant_id, (count, quantity) in top
        ],
    )


def recommended_safety_stock(
    db: Session,
    *,
    tenant_id: str,
    variant_id: str | None = None,
    location_id: str | None = None,
    window_days: int | None = None,
    clock: Clock = system_clock,
) -> list[SafetyStockRecommendation]:
    """
    Suggested safety stock per item from recent sales:

        z * sqrt(lead_time_days) * (daily_demand * DEMAND_VARIATION) * seasonal * trend

    rounded half up with a floor of 1. Largest change against the current setting
    comes first. Nothing is applied; `ledger_service.set_safety_stock` does that.
    """
    tenant_id = require_tenant(tenant_id)
    days = window_days if window_days is not None else settings.safety_stock_window_days
    if days <= 0:
        raise ValidationError("window_days must be greater than 0", details={"field": "window_days"})
    repo = InventoryRepository(db)
    now = clock.now()
    since = now - timedelta(days=days)
    midpoint = now - timedelta(days=days / 2)
    lead_time = settings.safety_stock_lead_time_days
    season = seasonal_factor(now)

    items = repo.list_items(tenant_id, variant_id=variant_id, location_id=location_id)
    sales = repo.sale_totals(tenant_id, since=since, variant_id=variant_id, location_id=location_id)
    first_half = repo.sale_totals(
        tenant_id,
        since=since,
        until=midpoint,
        variant_id=variant_id,
        location_id=location_id,
    )
    catalog = repo.variant_catalog(tenant_id, (item.variant_id for item in items))
    names = _location_names(repo, tenant_id)

    recommendations: list[SafetyStockRecommendation] = []
    for item in items:
        key = (item.variant_id, item.location_id)
        units_sold, _ = sales.get(key, (0, 0))
        early_units, _ = first_half.get(key, (0, 0))
        trend = _trend(early_units, units_sold - early_units)
        daily = units_sold / days
        deviation = daily * DEMAND_VARIATION
        raw = SAFETY_Z_SCORE * math.sqrt(lead_time) * deviation * season * TREND_FACTORS[trend]

        confidence = 0.7
        if daily > 0.1:
            confidence += 0.2
        if trend == "stable":
            confidence += 0.1

        variant = catalog.get(item.variant_id, (None, None))[0]
        recommendations.append(
            SafetyStockRecommendation(
                variant_id=item.variant_id,
                variant_title=variant.title if variant else None,
                sku=variant.sku if variant else None,
                location_id=item.location_id,
                location_name=names.get(item.location_id),
                current_safety_stock=item.safety_stock,
                recommended_safety_stock=max(1, math.floor(raw + 0.5)),
                method="statistical",
                lead_time_days=lead_time,
                average_demand=round(daily, 4),
                demand_variability=round(deviation, 4),
                service_level=SAFETY_SERVICE_LEVEL,
                seasonal_factor=season,
                trend=trend,
                confidence=round(min(1.0, confidence), 4),
            )
        )

    recommendations.sort(
        key=lambda entry: (
            -abs(entry.recommended_safety_stock - entry.current_safety_stock),
            entry.variant_id,
            entry.location_id,
        )
    )
    return recommendations


def reservation_health_alerts(
    db: Session,
    *,
    tenant_id: str,
    days: int = 7,
    clock: Clock = system_clock,
) -> list[ReservationAlert]:
    """
    Alerts when too many recent holds lapse, and for each frequently expiring
    variant whose unreserved stock has fallen to the low-stock floor.
    """
    tenant_id = require_tenant(tenant_id)
    stats = reservation_statistics(db, tenant_id=tenant_id, days=days, clock=clock)
    repo = InventoryRepository(db)
    now = clock.now()

    alerts: list[ReservationAlert] = []
    rate_limit = settings.reservation_alert_expiration_rate
    if stats.expiration_rate > rate_limit:
        alerts.append(
            ReservationAlert(
                type="high_expiration_rate",
                severity="critical" if stats.expiration_rate > ALERT_CRITICAL_EXPIRATION_RATE else "high",
                message=f"High reservation expiration rate: {stats.expiration_rate:.1f}%",
                created_at=now,
                data={"expiration_rate": stats.expiration_rate, "threshold": rate_limit},
            )
        )

    floor = settings.reservation_alert_low_stock_units
    for variant in stats.top_expired_variants:
        items = repo.list_items(tenant_id, variant_id=variant.variant_id)
        unreserved = sum(item.on_hand - item.reserved for item in items)
        if unreserved > floor:
            continue
        alerts.append(
            ReservationAlert(
                type="low_inventory",
                severity="medium",
                message=(
                    f"Low stock after expiration for {variant.variant_title or variant.variant_id}: "
                    f"{unreserved} units"
                ),
                created_at=now,
                data={
                    "variant_id": variant.variant_id,
                    "unreserved": unreserved,
                    "expired_count": variant.expired_count,
                },
            )
        )

    for alert in alerts:
        log_event(
            "reservation.health_alert",
            level=logging.WARNING,
            log=logger,
            tenant_id=tenant_id,
            type=alert.type,
            severity=alert.severity,
            alert_message=alert.message,
        )
    return alerts
