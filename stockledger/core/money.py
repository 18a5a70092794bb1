from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO_MONEY
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def stock_value(units: int, unit_price: Decimal | None) -> Decimal:
    return to_money(Decimal(units) * (unit_price if unit_price is not None else ZERO_MONEY))


def share_percent(part: Decimal, total: Decimal) -> float:
    if total <= 0:
        return 0.0
    return round(float(part / total * 100), 2)
