# storefront/utils/money.py

from decimal import Decimal, ROUND_HALF_UP

Money = Decimal

SHIPPING_FEE = Decimal("99")
FREE_SHIPPING_THRESHOLD = Decimal("999")

HOME_DELIVERY = "Home Delivery"
STORE_PICKUP = "Free Store Pickup"


def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_money(x: Money) -> Money:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_float(x) -> float:
    return float(round_money(x))


def format_money(x, symbol="₹") -> str:
    return f"{symbol}{round_money(x):,.2f}"


def shipping_fee_for(subtotal: Money, shipping_method: str | None) -> Money:
    if shipping_method == HOME_DELIVERY and D(subtotal) < FREE_SHIPPING_THRESHOLD:
        return SHIPPING_FEE
    return D(0)
