import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Tuple
from storefront.orders.constants import CENT, ORDER_NUMBER_PREFIX, SHIPPING_METHODS, SHIPPING_RATES, VAT_RATE

_BASE36 = string.digits + string.ascii_uppercase


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def net_of_vat(gross: Decimal, vat_rate: Decimal = VAT_RATE) -> Decimal:
    return to_cents(Decimal(gross) / (Decimal(1) + vat_rate))


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{ORDER_NUMBER_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def shipping_rate(method: str) -> Decimal:
    try:
        return SHIPPING_RATES[method]
    except KeyError:
        raise ValueError(f"unsupported shipping method {method!r}")


def compute_order_totals(lines: Iterable[Tuple[Decimal, int]], shipping_method: str) -> Dict[str, Decimal]:
    """Totals for (unit gross price, quantity) lines.

    Prices are consumer facing (vat included). ``subtotal`` and ``shipping_cost`` are stored
    net, ``tax`` is the vat portion of the grand total and ``total`` is gross, so
    subtotal + shipping_cost + tax == total to the cent.
    """
    items_gross = sum((to_cents(price) * qty for price, qty in lines), Decimal("0.00"))
    shipping_gross = shipping_rate(shipping_method)
    total = to_cents(items_gross + shipping_gross)

    subtotal = net_of_vat(items_gross)
    shipping_cost = net_of_vat(shipping_gross)
    tax = total - subtotal - shipping_cost
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping_cost,
        "tax": tax,
        "total": total,
    }


def list_shipping_rates() -> List[Dict[str, Any]]:
    rates = []
    for method, (carrier, name, days) in SHIPPING_METHODS.items():
        rates.append({
            "method": method,
            "carrier": carrier,
            "name": name,
            "cost": shipping_rate(method),
            "estimated_days": days,
        })
    return rates
