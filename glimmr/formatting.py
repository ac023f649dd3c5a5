import math
from typing import Optional

from glimmr.pricing import round_rupees

PRICING_PENDING = "Pricing pending"


def _group_indian(digits: str) -> str:
    # Last three digits, then pairs: 1,23,45,678
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups: list[str] = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_inr(value: float) -> str:
    rupees = round_rupees(value)
    sign = "-" if rupees < 0 else ""
    return f"{sign}₹{_group_indian(str(abs(rupees)))}"


def price_label(value: Optional[float]) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return PRICING_PENDING
    return format_inr(value)


def format_rate_per_gram(value: Optional[float]) -> str:
    if value is None:
        return "No data"
    return f"₹{value:,.2f}/g"
