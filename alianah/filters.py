from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from alianah.models.mixins import DONATION_TYPE_LABELS, FREQUENCY_MONTHLY, FREQUENCY_YEARLY


def pence(value: Any, *, symbol: str = "£", blank_for_none: bool = False) -> str:
    """
    Integer pence -> "£1,234.50".
    - None/"" -> "" when `blank_for_none`, otherwise "£0.00"
    - Non-numeric input is returned unchanged
    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return "" if blank_for_none else f"{symbol}0.00"

    try:
        d = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation:
        return str(value)

    pounds = (d / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if pounds < 0 else ""
    return f"{sign}{symbol}{abs(pounds):,.2f}"


def frequency_label(value: Any) -> str:
    if value == FREQUENCY_MONTHLY:
        return "Monthly"
    if value == FREQUENCY_YEARLY:
        return "Yearly"
    return "One-off"


def donation_type_label(value: Any) -> str:
    return DONATION_TYPE_LABELS.get(str(value or ""), str(value or ""))


def register_filters(app) -> None:
    app.jinja_env.filters["pence"] = pence
    app.jinja_env.filters["frequency_label"] = frequency_label
    app.jinja_env.filters["donation_type_label"] = donation_type_label
