from datetime import time
from decimal import Decimal, InvalidOperation
from typing import Optional, Union


def format_currency(amount) -> str:
    """US dollars: 1234.5 -> "$1,234.50", -50 -> "-$50.00", None -> "$0.00"."""
    try:
        value = Decimal(str(amount)) if amount is not None else Decimal("0")
    except InvalidOperation:
        value = Decimal("0")
    if value.is_nan():
        value = Decimal("0")
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_time_12h(value: Optional[Union[time, str]]) -> str:
    """24-hour time to 12-hour: "14:30" -> "2:30 PM"."""
    if not value:
        return ""
    if isinstance(value, str):
        hours, minutes = value.split(":")[:2]
        value = time(int(hours), int(minutes))
    hour12 = value.hour % 12 or 12
    suffix = "PM" if value.hour >= 12 else "AM"
    return f"{hour12}:{value.minute:02d} {suffix}"
