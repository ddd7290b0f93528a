"""
currency.py
===========
Safe numeric coercion and BRL formatting for money values.

None of these functions raise: anything that is not a finite number is
treated as zero, so a malformed amount coming from the database or an API
payload renders as "R$ 0,00" instead of breaking a report.
"""

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")


def to_safe_number(value: Any) -> float:
    """Coerce any input to a finite float, defaulting to 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def round_currency(value: Any) -> float:
    """Round to cents, half-up (1.005 -> 1.01, -1.005 -> -1.01)."""
    number = to_safe_number(value)
    try:
        rounded = Decimal(str(number)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    # Avoid "-0.0" leaking into payloads
    return float(rounded) + 0.0


def format_currency(value: Any) -> str:
    """Render as BRL: 1234.56 -> 'R$ 1.234,56', -50 -> '-R$ 50,00'."""
    amount = Decimal(str(round_currency(value))).quantize(CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    # en-US grouping first, then swap separators to pt-BR
    body = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {body}"


def format_percentage(value: Any) -> str:
    number = to_safe_number(value)
    if number == int(number):
        return f"{int(number)}%"
    return f"{number:g}%"


def format_commission_value(value: Any, commission_type: Optional[str]) -> str:
    """Percentage rules read as '10%'; fixed (or unknown) rules as currency."""
    if commission_type == "percentage":
        return format_percentage(value)
    return format_currency(value)
