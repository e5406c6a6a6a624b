"""
Decimal helpers for cash amounts.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

import pandas as pd

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(val: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Safely convert a courier-entered amount to Decimal.

    Handles common sheet formats like:
    - "1,234.56"
    - "$1,234.56" / "Gs. 150000"
    - "(1,234.56)" for negatives
    """
    if val is None:
        return default
    try:
        if pd.isna(val):
            return default
    except (TypeError, ValueError):
        pass
    try:
        if isinstance(val, str):
            s = val.strip()
            if not s:
                return default
            negative = False
            if s.startswith("(") and s.endswith(")"):
                negative = True
                s = s[1:-1]
            for token in ["Gs.", "Gs", "$", ",", " "]:
                s = s.replace(token, "")
            if negative:
                s = "-" + s
            val = s
        amount = Decimal(str(val))
        if not amount.is_finite():
            return default
        return amount
    except (InvalidOperation, ValueError, TypeError):
        return default
