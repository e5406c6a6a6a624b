"""
Cash-on-delivery vs prepaid classification of orders.
"""
from decimal import Decimal
from typing import Optional

# Methods the courier has to collect in cash. A blank method is treated as COD.
COD_PAYMENT_METHODS = {"efectivo", "cash", "contra entrega", "cod", ""}

# payment_status values meaning the store already has the money
PAID_STATUSES = {"paid", "authorized"}


def is_cod_payment(payment_method: Optional[str]) -> bool:
    if not payment_method:
        return True
    return payment_method.strip().lower() in COD_PAYMENT_METHODS


def is_order_cod(payment_method: Optional[str], payment_status: Optional[str] = None) -> bool:
    """An order is COD unless its method is prepaid or it was already paid online."""
    if payment_status and payment_status.strip().lower() in PAID_STATUSES:
        return False
    return is_cod_payment(payment_method)


def payment_type_label(is_cod: bool) -> str:
    return "COD" if is_cod else "PREPAGO"


def amount_to_collect(is_cod: bool, total_price: Optional[Decimal]) -> Decimal:
    if not is_cod:
        return Decimal("0")
    return Decimal(total_price or 0)
