from __future__ import annotations

from decimal import Decimal, InvalidOperation as DecimalConversionError

from stockhub.exceptions import InvalidOperation


def to_decimal(value: object, field: str, *, positive: bool = False) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidOperation(f"{field} must be a number")
    try:
        number = Decimal(str(value).strip())
    except (DecimalConversionError, ValueError):
        raise InvalidOperation(f"{field} must be a number") from None
    if not number.is_finite():
        raise InvalidOperation(f"{field} must be a number")
    if positive and number <= 0:
        raise InvalidOperation(f"{field} must be greater than zero")
    return number


def to_quantity(value: object, field: str = "Quantity", *, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise InvalidOperation(f"{field} must be a whole number")
    if isinstance(value, int):
        number = value
    else:
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            raise InvalidOperation(f"{field} must be a whole number") from None
    if minimum is not None and number < minimum:
        if minimum == 1:
            raise InvalidOperation(f"{field} must be greater than zero")
        raise InvalidOperation(f"{field} must be at least {minimum}")
    return number
