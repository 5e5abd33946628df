"""
Money helpers - all amounts inside the ledger are integer centavos.

Conversion to pesos only happens at the edges (messages, reports).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from ledger.core.exceptions import ValidationException


def require_centavos(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """Reject anything that is not a whole, non-negative number of centavos."""
    # bool is an int subclass, True must not pass as 1 centavo
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationException(
            f"{field} must be an integer amount of centavos",
            field=field,
            details={"value": repr(value)},
        )
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationException(
            f"{field} must be {'non-negative' if allow_zero else 'positive'}",
            field=field,
            details={"value": value},
        )
    return value


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pesos_to_centavos(pesos: float | Decimal | int) -> int:
    return round_half_up(Decimal(str(pesos)) * 100)


def centavos_to_pesos(centavos: int) -> Decimal:
    return (Decimal(centavos) / 100).quantize(Decimal("0.01"))


def format_mxn(centavos: int) -> str:
    """48000 -> '$480.00'"""
    return f"${centavos_to_pesos(centavos):,.2f}"
