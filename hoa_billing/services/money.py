"""Monetary normalizer: every amount crosses a boundary as integer centavos.

Storage and arithmetic in the billing engine use integer minor units only.
Values arriving from JSON, forms or legacy documents may be floats, strings or
Decimals; they are normalized here and never multiplied or divided in floating
point afterwards.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from babel.numbers import format_currency as babel_format_currency

from hoa_billing.services.errors import ValidationError

logger = logging.getLogger(__name__)

CENTAVOS_PER_UNIT = 100

# Floats read back from JSON may carry binary drift (e.g. 1049.9999999997).
FLOAT_DRIFT = 1e-6


def round_centavos(value: Decimal | int | float) -> int:
    """Round a fractional centavo amount half-up to an integer."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_centavos(value: Any, *, field: str = "amount", strict: bool = True) -> int:
    """Normalize a centavo amount to ``int``.

    Args:
        value: int, float, Decimal or numeric string already expressed in centavos
        field: Field name for error messages
        strict: Reject fractional centavos instead of rounding them

    Returns:
        Integer centavos

    Raises:
        ValidationError: Non-numeric input, or fractional centavos with strict=True
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number of centavos", {"field": field})

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        nearest = round(value)
        if abs(value - nearest) <= FLOAT_DRIFT:
            return int(nearest)
        if strict:
            raise ValidationError(
                f"{field} has fractional centavos: {value}",
                {"field": field, "value": value},
            )
        return round_centavos(value)

    try:
        decimal_value = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(
            f"{field} is not a valid amount: {value!r}", {"field": field}
        ) from e

    if not decimal_value.is_finite():
        raise ValidationError(f"{field} is not a finite amount", {"field": field})

    if decimal_value != decimal_value.to_integral_value():
        if strict:
            raise ValidationError(
                f"{field} has fractional centavos: {value}",
                {"field": field, "value": str(value)},
            )
        logger.debug("Rounding %s=%s to whole centavos", field, value)
    return round_centavos(decimal_value)


def require_centavos(value: Any, field: str, allow_negative: bool = False) -> int:
    """Validate an amount at an API or document boundary.

    Raises:
        ValidationError: If the amount is fractional, non-numeric or negative when
            negatives are not allowed
    """
    centavos = to_centavos(value, field=field, strict=True)
    if centavos < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative", {"field": field, "value": centavos})
    return centavos


def pesos_to_centavos(amount: Decimal | int | float | str) -> int:
    """Convert a major-unit amount (e.g. pesos) to integer centavos."""
    try:
        decimal_amount = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    return round_centavos(decimal_amount * CENTAVOS_PER_UNIT)


def centavos_to_pesos(centavos: int) -> Decimal:
    """Convert integer centavos to a major-unit Decimal with two places."""
    return (Decimal(centavos) / CENTAVOS_PER_UNIT).quantize(Decimal("0.01"))


def format_centavos(centavos: int, currency: str = "MXN", locale: str = "es_MX") -> str:
    """Format centavos for display, e.g. ``$1,050.00``."""
    return babel_format_currency(centavos_to_pesos(centavos), currency, locale=locale)


__all__ = [
    "CENTAVOS_PER_UNIT",
    "round_centavos",
    "to_centavos",
    "require_centavos",
    "pesos_to_centavos",
    "centavos_to_pesos",
    "format_centavos",
]
