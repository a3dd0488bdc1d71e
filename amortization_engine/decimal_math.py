"""
Decimal Arithmetic Module

Fixed-scale Decimal primitives used by every calculation. NEVER uses float
for monetary values or rates.

Rounding rule: every quantization uses ROUND_HALF_UP (half away from zero).
Internal rates carry INTERNAL_SCALE fractional digits; every externally
visible amount is quantized to CENTS_SCALE.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

INTERNAL_SCALE = 10
CENTS_SCALE = 2

ZERO = Decimal('0')
ONE = Decimal('1')
CENT = Decimal('0.01')

Numeric = Union[Decimal, int, str]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a value to Decimal without passing through binary float

    Args:
        value: Decimal, int, str (or float, converted via its repr)

    Returns:
        Decimal value

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert boolean {value!r} to Decimal")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal") from None
        if not result.is_finite():
            raise ValueError(f"Cannot convert '{value}' to Decimal")
        return result
    raise ValueError(f"Cannot convert {type(value).__name__} to Decimal")


def quantize(value: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    """Round to a fixed number of fractional digits (ROUND_HALF_UP)"""
    return to_decimal(value).quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)


def to_cents(value: Numeric) -> Decimal:
    """Round to presentation precision (2 places)"""
    return quantize(value, CENTS_SCALE)


def add(a: Numeric, b: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    return quantize(to_decimal(a) + to_decimal(b), scale)


def subtract(a: Numeric, b: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    return quantize(to_decimal(a) - to_decimal(b), scale)


def multiply(a: Numeric, b: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    return quantize(to_decimal(a) * to_decimal(b), scale)


def divide(a: Numeric, b: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    """
    Divide with an explicit result scale

    Raises:
        ValueError: On division by zero
    """
    divisor = to_decimal(b)
    if divisor == ZERO:
        raise ValueError("Division by zero")
    return quantize(to_decimal(a) / divisor, scale)


def power(base: Numeric, exponent: Numeric, scale: int = INTERNAL_SCALE) -> Decimal:
    """
    Raise base to exponent with an explicit result scale.

    Integer exponents are computed exactly under the 28-digit context;
    fractional exponents use Decimal's correctly-rounded power.
    """
    return quantize(to_decimal(base) ** to_decimal(exponent), scale)
