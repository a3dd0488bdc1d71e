"""
Test suite for decimal arithmetic

Every calculation routes through these primitives; rounding must be
ROUND_HALF_UP at the requested scale and nothing may pass through float.
"""

import pytest
from decimal import Decimal

from amortization_engine.decimal_math import (
    to_decimal, quantize, to_cents, add, subtract, multiply, divide, power
)


class TestConversion:
    """Test conversion to Decimal"""

    def test_string_and_int(self):
        """Test exact conversion from string and int"""
        assert to_decimal("10.25") == Decimal("10.25")
        assert to_decimal(7) == Decimal("7")
        assert to_decimal(Decimal("1.5")) == Decimal("1.5")

    def test_float_uses_repr(self):
        """Test float converted via its repr, not its binary value"""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_rejects_bool(self):
        """Test booleans are not numbers"""
        with pytest.raises(ValueError, match="boolean"):
            to_decimal(True)

    def test_rejects_garbage(self):
        """Test non-numeric strings and infinities are rejected"""
        with pytest.raises(ValueError, match="Cannot convert"):
            to_decimal("abc")
        with pytest.raises(ValueError, match="Cannot convert"):
            to_decimal("Infinity")
        with pytest.raises(ValueError):
            to_decimal(None)


class TestRounding:
    """Test ROUND_HALF_UP quantization"""

    def test_half_up_at_cents(self):
        """Test halves round away from zero"""
        assert to_cents(Decimal("2.345")) == Decimal("2.35")
        assert to_cents(Decimal("2.344")) == Decimal("2.34")
        assert to_cents(Decimal("-2.345")) == Decimal("-2.35")

    def test_internal_scale(self):
        """Test default quantization keeps ten fractional digits"""
        assert quantize(Decimal("1") / Decimal("3")) == Decimal("0.3333333333")

    def test_arithmetic_with_scale(self):
        """Test operations quantize their result to the given scale"""
        assert add("0.105", "0.1", 2) == Decimal("0.21")
        assert subtract("1.000", "0.0049", 2) == Decimal("1.00")
        assert multiply("10000", "0.0041666667", 2) == Decimal("41.67")
        assert divide(1, 3, 4) == Decimal("0.3333")

    def test_divide_by_zero(self):
        """Test division by zero fails explicitly"""
        with pytest.raises(ValueError, match="Division by zero"):
            divide(1, 0)

    def test_power(self):
        """Test integer and fractional exponents"""
        assert power(Decimal("1.1"), 2, 4) == Decimal("1.2100")
        assert power(Decimal("4"), Decimal("0.5"), 6) == Decimal("2.000000")
