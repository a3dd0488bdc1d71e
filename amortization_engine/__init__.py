"""
Amortization Engine

Loan amortization schedules with Decimal arithmetic: standard, balloon and
variable-rate strategies, loan events, and partial schedule recalculation.
"""

__version__ = "1.0.0"
