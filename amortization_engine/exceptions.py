"""
Error Taxonomy Module

Domain errors raised by the amortization core. Every error derives from
ValueError so callers that already guard calculations with ``except
ValueError`` keep working.
"""

from typing import Dict, List, Optional


class AmortizationError(ValueError):
    """Base class for all amortization errors"""


class ValidationError(AmortizationError):
    """
    Field-level validation failure for an incoming loan event.

    Carries a field -> messages map.
    """

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        if message is None:
            details = "; ".join(
                f"{field}: {', '.join(messages)}" for field, messages in self.errors.items()
            )
            message = f"Event validation failed ({details})"
        super().__init__(message)


class ConfigurationError(AmortizationError):
    """Loan configuration cannot be calculated (bad bounds, ambiguous strategy)"""


class UnknownFrequency(ConfigurationError):
    """Unsupported payment or interest frequency identifier"""

    def __init__(self, frequency, supported: Optional[List[str]] = None):
        self.frequency = frequency
        message = f"Unknown frequency: {frequency}"
        if supported:
            message += f". Supported: {', '.join(supported)}"
        super().__init__(message)


class NotFoundError(AmortizationError):
    """Loan or schedule does not exist"""
