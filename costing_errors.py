"""
Cost & Budget Analytics Engine - Error Taxonomy

Typed errors raised by the costing, destination, budget and scenario
calculations. Every error carries a machine-readable code and optional
details so the application layer can present it without parsing messages.

DivisionByZeroError never reaches callers of the public functions: empty
dashboards get the documented 0 default from safe_divide() instead.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


# ============================================================================
# BASE ERROR
# ============================================================================

class CostingError(Exception):
    """Base class for all engine errors."""

    code = "COSTING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }


# ============================================================================
# ERROR KINDS
# ============================================================================

class InvalidInputError(CostingError, ValueError):
    """Caller-supplied quantity/percentage outside its documented domain."""

    code = "INVALID_INPUT"


class InvalidFormulaError(CostingError):
    """Freight/tax formula that cannot be parsed or evaluated safely."""

    code = "INVALID_FORMULA"

    def __init__(self, message: str, formula: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if formula is not None:
            details.setdefault("formula", formula)
        super().__init__(message, details)
        self.formula = formula


class MissingFormulaError(CostingError):
    """Destination configured for formula freight without a formula."""

    code = "MISSING_FORMULA"


class InvalidConfigError(CostingError, ValueError):
    """Cost split not summing to 1.0, target margin >= 100%, bad settings."""

    code = "INVALID_CONFIG"


class NotFoundError(CostingError):
    """Referenced SKU, BOM item or unit cost is not available."""

    code = "NOT_FOUND"


class DivisionByZeroError(CostingError, ZeroDivisionError):
    """Internal only. Public calculations substitute a documented default."""

    code = "DIVISION_BY_ZERO"


# ============================================================================
# HELPERS
# ============================================================================

def safe_divide(numerator: Decimal, denominator: Decimal, default: Decimal = Decimal("0")) -> Decimal:
    """Divide, returning `default` when the denominator is zero."""
    try:
        return checked_divide(numerator, denominator)
    except DivisionByZeroError:
        return default


def checked_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, raising DivisionByZeroError when the denominator is zero."""
    if denominator == 0:
        raise DivisionByZeroError(
            "Division by zero",
            {"numerator": str(numerator)},
        )
    return numerator / denominator
