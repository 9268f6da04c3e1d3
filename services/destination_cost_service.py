"""
Destination Cost Service

Freight and multi-tax (ICMS, ICMS-ST, PIS, COFINS, IPI) costs of a shipment
for a destination's fixed-value-or-formula configuration.

The result reports cost components only: the shipment value is the tax base
and is NOT added back into total_cost.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple

from costing_errors import InvalidInputError, MissingFormulaError, safe_divide
from costing_models import (
    DestinationCostResult,
    DestinationTaxProfile,
    FreightType,
    TaxBreakdown,
    round_decimal,
)
from formula_evaluator import parse_formula
from .engine_settings import EngineSettings, resolve_settings

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _to_decimal(name: str, value: Any) -> Decimal:
    if value is None:
        raise InvalidInputError(f"{name} is required", {"field": name})
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"{name} must be a number, got {value!r}", {"field": name})
    if not result.is_finite():
        raise InvalidInputError(f"{name} must be a finite number, got {value!r}", {"field": name})
    return result


# ============================================================================
# FREIGHT
# ============================================================================

def calculate_freight(profile: DestinationTaxProfile, weight: Decimal, value: Decimal) -> Decimal:
    """
    Freight for a shipment, unrounded.

    Raises:
        MissingFormulaError: formula freight configured without a formula
        InvalidFormulaError: formula cannot be evaluated
    """
    if profile.freight_type == FreightType.FIXED:
        return profile.freight_fixed_value

    if profile.freight_formula is None or not profile.freight_formula.strip():
        raise MissingFormulaError(
            f"Destination '{profile.name or '?'}' uses formula freight but has no formula",
            {"destination": profile.name},
        )

    return parse_formula(profile.freight_formula).evaluate_raw({"weight": weight, "value": value})


# ============================================================================
# TAXES
# ============================================================================

def calculate_taxes(profile: DestinationTaxProfile, value: Decimal, decimal_places: int = 2) -> TaxBreakdown:
    """
    Each tax line = value x percent / 100; total is the sum of the rounded lines.
    """
    icms = round_decimal(value * profile.icms_percent / HUNDRED, decimal_places)
    icms_st = round_decimal(value * profile.icms_st_percent / HUNDRED, decimal_places)
    pis = round_decimal(value * profile.pis_percent / HUNDRED, decimal_places)
    cofins = round_decimal(value * profile.cofins_percent / HUNDRED, decimal_places)
    ipi = round_decimal(value * profile.ipi_percent / HUNDRED, decimal_places)

    return TaxBreakdown(
        icms=icms,
        icms_st=icms_st,
        pis=pis,
        cofins=cofins,
        ipi=ipi,
        total=icms + icms_st + pis + cofins + ipi,
    )


# ============================================================================
# PUBLIC API
# ============================================================================

def calculate_destination_cost(
    profile: DestinationTaxProfile,
    weight: Any,
    value: Any,
    settings: Optional[EngineSettings] = None
) -> DestinationCostResult:
    """
    Calculate freight + taxes for a shipment to a destination.

    Args:
        profile: Destination freight/tax configuration
        weight: Shipment weight (kg)
        value: Shipment value (tax base)
        settings: Engine settings (environment defaults if None)

    Returns:
        DestinationCostResult with freight_cost, taxes, total_cost

    Raises:
        InvalidInputError: negative weight or value
        MissingFormulaError: formula freight without formula
        InvalidFormulaError: formula cannot be evaluated
    """
    settings = resolve_settings(settings)
    places = settings.money_places

    weight = _to_decimal("weight", weight)
    value = _to_decimal("value", value)
    if weight < 0:
        raise InvalidInputError(f"Weight cannot be negative: {weight}", {"field": "weight"})
    if value < 0:
        raise InvalidInputError(f"Value cannot be negative: {value}", {"field": "value"})

    freight_cost = round_decimal(calculate_freight(profile, weight, value), places)
    taxes = calculate_taxes(profile, value, places)
    total_cost = freight_cost + taxes.total

    effective_rate = safe_divide(taxes.total * HUNDRED, value)

    logger.debug(
        f"Destination '{profile.name}': freight={freight_cost} taxes={taxes.total} "
        f"(weight={weight}, value={value})"
    )

    return DestinationCostResult(
        destination_name=profile.name,
        freight_cost=freight_cost,
        taxes=taxes,
        total_cost=total_cost,
        effective_tax_rate_percent=round_decimal(effective_rate, 2),
    )


def compare_destinations(
    profiles: Sequence[DestinationTaxProfile],
    weight: Any,
    value: Any,
    settings: Optional[EngineSettings] = None
) -> List[DestinationCostResult]:
    """
    Cost the same shipment for several destinations, cheapest first.
    Ties keep the input order.
    """
    results: List[Tuple[int, DestinationCostResult]] = []
    for index, profile in enumerate(profiles):
        results.append((index, calculate_destination_cost(profile, weight, value, settings)))

    results.sort(key=lambda pair: (pair[1].total_cost, pair[0]))
    return [result for _, result in results]
