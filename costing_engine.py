"""
Cost & Budget Analytics Engine - Absorption Costing Calculator
Per-unit production cost from four cost buckets plus destination costs.

ROUNDING:
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
Phases compute in full Decimal precision. Each component is rounded to the
currency boundary (2 places) once, at the end, and total_cost is the exact sum
of the rounded components:

    total_cost = direct + labor + indirect + freight + tax + wastage
    unit_cost  = total_cost / quantity_produced
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Phases:
1. Direct materials  - sum(unit_cost x quantity) of the BOM x quantity produced
2. Labor             - sum(unit_cost x quantity) of the period's labor entries
3. Indirect          - period entries x quantity_produced / total_period_production
4. Wastage           - (direct + labor) x wastage % (physical loss only)
5. Destination       - freight + taxes (services.destination_cost_service)
6. Totals & margin
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from costing_errors import InvalidInputError, NotFoundError
from costing_models import (
    CostCalculationInput,
    CostCalculationResult,
    CostComponent,
    CostLineDetail,
    DestinationTaxProfile,
    IndirectCostDetail,
    IndirectCostEntry,
    MarginStatus,
    round_decimal,
)
from services.destination_cost_service import calculate_freight, calculate_taxes
from services.engine_settings import EngineSettings, resolve_settings

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")

# Gross margin % -> status (checked top-down, inclusive lower bounds)
MARGIN_STATUS_THRESHOLDS = [
    (Decimal("30"), MarginStatus.EXCELLENT),
    (Decimal("20"), MarginStatus.GOOD),
    (Decimal("10"), MarginStatus.ACCEPTABLE),
]


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_margin_status(gross_margin_percent: Optional[Decimal]) -> Optional[MarginStatus]:
    """Classify a gross margin % (None when no price was supplied)."""
    if gross_margin_percent is None:
        return None
    for threshold, status in MARGIN_STATUS_THRESHOLDS:
        if gross_margin_percent >= threshold:
            return status
    if gross_margin_percent > 0:
        return MarginStatus.LOW
    return MarginStatus.NEGATIVE


def validate_cost_input(inputs: CostCalculationInput, total_period_production: Optional[Decimal] = None) -> None:
    """
    Enforce the documented input domain.

    Raises:
        InvalidInputError: quantity_produced <= 0, wastage outside [0, 100],
            negative selling price or shipment weight/value, or total period
            production below this run
    """
    if inputs.quantity_produced <= 0:
        raise InvalidInputError(
            f"quantity_produced must be > 0, got {inputs.quantity_produced}",
            {"field": "quantity_produced", "sku_id": inputs.sku_id},
        )
    if inputs.wastage_percent < 0 or inputs.wastage_percent > 100:
        raise InvalidInputError(
            f"wastage_percent must be between 0 and 100, got {inputs.wastage_percent}",
            {"field": "wastage_percent", "sku_id": inputs.sku_id},
        )
    if inputs.selling_price is not None and inputs.selling_price < 0:
        raise InvalidInputError(
            f"selling_price cannot be negative, got {inputs.selling_price}",
            {"field": "selling_price", "sku_id": inputs.sku_id},
        )
    for name in ("shipment_weight", "shipment_value"):
        shipment = getattr(inputs, name)
        if shipment is not None and shipment < 0:
            raise InvalidInputError(
                f"{name} cannot be negative, got {shipment}",
                {"field": name, "sku_id": inputs.sku_id},
            )
    if total_period_production is not None and total_period_production < inputs.quantity_produced:
        raise InvalidInputError(
            f"total_period_production ({total_period_production}) is lower than "
            f"quantity_produced ({inputs.quantity_produced})",
            {"field": "total_period_production", "sku_id": inputs.sku_id},
        )


# ============================================================================
# PHASE 1: DIRECT MATERIALS
# ============================================================================

def phase1_direct_materials(
    bom_items: Optional[Sequence[CostComponent]],
    quantity_produced: Decimal,
    decimal_places: int = 2
) -> Dict[str, object]:
    """
    BOM cost per produced unit scaled by quantity produced.

    Optional recipe items are costed like any other line present in the BOM
    snapshot. A None/empty BOM is a valid (zero-cost) recipe.

    Returns: total (unrounded), per_unit, details
    """
    per_unit = ZERO
    details = []
    for item in bom_items or []:
        line_total = item.line_total * quantity_produced
        per_unit += item.line_total
        details.append(CostLineDetail(
            name=item.name,
            unit_cost=item.unit_cost,
            quantity=item.quantity * quantity_produced,
            total_cost=round_decimal(line_total, decimal_places),
            is_optional=item.is_optional,
        ))

    return {
        "total": per_unit * quantity_produced,
        "per_unit": per_unit,
        "details": details,
    }


# ============================================================================
# PHASE 2: LABOR
# ============================================================================

def phase2_labor(
    labor_entries: Optional[Sequence[CostComponent]],
    decimal_places: int = 2
) -> Dict[str, object]:
    """
    Labor cost of the period: sum(unit_cost x quantity), no cap on entries.

    Returns: total (unrounded), details
    """
    total = ZERO
    details = []
    for entry in labor_entries or []:
        total += entry.line_total
        details.append(CostLineDetail(
            name=entry.name,
            unit_cost=entry.unit_cost,
            quantity=entry.quantity,
            total_cost=round_decimal(entry.line_total, decimal_places),
        ))

    return {"total": total, "details": details}


# ============================================================================
# PHASE 3: INDIRECT COST APPORTIONMENT
# ============================================================================

def phase3_indirect_apportionment(
    indirect_entries: Optional[Sequence[IndirectCostEntry]],
    period: str,
    quantity_produced: Decimal,
    total_period_production: Optional[Decimal] = None,
    decimal_places: int = 2
) -> Dict[str, object]:
    """
    Charge this run its volume share of the period's indirect costs.

    share = quantity_produced / total_period_production
    Without a known total the run absorbs 100% of the period's entries
    (single-SKU case); use calculate_period_costs() when several SKUs
    share a period.

    Returns: total (unrounded), share, details
    """
    if total_period_production is None:
        share = Decimal("1")
    else:
        share = quantity_produced / total_period_production

    total = ZERO
    details = []
    for entry in indirect_entries or []:
        if entry.period != period:
            continue
        apportioned = entry.amount * share
        total += apportioned
        details.append(IndirectCostDetail(
            description=entry.description,
            category=entry.category,
            amount=entry.amount,
            apportioned_amount=round_decimal(apportioned, decimal_places),
        ))

    return {"total": total, "share": share, "details": details}


# ============================================================================
# PHASE 4: WASTAGE
# ============================================================================

def phase4_wastage(direct_total: Decimal, labor_total: Decimal, wastage_percent: Decimal) -> Decimal:
    """
    Wastage reflects physical material loss: applied to material + labor only,
    never to indirect, freight or tax.
    """
    return (direct_total + labor_total) * wastage_percent / HUNDRED


# ============================================================================
# PHASE 5: DESTINATION (FREIGHT & TAXES)
# ============================================================================

def phase5_destination(
    destination: Optional[DestinationTaxProfile],
    weight: Decimal,
    value: Decimal,
    decimal_places: int = 2
) -> Dict[str, Decimal]:
    """
    Freight and taxes of the shipment; both zero without a destination.

    Returns: freight, tax (both rounded)
    """
    if destination is None:
        return {"freight": ZERO, "tax": ZERO}

    freight = round_decimal(calculate_freight(destination, weight, value), decimal_places)
    taxes = calculate_taxes(destination, value, decimal_places)
    return {"freight": freight, "tax": taxes.total}


def get_shipment_basis(inputs: CostCalculationInput, production_cost: Decimal) -> Dict[str, Decimal]:
    """
    Weight and value used for freight formulas and the tax base.

    weight: shipment_weight, else quantity_produced
    value:  shipment_value, else selling_price x quantity_produced,
            else the production cost before freight/tax
    """
    weight = inputs.shipment_weight if inputs.shipment_weight is not None else inputs.quantity_produced

    if inputs.shipment_value is not None:
        value = inputs.shipment_value
    elif inputs.selling_price is not None:
        value = inputs.selling_price * inputs.quantity_produced
    else:
        value = production_cost

    return {"weight": weight, "value": value}


# ============================================================================
# PHASE 6: TOTALS & MARGIN
# ============================================================================

def phase6_margin(
    unit_cost: Decimal,
    selling_price: Optional[Decimal]
) -> Dict[str, Optional[Decimal]]:
    """
    gross_margin = selling_price - unit_cost
    gross_margin_percent = gross_margin / selling_price x 100

    No price -> None for both (distinguishes "no price" from "zero margin").
    Zero price -> percent reported as 0.
    """
    if selling_price is None:
        return {"gross_margin": None, "gross_margin_percent": None}

    gross_margin = selling_price - unit_cost
    if selling_price == 0:
        logger.warning("Selling price is zero; gross margin percent reported as 0")
        gross_margin_percent = ZERO
    else:
        gross_margin_percent = round_decimal(gross_margin / selling_price * HUNDRED, 2)

    return {"gross_margin": gross_margin, "gross_margin_percent": gross_margin_percent}


# ============================================================================
# MAIN CALCULATION
# ============================================================================

def calculate_cost(
    inputs: CostCalculationInput,
    bom_items: Optional[Sequence[CostComponent]],
    labor_entries: Optional[Sequence[CostComponent]],
    indirect_entries: Optional[Sequence[IndirectCostEntry]],
    destination: Optional[DestinationTaxProfile] = None,
    total_period_production: Optional[Decimal] = None,
    settings: Optional[EngineSettings] = None
) -> CostCalculationResult:
    """
    Absorption cost of one production run.
    Orchestrates all 6 phases in order.

    Args:
        inputs: Production run (SKU, period, quantity, wastage, price)
        bom_items: BOM snapshot, quantities per produced unit
        labor_entries: Labor records for the run's period
        indirect_entries: Indirect ledger (entries of other periods ignored)
        destination: Destination freight/tax profile, if shipping
        total_period_production: Total quantity produced in the period by all SKUs
        settings: Engine settings (environment defaults if None)

    Returns:
        CostCalculationResult

    Raises:
        InvalidInputError: input outside its documented domain
        MissingFormulaError / InvalidFormulaError: destination formula problems
    """
    settings = resolve_settings(settings)
    places = settings.money_places
    validate_cost_input(inputs, total_period_production)

    quantity = inputs.quantity_produced

    # PHASE 1: Direct materials
    phase1 = phase1_direct_materials(bom_items, quantity, places)

    # PHASE 2: Labor
    phase2 = phase2_labor(labor_entries, places)

    # PHASE 3: Indirect apportionment
    phase3 = phase3_indirect_apportionment(
        indirect_entries, inputs.period, quantity, total_period_production, places
    )

    # PHASE 4: Wastage (material + labor only)
    wastage_raw = phase4_wastage(phase1["total"], phase2["total"], inputs.wastage_percent)

    direct_cost_total = round_decimal(phase1["total"], places)
    labor_cost_total = round_decimal(phase2["total"], places)
    indirect_cost_total = round_decimal(phase3["total"], places)
    wastage_value = round_decimal(wastage_raw, places)

    # PHASE 5: Destination
    production_cost = direct_cost_total + labor_cost_total + indirect_cost_total + wastage_value
    shipment = get_shipment_basis(inputs, production_cost)
    phase5 = phase5_destination(destination, shipment["weight"], shipment["value"], places)

    # PHASE 6: Totals & margin
    total_cost = production_cost + phase5["freight"] + phase5["tax"]
    unit_cost = round_decimal(total_cost / quantity, places)
    margin = phase6_margin(unit_cost, inputs.selling_price)

    logger.debug(
        f"Cost {inputs.sku_id} {inputs.period}: direct={direct_cost_total} labor={labor_cost_total} "
        f"indirect={indirect_cost_total} freight={phase5['freight']} tax={phase5['tax']} "
        f"wastage={wastage_value} total={total_cost} unit={unit_cost}"
    )

    return CostCalculationResult(
        sku_id=inputs.sku_id,
        period=inputs.period,
        quantity_produced=quantity,
        direct_cost_total=direct_cost_total,
        labor_cost_total=labor_cost_total,
        indirect_cost_total=indirect_cost_total,
        freight_cost=phase5["freight"],
        tax_cost=phase5["tax"],
        wastage_percent=inputs.wastage_percent,
        wastage_value=wastage_value,
        total_cost=total_cost,
        unit_cost=unit_cost,
        selling_price=inputs.selling_price,
        gross_margin=margin["gross_margin"],
        gross_margin_percent=margin["gross_margin_percent"],
        margin_status=get_margin_status(margin["gross_margin_percent"]),
        direct_cost_details=phase1["details"],
        labor_cost_details=phase2["details"],
        indirect_cost_details=phase3["details"],
    )


def calculate_period_costs(
    inputs: Sequence[CostCalculationInput],
    bom_by_sku: Mapping[str, Sequence[CostComponent]],
    labor_by_sku: Optional[Mapping[str, Sequence[CostComponent]]],
    indirect_entries: Optional[Sequence[IndirectCostEntry]],
    destinations: Optional[Mapping[str, DestinationTaxProfile]] = None,
    settings: Optional[EngineSettings] = None
) -> List[CostCalculationResult]:
    """
    Cost several production runs, apportioning indirect costs by volume.

    Key differences from calculate_cost:
    - total_period_production = sum of quantity_produced of runs in the period
    - each period's indirect entries are split across its runs exactly once

    Results are returned in input order.

    Raises:
        NotFoundError: SKU without BOM snapshot, unknown destination id
        InvalidInputError: see calculate_cost
    """
    if not inputs:
        return []

    settings = resolve_settings(settings)
    labor_by_sku = labor_by_sku or {}
    destinations = destinations or {}

    for run in inputs:
        validate_cost_input(run)

    period_totals: Dict[str, Decimal] = OrderedDict()
    for run in inputs:
        period_totals[run.period] = period_totals.get(run.period, ZERO) + run.quantity_produced

    results = []
    for run in inputs:
        if run.sku_id not in bom_by_sku:
            raise NotFoundError(f"No BOM snapshot for SKU {run.sku_id}", {"sku_id": run.sku_id})

        destination = None
        if run.destination_id is not None:
            destination = destinations.get(run.destination_id)
            if destination is None:
                raise NotFoundError(
                    f"Destination {run.destination_id} not found",
                    {"destination_id": run.destination_id},
                )

        results.append(calculate_cost(
            run,
            bom_by_sku[run.sku_id],
            labor_by_sku.get(run.sku_id, []),
            indirect_entries,
            destination=destination,
            total_period_production=period_totals[run.period],
            settings=settings,
        ))

    logger.debug(f"Costed {len(results)} runs across {len(period_totals)} periods")
    return results
