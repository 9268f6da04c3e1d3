"""
Cost Calculation Mapping Module

This module handles:
- Safe conversion of loosely-typed rows (as returned by the data layer)
- Two-tier value resolution (row value > caller defaults > fallback)
- Mapping rows to the typed models consumed by the calculators
- Real per-item unit-cost resolution for BOM lines

Rows may use snake_case or the camelCase keys of the dashboard API
(quantityProduced, freightType, icmsPercent, ...).

Every pydantic validation failure is re-raised as InvalidInputError so that
callers see one error taxonomy.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar
from decimal import Decimal, InvalidOperation
import logging
import re

from pydantic import ValidationError

from costing_errors import InvalidInputError, NotFoundError
from costing_models import (
    CostCalculationInput,
    CostComponent,
    DestinationTaxProfile,
    FreightType,
    IndirectCostEntry,
    PERIOD_PATTERN,
)
from services.budget_analysis_service import BudgetMonthEntry
from services.scenario_service import ScenarioAdjustment

# Setup logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# SAFE CONVERSION UTILITIES
# ============================================================================

def _parse_number(value: Any) -> Optional[Decimal]:
    """
    Parse a present value to a finite Decimal, None if it is not a number.

    '1.234,56' (pt-BR) and '1,234.56' are both read as 1234.56: the last
    separator is the decimal one.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = str(value).strip()
    if "," in text:
        if "." in text and text.rfind(".") > text.rfind(","):
            text = text.replace(",", "")
        else:
            text = text.replace(".", "").replace(",", ".")
    try:
        number = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def safe_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Safely convert value to Decimal, falling back to default."""
    if value is None or value == "":
        return default
    number = _parse_number(value)
    return default if number is None else number


def require_decimal(value: Any, field_name: str, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """
    Convert value to Decimal; absent values take default.

    Raises:
        InvalidInputError: value present but not a finite number
    """
    if value is None or value == "":
        return default
    number = _parse_number(value)
    if number is None:
        raise InvalidInputError(f"{field_name} is not a number: {value!r}", {"field": field_name})
    return number


def safe_str(value: Any, default: str = "") -> str:
    """Safely convert value to string"""
    if value is None or value == "":
        return default
    return str(value)


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


# ============================================================================
# TWO-TIER VALUE RESOLUTION
# ============================================================================

def get_value(field_name: str, row: Any, defaults: Optional[Dict[str, Any]] = None, default: Any = None) -> Any:
    """
    Get value using two-tier logic: row value > caller default > fallback default

    Both snake_case and camelCase spellings of field_name are looked up.

    Args:
        field_name: snake_case field name
        row: Source row (dict or object)
        defaults: Caller-level defaults dict
        default: Fallback default if not found anywhere

    Returns:
        Value from row, defaults, or fallback (in that order)
    """
    names = (field_name, _camel_case(field_name))

    for name in names:
        if isinstance(row, dict):
            row_value = row.get(name)
        else:
            row_value = getattr(row, name, None)
        if row_value is not None and row_value != "":
            return row_value

    for name in names:
        default_value = (defaults or {}).get(name)
        if default_value is not None and default_value != "":
            return default_value

    return default


def _build(model: Callable[..., T], label: str, **kwargs) -> T:
    """Construct a model, converting pydantic errors to InvalidInputError."""
    try:
        return model(**kwargs)
    except ValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise InvalidInputError(f"Invalid {label}: {field_errors[0]['message']}", {"field_errors": field_errors})


# ============================================================================
# FREIGHT TYPE NORMALIZATION
# ============================================================================

# Map stored values to FreightType (handles pt-BR variations)
FREIGHT_TYPE_MAPPING = {
    "fixed": FreightType.FIXED,
    "fixo": FreightType.FIXED,
    "valor_fixo": FreightType.FIXED,
    "valor fixo": FreightType.FIXED,
    "formula": FreightType.FORMULA,
    "fórmula": FreightType.FORMULA,
}

# Default PIS/COFINS rates (non-cumulative regime) used by destination forms
DEFAULT_PIS_PERCENT = Decimal("1.65")
DEFAULT_COFINS_PERCENT = Decimal("7.60")


def normalize_freight_type(value: Any) -> FreightType:
    """
    Normalize a stored freight type to FreightType.

    Raises:
        InvalidInputError: Unknown freight type
    """
    if value is None or value == "":
        return FreightType.FIXED
    if isinstance(value, FreightType):
        return value
    normalized = FREIGHT_TYPE_MAPPING.get(str(value).strip().lower())
    if normalized is None:
        raise InvalidInputError(f"Unknown freight type: {value!r}", {"field": "freight_type"})
    return normalized


# ============================================================================
# COST INPUT MAPPING
# ============================================================================

def map_cost_input(row: Any, defaults: Optional[Dict[str, Any]] = None) -> CostCalculationInput:
    """
    Transform a calculation request row into CostCalculationInput.

    Raises:
        InvalidInputError: missing or malformed fields
    """
    selling_price = require_decimal(get_value('selling_price', row, defaults), 'selling_price', None)
    shipment_weight = require_decimal(get_value('shipment_weight', row, defaults), 'shipment_weight', None)
    shipment_value = require_decimal(get_value('shipment_value', row, defaults), 'shipment_value', None)

    destination_id = get_value('destination_id', row, defaults)

    return _build(
        CostCalculationInput,
        "cost input",
        sku_id=safe_str(get_value('sku_id', row, defaults)),
        period=safe_str(get_value('period', row, defaults)),
        quantity_produced=require_decimal(get_value('quantity_produced', row, defaults), 'quantity_produced'),
        wastage_percent=require_decimal(get_value('wastage_percent', row, defaults), 'wastage_percent', Decimal("0")),
        selling_price=selling_price,
        destination_id=safe_str(destination_id) if destination_id is not None else None,
        shipment_weight=shipment_weight,
        shipment_value=shipment_value,
    )


def map_cost_components(rows: Optional[Sequence[Any]]) -> List[CostComponent]:
    """
    Map labor (or already-costed material) rows to CostComponent.

    Accepted keys: name / item_name / employee_name, unit_cost / hourly_rate,
    quantity / hours.
    """
    components = []
    for row in rows or []:
        name = get_value('name', row) or get_value('item_name', row) or get_value('employee_name', row, default="")
        unit_cost = get_value('unit_cost', row)
        if unit_cost is None:
            unit_cost = get_value('hourly_rate', row)
        quantity = get_value('quantity', row)
        if quantity is None:
            quantity = get_value('hours', row)
        components.append(_build(
            CostComponent,
            f"cost component '{name}'",
            name=safe_str(name),
            unit_cost=require_decimal(unit_cost, 'unit_cost'),
            quantity=require_decimal(quantity, 'quantity'),
            is_optional=bool(get_value('is_optional', row, default=False)),
            item_id=safe_str(get_value('item_id', row)) or None,
        ))
    return components


def map_bom_components(
    bom_rows: Optional[Sequence[Any]],
    item_costs: Mapping[str, Any]
) -> List[CostComponent]:
    """
    Map BOM rows to CostComponent with each item's real unit cost.

    The unit cost comes from item_costs[item_id] (warehouse cost lookup);
    a row's own unit_cost is used only when the item is absent from the lookup.

    Raises:
        NotFoundError: an item has no known unit cost
        InvalidInputError: malformed row
    """
    components = []
    for row in bom_rows or []:
        item_id = safe_str(get_value('item_id', row))
        name = safe_str(get_value('item_name', row) or get_value('name', row), item_id)

        unit_cost = None
        if item_id and item_id in item_costs:
            unit_cost = require_decimal(item_costs[item_id], 'unit_cost', None)
        if unit_cost is None:
            unit_cost = require_decimal(get_value('unit_cost', row), 'unit_cost', None)
        if unit_cost is None:
            raise NotFoundError(
                f"Unit cost not found for BOM item '{name}'",
                {"item_id": item_id or None},
            )

        components.append(_build(
            CostComponent,
            f"BOM item '{name}'",
            name=name,
            unit_cost=unit_cost,
            quantity=require_decimal(get_value('quantity', row), 'quantity'),
            is_optional=bool(get_value('is_optional', row, default=False)),
            item_id=item_id or None,
        ))

    logger.debug(f"Mapped {len(components)} BOM components")
    return components


def map_indirect_entries(rows: Optional[Sequence[Any]], period: Optional[str] = None) -> List[IndirectCostEntry]:
    """
    Map indirect cost ledger rows. Rows without a period take `period`.

    Accepted keys: description, amount / monthly_value, period, category.
    """
    entries = []
    for row in rows or []:
        amount = get_value('amount', row)
        if amount is None:
            amount = get_value('monthly_value', row)
        entries.append(_build(
            IndirectCostEntry,
            "indirect cost entry",
            description=safe_str(get_value('description', row), "Indirect cost"),
            amount=require_decimal(amount, 'amount'),
            period=safe_str(get_value('period', row), period or ""),
            category=get_value('category', row),
        ))
    return entries


def map_destination_profile(row: Any) -> DestinationTaxProfile:
    """
    Map a destination row to DestinationTaxProfile.

    Missing PIS/COFINS take the non-cumulative defaults (1.65% / 7.60%).
    """
    freight_formula = get_value('freight_formula', row)
    return _build(
        DestinationTaxProfile,
        "destination profile",
        name=get_value('name', row),
        freight_type=normalize_freight_type(get_value('freight_type', row)),
        freight_fixed_value=require_decimal(get_value('freight_fixed_value', row), 'freight_fixed_value', Decimal("0")),
        freight_formula=safe_str(freight_formula) if freight_formula is not None else None,
        icms_percent=require_decimal(get_value('icms_percent', row), 'icms_percent', Decimal("0")),
        icms_st_percent=require_decimal(get_value('icms_st_percent', row), 'icms_st_percent', Decimal("0")),
        pis_percent=require_decimal(get_value('pis_percent', row), 'pis_percent', DEFAULT_PIS_PERCENT),
        cofins_percent=require_decimal(get_value('cofins_percent', row), 'cofins_percent', DEFAULT_COFINS_PERCENT),
        ipi_percent=require_decimal(get_value('ipi_percent', row), 'ipi_percent', Decimal("0")),
    )


# ============================================================================
# BUDGET & SCENARIO MAPPING
# ============================================================================

# Month columns of a budget line row
MONTH_FIELDS = ['jan', 'fev', 'mar', 'abr', 'mai', 'jun', 'jul', 'ago', 'set', 'out', 'nov', 'dez']


def map_budget_entries(rows: Sequence[Dict[str, Any]]) -> List[BudgetMonthEntry]:
    """Map monthly budget rows ({month, budgeted, actual, forecast})."""
    return [BudgetMonthEntry.from_dict(row) for row in rows]


def map_budget_line(
    line: Dict[str, Any],
    actuals: Optional[Mapping[int, Any]] = None
) -> List[BudgetMonthEntry]:
    """
    Map a budget line with one column per month (jan..dez) to 12 entries.

    Args:
        line: Budget line row
        actuals: Realized spend by month number (1..12)
    """
    actuals = actuals or {}
    return [
        BudgetMonthEntry(
            month=index + 1,
            budgeted=require_decimal(line.get(field_name), field_name, Decimal("0")),
            actual=require_decimal(actuals.get(index + 1), field_name, None),
        )
        for index, field_name in enumerate(MONTH_FIELDS)
    ]


def map_scenario_adjustment(row: Dict[str, Any]) -> ScenarioAdjustment:
    """Map a simulator request (snake_case or camelCase keys)."""
    return ScenarioAdjustment(
        material_variation_percent=require_decimal(
            get_value('material_variation_percent', row) or get_value('material_variation', row),
            'material_variation_percent',
            Decimal("0"),
        ),
        labor_variation_percent=require_decimal(
            get_value('labor_variation_percent', row) or get_value('labor_variation', row),
            'labor_variation_percent',
            Decimal("0"),
        ),
        indirect_variation_percent=require_decimal(
            get_value('indirect_variation_percent', row) or get_value('indirect_variation', row),
            'indirect_variation_percent',
            Decimal("0"),
        ),
        target_margin_percent=require_decimal(
            get_value('target_margin_percent', row) or get_value('target_margin', row),
            'target_margin_percent',
            Decimal("0"),
        ),
        current_price=require_decimal(get_value('current_price', row), 'current_price', None),
        name=get_value('name', row),
    )


# ============================================================================
# VALIDATION FUNCTION
# ============================================================================

def validate_cost_input(row: Any) -> List[str]:
    """
    Validate a calculation request before processing.
    Returns list of all validation errors (empty list if valid).
    """
    errors = []

    if not get_value('sku_id', row):
        errors.append("SKU is required (sku_id).")

    period = safe_str(get_value('period', row))
    if not PERIOD_PATTERN.match(period):
        errors.append(f"Period must be formatted YYYY-MM, got '{period}'.")

    quantity = safe_decimal(get_value('quantity_produced', row), None)
    if quantity is None or quantity <= 0:
        errors.append("Quantity produced must be greater than zero (quantity_produced).")

    raw_wastage = get_value('wastage_percent', row)
    wastage = safe_decimal(raw_wastage, None) if raw_wastage is not None else Decimal("0")
    if wastage is None or wastage < 0 or wastage > 100:
        errors.append("Wastage must be between 0 and 100% (wastage_percent).")

    raw_price = get_value('selling_price', row)
    if raw_price is not None:
        price = safe_decimal(raw_price, None)
        if price is None:
            errors.append(f"Selling price is not a number: {raw_price!r}.")
        elif price < 0:
            errors.append("Selling price cannot be negative (selling_price).")

    return errors
