"""
Cost & Budget Analytics Engine - Calculation Models
Pydantic models for absorption costing and destination cost inputs/results

All monetary and percentage values are Decimal. Results are rounded to the
currency boundary (2 decimal places) only when a calculation finishes.
"""

import re
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

MONEY_PLACES = 2
PERCENT_PLACES = 2


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def round_decimal(value: Decimal, decimal_places: int = MONEY_PLACES) -> Decimal:
    """Round decimal to specified places using ROUND_HALF_UP."""
    if decimal_places == 2:
        return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    elif decimal_places == 0:
        return value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    else:
        quantizer = Decimal(10) ** -decimal_places
        return value.quantize(quantizer, rounding=ROUND_HALF_UP)


def money_str(value: Optional[Decimal], decimal_places: int = MONEY_PLACES) -> Optional[str]:
    """Serialize a monetary value with a fixed number of places."""
    if value is None:
        return None
    return str(round_decimal(value, decimal_places))


def percent_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a percentage with up to 2 decimal places (trailing zeros dropped)."""
    if value is None:
        return None
    rounded = round_decimal(value, PERCENT_PLACES)
    text = format(rounded, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text if text not in ("-0", "") else "0"


def validate_period(value: str) -> str:
    """Ensure a period is formatted YYYY-MM."""
    if not isinstance(value, str) or not PERIOD_PATTERN.match(value):
        raise ValueError(f"Period must be formatted YYYY-MM, got '{value}'")
    return value


# ============================================================================
# ENUMS
# ============================================================================

class FreightType(str, Enum):
    """How a destination's freight is priced"""
    FIXED = "fixed"
    FORMULA = "formula"


class MarginStatus(str, Enum):
    """Gross margin band shown on the cost calculator"""
    EXCELLENT = "excellent"    # >= 30%
    GOOD = "good"              # >= 20%
    ACCEPTABLE = "acceptable"  # >= 10%
    LOW = "low"                # > 0%
    NEGATIVE = "negative"


# ============================================================================
# INPUT MODELS
# ============================================================================

class CostComponent(BaseModel):
    """BOM material line or labor entry"""
    name: str = Field(..., description="Item or employee name")
    unit_cost: Decimal = Field(..., description="Cost per unit of quantity")
    quantity: Decimal = Field(..., ge=0, description="Quantity (per produced unit for BOM, hours/units for labor)")
    is_optional: bool = Field(default=False, description="Optional recipe item (still costed)")
    item_id: Optional[str] = Field(default=None, description="Warehouse item or employee id")

    @property
    def line_total(self) -> Decimal:
        return self.unit_cost * self.quantity


class IndirectCostEntry(BaseModel):
    """Indirect cost ledger entry, apportioned across the period's production"""
    description: str
    amount: Decimal
    period: str = Field(..., description="YYYY-MM")
    category: Optional[str] = Field(default=None, description="Fixed cost category (aluguel, energia, ...)")

    @field_validator('period')
    @classmethod
    def check_period(cls, v):
        return validate_period(v)


class CostCalculationInput(BaseModel):
    """
    Production run to be costed.

    Domain checks (quantity_produced > 0, wastage in [0, 100]) are enforced by
    costing_engine.calculate_cost so they surface as InvalidInputError.
    """
    sku_id: str
    period: str = Field(..., description="YYYY-MM")
    quantity_produced: Decimal = Field(..., description="Quantity produced (kg or units)")
    wastage_percent: Decimal = Field(default=Decimal("0"), description="Physical loss % over material+labor")
    selling_price: Optional[Decimal] = Field(default=None, description="Unit selling price")
    destination_id: Optional[str] = Field(default=None)
    shipment_weight: Optional[Decimal] = Field(default=None, description="Weight used by freight formulas")
    shipment_value: Optional[Decimal] = Field(default=None, description="Value used as tax base")

    @field_validator('sku_id', mode='before')
    @classmethod
    def coerce_sku_id(cls, v):
        return str(v) if v is not None else v

    @field_validator('period')
    @classmethod
    def check_period(cls, v):
        return validate_period(v)


class DestinationTaxProfile(BaseModel):
    """Freight and tax configuration of a sales destination"""
    name: Optional[str] = None
    freight_type: FreightType = Field(default=FreightType.FIXED)
    freight_fixed_value: Decimal = Field(default=Decimal("0"), ge=0)
    freight_formula: Optional[str] = Field(default=None, description="Expression over weight and value")
    icms_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    icms_st_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    pis_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    cofins_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    ipi_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)


# ============================================================================
# RESULT MODELS
# ============================================================================

class TaxBreakdown(BaseModel):
    """Tax lines of a shipment"""
    icms: Decimal
    icms_st: Decimal
    pis: Decimal
    cofins: Decimal
    ipi: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'icms': money_str(self.icms),
            'icms_st': money_str(self.icms_st),
            'pis': money_str(self.pis),
            'cofins': money_str(self.cofins),
            'ipi': money_str(self.ipi),
            'total': money_str(self.total),
        }


class DestinationCostResult(BaseModel):
    """Freight + taxes for a shipment (cost components only, not a landed price)"""
    freight_cost: Decimal
    taxes: TaxBreakdown
    total_cost: Decimal
    effective_tax_rate_percent: Decimal = Decimal("0")
    destination_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'destination_name': self.destination_name,
            'freight_cost': money_str(self.freight_cost),
            'taxes': self.taxes.to_dict(),
            'total_cost': money_str(self.total_cost),
            'effective_tax_rate_percent': percent_str(self.effective_tax_rate_percent),
        }


class CostLineDetail(BaseModel):
    """Per-line breakdown of direct material or labor cost"""
    name: str
    unit_cost: Decimal
    quantity: Decimal
    total_cost: Decimal
    is_optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'unit_cost': money_str(self.unit_cost),
            'quantity': str(self.quantity),
            'total_cost': money_str(self.total_cost),
            'is_optional': self.is_optional,
        }


class IndirectCostDetail(BaseModel):
    """Indirect entry and the share charged to this calculation"""
    description: str
    amount: Decimal
    apportioned_amount: Decimal
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'category': self.category,
            'amount': money_str(self.amount),
            'apportioned_amount': money_str(self.apportioned_amount),
        }


class CostCalculationResult(BaseModel):
    """Absorption costing result for one production run"""
    sku_id: str
    period: str
    quantity_produced: Decimal

    direct_cost_total: Decimal = Field(..., description="BOM materials x quantity produced")
    labor_cost_total: Decimal = Field(..., description="Labor entries of the period")
    indirect_cost_total: Decimal = Field(..., description="Apportioned indirect costs")
    freight_cost: Decimal
    tax_cost: Decimal
    wastage_percent: Decimal
    wastage_value: Decimal = Field(..., description="(direct + labor) x wastage %")
    total_cost: Decimal = Field(..., description="Exact sum of the six components")
    unit_cost: Decimal

    selling_price: Optional[Decimal] = None
    gross_margin: Optional[Decimal] = None
    gross_margin_percent: Optional[Decimal] = None
    margin_status: Optional[MarginStatus] = None

    direct_cost_details: List[CostLineDetail] = Field(default_factory=list)
    labor_cost_details: List[CostLineDetail] = Field(default_factory=list)
    indirect_cost_details: List[IndirectCostDetail] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with 2-place monetary strings."""
        return {
            'sku_id': self.sku_id,
            'period': self.period,
            'quantity_produced': str(self.quantity_produced),
            'direct_cost_total': money_str(self.direct_cost_total),
            'labor_cost_total': money_str(self.labor_cost_total),
            'indirect_cost_total': money_str(self.indirect_cost_total),
            'freight_cost': money_str(self.freight_cost),
            'tax_cost': money_str(self.tax_cost),
            'wastage_percent': percent_str(self.wastage_percent),
            'wastage_value': money_str(self.wastage_value),
            'total_cost': money_str(self.total_cost),
            'unit_cost': money_str(self.unit_cost),
            'selling_price': money_str(self.selling_price),
            'gross_margin': money_str(self.gross_margin),
            'gross_margin_percent': percent_str(self.gross_margin_percent),
            'margin_status': self.margin_status.value if self.margin_status else None,
            'direct_cost_details': [d.to_dict() for d in self.direct_cost_details],
            'labor_cost_details': [d.to_dict() for d in self.labor_cost_details],
            'indirect_cost_details': [d.to_dict() for d in self.indirect_cost_details],
        }
