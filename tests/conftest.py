"""
Shared pytest fixtures for the cost & budget engine tests.

Provides:
- Explicit EngineSettings (tests never depend on the caller's .env)
- Test data factories for BOM, labor, indirect, destination and budget rows
"""

import os
import sys
from decimal import Decimal

import pytest

# Make the repo root importable when pytest is run from elsewhere
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from costing_models import (  # noqa: E402
    CostCalculationInput,
    CostComponent,
    DestinationTaxProfile,
    FreightType,
    IndirectCostEntry,
)
from services.engine_settings import EngineSettings  # noqa: E402
from services.budget_analysis_service import BudgetMonthEntry  # noqa: E402


# ============================================================================
# FACTORIES
# ============================================================================

def make_cost_input(
    sku_id="SKU-001",
    period="2025-03",
    quantity_produced="100",
    wastage_percent="0",
    selling_price=None,
    destination_id=None,
    **kwargs
):
    """Create a CostCalculationInput."""
    return CostCalculationInput(
        sku_id=sku_id,
        period=period,
        quantity_produced=Decimal(str(quantity_produced)),
        wastage_percent=Decimal(str(wastage_percent)),
        selling_price=Decimal(str(selling_price)) if selling_price is not None else None,
        destination_id=destination_id,
        **kwargs
    )


def make_component(name="Item", unit_cost="1.00", quantity="1", is_optional=False):
    """Create a CostComponent."""
    return CostComponent(
        name=name,
        unit_cost=Decimal(str(unit_cost)),
        quantity=Decimal(str(quantity)),
        is_optional=is_optional,
    )


def make_indirect(description="Aluguel", amount="1000.00", period="2025-03", category="aluguel"):
    """Create an IndirectCostEntry."""
    return IndirectCostEntry(
        description=description,
        amount=Decimal(str(amount)),
        period=period,
        category=category,
    )


def make_destination(
    name="Sao Paulo",
    freight_type=FreightType.FIXED,
    freight_fixed_value="0",
    freight_formula=None,
    icms_percent="0",
    icms_st_percent="0",
    pis_percent="0",
    cofins_percent="0",
    ipi_percent="0",
):
    """Create a DestinationTaxProfile."""
    return DestinationTaxProfile(
        name=name,
        freight_type=freight_type,
        freight_fixed_value=Decimal(str(freight_fixed_value)),
        freight_formula=freight_formula,
        icms_percent=Decimal(str(icms_percent)),
        icms_st_percent=Decimal(str(icms_st_percent)),
        pis_percent=Decimal(str(pis_percent)),
        cofins_percent=Decimal(str(cofins_percent)),
        ipi_percent=Decimal(str(ipi_percent)),
    )


def make_budget(budgeted=None, actuals=None, forecasts=None):
    """
    Create 12 BudgetMonthEntry.

    budgeted: list of 12 values (default 1000 each)
    actuals: list of realized values for the first N months
    forecasts: dict {month: forecast}
    """
    budgeted = budgeted or [Decimal("1000")] * 12
    actuals = actuals or []
    forecasts = forecasts or {}
    return [
        BudgetMonthEntry(
            month=i + 1,
            budgeted=Decimal(str(budgeted[i])),
            actual=Decimal(str(actuals[i])) if i < len(actuals) else None,
            forecast=Decimal(str(forecasts[i + 1])) if (i + 1) in forecasts else None,
        )
        for i in range(12)
    ]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def settings():
    """Engine settings with the reference defaults."""
    return EngineSettings()


@pytest.fixture
def sample_bom():
    """
    Cheese-bread recipe per kg:
      polvilho 0.5 kg x 8.00 = 4.00
      queijo   0.3 kg x 30.00 = 9.00
      embalagem 1 un x 0.50 = 0.50 (optional)
    -> 13.50 per kg
    """
    return [
        make_component("Polvilho", "8.00", "0.5"),
        make_component("Queijo", "30.00", "0.3"),
        make_component("Embalagem", "0.50", "1", is_optional=True),
    ]


@pytest.fixture
def sample_labor():
    """Two employees: 10h x 25.00 + 8h x 30.00 = 490.00"""
    return [
        make_component("Ana", "25.00", "10"),
        make_component("Bruno", "30.00", "8"),
    ]


@pytest.fixture
def sample_indirect():
    """1500.00 in March, 999.00 in April (ignored for March runs)."""
    return [
        make_indirect("Aluguel", "1000.00", "2025-03", "aluguel"),
        make_indirect("Energia", "500.00", "2025-03", "energia"),
        make_indirect("Aluguel abril", "999.00", "2025-04", "aluguel"),
    ]
