"""
Scenario Service

What-if simulation of cost sub-component variations and target margin:
simulated cost, suggested price, break-even price and the price adjustment
needed against the current price.

Default cost split (material 60%, labor 25%, indirect 15%) comes from
EngineSettings and can be overridden per call.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional, Sequence

from costing_errors import InvalidConfigError, InvalidInputError, safe_divide
from costing_models import money_str, percent_str, round_decimal
from .engine_settings import COST_SPLIT_TOLERANCE, EngineSettings, resolve_settings

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ONE = Decimal("1")


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}", {"field": field_name})
    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number, got {value!r}", {"field": field_name})
    return result


# ============================================================================
# Data Classes
# ============================================================================

class ScenarioRecommendation(str, Enum):
    """What the current price needs"""
    INCREASE_PRICE = "increase_price"
    MARGIN_OK = "margin_ok"


@dataclass
class CostSplit:
    """Share of each cost sub-component (fractions summing to 1.0)."""
    material_pct: Decimal
    labor_pct: Decimal
    indirect_pct: Decimal

    def __post_init__(self):
        self.material_pct = _to_decimal(self.material_pct, 'material_pct')
        self.labor_pct = _to_decimal(self.labor_pct, 'labor_pct')
        self.indirect_pct = _to_decimal(self.indirect_pct, 'indirect_pct')

    @classmethod
    def default(cls, settings: Optional[EngineSettings] = None) -> 'CostSplit':
        settings = resolve_settings(settings)
        return cls(
            material_pct=settings.material_share,
            labor_pct=settings.labor_share,
            indirect_pct=settings.indirect_share,
        )

    @property
    def total(self) -> Decimal:
        return self.material_pct + self.labor_pct + self.indirect_pct

    def validate(self) -> None:
        """
        Raises:
            InvalidConfigError: negative share or shares not summing to 1.0 (1e-6)
        """
        for name in ('material_pct', 'labor_pct', 'indirect_pct'):
            if getattr(self, name) < 0:
                raise InvalidConfigError(f"Cost split {name} cannot be negative", {"field": name})
        if abs(self.total - ONE) > COST_SPLIT_TOLERANCE:
            raise InvalidConfigError(
                f"Cost split must sum to 1.0, got {self.total}",
                {"total": str(self.total)},
            )


@dataclass
class ScenarioAdjustment:
    """Percentage variations of each cost sub-component and target margin."""
    material_variation_percent: Decimal = Decimal("0")
    labor_variation_percent: Decimal = Decimal("0")
    indirect_variation_percent: Decimal = Decimal("0")
    target_margin_percent: Decimal = Decimal("0")
    current_price: Optional[Decimal] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.material_variation_percent = _to_decimal(self.material_variation_percent, 'material_variation_percent')
        self.labor_variation_percent = _to_decimal(self.labor_variation_percent, 'labor_variation_percent')
        self.indirect_variation_percent = _to_decimal(self.indirect_variation_percent, 'indirect_variation_percent')
        self.target_margin_percent = _to_decimal(self.target_margin_percent, 'target_margin_percent')
        if self.current_price is not None and self.current_price != "":
            self.current_price = _to_decimal(self.current_price, 'current_price')
        else:
            self.current_price = None

    @classmethod
    def from_dict(cls, data: dict) -> 'ScenarioAdjustment':
        return cls(
            material_variation_percent=data.get('material_variation_percent', data.get('material_variation', 0)),
            labor_variation_percent=data.get('labor_variation_percent', data.get('labor_variation', 0)),
            indirect_variation_percent=data.get('indirect_variation_percent', data.get('indirect_variation', 0)),
            target_margin_percent=data.get('target_margin_percent', data.get('target_margin', 0)),
            current_price=data.get('current_price'),
            name=data.get('name'),
        )

    def validate(self) -> None:
        """
        Raises:
            InvalidInputError: variation below -100% or negative target margin
            InvalidConfigError: target margin >= 100%
        """
        for name in ('material_variation_percent', 'labor_variation_percent', 'indirect_variation_percent'):
            if getattr(self, name) < -HUNDRED:
                raise InvalidInputError(f"{name} must be >= -100", {"field": name})
        if self.target_margin_percent >= HUNDRED:
            raise InvalidConfigError(
                f"target_margin_percent must be below 100, got {self.target_margin_percent}",
                {"field": "target_margin_percent"},
            )
        if self.target_margin_percent < 0:
            raise InvalidInputError(
                f"target_margin_percent cannot be negative, got {self.target_margin_percent}",
                {"field": "target_margin_percent"},
            )
        if self.current_price is not None and self.current_price < 0:
            raise InvalidInputError("current_price cannot be negative", {"field": "current_price"})


@dataclass
class ScenarioResult:
    """Outcome of a what-if scenario."""
    base_cost: Decimal
    simulated_cost: Decimal
    cost_variation: Decimal
    cost_variation_percent: Decimal
    suggested_price: Decimal
    break_even_price: Decimal
    target_margin_percent: Decimal

    material_impact: Decimal
    labor_impact: Decimal
    indirect_impact: Decimal

    current_price: Decimal
    current_margin: Decimal
    current_margin_percent: Decimal
    price_adjustment: Decimal
    price_adjustment_percent: Decimal
    recommendation: ScenarioRecommendation
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'base_cost': money_str(self.base_cost),
            'simulated_cost': money_str(self.simulated_cost),
            'cost_variation': money_str(self.cost_variation),
            'cost_variation_percent': percent_str(self.cost_variation_percent),
            'suggested_price': money_str(self.suggested_price),
            'break_even_price': money_str(self.break_even_price),
            'target_margin_percent': percent_str(self.target_margin_percent),
            'material_impact': money_str(self.material_impact),
            'labor_impact': money_str(self.labor_impact),
            'indirect_impact': money_str(self.indirect_impact),
            'current_price': money_str(self.current_price),
            'current_margin': money_str(self.current_margin),
            'current_margin_percent': percent_str(self.current_margin_percent),
            'price_adjustment': money_str(self.price_adjustment),
            'price_adjustment_percent': percent_str(self.price_adjustment_percent),
            'recommendation': self.recommendation.value,
        }


# ============================================================================
# Simulation
# ============================================================================

def simulate_scenario(
    base_cost: Any,
    adjustment: ScenarioAdjustment,
    cost_split: Optional[CostSplit] = None,
    settings: Optional[EngineSettings] = None
) -> ScenarioResult:
    """
    Simulate cost and price under independent component variations.

    simulated_cost = sum(base_cost x share x (1 + variation / 100))
    suggested_price = simulated_cost / (1 - target_margin / 100)
    break_even_price = simulated_cost

    Args:
        base_cost: Current unit cost (> 0)
        adjustment: Variations, target margin and optional current price
        cost_split: Component shares (settings default 60/25/15 if None)
        settings: Engine settings (environment defaults if None)

    Returns:
        ScenarioResult

    Raises:
        InvalidInputError: base_cost <= 0, variation below -100%
        InvalidConfigError: split not summing to 1.0, target margin >= 100%
    """
    settings = resolve_settings(settings)
    places = settings.money_places

    base_cost = _to_decimal(base_cost, 'base_cost')
    if base_cost <= 0:
        raise InvalidInputError(f"base_cost must be > 0, got {base_cost}", {"field": "base_cost"})

    split = cost_split if cost_split is not None else CostSplit.default(settings)
    split.validate()
    adjustment.validate()

    material_portion = base_cost * split.material_pct
    labor_portion = base_cost * split.labor_pct
    indirect_portion = base_cost * split.indirect_pct

    material_simulated = material_portion * (ONE + adjustment.material_variation_percent / HUNDRED)
    labor_simulated = labor_portion * (ONE + adjustment.labor_variation_percent / HUNDRED)
    indirect_simulated = indirect_portion * (ONE + adjustment.indirect_variation_percent / HUNDRED)

    simulated_cost = material_simulated + labor_simulated + indirect_simulated
    suggested_price = simulated_cost / (ONE - adjustment.target_margin_percent / HUNDRED)

    # Without a current price the suggested price is the reference
    current_price = adjustment.current_price if adjustment.current_price is not None else suggested_price
    current_margin = current_price - simulated_cost
    price_adjustment = suggested_price - current_price

    recommendation = (
        ScenarioRecommendation.INCREASE_PRICE
        if round_decimal(price_adjustment, places) > 0
        else ScenarioRecommendation.MARGIN_OK
    )

    logger.debug(
        f"Scenario '{adjustment.name}': base={base_cost} simulated={simulated_cost} "
        f"suggested={suggested_price} recommendation={recommendation.value}"
    )

    return ScenarioResult(
        name=adjustment.name,
        base_cost=round_decimal(base_cost, places),
        simulated_cost=round_decimal(simulated_cost, places),
        cost_variation=round_decimal(simulated_cost - base_cost, places),
        cost_variation_percent=round_decimal((simulated_cost - base_cost) / base_cost * HUNDRED, 2),
        suggested_price=round_decimal(suggested_price, places),
        break_even_price=round_decimal(simulated_cost, places),
        target_margin_percent=adjustment.target_margin_percent,
        material_impact=round_decimal(material_simulated - material_portion, places),
        labor_impact=round_decimal(labor_simulated - labor_portion, places),
        indirect_impact=round_decimal(indirect_simulated - indirect_portion, places),
        current_price=round_decimal(current_price, places),
        current_margin=round_decimal(current_margin, places),
        current_margin_percent=round_decimal(safe_divide(current_margin * HUNDRED, current_price), 2),
        price_adjustment=round_decimal(price_adjustment, places),
        price_adjustment_percent=round_decimal(safe_divide(price_adjustment * HUNDRED, current_price), 2),
        recommendation=recommendation,
    )


def simulate_scenarios(
    base_cost: Any,
    adjustments: Sequence[ScenarioAdjustment],
    cost_split: Optional[CostSplit] = None,
    settings: Optional[EngineSettings] = None
) -> List[ScenarioResult]:
    """Run several scenarios over the same base cost, in input order."""
    return [simulate_scenario(base_cost, adj, cost_split, settings) for adj in adjustments]
