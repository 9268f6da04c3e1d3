"""
Budget Analysis Service

Budget-vs-actual indicators for a 12-month (base-zero) budget: burn rate,
run rate, cumulative variance, adherence index and year-end forecast.

Months are stored 1..12; as_of_month is ZERO-indexed and inclusive
(as_of_month=2 means January..March have elapsed).
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from costing_errors import InvalidInputError, safe_divide
from costing_models import money_str, percent_str, round_decimal
from .engine_settings import EngineSettings, resolve_settings

logger = logging.getLogger(__name__)

MONTHS_IN_YEAR = 12
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def _decimal_or_none(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}", {"field": field_name})
    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be a finite number, got {value!r}", {"field": field_name})
    return result


# ============================================================================
# Enums
# ============================================================================

class BudgetStatus(str, Enum):
    """Monthly traffic light"""
    GREEN = "green"     # at or under budget
    YELLOW = "yellow"   # over budget within tolerance
    RED = "red"         # over budget beyond tolerance


class RiskLevel(str, Enum):
    """Budget risk from burn rate"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class BudgetMonthEntry:
    """Budgeted and realized spend of one month."""
    month: int
    budgeted: Decimal
    actual: Optional[Decimal] = None      # None for future/unrealized months
    forecast: Optional[Decimal] = None    # Explicit forecast for remaining months

    def __post_init__(self):
        if isinstance(self.month, bool) or not isinstance(self.month, int) or not 1 <= self.month <= MONTHS_IN_YEAR:
            raise InvalidInputError(f"Month must be 1..12, got {self.month!r}", {"field": "month"})
        self.budgeted = _decimal_or_none(self.budgeted, 'budgeted')
        if self.budgeted is None:
            raise InvalidInputError(f"Budgeted value is required for month {self.month}", {"field": "budgeted"})
        if self.budgeted < 0:
            raise InvalidInputError(
                f"Budgeted value cannot be negative (month {self.month}): {self.budgeted}",
                {"field": "budgeted", "month": self.month},
            )
        self.actual = _decimal_or_none(self.actual, 'actual')
        self.forecast = _decimal_or_none(self.forecast, 'forecast')

    @classmethod
    def from_dict(cls, data: dict) -> 'BudgetMonthEntry':
        """Create an entry from a budget row (budgeted/actual or *_value keys)."""
        budgeted = data.get('budgeted', data.get('budgeted_value'))
        actual = data.get('actual', data.get('actual_value'))
        forecast = data.get('forecast', data.get('forecast_value'))
        try:
            month = int(data['month'])
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError(f"Invalid month in budget row: {data.get('month')!r}", {"field": "month"})
        return cls(month=month, budgeted=budgeted, actual=actual, forecast=forecast)

    def to_dict(self) -> dict:
        return {
            'month': self.month,
            'budgeted': money_str(self.budgeted),
            'actual': money_str(self.actual),
            'forecast': money_str(self.forecast),
        }


@dataclass
class BudgetMonthAnalysis:
    """Variance of one elapsed month."""
    month: int
    budgeted: Decimal
    actual: Decimal
    variance: Decimal
    variance_percent: Decimal
    adherent: bool
    status: BudgetStatus

    def to_dict(self) -> dict:
        return {
            'month': self.month,
            'budgeted': money_str(self.budgeted),
            'actual': money_str(self.actual),
            'variance': money_str(self.variance),
            'variance_percent': percent_str(self.variance_percent),
            'adherent': self.adherent,
            'status': self.status.value,
        }


@dataclass
class BudgetAnalysis:
    """Budget indicators as of a month."""
    as_of_month: int
    months_elapsed: int

    budgeted_to_date: Decimal
    actual_to_date: Decimal
    annual_budget: Decimal

    burn_rate_percent: Decimal
    run_rate: Decimal
    cumulative_variance: Decimal
    cumulative_variance_percent: Decimal
    adherence_percent: Decimal
    forecast_year_end: Decimal

    projected_variance: Decimal      # forecast_year_end - annual_budget
    run_rate_variance: Decimal       # run_rate - annual_budget

    months_under_budget: int
    months_on_budget: int
    months_over_budget: int
    risk_level: RiskLevel

    months: List[BudgetMonthAnalysis] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'as_of_month': self.as_of_month,
            'months_elapsed': self.months_elapsed,
            'budgeted_to_date': money_str(self.budgeted_to_date),
            'actual_to_date': money_str(self.actual_to_date),
            'annual_budget': money_str(self.annual_budget),
            'burn_rate_percent': percent_str(self.burn_rate_percent),
            'run_rate': money_str(self.run_rate),
            'cumulative_variance': money_str(self.cumulative_variance),
            'cumulative_variance_percent': percent_str(self.cumulative_variance_percent),
            'adherence_percent': percent_str(self.adherence_percent),
            'forecast_year_end': money_str(self.forecast_year_end),
            'projected_variance': money_str(self.projected_variance),
            'run_rate_variance': money_str(self.run_rate_variance),
            'months_under_budget': self.months_under_budget,
            'months_on_budget': self.months_on_budget,
            'months_over_budget': self.months_over_budget,
            'risk_level': self.risk_level.value,
            'months': [m.to_dict() for m in self.months],
        }


# ============================================================================
# Validation
# ============================================================================

def validate_budget_entries(entries: Sequence[BudgetMonthEntry]) -> List[BudgetMonthEntry]:
    """
    Check that entries cover months 1..12 exactly once.

    Returns:
        Entries sorted by month

    Raises:
        InvalidInputError: wrong count, duplicated or missing months
    """
    if entries is None or len(entries) != MONTHS_IN_YEAR:
        count = 0 if entries is None else len(entries)
        raise InvalidInputError(f"Budget must have 12 monthly entries, got {count}", {"count": count})

    months = sorted(entry.month for entry in entries)
    if months != list(range(1, MONTHS_IN_YEAR + 1)):
        duplicated = sorted({m for m in months if months.count(m) > 1})
        raise InvalidInputError(
            "Budget entries must cover months 1..12 exactly once",
            {"duplicated_months": duplicated},
        )

    return sorted(entries, key=lambda e: e.month)


# ============================================================================
# Indicator Functions
# ============================================================================

def is_month_adherent(budgeted: Decimal, actual: Decimal, tolerance: Decimal) -> bool:
    """
    |actual - budgeted| / budgeted <= tolerance (inclusive).
    Zero budget: adherent only when nothing was spent.
    """
    if budgeted == 0:
        return actual == 0
    return abs(actual - budgeted) / budgeted <= tolerance


def get_month_status(budgeted: Decimal, actual: Decimal, tolerance: Decimal) -> BudgetStatus:
    """Green at/under budget, yellow over within tolerance, red beyond."""
    if budgeted == 0:
        return BudgetStatus.GREEN if actual <= 0 else BudgetStatus.RED
    variance_ratio = (actual - budgeted) / budgeted
    if variance_ratio <= 0:
        return BudgetStatus.GREEN
    if variance_ratio <= tolerance:
        return BudgetStatus.YELLOW
    return BudgetStatus.RED


def get_risk_level(burn_rate_percent: Decimal, settings: Optional[EngineSettings] = None) -> RiskLevel:
    """Risk from burn rate: > critical, > high, > medium thresholds."""
    settings = resolve_settings(settings)
    if burn_rate_percent > settings.risk_critical_threshold:
        return RiskLevel.CRITICAL
    if burn_rate_percent > settings.risk_high_threshold:
        return RiskLevel.HIGH
    if burn_rate_percent > settings.risk_medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def analyze_month(entry: BudgetMonthEntry, tolerance: Decimal) -> BudgetMonthAnalysis:
    """Variance of an elapsed month (missing actual counts as 0)."""
    actual = entry.actual if entry.actual is not None else ZERO
    variance = actual - entry.budgeted
    return BudgetMonthAnalysis(
        month=entry.month,
        budgeted=entry.budgeted,
        actual=actual,
        variance=variance,
        variance_percent=round_decimal(safe_divide(variance * HUNDRED, entry.budgeted), 2),
        adherent=is_month_adherent(entry.budgeted, actual, tolerance),
        status=get_month_status(entry.budgeted, actual, tolerance),
    )


def analyze_budget(
    entries: Sequence[BudgetMonthEntry],
    as_of_month: int,
    settings: Optional[EngineSettings] = None
) -> BudgetAnalysis:
    """
    Budget indicators as of a month.

    Formulas:
        burn_rate_percent = actual_to_date / budgeted_to_date x 100  (0 if no budget)
        run_rate          = actual_to_date / (as_of_month + 1) x 12
        cumulative_variance = actual_to_date - budgeted_to_date
        adherence_percent = adherent months / elapsed months x 100
        forecast_year_end = actual_to_date + remaining months (forecast, else budgeted)

    Args:
        entries: 12 monthly entries (any order)
        as_of_month: Zero-indexed last elapsed month (0..11), inclusive
        settings: Engine settings (environment defaults if None)

    Returns:
        BudgetAnalysis

    Raises:
        InvalidInputError: entries do not cover 12 months, as_of_month outside 0..11
    """
    settings = resolve_settings(settings)
    places = settings.money_places
    tolerance = settings.adherence_tolerance

    if isinstance(as_of_month, bool) or not isinstance(as_of_month, int) or not 0 <= as_of_month < MONTHS_IN_YEAR:
        raise InvalidInputError(f"as_of_month must be 0..11, got {as_of_month!r}", {"field": "as_of_month"})

    ordered = validate_budget_entries(entries)
    months_elapsed = as_of_month + 1
    elapsed = ordered[:months_elapsed]
    remaining = ordered[months_elapsed:]

    month_results = [analyze_month(entry, tolerance) for entry in elapsed]

    budgeted_to_date = sum((m.budgeted for m in month_results), ZERO)
    actual_to_date = sum((m.actual for m in month_results), ZERO)
    annual_budget = sum((e.budgeted for e in ordered), ZERO)

    if budgeted_to_date == 0:
        logger.warning(f"Budgeted-to-date is zero as of month {as_of_month}; burn rate reported as 0")

    burn_rate = safe_divide(actual_to_date * HUNDRED, budgeted_to_date)
    run_rate = actual_to_date / Decimal(months_elapsed) * Decimal(MONTHS_IN_YEAR)
    cumulative_variance = actual_to_date - budgeted_to_date
    cumulative_variance_percent = safe_divide(cumulative_variance * HUNDRED, budgeted_to_date)

    adherent_months = sum(1 for m in month_results if m.adherent)
    adherence = Decimal(adherent_months) * HUNDRED / Decimal(months_elapsed)

    remaining_total = sum(
        (e.forecast if e.forecast is not None else e.budgeted for e in remaining),
        ZERO,
    )
    forecast_year_end = actual_to_date + remaining_total

    under = sum(1 for m in month_results if m.status == BudgetStatus.GREEN)
    on_budget = sum(1 for m in month_results if m.status == BudgetStatus.YELLOW)
    over = sum(1 for m in month_results if m.status == BudgetStatus.RED)

    burn_rate_percent = round_decimal(burn_rate, 2)

    logger.debug(
        f"Budget as of month {as_of_month}: burn={burn_rate_percent}% adherence={adherence} "
        f"forecast={forecast_year_end}"
    )

    return BudgetAnalysis(
        as_of_month=as_of_month,
        months_elapsed=months_elapsed,
        budgeted_to_date=round_decimal(budgeted_to_date, places),
        actual_to_date=round_decimal(actual_to_date, places),
        annual_budget=round_decimal(annual_budget, places),
        burn_rate_percent=burn_rate_percent,
        run_rate=round_decimal(run_rate, places),
        cumulative_variance=round_decimal(cumulative_variance, places),
        cumulative_variance_percent=round_decimal(cumulative_variance_percent, 2),
        adherence_percent=round_decimal(adherence, 2),
        forecast_year_end=round_decimal(forecast_year_end, places),
        projected_variance=round_decimal(forecast_year_end - annual_budget, places),
        run_rate_variance=round_decimal(run_rate - annual_budget, places),
        months_under_budget=under,
        months_on_budget=on_budget,
        months_over_budget=over,
        risk_level=get_risk_level(burn_rate_percent, settings),
        months=month_results,
    )


# ============================================================================
# Budget Construction
# ============================================================================

def consolidate_budget_lines(lines: Mapping[str, Sequence[BudgetMonthEntry]]) -> List[BudgetMonthEntry]:
    """
    Sum several budget lines (categories) into one 12-month budget.

    A month's actual is None only when no line has realized it;
    a month's forecast is kept only when every line carries one.
    """
    budgeted = {m: ZERO for m in range(1, MONTHS_IN_YEAR + 1)}
    actual: Dict[int, Optional[Decimal]] = {m: None for m in budgeted}
    forecast: Dict[int, Optional[Decimal]] = {m: ZERO for m in budgeted}

    for line_name, entries in lines.items():
        try:
            ordered = validate_budget_entries(entries)
        except InvalidInputError as e:
            raise InvalidInputError(f"Budget line '{line_name}': {e.message}", e.details)
        for entry in ordered:
            budgeted[entry.month] += entry.budgeted
            if entry.actual is not None:
                actual[entry.month] = (actual[entry.month] or ZERO) + entry.actual
            if entry.forecast is None or forecast[entry.month] is None:
                forecast[entry.month] = None
            else:
                forecast[entry.month] += entry.forecast

    return [
        BudgetMonthEntry(month=m, budgeted=budgeted[m], actual=actual[m], forecast=forecast[m] if lines else None)
        for m in range(1, MONTHS_IN_YEAR + 1)
    ]


def project_from_previous_year(
    entries: Sequence[BudgetMonthEntry],
    adjustment_percent: Decimal,
    use_actuals: bool = False,
    settings: Optional[EngineSettings] = None
) -> List[BudgetMonthEntry]:
    """
    Build next year's budget from the previous one.

    Each month's base (budgeted, or actual when use_actuals and realized) is
    multiplied by (1 + adjustment_percent / 100). The new entries carry no
    actuals or forecasts.

    Raises:
        InvalidInputError: adjustment below -100%, invalid entries
    """
    settings = resolve_settings(settings)
    adjustment = _decimal_or_none(adjustment_percent, 'adjustment_percent')
    if adjustment is None or adjustment < -HUNDRED:
        raise InvalidInputError(
            f"adjustment_percent must be >= -100, got {adjustment_percent!r}",
            {"field": "adjustment_percent"},
        )

    multiplier = Decimal("1") + adjustment / HUNDRED
    projected = []
    for entry in validate_budget_entries(entries):
        base = entry.actual if use_actuals and entry.actual is not None else entry.budgeted
        projected.append(BudgetMonthEntry(
            month=entry.month,
            budgeted=round_decimal(base * multiplier, settings.money_places),
        ))
    return projected


# ============================================================================
# Insights
# ============================================================================

class InsightType(str, Enum):
    """Kind of budget insight"""
    ALERT = "alert"             # budget being consumed too fast
    FORECAST = "forecast"       # year-end overrun projected
    SUGGESTION = "suggestion"   # reallocation between cost centers


class InsightSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class BudgetInsight:
    """Actionable finding derived from budget indicators."""
    type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    action_suggested: str
    potential_savings: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            'type': self.type.value,
            'severity': self.severity.value,
            'title': self.title,
            'description': self.description,
            'action_suggested': self.action_suggested,
            'potential_savings': money_str(self.potential_savings),
        }


def generate_budget_insights(
    analysis: BudgetAnalysis,
    settings: Optional[EngineSettings] = None,
    lines_over_budget: Optional[int] = None
) -> List[BudgetInsight]:
    """
    Derive alerts and suggestions from a budget analysis.

    - burn rate > insight_burn_warning: overrun alert
      (critical when > insight_burn_critical)
    - projected_variance > 0: year-end overrun forecast
    - more than insight_reallocation_lines over budget: reallocation suggestion

    Args:
        analysis: Result of analyze_budget()
        settings: Engine settings (environment defaults if None)
        lines_over_budget: Budget lines over budget, when analysing a
            consolidated budget. Defaults to the analysis' months over budget.

    Returns:
        Insights in the order alert, forecast, suggestion (absent ones skipped)
    """
    settings = resolve_settings(settings)
    insights = []

    burn_rate = analysis.burn_rate_percent
    if burn_rate > settings.insight_burn_warning:
        severity = (
            InsightSeverity.CRITICAL
            if burn_rate > settings.insight_burn_critical
            else InsightSeverity.WARNING
        )
        insights.append(BudgetInsight(
            type=InsightType.ALERT,
            severity=severity,
            title=f"Budget {burn_rate:.1f}% consumed",
            description=(
                f"Budget is being consumed faster than planned. "
                f"Current burn rate: {burn_rate:.1f}%"
            ),
            action_suggested="Review expenses and identify cost reduction opportunities",
        ))

    if analysis.projected_variance > 0:
        insights.append(BudgetInsight(
            type=InsightType.FORECAST,
            severity=InsightSeverity.WARNING,
            title="Year-end overrun projected",
            description=(
                f"At the current trend the budget will be exceeded by "
                f"{money_str(analysis.projected_variance, settings.money_places)}"
            ),
            action_suggested="Put expense containment measures in place",
            potential_savings=analysis.projected_variance,
        ))

    over_budget = lines_over_budget if lines_over_budget is not None else analysis.months_over_budget
    if over_budget > settings.insight_reallocation_lines:
        insights.append(BudgetInsight(
            type=InsightType.SUGGESTION,
            severity=InsightSeverity.INFO,
            title=f"{over_budget} items over budget",
            description=(
                "Several categories are over budget. "
                "Consider reallocating resources from categories with slack."
            ),
            action_suggested="Analyse reallocation between cost centers",
        ))

    logger.debug(f"Generated {len(insights)} budget insights (burn={burn_rate}%)")
    return insights
