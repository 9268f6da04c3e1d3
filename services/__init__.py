"""
Cost & Budget Analytics Services

Destination freight/tax costs, budget variance & forecast indicators,
scenario sensitivity simulation and the shared engine settings.
"""

from .engine_settings import (
    EngineSettings,
    get_engine_settings,
    load_engine_settings,
    resolve_settings,
)
from .destination_cost_service import (
    calculate_destination_cost,
    calculate_freight,
    calculate_taxes,
    compare_destinations,
)
from .budget_analysis_service import (
    # Data classes
    BudgetMonthEntry,
    BudgetMonthAnalysis,
    BudgetAnalysis,
    BudgetStatus,
    RiskLevel,
    # Indicators
    analyze_budget,
    analyze_month,
    is_month_adherent,
    get_month_status,
    get_risk_level,
    validate_budget_entries,
    # Budget construction
    consolidate_budget_lines,
    project_from_previous_year,
    # Insights
    BudgetInsight,
    InsightSeverity,
    InsightType,
    generate_budget_insights,
)
from .scenario_service import (
    CostSplit,
    ScenarioAdjustment,
    ScenarioResult,
    ScenarioRecommendation,
    simulate_scenario,
    simulate_scenarios,
)

__all__ = [
    # Settings
    "EngineSettings",
    "get_engine_settings",
    "load_engine_settings",
    "resolve_settings",
    # Destination
    "calculate_destination_cost",
    "calculate_freight",
    "calculate_taxes",
    "compare_destinations",
    # Budget
    "BudgetMonthEntry",
    "BudgetMonthAnalysis",
    "BudgetAnalysis",
    "BudgetStatus",
    "RiskLevel",
    "analyze_budget",
    "analyze_month",
    "is_month_adherent",
    "get_month_status",
    "get_risk_level",
    "validate_budget_entries",
    "consolidate_budget_lines",
    "project_from_previous_year",
    "BudgetInsight",
    "InsightSeverity",
    "InsightType",
    "generate_budget_insights",
    # Scenario
    "CostSplit",
    "ScenarioAdjustment",
    "ScenarioResult",
    "ScenarioRecommendation",
    "simulate_scenario",
    "simulate_scenarios",
]
