"""
Engine settings - single source of truth for policy constants

Cost split, adherence band, risk/insight thresholds and rounding places used
by the costing, budget and scenario calculations. Values come from the environment
(.env supported) and fall back to the product-domain reference values.
"""

import os
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from costing_errors import InvalidConfigError

load_dotenv()


# Reference values of the product domain
DEFAULT_MATERIAL_SHARE = Decimal("0.60")
DEFAULT_LABOR_SHARE = Decimal("0.25")
DEFAULT_INDIRECT_SHARE = Decimal("0.15")
DEFAULT_ADHERENCE_TOLERANCE = Decimal("0.10")   # 10% band, inclusive
DEFAULT_RISK_MEDIUM = Decimal("100")            # burn rate %
DEFAULT_RISK_HIGH = Decimal("110")
DEFAULT_RISK_CRITICAL = Decimal("120")
DEFAULT_MONEY_PLACES = 2
DEFAULT_INSIGHT_BURN_WARNING = Decimal("100")   # burn rate % raising an overrun alert
DEFAULT_INSIGHT_BURN_CRITICAL = Decimal("110")
DEFAULT_INSIGHT_REALLOCATION_LINES = 3          # lines/months over budget before suggesting reallocation

COST_SPLIT_TOLERANCE = Decimal("0.000001")


class EngineSettings(BaseModel):
    """Policy constants shared by all calculators."""
    material_share: Decimal = Field(default=DEFAULT_MATERIAL_SHARE, ge=0, le=1)
    labor_share: Decimal = Field(default=DEFAULT_LABOR_SHARE, ge=0, le=1)
    indirect_share: Decimal = Field(default=DEFAULT_INDIRECT_SHARE, ge=0, le=1)
    adherence_tolerance: Decimal = Field(default=DEFAULT_ADHERENCE_TOLERANCE, ge=0)
    risk_medium_threshold: Decimal = Field(default=DEFAULT_RISK_MEDIUM, ge=0)
    risk_high_threshold: Decimal = Field(default=DEFAULT_RISK_HIGH, ge=0)
    risk_critical_threshold: Decimal = Field(default=DEFAULT_RISK_CRITICAL, ge=0)
    money_places: int = Field(default=DEFAULT_MONEY_PLACES, ge=0, le=6)
    insight_burn_warning: Decimal = Field(default=DEFAULT_INSIGHT_BURN_WARNING, ge=0)
    insight_burn_critical: Decimal = Field(default=DEFAULT_INSIGHT_BURN_CRITICAL, ge=0)
    insight_reallocation_lines: int = Field(default=DEFAULT_INSIGHT_REALLOCATION_LINES, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_consistency(self):
        total = self.material_share + self.labor_share + self.indirect_share
        if abs(total - Decimal("1")) > COST_SPLIT_TOLERANCE:
            raise ValueError(f"Default cost split must sum to 1.0, got {total}")
        if not (self.risk_medium_threshold <= self.risk_high_threshold <= self.risk_critical_threshold):
            raise ValueError("Risk thresholds must be ordered medium <= high <= critical")
        if self.insight_burn_warning > self.insight_burn_critical:
            raise ValueError("Insight burn thresholds must be ordered warning <= critical")
        return self


def _env_decimal(name: str, default: Decimal) -> Decimal:
    """Read a Decimal from the environment."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise InvalidConfigError(f"{name} must be a number, got '{raw}'", {"variable": name})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise InvalidConfigError(f"{name} must be an integer, got '{raw}'", {"variable": name})


def load_engine_settings() -> EngineSettings:
    """Build settings from environment variables (uncached)."""
    try:
        return EngineSettings(
            material_share=_env_decimal("COST_SPLIT_MATERIAL", DEFAULT_MATERIAL_SHARE),
            labor_share=_env_decimal("COST_SPLIT_LABOR", DEFAULT_LABOR_SHARE),
            indirect_share=_env_decimal("COST_SPLIT_INDIRECT", DEFAULT_INDIRECT_SHARE),
            adherence_tolerance=_env_decimal("BUDGET_ADHERENCE_TOLERANCE", DEFAULT_ADHERENCE_TOLERANCE),
            risk_medium_threshold=_env_decimal("BUDGET_RISK_MEDIUM", DEFAULT_RISK_MEDIUM),
            risk_high_threshold=_env_decimal("BUDGET_RISK_HIGH", DEFAULT_RISK_HIGH),
            risk_critical_threshold=_env_decimal("BUDGET_RISK_CRITICAL", DEFAULT_RISK_CRITICAL),
            money_places=_env_int("COSTING_MONEY_PLACES", DEFAULT_MONEY_PLACES),
            insight_burn_warning=_env_decimal("BUDGET_INSIGHT_BURN_WARNING", DEFAULT_INSIGHT_BURN_WARNING),
            insight_burn_critical=_env_decimal("BUDGET_INSIGHT_BURN_CRITICAL", DEFAULT_INSIGHT_BURN_CRITICAL),
            insight_reallocation_lines=_env_int(
                "BUDGET_INSIGHT_REALLOCATION_LINES", DEFAULT_INSIGHT_REALLOCATION_LINES
            ),
        )
    except ValueError as e:
        # pydantic ValidationError is a ValueError
        if isinstance(e, InvalidConfigError):
            raise
        raise InvalidConfigError(f"Invalid engine settings: {e}")


@lru_cache()
def get_engine_settings() -> EngineSettings:
    """Get engine settings (cached singleton)."""
    return load_engine_settings()


def resolve_settings(settings: Optional[EngineSettings] = None) -> EngineSettings:
    """Return explicit settings or the cached environment settings."""
    return settings if settings is not None else get_engine_settings()
