"""
Tests for costing_mapper.py

Row-to-model mapping, two-tier value resolution and request validation.
"""

import pytest
from decimal import Decimal

from costing_errors import InvalidInputError, NotFoundError
from costing_mapper import (
    DEFAULT_COFINS_PERCENT,
    DEFAULT_PIS_PERCENT,
    get_value,
    map_bom_components,
    map_budget_entries,
    map_budget_line,
    map_cost_components,
    map_cost_input,
    map_destination_profile,
    map_indirect_entries,
    map_scenario_adjustment,
    normalize_freight_type,
    require_decimal,
    safe_decimal,
    safe_str,
    validate_cost_input,
)
from costing_models import FreightType


# ============================================================================
# SAFE CONVERSION
# ============================================================================

class TestSafeConversion:

    @pytest.mark.parametrize("value,expected", [
        ("10", Decimal("10")),
        ("2,5", Decimal("2.5")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("12,345,678.9", Decimal("12345678.9")),
        (3, Decimal("3")),
        (Decimal("7.1"), Decimal("7.1")),
    ])
    def test_safe_decimal(self, value, expected):
        assert safe_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", True, "NaN", "Infinity", Decimal("NaN")])
    def test_safe_decimal_default(self, value):
        assert safe_decimal(value) == Decimal("0")
        assert safe_decimal(value, None) is None

    def test_safe_str(self):
        assert safe_str(None, "x") == "x"
        assert safe_str(12) == "12"

    def test_require_decimal_absent_takes_default(self):
        assert require_decimal(None, "amount") == Decimal("0")
        assert require_decimal("", "selling_price", None) is None
        assert require_decimal("2,5", "quantity") == Decimal("2.5")

    @pytest.mark.parametrize("value", ["abc", "vinte", True, "NaN", "-Infinity"])
    def test_require_decimal_malformed(self, value):
        with pytest.raises(InvalidInputError) as exc_info:
            require_decimal(value, "amount")
        assert exc_info.value.details["field"] == "amount"


class TestGetValue:

    def test_row_wins(self):
        assert get_value('wastage_percent', {'wastage_percent': 5}, {'wastage_percent': 3}) == 5

    def test_camel_case_key(self):
        assert get_value('quantity_produced', {'quantityProduced': 10}) == 10

    def test_defaults_used_when_row_empty(self):
        assert get_value('wastage_percent', {'wastage_percent': ""}, {'wastage_percent': 3}) == 3

    def test_fallback(self):
        assert get_value('missing', {}, {}, default="x") == "x"

    def test_object_row(self):
        class Row:
            sku_id = "SKU-9"
        assert get_value('sku_id', Row()) == "SKU-9"


# ============================================================================
# COST INPUT
# ============================================================================

class TestMapCostInput:

    def test_snake_case_row(self):
        inputs = map_cost_input({
            "sku_id": 42,
            "period": "2025-03",
            "quantity_produced": "100",
            "wastage_percent": "2,5",
            "selling_price": "19.90",
        })
        assert inputs.sku_id == "42"
        assert inputs.quantity_produced == Decimal("100")
        assert inputs.wastage_percent == Decimal("2.5")
        assert inputs.selling_price == Decimal("19.90")
        assert inputs.destination_id is None

    def test_camel_case_row_and_defaults(self):
        inputs = map_cost_input(
            {"skuId": "A", "quantityProduced": 10, "destinationId": 7},
            defaults={"period": "2025-06", "wastage_percent": "1"},
        )
        assert inputs.period == "2025-06"
        assert inputs.wastage_percent == Decimal("1")
        assert inputs.destination_id == "7"

    def test_invalid_period(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_cost_input({"sku_id": "A", "period": "03/2025", "quantity_produced": 1})
        assert exc_info.value.details["field_errors"][0]["field"] == "period"

    @pytest.mark.parametrize("field", [
        "selling_price", "quantity_produced", "wastage_percent", "shipment_weight", "shipment_value",
    ])
    def test_malformed_number_rejected(self, field):
        row = {"sku_id": "A", "period": "2025-03", "quantity_produced": "10", field: "abc"}
        with pytest.raises(InvalidInputError) as exc_info:
            map_cost_input(row)
        assert exc_info.value.details["field"] == field

    def test_absent_price_stays_none(self):
        inputs = map_cost_input({"sku_id": "A", "period": "2025-03", "quantity_produced": "10", "selling_price": ""})
        assert inputs.selling_price is None


class TestMapComponents:

    def test_labor_rows(self):
        components = map_cost_components([
            {"employee_name": "Ana", "hourly_rate": "25,00", "hours": 10},
            {"name": "Bruno", "unit_cost": 30, "quantity": 8},
        ])
        assert [c.name for c in components] == ["Ana", "Bruno"]
        assert components[0].line_total == Decimal("250.00")

    def test_negative_quantity(self):
        with pytest.raises(InvalidInputError):
            map_cost_components([{"name": "X", "unit_cost": 1, "quantity": -1}])

    def test_malformed_hourly_rate(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_cost_components([{"name": "Ana", "hourly_rate": "vinte", "hours": "10"}])
        assert exc_info.value.details["field"] == "unit_cost"

    def test_malformed_hours(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_cost_components([{"name": "Ana", "hourly_rate": "20", "hours": "dez"}])
        assert exc_info.value.details["field"] == "quantity"

    def test_bom_malformed_lookup_cost(self):
        with pytest.raises(InvalidInputError):
            map_bom_components([{"item_id": "i1", "quantity": 1}], {"i1": "caro"})

    def test_bom_malformed_quantity(self):
        with pytest.raises(InvalidInputError):
            map_bom_components([{"item_id": "i1", "quantity": "meio"}], {"i1": "8"})

    def test_indirect_malformed_amount(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_indirect_entries([{"description": "Aluguel", "amount": "mil"}], period="2025-03")
        assert exc_info.value.details["field"] == "amount"

    def test_bom_uses_item_cost_lookup(self):
        rows = [
            {"item_id": "i1", "item_name": "Polvilho", "quantity": "0.5", "unit_cost": "1.00"},
            {"item_id": "i2", "item_name": "Queijo", "quantity": "0.3", "unit_cost": "30"},
        ]
        components = map_bom_components(rows, {"i1": "8.00"})
        assert components[0].unit_cost == Decimal("8.00")
        assert components[1].unit_cost == Decimal("30")
        assert components[0].item_id == "i1"

    def test_bom_unknown_cost(self):
        with pytest.raises(NotFoundError) as exc_info:
            map_bom_components([{"item_id": "i9", "quantity": 1}], {})
        assert exc_info.value.details["item_id"] == "i9"

    def test_bom_empty(self):
        assert map_bom_components(None, {}) == []

    def test_indirect_entries(self):
        entries = map_indirect_entries(
            [{"description": "Aluguel", "monthly_value": "1.000,00", "category": "aluguel"}],
            period="2025-03",
        )
        assert entries[0].amount == Decimal("1000.00")
        assert entries[0].period == "2025-03"

    def test_indirect_entry_without_period(self):
        with pytest.raises(InvalidInputError):
            map_indirect_entries([{"description": "Energia", "amount": 10}])


class TestMapDestinationProfile:

    def test_formula_row(self):
        profile = map_destination_profile({
            "name": "Sao Paulo",
            "freightType": "fórmula",
            "freightFormula": "peso * 2",
            "icmsPercent": "18",
        })
        assert profile.freight_type == FreightType.FORMULA
        assert profile.freight_formula == "peso * 2"
        assert profile.icms_percent == Decimal("18")
        assert profile.pis_percent == DEFAULT_PIS_PERCENT
        assert profile.cofins_percent == DEFAULT_COFINS_PERCENT

    def test_fixed_by_default(self):
        profile = map_destination_profile({"name": "Campinas", "freight_fixed_value": "120", "pis_percent": 0})
        assert profile.freight_type == FreightType.FIXED
        assert profile.freight_fixed_value == Decimal("120")
        assert profile.pis_percent == Decimal("0")

    @pytest.mark.parametrize("value,expected", [
        ("valor_fixo", FreightType.FIXED),
        ("FIXED", FreightType.FIXED),
        ("formula", FreightType.FORMULA),
        (None, FreightType.FIXED),
    ])
    def test_normalize_freight_type(self, value, expected):
        assert normalize_freight_type(value) == expected

    def test_unknown_freight_type(self):
        with pytest.raises(InvalidInputError):
            normalize_freight_type("per_km")

    def test_rate_out_of_range(self):
        with pytest.raises(InvalidInputError):
            map_destination_profile({"icms_percent": "150"})

    def test_malformed_rate(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_destination_profile({"name": "Recife", "icmsPercent": "dezoito"})
        assert exc_info.value.details["field"] == "icms_percent"


# ============================================================================
# BUDGET & SCENARIO
# ============================================================================

class TestBudgetMapping:

    def test_budget_rows(self):
        entries = map_budget_entries([{"month": m, "budgeted_value": "100"} for m in range(1, 13)])
        assert len(entries) == 12
        assert entries[0].budgeted == Decimal("100")

    def test_budget_line_columns(self):
        line = {"jan": "1.000,00", "fev": 900, "dez": 1500}
        entries = map_budget_line(line, actuals={1: "980"})
        assert [e.month for e in entries] == list(range(1, 13))
        assert entries[0].budgeted == Decimal("1000.00")
        assert entries[0].actual == Decimal("980")
        assert entries[1].actual is None
        assert entries[2].budgeted == Decimal("0")
        assert entries[11].budgeted == Decimal("1500")

    def test_budget_line_malformed_month(self):
        with pytest.raises(InvalidInputError) as exc_info:
            map_budget_line({"jan": "mil"})
        assert exc_info.value.details["field"] == "jan"

    def test_budget_line_malformed_actual(self):
        with pytest.raises(InvalidInputError):
            map_budget_line({"jan": 1000}, actuals={1: "n/a"})


class TestScenarioMapping:

    def test_camel_case_request(self):
        adjustment = map_scenario_adjustment({
            "materialVariation": "10",
            "targetMargin": "25",
            "currentPrice": "120",
            "name": "Alta do queijo",
        })
        assert adjustment.material_variation_percent == Decimal("10")
        assert adjustment.labor_variation_percent == Decimal("0")
        assert adjustment.target_margin_percent == Decimal("25")
        assert adjustment.current_price == Decimal("120")
        assert adjustment.name == "Alta do queijo"

    def test_without_price(self):
        adjustment = map_scenario_adjustment({"target_margin_percent": 30})
        assert adjustment.current_price is None

    @pytest.mark.parametrize("key,field", [
        ("materialVariation", "material_variation_percent"),
        ("target_margin", "target_margin_percent"),
        ("current_price", "current_price"),
    ])
    def test_malformed_number(self, key, field):
        with pytest.raises(InvalidInputError) as exc_info:
            map_scenario_adjustment({key: "alto"})
        assert exc_info.value.details["field"] == field


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidateCostInput:

    def test_valid(self):
        row = {"sku_id": "A", "period": "2025-03", "quantity_produced": 10, "wastage_percent": 5}
        assert validate_cost_input(row) == []

    def test_collects_all_errors(self):
        row = {"period": "2025-3", "quantity_produced": 0, "wastage_percent": 120, "selling_price": "-1"}
        errors = validate_cost_input(row)
        assert len(errors) == 5

    def test_non_numeric_price(self):
        row = {"sku_id": "A", "period": "2025-03", "quantity_produced": 1, "selling_price": "caro"}
        errors = validate_cost_input(row)
        assert len(errors) == 1
        assert "caro" in errors[0]

    def test_non_numeric_wastage(self):
        row = {"sku_id": "A", "period": "2025-03", "quantity_produced": 1, "wastage_percent": "muito"}
        errors = validate_cost_input(row)
        assert len(errors) == 1
        assert "wastage_percent" in errors[0]
