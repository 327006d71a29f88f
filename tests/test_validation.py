"""
Tests for Weight & Constraint Validation

Verifies:
- Valid defaults and shop profiles pass
- Missing, non-numeric and out-of-range values are errors (never clamped)
- Distance cap must be positive
- Bracket settings bounds
- ensure_valid raises ValidationError carrying every message
"""

import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.comp_engine import (
    ensure_valid,
    validate_constraints,
    validate_hilo_settings,
    validate_weight_set,
    validate_weights,
)
from valuation.defaults import (
    DEFAULT_CONSTRAINTS,
    DEFAULT_HILO_SETTINGS,
    DEFAULT_WEIGHTS,
    WEIGHT_PROFILES,
)
from valuation.errors import ValidationError


@pytest.fixture
def weights():
    return {"distance": 8, "recency": 8, "gla": 7, "quality": 6, "condition": 6}


@pytest.fixture
def constraints():
    return {"glaTolerancePct": 10, "distanceCapMiles": 0.5}


# =============================================================================
# Weights
# =============================================================================

class TestWeights:
    """Weight bounds are 0-10 inclusive."""

    def test_defaults_are_valid(self):
        assert validate_weight_set(DEFAULT_WEIGHTS, DEFAULT_CONSTRAINTS) == []

    @pytest.mark.parametrize("profile", WEIGHT_PROFILES, ids=lambda p: p.id)
    def test_shop_profiles_are_valid(self, profile):
        assert validate_weight_set(profile.weights, profile.constraints) == []

    def test_mapping_accepted(self, weights):
        assert validate_weights(weights) == []

    @pytest.mark.parametrize("value", [0, 10, 5.5])
    def test_bounds_inclusive(self, weights, value):
        weights["gla"] = value
        assert validate_weights(weights) == []

    @pytest.mark.parametrize("value", [-1, 10.5, 11])
    def test_out_of_range_is_error(self, weights, value):
        weights["gla"] = value
        assert validate_weights(weights) == ["gla weight must be between 0 and 10"]

    def test_missing_weight(self, weights):
        del weights["recency"]
        assert validate_weights(weights) == ["recency weight is required"]

    @pytest.mark.parametrize("value", ["8", True, float("nan")])
    def test_non_numeric_weight(self, weights, value):
        weights["distance"] = value
        assert validate_weights(weights) == ["distance weight must be a number"]

    def test_all_errors_reported(self):
        errors = validate_weights({})
        assert len(errors) == 5


# =============================================================================
# Constraints
# =============================================================================

class TestConstraints:

    def test_valid(self, constraints):
        assert validate_constraints(constraints) == []

    @pytest.mark.parametrize("tolerance", [4.9, 20.1, 0])
    def test_gla_tolerance_range(self, constraints, tolerance):
        constraints["glaTolerancePct"] = tolerance
        assert validate_constraints(constraints) == [
            "GLA tolerance must be between 5% and 20%"
        ]

    @pytest.mark.parametrize("cap", [0, -0.5])
    def test_distance_cap_must_be_positive(self, constraints, cap):
        constraints["distanceCapMiles"] = cap
        assert validate_constraints(constraints) == ["Distance cap must be greater than 0"]

    def test_distance_cap_range(self, constraints):
        constraints["distanceCapMiles"] = 6
        assert validate_constraints(constraints) == [
            "Distance cap must be between 0.25 and 5 miles"
        ]

    def test_missing_constraint(self, constraints):
        del constraints["distanceCapMiles"]
        assert validate_constraints(constraints) == ["distanceCapMiles is required"]

    def test_weight_set_combines_both(self, weights, constraints):
        weights["gla"] = 12
        constraints["glaTolerancePct"] = 30
        assert len(validate_weight_set(weights, constraints)) == 2


# =============================================================================
# Bracket Settings
# =============================================================================

class TestHiLoSettings:

    def test_defaults_are_valid(self):
        assert validate_hilo_settings(DEFAULT_HILO_SETTINGS) == []

    @pytest.mark.parametrize("box_pct", [0, -5, 50.5])
    def test_box_pct_bounds(self, box_pct):
        settings = replace(DEFAULT_HILO_SETTINGS, box_pct=box_pct)
        assert validate_hilo_settings(settings) == [
            "boxPct must be greater than 0 and at most 50"
        ]

    def test_max_sales_must_be_positive_int(self):
        settings = replace(DEFAULT_HILO_SETTINGS, max_sales=0)
        assert validate_hilo_settings(settings) == ["maxSales must be between 1 and 50"]

    def test_max_listings_may_be_zero(self):
        settings = replace(DEFAULT_HILO_SETTINGS, max_listings=0)
        assert validate_hilo_settings(settings) == []

    def test_negative_bracket_weight(self):
        weights = {**DEFAULT_HILO_SETTINGS.weights, "loc": -0.1}
        settings = replace(DEFAULT_HILO_SETTINGS, weights=weights)
        assert validate_hilo_settings(settings) == ["loc weight must be a non-negative number"]

    def test_unknown_bracket_weight(self):
        weights = {**DEFAULT_HILO_SETTINGS.weights, "views": 0.1}
        settings = replace(DEFAULT_HILO_SETTINGS, weights=weights)
        assert validate_hilo_settings(settings) == ["Unknown bracket weight(s): views"]


# =============================================================================
# ensure_valid
# =============================================================================

class TestEnsureValid:

    def test_no_errors_passes(self):
        ensure_valid([], "weights")

    def test_raises_with_all_messages(self, weights, constraints):
        weights["gla"] = 11
        constraints["distanceCapMiles"] = 0
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(validate_weight_set(weights, constraints), "weights")

        assert exc_info.value.concern == "weights"
        assert exc_info.value.errors == [
            "gla weight must be between 0 and 10",
            "Distance cap must be greater than 0",
        ]
