"""
Tests for Blending, Overrides and the Adjustment Calculator

Verifies:
- Blend renormalises over the engines that produced a value
- No engine: value 0 with a warning, never a silent success
- Manual overrides return new rows that keep the blend and can be cleared
- Calculator stores the unrounded blend; decimal places only shape display
- Engine settings validation
- Calculator: fresh run per compute, provenance, concurrent engines
  produce the same result as serial evaluation
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.adjustments import (
    AdjustmentCalculator,
    AdjustmentRunInput,
    AttrKey,
    ChosenSource,
    CostBaseline,
    CostEstimate,
    Engine,
    EngineSettings,
    EngineWeights,
    PairedEstimate,
    RegressionEstimate,
    apply_override,
    blend,
    clear_override,
    validate_engine_settings,
)
from valuation.adjustments.blender import NO_ENGINE_WARNING
from valuation.comp_engine import MarketBasis
from valuation.defaults import DEFAULT_COST_BASELINE
from valuation.errors import NotFound, ValidationError


WEIGHTS = EngineWeights(regression=0.5, cost=0.3, paired=0.2)


class FixedEngine:
    """Engine stand-in returning the same estimate for every attribute."""

    def __init__(self, estimate):
        self._estimate = estimate

    def estimate(self, *args):
        return self._estimate


@pytest.fixture
def regression():
    return RegressionEstimate(value=85.0, lo=80.0, hi=90.0, n=6, r2=0.8)


@pytest.fixture
def cost():
    return CostEstimate(value=90.0, lo=75.0, hi=110.0, basis_note="Replacement cost per SF")


@pytest.fixture
def baseline():
    return CostBaseline.from_dict(DEFAULT_COST_BASELINE)


@pytest.fixture
def run_input(subject, sample_comps):
    return AdjustmentRunInput(
        order_id="order-1",
        comp_ids=tuple(comp.id for comp in sample_comps),
        subject=subject,
        market_basis=MarketBasis.SALE_PRICE,
    )


@pytest.fixture
def prices(sample_comps):
    return {comp.id: comp.sale_price for comp in sample_comps}


# =============================================================================
# Blend
# =============================================================================

class TestBlend:

    def test_renormalises_over_available_engines(self, regression, cost):
        outcome = blend(WEIGHTS, regression, cost, None)

        # (85 * 0.5 + 90 * 0.3) / (0.5 + 0.3)
        assert outcome.value == pytest.approx(86.875)
        assert outcome.source == ChosenSource.BLEND
        assert outcome.contributors == (Engine.REGRESSION, Engine.COST)
        assert outcome.warning is None

    def test_all_three_engines(self, regression, cost):
        paired = PairedEstimate(value=80.0, lo=70.0, hi=90.0, n_pairs=3)
        outcome = blend(WEIGHTS, regression, cost, paired)

        assert outcome.value == pytest.approx(85.5)

    def test_single_engine(self, cost):
        assert blend(WEIGHTS, None, cost, None).value == pytest.approx(90.0)

    def test_no_engine_warns(self):
        outcome = blend(WEIGHTS, None, None, None)

        assert outcome.value == 0
        assert outcome.warning == NO_ENGINE_WARNING
        assert outcome.contributors == ()

    def test_zero_weighted_engines_count_equally(self, regression, cost):
        weights = EngineWeights(regression=0, cost=0, paired=1)
        outcome = blend(weights, regression, cost, None)

        assert outcome.value == pytest.approx(87.5)


# =============================================================================
# Overrides
# =============================================================================

class TestOverrides:

    @pytest.fixture
    def attr(self, run_input, sample_comps, prices, baseline):
        run = AdjustmentCalculator().compute(
            run_input, sample_comps, prices, baseline, attributes=[AttrKey.GLA]
        )
        return run.attr(AttrKey.GLA)

    def test_override_sets_manual(self, attr):
        overridden = apply_override(attr, 95, note="Appraiser judgement")

        assert overridden.chosen.value == 95.0
        assert overridden.chosen.source == ChosenSource.MANUAL
        assert overridden.chosen.note == "Appraiser judgement"
        assert overridden.blended_value == attr.blended_value
        assert overridden.cost is not None

    def test_override_leaves_original_row(self, attr):
        apply_override(attr, 95)
        assert attr.chosen.source == ChosenSource.BLEND

    def test_clear_restores_blend(self, attr):
        cleared = clear_override(apply_override(attr, 95))

        assert cleared.chosen.value == attr.chosen.value
        assert cleared.chosen.source == ChosenSource.BLEND

    @pytest.mark.parametrize("value", ["95", None, float("nan"), float("inf")])
    def test_invalid_override(self, attr, value):
        with pytest.raises(ValidationError) as exc_info:
            apply_override(attr, value)

        assert exc_info.value.concern == "override"
        assert attr.chosen.source == ChosenSource.BLEND


# =============================================================================
# Settings Validation
# =============================================================================

class TestEngineSettings:

    def test_defaults_valid(self):
        assert validate_engine_settings(EngineSettings.default()) == []

    def test_negative_weight(self):
        settings = EngineSettings(EngineWeights(regression=-0.1, cost=0.5, paired=0.5))
        assert validate_engine_settings(settings) == [
            "regression engine weight must not be negative"
        ]

    def test_all_zero_weights(self):
        settings = EngineSettings(EngineWeights(regression=0, cost=0, paired=0))
        assert validate_engine_settings(settings) == [
            "At least one engine weight must be greater than 0"
        ]

    @pytest.mark.parametrize("places", [-1, 7, 1.5, True])
    def test_decimal_places(self, places):
        settings = EngineSettings(WEIGHTS, decimal_places=places)
        assert validate_engine_settings(settings) == [
            "decimalPlaces must be an integer between 0 and 6"
        ]

    @pytest.mark.parametrize("cap", [0, 101])
    def test_cap(self, cap):
        settings = EngineSettings(WEIGHTS, cap_pct_per_attr=cap)
        assert validate_engine_settings(settings) == ["capPctPerAttr must be between 0 and 100"]

    def test_cap_disabled(self):
        assert validate_engine_settings(EngineSettings(WEIGHTS, cap_pct_per_attr=None)) == []

    def test_list_form_weights(self):
        settings = EngineSettings.from_dict({
            "weights": [
                {"engine": "regression", "weight": 0.6},
                {"engine": "cost", "weight": 0.4},
            ],
        })
        assert settings.weights == EngineWeights(regression=0.6, cost=0.4, paired=0.0)


# =============================================================================
# Calculator
# =============================================================================

class TestCalculator:

    def test_every_attribute_has_a_chosen_value(self, run_input, sample_comps, prices, baseline):
        run = AdjustmentCalculator().compute(run_input, sample_comps, prices, baseline)

        assert [attr.key for attr in run.attrs] == list(AttrKey)
        for attr in run.attrs:
            assert attr.chosen is not None
            assert attr.chosen.source == ChosenSource.BLEND
            assert attr.engine_count >= 1

    def test_blend_stored_unrounded(self, run_input, sample_comps, prices, baseline):
        calculator = AdjustmentCalculator(
            regression=FixedEngine(RegressionEstimate(value=85.0, lo=80.0, hi=90.0, n=6, r2=0.8)),
            cost=FixedEngine(CostEstimate(value=90.0, lo=75.0, hi=110.0)),
            paired=FixedEngine(None),
        )
        run = calculator.compute(
            run_input, sample_comps, prices, baseline,
            settings=EngineSettings(WEIGHTS), attributes=[AttrKey.GLA],
        )
        attr = run.attr(AttrKey.GLA)

        assert attr.chosen.value == pytest.approx(86.875)
        assert attr.blended_value == pytest.approx(86.875)
        assert attr.display_value(run.settings.decimal_places) == 87
        assert run.to_dict()["attrs"][0]["displayValue"] == 87

    def test_provenance(self, run_input, sample_comps, prices, baseline):
        run = AdjustmentCalculator().compute(run_input, sample_comps, prices, baseline)
        refs = {ref.engine: ref.ref for ref in run.attr("gla").provenance}

        assert refs[Engine.REGRESSION] == "OLS on salePrice over 8 comps"
        assert refs[Engine.COST] == "Replacement cost per SF"

    def test_new_run_id_each_compute(self, run_input, sample_comps, prices, baseline):
        calculator = AdjustmentCalculator()
        first = calculator.compute(run_input, sample_comps, prices, baseline)
        second = calculator.compute(run_input, sample_comps, prices, baseline)

        assert first.run_id != second.run_id

    def test_executor_matches_serial(self, run_input, sample_comps, prices, baseline):
        calculator = AdjustmentCalculator()
        serial = calculator.compute(run_input, sample_comps, prices, baseline)
        with ThreadPoolExecutor(max_workers=4) as executor:
            concurrent = calculator.compute(
                run_input, sample_comps, prices, baseline, executor=executor
            )

        assert [a.to_dict() for a in concurrent.attrs] == [a.to_dict() for a in serial.attrs]

    def test_zero_engine_attribute_warns(self, subject, make_comp):
        comps = [make_comp("a"), make_comp("b", gla=2100)]
        run_input = AdjustmentRunInput("order-1", ("a", "b"), subject, MarketBasis.SALE_PRICE)
        baseline = CostBaseline.from_dict({"entries": {"gla": 90}})

        run = AdjustmentCalculator().compute(
            run_input, comps, {"a": 450000, "b": 458500}, baseline, attributes=[AttrKey.BED]
        )
        attr = run.attr(AttrKey.BED)

        assert attr.chosen.value == 0
        assert attr.warnings == [NO_ENGINE_WARNING]
        assert run.warnings == [f"bed: {NO_ENGINE_WARNING}"]

    def test_unknown_comp(self, subject, sample_comps, prices, baseline):
        run_input = AdjustmentRunInput("order-1", ("missing",), subject, MarketBasis.SALE_PRICE)
        with pytest.raises(NotFound):
            AdjustmentCalculator().compute(run_input, sample_comps, prices, baseline)

    def test_invalid_settings(self, run_input, sample_comps, prices, baseline):
        settings = EngineSettings(EngineWeights(regression=0, cost=0, paired=0))
        with pytest.raises(ValidationError) as exc_info:
            AdjustmentCalculator().compute(
                run_input, sample_comps, prices, baseline, settings=settings
            )
        assert exc_info.value.concern == "engine settings"

    def test_unknown_attribute_lookup(self, run_input, sample_comps, prices, baseline):
        run = AdjustmentCalculator().compute(
            run_input, sample_comps, prices, baseline, attributes=[AttrKey.GLA]
        )
        with pytest.raises(NotFound):
            run.attr(AttrKey.POOL)
