"""
Tests for Adjustment Application & Reconciliation

Verifies:
- Additive lines: delta * chosen; percent lines scale the trended price
- Per-attribute cap and its rationale
- Indicated value = time-adjusted price + sum of lines
- Primary-weighted reconciliation summary
- Applying unchanged inputs twice yields identical content and fingerprint
- Missing time adjustments and unknown comps fail loudly
"""

import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.adjustments import (
    ATTR_METADATA,
    AdjustmentRunInput,
    AdjustmentRunResult,
    AttrAdjustment,
    AttrKey,
    ChosenSource,
    ChosenValue,
    CompAdjustmentLine,
    EngineSettings,
    apply_adjustments,
    apply_override,
    fingerprint,
    summarize,
)
from valuation.adjustments.applicator import adjust_comp
from valuation.comp_engine import CompSelection, MarketBasis
from valuation.errors import NotFound, PreconditionMissing


COMPUTED_AT = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def make_attr(key, value):
    metadata = ATTR_METADATA[key]
    return AttrAdjustment(
        key=key,
        chosen=ChosenValue(value=value, source=ChosenSource.BLEND),
        unit=metadata.unit,
        direction=metadata.direction,
        blended_value=value,
    )


@pytest.fixture
def comps(make_comp):
    return [
        make_comp("a", sale_price=450000, gla=2050, quality=4, pool=False),
        make_comp("b", sale_price=430000, gla=1950, quality=3, pool=True),
    ]


@pytest.fixture
def run(subject, comps):
    return AdjustmentRunResult(
        run_id="run-1",
        computed_at=COMPUTED_AT,
        attrs=[
            make_attr(AttrKey.GLA, 85.0),
            make_attr(AttrKey.QUALITY, 8.0),
            make_attr(AttrKey.POOL, 15000.0),
        ],
        settings=EngineSettings.default(),
        input=AdjustmentRunInput(
            order_id="order-1",
            comp_ids=tuple(comp.id for comp in comps),
            subject=subject,
            market_basis=MarketBasis.SALE_PRICE,
        ),
    )


def lines_by_key(comp_line):
    return {line.key: line for line in comp_line.lines}


# =============================================================================
# Lines
# =============================================================================

class TestAdjustComp:

    def test_additive_line(self, run, comps, time_adjustments):
        line = lines_by_key(adjust_comp(comps[0], run, time_adjustments))[AttrKey.GLA]

        assert line.delta == 50
        assert line.amount == 4250.0
        assert line.rationale == "Gross Living Area: +50 sf x $85.00/sf = +$4,250"
        assert not line.capped

    def test_percent_line(self, run, comps, time_adjustments):
        line = lines_by_key(adjust_comp(comps[0], run, time_adjustments))[AttrKey.QUALITY]

        assert line.amount == 36000.0
        assert line.rationale == "Quality: +1 grade x 8.00% of $450,000 = +$36,000"

    def test_sign_follows_comp_minus_subject(self, run, comps, time_adjustments):
        lines = lines_by_key(adjust_comp(comps[1], run, time_adjustments))

        assert lines[AttrKey.GLA].amount == -4250.0
        assert lines[AttrKey.POOL].delta == 1
        assert lines[AttrKey.POOL].amount == 15000.0

    def test_indicated_value(self, run, comps, time_adjustments):
        comp_line = adjust_comp(comps[0], run, time_adjustments)

        assert comp_line.time_adjusted_price == 450000
        assert comp_line.subtotal == 40250.0
        assert comp_line.indicated_value == 490250.0

    def test_trended_price_is_adjusted(self, run, comps, time_adjustments):
        rising = replace(time_adjustments, pct_per_month=0.01)
        comp_line = adjust_comp(comps[0], run, rising)

        assert comp_line.time_adjusted_price == pytest.approx(450000 * 1.01 ** 3, abs=0.01)

    def test_cap(self, run, make_comp, time_adjustments):
        big = make_comp("big", sale_price=450000, gla=3000)
        line = lines_by_key(adjust_comp(big, run, time_adjustments))[AttrKey.GLA]

        # 1000 sf * $85 = $85,000, capped at 15% of $450,000
        assert line.amount == 67500.0
        assert line.capped
        assert line.rationale.endswith("(capped at 15.0%)")

    def test_cap_disabled(self, run, make_comp, time_adjustments):
        uncapped = replace(
            run, settings=EngineSettings(run.settings.weights, cap_pct_per_attr=None)
        )
        big = make_comp("big", sale_price=450000, gla=3000)
        line = lines_by_key(adjust_comp(big, uncapped, time_adjustments))[AttrKey.GLA]

        assert line.amount == 85000.0
        assert not line.capped

    def test_missing_attribute_has_no_line(self, run, make_comp, time_adjustments):
        comp = make_comp("c")
        keys = set(lines_by_key(adjust_comp(comp, run, time_adjustments)))

        assert AttrKey.POOL not in keys
        assert AttrKey.GLA in keys


# =============================================================================
# Reconciliation Summary
# =============================================================================

class TestSummarize:

    @pytest.fixture
    def comp_lines(self):
        return [
            CompAdjustmentLine("x", 400000, (), 0, 400000),
            CompAdjustmentLine("y", 420000, (), 0, 420000),
            CompAdjustmentLine("z", 440000, (), 0, 440000),
        ]

    def test_primary_weights_renormalised(self, comp_lines):
        summary = summarize(comp_lines, ["x", "y"])

        assert summary.indicated_values == (
            ("x", 400000, 0.625),
            ("y", 420000, 0.375),
            ("z", 440000, 0.0),
        )
        assert summary.weighted_value == pytest.approx(407500)
        assert summary.low == 400000
        assert summary.high == 440000
        assert summary.spread_pct == 10.0

    def test_equal_weights_without_primaries(self, comp_lines):
        summary = summarize(comp_lines, [])

        assert summary.weighted_value == pytest.approx(420000)
        assert [weight for _, _, weight in summary.indicated_values] == [0.3333] * 3

    def test_empty(self):
        summary = summarize([], [])

        assert summary.indicated_values == ()
        assert summary.weighted_value is None
        assert summary.spread_pct is None


# =============================================================================
# Bundle
# =============================================================================

class TestApplyAdjustments:

    def test_bundle(self, run, comps, time_adjustments):
        selection = CompSelection(order_id="order-1", primary=("a", "b", ""), locked=("a",))
        bundle = apply_adjustments(run, comps, time_adjustments, selection=selection)

        assert [line.comp_id for line in bundle.comp_lines] == ["a", "b"]
        assert bundle.reconciliation.primary_comp_ids == ("a", "b")
        assert bundle.reconciliation.comp_locks == ("a",)
        assert bundle.reconciliation.selected_model == MarketBasis.SALE_PRICE
        assert len(bundle.fingerprint) == 64
        assert bundle.fingerprint == fingerprint(bundle.content_dict())

    def test_idempotent(self, run, comps, time_adjustments):
        first = apply_adjustments(
            run, comps, time_adjustments,
            now=datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc),
        )
        second = apply_adjustments(
            run, comps, time_adjustments,
            now=datetime(2025, 1, 16, 10, 0, tzinfo=timezone.utc),
        )

        assert first.content_dict() == second.content_dict()
        assert first.fingerprint == second.fingerprint
        assert first.applied_at != second.applied_at

    def test_override_changes_fingerprint(self, run, comps, time_adjustments):
        before = apply_adjustments(run, comps, time_adjustments)
        overridden = run.with_attr(
            apply_override(run.attr(AttrKey.GLA), 90.0, note="Market-extracted")
        )
        after = apply_adjustments(overridden, comps, time_adjustments)

        assert overridden.run_id == run.run_id
        assert run.attr(AttrKey.GLA).chosen.value == 85.0
        assert before.fingerprint != after.fingerprint

    def test_to_dict_carries_timestamps(self, run, comps, time_adjustments):
        data = apply_adjustments(run, comps, time_adjustments).to_dict()

        assert data["run"]["computedAt"] == COMPUTED_AT.isoformat()
        assert "appliedAt" in data
        assert data["fingerprint"]

    def test_missing_time_adjustments(self, run, comps):
        with pytest.raises(PreconditionMissing):
            apply_adjustments(run, comps, None)

    def test_unknown_comp(self, run, comps, time_adjustments):
        with pytest.raises(NotFound):
            apply_adjustments(run, comps[:1], time_adjustments)
