"""
Tests for Time Adjustment and Geography

Verifies:
- Whole-month counting between sale and effective date
- Compounded trending: price * (1 + pct) ** months
- $/SF basis values
- Missing adjustments or rate are a precondition failure, never a silent default
- Stored records must state rate and basis; comps need a sale date or age
- Legacy stored keys are still read
- Haversine distance and shapely point-in-polygon membership
"""

import sys
from dataclasses import replace
from datetime import date
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.comp_engine import (
    CompProperty,
    LatLng,
    MarketBasis,
    TimeAdjustments,
    annotate_geography,
    distance_miles,
    is_inside_polygon,
    months_between,
    time_adjusted_price,
    time_adjusted_value,
)
from valuation.comp_engine.time_adjust import require_time_adjustments
from valuation.errors import PreconditionMissing


SQUARE = {
    "type": "Feature",
    "geometry": {
        "type": "Polygon",
        "coordinates": [[
            [-122.0, 37.0], [-121.9, 37.0], [-121.9, 37.1], [-122.0, 37.1], [-122.0, 37.0],
        ]],
    },
}


# =============================================================================
# Months
# =============================================================================

class TestMonthsBetween:

    @pytest.mark.parametrize("sale, effective, expected", [
        (date(2024, 10, 15), date(2025, 1, 15), 3),
        (date(2024, 10, 15), date(2025, 1, 14), 2),
        (date(2024, 1, 31), date(2024, 2, 29), 0),
        (date(2025, 2, 1), date(2025, 1, 1), 0),
    ])
    def test_whole_months(self, sale, effective, expected):
        assert months_between(sale, effective) == expected


# =============================================================================
# Trending
# =============================================================================

class TestTimeAdjustedPrice:

    def test_compounds_monthly(self, make_comp):
        comp = make_comp("c", sale_price=400000, months_since_sale=6)
        adjustments = TimeAdjustments(MarketBasis.SALE_PRICE, 0.005, date(2025, 1, 1))

        assert time_adjusted_price(comp, adjustments) == pytest.approx(400000 * 1.005 ** 6)

    def test_uses_sale_date_when_known(self, make_comp):
        comp = make_comp(
            "c", sale_price=400000, months_since_sale=12, sale_date=date(2024, 11, 1)
        )
        adjustments = TimeAdjustments(MarketBasis.SALE_PRICE, 0.01, date(2025, 1, 1))

        assert time_adjusted_price(comp, adjustments) == pytest.approx(400000 * 1.01 ** 2)

    def test_declining_market(self, make_comp):
        comp = make_comp("c", sale_price=400000, months_since_sale=3)
        adjustments = TimeAdjustments(MarketBasis.SALE_PRICE, -0.01, date(2025, 1, 1))

        assert time_adjusted_price(comp, adjustments) < 400000

    def test_ppsf_basis(self, make_comp):
        comp = make_comp("c", sale_price=400000, gla=2000, months_since_sale=0)
        adjustments = TimeAdjustments(MarketBasis.PPSF, 0.01, date(2025, 1, 1))

        assert time_adjusted_value(comp, adjustments) == pytest.approx(200.0)

    def test_ppsf_without_gla_is_none(self, make_comp):
        comp = make_comp("c", gla=0)
        adjustments = TimeAdjustments(MarketBasis.PPSF, 0.01, date(2025, 1, 1))

        assert time_adjusted_value(comp, adjustments) is None


class TestPreconditions:

    def test_missing_adjustments(self):
        with pytest.raises(PreconditionMissing) as exc_info:
            require_time_adjustments(None)
        assert exc_info.value.missing == "timeAdjustments"

    def test_missing_effective_date(self):
        with pytest.raises(PreconditionMissing) as exc_info:
            require_time_adjustments(TimeAdjustments(MarketBasis.SALE_PRICE, 0.01, None))
        assert exc_info.value.missing == "effectiveDate"

    def test_missing_rate(self):
        with pytest.raises(PreconditionMissing) as exc_info:
            require_time_adjustments(
                TimeAdjustments(MarketBasis.SALE_PRICE, None, date(2025, 1, 1))
            )
        assert exc_info.value.missing == "pctPerMonth"

    @pytest.mark.parametrize("rate", [float("nan"), "0.01"])
    def test_non_numeric_rate(self, rate):
        with pytest.raises(PreconditionMissing):
            require_time_adjustments(
                TimeAdjustments(MarketBasis.SALE_PRICE, rate, date(2025, 1, 1))
            )


class TestStoredRecords:

    def test_round_trip(self):
        adjustments = TimeAdjustments(MarketBasis.PPSF, 0.004, date(2025, 3, 1))
        assert TimeAdjustments.from_dict(adjustments.to_dict()) == adjustments

    @pytest.mark.parametrize("key", ["monthlyRate", "monthlyAdjustment"])
    def test_legacy_rate_keys(self, key):
        adjustments = TimeAdjustments.from_dict({key: 0.003, "effectiveDate": "2025-01-01"})

        assert adjustments.pct_per_month == 0.003
        assert adjustments.basis == MarketBasis.SALE_PRICE
        assert adjustments.effective_date == date(2025, 1, 1)

    def test_rate_required(self):
        with pytest.raises(ValueError, match="pctPerMonth"):
            TimeAdjustments.from_dict({"basis": "salePrice", "effectiveDateISO": "2025-01-15"})

    def test_basis_required(self):
        with pytest.raises(ValueError, match="basis"):
            TimeAdjustments.from_dict({"pctPerMonth": 0.004, "effectiveDateISO": "2025-01-15"})

    def test_unknown_basis(self):
        with pytest.raises(ValueError):
            TimeAdjustments.from_dict({
                "basis": "listPrice", "pctPerMonth": 0.004, "effectiveDateISO": "2025-01-15",
            })

    def test_comp_needs_sale_timing(self, make_comp):
        data = make_comp("c").to_dict()
        del data["monthsSinceSale"]
        data["saleDate"] = None

        with pytest.raises(ValueError, match="saleDate or monthsSinceSale"):
            CompProperty.from_dict(data)

    def test_comp_with_sale_date_only(self, make_comp):
        data = make_comp("c", sale_price=400000).to_dict()
        del data["monthsSinceSale"]
        data["saleDate"] = "2024-10-15"
        comp = CompProperty.from_dict(data)
        adjustments = TimeAdjustments(MarketBasis.SALE_PRICE, 0.01, date(2025, 1, 15))

        assert comp.months_since_sale is None
        assert time_adjusted_price(comp, adjustments) == pytest.approx(400000 * 1.01 ** 3)


# =============================================================================
# Geography
# =============================================================================

class TestGeography:

    def test_distance(self):
        # One degree of latitude is about 69 miles
        miles = distance_miles(LatLng(37.0, -122.0), LatLng(38.0, -122.0))
        assert miles == pytest.approx(69.1, abs=0.2)

    def test_point_in_polygon(self):
        assert is_inside_polygon(LatLng(37.05, -121.95), SQUARE) is True
        assert is_inside_polygon(LatLng(37.5, -121.95), SQUARE) is False

    def test_bare_geometry_accepted(self):
        assert is_inside_polygon(LatLng(37.05, -121.95), SQUARE["geometry"]) is True

    def test_annotate(self, subject, make_comp):
        subject = replace(subject, latlng=LatLng(37.05, -121.95))
        comps = [
            make_comp("inside", latlng=LatLng(37.06, -121.95), is_inside_polygon=None),
            make_comp("outside", latlng=LatLng(37.2, -121.95), is_inside_polygon=None),
            make_comp("no-coords", distance_miles=0.7, is_inside_polygon=None),
        ]
        annotated = {comp.id: comp for comp in annotate_geography(comps, subject, SQUARE)}

        assert annotated["inside"].is_inside_polygon is True
        assert annotated["inside"].distance_miles == pytest.approx(0.69, abs=0.01)
        assert annotated["outside"].is_inside_polygon is False
        assert annotated["no-coords"].is_inside_polygon is False
        assert annotated["no-coords"].distance_miles == 0.7

    def test_no_polygon_means_inside(self, subject, make_comp):
        comps = annotate_geography([make_comp("c", is_inside_polygon=None)], subject)
        assert comps[0].is_inside_polygon is True
