"""
Adjustment Engines

Three independent estimators of the per-unit value of one attribute:

- Regression: univariate least squares of price on the attribute across the
  comp set. Percent units regress log price so the slope is a growth rate.
- Cost: lookup in the cost baseline table.
- Paired sales: comps that differ mainly in the target attribute, matched by
  nearest neighbour on every other attribute.

Engines never raise for thin data; they return None and the blender works
with whatever estimates remain.
"""

import logging
import math
import statistics
from typing import Dict, List, Optional, Tuple

from valuation.comp_engine.models import CompProperty, MarketBasis, SubjectProperty
from valuation.defaults import (
    CONFIDENCE_Z,
    MAX_PAIR_DISTANCE,
    MIN_PAIRED_SALES,
    MIN_REGRESSION_COMPS,
)

from .models import (
    ATTR_METADATA,
    AttrKey,
    CostBaseline,
    CostEstimate,
    PairedEstimate,
    RegressionEstimate,
    Unit,
)


logger = logging.getLogger(__name__)


def percent_from_log_slope(slope: float) -> float:
    """Convert a log-price slope into percent per unit."""
    return (math.exp(slope) - 1) * 100


# =============================================================================
# Regression
# =============================================================================


class RegressionEngine:
    """Least-squares slope of price against a single attribute."""

    def __init__(
        self,
        min_comps: int = MIN_REGRESSION_COMPS,
        confidence_z: float = CONFIDENCE_Z,
    ):
        self._min_comps = min_comps
        self._z = confidence_z

    def estimate(
        self,
        key: AttrKey,
        subject: SubjectProperty,
        comps: List[CompProperty],
        prices: Dict[str, float],
        basis: MarketBasis = MarketBasis.SALE_PRICE,
    ) -> Optional[RegressionEstimate]:
        """
        Estimate the value of one unit of an attribute.

        Args:
            key: Attribute to estimate
            subject: Subject property (GLA rescales the $/SF basis)
            comps: Comps in the run
            prices: Time-adjusted price per comp id
            basis: Regress price, or price per sqft rescaled by subject GLA
                (for GLA itself the fitted $/SF at the subject size is added)

        Returns:
            RegressionEstimate, or None when fewer than two comps carry the
            attribute or the attribute does not vary
        """
        percent = ATTR_METADATA[key].unit == Unit.PERCENT
        per_sqft = basis == MarketBasis.PPSF
        if per_sqft and not percent and not (subject.gla and subject.gla > 0):
            return None

        points = self._points(key, comps, prices, per_sqft, percent)
        n = len(points)
        if n < self._min_comps:
            return None

        xs = [x for x, _ in points]
        ys = [y for _, y in points]
        mean_x = statistics.fmean(xs)
        mean_y = statistics.fmean(ys)
        sxx = sum((x - mean_x) ** 2 for x in xs)
        if sxx == 0:
            return None

        sxy = sum((x - mean_x) * (y - mean_y) for x, y in points)
        slope = sxy / sxx
        intercept = mean_y - slope * mean_x

        sse = sum((y - (intercept + slope * x)) ** 2 for x, y in points)
        sst = sum((y - mean_y) ** 2 for y in ys)
        r2 = 1 - sse / sst if sst > 0 else None

        # Two points fit exactly; no residual degrees of freedom
        std_error = math.sqrt(sse / (n - 2) / sxx) if n > 2 else 0.0
        lo = slope - self._z * std_error
        hi = slope + self._z * std_error

        if percent:
            value, lo, hi = (percent_from_log_slope(v) for v in (slope, lo, hi))
        elif per_sqft and key == AttrKey.GLA:
            # price = ppsf * gla, so d(price)/d(gla) = ppsf(gla) + gla * d(ppsf)/d(gla)
            fitted_ppsf = intercept + slope * subject.gla
            value, lo, hi = (fitted_ppsf + v * subject.gla for v in (slope, lo, hi))
        elif per_sqft:
            value, lo, hi = (v * subject.gla for v in (slope, lo, hi))
        else:
            value = slope

        return RegressionEstimate(
            value=value,
            lo=lo,
            hi=hi,
            n=n,
            r2=round(r2, 4) if r2 is not None else None,
        )

    @staticmethod
    def _points(
        key: AttrKey,
        comps: List[CompProperty],
        prices: Dict[str, float],
        per_sqft: bool,
        percent: bool,
    ) -> List[Tuple[float, float]]:
        points = []
        for comp in comps:
            x = comp.attribute_value(key.value)
            price = prices.get(comp.id)
            if x is None or price is None or price <= 0:
                continue
            y = price
            if per_sqft and not percent:
                if not comp.gla or comp.gla <= 0:
                    continue
                y = price / comp.gla
            points.append((x, math.log(y) if percent else y))
        return points


# =============================================================================
# Cost
# =============================================================================


class CostEngine:
    """Baseline unit costs; GLA is scaled by the subject's quality grade."""

    def estimate(
        self,
        key: AttrKey,
        subject: SubjectProperty,
        baseline: CostBaseline,
    ) -> Optional[CostEstimate]:
        entry = baseline.entry(key)
        if entry is None:
            return None

        multiplier = 1.0
        if key == AttrKey.GLA and subject.quality is not None:
            multiplier = baseline.quality_multipliers.get(int(round(subject.quality)), 1.0)

        low = entry.low if entry.low is not None else entry.base
        high = entry.high if entry.high is not None else entry.base
        note = entry.basis_note or f"Cost baseline for {ATTR_METADATA[key].label}"
        if multiplier != 1.0:
            note = f"{note} x quality multiplier {multiplier:g}"

        return CostEstimate(
            value=entry.base * multiplier,
            lo=min(low, high) * multiplier,
            hi=max(low, high) * multiplier,
            basis_note=note,
        )


# =============================================================================
# Paired Sales
# =============================================================================


class PairedSalesEngine:
    """
    Matched-pair analysis.

    Each comp is paired with the comp that differs in the target attribute
    and sits closest on all other attributes. Distance is the sum of the
    absolute differences, each divided by that attribute's range across the
    comp set. Pairs farther apart than max_pair_distance do not isolate the
    target attribute and are dropped.
    """

    def __init__(
        self,
        max_pair_distance: float = MAX_PAIR_DISTANCE,
        min_pairs: int = MIN_PAIRED_SALES,
    ):
        self._max_distance = max_pair_distance
        self._min_pairs = min_pairs

    def estimate(
        self,
        key: AttrKey,
        comps: List[CompProperty],
        prices: Dict[str, float],
    ) -> Optional[PairedEstimate]:
        rows = [
            (comp, comp.attribute_value(key.value), prices[comp.id])
            for comp in comps
            if comp.attribute_value(key.value) is not None
            and prices.get(comp.id, 0) > 0
        ]
        if len(rows) < 2:
            return None

        others = [other for other in AttrKey if other != key]
        spans = self._spans(others, [comp for comp, _, _ in rows])
        percent = ATTR_METADATA[key].unit == Unit.PERCENT

        pairs: Dict[Tuple[str, str], float] = {}
        for comp, x, price in rows:
            best = None
            for index, (other, other_x, other_price) in enumerate(rows):
                if other.id == comp.id or other_x == x:
                    continue
                distance = self._distance(comp, other, others, spans)
                if distance > self._max_distance:
                    continue
                if best is None or (distance, index) < best[0]:
                    best = ((distance, index), other, other_x, other_price)
            if best is None:
                continue

            _, other, other_x, other_price = best
            pair_key = tuple(sorted((comp.id, other.id)))
            if pair_key in pairs:
                continue
            if percent:
                per_unit = percent_from_log_slope(
                    math.log(price / other_price) / (x - other_x)
                )
            else:
                per_unit = (price - other_price) / (x - other_x)
            pairs[pair_key] = per_unit

        if len(pairs) < self._min_pairs:
            logger.debug("%s: %d matched pairs, need %d", key.value, len(pairs), self._min_pairs)
            return None

        values = list(pairs.values())
        return PairedEstimate(
            value=statistics.median(values),
            lo=min(values),
            hi=max(values),
            n_pairs=len(values),
        )

    @staticmethod
    def _spans(keys: List[AttrKey], comps: List[CompProperty]) -> Dict[AttrKey, float]:
        spans = {}
        for key in keys:
            values = [
                value
                for value in (comp.attribute_value(key.value) for comp in comps)
                if value is not None
            ]
            spans[key] = (max(values) - min(values)) if values else 0.0
        return spans

    @staticmethod
    def _distance(
        a: CompProperty,
        b: CompProperty,
        keys: List[AttrKey],
        spans: Dict[AttrKey, float],
    ) -> float:
        total = 0.0
        for key in keys:
            span = spans[key]
            if span <= 0:
                continue
            va = a.attribute_value(key.value)
            vb = b.attribute_value(key.value)
            if va is None or vb is None:
                continue
            total += abs(va - vb) / span
        return total
