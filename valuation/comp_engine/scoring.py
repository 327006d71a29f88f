"""
Comp Scorer

Weighted multi-criteria similarity between each candidate comp and the
subject. Scoring methodology:
- Distance: 1 - distance / distance cap
- Recency: 1 - months since sale / 12
- GLA: 1 - |GLA delta| / (subject GLA * tolerance %)
- Quality / Condition: 1 - |rating delta| / 4

Each similarity is clamped to [0, 1] and combined as a weighted sum divided
by the total weight of the criteria that could be evaluated, so a missing
input neither helps nor hurts a comp.

Hard constraints (distance cap, GLA tolerance) do not just lower a score:
violating comps are flagged and ranked below every compliant comp.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional

from .models import (
    WEIGHT_KEYS,
    CompProperty,
    ConstraintSet,
    ScoreBand,
    ScorePart,
    SubjectProperty,
    WeightSet,
)
from .validation import ensure_valid, validate_weight_set
from valuation.defaults import RATING_SPAN, RECENCY_CAP_MONTHS


logger = logging.getLogger(__name__)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a value to [low, high]."""
    return min(max(value, low), high)


class CompScorer:
    """
    Scores and ranks candidate comps against a subject.

    Pure: inputs are never modified, results are new comp copies.
    Ranking is deterministic for identical inputs.
    """

    def __init__(self, recency_cap_months: float = RECENCY_CAP_MONTHS):
        """
        Initialize scorer.

        Args:
            recency_cap_months: Sale age at which recency similarity reaches 0
        """
        self._recency_cap_months = recency_cap_months

    def similarities(
        self,
        comp: CompProperty,
        subject: SubjectProperty,
        constraints: ConstraintSet,
    ) -> Dict[str, Optional[float]]:
        """
        Per-criterion similarity in [0, 1].

        Args:
            comp: Candidate comp
            subject: Subject property
            constraints: Caps used to normalise distance and GLA

        Returns:
            Mapping of criterion to similarity, None where inputs are missing
        """
        result: Dict[str, Optional[float]] = {key: None for key in WEIGHT_KEYS}

        if comp.distance_miles is not None:
            result["distance"] = 1 - clamp(
                comp.distance_miles / constraints.distance_cap_miles
            )

        if comp.months_since_sale is not None:
            result["recency"] = 1 - clamp(
                comp.months_since_sale / self._recency_cap_months
            )

        if subject.gla and subject.gla > 0 and comp.gla and comp.gla > 0:
            tolerance = subject.gla * (constraints.gla_tolerance_pct / 100)
            result["gla"] = 1 - clamp(abs(comp.gla - subject.gla) / tolerance)

        if comp.quality is not None and subject.quality is not None:
            result["quality"] = 1 - clamp(
                abs(comp.quality - subject.quality) / RATING_SPAN
            )

        if comp.condition is not None and subject.condition is not None:
            result["condition"] = 1 - clamp(
                abs(comp.condition - subject.condition) / RATING_SPAN
            )

        return result

    def constraint_violations(
        self,
        comp: CompProperty,
        subject: SubjectProperty,
        constraints: ConstraintSet,
    ) -> List[str]:
        """List the hard constraints a comp breaks (empty if compliant)."""
        violations = []

        if (
            comp.distance_miles is not None
            and comp.distance_miles > constraints.distance_cap_miles
        ):
            violations.append(
                f"distance {comp.distance_miles:.2f} mi exceeds "
                f"{constraints.distance_cap_miles:.2f} mi cap"
            )

        if subject.gla and subject.gla > 0 and comp.gla and comp.gla > 0:
            delta_pct = abs(comp.gla - subject.gla) / subject.gla * 100
            if delta_pct > constraints.gla_tolerance_pct:
                violations.append(
                    f"GLA differs by {delta_pct:.1f}% "
                    f"(tolerance {constraints.gla_tolerance_pct:g}%)"
                )

        return violations

    def score_comp(
        self,
        comp: CompProperty,
        subject: SubjectProperty,
        weights: WeightSet,
        constraints: ConstraintSet,
    ) -> CompProperty:
        """
        Score a single comp.

        Returns:
            Copy of the comp with score, band, breakdown and violations set
        """
        similarities = self.similarities(comp, subject, constraints)
        active = {
            key: weight
            for key, weight in weights.items()
            if similarities[key] is not None
        }
        total = sum(active.values())
        if total == 0 and active:
            # All active weights zero: every evaluated criterion counts equally
            active = {key: 1.0 for key in active}
            total = float(len(active))

        breakdown: Dict[str, ScorePart] = {}
        score = 0.0
        for key, weight in active.items():
            normalized = weight / total
            similarity = similarities[key]
            contribution = normalized * similarity
            breakdown[key] = ScorePart(
                similarity=round(similarity, 4),
                weight=round(normalized, 4),
                contribution=round(contribution, 4),
            )
            score += contribution

        score = round(score, 4)
        return replace(
            comp,
            score=score,
            band=ScoreBand.for_score(score),
            score_breakdown=breakdown,
            constraint_violations=self.constraint_violations(
                comp, subject, constraints
            ),
        )

    def score(
        self,
        comps: List[CompProperty],
        subject: SubjectProperty,
        weights: WeightSet,
        constraints: ConstraintSet,
    ) -> List[CompProperty]:
        """
        Score and rank all comps.

        Ordering: compliant comps before constraint violators, then score
        descending, then fewer months since sale, then shorter distance,
        then input order.

        Args:
            comps: Candidate pool
            subject: Subject property
            weights: Criterion weights
            constraints: Hard limits

        Returns:
            New ranked list of scored comp copies

        Raises:
            ValidationError: If weights or constraints are invalid
        """
        ensure_valid(validate_weight_set(weights, constraints), "weights")

        scored = [
            (index, self.score_comp(comp, subject, weights, constraints))
            for index, comp in enumerate(comps)
        ]

        def rank_key(item):
            index, comp = item
            return (
                1 if comp.constraint_violations else 0,
                -comp.score,
                _or_inf(comp.months_since_sale),
                _or_inf(comp.distance_miles),
                index,
            )

        ranked = [comp for _, comp in sorted(scored, key=rank_key)]

        violators = [comp.id for comp in ranked if comp.constraint_violations]
        if violators:
            logger.warning(
                "%d of %d comps violate hard constraints and rank last: %s",
                len(violators),
                len(ranked),
                ", ".join(violators),
            )

        return ranked


def _or_inf(value: Optional[float]) -> float:
    return math.inf if value is None else value
