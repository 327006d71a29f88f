"""
Hi-Lo Bracket Selector

Chooses a defensible price range around a center value and the sales and
listings that best bracket the subject.

Pipeline order:
1. PRECONDITIONS - resolved effective date and rate, valid settings
2. FILTER - status and polygon filters; empty pool is fatal
3. TRENDING - time-adjusted value per candidate
4. CENTER - median of primaries, weighted primaries, or model blend
5. RANGE - lo = center * (1 - p/100), hi = center * (1 + p/100)
6. RANK - similarity blended with closeness to the center
7. SELECT - top sales/listings inside the box; primaries keep locked slots
"""

import logging
import statistics
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from valuation.defaults import (
    BRACKET_FALLBACK_CONSTRAINTS,
    CENTER_PROXIMITY_WEIGHT,
    DEFAULT_PRIMARY_WEIGHTS,
    LISTING_PRIMARY_COUNT,
    OUTSIDE_POLYGON_LOC_SIMILARITY,
    PRIMARY_COUNT,
)
from valuation.errors import NoCandidatesAvailable

from .models import (
    EMPTY_SLOT,
    CenterBasis,
    CompProperty,
    CompSelection,
    CompType,
    ConstraintSet,
    HiLoResult,
    HiLoRange,
    HiLoSettings,
    MarketBasis,
    RankedCompScore,
    ScorePart,
    SubjectProperty,
    TimeAdjustments,
)
from .scoring import CompScorer, clamp
from .time_adjust import require_time_adjustments, time_adjusted_value
from .validation import ensure_valid, validate_hilo_settings


logger = logging.getLogger(__name__)


def compute_range(
    center: float,
    box_pct: float,
    effective_date,
    basis: MarketBasis,
) -> HiLoRange:
    """
    Symmetric bracket around a center.

    Args:
        center: Center value (sale price or $/SF)
        box_pct: Percent above and below the center
        effective_date: Date the values are trended to
        basis: Unit of the values

    Returns:
        HiLoRange with lo <= center <= hi
    """
    multiplier = box_pct / 100
    return HiLoRange(
        center=center,
        lo=center * (1 - multiplier),
        hi=center * (1 + multiplier),
        effective_date=effective_date,
        basis=basis,
    )


class BracketSelector:
    """Computes the Hi-Lo range and the bracketing comp set for an order."""

    def __init__(
        self,
        scorer: Optional[CompScorer] = None,
        proximity_weight: float = CENTER_PROXIMITY_WEIGHT,
    ):
        """
        Initialize selector.

        Args:
            scorer: Similarity scorer (default: CompScorer())
            proximity_weight: Share of the ranking score given to closeness
                to the center; the remainder is similarity
        """
        self._scorer = scorer or CompScorer()
        self._proximity_weight = proximity_weight

    def compute(
        self,
        candidates: List[CompProperty],
        subject: SubjectProperty,
        settings: HiLoSettings,
        time_adjustments: Optional[TimeAdjustments],
        selection: Optional[CompSelection] = None,
        constraints: Optional[ConstraintSet] = None,
        now: Optional[datetime] = None,
    ) -> HiLoResult:
        """
        Run the full bracket pipeline.

        Args:
            candidates: Ranked/filtered candidate pool (sales and listings)
            subject: Subject property
            settings: Bracket settings
            time_adjustments: Resolved effective date and monthly rate
            selection: Current selection (primaries and locks)
            constraints: Order constraints used to normalise similarity
            now: Timestamp for the result (default: current UTC time)

        Returns:
            HiLoResult

        Raises:
            PreconditionMissing: If time adjustments are not resolved
            ValidationError: If settings are invalid
            NoCandidatesAvailable: If no candidate survives filtering
        """
        time_adjustments = require_time_adjustments(time_adjustments)
        ensure_valid(validate_hilo_settings(settings), "bracket settings")

        locked = set(selection.locked) if selection else set()
        pool = self.filter_candidates(candidates, settings, locked)
        if not pool:
            raise NoCandidatesAvailable()

        values = self._trended_values(candidates, time_adjustments)
        pool = [comp for comp in pool if comp.id in values]
        if not pool:
            raise NoCandidatesAvailable(
                "No candidates with a computable time-adjusted value"
            )

        scoring_constraints = constraints or BRACKET_FALLBACK_CONSTRAINTS
        similarity = {
            comp.id: self._similarity(comp, subject, settings, scoring_constraints)
            for comp in pool
        }

        center = self.calculate_center(
            pool, values, similarity, settings.center_basis, selection
        )
        bracket = compute_range(
            center,
            settings.box_pct,
            time_adjustments.effective_date,
            time_adjustments.basis,
        )

        ranked = self._rank(pool, values, similarity, bracket)

        selected_sales = tuple(
            entry.comp_id
            for entry in ranked
            if entry.inside_box and entry.comp_type == CompType.SALE
        )[: settings.max_sales]
        selected_listings = tuple(
            entry.comp_id
            for entry in ranked
            if entry.inside_box and entry.comp_type == CompType.LISTING
        )[: settings.max_listings]

        primaries = self._choose_primaries(selected_sales, selection)

        logger.info(
            "Bracket %.2f-%.2f around %.2f (%s): %d ranked, %d sales, %d listings",
            bracket.lo,
            bracket.hi,
            bracket.center,
            settings.center_basis.value,
            len(ranked),
            len(selected_sales),
            len(selected_listings),
        )

        return HiLoResult(
            range=bracket,
            ranked=tuple(ranked),
            selected_sales=selected_sales,
            selected_listings=selected_listings,
            primaries=primaries,
            listing_primaries=selected_listings[:LISTING_PRIMARY_COUNT],
            generated_at=now or datetime.now(timezone.utc),
        )

    # =========================================================================
    # Filtering & Trending
    # =========================================================================

    def filter_candidates(
        self,
        candidates: List[CompProperty],
        settings: HiLoSettings,
        locked: Optional[set] = None,
    ) -> List[CompProperty]:
        """Status and polygon filters. Locked comps bypass the polygon filter."""
        locked = locked or set()
        result = []
        for comp in candidates:
            if comp.status not in settings.filters.statuses:
                continue
            if (
                settings.filters.inside_polygon_only
                and comp.is_inside_polygon is not True
                and comp.id not in locked
            ):
                continue
            result.append(comp)
        return result

    def _trended_values(
        self,
        candidates: List[CompProperty],
        time_adjustments: TimeAdjustments,
    ) -> Dict[str, float]:
        values = {}
        for comp in candidates:
            value = time_adjusted_value(comp, time_adjustments)
            if value is None:
                logger.warning("Comp %s has no GLA for $/SF trending; skipped", comp.id)
                continue
            values[comp.id] = value
        return values

    def _similarity(
        self,
        comp: CompProperty,
        subject: SubjectProperty,
        settings: HiLoSettings,
        constraints: ConstraintSet,
    ) -> Tuple[float, Tuple[Tuple[str, ScorePart], ...]]:
        parts = self._scorer.similarities(comp, subject, constraints)
        parts["loc"] = (
            1.0 if comp.is_inside_polygon else OUTSIDE_POLYGON_LOC_SIMILARITY
        )

        active = {
            key: settings.weights.get(key, 0.0)
            for key, value in parts.items()
            if value is not None
        }
        total = sum(active.values())
        if total == 0:
            active = {key: 1.0 for key in active}
            total = float(len(active))

        reasons = []
        score = 0.0
        for key, weight in active.items():
            normalized = weight / total
            contribution = normalized * parts[key]
            reasons.append(
                (key, ScorePart(
                    similarity=round(parts[key], 4),
                    weight=round(normalized, 4),
                    contribution=round(contribution, 4),
                ))
            )
            score += contribution
        return score, tuple(reasons)

    # =========================================================================
    # Center
    # =========================================================================

    def calculate_center(
        self,
        pool: List[CompProperty],
        values: Dict[str, float],
        similarity: Dict[str, Tuple[float, tuple]],
        basis: CenterBasis,
        selection: Optional[CompSelection] = None,
    ) -> float:
        """
        Center value by strategy.

        - medianTimeAdj: median trended value of the primaries, or of the
          whole pool when no primary has a value
        - weightedPrimaries: slot-weighted mean of the primaries (#1 0.5,
          #2 0.3, #3 0.2, renormalised over filled slots); falls back to
          medianTimeAdj without primaries
        - model: similarity-weighted mean of the whole pool

        Raises:
            NoCandidatesAvailable: If no value is available at all
        """
        pool_values = [values[comp.id] for comp in pool]
        if not pool_values:
            raise NoCandidatesAvailable("No valid candidates for center calculation")

        primary_slots = []
        if selection:
            primary_slots = [
                (index, comp_id)
                for index, comp_id in enumerate(selection.primary)
                if comp_id and comp_id in values
            ]

        if basis == CenterBasis.WEIGHTED_PRIMARIES and primary_slots:
            weights = [DEFAULT_PRIMARY_WEIGHTS[index] for index, _ in primary_slots]
            total = sum(weights)
            return sum(
                weight * values[comp_id]
                for weight, (_, comp_id) in zip(weights, primary_slots)
            ) / total

        if basis == CenterBasis.MODEL:
            total = sum(similarity[comp.id][0] for comp in pool)
            if total > 0:
                return sum(
                    similarity[comp.id][0] * values[comp.id] for comp in pool
                ) / total
            return statistics.median(pool_values)

        if primary_slots:
            return statistics.median(values[comp_id] for _, comp_id in primary_slots)
        return statistics.median(pool_values)

    # =========================================================================
    # Ranking & Selection
    # =========================================================================

    def _rank(
        self,
        pool: List[CompProperty],
        values: Dict[str, float],
        similarity: Dict[str, Tuple[float, tuple]],
        bracket: HiLoRange,
    ) -> List[RankedCompScore]:
        half_width = bracket.hi - bracket.center
        entries = []
        for index, comp in enumerate(pool):
            value = values[comp.id]
            deviation = abs(value - bracket.center)
            if half_width > 0:
                proximity = 1 - clamp(deviation / (2 * half_width))
            else:
                proximity = 1.0 if deviation == 0 else 0.0
            similar, reasons = similarity[comp.id]
            score = (1 - self._proximity_weight) * similar + (
                self._proximity_weight * proximity
            )
            entry = RankedCompScore(
                comp_id=comp.id,
                comp_type=comp.comp_type,
                inside_box=bracket.contains(value),
                inside_polygon=bool(comp.is_inside_polygon),
                time_adjusted_value=round(value, 2),
                similarity=round(similar, 4),
                score=round(score, 4),
                reasons=reasons,
            )
            entries.append((index, deviation, entry))

        entries.sort(
            key=lambda item: (
                -item[2].score,
                0 if item[2].inside_box else 1,
                item[1],
                item[0],
            )
        )
        return [entry for _, _, entry in entries]

    def _choose_primaries(
        self,
        selected_sales: Tuple[str, ...],
        selection: Optional[CompSelection],
    ) -> Tuple[str, ...]:
        """Locked primaries keep their slots; open slots take top selected sales."""
        slots = [EMPTY_SLOT] * PRIMARY_COUNT
        if selection:
            for index, comp_id in enumerate(selection.primary[:PRIMARY_COUNT]):
                if comp_id and comp_id in selection.locked:
                    slots[index] = comp_id

        fill = (comp_id for comp_id in selected_sales if comp_id not in slots)
        for index in range(PRIMARY_COUNT):
            if not slots[index]:
                slots[index] = next(fill, EMPTY_SLOT)

        return tuple(comp_id for comp_id in slots if comp_id)
