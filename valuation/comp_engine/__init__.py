"""
Comp Engine

Comparable selection stage of the valuation pipeline: validation of weights
and constraints, similarity scoring, selection state and the Hi-Lo bracket.
"""

from .models import (
    EMPTY_SLOT,
    CenterBasis,
    CompProperty,
    CompSelection,
    CompType,
    ConstraintSet,
    HiLoFilters,
    HiLoRange,
    HiLoResult,
    HiLoSettings,
    HiLoState,
    LatLng,
    ListingStatus,
    MarketBasis,
    OrderWeights,
    RankedCompScore,
    ScoreBand,
    ScorePart,
    SubjectProperty,
    TimeAdjustments,
    WeightProfile,
    WeightSet,
)
from .validation import (
    ensure_valid,
    validate_constraints,
    validate_hilo_settings,
    validate_weight_set,
    validate_weights,
)
from .scoring import CompScorer
from .selection import annotate_comps, lock, restrict_to_polygon, swap, update_selection
from .geo import annotate_geography, distance_miles, is_inside_polygon
from .time_adjust import months_between, time_adjusted_price, time_adjusted_value
from .hilo import BracketSelector, compute_range

__all__ = [
    # Models
    "EMPTY_SLOT",
    "CenterBasis",
    "CompProperty",
    "CompSelection",
    "CompType",
    "ConstraintSet",
    "HiLoFilters",
    "HiLoRange",
    "HiLoResult",
    "HiLoSettings",
    "HiLoState",
    "LatLng",
    "ListingStatus",
    "MarketBasis",
    "OrderWeights",
    "RankedCompScore",
    "ScoreBand",
    "ScorePart",
    "SubjectProperty",
    "TimeAdjustments",
    "WeightProfile",
    "WeightSet",
    # Validation
    "ensure_valid",
    "validate_constraints",
    "validate_hilo_settings",
    "validate_weight_set",
    "validate_weights",
    # Scoring & selection
    "CompScorer",
    "annotate_comps",
    "lock",
    "restrict_to_polygon",
    "swap",
    "update_selection",
    # Geography & time
    "annotate_geography",
    "distance_miles",
    "is_inside_polygon",
    "months_between",
    "time_adjusted_price",
    "time_adjusted_value",
    # Bracket
    "BracketSelector",
    "compute_range",
]
