"""
Default configuration for the valuation pipeline.

Every numeric default the pipeline relies on lives here so that callers and
tests share one source of truth.
"""

from typing import Dict, Final, Tuple

from .comp_engine.models import (
    CenterBasis,
    ConstraintSet,
    HiLoFilters,
    HiLoSettings,
    ListingStatus,
    WeightProfile,
    WeightSet,
)


# =============================================================================
# Validation Bounds
# =============================================================================

WEIGHT_MIN: Final[float] = 0.0
WEIGHT_MAX: Final[float] = 10.0

GLA_TOLERANCE_PCT_MIN: Final[float] = 5.0
GLA_TOLERANCE_PCT_MAX: Final[float] = 20.0

DISTANCE_CAP_MILES_MIN: Final[float] = 0.25
DISTANCE_CAP_MILES_MAX: Final[float] = 5.0

BOX_PCT_MAX: Final[float] = 50.0
MAX_BRACKET_SIZE: Final[int] = 50


# =============================================================================
# Scoring
# =============================================================================

# Sales older than this score zero on recency
RECENCY_CAP_MONTHS: Final[float] = 12.0

# Largest possible gap on the 1-5 quality/condition scales
RATING_SPAN: Final[float] = 4.0

# Shop Default preset
DEFAULT_WEIGHTS: Final[WeightSet] = WeightSet(
    distance=8, recency=8, gla=7, quality=6, condition=6
)
DEFAULT_CONSTRAINTS: Final[ConstraintSet] = ConstraintSet(
    gla_tolerance_pct=10, distance_cap_miles=0.5
)

# Widest allowed caps, used to score bracket candidates when an order has
# no constraint set of its own
BRACKET_FALLBACK_CONSTRAINTS: Final[ConstraintSet] = ConstraintSet(
    gla_tolerance_pct=GLA_TOLERANCE_PCT_MAX,
    distance_cap_miles=DISTANCE_CAP_MILES_MAX,
)

WEIGHT_PROFILES: Final[Tuple[WeightProfile, ...]] = (
    WeightProfile(
        id="shop-default",
        name="Shop Default",
        description="Hi-Low Standard methodology",
        weights=DEFAULT_WEIGHTS,
        constraints=DEFAULT_CONSTRAINTS,
    ),
    WeightProfile(
        id="recency-first",
        name="Recency First",
        description="Declining Market focus",
        weights=WeightSet(distance=6, recency=10, gla=7, quality=5, condition=5),
        constraints=ConstraintSet(gla_tolerance_pct=12, distance_cap_miles=1.0),
    ),
    WeightProfile(
        id="proximity-first",
        name="Proximity First",
        description="Micro-Market focus",
        weights=WeightSet(distance=10, recency=7, gla=7, quality=5, condition=5),
        constraints=ConstraintSet(gla_tolerance_pct=10, distance_cap_miles=0.3),
    ),
    WeightProfile(
        id="gla-strict",
        name="GLA Strict",
        description="Tight Bracketing approach",
        weights=WeightSet(distance=7, recency=7, gla=9, quality=6, condition=5),
        constraints=ConstraintSet(gla_tolerance_pct=6, distance_cap_miles=0.5),
    ),
    WeightProfile(
        id="quality-condition",
        name="Quality/Condition",
        description="Renovation Heavy focus",
        weights=WeightSet(distance=6, recency=7, gla=7, quality=9, condition=8),
        constraints=ConstraintSet(gla_tolerance_pct=10, distance_cap_miles=0.8),
    ),
    WeightProfile(
        id="complex-out-of-area",
        name="Complex/Out-of-Area",
        description="Broader search parameters",
        weights=WeightSet(distance=5, recency=8, gla=7, quality=7, condition=7),
        constraints=ConstraintSet(gla_tolerance_pct=15, distance_cap_miles=2.0),
    ),
)


# =============================================================================
# Hi-Lo Bracket
# =============================================================================

DEFAULT_HILO_SETTINGS: Final[HiLoSettings] = HiLoSettings(
    center_basis=CenterBasis.MEDIAN_TIME_ADJ,
    box_pct=10,
    max_sales=12,
    max_listings=6,
    filters=HiLoFilters(
        inside_polygon_only=True,
        statuses=(ListingStatus.SOLD, ListingStatus.ACTIVE, ListingStatus.PENDING),
    ),
    weights={
        "distance": 0.25,
        "recency": 0.20,
        "gla": 0.20,
        "quality": 0.15,
        "condition": 0.10,
        "loc": 0.10,
    },
)

# Share of the bracket ranking score given to closeness to the center
CENTER_PROXIMITY_WEIGHT: Final[float] = 0.3

# Similarity credited for location when a candidate is outside the polygon
OUTSIDE_POLYGON_LOC_SIMILARITY: Final[float] = 0.5

PRIMARY_COUNT: Final[int] = 3
LISTING_PRIMARY_COUNT: Final[int] = 2

# Weights for primary slots #1, #2, #3
DEFAULT_PRIMARY_WEIGHTS: Final[Tuple[float, ...]] = (0.5, 0.3, 0.2)


# =============================================================================
# Adjustments
# =============================================================================

DEFAULT_ENGINE_WEIGHTS: Final[Dict[str, float]] = {
    "regression": 0.5,
    "cost": 0.25,
    "paired": 0.25,
}
DEFAULT_DECIMAL_PLACES: Final[int] = 0
DEFAULT_CAP_PCT_PER_ATTR: Final[float] = 15.0

MIN_REGRESSION_COMPS: Final[int] = 2
MIN_PAIRED_SALES: Final[int] = 2

# Two-sided 95% interval multiplier for regression coefficients
CONFIDENCE_Z: Final[float] = 1.96

# Pairs whose other attributes differ by more than this (range-normalised
# sum) are not treated as isolating the target attribute
MAX_PAIR_DISTANCE: Final[float] = 1.5


# =============================================================================
# Market Trend
# =============================================================================

TREND_MONTHS_BACK: Final[int] = 12
TREND_MIN_SALES_PER_MONTH: Final[int] = 3
THEIL_SEN_MIN_MONTHS: Final[int] = 6

# Unit costs for the cost engine, keyed by attribute wire key.
# GLA is $/SF before the quality multiplier; age, quality and condition are
# percent of price per unit of difference.
DEFAULT_COST_BASELINE: Final[Dict[str, object]] = {
    "entries": {
        "gla": {"base": 90.0, "range": [75.0, 110.0], "basisNote": "Replacement cost per SF"},
        "bed": {"base": 7500.0, "range": [5000.0, 10000.0]},
        "bath": {"base": 10000.0, "range": [7500.0, 15000.0]},
        "garage": {"base": 12000.0, "range": [8000.0, 15000.0]},
        "lotSize": {"base": 2.0, "range": [1.0, 4.0], "basisNote": "Land value per SF"},
        "age": {"base": -0.5, "range": [-0.75, -0.25], "basisNote": "Depreciation per year"},
        "quality": {"base": 8.0, "range": [5.0, 12.0]},
        "condition": {"base": 5.0, "range": [3.0, 8.0]},
        "view": {"base": 10000.0, "range": [5000.0, 20000.0]},
        "pool": {"base": 15000.0, "range": [10000.0, 25000.0]},
    },
    "qualityMultipliers": {"1": 0.8, "2": 0.9, "3": 1.0, "4": 1.15, "5": 1.35},
}
