"""
Data models for the comparable selection stage.

Defines the subject, candidate comps, weights and constraints, the per-order
selection state, time adjustment inputs and the Hi-Lo bracket records.
Wire dictionaries use camelCase keys; Python attributes are snake_case.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Attribute keys used by the adjustment engines, mapped to model fields.
ATTRIBUTE_FIELDS: Dict[str, str] = {
    "gla": "gla",
    "bed": "bed",
    "bath": "bath",
    "garage": "garage",
    "lotSize": "lot_size",
    "age": "age",
    "quality": "quality",
    "condition": "condition",
    "view": "view",
    "pool": "pool",
}

EMPTY_SLOT = ""
PRIMARY_SLOTS = 3


def parse_date(value: Any) -> Optional[date]:
    """Accept a date, datetime or ISO string; return a date or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if "T" in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def _attribute_value(record: Any, key: Any) -> Optional[float]:
    """Numeric value of an adjustment attribute, or None when unknown."""
    name = ATTRIBUTE_FIELDS.get(getattr(key, "value", key))
    if name is None:
        return None
    value = getattr(record, name, None)
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    return float(value)


class CompType(Enum):
    """Closed sale or current listing."""
    SALE = "sale"
    LISTING = "listing"


class ListingStatus(Enum):
    SOLD = "sold"
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"


class ScoreBand(Enum):
    """
    Similarity band for display.

    High: score >= 0.75
    Medium: score >= 0.50
    Low: anything below
    """
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def for_score(cls, score: float) -> "ScoreBand":
        if score >= 0.75:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW


class MarketBasis(Enum):
    """Unit of value used for time adjustment and regression."""
    SALE_PRICE = "salePrice"
    PPSF = "ppsf"


class CenterBasis(Enum):
    """Strategy for choosing the Hi-Lo bracket center."""
    MEDIAN_TIME_ADJ = "medianTimeAdj"
    WEIGHTED_PRIMARIES = "weightedPrimaries"
    MODEL = "model"


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["LatLng"]:
        if not data:
            return None
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


@dataclass(frozen=True)
class SubjectProperty:
    """
    The property being appraised.

    Immutable for the duration of a valuation run.
    """
    id: str
    gla: float  # Gross living area, sq ft
    quality: int  # 1-5 rating
    condition: int  # 1-5 rating
    address: str = ""
    latlng: Optional[LatLng] = None

    # Optional attributes consumed by the adjustment engines
    bed: Optional[float] = None
    bath: Optional[float] = None
    garage: Optional[float] = None
    lot_size: Optional[float] = None
    age: Optional[float] = None
    view: Optional[float] = None
    pool: Optional[bool] = None

    def attribute_value(self, key: Any) -> Optional[float]:
        """Value of an adjustment attribute (pool counts as 1/0)."""
        return _attribute_value(self, key)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "address": self.address,
            "latlng": self.latlng.to_dict() if self.latlng else None,
            "gla": self.gla,
            "quality": self.quality,
            "condition": self.condition,
            "bed": self.bed,
            "bath": self.bath,
            "garage": self.garage,
            "lotSize": self.lot_size,
            "age": self.age,
            "view": self.view,
            "pool": self.pool,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SubjectProperty":
        return cls(
            id=str(data["id"]),
            address=data.get("address", ""),
            latlng=LatLng.from_dict(data.get("latlng")),
            gla=float(data["gla"]),
            quality=int(data["quality"]),
            condition=int(data["condition"]),
            bed=data.get("bed"),
            bath=data.get("bath"),
            garage=data.get("garage"),
            lot_size=data.get("lotSize"),
            age=data.get("age"),
            view=data.get("view"),
            pool=data.get("pool"),
        )


@dataclass(frozen=True)
class ScorePart:
    """One criterion's share of a composite similarity score."""
    similarity: float
    weight: float
    contribution: float

    def to_dict(self) -> dict:
        return {
            "similarity": self.similarity,
            "weight": self.weight,
            "contribution": self.contribution,
        }


@dataclass
class CompProperty:
    """
    A candidate comparable: a closed sale or a current listing.

    Created from market-data import or manual entry. Only the selection
    manager (flags) and the scorer (score fields) produce modified copies.
    """
    # Required fields
    id: str
    sale_price: float
    distance_miles: float
    months_since_sale: Optional[float]  # None when only sale_date is known
    gla: float
    quality: int
    condition: int

    sale_date: Optional[date] = None
    address: str = ""
    latlng: Optional[LatLng] = None
    comp_type: CompType = CompType.SALE
    status: ListingStatus = ListingStatus.SOLD

    # Optional attributes consumed by the adjustment engines
    bed: Optional[float] = None
    bath: Optional[float] = None
    garage: Optional[float] = None
    lot_size: Optional[float] = None
    age: Optional[float] = None
    view: Optional[float] = None
    pool: Optional[bool] = None

    # Derived selection flags
    is_inside_polygon: Optional[bool] = None
    locked: bool = False
    is_primary: bool = False
    primary_index: Optional[int] = None

    # Derived scoring output
    score: Optional[float] = None
    band: Optional[ScoreBand] = None
    score_breakdown: Dict[str, ScorePart] = field(default_factory=dict)
    constraint_violations: List[str] = field(default_factory=list)

    def attribute_value(self, key: Any) -> Optional[float]:
        """Value of an adjustment attribute (pool counts as 1/0)."""
        return _attribute_value(self, key)

    @property
    def price_per_sqft(self) -> Optional[float]:
        if not self.gla or self.gla <= 0:
            return None
        return self.sale_price / self.gla

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "id": self.id,
            "address": self.address,
            "salePrice": self.sale_price,
            "saleDate": self.sale_date.isoformat() if self.sale_date else None,
            "distanceMiles": self.distance_miles,
            "monthsSinceSale": self.months_since_sale,
            "latlng": self.latlng.to_dict() if self.latlng else None,
            "gla": self.gla,
            "quality": self.quality,
            "condition": self.condition,
            "type": self.comp_type.value,
            "status": self.status.value,
            "bed": self.bed,
            "bath": self.bath,
            "garage": self.garage,
            "lotSize": self.lot_size,
            "age": self.age,
            "view": self.view,
            "pool": self.pool,
            "isInsidePolygon": self.is_inside_polygon,
            "locked": self.locked,
            "isPrimary": self.is_primary,
            "primaryIndex": self.primary_index,
            "score": self.score,
            "band": self.band.value if self.band else None,
            "scoreBreakdown": {
                key: part.to_dict() for key, part in self.score_breakdown.items()
            },
            "constraintViolations": list(self.constraint_violations),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CompProperty":
        """
        Build from an imported record.

        Raises:
            ValueError: If neither saleDate nor monthsSinceSale is given
        """
        sale_date = parse_date(data.get("saleDate"))
        months = data.get("monthsSinceSale")
        if sale_date is None and months is None:
            raise ValueError("saleDate or monthsSinceSale is required")
        comp_type = CompType(data.get("type", CompType.SALE.value))
        default_status = (
            ListingStatus.SOLD if comp_type == CompType.SALE else ListingStatus.ACTIVE
        )
        return cls(
            id=str(data["id"]),
            address=data.get("address", ""),
            sale_price=float(data["salePrice"]),
            sale_date=sale_date,
            distance_miles=float(data["distanceMiles"]),
            months_since_sale=float(months) if months is not None else None,
            latlng=LatLng.from_dict(data.get("latlng")),
            gla=float(data["gla"]),
            quality=int(data["quality"]),
            condition=int(data["condition"]),
            comp_type=comp_type,
            status=ListingStatus(data.get("status", default_status.value)),
            bed=data.get("bed"),
            bath=data.get("bath"),
            garage=data.get("garage"),
            lot_size=data.get("lotSize"),
            age=data.get("age"),
            view=data.get("view"),
            pool=data.get("pool"),
            is_inside_polygon=data.get("isInsidePolygon"),
            locked=bool(data.get("locked", False)),
            is_primary=bool(data.get("isPrimary", False)),
            primary_index=data.get("primaryIndex"),
        )


# =============================================================================
# Weights & Constraints
# =============================================================================

WEIGHT_KEYS: Tuple[str, ...] = ("distance", "recency", "gla", "quality", "condition")
CONSTRAINT_KEYS: Tuple[str, ...] = ("glaTolerancePct", "distanceCapMiles")


@dataclass(frozen=True)
class WeightSet:
    """Relative importance of each similarity criterion (0-10 each)."""
    distance: float
    recency: float
    gla: float
    quality: float
    condition: float

    def items(self) -> List[Tuple[str, float]]:
        return [(key, getattr(self, key)) for key in WEIGHT_KEYS]

    def to_dict(self) -> dict:
        return dict(self.items())

    @classmethod
    def from_dict(cls, data: dict) -> "WeightSet":
        # No coercion here: the validator reports missing or non-numeric values.
        return cls(**{key: data.get(key) for key in WEIGHT_KEYS})


@dataclass(frozen=True)
class ConstraintSet:
    """Hard limits that exclude or flag comps rather than merely weight them."""
    gla_tolerance_pct: float
    distance_cap_miles: float

    def to_dict(self) -> dict:
        return {
            "glaTolerancePct": self.gla_tolerance_pct,
            "distanceCapMiles": self.distance_cap_miles,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConstraintSet":
        return cls(
            gla_tolerance_pct=data.get("glaTolerancePct"),
            distance_cap_miles=data.get("distanceCapMiles"),
        )


@dataclass(frozen=True)
class WeightProfile:
    """A named weight/constraint preset. Shop profiles are read-only."""
    id: str
    name: str
    weights: WeightSet
    constraints: ConstraintSet
    description: str = ""
    scope: str = "shop"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "weights": self.weights.to_dict(),
            "constraints": self.constraints.to_dict(),
            "scope": self.scope,
        }


@dataclass(frozen=True)
class OrderWeights:
    """The single active weight set for an order, versioned by update stamp."""
    order_id: str
    weights: WeightSet
    constraints: ConstraintSet
    updated_at: datetime
    updated_by: str
    active_profile_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "activeProfileId": self.active_profile_id,
            "weights": self.weights.to_dict(),
            "constraints": self.constraints.to_dict(),
            "updatedAt": self.updated_at.isoformat(),
            "updatedBy": self.updated_by,
        }


# =============================================================================
# Selection State
# =============================================================================

@dataclass(frozen=True)
class CompSelection:
    """
    Per-order selection state.

    `primary` always holds exactly three slots; an empty slot is "".
    A comp id appears in `primary` at most once.
    """
    order_id: str
    primary: Tuple[str, ...] = (EMPTY_SLOT,) * PRIMARY_SLOTS
    locked: Tuple[str, ...] = ()
    restrict_to_polygon: bool = False

    @property
    def primary_ids(self) -> List[str]:
        """Filled primary slots in order."""
        return [comp_id for comp_id in self.primary if comp_id]

    def is_locked(self, comp_id: str) -> bool:
        return comp_id in self.locked

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "primary": list(self.primary),
            "locked": list(self.locked),
            "restrictToPolygon": self.restrict_to_polygon,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CompSelection":
        primary = list(data.get("primary", []))[:PRIMARY_SLOTS]
        primary += [EMPTY_SLOT] * (PRIMARY_SLOTS - len(primary))
        return cls(
            order_id=str(data["orderId"]),
            primary=tuple(primary),
            locked=tuple(dict.fromkeys(data.get("locked", []))),
            restrict_to_polygon=bool(data.get("restrictToPolygon", False)),
        )


# =============================================================================
# Time Adjustment
# =============================================================================

@dataclass(frozen=True)
class TimeAdjustments:
    """
    Market conditions adjustment for an order.

    pct_per_month is a decimal fraction: 0.005 means +0.5% per month.
    """
    basis: MarketBasis
    pct_per_month: float
    effective_date: Optional[date]

    def to_dict(self) -> dict:
        return {
            "basis": self.basis.value,
            "pctPerMonth": self.pct_per_month,
            "effectiveDateISO": (
                self.effective_date.isoformat() if self.effective_date else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimeAdjustments":
        """
        Build from a stored record.

        Older records carried the monthly rate as `monthlyRate` or
        `monthlyAdjustment` and had no basis; those are read as salePrice.
        Current records must state both the rate and the basis.

        Raises:
            ValueError: If the rate is absent or the basis is unknown
        """
        legacy = False
        pct = data.get("pctPerMonth")
        if pct is None:
            pct = data.get("monthlyRate", data.get("monthlyAdjustment"))
            legacy = pct is not None
        if pct is None:
            raise ValueError("pctPerMonth is required")

        basis = data.get("basis")
        if basis is None:
            if not legacy:
                raise ValueError("basis is required")
            basis = MarketBasis.SALE_PRICE.value
        return cls(
            basis=MarketBasis(basis),
            pct_per_month=float(pct),
            effective_date=parse_date(
                data.get("effectiveDateISO", data.get("effectiveDate"))
            ),
        )


# =============================================================================
# Hi-Lo Bracket
# =============================================================================

HILO_WEIGHT_KEYS: Tuple[str, ...] = WEIGHT_KEYS + ("loc",)


@dataclass(frozen=True)
class HiLoFilters:
    inside_polygon_only: bool = True
    statuses: Tuple[ListingStatus, ...] = (
        ListingStatus.SOLD,
        ListingStatus.ACTIVE,
        ListingStatus.PENDING,
    )

    def to_dict(self) -> dict:
        return {
            "insidePolygonOnly": self.inside_polygon_only,
            "statuses": [status.value for status in self.statuses],
        }


@dataclass(frozen=True)
class HiLoSettings:
    """Bracket configuration for an order."""
    center_basis: CenterBasis
    box_pct: float  # +/- percent around the center
    max_sales: int
    max_listings: int
    filters: HiLoFilters
    weights: Dict[str, float]  # distance, recency, gla, quality, condition, loc

    def to_dict(self) -> dict:
        return {
            "centerBasis": self.center_basis.value,
            "boxPct": self.box_pct,
            "maxSales": self.max_sales,
            "maxListings": self.max_listings,
            "filters": self.filters.to_dict(),
            "weights": dict(self.weights),
        }

    @classmethod
    def from_dict(cls, data: dict, defaults: "HiLoSettings") -> "HiLoSettings":
        """Build from a partial dictionary, filling gaps from `defaults`."""
        filters = data.get("filters") or {}
        statuses = filters.get("statuses")
        return cls(
            center_basis=CenterBasis(
                data.get("centerBasis", defaults.center_basis.value)
            ),
            box_pct=data.get("boxPct", defaults.box_pct),
            max_sales=data.get("maxSales", defaults.max_sales),
            max_listings=data.get("maxListings", defaults.max_listings),
            filters=HiLoFilters(
                inside_polygon_only=filters.get(
                    "insidePolygonOnly", defaults.filters.inside_polygon_only
                ),
                statuses=(
                    tuple(ListingStatus(s) for s in statuses)
                    if statuses is not None
                    else defaults.filters.statuses
                ),
            ),
            weights={**defaults.weights, **(data.get("weights") or {})},
        )


@dataclass(frozen=True)
class HiLoRange:
    center: float
    lo: float
    hi: float
    effective_date: date
    basis: MarketBasis

    def contains(self, value: float) -> bool:
        return self.lo <= value <= self.hi

    def to_dict(self) -> dict:
        return {
            "center": self.center,
            "lo": self.lo,
            "hi": self.hi,
            "effectiveDateISO": self.effective_date.isoformat(),
            "basis": self.basis.value,
        }


@dataclass(frozen=True)
class RankedCompScore:
    """A candidate's standing in the bracket ranking."""
    comp_id: str
    comp_type: CompType
    inside_box: bool
    inside_polygon: bool
    time_adjusted_value: float
    similarity: float
    score: float
    reasons: Tuple[Tuple[str, ScorePart], ...] = ()

    def to_dict(self) -> dict:
        return {
            "compId": self.comp_id,
            "type": self.comp_type.value,
            "insideBox": self.inside_box,
            "insidePolygon": self.inside_polygon,
            "timeAdjustedValue": self.time_adjusted_value,
            "similarity": self.similarity,
            "score": self.score,
            "reasons": [
                {"key": key, **part.to_dict()} for key, part in self.reasons
            ],
        }


@dataclass(frozen=True)
class HiLoResult:
    range: HiLoRange
    ranked: Tuple[RankedCompScore, ...]
    selected_sales: Tuple[str, ...]
    selected_listings: Tuple[str, ...]
    primaries: Tuple[str, ...]
    listing_primaries: Tuple[str, ...]
    generated_at: datetime

    def to_dict(self) -> dict:
        return {
            "range": self.range.to_dict(),
            "ranked": [entry.to_dict() for entry in self.ranked],
            "selectedSales": list(self.selected_sales),
            "selectedListings": list(self.selected_listings),
            "primaries": list(self.primaries),
            "listingPrimaries": list(self.listing_primaries),
            "generatedAt": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class HiLoState:
    order_id: str
    settings: HiLoSettings
    updated_at: datetime
    result: Optional[HiLoResult] = None

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "settings": self.settings.to_dict(),
            "result": self.result.to_dict() if self.result else None,
            "updatedAt": self.updated_at.isoformat(),
        }
