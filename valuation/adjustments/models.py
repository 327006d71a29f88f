"""
Data models for the adjustment stage.

Per-attribute engine estimates, the blended/manual chosen value with its
provenance, engine settings, the cost baseline table, immutable run
snapshots and the applied adjustments bundle.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from valuation.comp_engine.models import MarketBasis, SubjectProperty
from valuation.defaults import (
    DEFAULT_CAP_PCT_PER_ATTR,
    DEFAULT_DECIMAL_PLACES,
    DEFAULT_ENGINE_WEIGHTS,
)
from valuation.errors import NotFound


# =============================================================================
# Enums
# =============================================================================


class AttrKey(Enum):
    """Valuation attributes that receive adjustments."""

    GLA = "gla"
    BED = "bed"
    BATH = "bath"
    GARAGE = "garage"
    LOT_SIZE = "lotSize"
    AGE = "age"
    QUALITY = "quality"
    CONDITION = "condition"
    VIEW = "view"
    POOL = "pool"

    @classmethod
    def parse(cls, value: Any) -> "AttrKey":
        """
        Resolve a key from its wire value.

        Raises:
            NotFound: If the key is not a known attribute
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise NotFound("attribute", str(value)) from None


class Unit(Enum):
    PER_SQFT = "$/sf"
    PER_UNIT = "$/unit"
    DOLLARS = "$"
    PERCENT = "%"


class Direction(Enum):
    ADDITIVE = "additive"  # dollar model
    MULTIPLICATIVE = "multiplicative"  # percent model


class Engine(Enum):
    REGRESSION = "regression"
    COST = "cost"
    PAIRED = "paired"


class ChosenSource(Enum):
    BLEND = "blend"
    MANUAL = "manual"


@dataclass(frozen=True)
class AttrMetadata:
    label: str
    unit: Unit
    direction: Direction
    description: str


ATTR_METADATA: dict[AttrKey, AttrMetadata] = {
    AttrKey.GLA: AttrMetadata(
        "Gross Living Area", Unit.PER_SQFT, Direction.ADDITIVE,
        "Adjustment for differences in square footage",
    ),
    AttrKey.BED: AttrMetadata(
        "Bedrooms", Unit.PER_UNIT, Direction.ADDITIVE,
        "Adjustment for bedroom count difference",
    ),
    AttrKey.BATH: AttrMetadata(
        "Bathrooms", Unit.PER_UNIT, Direction.ADDITIVE,
        "Adjustment for bathroom count difference",
    ),
    AttrKey.GARAGE: AttrMetadata(
        "Garage Bays", Unit.PER_UNIT, Direction.ADDITIVE,
        "Adjustment for garage capacity difference",
    ),
    AttrKey.LOT_SIZE: AttrMetadata(
        "Lot Size", Unit.PER_SQFT, Direction.ADDITIVE,
        "Adjustment for lot size difference",
    ),
    AttrKey.AGE: AttrMetadata(
        "Age", Unit.PERCENT, Direction.MULTIPLICATIVE,
        "Adjustment for effective age difference",
    ),
    AttrKey.QUALITY: AttrMetadata(
        "Quality", Unit.PERCENT, Direction.MULTIPLICATIVE,
        "Adjustment for construction quality difference",
    ),
    AttrKey.CONDITION: AttrMetadata(
        "Condition", Unit.PERCENT, Direction.MULTIPLICATIVE,
        "Adjustment for property condition difference",
    ),
    AttrKey.VIEW: AttrMetadata(
        "View", Unit.DOLLARS, Direction.ADDITIVE,
        "Adjustment for view quality difference",
    ),
    AttrKey.POOL: AttrMetadata(
        "Pool", Unit.DOLLARS, Direction.ADDITIVE,
        "Adjustment for pool presence",
    ),
}


# =============================================================================
# Engine Estimates
# =============================================================================


@dataclass(frozen=True)
class RegressionEstimate:
    value: float
    lo: float
    hi: float
    n: int
    r2: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "lo": self.lo, "hi": self.hi, "n": self.n, "r2": self.r2}


@dataclass(frozen=True)
class CostEstimate:
    value: float
    lo: float
    hi: float
    basis_note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "lo": self.lo, "hi": self.hi, "basisNote": self.basis_note}


@dataclass(frozen=True)
class PairedEstimate:
    value: float
    lo: float
    hi: float
    n_pairs: int

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "lo": self.lo, "hi": self.hi, "nPairs": self.n_pairs}


@dataclass(frozen=True)
class ChosenValue:
    value: float
    source: ChosenSource
    note: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"value": self.value, "source": self.source.value}
        if self.note:
            data["note"] = self.note
        return data


@dataclass(frozen=True)
class ProvenanceRef:
    """Audit pointer to the evidence behind an engine estimate."""

    engine: Engine
    ref: str

    def to_dict(self) -> dict[str, str]:
        return {"engine": self.engine.value, "ref": self.ref}


@dataclass(frozen=True)
class AttrAdjustment:
    """
    One attribute row of an adjustment run.

    `chosen` is always populated. `blended_value` keeps the unrounded engine
    blend so a manual override can be cleared without recomputing.
    """

    key: AttrKey
    chosen: ChosenValue
    unit: Unit
    direction: Direction
    blended_value: float = 0.0
    regression: Optional[RegressionEstimate] = None
    cost: Optional[CostEstimate] = None
    paired: Optional[PairedEstimate] = None
    provenance: list[ProvenanceRef] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def engine_count(self) -> int:
        return sum(
            1 for estimate in (self.regression, self.cost, self.paired) if estimate
        )

    def display_value(self, decimal_places: int) -> float:
        """Chosen value at display precision."""
        return round(self.chosen.value, decimal_places)

    def to_dict(self, decimal_places: Optional[int] = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key.value,
            "regression": self.regression.to_dict() if self.regression else None,
            "cost": self.cost.to_dict() if self.cost else None,
            "paired": self.paired.to_dict() if self.paired else None,
            "chosen": self.chosen.to_dict(),
            "blendedValue": self.blended_value,
            "unit": self.unit.value,
            "direction": self.direction.value,
            "provenance": [ref.to_dict() for ref in self.provenance],
            "warnings": list(self.warnings),
        }
        if decimal_places is not None:
            data["displayValue"] = self.display_value(decimal_places)
        return data


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True)
class EngineWeights:
    regression: float
    cost: float
    paired: float

    def get(self, engine: Engine) -> float:
        return getattr(self, engine.value)

    def to_dict(self) -> dict[str, float]:
        return {"regression": self.regression, "cost": self.cost, "paired": self.paired}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineWeights":
        # Absent engines weigh zero; the validator checks types and range.
        return cls(
            regression=data.get("regression", 0.0),
            cost=data.get("cost", 0.0),
            paired=data.get("paired", 0.0),
        )


@dataclass(frozen=True)
class EngineSettings:
    """
    Blender configuration.

    cap_pct_per_attr limits how far a single attribute line of any unit may
    move a comp, as a percent of its time-adjusted price. decimal_places is
    display precision; stored values are never rounded to it.
    """

    weights: EngineWeights
    decimal_places: int = DEFAULT_DECIMAL_PLACES
    cap_pct_per_attr: Optional[float] = DEFAULT_CAP_PCT_PER_ATTR

    @classmethod
    def default(cls) -> "EngineSettings":
        return cls(weights=EngineWeights.from_dict(DEFAULT_ENGINE_WEIGHTS))

    def to_dict(self) -> dict[str, Any]:
        return {
            "weights": self.weights.to_dict(),
            "decimalPlaces": self.decimal_places,
            "capPctPerAttr": self.cap_pct_per_attr,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineSettings":
        weights = data.get("weights", DEFAULT_ENGINE_WEIGHTS)
        if isinstance(weights, list):
            # [{"engine": "regression", "weight": 0.5}, ...]
            weights = {item["engine"]: item["weight"] for item in weights}
        return cls(
            weights=EngineWeights.from_dict(weights),
            decimal_places=data.get("decimalPlaces", DEFAULT_DECIMAL_PLACES),
            cap_pct_per_attr=data.get("capPctPerAttr", DEFAULT_CAP_PCT_PER_ATTR),
        )


# =============================================================================
# Cost Baseline
# =============================================================================


@dataclass(frozen=True)
class CostBaselineEntry:
    base: float
    low: Optional[float] = None
    high: Optional[float] = None
    basis_note: str = ""


@dataclass(frozen=True)
class CostBaseline:
    """
    Read-only unit cost table for the cost engine.

    GLA cost is scaled by the subject's quality multiplier when one is set.
    """

    entries: dict[AttrKey, CostBaselineEntry]
    quality_multipliers: dict[int, float] = field(default_factory=dict)

    def entry(self, key: AttrKey) -> Optional[CostBaselineEntry]:
        return self.entries.get(key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CostBaseline":
        entries = {}
        for key, raw in data.get("entries", {}).items():
            if isinstance(raw, (int, float)):
                raw = {"base": raw}
            low, high = raw.get("range", (raw.get("low"), raw.get("high")))
            entries[AttrKey(key)] = CostBaselineEntry(
                base=float(raw["base"]),
                low=low,
                high=high,
                basis_note=raw.get("basisNote", ""),
            )
        multipliers = {
            int(grade): float(multiplier)
            for grade, multiplier in data.get("qualityMultipliers", {}).items()
        }
        return cls(entries=entries, quality_multipliers=multipliers)

    @classmethod
    def load(cls, path: str | Path) -> "CostBaseline":
        """Load a baseline table from a JSON file."""
        return cls.from_dict(json.loads(Path(path).read_text()))


# =============================================================================
# Runs
# =============================================================================


@dataclass(frozen=True)
class AdjustmentRunInput:
    order_id: str
    comp_ids: tuple[str, ...]
    subject: SubjectProperty
    market_basis: MarketBasis

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "compIds": list(self.comp_ids),
            "subject": self.subject.to_dict(),
            "marketBasis": self.market_basis.value,
        }


@dataclass(frozen=True)
class AdjustmentRunResult:
    """
    Snapshot of one compute call.

    A compute always creates a new run_id. An override produces a copy of the
    run with the same run_id, so bundles applied earlier keep the rows they
    were built from.
    """

    run_id: str
    computed_at: datetime
    attrs: list[AttrAdjustment]
    settings: EngineSettings
    input: AdjustmentRunInput
    warnings: list[str] = field(default_factory=list)

    def attr(self, key: Any) -> AttrAdjustment:
        """
        Look up an attribute row.

        Raises:
            NotFound: If the key is unknown or not part of this run
        """
        attr_key = AttrKey.parse(key)
        for attr in self.attrs:
            if attr.key == attr_key:
                return attr
        raise NotFound("attribute", attr_key.value)

    def with_attr(self, attr: AttrAdjustment) -> "AdjustmentRunResult":
        """
        Copy of the run with one attribute row replaced.

        Raises:
            NotFound: If the run has no row for the attribute
        """
        self.attr(attr.key)
        return replace(
            self, attrs=[attr if row.key == attr.key else row for row in self.attrs]
        )

    def to_dict(self, include_timestamps: bool = True) -> dict[str, Any]:
        data = {
            "runId": self.run_id,
            "attrs": [attr.to_dict(self.settings.decimal_places) for attr in self.attrs],
            "settings": self.settings.to_dict(),
            "input": self.input.to_dict(),
            "warnings": list(self.warnings),
        }
        if include_timestamps:
            data["computedAt"] = self.computed_at.isoformat()
        return data


# =============================================================================
# Applied Adjustments
# =============================================================================


@dataclass(frozen=True)
class AdjustmentLine:
    key: AttrKey
    delta: float  # comp value - subject value, in attribute units
    amount: float  # dollars applied to the comp
    unit: Unit
    rationale: str
    capped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key.value,
            "delta": self.delta,
            "amount": self.amount,
            "unit": self.unit.value,
            "rationale": self.rationale,
            "capped": self.capped,
        }


@dataclass(frozen=True)
class CompAdjustmentLine:
    comp_id: str
    time_adjusted_price: float
    lines: tuple[AdjustmentLine, ...]
    subtotal: float  # sum of lines, time adjustment not included
    indicated_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "compId": self.comp_id,
            "timeAdjustedPrice": self.time_adjusted_price,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": self.subtotal,
            "indicatedValue": self.indicated_value,
        }


@dataclass(frozen=True)
class ReconciliationState:
    order_id: str
    primary_comp_ids: tuple[str, ...]
    comp_locks: tuple[str, ...]
    engine_settings: EngineSettings
    selected_model: MarketBasis
    primary_weights: tuple[float, ...]
    override_notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "primaryCompIds": list(self.primary_comp_ids),
            "compLocks": list(self.comp_locks),
            "engineSettings": self.engine_settings.to_dict(),
            "selectedModel": self.selected_model.value,
            "primaryWeights": list(self.primary_weights),
            "overrideNotes": self.override_notes,
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    """Spread of indicated values and the weighted reconciled value."""

    indicated_values: tuple[tuple[str, float, float], ...]  # (comp_id, value, weight)
    low: Optional[float]
    high: Optional[float]
    spread_pct: Optional[float]
    weighted_value: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "indicatedValues": [
                {"compId": comp_id, "indicatedValue": value, "weight": weight}
                for comp_id, value, weight in self.indicated_values
            ],
            "low": self.low,
            "high": self.high,
            "spreadPct": self.spread_pct,
            "weightedValue": self.weighted_value,
        }


@dataclass(frozen=True)
class AdjustmentsBundle:
    """
    Everything downstream reporting needs from one apply call.

    `fingerprint` is a SHA-256 over the timestamp-free content, so two applies
    with unchanged inputs produce the same fingerprint.
    """

    run: AdjustmentRunResult
    comp_lines: tuple[CompAdjustmentLine, ...]
    reconciliation: ReconciliationState
    summary: ReconciliationSummary
    fingerprint: str
    applied_at: datetime

    def content_dict(self) -> dict[str, Any]:
        """Bundle content without timestamps (the fingerprinted part)."""
        return {
            "run": self.run.to_dict(include_timestamps=False),
            "compLines": [line.to_dict() for line in self.comp_lines],
            "reconciliation": self.reconciliation.to_dict(),
            "summary": self.summary.to_dict(),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.content_dict()
        data["run"]["computedAt"] = self.run.computed_at.isoformat()
        data["fingerprint"] = self.fingerprint
        data["appliedAt"] = self.applied_at.isoformat()
        return data
