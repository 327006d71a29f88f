"""
Comparable Valuation Pipeline

This package provides the per-order valuation pipeline:
1. Weights & Constraints (validated, shop profiles)
2. Comp Scoring & Ranking (deterministic)
3. Selection State (primaries, locks, swaps)
4. Hi-Lo Bracket (center, range, bracketing comps)
5. Adjustments (regression / cost / paired engines, blend, overrides)
6. Application & Reconciliation (indicated values, fingerprinted bundle)
"""

# Comp engine first: defaults depends on its models
from .comp_engine import (
    BracketSelector,
    CompProperty,
    CompScorer,
    CompSelection,
    HiLoResult,
    HiLoSettings,
    SubjectProperty,
    TimeAdjustments,
    WeightSet,
    ConstraintSet,
)
from .errors import (
    LockedSlotConflict,
    NoCandidatesAvailable,
    NotFound,
    PipelineError,
    PreconditionMissing,
    ValidationError,
)
from .adjustments import (
    AdjustmentCalculator,
    AdjustmentRunResult,
    AdjustmentsBundle,
    AttrKey,
    CostBaseline,
    EngineSettings,
)
from .market import derive_time_adjustment
from .store import InMemoryOrderStore, OrderState, OrderStore
from .pipeline import ValuationPipeline

__all__ = [
    # Comp engine
    "BracketSelector",
    "CompProperty",
    "CompScorer",
    "CompSelection",
    "ConstraintSet",
    "HiLoResult",
    "HiLoSettings",
    "SubjectProperty",
    "TimeAdjustments",
    "WeightSet",
    # Errors
    "LockedSlotConflict",
    "NoCandidatesAvailable",
    "NotFound",
    "PipelineError",
    "PreconditionMissing",
    "ValidationError",
    # Adjustments
    "AdjustmentCalculator",
    "AdjustmentRunResult",
    "AdjustmentsBundle",
    "AttrKey",
    "CostBaseline",
    "EngineSettings",
    # Market, storage & orchestration
    "derive_time_adjustment",
    "InMemoryOrderStore",
    "OrderState",
    "OrderStore",
    "ValuationPipeline",
]
