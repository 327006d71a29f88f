"""
Adjustments

Adjustment stage of the valuation pipeline: per-attribute engine estimates,
blending, manual overrides and application of chosen values to comps.
"""

from .models import (
    ATTR_METADATA,
    AdjustmentLine,
    AdjustmentRunInput,
    AdjustmentRunResult,
    AdjustmentsBundle,
    AttrAdjustment,
    AttrKey,
    ChosenSource,
    ChosenValue,
    CompAdjustmentLine,
    CostBaseline,
    CostBaselineEntry,
    CostEstimate,
    Direction,
    Engine,
    EngineSettings,
    EngineWeights,
    PairedEstimate,
    ProvenanceRef,
    ReconciliationState,
    ReconciliationSummary,
    RegressionEstimate,
    Unit,
)
from .engines import CostEngine, PairedSalesEngine, RegressionEngine, percent_from_log_slope
from .blender import BlendOutcome, apply_override, blend, clear_override, validate_engine_settings
from .calculator import AdjustmentCalculator
from .applicator import apply_adjustments, fingerprint, summarize

__all__ = [
    # Models
    "ATTR_METADATA",
    "AdjustmentLine",
    "AdjustmentRunInput",
    "AdjustmentRunResult",
    "AdjustmentsBundle",
    "AttrAdjustment",
    "AttrKey",
    "ChosenSource",
    "ChosenValue",
    "CompAdjustmentLine",
    "CostBaseline",
    "CostBaselineEntry",
    "CostEstimate",
    "Direction",
    "Engine",
    "EngineSettings",
    "EngineWeights",
    "PairedEstimate",
    "ProvenanceRef",
    "ReconciliationState",
    "ReconciliationSummary",
    "RegressionEstimate",
    "Unit",
    # Engines
    "CostEngine",
    "PairedSalesEngine",
    "RegressionEngine",
    "percent_from_log_slope",
    # Blending
    "BlendOutcome",
    "apply_override",
    "blend",
    "clear_override",
    "validate_engine_settings",
    "AdjustmentCalculator",
    # Application
    "apply_adjustments",
    "fingerprint",
    "summarize",
]
