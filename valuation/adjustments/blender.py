"""
Adjustment Blender

Combines engine estimates into one chosen value per attribute:

    chosen = sum(w_e * value_e) / sum(w_e)   over engines with a value

Weights are renormalised across the engines that produced an estimate, so a
missing engine never drags the blend toward zero. When no engine has a value
the chosen value is 0 and a warning travels with the attribute.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from valuation.comp_engine.validation import is_number
from valuation.errors import ValidationError

from .models import (
    AttrAdjustment,
    ChosenSource,
    ChosenValue,
    CostEstimate,
    Engine,
    EngineSettings,
    EngineWeights,
    PairedEstimate,
    RegressionEstimate,
)


NO_ENGINE_WARNING = "No engine produced an estimate; chosen value set to 0"


@dataclass(frozen=True)
class BlendOutcome:
    value: float
    source: ChosenSource
    contributors: Tuple[Engine, ...]
    warning: Optional[str] = None


def blend(
    engine_weights: EngineWeights,
    regression: Optional[RegressionEstimate],
    cost: Optional[CostEstimate],
    paired: Optional[PairedEstimate],
) -> BlendOutcome:
    """
    Weighted mean of the available engine estimates.

    Args:
        engine_weights: Weight per engine
        regression: Regression estimate or None
        cost: Cost estimate or None
        paired: Paired-sales estimate or None

    Returns:
        BlendOutcome with source 'blend'. The value is unrounded;
        EngineSettings.decimal_places is display precision only.
    """
    available = [
        (engine, estimate.value, engine_weights.get(engine))
        for engine, estimate in (
            (Engine.REGRESSION, regression),
            (Engine.COST, cost),
            (Engine.PAIRED, paired),
        )
        if estimate is not None
    ]
    if not available:
        return BlendOutcome(
            value=0.0,
            source=ChosenSource.BLEND,
            contributors=(),
            warning=NO_ENGINE_WARNING,
        )

    total = sum(weight for _, _, weight in available)
    if total <= 0:
        # Every available engine is weighted zero: count them equally
        available = [(engine, value, 1.0) for engine, value, _ in available]
        total = float(len(available))

    value = sum(weight * value for _, value, weight in available) / total

    return BlendOutcome(
        value=value,
        source=ChosenSource.BLEND,
        contributors=tuple(engine for engine, _, weight in available if weight > 0),
    )


def apply_override(
    attr: AttrAdjustment, value: float, note: Optional[str] = None
) -> AttrAdjustment:
    """
    Copy of the attribute row with a manual chosen value.

    Engine estimates and the stored blend are kept, so the override can be
    cleared later. The override lasts until the next compute.

    Raises:
        ValidationError: If value is not a finite number
    """
    if not is_number(value):
        raise ValidationError(["value must be a finite number"], concern="override")
    return replace(
        attr, chosen=ChosenValue(value=float(value), source=ChosenSource.MANUAL, note=note)
    )


def clear_override(attr: AttrAdjustment) -> AttrAdjustment:
    """Copy of the attribute row with the blended value restored."""
    if attr.chosen.source != ChosenSource.MANUAL:
        return attr
    return replace(
        attr, chosen=ChosenValue(value=attr.blended_value, source=ChosenSource.BLEND)
    )


def validate_engine_settings(settings: EngineSettings) -> List[str]:
    """Validate blender settings. Returns a list of error strings."""
    errors = []
    weights = settings.weights.to_dict()
    for engine, weight in weights.items():
        if not is_number(weight):
            errors.append(f"{engine} engine weight must be a number")
        elif weight < 0:
            errors.append(f"{engine} engine weight must not be negative")
    if not errors and sum(weights.values()) <= 0:
        errors.append("At least one engine weight must be greater than 0")

    places = settings.decimal_places
    if isinstance(places, bool) or not isinstance(places, int) or not 0 <= places <= 6:
        errors.append("decimalPlaces must be an integer between 0 and 6")

    cap = settings.cap_pct_per_attr
    if cap is not None and (not is_number(cap) or not 0 < cap <= 100):
        errors.append("capPctPerAttr must be between 0 and 100")

    return errors
