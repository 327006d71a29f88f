"""
Weight & Constraint Validation

Pure validators for every configuration record that influences scoring,
bracketing or blending. Each returns a list of error strings; an empty list
means valid. Values are never clamped: out-of-range input is an error.

`ensure_valid` converts a non-empty error list into a ValidationError for
callers that must refuse to persist or apply an invalid set.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Union

from valuation.comp_engine.models import (
    CONSTRAINT_KEYS,
    HILO_WEIGHT_KEYS,
    WEIGHT_KEYS,
    CenterBasis,
    ConstraintSet,
    HiLoSettings,
    WeightSet,
)
from valuation.defaults import (
    BOX_PCT_MAX,
    DISTANCE_CAP_MILES_MAX,
    DISTANCE_CAP_MILES_MIN,
    GLA_TOLERANCE_PCT_MAX,
    GLA_TOLERANCE_PCT_MIN,
    MAX_BRACKET_SIZE,
    WEIGHT_MAX,
    WEIGHT_MIN,
)
from valuation.errors import ValidationError


# =============================================================================
# Helpers
# =============================================================================


def is_number(value: Any) -> bool:
    """True for finite ints/floats; bools and NaN are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _weights_mapping(weights: Union[WeightSet, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(weights, WeightSet):
        return weights.to_dict()
    return weights


def _constraints_mapping(
    constraints: Union[ConstraintSet, Mapping[str, Any]],
) -> Mapping[str, Any]:
    if isinstance(constraints, ConstraintSet):
        return constraints.to_dict()
    return constraints


def ensure_valid(errors: list[str], concern: str) -> None:
    """
    Raise ValidationError when any validation errors were collected.

    Args:
        errors: Output of one or more validators
        concern: What was validated, for the error message

    Raises:
        ValidationError: If errors is non-empty
    """
    if errors:
        raise ValidationError(errors, concern=concern)


# =============================================================================
# Validators
# =============================================================================


def validate_weights(weights: Union[WeightSet, Mapping[str, Any]]) -> list[str]:
    """
    Validate a weight set.

    Every criterion must be present, numeric and within [0, 10].

    Args:
        weights: WeightSet or raw mapping keyed by criterion name

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []
    data = _weights_mapping(weights)

    for key in WEIGHT_KEYS:
        value = data.get(key)
        if value is None:
            errors.append(f"{key} weight is required")
        elif not is_number(value):
            errors.append(f"{key} weight must be a number")
        elif value < WEIGHT_MIN or value > WEIGHT_MAX:
            errors.append(
                f"{key} weight must be between {WEIGHT_MIN:g} and {WEIGHT_MAX:g}"
            )

    return errors


def validate_constraints(
    constraints: Union[ConstraintSet, Mapping[str, Any]],
) -> list[str]:
    """
    Validate a constraint set.

    Args:
        constraints: ConstraintSet or raw mapping with camelCase keys

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []
    data = _constraints_mapping(constraints)

    for key in CONSTRAINT_KEYS:
        value = data.get(key)
        if value is None:
            errors.append(f"{key} is required")
        elif not is_number(value):
            errors.append(f"{key} must be a number")

    tolerance = data.get("glaTolerancePct")
    if is_number(tolerance) and not (
        GLA_TOLERANCE_PCT_MIN <= tolerance <= GLA_TOLERANCE_PCT_MAX
    ):
        errors.append(
            f"GLA tolerance must be between {GLA_TOLERANCE_PCT_MIN:g}% "
            f"and {GLA_TOLERANCE_PCT_MAX:g}%"
        )

    cap = data.get("distanceCapMiles")
    if is_number(cap):
        if cap <= 0:
            errors.append("Distance cap must be greater than 0")
        elif not (DISTANCE_CAP_MILES_MIN <= cap <= DISTANCE_CAP_MILES_MAX):
            errors.append(
                f"Distance cap must be between {DISTANCE_CAP_MILES_MIN:g} "
                f"and {DISTANCE_CAP_MILES_MAX:g} miles"
            )

    return errors


def validate_weight_set(
    weights: Union[WeightSet, Mapping[str, Any]],
    constraints: Union[ConstraintSet, Mapping[str, Any]],
) -> list[str]:
    """Validate weights and constraints together (both must pass)."""
    return validate_weights(weights) + validate_constraints(constraints)


def validate_hilo_settings(settings: HiLoSettings) -> list[str]:
    """
    Validate bracket settings.

    Args:
        settings: HiLoSettings to check

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    if not isinstance(settings.center_basis, CenterBasis):
        errors.append(f"Unknown center basis: {settings.center_basis}")

    if not is_number(settings.box_pct):
        errors.append("boxPct must be a number")
    elif settings.box_pct <= 0 or settings.box_pct > BOX_PCT_MAX:
        errors.append(f"boxPct must be greater than 0 and at most {BOX_PCT_MAX:g}")

    if isinstance(settings.max_sales, bool) or not isinstance(settings.max_sales, int):
        errors.append("maxSales must be an integer")
    elif not 1 <= settings.max_sales <= MAX_BRACKET_SIZE:
        errors.append(f"maxSales must be between 1 and {MAX_BRACKET_SIZE}")

    if isinstance(settings.max_listings, bool) or not isinstance(
        settings.max_listings, int
    ):
        errors.append("maxListings must be an integer")
    elif not 0 <= settings.max_listings <= MAX_BRACKET_SIZE:
        errors.append(f"maxListings must be between 0 and {MAX_BRACKET_SIZE}")

    for key in HILO_WEIGHT_KEYS:
        value = settings.weights.get(key)
        if value is None:
            errors.append(f"{key} weight is required")
        elif not is_number(value) or value < 0:
            errors.append(f"{key} weight must be a non-negative number")

    unknown = sorted(set(settings.weights) - set(HILO_WEIGHT_KEYS))
    if unknown:
        errors.append(f"Unknown bracket weight(s): {', '.join(unknown)}")

    return errors
