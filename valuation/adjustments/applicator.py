"""
Adjustment Applicator & Reconciliation Assembler

Turns the chosen per-unit values of an adjustment run into dollar lines on
each comp and packages the result for reporting.

Per comp and attribute:
    delta  = comp value - subject value
    amount = delta * chosen                            ($/sf, $/unit, $)
    amount = delta * chosen / 100 * time-adjusted      (%)
Each amount is capped at cap_pct_per_attr of the comp's time-adjusted price.

    indicated = time-adjusted price + sum(amounts)

Applying is a pure function of its inputs: unchanged inputs give identical
bundle content and fingerprint.
"""

import hashlib
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from utils.formatting import format_currency, format_delta, format_percent
from valuation.comp_engine.models import (
    CompProperty,
    CompSelection,
    SubjectProperty,
    TimeAdjustments,
)
from valuation.comp_engine.time_adjust import require_time_adjustments, time_adjusted_price
from valuation.defaults import DEFAULT_PRIMARY_WEIGHTS
from valuation.errors import NotFound

from .models import (
    ATTR_METADATA,
    AdjustmentLine,
    AdjustmentRunResult,
    AdjustmentsBundle,
    AttrAdjustment,
    AttrKey,
    CompAdjustmentLine,
    ReconciliationState,
    ReconciliationSummary,
    Unit,
)


logger = logging.getLogger(__name__)


# Short unit labels used in rationale text
DELTA_UNITS: Dict[AttrKey, str] = {
    AttrKey.GLA: "sf",
    AttrKey.BED: "bed",
    AttrKey.BATH: "bath",
    AttrKey.GARAGE: "bay",
    AttrKey.LOT_SIZE: "sf",
    AttrKey.AGE: "yr",
    AttrKey.QUALITY: "grade",
    AttrKey.CONDITION: "grade",
    AttrKey.VIEW: "grade",
}


# =============================================================================
# Lines
# =============================================================================


def adjustment_line(
    attr: AttrAdjustment,
    comp: CompProperty,
    subject: SubjectProperty,
    adjusted_price: float,
    cap_pct: Optional[float],
) -> Optional[AdjustmentLine]:
    """
    Dollar adjustment for one attribute of one comp.

    The cap guards every unit, not only percent attributes: no single line
    may move the comp by more than cap_pct of its time-adjusted price.

    Returns:
        AdjustmentLine, or None when either side lacks the attribute
    """
    subject_value = subject.attribute_value(attr.key.value)
    comp_value = comp.attribute_value(attr.key.value)
    if subject_value is None or comp_value is None:
        return None

    delta = comp_value - subject_value
    chosen = attr.chosen.value
    if attr.unit == Unit.PERCENT:
        amount = delta * chosen / 100 * adjusted_price
    else:
        amount = delta * chosen

    capped = False
    if cap_pct is not None:
        limit = adjusted_price * cap_pct / 100
        if abs(amount) > limit:
            amount = math.copysign(limit, amount)
            capped = True

    amount = round(amount, 2)
    return AdjustmentLine(
        key=attr.key,
        delta=delta,
        amount=amount,
        unit=attr.unit,
        rationale=_rationale(attr, delta, amount, adjusted_price, cap_pct if capped else None),
        capped=capped,
    )


def _rationale(
    attr: AttrAdjustment,
    delta: float,
    amount: float,
    adjusted_price: float,
    cap_pct: Optional[float],
) -> str:
    label = ATTR_METADATA[attr.key].label
    change = format_delta(delta, DELTA_UNITS.get(attr.key))
    if attr.unit == Unit.PERCENT:
        rate = f"{format_percent(attr.chosen.value, 2)} of {format_currency(adjusted_price)}"
    else:
        rate = format_currency(attr.chosen.value, decimals=2)
        if attr.unit != Unit.DOLLARS:
            rate = f"{rate}{attr.unit.value[1:]}"
    text = f"{label}: {change} x {rate} = {format_currency(amount, signed=True)}"
    if cap_pct is not None:
        text += f" (capped at {format_percent(cap_pct)})"
    return text


def adjust_comp(
    comp: CompProperty,
    run: AdjustmentRunResult,
    time_adjustments: TimeAdjustments,
) -> CompAdjustmentLine:
    """All adjustment lines, subtotal and indicated value for one comp."""
    adjusted = time_adjusted_price(comp, time_adjustments)
    cap_pct = run.settings.cap_pct_per_attr
    lines = []
    for attr in run.attrs:
        line = adjustment_line(attr, comp, run.input.subject, adjusted, cap_pct)
        if line is not None:
            lines.append(line)

    subtotal = round(sum(line.amount for line in lines), 2)
    return CompAdjustmentLine(
        comp_id=comp.id,
        time_adjusted_price=round(adjusted, 2),
        lines=tuple(lines),
        subtotal=subtotal,
        indicated_value=round(adjusted + subtotal, 2),
    )


# =============================================================================
# Reconciliation
# =============================================================================


def summarize(
    comp_lines: Sequence[CompAdjustmentLine],
    primary_ids: Sequence[str],
    primary_weights: Sequence[float] = DEFAULT_PRIMARY_WEIGHTS,
) -> ReconciliationSummary:
    """
    Spread of indicated values and the reconciled value.

    Primaries take their slot weight, renormalised over the primaries that
    were adjusted. Without adjusted primaries every comp counts equally.
    """
    if not comp_lines:
        return ReconciliationSummary(
            indicated_values=(), low=None, high=None, spread_pct=None, weighted_value=None
        )

    slot_weight = {
        comp_id: primary_weights[index]
        for index, comp_id in enumerate(primary_ids)
        if index < len(primary_weights)
    }
    adjusted_ids = {line.comp_id for line in comp_lines}
    total = sum(weight for comp_id, weight in slot_weight.items() if comp_id in adjusted_ids)
    if total <= 0:
        slot_weight = {line.comp_id: 1.0 for line in comp_lines}
        total = float(len(comp_lines))

    indicated: List[Tuple[str, float, float]] = [
        (line.comp_id, line.indicated_value, round(slot_weight.get(line.comp_id, 0.0) / total, 4))
        for line in comp_lines
    ]
    values = [value for _, value, _ in indicated]
    low, high = min(values), max(values)
    weighted = sum(
        slot_weight.get(line.comp_id, 0.0) * line.indicated_value for line in comp_lines
    ) / total

    return ReconciliationSummary(
        indicated_values=tuple(indicated),
        low=low,
        high=high,
        spread_pct=round((high - low) / low * 100, 2) if low > 0 else None,
        weighted_value=round(weighted, 2),
    )


def fingerprint(content: Dict[str, Any]) -> str:
    """SHA-256 of deterministic JSON."""
    serialized = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def apply_adjustments(
    run: AdjustmentRunResult,
    comps: List[CompProperty],
    time_adjustments: Optional[TimeAdjustments],
    selection: Optional[CompSelection] = None,
    primary_weights: Sequence[float] = DEFAULT_PRIMARY_WEIGHTS,
    override_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AdjustmentsBundle:
    """
    Apply a run's chosen values to its comps and assemble the bundle.

    Args:
        run: Adjustment run (chosen values, settings, subject, comp ids)
        comps: Comp records; every comp id in the run must be present
        time_adjustments: Resolved effective date and monthly rate
        selection: Current selection, for primaries and locks
        primary_weights: Weights for primary slots #1, #2, #3
        override_notes: Free-text reconciliation notes
        now: Bundle timestamp (default: current UTC time)

    Returns:
        AdjustmentsBundle

    Raises:
        PreconditionMissing: If time adjustments are not resolved
        NotFound: If a comp in the run has no record
    """
    time_adjustments = require_time_adjustments(time_adjustments)

    by_id = {comp.id: comp for comp in comps}
    comp_lines = []
    for comp_id in run.input.comp_ids:
        comp = by_id.get(comp_id)
        if comp is None:
            raise NotFound("comp", comp_id)
        comp_lines.append(adjust_comp(comp, run, time_adjustments))

    primary_ids = selection.primary_ids if selection else []
    reconciliation = ReconciliationState(
        order_id=run.input.order_id,
        primary_comp_ids=tuple(primary_ids),
        comp_locks=tuple(selection.locked) if selection else (),
        engine_settings=run.settings,
        selected_model=time_adjustments.basis,
        primary_weights=tuple(primary_weights),
        override_notes=override_notes,
    )
    summary = summarize(comp_lines, primary_ids, primary_weights)

    content = {
        "run": run.to_dict(include_timestamps=False),
        "compLines": [line.to_dict() for line in comp_lines],
        "reconciliation": reconciliation.to_dict(),
        "summary": summary.to_dict(),
    }
    bundle = AdjustmentsBundle(
        run=run,
        comp_lines=tuple(comp_lines),
        reconciliation=reconciliation,
        summary=summary,
        fingerprint=fingerprint(content),
        applied_at=now or datetime.now(timezone.utc),
    )

    capped = sum(1 for line in comp_lines for item in line.lines if item.capped)
    logger.info(
        "Applied run %s to %d comps for order %s (%d capped lines, fingerprint %s)",
        run.run_id,
        len(comp_lines),
        run.input.order_id,
        capped,
        bundle.fingerprint[:12],
    )
    return bundle
