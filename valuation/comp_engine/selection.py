"""
Selection State Management

Locking, primary-slot assignment and polygon restriction for an order's
comp selection. Every operation returns a new CompSelection; the input is
left untouched, so a rejected operation cannot leave partial changes.

Rules:
- `primary` always has exactly three slots, empties compacted to the end
- A comp id occupies at most one primary slot
- A locked comp in a primary slot is never replaced without confirmation
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from valuation.errors import LockedSlotConflict, ValidationError

from .models import EMPTY_SLOT, PRIMARY_SLOTS, CompProperty, CompSelection


logger = logging.getLogger(__name__)


def compact_primary(slots: Iterable[str]) -> tuple:
    """
    Drop duplicates and empties, keep order, pad to three slots.

    Raises:
        ValidationError: If more than three distinct comps are given
    """
    filled = list(dict.fromkeys(slot for slot in slots if slot))
    if len(filled) > PRIMARY_SLOTS:
        raise ValidationError(
            [f"At most {PRIMARY_SLOTS} primary comps allowed, got {len(filled)}"],
            concern="selection",
        )
    return tuple(filled + [EMPTY_SLOT] * (PRIMARY_SLOTS - len(filled)))


def lock(selection: CompSelection, comp_id: str, locked: bool) -> CompSelection:
    """
    Set or clear a comp's lock. Idempotent.

    Args:
        selection: Current selection
        comp_id: Comp to lock or unlock
        locked: Desired lock state

    Returns:
        Updated selection
    """
    if not comp_id:
        raise ValidationError(["compId is required"], concern="selection")

    if locked:
        if comp_id in selection.locked:
            return selection
        return replace(selection, locked=selection.locked + (comp_id,))

    if comp_id not in selection.locked:
        return selection
    return replace(
        selection,
        locked=tuple(existing for existing in selection.locked if existing != comp_id),
    )


def update_selection(
    selection: CompSelection,
    restrict_to_polygon: Optional[bool] = None,
    primary: Optional[List[str]] = None,
    locked: Optional[List[str]] = None,
) -> CompSelection:
    """
    Merge a partial update into the selection.

    Fields left as None keep their current value. A replacement `primary`
    list may not silently drop a locked comp that currently holds a slot.

    Raises:
        ValidationError: If the merged selection is malformed
        LockedSlotConflict: If a locked primary would be removed
    """
    changes = {}

    if restrict_to_polygon is not None:
        changes["restrict_to_polygon"] = bool(restrict_to_polygon)

    if locked is not None:
        changes["locked"] = tuple(dict.fromkeys(comp_id for comp_id in locked if comp_id))

    if primary is not None:
        new_primary = compact_primary(primary)
        effective_locks = changes.get("locked", selection.locked)
        for index, comp_id in enumerate(selection.primary):
            if comp_id and comp_id in effective_locks and comp_id not in new_primary:
                raise LockedSlotConflict(comp_id, index)
        changes["primary"] = new_primary

    if not changes:
        return selection
    return replace(selection, **changes)


def swap(
    selection: CompSelection,
    candidate_id: str,
    target_index: int,
    confirm: bool = False,
) -> CompSelection:
    """
    Place a candidate into a primary slot.

    The candidate is removed from any other slot, written at target_index,
    and empty slots are compacted to the end.

    Args:
        selection: Current selection
        candidate_id: Comp to promote
        target_index: Slot 0, 1 or 2
        confirm: Caller confirmed replacing a locked occupant

    Returns:
        Updated selection

    Raises:
        ValidationError: If the candidate or slot is invalid
        LockedSlotConflict: If the occupant is locked and confirm is False
    """
    errors = []
    if not candidate_id:
        errors.append("candidateId is required")
    if (
        isinstance(target_index, bool)
        or not isinstance(target_index, int)
        or not 0 <= target_index < PRIMARY_SLOTS
    ):
        errors.append(f"targetIndex must be between 0 and {PRIMARY_SLOTS - 1}")
    if errors:
        raise ValidationError(errors, concern="swap")

    occupant = selection.primary[target_index]
    if occupant == candidate_id:
        return selection

    if occupant and occupant in selection.locked and not confirm:
        logger.warning(
            "Swap of %s into slot %d refused: %s is locked",
            candidate_id,
            target_index,
            occupant,
        )
        raise LockedSlotConflict(occupant, target_index)

    slots = [
        EMPTY_SLOT if (slot == candidate_id and index != target_index) else slot
        for index, slot in enumerate(selection.primary)
    ]
    slots[target_index] = candidate_id

    return replace(selection, primary=compact_primary(slots))


def annotate_comps(
    comps: List[CompProperty], selection: CompSelection
) -> List[CompProperty]:
    """Copies of the comps with locked / primary flags from the selection."""
    annotated = []
    for comp in comps:
        index = (
            selection.primary.index(comp.id) if comp.id in selection.primary else None
        )
        annotated.append(
            replace(
                comp,
                locked=comp.id in selection.locked,
                is_primary=index is not None,
                primary_index=index,
            )
        )
    return annotated


def restrict_to_polygon(
    comps: List[CompProperty], selection: CompSelection
) -> List[CompProperty]:
    """
    Apply the selection's polygon restriction.

    When the flag is on, only comps known to be inside the market polygon
    remain, plus locked comps, which are never filtered away.
    """
    if not selection.restrict_to_polygon:
        return list(comps)
    return [
        comp
        for comp in comps
        if comp.is_inside_polygon is True or comp.id in selection.locked
    ]
