"""
Pipeline Errors

Exception taxonomy shared by every valuation stage. Each error carries the
structured detail a caller needs to decide how to respond (re-issue with
confirmation, fix input, report a missing record) without parsing messages.

Insufficient engine data is deliberately absent: an engine without enough
comps returns no estimate and the blend carries on.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all valuation pipeline errors."""

    pass


class ValidationError(PipelineError):
    """Raised when weights, constraints or settings fail validation."""

    def __init__(self, errors: list[str], concern: str = "input"):
        self.errors = list(errors)
        self.concern = concern
        super().__init__(f"Invalid {concern}: {'; '.join(self.errors)}")


class LockedSlotConflict(PipelineError):
    """
    Raised when a swap targets a primary slot held by a locked comp.

    Recoverable: the caller re-issues the swap with confirmation or cancels.
    """

    def __init__(self, comp_id: str, target_index: int):
        self.comp_id = comp_id
        self.target_index = target_index
        super().__init__(
            f"Primary slot #{target_index + 1} holds locked comp {comp_id}; "
            "confirmation required to replace it"
        )


class PreconditionMissing(PipelineError):
    """Raised when an operation's required inputs have not been resolved."""

    def __init__(self, message: str, missing: Optional[str] = None):
        self.missing = missing
        super().__init__(message)


class NoCandidatesAvailable(PreconditionMissing):
    """Raised when the filtered candidate pool for bracketing is empty."""

    def __init__(self, message: str = "No candidates available for bracketing"):
        super().__init__(message, missing="candidates")


class NotFound(PipelineError):
    """Raised for unknown orders, comps, attributes or runs."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"Unknown {kind}: {key}")
