"""
Time Adjustment

Compounds historical sale prices forward to the effective appraisal date:

    adjusted = sale_price * (1 + pct_per_month) ** months

On the price-per-sqft basis the same factor applies to $/SF.
"""

from datetime import date
from typing import Optional

from valuation.errors import PreconditionMissing

from .models import CompProperty, MarketBasis, TimeAdjustments
from .validation import is_number


def months_between(sale_date: date, effective_date: date) -> int:
    """
    Whole months from sale date to effective date, never negative.

    A partial month does not count: 2024-10-15 to 2025-01-14 is 2 months.
    """
    months = (effective_date.year - sale_date.year) * 12 + (
        effective_date.month - sale_date.month
    )
    if effective_date.day < sale_date.day:
        months -= 1
    return max(0, months)


def adjustment_factor(pct_per_month: float, months: float) -> float:
    """Compounding factor for a monthly rate over a number of months."""
    return (1 + pct_per_month) ** months


def require_time_adjustments(
    time_adjustments: Optional[TimeAdjustments],
) -> TimeAdjustments:
    """
    Return the time adjustments or fail the operation.

    Raises:
        PreconditionMissing: If no adjustments, no numeric rate or no
            effective date are set
    """
    if time_adjustments is None:
        raise PreconditionMissing(
            "Time adjustments must be resolved before computing values",
            missing="timeAdjustments",
        )
    if not is_number(time_adjustments.pct_per_month):
        raise PreconditionMissing(
            "Time adjustments have no monthly rate",
            missing="pctPerMonth",
        )
    if time_adjustments.effective_date is None:
        raise PreconditionMissing(
            "Time adjustments have no effective date",
            missing="effectiveDate",
        )
    return time_adjustments


def months_elapsed(comp: CompProperty, time_adjustments: TimeAdjustments) -> float:
    """Months to trend a comp: from its sale date when known, else as imported."""
    if comp.sale_date and time_adjustments.effective_date:
        return months_between(comp.sale_date, time_adjustments.effective_date)
    return comp.months_since_sale


def time_adjusted_price(comp: CompProperty, time_adjustments: TimeAdjustments) -> float:
    """Sale price trended to the effective date."""
    factor = adjustment_factor(
        time_adjustments.pct_per_month, months_elapsed(comp, time_adjustments)
    )
    return comp.sale_price * factor


def time_adjusted_value(
    comp: CompProperty, time_adjustments: TimeAdjustments
) -> Optional[float]:
    """
    Trended value in the unit of the order's market basis.

    Returns:
        Adjusted sale price, adjusted $/SF, or None when the $/SF basis is
        requested for a comp without GLA
    """
    adjusted = time_adjusted_price(comp, time_adjustments)
    if time_adjustments.basis == MarketBasis.PPSF:
        if not comp.gla or comp.gla <= 0:
            return None
        return adjusted / comp.gla
    return adjusted
