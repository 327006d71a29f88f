"""
Market Trend Derivation

Derives the monthly market conditions rate from closed sales:

1. Keep sold records that closed in the trailing window before the
   effective date
2. Group by calendar month and drop outliers per month (1.5 x IQR)
3. Take the monthly median sale price or $/SF
4. Fit a log-linear trend over the months: Theil-Sen when enough months
   have a reliable sample, ordinary least squares otherwise

    pct_per_month = exp(slope) - 1

Records are supplied by the caller; nothing is fetched here.
"""

import logging
import math
import statistics
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from valuation.comp_engine.models import MarketBasis, TimeAdjustments, parse_date
from valuation.defaults import (
    THEIL_SEN_MIN_MONTHS,
    TREND_MIN_SALES_PER_MONTH,
    TREND_MONTHS_BACK,
)
from valuation.errors import ValidationError


logger = logging.getLogger(__name__)

THEIL_SEN = "theil-sen-log"
OLS = "ols-log"


@dataclass(frozen=True)
class MarketRecord:
    """A closed or listed sale from the market area."""

    status: str
    sale_price: Optional[float] = None
    living_area: Optional[float] = None
    close_date: Optional[date] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketRecord":
        return cls(
            status=str(data.get("status", "")).lower(),
            sale_price=data.get("salePrice"),
            living_area=data.get("livingArea", data.get("gla")),
            close_date=parse_date(data.get("closeDate")),
        )


@dataclass(frozen=True)
class MonthlyMedian:
    month: str  # YYYY-MM
    median: Optional[float]
    n: int


@dataclass(frozen=True)
class MarketTrend:
    method: str
    slope: float
    pct_per_month: float
    months: Tuple[MonthlyMedian, ...]
    qualifying_months: int


# =============================================================================
# Statistics
# =============================================================================


def percentile(sorted_values: List[float], p: float) -> float:
    """Linear-interpolated percentile of a sorted list."""
    if not sorted_values:
        return 0.0
    index = p / 100 * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return sorted_values[lower]
    return sorted_values[lower] * (upper - index) + sorted_values[upper] * (index - lower)


def iqr_filter(values: List[float]) -> List[float]:
    """Drop values outside 1.5 x IQR. Fewer than four values pass through."""
    if len(values) < 4:
        return list(values)
    ordered = sorted(values)
    q1 = percentile(ordered, 25)
    q3 = percentile(ordered, 75)
    spread = q3 - q1
    low, high = q1 - 1.5 * spread, q3 + 1.5 * spread
    return [value for value in values if low <= value <= high]


def theil_sen_slope(points: List[Tuple[float, float]]) -> float:
    """Median of all pairwise slopes."""
    slopes = [
        (y2 - y1) / (x2 - x1)
        for i, (x1, y1) in enumerate(points)
        for x2, y2 in points[i + 1:]
        if x2 != x1
    ]
    return statistics.median(slopes) if slopes else 0.0


def ols_slope(points: List[Tuple[float, float]]) -> float:
    if len(points) < 2:
        return 0.0
    mean_x = statistics.fmean(x for x, _ in points)
    mean_y = statistics.fmean(y for _, y in points)
    sxx = sum((x - mean_x) ** 2 for x, _ in points)
    if sxx == 0:
        return 0.0
    return sum((x - mean_x) * (y - mean_y) for x, y in points) / sxx


# =============================================================================
# Trend
# =============================================================================


def _month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _window(effective_date: date, months_back: int) -> List[str]:
    """Month keys ending with the effective date's month, oldest first."""
    keys = []
    year, month = effective_date.year, effective_date.month
    for _ in range(months_back):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def monthly_medians(
    records: List[MarketRecord],
    effective_date: date,
    basis: MarketBasis,
    months_back: int = TREND_MONTHS_BACK,
) -> List[MonthlyMedian]:
    """Outlier-filtered monthly medians of sold records in the window."""
    groups: Dict[str, List[float]] = {key: [] for key in _window(effective_date, months_back)}
    for record in records:
        if record.status != "sold" or record.close_date is None:
            continue
        if record.close_date > effective_date:
            continue
        if not record.sale_price or record.sale_price <= 0:
            continue
        if basis == MarketBasis.PPSF:
            if not record.living_area or record.living_area <= 0:
                continue
            value = record.sale_price / record.living_area
        else:
            value = record.sale_price
        key = _month_key(record.close_date)
        if key in groups:
            groups[key].append(value)

    result = []
    for key, values in groups.items():
        kept = iqr_filter(values)
        result.append(
            MonthlyMedian(
                month=key,
                median=statistics.median(kept) if kept else None,
                n=len(kept),
            )
        )
    return result


def analyze_trend(
    records: List[MarketRecord],
    effective_date: date,
    basis: MarketBasis,
    months_back: int = TREND_MONTHS_BACK,
    min_sales_per_month: int = TREND_MIN_SALES_PER_MONTH,
) -> MarketTrend:
    """Fit the log-linear monthly trend and report how it was fitted."""
    months = monthly_medians(records, effective_date, basis, months_back)
    points = [
        (float(index), math.log(month.median))
        for index, month in enumerate(months)
        if month.median and month.median > 0
    ]
    qualifying = sum(1 for month in months if month.n >= min_sales_per_month)

    if qualifying >= THEIL_SEN_MIN_MONTHS:
        method, slope = THEIL_SEN, theil_sen_slope(points)
    else:
        method, slope = OLS, ols_slope(points)
        if len(points) < 2:
            logger.warning(
                "Only %d month(s) of sales before %s; market trend set to 0",
                len(points),
                effective_date.isoformat(),
            )

    return MarketTrend(
        method=method,
        slope=slope,
        pct_per_month=math.exp(slope) - 1,
        months=tuple(months),
        qualifying_months=qualifying,
    )


def derive_time_adjustment(
    records: List[Any],
    effective_date: Any,
    basis: MarketBasis = MarketBasis.SALE_PRICE,
    months_back: int = TREND_MONTHS_BACK,
    min_sales_per_month: int = TREND_MIN_SALES_PER_MONTH,
) -> TimeAdjustments:
    """
    Derive TimeAdjustments from market records.

    Args:
        records: MarketRecord objects or their dict form
        effective_date: Date sale prices are trended to
        basis: Trend sale price or $/SF
        months_back: Length of the trailing window in months
        min_sales_per_month: Sample size for a month to count toward Theil-Sen

    Returns:
        TimeAdjustments with the fitted monthly rate (decimal fraction)

    Raises:
        ValidationError: If the effective date or window is invalid
    """
    resolved = parse_date(effective_date)
    errors = []
    if resolved is None:
        errors.append("effectiveDate is required")
    if isinstance(months_back, bool) or not isinstance(months_back, int) or months_back < 2:
        errors.append("monthsBack must be an integer of at least 2")
    if errors:
        raise ValidationError(errors, concern="market trend")

    parsed = [
        record if isinstance(record, MarketRecord) else MarketRecord.from_dict(record)
        for record in records
    ]
    trend = analyze_trend(parsed, resolved, basis, months_back, min_sales_per_month)
    logger.info(
        "Market trend %s over %d months (%d qualifying): %.4f%% per month",
        trend.method,
        months_back,
        trend.qualifying_months,
        trend.pct_per_month * 100,
    )
    return TimeAdjustments(
        basis=basis,
        pct_per_month=round(trend.pct_per_month, 6),
        effective_date=resolved,
    )
