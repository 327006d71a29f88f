"""
Shared fixtures: the sample subject and its eight-comp candidate pool.

comp-4 is the closest match on every attribute but sits 1.1 miles away,
outside the default 0.5 mile cap. comp-8 is 20% larger than the subject,
outside the default 10% GLA tolerance. comp-9 and comp-10 are listings.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from valuation.comp_engine import (
    CompProperty,
    CompSelection,
    CompType,
    ListingStatus,
    MarketBasis,
    SubjectProperty,
    TimeAdjustments,
)


SAMPLE_COMPS = [
    # id, price, miles, months, gla, quality, condition, bed, bath, garage, lot, age, view, pool
    ("comp-1", 455000, 0.20, 2, 2050, 3, 3, 3, 2.0, 2, 7600, 18, 1, False),
    ("comp-2", 440000, 0.35, 4, 1950, 3, 3, 3, 2.0, 2, 7200, 22, 1, False),
    ("comp-3", 470000, 0.40, 3, 2100, 3, 4, 4, 2.5, 2, 8000, 15, 1, False),
    ("comp-4", 480000, 1.10, 1, 2000, 3, 3, 3, 2.0, 2, 7500, 20, 1, False),
    ("comp-5", 430000, 0.45, 6, 1900, 3, 3, 3, 2.0, 1, 7000, 25, 1, False),
    ("comp-6", 500000, 0.30, 8, 2150, 4, 3, 4, 3.0, 2, 9000, 10, 2, True),
    ("comp-7", 410000, 0.50, 10, 1850, 2, 3, 3, 1.5, 1, 6800, 30, 0, False),
    ("comp-8", 445000, 0.25, 5, 2400, 3, 3, 4, 2.5, 2, 8200, 19, 1, False),
]


@pytest.fixture
def subject():
    """Standard subject property."""
    return SubjectProperty(
        id="subject-1",
        address="100 Main St",
        gla=2000,
        quality=3,
        condition=3,
        bed=3,
        bath=2.0,
        garage=2,
        lot_size=7500,
        age=20,
        view=1,
        pool=False,
    )


@pytest.fixture
def make_comp():
    """Factory fixture for creating comps with sensible defaults."""
    def _create(
        comp_id: str,
        sale_price: float = 450000,
        distance_miles: float = 0.2,
        months_since_sale: float = 3,
        gla: float = 2000,
        quality: int = 3,
        condition: int = 3,
        comp_type: CompType = CompType.SALE,
        status: ListingStatus = None,
        is_inside_polygon: bool = True,
        **attributes,
    ) -> CompProperty:
        if status is None:
            status = ListingStatus.SOLD if comp_type == CompType.SALE else ListingStatus.ACTIVE
        return CompProperty(
            id=comp_id,
            sale_price=sale_price,
            distance_miles=distance_miles,
            months_since_sale=months_since_sale,
            gla=gla,
            quality=quality,
            condition=condition,
            comp_type=comp_type,
            status=status,
            is_inside_polygon=is_inside_polygon,
            **attributes,
        )
    return _create


@pytest.fixture
def sample_comps(make_comp):
    """The eight sample sales."""
    return [
        make_comp(
            comp_id,
            sale_price=price,
            distance_miles=miles,
            months_since_sale=months,
            gla=gla,
            quality=quality,
            condition=condition,
            bed=bed,
            bath=bath,
            garage=garage,
            lot_size=lot,
            age=age,
            view=view,
            pool=pool,
        )
        for (
            comp_id, price, miles, months, gla, quality, condition,
            bed, bath, garage, lot, age, view, pool,
        ) in SAMPLE_COMPS
    ]


@pytest.fixture
def sample_listings(make_comp):
    return [
        make_comp("comp-9", sale_price=465000, months_since_sale=0, comp_type=CompType.LISTING),
        make_comp(
            "comp-10",
            sale_price=452000,
            months_since_sale=0,
            gla=1980,
            comp_type=CompType.LISTING,
            status=ListingStatus.PENDING,
        ),
    ]


@pytest.fixture
def time_adjustments():
    """Flat market: trended prices equal sale prices."""
    return TimeAdjustments(
        basis=MarketBasis.SALE_PRICE,
        pct_per_month=0.0,
        effective_date=date(2025, 1, 15),
    )


@pytest.fixture
def selection():
    return CompSelection(order_id="order-1")
