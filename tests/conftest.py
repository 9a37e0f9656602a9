from datetime import date, timedelta

import pytest

from resource_loading.io_utils import InMemoryRepository
from resource_loading.models import Allocation, Resource


# 2024-03-04 is a Monday.
MONDAY = date(2024, 3, 4)


def day(offset: int) -> date:
    return MONDAY + timedelta(days=offset)


def make_allocation(
    alloc_id: str,
    start: int,
    end: int,
    percent_units: float = 100.0,
    resource_id: str = "R1",
    activity_id: str = None,
    **kwargs,
) -> Allocation:
    return Allocation(
        id=alloc_id,
        resource_id=resource_id,
        activity_id=activity_id or f"ACT-{alloc_id}",
        date_start=day(start),
        date_end=day(end),
        percent_units=percent_units,
        **kwargs,
    )


@pytest.fixture
def carpenter():
    return Resource(id="R1", name="Carpenter", daily_capacity=8.0, hourly_rate=50.0, category="labor")


@pytest.fixture
def repository(carpenter):
    crane = Resource(id="R2", name="Crane", daily_capacity=10.0, hourly_rate=200.0, category="equipment")
    return InMemoryRepository(
        resources=[carpenter, crane],
        allocations=[
            make_allocation("A1", 0, 2, 60.0),
            make_allocation("A2", 0, 2, 60.0),
            make_allocation("A3", 0, 4, 50.0, resource_id="R2"),
        ],
    )
