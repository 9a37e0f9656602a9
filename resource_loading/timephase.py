"""
Time-phased reporting series.

Buckets assignment periods by day, ISO week (Monday start) or calendar month
and turns them into cumulative S-curve/EVM series and per-category commodity
curves.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Sequence

import pandas as pd

from .curves import DailyIncrement, DistributionCurve, distribute
from .models import (
    CATEGORIES,
    DEFAULT_MAX_SPAN_DAYS,
    Allocation,
    AssignmentPeriod,
    Resource,
    is_weekend,
)

logger = logging.getLogger(__name__)

GROUP_BY_OPTIONS = ("day", "week", "month")

_SERIES = ("planned", "actual", "remaining", "earned_value")

_MEASURE_FIELDS: Dict[str, Dict[str, str]] = {
    "cost": {
        "planned": "planned_cost",
        "actual": "actual_cost",
        "remaining": "remaining_cost",
        "earned_value": "earned_value",
    },
    "quantity": {
        "planned": "planned_quantity",
        "actual": "actual_quantity",
        "remaining": "remaining_quantity",
        "earned_value": "earned_quantity",
    },
}


def _check_group_by(group_by: str) -> None:
    if group_by not in GROUP_BY_OPTIONS:
        raise ValueError(
            f"unsupported group_by '{group_by}' (expected one of {', '.join(GROUP_BY_OPTIONS)})"
        )


def bucket_start(day: date, group_by: str) -> date:
    _check_group_by(group_by)
    if group_by == "week":
        return day - timedelta(days=day.weekday())
    if group_by == "month":
        return date(day.year, day.month, 1)
    return day


@dataclass(frozen=True)
class EVMMetrics:
    planned: float
    actual: float
    earned_value: float
    spi: float
    cpi: float
    cost_variance: float
    schedule_variance: float
    bac: float
    eac: float
    vac: float
    etc: float
    percent_complete: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def compute_evm(planned: float, actual: float, earned_value: float) -> EVMMetrics:
    """Derive EVM indices from final cumulative planned/actual/earned values."""
    spi = earned_value / planned if planned > 0 else 1.0
    cpi = earned_value / actual if actual > 0 else 1.0
    bac = planned
    eac = bac / cpi if cpi > 0 else bac
    return EVMMetrics(
        planned=planned,
        actual=actual,
        earned_value=earned_value,
        spi=spi,
        cpi=cpi,
        cost_variance=earned_value - actual,
        schedule_variance=earned_value - planned,
        bac=bac,
        eac=eac,
        vac=bac - eac,
        etc=eac - actual,
        percent_complete=(earned_value / bac) * 100 if bac > 0 else 0.0,
    )


@dataclass(frozen=True)
class SCurve:
    series: pd.DataFrame
    metrics: EVMMetrics


@dataclass(frozen=True)
class CommodityCurves:
    series: pd.DataFrame
    distribution: Dict[str, float]


def _cumulative_columns(names: Iterable[str]) -> List[str]:
    return [f"{name}_cumulative" for name in names]


def build_s_curve(
    periods: Sequence[AssignmentPeriod], group_by: str = "week", *, measure: str = "cost"
) -> SCurve:
    if measure not in _MEASURE_FIELDS:
        raise ValueError(f"unsupported measure '{measure}' (expected cost or quantity)")
    _check_group_by(group_by)
    columns = ["period", *_SERIES, *_cumulative_columns(_SERIES)]
    if not periods:
        return SCurve(pd.DataFrame(columns=columns), compute_evm(0.0, 0.0, 0.0))
    fields = _MEASURE_FIELDS[measure]
    df = pd.DataFrame(
        {
            "period": [bucket_start(p.period_start, group_by) for p in periods],
            **{series: [float(getattr(p, fields[series])) for p in periods] for series in _SERIES},
        }
    )
    grouped = df.groupby("period", sort=True)[list(_SERIES)].sum().reset_index()
    for series in _SERIES:
        grouped[f"{series}_cumulative"] = grouped[series].cumsum()
    last = grouped.iloc[-1]
    metrics = compute_evm(
        float(last["planned_cumulative"]),
        float(last["actual_cumulative"]),
        float(last["earned_value_cumulative"]),
    )
    logger.debug("S-curve built with %d %s bucket(s)", len(grouped), group_by)
    return SCurve(grouped[columns], metrics)


def build_commodity_curves(
    periods: Sequence[AssignmentPeriod], resources: Iterable[Resource], group_by: str = "week"
) -> CommodityCurves:
    _check_group_by(group_by)
    categories = list(CATEGORIES)
    columns = ["period", *categories, "total", *_cumulative_columns([*categories, "total"])]
    empty_distribution = {category: 0.0 for category in categories}
    if not periods:
        return CommodityCurves(pd.DataFrame(columns=columns), empty_distribution)
    category_by_resource = {resource.id: resource.category for resource in resources}
    rows = []
    for period in periods:
        category = category_by_resource.get(period.resource_id)
        if category is None:
            logger.debug("Period for unknown resource %s counted as other", period.resource_id)
            category = "other"
        rows.append(
            {
                "period": bucket_start(period.period_start, group_by),
                "category": category if category in categories else "other",
                "planned_cost": float(period.planned_cost),
            }
        )
    df = pd.DataFrame(rows)
    pivot = (
        df.pivot_table(index="period", columns="category", values="planned_cost", aggfunc="sum")
        .reindex(columns=categories)
        .fillna(0.0)
        .sort_index()
    )
    pivot.columns.name = None
    pivot["total"] = pivot[categories].sum(axis=1)
    for name in [*categories, "total"]:
        pivot[f"{name}_cumulative"] = pivot[name].cumsum()
    series = pivot.reset_index()[columns]
    grand_total = float(series["total_cumulative"].iloc[-1])
    if grand_total == 0:
        distribution = empty_distribution
    else:
        distribution = {
            category: float(series[f"{category}_cumulative"].iloc[-1]) / grand_total * 100
            for category in categories
        }
    return CommodityCurves(series, distribution)


def _working_increments(increments: List[DailyIncrement], total: float) -> List[DailyIncrement]:
    """Move weekend shares onto the weekdays of the span, keeping the total."""
    weekdays = [inc for inc in increments if not is_weekend(inc.date)]
    if not weekdays:
        return []
    weekday_sum = sum(inc.quantity for inc in weekdays)
    if weekday_sum > 0:
        scaled = [DailyIncrement(inc.date, inc.quantity * total / weekday_sum) for inc in weekdays]
    else:
        scaled = [DailyIncrement(inc.date, total / len(weekdays)) for inc in weekdays]
    assigned = sum(inc.quantity for inc in scaled[:-1])
    scaled[-1] = DailyIncrement(scaled[-1].date, max(0.0, total - assigned))
    return scaled


def time_phase_allocation(
    allocation: Allocation,
    resource: Resource,
    curve: DistributionCurve,
    *,
    skip_weekends: bool = False,
    max_span_days: int = DEFAULT_MAX_SPAN_DAYS,
) -> List[AssignmentPeriod]:
    """Daily planned periods for one allocation, priced at its rate tier.

    With ``skip_weekends`` the quantity is derived from weekdays only and the
    curve's weekend shares are spread over the weekdays of the span.
    """
    total = allocation.total_quantity(resource.daily_capacity, skip_weekends)
    rate = resource.rate_for(allocation.rate_type)
    increments = distribute(
        total, allocation.date_start, allocation.date_end, curve, max_span_days=max_span_days
    )
    if skip_weekends:
        increments = _working_increments(increments, total)
        if not increments:
            logger.warning("Allocation %s has no weekdays to time-phase", allocation.id)
    periods: List[AssignmentPeriod] = []
    for idx, increment in enumerate(increments):
        cost = increment.quantity * rate
        if idx == 0:
            cost += resource.per_use_cost
        periods.append(
            AssignmentPeriod(
                allocation_id=allocation.id,
                resource_id=allocation.resource_id,
                activity_id=allocation.activity_id,
                period_start=increment.date,
                planned_quantity=increment.quantity,
                remaining_quantity=increment.quantity,
                planned_cost=cost,
                remaining_cost=cost,
            )
        )
    return periods
