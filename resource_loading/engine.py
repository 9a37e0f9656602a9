from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import pandas as pd

from .curves import DailyIncrement, DistributionCurve, distribute, resolve_curve
from .models import (
    DEFAULT_MAX_SPAN_DAYS,
    SEVERITY_RANK,
    Allocation,
    AssignmentPeriod,
    ConflictEpisode,
    ConflictSeverity,
    DailyLoad,
    EngineConfig,
    NonPositiveCapacityError,
    Resource,
    ResourceDiagnostic,
    ResourceEngineError,
    is_weekend,
    iter_days,
    span_days,
)
from .timephase import (
    CommodityCurves,
    SCurve,
    build_commodity_curves,
    build_s_curve,
    time_phase_allocation,
)

logger = logging.getLogger(__name__)

EPSILON = 1e-9
ONE_DAY = timedelta(days=1)


class ResourceSource(Protocol):
    def list_resources(self) -> Sequence[Resource]: ...


class AllocationSource(Protocol):
    def list_allocations(self) -> Sequence[Allocation]: ...


class PeriodSource(Protocol):
    def list_periods(self) -> Sequence[AssignmentPeriod]: ...


def group_by_resource(allocations: Iterable[Allocation]) -> Dict[str, List[Allocation]]:
    grouped: Dict[str, List[Allocation]] = {}
    for allocation in allocations:
        grouped.setdefault(allocation.resource_id, []).append(allocation)
    return grouped


def aggregate_daily_load(
    allocations: Iterable[Allocation],
    daily_capacity: float,
    *,
    skip_weekends: bool = False,
    max_span_days: int = DEFAULT_MAX_SPAN_DAYS,
) -> Dict[date, DailyLoad]:
    """Sum each allocation's per-day load into a sparse, date-sorted map."""
    loads: Dict[date, DailyLoad] = {}
    for allocation in allocations:
        span_days(allocation.date_start, allocation.date_end, max_span_days)
        quantity = allocation.daily_load(daily_capacity)
        for day in iter_days(allocation.date_start, allocation.date_end):
            if skip_weekends and is_weekend(day):
                continue
            loads.setdefault(day, DailyLoad()).add(allocation, quantity)
    return {day: loads[day] for day in sorted(loads)}


def classify_severity(max_excess: float, capacity: float) -> ConflictSeverity:
    if capacity <= 0:
        raise ValueError("capacity must be positive to classify severity")
    if max_excess > capacity:
        return "CRITICAL"
    ratio = max_excess / capacity
    if ratio > 0.5:
        return "HIGH"
    if ratio > 0.25:
        return "MEDIUM"
    return "LOW"


@dataclass
class OpenEpisode:
    start: date
    last: date
    max_excess: float
    peak_load: float
    allocation_ids: Dict[str, None] = field(default_factory=dict)
    activity_ids: Dict[str, None] = field(default_factory=dict)

    def extend(self, day: date, load: DailyLoad, capacity: float) -> None:
        self.last = day
        self.max_excess = max(self.max_excess, load.total - capacity)
        self.peak_load = max(self.peak_load, load.total)
        for allocation_id in load.allocation_ids:
            self.allocation_ids.setdefault(allocation_id, None)
        for activity_id in load.activity_ids:
            self.activity_ids.setdefault(activity_id, None)

    def close(self, resource_id: str, capacity: float) -> ConflictEpisode:
        return ConflictEpisode(
            resource_id=resource_id,
            date_start=self.start,
            date_end=self.last,
            capacity=capacity,
            peak_load=self.peak_load,
            max_excess=self.max_excess,
            allocation_ids=tuple(self.allocation_ids),
            activity_ids=tuple(self.activity_ids),
            severity=classify_severity(self.max_excess, capacity),
        )


class ConflictScanner:
    """Run-length detector over date-ordered daily loads.

    States are "no open episode" (``episode is None``) and an ``OpenEpisode``.
    An episode closes on the first day at or under capacity, on a gap in the
    calendar (a missing day carries no load), or at ``finish()``.
    """

    def __init__(self, resource_id: str, capacity: float) -> None:
        if capacity <= 0:
            raise NonPositiveCapacityError(resource_id, capacity)
        self.resource_id = resource_id
        self.capacity = capacity
        self.episode: Optional[OpenEpisode] = None
        self.closed: List[ConflictEpisode] = []

    def _close(self) -> None:
        if self.episode is not None:
            self.closed.append(self.episode.close(self.resource_id, self.capacity))
            self.episode = None

    def feed(self, day: date, load: DailyLoad) -> None:
        if self.episode is not None and day != self.episode.last + ONE_DAY:
            self._close()
        if load.total <= self.capacity:
            self._close()
            return
        if self.episode is None:
            self.episode = OpenEpisode(start=day, last=day, max_excess=0.0, peak_load=0.0)
        self.episode.extend(day, load, self.capacity)

    def finish(self) -> List[ConflictEpisode]:
        self._close()
        return list(self.closed)


def detect_episodes(
    resource_id: str, daily_loads: Dict[date, DailyLoad], capacity: float
) -> List[ConflictEpisode]:
    scanner = ConflictScanner(resource_id, capacity)
    for day in sorted(daily_loads):
        scanner.feed(day, daily_loads[day])
    return scanner.finish()


def build_histogram(
    allocations: Sequence[Allocation],
    resource: Resource,
    date_start: date,
    date_end: date,
    *,
    skip_weekends: bool = False,
    max_span_days: int = DEFAULT_MAX_SPAN_DAYS,
) -> pd.DataFrame:
    span_days(date_start, date_end, max_span_days)
    loads = aggregate_daily_load(
        [a for a in allocations if a.date_end >= date_start and a.date_start <= date_end],
        resource.daily_capacity,
        skip_weekends=skip_weekends,
        max_span_days=max_span_days,
    )
    rows = []
    for day in iter_days(date_start, date_end):
        capacity = 0.0 if skip_weekends and is_weekend(day) else resource.daily_capacity
        allocated = loads[day].total if day in loads else 0.0
        rows.append(
            {
                "date": day,
                "allocated": allocated,
                "capacity": capacity,
                "utilization_pct": (allocated / capacity) * 100 if capacity > 0 else 0.0,
                "overallocation": max(0.0, allocated - capacity) if capacity > 0 else 0.0,
            }
        )
    frame = pd.DataFrame(
        rows, columns=["date", "allocated", "capacity", "utilization_pct", "overallocation"]
    )
    frame.attrs["summary"] = summarize_histogram(frame)
    return frame


@dataclass(frozen=True)
class HistogramSummary:
    total_allocated: float
    total_capacity: float
    total_overallocation: float
    peak_load: float
    utilization_rate: float


def summarize_histogram(frame: pd.DataFrame) -> HistogramSummary:
    """Window totals; utilization counts only load that fits within capacity."""
    if frame.empty:
        return HistogramSummary(0.0, 0.0, 0.0, 0.0, 0.0)
    total_capacity = float(frame["capacity"].sum())
    within = float(frame[["allocated", "capacity"]].min(axis=1).sum())
    return HistogramSummary(
        total_allocated=float(frame["allocated"].sum()),
        total_capacity=total_capacity,
        total_overallocation=float(frame["overallocation"].sum()),
        peak_load=float(frame["allocated"].max()),
        utilization_rate=within / total_capacity * 100 if total_capacity > 0 else 0.0,
    )


@dataclass(frozen=True)
class ConflictScan:
    episodes: List[ConflictEpisode]
    skipped: List[ResourceDiagnostic]

    def worst_severity(self) -> Optional[ConflictSeverity]:
        if not self.episodes:
            return None
        return max((e.severity for e in self.episodes), key=lambda s: SEVERITY_RANK[s])

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "resource_id",
            "date_start",
            "date_end",
            "days",
            "capacity",
            "peak_load",
            "max_excess",
            "excess_ratio",
            "severity",
            "allocation_ids",
            "activity_ids",
        ]
        return pd.DataFrame([e.as_row() for e in self.episodes], columns=columns)


class ResourceEngine:
    """Entry points consumed by the reporting layer.

    Data comes from repository collaborators read once per call; the engine
    keeps no state between calls.
    """

    def __init__(
        self,
        resources: ResourceSource,
        allocations: AllocationSource,
        periods: Optional[PeriodSource] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._resources = resources
        self._allocations = allocations
        self._periods = periods
        self.config = config or EngineConfig()

    def _resource_index(self) -> Dict[str, Resource]:
        return {resource.id: resource for resource in self._resources.list_resources()}

    def _check_resource(
        self, resource_id: str, resource: Optional[Resource], allocations: List[Allocation]
    ) -> Tuple[List[ConflictEpisode], Optional[ResourceDiagnostic]]:
        if resource is None:
            return [], ResourceDiagnostic(resource_id, "unknown_resource", "no resource record")
        try:
            loads = aggregate_daily_load(
                allocations,
                resource.daily_capacity,
                skip_weekends=self.config.skip_weekends,
                max_span_days=self.config.max_span_days,
            )
            return detect_episodes(resource_id, loads, resource.daily_capacity), None
        except NonPositiveCapacityError as exc:
            return [], ResourceDiagnostic(resource_id, "non_positive_capacity", str(exc))
        except ResourceEngineError as exc:
            return [], ResourceDiagnostic(resource_id, "invalid_allocation", str(exc))

    def scan_conflicts(self, resource_id: Optional[str] = None) -> ConflictScan:
        resources = self._resource_index()
        grouped = group_by_resource(self._allocations.list_allocations())
        if resource_id is not None:
            grouped = {resource_id: grouped.get(resource_id, [])}
        work = [(res_id, resources.get(res_id), allocs) for res_id, allocs in grouped.items()]
        if self.config.max_workers and self.config.max_workers > 1 and len(work) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                results = list(pool.map(lambda item: self._check_resource(*item), work))
        else:
            results = [self._check_resource(*item) for item in work]
        episodes: List[ConflictEpisode] = []
        skipped: List[ResourceDiagnostic] = []
        for episodes_for_resource, diagnostic in results:
            episodes.extend(episodes_for_resource)
            if diagnostic is not None:
                logger.warning("Skipping resource %s: %s", diagnostic.resource_id, diagnostic.detail)
                skipped.append(diagnostic)
        logger.info(
            "Detected %d conflict episode(s) across %d resource(s)", len(episodes), len(work)
        )
        return ConflictScan(episodes=episodes, skipped=skipped)

    def detect_conflicts(self, resource_id: Optional[str] = None) -> List[ConflictEpisode]:
        return self.scan_conflicts(resource_id).episodes

    def distribute(
        self, total_quantity: float, date_start: date, date_end: date, curve: object = None
    ) -> List[DailyIncrement]:
        resolved = resolve_curve(
            curve if curve is not None else self.config.default_curve, self.config.curves
        )
        return distribute(
            total_quantity, date_start, date_end, resolved, max_span_days=self.config.max_span_days
        )

    def build_histogram(self, resource_id: str, date_start: date, date_end: date) -> pd.DataFrame:
        resource = self._resource_index().get(resource_id)
        if resource is None:
            raise KeyError(f"resource '{resource_id}' not found")
        allocations = [
            a for a in self._allocations.list_allocations() if a.resource_id == resource_id
        ]
        return build_histogram(
            allocations,
            resource,
            date_start,
            date_end,
            skip_weekends=self.config.skip_weekends,
            max_span_days=self.config.max_span_days,
        )

    def curve_for(self, allocation: Allocation) -> DistributionCurve:
        return resolve_curve(
            allocation.curve_reference or self.config.default_curve, self.config.curves
        )

    def planned_periods(self, resource_id: Optional[str] = None) -> List[AssignmentPeriod]:
        resources = self._resource_index()
        periods: List[AssignmentPeriod] = []
        for allocation in self._allocations.list_allocations():
            if resource_id is not None and allocation.resource_id != resource_id:
                continue
            resource = resources.get(allocation.resource_id)
            if resource is None:
                logger.warning(
                    "Allocation %s references unknown resource %s",
                    allocation.id,
                    allocation.resource_id,
                )
                continue
            periods.extend(
                time_phase_allocation(
                    allocation,
                    resource,
                    self.curve_for(allocation),
                    skip_weekends=self.config.skip_weekends,
                    max_span_days=self.config.max_span_days,
                )
            )
        return periods

    def _periods_or_planned(
        self, resource_id: Optional[str] = None, activity_id: Optional[str] = None
    ) -> List[AssignmentPeriod]:
        if self._periods is not None:
            periods = list(self._periods.list_periods())
        else:
            periods = self.planned_periods(resource_id)
        return [
            p
            for p in periods
            if (resource_id is None or p.resource_id == resource_id)
            and (activity_id is None or p.activity_id == activity_id)
        ]

    def build_s_curve(
        self,
        group_by: str = "week",
        measure: str = "cost",
        *,
        resource_id: Optional[str] = None,
        activity_id: Optional[str] = None,
    ) -> SCurve:
        """S-curve for the project, or one resource or activity when filtered."""
        periods = self._periods_or_planned(resource_id, activity_id)
        return build_s_curve(periods, group_by, measure=measure)

    def build_commodity_curves(
        self,
        group_by: str = "week",
        *,
        resource_id: Optional[str] = None,
        activity_id: Optional[str] = None,
    ) -> CommodityCurves:
        return build_commodity_curves(
            self._periods_or_planned(resource_id, activity_id),
            self._resources.list_resources(),
            group_by,
        )
