from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterator, Literal, Optional, Tuple


Category = str

CATEGORIES: Tuple[Category, ...] = ("labor", "material", "equipment", "subcontractor", "other")

_CATEGORY_ALIASES: Dict[str, Category] = {
    "labor": "labor",
    "labour": "labor",
    "work": "labor",
    "material": "material",
    "materials": "material",
    "equipment": "equipment",
    "machine": "equipment",
    "subcontractor": "subcontractor",
    "subcontract": "subcontractor",
}

ConflictSeverity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

SEVERITY_RANK: Dict[str, int] = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "CRITICAL": 3}

# Price multiplier applied to the hourly rate when a tier has no explicit rate.
RATE_MULTIPLIERS: Dict[str, float] = {
    "standard": 1.0,
    "overtime": 1.5,
    "external": 1.2,
    "special": 1.3,
    "emergency": 2.0,
}

RATE_TYPES = tuple(RATE_MULTIPLIERS)

# Roughly five years of calendar days.
DEFAULT_MAX_SPAN_DAYS = 1830


class ResourceEngineError(ValueError):
    """Base class for input validation failures raised by the engine."""


class InvalidCurveError(ResourceEngineError):
    pass


class InvalidDateRangeError(ResourceEngineError):
    def __init__(self, date_start: date, date_end: date) -> None:
        super().__init__(f"date range ends before it starts: {date_start} > {date_end}")
        self.date_start = date_start
        self.date_end = date_end


class UnboundedRangeError(ResourceEngineError):
    def __init__(self, date_start: date, date_end: date, max_span_days: int) -> None:
        days = (date_end - date_start).days + 1
        super().__init__(
            f"date range {date_start} → {date_end} spans {days} days (limit {max_span_days})"
        )
        self.date_start = date_start
        self.date_end = date_end
        self.max_span_days = max_span_days


class NonPositiveCapacityError(ResourceEngineError):
    def __init__(self, resource_id: str, capacity: float) -> None:
        super().__init__(f"resource {resource_id} has non-positive daily capacity ({capacity})")
        self.resource_id = resource_id
        self.capacity = capacity


def span_days(date_start: date, date_end: date, max_span_days: int = DEFAULT_MAX_SPAN_DAYS) -> int:
    """Number of calendar days in the inclusive span, after validation."""
    if date_end < date_start:
        raise InvalidDateRangeError(date_start, date_end)
    days = (date_end - date_start).days + 1
    if days > max_span_days:
        raise UnboundedRangeError(date_start, date_end, max_span_days)
    return days


def iter_days(date_start: date, date_end: date) -> Iterator[date]:
    current = date_start
    step = timedelta(days=1)
    while current <= date_end:
        yield current
        current += step


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def working_days(date_start: date, date_end: date, skip_weekends: bool = False) -> int:
    if not skip_weekends:
        return max((date_end - date_start).days + 1, 0)
    return sum(1 for day in iter_days(date_start, date_end) if not is_weekend(day))


def category_from_label(label: Optional[str]) -> Category:
    if not label:
        return "other"
    return _CATEGORY_ALIASES.get(str(label).strip().lower(), "other")


@dataclass(frozen=True)
class Resource:
    """Resource record as supplied by the resource repository."""

    id: str
    name: str
    daily_capacity: float
    hourly_rate: float = 0.0
    overtime_rate: float = 0.0
    per_use_cost: float = 0.0
    fixed_cost: float = 0.0
    category: Category = "other"
    tier_rates: Dict[str, float] = field(default_factory=dict)

    def rate_for(self, rate_type: str) -> float:
        """Price per unit for a rate tier.

        An explicit tier rate wins; otherwise the hourly rate is scaled by the
        tier multiplier.
        """
        if rate_type not in RATE_MULTIPLIERS:
            raise ValueError(f"unsupported rate_type '{rate_type}'")
        explicit = self.tier_rates.get(rate_type, 0.0)
        if rate_type == "overtime" and explicit <= 0:
            explicit = self.overtime_rate
        if explicit > 0:
            return explicit
        return self.hourly_rate * RATE_MULTIPLIERS[rate_type]


@dataclass(frozen=True)
class Allocation:
    """A resource's fractional commitment to an activity over an inclusive date range."""

    id: str
    resource_id: str
    activity_id: str
    date_start: date
    date_end: date
    percent_units: float = 100.0
    curve_reference: Optional[str] = None
    rate_type: str = "standard"
    planned_quantity: float = 0.0

    def daily_load(self, daily_capacity: float) -> float:
        return daily_capacity * (self.percent_units / 100.0)

    def covers(self, day: date) -> bool:
        return self.date_start <= day <= self.date_end

    def total_quantity(self, daily_capacity: float, skip_weekends: bool = False) -> float:
        if self.planned_quantity > 0:
            return self.planned_quantity
        days = working_days(self.date_start, self.date_end, skip_weekends)
        return self.daily_load(daily_capacity) * days


@dataclass(frozen=True)
class AssignmentPeriod:
    """One time bucket of an allocation's planned/actual/remaining values."""

    allocation_id: str
    resource_id: str
    activity_id: str
    period_start: date
    planned_quantity: float = 0.0
    actual_quantity: float = 0.0
    remaining_quantity: float = 0.0
    planned_cost: float = 0.0
    actual_cost: float = 0.0
    remaining_cost: float = 0.0
    earned_value: float = 0.0
    earned_quantity: float = 0.0


@dataclass
class DailyLoad:
    total: float = 0.0
    allocation_ids: Dict[str, None] = field(default_factory=dict)
    activity_ids: Dict[str, None] = field(default_factory=dict)

    def add(self, allocation: Allocation, quantity: float) -> None:
        self.total += quantity
        self.allocation_ids.setdefault(allocation.id, None)
        self.activity_ids.setdefault(allocation.activity_id, None)


@dataclass(frozen=True)
class ConflictEpisode:
    """Maximal run of consecutive days where a resource's load exceeds capacity."""

    resource_id: str
    date_start: date
    date_end: date
    capacity: float
    peak_load: float
    max_excess: float
    allocation_ids: Tuple[str, ...]
    activity_ids: Tuple[str, ...]
    severity: ConflictSeverity

    @property
    def excess_ratio(self) -> float:
        return self.max_excess / self.capacity

    @property
    def days(self) -> int:
        return (self.date_end - self.date_start).days + 1

    def as_row(self) -> Dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "date_start": self.date_start.isoformat(),
            "date_end": self.date_end.isoformat(),
            "days": self.days,
            "capacity": self.capacity,
            "peak_load": self.peak_load,
            "max_excess": self.max_excess,
            "excess_ratio": self.excess_ratio,
            "severity": self.severity,
            "allocation_ids": ";".join(self.allocation_ids),
            "activity_ids": ";".join(self.activity_ids),
        }


@dataclass(frozen=True)
class ResourceDiagnostic:
    resource_id: str
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class EngineConfig:
    max_span_days: int = DEFAULT_MAX_SPAN_DAYS
    skip_weekends: bool = False
    default_curve: str = "LINEAR"
    curves: Dict[str, object] = field(default_factory=dict)
    logging_level: str = "INFO"
    max_workers: Optional[int] = None

    def get_curve_spec(self, key: str) -> object:
        if key not in self.curves:
            raise KeyError(f"curve '{key}' missing in configuration")
        return self.curves[key]
