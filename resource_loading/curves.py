from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import DEFAULT_MAX_SPAN_DAYS, InvalidCurveError, span_days

POINT_COUNT = 21
SEGMENTS = POINT_COUNT - 1


def _validate_points(name: str, values: Sequence[float]) -> Tuple[float, ...]:
    if len(values) != POINT_COUNT:
        raise InvalidCurveError(f"curve '{name}' must have {POINT_COUNT} points, got {len(values)}")
    points = tuple(float(v) for v in values)
    if any(math.isnan(v) for v in points):
        raise InvalidCurveError(f"curve '{name}' contains NaN values")
    if points[0] != 0:
        raise InvalidCurveError(f"curve '{name}' must start at 0, got {points[0]}")
    if points[-1] != 100:
        raise InvalidCurveError(f"curve '{name}' must end at 100, got {points[-1]}")
    for idx in range(1, POINT_COUNT):
        if points[idx] < points[idx - 1]:
            raise InvalidCurveError(
                f"curve '{name}' decreases at {idx * 5}% ({points[idx]} < {points[idx - 1]})"
            )
    return points


@dataclass(frozen=True)
class DistributionCurve:
    """Cumulative percent complete sampled at 5% steps of the span."""

    name: str
    points: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", _validate_points(self.name, self.points))

    def percent_at(self, position: float) -> float:
        if math.isnan(position):
            raise ValueError(f"curve '{self.name}' position must be a number, got NaN")
        if position <= 0:
            return 0.0
        if position >= 1:
            return 100.0
        scaled = position * SEGMENTS
        idx = min(max(int(math.floor(scaled)), 0), SEGMENTS - 1)
        frac = scaled - idx
        lower = self.points[idx]
        upper = self.points[idx + 1]
        return lower + (upper - lower) * frac


@dataclass(frozen=True)
class DailyIncrement:
    date: date
    quantity: float


_PRESET_POINTS: Dict[str, Sequence[float]] = {
    "LINEAR": [0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55, 60, 65, 70, 75, 80, 85, 90, 95, 100],
    "BELL": [0, 1, 3, 6, 11, 18, 27, 37, 48, 60, 70, 78, 85, 90, 94, 96, 98, 99, 99.5, 99.9, 100],
    "FRONT_LOADED": [0, 10, 19, 27, 35, 42, 49, 55, 61, 66, 71, 76, 80, 84, 87, 90, 93, 95, 97, 99, 100],
    "BACK_LOADED": [0, 1, 3, 5, 7, 10, 13, 16, 20, 24, 29, 34, 39, 45, 52, 60, 70, 80, 90, 97, 100],
    "TRIANGULAR": [0, 2, 6, 12, 20, 30, 40, 50, 60, 70, 75, 78, 81, 84, 87, 90, 93, 95, 97, 99, 100],
    "TRAPEZOIDAL": [0, 4, 10, 18, 28, 40, 50, 58, 64, 70, 75, 80, 84, 88, 91, 93, 95, 97, 98, 99, 100],
    # Starting table for user-defined curves.
    "CUSTOM": [0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55, 60, 65, 70, 75, 80, 85, 90, 95, 100],
}

PRESETS: Dict[str, DistributionCurve] = {
    name: DistributionCurve(name, tuple(points)) for name, points in _PRESET_POINTS.items()
}

LINEAR = PRESETS["LINEAR"]
BELL = PRESETS["BELL"]
FRONT_LOADED = PRESETS["FRONT_LOADED"]
BACK_LOADED = PRESETS["BACK_LOADED"]
TRIANGULAR = PRESETS["TRIANGULAR"]
TRAPEZOIDAL = PRESETS["TRAPEZOIDAL"]

_ALIASES = {"FLAT": "LINEAR", "UNIFORM": "LINEAR", "S_CURVE": "BELL", "S": "BELL"}


def percent_at(curve: DistributionCurve, position: float) -> float:
    return curve.percent_at(position)


def _preset(name: str) -> Optional[DistributionCurve]:
    key = name.strip().upper().replace("-", "_").replace(" ", "_")
    key = _ALIASES.get(key, key)
    return PRESETS.get(key)


def resolve_curve(
    spec: object, custom_curves: Optional[Mapping[str, object]] = None
) -> DistributionCurve:
    if spec is None:
        return LINEAR
    if isinstance(spec, DistributionCurve):
        return spec
    if isinstance(spec, str):
        return _resolve_name(spec, custom_curves or {})
    if isinstance(spec, Sequence):
        return _curve_from_sequence("CUSTOM", spec)
    raise TypeError("curve spec must be a curve name or a sequence of 21 cumulative percentages")


def _resolve_name(name: str, custom_curves: Mapping[str, object]) -> DistributionCurve:
    # Configured curves may alias other configured curves or presets.
    seen: List[str] = []
    while name in custom_curves:
        if name in seen:
            chain = " -> ".join([*seen, name])
            raise InvalidCurveError(f"curve alias cycle: {chain}")
        seen.append(name)
        custom = custom_curves[name]
        if not isinstance(custom, str):
            return _curve_from_sequence(name, custom)
        name = custom
    preset = _preset(name)
    if preset is None:
        raise InvalidCurveError(f"unsupported curve '{name}'")
    return preset


def _curve_from_sequence(name: str, values: object) -> DistributionCurve:
    if isinstance(values, DistributionCurve):
        return values
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise InvalidCurveError(f"curve '{name}' must be a list of numbers")
    try:
        points = tuple(float(v) for v in values)
    except (TypeError, ValueError) as exc:
        raise InvalidCurveError(f"curve '{name}' contains non-numeric values") from exc
    return DistributionCurve(name, points)


def distribute(
    total_quantity: float,
    date_start: date,
    date_end: date,
    curve: DistributionCurve,
    *,
    max_span_days: int = DEFAULT_MAX_SPAN_DAYS,
) -> List[DailyIncrement]:
    """Spread ``total_quantity`` over the inclusive span following ``curve``.

    The final day absorbs floating residue so increments sum to the total.
    """
    if total_quantity < 0:
        raise ValueError("total quantity must be non-negative")
    duration = span_days(date_start, date_end, max_span_days)
    if duration == 1:
        return [DailyIncrement(date_start, float(total_quantity))]
    increments: List[DailyIncrement] = []
    assigned = 0.0
    previous_pct = 0.0
    for idx in range(duration - 1):
        current_pct = curve.percent_at(min((idx + 1) / duration, 1.0))
        share = max(0.0, total_quantity * (current_pct - previous_pct) / 100.0)
        increments.append(DailyIncrement(date_start + timedelta(days=idx), share))
        assigned += share
        previous_pct = current_pct
    increments.append(DailyIncrement(date_end, max(0.0, total_quantity - assigned)))
    return increments
