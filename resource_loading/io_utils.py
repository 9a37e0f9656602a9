from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd
from dateutil import parser as dateparser

from .curves import resolve_curve
from .models import (
    DEFAULT_MAX_SPAN_DAYS,
    RATE_TYPES,
    Allocation,
    AssignmentPeriod,
    EngineConfig,
    Resource,
    category_from_label,
)

_ALLOCATION_REQUIRED_COLUMNS = {"id", "resource_id", "activity_id", "date_start", "date_end"}

_PERIOD_REQUIRED_COLUMNS = {"allocation_id", "resource_id", "period_start"}

_PERIOD_NUMERIC_COLUMNS = (
    "planned_quantity",
    "actual_quantity",
    "remaining_quantity",
    "planned_cost",
    "actual_cost",
    "remaining_cost",
    "earned_value",
    "earned_quantity",
)


@dataclass
class InMemoryRepository:
    """Holds resources, allocations and periods loaded from the input files."""

    resources: List[Resource] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)
    periods: List[AssignmentPeriod] = field(default_factory=list)

    def list_resources(self) -> Sequence[Resource]:
        return tuple(self.resources)

    def list_allocations(self) -> Sequence[Allocation]:
        return tuple(self.allocations)

    def list_periods(self) -> Sequence[AssignmentPeriod]:
        return tuple(self.periods)


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = sorted(col for col in required if col not in df.columns)
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def parse_date(value: object, field_name: str) -> date:
    if isinstance(value, date):
        return value
    if _is_missing(value):
        raise ValueError(f"missing date in '{field_name}'")
    try:
        return dateparser.isoparse(str(value).strip()).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_number(value: object, field_name: str, default: float = 0.0) -> float:
    if _is_missing(value):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid number in '{field_name}': {value!r}") from exc
    if math.isnan(number):
        return default
    return number


def _optional_text(value: object) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value).strip()


def _parse_tier_rates(value: object, resource_id: str) -> Dict[str, float]:
    if _is_missing(value):
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"rates for resource {resource_id} must be an object keyed by rate type")
    rates: Dict[str, float] = {}
    for rate_type, amount in value.items():
        if rate_type not in RATE_TYPES:
            raise ValueError(f"unsupported rate type '{rate_type}' for resource {resource_id}")
        rates[rate_type] = _parse_number(amount, f"rates.{rate_type}")
    return rates


def load_resources(path: str | Path) -> List[Resource]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("resources file must be a JSON array")
    resources: List[Resource] = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("resource entries must be objects")
        resource_id = entry.get("id")
        if resource_id is None or str(resource_id).strip() == "":
            raise ValueError("resource id is required")
        resource_id = str(resource_id)
        if resource_id in seen:
            raise ValueError(f"duplicate resource id '{resource_id}'")
        seen.add(resource_id)
        resources.append(
            Resource(
                id=resource_id,
                name=str(entry.get("name") or resource_id),
                daily_capacity=_parse_number(entry.get("daily_capacity"), "daily_capacity", 8.0),
                hourly_rate=_parse_number(entry.get("hourly_rate"), "hourly_rate"),
                overtime_rate=_parse_number(entry.get("overtime_rate"), "overtime_rate"),
                per_use_cost=_parse_number(entry.get("per_use_cost"), "per_use_cost"),
                fixed_cost=_parse_number(entry.get("fixed_cost"), "fixed_cost"),
                category=category_from_label(entry.get("category")),
                tier_rates=_parse_tier_rates(entry.get("rates"), resource_id),
            )
        )
    return resources


def load_allocations(path: str | Path) -> List[Allocation]:
    df = pd.read_csv(path, dtype={"id": str, "resource_id": str, "activity_id": str})
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, "allocations.csv")
    allocations: List[Allocation] = []
    for row in df.to_dict(orient="records"):
        rate_type = _optional_text(row.get("rate_type")) or "standard"
        if rate_type not in RATE_TYPES:
            raise ValueError(f"unsupported rate_type '{rate_type}' for allocation {row['id']}")
        allocations.append(
            Allocation(
                id=str(row["id"]),
                resource_id=str(row["resource_id"]),
                activity_id=str(row["activity_id"]),
                date_start=parse_date(row["date_start"], "date_start"),
                date_end=parse_date(row["date_end"], "date_end"),
                percent_units=_parse_number(row.get("percent_units"), "percent_units", 100.0),
                curve_reference=_optional_text(row.get("curve_reference")),
                rate_type=rate_type,
                planned_quantity=_parse_number(row.get("planned_quantity"), "planned_quantity"),
            )
        )
    return allocations


def load_periods(path: str | Path) -> List[AssignmentPeriod]:
    df = pd.read_csv(path, dtype={"allocation_id": str, "resource_id": str, "activity_id": str})
    _require_columns(df, _PERIOD_REQUIRED_COLUMNS, "periods.csv")
    for col in _PERIOD_NUMERIC_COLUMNS:
        if col not in df.columns:
            df[col] = 0.0
        try:
            df[col] = pd.to_numeric(df[col]).fillna(0.0)
        except ValueError as exc:
            raise ValueError(f"invalid numeric value in column '{col}'") from exc
    periods: List[AssignmentPeriod] = []
    for row in df.to_dict(orient="records"):
        periods.append(
            AssignmentPeriod(
                allocation_id=str(row["allocation_id"]),
                resource_id=str(row["resource_id"]),
                activity_id=_optional_text(row.get("activity_id")) or "",
                period_start=parse_date(row["period_start"], "period_start"),
                **{col: float(row[col]) for col in _PERIOD_NUMERIC_COLUMNS},
            )
        )
    return periods


def load_config(path: str | Path) -> EngineConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must contain a JSON object")
    max_span_days = data.get("max_span_days", DEFAULT_MAX_SPAN_DAYS)
    if not isinstance(max_span_days, int) or isinstance(max_span_days, bool) or max_span_days <= 0:
        raise ValueError("max_span_days must be a positive integer")
    skip_weekends = data.get("skip_weekends", False)
    if not isinstance(skip_weekends, bool):
        raise ValueError("skip_weekends must be a boolean")
    curves = data.get("curves")
    if curves is None:
        curves = {}
    if not isinstance(curves, dict):
        raise ValueError("curves must be an object")
    # Fail on bad curve tables at load time rather than mid-run.
    for name in curves:
        resolve_curve(name, curves)
    default_curve = data.get("default_curve", "LINEAR")
    if not isinstance(default_curve, str):
        raise ValueError("default_curve must be a curve name")
    resolve_curve(default_curve, curves)
    max_workers = data.get("max_workers")
    if max_workers is not None and (
        not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers <= 0
    ):
        raise ValueError("max_workers must be a positive integer if provided")
    logging_level = data.get("logging_level", "INFO")
    return EngineConfig(
        max_span_days=max_span_days,
        skip_weekends=skip_weekends,
        default_curve=default_curve,
        curves=curves,
        logging_level=str(logging_level),
        max_workers=max_workers,
    )


def load_repository(
    resources_path: str | Path,
    allocations_path: str | Path,
    periods_path: Optional[str | Path] = None,
) -> InMemoryRepository:
    return InMemoryRepository(
        resources=load_resources(resources_path),
        allocations=load_allocations(allocations_path),
        periods=load_periods(periods_path) if periods_path else [],
    )


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)


def distribution_frame(distribution: Dict[str, float]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"category": key, "percent": value} for key, value in distribution.items()],
        columns=["category", "percent"],
    )
