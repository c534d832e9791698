"""
Growth reference data model and table construction.

Reference rows arrive loosely typed from an external source (CSV, JSON, a
database query). Each row is validated once at the build boundary; rows that
fail validation are dropped and recorded, never raised. Accepted rows are
grouped per chart type and gender into immutable, age-sorted tables.

A ReferenceStore publishes built tables as versioned snapshots. Refreshing
builds a complete new snapshot and swaps a single reference, so readers
always see either the old or the new snapshot in full.
"""

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import math
import threading

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .config import DEFAULT_CONFIG, GrowthConfig

logger = logging.getLogger(__name__)


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class ChartType(str, Enum):
    """Growth metric covered by a reference table."""

    WFA = "WFA"  # weight-for-age
    HFA = "HFA"  # length/height-for-age
    HCFA = "HCFA"  # head-circumference-for-age
    BFA = "BFA"  # BMI-for-age


_GENDER_ALIASES = {
    "M": Gender.MALE,
    "MALE": Gender.MALE,
    "BOY": Gender.MALE,
    "BOYS": Gender.MALE,
    "1": Gender.MALE,
    "F": Gender.FEMALE,
    "FEMALE": Gender.FEMALE,
    "GIRL": Gender.FEMALE,
    "GIRLS": Gender.FEMALE,
    "2": Gender.FEMALE,
}

# Accepted source column names per field, WHO table headers included
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "age_days": ("age_days", "ageDays", "Day", "day"),
    "gender": ("gender", "sex", "Sex"),
    "chart_type": ("chart_type", "chartType"),
    "l_value": ("l_value", "lValue", "L"),
    "m_value": ("m_value", "mValue", "M"),
    "s_value": ("s_value", "sValue", "S"),
    "sd0": ("sd0", "SD0"),
    "sd1neg": ("sd1neg", "SD1neg"),
    "sd1pos": ("sd1pos", "SD1pos", "SD1"),
    "sd2neg": ("sd2neg", "SD2neg"),
    "sd2pos": ("sd2pos", "SD2pos", "SD2"),
    "sd3neg": ("sd3neg", "SD3neg"),
    "sd3pos": ("sd3pos", "SD3pos", "SD3"),
    "sd4neg": ("sd4neg", "SD4neg"),
    "sd4pos": ("sd4pos", "SD4pos", "SD4"),
}

SD_FIELDS = ("sd0", "sd1neg", "sd1pos", "sd2neg", "sd2pos", "sd3neg", "sd3pos")
OPTIONAL_SD_FIELDS = ("sd4neg", "sd4pos")


def normalize_gender(value: Any) -> Gender:
    """Map textual or coded sex values ('M', 'girls', 2, ...) to Gender."""
    if isinstance(value, Gender):
        return value
    key = str(value).strip().upper()
    if key.endswith(".0"):
        key = key[:-2]
    try:
        return _GENDER_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unrecognized gender value '{value}'") from None


def _parse_finite(value: Any) -> float:
    if isinstance(value, str):
        value = value.strip()
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("value must be a finite number")
    return number


class ReferencePoint(BaseModel):
    """
    One sample of a growth reference curve.

    The LMS parameters drive the z-score formula; the SD lines are the
    measurement values at each standard-deviation line and are carried for
    display and QA only.
    """

    model_config = ConfigDict(frozen=True)

    age_days: int
    gender: Gender
    l_value: float
    m_value: float
    s_value: float
    sd0: float
    sd1neg: float
    sd1pos: float
    sd2neg: float
    sd2pos: float
    sd3neg: float
    sd3pos: float
    sd4neg: Optional[float] = None
    sd4pos: Optional[float] = None
    interpolated: bool = False


class RawReferenceRow(BaseModel):
    """Validated form of one loosely typed reference row."""

    model_config = ConfigDict(allow_inf_nan=False)

    age_days: int
    gender: Gender
    chart_type: Optional[ChartType] = None
    l_value: float
    m_value: float
    s_value: float
    sd0: float
    sd1neg: float
    sd1pos: float
    sd2neg: float
    sd2pos: float
    sd3neg: float
    sd3pos: float
    sd4neg: Optional[float] = None
    sd4pos: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def resolve_aliases(cls, data: Any) -> Any:
        """Collect each field from the first source column that carries it."""
        if not isinstance(data, Mapping):
            raise ValueError("Reference row must be a mapping")
        resolved = {}
        for field, names in _FIELD_ALIASES.items():
            for name in names:
                value = data.get(name)
                if value is None or (isinstance(value, str) and not value.strip()):
                    continue
                resolved[field] = value
                break
        return resolved

    @field_validator("age_days", mode="before")
    @classmethod
    def parse_age(cls, v: Any) -> int:
        """Accept numeric text and whole-day floats; ages are rounded to days."""
        age = int(round(_parse_finite(v)))
        if age < 0:
            raise ValueError("age_days must be >= 0")
        return age

    @field_validator("gender", mode="before")
    @classmethod
    def parse_gender(cls, v: Any) -> Gender:
        return normalize_gender(v)

    @field_validator("chart_type", mode="before")
    @classmethod
    def parse_chart_type(cls, v: Any) -> Optional[ChartType]:
        if v is None or isinstance(v, ChartType):
            return v
        return ChartType(str(v).strip().upper())

    @field_validator("l_value", "m_value", "s_value", *SD_FIELDS, mode="before")
    @classmethod
    def parse_required_number(cls, v: Any) -> float:
        return _parse_finite(v)

    @field_validator("m_value", "s_value")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("M and S must be positive")
        return v

    @field_validator(*OPTIONAL_SD_FIELDS, mode="before")
    @classmethod
    def parse_optional_number(cls, v: Any) -> Optional[float]:
        """Outer SD lines are optional: anything unparsable becomes absent."""
        try:
            return _parse_finite(v)
        except (TypeError, ValueError):
            return None

    def to_point(self) -> ReferencePoint:
        return ReferencePoint(
            **self.model_dump(exclude={"chart_type"}),
        )


class ReferenceTable:
    """
    Immutable, age-sorted reference points per gender for one chart type.

    Points are stored as tuples behind a read-only mapping, with a read-only
    numpy age index per gender for binary search.
    """

    def __init__(
        self,
        chart_type: ChartType,
        points_by_gender: Mapping[Gender, Iterable[ReferencePoint]],
    ) -> None:
        points: Dict[Gender, Tuple[ReferencePoint, ...]] = {}
        ages: Dict[Gender, np.ndarray] = {}
        for gender, group in points_by_gender.items():
            ordered = tuple(sorted(group, key=lambda p: p.age_days))
            if not ordered:
                continue
            if any(p.gender != gender for p in ordered):
                raise ValueError(f"Points filed under {gender.value} carry another gender")
            age_index = np.array([p.age_days for p in ordered], dtype=np.int64)
            if np.any(np.diff(age_index) <= 0):
                raise ValueError(f"Duplicate ages in {chart_type.value} {gender.value} points")
            age_index.flags.writeable = False
            points[gender] = ordered
            ages[gender] = age_index

        self._chart_type = chart_type
        self._points = MappingProxyType(points)
        self._ages = MappingProxyType(ages)

    @property
    def chart_type(self) -> ChartType:
        return self._chart_type

    @property
    def genders(self) -> Tuple[Gender, ...]:
        return tuple(self._points)

    def __contains__(self, gender: object) -> bool:
        return gender in self._points

    def __len__(self) -> int:
        return sum(len(group) for group in self._points.values())

    def __repr__(self) -> str:
        counts = ", ".join(f"{g.value}={len(p)}" for g, p in self._points.items())
        return f"ReferenceTable({self._chart_type.value}: {counts})"

    def is_empty(self) -> bool:
        return not self._points

    def points(self, gender: Gender) -> Tuple[ReferencePoint, ...]:
        """Points for one gender, ascending by age; empty tuple if absent."""
        return self._points.get(gender, ())

    def ages(self, gender: Gender) -> np.ndarray:
        """Read-only sorted age index for one gender."""
        return self._ages.get(gender, np.empty(0, dtype=np.int64))

    def age_range(self) -> Tuple[int, int]:
        """Smallest and largest tabulated age across genders ((0, 0) if empty)."""
        if not self._ages:
            return (0, 0)
        return (
            int(min(a[0] for a in self._ages.values())),
            int(max(a[-1] for a in self._ages.values())),
        )

    def to_frame(self) -> pd.DataFrame:
        """All points as a DataFrame, one row per (gender, age)."""
        records = [
            {"chart_type": self._chart_type.value, **p.model_dump(exclude={"interpolated"})}
            for group in self._points.values()
            for p in group
        ]
        frame = pd.DataFrame.from_records(records)
        if not frame.empty:
            frame["gender"] = frame["gender"].map(lambda g: g.value)
        return frame


class BuildError(ValueError):
    """Raised when reference rows cannot produce a usable table."""


class DroppedRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    reason: str


class BuildResult(BaseModel):
    """Tables produced from one pass over raw rows, with what was dropped."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tables: Dict[ChartType, ReferenceTable]
    dropped_count: int = 0
    dropped_reasons: List[DroppedRow] = []
    duplicate_count: int = 0

    def table(self, chart_type: ChartType) -> ReferenceTable:
        try:
            return self.tables[chart_type]
        except KeyError:
            raise BuildError(f"No reference table built for {chart_type.value}") from None


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "row"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def build_reference_tables(
    rows: Iterable[Mapping[str, Any]],
    default_chart_type: ChartType = ChartType.WFA,
    required_genders: Sequence[Gender] = (Gender.MALE, Gender.FEMALE),
    config: Optional[GrowthConfig] = None,
    required_chart_types: Optional[Sequence[ChartType]] = None,
) -> BuildResult:
    """
    Build one ReferenceTable per chart type from raw reference rows.

    Malformed rows are dropped and recorded in the result. Repeated ages
    within a (chart type, gender) group are resolved by
    ``config.duplicate_policy``: the first occurrence in input order wins by
    default, 'last' keeps the final one.

    Args:
        rows: Iterable of mappings (CSV records, JSON objects, query rows)
        default_chart_type: Chart type for rows that carry none
        required_genders: Genders every built table must cover
        config: Growth configuration (duplicate policy)
        required_chart_types: Chart types whose tables must cover
            required_genders; None checks every chart type present

    Returns:
        BuildResult with tables keyed by chart type and drop accounting

    Raises:
        BuildError: If no row is valid, or a checked table lacks a required gender
    """
    config = config or DEFAULT_CONFIG
    groups: Dict[ChartType, Dict[Gender, Dict[int, ReferencePoint]]] = {}
    dropped: List[DroppedRow] = []
    duplicates = 0

    for index, raw in enumerate(rows):
        try:
            row = RawReferenceRow.model_validate(raw)
        except ValidationError as e:
            dropped.append(DroppedRow(index=index, reason=_describe_validation_error(e)))
            continue

        chart_type = row.chart_type or default_chart_type
        by_age = groups.setdefault(chart_type, {}).setdefault(row.gender, {})
        if row.age_days in by_age:
            duplicates += 1
            if config.duplicate_policy == "first":
                continue
        by_age[row.age_days] = row.to_point()

    if dropped:
        logger.warning(f"Dropped {len(dropped)} malformed reference rows during build")
    if duplicates:
        logger.info(
            f"Resolved {duplicates} repeated reference ages (policy: {config.duplicate_policy})"
        )
    if not groups:
        raise BuildError("No valid reference rows to build from")

    tables = {}
    for chart_type, by_gender in groups.items():
        table = ReferenceTable(
            chart_type, {g: by_age.values() for g, by_age in by_gender.items()}
        )
        missing = [g.value for g in required_genders if g not in table]
        checked = required_chart_types is None or chart_type in required_chart_types
        if missing and checked:
            raise BuildError(
                f"Reference table {chart_type.value} has no valid rows for: {missing}"
            )
        tables[chart_type] = table

    return BuildResult(
        tables=tables,
        dropped_count=len(dropped),
        dropped_reasons=dropped,
        duplicate_count=duplicates,
    )


def build_reference_table(
    rows: Iterable[Mapping[str, Any]],
    chart_type: ChartType = ChartType.WFA,
    required_genders: Sequence[Gender] = (Gender.MALE, Gender.FEMALE),
    config: Optional[GrowthConfig] = None,
) -> ReferenceTable:
    """
    Build the table for a single chart type.

    Rows without a chart type are treated as ``chart_type``; rows for other
    chart types are parsed but not returned, and their gender coverage is
    not checked.

    Raises:
        BuildError: If the chart type yields no table or misses a required gender
    """
    result = build_reference_tables(
        rows,
        default_chart_type=chart_type,
        required_genders=required_genders,
        config=config,
        required_chart_types=(chart_type,),
    )
    return result.table(chart_type)


class ReferenceSnapshot(BaseModel):
    """A published, immutable generation of reference tables."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    version: int
    tables: Dict[ChartType, ReferenceTable]
    built_at: datetime
    dropped_count: int = 0

    def table(self, chart_type: ChartType) -> ReferenceTable:
        try:
            return self.tables[chart_type]
        except KeyError:
            raise BuildError(f"Snapshot has no {chart_type.value} table") from None


class ReferenceStore:
    """
    Process-wide holder of the current reference snapshot.

    Readers call ``current()`` without locking. ``refresh()`` builds a new
    snapshot from the loader and replaces the published reference in one
    assignment; the lock only serialises concurrent refreshes. A failed
    refresh leaves the previous snapshot in place.

    Usage:
        store = ReferenceStore(lambda: load_reference_csv("wfa.csv"))
        table = store.current().table(ChartType.WFA)
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[Mapping[str, Any]]],
        default_chart_type: ChartType = ChartType.WFA,
        required_genders: Sequence[Gender] = (Gender.MALE, Gender.FEMALE),
        config: Optional[GrowthConfig] = None,
    ) -> None:
        self._loader = loader
        self._default_chart_type = default_chart_type
        self._required_genders = tuple(required_genders)
        self._config = config or DEFAULT_CONFIG
        self._lock = threading.Lock()
        self._snapshot: Optional[ReferenceSnapshot] = None
        self._version = 0

    @property
    def version(self) -> int:
        """Version of the published snapshot (0 before the first build)."""
        snapshot = self._snapshot
        return snapshot.version if snapshot is not None else 0

    def current(self) -> ReferenceSnapshot:
        """Return the published snapshot, building it on first use."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        with self._lock:
            if self._snapshot is None:
                self._publish()
            return self._snapshot

    def refresh(self) -> ReferenceSnapshot:
        """Rebuild from the loader and publish the result."""
        with self._lock:
            return self._publish()

    def clear(self) -> None:
        """Drop the published snapshot; the next read rebuilds."""
        with self._lock:
            self._snapshot = None

    def _publish(self) -> ReferenceSnapshot:
        try:
            result = build_reference_tables(
                self._loader(),
                default_chart_type=self._default_chart_type,
                required_genders=self._required_genders,
                config=self._config,
            )
        except Exception as e:
            logger.warning(
                f"Reference refresh failed, keeping version {self.version}: {e}"
            )
            raise

        self._version += 1
        snapshot = ReferenceSnapshot(
            version=self._version,
            tables=result.tables,
            built_at=datetime.now(timezone.utc),
            dropped_count=result.dropped_count,
        )
        self._snapshot = snapshot
        logger.info(
            f"Published reference snapshot v{snapshot.version} "
            f"({', '.join(t.value for t in snapshot.tables)})"
        )
        return snapshot
