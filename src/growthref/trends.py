"""
Longitudinal analysis of a patient's growth series.

Every function expects its input ordered by measurement date and performs no
reordering or de-duplication. Items are SeriesAssessment or Measurement
objects (anything with ``age_days``, ``value`` and ``date``).
"""

from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union
import datetime as dt
import logging

from pydantic import BaseModel, ConfigDict

from .assessment import GrowthAssessment, SeriesAssessment, coerce_measurement
from .classification import Severity, classification_slug
from .config import DAYS_PER_MONTH, DAYS_PER_WEEK, DAYS_PER_YEAR, DEFAULT_CONFIG, GrowthConfig
from .reference import ChartType

logger = logging.getLogger(__name__)

# Monthly velocity (kg or cm) below which growth is slow and above which it is fast
VELOCITY_BANDS = {
    ChartType.WFA: (0.1, 0.5),
    ChartType.HFA: (0.3, 1.0),
}

VELOCITY_WINDOW_MONTHS = 3

Direction = Literal["increasing", "decreasing", "stable", "insufficient_data"]
Confidence = Literal["low", "medium", "high"]


class Velocity(BaseModel):
    model_config = ConfigDict(frozen=True)

    days_between: int
    total_change: float
    per_day: float
    per_week: float
    per_month: float
    per_year: float
    age_change_days: Optional[float] = None


class TrendSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_value: Optional[float]
    current_percentile: Optional[float]
    first_date: Optional[Union[dt.datetime, dt.date]]
    last_date: Optional[Union[dt.datetime, dt.date]]
    total_measurements: int


class TrendAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: Direction
    z_score_change: Optional[float]
    velocity: Optional[Velocity]
    summary: TrendSummary


class GrowthComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    comparison: str
    status: str
    details: Optional[Dict[str, Any]] = None


class WeightProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    predicted_weight: float
    confidence: Confidence


class ProjectedPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    months_ahead: int
    age_days: float
    projected_value: float
    confidence: float


class GrowthProjection(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: Literal["low", "moderate"]
    average_monthly_change: Optional[float] = None
    current_age_days: Optional[float] = None
    current_value: Optional[float] = None
    projections: Tuple[ProjectedPoint, ...] = ()
    message: Optional[str] = None


def _as_datetime(value: Union[dt.datetime, dt.date]) -> dt.datetime:
    if isinstance(value, dt.datetime):
        return value
    return dt.datetime.combine(value, dt.time())


def _records(series: Sequence[Any]) -> List[Any]:
    return [
        item if isinstance(item, SeriesAssessment) else coerce_measurement(item)
        for item in series
    ]


def calculate_velocity(
    measurements: Sequence[Any],
    start_date: Optional[Union[dt.datetime, dt.date]] = None,
    end_date: Optional[Union[dt.datetime, dt.date]] = None,
) -> Optional[Velocity]:
    """
    Rate of change between the first and last dated measurement in a window.

    Per-month and per-year rates use 30.44 and 365.25 days. Values are rounded
    to 4 decimals.

    Args:
        measurements: Date-ordered measurements or series assessments
        start_date: Ignore measurements before this date
        end_date: Ignore measurements after this date

    Returns:
        Velocity, or None with fewer than two measurements or a non-positive span
    """
    start = _as_datetime(start_date) if start_date is not None else None
    end = _as_datetime(end_date) if end_date is not None else None

    window = []
    for item in _records(measurements):
        if item.value is None or item.date is None:
            continue
        when = _as_datetime(item.date)
        if (start is not None and when < start) or (end is not None and when > end):
            continue
        window.append((when, item))

    if len(window) < 2:
        return None

    (first_date, first), (last_date, last) = window[0], window[-1]
    days = (last_date - first_date).total_seconds() / 86400
    if days <= 0:
        return None

    change = last.value - first.value
    per_day = change / days
    age_change = None
    if first.age_days is not None and last.age_days is not None:
        age_change = last.age_days - first.age_days

    return Velocity(
        days_between=round(days),
        total_change=round(change, 4),
        per_day=round(per_day, 4),
        per_week=round(per_day * DAYS_PER_WEEK, 4),
        per_month=round(per_day * DAYS_PER_MONTH, 4),
        per_year=round(per_day * DAYS_PER_YEAR, 4),
        age_change_days=age_change,
    )


def analyze_trend(
    assessments: Sequence[SeriesAssessment], config: Optional[GrowthConfig] = None
) -> TrendAnalysis:
    """
    Direction of the z-score between the first and last valid assessment.

    A change within ±trend_stable_band is stable. Fewer than two valid
    z-scores give ``insufficient_data``.
    """
    config = config or DEFAULT_CONFIG
    valid = [a for a in assessments if a.z_score is not None]

    direction: Direction = "insufficient_data"
    change = None
    if len(valid) >= 2:
        change = round(valid[-1].z_score - valid[0].z_score, 2)
        if change > config.trend_stable_band:
            direction = "increasing"
        elif change < -config.trend_stable_band:
            direction = "decreasing"
        else:
            direction = "stable"

    measured = [a for a in assessments if a.value is not None]
    summary = TrendSummary(
        current_value=measured[-1].value if measured else None,
        current_percentile=measured[-1].percentile if measured else None,
        first_date=measured[0].date if measured else None,
        last_date=measured[-1].date if measured else None,
        total_measurements=len(measured),
    )
    return TrendAnalysis(
        direction=direction,
        z_score_change=change,
        velocity=calculate_velocity(measured),
        summary=summary,
    )


def classify_velocity(velocity: Velocity, chart_type: ChartType) -> str:
    """slow / normal / fast against the chart's monthly bands; normal if it has none."""
    bands = VELOCITY_BANDS.get(chart_type)
    if bands is None:
        return "normal"
    slow, fast = bands
    if velocity.per_month < slow:
        return "slow"
    if velocity.per_month > fast:
        return "fast"
    return "normal"


def compare_growth(
    comparison_type: str,
    assessments: Sequence[SeriesAssessment],
    chart_type: ChartType = ChartType.WFA,
    reference_age_days: Optional[float] = None,
    velocity: Optional[Velocity] = None,
) -> GrowthComparison:
    """
    Compare the latest assessment by age, percentile or velocity.

    Args:
        comparison_type: 'age', 'percentile' or 'velocity'
        assessments: Date-ordered series assessments of one patient
        chart_type: Chart the series was scored on (selects velocity bands)
        reference_age_days: Age to compare against for 'age'
        velocity: Precomputed velocity; otherwise computed over the last three
            months of the series

    Returns:
        GrowthComparison; status 'unknown' for an empty series or an
        unsupported comparison type
    """
    if not assessments:
        return GrowthComparison(comparison="No data available", status="unknown")

    latest = assessments[-1]
    kind = comparison_type.lower()

    if kind == "age":
        current_age = latest.age_days or 0
        reference_age = reference_age_days or 0
        difference = current_age - reference_age
        return GrowthComparison(
            comparison="Age",
            status="ahead" if difference >= 0 else "behind",
            details={
                "current_age_days": current_age,
                "reference_age_days": reference_age,
                "difference_days": difference,
            },
        )

    if kind == "percentile":
        if latest.z_score is None:
            return GrowthComparison(comparison="Percentile", status="no_data")
        return GrowthComparison(
            comparison="Percentile",
            status=classification_slug(latest.classification),
            details={
                "classification": latest.classification,
                "current_percentile": latest.percentile,
                "z_score": latest.z_score,
            },
        )

    if kind == "velocity":
        if velocity is None and latest.date is not None:
            end = _as_datetime(latest.date)
            start = end - dt.timedelta(days=round(VELOCITY_WINDOW_MONTHS * DAYS_PER_MONTH))
            velocity = calculate_velocity(assessments, start_date=start, end_date=end)
        if velocity is None:
            return GrowthComparison(comparison="Velocity", status="insufficient_data")
        return GrowthComparison(
            comparison="Velocity",
            status=classify_velocity(velocity, chart_type),
            details={
                "days_between": velocity.days_between,
                "per_month": velocity.per_month,
                "per_year": velocity.per_year,
                "total_change": velocity.total_change,
            },
        )

    logger.debug(f"Unsupported comparison type '{comparison_type}'")
    return GrowthComparison(comparison="Unknown", status="unknown")


def project_weight(
    assessment: GrowthAssessment,
    current_weight: float,
    current_age_days: float,
    target_age_days: float,
    config: Optional[GrowthConfig] = None,
) -> WeightProjection:
    """
    Project weight at a future age for a child growing in a stable channel.

    Only z-scores within ±stable_channel (2) are extrapolated, at
    growth_rate_above_median kg/day when z > 0 and
    growth_rate_at_or_below_median otherwise. Outside the channel, or with no
    z-score, the current weight is returned with low confidence.

    Args:
        assessment: Current weight-for-age assessment
        current_weight: Current weight (kg)
        current_age_days: Current age in days
        target_age_days: Age to project to, in days
        config: Growth configuration

    Returns:
        WeightProjection with the predicted weight rounded to 2 decimals
    """
    config = config or DEFAULT_CONFIG
    z = assessment.z_score
    if z is None or abs(z) > config.stable_channel:
        return WeightProjection(predicted_weight=current_weight, confidence="low")

    rate = config.growth_rate_above_median if z > 0 else config.growth_rate_at_or_below_median
    predicted = current_weight + rate * (target_age_days - current_age_days)

    confidence: Confidence = "medium"
    if abs(z) <= config.high_confidence_channel:
        confidence = "high"
    elif assessment.severity == Severity.SEVERE:
        confidence = "low"

    return WeightProjection(predicted_weight=round(predicted, 2), confidence=confidence)


def project_growth(
    series: Sequence[Any], horizon_months: int = 12, step_months: int = 3
) -> GrowthProjection:
    """
    Straight-line projection from the average monthly change of recent growth.

    The average is taken over consecutive pairs of the three most recent
    measurements. Points are projected at months 1, 1 + step, ... up to the
    horizon, with confidence falling 0.05 per month from 0.7 to a floor of 0.3.
    """
    usable = [m for m in _records(series) if m.value is not None and m.age_days is not None]
    if len(usable) < 2:
        return GrowthProjection(confidence="low", message="Insufficient data for projection")

    recent = usable[-3:]
    total = 0.0
    for previous, current in zip(recent, recent[1:]):
        months = (current.age_days - previous.age_days) / DAYS_PER_MONTH
        if months == 0:
            continue
        total += (current.value - previous.value) / months
    average = total / max(len(recent) - 1, 1)

    last = recent[-1]
    projections = tuple(
        ProjectedPoint(
            months_ahead=month,
            age_days=last.age_days + round(month * DAYS_PER_MONTH),
            projected_value=round(last.value + average * month, 4),
            confidence=round(max(0.7 - 0.05 * month, 0.3), 2),
        )
        for month in range(1, horizon_months + 1, step_months)
    )
    return GrowthProjection(
        confidence="moderate" if average > 0 else "low",
        average_monthly_change=round(average, 4),
        current_age_days=last.age_days,
        current_value=last.value,
        projections=projections,
    )
