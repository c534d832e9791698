"""
Clinical assessment of growth measurements.

Wraps the z-score pipeline (lookup, LMS z-score, percentile, classification)
into per-measurement assessments, batch assessment of a patient's series, and
combined multi-chart growth status.
"""

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
import datetime as dt
import logging

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .alerts import check_growth_alerts
from .classification import (
    UNABLE_TO_ASSESS,
    GrowthStatus,
    Severity,
    classify_growth_status,
    classify_weight_for_age,
    unable_to_assess,
)
from .config import DEFAULT_CONFIG, MEASURE_ZSCORE_MAPPING, GrowthConfig
from .reference import ChartType, Gender, ReferenceTable, normalize_gender
from .zscores import INVALID_INPUT, ZScoreResult, calculate_zscore, calculate_zscores

logger = logging.getLogger(__name__)

# Measurement name -> chart type whose table scores it
MEASURE_CHART_TYPES = {
    "weight": ChartType.WFA,
    "height": ChartType.HFA,
    "head_circumference": ChartType.HCFA,
    "bmi": ChartType.BFA,
}


class Measurement(BaseModel):
    """One recorded measurement of a patient (kg or cm, age in days)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    age_days: Optional[float] = Field(default=None, alias="ageDays")
    value: Optional[float] = Field(default=None, alias="measuredValue")
    date: Optional[Union[dt.datetime, dt.date]] = None
    patient_id: Optional[str] = Field(default=None, alias="patientId")


class GrowthAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    z_score: Optional[float]
    percentile: Optional[float]
    classification: str
    severity: Severity
    recommendation: str
    interpolated: bool = False


class SeriesAssessment(GrowthAssessment):
    """A GrowthAssessment tied back to the measurement it was computed from."""

    age_days: Optional[float] = None
    date: Optional[Union[dt.datetime, dt.date]] = None
    value: Optional[float] = None
    patient_id: Optional[str] = None


class GrowthStatusResult(BaseModel):
    """Combined status over every chart a measurement set could be scored on."""

    model_config = ConfigDict(frozen=True)

    status: GrowthStatus
    z_scores: Dict[str, Optional[float]]
    percentiles: Dict[str, Optional[float]]
    bmi: Optional[float] = None


class AssessmentSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    valid: int
    average_z_score: Optional[float]
    average_percentile: Optional[float]
    classifications: Dict[str, int]


def coerce_measurement(item: Any) -> Measurement:
    """
    Accept a Measurement, a mapping, or an (age_days, value[, date]) tuple.

    Mappings may use ``weight`` for the measured value.

    Raises:
        ValidationError: If a field cannot be parsed
        TypeError: If the item has none of the accepted shapes
    """
    if isinstance(item, Measurement):
        return item
    if isinstance(item, Mapping):
        data = dict(item)
        if "weight" in data and "value" not in data and "measuredValue" not in data:
            data["value"] = data.pop("weight")
        return Measurement.model_validate(data)
    if isinstance(item, (tuple, list)) and 2 <= len(item) <= 3:
        return Measurement(
            age_days=item[0],
            value=item[1],
            date=item[2] if len(item) == 3 else None,
        )
    raise TypeError(f"Unsupported measurement type: {type(item).__name__}")


def _assessment_fields(result: ZScoreResult) -> Dict[str, Any]:
    if result.z_score is None:
        reason = UNABLE_TO_ASSESS if result.classification == INVALID_INPUT else result.classification
        graded = unable_to_assess(reason)
    else:
        graded = classify_weight_for_age(result.z_score)
    return {
        "z_score": result.z_score,
        "percentile": result.percentile,
        "classification": graded.classification,
        "severity": graded.severity,
        "recommendation": graded.recommendation,
        "interpolated": result.interpolated,
    }


def _parse_gender(gender: Union[Gender, str]) -> Optional[Gender]:
    try:
        return normalize_gender(gender)
    except ValueError as e:
        logger.warning(f"Cannot assess measurements: {e}")
        return None


def assess(
    table: ReferenceTable,
    gender: Union[Gender, str],
    age_days: float,
    measured_value: float,
    config: Optional[GrowthConfig] = None,
) -> GrowthAssessment:
    """
    Assess one measurement against a reference table.

    A measurement that cannot be scored is still assessed: invalid input,
    an unrecognised gender included, is reported as "Unable to assess" and
    missing coverage as "No reference data available", both with normal
    severity and a request to verify the data.

    Args:
        table: Reference table for the measurement's chart type
        gender: Patient gender (Gender or a textual code such as 'M')
        age_days: Age at measurement in days
        measured_value: Measurement (kg or cm)
        config: Growth configuration

    Returns:
        GrowthAssessment
    """
    parsed_gender = _parse_gender(gender)
    if parsed_gender is None:
        result = ZScoreResult(z_score=None, percentile=None, classification=INVALID_INPUT)
    else:
        result = calculate_zscore(table, parsed_gender, age_days, measured_value, config)
    return GrowthAssessment(**_assessment_fields(result))


def _raise_alert(
    table: ReferenceTable,
    assessment: SeriesAssessment,
    record_id: str,
    config: GrowthConfig,
) -> None:
    if assessment.z_score is None:
        return
    if table.chart_type == ChartType.WFA:
        check_growth_alerts(record_id, weight_for_age_z=assessment.z_score, config=config)
    elif table.chart_type == ChartType.HFA:
        check_growth_alerts(record_id, height_for_age_z=assessment.z_score, config=config)


def assess_series(
    table: ReferenceTable,
    gender: Union[Gender, str],
    measurements: Iterable[Any],
    config: Optional[GrowthConfig] = None,
) -> List[SeriesAssessment]:
    """
    Assess a patient's measurements, one result per input in input order.

    Measurements are neither reordered nor de-duplicated. An item that cannot
    be parsed becomes an "Unable to assess" entry instead of failing the
    batch, and an unrecognised gender makes every entry "Unable to assess".
    Weight- and height-for-age z-scores below the severe threshold raise a
    growth alert.

    Args:
        table: Reference table for the measurements' chart type
        gender: Patient gender
        measurements: Measurement objects, mappings or (age_days, value[, date]) tuples
        config: Growth configuration

    Returns:
        List of SeriesAssessment aligned with the input
    """
    config = config or DEFAULT_CONFIG
    parsed_gender = _parse_gender(gender)

    parsed: List[Optional[Measurement]] = []
    for index, item in enumerate(measurements):
        try:
            parsed.append(coerce_measurement(item))
        except (ValidationError, TypeError) as e:
            logger.warning(f"Measurement {index} could not be parsed: {e}")
            parsed.append(None)

    scorable = [m for m in parsed if m is not None]
    if parsed_gender is None:
        unscored = ZScoreResult(z_score=None, percentile=None, classification=INVALID_INPUT)
        results = iter([unscored] * len(scorable))
    else:
        results = iter(
            calculate_zscores(
                table,
                parsed_gender,
                [m.age_days for m in scorable],
                [m.value for m in scorable],
                config,
            )
        )

    assessments = []
    for index, measurement in enumerate(parsed):
        if measurement is None:
            graded = unable_to_assess()
            assessments.append(
                SeriesAssessment(
                    z_score=None,
                    percentile=None,
                    classification=graded.classification,
                    severity=graded.severity,
                    recommendation=graded.recommendation,
                )
            )
            continue

        assessment = SeriesAssessment(
            **_assessment_fields(next(results)),
            age_days=measurement.age_days,
            date=measurement.date,
            value=measurement.value,
            patient_id=measurement.patient_id,
        )
        record_id = f"{measurement.patient_id}#{index}" if measurement.patient_id else str(index)
        _raise_alert(table, assessment, record_id, config)
        assessments.append(assessment)

    return assessments


def compute_bmi(weight: Optional[float], height: Optional[float]) -> Optional[float]:
    """BMI (kg/m²) from weight in kg and height in cm, rounded to 2 decimals."""
    if weight is None or height is None or weight <= 0 or height <= 0:
        return None
    return round(weight / (height / 100) ** 2, 2)


def assess_growth_status(
    tables: Mapping[ChartType, ReferenceTable],
    gender: Union[Gender, str],
    age_days: float,
    weight: Optional[float] = None,
    height: Optional[float] = None,
    bmi: Optional[float] = None,
    head_circumference: Optional[float] = None,
    config: Optional[GrowthConfig] = None,
) -> GrowthStatusResult:
    """
    Score every available measurement and derive the combined growth status.

    BMI is computed from weight and height when not supplied. Measurements
    without a matching table, or that cannot be scored, are reported with a
    None z-score and ignored by the status rule.

    Returns:
        GrowthStatusResult keyed by z-score name (waz, haz, hcz, bmiz)

    Raises:
        ValueError: If gender is not a recognised code
    """
    gender = normalize_gender(gender)
    if bmi is None:
        bmi = compute_bmi(weight, height)

    values = {
        "weight": weight,
        "height": height,
        "head_circumference": head_circumference,
        "bmi": bmi,
    }
    z_scores: Dict[str, Optional[float]] = {}
    percentiles: Dict[str, Optional[float]] = {}
    for measure, z_col in MEASURE_ZSCORE_MAPPING.items():
        value = values[measure]
        table = tables.get(MEASURE_CHART_TYPES[measure])
        if value is None or table is None:
            z_scores[z_col] = percentiles[z_col] = None
            continue
        result = calculate_zscore(table, gender, age_days, value, config)
        z_scores[z_col] = result.z_score
        percentiles[z_col] = result.percentile

    status = classify_growth_status(
        weight_for_age_z=z_scores["waz"],
        height_for_age_z=z_scores["haz"],
        bmi_for_age_z=z_scores["bmiz"],
    )
    return GrowthStatusResult(status=status, z_scores=z_scores, percentiles=percentiles, bmi=bmi)


def summarize_assessments(assessments: Sequence[GrowthAssessment]) -> AssessmentSummary:
    """Counts, average z-score (3 dp) and percentile (1 dp) over valid assessments."""
    valid = [a for a in assessments if a.z_score is not None]
    if valid:
        average_z = round(sum(a.z_score for a in valid) / len(valid), 3)
        average_p = round(sum(a.percentile or 0 for a in valid) / len(valid), 1)
    else:
        average_z = average_p = None
    return AssessmentSummary(
        total=len(assessments),
        valid=len(valid),
        average_z_score=average_z,
        average_percentile=average_p,
        classifications=dict(Counter(a.classification for a in valid)),
    )


def assessments_to_frame(assessments: Sequence[GrowthAssessment]) -> pd.DataFrame:
    """One row per assessment; severity as its string value."""
    if not assessments:
        return pd.DataFrame(columns=list(SeriesAssessment.model_fields))
    frame = pd.DataFrame.from_records([a.model_dump() for a in assessments])
    frame["severity"] = frame["severity"].map(lambda s: s.value)
    return frame
