"""
Growth status classification from z-scores.

Two classifiers are provided: a combined status over weight-, height- and
BMI-for-age z-scores, and a graded weight-for-age classifier that carries a
severity and a recommendation for the clinician.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class GrowthStatus(str, Enum):
    NORMAL = "NORMAL"
    UNDERWEIGHT = "UNDERWEIGHT"
    STUNTED = "STUNTED"
    WASTED = "WASTED"
    OVERWEIGHT = "OVERWEIGHT"
    OBESE = "OBESE"


class Severity(str, Enum):
    NORMAL = "normal"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    classification: str
    severity: Severity
    recommendation: str


UNABLE_TO_ASSESS = "Unable to assess"
VERIFY_DATA_RECOMMENDATION = "Please verify age and measurement data"

# (upper bound, inclusive upper bound, classification, severity, recommendation)
# checked in order; the first band the z-score falls under wins
_WFA_BANDS = (
    (
        -3.0,
        False,
        "Severe Underweight",
        Severity.SEVERE,
        "Urgent medical assessment required. Consider referral to pediatric nutrition specialist.",
    ),
    (
        -2.0,
        False,
        "Moderate Underweight",
        Severity.MODERATE,
        "Nutritional intervention needed. Monitor growth closely and provide dietary counseling.",
    ),
    (
        -1.0,
        False,
        "Mild Underweight",
        Severity.MILD,
        "Monitor growth pattern. Provide nutritional education and follow up in 1 month.",
    ),
    (
        1.0,
        True,
        "Normal Weight",
        Severity.NORMAL,
        "Continue current feeding practices. Regular growth monitoring recommended.",
    ),
    (
        2.0,
        True,
        "Overweight",
        Severity.MILD,
        "Monitor growth pattern. Encourage balanced diet and physical activity.",
    ),
    (
        3.0,
        True,
        "Obese",
        Severity.MODERATE,
        "Nutritional counseling required. Assess dietary habits and physical activity levels.",
    ),
)

_SEVERELY_OBESE = Classification(
    classification="Severely Obese",
    severity=Severity.SEVERE,
    recommendation="Urgent medical assessment. Comprehensive management plan needed.",
)


def unable_to_assess(reason: str = UNABLE_TO_ASSESS) -> Classification:
    """Classification for a missing z-score; unknown is not read as normal."""
    return Classification(
        classification=reason,
        severity=Severity.NORMAL,
        recommendation=VERIFY_DATA_RECOMMENDATION,
    )


def classify_weight_for_age(z_score: Optional[float]) -> Classification:
    """
    Grade a weight-for-age z-score.

    Thresholds at z = -3, -2, -1, +1, +2, +3. The lower bands are open at their
    upper bound (z = -2 is Mild, not Moderate); the upper bands are closed
    (z = 1 is still Normal Weight).

    Args:
        z_score: Weight-for-age z-score, or None when it could not be computed

    Returns:
        Classification with severity and recommendation
    """
    if z_score is None:
        return unable_to_assess()

    for bound, inclusive, label, severity, recommendation in _WFA_BANDS:
        if z_score < bound or (inclusive and z_score == bound):
            return Classification(
                classification=label, severity=severity, recommendation=recommendation
            )
    return _SEVERELY_OBESE


def classify_growth_status(
    weight_for_age_z: Optional[float] = None,
    height_for_age_z: Optional[float] = None,
    bmi_for_age_z: Optional[float] = None,
) -> GrowthStatus:
    """
    Combined growth status; first matching rule wins.

    BMI > 3 is OBESE and BMI > 2 OVERWEIGHT, then weight < -2 UNDERWEIGHT,
    then height < -2 STUNTED, otherwise NORMAL. Missing z-scores are skipped.
    """
    if bmi_for_age_z is not None:
        if bmi_for_age_z > 3:
            return GrowthStatus.OBESE
        if bmi_for_age_z > 2:
            return GrowthStatus.OVERWEIGHT

    if weight_for_age_z is not None and weight_for_age_z < -2:
        return GrowthStatus.UNDERWEIGHT
    if height_for_age_z is not None and height_for_age_z < -2:
        return GrowthStatus.STUNTED

    return GrowthStatus.NORMAL


def classification_slug(classification: Optional[str]) -> str:
    """'Moderate Underweight' -> 'moderate_underweight'; 'unknown' if empty."""
    if not classification:
        return "unknown"
    return classification.lower().replace(" ", "_")
