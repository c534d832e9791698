"""
Configuration constants and tunable thresholds for growth assessment.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# Calendar constants
DAYS_PER_WEEK = 7
DAYS_PER_MONTH = 30.44
DAYS_PER_YEAR = 365.25

# WHO tables are published per month; 30.4375 days is the WHO month length
WHO_DAYS_PER_MONTH = 30.4375

# |L| below this is treated as the Box-Cox log case
L_ZERO_THRESHOLD = 1e-6

# WHO 0-5 year standards (1826 days) plus a one-month buffer
MAX_AGE_DAYS = 1856

# Measurement columns mapped to their z-score column
MEASURE_ZSCORE_MAPPING = {
    "weight": "waz",
    "height": "haz",
    "head_circumference": "hcz",
    "bmi": "bmiz",
}


class GrowthConfig(BaseModel):
    """
    Tunable thresholds for z-score computation, projection and alerting.

    The saturation value and projection growth rates are heuristics carried
    over from clinical practice rather than derived from the reference study,
    so they are exposed here instead of being fixed in the algorithms.

    Attributes:
        max_age_days (int): Oldest age accepted for assessment (inclusive).
        zscore_saturation (float): Magnitude reported when the LMS formula overflows.
        percentile_floor (float): Lowest percentile ever reported.
        percentile_ceiling (float): Highest percentile ever reported.
        growth_rate_above_median (float): Projected kg/day when z > 0.
        growth_rate_at_or_below_median (float): Projected kg/day when z <= 0.
        stable_channel (float): |z| up to which weight projection is attempted.
        high_confidence_channel (float): |z| up to which projections are high confidence.
        severe_alert_threshold (float): z below which a severe deviation alert fires.
        trend_stable_band (float): z change treated as a stable trend.
        duplicate_policy (str): Which repeated reference age survives ('first' or 'last').
    """

    model_config = ConfigDict(frozen=True)

    max_age_days: int = MAX_AGE_DAYS
    zscore_saturation: float = 10.0
    percentile_floor: float = 0.01
    percentile_ceiling: float = 99.99
    growth_rate_above_median: float = 0.015
    growth_rate_at_or_below_median: float = 0.012
    stable_channel: float = 2.0
    high_confidence_channel: float = 1.0
    severe_alert_threshold: float = -3.0
    trend_stable_band: float = 0.5
    duplicate_policy: Literal["first", "last"] = "first"

    @field_validator("max_age_days")
    @classmethod
    def validate_max_age(cls, v: int) -> int:
        """Ensure the age limit is a positive number of days."""
        if v <= 0:
            raise ValueError("max_age_days must be positive")
        return v

    @field_validator(
        "zscore_saturation",
        "stable_channel",
        "high_confidence_channel",
        "trend_stable_band",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Ensure magnitudes are strictly positive."""
        if v <= 0:
            raise ValueError("Threshold magnitudes must be positive")
        return v

    @field_validator("percentile_ceiling", mode="after")
    @classmethod
    def floor_lt_ceiling(cls, v: float, info: Any) -> float:
        """Validate that 0 < percentile_floor < percentile_ceiling < 100."""
        floor = info.data.get("percentile_floor", 0.0)
        if not 0 < floor < v < 100:
            raise ValueError("Percentile bounds must satisfy 0 < floor < ceiling < 100")
        return v

    @field_validator("severe_alert_threshold")
    @classmethod
    def validate_alert_threshold(cls, v: float) -> float:
        """Severe deviation is a low z-score."""
        if v >= 0:
            raise ValueError("severe_alert_threshold must be negative")
        return v


DEFAULT_CONFIG = GrowthConfig()
