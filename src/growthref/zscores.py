"""
Z-Score and Percentile Calculation for Growth Measurements

This module converts anthropometric measurements into age- and sex-specific
z-scores with the LMS method, and z-scores into percentiles. Reference
parameters come from a ReferenceTable, interpolated between tabulated ages
where needed.
"""

from typing import List, Optional, Sequence, Tuple
import logging
import math

import numpy as np
from numba import jit
from pydantic import BaseModel, ConfigDict
from scipy import stats

from .classification import classify_weight_for_age
from .config import DEFAULT_CONFIG, L_ZERO_THRESHOLD, GrowthConfig
from .lookup import lookup_reference
from .reference import Gender, ReferencePoint, ReferenceTable

logger = logging.getLogger(__name__)

# Abramowitz & Stegun 7.1.26 rational approximation of erf
_ERF_P = 0.3275911
_ERF_A = (0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429)

INVALID_INPUT = "Invalid input data"
NO_REFERENCE_DATA = "No reference data available"
INVALID_REFERENCE = "Invalid reference data"


@jit(nopython=True, cache=True)
def lms_zscore(
    X: np.ndarray, L: np.ndarray, M: np.ndarray, S: np.ndarray
) -> np.ndarray:
    """
    Calculate LMS z-scores element-wise.

    Implements the LMS method from Cole (1990) and WHO Technical Report 854.
    Three curves: median (M), coefficient of variation (S), Box-Cox power (L).

    For L ≠ 0: z = ((X/M)^L - 1) / (L * S)
    For L ≈ 0: z = ln(X/M) / S

    Elements with non-positive or non-finite X, M or S yield NaN. Overflow in
    the power term yields ±inf, which callers saturate.

    References:
    - Cole, T.J. (1990). "The LMS method for constructing normalized growth standards."
      European Journal of Clinical Nutrition, 44(1), 45-60.

    Args:
        X: Observed values (kg/cm), 1D
        L: Lambda (power, skewness parameter from reference data)
        M: Mu (median at age/sex, location parameter)
        S: Sigma (coefficient of variation at age/sex, scale parameter)

    Returns:
        Z-scores (0 at median)
    """
    n = X.shape[0]
    z = np.full(n, np.nan, dtype=np.float64)
    for i in range(n):
        x, l, m, s = X[i], L[i], M[i], S[i]
        if not (np.isfinite(x) and np.isfinite(l) and np.isfinite(m) and np.isfinite(s)):
            continue
        if x <= 0.0 or m <= 0.0 or s <= 0.0:
            continue
        if abs(l) < L_ZERO_THRESHOLD:
            z[i] = np.log(x / m) / s
        else:
            z[i] = ((x / m) ** l - 1.0) / (l * s)
    return z


def calculate_lms_zscore(x: float, l: float, m: float, s: float) -> float:
    """
    Scalar LMS z-score.

    Raises:
        ValueError: If M or S is not positive
    """
    if m <= 0 or s <= 0:
        raise ValueError("Invalid LMS parameters: M and S must be positive")
    if abs(l) < L_ZERO_THRESHOLD:
        return math.log(x / m) / s
    try:
        return ((x / m) ** l - 1) / (l * s)
    except OverflowError:
        return math.copysign(math.inf, l)


def measurement_at_zscore(l: float, m: float, s: float, z: float) -> float:
    """
    Measurement value at a given z-score (inverse LMS).

    Formula: M * (1 + L*S*z)^(1/L), or M * exp(S*z) when L ≈ 0.
    Returns NaN where 1 + L*S*z is not positive (outside the LMS support).
    """
    if abs(l) < L_ZERO_THRESHOLD:
        return m * math.exp(s * z)
    base = 1 + l * s * z
    if base <= 0:
        return math.nan
    return m * base ** (1 / l)


def saturate_zscore(z: float, x: float, m: float, config: GrowthConfig = DEFAULT_CONFIG) -> float:
    """
    Bound a z-score to ±zscore_saturation.

    An overflowed (non-finite) z-score takes the sign of x relative to the
    median; a finite one beyond the bound is clamped to it.
    """
    limit = config.zscore_saturation
    if not math.isfinite(z):
        logger.debug(f"Z-score overflow for value {x} (median {m}); saturating")
        return limit if x > m else -limit
    if abs(z) > limit:
        logger.debug(f"Z-score {z:.2f} for value {x} beyond ±{limit}; clamping")
        return math.copysign(limit, z)
    return z


def zscore_to_percentile(z_score: Optional[float], config: GrowthConfig = DEFAULT_CONFIG) -> Optional[float]:
    """
    Percentile of the standard normal distribution at a z-score.

    Uses the Abramowitz-Stegun rational erf approximation:
        t = 1 / (1 + p * |z|/√2)
        erf ≈ 1 - (a1 t + a2 t² + a3 t³ + a4 t⁴ + a5 t⁵) * exp(-(z/√2)²)
        percentile = 50 * (1 + sign(z) * erf)

    Rounded to 2 decimals and clamped to [0.01, 99.99]; percentiles are never
    reported as 0 or 100.

    Args:
        z_score: Z-score, or None
        config: Growth configuration (percentile bounds)

    Returns:
        Percentile in [floor, ceiling], or None for a missing/non-finite z-score
    """
    if z_score is None or not math.isfinite(z_score):
        return None

    x = abs(z_score) / math.sqrt(2)
    t = 1 / (1 + _ERF_P * x)
    poly = 0.0
    for coeff in reversed(_ERF_A):
        poly = (poly + coeff) * t
    erf = 1 - poly * math.exp(-x * x)

    sign = -1 if z_score < 0 else 1
    percentile = round(50 * (1 + sign * erf), 2)
    return min(config.percentile_ceiling, max(config.percentile_floor, percentile))


def percentile_to_zscore(percentile: float) -> float:
    """
    Z-score at a percentile, via the normal quantile function.

    Raises:
        ValueError: If percentile is not strictly between 0 and 100
    """
    if not 0 < percentile < 100:
        raise ValueError("Percentile must be strictly between 0 and 100")
    return round(float(stats.norm.ppf(percentile / 100)), 2)


class ReferenceValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    median: float
    sd1neg: float
    sd1pos: float
    sd2neg: float
    sd2pos: float
    sd3neg: float
    sd3pos: float

    @classmethod
    def from_point(cls, point: ReferencePoint) -> "ReferenceValues":
        return cls(
            median=point.m_value,
            sd1neg=point.sd1neg,
            sd1pos=point.sd1pos,
            sd2neg=point.sd2neg,
            sd2pos=point.sd2pos,
            sd3neg=point.sd3neg,
            sd3pos=point.sd3pos,
        )


class ZScoreResult(BaseModel):
    """
    Z-score of one measurement against a reference table.

    ``z_score`` is None when the input was invalid or the table has no
    coverage; ``classification`` then carries the reason. A None z-score is
    never a normal reading.
    """

    model_config = ConfigDict(frozen=True)

    z_score: Optional[float]
    percentile: Optional[float]
    classification: str
    exact_match: bool = False
    interpolated: bool = False
    reference_values: Optional[ReferenceValues] = None


def _is_valid_input(age_days: float, measured_value: float, config: GrowthConfig) -> bool:
    try:
        age = float(age_days)
        value = float(measured_value)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(age) and math.isfinite(value)):
        return False
    return value > 0 and 0 <= age <= config.max_age_days


def _has_valid_lms(point: ReferencePoint) -> bool:
    """M and S must be positive and every LMS parameter finite for the formula to apply."""
    return (
        math.isfinite(point.l_value)
        and math.isfinite(point.m_value)
        and math.isfinite(point.s_value)
        and point.m_value > 0
        and point.s_value > 0
    )


def calculate_zscore(
    table: ReferenceTable,
    gender: Gender,
    age_days: float,
    measured_value: float,
    config: Optional[GrowthConfig] = None,
) -> ZScoreResult:
    """
    Z-score, percentile and weight-for-age classification for one measurement.

    Invalid input (non-positive value, age outside [0, max_age_days]) and
    missing reference coverage are reported through the result rather than
    raised. Fractional ages are rounded to whole days.

    Args:
        table: Reference table for the measurement's chart type
        gender: Patient gender
        age_days: Age at measurement in days
        measured_value: Measurement (kg or cm)
        config: Growth configuration

    Returns:
        ZScoreResult with z-score rounded to 2 decimals
    """
    config = config or DEFAULT_CONFIG
    if not _is_valid_input(age_days, measured_value, config):
        return ZScoreResult(z_score=None, percentile=None, classification=INVALID_INPUT)

    age = int(round(float(age_days)))
    found = lookup_reference(table, gender, age)
    if found.point is None:
        return ZScoreResult(z_score=None, percentile=None, classification=NO_REFERENCE_DATA)

    point = found.point
    reference_values = ReferenceValues.from_point(point)
    if not _has_valid_lms(point):
        return ZScoreResult(
            z_score=None,
            percentile=None,
            classification=INVALID_REFERENCE,
            exact_match=found.exact,
            interpolated=found.interpolated,
            reference_values=reference_values,
        )

    x = float(measured_value)
    z = calculate_lms_zscore(x, point.l_value, point.m_value, point.s_value)
    z = saturate_zscore(z, x, point.m_value, config)

    return ZScoreResult(
        z_score=round(z, 2),
        percentile=zscore_to_percentile(z, config),
        classification=classify_weight_for_age(round(z, 2)).classification,
        exact_match=found.exact,
        interpolated=found.interpolated,
        reference_values=reference_values,
    )


def calculate_zscores(
    table: ReferenceTable,
    gender: Gender,
    ages: Sequence[float],
    values: Sequence[float],
    config: Optional[GrowthConfig] = None,
) -> List[ZScoreResult]:
    """
    Vectorised calculate_zscore over many measurements of one patient.

    Reference points are resolved per measurement; the LMS transformation
    runs once over the whole batch.

    Raises:
        ValueError: If ages and values differ in length
    """
    config = config or DEFAULT_CONFIG
    if len(ages) != len(values):
        raise ValueError("ages and values must have the same length")

    n = len(ages)
    results: List[Optional[ZScoreResult]] = [None] * n
    lookups: List[Tuple[int, float, ReferencePoint, bool, bool]] = []

    for i, (age, value) in enumerate(zip(ages, values)):
        if not _is_valid_input(age, value, config):
            results[i] = ZScoreResult(z_score=None, percentile=None, classification=INVALID_INPUT)
            continue
        found = lookup_reference(table, gender, int(round(float(age))))
        if found.point is None:
            results[i] = ZScoreResult(
                z_score=None, percentile=None, classification=NO_REFERENCE_DATA
            )
            continue
        if not _has_valid_lms(found.point):
            results[i] = ZScoreResult(
                z_score=None,
                percentile=None,
                classification=INVALID_REFERENCE,
                exact_match=found.exact,
                interpolated=found.interpolated,
                reference_values=ReferenceValues.from_point(found.point),
            )
            continue
        lookups.append((i, float(value), found.point, found.exact, found.interpolated))

    if lookups:
        X = np.array([item[1] for item in lookups], dtype=np.float64)
        L = np.array([item[2].l_value for item in lookups], dtype=np.float64)
        M = np.array([item[2].m_value for item in lookups], dtype=np.float64)
        S = np.array([item[2].s_value for item in lookups], dtype=np.float64)
        Z = lms_zscore(X, L, M, S)

        for (i, x, point, exact, interpolated), z in zip(lookups, Z):
            z = saturate_zscore(float(z), x, point.m_value, config)
            results[i] = ZScoreResult(
                z_score=round(z, 2),
                percentile=zscore_to_percentile(z, config),
                classification=classify_weight_for_age(round(z, 2)).classification,
                exact_match=exact,
                interpolated=interpolated,
                reference_values=ReferenceValues.from_point(point),
            )

    return results
