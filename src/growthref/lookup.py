"""
Age-indexed lookup of reference points with linear interpolation.

Ages that fall between two tabulated ages are served by interpolating every
LMS parameter and SD line between the bracketing points. Ages outside the
tabulated range are served by the nearest endpoint (clamp-to-edge).
"""

from typing import NamedTuple, Optional
import logging

import numpy as np

from .reference import OPTIONAL_SD_FIELDS, SD_FIELDS, Gender, ReferencePoint, ReferenceTable

logger = logging.getLogger(__name__)

_INTERPOLATED_FIELDS = ("l_value", "m_value", "s_value") + SD_FIELDS


class ResolvedPoints(NamedTuple):
    """
    Outcome of locating an age in a reference table.

    Exactly one shape is populated: ``exact`` alone, a ``lower``/``upper``
    bracket, a single clamped endpoint (``upper`` only when the age precedes
    the table, ``lower`` only when it follows it), or nothing at all.
    """

    exact: Optional[ReferencePoint] = None
    lower: Optional[ReferencePoint] = None
    upper: Optional[ReferencePoint] = None

    @property
    def is_empty(self) -> bool:
        return self.exact is None and self.lower is None and self.upper is None

    @property
    def is_bracket(self) -> bool:
        return self.lower is not None and self.upper is not None


class ReferenceLookup(NamedTuple):
    """A single usable point for an age, and how it was obtained."""

    point: Optional[ReferencePoint]
    exact: bool = False
    interpolated: bool = False
    clamped: bool = False


def resolve_point(table: ReferenceTable, gender: Gender, age_days: int) -> ResolvedPoints:
    """
    Find the exact point, the tightest bracket, or the nearest edge for an age.

    Uses binary search over the table's sorted age index.

    Args:
        table: Reference table for one chart type
        gender: Gender to look up
        age_days: Age in days (>= 0)

    Returns:
        ResolvedPoints; empty when the gender has no points
    """
    points = table.points(gender)
    if not points:
        return ResolvedPoints()

    ages = table.ages(gender)
    idx = int(np.searchsorted(ages, age_days, side="left"))

    if idx < len(ages) and ages[idx] == age_days:
        return ResolvedPoints(exact=points[idx])
    if idx == 0:
        return ResolvedPoints(upper=points[0])
    if idx == len(ages):
        return ResolvedPoints(lower=points[-1])
    return ResolvedPoints(lower=points[idx - 1], upper=points[idx])


def interpolate_point(
    lower: ReferencePoint, upper: ReferencePoint, target_age: int
) -> ReferencePoint:
    """
    Linearly blend two bracketing points into a synthetic point at target_age.

    progress = (target - lower.age) / (upper.age - lower.age), or 0 for a
    zero-width bracket. SD4 lines are interpolated only when both endpoints
    carry them.

    Args:
        lower: Point at or below the target age
        upper: Point at or above the target age
        target_age: Age in days to interpolate at

    Returns:
        ReferencePoint at target_age flagged as interpolated
    """
    age_range = upper.age_days - lower.age_days
    progress = 0.0 if age_range == 0 else (target_age - lower.age_days) / age_range

    def blend(low: float, high: float) -> float:
        return low + (high - low) * progress

    values = {
        name: blend(getattr(lower, name), getattr(upper, name))
        for name in _INTERPOLATED_FIELDS
    }
    for name in OPTIONAL_SD_FIELDS:
        low, high = getattr(lower, name), getattr(upper, name)
        values[name] = None if low is None or high is None else blend(low, high)

    return ReferencePoint(
        age_days=target_age,
        gender=lower.gender,
        interpolated=True,
        **values,
    )


def lookup_reference(table: ReferenceTable, gender: Gender, age_days: int) -> ReferenceLookup:
    """Resolve an age to one usable point, interpolating inside brackets."""
    resolved = resolve_point(table, gender, age_days)

    if resolved.exact is not None:
        return ReferenceLookup(point=resolved.exact, exact=True)
    if resolved.is_bracket:
        return ReferenceLookup(
            point=interpolate_point(resolved.lower, resolved.upper, age_days),
            interpolated=True,
        )
    if resolved.is_empty:
        return ReferenceLookup(point=None)

    edge = resolved.lower if resolved.lower is not None else resolved.upper
    logger.debug(
        f"Age {age_days} outside {table.chart_type.value} range for {gender.value}; "
        f"using edge point at {edge.age_days} days"
    )
    return ReferenceLookup(point=edge, clamped=True)
