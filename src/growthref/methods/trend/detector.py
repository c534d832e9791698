"""
Worsening trend detection for longitudinal growth z-scores.

A child whose z-score falls by a full standard deviation or more between
visits is crossing major percentile lines even if each single value still
looks acceptable.
"""

from typing import Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, ValidationError, field_validator

from ..base import BaseDetector


class WorseningTrendConfig(BaseModel):
    """
    Configuration for worsening trend detection.

    Attributes:
        max_drop (float): Largest tolerated fall in z-score between consecutive
            valid measurements (1.0 by default).
        order_col (Optional[str]): Column giving measurement order ('age_days' by
            default). None keeps the frame's row order.
        group_col (Optional[str]): Column identifying patients when a frame holds
            several; None treats the frame as one series.
    """

    max_drop: float = 1.0
    order_col: Optional[str] = "age_days"
    group_col: Optional[str] = None

    @field_validator("max_drop")
    @classmethod
    def validate_max_drop(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("max_drop must be positive")
        return v

    @field_validator("order_col", "group_col")
    @classmethod
    def validate_optional_column(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Column name must be a non-empty string")
        return v


class WorseningTrendDetector(BaseDetector):
    """
    Detector for z-scores that fell sharply since the previous measurement.

    Each flagged row is the later measurement of a pair whose z-score dropped
    by more than ``max_drop``. Rows with a missing z-score are skipped when
    pairing, so a gap in the series does not hide a fall.

    Usage:
        detector = WorseningTrendDetector(max_drop=1.0, group_col="patient_id")
        flags = detector.detect(frame, ["waz"])
    """

    reason = "worsening growth trend"

    def __init__(
        self,
        max_drop: float = 1.0,
        order_col: Optional[str] = "age_days",
        group_col: Optional[str] = None,
    ) -> None:
        try:
            self.config = WorseningTrendConfig(
                max_drop=max_drop, order_col=order_col, group_col=group_col
            )
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e}") from e
        self.validate_config()

    def validate_config(self) -> None:
        """Ordering and grouping must use different columns."""
        if (
            self.config.order_col is not None
            and self.config.order_col == self.config.group_col
        ):
            raise ValueError("order_col and group_col must differ")

    def detect(self, df: pd.DataFrame, columns: List[str]) -> Dict[str, pd.Series]:
        """
        Flag rows whose z-score dropped by more than max_drop.

        Args:
            df: Assessment frame
            columns: Z-score columns to inspect

        Returns:
            {column: boolean Series} aligned to df.index

        Raises:
            ValueError: If a requested, order or group column is missing
        """
        if self.config.order_col is not None:
            self._validate_column(df, self.config.order_col)
            ordered = df.sort_values(self.config.order_col, kind="stable")
        else:
            ordered = df
        if self.config.group_col is not None:
            self._validate_column(df, self.config.group_col)

        results = {}
        for col in columns:
            z = self._zscores(ordered, col).dropna()
            if self.config.group_col is not None:
                previous = z.groupby(ordered.loc[z.index, self.config.group_col]).shift(1)
            else:
                previous = z.shift(1)
            dropped = (previous - z) > self.config.max_drop
            flags = pd.Series(False, index=df.index, name=col)
            flags.loc[dropped[dropped].index] = True
            results[col] = flags
        return results
