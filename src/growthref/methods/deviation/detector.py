"""
Severe deviation detection for growth z-scores.

Flags measurements whose z-score lies below a severity threshold; by default
z < -3, the WHO cut-off for severe underweight, stunting and wasting.
"""

from typing import Dict, List

import pandas as pd
from pydantic import BaseModel, ValidationError, field_validator

from ..base import BaseDetector


class SevereDeviationConfig(BaseModel):
    """
    Configuration for severe deviation detection.

    Attributes:
        threshold (float): Z-scores strictly below this are flagged (-3.0 by default).
    """

    threshold: float = -3.0

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Severe deviation is measured below the median."""
        if v >= 0:
            raise ValueError("Severe deviation threshold must be negative")
        return v


class SevereDeviationDetector(BaseDetector):
    """
    Detector for z-scores below a severe deviation threshold.

    Usage:
        detector = SevereDeviationDetector(threshold=-3.0)
        flags = detector.detect(frame, ["waz", "haz"])

    Attributes:
        config (SevereDeviationConfig): Validated threshold configuration.
    """

    reason = "severe growth deviation"

    def __init__(self, threshold: float = -3.0) -> None:
        try:
            self.config = SevereDeviationConfig(threshold=threshold)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e}") from e
        self.validate_config()

    def validate_config(self) -> None:
        # Pydantic covers the threshold range; nothing else to cross-check
        pass

    def detect(self, df: pd.DataFrame, columns: List[str]) -> Dict[str, pd.Series]:
        """
        Flag z-scores below the threshold in each column.

        Args:
            df: Assessment frame
            columns: Z-score columns to inspect

        Returns:
            {column: boolean Series}; NaN z-scores are not flagged

        Raises:
            ValueError: If a requested column is missing
        """
        results = {}
        for col in columns:
            z = self._zscores(df, col)
            results[col] = (z < self.config.threshold).fillna(False).astype(bool).rename(col)
        return results
