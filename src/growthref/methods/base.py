"""
Base detector class for growth alert methods.
"""

from abc import ABC, abstractmethod
from typing import Dict

import pandas as pd


class BaseDetector(ABC):
    """
    Abstract base class for detectors that flag concerning z-scores.

    A detector receives a frame of assessments (one row per measurement) and
    the z-score columns to inspect, and returns one boolean Series per column
    aligned to the frame's index. Missing z-scores are never flagged.

    Example subclass implementation:
        class CeilingDetector(BaseDetector):
            def __init__(self, ceiling: float = 3.0):
                self.ceiling = ceiling
                self.validate_config()

            def validate_config(self) -> None:
                if self.ceiling <= 0:
                    raise ValueError("ceiling must be positive")

            def detect(self, df: pd.DataFrame, columns: list[str]) -> Dict[str, pd.Series]:
                return {c: self._zscores(df, c) > self.ceiling for c in columns}
    """

    #: Short description used in alert messages
    reason: str = "growth deviation"

    @abstractmethod
    def detect(self, df: pd.DataFrame, columns: list[str]) -> Dict[str, pd.Series]:
        """
        Flag rows of the specified z-score columns.

        Args:
            df: Assessment frame.
            columns: Z-score column names to inspect.

        Returns:
            Dictionary mapping column names to boolean Series of flags.
        """

    @abstractmethod
    def validate_config(self) -> None:
        """
        Validate detector thresholds.

        Raises:
            ValueError: If configuration is invalid.
        """

    def _validate_column(self, df: pd.DataFrame, column: str) -> None:
        """
        Raise ValueError if the column is missing from the frame.
        """
        if column not in df.columns:
            raise ValueError(f"Column '{column}' does not exist in DataFrame")

    def _zscores(self, df: pd.DataFrame, column: str) -> pd.Series:
        """Column as floats, with anything non-numeric treated as missing."""
        self._validate_column(df, column)
        return pd.to_numeric(df[column], errors="coerce").astype(float)
