"""Detector pipeline combining alert flags from several detectors."""

from typing import Dict, List

import pandas as pd


class DetectorPipeline:
    """
    Combine per-column boolean flags from multiple detectors.

    "OR" raises a flag when any detector does; "AND" only when all of them
    do. A column a detector did not report counts as unflagged for it.
    """

    SUPPORTED_LOGIC = ("OR", "AND")

    def __init__(self, logic: str = "OR") -> None:
        """
        Args:
            logic: "OR" or "AND".

        Raises:
            KeyError: If logic is not supported.
        """
        if logic not in self.SUPPORTED_LOGIC:
            raise KeyError(f"Unsupported combination logic '{logic}'")
        self.logic = logic

    def combine_flags(
        self, flags_list: List[Dict[str, pd.Series]]
    ) -> Dict[str, pd.Series]:
        """
        Combine flags from multiple detectors.

        Args:
            flags_list: One {column: Series} dict per detector, all aligned
                to the same index.

        Returns:
            {column: combined boolean Series}
        """
        non_empty = [flags for flags in flags_list if flags]
        if not non_empty:
            return {}

        index = next(iter(non_empty[0].values())).index
        columns = sorted({col for flags in non_empty for col in flags})

        combined = {}
        for col in columns:
            stacked = pd.concat(
                [
                    flags.get(col, pd.Series(False, index=index)).reindex(index, fill_value=False)
                    for flags in non_empty
                ],
                axis=1,
            )
            merged = stacked.any(axis=1) if self.logic == "OR" else stacked.all(axis=1)
            combined[col] = merged.astype(bool).rename(col)
        return combined
