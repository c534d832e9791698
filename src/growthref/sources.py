"""
Readers that turn reference files into raw rows for build_reference_tables.

Rows are returned as plain dicts with their source column names and textual
values; parsing and validation happen once, in the table builder.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union
import json
import logging

import pandas as pd

from .reference import ChartType, normalize_gender

logger = logging.getLogger(__name__)

# Keys of the WHO JSON layout mapped to chart types
WHO_CHART_KEYS = {
    "wfa": ChartType.WFA,
    "hfa": ChartType.HFA,
    "lhfa": ChartType.HFA,
    "hcfa": ChartType.HCFA,
    "bfa": ChartType.BFA,
    "bmi": ChartType.BFA,
}

_CHART_COLUMNS = ("chart_type", "chartType")


def load_reference_csv(
    path: Union[str, Path], chart_type: Optional[ChartType] = None
) -> List[Dict[str, Any]]:
    """
    Read reference rows from a CSV file.

    All cells are read as text and empty cells as empty strings so the
    builder decides what is malformed.

    Args:
        path: CSV file with one row per (gender, age) and LMS/SD columns
        chart_type: Chart type for files without a chart type column

    Returns:
        List of raw row dicts

    Raises:
        FileNotFoundError: If the file does not exist
    """
    frame = pd.read_csv(path, dtype=str, keep_default_na=False)
    if chart_type is not None and not any(c in frame.columns for c in _CHART_COLUMNS):
        frame["chart_type"] = chart_type.value
    logger.debug(f"Read {len(frame)} reference rows from {path}")
    return frame.to_dict(orient="records")


def rows_from_who_json(source: Union[str, Path, Mapping[str, Any]]) -> Iterator[Dict[str, Any]]:
    """
    Yield raw rows from the WHO JSON layout.

    The layout nests rows by chart and sex, e.g.
    ``{"wfa": {"boys": [{"Day": "0", "L": "0.3487", ...}], "girls": [...]}}``.
    Unknown chart or sex keys are skipped with a warning.

    Args:
        source: Path to a JSON file, or the already parsed document
    """
    if isinstance(source, (str, Path)):
        with open(source, encoding="utf-8") as f:
            document = json.load(f)
    else:
        document = source

    for chart_key, by_sex in document.items():
        chart_type = WHO_CHART_KEYS.get(str(chart_key).lower())
        if chart_type is None:
            logger.warning(f"Skipping unknown chart '{chart_key}' in WHO data")
            continue
        for sex_key, rows in by_sex.items():
            try:
                gender = normalize_gender(sex_key)
            except ValueError:
                logger.warning(f"Skipping unknown sex '{sex_key}' in WHO {chart_key} data")
                continue
            for row in rows:
                yield {**row, "gender": gender.value, "chart_type": chart_type.value}
