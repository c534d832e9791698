#!/usr/bin/env python3
"""
Download WHO growth standards and convert them into growthref reference rows.

The WHO 0-24 month LMS tables (weight-, length- and head-circumference-for-age)
are fetched from the CDC mirror, ages are converted from months to days, the
SD0..SD4 lines are derived from the LMS parameters, and all charts are written
to one CSV that load_reference_csv reads back.
"""

import argparse
import hashlib
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from growthref.config import WHO_DAYS_PER_MONTH
from growthref.reference import ChartType, Gender, build_reference_tables
from growthref.zscores import measurement_at_zscore

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

_FTP = "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts"

# (chart type, gender, url)
DATA_SOURCES: Dict[str, Tuple[ChartType, Gender, str]] = {
    "boys_wtage": (ChartType.WFA, Gender.MALE, f"{_FTP}/WHO-Boys-Weight-for-age-Percentiles.csv"),
    "girls_wtage": (ChartType.WFA, Gender.FEMALE, f"{_FTP}/WHO-Girls-Weight-for-age%20Percentiles.csv"),
    "boys_lenage": (ChartType.HFA, Gender.MALE, f"{_FTP}/WHO-Boys-Length-for-age-Percentiles.csv"),
    "girls_lenage": (ChartType.HFA, Gender.FEMALE, f"{_FTP}/WHO-Girls-Length-for-age-Percentiles.csv"),
    "boys_headage": (
        ChartType.HCFA,
        Gender.MALE,
        f"{_FTP}/WHO-Boys-Head-Circumference-for-age-Percentiles.csv",
    ),
    "girls_headage": (
        ChartType.HCFA,
        Gender.FEMALE,
        f"{_FTP}/WHO-Girls-Head-Circumference-for-age-Percentiles.csv",
    ),
}

# Output column -> z-score of the SD line
SD_LINES = {
    "sd4neg": -4,
    "sd3neg": -3,
    "sd2neg": -2,
    "sd1neg": -1,
    "sd0": 0,
    "sd1pos": 1,
    "sd2pos": 2,
    "sd3pos": 3,
    "sd4pos": 4,
}

OUTPUT_COLUMNS = [
    "chart_type",
    "gender",
    "age_days",
    "l_value",
    "m_value",
    "s_value",
    "sd0",
    "sd1neg",
    "sd1pos",
    "sd2neg",
    "sd2pos",
    "sd3neg",
    "sd3pos",
    "sd4neg",
    "sd4pos",
]


def download_csv(url: str, timeout: int = 30) -> str:
    """Download CSV content from URL with retries."""
    try:
        retry_strategy = Retry(
            total=3,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=2,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)

        with requests.Session() as session:
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            response = session.get(url, timeout=timeout, verify=True)
            response.raise_for_status()
            return response.text
    except Exception as e:
        logger.error(f"Failed to download {url}: {e}")
        raise


def compute_sha256(content: str) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def months_to_days(months: float) -> int:
    """WHO month ages to whole days (30.4375 days per month)."""
    return int(round(months * WHO_DAYS_PER_MONTH))


def parse_who_csv(content: str, chart_type: ChartType, gender: Gender) -> pd.DataFrame:
    """
    Parse a WHO monthly LMS table into reference rows.

    Rows with a missing month or LMS value are dropped with a warning.

    Raises:
        ValueError: If the Month, L, M or S column is absent
    """
    frame = pd.read_csv(io.StringIO(content))
    frame.columns = [str(c).replace("\ufeff", "").strip() for c in frame.columns]

    missing = [col for col in ("Month", "L", "M", "S") if col not in frame.columns]
    if missing:
        raise ValueError(f"Essential columns {missing} not found in {chart_type.value} header")

    lms = frame[["Month", "L", "M", "S"]].apply(pd.to_numeric, errors="coerce")
    incomplete = lms.isna().any(axis=1)
    if incomplete.any():
        logger.warning(f"{chart_type.value} {gender.value}: dropping {int(incomplete.sum())} incomplete rows")
    lms = lms[~incomplete]

    rows = []
    for month, l, m, s in lms.itertuples(index=False):
        row = {
            "chart_type": chart_type.value,
            "gender": gender.value,
            "age_days": months_to_days(month),
            "l_value": l,
            "m_value": m,
            "s_value": s,
        }
        for column, z in SD_LINES.items():
            row[column] = round(measurement_at_zscore(l, m, s, z), 4)
        rows.append(row)
    return pd.DataFrame(rows, columns=OUTPUT_COLUMNS)


def verify_rows(frame: pd.DataFrame) -> None:
    """Build tables from the written rows to make sure they are usable."""
    # Partial downloads may cover one gender only
    result = build_reference_tables(frame.to_dict(orient="records"), required_genders=())
    for chart_type, table in result.tables.items():
        low, high = table.age_range()
        logger.info(f"  {chart_type.value}: {len(table)} points, ages {low}-{high} days")
    if result.dropped_count:
        logger.warning(f"Verification dropped {result.dropped_count} rows")


def main(output_path: Path = None, strict_mode: bool = False) -> Path:
    """Download every WHO table and write the combined reference CSV."""
    if output_path is None:
        output_path = Path(__file__).parent.parent / "data" / "who_reference.csv"
    output_path.parent.mkdir(parents=True, exist_ok=True)

    frames: List[pd.DataFrame] = []
    metadata = {}
    failed_sources = []

    with tqdm(total=len(DATA_SOURCES), desc="Fetching sources") as pbar:
        for name, (chart_type, gender, url) in DATA_SOURCES.items():
            pbar.set_postfix({"source": name})
            pbar.update(1)
            try:
                csv_content = download_csv(url)
                frames.append(parse_who_csv(csv_content, chart_type, gender))
                metadata[name] = {
                    "url": url,
                    "hash": compute_sha256(csv_content),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            except Exception as e:
                failed_sources.append(name)
                logger.error(f"Failed to process {name}: {e}")

    if strict_mode and failed_sources:
        raise RuntimeError(
            f"Strict mode failed: Unable to process sources: {', '.join(failed_sources)}"
        )
    if not frames:
        raise RuntimeError("No reference sources could be processed")

    combined = pd.concat(frames, ignore_index=True)
    combined.to_csv(output_path, index=False)
    output_path.with_suffix(".json").write_text(json.dumps(metadata, indent=2))
    logger.info(f"Saved {len(combined)} reference rows to {output_path}")

    verify_rows(combined)
    return output_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Download WHO growth standards as growthref reference rows."
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output CSV path (default: data/who_reference.csv)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Strict mode: exit on any error instead of continuing with warnings",
    )
    args = parser.parse_args()

    main(output_path=args.output, strict_mode=args.strict)
