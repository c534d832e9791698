"""
Growth alerts for severe and worsening deviation.

Alerts are returned to the caller and logged; delivering them (paging a
clinician, writing an alert table) belongs to the caller. Raising an alert
never raises an exception.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import math

import pandas as pd
from pydantic import BaseModel, ConfigDict

from .config import DEFAULT_CONFIG, GrowthConfig
from .detector_pipeline import DetectorPipeline
from .methods.base import BaseDetector
from .methods.deviation.detector import SevereDeviationDetector
from .methods.trend.detector import WorseningTrendDetector

logger = logging.getLogger(__name__)

SEVERE_DEVIATION = SevereDeviationDetector.reason


class GrowthAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: str
    reasons: Tuple[str, ...]
    metrics: Dict[str, float]
    message: str


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def check_growth_alerts(
    record_id: str,
    weight_for_age_z: Optional[float] = None,
    height_for_age_z: Optional[float] = None,
    config: Optional[GrowthConfig] = None,
) -> Optional[GrowthAlert]:
    """
    Alert when weight- or height-for-age z-score is below the severe threshold.

    Args:
        record_id: Identifier of the measurement or visit
        weight_for_age_z: Weight-for-age z-score, if computed
        height_for_age_z: Height-for-age z-score, if computed
        config: Growth configuration (severe_alert_threshold, -3 by default)

    Returns:
        GrowthAlert if either z-score is below the threshold, else None
    """
    config = config or DEFAULT_CONFIG
    metrics = {
        name: z
        for name, z in (
            ("weight_for_age_z", _as_float(weight_for_age_z)),
            ("height_for_age_z", _as_float(height_for_age_z)),
        )
        if z is not None and z < config.severe_alert_threshold
    }
    if not metrics:
        return None

    details = ", ".join(f"{name}={z:.2f}" for name, z in metrics.items())
    message = f"Severe growth deviation for {record_id}: {details}"
    logger.warning(message)
    return GrowthAlert(
        record_id=str(record_id),
        reasons=(SEVERE_DEVIATION,),
        metrics=metrics,
        message=message,
    )


def default_detectors(frame: pd.DataFrame, config: Optional[GrowthConfig] = None) -> List[BaseDetector]:
    """Severe deviation plus worsening trend, ordered by age when the frame has one."""
    config = config or DEFAULT_CONFIG
    order_col = "age_days" if "age_days" in frame.columns else None
    return [
        SevereDeviationDetector(threshold=config.severe_alert_threshold),
        WorseningTrendDetector(order_col=order_col),
    ]


def scan_for_alerts(
    frame: pd.DataFrame,
    columns: Sequence[str],
    detectors: Optional[Sequence[BaseDetector]] = None,
    logic: str = "OR",
    id_col: Optional[str] = None,
) -> List[GrowthAlert]:
    """
    Run alert detectors over an assessment frame.

    Flags are combined with a DetectorPipeline; every flagged (row, column)
    yields one alert naming the detectors that raised it.

    Args:
        frame: Assessment frame, one row per measurement
        columns: Z-score columns to inspect
        detectors: Detectors to run (severe deviation and worsening trend by default)
        logic: "OR" or "AND" combination of detector flags
        id_col: Column used as record id (the frame index otherwise)

    Returns:
        Alerts in frame order

    Raises:
        ValueError: If a column is missing
        KeyError: If logic is not supported
    """
    pipeline = DetectorPipeline(logic)
    if frame.empty:
        return []
    if detectors is None:
        detectors = default_detectors(frame)

    per_detector = [(detector, detector.detect(frame, list(columns))) for detector in detectors]
    combined = pipeline.combine_flags([flags for _, flags in per_detector])

    alerts = []
    for idx in frame.index:
        for col in columns:
            if col not in combined or not combined[col].loc[idx]:
                continue
            reasons = tuple(
                detector.reason
                for detector, flags in per_detector
                if col in flags and flags[col].loc[idx]
            )
            record_id = str(frame.at[idx, id_col]) if id_col else str(idx)
            z = _as_float(frame.at[idx, col])
            metrics = {col: z} if z is not None else {}
            message = f"{', '.join(reasons).capitalize()} for {record_id}: {col}={frame.at[idx, col]}"
            logger.warning(message)
            alerts.append(
                GrowthAlert(record_id=record_id, reasons=reasons, metrics=metrics, message=message)
            )
    return alerts
