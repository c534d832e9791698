"""
growthref: child growth assessment against LMS reference curves.

Build a reference table once, then assess measurements against it:

    result = build_reference_tables(load_reference_csv("who_reference.csv"))
    wfa = result.table(ChartType.WFA)
    assessment = assess(wfa, Gender.FEMALE, age_days=365, measured_value=8.9)
"""

from .alerts import GrowthAlert, check_growth_alerts, scan_for_alerts
from .assessment import (
    AssessmentSummary,
    GrowthAssessment,
    GrowthStatusResult,
    Measurement,
    SeriesAssessment,
    assess,
    assess_growth_status,
    assess_series,
    assessments_to_frame,
    summarize_assessments,
)
from .classification import (
    Classification,
    GrowthStatus,
    Severity,
    classify_growth_status,
    classify_weight_for_age,
)
from .config import DEFAULT_CONFIG, GrowthConfig
from .detector_pipeline import DetectorPipeline
from .lookup import interpolate_point, lookup_reference, resolve_point
from .reference import (
    BuildError,
    BuildResult,
    ChartType,
    Gender,
    ReferencePoint,
    ReferenceStore,
    ReferenceTable,
    build_reference_table,
    build_reference_tables,
)
from .sources import load_reference_csv, rows_from_who_json
from .trends import (
    analyze_trend,
    calculate_velocity,
    compare_growth,
    project_growth,
    project_weight,
)
from .zscores import (
    ZScoreResult,
    calculate_zscore,
    calculate_zscores,
    percentile_to_zscore,
    zscore_to_percentile,
)

__all__ = [
    "AssessmentSummary",
    "BuildError",
    "BuildResult",
    "ChartType",
    "Classification",
    "DEFAULT_CONFIG",
    "DetectorPipeline",
    "Gender",
    "GrowthAlert",
    "GrowthAssessment",
    "GrowthConfig",
    "GrowthStatus",
    "GrowthStatusResult",
    "Measurement",
    "ReferencePoint",
    "ReferenceStore",
    "ReferenceTable",
    "SeriesAssessment",
    "Severity",
    "ZScoreResult",
    "analyze_trend",
    "assess",
    "assess_growth_status",
    "assess_series",
    "assessments_to_frame",
    "build_reference_table",
    "build_reference_tables",
    "calculate_velocity",
    "calculate_zscore",
    "calculate_zscores",
    "check_growth_alerts",
    "classify_growth_status",
    "classify_weight_for_age",
    "compare_growth",
    "interpolate_point",
    "load_reference_csv",
    "lookup_reference",
    "percentile_to_zscore",
    "project_growth",
    "project_weight",
    "resolve_point",
    "rows_from_who_json",
    "scan_for_alerts",
    "summarize_assessments",
    "zscore_to_percentile",
]
