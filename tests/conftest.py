import pytest
import pandas as pd

from growthref.reference import ChartType, Gender, ReferencePoint, ReferenceTable, build_reference_table


def sd_lines(m: float, step: float) -> dict:
    """Evenly spaced SD lines around the median, for test rows."""
    return {
        "sd0": m,
        "sd1neg": m - step,
        "sd1pos": m + step,
        "sd2neg": m - 2 * step,
        "sd2pos": m + 2 * step,
        "sd3neg": m - 3 * step,
        "sd3pos": m + 3 * step,
        "sd4neg": m - 4 * step,
        "sd4pos": m + 4 * step,
    }


def make_row(age_days, gender="MALE", l=1.0, m=10.0, s=0.1, chart_type="WFA", **overrides) -> dict:
    """Raw reference row in canonical column names."""
    row = {
        "age_days": age_days,
        "gender": gender,
        "chart_type": chart_type,
        "l_value": l,
        "m_value": m,
        "s_value": s,
        **sd_lines(float(m), float(m) * float(s)),
    }
    row.update(overrides)
    return row


def make_point(age_days, gender=Gender.MALE, l=1.0, m=10.0, s=0.1, **overrides) -> ReferencePoint:
    fields = {k: v for k, v in make_row(age_days, gender.value, l, m, s).items() if k != "chart_type"}
    fields.update(overrides)
    return ReferencePoint(**fields)


def make_table(points_by_gender, chart_type=ChartType.WFA) -> ReferenceTable:
    return ReferenceTable(chart_type, points_by_gender)


@pytest.fixture
def raw_rows() -> list:
    """Weight-for-age rows at 0, 30 and 60 days for both genders, in shuffled order."""
    return [
        make_row(60, "MALE", l=0.1, m=5.0, s=0.12),
        make_row(0, "FEMALE", l=0.38, m=3.23, s=0.141),
        make_row(30, "MALE", l=0.2, m=4.0, s=0.10),
        make_row(60, "FEMALE", l=0.05, m=4.7, s=0.12),
        make_row(0, "MALE", l=0.35, m=3.35, s=0.146),
        make_row(30, "FEMALE", l=0.17, m=3.8, s=0.11),
    ]


@pytest.fixture
def wfa_table(raw_rows) -> ReferenceTable:
    return build_reference_table(raw_rows, ChartType.WFA)


@pytest.fixture
def hfa_table() -> ReferenceTable:
    rows = [
        make_row(age, gender, l=1.0, m=m, s=0.035, chart_type="HFA")
        for gender in ("MALE", "FEMALE")
        for age, m in ((0, 49.9), (30, 54.7), (60, 58.4))
    ]
    return build_reference_table(rows, ChartType.HFA)


@pytest.fixture
def lms_zero_table() -> ReferenceTable:
    """Single-age table with L=0, M=10, S=0.1 for both genders."""
    return make_table(
        {
            Gender.MALE: [make_point(100, Gender.MALE, l=0.0, m=10.0, s=0.1)],
            Gender.FEMALE: [make_point(100, Gender.FEMALE, l=0.0, m=10.0, s=0.1)],
        }
    )


@pytest.fixture
def male_only_table() -> ReferenceTable:
    return make_table({Gender.MALE: [make_point(0), make_point(30, m=11.0)]})


@pytest.fixture
def sample_data() -> pd.DataFrame:
    """Assessment frame with weight- and height-for-age z-scores."""
    return pd.DataFrame(
        {
            "age_days": [30, 60, 90, 120],
            "waz": [-0.5, -1.8, -3.4, None],
            "haz": [0.2, 0.1, -2.5, -3.1],
        }
    )
