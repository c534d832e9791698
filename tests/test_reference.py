"""
Tests for reference table construction and the reference snapshot store.
"""

import logging
import threading

import numpy as np
import pytest
from pydantic import ValidationError

from conftest import make_point, make_row, make_table
from growthref.config import GrowthConfig
from growthref.reference import (
    BuildError,
    ChartType,
    Gender,
    ReferenceStore,
    ReferenceTable,
    build_reference_table,
    build_reference_tables,
    normalize_gender,
)


class TestNormalizeGender:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("M", Gender.MALE),
            ("male", Gender.MALE),
            ("Boys", Gender.MALE),
            (1, Gender.MALE),
            ("1.0", Gender.MALE),
            ("f", Gender.FEMALE),
            ("FEMALE", Gender.FEMALE),
            ("girls", Gender.FEMALE),
            (2, Gender.FEMALE),
            (Gender.FEMALE, Gender.FEMALE),
        ],
    )
    def test_tc001_accepts_textual_and_coded_values(self, value, expected):
        """TC001: Textual and coded sex values map to Gender."""
        assert normalize_gender(value) is expected

    def test_tc002_rejects_unknown_value(self):
        """TC002: Unknown sex value raises ValueError."""
        with pytest.raises(ValueError, match="Unrecognized gender"):
            normalize_gender("X")


class TestBuildReferenceTables:
    def test_tc001_groups_and_sorts_by_age(self, raw_rows):
        """TC001: Shuffled rows are grouped per gender and sorted ascending."""
        table = build_reference_table(raw_rows)
        assert set(table.genders) == {Gender.MALE, Gender.FEMALE}
        for gender in table.genders:
            ages = [p.age_days for p in table.points(gender)]
            assert ages == [0, 30, 60]
        assert len(table) == 6

    def test_tc002_accepts_column_aliases(self):
        """TC002: WHO headers (Day, L, M, S, SD1...) and sex labels are accepted."""
        rows = [
            {
                "Day": "0", "sex": "boys", "L": "0.3487", "M": "3.3464", "S": "0.14602",
                "SD0": "3.3", "SD1neg": "2.9", "SD1": "3.9", "SD2neg": "2.5", "SD2": "4.4",
                "SD3neg": "2.1", "SD3": "5.0", "SD4neg": "1.8", "SD4": "5.6",
            },
            {
                "ageDays": 0, "gender": "girls", "lValue": 0.3809, "mValue": 3.2322, "sValue": 0.14171,
                "sd0": 3.2, "sd1neg": 2.8, "sd1pos": 3.7, "sd2neg": 2.4, "sd2pos": 4.2,
                "sd3neg": 2.0, "sd3pos": 4.8,
            },
        ]
        table = build_reference_table(rows)
        boy = table.points(Gender.MALE)[0]
        assert boy.l_value == pytest.approx(0.3487)
        assert boy.sd1pos == pytest.approx(3.9)
        assert boy.sd4pos == pytest.approx(5.6)
        girl = table.points(Gender.FEMALE)[0]
        assert girl.m_value == pytest.approx(3.2322)
        assert girl.sd4neg is None

    def test_tc003_drops_malformed_rows(self, raw_rows):
        """TC003: Malformed rows are dropped, counted and recorded, not raised."""
        bad = [
            make_row(90, m=0),
            make_row(90, s=-0.1),
            make_row(-1),
            make_row(90, gender="unknown"),
            make_row(90, l=float("nan")),
            make_row(90, sd3neg="abc"),
            make_row(90, chart_type="XYZ"),
        ]
        result = build_reference_tables(raw_rows + bad)
        assert result.dropped_count == len(bad)
        assert [d.index for d in result.dropped_reasons] == list(
            range(len(raw_rows), len(raw_rows) + len(bad))
        )
        assert all(d.reason for d in result.dropped_reasons)
        assert len(result.table(ChartType.WFA)) == 6

    def test_tc004_logs_dropped_count_once(self, raw_rows, caplog):
        """TC004: One warning summarises the dropped rows."""
        with caplog.at_level(logging.WARNING, logger="growthref.reference"):
            build_reference_tables(raw_rows + [make_row(90, m=-1), make_row(120, s=0)])
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "Dropped 2 malformed reference rows" in warnings[0].getMessage()

    def test_tc005_unparsable_sd4_becomes_none(self, raw_rows):
        """TC005: Optional SD4 lines that do not parse are absent, not zero."""
        rows = raw_rows + [make_row(90, sd4neg="n/a", sd4pos="")]
        table = build_reference_table(rows)
        point = table.points(Gender.MALE)[-1]
        assert point.age_days == 90
        assert point.sd4neg is None
        assert point.sd4pos is None

    def test_tc006_textual_numbers_are_parsed(self, raw_rows):
        """TC006: Numbers arriving as text are parsed defensively."""
        rows = raw_rows + [make_row(" 90 ", l="0.05", m=" 5.5", s="0.12")]
        point = build_reference_table(rows).points(Gender.MALE)[-1]
        assert point.age_days == 90
        assert point.m_value == pytest.approx(5.5)

    def test_tc007_first_duplicate_wins_by_default(self, raw_rows):
        """TC007: With repeated ages the first occurrence in input order is kept."""
        rows = raw_rows + [make_row(30, m=99.0)]
        result = build_reference_tables(rows)
        point = result.table(ChartType.WFA).points(Gender.MALE)[1]
        assert point.m_value == pytest.approx(4.0)
        assert result.duplicate_count == 1

    def test_tc008_last_duplicate_policy(self, raw_rows):
        """TC008: duplicate_policy='last' keeps the final occurrence."""
        rows = raw_rows + [make_row(30, m=99.0)]
        config = GrowthConfig(duplicate_policy="last")
        point = build_reference_table(rows, config=config).points(Gender.MALE)[1]
        assert point.m_value == pytest.approx(99.0)

    def test_tc009_missing_gender_raises(self):
        """TC009: A table without a required gender is a BuildError."""
        rows = [make_row(0, "MALE"), make_row(30, "MALE")]
        with pytest.raises(BuildError, match="FEMALE"):
            build_reference_tables(rows)

    def test_tc010_required_genders_can_be_relaxed(self):
        """TC010: required_genders narrows the coverage check."""
        rows = [make_row(0, "MALE"), make_row(30, "MALE")]
        table = build_reference_table(rows, required_genders=(Gender.MALE,))
        assert table.genders == (Gender.MALE,)
        assert Gender.FEMALE not in table

    def test_tc011_no_valid_rows_raises(self):
        """TC011: Nothing parsable is a BuildError."""
        with pytest.raises(BuildError, match="No valid reference rows"):
            build_reference_tables([make_row(0, m=0), {"foo": "bar"}])

    def test_tc012_rows_split_by_chart_type(self, raw_rows):
        """TC012: Rows for several charts yield one table each; missing chart type defaults."""
        hfa = [make_row(0, g, m=50.0, chart_type="HFA") for g in ("M", "F")]
        untyped = [dict(make_row(90, g), chart_type="") for g in ("M", "F")]
        result = build_reference_tables(raw_rows + hfa + untyped)
        assert set(result.tables) == {ChartType.WFA, ChartType.HFA}
        assert len(result.table(ChartType.WFA)) == 8
        assert result.table(ChartType.HFA).chart_type == ChartType.HFA

    def test_tc013_single_table_for_absent_chart_raises(self, raw_rows):
        """TC013: Asking for a chart type with no rows is a BuildError."""
        result = build_reference_tables(raw_rows)
        with pytest.raises(BuildError):
            result.table(ChartType.HCFA)

    def test_tc014_single_table_ignores_coverage_of_other_charts(self, raw_rows):
        """TC014: An incomplete chart other than the requested one does not fail the build."""
        rows = raw_rows + [make_row(0, "MALE", m=50.0, chart_type="HFA")]
        table = build_reference_table(rows, ChartType.WFA)
        assert table.chart_type == ChartType.WFA
        assert set(table.genders) == {Gender.MALE, Gender.FEMALE}
        with pytest.raises(BuildError, match="HFA"):
            build_reference_table(rows, ChartType.HFA)

    def test_tc015_required_chart_types_limit_coverage_check(self, raw_rows):
        """TC015: Only the listed chart types must cover the required genders."""
        rows = raw_rows + [make_row(0, "MALE", m=50.0, chart_type="HFA")]
        with pytest.raises(BuildError, match=r"HFA has no valid rows for: \['FEMALE'\]"):
            build_reference_tables(rows)
        result = build_reference_tables(rows, required_chart_types=(ChartType.WFA,))
        assert Gender.FEMALE not in result.table(ChartType.HFA)
        assert len(result.table(ChartType.WFA)) == 6


class TestReferenceTable:
    def test_tc001_points_are_immutable(self, wfa_table):
        """TC001: Points are frozen and held in tuples."""
        points = wfa_table.points(Gender.MALE)
        assert isinstance(points, tuple)
        with pytest.raises(ValidationError):
            points[0].m_value = 1.0

    def test_tc002_age_index_is_read_only(self, wfa_table):
        """TC002: The numpy age index cannot be written."""
        ages = wfa_table.ages(Gender.MALE)
        np.testing.assert_array_equal(ages, [0, 30, 60])
        with pytest.raises(ValueError):
            ages[0] = 5

    def test_tc003_absent_gender_is_empty(self, male_only_table):
        """TC003: An absent gender has no points and an empty age index."""
        assert male_only_table.points(Gender.FEMALE) == ()
        assert male_only_table.ages(Gender.FEMALE).size == 0

    def test_tc004_age_range(self, wfa_table):
        """TC004: age_range spans all genders; empty tables report (0, 0)."""
        assert wfa_table.age_range() == (0, 60)
        empty = ReferenceTable(ChartType.WFA, {})
        assert empty.is_empty()
        assert empty.age_range() == (0, 0)

    def test_tc005_to_frame(self, wfa_table):
        """TC005: to_frame returns one row per point with string genders."""
        frame = wfa_table.to_frame()
        assert len(frame) == 6
        assert set(frame["gender"]) == {"MALE", "FEMALE"}
        assert {"age_days", "l_value", "m_value", "s_value", "sd4pos"} <= set(frame.columns)
        assert (frame["chart_type"] == "WFA").all()

    def test_tc006_rejects_duplicate_ages(self):
        """TC006: Direct construction with repeated ages raises ValueError."""
        with pytest.raises(ValueError, match="Duplicate ages"):
            make_table({Gender.MALE: [make_point(0), make_point(0)]})

    def test_tc007_rejects_misfiled_gender(self):
        """TC007: Points filed under the wrong gender raise ValueError."""
        with pytest.raises(ValueError, match="another gender"):
            make_table({Gender.FEMALE: [make_point(0, Gender.MALE)]})


class TestReferenceStore:
    def test_tc001_builds_lazily(self, raw_rows):
        """TC001: The first read builds the snapshot; later reads reuse it."""
        calls = []

        def loader():
            calls.append(1)
            return raw_rows

        store = ReferenceStore(loader)
        assert store.version == 0
        first = store.current()
        second = store.current()
        assert first is second
        assert len(calls) == 1
        assert first.version == 1
        assert len(first.table(ChartType.WFA)) == 6

    def test_tc002_refresh_publishes_new_version(self, raw_rows):
        """TC002: refresh swaps in a new snapshot; old references stay intact."""
        rows = list(raw_rows)
        store = ReferenceStore(lambda: rows)
        old = store.current()
        rows.extend(make_row(90, g) for g in ("MALE", "FEMALE"))
        new = store.refresh()
        assert new.version == 2
        assert store.current() is new
        assert len(old.table(ChartType.WFA)) == 6
        assert len(new.table(ChartType.WFA)) == 8

    def test_tc003_failed_refresh_keeps_previous(self, raw_rows, caplog):
        """TC003: A failing loader leaves the published snapshot in place and re-raises."""
        state = {"fail": False}

        def loader():
            if state["fail"]:
                raise IOError("source unavailable")
            return raw_rows

        store = ReferenceStore(loader)
        snapshot = store.current()
        state["fail"] = True
        with caplog.at_level(logging.WARNING, logger="growthref.reference"):
            with pytest.raises(IOError):
                store.refresh()
        assert store.current() is snapshot
        assert "keeping version 1" in caplog.text

    def test_tc004_build_error_propagates(self):
        """TC004: A loader yielding unusable rows surfaces BuildError."""
        store = ReferenceStore(lambda: [make_row(0, "MALE")])
        with pytest.raises(BuildError):
            store.current()
        assert store.version == 0

    def test_tc005_clear_forces_rebuild(self, raw_rows):
        """TC005: clear drops the snapshot; the next read rebuilds."""
        store = ReferenceStore(lambda: raw_rows)
        store.current()
        store.clear()
        assert store.version == 0
        assert store.current().version == 2

    def test_tc006_concurrent_readers_see_complete_snapshots(self, raw_rows):
        """TC006: Readers racing a refresher always see a complete table."""
        store = ReferenceStore(lambda: raw_rows)
        store.current()
        seen = []

        def reader():
            for _ in range(200):
                seen.append(len(store.current().table(ChartType.WFA)))

        def refresher():
            for _ in range(20):
                store.refresh()

        threads = [threading.Thread(target=reader) for _ in range(4)]
        threads.append(threading.Thread(target=refresher))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert set(seen) == {6}
        assert store.version == 21
