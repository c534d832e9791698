# Tests for DetectorPipeline

import pytest
import pandas as pd
from growthref.detector_pipeline import DetectorPipeline


class TestDetectorPipeline:
    """Tests for DetectorPipeline class"""

    def test_tc001_detector_pipeline_or_combination(self):
        flags_df = [
            {"col": pd.Series([True, False])},
            {"col": pd.Series([False, True])},
        ]
        pipeline = DetectorPipeline(logic="OR")
        result = pipeline.combine_flags(flags_df)
        expected = pd.Series([True, True], name="col")
        pd.testing.assert_series_equal(result["col"], expected)

    def test_tc002_detector_pipeline_and_combination(self):
        flags_df = [
            {"col": pd.Series([True, True])},
            {"col": pd.Series([False, True])},
        ]
        pipeline = DetectorPipeline(logic="AND")
        result = pipeline.combine_flags(flags_df)
        expected = pd.Series([False, True], name="col")
        pd.testing.assert_series_equal(result["col"], expected)

    def test_tc003_detector_pipeline_raises_keyerror_for_invalid_logic(self):
        with pytest.raises(KeyError, match="Unsupported combination logic 'XOR'"):
            DetectorPipeline(logic="XOR")

    def test_tc004_detector_pipeline_handles_empty_flags_list(self):
        pipeline = DetectorPipeline(logic="OR")
        assert pipeline.combine_flags([]) == {}
        assert pipeline.combine_flags([{}, {}]) == {}

    def test_tc005_detector_pipeline_multiple_columns_or_logic(self):
        flags_df = [
            {"waz": pd.Series([True, False]), "haz": pd.Series([False, True])},
            {"waz": pd.Series([False, True]), "haz": pd.Series([True, False])},
        ]
        pipeline = DetectorPipeline(logic="OR")
        result = pipeline.combine_flags(flags_df)
        pd.testing.assert_series_equal(result["waz"], pd.Series([True, True], name="waz"))
        pd.testing.assert_series_equal(result["haz"], pd.Series([True, True], name="haz"))

    def test_tc006_detector_pipeline_multiple_columns_and_logic(self):
        flags_df = [
            {"waz": pd.Series([True, True]), "haz": pd.Series([False, True])},
            {"waz": pd.Series([True, False]), "haz": pd.Series([False, True])},
        ]
        pipeline = DetectorPipeline(logic="AND")
        result = pipeline.combine_flags(flags_df)
        pd.testing.assert_series_equal(result["waz"], pd.Series([True, False], name="waz"))
        pd.testing.assert_series_equal(result["haz"], pd.Series([False, True], name="haz"))

    def test_tc007_missing_column_counts_as_unflagged(self):
        flags_df = [
            {"waz": pd.Series([True, True]), "haz": pd.Series([True, False])},
            {"waz": pd.Series([True, False])},
        ]
        or_result = DetectorPipeline(logic="OR").combine_flags(flags_df)
        and_result = DetectorPipeline(logic="AND").combine_flags(flags_df)
        assert or_result["haz"].tolist() == [True, False]
        assert and_result["haz"].tolist() == [False, False]
        assert and_result["waz"].tolist() == [True, False]

    def test_tc008_empty_detector_results_are_ignored(self):
        flags_df = [{}, {"waz": pd.Series([False, True], index=[4, 8])}]
        result = DetectorPipeline(logic="AND").combine_flags(flags_df)
        assert list(result["waz"].index) == [4, 8]
        assert result["waz"].tolist() == [False, True]

    def test_tc009_default_logic_is_or(self):
        assert DetectorPipeline().logic == "OR"
