"""
Unit tests for sample descriptions, event limits and frame-backed readers.
"""

import numpy as np
import pandas as pd
import pytest

from hepnet.preprocessing.core.exceptions import ConfigurationError, DataIntegrityError
from hepnet.preprocessing.core.sources import (
    BACKGROUND,
    DEFAULT_MAX_FRACTION,
    SIGNAL,
    FrameRepository,
    FrameSampleReader,
    SampleSource,
    evaluate_expression,
    open_csv_sample,
    parse_event_limits,
)


class TestEventLimits:
    """Interpretation of the per-sample size limits."""

    def test_no_limits_uses_default_fraction(self):
        assert parse_event_limits(None) == (None, DEFAULT_MAX_FRACTION)

    def test_absolute_count_only(self):
        assert parse_event_limits(["1000"]) == (1000, 1.0)

    def test_fraction_only(self):
        max_events, max_fraction = parse_event_limits(["10%"])

        assert max_events is None
        assert max_fraction == pytest.approx(0.1)

    def test_scalar_value_is_accepted(self):
        assert parse_event_limits(5000) == (5000, 1.0)

    def test_smallest_limit_of_each_kind_wins(self):
        max_events, max_fraction = parse_event_limits(["10%", "500", "20%", "300"])

        assert max_events == 300
        assert max_fraction == pytest.approx(0.1)

    def test_fraction_is_capped_at_one(self):
        assert parse_event_limits(["150%"]) == (None, 1.0)

    @pytest.mark.parametrize("limits", [["0"], ["-5%"], ["abc"], ["12.5"], []])
    def test_invalid_limits_are_rejected(self, limits):
        with pytest.raises(ConfigurationError):
            parse_event_limits(limits)


class TestSampleSource:

    def test_short_name_strips_directories(self):
        sample = SampleSource("/data/mc/ttbar.csv", BACKGROUND)

        assert sample.short_name == "ttbar.csv"
        assert not sample.uses_event_list

    def test_valid_sample(self):
        sample = SampleSource("tth.csv", SIGNAL, train_weight="w * (pt > 20)", max_events=10)

        assert sample.validate() == []

    def test_invalid_sample_reports_every_problem(self):
        sample = SampleSource("", 2, train_weight="", max_events=0, max_fraction=0.)

        errors = sample.validate()

        assert len(errors) == 5


class TestFrameSampleReader:
    """Expression evaluation over pandas frames."""

    @pytest.fixture
    def frame(self):
        return pd.DataFrame({"pt": [10., 25., 40.], "eta": [0.5, -1.0, 2.0]})

    def test_features_and_weights_are_evaluated(self, frame):
        reader = FrameSampleReader(frame, ["pt / 10", "abs(eta)"], "pt > 20", "sample.csv")

        assert reader.n_entries == 3
        assert [reader.weight(i) for i in range(3)] == [0.0, 1.0, 1.0]
        np.testing.assert_array_equal(reader.features(2), [4.0, 2.0])

    def test_constant_weight_is_broadcast(self, frame):
        values = evaluate_expression(frame, "1", "sample.csv")

        np.testing.assert_array_equal(values, [1.0, 1.0, 1.0])

    def test_features_are_returned_as_copies(self, frame):
        reader = FrameSampleReader(frame, ["pt"], "1")

        features = reader.features(0)
        features[0] = -1.

        assert reader.features(0)[0] == 10.

    def test_unknown_column_is_a_data_error(self, frame):
        with pytest.raises(DataIntegrityError, match="cannot be evaluated"):
            FrameSampleReader(frame, ["missing_column + 1"], "1", "sample.csv")


class TestReaderFactories:

    def test_csv_sample(self, tmp_path):
        path = tmp_path / "sample.csv"
        pd.DataFrame({"pt": [1., 2.], "w": [0.5, 2.]}).to_csv(path, index=False)

        reader = open_csv_sample(SampleSource(str(path), SIGNAL, train_weight="w"), ["pt"])

        assert reader.n_entries == 2
        assert reader.weight(1) == 2.0

    def test_missing_csv_is_a_data_error(self, tmp_path):
        sample = SampleSource(str(tmp_path / "absent.csv"), SIGNAL)

        with pytest.raises(DataIntegrityError):
            open_csv_sample(sample, ["pt"])

    def test_repository_serves_known_frames_only(self):
        repository = FrameRepository({"a.csv": pd.DataFrame({"x": [1., 2.]})})

        assert repository(SampleSource("a.csv", SIGNAL), ["x"]).n_entries == 2
        with pytest.raises(DataIntegrityError):
            repository(SampleSource("b.csv", SIGNAL), ["x"])
