"""Tests for timestamp normalization."""
import pandas as pd
from ift_cohort.processing.temporal import as_naive_utc, as_naive_utc_timestamp


class TestAsNaiveUtc:
    """Tests for series normalization."""

    def test_naive_values_unchanged(self):
        values = pd.Series(pd.to_datetime(["2020-01-10 02:30"]))
        result = as_naive_utc(values)
        assert result.dt.tz is None
        assert result.iloc[0] == pd.Timestamp("2020-01-10 02:30")
        assert str(result.dtype) == "datetime64[ns]"

    def test_aware_values_converted_to_utc(self):
        values = pd.Series(pd.to_datetime(["2020-01-10T03:30:00+01:00"]))
        result = as_naive_utc(values)
        assert result.dt.tz is None
        assert result.iloc[0] == pd.Timestamp("2020-01-10 02:30")

    def test_missing_values_kept(self):
        result = as_naive_utc(pd.Series([None, None], dtype=object))
        assert result.isna().all()


class TestAsNaiveUtcTimestamp:
    """Tests for single filter bounds."""

    def test_date_string(self):
        assert as_naive_utc_timestamp("2018-01-01") == pd.Timestamp("2018-01-01")

    def test_aware_bound(self):
        assert as_naive_utc_timestamp("2018-01-01T01:00:00+01:00") == pd.Timestamp("2018-01-01")

    def test_empty_bound(self):
        assert as_naive_utc_timestamp(None) is None
        assert as_naive_utc_timestamp("") is None
