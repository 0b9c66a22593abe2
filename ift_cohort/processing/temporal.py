"""Timestamp normalization shared by the time-based stages.

All stages compare naive UTC timestamps. Offset-aware input is converted to
UTC and the offset dropped.
"""
from typing import Optional
import pandas as pd


def as_naive_utc(values: pd.Series) -> pd.Series:
    """Timestamps as naive UTC datetime64[ns].

    Args:
        values: Naive or offset-aware timestamps (or parseable strings)

    Returns:
        Naive datetime64[ns] Series
    """
    values = pd.to_datetime(values)
    if values.dt.tz is not None:
        values = values.dt.tz_convert("UTC").dt.tz_localize(None)
    return values.astype("datetime64[ns]")


def as_naive_utc_timestamp(value) -> Optional[pd.Timestamp]:
    """Single bound (date string, date or Timestamp) as naive UTC."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts
