"""
Cohort Filter & Assembler
=========================

Inclusion filters applied to linked transfers, in order:
(a) road distance strictly above the minimum
(b) at least the minimum number of transfers from the sending site
(c) ICU admission within the configured date range

Each stage is recorded in the FlowLog.
"""

import pandas as pd
from typing import Optional
import logging

from ift_cohort.config.cohort_config import FilterConfig
from ift_cohort.processing.audit import FlowLog
from ift_cohort.processing.diagnosis_classifier import restrict_to_classified
from ift_cohort.processing.temporal import as_naive_utc, as_naive_utc_timestamp

logger = logging.getLogger(__name__)

# Assembled table consumed by the reporting notebooks. Every column is cast
# to its dtype so empty and non-empty runs write the same parquet schema.
ASSEMBLED_SCHEMA = {
    "patient_id": "string",
    "icu_id": "string",
    "sending_site": "string",
    "hospital_type": "string",
    "icu_admitted_at": "datetime64[ns]",
    "icu_discharged_at": "datetime64[ns]",
    "icu_los_hours": "float64",
    "tertiary_admission_id": "string",
    "tertiary_id": "string",
    "receiving_site": "string",
    "tertiary_admitted_at": "datetime64[ns]",
    "transfer_offset_hours": "float64",
    "primary_icd": "string",
    "secondary_icds": "object",
    "diagnosis_group": "string",
    "geodesic_km": "float64",
    "road_km": "float64",
    "modality": "string",
    "matched_flight_id": "string",
    "flight_offset_minutes": "float64",
    "weather_station_id": "string",
    "weather_station_km": "float64",
    "metar_observed_at": "datetime64[ns]",
    "ceiling_ft": "float64",
    "visibility_m": "float64",
    "weather_minima_met": "boolean",
}

SORT_COLUMNS = ["patient_id", "icu_discharged_at"]

# Flow stage names
STAGE_ROAD_DISTANCE = "road_distance"
STAGE_SITE_VOLUME = "site_transfer_volume"
STAGE_DATE_RANGE = "date_range"
STAGE_NSICU_DIAGNOSIS = "nsicu_diagnosis"


def filter_road_distance(df: pd.DataFrame, min_km: float) -> pd.DataFrame:
    return df[df["road_km"] > min_km]


def summarize_sites(df: pd.DataFrame) -> pd.DataFrame:
    """Transfers per sending site, largest first."""
    if df.empty:
        return pd.DataFrame(columns=["sending_site", "n_transfers"])
    counts = df.groupby("sending_site").size().reset_index(name="n_transfers")
    return counts.sort_values(["n_transfers", "sending_site"], ascending=[False, True]).reset_index(drop=True)


def filter_site_volume(df: pd.DataFrame, min_transfers: int) -> pd.DataFrame:
    """Keep sending sites with at least min_transfers transfers."""
    site_counts = df.groupby("sending_site")["patient_id"].transform("size")
    return df[site_counts >= min_transfers]


def filter_date_range(df: pd.DataFrame, start_date: Optional[str] = None, end_date: Optional[str] = None) -> pd.DataFrame:
    """Keep ICU admissions on or after start_date and before end_date (UTC)."""
    admitted = as_naive_utc(df["icu_admitted_at"])
    start = as_naive_utc_timestamp(start_date)
    end = as_naive_utc_timestamp(end_date)

    mask = pd.Series(True, index=df.index)
    if start is not None:
        mask &= admitted >= start
    if end is not None:
        mask &= admitted < end
    return df[mask]


def apply_inclusion_filters(
    df: pd.DataFrame,
    config: Optional[FilterConfig] = None,
    flow: Optional[FlowLog] = None,
) -> pd.DataFrame:
    """
    Apply road-distance, site-volume and date-range filters in order.

    Args:
        df: Transfers with road_km, sending_site and icu_admitted_at
        config: Thresholds
        flow: FlowLog receiving one entry per stage

    Returns:
        Filtered transfers
    """
    config = config or FilterConfig()
    flow = flow if flow is not None else FlowLog()

    n = len(df)
    df = filter_road_distance(df, config.min_road_distance_km)
    flow.add(STAGE_ROAD_DISTANCE, n, len(df))

    n = len(df)
    df = filter_site_volume(df, config.min_transfers_per_site)
    flow.add(STAGE_SITE_VOLUME, n, len(df))

    n = len(df)
    df = filter_date_range(df, config.start_date, config.end_date)
    flow.add(STAGE_DATE_RANGE, n, len(df))

    return df


def assemble(df: pd.DataFrame) -> pd.DataFrame:
    """Project onto ASSEMBLED_SCHEMA, cast each column, in a stable row order."""
    result = df.copy()
    for col, dtype in ASSEMBLED_SCHEMA.items():
        if col not in result.columns:
            result[col] = None
        if dtype == "datetime64[ns]":
            result[col] = as_naive_utc(result[col])
        elif dtype != "object":
            result[col] = result[col].astype(dtype)
    result = result[list(ASSEMBLED_SCHEMA)]
    return result.sort_values(SORT_COLUMNS, kind="mergesort").reset_index(drop=True)


def build_nested_cohort(df: pd.DataFrame, flow: Optional[FlowLog] = None) -> pd.DataFrame:
    """Restrict the assembled cohort to NSICU-relevant diagnosis groups."""
    nested = restrict_to_classified(df)
    if flow is not None:
        flow.add(STAGE_NSICU_DIAGNOSIS, len(df), len(nested))
    return nested
