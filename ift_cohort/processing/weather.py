"""
HEMS Weather Minima
===================

For each transfer, the temporally nearest METAR from the reporting station
closest to the sending hospital decides whether HEMS weather minima were met
at ICU discharge.

A report without a ceiling (no broken/overcast layer) counts as unlimited
ceiling. A missing report or missing visibility leaves the flag as <NA>.
"""

import numpy as np
import pandas as pd
from typing import Optional
import logging

from ift_cohort.config.cohort_config import WeatherConfig
from ift_cohort.processing.geo import haversine_km
from ift_cohort.processing.temporal import as_naive_utc

logger = logging.getLogger(__name__)

WEATHER_COLUMNS = [
    "weather_station_id",
    "weather_station_km",
    "metar_observed_at",
    "ceiling_ft",
    "visibility_m",
    "weather_minima_met",
]


def nearest_station(lat: float, lon: float, stations: pd.DataFrame) -> Optional[pd.Series]:
    """Return the station row closest to (lat, lon), or None without stations."""
    if stations.empty or pd.isna(lat) or pd.isna(lon):
        return None
    distances = haversine_km(lat, lon, stations["latitude"].values, stations["longitude"].values)
    idx = int(np.argmin(distances))
    station = stations.iloc[idx].copy()
    station["distance_km"] = float(distances[idx])
    return station


def assign_nearest_stations(transfers: pd.DataFrame, stations: pd.DataFrame) -> pd.DataFrame:
    """Add weather_station_id and weather_station_km per sending site."""
    result = transfers.copy()
    sites = result[["sending_site", "sending_lat", "sending_lon"]].drop_duplicates("sending_site")

    station_ids, station_km = {}, {}
    for row in sites.itertuples(index=False):
        station = nearest_station(row.sending_lat, row.sending_lon, stations)
        station_ids[row.sending_site] = station["station_id"] if station is not None else None
        station_km[row.sending_site] = station["distance_km"] if station is not None else np.nan

    result["weather_station_id"] = result["sending_site"].map(station_ids)
    result["weather_station_km"] = result["sending_site"].map(station_km)
    return result


def evaluate_minima(ceiling_ft: pd.Series, visibility_m: pd.Series, config: Optional[WeatherConfig] = None) -> pd.Series:
    """
    Evaluate ceiling and visibility against the minima.

    Returns:
        Nullable boolean Series; <NA> where visibility is missing
    """
    config = config or WeatherConfig()
    ceiling_ok = ceiling_ft.isna() | (ceiling_ft >= config.min_ceiling_ft)
    visibility_ok = visibility_m >= config.min_visibility_m
    met = (ceiling_ok & visibility_ok).astype("boolean")
    met[visibility_m.isna()] = pd.NA
    return met


def attach_weather(
    transfers: pd.DataFrame,
    stations: pd.DataFrame,
    reports: pd.DataFrame,
    config: Optional[WeatherConfig] = None,
) -> pd.DataFrame:
    """
    Attach nearest-station METAR and the weather_minima_met flag.

    Args:
        transfers: Transfers with sending_site, sending_lat/lon, icu_discharged_at
        stations: Output of load_weather_stations
        reports: Output of load_metar_reports
        config: Minima and maximum report age

    Returns:
        Copy of transfers with WEATHER_COLUMNS added, original row order kept
    """
    config = config or WeatherConfig()
    result = assign_nearest_stations(transfers, stations)
    result["_row"] = np.arange(len(result))

    with_station = result[result["weather_station_id"].notna()].sort_values("icu_discharged_at", kind="mergesort")
    right = reports[["station_id", "observed_at", "ceiling_ft", "visibility_m"]].rename(
        columns={"station_id": "weather_station_id", "observed_at": "metar_observed_at"}
    )
    right = right.sort_values("metar_observed_at", kind="mergesort")

    if not with_station.empty and not right.empty:
        with_station = with_station.assign(
            icu_discharged_at=as_naive_utc(with_station["icu_discharged_at"]),
            weather_station_id=with_station["weather_station_id"].astype(str),
        )
        right = right.assign(
            metar_observed_at=as_naive_utc(right["metar_observed_at"]),
            weather_station_id=right["weather_station_id"].astype(str),
        )
        matched = pd.merge_asof(
            with_station[["_row", "icu_discharged_at", "weather_station_id"]],
            right,
            left_on="icu_discharged_at",
            right_on="metar_observed_at",
            by="weather_station_id",
            direction="nearest",
            tolerance=pd.Timedelta(hours=config.max_report_offset_hours),
        )
        matched = matched.set_index("_row")
    else:
        matched = pd.DataFrame(columns=["metar_observed_at", "ceiling_ft", "visibility_m"])

    result["metar_observed_at"] = pd.to_datetime(result["_row"].map(matched["metar_observed_at"]))
    result["ceiling_ft"] = pd.to_numeric(result["_row"].map(matched["ceiling_ft"]), errors="coerce")
    result["visibility_m"] = pd.to_numeric(result["_row"].map(matched["visibility_m"]), errors="coerce")

    met = evaluate_minima(result["ceiling_ft"], result["visibility_m"], config)
    met[result["metar_observed_at"].isna()] = pd.NA
    result["weather_minima_met"] = met

    n_missing = int(result["weather_minima_met"].isna().sum())
    if n_missing:
        logger.warning(f"No usable METAR for {n_missing:,} of {len(result):,} transfers")
    return result.drop(columns="_row")
