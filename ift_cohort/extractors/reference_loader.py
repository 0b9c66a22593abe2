"""
Reference Data Loader
=====================

Static reference tables: hospital coordinates, the geodesic and road
distance matrices, flight-tracking records and METAR archives.

Every loader raises FileNotFoundError for a missing file so that a run
aborts before any output is written.
"""

import pandas as pd
from pathlib import Path
from typing import Dict, Optional, TextIO, Union
import logging

from ift_cohort.extractors.admission_extractor import (
    normalize_site_key,
    parse_timestamps,
    require_columns,
)

logger = logging.getLogger(__name__)

PathOrBuffer = Union[str, Path, TextIO]

HOSPITAL_COLUMNS = ["hospital_name", "latitude", "longitude"]
FLIGHT_COLUMNS = [
    "flight_id", "departed_at",
    "departure_lat", "departure_lon", "arrival_lat", "arrival_lon",
]
METAR_COLUMNS = ["station_id", "observed_at", "ceiling_ft", "visibility_m"]
STATION_COLUMNS = ["station_id", "latitude", "longitude"]
DISTANCE_COLUMNS = ["site_from", "site_to", "geodesic_km", "road_km"]


def read_reference_csv(path: PathOrBuffer, **kwargs) -> pd.DataFrame:
    if isinstance(path, (str, Path)) and not Path(path).exists():
        raise FileNotFoundError(f"Reference file not found: {path}")
    return pd.read_csv(path, **kwargs)


def load_hospitals(path: PathOrBuffer, aliases: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Load hospital name to coordinate map.

    Returns:
        DataFrame with site_key, hospital_name, latitude, longitude
    """
    df = read_reference_csv(path, dtype={"hospital_name": str})
    require_columns(df, HOSPITAL_COLUMNS, "hospital coordinates")
    df["site_key"] = df["hospital_name"].apply(lambda x: normalize_site_key(x, aliases))
    df["latitude"] = pd.to_numeric(df["latitude"], errors="coerce")
    df["longitude"] = pd.to_numeric(df["longitude"], errors="coerce")

    duplicated = df["site_key"].duplicated(keep=False)
    if duplicated.any():
        raise ValueError(f"Duplicate hospital keys: {sorted(df.loc[duplicated, 'site_key'].unique())}")

    return df[["site_key", "hospital_name", "latitude", "longitude"]].reset_index(drop=True)


def melt_distance_matrix(
    matrix: pd.DataFrame,
    value_name: str,
    aliases: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Convert a wide matrix (rows: sending ICU, columns: receiving hospital)
    into (site_from, site_to, value) rows. Empty cells are dropped.
    """
    wide = matrix.rename(columns={matrix.columns[0]: "site_from"})
    long = wide.melt(id_vars="site_from", var_name="site_to", value_name=value_name)
    long[value_name] = pd.to_numeric(long[value_name], errors="coerce")
    long = long.dropna(subset=[value_name])
    long["site_from"] = long["site_from"].apply(lambda x: normalize_site_key(x, aliases))
    long["site_to"] = long["site_to"].apply(lambda x: normalize_site_key(x, aliases))
    return long.reset_index(drop=True)


def build_distance_relation(geodesic: pd.DataFrame, road: pd.DataFrame) -> pd.DataFrame:
    """
    Join the melted geodesic and road matrices into one relation.

    Raises:
        ValueError: a (site_from, site_to) key appears more than once
    """
    for name, df in (("geodesic", geodesic), ("road", road)):
        dup = df.duplicated(subset=["site_from", "site_to"], keep=False)
        if dup.any():
            keys = df.loc[dup, ["site_from", "site_to"]].drop_duplicates().values.tolist()
            raise ValueError(f"Duplicate {name} distance keys: {keys[:10]}")

    relation = geodesic.merge(road, on=["site_from", "site_to"], how="outer")
    return relation[DISTANCE_COLUMNS].sort_values(["site_from", "site_to"]).reset_index(drop=True)


def load_distance_relation(
    geodesic_path: PathOrBuffer,
    road_path: PathOrBuffer,
    aliases: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Load both distance matrices as one normalized relation.

    Returns:
        DataFrame with site_from, site_to, geodesic_km, road_km
    """
    geodesic = melt_distance_matrix(read_reference_csv(geodesic_path), "geodesic_km", aliases)
    road = melt_distance_matrix(read_reference_csv(road_path), "road_km", aliases)
    relation = build_distance_relation(geodesic, road)
    logger.info(f"Loaded {len(relation):,} distance pairs")
    return relation


def load_flights(path: PathOrBuffer) -> pd.DataFrame:
    """Load rotary-wing movements from the flight-tracking archive."""
    df = read_reference_csv(path, dtype={"flight_id": str})
    require_columns(df, FLIGHT_COLUMNS, "flights")
    df = parse_timestamps(df, ["departed_at"])
    for col in FLIGHT_COLUMNS[2:]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    n_before = len(df)
    df = df.dropna(subset=["departed_at", "departure_lat", "departure_lon"])
    if len(df) < n_before:
        logger.warning(f"Dropped {n_before - len(df):,} flights without departure time or position")
    logger.info(f"Loaded {len(df):,} flights")
    return df.reset_index(drop=True)


def load_metar_reports(path: PathOrBuffer) -> pd.DataFrame:
    """
    Load decoded METAR reports.

    ceiling_ft is empty when no broken/overcast layer was reported.
    """
    df = read_reference_csv(path, dtype={"station_id": str})
    require_columns(df, METAR_COLUMNS, "metar")
    df = parse_timestamps(df, ["observed_at"])
    df["ceiling_ft"] = pd.to_numeric(df["ceiling_ft"], errors="coerce")
    df["visibility_m"] = pd.to_numeric(df["visibility_m"], errors="coerce")
    df = df.dropna(subset=["observed_at"])
    logger.info(f"Loaded {len(df):,} METAR reports")
    return df.reset_index(drop=True)


def load_weather_stations(path: PathOrBuffer) -> pd.DataFrame:
    """Load METAR reporting station coordinates."""
    df = read_reference_csv(path, dtype={"station_id": str})
    require_columns(df, STATION_COLUMNS, "metar stations")
    df["latitude"] = pd.to_numeric(df["latitude"], errors="coerce")
    df["longitude"] = pd.to_numeric(df["longitude"], errors="coerce")
    return df.dropna(subset=["latitude", "longitude"]).reset_index(drop=True)
