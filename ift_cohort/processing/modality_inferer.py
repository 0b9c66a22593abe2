"""
Transfer Modality Inference
===========================

Labels each transfer HEMS when a rotary-wing movement left the sending
hospital's vicinity around the time of ICU discharge, heading towards the
receiving hospital. Everything else is labelled Other.
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Tuple
import logging

from ift_cohort.config.cohort_config import ModalityConfig
from ift_cohort.processing.audit import ExclusionLog, MISSING_REFERENCE_DATA
from ift_cohort.processing.geo import bearing_difference_deg, haversine_km, initial_bearing_deg

logger = logging.getLogger(__name__)

HEMS = "HEMS"
OTHER = "Other"

STAGE = "site_coordinates"


def attach_site_coordinates(
    transfers: pd.DataFrame,
    hospitals: pd.DataFrame,
    exclusions: Optional[ExclusionLog] = None,
) -> pd.DataFrame:
    """
    Attach sending and receiving hospital coordinates.

    Transfers whose sending or receiving site has no coordinate are
    excluded and logged with the offending key.

    Args:
        transfers: Linked transfers with sending_site and receiving_site
        hospitals: Output of load_hospitals

    Returns:
        Transfers with sending_lat/lon and receiving_lat/lon
    """
    coords = hospitals.dropna(subset=["latitude", "longitude"]).set_index("site_key")
    result = transfers.copy()
    result["sending_lat"] = result["sending_site"].map(coords["latitude"])
    result["sending_lon"] = result["sending_site"].map(coords["longitude"])
    result["receiving_lat"] = result["receiving_site"].map(coords["latitude"])
    result["receiving_lon"] = result["receiving_site"].map(coords["longitude"])

    missing = result[["sending_lat", "receiving_lat"]].isna().any(axis=1)
    if missing.any():
        for _, row in result[missing].iterrows():
            sites = []
            if pd.isna(row["sending_lat"]):
                sites.append(str(row["sending_site"]))
            if pd.isna(row["receiving_lat"]):
                sites.append(str(row["receiving_site"]))
            key = "|".join(sites)
            logger.warning(f"No coordinates for site(s) '{key}' (patient {row['patient_id']})")
            if exclusions is not None:
                exclusions.add(STAGE, MISSING_REFERENCE_DATA, row["patient_id"], key)

    return result[~missing].reset_index(drop=True)


def match_flight(
    discharged_at: pd.Timestamp,
    sending: Tuple[float, float],
    receiving: Tuple[float, float],
    flights: pd.DataFrame,
    config: Optional[ModalityConfig] = None,
) -> Optional[Dict]:
    """
    Find the flight matching one transfer.

    Args:
        discharged_at: Primary ICU discharge time
        sending: (lat, lon) of the sending hospital
        receiving: (lat, lon) of the receiving hospital
        flights: Flight records sorted by departed_at
        config: Matching settings

    Returns:
        Dict with flight_id and offset_minutes, or None when nothing matches
    """
    config = config or ModalityConfig()
    window = pd.Timedelta(hours=config.flight_window_hours)

    times = flights["departed_at"].values
    lo = np.searchsorted(times, np.datetime64(discharged_at - window), side="left")
    hi = np.searchsorted(times, np.datetime64(discharged_at + window), side="right")
    if hi <= lo:
        return None
    candidates = flights.iloc[lo:hi]

    near_sending = haversine_km(
        candidates["departure_lat"].values, candidates["departure_lon"].values,
        sending[0], sending[1],
    ) <= config.vicinity_km

    site_bearing = initial_bearing_deg(sending[0], sending[1], receiving[0], receiving[1])
    track_bearing = initial_bearing_deg(
        candidates["departure_lat"].values, candidates["departure_lon"].values,
        candidates["arrival_lat"].values, candidates["arrival_lon"].values,
    )
    heading_ok = bearing_difference_deg(track_bearing, site_bearing) <= config.max_heading_deviation_deg
    arrives_receiving = haversine_km(
        candidates["arrival_lat"].values, candidates["arrival_lon"].values,
        receiving[0], receiving[1],
    ) <= config.vicinity_km
    # NaN arrival positions compare False in both tests
    direction_ok = heading_ok | arrives_receiving

    matches = candidates[near_sending & direction_ok]
    if matches.empty:
        return None

    offsets = (matches["departed_at"] - discharged_at).abs()
    ranked = matches.assign(_offset=offsets).sort_values(["_offset", "flight_id"], kind="mergesort")
    best = ranked.iloc[0]
    return {
        "flight_id": best["flight_id"],
        "offset_minutes": (best["departed_at"] - discharged_at).total_seconds() / 60.0,
    }


def infer_modality(
    transfers: pd.DataFrame,
    flights: pd.DataFrame,
    config: Optional[ModalityConfig] = None,
) -> pd.DataFrame:
    """
    Label each transfer HEMS or Other.

    Args:
        transfers: Transfers with site coordinates (attach_site_coordinates)
        flights: Output of load_flights
        config: Matching settings

    Returns:
        Copy of transfers with modality, matched_flight_id, flight_offset_minutes
    """
    config = config or ModalityConfig()
    flights = flights.sort_values(["departed_at", "flight_id"], kind="mergesort").reset_index(drop=True)

    modality, flight_ids, offsets = [], [], []
    for row in transfers.itertuples(index=False):
        match = None
        if not flights.empty and pd.notna(row.icu_discharged_at):
            match = match_flight(
                row.icu_discharged_at,
                (row.sending_lat, row.sending_lon),
                (row.receiving_lat, row.receiving_lon),
                flights,
                config,
            )
        if match:
            modality.append(HEMS)
            flight_ids.append(match["flight_id"])
            offsets.append(match["offset_minutes"])
        else:
            modality.append(OTHER)
            flight_ids.append(None)
            offsets.append(np.nan)

    result = transfers.copy()
    result["modality"] = modality
    result["matched_flight_id"] = flight_ids
    result["flight_offset_minutes"] = offsets

    n_hems = modality.count(HEMS)
    logger.info(f"Modality: {n_hems:,} HEMS, {len(modality) - n_hems:,} Other")
    return result
