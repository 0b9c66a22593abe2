"""Geodesic and road distance attachment by keyed join."""
from typing import Optional
import pandas as pd
import logging

from ift_cohort.processing.audit import ExclusionLog, MISSING_REFERENCE_DATA

logger = logging.getLogger(__name__)

STAGE = "distance"
KEY_COLUMNS = ["sending_site", "receiving_site"]


def attach_distances(
    transfers: pd.DataFrame,
    relation: pd.DataFrame,
    exclusions: Optional[ExclusionLog] = None,
) -> pd.DataFrame:
    """
    Join geodesic_km and road_km onto transfers.

    Every kept row has exactly one distance tuple. Pairs absent from the
    relation, or with an empty geodesic or road value, are excluded and
    logged with the offending key; they are never zero-filled.

    Args:
        transfers: Transfers with sending_site and receiving_site
        relation: Output of load_distance_relation
        exclusions: Log receiving excluded records

    Returns:
        Transfers with geodesic_km and road_km
    """
    lookup = relation.rename(columns={"site_from": "sending_site", "site_to": "receiving_site"})
    lookup = lookup[KEY_COLUMNS + ["geodesic_km", "road_km"]]

    # many_to_one raises MergeError if the relation repeats a key
    joined = transfers.merge(lookup, on=KEY_COLUMNS, how="left", validate="many_to_one")

    missing = joined["geodesic_km"].isna() | joined["road_km"].isna()
    if missing.any():
        for _, row in joined[missing].iterrows():
            key = f"{row['sending_site']} -> {row['receiving_site']}"
            logger.warning(f"No distance for {key} (patient {row['patient_id']})")
            if exclusions is not None:
                exclusions.add(STAGE, MISSING_REFERENCE_DATA, row["patient_id"], key)

    result = joined[~missing].reset_index(drop=True)
    logger.info(f"Attached distances to {len(result):,} of {len(joined):,} transfers")
    return result
