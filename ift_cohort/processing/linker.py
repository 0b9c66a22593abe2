"""
Transfer Linker
===============

Matches primary-ICU discharges to tertiary-centre admissions.

A tertiary admission qualifies for a discharge at time T when it falls in
[T, T + forward window), or in [T - backward window, T) for discharges
registered in the early morning (before the cutoff hour). Early-morning
discharges are often registered after the patient has already arrived at
the receiving hospital.

Tie-break, per patient:
1. for each tertiary admission keep the chronologically last ICU admission
2. for each ICU admission keep the chronologically first tertiary admission
3. keep the earliest remaining pair
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple
import pandas as pd
import logging

from ift_cohort.config.cohort_config import LinkageConfig
from ift_cohort.processing.audit import (
    ExclusionLog,
    MALFORMED_TIMESTAMP,
    MISSING_TIMESTAMP,
)

logger = logging.getLogger(__name__)

STAGE = "linkage"

TRANSFER_COLUMNS = [
    "patient_id",
    "icu_id",
    "sending_site",
    "hospital_type",
    "icu_admitted_at",
    "icu_discharged_at",
    "icu_los_hours",
    "tertiary_admission_id",
    "tertiary_id",
    "receiving_site",
    "tertiary_admitted_at",
    "transfer_offset_hours",
    "primary_icd",
    "secondary_icds",
]


@dataclass
class LinkageResult:
    """Linked transfers plus the counts behind them."""

    transfers: pd.DataFrame
    counts: Dict[str, int] = field(default_factory=dict)


def add_icu_length_of_stay(icu: pd.DataFrame) -> pd.DataFrame:
    result = icu.copy()
    delta = result["icu_discharged_at"] - result["icu_admitted_at"]
    result["icu_los_hours"] = delta.dt.total_seconds() / 3600.0
    return result


def is_within_linkage_window(
    discharged_at: pd.Series,
    tertiary_admitted_at: pd.Series,
    config: Optional[LinkageConfig] = None,
) -> pd.Series:
    """
    Check the linkage predicate element-wise.

    Args:
        discharged_at: Primary ICU discharge timestamps (T)
        tertiary_admitted_at: Candidate tertiary admission timestamps
        config: Window settings

    Returns:
        Boolean Series, True where the tertiary admission qualifies
    """
    config = config or LinkageConfig()
    offset = tertiary_admitted_at - discharged_at
    forward = pd.Timedelta(hours=config.forward_window_hours)
    backward = pd.Timedelta(hours=config.backward_window_hours)

    in_forward = (offset >= pd.Timedelta(0)) & (offset < forward)
    early_morning = discharged_at.dt.hour < config.early_morning_cutoff_hour
    in_backward = early_morning & (offset >= -backward) & (offset < pd.Timedelta(0))
    return (in_forward | in_backward).fillna(False)


def clean_icu_admissions(
    icu: pd.DataFrame,
    config: LinkageConfig,
    exclusions: ExclusionLog,
    sending_hospital_types: Optional[Iterable[str]] = None,
) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """Drop ICU admissions that cannot be linked, counting each reason."""
    counts = {"icu_admissions": len(icu)}

    if sending_hospital_types is not None:
        types = {t.lower() for t in sending_hospital_types}
        icu = icu[icu["hospital_type"].isin(types)]
        counts["non_sending_hospital_type"] = counts["icu_admissions"] - len(icu)

    icu = add_icu_length_of_stay(icu)
    id_col = "patient_id"

    missing = icu["icu_admitted_at"].isna() | icu["icu_discharged_at"].isna()
    exclusions.add_frame(STAGE, MISSING_TIMESTAMP, icu[missing], id_col, ["icu_id"])
    counts["missing_timestamp"] = int(missing.sum())
    icu = icu[~missing]

    non_positive = icu["icu_los_hours"] <= 0
    exclusions.add_frame(STAGE, MALFORMED_TIMESTAMP, icu[non_positive], id_col, ["icu_id"])
    counts["malformed_timestamp"] = int(non_positive.sum())
    icu = icu[~non_positive]

    too_long = icu["icu_los_hours"] >= config.max_primary_los_hours
    counts["primary_los_too_long"] = int(too_long.sum())
    icu = icu[~too_long]

    if counts["missing_timestamp"] or counts["malformed_timestamp"]:
        logger.warning(
            f"ICU admissions dropped: {counts['missing_timestamp']:,} missing timestamps, "
            f"{counts['malformed_timestamp']:,} zero/negative length of stay"
        )
    return icu, counts


def select_transfer_pairs(candidates: pd.DataFrame) -> pd.DataFrame:
    """Resolve multiple qualifying pairs to at most one per patient."""
    if candidates.empty:
        return candidates

    # Last ICU admission per tertiary admission
    ordered = candidates.sort_values(
        ["tertiary_admission_id", "icu_admitted_at", "icu_discharged_at", "icu_id"],
        kind="mergesort",
    )
    per_tertiary = ordered.drop_duplicates(subset=["tertiary_admission_id"], keep="last")

    # First tertiary admission per ICU admission
    per_tertiary = per_tertiary.sort_values(
        ["patient_id", "icu_admitted_at", "icu_id", "tertiary_admitted_at", "tertiary_admission_id"],
        kind="mergesort",
    )
    per_icu = per_tertiary.drop_duplicates(
        subset=["patient_id", "icu_id", "icu_admitted_at"], keep="first"
    )

    # Earliest pair per patient
    per_icu = per_icu.sort_values(
        ["patient_id", "icu_discharged_at", "tertiary_admitted_at", "icu_id", "tertiary_admission_id"],
        kind="mergesort",
    )
    return per_icu.drop_duplicates(subset=["patient_id"], keep="first")


def link_transfers(
    icu: pd.DataFrame,
    tertiary: pd.DataFrame,
    config: Optional[LinkageConfig] = None,
    exclusions: Optional[ExclusionLog] = None,
    sending_hospital_types: Optional[Iterable[str]] = None,
    tertiary_centres: Optional[Iterable[str]] = None,
) -> LinkageResult:
    """
    Link primary-ICU admissions to tertiary admissions.

    Args:
        icu: Primary ICU admissions (see load_icu_admissions)
        tertiary: Tertiary admissions with diagnosis codes
        config: Linkage windows
        exclusions: Log receiving dropped records
        sending_hospital_types: Hospital types counted as primary ICUs;
            None keeps every admission
        tertiary_centres: Receiving sites with a neurosurgical ICU;
            None keeps every tertiary admission

    Returns:
        LinkageResult with one transfer per linked patient
    """
    config = config or LinkageConfig()
    exclusions = exclusions if exclusions is not None else ExclusionLog()

    icu, counts = clean_icu_admissions(icu, config, exclusions, sending_hospital_types)

    if tertiary_centres is not None:
        n_tertiary = len(tertiary)
        tertiary = tertiary[tertiary["receiving_site"].isin(set(tertiary_centres))]
        counts["non_tertiary_centre"] = n_tertiary - len(tertiary)

    missing_tertiary = tertiary["tertiary_admitted_at"].isna()
    exclusions.add_frame(
        STAGE, MISSING_TIMESTAMP, tertiary[missing_tertiary], "patient_id", ["tertiary_admission_id"]
    )
    counts["tertiary_missing_timestamp"] = int(missing_tertiary.sum())
    tertiary = tertiary[~missing_tertiary]

    tertiary_cols = [c for c in tertiary.columns if c not in icu.columns or c == "patient_id"]
    candidates = icu.merge(tertiary[tertiary_cols], on="patient_id", how="inner")
    qualifies = is_within_linkage_window(
        candidates["icu_discharged_at"], candidates["tertiary_admitted_at"], config
    )
    candidates = candidates[qualifies].copy()
    counts["candidate_pairs"] = len(candidates)

    transfers = select_transfer_pairs(candidates)
    counts["ambiguous_pairs_resolved"] = len(candidates) - len(transfers)
    counts["transfers"] = len(transfers)

    transfers = transfers.copy()
    transfers["transfer_offset_hours"] = (
        (transfers["tertiary_admitted_at"] - transfers["icu_discharged_at"]).dt.total_seconds() / 3600.0
    )
    for col in TRANSFER_COLUMNS:
        if col not in transfers.columns:
            transfers[col] = None

    transfers = transfers[TRANSFER_COLUMNS].sort_values(
        ["patient_id", "icu_discharged_at"], kind="mergesort"
    ).reset_index(drop=True)

    logger.info(
        f"Linked {len(transfers):,} transfers from {counts['candidate_pairs']:,} candidate pairs"
    )
    return LinkageResult(transfers=transfers, counts=counts)
