"""
Admission Extractor
===================

Loads primary-ICU admissions and tertiary-centre admissions from the
registry extract. The extract is either a SQLite database holding the
three tables below or one CSV export per table.
"""

import sqlite3
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Union
import logging

from ift_cohort.processing.icd_parser import is_valid_icd10, normalize_icd_code, split_code_list

logger = logging.getLogger(__name__)

Source = Union[str, Path, TextIO, sqlite3.Connection]

# Registry table names
ICU_ADMISSIONS_TABLE = "icu_admissions"
TERTIARY_ADMISSIONS_TABLE = "tertiary_admissions"
TERTIARY_DIAGNOSES_TABLE = "tertiary_diagnoses"

ICU_ADMISSION_COLUMNS = [
    "patient_id", "icu_id", "icu_admitted_at", "icu_discharged_at", "hospital_type",
]
TERTIARY_ADMISSION_COLUMNS = [
    "patient_id", "tertiary_admission_id", "tertiary_id", "tertiary_admitted_at",
]
TERTIARY_DIAGNOSIS_COLUMNS = ["tertiary_admission_id", "position", "icd_code"]

ID_DTYPES = {
    "patient_id": str,
    "icu_id": str,
    "tertiary_id": str,
    "tertiary_admission_id": str,
    "hospital_type": str,
    "icd_code": str,
}

SQLITE_SUFFIXES = {".sqlite", ".sqlite3", ".db"}


def is_sqlite_source(source: Source) -> bool:
    if isinstance(source, sqlite3.Connection):
        return True
    return isinstance(source, (str, Path)) and Path(source).suffix.lower() in SQLITE_SUFFIXES


def read_table(source: Source, table: str) -> pd.DataFrame:
    """
    Read one registry table.

    Args:
        source: SQLite database path/connection, CSV path, or CSV file handle
        table: Table name (used for SQLite sources only)

    Returns:
        Raw DataFrame with id columns as strings
    """
    if is_sqlite_source(source):
        if isinstance(source, sqlite3.Connection):
            df = pd.read_sql_query(f"SELECT * FROM {table}", source)
        else:
            if not Path(source).exists():
                raise FileNotFoundError(f"Registry database not found: {source}")
            with sqlite3.connect(source) as conn:
                df = pd.read_sql_query(f"SELECT * FROM {table}", conn)
        for col, dtype in ID_DTYPES.items():
            if col in df.columns:
                df[col] = df[col].where(df[col].isna(), df[col].astype(dtype))
        return df

    if isinstance(source, (str, Path)) and not Path(source).exists():
        raise FileNotFoundError(f"Registry export not found: {source}")
    return pd.read_csv(source, dtype=ID_DTYPES, low_memory=False)


def require_columns(df: pd.DataFrame, columns: List[str], name: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{name} is missing required columns: {missing}")


def parse_timestamps(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """
    Parse timestamp columns to naive UTC; unparsable values become NaT.

    Values carrying an offset ('Z', '+01:00') are converted to UTC. Values
    without one are taken as UTC already. Naive and offset-carrying values
    may be mixed in one column.
    """
    result = df.copy()
    for col in columns:
        raw = result[col]
        parsed = pd.to_datetime(raw, format="mixed", errors="coerce", utc=True)
        parsed = parsed.dt.tz_localize(None).astype("datetime64[ns]")
        n_bad = int((parsed.isna() & raw.notna()).sum())
        if n_bad:
            logger.warning(f"{n_bad:,} unparsable values in {col} set to NaT")
        result[col] = parsed
    return result


def normalize_site_key(name, aliases: Optional[Dict[str, str]] = None):
    """Map a registry site spelling onto the reference-table key."""
    if name is None or pd.isna(name):
        return None
    name = " ".join(str(name).split())
    if aliases:
        return aliases.get(name, name)
    return name


def load_icu_admissions(source: Source, aliases: Optional[Dict[str, str]] = None) -> pd.DataFrame:
    """
    Load primary-ICU admission records.

    Args:
        source: Registry database or icu_admissions CSV
        aliases: Site-name aliases from hospital_sites.yaml

    Returns:
        DataFrame with ICU_ADMISSION_COLUMNS plus sending_site
    """
    df = read_table(source, ICU_ADMISSIONS_TABLE)
    require_columns(df, ICU_ADMISSION_COLUMNS, "icu_admissions")
    df = parse_timestamps(df, ["icu_admitted_at", "icu_discharged_at"])
    df["sending_site"] = df["icu_id"].apply(lambda x: normalize_site_key(x, aliases))
    df["hospital_type"] = df["hospital_type"].str.strip().str.lower()
    logger.info(f"Loaded {len(df):,} ICU admissions")
    return df.reset_index(drop=True)


def warn_invalid_codes(codes: pd.Series, name: str) -> int:
    """Log codes that do not look like ICD-10; they are kept as registered."""
    invalid = codes[(codes != "") & ~codes.apply(is_valid_icd10)]
    if len(invalid):
        logger.warning(
            f"{len(invalid):,} codes in {name} are not ICD-10 shaped, e.g. {sorted(invalid.unique())[:5]}"
        )
    return len(invalid)


def load_tertiary_diagnoses(source: Source) -> pd.DataFrame:
    """Load the long diagnosis table (one row per code, position 0 = primary)."""
    df = read_table(source, TERTIARY_DIAGNOSES_TABLE)
    require_columns(df, TERTIARY_DIAGNOSIS_COLUMNS, "tertiary_diagnoses")
    df["icd_code"] = df["icd_code"].apply(normalize_icd_code)
    df["position"] = pd.to_numeric(df["position"], errors="coerce")
    df = df[(df["icd_code"] != "") & df["position"].notna()]
    warn_invalid_codes(df["icd_code"], "tertiary_diagnoses")
    return df.reset_index(drop=True)


def attach_diagnosis_codes(tertiary: pd.DataFrame, diagnoses: pd.DataFrame) -> pd.DataFrame:
    """
    Attach ordered ICD-10 codes to tertiary admissions.

    The lowest position is the primary diagnosis; the rest, in position
    order, are the secondary diagnoses.

    Args:
        tertiary: Tertiary admissions
        diagnoses: Long diagnosis table

    Returns:
        Tertiary admissions with primary_icd and secondary_icds columns
    """
    ordered = diagnoses.sort_values(["tertiary_admission_id", "position"], kind="mergesort")
    codes = ordered.groupby("tertiary_admission_id", sort=False)["icd_code"].apply(tuple)

    result = tertiary.copy()
    code_lists = result["tertiary_admission_id"].map(codes)
    result["primary_icd"] = code_lists.apply(
        lambda c: c[0] if isinstance(c, tuple) and c else ""
    )
    result["secondary_icds"] = code_lists.apply(
        lambda c: c[1:] if isinstance(c, tuple) else ()
    )
    return result


def load_tertiary_admissions(
    source: Source,
    diagnoses_source: Optional[Source] = None,
    aliases: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Load tertiary admissions with their ordered discharge diagnoses.

    Args:
        source: Registry database or tertiary_admissions CSV
        diagnoses_source: Diagnosis table source (defaults to source for SQLite).
            Not needed when the admissions already carry primary_icd and
            secondary_icds columns.
        aliases: Site-name aliases from hospital_sites.yaml

    Returns:
        DataFrame with TERTIARY_ADMISSION_COLUMNS, primary_icd, secondary_icds,
        receiving_site
    """
    df = read_table(source, TERTIARY_ADMISSIONS_TABLE)
    require_columns(df, TERTIARY_ADMISSION_COLUMNS, "tertiary_admissions")
    df = parse_timestamps(df, ["tertiary_admitted_at"])

    if diagnoses_source is None and is_sqlite_source(source):
        diagnoses_source = source

    if diagnoses_source is not None:
        df = attach_diagnosis_codes(df, load_tertiary_diagnoses(diagnoses_source))
    elif "primary_icd" in df.columns:
        df["primary_icd"] = df["primary_icd"].apply(normalize_icd_code)
        warn_invalid_codes(df["primary_icd"], "tertiary_admissions")
        if "secondary_icds" in df.columns:
            df["secondary_icds"] = df["secondary_icds"].apply(split_code_list)
        else:
            df["secondary_icds"] = [() for _ in range(len(df))]
    else:
        raise ValueError("tertiary_admissions has no diagnosis codes and no diagnosis table was given")

    df["receiving_site"] = df["tertiary_id"].apply(lambda x: normalize_site_key(x, aliases))
    logger.info(f"Loaded {len(df):,} tertiary admissions")
    return df.reset_index(drop=True)
