"""Diagnosis group classification for tertiary admissions."""
from typing import Dict, List, Optional, Sequence
import pandas as pd
import logging

from ift_cohort.config.cohort_config import load_diagnosis_groups
from ift_cohort.processing.icd_parser import any_code_in_set, code_in_set, normalize_icd_code

logger = logging.getLogger(__name__)

UNCLASSIFIED = "unclassified"


class DiagnosisClassifier:
    """Map an ordered ICD-10 list to one diagnosis group.

    Precedence, first match wins:
        1. TBI: primary in the TBI set, or primary is a skull/cervical
           fracture with a secondary TBI code (unless the primary is trauma
           to another body part)
        2. SDH: primary is non-traumatic SDH without secondary TBI
        3. CFX: primary is a cervical fracture without secondary TBI
        4. remaining groups by primary-code membership, in configured order
    """

    def __init__(self, groups: Optional[Dict] = None):
        """
        Args:
            groups: Parsed diagnosis_groups.yaml (loaded from the config
                directory when omitted)
        """
        groups = groups if groups is not None else load_diagnosis_groups()
        rule_sets = groups.get("rule_sets", {})

        self.tbi = list(rule_sets.get("tbi", []))
        self.skull_cervical_fracture = list(rule_sets.get("skull_cervical_fracture", []))
        self.cervical_fracture = list(rule_sets.get("cervical_fracture", []))
        self.nontraumatic_sdh = list(rule_sets.get("nontraumatic_sdh", []))
        self.other_body_trauma = list(rule_sets.get("other_body_trauma", []))

        group_defs = groups.get("groups", {})
        self.precedence: List[str] = list(groups.get("precedence", []))
        self.group_codes: Dict[str, List[str]] = {
            key: list((group_defs.get(key) or {}).get("icd10", []))
            for key in self.precedence
        }
        self.labels: Dict[str, str] = {
            key: (value or {}).get("label", key) for key, value in group_defs.items()
        }

        if not self.tbi:
            raise ValueError("diagnosis groups define no TBI codes")

    @property
    def group_keys(self) -> List[str]:
        return ["TBI", "SDH", "CFX"] + self.precedence

    def is_tbi(self, primary: str, secondary: Sequence[str]) -> bool:
        if code_in_set(primary, self.tbi):
            return True
        return (
            code_in_set(primary, self.skull_cervical_fracture)
            and any_code_in_set(secondary, self.tbi)
            and not code_in_set(primary, self.other_body_trauma)
        )

    def classify(self, primary: Optional[str], secondary: Sequence[str] = ()) -> str:
        """
        Classify one admission.

        Args:
            primary: Primary discharge ICD-10 code
            secondary: Secondary codes in registry order

        Returns:
            Group key, or 'unclassified'
        """
        primary = normalize_icd_code(primary)
        secondary = [normalize_icd_code(c) for c in (secondary or ())]
        if not primary:
            return UNCLASSIFIED

        secondary_tbi = any_code_in_set(secondary, self.tbi)

        if self.is_tbi(primary, secondary):
            return "TBI"

        if code_in_set(primary, self.nontraumatic_sdh):
            return "TBI" if secondary_tbi else "SDH"

        if code_in_set(primary, self.cervical_fracture):
            return "TBI" if secondary_tbi else "CFX"

        for key in self.precedence:
            if code_in_set(primary, self.group_codes[key]):
                return key

        return UNCLASSIFIED

    def classify_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Add diagnosis_group to a frame with primary_icd and secondary_icds.

        Returns:
            Copy of df with diagnosis_group column
        """
        result = df.copy()
        if result.empty:
            result["diagnosis_group"] = pd.Series(dtype=str)
            return result

        result["diagnosis_group"] = [
            self.classify(primary, secondary)
            for primary, secondary in zip(result["primary_icd"], result["secondary_icds"])
        ]

        n_unclassified = int((result["diagnosis_group"] == UNCLASSIFIED).sum())
        logger.info(
            f"Classified {len(result) - n_unclassified:,} of {len(result):,} admissions "
            f"({n_unclassified:,} unclassified)"
        )
        return result

    def summarize(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Transfers per diagnosis group, in precedence order.

        Returns:
            DataFrame with diagnosis_group, label, n_transfers (every group,
            zero counts included, unclassified last)
        """
        keys = self.group_keys + [UNCLASSIFIED]
        counts = df["diagnosis_group"].value_counts()
        return pd.DataFrame({
            "diagnosis_group": keys,
            "label": [self.labels.get(k, k) for k in keys],
            "n_transfers": [int(counts.get(k, 0)) for k in keys],
        })


def classify_diagnoses(df: pd.DataFrame, groups: Optional[Dict] = None) -> pd.DataFrame:
    """Convenience wrapper around DiagnosisClassifier.classify_frame."""
    return DiagnosisClassifier(groups).classify_frame(df)


def restrict_to_classified(df: pd.DataFrame) -> pd.DataFrame:
    """Keep only admissions with an NSICU-relevant diagnosis group."""
    return df[df["diagnosis_group"] != UNCLASSIFIED].reset_index(drop=True)
