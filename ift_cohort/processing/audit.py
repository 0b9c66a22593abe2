"""
Cohort Audit
============

Stage-wise record counts for the flow diagram and a per-record log of
exclusions (malformed timestamps, missing reference data).
"""

import pandas as pd
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

# Exclusion reasons
MISSING_TIMESTAMP = "missing_timestamp"
MALFORMED_TIMESTAMP = "malformed_timestamp"
MISSING_REFERENCE_DATA = "missing_reference_data"


class FlowLog:
    """Ordered stage counts, one entry per pipeline stage."""

    def __init__(self, name: str = "cohort"):
        self.name = name
        self.stages = []

    def start(self, stage: str, n: int):
        """Record the initial population."""
        self.stages.append({'stage': stage, 'n_in': n, 'n_out': n, 'removed': 0})
        logger.info(f"[{self.name}] {stage}: {n:,}")

    def add(self, stage: str, n_in: int, n_out: int):
        removed = n_in - n_out
        self.stages.append({'stage': stage, 'n_in': n_in, 'n_out': n_out, 'removed': removed})
        logger.info(f"[{self.name}] {stage}: {n_in:,} -> {n_out:,} (removed {removed:,})")

    def counts(self) -> List[int]:
        """Population after each stage, in order."""
        return [s['n_out'] for s in self.stages]

    def removed(self, stage: str) -> Optional[int]:
        for s in self.stages:
            if s['stage'] == stage:
                return s['removed']
        return None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.stages, columns=['stage', 'n_in', 'n_out', 'removed'])

    def report(self) -> str:
        lines = [f"\n{'='*60}", f"Flow: {self.name}", "="*60]
        for s in self.stages:
            if s['removed']:
                lines.append(f"  {s['stage']:<32} {s['n_out']:>8,}  (-{s['removed']:,})")
            else:
                lines.append(f"  {s['stage']:<32} {s['n_out']:>8,}")
        lines.append("  " + " -> ".join(f"{n}" for n in self.counts()))
        return "\n".join(lines)


class ExclusionLog:
    """Per-record exclusions with reason and offending key."""

    COLUMNS = ['stage', 'reason', 'record_id', 'key']

    def __init__(self):
        self.entries = []

    def add(self, stage: str, reason: str, record_id, key: str = ""):
        self.entries.append({
            'stage': stage,
            'reason': reason,
            'record_id': str(record_id),
            'key': key,
        })

    def add_frame(self, stage: str, reason: str, df: pd.DataFrame, id_col: str, key_cols: Optional[List[str]] = None):
        """Record every row of df as excluded."""
        for _, row in df.iterrows():
            key = "|".join(str(row[c]) for c in key_cols) if key_cols else ""
            self.add(stage, reason, row[id_col], key)

    def count(self, reason: Optional[str] = None, stage: Optional[str] = None) -> int:
        return sum(
            1 for e in self.entries
            if (reason is None or e['reason'] == reason) and (stage is None or e['stage'] == stage)
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.entries, columns=self.COLUMNS)

    def summary(self) -> pd.DataFrame:
        df = self.to_frame()
        if df.empty:
            return pd.DataFrame(columns=['stage', 'reason', 'n'])
        return df.groupby(['stage', 'reason']).size().reset_index(name='n')
