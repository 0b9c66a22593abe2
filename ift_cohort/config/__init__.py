"""
IFT Cohort Configuration Package
"""

from .cohort_config import (
    # Paths
    MODULE_ROOT,
    DATA_DIR,
    OUTPUT_DIR,
    CONFIG_DIR,

    # Configs
    LinkageConfig,
    ModalityConfig,
    WeatherConfig,
    FilterConfig,
    CohortConfig,
    COHORT_CONFIG,

    # Helpers
    load_diagnosis_groups,
    load_hospital_sites,
    load_cohort_variant,
    list_cohort_variants,
    ensure_directories,
)

__all__ = [
    'MODULE_ROOT',
    'DATA_DIR',
    'OUTPUT_DIR',
    'CONFIG_DIR',
    'LinkageConfig',
    'ModalityConfig',
    'WeatherConfig',
    'FilterConfig',
    'CohortConfig',
    'COHORT_CONFIG',
    'load_diagnosis_groups',
    'load_hospital_sites',
    'load_cohort_variant',
    'list_cohort_variants',
    'ensure_directories',
]
