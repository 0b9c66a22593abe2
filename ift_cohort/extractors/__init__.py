"""
IFT Cohort Extractors
=====================

Registry extract (ICU and tertiary admissions) and static reference tables.
"""

from .admission_extractor import (
    load_icu_admissions,
    load_tertiary_admissions,
    load_tertiary_diagnoses,
    attach_diagnosis_codes,
    normalize_site_key,
)

from .reference_loader import (
    load_hospitals,
    load_distance_relation,
    load_flights,
    load_metar_reports,
    load_weather_stations,
)

__all__ = [
    'load_icu_admissions',
    'load_tertiary_admissions',
    'load_tertiary_diagnoses',
    'attach_diagnosis_codes',
    'normalize_site_key',
    'load_hospitals',
    'load_distance_relation',
    'load_flights',
    'load_metar_reports',
    'load_weather_stations',
]
