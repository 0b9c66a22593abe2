"""
IFT Cohort Configuration
========================

Central configuration for the interfacility-transfer cohort pipeline.
Code lists and hospital lists live in the YAML tables next to this file.
"""

from pathlib import Path
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional
import yaml


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

MODULE_ROOT = Path(__file__).parent.parent
PROJECT_ROOT = MODULE_ROOT.parent
DATA_DIR = PROJECT_ROOT / "Data"
OUTPUT_DIR = MODULE_ROOT / "outputs"

# Registry extract (either the SQLite database or the three CSV exports)
REGISTRY_DB = DATA_DIR / "registry.sqlite"
ICU_ADMISSIONS_CSV = DATA_DIR / "icu_admissions.csv"
TERTIARY_ADMISSIONS_CSV = DATA_DIR / "tertiary_admissions.csv"
TERTIARY_DIAGNOSES_CSV = DATA_DIR / "tertiary_diagnoses.csv"

# Reference data
HOSPITALS_CSV = DATA_DIR / "hospital_coordinates.csv"
GEODESIC_MATRIX_CSV = DATA_DIR / "geodesic_distance_matrix.csv"
ROAD_MATRIX_CSV = DATA_DIR / "road_distance_matrix.csv"
FLIGHTS_CSV = DATA_DIR / "flights.csv"
METAR_CSV = DATA_DIR / "metar.csv"
METAR_STATIONS_CSV = DATA_DIR / "metar_stations.csv"

# Config tables
CONFIG_DIR = MODULE_ROOT / "config"
DIAGNOSIS_GROUPS_YAML = CONFIG_DIR / "diagnosis_groups.yaml"
HOSPITAL_SITES_YAML = CONFIG_DIR / "hospital_sites.yaml"
COHORT_VARIANTS_YAML = CONFIG_DIR / "cohort_variants.yaml"


# =============================================================================
# LINKAGE CONFIGURATION
# =============================================================================

@dataclass
class LinkageConfig:
    """Time windows for matching ICU discharges to tertiary admissions."""

    # Tertiary admission in [T, T + forward_window_hours)
    forward_window_hours: float = 24
    # Tertiary admission in [T - backward_window_hours, T), only for
    # discharges before early_morning_cutoff_hour
    backward_window_hours: float = 24
    early_morning_cutoff_hour: int = 4

    # Primary ICU length of stay must be strictly below this
    max_primary_los_hours: float = 24


# =============================================================================
# MODALITY / WEATHER CONFIGURATION
# =============================================================================

@dataclass
class ModalityConfig:
    """Flight matching settings for HEMS inference."""

    flight_window_hours: float = 3
    vicinity_km: float = 10
    max_heading_deviation_deg: float = 45


@dataclass
class WeatherConfig:
    """HEMS weather minima evaluated against the nearest METAR."""

    min_ceiling_ft: float = 500
    min_visibility_m: float = 3000
    max_report_offset_hours: float = 2


# =============================================================================
# FILTER CONFIGURATION
# =============================================================================

@dataclass
class FilterConfig:
    """Inclusion thresholds applied to linked transfers."""

    min_road_distance_km: float = 49
    min_transfers_per_site: int = 5
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass
class CohortConfig:
    """All settings for one cohort variant."""

    name: str = "main"
    linkage: LinkageConfig = field(default_factory=LinkageConfig)
    modality: ModalityConfig = field(default_factory=ModalityConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)


COHORT_CONFIG = CohortConfig()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _load_yaml(path: Path) -> Dict:
    if not Path(path).exists():
        raise FileNotFoundError(f"Configuration table not found: {path}")
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_diagnosis_groups(path: Optional[Path] = None) -> Dict:
    """Load diagnosis group code lists and rule sets from YAML."""
    return _load_yaml(path or DIAGNOSIS_GROUPS_YAML)


def load_hospital_sites(path: Optional[Path] = None) -> Dict:
    """Load sending hospital types, site aliases and tertiary centres."""
    return _load_yaml(path or HOSPITAL_SITES_YAML)


def load_cohort_variant(name: str = "main", path: Optional[Path] = None) -> CohortConfig:
    """
    Build the configuration for a named cohort variant.

    Variant sections in the YAML override the dataclass defaults
    section by section (linkage, modality, weather, filters).

    Args:
        name: Variant key in cohort_variants.yaml
        path: Optional override of the variants file

    Returns:
        CohortConfig for the variant
    """
    variants = _load_yaml(path or COHORT_VARIANTS_YAML).get('variants', {})
    if name not in variants:
        raise KeyError(f"Unknown cohort variant '{name}'. Available: {sorted(variants)}")

    overrides = variants[name] or {}
    base = CohortConfig(name=name)
    return replace(
        base,
        linkage=replace(base.linkage, **overrides.get('linkage', {})),
        modality=replace(base.modality, **overrides.get('modality', {})),
        weather=replace(base.weather, **overrides.get('weather', {})),
        filters=replace(base.filters, **overrides.get('filters', {})),
    )


def list_cohort_variants(path: Optional[Path] = None) -> List[str]:
    return sorted(_load_yaml(path or COHORT_VARIANTS_YAML).get('variants', {}))


def ensure_directories(output_dir: Optional[Path] = None):
    """Create output directory if it doesn't exist."""
    Path(output_dir or OUTPUT_DIR).mkdir(parents=True, exist_ok=True)
