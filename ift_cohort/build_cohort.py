"""Main pipeline for building the interfacility-transfer cohort."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union
import logging
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from ift_cohort.config import cohort_config
from ift_cohort.config.cohort_config import (
    CohortConfig,
    ensure_directories,
    load_cohort_variant,
    load_diagnosis_groups,
    load_hospital_sites,
)
from ift_cohort.extractors.admission_extractor import (
    is_sqlite_source,
    load_icu_admissions,
    load_tertiary_admissions,
)
from ift_cohort.extractors.reference_loader import (
    load_distance_relation,
    load_flights,
    load_hospitals,
    load_metar_reports,
    load_weather_stations,
)
from ift_cohort.processing.audit import ExclusionLog, FlowLog
from ift_cohort.processing.cohort_filter import (
    apply_inclusion_filters,
    assemble,
    build_nested_cohort,
    summarize_sites,
)
from ift_cohort.processing.diagnosis_classifier import DiagnosisClassifier
from ift_cohort.processing.distance_attacher import attach_distances
from ift_cohort.processing.linker import link_transfers
from ift_cohort.processing.modality_inferer import attach_site_coordinates, infer_modality
from ift_cohort.processing.weather import attach_weather

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Flow stage names for the stages run here
STAGE_ICU_ADMISSIONS = "icu_admissions"
STAGE_LINKED = "linked_transfers"
STAGE_COORDINATES = "site_coordinates"
STAGE_DISTANCES = "distance_matrix"


@dataclass
class CohortInputs:
    """Locations of the registry extract and reference tables."""

    icu_admissions: PathLike = cohort_config.ICU_ADMISSIONS_CSV
    tertiary_admissions: PathLike = cohort_config.TERTIARY_ADMISSIONS_CSV
    tertiary_diagnoses: Optional[PathLike] = cohort_config.TERTIARY_DIAGNOSES_CSV
    hospitals: PathLike = cohort_config.HOSPITALS_CSV
    geodesic_matrix: PathLike = cohort_config.GEODESIC_MATRIX_CSV
    road_matrix: PathLike = cohort_config.ROAD_MATRIX_CSV
    flights: PathLike = cohort_config.FLIGHTS_CSV
    metar: PathLike = cohort_config.METAR_CSV
    metar_stations: PathLike = cohort_config.METAR_STATIONS_CSV

    @classmethod
    def from_data_dir(cls, data_dir: PathLike, sqlite_db: Optional[PathLike] = None) -> "CohortInputs":
        """Standard file names under data_dir; registry tables from sqlite_db if given."""
        data_dir = Path(data_dir)
        inputs = cls(
            icu_admissions=data_dir / cohort_config.ICU_ADMISSIONS_CSV.name,
            tertiary_admissions=data_dir / cohort_config.TERTIARY_ADMISSIONS_CSV.name,
            tertiary_diagnoses=data_dir / cohort_config.TERTIARY_DIAGNOSES_CSV.name,
            hospitals=data_dir / cohort_config.HOSPITALS_CSV.name,
            geodesic_matrix=data_dir / cohort_config.GEODESIC_MATRIX_CSV.name,
            road_matrix=data_dir / cohort_config.ROAD_MATRIX_CSV.name,
            flights=data_dir / cohort_config.FLIGHTS_CSV.name,
            metar=data_dir / cohort_config.METAR_CSV.name,
            metar_stations=data_dir / cohort_config.METAR_STATIONS_CSV.name,
        )
        if sqlite_db is not None:
            inputs.icu_admissions = Path(sqlite_db)
            inputs.tertiary_admissions = Path(sqlite_db)
            inputs.tertiary_diagnoses = None
        return inputs


@dataclass
class CohortData:
    """All input tables, loaded."""

    icu: pd.DataFrame
    tertiary: pd.DataFrame
    hospitals: pd.DataFrame
    distances: pd.DataFrame
    flights: pd.DataFrame
    metar: pd.DataFrame
    stations: pd.DataFrame


@dataclass
class CohortResult:
    """Pipeline outputs threaded back to the caller."""

    cohort: pd.DataFrame
    nested: pd.DataFrame
    flow: FlowLog
    exclusions: ExclusionLog
    sites: pd.DataFrame
    diagnosis_groups: pd.DataFrame
    linkage_counts: Dict[str, int] = field(default_factory=dict)


def load_inputs(inputs: CohortInputs, sites: Optional[Dict] = None) -> CohortData:
    """
    Load every input table.

    Any unreadable file raises here, before a single output is written.
    """
    sites = sites if sites is not None else load_hospital_sites()
    aliases = sites.get("aliases", {}) or {}

    diagnoses_source = inputs.tertiary_diagnoses
    if is_sqlite_source(inputs.tertiary_admissions):
        diagnoses_source = None

    return CohortData(
        icu=load_icu_admissions(inputs.icu_admissions, aliases),
        tertiary=load_tertiary_admissions(inputs.tertiary_admissions, diagnoses_source, aliases),
        hospitals=load_hospitals(inputs.hospitals, aliases),
        distances=load_distance_relation(inputs.geodesic_matrix, inputs.road_matrix, aliases),
        flights=load_flights(inputs.flights),
        metar=load_metar_reports(inputs.metar),
        stations=load_weather_stations(inputs.metar_stations),
    )


def build_cohort(
    data: CohortData,
    config: Optional[CohortConfig] = None,
    sites: Optional[Dict] = None,
    groups: Optional[Dict] = None,
) -> CohortResult:
    """
    Run linkage, classification, enrichment and filtering in memory.

    Args:
        data: Loaded input tables
        config: Cohort variant settings
        sites: Parsed hospital_sites.yaml
        groups: Parsed diagnosis_groups.yaml

    Returns:
        CohortResult with assembled and nested cohorts
    """
    config = config or cohort_config.COHORT_CONFIG
    sites = sites if sites is not None else load_hospital_sites()
    classifier = DiagnosisClassifier(groups if groups is not None else load_diagnosis_groups())

    flow = FlowLog(config.name)
    exclusions = ExclusionLog()

    flow.start(STAGE_ICU_ADMISSIONS, len(data.icu))
    linkage = link_transfers(
        data.icu,
        data.tertiary,
        config.linkage,
        exclusions,
        sites.get("sending_hospital_types"),
        sites.get("tertiary_centres"),
    )
    transfers = linkage.transfers
    flow.add(STAGE_LINKED, len(data.icu), len(transfers))

    transfers = classifier.classify_frame(transfers)

    n = len(transfers)
    transfers = attach_site_coordinates(transfers, data.hospitals, exclusions)
    flow.add(STAGE_COORDINATES, n, len(transfers))

    n = len(transfers)
    transfers = attach_distances(transfers, data.distances, exclusions)
    flow.add(STAGE_DISTANCES, n, len(transfers))

    transfers = infer_modality(transfers, data.flights, config.modality)
    transfers = attach_weather(transfers, data.stations, data.metar, config.weather)

    filtered = apply_inclusion_filters(transfers, config.filters, flow)
    cohort = assemble(filtered)
    nested = build_nested_cohort(cohort, flow)

    return CohortResult(
        cohort=cohort,
        nested=nested,
        flow=flow,
        exclusions=exclusions,
        sites=summarize_sites(cohort),
        diagnosis_groups=classifier.summarize(cohort),
        linkage_counts=linkage.counts,
    )


def _write_parquet(df: pd.DataFrame, path: Path):
    # secondary_icds is always list<string>, also when every row (or no row) is empty
    codes = pa.array(
        [list(c) if isinstance(c, (list, tuple)) else None for c in df["secondary_icds"]],
        type=pa.list_(pa.string()),
    )
    table = pa.Table.from_pandas(df.drop(columns="secondary_icds"), preserve_index=False)
    table = table.add_column(df.columns.get_loc("secondary_icds"), "secondary_icds", codes)
    pq.write_table(table, path)


def save_outputs(result: CohortResult, output_path: Path) -> None:
    output_path = Path(output_path)
    ensure_directories(output_path)
    _write_parquet(result.cohort, output_path / "transfers_cohort.parquet")
    _write_parquet(result.nested, output_path / "transfers_nested.parquet")
    result.flow.to_frame().to_csv(output_path / "flow_counts.csv", index=False)
    result.exclusions.to_frame().to_csv(output_path / "exclusions.csv", index=False)
    result.exclusions.summary().to_csv(output_path / "exclusion_summary.csv", index=False)
    result.sites.to_csv(output_path / "site_transfer_counts.csv", index=False)
    result.diagnosis_groups.to_csv(output_path / "diagnosis_group_counts.csv", index=False)


def run_pipeline(
    inputs: CohortInputs,
    output_path: Path,
    config: Optional[CohortConfig] = None,
    sites: Optional[Dict] = None,
    groups: Optional[Dict] = None,
) -> CohortResult:
    """Load, build and save the cohort for one variant."""
    config = config or cohort_config.COHORT_CONFIG
    sites = sites if sites is not None else load_hospital_sites()

    print("=" * 60)
    print(f"IFT cohort: variant '{config.name}'")
    print("=" * 60)

    print("\n1. Loading registry extract and reference tables...")
    data = load_inputs(inputs, sites)
    print(f"   ICU admissions: {len(data.icu):,}")
    print(f"   Tertiary admissions: {len(data.tertiary):,}")

    print("\n2. Building cohort...")
    result = build_cohort(data, config, sites, groups)

    print(f"\n3. Saving to {output_path}...")
    save_outputs(result, output_path)

    print(result.flow.report())
    print(f"   Exclusions logged: {len(result.exclusions.entries):,}")
    print(f"   Cohort: {len(result.cohort):,} transfers, nested: {len(result.nested):,}")
    print("=" * 60)
    return result


def main():
    """Main entry point for CLI."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Build the interfacility-transfer ICU cohort")
    parser.add_argument("--variant", type=str, default="main", help="Cohort variant from cohort_variants.yaml")
    parser.add_argument("--data-dir", type=Path, default=cohort_config.DATA_DIR, help="Directory with input CSVs")
    parser.add_argument(
        "--sqlite", type=Path, nargs="?", default=None, const=cohort_config.REGISTRY_DB,
        help=f"Registry SQLite database replacing the admission CSVs (bare flag: {cohort_config.REGISTRY_DB.name})",
    )
    parser.add_argument("--output-dir", type=Path, default=cohort_config.OUTPUT_DIR, help="Output directory")
    args = parser.parse_args()

    sqlite_db = args.sqlite
    if sqlite_db == cohort_config.REGISTRY_DB:
        # Bare --sqlite: the registry database inside --data-dir
        sqlite_db = args.data_dir / cohort_config.REGISTRY_DB.name

    config = load_cohort_variant(args.variant)
    inputs = CohortInputs.from_data_dir(args.data_dir, sqlite_db)
    run_pipeline(inputs, args.output_dir / config.name, config)


if __name__ == "__main__":
    main()
