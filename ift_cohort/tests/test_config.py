"""Tests for cohort configuration."""
import pytest
from ift_cohort.config.cohort_config import (
    CohortConfig,
    FilterConfig,
    LinkageConfig,
    ModalityConfig,
    list_cohort_variants,
    load_cohort_variant,
    load_diagnosis_groups,
    load_hospital_sites,
)


class TestDefaults:
    """Tests for dataclass defaults."""

    def test_linkage_defaults(self):
        config = LinkageConfig()
        assert config.forward_window_hours == 24
        assert config.early_morning_cutoff_hour == 4
        assert config.max_primary_los_hours == 24

    def test_modality_defaults(self):
        assert ModalityConfig().flight_window_hours == 3

    def test_filter_defaults(self):
        config = FilterConfig()
        assert config.min_road_distance_km == 49
        assert config.min_transfers_per_site == 5


class TestVariants:
    """Tests for named cohort variants."""

    def test_main_and_alternate_thresholds_differ(self):
        main = load_cohort_variant("main")
        alternate = load_cohort_variant("alternate")
        assert main.filters.min_transfers_per_site == 5
        assert alternate.filters.min_transfers_per_site == 4
        assert main.name == "main"

    def test_unknown_variant(self):
        with pytest.raises(KeyError):
            load_cohort_variant("does-not-exist")

    def test_list_variants(self):
        assert {"main", "alternate"} <= set(list_cohort_variants())

    def test_variant_overrides_only_given_fields(self, tmp_path):
        path = tmp_path / "variants.yaml"
        path.write_text(
            "variants:\n"
            "  short_window:\n"
            "    linkage:\n"
            "      forward_window_hours: 12\n"
        )
        config = load_cohort_variant("short_window", path)
        assert isinstance(config, CohortConfig)
        assert config.linkage.forward_window_hours == 12
        assert config.linkage.backward_window_hours == 24
        assert config.filters.min_transfers_per_site == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_cohort_variant("main", tmp_path / "missing.yaml")


class TestConfigTables:
    """Tests for the shipped YAML tables."""

    def test_diagnosis_groups(self):
        groups = load_diagnosis_groups()
        assert "S06" in groups["rule_sets"]["tbi"]
        for key in groups["precedence"]:
            assert groups["groups"][key]["icd10"]

    def test_hospital_sites(self):
        sites = load_hospital_sites()
        assert "county" in sites["sending_hospital_types"]
        for canonical in sites["aliases"].values():
            assert canonical in sites["tertiary_centres"]
