"""Tests for diagnosis group classification."""
import copy
import pytest
import pandas as pd
from ift_cohort.config.cohort_config import load_diagnosis_groups
from ift_cohort.processing.diagnosis_classifier import (
    UNCLASSIFIED,
    DiagnosisClassifier,
    classify_diagnoses,
    restrict_to_classified,
)
from ift_cohort.processing.icd_parser import any_code_in_set, code_in_set


@pytest.fixture(scope="module")
def classifier():
    """Classifier using the shipped diagnosis_groups.yaml."""
    return DiagnosisClassifier()


@pytest.fixture
def synthetic_groups():
    return {
        "rule_sets": {
            "tbi": ["S06"],
            "skull_cervical_fracture": ["S02", "S2"],
            "cervical_fracture": ["S12"],
            "nontraumatic_sdh": ["I62.0"],
            "other_body_trauma": ["S27"],
        },
        "precedence": ["AAA", "BBB"],
        "groups": {
            "AAA": {"label": "First", "icd10": ["X10"]},
            "BBB": {"label": "Second", "icd10": ["X1"]},
        },
    }


class TestTBIRules:
    """Tests for TBI precedence."""

    def test_primary_tbi(self, classifier):
        assert classifier.classify("S06.5") == "TBI"

    def test_primary_tbi_without_dot(self, classifier):
        assert classifier.classify("S065") == "TBI"

    def test_skull_fracture_with_secondary_tbi(self, classifier):
        assert classifier.classify("S02.1", ["J96.0", "S06.3"]) == "TBI"

    def test_skull_fracture_without_secondary_tbi(self, classifier):
        assert classifier.classify("S02.1", ["J96.0"]) == UNCLASSIFIED

    def test_other_body_trauma_not_tbi(self, synthetic_groups):
        clf = DiagnosisClassifier(synthetic_groups)
        assert clf.classify("S27.0", ["S06.5"]) == UNCLASSIFIED
        assert clf.classify("S22.0", ["S06.5"]) == "TBI"


class TestSDHAndCFX:
    """Tests for reclassification to TBI."""

    def test_nontraumatic_sdh(self, classifier):
        assert classifier.classify("I62.0") == "SDH"

    def test_sdh_with_secondary_tbi_is_tbi(self, classifier):
        assert classifier.classify("I62.0", ["S06.5"]) == "TBI"

    def test_isolated_cervical_fracture(self, classifier):
        assert classifier.classify("S12.1") == "CFX"

    def test_cervical_fracture_with_secondary_tbi_is_tbi(self, classifier):
        assert classifier.classify("S12.1", ["S06.0"]) == "TBI"

    def test_cervical_cord_injury(self, classifier):
        assert classifier.classify("S14.1") == "CFX"


class TestPrimaryMembership:
    """Tests for direct primary-code membership."""

    @pytest.mark.parametrize("code,expected", [
        ("I60.9", "ASAH"),
        ("I61.0", "ICH"),
        ("I63.4", "AIS"),
        ("G00.1", "ABM"),
        ("Q28.2", "AVM"),
        ("I67.6", "CVT"),
        ("C71.9", "TUM"),
        ("G91.0", "HC"),
        ("A41.9", "SEP"),
        ("G41.0", "SE"),
    ])
    def test_group_membership(self, classifier, code, expected):
        assert classifier.classify(code) == expected

    def test_precedence_cvt_before_ais(self, classifier):
        """I63.6 (venous infarct) is CVT, not AIS."""
        assert classifier.classify("I63.6") == "CVT"

    def test_precedence_order_configured(self, synthetic_groups):
        clf = DiagnosisClassifier(synthetic_groups)
        assert clf.classify("X10.1") == "AAA"
        assert clf.classify("X11.1") == "BBB"

    def test_secondary_codes_ignored_for_membership(self, classifier):
        assert classifier.classify("J18.9", ["I60.9"]) == UNCLASSIFIED

    def test_unknown_code(self, classifier):
        assert classifier.classify("J18.9") == UNCLASSIFIED

    def test_empty_primary(self, classifier):
        assert classifier.classify("", ["S06.5"]) == UNCLASSIFIED
        assert classifier.classify(None) == UNCLASSIFIED


class TestClassifyFrame:
    """Tests for frame-level classification."""

    def _frame(self):
        return pd.DataFrame({
            "patient_id": ["P1", "P2", "P3", "P4"],
            "primary_icd": ["S065", "S021", "I609", "J189"],
            "secondary_icds": [(), ("S063",), (), ()],
        })

    def test_adds_group_column(self, classifier):
        result = classifier.classify_frame(self._frame())
        assert list(result["diagnosis_group"]) == ["TBI", "TBI", "ASAH", UNCLASSIFIED]

    def test_input_not_mutated(self, classifier):
        df = self._frame()
        classifier.classify_frame(df)
        assert "diagnosis_group" not in df.columns

    def test_idempotent(self, classifier):
        once = classifier.classify_frame(self._frame())
        twice = classifier.classify_frame(once)
        pd.testing.assert_series_equal(once["diagnosis_group"], twice["diagnosis_group"])

    def test_tbi_rows_carry_tbi_code(self, classifier):
        result = classifier.classify_frame(self._frame())
        tbi = result[result["diagnosis_group"] == "TBI"]
        for _, row in tbi.iterrows():
            codes = [row["primary_icd"], *row["secondary_icds"]]
            assert any_code_in_set(codes, classifier.tbi)

    def test_empty_frame(self, classifier):
        empty = pd.DataFrame({"primary_icd": [], "secondary_icds": []})
        result = classifier.classify_frame(empty)
        assert "diagnosis_group" in result.columns
        assert result.empty

    def test_restrict_to_classified(self):
        result = restrict_to_classified(classify_diagnoses(self._frame()))
        assert list(result["patient_id"]) == ["P1", "P2", "P3"]


class TestConfiguration:
    """Tests for classifier configuration."""

    def test_missing_tbi_codes_rejected(self):
        with pytest.raises(ValueError):
            DiagnosisClassifier({"rule_sets": {}, "precedence": [], "groups": {}})

    def test_group_keys(self, classifier):
        assert classifier.group_keys[:3] == ["TBI", "SDH", "CFX"]
        assert "ASAH" in classifier.group_keys

    def test_labels(self, classifier):
        assert classifier.labels["TBI"] == "Traumatic brain injury"

    def test_shipped_fracture_list_disjoint_from_other_trauma(self, classifier):
        """With the shipped lists no fracture primary is excluded as other-body trauma."""
        for prefix in classifier.skull_cervical_fracture:
            assert not code_in_set(prefix, classifier.other_body_trauma)

    def test_widened_fracture_list_engages_other_trauma_guard(self):
        groups = copy.deepcopy(load_diagnosis_groups())
        groups["rule_sets"]["skull_cervical_fracture"].append("T02")
        widened = DiagnosisClassifier(groups)
        assert widened.classify("T02.0", ["S06.5"]) != "TBI"
        assert widened.classify("S02.1", ["S06.5"]) == "TBI"

    def test_summarize(self, classifier):
        df = pd.DataFrame({"diagnosis_group": ["TBI", "TBI", "ICH", UNCLASSIFIED]})
        summary = classifier.summarize(df)
        assert list(summary.columns) == ["diagnosis_group", "label", "n_transfers"]
        assert list(summary["diagnosis_group"]) == classifier.group_keys + [UNCLASSIFIED]
        counts = summary.set_index("diagnosis_group")["n_transfers"]
        assert counts["TBI"] == 2
        assert counts["ICH"] == 1
        assert counts["ASAH"] == 0
        assert summary.iloc[0]["label"] == "Traumatic brain injury"
