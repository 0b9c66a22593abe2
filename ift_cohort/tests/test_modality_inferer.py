"""Tests for HEMS modality inference."""
import pytest
import pandas as pd
from ift_cohort.config.cohort_config import ModalityConfig
from ift_cohort.processing.audit import ExclusionLog, MISSING_REFERENCE_DATA
from ift_cohort.processing.modality_inferer import (
    HEMS,
    OTHER,
    attach_site_coordinates,
    infer_modality,
    match_flight,
)

VISBY = (57.639, 18.296)
SOLNA = (59.350, 18.032)
GOTHENBURG = (57.683, 11.961)
VISBY_HELIPAD = (57.642, 18.300)


def make_transfer(discharged_at="2020-01-10 02:30", patient_id="P1"):
    return pd.DataFrame({
        "patient_id": [patient_id],
        "sending_site": ["Visby lasarett"],
        "receiving_site": ["Karolinska universitetssjukhuset Solna"],
        "icu_discharged_at": pd.to_datetime([discharged_at]),
        "sending_lat": [VISBY[0]],
        "sending_lon": [VISBY[1]],
        "receiving_lat": [SOLNA[0]],
        "receiving_lon": [SOLNA[1]],
    })


def make_flights(rows):
    df = pd.DataFrame(rows, columns=[
        "flight_id", "departed_at", "departure_lat", "departure_lon", "arrival_lat", "arrival_lon",
    ])
    df["departed_at"] = pd.to_datetime(df["departed_at"])
    return df


class TestInferModality:
    """Tests for flight matching."""

    def test_northbound_flight_within_window_is_hems(self):
        flights = make_flights([
            ("F1", "2020-01-10 03:30", *VISBY_HELIPAD, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == HEMS
        assert result.iloc[0]["matched_flight_id"] == "F1"
        assert result.iloc[0]["flight_offset_minutes"] == pytest.approx(60)

    def test_heading_match_without_arrival_at_receiving(self):
        """Track towards the receiving hospital is enough."""
        flights = make_flights([
            ("F1", "2020-01-10 03:30", *VISBY_HELIPAD, 58.500, 18.170),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == HEMS

    def test_flight_outside_window_is_other(self):
        flights = make_flights([
            ("F1", "2020-01-10 06:31", *VISBY_HELIPAD, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == OTHER
        assert result.iloc[0]["matched_flight_id"] is None

    def test_window_boundary_included(self):
        flights = make_flights([
            ("F1", "2020-01-09 23:30", *VISBY_HELIPAD, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == HEMS
        assert result.iloc[0]["flight_offset_minutes"] == pytest.approx(-180)

    def test_wrong_direction_is_other(self):
        flights = make_flights([
            ("F1", "2020-01-10 03:00", *VISBY_HELIPAD, 56.500, 18.300),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == OTHER

    def test_departure_elsewhere_is_other(self):
        flights = make_flights([
            ("F1", "2020-01-10 03:00", *GOTHENBURG, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["modality"] == OTHER

    def test_closest_flight_in_time_wins(self):
        flights = make_flights([
            ("F1", "2020-01-10 04:00", *VISBY_HELIPAD, *SOLNA),
            ("F2", "2020-01-10 02:00", *VISBY_HELIPAD, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["matched_flight_id"] == "F2"
        assert result.iloc[0]["flight_offset_minutes"] == pytest.approx(-30)

    def test_equal_offsets_resolved_by_flight_id(self):
        flights = make_flights([
            ("F9", "2020-01-10 03:30", *VISBY_HELIPAD, *SOLNA),
            ("F1", "2020-01-10 01:30", *VISBY_HELIPAD, *SOLNA),
        ])
        result = infer_modality(make_transfer(), flights)
        assert result.iloc[0]["matched_flight_id"] == "F1"

    def test_deterministic(self):
        flights = make_flights([
            ("F1", "2020-01-10 03:30", *VISBY_HELIPAD, *SOLNA),
            ("F2", "2020-01-10 01:30", *VISBY_HELIPAD, *SOLNA),
        ])
        first = infer_modality(make_transfer(), flights)
        second = infer_modality(make_transfer(), flights.iloc[::-1])
        pd.testing.assert_frame_equal(first, second)

    def test_no_flights(self):
        result = infer_modality(make_transfer(), make_flights([]))
        assert result.iloc[0]["modality"] == OTHER

    def test_configurable_window(self):
        flights = make_flights([
            ("F1", "2020-01-10 04:30", *VISBY_HELIPAD, *SOLNA),
        ])
        config = ModalityConfig(flight_window_hours=1)
        result = infer_modality(make_transfer(), flights, config)
        assert result.iloc[0]["modality"] == OTHER

    def test_match_flight_returns_none_without_candidates(self):
        flights = make_flights([("F1", "2020-02-01 00:00", *VISBY_HELIPAD, *SOLNA)])
        assert match_flight(pd.Timestamp("2020-01-10 02:30"), VISBY, SOLNA, flights) is None


class TestSiteCoordinates:
    """Tests for hospital coordinate attachment."""

    def _hospitals(self):
        return pd.DataFrame({
            "site_key": ["Visby lasarett", "Karolinska universitetssjukhuset Solna"],
            "hospital_name": ["Visby lasarett", "Karolinska universitetssjukhuset Solna"],
            "latitude": [VISBY[0], SOLNA[0]],
            "longitude": [VISBY[1], SOLNA[1]],
        })

    def test_coordinates_attached(self):
        transfers = make_transfer().drop(columns=["sending_lat", "sending_lon", "receiving_lat", "receiving_lon"])
        result = attach_site_coordinates(transfers, self._hospitals())
        assert result.iloc[0]["sending_lat"] == pytest.approx(VISBY[0])
        assert result.iloc[0]["receiving_lon"] == pytest.approx(SOLNA[1])

    def test_missing_site_excluded_and_logged(self):
        transfers = make_transfer().drop(columns=["sending_lat", "sending_lon", "receiving_lat", "receiving_lon"])
        transfers["receiving_site"] = "Unknown hospital"
        exclusions = ExclusionLog()
        result = attach_site_coordinates(transfers, self._hospitals(), exclusions)
        assert result.empty
        assert exclusions.count(MISSING_REFERENCE_DATA) == 1
        assert exclusions.entries[0]["key"] == "Unknown hospital"

    def test_both_sites_missing_logs_both_keys(self):
        transfers = make_transfer().drop(columns=["sending_lat", "sending_lon", "receiving_lat", "receiving_lon"])
        transfers["sending_site"] = "Unknown ICU"
        transfers["receiving_site"] = "Unknown hospital"
        exclusions = ExclusionLog()
        attach_site_coordinates(transfers, self._hospitals(), exclusions)
        assert exclusions.count(MISSING_REFERENCE_DATA) == 1
        assert exclusions.entries[0]["key"] == "Unknown ICU|Unknown hospital"
