from datetime import datetime, timezone

from conftest import candidate

from pinrecon.etl import report
from pinrecon.models import Coordinates, ErrorKind, OutcomeError, OutcomeStatus, ReconciliationOutcome


def applied_outcome():
    chosen = candidate("Wembley Stadium", -0.279884, 51.556021, 0.98)
    return ReconciliationOutcome(
        record_id="1",
        record_name="Wembley Cup",
        address_used="Wembley Stadium, London",
        request_descriptor="fake://geocode/Wembley Stadium, London",
        status=OutcomeStatus.APPLIED,
        previous_coordinates=Coordinates(51.0, -0.1),
        chosen_candidate=chosen,
        new_coordinates=chosen.coordinates,
    )


def test_verification_url_matches_encode_uri_component():
    assert report.verification_url("Cam. de Cubas, 16, 28991 Torrejón") == (
        "https://www.google.com/maps/search/Cam.%20de%20Cubas%2C%2016%2C%2028991%20Torrej%C3%B3n"
    )
    assert report.verification_url("St John's (Main) Hall!") == (
        "https://www.google.com/maps/search/St%20John's%20(Main)%20Hall!"
    )


def test_format_coordinates_keeps_eight_decimals():
    assert report.format_coordinates(Coordinates(51.556021, -0.279884)) == "51.55602100, -0.27988400"
    assert report.format_coordinates(None) is None


def test_applied_row():
    row = report.to_result_row(applied_outcome())

    assert row["name"] == "Wembley Cup"
    assert row["location_name"] == "Wembley Stadium, London"
    assert row["status"] == "Applied"
    assert row["latitude"] == 51.556021
    assert row["longitude"] == -0.279884
    assert row["old_latitude"] == 51.0
    assert row["old_longitude"] == -0.1
    assert row["place_name"] == "Wembley Stadium"
    assert row["relevance"] == 0.98
    assert row["raw_response"]["center"] == [-0.279884, 51.556021]
    assert row["error"] is None


def test_failed_and_skipped_rows_carry_error_text():
    failed = ReconciliationOutcome(
        record_id="2",
        record_name="Blank",
        address_used="  ",
        request_descriptor=None,
        status=OutcomeStatus.FAILED,
        error=OutcomeError(ErrorKind.INVALID_ADDRESS, "address text is empty; no request issued"),
    )
    skipped = ReconciliationOutcome(
        record_id="3",
        record_name="Nowhere",
        address_used="Atlantis",
        request_descriptor="fake://geocode/Atlantis",
        status=OutcomeStatus.SKIPPED_NO_CANDIDATE,
        previous_coordinates=Coordinates(1.0, 2.0),
        note="No geocoding results found",
    )

    failed_row = report.to_result_row(failed)
    skipped_row = report.to_result_row(skipped)

    assert failed_row["error"] == "InvalidAddress: address text is empty; no request issued"
    assert failed_row["raw_response"] is None
    assert failed_row["latitude"] is None
    assert failed_row["old_latitude"] is None
    assert skipped_row["error"] == "No geocoding results found"
    assert skipped_row["latitude"] is None
    assert skipped_row["old_latitude"] == 1.0


def test_failed_write_row_keeps_pin_fields_empty():
    chosen = candidate("Wembley Stadium", -0.279884, 51.556021, 0.98)
    failed_write = ReconciliationOutcome(
        record_id="1",
        record_name="Wembley Cup",
        address_used="Wembley Stadium, London",
        request_descriptor="fake://geocode/Wembley Stadium, London",
        status=OutcomeStatus.FAILED,
        previous_coordinates=Coordinates(51.0, -0.1),
        chosen_candidate=chosen,
        new_coordinates=chosen.coordinates,
        error=OutcomeError(ErrorKind.STORE_WRITE_FAILED, "database error: connection reset"),
    )

    row = report.to_result_row(failed_write)

    assert row["status"] == "Failed"
    assert row["error"] == "StoreWriteFailed: database error: connection reset"
    for key in ("raw_response", "latitude", "longitude", "place_name", "relevance", "formatted_coordinates"):
        assert row[key] is None, key
    assert row["old_latitude"] == 51.0
    assert row["intended_latitude"] == 51.556021
    assert row["intended_longitude"] == -0.279884
    assert row["intended_raw_response"]["center"] == [-0.279884, 51.556021]


def test_applied_row_has_no_intended_fields():
    row = report.to_result_row(applied_outcome())

    assert row["intended_latitude"] is None
    assert row["intended_longitude"] is None
    assert row["intended_raw_response"] is None


def test_row_keeps_full_precision_beside_formatted_text():
    chosen = candidate("Pitch 3", 2.1734035123456, 41.3850639987654, 0.91)
    outcome = ReconciliationOutcome(
        record_id="7",
        record_name="Barcelona Open",
        address_used="Pitch 3, Barcelona",
        request_descriptor="fake://geocode/Pitch 3, Barcelona",
        status=OutcomeStatus.APPLIED,
        previous_coordinates=Coordinates(41.0, 2.0),
        chosen_candidate=chosen,
        new_coordinates=chosen.coordinates,
    )

    row = report.to_result_row(outcome)

    assert row["latitude"] == 41.3850639987654
    assert row["longitude"] == 2.1734035123456
    assert row["formatted_coordinates"] == "41.38506400, 2.17340351"
    assert row["formatted_old_coordinates"] == "41.00000000, 2.00000000"


def test_build_report_preserves_order_and_adds_metadata():
    first = applied_outcome()
    second = ReconciliationOutcome(
        record_id="0",
        record_name="Earlier id, later position",
        address_used="Somewhere",
        request_descriptor="fake://geocode/Somewhere",
        status=OutcomeStatus.SKIPPED_LOW_CONFIDENCE,
        note="1 candidates, best relevance 0.40 below threshold 0.80",
    )
    stamp = datetime(2026, 10, 18, tzinfo=timezone.utc)

    built = report.build_report([first, second], final_coordinates=[{"id": "1"}], timestamp=stamp)

    assert built["success"] is True
    assert [r["id"] for r in built["results"]] == ["1", "0"]
    assert built["final_coordinates"] == [{"id": "1"}]
    assert built["timestamp"] == "2026-10-18T00:00:00+00:00"


def test_build_error_report():
    assert report.build_error_report(RuntimeError("boom")) == {"success": False, "error": "boom"}
