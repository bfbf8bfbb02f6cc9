"""Tests for Pydantic model parsing of store rows and change payloads."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from pymedibot.ingestion.positions import (
    UNDATED,
    build_candidate,
    extract_changed_row,
    parse_history_rows,
    parse_stored_position,
)
from pymedibot.models._base import parse_store_timestamp
from pymedibot.models.location import (
    HistoryEntry,
    LocationFix,
    LocationSample,
    ObservedPosition,
    PositionSource,
    StoredPosition,
    haversine_km,
)
from pymedibot.models.record import MedicalRecord, UserRole

# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------


class TestStoreTimestamp:
    def test_iso_with_z(self) -> None:
        assert parse_store_timestamp("2026-01-01T10:00:00Z") == datetime(2026, 1, 1, 10, tzinfo=UTC)

    def test_iso_with_offset_is_normalised(self) -> None:
        parsed = parse_store_timestamp("2026-01-01T15:30:00+05:30")
        assert parsed == datetime(2026, 1, 1, 10, tzinfo=UTC)
        assert parsed is not None and parsed.tzinfo == UTC

    def test_epoch_seconds_and_millis(self) -> None:
        expected = datetime(2026, 1, 1, tzinfo=UTC)
        seconds = int(expected.timestamp())
        assert parse_store_timestamp(seconds) == expected
        assert parse_store_timestamp(seconds * 1000) == expected

    def test_naive_datetime_is_utc(self) -> None:
        assert parse_store_timestamp(datetime(2026, 1, 1)) == datetime(2026, 1, 1, tzinfo=UTC)

    def test_empty(self) -> None:
        assert parse_store_timestamp(None) is None
        assert parse_store_timestamp("  ") is None


# ------------------------------------------------------------------
# Current position rows
# ------------------------------------------------------------------


class TestStoredPosition:
    def test_parses_store_columns(self) -> None:
        row = {"current_lat": 12.9, "current_lng": "80.1", "location_last_updated": "2026-01-01T00:00:05Z"}
        position = parse_stored_position(row)
        assert position == StoredPosition(
            latitude=12.9,
            longitude=80.1,
            timestamp=datetime(2026, 1, 1, 0, 0, 5, tzinfo=UTC),
            raw=row,
        )
        assert position is not None and position.raw == row

    @pytest.mark.parametrize(
        "row",
        [
            None,
            [],
            {},
            {"current_lat": None, "current_lng": None, "location_last_updated": None},
            {"current_lat": 12.0, "current_lng": None},
            {"current_lat": "--", "current_lng": 80.0},
        ],
    )
    def test_missing_coordinates_mean_not_found(self, row: object) -> None:
        assert parse_stored_position(row) is None

    def test_missing_timestamp_is_allowed(self) -> None:
        position = parse_stored_position({"current_lat": 1.0, "current_lng": 2.0})
        assert position is not None
        assert position.timestamp is None
        candidate = build_candidate("p-1", position, PositionSource.POLL)
        assert candidate.timestamp == UNDATED


class TestHistory:
    def test_parses_rows_and_skips_bad_ones(self) -> None:
        rows = [
            {"lat": 12.82, "lng": 80.04, "recorded_at": "2026-01-02T00:00:00+00:00"},
            {"lat": None, "lng": 80.0},
            "garbage",
            {"latitude": 1.5, "longitude": 2.5},
        ]
        entries = parse_history_rows(rows)
        assert [(e.latitude, e.longitude) for e in entries] == [(12.82, 80.04), (1.5, 2.5)]
        assert entries[0].recorded_at == datetime(2026, 1, 2, tzinfo=UTC)
        assert entries[1].recorded_at is None

    def test_non_list_payload(self) -> None:
        assert parse_history_rows(None) == []
        assert parse_history_rows({"lat": 1}) == []

    def test_same_place(self) -> None:
        entry = HistoryEntry(latitude=1.0, longitude=2.0)
        assert entry.same_place(1.0, 2.0)
        assert not entry.same_place(1.0, 2.0001)


# ------------------------------------------------------------------
# Change-feed payloads
# ------------------------------------------------------------------


class TestExtractChangedRow:
    def test_postgres_changes_shape(self) -> None:
        row = {"id": "p-1", "current_lat": 1.0}
        assert extract_changed_row({"eventType": "UPDATE", "new": row, "old": {}}) == row

    def test_webhook_shape(self) -> None:
        row = {"id": "p-1", "current_lat": 1.0}
        assert extract_changed_row({"type": "UPDATE", "record": row}) == row

    def test_nested_under_data(self) -> None:
        row = {"current_lat": 1.0}
        assert extract_changed_row({"data": {"record": row}}) == row

    def test_bare_row(self) -> None:
        row = {"current_lat": 1.0, "current_lng": 2.0}
        assert extract_changed_row(row) == row

    def test_unrecognised(self) -> None:
        assert extract_changed_row({"event": "ping"}) is None
        assert extract_changed_row(["not", "a", "dict"]) is None


# ------------------------------------------------------------------
# Samples and observed positions
# ------------------------------------------------------------------


class TestLocationSample:
    def test_from_fix(self) -> None:
        captured = datetime(2026, 1, 1, tzinfo=UTC)
        fix = LocationFix(latitude=12.8, longitude=80.0, accuracy=5.0, captured_at=captured)
        sample = LocationSample.from_fix(" p-1 ", fix)
        assert sample.subject_id == "p-1"
        assert (sample.latitude, sample.longitude, sample.captured_at) == (12.8, 80.0, captured)

    def test_immutable(self) -> None:
        sample = LocationSample(subject_id="p-1", latitude=1.0, longitude=2.0)
        with pytest.raises(ValidationError):
            sample.latitude = 3.0  # type: ignore[misc]

    @pytest.mark.parametrize(("lat", "lng"), [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.1), (0.0, -181.0)])
    def test_out_of_range_rejected(self, lat: float, lng: float) -> None:
        with pytest.raises(ValidationError):
            LocationSample(subject_id="p-1", latitude=lat, longitude=lng)
        with pytest.raises(ValidationError):
            LocationFix(latitude=lat, longitude=lng)

    def test_empty_subject_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LocationSample(subject_id="  ", latitude=0.0, longitude=0.0)

    def test_captured_at_accepts_store_format(self) -> None:
        sample = LocationSample(subject_id="p", latitude=0, longitude=0, captured_at="2026-01-01T00:00:00Z")
        assert sample.captured_at == datetime(2026, 1, 1, tzinfo=UTC)

    def test_captured_at_offset_normalised(self) -> None:
        local = datetime(2026, 1, 1, 5, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        sample = LocationSample(subject_id="p", latitude=0, longitude=0, captured_at=local)
        assert sample.captured_at == datetime(2026, 1, 1, tzinfo=UTC)

    def test_distance_km(self) -> None:
        a = LocationSample(subject_id="p", latitude=12.823053, longitude=80.043621)
        b = HistoryEntry(latitude=12.825, longitude=80.048)
        assert a.distance_km(b) == pytest.approx(0.52, abs=0.02)
        assert haversine_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(111.19, abs=0.05)
        assert a.distance_km(a) == 0.0


def test_observed_position_placeholder_flag() -> None:
    now = datetime(2026, 1, 1, tzinfo=UTC)
    fallback = ObservedPosition(subject_id="p", latitude=1, longitude=2, last_updated=now, source=PositionSource.FALLBACK)
    live = fallback.model_copy(update={"source": PositionSource.PUSH})
    assert fallback.is_placeholder
    assert not live.is_placeholder


# ------------------------------------------------------------------
# Medical records
# ------------------------------------------------------------------


class TestMedicalRecord:
    def test_camel_case_payload(self) -> None:
        record = MedicalRecord.model_validate(
            {
                "id": 42,
                "title": "ECG",
                "description": "Resting ECG",
                "fileUrl": "data:application/pdf;base64,AAAA",
                "fileName": "ecg.pdf",
                "uploadedAt": "2026-01-01T00:00:00Z",
                "uploadedBy": "ATTENDER",
                "isPermanent": True,
            }
        )
        assert record.id == "42"
        assert record.file_url == "data:application/pdf;base64,AAAA"
        assert record.file_name == "ecg.pdf"
        assert record.uploaded_by == UserRole.ATTENDER
        assert record.is_permanent is True
        assert record.uploaded_at == datetime(2026, 1, 1, tzinfo=UTC)

    def test_snake_case_columns_and_empty_values(self) -> None:
        record = MedicalRecord.model_validate(
            {"id": "r-1", "title": "", "description": None, "file_url": None, "uploaded_by": "PATIENT"}
        )
        assert record.title == ""
        assert record.description == ""
        assert record.file_url is None
        assert record.uploaded_by == UserRole.PATIENT
        assert record.raw["file_url"] is None
