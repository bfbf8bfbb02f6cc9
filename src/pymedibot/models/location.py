"""Location models shared by the reporting and observing sides."""

from __future__ import annotations

import math
from datetime import datetime
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pymedibot.models._base import MedibotBaseModel, RequiredTimestamp, StoreTimestamp, utcnow

_EARTH_RADIUS_KM = 6371.0088


def _check_latitude(value: float) -> float:
    if not -90.0 <= value <= 90.0:
        raise ValueError(f"latitude must be within [-90, 90], got {value}")
    return value


def _check_longitude(value: float) -> float:
    if not -180.0 <= value <= 180.0:
        raise ValueError(f"longitude must be within [-180, 180], got {value}")
    return value


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates, in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * _EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


class LocationFix(BaseModel):
    """A raw fix produced by a location source."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    accuracy: float | None = None
    captured_at: datetime = Field(default_factory=utcnow)

    @field_validator("latitude")
    @classmethod
    def _validate_latitude(cls, value: float) -> float:
        return _check_latitude(value)

    @field_validator("longitude")
    @classmethod
    def _validate_longitude(cls, value: float) -> float:
        return _check_longitude(value)


class LocationSample(BaseModel):
    """A subject's position at one instant.  Immutable once created.

    Parameters
    ----------
    subject_id : str
        Id of the subject (patient) the sample belongs to.
    latitude, longitude : float
        WGS84 coordinates in degrees.
    captured_at : datetime
        When the source captured the fix (UTC).
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    latitude: float
    longitude: float
    captured_at: RequiredTimestamp = Field(default_factory=utcnow)

    @field_validator("subject_id")
    @classmethod
    def _normalize_subject_id(cls, value: str) -> str:
        subject_id = value.strip()
        if not subject_id:
            raise ValueError("subject_id must be non-empty")
        return subject_id

    @field_validator("latitude")
    @classmethod
    def _validate_latitude(cls, value: float) -> float:
        return _check_latitude(value)

    @field_validator("longitude")
    @classmethod
    def _validate_longitude(cls, value: float) -> float:
        return _check_longitude(value)

    @classmethod
    def from_fix(cls, subject_id: str, fix: LocationFix) -> LocationSample:
        return cls(
            subject_id=subject_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            captured_at=fix.captured_at,
        )

    def distance_km(self, other: LocationSample | HistoryEntry | ObservedPosition) -> float:
        return haversine_km(self.latitude, self.longitude, other.latitude, other.longitude)


class StoredPosition(MedibotBaseModel):
    """The subject's current-position columns as read from the store."""

    latitude: float = Field(validation_alias=AliasChoices("current_lat", "currentLat", "latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("current_lng", "currentLng", "longitude", "lng"))
    timestamp: StoreTimestamp = Field(
        default=None,
        validation_alias=AliasChoices(
            "location_last_updated",
            "locationLastUpdated",
            "timestamp",
            "last_updated",
        ),
    )


class HistoryEntry(MedibotBaseModel):
    """One row of the append-only position history."""

    latitude: float = Field(validation_alias=AliasChoices("lat", "latitude"))
    longitude: float = Field(validation_alias=AliasChoices("lng", "longitude"))
    recorded_at: StoreTimestamp = Field(default=None, validation_alias=AliasChoices("recorded_at", "recordedAt"))

    def same_place(self, latitude: float, longitude: float) -> bool:
        return self.latitude == latitude and self.longitude == longitude


class PositionSource(StrEnum):
    INITIAL = "initial"
    POLL = "poll"
    PUSH = "push"
    FALLBACK = "fallback"


class ObservedPosition(BaseModel):
    """The freshest known position of a subject, as shown to an observer."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    latitude: float
    longitude: float
    last_updated: datetime
    source: PositionSource

    @property
    def is_placeholder(self) -> bool:
        """``True`` for the demo position shown before any real sample."""
        return self.source == PositionSource.FALLBACK
