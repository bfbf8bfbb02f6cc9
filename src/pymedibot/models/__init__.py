"""Data models for pymedibot."""

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

__all__ = [
    "HistoryEntry",
    "LocationFix",
    "LocationSample",
    "MedicalRecord",
    "ObservedPosition",
    "PositionSource",
    "StoredPosition",
    "UserRole",
    "haversine_km",
]
