"""Normalized position candidates.

All observer-side sources (initial fetch, poll, push, fallback) convert
their inputs into candidates. Only the state/store layer merges them.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pymedibot.models.location import PositionSource


class PositionCandidate(BaseModel):
    """A position offered to the state store by one source."""

    model_config = ConfigDict(frozen=True)

    subject_id: str = Field(..., description="Subject id")
    latitude: float
    longitude: float
    timestamp: datetime = Field(..., description="When the subject was at this position")
    source: PositionSource

    @field_validator("subject_id")
    @classmethod
    def _normalize_subject_id(cls, value: str) -> str:
        subject_id = value.strip()
        if not subject_id:
            raise ValueError("subject_id must be non-empty")
        return subject_id

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
