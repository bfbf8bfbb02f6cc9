"""Medical record row model."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pymedibot.models._base import MedibotBaseModel, StoreTimestamp


class UserRole(StrEnum):
    PATIENT = "PATIENT"
    ATTENDER = "ATTENDER"


class MedicalRecord(MedibotBaseModel):
    """A medical record as stored in ``medical_records``.

    ``title``, ``description`` and ``file_url`` hold envelopes at rest;
    see :mod:`pymedibot.records`.  ``file_url`` usually carries the
    document itself as a data URI.
    """

    id: str
    title: str = ""
    description: str = ""
    file_url: str | None = Field(default=None, validation_alias=AliasChoices("file_url", "fileUrl"))
    file_name: str | None = Field(default=None, validation_alias=AliasChoices("file_name", "fileName"))
    uploaded_at: StoreTimestamp = Field(default=None, validation_alias=AliasChoices("uploaded_at", "uploadedAt"))
    uploaded_by: UserRole = Field(default=UserRole.PATIENT, validation_alias=AliasChoices("uploaded_by", "uploadedBy"))
    is_permanent: bool = Field(default=False, validation_alias=AliasChoices("is_permanent", "isPermanent"))
    expires_at: StoreTimestamp = Field(default=None, validation_alias=AliasChoices("expires_at", "expiresAt"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)
