"""Custom exception hierarchy for pymedibot."""

from __future__ import annotations


class MedibotError(Exception):
    """Base exception for all pymedibot errors."""


class MedibotConfigError(MedibotError):
    """Invalid or missing configuration."""


class MedibotCryptoError(MedibotError):
    """Key derivation, encryption or decryption failure."""


class MedibotTransportError(MedibotError):
    """HTTP-level failure (network, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class MedibotStoreError(MedibotError):
    """The record store rejected an operation (application-level error)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class MedibotSubscriptionError(MedibotError):
    """A change-feed subscription could not be established."""


class MedibotLocationError(MedibotError):
    """The location source failed to produce a fix."""


class MedibotPermissionDeniedError(MedibotLocationError):
    """The user (or platform) denied access to the location source."""


class MedibotLocationTimeoutError(MedibotLocationError):
    """No fix was produced within the allotted time."""
