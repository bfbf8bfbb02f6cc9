"""Cryptographic primitives protecting record fields at rest."""

from __future__ import annotations

from typing import Protocol

from pymedibot._crypto.envelope import MIN_ENVELOPE_LENGTH, EnvelopeCipher, open_envelope, seal_envelope
from pymedibot._crypto.kdf import derive_key


class FieldCipher(Protocol):
    """Protocol for text field encryption/decryption."""

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, envelope: str) -> str: ...


__all__ = [
    "MIN_ENVELOPE_LENGTH",
    "EnvelopeCipher",
    "FieldCipher",
    "derive_key",
    "open_envelope",
    "seal_envelope",
]
