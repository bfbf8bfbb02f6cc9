"""AES-256-GCM field envelopes.

Wire format (stable, shared with every envelope already in the store)::

    base64( IV[12] || ciphertext || tag[16] )

``seal_envelope``/``open_envelope`` are strict and raise
:class:`MedibotCryptoError`.  :class:`EnvelopeCipher` layers the
availability policy on top: ``decrypt`` is total and falls back to
passthrough for legacy plaintext, and ``encrypt`` fails open unless
configured otherwise.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
import secrets
from collections.abc import Callable
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pymedibot._constants import DEFAULT_KDF_SALT, IV_LENGTH_BYTES, MIN_KDF_ITERATIONS
from pymedibot._crypto.kdf import derive_key
from pymedibot.exceptions import MedibotCryptoError

if TYPE_CHECKING:
    from pymedibot.config import MedibotConfig

_logger = logging.getLogger(__name__)

#: Shortest base64 text able to carry a full IV.  Anything shorter is
#: plaintext by definition.
MIN_ENVELOPE_LENGTH = 4 * math.ceil(IV_LENGTH_BYTES / 3)

KeyDeriver = Callable[[str, str, int], bytes]


def seal_envelope(plaintext: str, key: bytes) -> str:
    """Encrypt *plaintext* under *key* with a fresh random IV.

    Raises
    ------
    MedibotCryptoError
        If encryption fails.
    """
    try:
        iv = secrets.token_bytes(IV_LENGTH_BYTES)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(iv + sealed).decode("ascii")
    except Exception as exc:
        raise MedibotCryptoError(f"AES-GCM encryption failed: {exc}") from exc


def open_envelope(envelope: str, key: bytes) -> str:
    """Decrypt an envelope produced by :func:`seal_envelope`.

    Raises
    ------
    MedibotCryptoError
        If the text is not base64, is too short, fails authentication,
        or does not decrypt to UTF-8.
    """
    try:
        combined = base64.b64decode(envelope.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MedibotCryptoError("Envelope is not base64-encoded") from exc

    if len(combined) < IV_LENGTH_BYTES:
        raise MedibotCryptoError(f"Envelope must be at least {IV_LENGTH_BYTES} bytes (got {len(combined)})")

    iv, sealed = combined[:IV_LENGTH_BYTES], combined[IV_LENGTH_BYTES:]
    try:
        plaintext = AESGCM(key).decrypt(iv, sealed, None)
        return plaintext.decode("utf-8")
    except Exception as exc:
        raise MedibotCryptoError(f"AES-GCM decryption failed: {exc!r}") from exc


class EnvelopeCipher:
    """Process-wide field cipher with a lazily derived, cached key.

    The key is derived on first use and reused for every operation.
    Concurrent first uses may each derive it; the results are identical.
    """

    def __init__(
        self,
        passphrase: str,
        *,
        salt: str = DEFAULT_KDF_SALT,
        iterations: int = MIN_KDF_ITERATIONS,
        fail_open: bool = True,
        key_deriver: KeyDeriver = derive_key,
    ) -> None:
        self._passphrase = passphrase
        self._salt = salt
        self._iterations = iterations
        self._fail_open = fail_open
        self._key_deriver = key_deriver
        self._key: bytes | None = None

    @classmethod
    def from_config(cls, config: MedibotConfig) -> EnvelopeCipher:
        return cls(
            config.master_passphrase,
            salt=config.kdf_salt,
            iterations=config.kdf_iterations,
            fail_open=config.fail_open,
        )

    @property
    def is_ready(self) -> bool:
        """Whether the key has been derived already."""
        return self._key is not None

    @property
    def fail_open(self) -> bool:
        return self._fail_open

    def _get_key(self) -> bytes:
        key = self._key
        if key is None:
            try:
                key = self._key_deriver(self._passphrase, self._salt, self._iterations)
            except MedibotCryptoError:
                raise
            except Exception as exc:
                raise MedibotCryptoError(f"Key derivation failed: {exc}") from exc
            self._key = key
        return key

    async def async_prepare(self) -> None:
        """Derive the key in the default executor so the loop stays responsive.

        Failures are logged; the next ``encrypt``/``decrypt`` retries the
        derivation and applies its own failure policy.
        """
        if self._key is not None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._get_key)
        except MedibotCryptoError:
            _logger.error("Envelope key derivation failed", exc_info=True)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt one text field.

        Empty input returns ``""``.  If the cipher is broken and the
        cipher is fail-open, the plaintext is returned unchanged (the
        field is then stored unprotected).

        Raises
        ------
        MedibotCryptoError
            Only when constructed with ``fail_open=False``.
        """
        if not plaintext:
            return ""
        try:
            return seal_envelope(plaintext, self._get_key())
        except MedibotCryptoError:
            if not self._fail_open:
                raise
            _logger.error("Envelope encryption failed, returning plaintext", exc_info=True)
            return plaintext

    def decrypt(self, envelope: str) -> str:
        """Decrypt one text field.  Never raises.

        Empty input, input shorter than :data:`MIN_ENVELOPE_LENGTH`, and
        anything that fails to open (legacy plaintext, corruption) is
        returned unchanged.
        """
        if not envelope or len(envelope) < MIN_ENVELOPE_LENGTH:
            return envelope
        try:
            return open_envelope(envelope, self._get_key())
        except MedibotCryptoError:
            _logger.debug("Envelope did not open, treating as plaintext", exc_info=True)
            return envelope

    def decrypt_strict(self, envelope: str) -> str:
        """Decrypt one text field, raising instead of passing input through.

        Raises
        ------
        MedibotCryptoError
            If *envelope* is not a readable envelope for this key.
        """
        return open_envelope(envelope, self._get_key())
