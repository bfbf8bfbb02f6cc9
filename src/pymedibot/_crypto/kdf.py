"""PBKDF2 key derivation for the envelope cipher."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from pymedibot._constants import KEY_LENGTH_BYTES, MIN_KDF_ITERATIONS
from pymedibot.exceptions import MedibotCryptoError


def derive_key(passphrase: str, salt: str, iterations: int = MIN_KDF_ITERATIONS) -> bytes:
    """Derive a 256-bit AES key with PBKDF2-HMAC-SHA256.

    Parameters
    ----------
    passphrase : str
        UTF-8 passphrase.
    salt : str
        UTF-8 salt.
    iterations : int
        Iteration count.

    Returns
    -------
    bytes
        32-byte key.

    Raises
    ------
    MedibotCryptoError
        If the KDF backend is unavailable or rejects the inputs.
    """
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH_BYTES,
            salt=salt.encode("utf-8"),
            iterations=iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))
    except Exception as exc:
        raise MedibotCryptoError(f"Key derivation failed: {exc}") from exc
