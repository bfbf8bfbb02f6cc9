from __future__ import annotations

import asyncio
import base64
import secrets

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from pymedibot._constants import DEFAULT_KDF_SALT, IV_LENGTH_BYTES
from pymedibot._crypto.envelope import MIN_ENVELOPE_LENGTH, EnvelopeCipher, open_envelope, seal_envelope
from pymedibot._crypto.kdf import derive_key
from pymedibot.config import MedibotConfig
from pymedibot.exceptions import MedibotCryptoError

PASSPHRASE = "unit-test-vault-passphrase"
_FIXED_KEY = bytes(range(32))


@pytest.fixture(scope="module")
def cipher() -> EnvelopeCipher:
    return EnvelopeCipher(PASSPHRASE)


def _fixed_key_cipher(**kwargs: object) -> EnvelopeCipher:
    return EnvelopeCipher(PASSPHRASE, key_deriver=lambda _p, _s, _i: _FIXED_KEY, **kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "plaintext",
    [
        "x",
        "Blood test results",
        "Описание: давление 120/80",
        "病历 📄 emoji",
        "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4 fake" * 50).decode(),
        " leading and trailing ",
    ],
)
def test_round_trip(cipher: EnvelopeCipher, plaintext: str) -> None:
    assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext


def test_empty_string_bypasses_cipher() -> None:
    calls: list[int] = []

    def deriver(_p: str, _s: str, _i: int) -> bytes:
        calls.append(1)
        return _FIXED_KEY

    cipher = EnvelopeCipher(PASSPHRASE, key_deriver=deriver)
    assert cipher.encrypt("") == ""
    assert cipher.decrypt("") == ""
    assert calls == []


def test_fresh_iv_per_call(cipher: EnvelopeCipher) -> None:
    first = cipher.encrypt("same text")
    second = cipher.encrypt("same text")
    assert first != second
    assert base64.b64decode(first)[:IV_LENGTH_BYTES] != base64.b64decode(second)[:IV_LENGTH_BYTES]
    assert cipher.decrypt(first) == cipher.decrypt(second) == "same text"


def test_envelope_layout(cipher: EnvelopeCipher) -> None:
    envelope = cipher.encrypt("abc")
    raw = base64.b64decode(envelope, validate=True)
    # IV + 3 bytes of ciphertext + 16 byte tag
    assert len(raw) == IV_LENGTH_BYTES + 3 + 16


def test_decrypts_envelopes_written_by_other_clients() -> None:
    # Envelope built directly from the wire format: PBKDF2-SHA256 key, IV || ct+tag, base64.
    key = derive_key(PASSPHRASE, DEFAULT_KDF_SALT, 100_000)
    iv = secrets.token_bytes(12)
    envelope = base64.b64encode(iv + AESGCM(key).encrypt(iv, "legacy note".encode(), None)).decode()

    assert EnvelopeCipher(PASSPHRASE).decrypt(envelope) == "legacy note"


@pytest.mark.parametrize("text", ["a", "short", "x" * (MIN_ENVELOPE_LENGTH - 1)])
def test_short_input_returned_unchanged(text: str) -> None:
    cipher = _fixed_key_cipher()
    assert len(text) < MIN_ENVELOPE_LENGTH
    assert cipher.decrypt(text) == text


@pytest.mark.parametrize(
    "text",
    [
        "Patient reports mild headache since Monday",
        "not base64 at all!!!!!!!!!!!!!!!!!!!",
        base64.b64encode(b"0123456789").decode() + "AAAAAAAA",
        base64.b64encode(secrets.token_bytes(64)).decode(),
        "====================================",
    ],
)
def test_legacy_or_garbage_input_passes_through(text: str) -> None:
    cipher = _fixed_key_cipher()
    assert cipher.decrypt(text) == text


def test_decrypt_never_raises_on_random_input() -> None:
    cipher = _fixed_key_cipher()
    for size in range(0, 80, 7):
        blob = secrets.token_bytes(size)
        for text in (blob.decode("latin-1"), base64.b64encode(blob).decode()):
            assert cipher.decrypt(text) == text


def test_truncated_envelope_passes_through() -> None:
    cipher = _fixed_key_cipher()
    envelope = cipher.encrypt("a perfectly valid description")
    for cut in (MIN_ENVELOPE_LENGTH, len(envelope) // 2, len(envelope) - 4):
        truncated = envelope[:cut]
        assert cipher.decrypt(truncated) == truncated


def test_tampered_tag_passes_through() -> None:
    cipher = _fixed_key_cipher()
    raw = bytearray(base64.b64decode(cipher.encrypt("tamper me")))
    raw[-1] ^= 0x01
    tampered = base64.b64encode(bytes(raw)).decode()
    assert cipher.decrypt(tampered) == tampered


def test_wrong_key_passes_through() -> None:
    envelope = _fixed_key_cipher().encrypt("confidential")
    other = EnvelopeCipher(PASSPHRASE, key_deriver=lambda _p, _s, _i: b"\x01" * 32)
    assert other.decrypt(envelope) == envelope


def test_key_derived_once() -> None:
    calls: list[tuple[str, str, int]] = []

    def deriver(passphrase: str, salt: str, iterations: int) -> bytes:
        calls.append((passphrase, salt, iterations))
        return _FIXED_KEY

    cipher = EnvelopeCipher(PASSPHRASE, salt="s", iterations=123_456, key_deriver=deriver)
    for _ in range(5):
        cipher.decrypt(cipher.encrypt("repeat"))
    assert calls == [(PASSPHRASE, "s", 123_456)]
    assert cipher.is_ready


def test_encrypt_fails_open_when_crypto_is_broken(caplog: pytest.LogCaptureFixture) -> None:
    def broken(_p: str, _s: str, _i: int) -> bytes:
        raise RuntimeError("no crypto backend")

    cipher = EnvelopeCipher(PASSPHRASE, key_deriver=broken)
    with caplog.at_level("ERROR", logger="pymedibot._crypto.envelope"):
        assert cipher.encrypt("visible on failure") == "visible on failure"
    assert any("returning plaintext" in record.getMessage() for record in caplog.records)
    assert cipher.decrypt("some long legacy plaintext value") == "some long legacy plaintext value"


def test_encrypt_fail_closed_raises() -> None:
    cipher = EnvelopeCipher(PASSPHRASE, key_deriver=lambda _p, _s, _i: b"bad-key", fail_open=False)
    with pytest.raises(MedibotCryptoError, match="AES-GCM encryption failed"):
        cipher.encrypt("must not be stored in clear")
    # decrypt stays total regardless of the encrypt policy
    assert cipher.decrypt("must not be stored in clear") == "must not be stored in clear"


def test_seal_and_open_are_strict() -> None:
    envelope = seal_envelope("strict", _FIXED_KEY)
    assert open_envelope(envelope, _FIXED_KEY) == "strict"
    with pytest.raises(MedibotCryptoError, match="not base64"):
        open_envelope("%%%%", _FIXED_KEY)
    with pytest.raises(MedibotCryptoError, match="at least 12 bytes"):
        open_envelope(base64.b64encode(b"tiny").decode(), _FIXED_KEY)
    with pytest.raises(MedibotCryptoError, match="decryption failed"):
        open_envelope(envelope, b"\x02" * 32)


def test_from_config_uses_injected_passphrase() -> None:
    config = MedibotConfig(master_passphrase=PASSPHRASE, fail_open=False)
    cipher = EnvelopeCipher.from_config(config)
    assert not cipher.fail_open
    envelope = cipher.encrypt("configured")
    assert EnvelopeCipher(PASSPHRASE).decrypt(envelope) == "configured"
    assert EnvelopeCipher("another passphrase").decrypt(envelope) == envelope


@pytest.mark.asyncio
async def test_async_prepare_derives_off_loop_and_tolerates_failure() -> None:
    cipher = _fixed_key_cipher()
    await cipher.async_prepare()
    assert cipher.is_ready

    def broken(_p: str, _s: str, _i: int) -> bytes:
        raise MedibotCryptoError("boom")

    failing = EnvelopeCipher(PASSPHRASE, key_deriver=broken)
    await failing.async_prepare()
    assert not failing.is_ready
    assert failing.encrypt("still available") == "still available"


@pytest.mark.asyncio
async def test_concurrent_first_use_is_consistent() -> None:
    cipher = EnvelopeCipher(PASSPHRASE)
    await asyncio.gather(*(cipher.async_prepare() for _ in range(3)))
    envelope = cipher.encrypt("race")
    assert cipher.decrypt(envelope) == "race"


def test_decrypt_strict_raises_on_unreadable_input() -> None:
    cipher = _fixed_key_cipher()
    assert cipher.decrypt_strict(cipher.encrypt("strict mode")) == "strict mode"
    with pytest.raises(MedibotCryptoError):
        cipher.decrypt_strict("plain legacy description")
