#!/usr/bin/env python3
"""Encrypt or decrypt record fields with the configured passphrase.

Examples::

    MEDIBOT_MASTER_PASSPHRASE=... python scripts/envelope_tool.py encrypt "Blood test results"
    MEDIBOT_MASTER_PASSPHRASE=... python scripts/envelope_tool.py decrypt <envelope> --strict
    cat records.jsonl | python scripts/envelope_tool.py decrypt-records
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydantic import ValidationError  # noqa: E402

from pymedibot import EnvelopeCipher, MedibotConfig, MedibotError, MedicalRecord  # noqa: E402
from pymedibot.records import decrypt_record, encrypt_record, record_to_row  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Field envelope helper (AES-256-GCM, PBKDF2-SHA256 key).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    sub = parser.add_subparsers(dest="command", required=True)

    enc = sub.add_parser("encrypt", help="Encrypt one value.")
    enc.add_argument("text", help="Plaintext to encrypt")

    dec = sub.add_parser("decrypt", help="Decrypt one value (unreadable input is echoed back).")
    dec.add_argument("envelope", help="Envelope to decrypt")
    dec.add_argument("--strict", action="store_true", help="Fail instead of echoing unreadable input.")

    for name, help_text in (
        ("encrypt-records", "Encrypt medical record rows read as JSON lines from stdin."),
        ("decrypt-records", "Decrypt medical record rows read as JSON lines from stdin."),
    ):
        sub.add_parser(name, help=help_text)
    return parser.parse_args()


def _records(cipher: EnvelopeCipher, *, seal: bool) -> int:
    failures = 0
    for lineno, line in enumerate(sys.stdin, start=1):
        if not line.strip():
            continue
        try:
            record = MedicalRecord.model_validate(json.loads(line))
        except (json.JSONDecodeError, ValidationError) as exc:
            print(f"[envelope] line {lineno}: {exc}", file=sys.stderr)
            failures += 1
            continue
        converted = encrypt_record(cipher, record) if seal else decrypt_record(cipher, record)
        print(json.dumps(record_to_row(converted), ensure_ascii=False))
    return 1 if failures else 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = MedibotConfig.from_env(fail_open=False)
        cipher = EnvelopeCipher.from_config(config)
        if args.command == "encrypt":
            print(cipher.encrypt(args.text))
        elif args.command == "decrypt":
            decrypt = cipher.decrypt_strict if args.strict else cipher.decrypt
            print(decrypt(args.envelope))
        else:
            return _records(cipher, seal=args.command == "encrypt-records")
    except MedibotError as exc:
        print(f"[envelope] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
