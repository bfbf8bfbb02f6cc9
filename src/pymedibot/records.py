"""Field-level protection of medical records.

Only the free-text fields are sealed: ``title``, ``description`` and
``file_url`` (the uploaded document, as a data URI).  Ids, timestamps
and flags stay readable so the store can filter and sort on them.
"""

from __future__ import annotations

from pymedibot._crypto import FieldCipher
from pymedibot.models.record import MedicalRecord

SEALED_FIELDS: tuple[str, ...] = ("title", "description", "file_url")


def encrypt_record(cipher: FieldCipher, record: MedicalRecord) -> MedicalRecord:
    """Return a copy of *record* with its free-text fields encrypted."""
    return record.model_copy(
        update={
            "title": cipher.encrypt(record.title),
            "description": cipher.encrypt(record.description),
            "file_url": cipher.encrypt(record.file_url) if record.file_url is not None else None,
            # The original row holds plaintext.
            "raw": {},
        }
    )


def decrypt_record(cipher: FieldCipher, record: MedicalRecord) -> MedicalRecord:
    """Return a copy of *record* with its free-text fields decrypted.

    Fields written before encryption was introduced come back unchanged.
    """
    return record.model_copy(
        update={
            "title": cipher.decrypt(record.title),
            "description": cipher.decrypt(record.description),
            "file_url": cipher.decrypt(record.file_url) if record.file_url is not None else None,
        }
    )


def record_to_row(record: MedicalRecord) -> dict[str, object]:
    """Serialize *record* into store column names."""
    row = record.model_dump(mode="json", exclude={"raw"})
    return {key: value for key, value in row.items() if value is not None}
