"""Fernet field encryption for alert data at rest.

Alert messages and related-data payloads can name medications, devices
and vital values, so they are sealed before writing to SQLite. Flags,
types, severities and timestamps stay in the clear for indexed queries.

Old keys may be passed as ``previous_keys`` so rows written before a key
change still open; :meth:`FieldEncryptor.rotate` re-seals them under the
current key.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


class EncryptionError(Exception):
    """Raised for a bad key, an unserializable value or an unreadable token."""


def _fernet(key: str) -> Fernet:
    if not key or not key.strip():
        raise EncryptionError("Encryption key must not be empty")
    try:
        return Fernet(key.strip().encode())
    except (ValueError, TypeError) as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


class FieldEncryptor:
    """Seals JSON-serializable values into Fernet tokens.

    ``None`` maps to the empty string and back, so optional columns need
    no special casing in the repository.

    Usage::

        enc = FieldEncryptor(key=settings.encryption_key)
        token = enc.encrypt({"metric": "heart_rate"})
        enc.decrypt(token)  # {"metric": "heart_rate"}
    """

    def __init__(self, key: str, *, previous_keys: Iterable[str] = ()) -> None:
        self._keys = MultiFernet([_fernet(key), *(_fernet(k) for k in previous_keys)])

    def encrypt(self, data: Any) -> str:
        if data is None:
            return ""
        try:
            payload = json.dumps(data, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._keys.encrypt(payload.encode()).decode()

    def decrypt(self, token: str) -> Any:
        if not token:
            return None
        try:
            payload = self._keys.decrypt(token.encode())
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        return json.loads(payload)

    def rotate(self, token: str) -> str:
        """Re-seal ``token`` under the current key."""
        if not token:
            return ""
        try:
            return self._keys.rotate(token.encode()).decode()
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()
