from __future__ import annotations

from typing import Callable, Optional

from cryptography.fernet import InvalidToken
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.fernet_crypto import get_fernet


def compact(value: str) -> str:
    """Drop separators users type into identifiers ("1234 5678 9012")."""
    return "".join(value.split()).replace("-", "")


def compact_upper(value: str) -> str:
    return compact(value).upper()


class EncryptedString(TypeDecorator):
    """KYC identifier stored as a Fernet token.

    ``normalize`` runs before encryption so the ciphertext always holds the
    canonical form (digits only for Aadhar, upper case for PAN).
    """

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *, normalize: Optional[Callable[[str], str]] = None, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._normalize = normalize
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        plain = str(value)
        if self._normalize is not None:
            plain = self._normalize(plain)
        return get_fernet(secret=self._secret).encrypt(plain.encode("utf-8"))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_fernet(secret=self._secret).decrypt(bytes(value)).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored KYC identifier cannot be decrypted with the configured key") from exc
