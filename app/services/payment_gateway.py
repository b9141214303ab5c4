"""HDFC (CCAvenue) gateway request signing.

The gateway exchanges `k=v&...` strings encrypted with AES-128-CBC: the key is the
MD5 digest of the merchant working key and the IV is the fixed byte sequence 0..15.
"""

from __future__ import annotations

import hashlib
from urllib.parse import parse_qsl, urlencode

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

_IV = bytes(range(16))


class PaymentGatewayError(RuntimeError):
    """Raised when the gateway is misconfigured or returns an unreadable payload."""


def _cipher(working_key: str) -> Cipher:
    if not working_key:
        raise PaymentGatewayError("Payment gateway is not configured")
    key = hashlib.md5(working_key.encode("utf-8")).digest()
    return Cipher(algorithms.AES(key), modes.CBC(_IV))


def encrypt_request(plain_text: str, working_key: str) -> str:
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plain_text.encode("utf-8")) + padder.finalize()
    encryptor = _cipher(working_key).encryptor()
    return (encryptor.update(padded) + encryptor.finalize()).hex()


def decrypt_response(cipher_text: str, working_key: str) -> str:
    try:
        raw = bytes.fromhex(cipher_text.strip())
        decryptor = _cipher(working_key).decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
    except PaymentGatewayError:
        raise
    except ValueError as exc:
        raise PaymentGatewayError("Unable to decrypt gateway response") from exc


def build_merchant_params(params: dict[str, object]) -> str:
    return urlencode({key: "" if value is None else str(value) for key, value in params.items()})


def parse_gateway_response(plain_text: str) -> dict[str, str]:
    return dict(parse_qsl(plain_text, keep_blank_values=True))
