"""
Symmetric encryption for integration credentials at rest.

ENCRYPTION_KEY may be a real Fernet key (urlsafe base64, 32 bytes) or any
passphrase; passphrases are stretched with PBKDF2-HMAC-SHA256 into a Fernet key.
"""
from __future__ import annotations

import base64
import binascii
import json
from functools import lru_cache
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from postcraft.settings import get_settings

_KDF_SALT = b"postcraft.credentials.v1"
_KDF_ITERATIONS = 390_000


def _derive_key(secret: str) -> bytes:
    try:
        raw = base64.urlsafe_b64decode(secret.encode("utf-8"))
        if len(raw) == 32:
            return secret.encode("utf-8")
    except (binascii.Error, ValueError):
        pass

    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=_KDF_SALT, iterations=_KDF_ITERATIONS)
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


@lru_cache(maxsize=4)
def _fernet_for(secret: str) -> Fernet:
    return Fernet(_derive_key(secret))


def get_fernet() -> Fernet:
    return _fernet_for(get_settings().encryption_key)


def encrypt_text(plain: str) -> str:
    return get_fernet().encrypt(plain.encode("utf-8")).decode("utf-8")


def decrypt_text(token: str) -> str:
    try:
        return get_fernet().decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise ValueError("Credential blob cannot be decrypted with the configured key") from exc


def encrypt_json(data: dict[str, Any]) -> str:
    return encrypt_text(json.dumps(data))


def decrypt_json(token: str) -> dict[str, Any]:
    return json.loads(decrypt_text(token))
