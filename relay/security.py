"""Encryption of channel credentials at rest."""

import json

from cryptography.fernet import Fernet, InvalidToken

from relay.config import get_settings


class CredentialsDecryptError(Exception):
    pass


def _get_fernet(key: str | None = None) -> Fernet:
    key = key or get_settings().channel_encryption_key
    if not key:
        raise RuntimeError("CHANNEL_ENCRYPTION_KEY is not configured")
    return Fernet(key.encode("utf-8") if isinstance(key, str) else key)


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")


def encrypt_credentials(credentials: dict[str, str], key: str | None = None) -> str:
    """Serialize a credentials map to JSON and encrypt it into an ASCII token."""
    plaintext = json.dumps(credentials, ensure_ascii=False, sort_keys=True).encode("utf-8")
    return _get_fernet(key).encrypt(plaintext).decode("ascii")


def decrypt_credentials(blob: str, key: str | None = None) -> dict[str, str]:
    try:
        plaintext = _get_fernet(key).decrypt(blob.encode("ascii"))
    except InvalidToken as exc:
        raise CredentialsDecryptError("Credentials blob could not be decrypted") from exc
    return json.loads(plaintext.decode("utf-8"))
