"""AES-256-GCM encryption for mailbox credentials.

Token format: base64(nonce[12] || ciphertext || tag[16]), version 1.
"""
import base64
import binascii
import hashlib
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import settings

CIPHER_VERSION = 1
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

# Legacy column value written for mailboxes whose password was never stored
PASSWORD_PLACEHOLDER = "encrypted_placeholder"


def is_usable_password(value: Optional[str]) -> bool:
    return bool(value) and value != PASSWORD_PLACEHOLDER


class EncryptionKeyMissing(RuntimeError):
    """No usable key material is configured."""


class CredentialDecryptError(ValueError):
    """Token is malformed, tampered with, or was sealed with another key."""


def _normalize_key(key_string: str) -> bytes:
    # Right-pad with "0" and cut to 32 characters, then UTF-8 encode.
    key = key_string.ljust(KEY_SIZE, "0")[:KEY_SIZE].encode("utf-8")
    if len(key) != KEY_SIZE:
        raise ValueError("Encryption key must encode to 32 bytes")
    return key


def resolve_key_string(
    encryption_key: Optional[str] = None,
    service_role_key: Optional[str] = None,
    allow_fallback: Optional[bool] = None,
) -> str:
    """
    ENCRYPTION_KEY when set. Otherwise the SHA-256 hex digest of the service
    role key, but only when ALLOW_FALLBACK_ENCRYPTION_KEY is enabled.
    """
    key = settings.encryption_key if encryption_key is None else encryption_key
    if key:
        return key
    allow = settings.allow_fallback_encryption_key if allow_fallback is None else allow_fallback
    fallback_secret = settings.service_role_key if service_role_key is None else service_role_key
    if allow and fallback_secret:
        return hashlib.sha256(fallback_secret.encode("utf-8")).hexdigest()
    raise EncryptionKeyMissing("ENCRYPTION_KEY is not configured")


class CredentialCipher:
    def __init__(self, key_string: str):
        self._aesgcm = AESGCM(_normalize_key(key_string))

    @classmethod
    def from_settings(cls) -> "CredentialCipher":
        return cls(resolve_key_string())

    def encrypt(self, plaintext: str) -> str:
        if plaintext is None:
            raise ValueError("plaintext is required")
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM appends the 16-byte tag to the ciphertext.
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, token: str) -> str:
        if token is None:
            raise ValueError("token is required")
        try:
            blob = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise CredentialDecryptError("Invalid token encoding") from exc
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise CredentialDecryptError("Invalid token payload")
        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise CredentialDecryptError("Authentication failed") from exc
        return plaintext.decode("utf-8")
