"""
Encryption of OAuth refresh tokens at rest.

AES-256-GCM from the `cryptography` package. Stored blobs are
base64(IV || AuthTag || Ciphertext) with a 16-byte random IV and a 16-byte tag
placed before the ciphertext. Blobs using a 12-byte IV with a trailing tag
do not decrypt here.

The key is the configured ENCRYPTION_KEY truncated or right-padded with "0"
to 32 bytes. There is no KDF and no per-installation salt.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import get_settings
from app.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


def derive_key(secret: str) -> bytes:
    """Fit the configured secret to the AES-256 key length."""
    return secret.encode("utf-8")[:KEY_LENGTH].ljust(KEY_LENGTH, b"0")


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt a string; each call draws a fresh IV."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(key)).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag; the stored layout puts it before the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt(blob: str, key: str) -> str:
    """Decrypt a blob produced by `encrypt`. Raises DecryptionError on any corruption."""
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionError("Failed to decrypt token: malformed payload") from exc

    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise DecryptionError("Failed to decrypt token: payload too short")

    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH:]
    try:
        plaintext = AESGCM(derive_key(key)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise DecryptionError("Failed to decrypt token: authentication failed") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Failed to decrypt token: not valid UTF-8") from exc


def _require_key() -> str:
    key = get_settings().encryption_key
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY is not configured")
    return key


def encrypt_token(plaintext: str) -> str:
    """Encrypt with the configured ENCRYPTION_KEY."""
    return encrypt(plaintext, _require_key())


def decrypt_token(blob: str) -> str:
    """Decrypt with the configured ENCRYPTION_KEY."""
    return decrypt(blob, _require_key())
