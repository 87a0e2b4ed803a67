"""
Tests for refresh-token encryption at rest.
"""

import base64
import os

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.crypto import IV_LENGTH, KEY_LENGTH, TAG_LENGTH, decrypt, decrypt_token, derive_key, encrypt, encrypt_token
from app.exceptions import DecryptionError

KEY = "unit-test-key"


@pytest.mark.parametrize("plaintext", ["1//0gRefreshToken", "", "ünïcødé ✓", "x" * 2048])
def test_round_trip(plaintext):
    assert decrypt(encrypt(plaintext, KEY), KEY) == plaintext


def test_same_plaintext_encrypts_differently():
    assert encrypt("same-token", KEY) != encrypt("same-token", KEY)


def test_blob_layout_is_iv_tag_ciphertext():
    raw = base64.b64decode(encrypt("abcd", KEY))
    assert len(raw) == IV_LENGTH + TAG_LENGTH + len("abcd")


def test_derive_key_pads_with_zero_characters():
    assert derive_key("short") == b"short" + b"0" * (KEY_LENGTH - 5)


def test_derive_key_truncates_long_secrets():
    assert derive_key("k" * 50) == b"k" * KEY_LENGTH


def test_tampered_ciphertext_is_rejected():
    raw = bytearray(base64.b64decode(encrypt("secret", KEY)))
    raw[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt(base64.b64encode(bytes(raw)).decode(), KEY)


def test_tampered_tag_is_rejected():
    raw = bytearray(base64.b64decode(encrypt("secret", KEY)))
    raw[IV_LENGTH] ^= 0xFF
    with pytest.raises(DecryptionError):
        decrypt(base64.b64encode(bytes(raw)).decode(), KEY)


def test_wrong_key_is_rejected():
    with pytest.raises(DecryptionError):
        decrypt(encrypt("secret", KEY), "another-key")


@pytest.mark.parametrize("blob", ["not base64 !!", base64.b64encode(b"too short").decode()])
def test_malformed_blob_is_rejected(blob):
    with pytest.raises(DecryptionError):
        decrypt(blob, KEY)


def test_configured_key_helpers_round_trip():
    assert decrypt_token(encrypt_token("1//refresh")) == "1//refresh"


def test_blob_uses_sixteen_byte_iv_before_tag():
    assert (IV_LENGTH, TAG_LENGTH) == (16, 16)


def test_twelve_byte_iv_trailing_tag_blob_is_rejected():
    iv = os.urandom(12)
    sealed = AESGCM(derive_key(KEY)).encrypt(iv, b"abcd-efgh-ijkl", None)
    with pytest.raises(DecryptionError):
        decrypt(base64.b64encode(iv + sealed).decode(), KEY)
