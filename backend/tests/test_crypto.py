"""
Tests for credential encryption.
"""

import re

import pytest

from api.crypto import (
    DecryptionError,
    EncryptionKeyMissingError,
    InvalidEncryptedFormatError,
    decrypt,
    decrypt_credentials,
    encrypt,
    encrypt_credentials,
)

HEX_PART = re.compile(r'^[0-9a-f]*$')


class TestRoundTrip:

    def test_round_trip(self):
        assert decrypt(encrypt("driver@example.com")) == "driver@example.com"

    def test_round_trip_unicode_and_empty(self):
        assert decrypt(encrypt("José ✓")) == "José ✓"
        assert decrypt(encrypt("")) == ""

    def test_explicit_key_overrides_settings(self):
        blob = encrypt("secret", key="other-key")
        assert decrypt(blob, key="other-key") == "secret"
        with pytest.raises(DecryptionError):
            decrypt(blob)

    def test_credentials_pair(self):
        enc_email, enc_cookie = encrypt_credentials("a@b.com", "cookie")
        assert decrypt_credentials(enc_email, enc_cookie) == ("a@b.com", "cookie")


class TestFormat:

    def test_four_lowercase_hex_parts(self):
        parts = encrypt("value").split(":")

        assert len(parts) == 4
        assert all(HEX_PART.match(p) for p in parts)
        salt, iv, tag, _ = parts
        assert len(salt) == 128  # 64 bytes
        assert len(iv) == 32     # 16 bytes
        assert len(tag) == 32    # 16 bytes

    def test_non_deterministic(self):
        first = encrypt("same").split(":")
        second = encrypt("same").split(":")

        assert first[0] != second[0]
        assert first[1] != second[1]
        assert first[3] != second[3]


class TestFailures:

    def test_tampered_ciphertext(self):
        salt, iv, tag, ciphertext = encrypt("driver@example.com").split(":")
        flipped = format(int(ciphertext[:2], 16) ^ 0x01, "02x") + ciphertext[2:]

        with pytest.raises(DecryptionError, match="Failed to decrypt credentials"):
            decrypt(":".join([salt, iv, tag, flipped]))

    def test_tampered_tag(self):
        salt, iv, tag, ciphertext = encrypt("x").split(":")
        bad_tag = ("0" if tag[0] != "0" else "1") + tag[1:]

        with pytest.raises(DecryptionError):
            decrypt(":".join([salt, iv, bad_tag, ciphertext]))

    def test_wrong_key(self):
        blob = encrypt("x", key="key-one")
        with pytest.raises(DecryptionError):
            decrypt(blob, key="key-two")

    @pytest.mark.parametrize("blob", [
        "abc:def",
        "a:b:c:d:e",
        "",
        "zz:zz:zz:zz",
    ])
    def test_invalid_format(self, blob):
        with pytest.raises(InvalidEncryptedFormatError):
            decrypt(blob)

    def test_invalid_format_is_a_decryption_error(self):
        assert issubclass(InvalidEncryptedFormatError, DecryptionError)

    def test_missing_key_fails_at_use(self, monkeypatch):
        from api.config import settings

        blob = encrypt("x")
        monkeypatch.setattr(settings, "encryption_key", None)

        with pytest.raises(EncryptionKeyMissingError):
            encrypt("x")
        with pytest.raises(EncryptionKeyMissingError):
            decrypt(blob)

    def test_key_read_at_call_time(self, monkeypatch):
        from api.config import settings

        monkeypatch.setattr(settings, "encryption_key", "rotated")
        blob = encrypt("x")
        assert decrypt(blob, key="rotated") == "x"
