"""Tests for field-level encryption."""

from __future__ import annotations

import base64

import pytest

from src.intake.core.crypto import CryptoError, decrypt_field, encrypt_field

KEY = base64.b64encode(b"0" * 32).decode("ascii")
OTHER_KEY = base64.b64encode(b"1" * 32).decode("ascii")


class TestFieldEncryption:

    def test_payload_format_and_decrypt(self):
        payload = encrypt_field("110101199001011234", data_key=KEY)

        assert payload.startswith("v1:")
        assert len(payload.split(":")) == 4
        assert decrypt_field(payload, data_key=KEY) == "110101199001011234"

    def test_fresh_iv_per_call(self):
        assert encrypt_field("same", data_key=KEY) != encrypt_field("same", data_key=KEY)

    def test_wrong_key_rejected(self):
        payload = encrypt_field("secret", data_key=KEY)
        with pytest.raises(CryptoError):
            decrypt_field(payload, data_key=OTHER_KEY)

    @pytest.mark.parametrize("payload", ["", "v1:a:b", "v2:AAAA:AAAA:AAAA", "v1:!!:??:%%"])
    def test_malformed_payload_rejected(self, payload):
        with pytest.raises(CryptoError):
            decrypt_field(payload, data_key=KEY)

    def test_short_key_rejected(self):
        with pytest.raises(CryptoError, match="32-byte"):
            encrypt_field("x", data_key=base64.b64encode(b"short").decode("ascii"))
