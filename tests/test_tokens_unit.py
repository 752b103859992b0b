"""Unit tests for the token codec.

Tests for:
- Signing produces distinct compact tokens
- Verification returns the signed user id
- Tampered, foreign and malformed tokens are rejected
"""

import base64
import json

import pytest

from taskkeep.service.tokens import InvalidSignature, TokenCodec

SECRET = "codec-test-secret-0123456789-abcdefghij"


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


@pytest.fixture
def codec():
    return TokenCodec(SECRET)


class TestSign:
    def test_token_has_three_segments(self, codec):
        token = codec.sign("user-1")
        assert token.count(".") == 2
        assert "=" not in token

    def test_same_user_gets_distinct_tokens(self, codec):
        """Each issue carries a fresh jti, so tokens never collide."""
        assert codec.sign("user-1") != codec.sign("user-1")

    def test_payload_carries_subject(self, codec):
        token = codec.sign("user-1")
        payload_b64 = token.split(".")[1]
        padding = "=" * ((4 - len(payload_b64) % 4) % 4)
        payload = json.loads(base64.urlsafe_b64decode(payload_b64 + padding))
        assert payload["sub"] == "user-1"
        assert "iat" in payload
        assert "jti" in payload
        assert "exp" not in payload

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("")


class TestVerify:
    def test_round_trip_returns_user_id(self, codec):
        assert codec.verify(codec.sign("user-42")) == "user-42"

    def test_other_secret_rejected(self, codec):
        other = TokenCodec("a-completely-different-secret-value-xyz")
        with pytest.raises(InvalidSignature):
            other.verify(codec.sign("user-1"))

    def test_tampered_payload_rejected(self, codec):
        header, _, signature = codec.sign("user-1").split(".")
        forged = _b64({"sub": "user-2", "iat": 0, "jti": "x"})
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{forged}.{signature}")

    def test_none_algorithm_rejected(self, codec):
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "user-1"})
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{payload}.")

    @pytest.mark.parametrize(
        "token",
        ["", "abc", "a.b", "a.b.c.d", "!!!.???.***", 12345],
    )
    def test_malformed_tokens_rejected(self, codec, token):
        with pytest.raises(InvalidSignature):
            codec.verify(token)

    def test_missing_subject_rejected(self, codec):
        header = _b64({"alg": "HS256", "typ": "JWT"})
        payload = _b64({"iat": 0})
        signature = codec._signature(f"{header}.{payload}")
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{payload}.{signature}")

    def test_non_ascii_signature_rejected(self, codec):
        """Latin-1 decoded header bytes must fail verification, not crash."""
        header, payload, _ = codec.sign("user-1").split(".")
        with pytest.raises(InvalidSignature):
            codec.verify(f"{header}.{payload}.\xe9\xe9")
