from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
import uuid
from typing import Any

from taskkeep.logging import get_logger

logger = get_logger(__name__)


class InvalidSignature(Exception):
    """Token could not be decoded or was not signed with our secret."""


class TokenCodec:
    """Compact HS256 tokens that carry a user id.

    The codec is stateless: a token that verifies here may still have been
    revoked, which only the user's stored token list can tell.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("token secret must be non-empty")
        self._secret = secret.encode()

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _signature(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def sign(self, user_id: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        payload: dict[str, Any] = {
            "sub": user_id,
            "iat": int(time.time()),
            "jti": str(uuid.uuid4()),
        }
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._signature(signing_input)}"

    def verify(self, token: str) -> str:
        """Return the user id a token was signed for.

        Raises ``InvalidSignature`` for malformed tokens, foreign algorithms,
        bad signatures and payloads without a string ``sub``.
        """

        if not isinstance(token, str):
            raise InvalidSignature("token must be a string")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidSignature("malformed token") from None

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (binascii.Error, ValueError) as exc:
            logger.warning("jwt_header_decode_failed")
            raise InvalidSignature("malformed header") from exc
        # Reject alg confusion before touching the signature
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise InvalidSignature("unsupported algorithm")

        expected_sig = self._signature(f"{header_b64}.{payload_b64}")
        # Headers arrive latin-1 decoded; base64url signatures are ASCII only
        if not sig_b64.isascii():
            raise InvalidSignature("malformed signature")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidSignature("signature mismatch")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (binascii.Error, ValueError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise InvalidSignature("malformed payload") from exc
        subject = payload.get("sub") if isinstance(payload, dict) else None
        if not isinstance(subject, str) or not subject:
            raise InvalidSignature("missing subject")
        return subject


__all__ = ["InvalidSignature", "TokenCodec"]
