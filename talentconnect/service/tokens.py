from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Optional

from talentconnect.logging import get_logger

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """A token failed verification; the reason is logged, never returned."""

    def __init__(self, message: str = "invalid or expired token"):
        super().__init__(message)
        self.message = message


class TokenIssuer:
    """Signs and verifies HS256 JWTs; knows nothing about revocation."""

    def __init__(
        self,
        secret: str,
        *,
        access_ttl_seconds: int = 86400,
        refresh_ttl_seconds: int = 2592000,
        leeway_seconds: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("token secret must not be empty")
        self._secret = secret.encode()
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode(self, payload: Dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _issue(self, claims: Dict[str, Any], token_type: str, ttl_seconds: int) -> str:
        now = int(self._clock())
        payload = {
            "sub": claims["sub"],
            "email": claims["email"],
            "userType": claims["userType"],
            "typ": token_type,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        if claims.get("jti"):
            payload["jti"] = claims["jti"]
        return self._encode(payload)

    def issue_access_token(self, claims: Dict[str, Any]) -> str:
        return self._issue(claims, ACCESS, self.access_ttl_seconds)

    def issue_refresh_token(self, claims: Dict[str, Any]) -> str:
        return self._issue(claims, REFRESH, self.refresh_ttl_seconds)

    def verify(self, token: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
        """Return the claims of a well-signed, unexpired token.

        Raises:
            TokenError: on any failure (malformed, wrong algorithm, bad
                signature, expired, or wrong ``typ``).
        """
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise TokenError() from None

        # Only HS256 is accepted to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            raise TokenError() from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise TokenError()

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise TokenError()

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise TokenError() from None
        if not isinstance(payload, dict):
            raise TokenError()

        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise TokenError() from None
        if exp_ts <= self._clock() - self.leeway_seconds:
            raise TokenError()
        if expected_type is not None and payload.get("typ") != expected_type:
            raise TokenError()
        if not payload.get("sub"):
            raise TokenError()
        return payload

    def remaining_seconds(self, claims: Dict[str, Any]) -> int:
        return max(int(float(claims["exp"]) - self._clock()), 0)
