"""Signed recovery links.

A token carries only the cart's session key and an expiry, signed with the
service secret:

    base64url(json payload) "." base64url(hmac-sha256(payload))
"""

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import orjson
import structlog

from cart_recovery.clock import Clock
from cart_recovery.domain.cart import Cart
from cart_recovery.exceptions import (
    CartNotFoundError,
    RecoveryTokenExpiredError,
    RecoveryTokenInvalidError,
)
from cart_recovery.repositories.carts import CartRepository

logger = structlog.get_logger()


@dataclass(frozen=True)
class RecoveryClaims:
    session_key: str
    expires_at: datetime


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class RecoveryTokenService:
    """Issues and verifies recovery tokens."""

    def __init__(self, secret: str, ttl: timedelta, clock: Clock, frontend_url: str = ""):
        self._secret = secret.encode("utf-8")
        self.ttl = ttl
        self.clock = clock
        self.frontend_url = frontend_url.rstrip("/")

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._secret, payload, hashlib.sha256).digest()

    def issue(self, session_key: str) -> str:
        expires_at = self.clock.now() + self.ttl
        payload = orjson.dumps({"sk": session_key, "exp": int(expires_at.timestamp())})
        return f"{_b64encode(payload)}.{_b64encode(self._sign(payload))}"

    def decode(self, token: str) -> RecoveryClaims:
        """Verify signature and expiry; raise a distinct error for each failure."""
        try:
            encoded_payload, encoded_signature = token.split(".")
            payload = _b64decode(encoded_payload)
            signature = _b64decode(encoded_signature)
        except (ValueError, binascii.Error) as e:
            raise RecoveryTokenInvalidError("Malformed recovery token") from e

        if not hmac.compare_digest(signature, self._sign(payload)):
            raise RecoveryTokenInvalidError("Recovery token signature mismatch")

        try:
            data = orjson.loads(payload)
            session_key = data["sk"]
            expires_at = datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc)
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise RecoveryTokenInvalidError("Recovery token payload is invalid") from e

        if not isinstance(session_key, str) or not session_key:
            raise RecoveryTokenInvalidError("Recovery token payload is invalid")
        if expires_at <= self.clock.now():
            raise RecoveryTokenExpiredError("Recovery link has expired")

        return RecoveryClaims(session_key=session_key, expires_at=expires_at)

    def build_recovery_url(self, token: str, reminder_type: str) -> str:
        query = urlencode(
            {
                "token": token,
                "utm_source": "email",
                "utm_medium": "abandoned_cart",
                "utm_campaign": reminder_type,
            }
        )
        return f"{self.frontend_url}/cart/recover?{query}"


class RecoveryService:
    """Resolves inbound recovery tokens back to carts."""

    def __init__(self, tokens: RecoveryTokenService, carts: CartRepository):
        self.tokens = tokens
        self.carts = carts

    async def resolve(self, token: str) -> Cart:
        # Expiry is checked before any lookup so an expired link is rejected
        # whether or not the cart still exists.
        claims = self.tokens.decode(token)
        cart = await self.carts.get_by_session_key(claims.session_key)
        if cart is None:
            raise CartNotFoundError("Cart referenced by recovery link no longer exists")
        logger.info("Recovery link resolved", cart_id=cart.id, converted=cart.converted)
        return cart
