"""Signed, time-bound identity tokens.

Tokens are HS256 JWTs carrying ``user_id`` and ``exp``. Validation is pure
computation over the token and the shared secret; nothing is stored
server-side.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol, Union

import jwt

from ..core.exceptions import (
    InvalidDurationError,
    InvalidSignatureError,
    TokenExpiredError,
    WeakSecretError,
)

logger = logging.getLogger(__name__)

SECRET_KEY_SIZE = 32
ALGORITHM = "HS256"

Duration = Union[timedelta, int, float]


class Claims:
    __slots__ = ("user_id", "expires_at")

    def __init__(self, user_id: int, expires_at: datetime):
        self.user_id = user_id
        self.expires_at = expires_at

    def __repr__(self):
        return f"Claims(user_id={self.user_id!r}, expires_at={self.expires_at.isoformat()!r})"


class Authenticator(Protocol):
    def create_token(self, user_id: int, ttl: Duration) -> str: ...

    def validate_token(self, token: str) -> Claims: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_timedelta(ttl: Duration) -> timedelta:
    if isinstance(ttl, timedelta):
        return ttl
    return timedelta(seconds=float(ttl))


class JWTAuthenticator:
    """
    Issue and check tokens under one process-wide secret.

    The secret is read-only after construction, so a single instance is shared
    by every serving thread without locking.
    """

    def __init__(self, secret_key: Union[str, bytes], clock: Optional[Callable[[], datetime]] = None):
        if isinstance(secret_key, str):
            secret_key = secret_key.encode("utf-8")
        if len(secret_key) < SECRET_KEY_SIZE:
            raise WeakSecretError(f"secret key must be at least {SECRET_KEY_SIZE} bytes")
        self._secret = secret_key
        self._clock = clock or _utcnow

    def create_token(self, user_id: int, ttl: Duration) -> str:
        duration = _as_timedelta(ttl)
        if duration <= timedelta(0):
            raise InvalidDurationError("claims: duration is less or equal zero")

        payload = {"user_id": user_id, "exp": self._clock() + duration}
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def validate_token(self, token: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("token rejected: %s", type(e).__name__)
            raise InvalidSignatureError("token: is invalid") from e

        user_id = payload.get("user_id")
        exp = payload.get("exp")
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(exp, (int, float)):
            raise InvalidSignatureError("token: claims are malformed")

        expires_at = datetime.fromtimestamp(exp, timezone.utc)
        if expires_at <= self._clock():
            raise TokenExpiredError("token: has expired")
        return Claims(user_id=user_id, expires_at=expires_at)
