"""Unit tests for signed identity tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from vaultkeeper.core.exceptions import (
    InvalidDurationError,
    InvalidSignatureError,
    TokenExpiredError,
    WeakSecretError,
)
from vaultkeeper.security.tokens import ALGORITHM, JWTAuthenticator

SECRET = "0123456789abcdef0123456789abcdef"


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def auth(clock):
    return JWTAuthenticator(SECRET, clock=clock)


def test_weak_secret_rejected():
    with pytest.raises(WeakSecretError):
        JWTAuthenticator("too-short")


def test_secret_of_exactly_32_bytes_accepted():
    JWTAuthenticator(b"k" * 32)


def test_round_trip(auth, clock):
    token = auth.create_token(42, timedelta(hours=1))
    claims = auth.validate_token(token)

    assert claims.user_id == 42
    assert claims.expires_at == clock.now + timedelta(hours=1)


def test_ttl_in_seconds(auth, clock):
    claims = auth.validate_token(auth.create_token(7, 90))
    assert claims.expires_at == clock.now + timedelta(seconds=90)


@pytest.mark.parametrize("ttl", [0, -1, timedelta(0), timedelta(seconds=-5)])
def test_non_positive_ttl(auth, ttl):
    with pytest.raises(InvalidDurationError):
        auth.create_token(1, ttl)


def test_expired_token(auth, clock):
    token = auth.create_token(1, timedelta(minutes=5))
    clock.now += timedelta(minutes=6)
    with pytest.raises(TokenExpiredError):
        auth.validate_token(token)


def test_token_expires_exactly_at_exp(auth, clock):
    token = auth.create_token(1, timedelta(seconds=10))
    clock.now += timedelta(seconds=10)
    with pytest.raises(TokenExpiredError):
        auth.validate_token(token)


def test_valid_just_before_expiry(auth, clock):
    token = auth.create_token(1, timedelta(seconds=10))
    clock.now += timedelta(seconds=9)
    assert auth.validate_token(token).user_id == 1


def test_other_secret_rejected(auth, clock):
    other = JWTAuthenticator("f" * 32, clock=clock)
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(other.create_token(1, 60))


def test_tampered_token_rejected(auth):
    token = auth.create_token(1, 60)
    head, payload, sig = token.split(".")
    forged = jwt.encode({"user_id": 2, "exp": 4102444800}, "x" * 32, algorithm=ALGORITHM).split(".")[1]
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(".".join([head, forged, sig]))


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_token(auth, token):
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(token)


def test_other_algorithm_rejected(auth):
    token = jwt.encode({"user_id": 1, "exp": 4102444800}, SECRET, algorithm="HS512")
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(token)


def test_unsigned_token_rejected(auth):
    token = jwt.encode({"user_id": 1, "exp": 4102444800}, None, algorithm="none")
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(token)


def test_missing_user_id_rejected(auth):
    token = jwt.encode({"exp": 4102444800}, SECRET, algorithm=ALGORITHM)
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(token)


def test_missing_exp_rejected(auth):
    token = jwt.encode({"user_id": 1}, SECRET, algorithm=ALGORITHM)
    with pytest.raises(InvalidSignatureError):
        auth.validate_token(token)
