"""Unit tests for call context, status mapping and interceptors."""

import time
from unittest.mock import MagicMock

import pytest

from vaultkeeper.core.exceptions import (
    InvalidCredentialsError,
    InvalidSignatureError,
    OwnerMismatchError,
    RecordNotFoundError,
    StorageError,
    TokenExpiredError,
    UserExistsError,
    ValidationError,
)
from vaultkeeper.core.validation import FieldViolation
from vaultkeeper.network.context import (
    USER_ID_KEY,
    CallContext,
    ContextKey,
    user_id_from_context,
    with_user_id,
)
from vaultkeeper.network.framing import Message
from vaultkeeper.network.interceptors import (
    GET_STREAMED_VAULTS,
    LOGIN_USER,
    PING,
    PUBLIC_METHODS,
    REGISTER_USER,
    SAVE_VAULT,
    UPLOAD_FILE,
    AuthInterceptor,
    LoggingInterceptor,
    RecoveryInterceptor,
    chain_stream,
    chain_unary,
    require_user_id,
)
from vaultkeeper.network.status import RpcError, StatusCode, to_rpc_error
from vaultkeeper.security.tokens import Claims


# --- Fixtures ---

@pytest.fixture
def authenticator():
    auth = MagicMock()

    def validate(token):
        if token == "good":
            return Claims(user_id=42, expires_at=None)
        if token == "expired":
            raise TokenExpiredError("token: has expired")
        raise InvalidSignatureError("token: is invalid")

    auth.validate_token.side_effect = validate
    return auth


@pytest.fixture
def auth_interceptor(authenticator):
    return AuthInterceptor(authenticator)


class FakeStream:
    def __init__(self, context, incoming=()):
        self.context = context
        self.incoming = list(incoming)
        self.sent = []

    def recv(self):
        return self.incoming.pop(0) if self.incoming else None

    def send(self, message):
        self.sent.append(message)


def echo_user(ctx, request):
    return Message(body={"user_id": user_id_from_context(ctx)})


# --- Context ---

def test_user_id_accessor():
    assert user_id_from_context(None) is None
    assert user_id_from_context(CallContext()) is None
    assert user_id_from_context(with_user_id(CallContext(), 7)) == 7


def test_user_id_wrong_type_is_none():
    ctx = CallContext().with_value(USER_ID_KEY, "7")
    assert user_id_from_context(ctx) is None
    assert user_id_from_context(CallContext().with_value(USER_ID_KEY, True)) is None


def test_keys_compare_by_identity():
    other = ContextKey("user_id", int)
    ctx = CallContext().with_value(other, 5)
    assert user_id_from_context(ctx) is None


def test_with_value_does_not_mutate():
    base = CallContext(method="/m", metadata={"a": "b"})
    derived = with_user_id(base, 1)
    assert user_id_from_context(base) is None
    assert derived.method == "/m" and derived.metadata == {"a": "b"}


def test_deadline():
    assert CallContext().time_remaining() is None
    CallContext().check_deadline()

    ctx = CallContext(deadline=time.monotonic() - 1)
    assert ctx.expired()
    with pytest.raises(RpcError) as exc:
        ctx.check_deadline()
    assert exc.value.code == StatusCode.DEADLINE_EXCEEDED


def test_with_timeout():
    ctx = CallContext.with_timeout("/m", {}, 30)
    assert 0 < ctx.time_remaining() <= 30
    assert CallContext.with_timeout("/m", {}, None).deadline is None


# --- Status mapping ---

@pytest.mark.parametrize(
    "exc, code",
    [
        (ValidationError([FieldViolation("name", "min", "too short")]), StatusCode.INVALID_ARGUMENT),
        (OwnerMismatchError("x"), StatusCode.PERMISSION_DENIED),
        (RecordNotFoundError("x"), StatusCode.NOT_FOUND),
        (UserExistsError("x"), StatusCode.ALREADY_EXISTS),
        (InvalidCredentialsError("x"), StatusCode.UNAUTHENTICATED),
        (StorageError("db down"), StatusCode.INTERNAL),
        (KeyError("boom"), StatusCode.INTERNAL),
    ],
)
def test_to_rpc_error(exc, code):
    assert to_rpc_error(exc).code == code


def test_internal_hides_details():
    assert to_rpc_error(StorageError("table vault is locked")).message == "internal error"


# --- Auth interceptor ---

def test_public_methods():
    assert PUBLIC_METHODS == {REGISTER_USER, LOGIN_USER, PING}


@pytest.mark.parametrize("method", sorted(PUBLIC_METHODS))
def test_public_method_skips_auth(auth_interceptor, authenticator, method):
    reply = auth_interceptor.intercept_unary(CallContext(method=method, metadata={}), Message(), echo_user)
    assert reply.body == {"user_id": None}
    authenticator.validate_token.assert_not_called()


def test_valid_bearer_binds_user(auth_interceptor):
    ctx = CallContext(method=SAVE_VAULT, metadata={"authorization": "Bearer good"})
    reply = auth_interceptor.intercept_unary(ctx, Message(), echo_user)
    assert reply.body == {"user_id": 42}


@pytest.mark.parametrize(
    "metadata",
    [
        None,
        {},
        {"authorization": ""},
        {"authorization": "good"},
        {"authorization": "Basic good"},
        {"authorization": "Bearer "},
        {"authorization": "Bearer bad"},
        {"authorization": "Bearer expired"},
    ],
)
def test_rejections_are_unauthenticated(auth_interceptor, metadata):
    handler = MagicMock()
    ctx = CallContext(method=SAVE_VAULT, metadata=metadata)
    with pytest.raises(RpcError) as exc:
        auth_interceptor.intercept_unary(ctx, Message(), handler)
    assert exc.value.code == StatusCode.UNAUTHENTICATED
    handler.assert_not_called()


def test_stream_wrapped_with_user(auth_interceptor):
    ctx = CallContext(method=UPLOAD_FILE, metadata={"authorization": "Bearer good"})
    stream = FakeStream(ctx, [Message(body={"n": 1})])

    def handler(s):
        assert user_id_from_context(s.context) == 42
        first = s.recv()
        s.send(Message(body={"echo": first.body["n"]}))
        return None

    auth_interceptor.intercept_stream(stream, handler)
    assert stream.sent[0].body == {"echo": 1}
    # the original stream's context is untouched
    assert user_id_from_context(stream.context) is None


def test_stream_rejected_before_reading(auth_interceptor):
    stream = FakeStream(CallContext(method=GET_STREAMED_VAULTS, metadata={}), [Message()])
    with pytest.raises(RpcError) as exc:
        auth_interceptor.intercept_stream(stream, MagicMock())
    assert exc.value.code == StatusCode.UNAUTHENTICATED
    assert len(stream.incoming) == 1


def test_require_user_id():
    assert require_user_id(with_user_id(CallContext(), 3)) == 3
    with pytest.raises(RpcError):
        require_user_id(CallContext())


# --- Recovery and logging ---

def test_recovery_converts_unexpected_errors():
    def boom(ctx, request):
        raise ZeroDivisionError("secret detail")

    handler = chain_unary([RecoveryInterceptor()], boom)
    with pytest.raises(RpcError) as exc:
        handler(CallContext(method="/m"), Message())
    assert exc.value.code == StatusCode.INTERNAL
    assert exc.value.message == "internal error"


def test_recovery_maps_domain_errors():
    def missing(stream):
        raise RecordNotFoundError("vault record 9 not found")

    handler = chain_stream([RecoveryInterceptor()], missing)
    with pytest.raises(RpcError) as exc:
        handler(FakeStream(CallContext(method="/m")))
    assert exc.value.code == StatusCode.NOT_FOUND


def test_recovery_passes_rpc_errors_through():
    def denied(ctx, request):
        raise RpcError(StatusCode.PERMISSION_DENIED, "nope")

    with pytest.raises(RpcError) as exc:
        chain_unary([RecoveryInterceptor()], denied)(CallContext(), Message())
    assert exc.value.code == StatusCode.PERMISSION_DENIED


def test_logging_interceptor_logs_status(caplog):
    caplog.set_level("INFO", logger="vaultkeeper.network.interceptors")
    handler = chain_unary([LoggingInterceptor()], lambda ctx, req: Message(body={"ok": True}))

    assert handler(CallContext(method=PING), Message()).body == {"ok": True}
    assert any(PING in r.getMessage() and "OK" in r.getMessage() for r in caplog.records)


def test_chain_order(authenticator):
    calls = []

    class Tracer(LoggingInterceptor):
        def __init__(self, name):
            self.name = name

        def intercept_unary(self, ctx, request, handler):
            calls.append(self.name)
            return handler(ctx, request)

    handler = chain_unary([Tracer("outer"), Tracer("inner")], lambda ctx, req: Message())
    handler(CallContext(), Message())
    assert calls == ["outer", "inner"]
