"""
Call interceptors: logging, panic recovery and bearer-token authentication.

An interceptor wraps a handler. Unary handlers take ``(ctx, request)`` and
return the reply message; stream handlers take a stream exposing ``context``,
``recv()`` and ``send()`` and may return a final reply.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from .context import CallContext, user_id_from_context, with_user_id
from .framing import Message
from .status import RpcError, StatusCode, to_rpc_error
from ..core.exceptions import VaultKeeperError
from ..security.tokens import Authenticator

logger = logging.getLogger(__name__)

SERVICE_PREFIX = "/vaultkeeper.Vault/"

PING = SERVICE_PREFIX + "Ping"
REGISTER_USER = SERVICE_PREFIX + "RegisterUser"
LOGIN_USER = SERVICE_PREFIX + "LoginUser"
SAVE_VAULT = SERVICE_PREFIX + "SaveVault"
GET_VAULTS = SERVICE_PREFIX + "GetVaults"
DEACTIVATE_VAULT = SERVICE_PREFIX + "DeactivateVault"
CHANGE_PASSWORD = SERVICE_PREFIX + "ChangePassword"
UPLOAD_FILE = SERVICE_PREFIX + "UploadFile"
GET_STREAMED_VAULTS = SERVICE_PREFIX + "GetStreamedVaults"

PUBLIC_METHODS = frozenset({REGISTER_USER, LOGIN_USER, PING})

AUTHORIZATION = "authorization"
BEARER_PREFIX = "Bearer "

UnaryHandler = Callable[[CallContext, Message], Message]
StreamHandler = Callable[[object], Optional[Message]]


class Interceptor:
    """Pass-through base; subclasses override the shapes they care about."""

    def intercept_unary(self, ctx: CallContext, request: Message, handler: UnaryHandler) -> Message:
        return handler(ctx, request)

    def intercept_stream(self, stream, handler: StreamHandler) -> Optional[Message]:
        return handler(stream)


def chain_unary(interceptors: Iterable[Interceptor], handler: UnaryHandler) -> UnaryHandler:
    """Wrap handler so the first interceptor runs outermost."""
    for icpt in reversed(list(interceptors)):
        handler = (lambda i, h: lambda ctx, req: i.intercept_unary(ctx, req, h))(icpt, handler)
    return handler


def chain_stream(interceptors: Iterable[Interceptor], handler: StreamHandler) -> StreamHandler:
    for icpt in reversed(list(interceptors)):
        handler = (lambda i, h: lambda stream: i.intercept_stream(stream, h))(icpt, handler)
    return handler


class ContextStream:
    """A stream whose context is replaced; reads and writes go to the inner stream."""

    __slots__ = ("_inner", "_context")

    def __init__(self, inner, context: CallContext):
        self._inner = inner
        self._context = context

    @property
    def context(self) -> CallContext:
        return self._context

    def recv(self) -> Optional[Message]:
        return self._inner.recv()

    def send(self, message: Message) -> None:
        self._inner.send(message)


class LoggingInterceptor(Interceptor):
    # logs method, final status and duration; never bodies or metadata
    def intercept_unary(self, ctx, request, handler):
        return self._observe(ctx.method, lambda: handler(ctx, request))

    def intercept_stream(self, stream, handler):
        return self._observe(stream.context.method, lambda: handler(stream))

    def _observe(self, method, call):
        start = time.perf_counter()
        code = StatusCode.OK
        try:
            return call()
        except RpcError as e:
            code = e.code
            raise
        except Exception:
            code = StatusCode.INTERNAL
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info("%s -> %s (%.1f ms)", method, code.name, elapsed_ms)


class RecoveryInterceptor(Interceptor):
    """Convert anything a handler raises into a status; the server keeps running."""

    def intercept_unary(self, ctx, request, handler):
        return self._recover(ctx.method, lambda: handler(ctx, request))

    def intercept_stream(self, stream, handler):
        return self._recover(stream.context.method, lambda: handler(stream))

    def _recover(self, method, call):
        try:
            return call()
        except RpcError:
            raise
        except VaultKeeperError as e:
            err = to_rpc_error(e)
            if err.code == StatusCode.INTERNAL:
                logger.error("%s failed: %s", method, type(e).__name__)
            raise err from e
        except Exception as e:
            logger.exception("recovered from unexpected error in %s", method)
            raise RpcError(StatusCode.INTERNAL, "internal error") from e


class AuthInterceptor(Interceptor):
    """
    Require a valid bearer token on every method outside PUBLIC_METHODS.

    On success the user id is bound into a derived context, which handlers
    read back with user_id_from_context.
    """

    def __init__(self, authenticator: Authenticator, public_methods=PUBLIC_METHODS):
        self.authenticator = authenticator
        self.public_methods = frozenset(public_methods)

    def intercept_unary(self, ctx, request, handler):
        if ctx.method in self.public_methods:
            return handler(ctx, request)
        user_id = self.authenticate(ctx)
        return handler(with_user_id(ctx, user_id), request)

    def intercept_stream(self, stream, handler):
        ctx = stream.context
        if ctx.method in self.public_methods:
            return handler(stream)
        # checked once at open, before any message is read
        user_id = self.authenticate(ctx)
        return handler(ContextStream(stream, with_user_id(ctx, user_id)))

    def authenticate(self, ctx: CallContext) -> int:
        """Return the user id carried by the call's bearer token or raise UNAUTHENTICATED."""
        if ctx.metadata is None:
            raise RpcError(StatusCode.UNAUTHENTICATED, "metadata is not provided")

        header = ctx.metadata.get(AUTHORIZATION)
        if not header:
            raise RpcError(StatusCode.UNAUTHENTICATED, "authorization token is not provided")
        if not header.startswith(BEARER_PREFIX):
            raise RpcError(StatusCode.UNAUTHENTICATED, "invalid authorization header format")

        token = header[len(BEARER_PREFIX):]
        if not token:
            raise RpcError(StatusCode.UNAUTHENTICATED, "empty token")

        try:
            claims = self.authenticator.validate_token(token)
        except VaultKeeperError as e:
            logger.debug("rejected token for %s: %s", ctx.method, type(e).__name__)
            raise RpcError(StatusCode.UNAUTHENTICATED, "invalid token") from e
        return claims.user_id


def require_user_id(ctx: Optional[CallContext]) -> int:
    """Return the bound user id; handlers behind AuthInterceptor always have one."""
    user_id = user_id_from_context(ctx)
    if user_id is None:
        raise RpcError(StatusCode.UNAUTHENTICATED, "unauthorized")
    return user_id
