"""
Per-call context: method, request metadata, deadline and typed values.

Contexts are immutable. Interceptors derive a new context with
``with_value`` instead of mutating the one they were handed, so a value bound
for one call can never leak into another.
"""

import time
from typing import Any, Dict, Generic, Mapping, Optional, Type, TypeVar

from .status import RpcError, StatusCode

T = TypeVar("T")


class ContextKey(Generic[T]):
    """A private key for one typed context value; compared by identity."""

    __slots__ = ("name", "value_type")

    def __init__(self, name: str, value_type: Type[T]):
        self.name = name
        self.value_type = value_type

    def __repr__(self):
        return f"ContextKey({self.name!r})"


class CallContext:
    __slots__ = ("method", "metadata", "deadline", "_values")

    def __init__(
        self,
        method: str = "",
        metadata: Optional[Mapping[str, str]] = None,
        deadline: Optional[float] = None,
        values: Optional[Dict[ContextKey, Any]] = None,
    ):
        self.method = method
        self.metadata = dict(metadata) if metadata is not None else None
        # absolute time.monotonic() value, None means no deadline
        self.deadline = deadline
        self._values = dict(values or {})

    @classmethod
    def with_timeout(cls, method, metadata=None, timeout=None) -> "CallContext":
        deadline = time.monotonic() + timeout if timeout else None
        return cls(method=method, metadata=metadata, deadline=deadline)

    def with_value(self, key: ContextKey, value) -> "CallContext":
        values = dict(self._values)
        values[key] = value
        return CallContext(self.method, self.metadata, self.deadline, values)

    def value(self, key: ContextKey, default=None):
        return self._values.get(key, default)

    def time_remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check_deadline(self) -> None:
        """Raise DEADLINE_EXCEEDED once the call's deadline has passed."""
        if self.expired():
            raise RpcError(StatusCode.DEADLINE_EXCEEDED, "deadline exceeded")


USER_ID_KEY: ContextKey[int] = ContextKey("user_id", int)


def with_user_id(ctx: CallContext, user_id: int) -> CallContext:
    return ctx.with_value(USER_ID_KEY, user_id)


def user_id_from_context(ctx: Optional[CallContext]) -> Optional[int]:
    """Return the authenticated user id bound to ctx, or None.

    None covers a missing context, a context without the key and a value of
    the wrong type.
    """
    if ctx is None:
        return None
    value = ctx.value(USER_ID_KEY)
    if not isinstance(value, int) or isinstance(value, bool):
        return None
    return value
