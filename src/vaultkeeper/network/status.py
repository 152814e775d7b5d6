"""Call status codes and the mapping from domain errors to them."""

from enum import IntEnum

from ..core.exceptions import (
    InvalidCredentialsError,
    OwnerMismatchError,
    PasswordNotChangedError,
    ProtocolError,
    RecordNotFoundError,
    TransferError,
    UserExistsError,
    UserNotFoundError,
    ValidationError,
)
from ..security.passwords import sanitize_error


class StatusCode(IntEnum):
    # numbering follows the gRPC status codes
    OK = 0
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAUTHENTICATED = 16


class RpcError(Exception):
    """A call that finished with a non-OK status."""

    def __init__(self, code, message=""):
        self.code = StatusCode(code)
        self.message = message
        super().__init__(f"{self.code.name}: {message}")


# order matters: the first matching class wins
ERROR_CODES = (
    (ValidationError, StatusCode.INVALID_ARGUMENT),
    (PasswordNotChangedError, StatusCode.INVALID_ARGUMENT),
    (TransferError, StatusCode.INVALID_ARGUMENT),
    (ProtocolError, StatusCode.INVALID_ARGUMENT),
    (OwnerMismatchError, StatusCode.PERMISSION_DENIED),
    (RecordNotFoundError, StatusCode.NOT_FOUND),
    (UserNotFoundError, StatusCode.NOT_FOUND),
    (UserExistsError, StatusCode.ALREADY_EXISTS),
    (InvalidCredentialsError, StatusCode.UNAUTHENTICATED),
)


def to_rpc_error(exc: BaseException) -> RpcError:
    """Map an exception raised by handler code to the status it ends the call with.

    Unknown errors become a bare INTERNAL so nothing about them reaches the caller.
    """
    if isinstance(exc, RpcError):
        return exc
    for exc_type, code in ERROR_CODES:
        if isinstance(exc, exc_type):
            return RpcError(code, sanitize_error(str(exc)))
    return RpcError(StatusCode.INTERNAL, "internal error")
