"""
Exceptions for VaultKeeper
Everything derives from VaultKeeperError so callers have one general catcher
"""


class VaultKeeperError(Exception):
    # general container for errors
    pass


class EncryptionError(VaultKeeperError):
    # raised when sealing a payload fails (entropy source, cipher setup)
    pass


class MalformedBlobError(VaultKeeperError):
    # raised when an encrypted blob is too short to hold salt and nonce
    pass


class AuthenticationFailedError(VaultKeeperError):
    # raised when the AEAD tag does not verify: wrong password or tampered data
    pass


class InvalidDurationError(VaultKeeperError):
    # raised when a token ttl is zero or negative
    pass


class InvalidSignatureError(VaultKeeperError):
    # raised when a token is malformed, badly signed or uses another algorithm
    pass


class TokenExpiredError(VaultKeeperError):
    # raised when a token expiry is at or before now
    pass


class WeakSecretError(VaultKeeperError):
    # raised at startup when the signing secret is too short
    pass


class ValidationError(VaultKeeperError):
    """Raised with the full list of field violations found on a request."""

    def __init__(self, violations):
        self.violations = list(violations)
        details = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        super().__init__(f"validation failed: {details}")


class StorageError(VaultKeeperError):
    # raised if the storage collaborator fails in some way
    pass


class RecordNotFoundError(StorageError):
    # raised when a vault record id DNE
    pass


class UserNotFoundError(StorageError):
    # raised when the user DNE in the DB
    pass


class UserExistsError(StorageError):
    # raised when registering an existing login
    pass


class OwnerMismatchError(VaultKeeperError):
    # raised when a user acts on a record owned by someone else
    pass


class InvalidCredentialsError(VaultKeeperError):
    # raised on unknown login or wrong password
    pass


class PasswordNotChangedError(VaultKeeperError):
    # raised when the new password equals the current one
    pass


class ProtocolError(VaultKeeperError):
    # raised on malformed or oversized frames
    pass


class TransferError(VaultKeeperError):
    # raised when a chunked transfer is aborted mid-stream
    pass
