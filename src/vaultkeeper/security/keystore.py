"""OS keystore integration using keyring for the client's session token.

The command-line client runs one process per command, so the bearer token
obtained at login is parked in the OS keystore under (service, account) and
read back by later commands. Tokens expire on their own; logout removes them
early.
"""
from typing import Optional

try:
    import keyring
    from keyring.errors import PasswordDeleteError
except Exception:
    keyring = None
    PasswordDeleteError = Exception

SERVICE_NAME = "vaultkeeper"
ACTIVE_ACCOUNT = "__active_login__"


def _require_keyring():
    if keyring is None:
        raise RuntimeError("keyring package is not available; install keyring to persist sessions")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Heuristics are used because the `keyring` package exposes different backends
    across platforms. If `keyring` is not available this returns (False, reason).
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Simple", "File")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no suitable secure keyring backend available (priority={priority}, backend={name})"

    return True, f"backend looks acceptable: {name} (priority={priority})"


def save_token(login: str, token: str, service: str = SERVICE_NAME) -> None:
    """Store ``token`` for ``login`` and mark that login as the active one."""
    _require_keyring()
    keyring.set_password(service, login, token)
    keyring.set_password(service, ACTIVE_ACCOUNT, login)


def load_token(login: Optional[str] = None, service: str = SERVICE_NAME) -> Optional[tuple[str, str]]:
    """Return (login, token) for ``login`` or the active login; None if absent."""
    _require_keyring()
    if login is None:
        login = keyring.get_password(service, ACTIVE_ACCOUNT)
        if login is None:
            return None
    token = keyring.get_password(service, login)
    if token is None:
        return None
    return login, token


def delete_token(login: Optional[str] = None, service: str = SERVICE_NAME) -> None:
    """Forget the stored token for ``login`` (default: the active login)."""
    _require_keyring()
    if login is None:
        login = keyring.get_password(service, ACTIVE_ACCOUNT)
        if login is None:
            return
    for account in (login, ACTIVE_ACCOUNT):
        try:
            keyring.delete_password(service, account)
        except PasswordDeleteError:
            # already gone
            pass
