"""Security helpers: envelope codec, identity tokens and password hashing.

This package provides:
- PBKDF2-based per-record key derivation
- AES-GCM envelope encryption of vault payloads (``salt || nonce || ct``)
- HS256 bearer tokens carrying the caller's user id
- bcrypt hashing of login passwords
"""

from .kdf import generate_salt, derive_key
from .envelope import encrypt, decrypt, encrypt_file, encrypt_json, decrypt_json
from .tokens import Authenticator, Claims, JWTAuthenticator
from .passwords import BcryptHasher, PasswordHasher, sanitize_error

__all__ = [
    "generate_salt",
    "derive_key",
    "encrypt",
    "decrypt",
    "encrypt_file",
    "encrypt_json",
    "decrypt_json",
    "Authenticator",
    "Claims",
    "JWTAuthenticator",
    "BcryptHasher",
    "PasswordHasher",
    "sanitize_error",
]
