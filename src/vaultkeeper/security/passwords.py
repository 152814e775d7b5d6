"""Login password hashing.

Login passwords are only ever stored as bcrypt hashes. Vault payloads never
touch this module: they are protected by the envelope codec instead.
"""

from __future__ import annotations

import re
from typing import Protocol

import bcrypt

DEFAULT_ROUNDS = 12


class PasswordHasher(Protocol):
    def hash_password(self, password: str) -> str: ...

    def check_password(self, password: str, hashed: str) -> bool: ...


class BcryptHasher:
    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("ascii")

    def check_password(self, password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
        except ValueError:
            # not a bcrypt hash at all
            return False


_MASKED_WORDS = re.compile(r"\b(?:password|auth)\b")


def sanitize_error(err) -> str:
    """Mask words that hint at credentials before showing an error to a user."""
    return _MASKED_WORDS.sub("***", str(err))
