"""Business logic behind the vault's remote methods."""

from .users import UserService
from .vault import VaultService

__all__ = ["UserService", "VaultService"]
