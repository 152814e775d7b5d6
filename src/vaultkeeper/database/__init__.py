"""SQLite storage for users and vault records."""

from .connection import DatabaseConnection, TransactionContext
from .models import UserModel, VaultModel, UserRepository, VaultRepository, open_repositories

__all__ = [
    "DatabaseConnection",
    "TransactionContext",
    "UserModel",
    "VaultModel",
    "UserRepository",
    "VaultRepository",
    "open_repositories",
]
