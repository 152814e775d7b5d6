"""ORM-style helpers for database operations."""

from typing import List, Optional, Protocol
import json
import sqlite3

from .connection import DatabaseConnection
from .schema import SCHEMA_VERSION
from ..core.models import User, VaultRecord, utcnow, _type_tag
from ..core.exceptions import (
    RecordNotFoundError,
    StorageError,
    UserExistsError,
    UserNotFoundError,
)


class UserRepository(Protocol):
    """Storage operations the user service depends on."""

    def create(self, login: str, password_hash: str) -> User: ...

    def get_by_login(self, login: str) -> User: ...

    def update_password(self, user_id: int, password_hash: str) -> None: ...

    def update_last_login(self, user_id: int) -> None: ...

    def ping(self) -> None: ...


class VaultRepository(Protocol):
    """Storage operations the vault service depends on."""

    def insert(self, record: VaultRecord) -> VaultRecord: ...

    def get(self, record_id: int) -> VaultRecord: ...

    def list_by_user(self, user_id: int) -> List[VaultRecord]: ...

    def deactivate(self, record_id: int) -> None: ...


class BaseModel:
    """Base class for DB models."""

    __slots__ = ("db",)

    def __init__(self, db: DatabaseConnection):
        """Initialize with a DatabaseConnection."""
        self.db = db

    def _serialize_json(self, data):
        """Serialize Python data to JSON string."""
        return json.dumps(data) if data else None

    def _deserialize_json(self, data):
        """Deserialize JSON string to Python data."""
        return json.loads(data) if data else {}

    def ping(self):
        """Check that the underlying database answers."""
        self.db.ping()


def row_to_user(row):
    return User(
        user_id=row["id"],
        login=row["login"],
        password_hash=row["password"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_login_at=row["last_login_at"],
        active=row["active"],
    )


class UserModel(BaseModel):
    """DB model for users."""

    def create(self, login, password_hash):
        """Create a user and return it."""
        query = """
            INSERT INTO users (login, password, created_at, updated_at)
            VALUES (?, ?, ?, ?)
        """
        now = utcnow().isoformat()

        try:
            with self.db.get_transaction_context() as cursor:
                cursor.execute(query, (login, password_hash, now, now))
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise UserExistsError(f"user {login!r} already exists") from e
        except sqlite3.Error as e:
            raise StorageError(f"failed to create user: {e}") from e

        return self.get(user_id)

    def get(self, user_id):
        """Get user by ID."""
        row = self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        if not row:
            raise UserNotFoundError(f"user {user_id} not found")
        return row_to_user(row)

    def get_by_login(self, login):
        """Get an active user by login."""
        query = "SELECT * FROM users WHERE login = ? AND active = 1"
        row = self.db.fetch_one(query, (login,))
        if not row:
            raise UserNotFoundError(f"user {login!r} not found")
        return row_to_user(row)

    def update_password(self, user_id, password_hash):
        """Replace a user's password hash."""
        query = "UPDATE users SET password = ?, updated_at = ? WHERE id = ?"
        if not self.db.execute(query, (password_hash, utcnow().isoformat(), user_id)):
            raise UserNotFoundError(f"user {user_id} not found")

    def update_last_login(self, user_id):
        """Stamp the last successful login."""
        query = "UPDATE users SET last_login_at = ? WHERE id = ?"
        self.db.execute(query, (utcnow().isoformat(), user_id))


class VaultModel(BaseModel):
    """DB model for vault records."""

    def _row_to_record(self, row):
        """Convert a vault row into a VaultRecord."""
        return VaultRecord(
            record_id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            data_type=row["data_type"],
            encrypted_data=row["encrypted_data"],
            meta_data=self._deserialize_json(row["meta_data"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
            active=row["active"],
        )

    def insert(self, record):
        """Persist a record and return the stored copy with id, version and timestamps."""
        query = """
            INSERT INTO vault (
                user_id, name, data_type, encrypted_data, meta_data,
                version, created_at, updated_at, active)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?, 1)
        """
        now = utcnow().isoformat()

        params = (
            record.user_id,
            record.name,
            _type_tag(record.data_type),
            sqlite3.Binary(record.encrypted_data),
            self._serialize_json(record.meta_data),
            now,
            now,
        )

        try:
            with self.db.get_transaction_context() as cursor:
                cursor.execute(query, params)
                record_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise StorageError(f"failed to insert vault record: {e}") from e

        return self.get(record_id)

    def get(self, record_id) -> VaultRecord:
        """Get a record by ID regardless of its active flag."""
        row = self.db.fetch_one("SELECT * FROM vault WHERE id = ?", (record_id,))
        if not row:
            raise RecordNotFoundError(f"vault record {record_id} not found")
        return self._row_to_record(row)

    def list_by_user(self, user_id):
        """List active records of a user, newest first."""
        query = """
            SELECT * FROM vault
            WHERE user_id = ? AND active = 1
            ORDER BY created_at DESC, id DESC
        """
        return [self._row_to_record(row) for row in self.db.fetch_all(query, (user_id,))]

    def deactivate(self, record_id):
        """Soft-delete a record, bumping its version."""
        query = """
            UPDATE vault SET
                active = 0,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
        """
        if not self.db.execute(query, (utcnow().isoformat(), record_id)):
            raise RecordNotFoundError(f"vault record {record_id} not found")


def open_repositories(db_path) -> "tuple[UserModel, VaultModel]":
    """Open (and initialize) a database and return its two repositories."""
    db = DatabaseConnection(db_path)
    db.initialize()
    version = db.get_version()
    if version > SCHEMA_VERSION:
        db.close()
        raise StorageError(f"database schema version {version} is newer than supported ({SCHEMA_VERSION})")
    return UserModel(db), VaultModel(db)


__all__ = [
    "UserRepository",
    "VaultRepository",
    "BaseModel",
    "UserModel",
    "VaultModel",
    "row_to_user",
    "open_repositories",
]
