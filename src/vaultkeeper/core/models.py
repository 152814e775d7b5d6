"""
Base data models for vault records and users
"""

from datetime import datetime, timezone
from enum import Enum


def utcnow():
    return datetime.now(timezone.utc)


def _parse_time(value):
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        # sqlite CURRENT_TIMESTAMP is UTC without an offset
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DataType(Enum):
    # Kinds of secrets a vault record can hold
    CREDENTIALS = "credentials"
    CARD = "card"
    TEXT = "text"
    BINARY = "binary"


def _coerce_type(value):
    # unknown tags are kept as-is so validation can report them
    try:
        return DataType(value)
    except ValueError:
        return value


def _type_tag(value):
    return value.value if isinstance(value, DataType) else value


class VaultRecord:
    """
        One encrypted secret owned by a user.
        The payload is opaque to the server: it is only ever moved and stored.
    """

    __slots__ = (
        'record_id',
        'user_id',
        'name',
        'data_type',
        'encrypted_data',
        'meta_data',
        'created_at',
        'updated_at',
        'version',
        'active',
    )

    def __init__(self, record_id=None, user_id=0, name="", data_type=DataType.TEXT, encrypted_data=b"", meta_data=None, created_at=None, updated_at=None, version=1, active=True):
        """
            Initialize a vault record
        """
        self.record_id = record_id
        self.user_id = user_id
        self.name = name
        self.data_type = _coerce_type(data_type)
        self.encrypted_data = bytes(encrypted_data or b"")
        self.meta_data = meta_data if meta_data is not None else {}
        self.created_at = _parse_time(created_at) if created_at is not None else utcnow()
        self.updated_at = _parse_time(updated_at) if updated_at is not None else self.created_at
        self.version = version
        self.active = bool(active)

    def to_header(self):
        """
            Every field except the payload, JSON friendly
        """
        return {
            'id': self.record_id,
            'user_id': self.user_id,
            'name': self.name,
            'data_type': _type_tag(self.data_type),
            'meta_data': self.meta_data,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'version': self.version,
            'active': self.active,
        }

    def to_dict(self):
        """
            Convert record to dict, payload as hex
        """
        data = self.to_header()
        data['encrypted_data'] = self.encrypted_data.hex()
        return data

    def __repr__(self):
        return f"VaultRecord(record_id={self.record_id!r}, name={self.name!r}, data_type={_type_tag(self.data_type)!r})"

    def __eq__(self, other):
        if not isinstance(other, VaultRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.record_id, self.user_id))


def record_from_header(data, encrypted_data=b""):
    """
        Rebuild a record from a payload-less header plus its bytes
    """
    return VaultRecord(
        record_id=data.get('id'),
        user_id=data.get('user_id', 0),
        name=data.get('name', ''),
        data_type=data.get('data_type', DataType.TEXT.value),
        encrypted_data=encrypted_data,
        meta_data=data.get('meta_data') or {},
        created_at=data.get('created_at'),
        updated_at=data.get('updated_at'),
        version=data.get('version', 1),
        active=data.get('active', True),
    )


def record_from_dict(data):
    """
        Create record from the output of VaultRecord.to_dict
    """
    return record_from_header(data, bytes.fromhex(data.get('encrypted_data', '')))


class User:
    """
        A registered account; the password is only ever held as a hash
    """

    __slots__ = ('user_id', 'login', 'password_hash', 'created_at', 'updated_at', 'last_login_at', 'active')

    def __init__(self, user_id, login, password_hash="", created_at=None, updated_at=None, last_login_at=None, active=True):
        self.user_id = user_id
        self.login = login
        self.password_hash = password_hash
        self.created_at = _parse_time(created_at) if created_at is not None else utcnow()
        self.updated_at = _parse_time(updated_at) if updated_at is not None else self.created_at
        self.last_login_at = _parse_time(last_login_at)
        self.active = bool(active)

    def to_dict(self):
        """
            Convert to dictionary; the hash is never exported
        """
        return {
            'id': self.user_id,
            'login': self.login,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
            'active': self.active,
        }

    def __repr__(self):
        return f"User(user_id={self.user_id!r}, login={self.login!r})"
