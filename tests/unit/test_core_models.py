"""Unit tests for vault records and users."""

from datetime import datetime, timezone

from vaultkeeper.core.models import DataType, User, VaultRecord, record_from_dict, record_from_header


def test_record_defaults():
    rec = VaultRecord(user_id=1, name="note")
    assert rec.record_id is None
    assert rec.data_type is DataType.TEXT
    assert rec.encrypted_data == b""
    assert rec.meta_data == {}
    assert rec.version == 1
    assert rec.active is True
    assert rec.created_at.tzinfo is not None
    assert rec.updated_at == rec.created_at


def test_data_type_coercion():
    assert VaultRecord(data_type="binary").data_type is DataType.BINARY
    # unknown tags survive so validation can name them
    assert VaultRecord(data_type="photo").data_type == "photo"


def test_header_excludes_payload():
    rec = VaultRecord(record_id=3, user_id=1, name="card", data_type=DataType.CARD, encrypted_data=b"\x01\x02")
    header = rec.to_header()

    assert "encrypted_data" not in header
    assert header["id"] == 3
    assert header["data_type"] == "card"


def test_dict_round_trip():
    rec = VaultRecord(
        record_id=9,
        user_id=2,
        name="passport.pdf",
        data_type=DataType.BINARY,
        encrypted_data=b"\x00\xffabc",
        meta_data={"file_type": "pdf"},
        created_at="2024-05-01T10:00:00+00:00",
        version=3,
        active=False,
    )
    data = rec.to_dict()
    assert data["encrypted_data"] == "00ff616263"
    assert record_from_dict(data) == rec


def test_record_from_header_with_payload():
    rec = record_from_header({"id": 5, "user_id": 1, "name": "abc", "data_type": "text"}, b"blob")
    assert rec.record_id == 5
    assert rec.encrypted_data == b"blob"


def test_naive_timestamps_are_utc():
    rec = VaultRecord(created_at="2024-01-01T00:00:00")
    assert rec.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_user_to_dict_hides_hash():
    user = User(1, "alice", password_hash="$2b$04$secret")
    data = user.to_dict()
    assert data["login"] == "alice"
    assert data["last_login_at"] is None
    assert "password_hash" not in data and "$2b$04$secret" not in data.values()
