"""Unit tests for the client command layer and its result events."""

import json
from unittest.mock import MagicMock

import pytest

from vaultkeeper.core.models import DataType, VaultRecord
from vaultkeeper.frontend.cli import commands
from vaultkeeper.frontend.cli.messages import VaultItem
from vaultkeeper.network.status import RpcError, StatusCode
from vaultkeeper.security.envelope import decrypt_json, encrypt, encrypt_json


@pytest.fixture
def client():
    return MagicMock()


# --- Helpers ---

@pytest.mark.parametrize(
    "size, expected",
    [
        (0, "0 bytes"),
        (1023, "1023 bytes"),
        (1024, "1.0 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
    ],
)
def test_format_file_size(size, expected):
    assert commands.format_file_size(size) == expected


def test_get_file_metadata(tmp_path):
    path = tmp_path / "report.final.pdf"
    path.write_bytes(b"x" * 42)

    meta = commands.get_file_metadata(path)
    assert meta == {
        "file_name": "report.final.pdf",
        "file_path": str(path),
        "file_size": 42,
        "file_type": "pdf",
    }


def test_get_file_metadata_without_extension(tmp_path):
    path = tmp_path / "Makefile"
    path.write_text("all:")
    assert commands.get_file_metadata(path)["file_type"] == "unknown"


def test_payload_shapes():
    assert set(commands.credential_payload("github", "alice", "pw", "https://github.com")) == {
        "service", "username", "password", "url",
    }
    assert set(commands.card_payload("visa", "4111", "12/30", "123", "ALICE")) == {
        "card_name", "card_number", "expiry", "cvv", "cardholder",
    }
    assert commands.text_payload("t", "c") == {"title": "t", "content": "c"}


def test_describe_error_masks_words():
    err = RpcError(StatusCode.UNAUTHENTICATED, "wrong password")
    assert commands.describe_error(err) == "UNAUTHENTICATED: wrong ***"


# --- Account commands ---

def test_register_success(client):
    client.register.return_value = "tok"
    result = commands.register(client, "alice", "hunter2")
    assert result.success and result.token == "tok" and result.login == "alice"
    assert result.error is None


def test_register_failure_is_carried_in_event(client):
    client.register.side_effect = RpcError(StatusCode.ALREADY_EXISTS, "user 'alice' already exists")
    result = commands.register(client, "alice", "hunter2")
    assert not result.success
    assert "ALREADY_EXISTS" in result.error


def test_login_network_error(client):
    client.login.side_effect = ConnectionRefusedError("refused")
    result = commands.login(client, "alice", "hunter2")
    assert not result.success and "refused" in result.error


def test_change_password(client):
    assert commands.change_password(client, "alice", "a", "b").success
    client.change_password.assert_called_once_with("alice", "a", "b")


def test_deactivate_failure(client):
    client.deactivate_vault.side_effect = RpcError(StatusCode.PERMISSION_DENIED, "not owned")
    result = commands.deactivate_vault(client, 3)
    assert not result.success and "PERMISSION_DENIED" in result.error


# --- Saving ---

def test_save_secret_encrypts_before_sending(client):
    client.save_vault.side_effect = lambda record: record
    payload = commands.text_payload("groceries", "milk")

    result = commands.save_secret(client, "pw", "shopping", DataType.TEXT, payload)

    assert result.success
    sent = client.save_vault.call_args[0][0]
    assert sent.data_type is DataType.TEXT
    assert b"milk" not in sent.encrypted_data
    assert decrypt_json(sent.encrypted_data, "pw") == payload


def test_upload_file(client, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"plain text file")
    client.upload_file.return_value = VaultRecord(record_id=1, user_id=1, name="notes.txt", data_type="binary")

    result = commands.upload_file(client, "pw", path)

    assert result.success and result.record.record_id == 1
    name, blob, meta = client.upload_file.call_args[0]
    assert name == "notes.txt"
    assert meta["file_type"] == "txt" and meta["file_size"] == 15
    assert blob != b"plain text file"


def test_upload_missing_file(client, tmp_path):
    result = commands.upload_file(client, "pw", tmp_path / "missing.bin")
    assert not result.success
    client.upload_file.assert_not_called()


# --- Fetching ---

def test_get_vaults_decrypts_and_reports_failures(client, caplog):
    good = VaultRecord(record_id=2, user_id=1, name="note", data_type="text",
                       encrypted_data=encrypt_json({"title": "t", "content": "c"}, "pw"))
    bad = VaultRecord(record_id=1, user_id=1, name="other", data_type="text",
                      encrypted_data=encrypt(b"{}", "someone else"))
    client.get_streamed_vaults.return_value = [good, bad]

    result = commands.get_vaults(client, "pw")

    assert result.error is None
    assert [i.record.record_id for i in result.vaults] == [2, 1]
    assert result.vaults[0].as_json() == {"title": "t", "content": "c"}
    assert result.vaults[1].data is None and not result.vaults[1].decrypted
    assert any("could not decrypt" in r.getMessage() for r in caplog.records)


def test_get_vaults_unary(client):
    client.get_vaults.return_value = []
    assert commands.get_vaults(client, "pw", streamed=False).vaults == []
    client.get_streamed_vaults.assert_not_called()


def test_get_vaults_error(client):
    client.get_streamed_vaults.side_effect = RpcError(StatusCode.DEADLINE_EXCEEDED, "deadline exceeded")
    result = commands.get_vaults(client, "pw")
    assert result.vaults == [] and "DEADLINE_EXCEEDED" in result.error


# --- Downloads ---

def test_save_download(tmp_path):
    record = VaultRecord(record_id=4, user_id=1, name="a.bin", data_type=DataType.BINARY,
                         meta_data={"file_name": "../../escape.bin"})
    result = commands.save_download(VaultItem(record=record, data=b"\x01\x02"), tmp_path / "out")

    assert result.success
    assert (tmp_path / "out" / "escape.bin").read_bytes() == b"\x01\x02"


def test_save_download_rejects_non_files(tmp_path):
    record = VaultRecord(record_id=4, user_id=1, name="note", data_type=DataType.TEXT)
    assert not commands.save_download(VaultItem(record=record, data=b"{}"), tmp_path).success


def test_save_download_undecryptable(tmp_path):
    record = VaultRecord(record_id=4, user_id=1, name="a.bin", data_type=DataType.BINARY)
    assert not commands.save_download(VaultItem(record=record, data=None), tmp_path).success


def test_vault_item_as_json_for_binary():
    record = VaultRecord(record_id=1, user_id=1, name="x.bin", data_type=DataType.BINARY)
    assert VaultItem(record=record, data=json.dumps({}).encode()).as_json() is None
