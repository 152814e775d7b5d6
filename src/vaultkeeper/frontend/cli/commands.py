"""
Client operations that return typed result events.

Everything the user stores is sealed here with the envelope codec before it
reaches the network; the server only ever sees EncryptedBlobs.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .messages import (
    ChangePasswordResult,
    DeactivateVaultResult,
    DownloadResult,
    GetVaultsResult,
    LoginResult,
    RegistrationResult,
    SaveVaultResult,
    VaultItem,
)
from ...core.exceptions import VaultKeeperError
from ...core.models import DataType, VaultRecord
from ...network.client import VaultClient
from ...network.status import RpcError
from ...security.envelope import decrypt, encrypt_file, encrypt_json
from ...security.passwords import sanitize_error

logger = logging.getLogger(__name__)

# errors a command reports instead of raising
COMMAND_ERRORS = (RpcError, VaultKeeperError, OSError)

KB = 1 << 10
MB = KB << 10
GB = MB << 10
TB = GB << 10


def describe_error(err: BaseException) -> str:
    if isinstance(err, RpcError):
        return f"{err.code.name}: {sanitize_error(err.message)}"
    return sanitize_error(err)


def format_file_size(size: int) -> str:
    """Human readable size: bytes, KB, MB or GB with one decimal."""
    if size < KB:
        return f"{size} bytes"
    if size < MB:
        return f"{size / KB:.1f} KB"
    if size < GB:
        return f"{size / MB:.1f} MB"
    if size < TB:
        return f"{size / GB:.1f} GB"
    return f"{size} bytes"


def get_file_metadata(path) -> Dict[str, Any]:
    """Name, path, size and extension (without the dot, or "unknown") of a file."""
    p = Path(path)
    stat = p.stat()
    file_type = p.suffix[1:] if p.suffix else "unknown"
    return {
        "file_name": p.name,
        "file_path": str(path),
        "file_size": stat.st_size,
        "file_type": file_type,
    }


# --- secret payload shapes ---

def credential_payload(service, username, password, url=""):
    return {"service": service, "username": username, "password": password, "url": url}


def card_payload(card_name, card_number, expiry, cvv, cardholder):
    return {
        "card_name": card_name,
        "card_number": card_number,
        "expiry": expiry,
        "cvv": cvv,
        "cardholder": cardholder,
    }


def text_payload(title, content):
    return {"title": title, "content": content}


# --- commands ---

def register(client: VaultClient, login: str, password: str) -> RegistrationResult:
    try:
        token = client.register(login, password)
    except COMMAND_ERRORS as e:
        return RegistrationResult(success=False, error=describe_error(e), login=login)
    return RegistrationResult(success=True, message=f"registered {login}", login=login, token=token)


def login(client: VaultClient, login: str, password: str) -> LoginResult:
    try:
        token = client.login(login, password)
    except COMMAND_ERRORS as e:
        return LoginResult(success=False, error=describe_error(e), login=login)
    return LoginResult(success=True, message=f"logged in as {login}", token=token, login=login)


def save_secret(client: VaultClient, password: str, name: str, data_type: DataType,
                payload: Dict[str, Any], meta_data: Optional[Dict[str, Any]] = None) -> SaveVaultResult:
    """Seal a JSON secret under password and store it."""
    try:
        record = VaultRecord(
            name=name,
            data_type=data_type,
            encrypted_data=encrypt_json(payload, password),
            meta_data=meta_data or {},
        )
        saved = client.save_vault(record)
    except COMMAND_ERRORS as e:
        return SaveVaultResult(success=False, error=describe_error(e))
    return SaveVaultResult(success=True, record=saved)


def upload_file(client: VaultClient, password: str, path) -> SaveVaultResult:
    """Seal a file under password and stream it as a binary record."""
    try:
        meta = get_file_metadata(path)
        blob = encrypt_file(path, password)
        logger.info("uploading %s (%s)", meta["file_name"], format_file_size(meta["file_size"]))
        saved = client.upload_file(meta["file_name"], blob, meta)
    except COMMAND_ERRORS as e:
        return SaveVaultResult(success=False, error=describe_error(e))
    return SaveVaultResult(success=True, record=saved)


def get_vaults(client: VaultClient, password: str, streamed: bool = True) -> GetVaultsResult:
    """Fetch and decrypt every active record.

    A record that does not decrypt is still listed, with data=None.
    """
    try:
        records = client.get_streamed_vaults() if streamed else client.get_vaults()
    except COMMAND_ERRORS as e:
        return GetVaultsResult(vaults=[], error=describe_error(e))

    items = []
    for record in records:
        data = None
        if record.encrypted_data:
            try:
                data = decrypt(record.encrypted_data, password)
            except VaultKeeperError as e:
                logger.warning("could not decrypt record id=%s: %s", record.record_id, type(e).__name__)
        record.encrypted_data = b""
        items.append(VaultItem(record=record, data=data))
    return GetVaultsResult(vaults=items)


def deactivate_vault(client: VaultClient, record_id: int) -> DeactivateVaultResult:
    try:
        client.deactivate_vault(record_id)
    except COMMAND_ERRORS as e:
        return DeactivateVaultResult(success=False, error=describe_error(e))
    return DeactivateVaultResult(success=True)


def change_password(client: VaultClient, login: str, current_password: str, new_password: str) -> ChangePasswordResult:
    try:
        client.change_password(login, current_password, new_password)
    except COMMAND_ERRORS as e:
        return ChangePasswordResult(success=False, error=describe_error(e))
    return ChangePasswordResult(success=True)


def save_download(item: VaultItem, out_dir) -> DownloadResult:
    """Write a decrypted binary item into out_dir under its original file name."""
    if item.record.data_type != DataType.BINARY:
        return DownloadResult(success=False, error=f"record {item.record.record_id} is not a file")
    if item.data is None:
        return DownloadResult(success=False, error=f"record {item.record.record_id} could not be decrypted")

    # never trust a path coming back from the server
    file_name = os.path.basename(item.record.meta_data.get("file_name") or item.record.name)
    target = Path(out_dir).expanduser() / file_name
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(item.data)
    except OSError as e:
        return DownloadResult(success=False, error=describe_error(e))
    return DownloadResult(success=True, message=f"saved {target} ({format_file_size(len(item.data))})")
