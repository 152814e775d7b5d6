"""Typed result events returned by the command layer.

Errors travel inside the event; commands never raise to the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ...core.models import DataType, VaultRecord


@dataclass
class RegistrationResult:
    success: bool
    message: str = ""
    error: Optional[str] = None
    login: str = ""
    token: str = ""


@dataclass
class LoginResult:
    success: bool
    message: str = ""
    error: Optional[str] = None
    token: str = ""
    login: str = ""


@dataclass
class SaveVaultResult:
    success: bool
    error: Optional[str] = None
    record: Optional[VaultRecord] = None


@dataclass
class VaultItem:
    """A downloaded record; data is the decrypted payload or None if it did not open."""

    record: VaultRecord
    data: Optional[bytes] = None

    @property
    def decrypted(self) -> bool:
        return self.data is not None

    def as_json(self) -> Optional[Any]:
        # binary items hold raw file content, everything else is a JSON document
        if self.data is None or self.record.data_type == DataType.BINARY:
            return None
        return json.loads(self.data.decode("utf-8"))


@dataclass
class GetVaultsResult:
    vaults: List[VaultItem] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class DeactivateVaultResult:
    success: bool
    error: Optional[str] = None


@dataclass
class DownloadResult:
    success: bool
    message: str = ""
    error: Optional[str] = None


@dataclass
class ChangePasswordResult:
    success: bool
    error: Optional[str] = None
