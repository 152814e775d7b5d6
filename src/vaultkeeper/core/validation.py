"""Request validation returning field-level violations.

Validators never raise; callers inspect the returned list before doing any
side-effecting work and raise ``ValidationError`` themselves.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List

from .models import DataType

LOGIN_MIN, LOGIN_MAX = 3, 150
PASSWORD_MIN = 5
NAME_MIN, NAME_MAX = 3, 150
# a record header must still fit a 64 KiB frame once wrapped as a streamed chunk
RECORD_HEADER_MAX = 63 * 1024


@dataclass(frozen=True)
class FieldViolation:
    field: str
    rule: str
    message: str


def _check_length(field: str, value, minimum: int, maximum: int | None = None) -> List[FieldViolation]:
    if not isinstance(value, str) or not value:
        return [FieldViolation(field, "required", "is required")]
    if len(value) < minimum:
        return [FieldViolation(field, "min", f"must be at least {minimum} characters")]
    if maximum is not None and len(value) > maximum:
        return [FieldViolation(field, "max", f"must be at most {maximum} characters")]
    return []


def validate_registration(login, password) -> List[FieldViolation]:
    """Check a login/password pair used for registration or login."""
    return _check_length("login", login, LOGIN_MIN, LOGIN_MAX) + _check_length(
        "password", password, PASSWORD_MIN
    )


def validate_password_change(current_password, new_password) -> List[FieldViolation]:
    violations = []
    if not isinstance(current_password, str) or not current_password:
        violations.append(FieldViolation("current_password", "required", "is required"))
    violations += _check_length("new_password", new_password, PASSWORD_MIN)
    return violations


def validate_vault_record(record) -> List[FieldViolation]:
    """Check a record before it is handed to storage."""
    violations = []
    if not isinstance(record.user_id, int) or isinstance(record.user_id, bool) or record.user_id <= 0:
        violations.append(FieldViolation("user_id", "gt", "must be a positive integer"))
    violations += _check_length("name", record.name, NAME_MIN, NAME_MAX)
    if not isinstance(record.data_type, DataType):
        violations.append(FieldViolation("data_type", "oneof", "must be one of credentials, card, text, binary"))
    if not isinstance(record.encrypted_data, (bytes, bytearray)):
        violations.append(FieldViolation("encrypted_data", "type", "must be bytes"))
    if not isinstance(record.meta_data, dict):
        violations.append(FieldViolation("meta_data", "type", "must be a mapping"))
    elif not violations:
        violations += _check_header_size(record)
    return violations


def _check_header_size(record) -> List[FieldViolation]:
    try:
        size = len(json.dumps(record.to_header(), ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError):
        return [FieldViolation("meta_data", "json", "must be JSON serializable")]
    if size > RECORD_HEADER_MAX:
        return [FieldViolation("meta_data", "max", f"record header must be at most {RECORD_HEADER_MAX} bytes")]
    return []
