"""
VaultService: save, list and soft-delete encrypted records.

The service never looks inside encrypted_data; it only validates the record
shape and enforces ownership.
"""

import logging
from typing import List

from ..core.exceptions import OwnerMismatchError, ValidationError
from ..core.models import VaultRecord
from ..core.validation import validate_vault_record
from ..database.models import VaultRepository

logger = logging.getLogger(__name__)


class VaultService:
    """High-level record operations over a VaultRepository."""

    def __init__(self, repository: VaultRepository):
        self.repository = repository

    def save(self, record: VaultRecord) -> VaultRecord:
        """Validate and persist a record; returns it with id, version and timestamps."""
        violations = validate_vault_record(record)
        if violations:
            logger.debug("save rejected: %d violation(s)", len(violations))
            raise ValidationError(violations)

        saved = self.repository.insert(record)
        logger.info("saved vault record id=%s user=%s type=%s", saved.record_id, saved.user_id, saved.data_type)
        return saved

    def get_by_user(self, user_id: int) -> List[VaultRecord]:
        """Active records of a user, newest first."""
        return self.repository.list_by_user(user_id)

    def deactivate(self, user_id: int, record_id: int) -> None:
        """Soft-delete a record the user owns.

        Raises:
            RecordNotFoundError: no record with that id
            OwnerMismatchError: the record belongs to another user
        """
        record = self.repository.get(record_id)
        if record.user_id != user_id:
            logger.warning("user %s tried to deactivate record %s owned by another user", user_id, record_id)
            raise OwnerMismatchError(f"vault record {record_id} is not owned by the caller")

        self.repository.deactivate(record_id)
        logger.info("deactivated vault record id=%s", record_id)
