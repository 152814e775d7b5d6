"""UserService: registration, login, password change and health check."""

import logging
from datetime import timedelta

from ..core.exceptions import (
    InvalidCredentialsError,
    PasswordNotChangedError,
    UserNotFoundError,
    ValidationError,
)
from ..core.models import User
from ..core.validation import validate_password_change, validate_registration
from ..database.models import UserRepository
from ..security.passwords import BcryptHasher, PasswordHasher
from ..security.tokens import Authenticator

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(hours=1)


class UserService:
    def __init__(self, repository: UserRepository, hasher: PasswordHasher = None):
        self.repository = repository
        self.hasher = hasher or BcryptHasher()

    def register(self, login: str, password: str) -> User:
        """Create an account; raises UserExistsError for a taken login."""
        violations = validate_registration(login, password)
        if violations:
            raise ValidationError(violations)

        user = self.repository.create(login, self.hasher.hash_password(password))
        logger.info("registered user id=%s", user.user_id)
        return user

    def login(self, login: str, password: str, authenticator: Authenticator, ttl=TOKEN_TTL) -> str:
        """Check credentials and return a fresh token.

        Unknown logins and wrong passwords raise the same InvalidCredentialsError.
        """
        violations = validate_registration(login, password)
        if violations:
            raise ValidationError(violations)

        try:
            user = self.repository.get_by_login(login)
        except UserNotFoundError:
            raise InvalidCredentialsError("invalid login or password") from None

        if not self.hasher.check_password(password, user.password_hash):
            logger.info("failed login for user id=%s", user.user_id)
            raise InvalidCredentialsError("invalid login or password")

        token = authenticator.create_token(user.user_id, ttl)
        self.repository.update_last_login(user.user_id)
        logger.info("user id=%s logged in", user.user_id)
        return token

    def change_password(self, user_id: int, login: str, current_password: str, new_password: str) -> None:
        violations = validate_password_change(current_password, new_password)
        if violations:
            raise ValidationError(violations)
        if current_password == new_password:
            raise PasswordNotChangedError("new password must differ from the current one")

        try:
            user = self.repository.get_by_login(login)
        except UserNotFoundError:
            raise InvalidCredentialsError("invalid login or password") from None

        # the login must belong to the authenticated caller
        if user.user_id != user_id or not self.hasher.check_password(current_password, user.password_hash):
            raise InvalidCredentialsError("invalid login or password")

        self.repository.update_password(user.user_id, self.hasher.hash_password(new_password))
        logger.info("password changed for user id=%s", user.user_id)

    def ping(self) -> None:
        """Raise StorageError when storage does not answer."""
        self.repository.ping()
