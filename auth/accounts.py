"""
auth/accounts.py -- User accounts: creation and lookup.

Accounts owns the users table; passwords go through CredentialManager so the
policy check and hashing live in one place. new_admin() exists for the CLI
bootstrap path and skips email verification, so it is never exposed over HTTP.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.utils import parseaddr

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.credentials import CredentialManager
from auth.errors import StoreError, UserNotFoundError, ValidationError
from auth.models import Access, User
from auth.passwords import validate
from auth.store import AuthStore
from auth.tokens import new_user_id

logger = logging.getLogger("market.accounts")

_MAX_NAME_LENGTH = 150
_MAX_EMAIL_LENGTH = 255


def validate_email(address: str) -> None:
    """Raise ValidationError unless `address` is a bare email address."""
    if not address:
        raise ValidationError("missing email address", field="email")
    if len(address) > _MAX_EMAIL_LENGTH:
        raise ValidationError("email address is too long", field="email")
    # parseaddr also accepts "Name <addr>"; only the bare address is allowed.
    _name, parsed = parseaddr(address)
    if parsed != address or "@" not in parsed or parsed.startswith("@") or parsed.endswith("@"):
        raise ValidationError("invalid email address", field="email")


@dataclass
class NewUserParams:
    name: str
    email: str
    access: Access = Access.USER

    def validate_and_normalize(self) -> None:
        self.name = self.name.strip()
        self.email = self.email.strip()
        if not self.name:
            raise ValidationError("missing name", field="name")
        if len(self.name) > _MAX_NAME_LENGTH:
            raise ValidationError(f"name must be at most {_MAX_NAME_LENGTH} chars", field="name")
        validate_email(self.email)


class Accounts:
    def __init__(self, store: AuthStore, credentials: CredentialManager) -> None:
        self._store = store
        self._credentials = credentials

    def new_user(self, params: NewUserParams) -> str:
        """Create a user and return its ID. The account has no password yet."""
        params.validate_and_normalize()
        user_id = new_user_id()
        try:
            self._store.create_user(User(user_id=user_id, name=params.name, email=params.email, access=params.access))
        except IntegrityError:
            raise ValidationError("email address is already registered", field="email") from None
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot create user {user_id!r}") from exc
        logger.info("created %s account %s", params.access.value, user_id)
        return user_id

    def new_user_with_password(self, params: NewUserParams, password: str) -> str:
        """Create a user and set its password.

        The password is checked before the user row is written, so a weak
        password never leaves a half-created account behind. The user's own
        name and email are denylisted.
        """
        params.validate_and_normalize()
        denylist = (params.name, params.email, params.email.partition("@")[0])
        validate(password, *denylist)
        user_id = self.new_user(params)
        self._credentials.set_credentials(user_id, password, *denylist)
        return user_id

    def new_admin(self, params: NewUserParams, password: str) -> str:
        params.access = Access.ADMIN
        return self.new_user_with_password(params, password)

    def get_user_by_id(self, user_id: str) -> User:
        try:
            user = self._store.get_user_by_id(user_id)
        except SQLAlchemyError as exc:
            raise StoreError("cannot get user") from exc
        if user is None:
            raise UserNotFoundError()
        return user

    def get_user_by_email(self, email: str) -> User:
        try:
            user = self._store.get_user_by_email(email)
        except SQLAlchemyError as exc:
            raise StoreError("cannot get user") from exc
        if user is None:
            raise UserNotFoundError()
        return user
