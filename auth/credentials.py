"""
auth/credentials.py -- Password storage and verification.

set_credentials() is the only writer of users_credentials: it runs the
password policy, hashes with bcrypt and upserts. check_password() is the only
reader.

check_password() runs bcrypt exactly once per call whether or not the user
has a stored hash, so response time does not reveal which accounts have a
password set.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import EmptyPasswordError, PasswordTooLongError, StoreError, WrongPasswordError
from auth.passwords import MAX_PASSWORD_LENGTH, validate
from auth.store import AuthStore
from auth.tokens import hash_password, verify_password
from core.config import get_settings

logger = logging.getLogger("market.credentials")


class CredentialManager:
    def __init__(self, store: AuthStore, rounds: int | None = None) -> None:
        self._store = store
        self._rounds = get_settings().bcrypt_rounds if rounds is None else rounds
        # Same cost as real hashes so a missing row takes as long as a mismatch.
        self._dummy_hash = hash_password("market_timing_dummy", rounds=self._rounds)

    def set_credentials(self, user_id: str, password: str, *denylist: str) -> None:
        """Validate and store a new password for `user_id`.

        Raises ValidationError when the password policy rejects it and
        StoreError when the hash could not be written.
        """
        validate(password, *denylist)
        password_hash = hash_password(password, rounds=self._rounds)
        try:
            affected = self._store.upsert_credentials(user_id, password_hash)
        except SQLAlchemyError as exc:
            raise StoreError(f"error setting a credential for user {user_id!r}") from exc
        if affected == 0:
            raise StoreError(f"error setting a credential for user {user_id!r}: no rows affected")

    def check_password(self, user_id: str, password: str) -> None:
        """Return None if `password` is the user's password.

        Raises EmptyPasswordError for empty input and PasswordTooLongError for
        oversized input (both before any hashing), WrongPasswordError on
        mismatch or when no password is set, and StoreError when the lookup
        itself failed.
        """
        if not password:
            raise EmptyPasswordError("password is empty")
        if len(password) > MAX_PASSWORD_LENGTH:
            raise PasswordTooLongError("password is longer than acceptable")

        try:
            credential = self._store.get_credentials(user_id)
        except SQLAlchemyError as exc:
            logger.error("cannot check password for user %s: %s", user_id, exc)
            raise StoreError("cannot check password") from exc

        if credential is None:
            verify_password(password, self._dummy_hash)
            raise WrongPasswordError()
        try:
            matched = verify_password(password, credential.password_hash)
        except ValueError as exc:
            logger.error("cannot compare password for user %s: %s", user_id, exc)
            raise WrongPasswordError() from None
        if not matched:
            raise WrongPasswordError()

    def burn(self, password: str) -> None:
        """Spend one bcrypt comparison without looking anything up.

        For callers that reject a login before reaching check_password()
        (unknown email) and must not answer faster than a real mismatch.
        """
        if password and len(password) <= MAX_PASSWORD_LENGTH:
            verify_password(password, self._dummy_hash)
