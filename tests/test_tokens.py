"""
tests/test_tokens.py -- Unit tests for identifiers, password hashing and cookie helpers.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from starlette.responses import Response

from auth import tokens
from auth.errors import FatalError, RandomnessError
from auth.models import Session
from auth.tokens import (
    SESSION_ID_LENGTH,
    STICKY_ID_LENGTH,
    clear_session_cookie,
    hash_password,
    new_session_id,
    new_user_id,
    regenerate_session_id,
    set_session_cookie,
    verify_password,
)
from tests.helpers import COOKIE_NAME, cookie_value, session_cookies

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestSessionIds:
    def test_shape(self) -> None:
        session_id, sticky = new_session_id()
        assert len(session_id) == SESSION_ID_LENGTH == 343
        assert len(sticky) == STICKY_ID_LENGTH == 86
        assert session_id.count(",") == 1
        assert session_id.split(",")[0] == sticky

    def test_unique(self) -> None:
        ids = {new_session_id()[0] for _ in range(10_000)}
        assert len(ids) == 10_000

    def test_regenerate_keeps_sticky(self) -> None:
        session_id, sticky = new_session_id()
        renewed = regenerate_session_id(sticky)
        assert renewed != session_id
        assert renewed.startswith(sticky + ",")
        assert len(renewed) == SESSION_ID_LENGTH

    def test_random_source_failure_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(size: int) -> bytes:
            raise OSError("no entropy")

        monkeypatch.setattr(tokens.secrets, "token_bytes", broken)
        with pytest.raises(RandomnessError) as exc:
            new_session_id()
        assert isinstance(exc.value, FatalError)


class TestUserIds:
    def test_base58(self) -> None:
        user_id = new_user_id()
        assert len(user_id) == 11
        assert not set(user_id) & set("0OIl")


class TestPasswordHashing:
    def test_round_trip(self) -> None:
        hashed = hash_password("correct horse battery", rounds=4)
        assert hashed.startswith("$2")
        assert verify_password("correct horse battery", hashed)
        assert not verify_password("correct horse batter", hashed)

    def test_long_passwords_differ_past_72_bytes(self) -> None:
        """bcrypt alone truncates at 72 bytes; the pre-hash keeps the tail significant."""
        base = "x" * 100
        hashed = hash_password(base + "a", rounds=4)
        assert not verify_password(base + "b", hashed)

    def test_malformed_hash_raises(self) -> None:
        with pytest.raises(ValueError):
            verify_password("anything", "not-a-bcrypt-hash")


class TestCookies:
    def _session(self, remember_me: bool) -> Session:
        session_id, sticky = new_session_id()
        return Session(
            id=session_id,
            sticky_id=sticky,
            created_at=NOW,
            expire=NOW + timedelta(days=365 if remember_me else 30),
            remember_me=remember_me,
        )

    def test_ephemeral_cookie_has_no_expires(self) -> None:
        session = self._session(remember_me=False)
        response = Response()
        set_session_cookie(response, session, COOKIE_NAME)
        (header,) = session_cookies(response)
        lowered = header.lower()
        assert cookie_value(header) == session.id
        assert "expires=" not in lowered
        assert "httponly" in lowered
        assert "secure" in lowered
        assert "path=/" in lowered
        assert "samesite=lax" in lowered

    def test_persistent_cookie_expires_with_session(self) -> None:
        session = self._session(remember_me=True)
        response = Response()
        set_session_cookie(response, session, COOKIE_NAME)
        (header,) = session_cookies(response)
        assert "expires=" in header.lower()
        assert str(session.expire.year) in header

    def test_insecure_cookie(self) -> None:
        response = Response()
        set_session_cookie(response, self._session(remember_me=False), "Market-SID", secure=False)
        (header,) = response.headers.getlist("set-cookie")
        assert "secure" not in header.lower()

    def test_clear_cookie(self) -> None:
        response = Response()
        clear_session_cookie(response, COOKIE_NAME)
        (header,) = session_cookies(response)
        assert "max-age=0" in header.lower()
        assert "secure" in header.lower()
