"""
tests/helpers.py -- Constants and small helpers shared by the test modules.

Fixtures live in conftest.py; plain functions and values that test modules
import directly live here.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from http.cookies import SimpleCookie

from core.config import Settings

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
COOKIE_NAME = "__Host-Market-SID"

STRONG_PASSWORD = "QmzPkav-7He9ldUb!s"
ADMIN_EMAIL = "admin@market.test"
ADMIN_PASSWORD = STRONG_PASSWORD
USER_EMAIL = "shopper@market.test"
USER_PASSWORD = "Tr0ub4dor&3-horse"


class FrozenClock:
    """Callable clock that only moves when advance() is called."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secure_cookies": True,
        "session_cookie_name": COOKIE_NAME,
        "bcrypt_rounds": 4,
        "session_sweep_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


def cookie_value(header: str) -> str:
    """Return the (unquoted) value of a single Set-Cookie header."""
    jar = SimpleCookie()
    jar.load(header)
    (morsel,) = jar.values()
    return morsel.value


def session_cookies(response) -> list[str]:
    """Set-Cookie headers for the session cookie on a Starlette or httpx response."""
    headers = response.headers
    values = headers.get_list("set-cookie") if hasattr(headers, "get_list") else headers.getlist("set-cookie")
    return [h for h in values if h.startswith(f"{COOKIE_NAME}=")]
