"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, near-zero logic). Stores and
services do the work; the only methods here are predicates over a single
record's own fields.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class SessionState(str, Enum):
    # active -> expired only; nothing transitions back.
    ACTIVE = "active"
    EXPIRED = "expired"


class SessionType(str, Enum):
    PERSISTENT = "persistent"  # "remember me": 365 days, cookie with Expires
    EPHEMERAL = "ephemeral"  # 30 days server-side, browser-session cookie


class Access(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass
class Session:
    """One row of the http_sessions table.

    id is "<sticky_id>,<rotating>". Every rotation of one continuous session
    chain inserts a new row with the same sticky_id, so closing a chain is a
    single UPDATE by sticky_id.

    user_id is "" for anonymous visitors.
    """

    id: str
    sticky_id: str
    created_at: datetime
    expire: datetime
    state: SessionState = SessionState.ACTIVE
    user_id: str = ""
    remember_me: bool = False

    @property
    def anonymous(self) -> bool:
        return self.user_id == ""

    @property
    def type(self) -> SessionType:
        return SessionType.PERSISTENT if self.remember_me else SessionType.EPHEMERAL

    def is_valid(self, now: datetime) -> bool:
        return self.state == SessionState.ACTIVE and not now > self.expire

    def needs_renewal(self, now: datetime, threshold: timedelta) -> bool:
        return not now < self.created_at + threshold


@dataclass
class User:
    """A customer or administrator account.

    Authorization is a binary flag: access is either "user" or "admin".
    """

    user_id: str
    name: str
    email: str
    access: Access = Access.USER
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.access == Access.ADMIN


@dataclass
class Credential:
    """Stored password hash for a user. One row per user, upserted."""

    user_id: str
    password_hash: str
    updated_at: datetime | None = None
