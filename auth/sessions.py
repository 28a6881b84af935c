"""
auth/sessions.py -- HTTP session lifecycle: read, rotate, login, close, sweep.

Every request starts without a session. read() turns the session cookie into
a valid Session, creating or rotating as needed:

  no cookie / wrong length / unknown ID / expired / closed
      -> new anonymous session, Set-Cookie
  valid and created less than SESSION_RENEWAL_SECONDS ago
      -> returned unchanged
  valid and older
      -> rotated: new row with the same sticky ID, user and remember-me
         flag, Set-Cookie

Lookup errors are logged and treated as "no session": the visitor gets a
fresh anonymous session rather than either an error page or a session we
could not verify.

login() never reuses the visitor's current sticky ID (session fixation). The
superseded session is not closed on the spot; a background task shortens its
life to LOGIN_GRACE_SECONDS so requests already in flight with the old cookie
still succeed. Rotation does the same for the row it replaces unless
EXPIRE_SUPERSEDED_ON_ROTATE is turned off, in which case that row lives until
its own expiration.

close() revokes a whole chain by sticky ID (logout, password change);
close_expired() is the periodic sweep that moves time-expired rows to state
'expired'. Neither is scheduled from here.

See https://cheatsheetseries.owasp.org/cheatsheets/Session_Management_Cheat_Sheet.html
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import FatalError, StoreError
from auth.models import Session
from auth.tokens import SESSION_ID_LENGTH, new_session_id, regenerate_session_id, set_session_cookie
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from starlette.responses import Response

logger = logging.getLogger("market.sessions")


class SessionBackend(Protocol):
    """Storage operations SessionStore needs. auth.store.AuthStore implements it."""

    def get_session(self, session_id: str) -> Session | None: ...

    def insert_session(self, session: Session) -> None: ...

    def expire_session_at(self, session_id: str, until: datetime, now: datetime) -> int: ...

    def close_sticky(self, sticky_id: str) -> int: ...

    def close_user(self, user_id: str) -> int: ...

    def close_expired(self, now: datetime) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _tag(sticky_id: str) -> str:
    # Enough of the sticky ID to correlate log lines, not enough to matter.
    return sticky_id[:8]


class SessionStore:
    """Session state machine over a SessionBackend.

    `clock` returns the current timezone-aware UTC time; tests inject a fake.
    Set-Cookie headers are written on the `response` passed to read() and
    login(); any object with Starlette's set_cookie() signature works.
    """

    def __init__(
        self,
        backend: SessionBackend,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._backend = backend
        self._clock = clock
        self.cookie_name = settings.session_cookie_name
        self.secure_cookies = settings.secure_cookies
        self._renewal = timedelta(seconds=settings.session_renewal_seconds)
        self._ephemeral = timedelta(days=settings.ephemeral_session_days)
        self._persistent = timedelta(days=settings.persistent_session_days)
        self._grace = timedelta(seconds=settings.login_grace_seconds)
        self._task_timeout = settings.background_task_timeout_seconds
        self._expire_on_rotate = settings.expire_superseded_on_rotate
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="session-expiry")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------

    def read(self, cookie: str | None, response: Response) -> Session:
        """Return a valid session for the request carrying `cookie`.

        Raises StoreError only when a new session cannot be persisted, and
        RandomnessError when no session ID can be generated.
        """
        now = self._clock()
        session: Session | None = None
        if cookie and len(cookie) == SESSION_ID_LENGTH:
            try:
                session = self._backend.get_session(cookie)
            except FatalError:
                raise
            except Exception as exc:
                # Unreachable store or an unreadable row: treat as no session.
                logger.warning("failed to get session from database: %s", exc)

        if session is None or not session.is_valid(now):
            return self._start(response, self._make_session(now))

        if not session.needs_renewal(now, self._renewal):
            return session

        renewed = self._make_session(
            now,
            session_id=regenerate_session_id(session.sticky_id),
            sticky_id=session.sticky_id,
            user_id=session.user_id,
            remember_me=session.remember_me,
        )
        try:
            self._start(response, renewed)
        except StoreError as exc:
            logger.warning("failed to renew session %s: %s", _tag(session.sticky_id), exc.__cause__ or exc)
            return session
        if self._expire_on_rotate:
            self._schedule_expiry(session, reason="rotation")
        return renewed

    def login(
        self,
        response: Response,
        user_id: str,
        remember_me: bool = False,
        previous: Session | None = None,
    ) -> Session:
        """Issue a brand new session chain for `user_id`.

        `previous` is the session the request arrived with; it is given a
        short grace period and then expires.
        """
        if not user_id:
            raise ValueError("user_id is required to log in")
        session = self._make_session(self._clock(), user_id=user_id, remember_me=remember_me)
        self._start(response, session)
        if previous is not None:
            self._schedule_expiry(previous, reason=f"login of user {user_id!r}")
        return session

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def close(self, sticky_id: str) -> int:
        """Expire every session ID of a chain. Returns rows changed."""
        try:
            return self._backend.close_sticky(sticky_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"error closing session {_tag(sticky_id)}") from exc

    def close_user(self, user_id: str) -> int:
        """Expire every active session of a user, across all chains."""
        try:
            return self._backend.close_user(user_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"error closing sessions of user {user_id!r}") from exc

    def close_expired(self) -> int:
        """Mark active sessions past their expiration as expired. Returns the count.

        Safe to run repeatedly and concurrently; a second run finds nothing.
        """
        try:
            closed = self._backend.close_expired(self._clock())
        except SQLAlchemyError as exc:
            raise StoreError("error closing expired sessions") from exc
        logger.info("closed %d expired sessions", closed)
        return closed

    # ------------------------------------------------------------------
    # Background expiry of superseded sessions
    # ------------------------------------------------------------------

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued background expiries. Returns False on timeout."""
        with self._pending_lock:
            pending = set(self._pending)
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _schedule_expiry(self, session: Session, reason: str) -> None:
        try:
            future = self._executor.submit(self._expire_superseded, session, reason, time.monotonic())
        except RuntimeError:
            logger.warning(
                "cannot schedule expiry of session %s after %s: executor stopped", _tag(session.sticky_id), reason
            )
            return
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _expire_superseded(self, session: Session, reason: str, queued_at: float) -> None:
        waited = time.monotonic() - queued_at
        if waited > self._task_timeout:
            logger.warning(
                "dropped expiry of session %s after %s: queued for %.1fs", _tag(session.sticky_id), reason, waited
            )
            return
        now = self._clock()
        try:
            self._backend.expire_session_at(session.id, now + self._grace, now)
        except Exception:
            logger.exception("cannot expire session %s after %s", _tag(session.sticky_id), reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _make_session(
        self,
        now: datetime,
        session_id: str | None = None,
        sticky_id: str | None = None,
        user_id: str = "",
        remember_me: bool = False,
    ) -> Session:
        if session_id is None or sticky_id is None:
            session_id, sticky_id = new_session_id()
        return Session(
            id=session_id,
            sticky_id=sticky_id,
            created_at=now,
            expire=now + (self._persistent if remember_me else self._ephemeral),
            user_id=user_id,
            remember_me=remember_me,
        )

    def _start(self, response: Response, session: Session) -> Session:
        try:
            self._backend.insert_session(session)
        except SQLAlchemyError as exc:
            raise StoreError("cannot save session") from exc
        set_session_cookie(response, session, self.cookie_name, self.secure_cookies)
        return session
