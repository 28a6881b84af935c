"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_credential / _row_to_session are the mappers.
Services and routes never touch SQL directly.

Tables:
  users              -- one row per account
  users_credentials  -- one bcrypt hash per user (upserted)
  http_sessions      -- one row per issued session ID. Rotation inserts a new
                        row sharing sticky_id; rows are never deleted here,
                        only moved from state 'active' to 'expired'.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision, "+00:00" suffix), so string comparison in SQL orders them
chronologically on every backend.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.models import Access, Credential, Session, SessionState, SessionType, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("user_id", String(11), primary_key=True),
    Column("name", String(150), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("access", String(10), nullable=False, server_default=Access.USER.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_credentials = Table(
    "users_credentials",
    _metadata,
    Column("user_id", String(11), primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "http_sessions",
    _metadata,
    Column("id", String(343), primary_key=True),
    Column("sticky_id", String(86), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expiration", String(32), nullable=False),
    Column("state", String(10), nullable=False),
    Column("user_id", String(11), nullable=False, server_default=""),  # "" = anonymous
    Column("type", String(12), nullable=False),  # "persistent" | "ephemeral"
    Index("ix_http_sessions_sticky_id", "sticky_id"),
    Index("ix_http_sessions_user_id", "user_id"),
    # close_expired() scans active rows by expiration.
    Index("ix_http_sessions_state_expiration", "state", "expiration"),
)

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by the writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, credentials and HTTP sessions.

    Implements the SessionBackend protocol consumed by auth.sessions.SessionStore.

    Usage:
        store = AuthStore("sqlite:///market_auth.db")
        store.insert_session(session)
        session = store.get_session(session.id)
        store.close()
    """

    def __init__(self, db_url: str | None = None, timeout_seconds: float | None = None) -> None:
        settings = get_settings()
        db_url = db_url or settings.database_url
        timeout = settings.database_timeout_seconds if timeout_seconds is None else timeout_seconds
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        elif db_url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> None:
        """Round-trip a trivial query. Raises SQLAlchemyError when unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> None:
        """Insert a new user.

        Raises sqlalchemy.exc.IntegrityError if the user_id or email already
        exists. Callers turn that into a domain error.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    user_id=user.user_id,
                    name=user.name,
                    email=user.email,
                    access=user.access.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.user_id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact email address. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def upsert_credentials(self, user_id: str, password_hash: str) -> int:
        """Insert or replace the password hash for a user. Returns rows affected.

        Uses the database's own conflict resolution, so two concurrent password
        changes for the same user cannot both insert; the last write wins.
        """
        dialect = self.engine.dialect.name
        if dialect not in _UPSERT_INSERTS:
            raise NotImplementedError(f"credential upsert is not supported on {dialect!r}")
        stmt = _UPSERT_INSERTS[dialect](_credentials).values(
            user_id=user_id,
            password_hash=password_hash,
            updated_at=_now_iso(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_credentials.c.user_id],
            set_={
                "password_hash": stmt.excluded.password_hash,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.engine.connect() as conn:
            result = conn.execute(stmt)
            conn.commit()
        return result.rowcount

    def get_credentials(self, user_id: str) -> Credential | None:
        with self.engine.connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.user_id == user_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Session | None:
        """Look up a session row by its full ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id).limit(1)).fetchone()
        return _row_to_session(row) if row is not None else None

    def insert_session(self, session: Session) -> None:
        """Insert a new session row. Raises IntegrityError on a duplicate ID."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    sticky_id=session.sticky_id,
                    created_at=_iso(session.created_at),
                    expiration=_iso(session.expire),
                    state=session.state.value,
                    user_id=session.user_id,
                    type=session.type.value,
                )
            )
            conn.commit()

    def expire_session_at(self, session_id: str, until: datetime, now: datetime) -> int:
        """Move an active, unexpired session's expiration to `until`.

        Rows that already expired (by time or state) are left alone, so this
        can only ever shorten a live session, never revive a dead one.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.expiration > _iso(now))
                    & (_sessions.c.state == SessionState.ACTIVE.value)
                )
                .values(expiration=_iso(until))
            )
            conn.commit()
        return result.rowcount

    def close_sticky(self, sticky_id: str) -> int:
        """Mark every row of a session chain expired. Returns rows affected."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.sticky_id == sticky_id) & (_sessions.c.state == SessionState.ACTIVE.value))
                .values(state=SessionState.EXPIRED.value)
            )
            conn.commit()
        return result.rowcount

    def close_user(self, user_id: str) -> int:
        """Mark every active session of a user expired. Returns rows affected."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.state == SessionState.ACTIVE.value))
                .values(state=SessionState.EXPIRED.value)
            )
            conn.commit()
        return result.rowcount

    def close_expired(self, now: datetime) -> int:
        """Mark active rows whose expiration has passed as expired.

        A single UPDATE guarded by state = 'active': running it twice, or from
        two processes at once, never counts a row more than once.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.state == SessionState.ACTIVE.value) & (_sessions.c.expiration < _iso(now)))
                .values(state=SessionState.EXPIRED.value)
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        name=row.name,
        email=row.email,
        access=Access(row.access),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        user_id=row.user_id,
        password_hash=row.password_hash,
        updated_at=_parse(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        sticky_id=row.sticky_id,
        created_at=_parse(row.created_at),
        expire=_parse(row.expiration),
        state=SessionState(row.state),
        user_id=row.user_id,
        remember_me=row.type == SessionType.PERSISTENT.value,
    )
