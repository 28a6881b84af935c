"""
auth/tokens.py -- Session identifiers, password hashing, and cookie helpers.

Security design decisions:
  Session IDs: 256 bytes from the OS CSPRNG per fresh session. The first 64
       bytes form the sticky ID, shared by every rotation of one session chain;
       the remaining 192 bytes are regenerated on each rotation, which limits
       how long a replayed cookie stays useful (a forward-secrecy-like
       property). The sticky ID exists for bulk revocation and auditing and
       must never be used to establish identity on its own.

       Wire format: base64url without padding, "<86 chars>,<256 chars>",
       343 characters total. SessionStore rejects any other length before
       touching the database.

       If the random source fails we raise RandomnessError. There is no
       fallback: a predictable session ID defeats every other control.

  Passwords: bcrypt, used directly (no passlib wrapper). bcrypt only looks at
       the first 72 bytes and bcrypt>=5 rejects longer inputs, while we accept
       128 characters of any script. The password is therefore pre-hashed to
       a fixed 44-byte base64(SHA-256) string before bcrypt sees it.

  Cookie: HttpOnly, Secure, SameSite=Lax, Path=/. Strict would drop the
       session on every link from another site (including payment provider
       redirects). Expires is only set for "remember me" sessions; otherwise
       the cookie lives for the browser session while the server-side row
       still expires after 30 days.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import RandomnessError

if TYPE_CHECKING:
    from starlette.responses import Response

    from auth.models import Session

SESSION_ID_BYTES = 256
STICKY_ID_BYTES = 64
STICKY_ID_LENGTH = 86  # base64url(64 bytes), unpadded
SESSION_ID_LENGTH = 343  # sticky + "," + base64url(192 bytes)

_USER_ID_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUWVXYZabcdefghijkmnopqrstuwvxyz"  # base58
_USER_ID_LENGTH = 11

# ---------------------------------------------------------------------------
# Randomness
# ---------------------------------------------------------------------------


def _random_bytes(size: int) -> bytes:
    try:
        return secrets.token_bytes(size)
    except (OSError, NotImplementedError) as exc:
        raise RandomnessError("secure random source unavailable") from exc


def _encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decoded_len(encoded_len: int) -> int:
    # Bytes carried by an unpadded base64 string of this length.
    return encoded_len * 6 // 8


# ---------------------------------------------------------------------------
# Session and user identifiers
# ---------------------------------------------------------------------------


def new_session_id() -> tuple[str, str]:
    """Return (session_id, sticky_id) for a brand new session chain."""
    raw = _random_bytes(SESSION_ID_BYTES)
    sticky = _encode(raw[:STICKY_ID_BYTES])
    return f"{sticky},{_encode(raw[STICKY_ID_BYTES:])}", sticky


def regenerate_session_id(sticky_id: str) -> str:
    """Return a new session ID that keeps `sticky_id` and rotates the rest."""
    rotating = _random_bytes(SESSION_ID_BYTES - _decoded_len(len(sticky_id)))
    return f"{sticky_id},{_encode(rotating)}"


def new_user_id() -> str:
    """Return an 11-character base58 user ID."""
    try:
        return "".join(secrets.choice(_USER_ID_ALPHABET) for _ in range(_USER_ID_LENGTH))
    except (OSError, NotImplementedError) as exc:
        raise RandomnessError("secure random source unavailable") from exc


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Raises ValueError if `hashed` is not a usable bcrypt hash. That is a data
    problem, not a wrong password, and callers log it.
    """
    return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, session: Session, cookie_name: str, secure: bool = True) -> None:
    """Write the session ID cookie on a Starlette/FastAPI response."""
    response.set_cookie(
        cookie_name,
        value=session.id,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
        expires=session.expire if session.remember_me else None,
    )


def clear_session_cookie(response: Response, cookie_name: str, secure: bool = True) -> None:
    """Tell the browser to drop the session cookie.

    Browsers ignore a deletion for a __Host- cookie unless it carries the same
    Secure/Path attributes, so they are repeated here.
    """
    response.delete_cookie(cookie_name, path="/", secure=secure, httponly=True, samesite="lax")
