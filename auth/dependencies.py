"""
auth/dependencies.py -- FastAPI Depends() helpers for the request session and user.

The session middleware (api/main.py) resolves the session cookie once per
request through SessionStore.read() and stores the result on
request.state.session. Everything downstream reads it through these typed
accessors rather than poking at request.state directly.

get_session() always returns a Session (anonymous or not).
try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.accounts import Accounts
from auth.errors import UserNotFoundError
from auth.models import Session, User


def session_from_request(request: Request) -> Session | None:
    """Return the session resolved by the session middleware, if any."""
    return getattr(request.state, "session", None)


def get_session(request: Request) -> Session:
    """Return the current request's session.

    Raises RuntimeError if the session middleware did not run for this path,
    which is a wiring bug rather than a client error.
    """
    session = session_from_request(request)
    if session is None:
        raise RuntimeError(f"no session resolved for {request.url.path}; is the session middleware installed?")
    return session


def try_get_current_user(request: Request) -> User | None:
    """Return the logged-in User, or None for anonymous sessions.

    A session pointing at a user that no longer exists is treated as
    anonymous. The lookup result is cached on request.state.
    """
    if hasattr(request.state, "user"):
        return request.state.user
    user: User | None = None
    session = session_from_request(request)
    if session is not None and not session.anonymous:
        accounts: Accounts = request.app.state.accounts
        try:
            user = accounts.get_user_by_id(session.user_id)
        except UserNotFoundError:
            user = None
    request.state.user = user
    return user


def get_current_user(request: Request) -> User:
    """Require a logged-in user. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require the admin flag. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
