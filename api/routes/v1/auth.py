"""
api/routes/v1/auth.py -- Authentication and account REST endpoints.

Routes:
  POST /api/v1/auth/login                  -- password login; issues a new session cookie
  POST /api/v1/auth/logout                 -- closes the session chain; clears cookie
  GET  /api/v1/auth/me                     -- current user and session info (requires auth)
  POST /api/v1/auth/password               -- change password; revokes the old chain (requires auth)
  POST /api/v1/auth/users                  -- create user with password (admin only)
  POST /api/v1/auth/sessions/close-expired -- sweep expired sessions (admin only)

Security:
  Login answers "unknown email" and "wrong password" with the same generic
  401 bad_credentials, and burns one bcrypt comparison for unknown emails so
  both paths cost the same.
  Login never reuses the anonymous session's sticky ID (session fixation);
  SessionStore.login() issues a new chain and retires the old one.
  Cache-Control: no-store on every response that sets a session cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordChange,
    SweepResponse,
    UserCreate,
    UserResponse,
)
from auth.accounts import Accounts, NewUserParams
from auth.credentials import CredentialManager
from auth.dependencies import get_current_user, get_session, require_admin
from auth.errors import AuthenticationError, UserNotFoundError
from auth.models import Session, User
from auth.sessions import SessionStore
from auth.tokens import clear_session_cookie

logger = logging.getLogger("market.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:                  public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:                 public -- anonymous logout is a no-op
# - GET  /api/v1/auth/me:                     requires auth (get_current_user)
# - POST /api/v1/auth/password:               requires auth (get_current_user)
# - POST /api/v1/auth/users:                  requires admin (require_admin)
# - POST /api/v1/auth/sessions/close-expired: requires admin (require_admin)
router = APIRouter()


def _bad_credentials() -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content=ErrorResponse(
            error=ErrorDetail(code="bad_credentials", message="Invalid email or password.")
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    session: Session = Depends(get_session),
):
    """Authenticate with email and password; replace the session cookie.

    The request's current session (usually anonymous) is handed to
    SessionStore.login() as `previous` so it expires after the grace period.
    """
    accounts: Accounts = request.app.state.accounts
    credentials: CredentialManager = request.app.state.credentials
    sessions: SessionStore = request.app.state.sessions

    try:
        user = accounts.get_user_by_email(body.email)
    except UserNotFoundError:
        credentials.burn(body.password)
        logger.info("login failed: unknown email")
        return _bad_credentials()
    try:
        credentials.check_password(user.user_id, body.password)
    except AuthenticationError as exc:
        logger.info("login failed for user %s: %s", user.user_id, exc)
        return _bad_credentials()

    new_session = sessions.login(response, user.user_id, remember_me=body.remember_me, previous=session)
    response.headers["Cache-Control"] = "no-store"
    logger.info("user %s logged in (remember_me=%s)", user.user_id, body.remember_me)
    return LoginResponse(
        user_id=user.user_id,
        name=user.name,
        access=user.access,
        remember_me=new_session.remember_me,
        expires_at=new_session.expire,
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, response: Response, session: Session = Depends(get_session)) -> MessageResponse:
    """Revoke every session ID of the current chain and clear the cookie."""
    sessions: SessionStore = request.app.state.sessions
    if not session.anonymous:
        sessions.close(session.sticky_id)
        logger.info("user %s logged out", session.user_id)
    clear_session_cookie(response, sessions.cookie_name, sessions.secure_cookies)
    response.headers["Cache-Control"] = "no-store"
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(session: Session = Depends(get_session), current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.user_id,
        name=current_user.name,
        email=current_user.email,
        access=current_user.access,
        remember_me=session.remember_me,
        session_expires_at=session.expire,
    )


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    response: Response,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    """Change the current user's password and start a fresh session chain.

    The old chain is closed outright (no grace period): anyone holding one of
    its cookies must log in again with the new password.
    """
    credentials: CredentialManager = request.app.state.credentials
    sessions: SessionStore = request.app.state.sessions

    credentials.check_password(current_user.user_id, body.current_password)
    credentials.set_credentials(
        current_user.user_id,
        body.new_password,
        current_user.name,
        current_user.email,
        current_user.email.partition("@")[0],
    )
    sessions.close(session.sticky_id)
    sessions.login(response, current_user.user_id, remember_me=session.remember_me)
    response.headers["Cache-Control"] = "no-store"
    logger.info("user %s changed password", current_user.user_id)
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate, admin: User = Depends(require_admin)) -> UserResponse:
    """Create an account with a password. Admin only."""
    accounts: Accounts = request.app.state.accounts
    user_id = accounts.new_user_with_password(
        NewUserParams(name=body.name, email=body.email, access=body.access),
        body.password,
    )
    logger.info("admin %s created user %s", admin.user_id, user_id)
    user = accounts.get_user_by_id(user_id)
    return UserResponse(
        user_id=user.user_id,
        name=user.name,
        email=user.email,
        access=user.access,
        created_at=user.created_at,
    )


@router.post("/auth/sessions/close-expired", response_model=SweepResponse)
def close_expired_sessions(request: Request, admin: User = Depends(require_admin)) -> SweepResponse:
    """Mark every active session past its expiration as expired. Admin only."""
    sessions: SessionStore = request.app.state.sessions
    return SweepResponse(closed=sessions.close_expired())
