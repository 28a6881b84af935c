"""
API request and response models for Market REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password fields are only length-capped here. The real policy lives in
auth.passwords.validate() so the CLI and the API enforce the same rules.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Access
from auth.passwords import MAX_PASSWORD_LENGTH

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    # An empty password is rejected by CredentialManager with a user-facing
    # message, so min_length is not enforced here.
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    remember_me: bool = False


class LoginResponse(BaseModel):
    """Returned on successful login. The session itself travels in the cookie."""

    user_id: str
    name: str
    access: Access
    remember_me: bool
    expires_at: datetime


class MeResponse(BaseModel):
    user_id: str
    name: str
    email: str
    access: Access
    remember_me: bool
    session_expires_at: datetime


class PasswordChange(BaseModel):
    current_password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    new_password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)


class UserCreate(BaseModel):
    """Admin-only request body for POST /api/v1/auth/users."""

    name: str = Field(..., min_length=1, max_length=150)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    access: Access = Access.USER


class UserResponse(BaseModel):
    user_id: str
    name: str
    email: str
    access: Access
    created_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    message: str


class SweepResponse(BaseModel):
    closed: int
