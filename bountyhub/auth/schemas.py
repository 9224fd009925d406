"""
BountyHub - Authentication Request/Response Schemas

Pydantic models for API request validation and response serialization.
Separates API contracts from database models.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")


class LoginRequest(BaseModel):
    """Request body for POST /auth/login/{role}."""
    email: str = Field(..., max_length=255, description="User email address")
    password: str = Field(..., min_length=8, max_length=128, description="User password")

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        """Basic email format validation (allows .local for development)."""
        v = v.strip()
        if not _EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v.lower()


class UserSummary(BaseModel):
    id: str
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str

    model_config = ConfigDict(from_attributes=True)


class DeviceSummary(BaseModel):
    os: str
    browser: str
    device: str


class SessionSummary(BaseModel):
    id: str
    device: DeviceSummary
    location: Optional[str] = None
    created_at: datetime
    expires_at: datetime


class LoginResponse(BaseModel):
    """Response body for successful login. The refresh token travels in a cookie."""
    token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Seconds until token expires")
    user: UserSummary
    session: SessionSummary


class RefreshResponse(BaseModel):
    """Response body for token refresh."""
    token: str
    token_type: str = "bearer"
    expires_in: int


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout (optional)."""
    all_sessions: bool = Field(
        default=False,
        description="Invalidate all sessions (logout everywhere)"
    )


class LogoutResponse(BaseModel):
    """Response body for logout."""
    message: str = Field(default="Logged out")
    sessions_invalidated: int = Field(default=1)


class UserResponse(BaseModel):
    """Response body for GET /auth/me."""
    id: str
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionInfo(BaseModel):
    """Session information for user display."""
    session_id: str
    device_os: Optional[str] = None
    device_browser: Optional[str] = None
    device_type: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime
    last_seen: datetime
    expires_at: datetime
    is_current: bool = False


class ActiveSessionsResponse(BaseModel):
    """Response body for GET /auth/sessions."""
    sessions: list[SessionInfo]
    total: int


class TerminateSessionResponse(BaseModel):
    message: str = "Session terminated"
    session_id: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
