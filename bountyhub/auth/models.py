"""
BountyHub - Authentication Database Models

SQLModel-based models for users, sessions, refresh tokens and the audit log.
Uses PostgreSQL for production, SQLite for local development.

Security:
- Passwords stored as bcrypt hashes only
- Refresh tokens stored as SHA-256 hashes only, one live hash per session
- Sessions are server-controlled for immediate revocation
- All timestamps are naive UTC
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Boolean, DateTime, Integer, JSON, Enum as SQLEnum


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Opaque identifier for users, sessions and audit rows."""
    return str(uuid4())


class Role(str, Enum):
    """
    User roles.

    Role is fixed at registration; login routes assert one of these.
    """
    RESEARCHER = "RESEARCHER"
    ORGANIZATION = "ORGANIZATION"
    ADMIN = "ADMIN"


class User(SQLModel, table=True):
    """
    User account for authentication.

    Attributes:
        id: Unique identifier (UUIDv4 string)
        email: Login identifier (unique, indexed)
        password_hash: bcrypt hash; None means no local credential
        role: RESEARCHER, ORGANIZATION or ADMIN
        is_active: Inactive users cannot login (organizations await approval)
        last_login: Updated on each successful login
        terms_accepted: Whether terms were accepted at registration
    """
    __tablename__ = "users"

    id: str = Field(
        default_factory=new_id,
        sa_column=Column(String(36), primary_key=True),
        description="Unique user identifier"
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
        description="User email address (login identifier)"
    )
    username: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), unique=True, nullable=True),
    )
    first_name: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    password_hash: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
        description="bcrypt password hash"
    )
    role: Role = Field(
        sa_column=Column(SQLEnum(Role), nullable=False, default=Role.RESEARCHER),
        description="User role"
    )
    is_active: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, default=True),
        description="Whether user can authenticate"
    )
    last_login: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    terms_accepted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    terms_accepted_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    )


class Session(SQLModel, table=True):
    """
    Server-side session, one per login (device/browser).

    Access and refresh tokens carry the session id; a session that is
    inactive or past expires_at never authorizes anything, whatever the
    token says. Device fields are advisory only.
    """
    __tablename__ = "sessions"

    id: str = Field(
        default_factory=new_id,
        sa_column=Column(String(36), primary_key=True),
        description="Unique session identifier"
    )
    user_id: str = Field(
        foreign_key="users.id",
        index=True,
        description="Reference to user"
    )
    user_agent: str = Field(default="", sa_column=Column(String(512), nullable=False, default=""))
    device_os: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    device_browser: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    device_type: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(45), nullable=True))
    location: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    last_seen: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))


class RefreshToken(SQLModel, table=True):
    """
    Persisted shadow of the session's current refresh token.

    Exactly one row per session. Rotation overwrites token_hash, so a
    superseded token can never match again. Invalidation nulls the hash.

    Attributes:
        session_id: Owning session (primary key)
        user_id: Token subject
        token_hash: SHA-256 of the issued token string (never plaintext)
        expires_at: Persisted expiry, checked independently of the JWT exp
        rotation_count: Number of successful rotations on this session
    """
    __tablename__ = "refresh_tokens"

    session_id: str = Field(
        sa_column=Column(String(36), primary_key=True),
        description="Reference to session"
    )
    user_id: str = Field(foreign_key="users.id", index=True)
    token_hash: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    issued_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True, index=True))
    rotation_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))


class AuditLog(SQLModel, table=True):
    """
    Append-only audit record of a security-relevant event.

    Rows are hash-chained: hash = SHA-256(row fields + prev_hash).
    """
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=new_id, sa_column=Column(String(36), primary_key=True))
    seq: Optional[int] = Field(default=None, sa_column=Column(Integer, unique=True, nullable=False))
    action: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    entity_type: str = Field(default="USER", sa_column=Column(String(32), nullable=False))
    entity_id: str = Field(sa_column=Column(String(64), nullable=False))
    user_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(45), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(256), nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))
    prev_hash: str = Field(sa_column=Column(String(64), nullable=False))
    hash: str = Field(sa_column=Column(String(64), nullable=False))
