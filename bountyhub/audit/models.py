"""
BountyHub - Audit Models

Actions recorded by the authentication core, and the read model returned
by the audit API.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Security-relevant events written by the auth core."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    REFRESH_REUSE_DETECTED = "REFRESH_REUSE_DETECTED"
    LOGOUT = "LOGOUT"
    LOGOUT_ALL = "LOGOUT_ALL"
    SESSION_TERMINATED = "SESSION_TERMINATED"


class AuditEvent(BaseModel):
    """
    Represents a single audit log entry.

    All fields are immutable after creation.
    """
    event_id: str = Field(..., description="UUID for the event")
    seq: int
    action: AuditAction
    entity_type: str = "USER"
    entity_id: str
    user_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    hash: str = Field(..., description="SHA-256 hash of event")
    prev_hash: str = Field(..., description="Hash of previous event")
    created_at: datetime
