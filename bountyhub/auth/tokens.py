"""
BountyHub - JWT Token Management

Issues and verifies the two token kinds bound to a server-side session:

- Access tokens: short-lived, stateless. Claims: sub (user id), role,
  sid (session id), type="access", jti, iat, exp.
- Refresh tokens: long-lived. Claims: sub, sid, type="refresh", jti, iat,
  exp. A SHA-256 hash of the issued string is persisted per session; only
  the most recently issued token for a session can ever match it.

Security:
- The type claim is checked on both sides so neither kind can stand in for
  the other
- Refresh rotation is a single conditional UPDATE on the stored hash, so two
  concurrent refreshes with the same token have at most one winner
- Persisted expiry is enforced independently of the JWT exp claim
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import update
from sqlmodel import Session as DBSession, select

from bountyhub.auth.database import execute_and_commit, run_store
from bountyhub.auth.errors import (
    TokenExpired,
    TokenMalformed,
    Unauthenticated,
    UserInactive,
    UserNotFound,
    WrongTokenKind,
)
from bountyhub.auth.models import RefreshToken, User, utcnow
from bountyhub.config import require_signing_secret, settings
from bountyhub.logging import get_logger


logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class AccessTokenPayload(BaseModel):
    """
    Access token claims.

    Attributes:
        sub: Subject (user ID)
        role: User role at issuance
        sid: Session ID for server-side validation
        jti: Unique token ID for audit correlation
    """
    sub: str = Field(..., description="User ID")
    role: str = Field(..., description="User role")
    sid: str = Field(..., description="Session ID")
    type: str = Field(..., description="Token kind")
    jti: str = Field(..., description="Token ID for audit")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")


class RefreshTokenPayload(BaseModel):
    """Refresh token claims."""
    sub: str
    sid: str
    type: str
    jti: str
    exp: datetime
    iat: datetime


@dataclass
class IssuedRefreshToken:
    token: str
    expires_at: datetime


def _encode(claims: Dict[str, Any]) -> str:
    return jwt.encode(
        claims,
        require_signing_secret(settings),
        algorithm=settings.JWT_ALGORITHM,
    )


def _decode(token: str) -> Dict[str, Any]:
    """Verify signature and exp, mapping jose failures onto the error taxonomy."""
    secret = require_signing_secret(settings)
    if not token or not isinstance(token, str):
        raise TokenMalformed()
    try:
        return jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenMalformed() from exc


def hash_token(token: str) -> str:
    """One-way hash stored in place of the refresh token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def get_token_expiry_seconds() -> int:
    """Get access token lifetime in seconds for responses."""
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


# =============================================================================
# Access tokens
# =============================================================================

def create_access_token(
    user_id: str,
    role: str,
    session_id: str,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, str]:
    """
    Create a new JWT access token.

    Args:
        user_id: User's unique identifier
        role: User's role
        session_id: Server-side session identifier
        expires_delta: Optional custom lifetime

    Returns:
        Tuple of (encoded JWT string, token ID)

    Raises:
        ConfigurationError: No signing secret configured
    """
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    token_id = secrets.token_hex(16)

    payload = {
        "sub": str(user_id),
        "role": str(role),
        "sid": str(session_id),
        "type": ACCESS_TOKEN_TYPE,
        "jti": token_id,
        "exp": expire,
        "iat": now,
    }

    return _encode(payload), token_id


def verify_access_token(token: str) -> AccessTokenPayload:
    """
    Verify and decode an access token. Never consults the store.

    Raises:
        TokenExpired: Past exp
        TokenMalformed: Bad signature, structure or missing claims
        WrongTokenKind: Valid token whose type is not "access"
    """
    claims = _decode(token)

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise WrongTokenKind()

    try:
        return AccessTokenPayload(**claims)
    except ValidationError as exc:
        raise TokenMalformed() from exc


def decode_unverified(token: str) -> Dict[str, str]:
    """
    Read sub/sid claims without verifying the signature.

    Only used to learn which session a refresh token claims to belong to;
    verify_refresh_token does the real check afterwards.
    """
    if not token or not isinstance(token, str):
        raise TokenMalformed()
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise TokenMalformed() from exc

    sub, sid = claims.get("sub"), claims.get("sid")
    if not isinstance(sub, str) or not isinstance(sid, str):
        raise TokenMalformed()
    return {"sub": sub, "sid": sid, "type": claims.get("type")}


# =============================================================================
# Refresh tokens
# =============================================================================

def decode_refresh_token(token: str) -> RefreshTokenPayload:
    claims = _decode(token)
    if claims.get("type") != REFRESH_TOKEN_TYPE:
        raise WrongTokenKind()
    try:
        return RefreshTokenPayload(**claims)
    except ValidationError as exc:
        raise TokenMalformed() from exc


def _load_refresh_record(db: DBSession, session_id: str) -> Optional[RefreshToken]:
    statement = (
        select(RefreshToken)
        .where(RefreshToken.session_id == session_id)
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


def _load_user(db: DBSession, user_id: str) -> Optional[User]:
    statement = (
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


async def issue_refresh_token(
    db: DBSession,
    user_id: str,
    session_id: str,
    previous_token: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> IssuedRefreshToken:
    """
    Sign a refresh token and persist its hash against the session.

    Without previous_token the stored hash is overwritten unconditionally
    (login). With previous_token the overwrite only happens if the stored
    hash still equals hash(previous_token) and has not expired; this
    compare-and-swap is one UPDATE statement.

    Raises:
        UserNotFound / UserInactive: Subject cannot use a refresh token
        Unauthenticated: previous_token was already rotated away (lost race)
        StoreError: Persistence failure
    """
    user = await run_store(db, "load_user", lambda: _load_user(db, user_id))
    if user is None:
        raise UserNotFound()
    if not user.is_active:
        raise UserInactive()

    now = utcnow()
    expires_at = now + (expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))

    token = _encode({
        "sub": str(user_id),
        "sid": str(session_id),
        "type": REFRESH_TOKEN_TYPE,
        "jti": secrets.token_hex(16),
        "exp": expires_at,
        "iat": now,
    })
    token_hash = hash_token(token)

    if previous_token is None:
        def _upsert() -> None:
            record = _load_refresh_record(db, session_id)
            if record is None:
                record = RefreshToken(session_id=session_id, user_id=user_id)
            record.user_id = user_id
            record.token_hash = token_hash
            record.expires_at = expires_at
            record.issued_at = now
            db.add(record)
            db.commit()

        await run_store(db, "store_refresh_hash", _upsert)
        return IssuedRefreshToken(token=token, expires_at=expires_at)

    statement = (
        update(RefreshToken)
        .where(
            RefreshToken.session_id == session_id,
            RefreshToken.user_id == user_id,
            RefreshToken.token_hash == hash_token(previous_token),
            RefreshToken.expires_at > now,
        )
        .values(
            token_hash=token_hash,
            expires_at=expires_at,
            issued_at=now,
            rotation_count=RefreshToken.rotation_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "rotate_refresh_hash", lambda: execute_and_commit(db, statement))

    if result.rowcount != 1:
        logger.warning("refresh_rotation_lost", session_id=session_id, user_id=user_id)
        raise Unauthenticated("refresh_rotation_conflict")

    return IssuedRefreshToken(token=token, expires_at=expires_at)


async def verify_refresh_token(
    db: DBSession,
    token: str,
    expected_user_id: str,
    expected_session_id: str,
) -> bool:
    """
    Check a presented refresh token against the stored state.

    Returns False (never raises) for every expected rejection: bad
    signature/exp/kind, subject or session mismatch, missing or cleared
    hash, inactive user, persisted expiry passed, hash mismatch.
    Store failures still raise StoreError.
    """
    try:
        payload = decode_refresh_token(token)
    except (TokenExpired, TokenMalformed, WrongTokenKind) as exc:
        logger.warning("refresh_token_rejected", reason=exc.reason, session_id=expected_session_id)
        return False

    if payload.sub != expected_user_id or payload.sid != expected_session_id:
        logger.warning("refresh_token_rejected", reason="claims_mismatch", session_id=expected_session_id)
        return False

    user, record = await run_store(
        db,
        "load_refresh_hash",
        lambda: (_load_user(db, expected_user_id), _load_refresh_record(db, expected_session_id)),
    )

    if user is None or not user.is_active:
        logger.warning("refresh_token_rejected", reason="user_unavailable", session_id=expected_session_id)
        return False

    if record is None or record.token_hash is None or record.user_id != expected_user_id:
        logger.warning("refresh_token_rejected", reason="no_stored_hash", session_id=expected_session_id)
        return False

    if record.expires_at is None or record.expires_at <= utcnow():
        logger.warning("refresh_token_rejected", reason="stored_expiry_passed", session_id=expected_session_id)
        return False

    if not hmac.compare_digest(record.token_hash, hash_token(token)):
        logger.warning("refresh_token_rejected", reason="hash_mismatch", session_id=expected_session_id)
        return False

    return True


async def is_superseded(db: DBSession, token: str, session_id: str) -> bool:
    """
    True when a correctly signed refresh token for this session no longer
    matches the live stored hash, i.e. it was rotated away and is being
    replayed. Forged, expired or already-invalidated tokens are not
    "superseded".
    """
    try:
        payload = decode_refresh_token(token)
    except (TokenExpired, TokenMalformed, WrongTokenKind):
        return False
    if payload.sid != session_id:
        return False

    record = await run_store(db, "load_refresh_hash", lambda: _load_refresh_record(db, session_id))
    if record is None or record.token_hash is None:
        return False
    return not hmac.compare_digest(record.token_hash, hash_token(token))


async def invalidate_refresh_token(db: DBSession, user_id: str, session_id: str) -> bool:
    """
    Clear the stored hash/expiry for a session. Used at logout and when a
    replayed token forces the rotation chain to end.

    Returns:
        True if a live hash was cleared
    """
    statement = (
        update(RefreshToken)
        .where(
            RefreshToken.session_id == session_id,
            RefreshToken.user_id == user_id,
            RefreshToken.token_hash.is_not(None),
        )
        .values(token_hash=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "invalidate_refresh_hash", lambda: execute_and_commit(db, statement))
    return result.rowcount > 0


async def invalidate_user_refresh_tokens(db: DBSession, user_id: str) -> int:
    """Clear every stored refresh hash for a user (logout everywhere)."""
    statement = (
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.token_hash.is_not(None))
        .values(token_hash=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "invalidate_user_refresh_hashes", lambda: execute_and_commit(db, statement))
    return result.rowcount


async def cleanup_expired_tokens(db: DBSession) -> int:
    """
    Clear stored hashes whose persisted expiry has passed.

    Idempotent; safe to run on a schedule.

    Returns:
        Number of hashes cleared
    """
    statement = (
        update(RefreshToken)
        .where(RefreshToken.expires_at < utcnow(), RefreshToken.token_hash.is_not(None))
        .values(token_hash=None, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "cleanup_expired_tokens", lambda: execute_and_commit(db, statement))
    logger.info("expired_refresh_tokens_cleared", count=result.rowcount)
    return result.rowcount
