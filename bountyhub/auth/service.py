"""
BountyHub - Login / Refresh / Logout Orchestration

The per-credential state machine:

    Anonymous --login--> Authenticated(session)
    Authenticated --refresh--> Authenticated (pair rotated)
    Authenticated --logout--> LoggedOut

Expected rejections raise AuthError subclasses (rendered as small JSON
bodies by the app's exception handler). Persistence failures raise
StoreError. Within one call the store writes are sequential: the session
exists before any token referencing it is issued.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlmodel import Session as DBSession, select

from bountyhub.audit.models import AuditAction
from bountyhub.audit.sink import AuditSink
from bountyhub.auth import sessions as session_service
from bountyhub.auth import tokens as token_service
from bountyhub.auth.database import run_store
from bountyhub.auth.device import ClientInfo, DeviceInfo
from bountyhub.auth.errors import (
    AccountInactive,
    InvalidCredentials,
    InvalidTokenError,
    NotFound,
    PendingApproval,
    SessionExpired,
    Unauthenticated,
)
from bountyhub.auth.models import Role, Session, User, utcnow
from bountyhub.auth.password import hash_password_async, needs_rehash, verify_password_async
from bountyhub.config import settings
from bountyhub.logging import get_logger


logger = get_logger(__name__)


@dataclass
class Identity:
    """Resolved caller, as attached to the request by the auth dependency."""
    user_id: str
    role: Role
    session_id: str


@dataclass
class LoginResult:
    access_token: str
    token_id: str
    refresh_token: str
    refresh_expires_at: datetime
    user: User
    session: Session
    device: DeviceInfo = field(default_factory=DeviceInfo)


@dataclass
class RefreshResult:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    session_id: str


async def _find_user_by_email(db: DBSession, email: str) -> Optional[User]:
    statement = (
        select(User)
        .where(User.email == email.strip().lower())
        .execution_options(populate_existing=True)
    )
    return await run_store(db, "find_user_by_email", lambda: db.exec(statement).first())


async def _find_user_by_id(db: DBSession, user_id: str) -> Optional[User]:
    statement = (
        select(User)
        .where(User.id == user_id)
        .execution_options(populate_existing=True)
    )
    return await run_store(db, "find_user_by_id", lambda: db.exec(statement).first())


async def login(
    db: DBSession,
    audit: AuditSink,
    email: str,
    password: str,
    expected_role: Role,
    client: Optional[ClientInfo] = None,
) -> LoginResult:
    """
    Authenticate with email/password for a specific role route.

    Raises:
        InvalidCredentials: Unknown email, role mismatch, no password hash,
            or wrong password (indistinguishable to the caller)
        PendingApproval: Inactive ORGANIZATION account
        AccountInactive: Any other inactive account
    """
    client = client or ClientInfo()
    user = await _find_user_by_email(db, email)

    if user is None:
        logger.warning("login_failed", reason="user_not_found", role=expected_role.value)
        raise InvalidCredentials("user_not_found")

    if user.role != expected_role:
        logger.warning(
            "login_failed",
            reason="role_mismatch",
            user_id=user.id,
            expected=expected_role.value,
            actual=user.role.value,
        )
        raise InvalidCredentials("role_mismatch")

    if not user.is_active:
        if user.role == Role.ORGANIZATION:
            logger.warning("login_failed", reason="pending_approval", user_id=user.id)
            raise PendingApproval()
        logger.warning("login_failed", reason="account_inactive", user_id=user.id)
        raise AccountInactive()

    password_ok = bool(user.password_hash) and await verify_password_async(password, user.password_hash)
    if not password_ok:
        reason = "invalid_password" if user.password_hash else "no_password_hash"
        logger.warning("login_failed", reason=reason, user_id=user.id)
        await audit.record(
            AuditAction.LOGIN_FAILED,
            user_id=user.id,
            entity_id=user.id,
            details={"reason": reason, "role": expected_role.value},
            client=client,
        )
        raise InvalidCredentials(reason)

    upgraded_hash = None
    if needs_rehash(user.password_hash):
        upgraded_hash = await hash_password_async(password)

    def _record_login() -> None:
        user.last_login = utcnow()
        if upgraded_hash:
            user.password_hash = upgraded_hash
        db.add(user)
        db.commit()
        db.refresh(user)

    await run_store(db, "update_last_login", _record_login)

    device = client.device
    session = await session_service.create_session(
        db,
        user_id=user.id,
        user_agent=client.user_agent,
        ip_address=client.ip_address,
        device=device,
        location=client.location,
    )

    access_token, token_id = token_service.create_access_token(
        user_id=user.id,
        role=user.role.value,
        session_id=session.id,
    )
    issued = await token_service.issue_refresh_token(db, user.id, session.id)

    await audit.record(
        AuditAction.LOGIN_SUCCESS,
        user_id=user.id,
        entity_id=user.id,
        details={
            "session_id": session.id,
            "token_id": token_id,
            "device": device.device,
        },
        client=client,
    )
    logger.info("login_succeeded", user_id=user.id, session_id=session.id, role=user.role.value)

    return LoginResult(
        access_token=access_token,
        token_id=token_id,
        refresh_token=issued.token,
        refresh_expires_at=issued.expires_at,
        user=user,
        session=session,
        device=device,
    )


async def refresh(
    db: DBSession,
    audit: AuditSink,
    refresh_token: Optional[str],
    client: Optional[ClientInfo] = None,
) -> RefreshResult:
    """
    Exchange a refresh token for a new access/refresh pair.

    The presented token is single-use: on success its stored hash is
    overwritten, so presenting it again fails at the hash comparison.

    Raises:
        Unauthenticated: Missing/malformed/superseded token, unknown or
            inactive user
        SessionExpired: Session inactive or past expiry
    """
    client = client or ClientInfo()

    if not refresh_token:
        raise Unauthenticated("missing_refresh_token")

    try:
        claims = token_service.decode_unverified(refresh_token)
    except InvalidTokenError as exc:
        logger.warning("refresh_failed", reason=exc.reason)
        raise Unauthenticated(exc.reason) from exc

    user_id, session_id = claims["sub"], claims["sid"]

    session = await session_service.get_session(db, session_id)
    if not session_service.is_live(session) or session.user_id != user_id:
        logger.warning("refresh_failed", reason="session_expired", session_id=session_id)
        raise SessionExpired()

    if not await token_service.verify_refresh_token(db, refresh_token, user_id, session_id):
        await _handle_refresh_rejection(db, audit, refresh_token, user_id, session_id, client)
        raise Unauthenticated("refresh_token_rejected")

    user = await _find_user_by_id(db, user_id)
    if user is None or not user.is_active:
        logger.warning("refresh_failed", reason="user_unavailable", user_id=user_id)
        raise Unauthenticated("user_unavailable")

    await session_service.touch_session(db, session_id)

    access_token, token_id = token_service.create_access_token(
        user_id=user.id,
        role=user.role.value,
        session_id=session_id,
    )
    issued = await token_service.issue_refresh_token(
        db, user.id, session_id, previous_token=refresh_token
    )

    await audit.record(
        AuditAction.TOKEN_REFRESH,
        user_id=user.id,
        entity_id=user.id,
        details={"session_id": session_id, "token_id": token_id},
        client=client,
    )
    logger.info("token_refreshed", user_id=user.id, session_id=session_id)

    return RefreshResult(
        access_token=access_token,
        refresh_token=issued.token,
        refresh_expires_at=issued.expires_at,
        session_id=session_id,
    )


async def _handle_refresh_rejection(
    db: DBSession,
    audit: AuditSink,
    refresh_token: str,
    user_id: str,
    session_id: str,
    client: ClientInfo,
) -> None:
    """
    A correctly signed refresh token for a live session that no longer
    matches the stored hash has been rotated away: somebody is replaying it.
    End the rotation chain so neither holder can continue.
    """
    if not await token_service.is_superseded(db, refresh_token, session_id):
        return

    logger.warning("refresh_reuse_detected", user_id=user_id, session_id=session_id)
    if settings.REFRESH_REUSE_REVOKES_SESSION:
        await token_service.invalidate_refresh_token(db, user_id, session_id)
    await audit.record(
        AuditAction.REFRESH_REUSE_DETECTED,
        user_id=user_id,
        entity_id=user_id,
        details={
            "session_id": session_id,
            "revoked": settings.REFRESH_REUSE_REVOKES_SESSION,
        },
        client=client,
    )


async def logout(
    db: DBSession,
    audit: AuditSink,
    identity: Optional[Identity],
    all_sessions: bool = False,
    client: Optional[ClientInfo] = None,
) -> int:
    """
    End the caller's session (or every session of the caller).

    Idempotent: with no resolved identity this is a successful no-op.

    Returns:
        Number of sessions invalidated
    """
    if identity is None:
        return 0

    client = client or ClientInfo()

    if all_sessions:
        count = await session_service.deactivate_all_user_sessions(db, identity.user_id)
        await token_service.invalidate_user_refresh_tokens(db, identity.user_id)
        await audit.record(
            AuditAction.LOGOUT_ALL,
            user_id=identity.user_id,
            entity_id=identity.user_id,
            details={"sessions_invalidated": count},
            client=client,
        )
        logger.info("logout_all", user_id=identity.user_id, sessions=count)
        return count

    await session_service.deactivate_session(db, identity.session_id)
    await token_service.invalidate_refresh_token(db, identity.user_id, identity.session_id)
    await audit.record(
        AuditAction.LOGOUT,
        user_id=identity.user_id,
        entity_id=identity.user_id,
        details={"session_id": identity.session_id},
        client=client,
    )
    logger.info("logout", user_id=identity.user_id, session_id=identity.session_id)
    return 1


async def terminate_session(
    db: DBSession,
    audit: AuditSink,
    identity: Identity,
    session_id: str,
    allow_any: bool = False,
    client: Optional[ClientInfo] = None,
) -> Session:
    """
    Delete one of the caller's sessions ("log out this other device").
    With allow_any (granted by RBAC to administrators) any session may go.

    Raises:
        NotFound: No such session, or it belongs to someone else
    """
    removed = await session_service.terminate_session(
        db,
        session_id,
        requesting_user_id=identity.user_id,
        allow_any=allow_any,
    )
    if removed is None:
        raise NotFound("session_not_found", "Session not found")

    await audit.record(
        AuditAction.SESSION_TERMINATED,
        user_id=identity.user_id,
        entity_id=removed.user_id,
        details={"session_id": session_id, "target_user_id": removed.user_id},
        client=client,
    )
    return removed
