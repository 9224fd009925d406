"""
BountyHub - Session Management

Server-side session registry. One session per login (device/browser);
a user may hold many at once.

Security:
- Session ids are generated here, never client-supplied
- Absolute lifetime is fixed at creation; refresh bumps last_seen only
- Logout deactivates and forces expires_at to now, so any in-flight check
  fails immediately
- is_live() must be applied on every authorization path, in addition to
  token verification
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session as DBSession, select

from bountyhub.auth.database import execute_and_commit, run_store
from bountyhub.auth.device import DeviceInfo
from bountyhub.auth.models import RefreshToken, Session, new_id, utcnow
from bountyhub.config import settings


async def create_session(
    db: DBSession,
    user_id: str,
    user_agent: str = "",
    ip_address: Optional[str] = None,
    device: Optional[DeviceInfo] = None,
    location: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> Session:
    """
    Create a new server-side session.

    Args:
        db: Database session
        user_id: User's unique identifier
        user_agent: Raw client user-agent
        ip_address: Client IP for audit
        device: Parsed device metadata (advisory)
        location: Coarse location (advisory)
        expires_delta: Override the configured session lifetime

    Returns:
        Created Session object (active, last_seen = now)
    """
    now = utcnow()
    session = Session(
        id=new_id(),
        user_id=user_id,
        user_agent=(user_agent or "")[:512],
        device_os=device.os if device else None,
        device_browser=device.browser if device else None,
        device_type=device.device if device else None,
        ip_address=ip_address,
        location=location,
        is_active=True,
        created_at=now,
        last_seen=now,
        expires_at=now + (expires_delta or timedelta(days=settings.SESSION_EXPIRE_DAYS)),
    )

    def _insert() -> None:
        db.add(session)
        db.commit()
        db.refresh(session)

    await run_store(db, "create_session", _insert)

    return session


async def get_session(db: DBSession, session_id: str) -> Optional[Session]:
    """Load a session by id, always reading current row state."""
    statement = (
        select(Session)
        .where(Session.id == session_id)
        .execution_options(populate_existing=True)
    )
    return await run_store(db, "get_session", lambda: db.exec(statement).first())


def is_live(session: Optional[Session], now: Optional[datetime] = None) -> bool:
    """A session authorizes requests only while active and unexpired."""
    if session is None:
        return False
    return bool(session.is_active) and session.expires_at > (now or utcnow())


async def touch_session(db: DBSession, session_id: str) -> bool:
    """
    Record activity on a session (called on every successful refresh).

    Never extends expires_at.
    """
    statement = (
        update(Session)
        .where(Session.id == session_id)
        .values(last_seen=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "touch_session", lambda: execute_and_commit(db, statement))
    return result.rowcount > 0


async def deactivate_session(db: DBSession, session_id: str) -> bool:
    """
    Invalidate a session (logout).

    Returns:
        True if the session existed
    """
    statement = (
        update(Session)
        .where(Session.id == session_id)
        .values(is_active=False, expires_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "deactivate_session", lambda: execute_and_commit(db, statement))
    return result.rowcount > 0


async def deactivate_all_user_sessions(db: DBSession, user_id: str) -> int:
    """
    Invalidate all live sessions for a user (logout everywhere).

    Returns:
        Number of sessions invalidated
    """
    now = utcnow()
    statement = (
        update(Session)
        .where(
            Session.user_id == user_id,
            Session.is_active == True,  # noqa: E712
            Session.expires_at > now,
        )
        .values(is_active=False, expires_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "deactivate_user_sessions", lambda: execute_and_commit(db, statement))
    return result.rowcount


async def list_sessions_for_user(db: DBSession, user_id: str) -> List[Session]:
    """
    Get all live sessions for a user, most recently seen first.
    """
    statement = (
        select(Session)
        .where(
            Session.user_id == user_id,
            Session.is_active == True,  # noqa: E712
            Session.expires_at > utcnow(),
        )
        .order_by(Session.last_seen.desc())
        .execution_options(populate_existing=True)
    )
    return await run_store(db, "list_sessions", lambda: list(db.exec(statement).all()))


async def terminate_session(
    db: DBSession,
    session_id: str,
    requesting_user_id: str,
    allow_any: bool = False,
) -> Optional[Session]:
    """
    Delete a session outright ("log out this other device").

    Ownership is checked unless allow_any is set (administrators). The
    session's refresh hash row goes with it.

    Returns:
        The deleted session, or None if not found / not owned
    """
    session = await get_session(db, session_id)
    if session is None:
        return None
    if session.user_id != requesting_user_id and not allow_any:
        return None

    def _delete() -> None:
        db.exec(delete(RefreshToken).where(RefreshToken.session_id == session_id))
        db.exec(delete(Session).where(Session.id == session_id))
        db.commit()
        if session in db:
            db.expunge(session)

    await run_store(db, "terminate_session", _delete)

    return session


async def cleanup_expired_sessions(db: DBSession) -> int:
    """
    Mark all expired sessions as inactive.

    Should be run periodically (see scripts/cleanup_tokens.py).

    Returns:
        Number of sessions cleaned up
    """
    statement = (
        update(Session)
        .where(Session.is_active == True, Session.expires_at < utcnow())  # noqa: E712
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    result = await run_store(db, "cleanup_expired_sessions", lambda: execute_and_commit(db, statement))
    return result.rowcount
