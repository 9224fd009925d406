"""
BountyHub - Audit Sink

Append-only, hash-chained audit log of authentication events.

Writes go through a dedicated database session so an audit failure can
never roll back or fail the operation being audited: record() logs the
problem and returns False.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session as DBSession, select
from starlette.concurrency import run_in_threadpool

from bountyhub.audit.hash_chain import get_chain_head, hash_row
from bountyhub.audit.models import AuditAction, AuditEvent
from bountyhub.auth.device import ClientInfo
from bountyhub.auth.models import AuditLog, new_id, utcnow
from bountyhub.logging import get_logger


logger = get_logger(__name__)

# Concurrent writers can race for the same seq; the unique constraint decides.
_MAX_APPEND_ATTEMPTS = 3


class AuditSink:
    """
    Records security events to the audit_logs table.

    Args:
        session_factory: Callable returning a new database session
    """

    def __init__(self, session_factory: Callable[[], DBSession]):
        self._session_factory = session_factory

    async def record(
        self,
        action: AuditAction,
        user_id: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        client: Optional[ClientInfo] = None,
    ) -> bool:
        """
        Append one audit event. Fire-and-forget.

        The append runs on the threadpool so a slow audit store never holds
        the event loop.

        Returns:
            True if the row was written, False if writing failed
        """
        payload = json.loads(json.dumps(details or {}, default=str))
        return await run_in_threadpool(self._append, action, user_id, entity_id, payload, client)

    def _append(
        self,
        action: AuditAction,
        user_id: str,
        entity_id: Optional[str],
        payload: Dict[str, Any],
        client: Optional[ClientInfo],
    ) -> bool:
        for attempt in range(1, _MAX_APPEND_ATTEMPTS + 1):
            db = self._session_factory()
            try:
                seq, prev_hash = get_chain_head(db)
                row = AuditLog(
                    id=new_id(),
                    seq=seq + 1,
                    action=AuditAction(action).value,
                    entity_type="USER",
                    entity_id=str(entity_id or user_id),
                    user_id=str(user_id),
                    details=payload,
                    ip_address=client.ip_address if client else None,
                    user_agent=client.user_agent[:256] if client else None,
                    created_at=utcnow(),
                    prev_hash=prev_hash,
                    hash="",
                )
                row.hash = hash_row(row, prev_hash)
                db.add(row)
                db.commit()
                logger.info("audit_event_recorded", action=row.action, user_id=row.user_id)
                return True
            except IntegrityError:
                db.rollback()
                logger.warning("audit_chain_contention", action=str(action), attempt=attempt)
            except (SQLAlchemyError, ValueError) as exc:
                db.rollback()
                logger.error("audit_write_failed", action=str(action), user_id=str(user_id), exc_info=exc)
                return False
            finally:
                db.close()

        logger.error("audit_write_failed", action=str(action), user_id=str(user_id), reason="contention")
        return False

    def list_events(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Most recent events first, optionally filtered."""
        db = self._session_factory()
        try:
            statement = select(AuditLog)
            if user_id:
                statement = statement.where(AuditLog.user_id == user_id)
            if action:
                statement = statement.where(AuditLog.action == AuditAction(action).value)
            statement = statement.order_by(AuditLog.seq.desc()).limit(limit)
            return [
                AuditEvent(
                    event_id=row.id,
                    seq=row.seq,
                    action=row.action,
                    entity_type=row.entity_type,
                    entity_id=row.entity_id,
                    user_id=row.user_id,
                    details=row.details,
                    ip_address=row.ip_address,
                    hash=row.hash,
                    prev_hash=row.prev_hash,
                    created_at=row.created_at,
                )
                for row in db.exec(statement).all()
            ]
        finally:
            db.close()
