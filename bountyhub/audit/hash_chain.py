"""
BountyHub - Hash Chain for Audit Integrity

Implements cryptographic hash chaining for tamper-evident audit logs.
Each audit row stores the hash of itself + the previous row's hash.

Verification:
- Any modification to a stored column breaks the chain
- Chain integrity can be verified by recomputing hashes in seq order
- Detects insertions, deletions, and modifications

Algorithm: SHA-256
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from sqlmodel import Session as DBSession, select

from bountyhub.auth.models import AuditLog


GENESIS_LABEL = "GENESIS|bountyhub-audit"


class ChainVerificationResult(BaseModel):
    """Result of audit chain verification."""
    is_valid: bool
    event_count: int
    genesis_hash: str
    final_hash: Optional[str] = None
    broken_at: Optional[str] = Field(
        None,
        description="Audit row ID where the chain broke, if invalid"
    )


def compute_genesis_hash() -> str:
    """Hash that the first row of the chain links to."""
    return hashlib.sha256(GENESIS_LABEL.encode()).hexdigest()


def compute_event_hash(
    event_id: str,
    seq: int,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Dict[str, Any],
    ip_address: Optional[str],
    user_agent: Optional[str],
    created_at: datetime,
    prev_hash: str,
) -> str:
    """
    Compute SHA-256 hash for an audit row.

    Every persisted column except the hash itself is covered. Fields are
    serialized as one JSON array (details with sorted keys) so free-text
    values such as the user agent cannot shift into a neighbouring field.

    Returns:
        Hex-encoded SHA-256 hash
    """
    content = json.dumps(
        [
            event_id,
            seq,
            action,
            entity_type,
            entity_id,
            user_id,
            details or {},
            ip_address,
            user_agent,
            created_at.isoformat(),
            prev_hash,
        ],
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(content.encode()).hexdigest()


def hash_row(row: AuditLog, prev_hash: str) -> str:
    """Hash of a stored or about-to-be-stored audit row linked to prev_hash."""
    return compute_event_hash(
        event_id=row.id,
        seq=row.seq,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        user_id=row.user_id,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        prev_hash=prev_hash,
    )


def get_chain_head(db: DBSession) -> tuple[int, str]:
    """
    Get (seq, hash) of the most recent row for chain linking.

    Returns:
        (0, genesis hash) if the log is empty
    """
    statement = select(AuditLog).order_by(AuditLog.seq.desc()).limit(1)
    row = db.exec(statement).first()
    if row:
        return row.seq, row.hash
    return 0, compute_genesis_hash()


def verify_chain(db: DBSession) -> ChainVerificationResult:
    """
    Verify the integrity of the whole audit chain.

    Recomputes all hashes in seq order and verifies they match stored values.
    """
    genesis = compute_genesis_hash()
    rows = db.exec(select(AuditLog).order_by(AuditLog.seq.asc())).all()

    prev_hash = genesis
    for row in rows:
        expected = hash_row(row, prev_hash)
        if row.prev_hash != prev_hash or row.hash != expected:
            return ChainVerificationResult(
                is_valid=False,
                event_count=len(rows),
                genesis_hash=genesis,
                broken_at=row.id,
            )
        prev_hash = row.hash

    return ChainVerificationResult(
        is_valid=True,
        event_count=len(rows),
        genesis_hash=genesis,
        final_hash=prev_hash if rows else None,
    )
