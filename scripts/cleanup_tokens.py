"""
BountyHub - Expired Credential Cleanup

Clears refresh-token hashes past their stored expiry and deactivates
sessions past their absolute lifetime. Meant for a cron job.

Usage:
    python -m scripts.cleanup_tokens
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from bountyhub.config import settings
from bountyhub.auth.database import get_engine, get_session_factory, init_db
from bountyhub.auth.sessions import cleanup_expired_sessions
from bountyhub.auth.tokens import cleanup_expired_tokens
from bountyhub.logging import get_logger


logger = get_logger("scripts.cleanup_tokens")


async def cleanup(database_url: str = None) -> dict:
    engine = get_engine(database_url or settings.DATABASE_URL)
    init_db(engine)
    db = get_session_factory(engine)()
    try:
        tokens = await cleanup_expired_tokens(db)
        sessions = await cleanup_expired_sessions(db)
    finally:
        db.close()
        engine.dispose()

    logger.info("cleanup_complete", refresh_tokens=tokens, sessions=sessions)
    return {"refresh_tokens": tokens, "sessions": sessions}


if __name__ == "__main__":
    counts = asyncio.run(cleanup())
    print(f"Cleared {counts['refresh_tokens']} expired refresh tokens")
    print(f"Deactivated {counts['sessions']} expired sessions")
