"""
BountyHub - Password Hashing Utilities

Password hashing using bcrypt.
Work factor comes from settings and defaults to 12.

Security:
- Never log or expose plaintext passwords
- bcrypt includes salt automatically
- Comparison is constant-time (bcrypt.checkpw)
- Supports hash upgrades on login
"""

import bcrypt
from starlette.concurrency import run_in_threadpool

from bountyhub.config import settings


def _work_factor() -> int:
    return settings.BCRYPT_WORK_FACTOR


def hash_password(password: str, work_factor: int = None) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plaintext password
        work_factor: Override the configured bcrypt cost

    Returns:
        bcrypt hash string (includes salt)

    Example:
        >>> hashed = hash_password("Abc12345!")
        >>> hashed.startswith("$2b$")
        True
    """
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=work_factor or _work_factor())
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against a bcrypt hash.

    Returns:
        True if password matches, False otherwise (including malformed hashes)
    """
    try:
        password_bytes = plain_password.encode("utf-8")
        hashed_bytes = hashed_password.encode("utf-8")
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except (ValueError, TypeError, AttributeError):
        # Invalid hash format
        return False


async def hash_password_async(password: str, work_factor: int = None) -> str:
    return await run_in_threadpool(hash_password, password, work_factor)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    """Run the (deliberately slow) bcrypt comparison off the event loop."""
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


def needs_rehash(hashed_password: str, target_work_factor: int = None) -> bool:
    """
    Check if a password hash needs to be upgraded.

    Args:
        hashed_password: Existing bcrypt hash
        target_work_factor: Desired work factor (defaults to settings)

    Returns:
        True if hash should be regenerated
    """
    target = target_work_factor or _work_factor()
    try:
        # bcrypt hash format: $2b$XX$...
        _, work_factor_str, _ = hashed_password.split("$")[1:4]
        return int(work_factor_str) < target
    except (ValueError, IndexError, AttributeError):
        return True

