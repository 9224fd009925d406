"""
BountyHub - Database Seed Script

Creates development accounts: an admin, a researcher and an organization
that is still awaiting approval (inactive).

Usage:
    python -m scripts.seed_users
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlmodel import Session, select

from bountyhub.config import settings
from bountyhub.auth.database import get_engine, init_db
from bountyhub.auth.models import User, Role, utcnow
from bountyhub.auth.password import hash_password


DEV_USERS = [
    # email, password, role, active
    ("admin@bountyhub.local", "Admin@Bounty2024", Role.ADMIN, True),
    ("researcher@bountyhub.local", "Research@2024", Role.RESEARCHER, True),
    ("org@bountyhub.local", "Organization@2024", Role.ORGANIZATION, False),
]


def seed_users(database_url: str = None) -> int:
    """
    Insert any missing development users.

    Returns:
        Number of users created
    """
    engine = get_engine(database_url or settings.DATABASE_URL)
    init_db(engine)

    created = 0
    with Session(engine) as session:
        for email, password, role, active in DEV_USERS:
            existing = session.exec(select(User).where(User.email == email)).first()
            if existing:
                print(f"User {email} already exists.")
                continue

            now = utcnow()
            session.add(User(
                email=email,
                password_hash=hash_password(password),
                role=role,
                is_active=active,
                terms_accepted=True,
                terms_accepted_at=now,
                created_at=now,
                updated_at=now,
            ))
            created += 1
            status = "active" if active else "pending approval"
            print(f"Created user: {email} ({role.value}, {status})")

        session.commit()

    engine.dispose()
    return created


if __name__ == "__main__":
    print("=" * 50)
    print("BountyHub - User Seed Script")
    print("=" * 50)

    seed_users()

    print()
    print("Done!")
