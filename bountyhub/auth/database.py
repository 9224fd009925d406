"""
BountyHub - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development).

The engine is created once at startup and handed to components explicitly
(app.state.db_session_factory); nothing in the auth core holds a
module-level connection.

Usage:
    from bountyhub.auth.database import get_engine, init_db

    engine = get_engine()
    init_db(engine)  # Creates tables
"""

from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine
from starlette.concurrency import run_in_threadpool

from bountyhub.auth.errors import StoreError
from bountyhub.config import settings
from bountyhub.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


def get_database_url() -> str:
    """
    Get database URL from settings.

    Returns:
        PostgreSQL or SQLite connection string
    """
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    # Default to SQLite for local development
    return "sqlite:///./bountyhub.db"


def get_engine(database_url: str = None, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.

    Args:
        database_url: Override database URL
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite"):
        # In-memory databases exist per connection, so every session must share one
        in_memory = url in ("sqlite://", "sqlite:///:memory:")
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            **({"poolclass": StaticPool} if in_memory else {}),
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

    return engine


def init_db(engine) -> None:
    """
    Initialize database tables.

    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Import models to register them with SQLModel
    from bountyhub.auth.models import User, Session, RefreshToken, AuditLog  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session_factory(engine) -> Callable[[], Session]:
    """
    Create a session factory bound to engine.

    Returns:
        Callable that creates new database sessions
    """
    def session_factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return session_factory


@contextmanager
def store_errors(db: Session, operation: str) -> Iterator[None]:
    """
    Translate persistence failures into StoreError.

    Rolls back the unit of work and logs the underlying exception with full
    detail; callers and clients only ever see the operation name.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("store_operation_failed", operation=operation, exc_info=exc)
        raise StoreError(operation, exc) from exc


async def run_store(db: Session, operation: str, work: Callable[[], T]) -> T:
    """
    Run a unit of store work on the threadpool.

    The session and its connection block on every round trip, so the work
    is executed off the event loop. Failures surface as StoreError exactly
    as with store_errors.

    Usage:
        user = await run_store(db, "load_user", lambda: db.get(User, user_id))
    """
    def _call() -> T:
        with store_errors(db, operation):
            return work()

    return await run_in_threadpool(_call)


def execute_and_commit(db: Session, statement):
    """Execute a bulk UPDATE/DELETE and commit; returns the cursor result."""
    result = db.exec(statement)
    db.commit()
    return result
