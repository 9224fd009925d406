"""
BountyHub - Security Dependencies

FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/protected")
    async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

    @router.get("/admin-only")
    @require_permission(Permission.READ_AUDIT)
    async def admin_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

Credential source: the `Authorization: Bearer <access token>` header only.
The refresh cookie is never accepted here.

Security:
- Every protected request validates the JWT AND reloads session and user
- Every failure is the same generic 401 on the wire; the reason is logged
- RBAC is deny-by-default
"""

from functools import wraps
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlmodel import Session as DBSession, select

from bountyhub.audit.sink import AuditSink
from bountyhub.auth import sessions
from bountyhub.auth.errors import (
    AuthError,
    Forbidden,
    SessionExpired,
    Unauthenticated,
    UserInactive,
)
from bountyhub.auth.database import run_store
from bountyhub.auth.models import Role, User
from bountyhub.auth.service import Identity
from bountyhub.auth.tokens import verify_access_token
from bountyhub.gateway.rbac import Permission, RBACPolicy
from bountyhub.logging import get_logger


logger = get_logger(__name__)

# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """
    Represents a validated, authenticated user.

    Available in route handlers via Depends(get_current_user).
    """
    user_id: str
    email: str
    role: Role
    session_id: str
    token_id: str  # jti for audit correlation

    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, role=self.role, session_id=self.session_id)


def get_db(request: Request) -> Generator[DBSession, None, None]:
    """Per-request database session from the factory installed at startup."""
    db = request.app.state.db_session_factory()
    try:
        yield db
    finally:
        db.close()


def get_audit(request: Request) -> AuditSink:
    return request.app.state.audit_sink


async def _authenticate(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    db: DBSession,
) -> AuthenticatedUser:
    if not credentials or not credentials.credentials:
        raise Unauthenticated("missing_access_token")

    # Raises TokenExpired / TokenMalformed / WrongTokenKind
    payload = verify_access_token(credentials.credentials)

    session = await sessions.get_session(db, payload.sid)
    if not sessions.is_live(session) or session.user_id != payload.sub:
        raise SessionExpired()

    statement = (
        select(User)
        .where(User.id == payload.sub)
        .execution_options(populate_existing=True)
    )
    user = await run_store(db, "load_current_user", lambda: db.exec(statement).first())
    if user is None or not user.is_active:
        raise UserInactive()

    current = AuthenticatedUser(
        user_id=user.id,
        email=user.email,
        role=user.role,
        session_id=session.id,
        token_id=payload.jti,
    )
    request.state.user = current
    return current


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
) -> AuthenticatedUser:
    """
    Validate request authentication and return current user.

    1. Extract JWT from Authorization header
    2. Validate JWT signature, expiry and kind
    3. Reload the referenced session and require it to be live and owned
    4. Reload the user and require it to be active

    Raises:
        Unauthenticated (or a subclass): any of the above failed
    """
    try:
        return await _authenticate(request, credentials, db)
    except AuthError as exc:
        logger.warning("request_unauthenticated", reason=exc.reason, path=request.url.path)
        raise


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DBSession = Depends(get_db),
) -> Optional[AuthenticatedUser]:
    """Like get_current_user, but an unauthenticated caller yields None."""
    try:
        return await _authenticate(request, credentials, db)
    except AuthError as exc:
        logger.info("optional_auth_skipped", reason=exc.reason, path=request.url.path)
        return None


def require_permission(permission: Permission):
    """
    Decorator to enforce permission requirements on routes.

    The wrapped route must take `user: AuthenticatedUser = Depends(get_current_user)`.

    Raises:
        Unauthenticated: no user was injected
        Forbidden: the user's role lacks the permission
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            user: Optional[AuthenticatedUser] = kwargs.get("user")
            if user is None:
                raise Unauthenticated("authentication_required")

            if not RBACPolicy().has_permission(user.role.value, permission):
                logger.warning(
                    "permission_denied",
                    user_id=user.user_id,
                    role=user.role.value,
                    permission=permission.value,
                )
                raise Forbidden(f"missing_permission:{permission.value}")

            return await func(*args, **kwargs)
        return wrapper
    return decorator


def require_role(role: Role):
    """
    Decorator requiring a specific role.

    Usage:
        @require_role(Role.ADMIN)
        async def admin_only(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            user: Optional[AuthenticatedUser] = kwargs.get("user")
            if user is None:
                raise Unauthenticated("authentication_required")

            if user.role != role:
                logger.warning("role_denied", user_id=user.user_id, required=role.value)
                raise Forbidden(f"requires_role:{role.value}")

            return await func(*args, **kwargs)
        return wrapper
    return decorator
