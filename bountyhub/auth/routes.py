"""
BountyHub - Authentication Routes

API endpoints for authentication:
- POST   /auth/login/{role}          - Authenticate for a role and create session
- POST   /auth/refresh               - Rotate the refresh cookie, issue access token
- POST   /auth/logout                - Invalidate session (idempotent)
- GET    /auth/me                    - Get current user info
- GET    /auth/sessions              - List active sessions
- DELETE /auth/sessions/{session_id} - Terminate a session
- GET    /auth/audit/events          - Recent audit events (admin)
- GET    /auth/audit/verify          - Verify the audit hash chain (admin)

All state changes are written to the audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlmodel import Session as DBSession, select

from bountyhub.audit.hash_chain import ChainVerificationResult, verify_chain
from bountyhub.audit.models import AuditAction, AuditEvent
from bountyhub.audit.sink import AuditSink
from bountyhub.auth import service
from bountyhub.auth import sessions as session_service
from bountyhub.auth.database import run_store
from bountyhub.auth.dependencies import (
    AuthenticatedUser,
    get_audit,
    get_current_user,
    get_db,
    get_optional_user,
    require_permission,
    require_role,
)
from bountyhub.auth.device import ClientInfo
from bountyhub.auth.errors import AuthError, NotFound, UserNotFound
from bountyhub.auth.models import Role, User
from bountyhub.auth.schemas import (
    ActiveSessionsResponse,
    DeviceSummary,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshResponse,
    SessionInfo,
    SessionSummary,
    TerminateSessionResponse,
    UserResponse,
    UserSummary,
)
from bountyhub.auth.tokens import get_token_expiry_seconds
from bountyhub.config import settings
from bountyhub.gateway.rbac import Permission, RBACPolicy
from bountyhub.logging import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

# URL segment -> role asserted by that login route
LOGIN_ROLES = {
    "researcher": Role.RESEARCHER,
    "organization": Role.ORGANIZATION,
    "admin": Role.ADMIN,
}


def set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        max_age=settings.refresh_cookie_max_age,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.is_production,
        httponly=True,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.is_production,
        httponly=True,
        samesite="strict",
    )


@router.post(
    "/login/{role}",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Authenticate user for a role and create session",
)
async def login(
    role: str,
    credentials: LoginRequest,
    request: Request,
    response: Response,
    db: DBSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    """
    Authenticate with email and password via a role-specific route.

    On success the access token is returned in the body and the refresh
    token is set as an HttpOnly cookie scoped to the auth routes.
    """
    expected_role = LOGIN_ROLES.get(role.lower())
    if expected_role is None:
        raise NotFound(f"unknown_login_role:{role}")

    result = await service.login(
        db,
        audit,
        email=credentials.email,
        password=credentials.password,
        expected_role=expected_role,
        client=ClientInfo.from_request(request),
    )
    set_refresh_cookie(response, result.refresh_token)

    user = result.user
    return LoginResponse(
        token=result.access_token,
        expires_in=get_token_expiry_seconds(),
        user=UserSummary(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role.value,
        ),
        session=SessionSummary(
            id=result.session.id,
            device=DeviceSummary(**result.device.as_dict()),
            location=result.session.location,
            created_at=result.session.created_at,
            expires_at=result.session.expires_at,
        ),
    )


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Exchange the refresh cookie for a new token pair",
)
async def refresh(
    request: Request,
    response: Response,
    db: DBSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    """
    Rotate the refresh token. The presented cookie is single-use; on any
    rejection the cookie is cleared so the client stops retrying it.
    """
    try:
        result = await service.refresh(
            db,
            audit,
            refresh_token=request.cookies.get(settings.REFRESH_COOKIE_NAME),
            client=ClientInfo.from_request(request),
        )
    except AuthError as exc:
        logger.warning("refresh_rejected", reason=exc.reason)
        rejection = JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message},
        )
        clear_refresh_cookie(rejection)
        return rejection

    set_refresh_cookie(response, result.refresh_token)
    return RefreshResponse(token=result.access_token, expires_in=get_token_expiry_seconds())


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Invalidate current session (or all sessions)",
)
async def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutRequest] = None,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    db: DBSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    """
    Logout is idempotent: without a valid access token it still succeeds,
    since "already logged out" is the requested end state.
    """
    all_sessions = body.all_sessions if body else False
    count = await service.logout(
        db,
        audit,
        identity=user.identity() if user else None,
        all_sessions=all_sessions,
        client=ClientInfo.from_request(request),
    )
    clear_refresh_cookie(response)

    if all_sessions and user:
        message = "All sessions invalidated"
    else:
        message = "Logged out"
    return LogoutResponse(message=message, sessions_invalidated=count)


@router.get("/me", response_model=UserResponse)
async def get_me(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    """Get current authenticated user information."""
    record = await run_store(
        db, "load_profile", lambda: db.exec(select(User).where(User.id == user.user_id)).first()
    )
    if record is None:
        raise UserNotFound()

    return UserResponse(
        id=record.id,
        email=record.email,
        username=record.username,
        first_name=record.first_name,
        last_name=record.last_name,
        role=record.role.value,
        is_active=record.is_active,
        last_login=record.last_login,
        created_at=record.created_at,
    )


@router.get("/sessions", response_model=ActiveSessionsResponse)
@require_permission(Permission.READ_OWN_SESSIONS)
async def list_sessions(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    """List the caller's live sessions, flagging the one making this request."""
    live = await session_service.list_sessions_for_user(db, user.user_id)
    return ActiveSessionsResponse(
        sessions=[
            SessionInfo(
                session_id=s.id,
                device_os=s.device_os,
                device_browser=s.device_browser,
                device_type=s.device_type,
                ip_address=s.ip_address,
                location=s.location,
                created_at=s.created_at,
                last_seen=s.last_seen,
                expires_at=s.expires_at,
                is_current=s.id == user.session_id,
            )
            for s in live
        ],
        total=len(live),
    )


@router.delete(
    "/sessions/{session_id}",
    response_model=TerminateSessionResponse,
    responses={404: {"model": ErrorResponse}},
)
@require_permission(Permission.TERMINATE_OWN_SESSIONS)
async def terminate_session(
    session_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: DBSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    """Log out another device. Administrators may terminate any session."""
    await service.terminate_session(
        db,
        audit,
        identity=user.identity(),
        session_id=session_id,
        allow_any=RBACPolicy().has_permission(user.role.value, Permission.TERMINATE_ANY_SESSION),
        client=ClientInfo.from_request(request),
    )
    return TerminateSessionResponse(session_id=session_id)


@router.get("/audit/events", response_model=list[AuditEvent])
@require_permission(Permission.READ_AUDIT)
async def list_audit_events(
    user_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    user: AuthenticatedUser = Depends(get_current_user),
    audit: AuditSink = Depends(get_audit),
):
    """Most recent audit events, optionally filtered by user or action."""
    return await run_in_threadpool(audit.list_events, user_id=user_id, action=action, limit=limit)


@router.get("/audit/verify", response_model=ChainVerificationResult)
@require_role(Role.ADMIN)
@require_permission(Permission.READ_AUDIT)
async def verify_audit_chain(
    user: AuthenticatedUser = Depends(get_current_user),
    db: DBSession = Depends(get_db),
):
    """Recompute the audit hash chain and report the first broken link."""
    result = await run_store(db, "verify_audit_chain", lambda: verify_chain(db))
    if not result.is_valid:
        logger.error("audit_chain_broken", **result.model_dump(exclude={"is_valid"}))
    return result
