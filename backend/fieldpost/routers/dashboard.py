"""Dashboard endpoints (shared-secret access)."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlmodel import select

from fieldpost.core.authz import DASHBOARD_COOKIE, client_ip
from fieldpost.core.deps import AppComponents, Audit, DbSession, Workflow, reject_bots, require_dashboard
from fieldpost.core.errors import AuthenticationRequired, ConfigurationError
from fieldpost.core.security import constant_time_equals
from fieldpost.models import AuditLog, AuditLogRead, Submission, SubmissionRead, SubmissionStatus, as_utc
from fieldpost.schemas.auth import PasswordLoginRequest
from fieldpost.schemas.submissions import SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", dependencies=[Depends(reject_bots)])


@router.post("/auth", response_model=SuccessResponse)
async def dashboard_login(
    body: PasswordLoginRequest,
    request: Request,
    response: Response,
    components: AppComponents,
    audit: Audit,
) -> SuccessResponse:
    """Exchange the dashboard password for a dashboard session cookie."""
    ip = client_ip(request)
    await components.rate_limiters["dashboard_auth"].enforce_ip(ip)

    expected = components.settings.dashboard_password
    if not expected:
        logger.critical("DASHBOARD_PASSWORD is not set")
        raise ConfigurationError(code="MISSING_DASHBOARD_PASSWORD")

    if not constant_time_equals(body.password, expected):
        await audit.log_auth_attempt(
            method="dashboard_login",
            success=False,
            email=None,
            role="dashboard",
            ip_address=ip,
            reason="invalid_password",
        )
        raise AuthenticationRequired("Invalid credentials", code="INVALID_CREDENTIALS")

    response.set_cookie(
        key=DASHBOARD_COOKIE,
        value=components.codec.create_dashboard(),
        httponly=True,
        secure=components.settings.is_production,
        samesite="strict",
        max_age=int(components.codec.dashboard_ttl.total_seconds()),
        path="/",
    )
    await audit.log_auth_attempt(
        method="dashboard_login", success=True, email=None, role="dashboard", ip_address=ip
    )
    return SuccessResponse()


@router.post("/logout", response_model=SuccessResponse)
async def dashboard_logout(response: Response) -> SuccessResponse:
    response.delete_cookie(key=DASHBOARD_COOKIE, path="/")
    return SuccessResponse()


@router.get(
    "/submissions",
    response_model=list[SubmissionRead],
    dependencies=[Depends(require_dashboard)],
)
async def list_all_submissions(
    request: Request,
    components: AppComponents,
    workflow: Workflow,
    status: SubmissionStatus | None = None,
    search: str | None = Query(None, max_length=200),
) -> list[Submission]:
    """List every submission, filtered by status and free-text search."""
    await components.rate_limiters["read"].enforce_ip(client_ip(request))
    return await workflow.search(status, search)


@router.delete(
    "/submissions/{submission_id}",
    response_model=SuccessResponse,
    dependencies=[Depends(require_dashboard)],
)
async def delete_submission(
    submission_id: str,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> SuccessResponse:
    """Delete a submission with its feedback and approvals."""
    ip = client_ip(request)
    await components.rate_limiters["update"].enforce_ip(ip)
    await workflow.delete(submission_id, ip_address=ip)
    return SuccessResponse()


@router.get(
    "/audit",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_dashboard)],
)
async def list_audit_logs(
    session: DbSession,
    event: str | None = None,
    actor_email: str | None = None,
    resource_id: str | None = None,
    success: bool | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> list[AuditLog]:
    """List audit logs with filters, newest first."""
    query = select(AuditLog)

    if event is not None:
        query = query.where(AuditLog.event == event)
    if actor_email is not None:
        query = query.where(AuditLog.actor_email == actor_email)
    if resource_id is not None:
        query = query.where(AuditLog.resource_id == resource_id)
    if success is not None:
        query = query.where(AuditLog.success == success)
    if since is not None:
        query = query.where(AuditLog.timestamp >= as_utc(since))
    if until is not None:
        query = query.where(AuditLog.timestamp <= as_utc(until))

    query = query.order_by(AuditLog.timestamp.desc()).offset(skip).limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())
