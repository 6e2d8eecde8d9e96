"""Submission workflow endpoints.

Every handler checks the IP rate limit and the caller's session before it
loads a submission. Ownership is checked once the submission is loaded.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile

from fieldpost.core.authz import OWNER_ONLY, OWNER_OR_REVIEWERS, client_ip
from fieldpost.core.deps import AppComponents, Workflow, reject_bots, unwrap
from fieldpost.core.errors import ValidationFailed
from fieldpost.models import Role, Submission, SubmissionDetail, SubmissionRead, SubmissionStatus
from fieldpost.schemas.submissions import (
    ApprovalRequest,
    PublishResponse,
    ReadyRequest,
    RegenerateRequest,
    SendForApprovalRequest,
    SuccessResponse,
)
from fieldpost.services.photo_storage import PhotoUpload
from fieldpost.services.validation import MAX_FILE_SIZE

router = APIRouter(prefix="/submissions", dependencies=[Depends(reject_bots)])


async def _read_photos(photos: list[UploadFile]) -> list[PhotoUpload]:
    uploads = []
    for photo in photos:
        if photo.size is not None and photo.size > MAX_FILE_SIZE:
            raise ValidationFailed(
                f"File size exceeds maximum of {MAX_FILE_SIZE // (1024 * 1024)}MB",
                code="FILE_TOO_LARGE",
            )
        data = await photo.read(MAX_FILE_SIZE + 1)
        uploads.append(PhotoUpload(filename=photo.filename or "", content_type=photo.content_type, data=data))
    return uploads


@router.post("", response_model=SubmissionRead, status_code=201)
async def create_submission(
    request: Request,
    components: AppComponents,
    workflow: Workflow,
    notes: str = Form(""),
    photos: list[UploadFile] = File(default=[]),
) -> Submission:
    """Create a draft from field notes and photos."""
    ip = client_ip(request)
    limiter = components.rate_limiters["create_submission"]
    await limiter.enforce_ip(ip)
    actor = unwrap(components.guard.require_auth(request))
    await limiter.enforce_identity(actor.email)

    uploads = await _read_photos(photos)
    return await workflow.create(actor, notes, uploads, ip_address=ip)


@router.get("", response_model=list[SubmissionRead])
async def list_submissions(
    request: Request,
    components: AppComponents,
    workflow: Workflow,
    status: SubmissionStatus | None = None,
) -> list[Submission]:
    """List submissions visible to the caller."""
    ip = client_ip(request)
    await components.rate_limiters["read"].enforce_ip(ip)
    actor = unwrap(components.guard.require_auth(request))
    await components.rate_limiters["read_user"].enforce_identity(actor.email)

    return await workflow.list_for(actor, status)


@router.post("/ready", response_model=SuccessResponse)
async def mark_ready(
    body: ReadyRequest,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> SuccessResponse:
    """Owner hands a draft to the PRO for review."""
    ip = client_ip(request)
    limiter = components.rate_limiters["workflow"]
    await limiter.enforce_ip(ip)
    unwrap(components.guard.require_auth(request))
    submission = await workflow.get(body.submission_id)
    actor = unwrap(
        components.guard.check_submission_access(request, submission.submitted_by_email, OWNER_ONLY)
    )
    await limiter.enforce_identity(actor.email)

    await workflow.mark_ready(actor, body.submission_id, ip_address=ip)
    return SuccessResponse()


@router.post("/regenerate", response_model=SubmissionRead)
async def regenerate_post(
    body: RegenerateRequest,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> Submission:
    """Redraft the post, optionally guided by feedback."""
    ip = client_ip(request)
    limiter = components.rate_limiters["regenerate"]
    await limiter.enforce_ip(ip)
    unwrap(components.guard.require_auth(request))
    submission = await workflow.get(body.submission_id)
    actor = unwrap(
        components.guard.check_submission_access(
            request, submission.submitted_by_email, OWNER_OR_REVIEWERS
        )
    )
    await limiter.enforce_identity(actor.email)

    return await workflow.regenerate(actor, body.submission_id, body.feedback, ip_address=ip)


@router.get("/{submission_id}", response_model=SubmissionDetail)
async def get_submission(
    submission_id: str,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> Submission:
    """Get a submission with its feedback and approval history."""
    ip = client_ip(request)
    await components.rate_limiters["read"].enforce_ip(ip)
    unwrap(components.guard.require_auth(request))
    submission = await workflow.get(submission_id, with_history=True)
    actor = unwrap(
        components.guard.check_submission_access(
            request, submission.submitted_by_email, OWNER_OR_REVIEWERS
        )
    )
    await components.rate_limiters["read_user"].enforce_identity(actor.email)
    return submission


@router.patch("/{submission_id}", response_model=SubmissionRead)
async def update_submission(
    submission_id: str,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
    changes: dict[str, Any] = Body(...),
) -> Submission:
    """Edit post text; PRO and leaders may also set ``status``."""
    ip = client_ip(request)
    await components.rate_limiters["update"].enforce_ip(ip)
    unwrap(components.guard.require_auth(request))
    submission = await workflow.get(submission_id)
    actor = unwrap(
        components.guard.check_submission_access(
            request, submission.submitted_by_email, OWNER_OR_REVIEWERS
        )
    )
    await components.rate_limiters["update_user"].enforce_identity(actor.email)

    return await workflow.update_fields(actor, submission_id, changes, ip_address=ip)


@router.post("/{submission_id}/send-for-approval", response_model=SuccessResponse)
async def send_for_approval(
    submission_id: str,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
    body: SendForApprovalRequest | None = None,
) -> SuccessResponse:
    """PRO forwards a reviewed post to the team leaders."""
    ip = client_ip(request)
    limiter = components.rate_limiters["workflow"]
    await limiter.enforce_ip(ip)
    actor = unwrap(components.guard.require_role(request, Role.PRO))
    await limiter.enforce_identity(actor.email)

    edited = body.edited_post_text if body else None
    await workflow.send_for_approval(actor, submission_id, edited, ip_address=ip)
    return SuccessResponse()


@router.post("/{submission_id}/approve", response_model=SuccessResponse)
async def approve_submission(
    submission_id: str,
    body: ApprovalRequest,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> SuccessResponse:
    """Leader approves or rejects a post."""
    ip = client_ip(request)
    limiter = components.rate_limiters["workflow"]
    await limiter.enforce_ip(ip)
    actor = unwrap(components.guard.require_role(request, Role.LEADER))
    await limiter.enforce_identity(actor.email)

    await workflow.record_decision(actor, submission_id, body.approved, body.comment, ip_address=ip)
    return SuccessResponse()


@router.post("/{submission_id}/post", response_model=PublishResponse)
async def publish_submission(
    submission_id: str,
    request: Request,
    components: AppComponents,
    workflow: Workflow,
) -> PublishResponse:
    """PRO publishes an approved post to the social accounts."""
    ip = client_ip(request)
    limiter = components.rate_limiters["publish"]
    await limiter.enforce_ip(ip)
    actor = unwrap(components.guard.require_role(request, Role.PRO))
    await limiter.enforce_identity(actor.email)

    outcome = await workflow.publish(actor, submission_id, ip_address=ip)
    return PublishResponse(
        submission=SubmissionRead.model_validate(outcome.submission),
        facebook_post_id=outcome.facebook_post_id,
        instagram_post_id=outcome.instagram_post_id,
        errors=outcome.errors,
    )
