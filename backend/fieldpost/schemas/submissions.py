"""Submission workflow request/response schemas."""

from pydantic import BaseModel, Field

from fieldpost.models import SubmissionRead


class ReadyRequest(BaseModel):
    submission_id: str = Field(min_length=1)


class RegenerateRequest(BaseModel):
    submission_id: str = Field(min_length=1)
    feedback: str | None = None


class SendForApprovalRequest(BaseModel):
    edited_post_text: str | None = None


class ApprovalRequest(BaseModel):
    """Leader decision. ``comment`` is passed on to the PRO when rejecting."""

    approved: bool
    comment: str | None = Field(default=None, max_length=2000)


class SuccessResponse(BaseModel):
    success: bool = True


class PublishResponse(BaseModel):
    """Per-platform publish result; ``errors`` lists failed platforms."""

    submission: SubmissionRead
    facebook_post_id: str | None = None
    instagram_post_id: str | None = None
    errors: dict[str, str] = {}
