"""Submission model for the field-note to social-post lifecycle."""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from fieldpost.models.timestamps import utcnow


class SubmissionStatus(str, Enum):
    """Submission workflow states."""

    DRAFT = "draft"
    AWAITING_PRO = "awaiting_pro"
    AWAITING_LEADER = "awaiting_leader"
    AWAITING_PRO_TO_POST = "awaiting_pro_to_post"
    POSTED = "posted"
    REJECTED = "rejected"


def new_submission_id() -> str:
    return uuid4().hex


class Submission(SQLModel, table=True):
    """Submission database model."""

    __tablename__ = "submissions"

    id: str = Field(default_factory=new_submission_id, primary_key=True)
    notes: str
    photo_paths: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    submitted_by_email: str = Field(index=True)
    status: SubmissionStatus = Field(default=SubmissionStatus.DRAFT, index=True)
    final_post_text: str | None = Field(default=None)
    edited_by_pro: str | None = Field(default=None)
    posted_to_facebook: bool = Field(default=False)
    posted_to_instagram: bool = Field(default=False)
    facebook_post_id: str | None = Field(default=None)
    instagram_post_id: str | None = Field(default=None)
    posted_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    feedback: list["Feedback"] = Relationship(
        back_populates="submission",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Feedback.version_number"},
    )
    leader_approvals: list["LeaderApproval"] = Relationship(
        back_populates="submission",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "LeaderApproval.created_at"},
    )


class Feedback(SQLModel, table=True):
    """Regeneration request, versioned per submission."""

    __tablename__ = "feedback"
    __table_args__ = (UniqueConstraint("submission_id", "version_number"),)

    id: int | None = Field(default=None, primary_key=True)
    submission_id: str = Field(foreign_key="submissions.id", index=True)
    feedback_text: str
    version_number: int
    created_at: datetime = Field(default_factory=utcnow)

    submission: Submission = Relationship(back_populates="feedback")


class LeaderApproval(SQLModel, table=True):
    """Append-only record of a leader's decision."""

    __tablename__ = "leader_approvals"

    id: int | None = Field(default=None, primary_key=True)
    submission_id: str = Field(foreign_key="submissions.id", index=True)
    approved: bool
    comment: str | None = Field(default=None)
    decided_by_email: str
    created_at: datetime = Field(default_factory=utcnow)

    submission: Submission = Relationship(back_populates="leader_approvals")


class FeedbackRead(SQLModel):
    """Schema for reading feedback."""

    id: int
    feedback_text: str
    version_number: int
    created_at: datetime


class LeaderApprovalRead(SQLModel):
    """Schema for reading a leader decision."""

    id: int
    approved: bool
    comment: str | None
    decided_by_email: str
    created_at: datetime


class SubmissionRead(SQLModel):
    """Schema for reading a submission."""

    id: str
    notes: str
    photo_paths: list[str]
    submitted_by_email: str
    status: SubmissionStatus
    final_post_text: str | None
    edited_by_pro: str | None
    posted_to_facebook: bool
    posted_to_instagram: bool
    facebook_post_id: str | None
    instagram_post_id: str | None
    posted_at: datetime | None
    created_at: datetime
    updated_at: datetime


class SubmissionDetail(SubmissionRead):
    """Submission with its feedback history and leader decisions."""

    feedback: list[FeedbackRead] = []
    leader_approvals: list[LeaderApprovalRead] = []
