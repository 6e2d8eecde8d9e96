"""SQLModel database models."""

from fieldpost.models.timestamps import as_utc, utcnow
from fieldpost.models.role import Role
from fieldpost.models.auth_code import AuthCode
from fieldpost.models.submission import (
    Submission,
    SubmissionStatus,
    Feedback,
    LeaderApproval,
    SubmissionRead,
    SubmissionDetail,
    FeedbackRead,
    LeaderApprovalRead,
)
from fieldpost.models.rate_limit import RateLimitRecord
from fieldpost.models.audit import AuditLog, AuditLogRead

__all__ = [
    # Timestamps
    "utcnow",
    "as_utc",
    # Roles
    "Role",
    # Auth codes
    "AuthCode",
    # Submission
    "Submission",
    "SubmissionStatus",
    "Feedback",
    "LeaderApproval",
    "SubmissionRead",
    "SubmissionDetail",
    "FeedbackRead",
    "LeaderApprovalRead",
    # Rate limiting
    "RateLimitRecord",
    # Audit
    "AuditLog",
    "AuditLogRead",
]
