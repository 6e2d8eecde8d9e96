"""Audit log model for the security audit trail."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from fieldpost.models.timestamps import utcnow


class AuditLog(SQLModel, table=True):
    """Append-only audit record."""

    __tablename__ = "audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=utcnow, index=True)
    event: str = Field(index=True)  # e.g. auth.code_validated, submission.posted
    actor_email: str | None = Field(default=None, index=True)
    actor_role: str | None = Field(default=None)
    resource_type: str | None = Field(default=None)  # e.g. "submission"
    resource_id: str | None = Field(default=None)
    ip_address: str | None = Field(default=None)
    success: bool = Field(default=True)
    details: str | None = Field(default=None)  # JSON string


class AuditLogRead(SQLModel):
    """Schema for reading audit log entries."""

    id: int
    timestamp: datetime
    event: str
    actor_email: str | None
    actor_role: str | None
    resource_type: str | None
    resource_id: str | None
    ip_address: str | None
    success: bool
    details: str | None
