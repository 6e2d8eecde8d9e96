"""One-time authentication codes embedded in magic links."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from fieldpost.models.role import Role
from fieldpost.models.timestamps import utcnow


class AuthCode(SQLModel, table=True):
    """Short-lived, single-use login code."""

    __tablename__ = "auth_codes"

    code: str = Field(primary_key=True)
    email: str = Field(index=True)
    role: Role
    submission_id: str | None = Field(default=None)
    used: bool = Field(default=False)
    expires_at: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
