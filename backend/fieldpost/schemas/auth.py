"""Authentication request/response schemas."""

from pydantic import BaseModel, Field

from fieldpost.models import Role


class SendLinkRequest(BaseModel):
    """Magic-link request schema."""

    email: str = Field(min_length=1)
    role: Role


class SendLinkResponse(BaseModel):
    success: bool = True


class ValidateCodeRequest(BaseModel):
    """Code redemption request schema."""

    code: str = Field(min_length=1)
    role: Role | None = None


class ValidateCodeResponse(BaseModel):
    valid: bool
    email: str
    role: Role
    submission_id: str | None = None


class PasswordLoginRequest(BaseModel):
    """Password login (PRO and dashboard) request schema."""

    password: str = Field(min_length=1)


class PasswordLoginResponse(BaseModel):
    success: bool = True
    email: str
    role: Role = Role.PRO


class SessionResponse(BaseModel):
    """Current session."""

    email: str
    role: Role
    submission_id: str | None = None
