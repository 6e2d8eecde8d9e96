"""Authentication endpoints."""

import logging

from fastapi import APIRouter, Depends, Request, Response

from fieldpost.core.authz import SESSION_COOKIE, client_ip
from fieldpost.core.deps import AppComponents, Audit, AuthCodes, reject_bots, unwrap
from fieldpost.core.errors import AuthenticationRequired, AuthorizationDenied, ConfigurationError
from fieldpost.core.security import SessionClaims, verify_password
from fieldpost.models import Role
from fieldpost.schemas.auth import (
    PasswordLoginRequest,
    PasswordLoginResponse,
    SendLinkRequest,
    SendLinkResponse,
    SessionResponse,
    ValidateCodeRequest,
    ValidateCodeResponse,
)
from fieldpost.services.notifications import NotificationKind
from fieldpost.services.validation import validate_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", dependencies=[Depends(reject_bots)])


def _set_session_cookie(response: Response, token: str, components: AppComponents) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=components.settings.is_production,
        samesite="lax",
        max_age=int(components.codec.session_ttl.total_seconds()),
        path="/",
    )


@router.post("/send-link", response_model=SendLinkResponse)
async def send_link(
    body: SendLinkRequest,
    request: Request,
    components: AppComponents,
    auth_codes: AuthCodes,
    audit: Audit,
) -> SendLinkResponse:
    """Email a one-time sign-in link to an allow-listed address."""
    ip = client_ip(request)
    limiter = components.rate_limiters["send_link"]
    await limiter.enforce_ip(ip)

    email = validate_email(body.email)
    await limiter.enforce_identity(email)

    if not components.directory.validate_email_for_role(email, body.role):
        await audit.log_auth_attempt(
            method="send_link",
            success=False,
            email=email,
            role=body.role.value,
            ip_address=ip,
            reason="not_allow_listed",
        )
        raise AuthorizationDenied(
            "Email not authorized for this role", code="EMAIL_NOT_AUTHORIZED"
        )

    code = await auth_codes.create_auth_code(email, body.role)
    await components.notifier.send(email, NotificationKind.MAGIC_LINK, code, role=body.role)

    await audit.log_auth_attempt(
        method="send_link", success=True, email=email, role=body.role.value, ip_address=ip
    )
    return SendLinkResponse()


@router.post("/validate", response_model=ValidateCodeResponse)
async def validate_code(
    body: ValidateCodeRequest,
    request: Request,
    response: Response,
    components: AppComponents,
    auth_codes: AuthCodes,
    audit: Audit,
) -> ValidateCodeResponse:
    """Redeem a magic-link code for a session cookie."""
    ip = client_ip(request)
    await components.rate_limiters["validate_code"].enforce_ip(ip)

    result = await auth_codes.validate_auth_code(body.code, body.role)
    if not result.valid:
        await audit.log_auth_attempt(
            method="validate_code",
            success=False,
            email=None,
            role=body.role.value if body.role else None,
            ip_address=ip,
            reason="invalid_code",
        )
        raise AuthenticationRequired("Invalid or expired code", code="INVALID_CODE")

    claims = SessionClaims(email=result.email, role=result.role, submission_id=result.submission_id)
    _set_session_cookie(response, components.codec.create(claims), components)

    await audit.log_auth_attempt(
        method="validate_code",
        success=True,
        email=result.email,
        role=result.role.value,
        ip_address=ip,
        submission_id=result.submission_id,
    )
    return ValidateCodeResponse(
        valid=True, email=result.email, role=result.role, submission_id=result.submission_id
    )


@router.post("/password-login", response_model=PasswordLoginResponse)
async def password_login(
    body: PasswordLoginRequest,
    request: Request,
    response: Response,
    components: AppComponents,
    audit: Audit,
) -> PasswordLoginResponse:
    """PRO sign-in with the shared password."""
    ip = client_ip(request)
    await components.rate_limiters["password_login"].enforce_ip(ip)

    password_hash = components.settings.pro_password_hash
    if not password_hash:
        logger.critical("PRO_PASSWORD_HASH is not set")
        raise ConfigurationError(code="MISSING_PASSWORD_HASH")
    pro_email = components.directory.require_pro_email()

    if not verify_password(body.password, password_hash):
        await audit.log_auth_attempt(
            method="password_login",
            success=False,
            email=pro_email,
            role=Role.PRO.value,
            ip_address=ip,
            reason="invalid_password",
        )
        raise AuthenticationRequired("Invalid credentials", code="INVALID_CREDENTIALS")

    token = components.codec.create(SessionClaims(email=pro_email, role=Role.PRO))
    _set_session_cookie(response, token, components)

    await audit.log_auth_attempt(
        method="password_login", success=True, email=pro_email, role=Role.PRO.value, ip_address=ip
    )
    return PasswordLoginResponse(email=pro_email)


@router.post("/logout")
async def logout(response: Response) -> dict:
    """Clear the session cookie."""
    response.delete_cookie(key=SESSION_COOKIE, path="/")
    return {"success": True}


@router.get("/me", response_model=SessionResponse)
async def get_me(request: Request, components: AppComponents) -> SessionResponse:
    """Get the current session."""
    session = unwrap(components.guard.require_auth(request))
    return SessionResponse(email=session.email, role=session.role, submission_id=session.submission_id)
