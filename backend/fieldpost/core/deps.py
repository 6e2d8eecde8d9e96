"""FastAPI dependencies."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fieldpost.core.authz import AccessGuard, Denial, GuardResult
from fieldpost.core.config import Settings, get_settings
from fieldpost.core.database import async_session_factory, get_session
from fieldpost.core.errors import AuthenticationRequired, BotDetected
from fieldpost.core.identity import RoleDirectory
from fieldpost.core.security import SessionCodec, VerifiedSession
from fieldpost.services.audit import AuditService
from fieldpost.services.auth_codes import AuthCodeService
from fieldpost.services.bot_detection import BotDetector
from fieldpost.services.drafting import PostGenerator
from fieldpost.services.llm import build_llm_provider
from fieldpost.services.notifications import Notifier, build_notifier
from fieldpost.services.photo_storage import LocalPhotoStore, PhotoStore
from fieldpost.services.rate_limit import RateLimiters
from fieldpost.services.social import MetaGraphPublisher, SocialPublisher
from fieldpost.services.workflow import SubmissionWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Long-lived collaborators, built once per application."""

    settings: Settings
    codec: SessionCodec
    directory: RoleDirectory
    guard: AccessGuard
    rate_limiters: RateLimiters
    notifier: Notifier
    publisher: SocialPublisher
    generator: PostGenerator
    bot_detector: BotDetector
    photo_store: PhotoStore


def _alert_fail_closed(policy: str, reason: str) -> None:
    logger.critical("ALERT rate limiter unavailable: policy=%s reason=%s", policy, reason)


def build_components(settings: Settings) -> Components:
    """Wire collaborators from settings.

    Raises:
        ConfigurationError: If a required production secret is missing
    """
    codec = SessionCodec.from_settings(settings)
    directory = RoleDirectory.from_settings(settings)
    return Components(
        settings=settings,
        codec=codec,
        directory=directory,
        guard=AccessGuard(codec, directory),
        rate_limiters=RateLimiters.from_settings(
            settings, async_session_factory, on_fail_closed=_alert_fail_closed
        ),
        notifier=build_notifier(settings),
        publisher=MetaGraphPublisher.from_settings(settings),
        generator=PostGenerator(build_llm_provider(settings)),
        bot_detector=BotDetector(enabled=settings.bot_detection_enabled),
        photo_store=LocalPhotoStore.from_settings(settings),
    )


def get_components(request: Request) -> Components:
    """Components built at startup (built lazily if the lifespan did not run)."""
    components = getattr(request.app.state, "components", None)
    if components is None:
        components = build_components(get_settings())
        request.app.state.components = components
    return components


DbSession = Annotated[AsyncSession, Depends(get_session)]
AppComponents = Annotated[Components, Depends(get_components)]


def get_audit(session: DbSession) -> AuditService:
    return AuditService(session)


Audit = Annotated[AuditService, Depends(get_audit)]


def get_auth_codes(session: DbSession, components: AppComponents) -> AuthCodeService:
    return AuthCodeService(session, ttl=timedelta(hours=components.settings.auth_code_ttl_hours))


AuthCodes = Annotated[AuthCodeService, Depends(get_auth_codes)]


def get_workflow(
    session: DbSession,
    components: AppComponents,
    audit: Audit,
    auth_codes: AuthCodes,
) -> SubmissionWorkflow:
    return SubmissionWorkflow(
        session,
        directory=components.directory,
        auth_codes=auth_codes,
        notifier=components.notifier,
        publisher=components.publisher,
        generator=components.generator,
        photo_store=components.photo_store,
        audit=audit,
    )


Workflow = Annotated[SubmissionWorkflow, Depends(get_workflow)]


def reject_bots(request: Request, components: AppComponents) -> None:
    if components.bot_detector.is_bot(request):
        raise BotDetected()


def require_dashboard(request: Request, components: AppComponents) -> None:
    if not components.guard.has_dashboard_access(request):
        raise AuthenticationRequired(headers={"X-Auth-Required": "true"})


def unwrap(result: GuardResult) -> VerifiedSession:
    """Return the session from a guard result, raising its error on denial."""
    if isinstance(result, Denial):
        raise result.error
    return result
