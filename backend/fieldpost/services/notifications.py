"""Role-targeted email notifications carrying magic-link codes."""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fieldpost.core.config import Settings
from fieldpost.core.errors import ConfigurationError, UpstreamFailure
from fieldpost.models import Role

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationKind(str, Enum):
    """Email templates."""

    MAGIC_LINK = "magic_link"
    PRO_REVIEW = "pro_review"
    LEADER_APPROVAL = "leader_approval"
    POST_APPROVED = "post_approved"
    POST_REJECTED = "post_rejected"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    link: str


def build_link(base_url: str, code: str, role: Role, submission_id: str | None = None) -> str:
    """Link that redeems ``code`` when opened."""
    base = base_url.rstrip("/")
    query = urlencode({"code": code, "role": role.value})
    if submission_id:
        return f"{base}/approve/{submission_id}?{query}"
    return f"{base}/auth?{query}"


def render(
    kind: NotificationKind,
    base_url: str,
    code: str,
    role: Role,
    submission_id: str | None = None,
    comment: str | None = None,
) -> RenderedEmail:
    link = build_link(base_url, code, role, submission_id)
    safe_link = html.escape(link, quote=True)
    button = f'<p><a href="{safe_link}">Open FieldPost</a></p>'

    if kind == NotificationKind.MAGIC_LINK:
        subject = "Your FieldPost sign-in link"
        body = "<p>Use the link below to sign in. It can be used once.</p>"
    elif kind == NotificationKind.PRO_REVIEW:
        subject = "New submission ready for review"
        body = "<p>A team member has marked a post as ready for your review.</p>"
    elif kind == NotificationKind.LEADER_APPROVAL:
        subject = "Post awaiting your approval"
        body = "<p>A post has been sent to you for approval.</p>"
    elif kind == NotificationKind.POST_APPROVED:
        subject = "Post approved"
        body = "<p>The team leader approved a post. It is ready to publish.</p>"
    elif kind == NotificationKind.POST_REJECTED:
        subject = "Post rejected"
        body = "<p>The team leader rejected a post.</p>"
        if comment:
            body += f"<blockquote>{html.escape(comment)}</blockquote>"
    else:
        raise ValueError(f"Unknown notification kind: {kind}")

    return RenderedEmail(subject=subject, html=body + button, link=link)


class Notifier(ABC):
    """Sends notification emails."""

    def __init__(self, base_url: str):
        self.base_url = base_url

    @abstractmethod
    async def send(
        self,
        to_email: str,
        kind: NotificationKind,
        code: str,
        *,
        role: Role,
        submission_id: str | None = None,
        comment: str | None = None,
    ) -> None:
        """Deliver one email.

        Raises:
            ConfigurationError: If the provider is not configured
            UpstreamFailure: If delivery failed
        """
        ...


class LogNotifier(Notifier):
    """Writes links to the log instead of sending email (development only)."""

    async def send(self, to_email, kind, code, *, role, submission_id=None, comment=None) -> None:
        email = render(kind, self.base_url, code, role, submission_id, comment)
        logger.info("Email to %s [%s]: %s", to_email, email.subject, email.link)


class ResendNotifier(Notifier):
    """Delivers email through the Resend HTTP API."""

    def __init__(self, base_url: str, api_key: str | None, from_email: str, timeout: float = 10.0):
        super().__init__(base_url)
        self._api_key = api_key
        self._from_email = from_email
        self._timeout = timeout

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    async def _post(self, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )

    async def send(self, to_email, kind, code, *, role, submission_id=None, comment=None) -> None:
        if not self._api_key:
            logger.critical("RESEND_API_KEY is not set")
            raise ConfigurationError(code="MISSING_EMAIL_CONFIG")

        email = render(kind, self.base_url, code, role, submission_id, comment)
        payload = {
            "from": self._from_email,
            "to": [to_email],
            "subject": email.subject,
            "html": email.html,
        }
        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            logger.error("Email delivery to %s failed: %s", to_email, e)
            raise UpstreamFailure("Failed to send email") from e

        if response.status_code >= 400:
            logger.error(
                "Resend rejected email to %s: %s %s", to_email, response.status_code, response.text
            )
            raise UpstreamFailure("Failed to send email")


def build_notifier(settings: Settings) -> Notifier:
    """Resend when configured; log-only outside production otherwise."""
    if settings.resend_api_key or settings.is_production:
        return ResendNotifier(
            settings.public_base_url,
            settings.resend_api_key,
            settings.resend_from_email,
            timeout=settings.email_timeout,
        )
    logger.warning("RESEND_API_KEY not set; emails will be logged instead of sent")
    return LogNotifier(settings.public_base_url)
