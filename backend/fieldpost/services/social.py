"""Meta Graph API clients for Facebook page and Instagram publishing."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from fieldpost.core.config import Settings
from fieldpost.services.validation import validate_photo_url

logger = logging.getLogger(__name__)

FACEBOOK_GRAPH_URL = "https://graph.facebook.com"
INSTAGRAM_GRAPH_URL = "https://graph.instagram.com"


class SocialPublishError(Exception):
    """A platform rejected a post or could not be reached.

    ``message`` is safe to return to callers; the platform response is logged.
    """

    def __init__(self, platform: str, message: str):
        self.platform = platform
        self.message = message
        super().__init__(f"[{platform}] {message}")


class SocialPublisher(ABC):
    """Publishes a post to the organisation's social accounts."""

    @abstractmethod
    async def post_to_facebook(self, text: str, photo_urls: list[str]) -> str:
        """Publish to the Facebook page and return the post ID."""
        ...

    @abstractmethod
    async def post_to_instagram(self, text: str, photo_url: str) -> str:
        """Publish a single-image post to Instagram and return the media ID."""
        ...


class MetaGraphPublisher(SocialPublisher):
    """Publishes through the Meta Graph API."""

    def __init__(
        self,
        access_token: str | None,
        facebook_page_id: str | None,
        instagram_account_id: str | None,
        *,
        api_version: str = "v18.0",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._access_token = access_token
        self._facebook_page_id = facebook_page_id
        self._instagram_account_id = instagram_account_id
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetaGraphPublisher":
        return cls(
            settings.meta_access_token,
            settings.facebook_page_id,
            settings.instagram_account_id,
            api_version=settings.meta_graph_version,
            timeout=settings.social_timeout,
        )

    async def _post(self, platform: str, url: str, data: dict[str, str]) -> dict[str, Any]:
        form = {**data, "access_token": self._access_token or ""}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, data=form)
        except httpx.HTTPError as e:
            logger.error("%s request failed: %s", platform, e)
            raise SocialPublishError(platform, f"Failed to post to {platform}") from e

        try:
            result = response.json()
        except ValueError:
            result = {}

        if response.status_code >= 400 or "error" in result:
            error = result.get("error", {}) if isinstance(result, dict) else {}
            logger.error(
                "%s API error %s: %s (code: %s)",
                platform,
                response.status_code,
                error.get("message", response.text),
                error.get("code"),
            )
            raise SocialPublishError(platform, f"Failed to post to {platform}")
        if "id" not in result:
            logger.error("%s response missing id: %s", platform, result)
            raise SocialPublishError(platform, f"Failed to post to {platform}")
        return result

    def _require(self, platform: str, *values: str | None) -> None:
        if not self._access_token or not all(values):
            raise SocialPublishError(platform, f"{platform} is not configured")

    async def post_to_facebook(self, text: str, photo_urls: list[str]) -> str:
        platform = "Facebook"
        self._require(platform, self._facebook_page_id)
        base = f"{FACEBOOK_GRAPH_URL}/{self._api_version}/{self._facebook_page_id}"

        if not photo_urls:
            result = await self._post(platform, f"{base}/feed", {"message": text})
        else:
            # Only the first photo is attached
            if not validate_photo_url(photo_urls[0]):
                raise SocialPublishError(platform, "Invalid photo URL")
            result = await self._post(
                platform, f"{base}/photos", {"url": photo_urls[0], "caption": text}
            )
        return str(result["id"])

    async def post_to_instagram(self, text: str, photo_url: str) -> str:
        platform = "Instagram"
        self._require(platform, self._instagram_account_id)
        if not validate_photo_url(photo_url):
            raise SocialPublishError(platform, "Invalid photo URL")

        base = f"{INSTAGRAM_GRAPH_URL}/{self._api_version}/{self._instagram_account_id}"
        container = await self._post(
            platform, f"{base}/media", {"image_url": photo_url, "caption": text}
        )
        published = await self._post(
            platform, f"{base}/media_publish", {"creation_id": str(container["id"])}
        )
        return str(published["id"])
