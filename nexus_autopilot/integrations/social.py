"""
EventNexus Autopilot - Social Publishing
Adapters that push cross-post content to social networks.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from ..automation.models import PublishErrorType, PublishResult
from ..core.exceptions import SocialPublishException

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CATEGORIES
# =============================================================================

def categorize_publish_error(
    message: str = "",
    status_code: Optional[int] = None,
    retry_after: Optional[int] = None
) -> PublishErrorType:
    """Classify a failed publish from its HTTP status and error text."""
    text = (message or "").lower()

    if status_code == 401 or "invalid token" in text or ("token" in text and "expired" in text):
        return PublishErrorType.AUTH_EXPIRED
    if status_code == 429 or retry_after is not None or "rate limit" in text or "too many requests" in text:
        return PublishErrorType.RATE_LIMITED
    if status_code == 403 or "permission" in text or "access denied" in text:
        return PublishErrorType.PERMISSION_DENIED
    if status_code in (400, 422) or "validation" in text or "invalid" in text:
        return PublishErrorType.VALIDATION_ERROR
    if status_code is None and ("network" in text or "connection" in text or "timed out" in text):
        return PublishErrorType.NETWORK_ERROR
    return PublishErrorType.API_ERROR


def _retry_after_seconds(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


# =============================================================================
# PUBLISHERS
# =============================================================================

class SocialPublisher(ABC):
    """Abstract social publishing channel."""

    @abstractmethod
    async def publish(
        self,
        platform: str,
        content: str,
        campaign_id: Optional[str] = None
    ) -> PublishResult:
        """Publish one post. Failures come back as PublishResult(success=False)."""
        pass

    async def close(self):
        """Close any resources. Override if needed."""
        pass


class HttpSocialPublisher(SocialPublisher):
    """
    Posts through the backend's social-posting function.

    Request body: {"platform", "content", "campaign_id"}.
    Response body: {"success": bool, "post_id": str} or {"success": false, "error": str}.
    """

    def __init__(
        self,
        endpoint: str,
        service_key: str = "",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.endpoint = endpoint
        headers = {"Content-Type": "application/json"}
        if service_key:
            headers["Authorization"] = f"Bearer {service_key}"
            headers["apikey"] = service_key
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def publish(
        self,
        platform: str,
        content: str,
        campaign_id: Optional[str] = None
    ) -> PublishResult:
        payload = {"platform": platform, "content": content, "campaign_id": campaign_id}

        try:
            response = await self.http_client.post(self.endpoint, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Social publish to {platform} failed: {e}")
            return PublishResult(
                success=False,
                platform=platform,
                error=str(e) or type(e).__name__,
                error_type=PublishErrorType.NETWORK_ERROR
            )

        if response.status_code >= 400:
            retry_after = _retry_after_seconds(response)
            error = SocialPublishException(
                platform,
                "publish rejected",
                status_code=response.status_code,
                api_error_message=response.text[:200],
                retry_after=retry_after
            )
            error_type = categorize_publish_error(response.text, response.status_code, retry_after)
            logger.error(f"Social publish error ({error_type.value}): {error}")
            return PublishResult(
                success=False,
                platform=platform,
                error=str(error),
                error_type=error_type,
                retry_after=retry_after
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if body.get("success", True) and body.get("post_id"):
            logger.info(f"Posted to {platform}: {body['post_id']}")
            return PublishResult(success=True, platform=platform, post_id=str(body["post_id"]))

        error = body.get("error") or "no post id returned"
        error_type = categorize_publish_error(error)
        logger.error(f"Social publish to {platform} failed ({error_type.value}): {error}")
        return PublishResult(success=False, platform=platform, error=error, error_type=error_type)

    async def close(self):
        await self.http_client.aclose()


class RecordingSocialPublisher(SocialPublisher):
    """Publisher for dry runs and tests; remembers every post it was given."""

    def __init__(self, failing_platforms: Optional[List[str]] = None):
        self.failing_platforms = set(failing_platforms or [])
        self.posts: List[Dict[str, Optional[str]]] = []

    async def publish(
        self,
        platform: str,
        content: str,
        campaign_id: Optional[str] = None
    ) -> PublishResult:
        self.posts.append({"platform": platform, "content": content, "campaign_id": campaign_id})
        if platform in self.failing_platforms:
            return PublishResult(
                success=False,
                platform=platform,
                error=f"{platform} unavailable",
                error_type=PublishErrorType.API_ERROR
            )
        return PublishResult(
            success=True,
            platform=platform,
            post_id=f"{platform}-{len(self.posts)}"
        )
