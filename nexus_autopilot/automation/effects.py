"""
EventNexus Autopilot - Effect Runner
Runs the side effects the executor returns (social cross-posts).
"""

import asyncio
import logging
from typing import Any, Dict, List

from .models import (
    AutonomousAction,
    PromotionDetails,
    PublishErrorType,
    PublishPost,
    PublishResult,
)
from ..integrations.social import SocialPublisher, categorize_publish_error
from ..integrations.storage import CampaignStore
from ..monitoring.metrics import metrics

logger = logging.getLogger(__name__)


class EffectRunner:
    """
    Executes PublishPost effects and stores per-platform results on the action.

    Publishing is fire-and-forget from the decision's point of view:
    failures are recorded in the action's details and never change its status.

    Each platform entry in `post_results` carries an `attempts` counter;
    retry_failed() republishes platforms without a successful post until
    `max_attempts` is reached.
    """

    def __init__(self, publisher: SocialPublisher, store: CampaignStore, max_attempts: int = 3):
        self.publisher = publisher
        self.store = store
        self.max_attempts = max_attempts

    async def run(self, action: AutonomousAction, effects: List[PublishPost]) -> List[PublishResult]:
        if not effects:
            return []

        results = await asyncio.gather(*(self._publish(effect) for effect in effects))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            f"Cross-posted campaign {action.campaign_id} to {succeeded}/{len(results)} platforms"
        )

        if isinstance(action.details, PromotionDetails):
            for result in results:
                self._record(action.details, result)
            await self._save_results(action)

        return list(results)

    def retryable_posts(self, action: AutonomousAction) -> List[PublishPost]:
        """Posts for platforms that have no successful publish and attempts left."""
        details = action.details
        if not isinstance(details, PromotionDetails):
            return []

        posts = []
        for platform in details.platforms:
            outcome = details.post_results.get(platform, {})
            if outcome.get("success"):
                continue
            attempts = outcome.get("attempts", 1 if outcome else 0)
            if attempts >= self.max_attempts:
                logger.warning(
                    f"Cross-post of action {action.id} to {platform} gave up after {attempts} attempts"
                )
                continue
            posts.append(PublishPost(action.id, action.campaign_id, platform, details.content))
        return posts

    async def retry_failed(self, action: AutonomousAction) -> List[PublishResult]:
        return await self.run(action, self.retryable_posts(action))

    def _record(self, details: PromotionDetails, result: PublishResult):
        previous = details.post_results.get(result.platform, {})
        entry: Dict[str, Any]
        if result.success:
            entry = {"success": True, "post_id": result.post_id}
        else:
            error_type = result.error_type or categorize_publish_error(result.error or "")
            entry = {"success": False, "error": result.error, "error_type": error_type.value}
            if result.retry_after is not None:
                entry["retry_after"] = result.retry_after
        entry["attempts"] = previous.get("attempts", 1 if previous else 0) + 1
        details.post_results[result.platform] = entry

    async def _publish(self, effect: PublishPost) -> PublishResult:
        try:
            result = await self.publisher.publish(
                effect.platform,
                effect.content,
                campaign_id=effect.campaign_id
            )
        except Exception as e:
            logger.error(f"Publishing to {effect.platform} raised: {e}")
            result = PublishResult(
                success=False,
                platform=effect.platform,
                error=str(e),
                error_type=categorize_publish_error(str(e))
            )

        if not result.success and result.error_type == PublishErrorType.AUTH_EXPIRED:
            logger.error(f"Credentials for {effect.platform} expired; reconnect the account before retrying")

        metrics.social_posts_total.labels(
            platform=effect.platform,
            result="success" if result.success else "failure"
        ).inc()
        return result

    async def _save_results(self, action: AutonomousAction):
        # Metadata only; a failed save leaves the executed record intact
        try:
            stored = await self.store.get_action(action.id)
            if stored is not None:
                stored.details = action.details
                await self.store.insert_action(stored)
        except Exception as e:
            logger.error(f"Could not store publish results for action {action.id}: {e}")
