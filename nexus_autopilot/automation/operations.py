"""
EventNexus Autopilot - Autonomous Operations
Operator entry points: run, rollback, retry posts, resolve, toggle, report.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .action_executor import ActionExecutor, ExecutorConfig
from .cycle_orchestrator import CycleOrchestrator, CycleResult
from .effects import EffectRunner
from .locks import CampaignLockManager, KeyedLocks
from .models import (
    ActionStatus,
    ActionType,
    AutonomousAction,
    AutonomousRule,
    OpportunityStatus,
    OptimizationOpportunity,
    PromotionDetails,
    Severity,
)
from .opportunity_detector import OpportunityDetector
from .rollback_manager import RollbackManager
from ..core.config import AutopilotSettings
from ..core.exceptions import (
    ActionNotFoundException,
    InvalidStatusTransitionException,
    OpportunityNotFoundException,
    PostRetryRefusedException,
    RuleNotFoundException,
)
from ..integrations.postgrest_store import PostgrestCampaignStore
from ..integrations.social import HttpSocialPublisher, RecordingSocialPublisher, SocialPublisher
from ..integrations.storage import CampaignStore, InMemoryCampaignStore

logger = logging.getLogger(__name__)


@dataclass
class AutonomousStats:
    total_actions: int = 0
    campaigns_paused: int = 0
    campaigns_scaled: int = 0
    open_opportunities: int = 0
    average_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "campaigns_paused": self.campaigns_paused,
            "campaigns_scaled": self.campaigns_scaled,
            "open_opportunities": self.open_opportunities,
            "average_confidence": self.average_confidence,
        }


class AutonomousOperations:
    """Facade the API and CLI call into."""

    def __init__(
        self,
        store: CampaignStore,
        orchestrator: CycleOrchestrator,
        rollback_manager: RollbackManager
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.rollback_manager = rollback_manager
        self._post_retry_locks = KeyedLocks()

    async def close(self):
        await self.orchestrator.locks.close()
        await self.orchestrator.effects.publisher.close()
        await self.store.close()

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def run_cycle(
        self,
        campaign_ids: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        dry_run: Optional[bool] = None
    ) -> CycleResult:
        return await self.orchestrator.run(campaign_ids=campaign_ids, timeout=timeout, dry_run=dry_run)

    async def rollback(self, action_id: str) -> AutonomousAction:
        return await self.rollback_manager.rollback(action_id)

    async def resolve_opportunity(
        self,
        opportunity_id: str,
        status: OpportunityStatus
    ) -> OptimizationOpportunity:
        opportunity = await self.store.get_opportunity(opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundException(opportunity_id)

        if not opportunity.status.can_transition_to(status):
            raise InvalidStatusTransitionException(
                "OptimizationOpportunity", opportunity_id, opportunity.status.value, status.value
            )

        changes: Dict[str, Any] = {"status": status}
        if status.is_terminal:
            changes["resolved_at"] = datetime.utcnow()

        updated = await self.store.update_opportunity(opportunity_id, changes)
        logger.info(f"Opportunity {opportunity_id} moved to {status.value}")
        return updated

    async def retry_failed_posts(self, action_id: str) -> AutonomousAction:
        """
        Republish the cross-posts of an executed promotion that did not go out.

        Platforms that already posted, or that used up their attempts, are left
        alone. The action's status never changes.
        """
        async with self._post_retry_locks.hold(action_id):
            action = await self.store.get_action(action_id)
            if action is None:
                raise ActionNotFoundException(action_id)
            if not isinstance(action.details, PromotionDetails):
                raise PostRetryRefusedException(action_id, "action is not a cross-post")
            if action.status != ActionStatus.EXECUTED:
                raise PostRetryRefusedException(action_id, f"action has status '{action.status.value}'")

            results = await self.orchestrator.effects.retry_failed(action)

        logger.info(
            f"Retried {len(results)} cross-posts for action {action_id}: "
            f"{sum(1 for r in results if r.success)} published"
        )
        return action

    async def toggle_rule(self, rule_id: str, active: bool) -> AutonomousRule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundException(rule_id)

        updated = await self.store.update_rule(
            rule_id, {"is_active": active, "updated_at": datetime.utcnow()}
        )
        logger.info(f"Rule {rule_id} ({rule.rule_name}) {'enabled' if active else 'disabled'}")
        return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_recent_actions(self, limit: int = 50) -> List[AutonomousAction]:
        return await self.store.list_actions(limit=limit)

    async def get_campaign_actions(self, campaign_id: str) -> List[AutonomousAction]:
        return await self.store.find_actions(campaign_id)

    async def get_open_opportunities(
        self,
        severity: Optional[Severity] = None
    ) -> List[OptimizationOpportunity]:
        return await self.store.list_opportunities(status=OpportunityStatus.OPEN, severity=severity)

    async def get_rules(self) -> List[AutonomousRule]:
        return await self.store.list_rules()

    async def get_active_rules(self) -> List[AutonomousRule]:
        return [r for r in await self.store.list_rules() if r.is_active]

    async def get_stats(self, limit: int = 1000) -> AutonomousStats:
        actions = await self.store.list_actions(limit=limit)
        opportunities = await self.store.list_opportunities(status=OpportunityStatus.OPEN)

        executed = [a for a in actions if a.status != ActionStatus.FAILED]
        stats = AutonomousStats(
            total_actions=len(actions),
            campaigns_paused=sum(1 for a in executed if a.action_type == ActionType.AUTO_PAUSE),
            campaigns_scaled=sum(
                1 for a in executed
                if a.action_type in (ActionType.AUTO_SCALE_UP, ActionType.AUTO_SCALE_DOWN)
            ),
            open_opportunities=len(opportunities),
        )
        if actions:
            stats.average_confidence = round(
                sum(a.confidence_score for a in actions) / len(actions), 1
            )
        return stats


# =============================================================================
# FACTORY
# =============================================================================

def build_operations(
    settings: AutopilotSettings,
    store: Optional[CampaignStore] = None,
    publisher: Optional[SocialPublisher] = None,
    locks: Optional[CampaignLockManager] = None
) -> AutonomousOperations:
    """Wire every component from settings. Backends default from settings too."""
    if store is None:
        if settings.backend_url:
            store = PostgrestCampaignStore(settings.backend_url, settings.service_key)
        else:
            logger.warning("No backend configured. Using in-memory store.")
            store = InMemoryCampaignStore()

    if publisher is None:
        if settings.social_endpoint:
            publisher = HttpSocialPublisher(settings.social_endpoint, settings.service_key)
        else:
            logger.warning("No social endpoint configured. Cross-posts are recorded only.")
            publisher = RecordingSocialPublisher()

    locks = locks or CampaignLockManager(redis_url=settings.redis_url or None)

    executor = ActionExecutor(store, ExecutorConfig.from_settings(settings))
    orchestrator = CycleOrchestrator(
        store=store,
        executor=executor,
        detector=OpportunityDetector(store),
        effects=EffectRunner(publisher, store, max_attempts=settings.max_post_attempts),
        locks=locks,
        max_concurrency=settings.max_concurrency,
        timeout_seconds=settings.cycle_timeout_seconds,
    )
    return AutonomousOperations(store, orchestrator, RollbackManager(store))
