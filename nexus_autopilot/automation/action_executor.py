"""
EventNexus Autopilot - Action Executor
Applies a recommendation to its campaign and writes the audit record.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from .locks import KeyedLocks
from .models import (
    ActionDetails,
    ActionStatus,
    ActionType,
    AutonomousAction,
    BudgetChangeDetails,
    Campaign,
    CampaignStatus,
    PauseDetails,
    PerformanceSnapshot,
    PromotionDetails,
    PublishPost,
)
from .rule_evaluator import Recommendation
from ..core.config import AutopilotSettings, DEFAULT_SOCIAL_PLATFORMS
from ..core.exceptions import (
    BudgetChangeRejectedException,
    InvalidStatusTransitionException,
    RecordNotFoundException,
    format_exception_for_logging,
)
from ..core.logging import get_logger
from ..integrations.storage import CampaignStore
from ..monitoring.metrics import metrics

logger = get_logger(__name__)


# =============================================================================
# CONFIG & RESULTS
# =============================================================================

@dataclass
class ExecutorConfig:
    """Configuration for the action executor."""
    max_increase_pct: float = 1.0  # 100% max increase
    max_decrease_pct: float = 0.5  # 50% max decrease
    min_budget: float = 5.0  # Minimum $5 budget
    max_budget: Optional[float] = None

    scale_up_pct: float = 0.5
    scale_down_pct: float = 0.25

    idempotency_window_minutes: int = 60
    social_platforms: List[str] = field(default_factory=lambda: list(DEFAULT_SOCIAL_PLATFORMS))
    dry_run: bool = False

    @classmethod
    def from_settings(cls, settings: AutopilotSettings) -> "ExecutorConfig":
        return cls(
            max_budget=settings.max_budget,
            scale_up_pct=settings.scale_up_pct,
            scale_down_pct=settings.scale_down_pct,
            idempotency_window_minutes=settings.idempotency_window_minutes,
            social_platforms=list(settings.social_platforms),
            dry_run=settings.dry_run,
        )


class ExecutionStatus(Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    DRY_RUN = "dry_run"


@dataclass
class ExecutionResult:
    """Outcome of executing one recommendation."""
    status: ExecutionStatus
    action_type: ActionType
    campaign_id: str
    action: Optional[AutonomousAction] = None
    effects: List[PublishPost] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.EXECUTED


# =============================================================================
# BUDGET SAFETY
# =============================================================================

class BudgetSafetyController:
    """Validates budget changes before applying."""

    def __init__(self, config: ExecutorConfig):
        self.config = config

    def validate(
        self,
        current: float,
        proposed: float
    ) -> tuple[bool, Optional[str]]:
        """
        Validate a budget change.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if proposed < self.config.min_budget:
            return False, f"Budget ${proposed:.2f} below minimum ${self.config.min_budget}"

        if self.config.max_budget is not None and proposed > self.config.max_budget:
            return False, f"Budget ${proposed:.2f} above cap ${self.config.max_budget:.2f}"

        if current > 0:
            change_pct = (proposed - current) / current

            if change_pct > self.config.max_increase_pct:
                return False, f"Increase {change_pct:.0%} exceeds max {self.config.max_increase_pct:.0%}"

            if change_pct < -self.config.max_decrease_pct:
                return False, f"Decrease {abs(change_pct):.0%} exceeds max {self.config.max_decrease_pct:.0%}"

        return True, None

    def propose(self, campaign: Campaign, action_type: ActionType, pct: float) -> float:
        """New budget for a scale step, clamped to the cap; raises if it fails validation."""
        if action_type == ActionType.AUTO_SCALE_UP:
            proposed = campaign.budget * (1 + pct)
            if self.config.max_budget is not None:
                proposed = min(proposed, self.config.max_budget)
        else:
            proposed = campaign.budget * (1 - pct)
        proposed = round(proposed, 2)

        if proposed == campaign.budget:
            raise BudgetChangeRejectedException(
                campaign.id, campaign.budget, proposed, "budget already at cap"
            )

        is_valid, error = self.validate(campaign.budget, proposed)
        if not is_valid:
            raise BudgetChangeRejectedException(campaign.id, campaign.budget, proposed, error)
        return proposed


# =============================================================================
# EXECUTOR
# =============================================================================

class ActionExecutor:
    """
    Mutates campaign state for one recommendation and records it.

    Flow:
    1. Skip if an action of the same type exists inside the idempotency window
    2. Capture the campaign's current state
    3. Apply the new state (status or budget)
    4. Upsert the action record as executed, or as failed after restoring state

    Promotion actions leave the campaign alone and return PublishPost
    effects for the EffectRunner instead of calling social APIs inline.
    """

    DUPLICATE_STATUSES = (ActionStatus.PENDING, ActionStatus.EXECUTED, ActionStatus.ROLLED_BACK)

    def __init__(
        self,
        store: CampaignStore,
        config: Optional[ExecutorConfig] = None
    ):
        self.store = store
        self.config = config or ExecutorConfig()
        self.safety = BudgetSafetyController(self.config)

        # Serializes check-then-write per campaign inside this process
        self._campaign_locks = KeyedLocks()

    async def execute(
        self,
        recommendation: Recommendation,
        campaign: Campaign,
        snapshot: Optional[PerformanceSnapshot] = None,
        cycle_id: Optional[str] = None,
        dry_run: Optional[bool] = None
    ) -> ExecutionResult:
        """
        Execute a recommendation against a campaign.

        Args:
            recommendation: What the evaluator wants done
            campaign: Campaign as it was when evaluated
            snapshot: Snapshot the decision was based on
            cycle_id: Cycle that produced the recommendation
            dry_run: Override config dry_run setting

        Returns:
            ExecutionResult; storage errors while writing the record propagate
        """
        dry_run = dry_run if dry_run is not None else self.config.dry_run

        async with self._campaign_locks.hold(campaign.id):
            if await self._is_duplicate(campaign.id, recommendation.action_type):
                logger.info(
                    "Skipping duplicate action",
                    campaign_id=campaign.id,
                    action_type=recommendation.action_type.value,
                    window_minutes=self.config.idempotency_window_minutes
                )
                metrics.actions_skipped.labels(action_type=recommendation.action_type.value).inc()
                return ExecutionResult(
                    status=ExecutionStatus.SKIPPED_DUPLICATE,
                    action_type=recommendation.action_type,
                    campaign_id=campaign.id
                )

            # Shielded so a cycle timeout cannot interrupt between mutation and record;
            # a cancelled caller still waits for the commit so the lock is held throughout
            commit = asyncio.ensure_future(
                self._execute_locked(recommendation, campaign, snapshot, cycle_id, dry_run)
            )
            try:
                return await asyncio.shield(commit)
            except asyncio.CancelledError:
                await commit
                raise

    async def _is_duplicate(self, campaign_id: str, action_type: ActionType) -> bool:
        since = datetime.utcnow() - timedelta(minutes=self.config.idempotency_window_minutes)
        existing = await self.store.find_actions(
            campaign_id,
            action_type=action_type,
            statuses=self.DUPLICATE_STATUSES,
            since=since
        )
        return bool(existing)

    async def _execute_locked(
        self,
        recommendation: Recommendation,
        campaign: Campaign,
        snapshot: Optional[PerformanceSnapshot],
        cycle_id: Optional[str],
        dry_run: bool
    ) -> ExecutionResult:
        current = await self.store.get_campaign(campaign.id) or campaign
        action = AutonomousAction(
            campaign_id=campaign.id,
            action_type=recommendation.action_type,
            reason=recommendation.reason,
            confidence_score=recommendation.confidence_score,
            previous_state=current.to_state(),
            expected_impact=recommendation.expected_impact,
            cycle_id=cycle_id,
        )

        try:
            action.new_state, action.details = self._plan(recommendation, current, snapshot)
        except BudgetChangeRejectedException as e:
            logger.warning(e.message, **format_exception_for_logging(e))
            return await self._record_failure(action, e)

        effects = self._effects_for(action)

        if dry_run:
            logger.info(
                f"[DRY RUN] Would apply {action.action_type.value} to campaign {campaign.id}: "
                f"{action.previous_state} -> {action.new_state or 'no state change'}"
            )
            return ExecutionResult(
                status=ExecutionStatus.DRY_RUN,
                action_type=action.action_type,
                campaign_id=campaign.id,
                action=action,
                effects=effects
            )

        if action.new_state:
            if current.status != CampaignStatus.ACTIVE:
                return await self._record_failure(
                    action,
                    InvalidStatusTransitionException(
                        "Campaign", campaign.id, current.status.value, "mutation"
                    )
                )
            try:
                await self.store.update_campaign(campaign.id, action.new_state)
            except Exception as e:
                await self._restore(action)
                return await self._record_failure(action, e)

        self._transition(action, ActionStatus.EXECUTED)
        action.executed_at = datetime.utcnow()

        try:
            await self.store.insert_action(action)
        except Exception:
            # Commit point failed: undo the mutation so no unrecorded change survives
            if action.new_state:
                await self._restore(action)
            raise

        metrics.actions_total.labels(action_type=action.action_type.value, status="executed").inc()
        metrics.confidence_distribution.labels(action_type=action.action_type.value).observe(
            action.confidence_score
        )
        logger.action_recorded(
            action.id,
            action.action_type.value,
            action.status.value,
            campaign_id=campaign.id,
            confidence_score=action.confidence_score
        )

        return ExecutionResult(
            status=ExecutionStatus.EXECUTED,
            action_type=action.action_type,
            campaign_id=campaign.id,
            action=action,
            effects=effects
        )

    def _plan(
        self,
        recommendation: Recommendation,
        campaign: Campaign,
        snapshot: Optional[PerformanceSnapshot]
    ) -> tuple[Dict, ActionDetails]:
        """New campaign state and typed details for a recommendation."""
        action_type = recommendation.action_type
        roi = snapshot.roi if snapshot else recommendation.metrics.get("roi", 0.0)

        if action_type == ActionType.AUTO_PAUSE:
            spend = snapshot.spend if snapshot else recommendation.metrics.get("spend", 0.0)
            return (
                {"status": CampaignStatus.PAUSED.value},
                PauseDetails(roi=roi, spend=spend)
            )

        if action_type in (ActionType.AUTO_SCALE_UP, ActionType.AUTO_SCALE_DOWN):
            default_pct = (
                self.config.scale_up_pct if action_type == ActionType.AUTO_SCALE_UP
                else self.config.scale_down_pct
            )
            pct = recommendation.budget_change_pct if recommendation.budget_change_pct is not None else default_pct
            new_budget = self.safety.propose(campaign, action_type, pct)
            conversions = snapshot.conversions if snapshot else int(recommendation.metrics.get("conversions", 0))
            return (
                {"budget": new_budget},
                BudgetChangeDetails(
                    previous_budget=campaign.budget,
                    new_budget=new_budget,
                    roi=roi,
                    conversions=conversions
                )
            )

        # Promotion: no campaign mutation
        ctr = snapshot.ctr if snapshot else recommendation.metrics.get("ctr", 0.0)
        return (
            {},
            PromotionDetails(
                ctr=ctr,
                platforms=list(self.config.social_platforms),
                content=self._promotion_content(campaign, ctr)
            )
        )

    def _promotion_content(self, campaign: Campaign, ctr: float) -> str:
        return f"{campaign.title}: audiences are loving it ({ctr:.1%} click-through). Don't miss out!"

    def _effects_for(self, action: AutonomousAction) -> List[PublishPost]:
        if not isinstance(action.details, PromotionDetails):
            return []
        return [
            PublishPost(
                action_id=action.id,
                campaign_id=action.campaign_id,
                platform=platform,
                content=action.details.content
            )
            for platform in action.details.platforms
        ]

    def _transition(self, action: AutonomousAction, target: ActionStatus):
        if not action.status.can_transition_to(target):
            raise InvalidStatusTransitionException(
                "AutonomousAction", action.id, action.status.value, target.value
            )
        action.status = target

    async def _restore(self, action: AutonomousAction):
        """Best-effort return to the captured state after a failed write."""
        try:
            await self.store.update_campaign(action.campaign_id, action.previous_state)
        except RecordNotFoundException:
            pass
        except Exception as e:
            logger.error(
                f"Could not restore campaign {action.campaign_id} after failed write: {e}",
                action_id=action.id
            )

    async def _record_failure(self, action: AutonomousAction, error: Exception) -> ExecutionResult:
        self._transition(action, ActionStatus.FAILED)
        action.error = str(error)
        await self.store.insert_action(action)

        metrics.actions_total.labels(action_type=action.action_type.value, status="failed").inc()
        logger.action_recorded(
            action.id,
            action.action_type.value,
            action.status.value,
            campaign_id=action.campaign_id,
            error=action.error
        )

        return ExecutionResult(
            status=ExecutionStatus.FAILED,
            action_type=action.action_type,
            campaign_id=action.campaign_id,
            action=action,
            error=action.error
        )
