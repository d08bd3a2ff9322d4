"""
EventNexus Autopilot - Rollback Manager
Operator-triggered reversal of executed autonomous actions.
"""

from .locks import KeyedLocks
from .models import ActionStatus, AutonomousAction
from ..core.exceptions import (
    ActionNotFoundException,
    CampaignMissingException,
    InvalidActionStateException,
    RollbackException,
)
from ..core.logging import get_logger
from ..integrations.storage import CampaignStore
from ..monitoring.metrics import metrics

logger = get_logger(__name__)


class RollbackManager:
    """
    Restores a campaign to the state captured on an executed action.

    Every failure is raised as a RollbackException subclass (or
    ActionNotFoundException); nothing is silently skipped.
    """

    def __init__(self, store: CampaignStore):
        self.store = store
        self._action_locks = KeyedLocks()

    async def rollback(self, action_id: str) -> AutonomousAction:
        async with self._action_locks.hold(action_id):
            try:
                action = await self._rollback_locked(action_id)
            except (RollbackException, ActionNotFoundException) as e:
                metrics.rollbacks_total.labels(result=type(e).__name__).inc()
                logger.warning(f"Rollback of action {action_id} refused: {e.message}")
                raise
            except Exception:
                metrics.rollbacks_total.labels(result="error").inc()
                raise

        metrics.rollbacks_total.labels(result="success").inc()
        return action

    async def _rollback_locked(self, action_id: str) -> AutonomousAction:
        action = await self.store.get_action(action_id)
        if action is None:
            raise ActionNotFoundException(action_id)

        if action.status != ActionStatus.EXECUTED:
            raise InvalidActionStateException(action_id, action.status.value)

        campaign = await self.store.get_campaign(action.campaign_id)
        if campaign is None:
            raise CampaignMissingException(action_id, action.campaign_id)

        # Promotions change no campaign state, so there is nothing to restore
        if action.new_state:
            try:
                await self.store.update_campaign(campaign.id, dict(action.previous_state))
            except Exception as e:
                raise RollbackException(
                    f"Could not restore campaign '{campaign.id}': {e}",
                    action_id=action_id,
                    cause=e
                ) from e

        await self.store.update_action_status(action_id, ActionStatus.ROLLED_BACK)
        action.status = ActionStatus.ROLLED_BACK

        logger.action_recorded(
            action.id,
            action.action_type.value,
            action.status.value,
            campaign_id=campaign.id,
            restored_state=action.previous_state
        )
        return action
