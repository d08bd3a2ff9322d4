"""
EventNexus Autopilot - Rollback Manager Tests
"""

import pytest
from unittest.mock import AsyncMock

from nexus_autopilot.automation.action_executor import ActionExecutor, ExecutorConfig
from nexus_autopilot.automation.models import (
    ActionStatus,
    ActionType,
    AutonomousAction,
    CampaignStatus,
)
from nexus_autopilot.automation.rollback_manager import RollbackManager
from nexus_autopilot.automation.rule_evaluator import EvaluatorRule, Recommendation
from nexus_autopilot.core.exceptions import (
    ActionNotFoundException,
    CampaignMissingException,
    InvalidActionStateException,
    RollbackException,
    StorageWriteException,
)


@pytest.fixture
def executor(store):
    return ActionExecutor(store, ExecutorConfig(social_platforms=["facebook"]))


@pytest.fixture
def manager(store):
    return RollbackManager(store)


def recommendation(action_type):
    rule = {
        ActionType.AUTO_PAUSE: EvaluatorRule.AUTO_PAUSE,
        ActionType.AUTO_SCALE_UP: EvaluatorRule.AUTO_SCALE_UP,
        ActionType.OPTIMIZATION_APPLIED: EvaluatorRule.AUTO_POST,
    }[action_type]
    return Recommendation(action_type=action_type, rule=rule, reason="test", confidence_score=50.0)


class TestRollback:

    @pytest.mark.asyncio
    async def test_pause_round_trip(self, executor, manager, store, make_campaign):
        campaign = make_campaign(budget=90.0)
        before = store.campaigns[campaign.id].to_state()
        result = await executor.execute(recommendation(ActionType.AUTO_PAUSE), campaign)

        action = await manager.rollback(result.action.id)

        assert action.status == ActionStatus.ROLLED_BACK
        assert store.actions[action.id].status == ActionStatus.ROLLED_BACK
        assert store.campaigns[campaign.id].to_state() == before
        assert store.campaigns[campaign.id].status == CampaignStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_scale_round_trip(self, executor, manager, store, make_campaign):
        campaign = make_campaign(budget=200.0)
        result = await executor.execute(recommendation(ActionType.AUTO_SCALE_UP), campaign)
        assert store.campaigns[campaign.id].budget == 300.0

        await manager.rollback(result.action.id)

        assert store.campaigns[campaign.id].budget == 200.0

    @pytest.mark.asyncio
    async def test_second_rollback_is_refused(self, executor, manager, store, make_campaign):
        campaign = make_campaign()
        result = await executor.execute(recommendation(ActionType.AUTO_PAUSE), campaign)
        await manager.rollback(result.action.id)

        with pytest.raises(InvalidActionStateException) as exc_info:
            await manager.rollback(result.action.id)

        assert exc_info.value.details["status"] == "rolled_back"

    @pytest.mark.asyncio
    async def test_action_locks_not_retained(self, executor, manager, make_campaign):
        result = await executor.execute(recommendation(ActionType.AUTO_PAUSE), make_campaign())

        await manager.rollback(result.action.id)
        with pytest.raises(InvalidActionStateException):
            await manager.rollback(result.action.id)

        assert len(manager._action_locks) == 0

    @pytest.mark.asyncio
    async def test_failed_action_cannot_be_rolled_back(self, manager, store, make_campaign):
        campaign = make_campaign()
        action = AutonomousAction(
            campaign_id=campaign.id,
            action_type=ActionType.AUTO_PAUSE,
            reason="test",
            confidence_score=40.0,
            previous_state=campaign.to_state(),
            status=ActionStatus.FAILED,
        )
        await store.insert_action(action)

        with pytest.raises(InvalidActionStateException):
            await manager.rollback(action.id)

    @pytest.mark.asyncio
    async def test_unknown_action(self, manager):
        with pytest.raises(ActionNotFoundException):
            await manager.rollback("missing")

    @pytest.mark.asyncio
    async def test_deleted_campaign(self, executor, manager, store, make_campaign):
        campaign = make_campaign()
        result = await executor.execute(recommendation(ActionType.AUTO_PAUSE), campaign)
        del store.campaigns[campaign.id]

        with pytest.raises(CampaignMissingException):
            await manager.rollback(result.action.id)

        assert store.actions[result.action.id].status == ActionStatus.EXECUTED

    @pytest.mark.asyncio
    async def test_restore_failure_is_typed(self, executor, manager, store, make_campaign):
        campaign = make_campaign()
        result = await executor.execute(recommendation(ActionType.AUTO_PAUSE), campaign)
        store.update_campaign = AsyncMock(side_effect=StorageWriteException("down", table="campaigns"))

        with pytest.raises(RollbackException):
            await manager.rollback(result.action.id)

        assert store.actions[result.action.id].status == ActionStatus.EXECUTED

    @pytest.mark.asyncio
    async def test_promotion_rollback_only_marks_action(self, executor, manager, store, make_campaign):
        campaign = make_campaign()
        result = await executor.execute(recommendation(ActionType.OPTIMIZATION_APPLIED), campaign)
        store.update_campaign = AsyncMock()

        action = await manager.rollback(result.action.id)

        assert action.status == ActionStatus.ROLLED_BACK
        store.update_campaign.assert_not_called()
