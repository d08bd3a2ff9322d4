"""
EventNexus Autopilot - Storage Boundary
The managed backend seen as row CRUD: campaigns, performance counters,
autonomous actions, optimization opportunities and rules.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..automation.models import (
    ActionStatus,
    ActionType,
    AutonomousAction,
    AutonomousRule,
    Campaign,
    CampaignStatus,
    OpportunityStatus,
    OpportunityType,
    OptimizationOpportunity,
    PerformanceRecord,
    Severity,
)
from ..core.exceptions import (
    ActionNotFoundException,
    OpportunityNotFoundException,
    RecordNotFoundException,
    RuleNotFoundException,
)

logger = logging.getLogger(__name__)


class CampaignStore(ABC):
    """Operations the optimizer needs from the backend."""

    # Campaigns
    @abstractmethod
    async def list_active_campaigns(self) -> List[Campaign]: ...

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]: ...

    @abstractmethod
    async def update_campaign(self, campaign_id: str, changes: Dict[str, Any]) -> Campaign:
        """Apply a partial update in one write; raises RecordNotFoundException."""

    @abstractmethod
    async def mark_evaluated(
        self,
        campaign_id: str,
        expected: Optional[datetime],
        evaluated_at: datetime
    ) -> bool:
        """Compare-and-swap on last_evaluated_at. False when another run won."""

    # Performance
    @abstractmethod
    async def get_performance_records(
        self,
        campaign_id: str,
        since: Optional[datetime] = None
    ) -> List[PerformanceRecord]: ...

    # Actions
    @abstractmethod
    async def insert_action(self, action: AutonomousAction) -> str:
        """Upsert the full record; this write is the action's commit point."""

    @abstractmethod
    async def get_action(self, action_id: str) -> Optional[AutonomousAction]: ...

    @abstractmethod
    async def update_action_status(self, action_id: str, status: ActionStatus) -> None: ...

    @abstractmethod
    async def find_actions(
        self,
        campaign_id: str,
        action_type: Optional[ActionType] = None,
        statuses: Optional[Iterable[ActionStatus]] = None,
        since: Optional[datetime] = None
    ) -> List[AutonomousAction]: ...

    @abstractmethod
    async def list_actions(self, limit: int = 50) -> List[AutonomousAction]: ...

    # Opportunities
    @abstractmethod
    async def insert_opportunity(self, opportunity: OptimizationOpportunity) -> str: ...

    @abstractmethod
    async def get_opportunity(self, opportunity_id: str) -> Optional[OptimizationOpportunity]: ...

    @abstractmethod
    async def find_open_opportunity(
        self,
        campaign_id: str,
        opportunity_type: OpportunityType
    ) -> Optional[OptimizationOpportunity]: ...

    @abstractmethod
    async def list_opportunities(
        self,
        status: Optional[OpportunityStatus] = None,
        severity: Optional[Severity] = None
    ) -> List[OptimizationOpportunity]: ...

    @abstractmethod
    async def update_opportunity(
        self,
        opportunity_id: str,
        changes: Dict[str, Any]
    ) -> OptimizationOpportunity: ...

    # Rules
    @abstractmethod
    async def list_rules(self) -> List[AutonomousRule]: ...

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[AutonomousRule]: ...

    @abstractmethod
    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> AutonomousRule: ...

    async def close(self):
        """Release connections. Override if needed."""
        pass


class InMemoryCampaignStore(CampaignStore):
    """
    Process-local store for development and tests.
    Returns copies so callers never alias stored state.
    """

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.performance: Dict[str, List[PerformanceRecord]] = {}
        self.actions: Dict[str, AutonomousAction] = {}
        self.opportunities: Dict[str, OptimizationOpportunity] = {}
        self.rules: Dict[str, AutonomousRule] = {}
        self._cas_lock = asyncio.Lock()

    # Seeding helpers
    def add_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.id] = copy.deepcopy(campaign)
        return campaign

    def add_performance(self, record: PerformanceRecord):
        self.performance.setdefault(record.campaign_id, []).append(copy.deepcopy(record))

    def add_rule(self, rule: AutonomousRule):
        self.rules[rule.id] = copy.deepcopy(rule)

    # Campaigns
    async def list_active_campaigns(self) -> List[Campaign]:
        return [
            copy.deepcopy(c) for c in self.campaigns.values()
            if c.status == CampaignStatus.ACTIVE
        ]

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        return copy.deepcopy(campaign) if campaign else None

    async def update_campaign(self, campaign_id: str, changes: Dict[str, Any]) -> Campaign:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            raise RecordNotFoundException("Campaign", campaign_id)

        updated = copy.deepcopy(campaign)
        for key, value in changes.items():
            if key == "status":
                value = CampaignStatus(value) if not isinstance(value, CampaignStatus) else value
            elif key == "budget":
                value = float(value)
            elif not hasattr(updated, key):
                raise RecordNotFoundException("Campaign field", key)
            setattr(updated, key, value)

        self.campaigns[campaign_id] = updated
        return copy.deepcopy(updated)

    async def mark_evaluated(
        self,
        campaign_id: str,
        expected: Optional[datetime],
        evaluated_at: datetime
    ) -> bool:
        async with self._cas_lock:
            campaign = self.campaigns.get(campaign_id)
            if campaign is None:
                raise RecordNotFoundException("Campaign", campaign_id)
            if campaign.last_evaluated_at != expected:
                return False
            campaign.last_evaluated_at = evaluated_at
            return True

    # Performance
    async def get_performance_records(
        self,
        campaign_id: str,
        since: Optional[datetime] = None
    ) -> List[PerformanceRecord]:
        records = self.performance.get(campaign_id, [])
        if since is not None:
            records = [r for r in records if r.recorded_at >= since]
        return sorted((copy.deepcopy(r) for r in records), key=lambda r: r.recorded_at)

    # Actions
    async def insert_action(self, action: AutonomousAction) -> str:
        self.actions[action.id] = copy.deepcopy(action)
        return action.id

    async def get_action(self, action_id: str) -> Optional[AutonomousAction]:
        action = self.actions.get(action_id)
        return copy.deepcopy(action) if action else None

    async def update_action_status(self, action_id: str, status: ActionStatus) -> None:
        action = self.actions.get(action_id)
        if action is None:
            raise ActionNotFoundException(action_id)
        action.status = status

    async def find_actions(
        self,
        campaign_id: str,
        action_type: Optional[ActionType] = None,
        statuses: Optional[Iterable[ActionStatus]] = None,
        since: Optional[datetime] = None
    ) -> List[AutonomousAction]:
        wanted = set(statuses) if statuses is not None else None
        found = []
        for action in self.actions.values():
            if action.campaign_id != campaign_id:
                continue
            if action_type is not None and action.action_type != action_type:
                continue
            if wanted is not None and action.status not in wanted:
                continue
            if since is not None and action.created_at < since:
                continue
            found.append(copy.deepcopy(action))
        return sorted(found, key=lambda a: a.created_at, reverse=True)

    async def list_actions(self, limit: int = 50) -> List[AutonomousAction]:
        ordered = sorted(self.actions.values(), key=lambda a: a.created_at, reverse=True)
        return [copy.deepcopy(a) for a in ordered[:limit]]

    # Opportunities
    async def insert_opportunity(self, opportunity: OptimizationOpportunity) -> str:
        self.opportunities[opportunity.id] = copy.deepcopy(opportunity)
        return opportunity.id

    async def get_opportunity(self, opportunity_id: str) -> Optional[OptimizationOpportunity]:
        opportunity = self.opportunities.get(opportunity_id)
        return copy.deepcopy(opportunity) if opportunity else None

    async def find_open_opportunity(
        self,
        campaign_id: str,
        opportunity_type: OpportunityType
    ) -> Optional[OptimizationOpportunity]:
        for opportunity in self.opportunities.values():
            if (
                opportunity.campaign_id == campaign_id
                and opportunity.opportunity_type == opportunity_type
                and opportunity.status == OpportunityStatus.OPEN
            ):
                return copy.deepcopy(opportunity)
        return None

    async def list_opportunities(
        self,
        status: Optional[OpportunityStatus] = None,
        severity: Optional[Severity] = None
    ) -> List[OptimizationOpportunity]:
        found = [
            copy.deepcopy(o) for o in self.opportunities.values()
            if (status is None or o.status == status)
            and (severity is None or o.severity == severity)
        ]
        return sorted(found, key=lambda o: o.created_at, reverse=True)

    async def update_opportunity(
        self,
        opportunity_id: str,
        changes: Dict[str, Any]
    ) -> OptimizationOpportunity:
        opportunity = self.opportunities.get(opportunity_id)
        if opportunity is None:
            raise OpportunityNotFoundException(opportunity_id)
        for key, value in changes.items():
            setattr(opportunity, key, value)
        return copy.deepcopy(opportunity)

    # Rules
    async def list_rules(self) -> List[AutonomousRule]:
        return sorted(
            (copy.deepcopy(r) for r in self.rules.values()),
            key=lambda r: r.priority,
            reverse=True
        )

    async def get_rule(self, rule_id: str) -> Optional[AutonomousRule]:
        rule = self.rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> AutonomousRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundException(rule_id)
        for key, value in changes.items():
            setattr(rule, key, value)
        return copy.deepcopy(rule)
