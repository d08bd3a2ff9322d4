"""
EventNexus Autopilot - PostgREST Store
CampaignStore backed by the managed Postgres REST API (/rest/v1/<table>).
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .storage import CampaignStore
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
    DatabaseException,
    OpportunityNotFoundException,
    RecordNotFoundException,
    RuleNotFoundException,
    StorageWriteException,
    ValidationException,
)
from ..core.retry import retry_async

logger = logging.getLogger(__name__)


CAMPAIGNS = "campaigns"
PERFORMANCE = "campaign_performance"
ACTIONS = "autonomous_actions"
OPPORTUNITIES = "optimization_opportunities"
RULES = "autonomous_rules"

read_retry = retry_async(
    exceptions=(DatabaseException,),
    max_retries=3,
    base_delay=0.5,
    max_delay=10.0,
    non_retryable=(ValidationException, RecordNotFoundException)
)


def _iso(value: datetime) -> str:
    # Stored timestamps are naive UTC
    return value.isoformat() + "+00:00"


def _serialize(changes: Dict[str, Any]) -> Dict[str, Any]:
    body = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            value = _iso(value)
        elif isinstance(value, Enum):
            value = value.value
        body[key] = value
    return body


class PostgrestCampaignStore(CampaignStore):
    """
    Talks to a PostgREST-style API with the service key.

    Reads are retried with exponential backoff. Action records are written
    with a single upsert, which is their commit point.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1",
            timeout=timeout,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            }
        )

    async def close(self):
        await self.http_client.aclose()

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        operation = "SELECT" if method == "GET" else method

        try:
            response = await self.http_client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise DatabaseException(
                f"{method} {table} failed: {e}", operation=operation, table=table, cause=e
            ) from e

        if response.status_code >= 500:
            raise DatabaseException(
                f"{method} {table} returned {response.status_code}",
                operation=operation,
                table=table,
                details={"response": response.text[:200]}
            )
        if response.status_code >= 400:
            raise ValidationException(
                f"{method} {table} rejected with {response.status_code}: {response.text[:200]}",
                field=table
            )

        if not response.content:
            return None
        return response.json()

    async def _write(self, method: str, table: str, **kwargs) -> Any:
        try:
            return await self._request(method, table, **kwargs)
        except DatabaseException as e:
            raise StorageWriteException(e.message, table=table, cause=e) from e

    @read_retry
    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        return await self._request("GET", table, params={"select": "*", **params}) or []

    async def _select_one(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._select(table, {"id": f"eq.{row_id}", "limit": "1"})
        return rows[0] if rows else None

    async def _patch(self, table: str, params: Dict[str, str], changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._write(
            "PATCH", table, params=params, json=_serialize(changes), prefer="return=representation"
        ) or []

    # =========================================================================
    # CAMPAIGNS
    # =========================================================================

    async def list_active_campaigns(self) -> List[Campaign]:
        rows = await self._select(CAMPAIGNS, {"status": f"eq.{CampaignStatus.ACTIVE.value}"})
        return [Campaign.from_dict(row) for row in rows]

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        row = await self._select_one(CAMPAIGNS, campaign_id)
        return Campaign.from_dict(row) if row else None

    async def update_campaign(self, campaign_id: str, changes: Dict[str, Any]) -> Campaign:
        rows = await self._patch(CAMPAIGNS, {"id": f"eq.{campaign_id}"}, changes)
        if not rows:
            raise RecordNotFoundException("Campaign", campaign_id)
        return Campaign.from_dict(rows[0])

    async def mark_evaluated(
        self,
        campaign_id: str,
        expected: Optional[datetime],
        evaluated_at: datetime
    ) -> bool:
        params = {"id": f"eq.{campaign_id}"}
        params["last_evaluated_at"] = "is.null" if expected is None else f"eq.{_iso(expected)}"
        rows = await self._patch(CAMPAIGNS, params, {"last_evaluated_at": evaluated_at})
        return bool(rows)

    # =========================================================================
    # PERFORMANCE
    # =========================================================================

    async def get_performance_records(
        self,
        campaign_id: str,
        since: Optional[datetime] = None
    ) -> List[PerformanceRecord]:
        params = {"campaign_id": f"eq.{campaign_id}", "order": "recorded_at.asc"}
        if since is not None:
            params["recorded_at"] = f"gte.{_iso(since)}"
        rows = await self._select(PERFORMANCE, params)
        return [PerformanceRecord.from_dict(row) for row in rows]

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def insert_action(self, action: AutonomousAction) -> str:
        row = action.to_dict()
        for key in ("created_at", "executed_at"):
            if row[key]:
                row[key] = _iso(getattr(action, key))
        await self._write(
            "POST",
            ACTIONS,
            params={"on_conflict": "id"},
            json=row,
            prefer="resolution=merge-duplicates,return=minimal"
        )
        return action.id

    async def get_action(self, action_id: str) -> Optional[AutonomousAction]:
        row = await self._select_one(ACTIONS, action_id)
        return AutonomousAction.from_dict(row) if row else None

    async def update_action_status(self, action_id: str, status: ActionStatus) -> None:
        rows = await self._patch(ACTIONS, {"id": f"eq.{action_id}"}, {"status": status})
        if not rows:
            raise ActionNotFoundException(action_id)

    async def find_actions(
        self,
        campaign_id: str,
        action_type: Optional[ActionType] = None,
        statuses: Optional[Iterable[ActionStatus]] = None,
        since: Optional[datetime] = None
    ) -> List[AutonomousAction]:
        params = {"campaign_id": f"eq.{campaign_id}", "order": "created_at.desc"}
        if action_type is not None:
            params["action_type"] = f"eq.{action_type.value}"
        if statuses is not None:
            params["status"] = "in.(" + ",".join(s.value for s in statuses) + ")"
        if since is not None:
            params["created_at"] = f"gte.{_iso(since)}"
        rows = await self._select(ACTIONS, params)
        return [AutonomousAction.from_dict(row) for row in rows]

    async def list_actions(self, limit: int = 50) -> List[AutonomousAction]:
        rows = await self._select(ACTIONS, {"order": "created_at.desc", "limit": str(limit)})
        return [AutonomousAction.from_dict(row) for row in rows]

    # =========================================================================
    # OPPORTUNITIES
    # =========================================================================

    async def insert_opportunity(self, opportunity: OptimizationOpportunity) -> str:
        row = opportunity.to_dict()
        row["created_at"] = _iso(opportunity.created_at)
        if opportunity.resolved_at:
            row["resolved_at"] = _iso(opportunity.resolved_at)
        await self._write("POST", OPPORTUNITIES, json=row, prefer="return=minimal")
        return opportunity.id

    async def get_opportunity(self, opportunity_id: str) -> Optional[OptimizationOpportunity]:
        row = await self._select_one(OPPORTUNITIES, opportunity_id)
        return OptimizationOpportunity.from_dict(row) if row else None

    async def find_open_opportunity(
        self,
        campaign_id: str,
        opportunity_type: OpportunityType
    ) -> Optional[OptimizationOpportunity]:
        rows = await self._select(OPPORTUNITIES, {
            "campaign_id": f"eq.{campaign_id}",
            "opportunity_type": f"eq.{opportunity_type.value}",
            "status": f"eq.{OpportunityStatus.OPEN.value}",
            "limit": "1",
        })
        return OptimizationOpportunity.from_dict(rows[0]) if rows else None

    async def list_opportunities(
        self,
        status: Optional[OpportunityStatus] = None,
        severity: Optional[Severity] = None
    ) -> List[OptimizationOpportunity]:
        params = {"order": "created_at.desc"}
        if status is not None:
            params["status"] = f"eq.{status.value}"
        if severity is not None:
            params["severity"] = f"eq.{severity.value}"
        rows = await self._select(OPPORTUNITIES, params)
        return [OptimizationOpportunity.from_dict(row) for row in rows]

    async def update_opportunity(
        self,
        opportunity_id: str,
        changes: Dict[str, Any]
    ) -> OptimizationOpportunity:
        rows = await self._patch(OPPORTUNITIES, {"id": f"eq.{opportunity_id}"}, changes)
        if not rows:
            raise OpportunityNotFoundException(opportunity_id)
        return OptimizationOpportunity.from_dict(rows[0])

    # =========================================================================
    # RULES
    # =========================================================================

    async def list_rules(self) -> List[AutonomousRule]:
        rows = await self._select(RULES, {"order": "priority.desc"})
        return [AutonomousRule.from_dict(row) for row in rows]

    async def get_rule(self, rule_id: str) -> Optional[AutonomousRule]:
        row = await self._select_one(RULES, rule_id)
        return AutonomousRule.from_dict(row) if row else None

    async def update_rule(self, rule_id: str, changes: Dict[str, Any]) -> AutonomousRule:
        rows = await self._patch(RULES, {"id": f"eq.{rule_id}"}, changes)
        if not rows:
            raise RuleNotFoundException(rule_id)
        return AutonomousRule.from_dict(rows[0])
