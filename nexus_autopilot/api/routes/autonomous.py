"""
EventNexus Autopilot - Autonomous Operations Routes
Operator surface for running cycles, rolling back and managing rules.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ...automation.models import (
    AutonomousAction,
    AutonomousRule,
    OpportunityStatus,
    OptimizationOpportunity,
    Severity,
)
from ...automation.operations import AutonomousOperations

router = APIRouter(prefix="/autonomous", tags=["Autonomous Operations"])


# =============================================================================
# SCHEMAS
# =============================================================================

class RunCycleRequest(BaseModel):
    campaign_ids: Optional[List[str]] = Field(None, description="Campaign IDs to evaluate (all active if empty)")
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Wall-clock budget for the run")
    dry_run: Optional[bool] = Field(None, description="Decide without changing anything")


class CycleSummary(BaseModel):
    campaigns_paused: int
    campaigns_scaled: int
    campaigns_posted: int
    opportunities_detected: int
    campaigns_failed: int


class CycleResponse(BaseModel):
    cycle_id: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime]
    summary: CycleSummary
    campaigns_evaluated: int
    campaigns_succeeded: int
    campaigns_no_action: int
    campaigns_insufficient_data: int
    campaigns_skipped: int
    timed_out: bool
    dry_run: bool
    errors: Dict[str, str]
    campaigns: List[Dict[str, Any]]


class ActionResponse(BaseModel):
    id: str
    campaign_id: str
    action_type: str
    reason: str
    confidence_score: float
    status: str
    previous_state: Dict[str, Any]
    new_state: Dict[str, Any]
    details: Dict[str, Any]
    expected_impact: str
    error: Optional[str]
    cycle_id: Optional[str]
    created_at: datetime
    executed_at: Optional[datetime]

    @classmethod
    def from_action(cls, action: AutonomousAction) -> "ActionResponse":
        return cls(**action.to_dict())


class OpportunityResponse(BaseModel):
    id: str
    campaign_id: str
    opportunity_type: str
    severity: str
    description: str
    suggested_action: str
    confidence_score: float
    estimated_impact: Dict[str, Any]
    status: str
    created_at: datetime
    resolved_at: Optional[datetime]

    @classmethod
    def from_opportunity(cls, opportunity: OptimizationOpportunity) -> "OpportunityResponse":
        return cls(**opportunity.to_dict())


class OpportunityUpdateRequest(BaseModel):
    status: OpportunityStatus


class RuleResponse(BaseModel):
    id: str
    rule_name: str
    rule_type: str
    condition: Dict[str, Any]
    action: Dict[str, Any]
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime]

    @classmethod
    def from_rule(cls, rule: AutonomousRule) -> "RuleResponse":
        return cls(**rule.to_dict())


class RuleToggleRequest(BaseModel):
    is_active: bool


class StatsResponse(BaseModel):
    total_actions: int
    campaigns_paused: int
    campaigns_scaled: int
    open_opportunities: int
    average_confidence: float


# =============================================================================
# DEPENDENCY
# =============================================================================

def get_operations(request: Request) -> AutonomousOperations:
    return request.app.state.operations


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/run", response_model=CycleResponse)
async def run_cycle(
    request: RunCycleRequest,
    operations: AutonomousOperations = Depends(get_operations)
):
    """
    Run one optimization cycle now.

    Per-campaign failures are reported in `errors` and never abort the run.
    """
    result = await operations.run_cycle(
        campaign_ids=request.campaign_ids,
        timeout=request.timeout_seconds,
        dry_run=request.dry_run
    )
    return CycleResponse(**result.to_dict())


@router.post("/actions/{action_id}/rollback", response_model=ActionResponse)
async def rollback_action(
    action_id: str,
    operations: AutonomousOperations = Depends(get_operations)
):
    """Restore the campaign state captured before an executed action."""
    action = await operations.rollback(action_id)
    return ActionResponse.from_action(action)


@router.post("/actions/{action_id}/retry-posts", response_model=ActionResponse)
async def retry_failed_posts(
    action_id: str,
    operations: AutonomousOperations = Depends(get_operations)
):
    """Republish cross-posts that failed; the action status is left as is."""
    action = await operations.retry_failed_posts(action_id)
    return ActionResponse.from_action(action)


@router.get("/actions", response_model=List[ActionResponse])
async def list_actions(
    campaign_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    operations: AutonomousOperations = Depends(get_operations)
):
    if campaign_id:
        actions = await operations.get_campaign_actions(campaign_id)
    else:
        actions = await operations.get_recent_actions(limit=limit)
    return [ActionResponse.from_action(a) for a in actions]


@router.get("/opportunities", response_model=List[OpportunityResponse])
async def list_opportunities(
    severity: Optional[Severity] = None,
    operations: AutonomousOperations = Depends(get_operations)
):
    opportunities = await operations.get_open_opportunities(severity=severity)
    return [OpportunityResponse.from_opportunity(o) for o in opportunities]


@router.patch("/opportunities/{opportunity_id}", response_model=OpportunityResponse)
async def update_opportunity(
    opportunity_id: str,
    request: OpportunityUpdateRequest,
    operations: AutonomousOperations = Depends(get_operations)
):
    opportunity = await operations.resolve_opportunity(opportunity_id, request.status)
    return OpportunityResponse.from_opportunity(opportunity)


@router.get("/rules", response_model=List[RuleResponse])
async def list_rules(
    active_only: bool = False,
    operations: AutonomousOperations = Depends(get_operations)
):
    rules = await (operations.get_active_rules() if active_only else operations.get_rules())
    return [RuleResponse.from_rule(r) for r in rules]


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def toggle_rule(
    rule_id: str,
    request: RuleToggleRequest,
    operations: AutonomousOperations = Depends(get_operations)
):
    """Enable or disable a rule; the next cycle picks up the change."""
    rule = await operations.toggle_rule(rule_id, request.is_active)
    return RuleResponse.from_rule(rule)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(operations: AutonomousOperations = Depends(get_operations)):
    stats = await operations.get_stats()
    return StatsResponse(**stats.to_dict())
