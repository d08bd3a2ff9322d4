"""
EventNexus Autopilot - Domain Models
Campaigns, performance snapshots, autonomous actions, opportunities and rules.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def new_id() -> str:
    return str(uuid.uuid4())


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division that yields 0.0 for a zero denominator."""
    if not denominator:
        return 0.0
    return numerator / denominator


# =============================================================================
# CAMPAIGN
# =============================================================================

class CampaignStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class Campaign:
    """Marketing campaign as seen by the optimizer."""
    id: str
    title: str
    status: CampaignStatus
    budget: float
    tracking_id: Optional[str] = None
    owner_id: Optional[str] = None
    started_at: Optional[datetime] = None
    last_evaluated_at: Optional[datetime] = None

    def to_state(self) -> Dict[str, Any]:
        """State captured before an action, restored on rollback."""
        return {"status": self.status.value, "budget": self.budget}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "budget": self.budget,
            "tracking_id": self.tracking_id,
            "owner_id": self.owner_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_evaluated_at": self.last_evaluated_at.isoformat() if self.last_evaluated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Campaign":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            status=CampaignStatus(str(data.get("status", "draft")).lower()),
            budget=float(data.get("budget") or 0.0),
            tracking_id=data.get("tracking_id"),
            owner_id=data.get("owner_id"),
            started_at=parse_timestamp(data.get("started_at")),
            last_evaluated_at=parse_timestamp(data.get("last_evaluated_at")),
        )

    def hours_running(self, now: Optional[datetime] = None) -> float:
        if not self.started_at:
            return 0.0
        now = now or datetime.utcnow()
        return max(0.0, (now - self.started_at).total_seconds() / 3600)


# =============================================================================
# PERFORMANCE SNAPSHOT
# =============================================================================

@dataclass
class PerformanceRecord:
    """Raw counter row as written by the tracking pipeline."""
    campaign_id: str
    recorded_at: datetime
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0
    segment: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceRecord":
        return cls(
            campaign_id=data["campaign_id"],
            recorded_at=parse_timestamp(data.get("recorded_at")) or datetime.utcnow(),
            impressions=int(data.get("impressions") or 0),
            clicks=int(data.get("clicks") or 0),
            conversions=int(data.get("conversions") or 0),
            spend=float(data.get("spend") or 0.0),
            revenue=float(data.get("revenue") or 0.0),
            segment=data.get("segment"),
        )


@dataclass
class SegmentMetrics:
    """Performance of one audience segment inside a campaign."""
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0

    @property
    def ctr(self) -> float:
        return safe_ratio(self.clicks, self.impressions)


@dataclass
class PerformanceSnapshot:
    """Point-in-time aggregate of a campaign's counters."""
    campaign_id: str
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0
    hours_running: float = 0.0
    captured_at: datetime = field(default_factory=datetime.utcnow)
    segments: Dict[str, SegmentMetrics] = field(default_factory=dict)
    ctr_history: List[float] = field(default_factory=list)

    @property
    def ctr(self) -> float:
        return safe_ratio(self.clicks, self.impressions)

    @property
    def conversion_rate(self) -> float:
        return safe_ratio(self.conversions, self.clicks)

    @property
    def roi(self) -> float:
        return safe_ratio(self.revenue - self.spend, self.spend)

    @property
    def is_complete(self) -> bool:
        """A snapshot without impressions carries no signal to act on."""
        return self.impressions > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "spend": round(self.spend, 2),
            "revenue": round(self.revenue, 2),
            "ctr": round(self.ctr, 4),
            "conversion_rate": round(self.conversion_rate, 4),
            "roi": round(self.roi, 4),
            "hours_running": round(self.hours_running, 1),
        }


# =============================================================================
# AUTONOMOUS ACTIONS
# =============================================================================

class ActionType(Enum):
    AUTO_PAUSE = "auto_pause"
    AUTO_SCALE_UP = "auto_scale_up"
    AUTO_SCALE_DOWN = "auto_scale_down"
    OPTIMIZATION_APPLIED = "optimization_applied"


class ActionStatus(Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    def can_transition_to(self, target: "ActionStatus") -> bool:
        return target in _ACTION_TRANSITIONS[self]


_ACTION_TRANSITIONS = {
    ActionStatus.PENDING: {ActionStatus.EXECUTED, ActionStatus.FAILED},
    ActionStatus.EXECUTED: {ActionStatus.ROLLED_BACK, ActionStatus.FAILED},
    ActionStatus.ROLLED_BACK: set(),
    ActionStatus.FAILED: set(),
}


@dataclass
class PauseDetails:
    kind: str = field(default="pause", init=False)
    roi: float = 0.0
    spend: float = 0.0


@dataclass
class BudgetChangeDetails:
    kind: str = field(default="budget_change", init=False)
    previous_budget: float = 0.0
    new_budget: float = 0.0
    roi: float = 0.0
    conversions: int = 0

    @property
    def change_pct(self) -> float:
        return safe_ratio(self.new_budget - self.previous_budget, self.previous_budget)


@dataclass
class PromotionDetails:
    kind: str = field(default="promotion", init=False)
    ctr: float = 0.0
    platforms: List[str] = field(default_factory=list)
    content: str = ""
    # platform -> {"success", "post_id" or "error"/"error_type", "attempts"}
    post_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class UnstructuredDetails:
    kind: str = field(default="unstructured", init=False)
    payload: Dict[str, Any] = field(default_factory=dict)


ActionDetails = Union[PauseDetails, BudgetChangeDetails, PromotionDetails, UnstructuredDetails]

_DETAIL_KINDS = {
    "pause": PauseDetails,
    "budget_change": BudgetChangeDetails,
    "promotion": PromotionDetails,
}


def details_from_dict(data: Optional[Dict[str, Any]]) -> ActionDetails:
    """Rebuild typed details from their stored form; unknown kinds stay unstructured."""
    if not data:
        return UnstructuredDetails()
    data = dict(data)
    kind = data.pop("kind", None)
    cls = _DETAIL_KINDS.get(kind)
    if cls is None:
        if kind == "unstructured" and isinstance(data.get("payload"), dict):
            return UnstructuredDetails(payload=data["payload"])
        return UnstructuredDetails(payload=data)
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and k != "kind"}
    return cls(**known)


@dataclass
class AutonomousAction:
    """Audit record of a decision the optimizer took."""
    campaign_id: str
    action_type: ActionType
    reason: str
    confidence_score: float
    previous_state: Dict[str, Any]
    new_state: Dict[str, Any] = field(default_factory=dict)
    status: ActionStatus = ActionStatus.PENDING
    details: ActionDetails = field(default_factory=UnstructuredDetails)
    expected_impact: str = ""
    error: Optional[str] = None
    cycle_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)
    executed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "action_type": self.action_type.value,
            "reason": self.reason,
            "confidence_score": self.confidence_score,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "status": self.status.value,
            "details": asdict(self.details),
            "expected_impact": self.expected_impact,
            "error": self.error,
            "cycle_id": self.cycle_id,
            "created_at": self.created_at.isoformat(),
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutonomousAction":
        return cls(
            id=data["id"],
            campaign_id=data["campaign_id"],
            action_type=ActionType(data["action_type"]),
            reason=data.get("reason", ""),
            confidence_score=float(data.get("confidence_score") or 0.0),
            previous_state=data.get("previous_state") or {},
            new_state=data.get("new_state") or {},
            status=ActionStatus(data.get("status", "pending")),
            details=details_from_dict(data.get("details")),
            expected_impact=data.get("expected_impact") or "",
            error=data.get("error"),
            cycle_id=data.get("cycle_id"),
            created_at=parse_timestamp(data.get("created_at")) or datetime.utcnow(),
            executed_at=parse_timestamp(data.get("executed_at")),
        )


# =============================================================================
# OPTIMIZATION OPPORTUNITIES
# =============================================================================

class OpportunityType(Enum):
    LOW_CONVERSION = "low_conversion"
    HIGH_TRAFFIC_LOW_CONVERSION = "high_traffic_low_conversion"
    DECLINING_PERFORMANCE = "declining_performance"
    BUDGET_INEFFICIENCY = "budget_inefficiency"
    AUDIENCE_MISMATCH = "audience_mismatch"
    CREATIVE_FATIGUE = "creative_fatigue"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OpportunityStatus(Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self in (OpportunityStatus.RESOLVED, OpportunityStatus.DISMISSED)

    def can_transition_to(self, target: "OpportunityStatus") -> bool:
        return target in _OPPORTUNITY_TRANSITIONS[self]


_OPPORTUNITY_TRANSITIONS = {
    OpportunityStatus.OPEN: {
        OpportunityStatus.IN_PROGRESS, OpportunityStatus.RESOLVED, OpportunityStatus.DISMISSED
    },
    OpportunityStatus.IN_PROGRESS: {OpportunityStatus.RESOLVED, OpportunityStatus.DISMISSED},
    OpportunityStatus.RESOLVED: set(),
    OpportunityStatus.DISMISSED: set(),
}


@dataclass
class OptimizationOpportunity:
    """Soft signal left for a human to judge."""
    campaign_id: str
    opportunity_type: OpportunityType
    severity: Severity
    description: str
    suggested_action: str
    confidence_score: float
    estimated_impact: Dict[str, Any] = field(default_factory=dict)
    status: OpportunityStatus = OpportunityStatus.OPEN
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "opportunity_type": self.opportunity_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "suggested_action": self.suggested_action,
            "confidence_score": self.confidence_score,
            "estimated_impact": self.estimated_impact,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizationOpportunity":
        return cls(
            id=data["id"],
            campaign_id=data["campaign_id"],
            opportunity_type=OpportunityType(data["opportunity_type"]),
            severity=Severity(data["severity"]),
            description=data.get("description", ""),
            suggested_action=data.get("suggested_action", ""),
            confidence_score=float(data.get("confidence_score") or 0.0),
            estimated_impact=data.get("estimated_impact") or {},
            status=OpportunityStatus(data.get("status", "open")),
            created_at=parse_timestamp(data.get("created_at")) or datetime.utcnow(),
            resolved_at=parse_timestamp(data.get("resolved_at")),
        )


# =============================================================================
# RULES
# =============================================================================

class RuleType(Enum):
    PAUSE = "pause"
    SCALE = "scale"
    OPTIMIZE = "optimize"
    CREATE = "create"


@dataclass
class AutonomousRule:
    """
    Toggleable rule. `condition` holds threshold overrides and
    `action["evaluator_rule"]` names the evaluator rule it controls.
    """
    id: str
    rule_name: str
    rule_type: RuleType
    condition: Dict[str, Any] = field(default_factory=dict)
    action: Dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def evaluator_rule(self) -> Optional[str]:
        return self.action.get("evaluator_rule")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_name": self.rule_name,
            "rule_type": self.rule_type.value,
            "condition": self.condition,
            "action": self.action,
            "priority": self.priority,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutonomousRule":
        return cls(
            id=data["id"],
            rule_name=data.get("rule_name", ""),
            rule_type=RuleType(data["rule_type"]),
            condition=data.get("condition") or {},
            action=data.get("action") or {},
            priority=int(data.get("priority") or 0),
            is_active=bool(data.get("is_active", True)),
            created_at=parse_timestamp(data.get("created_at")) or datetime.utcnow(),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


# =============================================================================
# EFFECTS
# =============================================================================

@dataclass
class PublishPost:
    """Cross-post request produced by the executor, run by the effect runner."""
    action_id: str
    campaign_id: str
    platform: str
    content: str


class PublishErrorType(Enum):
    """Why a cross-post failed."""
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    PERMISSION_DENIED = "permission_denied"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"


@dataclass
class PublishResult:
    success: bool
    platform: str
    post_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[PublishErrorType] = None
    retry_after: Optional[int] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed
