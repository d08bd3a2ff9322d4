"""
EventNexus Autopilot - Rule Evaluator
Pure decision logic: classifies a snapshot as pause, scale or promote candidate.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from .models import (
    ActionType,
    AutonomousRule,
    Campaign,
    PerformanceSnapshot,
    RuleType,
)
from ..core.exceptions import InvalidConfigException
from ..core.logging import get_logger

logger = get_logger(__name__)


class EvaluatorRule(Enum):
    """Keys linking stored AutonomousRule rows to evaluator behavior."""
    AUTO_PAUSE = "auto_pause"
    AUTO_SCALE_UP = "auto_scale_up"
    AUTO_SCALE_DOWN = "auto_scale_down"
    AUTO_POST = "auto_post"


class DecisionOutcome(Enum):
    ACTION = "action"
    NO_QUALIFYING_RULE = "no_qualifying_rule"
    INSUFFICIENT_DATA = "insufficient_data"


DEFAULT_ENABLED_RULES = frozenset({
    EvaluatorRule.AUTO_PAUSE,
    EvaluatorRule.AUTO_SCALE_UP,
    EvaluatorRule.AUTO_POST,
})


@dataclass(frozen=True)
class EvaluationThresholds:
    """Thresholds injected into the evaluator, rebuilt from rules every cycle."""

    # Pause
    min_spend: float = 50.0
    pause_roi: float = 1.0

    # Scale up
    scale_roi: float = 3.0
    scale_min_conversions: int = 10
    scale_up_pct: Optional[float] = None

    # Scale down
    scale_down_roi: float = 1.5
    scale_down_spend_multiplier: float = 2.0
    scale_down_pct: Optional[float] = None

    # Promotion
    post_ctr: float = 0.02
    post_sample_impressions: int = 1000

    # 0 disables the minimum runtime check
    min_hours_running: float = 0.0

    enabled: FrozenSet[EvaluatorRule] = DEFAULT_ENABLED_RULES

    def is_enabled(self, rule: EvaluatorRule) -> bool:
        return rule in self.enabled

    @classmethod
    def from_rules(cls, rules: List[AutonomousRule]) -> "EvaluationThresholds":
        """
        Build thresholds from stored rules.

        A rule enables its evaluator rule only while active. Numeric keys in
        `condition` override the matching threshold and `budget_change_pct`
        in `action` sets the scale step. Higher priority rules win.
        An empty rule table means the default rule set.
        """
        if not rules:
            rules = default_rules()

        numeric = {
            f.name: f.type for f in fields(cls)
            if f.name != "enabled"
        }
        overrides: Dict[str, Any] = {}
        enabled = set()

        for rule in sorted(rules, key=lambda r: r.priority):
            if not rule.is_active:
                continue

            try:
                key = EvaluatorRule(rule.evaluator_rule)
            except ValueError:
                logger.debug(f"Rule {rule.id} ({rule.rule_name}) does not drive the evaluator")
                continue

            enabled.add(key)

            for name, raw in rule.condition.items():
                if name not in numeric:
                    continue
                overrides[name] = _coerce(rule, name, raw)

            step = rule.action.get("budget_change_pct")
            if step is not None:
                if key == EvaluatorRule.AUTO_SCALE_UP:
                    overrides["scale_up_pct"] = _coerce(rule, "budget_change_pct", step)
                elif key == EvaluatorRule.AUTO_SCALE_DOWN:
                    overrides["scale_down_pct"] = _coerce(rule, "budget_change_pct", step)

        return cls(enabled=frozenset(enabled), **overrides)


def _coerce(rule: AutonomousRule, name: str, raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidConfigException(f"rule:{rule.id}.{name}", raw, "must be numeric") from e
    if value < 0:
        raise InvalidConfigException(f"rule:{rule.id}.{name}", raw, "must be >= 0")
    return value


def default_rules() -> List[AutonomousRule]:
    """Rule set used when none are stored; scale-down ships disabled."""
    return [
        AutonomousRule(
            id="default-auto-pause",
            rule_name="Pause unprofitable campaigns",
            rule_type=RuleType.PAUSE,
            condition={"pause_roi": 1.0, "min_spend": 50.0},
            action={"evaluator_rule": EvaluatorRule.AUTO_PAUSE.value},
            priority=100,
        ),
        AutonomousRule(
            id="default-auto-scale-up",
            rule_name="Scale profitable campaigns",
            rule_type=RuleType.SCALE,
            condition={"scale_roi": 3.0, "scale_min_conversions": 10},
            action={"evaluator_rule": EvaluatorRule.AUTO_SCALE_UP.value},
            priority=50,
        ),
        AutonomousRule(
            id="default-auto-scale-down",
            rule_name="Trim marginal campaigns",
            rule_type=RuleType.SCALE,
            condition={"scale_down_roi": 1.5},
            action={"evaluator_rule": EvaluatorRule.AUTO_SCALE_DOWN.value},
            priority=40,
            is_active=False,
        ),
        AutonomousRule(
            id="default-auto-post",
            rule_name="Cross-post high CTR campaigns",
            rule_type=RuleType.OPTIMIZE,
            condition={"post_ctr": 0.02},
            action={"evaluator_rule": EvaluatorRule.AUTO_POST.value},
            priority=10,
        ),
    ]


def confidence_score(margin: float, sample: float, sample_floor: float) -> float:
    """
    Heuristic confidence in [0, 100].

    Grows with the relative margin beyond the threshold (saturating at 1.0)
    and with sample size relative to its floor. At the floor with zero
    margin the score is 30; it only approaches 100 on large samples.
    """
    margin_factor = min(max(margin, 0.0), 1.0)
    if sample <= 0 or sample_floor <= 0:
        sample_factor = 0.0
    else:
        sample_factor = sample / (sample + sample_floor)
    score = 100.0 * (0.4 + 0.6 * margin_factor) * (0.5 + 0.5 * sample_factor)
    return round(min(max(score, 0.0), 100.0), 1)


@dataclass
class Recommendation:
    """A single action the evaluator wants taken."""
    action_type: ActionType
    rule: EvaluatorRule
    reason: str
    confidence_score: float
    expected_impact: str = ""
    budget_change_pct: Optional[float] = None
    metrics: Dict[str, float] = field(default_factory=dict)


@dataclass
class Evaluation:
    """Evaluator verdict for one campaign."""
    campaign_id: str
    outcome: DecisionOutcome
    reason: str
    recommendations: List[Recommendation] = field(default_factory=list)

    @property
    def is_actionable(self) -> bool:
        return self.outcome == DecisionOutcome.ACTION

    @property
    def action_types(self) -> List[ActionType]:
        return [r.action_type for r in self.recommendations]


class RuleEvaluator:
    """
    Applies thresholds to a snapshot.

    At most one status/budget recommendation is produced per campaign
    (pause, scale up or scale down), optionally joined by a promotion.
    Pause is exclusive: when it fires nothing else is recommended.
    """

    def __init__(self, thresholds: Optional[EvaluationThresholds] = None):
        self.thresholds = thresholds or EvaluationThresholds()

    def evaluate(
        self,
        snapshot: Optional[PerformanceSnapshot],
        campaign: Optional[Campaign] = None
    ) -> Evaluation:
        campaign_id = snapshot.campaign_id if snapshot else (campaign.id if campaign else "")

        if snapshot is None or not snapshot.is_complete:
            evaluation = Evaluation(
                campaign_id=campaign_id,
                outcome=DecisionOutcome.INSUFFICIENT_DATA,
                reason="No impressions recorded yet"
            )
            logger.decision(campaign_id, evaluation.outcome.value, reason=evaluation.reason)
            return evaluation

        t = self.thresholds
        recommendations: List[Recommendation] = []

        if t.min_hours_running and snapshot.hours_running < t.min_hours_running:
            evaluation = Evaluation(
                campaign_id=campaign_id,
                outcome=DecisionOutcome.NO_QUALIFYING_RULE,
                reason=(
                    f"Running {snapshot.hours_running:.1f}h, "
                    f"below minimum of {t.min_hours_running:.0f}h"
                )
            )
            logger.decision(campaign_id, evaluation.outcome.value, reason=evaluation.reason)
            return evaluation

        pause = self._check_pause(snapshot)
        if pause:
            recommendations.append(pause)
        else:
            budget = self._check_scale_up(snapshot) or self._check_scale_down(snapshot)
            if budget:
                recommendations.append(budget)
            post = self._check_post(snapshot)
            if post:
                recommendations.append(post)

        if not recommendations:
            evaluation = Evaluation(
                campaign_id=campaign_id,
                outcome=DecisionOutcome.NO_QUALIFYING_RULE,
                reason=(
                    f"No rule qualified (roi={snapshot.roi:.2f}, spend=${snapshot.spend:.2f}, "
                    f"conversions={snapshot.conversions}, ctr={snapshot.ctr:.2%})"
                )
            )
        else:
            evaluation = Evaluation(
                campaign_id=campaign_id,
                outcome=DecisionOutcome.ACTION,
                reason="; ".join(r.reason for r in recommendations),
                recommendations=recommendations
            )

        logger.decision(
            campaign_id,
            evaluation.outcome.value,
            reason=evaluation.reason,
            actions=[a.value for a in evaluation.action_types]
        )
        return evaluation

    def _check_pause(self, s: PerformanceSnapshot) -> Optional[Recommendation]:
        t = self.thresholds
        if not t.is_enabled(EvaluatorRule.AUTO_PAUSE):
            return None
        if not (s.roi < t.pause_roi and s.spend >= t.min_spend):
            return None

        # ROI is bounded below by -1 (zero revenue)
        margin = (t.pause_roi - s.roi) / (t.pause_roi + 1.0)
        return Recommendation(
            action_type=ActionType.AUTO_PAUSE,
            rule=EvaluatorRule.AUTO_PAUSE,
            reason=f"ROI {s.roi:.2f} below {t.pause_roi:.2f} after ${s.spend:.2f} spend",
            confidence_score=confidence_score(margin, s.spend, t.min_spend),
            expected_impact=f"Stops further spend on a campaign returning {s.roi:.0%}",
            metrics={"roi": s.roi, "spend": s.spend},
        )

    def _check_scale_up(self, s: PerformanceSnapshot) -> Optional[Recommendation]:
        t = self.thresholds
        if not t.is_enabled(EvaluatorRule.AUTO_SCALE_UP):
            return None
        if not (s.roi >= t.scale_roi and s.conversions >= t.scale_min_conversions):
            return None

        margin = (s.roi - t.scale_roi) / t.scale_roi if t.scale_roi else 1.0
        return Recommendation(
            action_type=ActionType.AUTO_SCALE_UP,
            rule=EvaluatorRule.AUTO_SCALE_UP,
            reason=f"ROI {s.roi:.2f} at or above {t.scale_roi:.2f} with {s.conversions} conversions",
            confidence_score=confidence_score(margin, s.conversions, t.scale_min_conversions),
            expected_impact="More conversions at the current return",
            budget_change_pct=t.scale_up_pct,
            metrics={"roi": s.roi, "conversions": float(s.conversions)},
        )

    def _check_scale_down(self, s: PerformanceSnapshot) -> Optional[Recommendation]:
        t = self.thresholds
        if not t.is_enabled(EvaluatorRule.AUTO_SCALE_DOWN):
            return None
        spend_floor = t.min_spend * t.scale_down_spend_multiplier
        if not (t.pause_roi <= s.roi < t.scale_down_roi and s.spend >= spend_floor):
            return None

        band = t.scale_down_roi - t.pause_roi
        margin = (t.scale_down_roi - s.roi) / band if band > 0 else 1.0
        return Recommendation(
            action_type=ActionType.AUTO_SCALE_DOWN,
            rule=EvaluatorRule.AUTO_SCALE_DOWN,
            reason=f"ROI {s.roi:.2f} marginal (below {t.scale_down_roi:.2f}) after ${s.spend:.2f} spend",
            confidence_score=confidence_score(margin, s.spend, spend_floor),
            expected_impact="Lower spend while the campaign stays profitable",
            budget_change_pct=t.scale_down_pct,
            metrics={"roi": s.roi, "spend": s.spend},
        )

    def _check_post(self, s: PerformanceSnapshot) -> Optional[Recommendation]:
        t = self.thresholds
        if not t.is_enabled(EvaluatorRule.AUTO_POST):
            return None
        if not s.ctr > t.post_ctr:
            return None

        margin = (s.ctr - t.post_ctr) / t.post_ctr if t.post_ctr else 1.0
        return Recommendation(
            action_type=ActionType.OPTIMIZATION_APPLIED,
            rule=EvaluatorRule.AUTO_POST,
            reason=f"CTR {s.ctr:.2%} above {t.post_ctr:.2%}",
            confidence_score=confidence_score(margin, s.impressions, t.post_sample_impressions),
            expected_impact="Wider reach for creative that already performs",
            metrics={"ctr": s.ctr, "impressions": float(s.impressions)},
        )
