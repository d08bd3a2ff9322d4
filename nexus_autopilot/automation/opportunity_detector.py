"""
EventNexus Autopilot - Opportunity Detector
Flags soft signals for human review. Never touches the campaign.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .models import (
    OpportunityType,
    OptimizationOpportunity,
    PerformanceSnapshot,
    Severity,
)
from .rule_evaluator import confidence_score
from ..integrations.storage import CampaignStore
from ..monitoring.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """Thresholds for opportunity heuristics."""
    # Conversion
    min_clicks_for_conversion: int = 50
    low_conversion_rate: float = 0.01
    high_traffic_min_impressions: int = 100
    high_traffic_ctr: float = 0.02

    # Creative fatigue
    fatigue_min_impressions: int = 500
    fatigue_ctr: float = 0.005
    fatigue_critical_impressions: int = 5000

    # CTR trend
    min_history_points: int = 3
    decline_ratio: float = 0.2  # 20% drop first -> last
    severe_decline_ratio: float = 0.5

    # Budget
    no_conversion_spend: float = 25.0
    marginal_roi_low: float = 1.0
    marginal_roi_high: float = 1.5
    marginal_min_spend: float = 50.0

    # Audience
    segment_min_impressions: int = 100
    segment_ctr_ratio: float = 0.5


class OpportunityDetector:
    """
    Scans snapshots for softer patterns.

    `detect()` is pure; `detect_and_record()` persists findings, skipping
    any (campaign, type) pair that already has an open opportunity.
    """

    def __init__(self, store: CampaignStore, config: Optional[DetectorConfig] = None):
        self.store = store
        self.config = config or DetectorConfig()

    async def detect_and_record(self, snapshot: PerformanceSnapshot) -> List[OptimizationOpportunity]:
        recorded = []
        for opportunity in self.detect(snapshot):
            existing = await self.store.find_open_opportunity(
                opportunity.campaign_id, opportunity.opportunity_type
            )
            if existing is not None:
                logger.debug(
                    f"Open {opportunity.opportunity_type.value} already exists for "
                    f"campaign {opportunity.campaign_id}"
                )
                continue

            await self.store.insert_opportunity(opportunity)
            metrics.opportunities_total.labels(
                opportunity_type=opportunity.opportunity_type.value,
                severity=opportunity.severity.value
            ).inc()
            logger.info(
                f"Opportunity detected for campaign {opportunity.campaign_id}: "
                f"{opportunity.opportunity_type.value} ({opportunity.severity.value})"
            )
            recorded.append(opportunity)
        return recorded

    def detect(self, snapshot: PerformanceSnapshot) -> List[OptimizationOpportunity]:
        if not snapshot.is_complete:
            return []

        checks = (
            self._check_conversion,
            self._check_creative_fatigue,
            self._check_declining_ctr,
            self._check_budget,
            self._check_audience,
        )
        found = []
        for check in checks:
            opportunity = check(snapshot)
            if opportunity is not None:
                found.append(opportunity)
        return found

    def _check_conversion(self, s: PerformanceSnapshot) -> Optional[OptimizationOpportunity]:
        c = self.config

        # Strong clicks that do not convert point at the landing page
        if (
            s.impressions > c.high_traffic_min_impressions
            and s.ctr > c.high_traffic_ctr
            and s.conversion_rate < c.low_conversion_rate
        ):
            return OptimizationOpportunity(
                campaign_id=s.campaign_id,
                opportunity_type=OpportunityType.HIGH_TRAFFIC_LOW_CONVERSION,
                severity=Severity.HIGH,
                description=(
                    f"CTR {s.ctr:.2%} is strong but only {s.conversion_rate:.2%} "
                    f"of clicks convert"
                ),
                suggested_action="Review the landing page and checkout flow for friction",
                confidence_score=confidence_score(
                    (c.low_conversion_rate - s.conversion_rate) / c.low_conversion_rate,
                    s.clicks,
                    c.min_clicks_for_conversion
                ),
                estimated_impact={"lost_conversions": round(s.clicks * c.low_conversion_rate - s.conversions, 1)},
            )

        if s.clicks >= c.min_clicks_for_conversion and s.conversion_rate < c.low_conversion_rate:
            return OptimizationOpportunity(
                campaign_id=s.campaign_id,
                opportunity_type=OpportunityType.LOW_CONVERSION,
                severity=Severity.MEDIUM,
                description=f"{s.clicks} clicks converted at {s.conversion_rate:.2%}",
                suggested_action="Tighten the offer or call to action",
                confidence_score=confidence_score(
                    (c.low_conversion_rate - s.conversion_rate) / c.low_conversion_rate,
                    s.clicks,
                    c.min_clicks_for_conversion
                ),
                estimated_impact={"target_conversion_rate": c.low_conversion_rate},
            )
        return None

    def _check_creative_fatigue(self, s: PerformanceSnapshot) -> Optional[OptimizationOpportunity]:
        c = self.config
        if not (s.impressions > c.fatigue_min_impressions and s.ctr < c.fatigue_ctr):
            return None

        severity = Severity.HIGH if s.impressions >= c.fatigue_critical_impressions else Severity.MEDIUM
        return OptimizationOpportunity(
            campaign_id=s.campaign_id,
            opportunity_type=OpportunityType.CREATIVE_FATIGUE,
            severity=severity,
            description=f"CTR {s.ctr:.2%} across {s.impressions} impressions",
            suggested_action="Refresh the creative: new image, headline or format",
            confidence_score=confidence_score(
                (c.fatigue_ctr - s.ctr) / c.fatigue_ctr,
                s.impressions,
                c.fatigue_min_impressions
            ),
            estimated_impact={"target_ctr": c.fatigue_ctr},
        )

    def _check_declining_ctr(self, s: PerformanceSnapshot) -> Optional[OptimizationOpportunity]:
        c = self.config
        history = s.ctr_history
        if len(history) < c.min_history_points or history[0] <= 0:
            return None

        recent = history[-c.min_history_points:]
        non_increasing = all(b <= a for a, b in zip(recent, recent[1:]))
        drop = (history[0] - history[-1]) / history[0]
        if not (non_increasing and drop >= c.decline_ratio):
            return None

        severity = Severity.HIGH if drop >= c.severe_decline_ratio else Severity.MEDIUM
        return OptimizationOpportunity(
            campaign_id=s.campaign_id,
            opportunity_type=OpportunityType.DECLINING_PERFORMANCE,
            severity=severity,
            description=(
                f"CTR fell {drop:.0%} over {len(history)} days "
                f"({history[0]:.2%} -> {history[-1]:.2%})"
            ),
            suggested_action="Rotate creative or narrow targeting before performance decays further",
            confidence_score=confidence_score(drop, len(history), c.min_history_points),
            estimated_impact={"ctr_drop_pct": round(drop * 100, 1)},
        )

    def _check_budget(self, s: PerformanceSnapshot) -> Optional[OptimizationOpportunity]:
        c = self.config

        if s.conversions == 0 and s.spend >= c.no_conversion_spend:
            return OptimizationOpportunity(
                campaign_id=s.campaign_id,
                opportunity_type=OpportunityType.BUDGET_INEFFICIENCY,
                severity=Severity.HIGH,
                description=f"${s.spend:.2f} spent without a single conversion",
                suggested_action="Reallocate budget toward converting campaigns",
                confidence_score=confidence_score(1.0, s.spend, c.no_conversion_spend),
                estimated_impact={"wasted_spend": round(s.spend, 2)},
            )

        if c.marginal_roi_low <= s.roi < c.marginal_roi_high and s.spend >= c.marginal_min_spend:
            band = c.marginal_roi_high - c.marginal_roi_low
            return OptimizationOpportunity(
                campaign_id=s.campaign_id,
                opportunity_type=OpportunityType.BUDGET_INEFFICIENCY,
                severity=Severity.LOW,
                description=f"ROI {s.roi:.2f} is profitable but marginal",
                suggested_action="Test a lower budget or a cheaper placement",
                confidence_score=confidence_score(
                    (c.marginal_roi_high - s.roi) / band, s.spend, c.marginal_min_spend
                ),
                estimated_impact={"roi": round(s.roi, 2)},
            )
        return None

    def _check_audience(self, s: PerformanceSnapshot) -> Optional[OptimizationOpportunity]:
        c = self.config
        if not s.segments or s.ctr <= 0:
            return None

        weak = sorted(
            name for name, segment in s.segments.items()
            if segment.impressions >= c.segment_min_impressions
            and segment.ctr < s.ctr * c.segment_ctr_ratio
        )
        if not weak:
            return None

        weak_impressions = sum(s.segments[name].impressions for name in weak)
        share = weak_impressions / s.impressions
        return OptimizationOpportunity(
            campaign_id=s.campaign_id,
            opportunity_type=OpportunityType.AUDIENCE_MISMATCH,
            severity=Severity.MEDIUM if share >= 0.25 else Severity.LOW,
            description=(
                f"Segments {', '.join(weak)} click at under "
                f"{c.segment_ctr_ratio:.0%} of the campaign CTR"
            ),
            suggested_action="Exclude or re-target the weak segments",
            confidence_score=confidence_score(share, weak_impressions, c.segment_min_impressions),
            estimated_impact={"segments": weak, "impression_share": round(share, 3)},
        )
