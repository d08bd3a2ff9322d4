"""
EventNexus Autopilot - Opportunity Detector Tests
"""

import pytest

from nexus_autopilot.automation.models import (
    OpportunityStatus,
    OpportunityType,
    SegmentMetrics,
    Severity,
)
from nexus_autopilot.automation.opportunity_detector import DetectorConfig, OpportunityDetector


@pytest.fixture
def detector(store):
    return OpportunityDetector(store)


def types_of(opportunities):
    return {o.opportunity_type for o in opportunities}


class TestDetection:

    def test_incomplete_snapshot_yields_nothing(self, detector, snapshot_factory):
        assert detector.detect(snapshot_factory(spend=100.0)) == []

    def test_losing_campaign(self, detector, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        found = detector.detect(snapshot)

        assert types_of(found) == {OpportunityType.LOW_CONVERSION, OpportunityType.BUDGET_INEFFICIENCY}
        budget = next(o for o in found if o.opportunity_type == OpportunityType.BUDGET_INEFFICIENCY)
        assert budget.severity == Severity.HIGH

    def test_healthy_campaign_is_quiet(self, detector, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=5000, clicks=150, conversions=12, spend=100.0, revenue=500.0
        )

        assert detector.detect(snapshot) == []

    def test_high_traffic_low_conversion_supersedes_low_conversion(self, detector, snapshot_factory):
        snapshot = snapshot_factory(impressions=2000, clicks=100, spend=10.0, revenue=20.0)

        found = types_of(detector.detect(snapshot))

        assert OpportunityType.HIGH_TRAFFIC_LOW_CONVERSION in found
        assert OpportunityType.LOW_CONVERSION not in found

    @pytest.mark.parametrize("impressions,severity", [(1000, Severity.MEDIUM), (20000, Severity.HIGH)])
    def test_creative_fatigue(self, detector, snapshot_factory, impressions, severity):
        snapshot = snapshot_factory(
            impressions=impressions, clicks=impressions // 1000, conversions=1, spend=5.0, revenue=20.0
        )

        fatigue = [
            o for o in detector.detect(snapshot)
            if o.opportunity_type == OpportunityType.CREATIVE_FATIGUE
        ]

        assert len(fatigue) == 1
        assert fatigue[0].severity == severity

    def test_declining_ctr(self, detector, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=3000, clicks=75, conversions=5, spend=10.0, revenue=40.0,
            ctr_history=[0.04, 0.03, 0.025, 0.018]
        )

        declining = [
            o for o in detector.detect(snapshot)
            if o.opportunity_type == OpportunityType.DECLINING_PERFORMANCE
        ]

        assert len(declining) == 1
        assert declining[0].severity == Severity.HIGH

    @pytest.mark.parametrize("history", [
        [0.03, 0.02],
        [0.03, 0.02, 0.025],
        [0.030, 0.029, 0.028],
    ])
    def test_no_decline(self, detector, snapshot_factory, history):
        snapshot = snapshot_factory(
            impressions=3000, clicks=75, conversions=5, spend=10.0, revenue=40.0, ctr_history=history
        )

        assert OpportunityType.DECLINING_PERFORMANCE not in types_of(detector.detect(snapshot))

    def test_marginal_roi(self, detector, snapshot_factory):
        snapshot = snapshot_factory(impressions=3000, clicks=60, conversions=5, spend=100.0, revenue=220.0)

        found = [
            o for o in detector.detect(snapshot)
            if o.opportunity_type == OpportunityType.BUDGET_INEFFICIENCY
        ]

        assert len(found) == 1
        assert found[0].severity == Severity.LOW

    def test_audience_mismatch(self, detector, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=2000, clicks=40, conversions=5, spend=10.0, revenue=40.0,
            segments={
                "18-24": SegmentMetrics(impressions=1500, clicks=38),
                "55+": SegmentMetrics(impressions=500, clicks=2),
            }
        )

        mismatch = [
            o for o in detector.detect(snapshot)
            if o.opportunity_type == OpportunityType.AUDIENCE_MISMATCH
        ]

        assert len(mismatch) == 1
        assert mismatch[0].estimated_impact["segments"] == ["55+"]

    def test_small_segments_ignored(self, detector, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=2000, clicks=40, conversions=5, spend=10.0, revenue=40.0,
            segments={"55+": SegmentMetrics(impressions=50, clicks=0)}
        )

        assert OpportunityType.AUDIENCE_MISMATCH not in types_of(detector.detect(snapshot))

    def test_custom_thresholds(self, store, snapshot_factory):
        detector = OpportunityDetector(store, DetectorConfig(no_conversion_spend=100.0))
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        assert OpportunityType.BUDGET_INEFFICIENCY not in types_of(detector.detect(snapshot))

    def test_scores_in_range(self, detector, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        for opportunity in detector.detect(snapshot):
            assert 0.0 <= opportunity.confidence_score <= 100.0


class TestRecording:

    @pytest.mark.asyncio
    async def test_records_open_opportunities(self, detector, store, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        recorded = await detector.detect_and_record(snapshot)

        assert len(recorded) == 2
        assert len(store.opportunities) == 2
        assert all(o.status == OpportunityStatus.OPEN for o in store.opportunities.values())

    @pytest.mark.asyncio
    async def test_open_opportunity_not_duplicated(self, detector, store, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        await detector.detect_and_record(snapshot)
        second = await detector.detect_and_record(snapshot)

        assert second == []
        assert len(store.opportunities) == 2

    @pytest.mark.asyncio
    async def test_resolved_opportunity_can_recur(self, detector, store, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        first = await detector.detect_and_record(snapshot)
        for opportunity in first:
            await store.update_opportunity(opportunity.id, {"status": OpportunityStatus.RESOLVED})
        second = await detector.detect_and_record(snapshot)

        assert len(second) == 2
        assert len(store.opportunities) == 4
