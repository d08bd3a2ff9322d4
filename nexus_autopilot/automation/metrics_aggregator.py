"""
EventNexus Autopilot - Metrics Aggregator
Folds raw performance counters into a read-only PerformanceSnapshot.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from .models import (
    Campaign,
    PerformanceRecord,
    PerformanceSnapshot,
    SegmentMetrics,
    safe_ratio,
)
from ..core.exceptions import RecordNotFoundException, ValidationException
from ..integrations.storage import CampaignStore

logger = logging.getLogger(__name__)


class MetricsAggregator:
    """
    Builds snapshots from the store. Never writes.

    Totals cover spend-to-date. The CTR history covers the last
    `history_days` calendar days with traffic, oldest first.
    """

    def __init__(self, store: CampaignStore, history_days: int = 7):
        self.store = store
        self.history_days = history_days

    async def get_snapshot(
        self,
        campaign_id: str,
        now: Optional[datetime] = None
    ) -> PerformanceSnapshot:
        """Snapshot for one campaign; raises RecordNotFoundException if it is gone."""
        campaign = await self.store.get_campaign(campaign_id)
        if campaign is None:
            raise RecordNotFoundException("Campaign", campaign_id)
        return await self.snapshot(campaign, now=now)

    async def snapshot(
        self,
        campaign: Campaign,
        now: Optional[datetime] = None
    ) -> PerformanceSnapshot:
        now = now or datetime.utcnow()
        records = await self.store.get_performance_records(campaign.id)
        return self.aggregate(campaign, records, now=now)

    async def snapshot_all(self, now: Optional[datetime] = None) -> List[PerformanceSnapshot]:
        """Snapshots for every active campaign."""
        campaigns = await self.store.list_active_campaigns()
        return [await self.snapshot(c, now=now) for c in campaigns]

    def aggregate(
        self,
        campaign: Campaign,
        records: List[PerformanceRecord],
        now: Optional[datetime] = None
    ) -> PerformanceSnapshot:
        now = now or datetime.utcnow()
        snapshot = PerformanceSnapshot(
            campaign_id=campaign.id,
            hours_running=campaign.hours_running(now),
            captured_at=now,
        )

        daily: Dict[date, SegmentMetrics] = {}

        for record in records:
            if record.spend < 0:
                raise ValidationException(
                    f"Negative spend recorded for campaign {campaign.id}",
                    field="spend",
                    value=record.spend
                )

            snapshot.impressions += record.impressions
            snapshot.clicks += record.clicks
            snapshot.conversions += record.conversions
            snapshot.spend += record.spend
            snapshot.revenue += record.revenue

            if record.segment:
                segment = snapshot.segments.setdefault(record.segment, SegmentMetrics())
                segment.impressions += record.impressions
                segment.clicks += record.clicks
                segment.conversions += record.conversions

            day = daily.setdefault(record.recorded_at.date(), SegmentMetrics())
            day.impressions += record.impressions
            day.clicks += record.clicks

        snapshot.ctr_history = self._ctr_history(daily, now)

        if not snapshot.is_complete:
            logger.debug(f"Campaign {campaign.id} has no impressions recorded yet")

        return snapshot

    def _ctr_history(self, daily: Dict[date, SegmentMetrics], now: datetime) -> List[float]:
        cutoff = (now - timedelta(days=self.history_days)).date()
        ordered = OrderedDict(sorted(daily.items()))
        return [
            safe_ratio(day.clicks, day.impressions)
            for day_date, day in ordered.items()
            if day_date > cutoff and day.impressions > 0
        ]
