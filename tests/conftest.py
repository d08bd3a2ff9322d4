"""
EventNexus Autopilot - Pytest Configuration
Global fixtures and configuration for tests.
"""

import pytest
from datetime import datetime, timedelta
from typing import Callable, Optional
from unittest.mock import AsyncMock

from nexus_autopilot.automation.models import (
    Campaign,
    CampaignStatus,
    PerformanceRecord,
    PerformanceSnapshot,
)
from nexus_autopilot.automation.operations import build_operations
from nexus_autopilot.core.config import AutopilotSettings
from nexus_autopilot.integrations.social import RecordingSocialPublisher
from nexus_autopilot.integrations.storage import InMemoryCampaignStore


# =============================================================================
# STORE & ADAPTER FIXTURES
# =============================================================================

@pytest.fixture
def store() -> InMemoryCampaignStore:
    """Empty in-memory store."""
    return InMemoryCampaignStore()


@pytest.fixture
def publisher() -> RecordingSocialPublisher:
    return RecordingSocialPublisher()


@pytest.fixture
def mock_redis_client():
    """Mock Redis client."""
    client = AsyncMock()
    client.set = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def settings() -> AutopilotSettings:
    return AutopilotSettings()


@pytest.fixture
def operations(store, publisher, settings):
    """Operations facade wired to the in-memory store and recording publisher."""
    return build_operations(settings, store=store, publisher=publisher)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_campaign(store) -> Callable[..., Campaign]:
    """Factory that creates and stores an active campaign."""

    def factory(
        campaign_id: str = "camp_1",
        budget: float = 100.0,
        status: CampaignStatus = CampaignStatus.ACTIVE,
        title: Optional[str] = None,
        hours_running: float = 72.0
    ) -> Campaign:
        campaign = Campaign(
            id=campaign_id,
            title=title or f"Spring Launch {campaign_id}",
            status=status,
            budget=budget,
            started_at=datetime.utcnow() - timedelta(hours=hours_running),
        )
        return store.add_campaign(campaign)

    return factory


@pytest.fixture
def add_performance(store) -> Callable[..., PerformanceRecord]:
    """Factory that stores one performance counter row."""

    def factory(
        campaign_id: str = "camp_1",
        impressions: int = 0,
        clicks: int = 0,
        conversions: int = 0,
        spend: float = 0.0,
        revenue: float = 0.0,
        segment: Optional[str] = None,
        days_ago: float = 0.0
    ) -> PerformanceRecord:
        record = PerformanceRecord(
            campaign_id=campaign_id,
            recorded_at=datetime.utcnow() - timedelta(days=days_ago),
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            spend=spend,
            revenue=revenue,
            segment=segment,
        )
        store.add_performance(record)
        return record

    return factory


@pytest.fixture
def losing_campaign(make_campaign, add_performance) -> Campaign:
    """ROI -0.33 after $75 spend, CTR 0.5%."""
    campaign = make_campaign("camp_loser")
    add_performance("camp_loser", impressions=10000, clicks=50, spend=75.0, revenue=50.0)
    return campaign


@pytest.fixture
def winning_campaign(make_campaign, add_performance) -> Campaign:
    """ROI 4.0 with 12 conversions, CTR 3%."""
    campaign = make_campaign("camp_winner")
    add_performance(
        "camp_winner", impressions=5000, clicks=150, conversions=12, spend=100.0, revenue=500.0
    )
    return campaign


@pytest.fixture
def small_campaign(make_campaign, add_performance) -> Campaign:
    """Poor ROI but only $10 spent."""
    campaign = make_campaign("camp_small")
    add_performance("camp_small", impressions=1000, clicks=5, spend=10.0)
    return campaign


def make_snapshot(**kwargs) -> PerformanceSnapshot:
    """Snapshot with defaults for fields a test does not care about."""
    kwargs.setdefault("campaign_id", "camp_1")
    kwargs.setdefault("hours_running", 72.0)
    return PerformanceSnapshot(**kwargs)


@pytest.fixture
def snapshot_factory() -> Callable[..., PerformanceSnapshot]:
    return make_snapshot
