"""
EventNexus Autopilot - Metrics Module
=====================================
Prometheus metrics for the optimization engine.

Usage:
    from nexus_autopilot.monitoring.metrics import metrics

    metrics.actions_total.labels(action_type='auto_pause', status='executed').inc()

    with metrics.track_cycle():
        await orchestrator.run()
"""

import os
import time
from contextlib import contextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    multiprocess,
)


# =============================================================================
# REGISTRY SETUP
# =============================================================================

# Use multiprocess mode if running under a pre-forking server
if 'prometheus_multiproc_dir' in os.environ or 'PROMETHEUS_MULTIPROC_DIR' in os.environ:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY


# Cycle durations (in seconds)
CYCLE_DURATION_BUCKETS = (
    0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600
)

# Confidence scores (0-100)
CONFIDENCE_BUCKETS = (
    10, 20, 30, 40, 50, 60, 70, 80, 90, 100
)


# =============================================================================
# METRICS CLASS
# =============================================================================

class AutopilotMetrics:
    """Central metrics registry for the autopilot."""

    def __init__(self):
        # =====================================================================
        # CYCLE METRICS
        # =====================================================================
        self.cycles_total = Counter(
            'autopilot_cycles_total',
            'Total optimization cycles',
            ['status'],
            registry=registry
        )

        self.cycle_duration = Histogram(
            'autopilot_cycle_duration_seconds',
            'Optimization cycle duration',
            buckets=CYCLE_DURATION_BUCKETS,
            registry=registry
        )

        self.cycle_last_completed = Gauge(
            'autopilot_cycle_last_completed_timestamp',
            'Timestamp of the last finished cycle',
            registry=registry
        )

        self.campaign_errors = Counter(
            'autopilot_campaign_errors_total',
            'Campaign evaluations that raised',
            ['error_type'],
            registry=registry
        )

        # =====================================================================
        # DECISION METRICS
        # =====================================================================
        self.decisions_total = Counter(
            'autopilot_decisions_total',
            'Evaluator verdicts',
            ['outcome'],
            registry=registry
        )

        self.confidence_distribution = Histogram(
            'autopilot_confidence_score',
            'Confidence scores of recommended actions',
            ['action_type'],
            buckets=CONFIDENCE_BUCKETS,
            registry=registry
        )

        # =====================================================================
        # ACTION METRICS
        # =====================================================================
        self.actions_total = Counter(
            'autopilot_actions_total',
            'Autonomous actions recorded',
            ['action_type', 'status'],
            registry=registry
        )

        self.actions_skipped = Counter(
            'autopilot_actions_skipped_total',
            'Actions skipped as duplicates',
            ['action_type'],
            registry=registry
        )

        self.rollbacks_total = Counter(
            'autopilot_rollbacks_total',
            'Rollback attempts',
            ['result'],
            registry=registry
        )

        # =====================================================================
        # OPPORTUNITY METRICS
        # =====================================================================
        self.opportunities_total = Counter(
            'autopilot_opportunities_total',
            'Optimization opportunities detected',
            ['opportunity_type', 'severity'],
            registry=registry
        )

        # =====================================================================
        # SOCIAL METRICS
        # =====================================================================
        self.social_posts_total = Counter(
            'autopilot_social_posts_total',
            'Cross-post attempts',
            ['platform', 'result'],
            registry=registry
        )

    @contextmanager
    def track_cycle(self):
        """Context manager to track cycle duration."""
        start_time = time.time()
        try:
            yield
        finally:
            self.cycle_duration.observe(time.time() - start_time)
            self.cycle_last_completed.set_to_current_time()

    def get_metrics(self) -> bytes:
        """Generate latest metrics in Prometheus format."""
        return generate_latest(registry)

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

metrics = AutopilotMetrics()
