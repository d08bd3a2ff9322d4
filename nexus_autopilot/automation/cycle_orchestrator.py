"""
EventNexus Autopilot - Cycle Orchestrator
One optimization run: aggregate, evaluate, act, flag, summarize.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .action_executor import ActionExecutor, ExecutionResult, ExecutionStatus
from .effects import EffectRunner
from .locks import CampaignLockManager
from .metrics_aggregator import MetricsAggregator
from .models import ActionType, Campaign
from .opportunity_detector import OpportunityDetector
from .rule_evaluator import DecisionOutcome, EvaluationThresholds, RuleEvaluator
from ..core.exceptions import CycleTimeoutException, format_exception_for_logging
from ..core.logging import get_cycle_id, get_logger, reset_cycle_id, set_cycle_id
from ..integrations.storage import CampaignStore
from ..monitoring.metrics import metrics

logger = get_logger(__name__)


class CampaignOutcome(Enum):
    ACTED = "acted"
    NO_ACTION = "no_action"
    INSUFFICIENT_DATA = "insufficient_data"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


class CycleStatus(Enum):
    IDLE = "idle"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass
class CampaignReport:
    """What happened to one campaign during a cycle."""
    campaign_id: str
    outcome: CampaignOutcome
    reason: str = ""
    executions: List[ExecutionResult] = field(default_factory=list)
    opportunities_detected: int = 0
    error: Optional[str] = None

    def executed(self, *action_types: ActionType) -> int:
        return sum(
            1 for r in self.executions
            if r.status == ExecutionStatus.EXECUTED and r.action_type in action_types
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "actions": [
                {
                    "action_type": r.action_type.value,
                    "status": r.status.value,
                    "action_id": r.action.id if r.action else None,
                    "error": r.error,
                }
                for r in self.executions
            ],
            "opportunities_detected": self.opportunities_detected,
            "error": self.error,
        }


@dataclass
class CycleResult:
    """Result of an optimization cycle."""
    cycle_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    campaigns_evaluated: int = 0
    campaigns_paused: int = 0
    campaigns_scaled: int = 0
    campaigns_posted: int = 0
    opportunities_detected: int = 0
    campaigns_failed: int = 0
    campaigns_no_action: int = 0
    campaigns_insufficient_data: int = 0
    campaigns_skipped: int = 0
    timed_out: bool = False
    dry_run: bool = False
    errors: Dict[str, str] = field(default_factory=dict)
    campaigns: List[CampaignReport] = field(default_factory=list)

    def add(self, report: CampaignReport):
        self.campaigns.append(report)

        if report.outcome == CampaignOutcome.SKIPPED:
            self.campaigns_skipped += 1
            return

        self.campaigns_evaluated += 1
        self.campaigns_paused += report.executed(ActionType.AUTO_PAUSE)
        self.campaigns_scaled += report.executed(ActionType.AUTO_SCALE_UP, ActionType.AUTO_SCALE_DOWN)
        self.campaigns_posted += report.executed(ActionType.OPTIMIZATION_APPLIED)
        self.opportunities_detected += report.opportunities_detected

        if report.outcome in (CampaignOutcome.FAILED, CampaignOutcome.TIMED_OUT):
            self.campaigns_failed += 1
            self.errors[report.campaign_id] = report.error or report.outcome.value
        elif report.outcome == CampaignOutcome.NO_ACTION:
            self.campaigns_no_action += 1
        elif report.outcome == CampaignOutcome.INSUFFICIENT_DATA:
            self.campaigns_insufficient_data += 1

    @property
    def campaigns_succeeded(self) -> int:
        return self.campaigns_evaluated - self.campaigns_failed

    @property
    def actions_executed(self) -> int:
        return self.campaigns_paused + self.campaigns_scaled + self.campaigns_posted

    @property
    def status(self) -> CycleStatus:
        if self.campaigns_failed:
            if self.campaigns_failed == self.campaigns_evaluated:
                return CycleStatus.FAILED
            return CycleStatus.PARTIAL_FAILURE
        if self.actions_executed == 0 and self.opportunities_detected == 0:
            return CycleStatus.IDLE
        return CycleStatus.COMPLETED

    def to_summary(self) -> Dict[str, int]:
        return {
            "campaigns_paused": self.campaigns_paused,
            "campaigns_scaled": self.campaigns_scaled,
            "campaigns_posted": self.campaigns_posted,
            "opportunities_detected": self.opportunities_detected,
            "campaigns_failed": self.campaigns_failed,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.to_summary(),
            "campaigns_evaluated": self.campaigns_evaluated,
            "campaigns_succeeded": self.campaigns_succeeded,
            "campaigns_no_action": self.campaigns_no_action,
            "campaigns_insufficient_data": self.campaigns_insufficient_data,
            "campaigns_skipped": self.campaigns_skipped,
            "timed_out": self.timed_out,
            "dry_run": self.dry_run,
            "errors": self.errors,
            "campaigns": [c.to_dict() for c in self.campaigns],
        }


class CycleOrchestrator:
    """
    Orchestrates one optimization cycle end-to-end.

    Flow per active campaign:
    1. Take the campaign lock and stamp last_evaluated_at (compare-and-swap)
    2. Aggregate a snapshot
    3. Evaluate it against thresholds built from the live rules
    4. Execute recommendations, then run their publish effects
    5. Detect opportunities

    A campaign that raises is recorded as failed; the cycle carries on.
    """

    def __init__(
        self,
        store: CampaignStore,
        executor: ActionExecutor,
        detector: OpportunityDetector,
        effects: EffectRunner,
        locks: Optional[CampaignLockManager] = None,
        aggregator: Optional[MetricsAggregator] = None,
        max_concurrency: int = 4,
        timeout_seconds: Optional[float] = 300.0
    ):
        self.store = store
        self.executor = executor
        self.detector = detector
        self.effects = effects
        self.locks = locks or CampaignLockManager()
        self.aggregator = aggregator or MetricsAggregator(store)
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds

        # State
        self._running = False
        self._last_result: Optional[CycleResult] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[CycleResult]:
        return self._last_result

    async def run(
        self,
        campaign_ids: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        dry_run: Optional[bool] = None
    ) -> CycleResult:
        """
        Run a complete optimization cycle.

        Args:
            campaign_ids: Restrict the cycle to these campaigns (all active if None)
            timeout: Wall-clock budget in seconds (constructor default if None)
            dry_run: Override the executor's dry_run setting

        Returns:
            CycleResult with counts, per-campaign reports and errors
        """
        timeout = timeout if timeout is not None else self.timeout_seconds
        dry_run = dry_run if dry_run is not None else self.executor.config.dry_run

        result = CycleResult(
            cycle_id=str(uuid.uuid4())[:8],
            started_at=datetime.utcnow(),
            dry_run=dry_run
        )
        token = set_cycle_id(result.cycle_id)
        self._running = True

        try:
            with metrics.track_cycle():
                rules = await self.store.list_rules()
                evaluator = RuleEvaluator(EvaluationThresholds.from_rules(rules))

                campaigns = await self.store.list_active_campaigns()
                if campaign_ids is not None:
                    wanted = set(campaign_ids)
                    campaigns = [c for c in campaigns if c.id in wanted]

                logger.info(
                    f"Optimization cycle {result.cycle_id} started for {len(campaigns)} campaigns",
                    dry_run=dry_run,
                    timeout_seconds=timeout
                )

                reports, result.timed_out = await self._process_all(campaigns, evaluator, dry_run, timeout)
                for report in reports:
                    result.add(report)

            result.completed_at = datetime.utcnow()
            self._last_result = result
            metrics.cycles_total.labels(status=result.status.value).inc()

            logger.info(
                f"Optimization cycle {result.cycle_id} {result.status.value}: "
                f"{result.campaigns_paused} paused, {result.campaigns_scaled} scaled, "
                f"{result.campaigns_posted} posted, {result.opportunities_detected} opportunities, "
                f"{result.campaigns_failed} failed",
                **result.to_summary()
            )
        except Exception:
            metrics.cycles_total.labels(status="error").inc()
            raise
        finally:
            self._running = False
            reset_cycle_id(token)

        return result

    async def _process_all(
        self,
        campaigns: List[Campaign],
        evaluator: RuleEvaluator,
        dry_run: bool,
        timeout: Optional[float]
    ) -> Tuple[List[CampaignReport], bool]:
        """Reports in campaign order, and whether the cycle budget ran out."""
        if not campaigns:
            return [], False

        semaphore = asyncio.Semaphore(self.max_concurrency)
        # Filled in as work happens, so a cancelled campaign keeps what it committed
        reports = [CampaignReport(c.id, CampaignOutcome.NO_ACTION) for c in campaigns]

        async def guarded(campaign: Campaign, report: CampaignReport) -> CampaignReport:
            async with semaphore:
                return await self._process_safely(campaign, evaluator, dry_run, report)

        tasks = [asyncio.ensure_future(guarded(c, r)) for c, r in zip(campaigns, reports)]
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            # Waits for in-flight commits, which finish under their campaign lock
            await asyncio.gather(*pending, return_exceptions=True)

        for campaign, report, task in zip(campaigns, reports, tasks):
            if not task.cancelled():
                continue

            error = CycleTimeoutException(campaign.id, timeout or 0)
            metrics.campaign_errors.labels(error_type=type(error).__name__).inc()
            if report.executed(*ActionType):
                logger.warning(
                    f"{error.message} after committing its actions",
                    campaign_id=campaign.id
                )
                report.outcome = CampaignOutcome.ACTED
                report.reason = report.reason or "interrupted after commit"
                continue

            logger.error(error.message, campaign_id=campaign.id)
            report.outcome = CampaignOutcome.TIMED_OUT
            report.error = error.message
        return reports, bool(pending)

    async def _process_safely(
        self,
        campaign: Campaign,
        evaluator: RuleEvaluator,
        dry_run: bool,
        report: CampaignReport
    ) -> CampaignReport:
        try:
            return await self._process_campaign(campaign, evaluator, dry_run, report)
        except Exception as e:
            logger.error(
                f"Error processing campaign {campaign.id}: {e}",
                campaign_id=campaign.id,
                **format_exception_for_logging(e)
            )
            metrics.campaign_errors.labels(error_type=type(e).__name__).inc()
            report.outcome = CampaignOutcome.FAILED
            report.error = f"{type(e).__name__}: {e}"
            return report

    async def _process_campaign(
        self,
        campaign: Campaign,
        evaluator: RuleEvaluator,
        dry_run: bool,
        report: CampaignReport
    ) -> CampaignReport:
        async with self.locks.hold(campaign.id) as acquired:
            if not acquired:
                logger.info(f"Campaign {campaign.id} locked by another run, skipping")
                report.outcome, report.reason = CampaignOutcome.SKIPPED, "locked"
                return report

            now = datetime.utcnow()
            if not dry_run:
                claimed = await self.store.mark_evaluated(campaign.id, campaign.last_evaluated_at, now)
                if not claimed:
                    logger.info(f"Campaign {campaign.id} already evaluated by a concurrent run, skipping")
                    report.outcome, report.reason = CampaignOutcome.SKIPPED, "concurrent"
                    return report

            # Snapshot is taken once, before any mutation
            snapshot = await self.aggregator.snapshot(campaign, now=now)
            evaluation = evaluator.evaluate(snapshot, campaign)
            metrics.decisions_total.labels(outcome=evaluation.outcome.value).inc()

            report.reason = evaluation.reason
            if evaluation.outcome == DecisionOutcome.INSUFFICIENT_DATA:
                report.outcome = CampaignOutcome.INSUFFICIENT_DATA
                return report

            for recommendation in evaluation.recommendations:
                execution = asyncio.ensure_future(self.executor.execute(
                    recommendation,
                    campaign,
                    snapshot=snapshot,
                    cycle_id=get_cycle_id(),
                    dry_run=dry_run
                ))
                try:
                    report.executions.append(await asyncio.shield(execution))
                except asyncio.CancelledError:
                    # The executor finishes its commit; keep the outcome for the summary
                    report.executions.append(await execution)
                    raise

                latest = report.executions[-1]
                if latest.status == ExecutionStatus.EXECUTED and latest.effects:
                    await self.effects.run(latest.action, latest.effects)

            if not dry_run:
                opportunities = await self.detector.detect_and_record(snapshot)
            else:
                opportunities = self.detector.detect(snapshot)
            report.opportunities_detected = len(opportunities)

            failures = [r for r in report.executions if r.status == ExecutionStatus.FAILED]
            if failures:
                report.outcome = CampaignOutcome.FAILED
                report.error = "; ".join(f"{r.action_type.value}: {r.error}" for r in failures)
            elif any(r.status == ExecutionStatus.EXECUTED for r in report.executions):
                report.outcome = CampaignOutcome.ACTED

            return report


class CycleScheduler:
    """Schedules automatic optimization cycles."""

    def __init__(self, orchestrator: CycleOrchestrator):
        self.orchestrator = orchestrator
        self._running = False
        self._stopped: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, interval_minutes: int = 60, max_runs: Optional[int] = None):
        """Run cycles every `interval_minutes` until stop() is called."""
        self._running = True
        self._stopped = asyncio.Event()
        runs = 0

        logger.info(f"Starting scheduler - interval: {interval_minutes} minutes")

        while self._running:
            try:
                await self.orchestrator.run()
            except Exception as e:
                logger.error(f"Scheduled optimization cycle failed: {e}")

            runs += 1
            if max_runs is not None and runs >= max_runs:
                break

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval_minutes * 60)
            except asyncio.TimeoutError:
                pass

        self._running = False

    def stop(self):
        """Stop scheduled optimization."""
        self._running = False
        if self._stopped is not None:
            self._stopped.set()
