"""
EventNexus Autopilot - Command Line
Operator commands: run, schedule, rollback, retry-posts, resolve, toggle-rule, stats, serve.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

import uvicorn

from .api.main import create_app
from .automation.cycle_orchestrator import CycleScheduler
from .automation.models import OpportunityStatus
from .automation.operations import AutonomousOperations, build_operations
from .core.config import AutopilotSettings
from .core.exceptions import AutopilotException
from .core.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexus-autopilot",
        description="EventNexus autonomous campaign optimizer"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run one optimization cycle")
    run.add_argument("--campaign", action="append", dest="campaign_ids", help="Restrict to campaign ID (repeatable)")
    run.add_argument("--timeout", type=float, help="Wall-clock budget in seconds")
    run.add_argument("--dry-run", action="store_true", default=None, help="Decide without changing anything")

    schedule = subparsers.add_parser("schedule", help="Run cycles on an interval")
    schedule.add_argument("--interval", type=int, help="Minutes between cycles")

    rollback = subparsers.add_parser("rollback", help="Roll back an executed action")
    rollback.add_argument("action_id")

    retry_posts = subparsers.add_parser("retry-posts", help="Republish failed cross-posts of an action")
    retry_posts.add_argument("action_id")

    resolve = subparsers.add_parser("resolve", help="Move an opportunity to a new status")
    resolve.add_argument("opportunity_id")
    resolve.add_argument(
        "status",
        choices=[s.value for s in OpportunityStatus if s != OpportunityStatus.OPEN]
    )

    toggle = subparsers.add_parser("toggle-rule", help="Enable or disable a rule")
    toggle.add_argument("rule_id")
    toggle.add_argument("state", choices=["on", "off"])

    subparsers.add_parser("stats", help="Show action and opportunity statistics")

    serve = subparsers.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", 8000)))

    return parser


async def _dispatch(args: argparse.Namespace, settings: AutopilotSettings, operations: AutonomousOperations):
    await operations.orchestrator.locks.initialize()
    try:
        if args.command == "run":
            result = await operations.run_cycle(
                campaign_ids=args.campaign_ids,
                timeout=args.timeout,
                dry_run=args.dry_run
            )
            return result.to_dict()

        if args.command == "schedule":
            scheduler = CycleScheduler(operations.orchestrator)
            await scheduler.start(interval_minutes=args.interval or settings.schedule_interval_minutes)
            return None

        if args.command == "rollback":
            action = await operations.rollback(args.action_id)
            return action.to_dict()

        if args.command == "retry-posts":
            action = await operations.retry_failed_posts(args.action_id)
            return action.to_dict()

        if args.command == "resolve":
            opportunity = await operations.resolve_opportunity(
                args.opportunity_id, OpportunityStatus(args.status)
            )
            return opportunity.to_dict()

        if args.command == "toggle-rule":
            rule = await operations.toggle_rule(args.rule_id, args.state == "on")
            return rule.to_dict()

        if args.command == "stats":
            stats = await operations.get_stats()
            return stats.to_dict()
    finally:
        await operations.close()

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = AutopilotSettings.from_env()
    except AutopilotException as e:
        print(e.to_json(), file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level, json_output=settings.log_format == "json")

    if args.command == "serve":
        uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)
        return 0

    operations = build_operations(settings)

    try:
        output = asyncio.run(_dispatch(args, settings, operations))
    except AutopilotException as e:
        logger.error(f"{args.command} failed: {e.message}", error_code=e.error_code)
        print(e.to_json(), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    if output is not None:
        print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
