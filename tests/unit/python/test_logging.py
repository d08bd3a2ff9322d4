"""
EventNexus Autopilot - Logging Tests
"""

import json
import logging

from nexus_autopilot.core.logging import (
    ConsoleFormatter,
    StructuredFormatter,
    get_cycle_id,
    get_logger,
    reset_cycle_id,
    set_cycle_id,
)


def make_record(message="Campaign evaluated", **extra):
    record = logging.LogRecord(
        name="nexus_autopilot.automation.rule_evaluator",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCycleContext:

    def test_set_and_reset(self):
        token = set_cycle_id("ab12cd34")
        assert get_cycle_id() == "ab12cd34"

        reset_cycle_id(token)
        assert get_cycle_id() is None


class TestStructuredFormatter:

    def test_json_with_extras_and_cycle(self):
        token = set_cycle_id("ab12cd34")
        try:
            output = StructuredFormatter().format(make_record(campaign_id="c1", outcome="action"))
        finally:
            reset_cycle_id(token)

        payload = json.loads(output)
        assert payload["message"] == "Campaign evaluated"
        assert payload["level"] == "INFO"
        assert payload["cycle_id"] == "ab12cd34"
        assert payload["extra"] == {"campaign_id": "c1", "outcome": "action"}

    def test_extras_can_be_excluded(self):
        output = StructuredFormatter(include_extras=False).format(make_record(campaign_id="c1"))

        assert "extra" not in json.loads(output)


class TestConsoleFormatter:

    def test_includes_cycle(self):
        token = set_cycle_id("ab12cd34")
        try:
            output = ConsoleFormatter().format(make_record())
        finally:
            reset_cycle_id(token)

        assert "Campaign evaluated" in output
        assert "[cycle:ab12cd34]" in output


class TestAutopilotLogger:

    def test_decision_fields(self, caplog):
        logger = get_logger("nexus_autopilot.test")

        with caplog.at_level(logging.INFO, logger="nexus_autopilot.test"):
            logger.decision("c1", "no_qualifying_rule", reason="spend below floor")

        record = caplog.records[-1]
        assert record.campaign_id == "c1"
        assert record.outcome == "no_qualifying_rule"
        assert record.reason == "spend below floor"

    def test_action_recorded_fields(self, caplog):
        logger = get_logger("nexus_autopilot.test")

        with caplog.at_level(logging.INFO, logger="nexus_autopilot.test"):
            logger.action_recorded("act_1", "auto_pause", "executed", campaign_id="c1")

        record = caplog.records[-1]
        assert record.action_id == "act_1"
        assert record.status == "executed"
