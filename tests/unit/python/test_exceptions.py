"""
EventNexus Autopilot - Exception Tests
"""

import json

import pytest

from nexus_autopilot.core.exceptions import (
    ActionNotFoundException,
    AutopilotException,
    BudgetChangeRejectedException,
    CampaignMissingException,
    CycleTimeoutException,
    DatabaseException,
    InvalidActionStateException,
    InvalidConfigException,
    InvalidStatusTransitionException,
    RecordNotFoundException,
    RollbackException,
    SocialPublishException,
    StorageWriteException,
    ValidationException,
    exception_to_http_status,
    format_exception_for_logging,
    is_retryable_exception,
)


class TestHierarchy:

    def test_rollback_failures_share_a_base(self):
        assert issubclass(InvalidActionStateException, RollbackException)
        assert issubclass(CampaignMissingException, RollbackException)

    def test_not_found_is_not_retryable(self):
        assert ActionNotFoundException("a1").is_retryable is False
        assert is_retryable_exception(RecordNotFoundException("Campaign", "c1")) is False

    def test_database_errors_are_retryable(self):
        assert DatabaseException("down").is_retryable is True
        assert StorageWriteException("down", table="campaigns").is_retryable is True

    def test_builtin_connection_errors_retryable(self):
        assert is_retryable_exception(ConnectionError()) is True
        assert is_retryable_exception(KeyError("x")) is False


class TestSerialization:

    def test_to_dict(self):
        error = InvalidActionStateException("act_1", "rolled_back")

        payload = error.to_dict()

        assert payload["error"] == "BIZ_004"
        assert payload["category"] == "business_logic"
        assert payload["details"] == {"action_id": "act_1", "status": "rolled_back"}

    def test_to_json(self):
        error = BudgetChangeRejectedException("c1", 100.0, 250.0, "Increase 150% exceeds max 100%")

        payload = json.loads(error.to_json())

        assert payload["details"]["proposed_budget"] == 250.0

    def test_cause_in_message(self):
        error = StorageWriteException("write failed", table="campaigns", cause=TimeoutError("slow"))
        assert "TimeoutError" in str(error)

    def test_format_for_logging(self):
        fields = format_exception_for_logging(CycleTimeoutException("c1", 30))

        assert fields["exception_type"] == "CycleTimeoutException"
        assert fields["error_code"] == "BIZ_006"
        assert "error_message" in fields

    def test_timeout_message_keeps_fractional_seconds(self):
        assert "0.1s" in CycleTimeoutException("c1", 0.1).message
        assert "300s" in CycleTimeoutException("c1", 300.0).message

    def test_format_plain_exception(self):
        fields = format_exception_for_logging(ValueError("nope"))
        assert fields == {
            "exception_type": "ValueError",
            "error_message": "nope",
            "traceback": fields["traceback"],
        }


class TestHttpStatus:

    @pytest.mark.parametrize("error,status", [
        (ActionNotFoundException("a1"), 404),
        (InvalidActionStateException("a1", "failed"), 409),
        (CampaignMissingException("a1", "c1"), 409),
        (InvalidStatusTransitionException("OptimizationOpportunity", "o1", "resolved", "open"), 409),
        (ValidationException("bad"), 422),
        (BudgetChangeRejectedException("c1", 1.0, 2.0, "cap"), 422),
        (SocialPublishException("twitter", "rejected"), 502),
        (DatabaseException("down"), 503),
        (InvalidConfigException("LOG_FORMAT", "xml", "bad"), 500),
        (AutopilotException("unknown"), 500),
    ])
    def test_mapping(self, error, status):
        assert exception_to_http_status(error) == status
