"""
EventNexus Autopilot - Rule Evaluator Tests
"""

import pytest

from nexus_autopilot.automation.models import ActionType, AutonomousRule, RuleType
from nexus_autopilot.automation.rule_evaluator import (
    DecisionOutcome,
    EvaluationThresholds,
    EvaluatorRule,
    RuleEvaluator,
    confidence_score,
    default_rules,
)
from nexus_autopilot.core.exceptions import InvalidConfigException


@pytest.fixture
def evaluator():
    return RuleEvaluator()


class TestPause:

    def test_pauses_unprofitable_campaign(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.ACTION
        assert evaluation.action_types == [ActionType.AUTO_PAUSE]

    @pytest.mark.parametrize("spend,revenue", [(50.0, 0.0), (50.0, 49.0), (200.0, 150.0), (1000.0, 1990.0)])
    def test_pause_is_the_only_action(self, evaluator, snapshot_factory, spend, revenue):
        # High CTR would otherwise qualify for a cross-post
        snapshot = snapshot_factory(
            impressions=1000, clicks=100, conversions=20, spend=spend, revenue=revenue
        )

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.action_types == [ActionType.AUTO_PAUSE]

    def test_spend_below_floor_is_not_paused(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(impressions=1000, clicks=5, spend=10.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.NO_QUALIFYING_RULE
        assert evaluation.recommendations == []

    def test_break_even_is_not_paused(self, evaluator, snapshot_factory):
        # ROI exactly at the threshold
        snapshot = snapshot_factory(impressions=1000, clicks=5, spend=100.0, revenue=200.0)

        evaluation = evaluator.evaluate(snapshot)

        assert ActionType.AUTO_PAUSE not in evaluation.action_types

    def test_pause_wins_over_scale_up(self, snapshot_factory):
        # Thresholds chosen so one snapshot meets both conditions
        evaluator = RuleEvaluator(EvaluationThresholds(scale_roi=0.5, pause_roi=1.0))
        snapshot = snapshot_factory(
            impressions=1000, clicks=100, conversions=20, spend=100.0, revenue=180.0
        )
        assert 0.5 <= snapshot.roi < 1.0

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.action_types == [ActionType.AUTO_PAUSE]


class TestScale:

    def test_scales_up_and_posts_winner(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=5000, clicks=150, conversions=12, spend=100.0, revenue=500.0
        )

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.action_types == [ActionType.AUTO_SCALE_UP, ActionType.OPTIMIZATION_APPLIED]

    @pytest.mark.parametrize("conversions,revenue", [(10, 400.0), (25, 1000.0), (500, 10000.0)])
    def test_scale_up_condition(self, evaluator, snapshot_factory, conversions, revenue):
        snapshot = snapshot_factory(
            impressions=10000, clicks=100, conversions=conversions, spend=100.0, revenue=revenue
        )

        evaluation = evaluator.evaluate(snapshot)

        assert ActionType.AUTO_SCALE_UP in evaluation.action_types

    def test_too_few_conversions_not_scaled(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=10000, clicks=100, conversions=9, spend=100.0, revenue=900.0
        )

        evaluation = evaluator.evaluate(snapshot)

        assert ActionType.AUTO_SCALE_UP not in evaluation.action_types

    def test_scale_down_disabled_by_default(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(impressions=10000, clicks=50, conversions=5, spend=150.0, revenue=330.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.NO_QUALIFYING_RULE

    def test_scale_down_when_enabled(self, snapshot_factory):
        thresholds = EvaluationThresholds(
            enabled=frozenset({EvaluatorRule.AUTO_PAUSE, EvaluatorRule.AUTO_SCALE_DOWN})
        )
        evaluator = RuleEvaluator(thresholds)
        # ROI 1.2 on $150 spend
        snapshot = snapshot_factory(impressions=10000, clicks=50, conversions=5, spend=150.0, revenue=330.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.action_types == [ActionType.AUTO_SCALE_DOWN]


class TestPost:

    def test_high_ctr_posts(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(impressions=1000, clicks=30, spend=10.0, revenue=30.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.action_types == [ActionType.OPTIMIZATION_APPLIED]
        assert evaluation.recommendations[0].rule == EvaluatorRule.AUTO_POST

    def test_ctr_at_threshold_does_not_post(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(impressions=1000, clicks=20, spend=10.0, revenue=30.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.NO_QUALIFYING_RULE


class TestDataGuards:

    def test_missing_snapshot(self, evaluator):
        evaluation = evaluator.evaluate(None)
        assert evaluation.outcome == DecisionOutcome.INSUFFICIENT_DATA

    def test_zero_impressions(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(spend=500.0)

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.INSUFFICIENT_DATA
        assert evaluation.recommendations == []

    def test_minimum_runtime(self, snapshot_factory):
        evaluator = RuleEvaluator(EvaluationThresholds(min_hours_running=24))
        snapshot = snapshot_factory(
            impressions=10000, clicks=50, spend=75.0, revenue=50.0, hours_running=2.0
        )

        evaluation = evaluator.evaluate(snapshot)

        assert evaluation.outcome == DecisionOutcome.NO_QUALIFYING_RULE
        assert "below minimum" in evaluation.reason


class TestConfidence:

    @pytest.mark.parametrize("margin,sample,floor", [
        (0.0, 0.0, 50.0),
        (0.0, 50.0, 50.0),
        (5.0, 1e9, 50.0),
        (-3.0, 10.0, 50.0),
        (0.5, 100.0, 0.0),
    ])
    def test_bounded(self, margin, sample, floor):
        score = confidence_score(margin, sample, floor)
        assert 0.0 <= score <= 100.0

    def test_grows_with_margin_and_sample(self):
        assert confidence_score(0.8, 100, 50) > confidence_score(0.2, 100, 50)
        assert confidence_score(0.5, 1000, 50) > confidence_score(0.5, 60, 50)

    def test_floor_with_zero_margin(self):
        assert confidence_score(0.0, 50, 50) == 30.0

    def test_recommendations_carry_scores(self, evaluator, snapshot_factory):
        snapshot = snapshot_factory(
            impressions=5000, clicks=150, conversions=12, spend=100.0, revenue=500.0
        )

        for recommendation in evaluator.evaluate(snapshot).recommendations:
            assert 0.0 < recommendation.confidence_score <= 100.0


class TestThresholdsFromRules:

    def _rule(self, evaluator_rule, active=True, condition=None, action=None, priority=0, rule_id=None):
        return AutonomousRule(
            id=rule_id or f"rule-{evaluator_rule.value}",
            rule_name=evaluator_rule.value,
            rule_type=RuleType.PAUSE,
            condition=condition or {},
            action={"evaluator_rule": evaluator_rule.value, **(action or {})},
            priority=priority,
            is_active=active,
        )

    def test_empty_table_uses_defaults(self):
        thresholds = EvaluationThresholds.from_rules([])

        assert thresholds.is_enabled(EvaluatorRule.AUTO_PAUSE)
        assert thresholds.is_enabled(EvaluatorRule.AUTO_SCALE_UP)
        assert thresholds.is_enabled(EvaluatorRule.AUTO_POST)
        assert not thresholds.is_enabled(EvaluatorRule.AUTO_SCALE_DOWN)
        assert thresholds.min_spend == 50.0

    def test_default_rules_match_default_thresholds(self):
        assert EvaluationThresholds.from_rules(default_rules()) == EvaluationThresholds()

    def test_inactive_rule_disables_behavior(self, snapshot_factory):
        rules = [
            self._rule(EvaluatorRule.AUTO_PAUSE, active=False),
            self._rule(EvaluatorRule.AUTO_POST),
        ]
        evaluator = RuleEvaluator(EvaluationThresholds.from_rules(rules))
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        evaluation = evaluator.evaluate(snapshot)

        assert ActionType.AUTO_PAUSE not in evaluation.action_types

    def test_condition_overrides_threshold(self, snapshot_factory):
        rules = [self._rule(EvaluatorRule.AUTO_PAUSE, condition={"min_spend": 100})]
        evaluator = RuleEvaluator(EvaluationThresholds.from_rules(rules))
        snapshot = snapshot_factory(impressions=10000, clicks=50, spend=75.0, revenue=50.0)

        assert evaluator.thresholds.min_spend == 100.0
        assert evaluator.evaluate(snapshot).outcome == DecisionOutcome.NO_QUALIFYING_RULE

    def test_budget_step_from_action(self):
        rules = [self._rule(EvaluatorRule.AUTO_SCALE_UP, action={"budget_change_pct": 0.2})]

        thresholds = EvaluationThresholds.from_rules(rules)

        assert thresholds.scale_up_pct == pytest.approx(0.2)
        assert thresholds.scale_down_pct is None

    def test_higher_priority_wins(self):
        rules = [
            self._rule(EvaluatorRule.AUTO_PAUSE, condition={"min_spend": 80}, priority=100, rule_id="a"),
            self._rule(EvaluatorRule.AUTO_PAUSE, condition={"min_spend": 20}, priority=1, rule_id="b"),
        ]

        assert EvaluationThresholds.from_rules(rules).min_spend == 80.0

    def test_unrelated_rules_ignored(self):
        rule = AutonomousRule(id="x", rule_name="Create lookalike", rule_type=RuleType.CREATE)

        thresholds = EvaluationThresholds.from_rules([rule])

        assert thresholds.enabled == frozenset()

    @pytest.mark.parametrize("raw", ["lots", -5])
    def test_bad_condition_value(self, raw):
        rules = [self._rule(EvaluatorRule.AUTO_PAUSE, condition={"min_spend": raw})]

        with pytest.raises(InvalidConfigException):
            EvaluationThresholds.from_rules(rules)
