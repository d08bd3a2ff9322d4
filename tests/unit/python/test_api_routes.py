"""
EventNexus Autopilot - API Route Tests
"""

import pytest
from fastapi.testclient import TestClient

from nexus_autopilot.api.main import create_app
from nexus_autopilot.automation.rule_evaluator import default_rules


@pytest.fixture
def client(operations):
    with TestClient(create_app(operations)) as test_client:
        yield test_client


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["cycle_running"] is False

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "autopilot_cycles_total" in response.text


class TestCycleRoutes:

    def test_run_cycle(self, client, losing_campaign, winning_campaign):
        response = client.post("/api/autonomous/run", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["summary"]["campaigns_paused"] == 1
        assert body["summary"]["campaigns_scaled"] == 1
        assert body["summary"]["campaigns_posted"] == 1
        assert body["summary"]["campaigns_failed"] == 0
        assert body["campaigns_evaluated"] == 2

    def test_dry_run(self, client, store, losing_campaign):
        response = client.post("/api/autonomous/run", json={"dry_run": True})

        assert response.status_code == 200
        assert response.json()["dry_run"] is True
        assert store.actions == {}

    def test_invalid_timeout(self, client):
        response = client.post("/api/autonomous/run", json={"timeout_seconds": 0})
        assert response.status_code == 422


class TestActionRoutes:

    def test_list_and_rollback(self, client, losing_campaign):
        client.post("/api/autonomous/run", json={})

        actions = client.get("/api/autonomous/actions").json()
        assert len(actions) == 1
        assert actions[0]["action_type"] == "auto_pause"
        assert actions[0]["details"]["kind"] == "pause"

        response = client.post(f"/api/autonomous/actions/{actions[0]['id']}/rollback")
        assert response.status_code == 200
        assert response.json()["status"] == "rolled_back"

        again = client.post(f"/api/autonomous/actions/{actions[0]['id']}/rollback")
        assert again.status_code == 409
        assert again.json()["error"] == "BIZ_004"

    def test_rollback_unknown_action(self, client):
        response = client.post("/api/autonomous/actions/missing/rollback")

        assert response.status_code == 404
        assert response.json()["error"] == "DB_003"

    def test_retry_posts(self, client, publisher, winning_campaign):
        publisher.failing_platforms.add("twitter")
        client.post("/api/autonomous/run", json={})
        actions = client.get("/api/autonomous/actions", params={"campaign_id": winning_campaign.id}).json()
        promotion = next(a for a in actions if a["action_type"] == "optimization_applied")
        assert promotion["details"]["post_results"]["twitter"]["error_type"] == "api_error"

        publisher.failing_platforms.clear()
        response = client.post(f"/api/autonomous/actions/{promotion['id']}/retry-posts")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "executed"
        assert body["details"]["post_results"]["twitter"]["success"] is True

    def test_retry_posts_on_pause_refused(self, client, losing_campaign):
        client.post("/api/autonomous/run", json={})
        action_id = client.get("/api/autonomous/actions").json()[0]["id"]

        response = client.post(f"/api/autonomous/actions/{action_id}/retry-posts")

        assert response.status_code == 409
        assert response.json()["error"] == "BIZ_007"

    def test_filter_by_campaign(self, client, losing_campaign, winning_campaign):
        client.post("/api/autonomous/run", json={})

        response = client.get("/api/autonomous/actions", params={"campaign_id": winning_campaign.id})

        assert {a["action_type"] for a in response.json()} == {"auto_scale_up", "optimization_applied"}


class TestOpportunityRoutes:

    def test_list_and_resolve(self, client, losing_campaign):
        client.post("/api/autonomous/run", json={})

        opportunities = client.get("/api/autonomous/opportunities").json()
        assert len(opportunities) == 2

        high = client.get("/api/autonomous/opportunities", params={"severity": "high"}).json()
        assert len(high) == 1

        response = client.patch(
            f"/api/autonomous/opportunities/{opportunities[0]['id']}",
            json={"status": "resolved"}
        )
        assert response.status_code == 200
        assert response.json()["resolved_at"] is not None
        assert len(client.get("/api/autonomous/opportunities").json()) == 1

    def test_unknown_status_rejected(self, client):
        response = client.patch("/api/autonomous/opportunities/x", json={"status": "archived"})
        assert response.status_code == 422


class TestRuleRoutes:

    def test_toggle(self, client, store):
        for rule in default_rules():
            store.add_rule(rule)

        response = client.patch("/api/autonomous/rules/default-auto-post", json={"is_active": False})

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        active = client.get("/api/autonomous/rules", params={"active_only": True}).json()
        assert "default-auto-post" not in [r["id"] for r in active]
        assert len(client.get("/api/autonomous/rules").json()) == 4

    def test_toggle_unknown_rule(self, client):
        response = client.patch("/api/autonomous/rules/missing", json={"is_active": True})
        assert response.status_code == 404


class TestStatsRoute:

    def test_stats(self, client, losing_campaign):
        client.post("/api/autonomous/run", json={})

        body = client.get("/api/autonomous/stats").json()

        assert body["total_actions"] == 1
        assert body["campaigns_paused"] == 1
        assert body["open_opportunities"] == 2
