import pytest

from conftest import make_user
from syntaxstate.config import settings
from syntaxstate.db.models import AILog


@pytest.fixture
def admin(monkeypatch):
	monkeypatch.setattr(settings, "admin_user_ids", ["clerk-free"])


def _log(log_id="log-1", action="ASSISTANT_CHAT"):
	return AILog(_id=log_id, user_id="user-pro", action=action, model="medium - openai/gpt-4o-mini", latency_ms=820)


async def test_admin_routes_are_restricted(client, repos, monkeypatch):
	monkeypatch.setattr(settings, "admin_user_ids", ["clerk-admin"])

	for resp in (
		await client.get("/api/admin/ai-stats"),
		await client.get("/api/admin/ai-logs"),
		await client.get("/api/admin/ai-usage"),
		await client.put("/api/admin/users/user-pro/plan", json={"plan": "MAX"}),
		await client.post("/api/admin/users/user-pro/reset-iterations"),
	):
		assert resp.status_code == 403
	repos["logs"].aggregated_stats.assert_not_awaited()
	repos["users"].set_plan_by_id.assert_not_awaited()
	repos["users"].reset_iterations_by_id.assert_not_awaited()


async def test_admin_stats_for_admin(client, repos, admin):
	repos["logs"].aggregated_stats.return_value = {"total_requests": 10}
	repos["logs"].error_stats.return_value = []
	repos["logs"].latency_percentiles.return_value = {"p50": 100}
	resp = await client.get("/api/admin/ai-stats")
	assert resp.json() == {"stats": {"total_requests": 10}, "errors": [], "latency": {"p50": 100}}


async def test_logs_are_filtered_and_paged(client, repos, admin):
	repos["logs"].query.return_value = [_log()]

	resp = await client.get("/api/admin/ai-logs", params={"action": "ASSISTANT_CHAT", "status": "error", "limit": 20, "skip": 40})

	assert [item["id"] for item in resp.json()["items"]] == ["log-1"]
	repos["logs"].query.assert_awaited_once_with(action="ASSISTANT_CHAT", user_id=None, status="error", limit=20, skip=40)


async def test_log_page_size_is_bounded(client, repos, admin):
	resp = await client.get("/api/admin/ai-logs", params={"limit": 1000})
	assert resp.status_code == 422
	repos["logs"].query.assert_not_awaited()


async def test_single_log(client, repos, admin):
	repos["logs"].find_by_id.return_value = _log(action="TOPIC_CHAT")
	resp = await client.get("/api/admin/ai-logs/log-1")
	assert resp.json()["action"] == "TOPIC_CHAT"
	repos["logs"].find_by_id.assert_awaited_once_with("log-1")


async def test_missing_log_is_not_found(client, repos, admin):
	repos["logs"].find_by_id.return_value = None
	resp = await client.get("/api/admin/ai-logs/nope")
	assert resp.status_code == 404


async def test_usage_by_action(client, repos, admin):
	usage = [{"action": "ASSISTANT_CHAT", "count": 12, "avg_latency": 900, "total_tokens": 5400}]
	repos["logs"].usage_by_action.return_value = usage
	resp = await client.get("/api/admin/ai-usage")
	assert resp.json() == {"items": usage}


async def test_plan_override(client, repos, admin):
	repos["users"].set_plan_by_id.return_value = make_user(plan="MAX")

	resp = await client.put("/api/admin/users/user-max/plan", json={"plan": "MAX"})

	assert resp.json()["plan"] == "MAX"
	repos["users"].set_plan_by_id.assert_awaited_once_with("user-max", "MAX")


async def test_plan_override_rejects_unknown_plan(client, repos, admin):
	resp = await client.put("/api/admin/users/user-pro/plan", json={"plan": "GOLD"})
	assert resp.status_code == 422
	repos["users"].set_plan_by_id.assert_not_awaited()


async def test_plan_override_for_missing_user(client, repos, admin):
	repos["users"].set_plan_by_id.return_value = None
	resp = await client.put("/api/admin/users/ghost/plan", json={"plan": "PRO"})
	assert resp.status_code == 404


async def test_reset_iterations(client, repos, admin):
	repos["users"].reset_iterations_by_id.return_value = make_user(plan="PRO")

	resp = await client.post("/api/admin/users/user-pro/reset-iterations")

	assert resp.json()["iterations"]["count"] == 0
	repos["users"].reset_iterations_by_id.assert_awaited_once_with("user-pro")


async def test_reset_iterations_for_missing_user(client, repos, admin):
	repos["users"].reset_iterations_by_id.return_value = None
	resp = await client.post("/api/admin/users/ghost/reset-iterations")
	assert resp.status_code == 404
