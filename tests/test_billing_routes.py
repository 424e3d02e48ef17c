from unittest.mock import AsyncMock

import stripe

from conftest import make_user
from syntaxstate.config import settings
from syntaxstate.services import billing_service


async def test_checkout_needs_configured_price(client, monkeypatch):
	monkeypatch.setattr(settings, "stripe_price_pro", None)
	resp = await client.post(
		"/api/billing/checkout",
		json={"plan": "PRO", "success_url": "https://app.test/ok", "cancel_url": "https://app.test/no"},
	)
	assert resp.status_code == 400


async def test_checkout_returns_session_url(client, monkeypatch):
	monkeypatch.setattr(settings, "stripe_price_max", "price_max")
	create = AsyncMock(return_value="https://checkout.stripe.test/cs_1")
	monkeypatch.setattr(billing_service, "create_checkout_session", create)

	resp = await client.post(
		"/api/billing/checkout",
		json={"plan": "MAX", "success_url": "https://app.test/ok", "cancel_url": "https://app.test/no"},
	)

	assert resp.json() == {"url": "https://checkout.stripe.test/cs_1"}
	assert create.await_args.args[:3] == ("user-free", "clerk-free", "MAX")
	assert create.await_args.kwargs == {"customer_id": None}


async def test_checkout_provider_failure_is_bad_gateway(client, monkeypatch):
	monkeypatch.setattr(settings, "stripe_price_pro", "price_pro")
	monkeypatch.setattr(billing_service, "create_checkout_session", AsyncMock(side_effect=stripe.APIConnectionError("offline")))
	resp = await client.post(
		"/api/billing/checkout",
		json={"plan": "PRO", "success_url": "https://app.test/ok", "cancel_url": "https://app.test/no"},
	)
	assert resp.status_code == 502


async def test_checkout_rejects_free_plan(client):
	resp = await client.post(
		"/api/billing/checkout",
		json={"plan": "FREE", "success_url": "https://app.test/ok", "cancel_url": "https://app.test/no"},
	)
	assert resp.status_code == 422


async def test_portal_without_customer(client):
	resp = await client.post("/api/billing/portal", json={"return_url": "https://app.test/settings"})
	assert resp.status_code == 404


async def test_portal_for_customer(client, current_user, monkeypatch):
	user = make_user(plan="PRO")
	user.stripe_customer_id = "cus_1"
	current_user["user"] = user
	portal = AsyncMock(return_value="https://billing.stripe.test/p_1")
	monkeypatch.setattr(billing_service, "create_portal_session", portal)

	resp = await client.post("/api/billing/portal", json={"return_url": "https://app.test/settings"})

	assert resp.json() == {"url": "https://billing.stripe.test/p_1"}
	portal.assert_awaited_once_with("cus_1", "https://app.test/settings")


async def test_cancel_without_subscription(client):
	resp = await client.post("/api/billing/cancel")
	assert resp.status_code == 404


async def test_cancel_schedules_end_of_period(client, current_user, monkeypatch):
	user = make_user(plan="PRO")
	user.stripe_subscription_id = "sub_1"
	current_user["user"] = user
	cancel = AsyncMock()
	monkeypatch.setattr(billing_service, "cancel_subscription", cancel)

	resp = await client.post("/api/billing/cancel")

	assert resp.json() == {"status": "ok", "cancel_at_period_end": True}
	cancel.assert_awaited_once_with("sub_1")


def test_price_lookup_both_ways(monkeypatch):
	monkeypatch.setattr(settings, "stripe_price_pro", "price_pro")
	monkeypatch.setattr(settings, "stripe_price_max", "price_max")
	assert billing_service.price_id_for_plan("MAX") == "price_max"
	assert billing_service.plan_for_price_id("price_pro") == "PRO"
	assert billing_service.plan_for_price_id("") is None
	assert billing_service.price_id_for_plan("FREE") is None
