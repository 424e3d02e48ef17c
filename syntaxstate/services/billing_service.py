from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

import anyio
import stripe

from syntaxstate.config import settings
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.utils.audit import auditor


logger = logging.getLogger(__name__)

PAID_PLANS = ("PRO", "MAX")


class BillingError(Exception):
	pass


def _init_stripe() -> None:
	if not settings.stripe_secret_key:
		raise BillingError("STRIPE_SECRET_KEY is not configured")
	stripe.api_key = settings.stripe_secret_key


def price_id_for_plan(plan: str) -> Optional[str]:
	return {"PRO": settings.stripe_price_pro, "MAX": settings.stripe_price_max}.get(plan)


def plan_for_price_id(price_id: str) -> Optional[str]:
	for plan in PAID_PLANS:
		if price_id and price_id_for_plan(plan) == price_id:
			return plan
	return None


async def _call(fn: Callable[..., Any], **kwargs: Any) -> Any:
	# stripe-python is synchronous; keep it off the event loop
	_init_stripe()
	return await anyio.to_thread.run_sync(lambda: fn(**kwargs))


async def create_checkout_session(
	user_id: str,
	clerk_id: str,
	plan: str,
	success_url: str,
	cancel_url: str,
	customer_id: Optional[str] = None,
) -> str:
	price_id = price_id_for_plan(plan)
	if not price_id:
		raise BillingError(f"Missing price ID for plan: {plan}")
	metadata = {"user_id": user_id, "clerk_id": clerk_id, "plan": plan}
	params: Dict[str, Any] = {
		"mode": "subscription",
		"line_items": [{"price": price_id, "quantity": 1}],
		"success_url": success_url,
		"cancel_url": cancel_url,
		"metadata": metadata,
		"subscription_data": {"metadata": metadata},
	}
	if customer_id:
		params["customer"] = customer_id
	session = await _call(stripe.checkout.Session.create, **params)
	if not session.url:
		raise BillingError("Failed to create checkout session URL")
	await auditor.log({"type": "billing_checkout", "clerk_id": clerk_id, "plan": plan, "session_id": session.id})
	return session.url


async def create_portal_session(customer_id: str, return_url: str) -> str:
	session = await _call(stripe.billing_portal.Session.create, customer=customer_id, return_url=return_url)
	return session.url


async def cancel_subscription(subscription_id: str) -> None:
	await _call(stripe.Subscription.modify, id=subscription_id, cancel_at_period_end=True)
	await auditor.log({"type": "billing_cancel", "subscription_id": subscription_id})


async def retrieve_subscription_metadata(subscription_id: str) -> Dict[str, Any]:
	subscription = await _call(stripe.Subscription.retrieve, id=subscription_id)
	return dict(subscription.metadata or {})


def construct_event(payload: bytes, signature: str) -> Dict[str, Any]:
	"""Verify the Stripe signature and return the event as plain JSON."""
	if not settings.stripe_webhook_secret:
		raise BillingError("STRIPE_WEBHOOK_SECRET is not configured")
	stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=settings.stripe_webhook_secret)
	return json.loads(payload)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
	candidates = [invoice.get("subscription")]
	lines = (invoice.get("lines") or {}).get("data") or []
	if lines:
		line = lines[0]
		candidates.append(line.get("subscription"))
		details = (line.get("parent") or {}).get("subscription_item_details") or {}
		candidates.append(details.get("subscription"))
	for candidate in candidates:
		if isinstance(candidate, dict):
			candidate = candidate.get("id")
		if candidate:
			return candidate
	return None


class StripeWebhookHandler:
	"""Applies subscription lifecycle events to user plans."""

	def __init__(self, users: UserRepository, fetch_subscription_metadata=retrieve_subscription_metadata) -> None:
		self._users = users
		self._fetch_subscription_metadata = fetch_subscription_metadata

	async def handle(self, event: Dict[str, Any]) -> bool:
		"""Returns False for event types we do not act on."""
		event_type = event.get("type")
		obj = (event.get("data") or {}).get("object") or {}
		handler = {
			"checkout.session.completed": self.checkout_completed,
			"customer.subscription.updated": self.subscription_updated,
			"customer.subscription.deleted": self.subscription_deleted,
			"invoice.paid": self.invoice_paid,
		}.get(event_type)
		await auditor.log({"type": "stripe_webhook", "event_type": event_type, "event_id": event.get("id")})
		if handler is None:
			logger.info("Unhandled Stripe event type: %s", event_type)
			return False
		await handler(obj)
		return True

	async def checkout_completed(self, session: Dict[str, Any]) -> None:
		metadata = session.get("metadata") or {}
		clerk_id = metadata.get("clerk_id")
		plan = metadata.get("plan")
		if not clerk_id or plan not in PAID_PLANS:
			logger.error("Missing metadata in checkout session %s", session.get("id"))
			return
		user = await self._users.find_by_clerk_id(clerk_id)
		if user is None:
			logger.error("Checkout completed for unknown user %s", clerk_id)
			return
		await self._users.update_plan(clerk_id, plan)
		customer_id = session.get("customer")
		if isinstance(customer_id, str) and customer_id and not user.stripe_customer_id:
			await self._users.update_stripe_customer_id(clerk_id, customer_id)
		subscription_id = session.get("subscription")
		if isinstance(subscription_id, str) and subscription_id:
			await self._users.update_stripe_subscription_id(clerk_id, subscription_id)
		logger.info("User %s upgraded to %s", clerk_id, plan)
		await auditor.log({"type": "plan_change", "clerk_id": clerk_id, "from": user.plan, "to": plan, "reason": "checkout"})

	async def subscription_updated(self, subscription: Dict[str, Any]) -> None:
		clerk_id = (subscription.get("metadata") or {}).get("clerk_id")
		if not clerk_id:
			logger.error("Missing clerk_id in subscription metadata: %s", subscription.get("id"))
			return
		if subscription.get("cancel_at_period_end"):
			logger.info("Subscription %s will be cancelled at period end", subscription.get("id"))
			return
		items = (subscription.get("items") or {}).get("data") or []
		price_id = ((items[0].get("price") or {}).get("id")) if items else None
		plan = plan_for_price_id(price_id or "")
		if plan is None:
			logger.error("Unknown price ID %s on subscription %s", price_id, subscription.get("id"))
			return
		await self._users.update_plan(clerk_id, plan)
		logger.info("User %s subscription updated to %s", clerk_id, plan)
		await auditor.log({"type": "plan_change", "clerk_id": clerk_id, "to": plan, "reason": "subscription_updated"})

	async def subscription_deleted(self, subscription: Dict[str, Any]) -> None:
		clerk_id = (subscription.get("metadata") or {}).get("clerk_id")
		if not clerk_id:
			logger.error("Missing clerk_id in subscription metadata: %s", subscription.get("id"))
			return
		await self._users.update_plan(clerk_id, "FREE")
		await self._users.clear_stripe_subscription_id(clerk_id)
		logger.info("User %s downgraded to FREE after subscription cancellation", clerk_id)
		await auditor.log({"type": "plan_change", "clerk_id": clerk_id, "to": "FREE", "reason": "subscription_deleted"})

	async def invoice_paid(self, invoice: Dict[str, Any]) -> None:
		# Only renewals reset the monthly iterations
		if invoice.get("billing_reason") != "subscription_cycle":
			return
		subscription_id = _invoice_subscription_id(invoice)
		if not subscription_id:
			logger.error("No subscription found in invoice %s", invoice.get("id"))
			return
		metadata = await self._fetch_subscription_metadata(subscription_id)
		clerk_id = metadata.get("clerk_id")
		if not clerk_id:
			logger.error("Missing clerk_id in subscription metadata for renewal: %s", subscription_id)
			return
		await self._users.reset_iterations(clerk_id)
		logger.info("User %s iterations reset on renewal", clerk_id)
		await auditor.log({"type": "iterations_reset", "clerk_id": clerk_id, "subscription_id": subscription_id})
