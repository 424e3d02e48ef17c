from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from syntaxstate.config import settings
from syntaxstate.db.user_repository import UserRepository
from syntaxstate.routers.deps import get_user_repository
from syntaxstate.services import billing_service
from syntaxstate.services.billing_service import BillingError, StripeWebhookHandler
from syntaxstate.utils.audit import auditor
from syntaxstate.utils.security import WebhookVerificationError, verify_svix_signature


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


def get_stripe_handler(users: UserRepository = Depends(get_user_repository)) -> StripeWebhookHandler:
	return StripeWebhookHandler(users)


@router.post("/stripe")
async def stripe_webhook(
	request: Request,
	stripe_signature: Optional[str] = Header(default=None),
	handler: StripeWebhookHandler = Depends(get_stripe_handler),
):
	if not stripe_signature:
		raise HTTPException(status_code=400, detail="Missing stripe-signature header")
	payload = await request.body()
	try:
		event = billing_service.construct_event(payload, stripe_signature)
	except (stripe.SignatureVerificationError, ValueError, BillingError) as e:
		logger.warning("Stripe signature verification failed: %s", e)
		raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

	try:
		await handler.handle(event)
	except Exception as e:
		logger.exception("Error processing Stripe webhook %s", event.get("type"))
		raise HTTPException(status_code=500, detail=f"Webhook handler error: {e}")
	return {"received": True}


async def _clerk_user_created(data: Dict[str, Any], users: UserRepository) -> None:
	clerk_id = data.get("id")
	if not clerk_id:
		raise ValueError("user.created event without an id")
	if await users.find_by_clerk_id(clerk_id) is not None:
		logger.info("User %s already exists, skipping creation", clerk_id)
		return
	await users.create(clerk_id)
	logger.info("Created user %s on the FREE plan", clerk_id)


async def _clerk_user_deleted(data: Dict[str, Any], users: UserRepository) -> None:
	clerk_id = data.get("id")
	if clerk_id and await users.delete_by_clerk_id(clerk_id):
		logger.info("Deleted user %s", clerk_id)


@router.post("/clerk")
async def clerk_webhook(request: Request, users: UserRepository = Depends(get_user_repository)):
	if not settings.clerk_webhook_secret:
		logger.error("Missing CLERK_WEBHOOK_SECRET")
		raise HTTPException(status_code=500, detail="Server configuration error")
	body = await request.body()
	try:
		verify_svix_signature(request.headers, body, settings.clerk_webhook_secret)
		event = json.loads(body)
	except WebhookVerificationError as e:
		logger.warning("Clerk webhook verification failed: %s", e)
		raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")
	except ValueError:
		raise HTTPException(status_code=400, detail="Invalid JSON payload")

	event_type = event.get("type")
	await auditor.log({"type": "clerk_webhook", "event_type": event_type, "svix_id": request.headers.get("svix-id")})
	try:
		if event_type == "user.created":
			await _clerk_user_created(event.get("data") or {}, users)
		elif event_type == "user.deleted":
			await _clerk_user_deleted(event.get("data") or {}, users)
		else:
			logger.info("Unhandled Clerk event type: %s", event_type)
	except Exception as e:
		logger.exception("Error processing Clerk webhook %s", event_type)
		raise HTTPException(status_code=500, detail=f"Webhook handler error: {e}")
	return {"received": True}
