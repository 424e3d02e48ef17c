from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException

from syntaxstate.db.models import User
from syntaxstate.routers.deps import get_current_user
from syntaxstate.schemas import CheckoutIn, PortalIn, UrlOut
from syntaxstate.services import billing_service
from syntaxstate.services.billing_service import BillingError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing")


@router.post("/checkout", response_model=UrlOut)
async def checkout(payload: CheckoutIn, user: User = Depends(get_current_user)):
	if not billing_service.price_id_for_plan(payload.plan):
		raise HTTPException(status_code=400, detail=f"Missing price ID for plan: {payload.plan}")
	try:
		url = await billing_service.create_checkout_session(
			user.id,
			user.clerk_id,
			payload.plan,
			payload.success_url,
			payload.cancel_url,
			customer_id=user.stripe_customer_id,
		)
	except BillingError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except stripe.StripeError as e:
		logger.error("Stripe checkout failed for %s: %s", user.clerk_id, e)
		raise HTTPException(status_code=502, detail="Payment provider error")
	return UrlOut(url=url)


@router.post("/portal", response_model=UrlOut)
async def portal(payload: PortalIn, user: User = Depends(get_current_user)):
	if not user.stripe_customer_id:
		raise HTTPException(status_code=404, detail="No billing account found")
	try:
		url = await billing_service.create_portal_session(user.stripe_customer_id, payload.return_url)
	except BillingError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except stripe.StripeError as e:
		logger.error("Stripe portal failed for %s: %s", user.clerk_id, e)
		raise HTTPException(status_code=502, detail="Payment provider error")
	return UrlOut(url=url)


@router.post("/cancel")
async def cancel(user: User = Depends(get_current_user)):
	if not user.stripe_subscription_id:
		raise HTTPException(status_code=404, detail="No active subscription")
	try:
		await billing_service.cancel_subscription(user.stripe_subscription_id)
	except BillingError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except stripe.StripeError as e:
		logger.error("Stripe cancel failed for %s: %s", user.clerk_id, e)
		raise HTTPException(status_code=502, detail="Payment provider error")
	return {"status": "ok", "cancel_at_period_end": True}
