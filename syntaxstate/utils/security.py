from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping, Optional

import jwt
from fastapi import Header, HTTPException, status

from syntaxstate.config import settings


SVIX_TOLERANCE_SECONDS = 5 * 60


class WebhookVerificationError(Exception):
	pass


def decode_session_token(token: str) -> dict:
	"""Verify a Clerk session JWT against the instance PEM key (networkless)."""
	key = (settings.clerk_jwt_key or "").replace("\\n", "\n")
	claims = jwt.decode(token, key, algorithms=["RS256"], options={"require": ["exp", "sub"]}, leeway=5)
	parties = settings.clerk_authorized_parties
	if parties and claims.get("azp") and claims["azp"] not in parties:
		raise jwt.InvalidTokenError("Unauthorized party")
	return claims


async def get_auth_user_id(
	authorization: Optional[str] = Header(default=None),
	x_user_id: Optional[str] = Header(default=None),
) -> str:
	# Without a Clerk key (local development) the caller identifies itself
	if not settings.clerk_jwt_key:
		if not x_user_id:
			raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
		return x_user_id
	if not authorization or not authorization.startswith("Bearer "):
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
	try:
		claims = decode_session_token(authorization.removeprefix("Bearer "))
	except jwt.PyJWTError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")
	return claims["sub"]


def _svix_secret(secret: str) -> bytes:
	try:
		return base64.b64decode(secret.removeprefix("whsec_"))
	except (binascii.Error, ValueError) as e:
		raise WebhookVerificationError("Invalid webhook secret") from e


def sign_svix_payload(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
	payload = f"{msg_id}.{timestamp}.".encode("utf-8") + body
	digest = hmac.new(_svix_secret(secret), payload, hashlib.sha256).digest()
	return "v1," + base64.b64encode(digest).decode("ascii")


def verify_svix_signature(headers: Mapping[str, str], body: bytes, secret: str, now: Optional[float] = None) -> None:
	"""Raise WebhookVerificationError unless the svix-* headers sign ``body``."""
	msg_id = headers.get("svix-id")
	timestamp = headers.get("svix-timestamp")
	signature_header = headers.get("svix-signature")
	if not msg_id or not timestamp or not signature_header:
		raise WebhookVerificationError("Missing svix headers")
	try:
		ts = int(timestamp)
	except ValueError:
		raise WebhookVerificationError("Invalid svix-timestamp header")
	now = time.time() if now is None else now
	if abs(now - ts) > SVIX_TOLERANCE_SECONDS:
		raise WebhookVerificationError("Timestamp outside tolerance")

	expected = sign_svix_payload(secret, msg_id, timestamp, body)
	# The header may carry several space-separated "v1,<sig>" entries
	for candidate in signature_header.split():
		if candidate.startswith("v1,") and hmac.compare_digest(candidate, expected):
			return
	raise WebhookVerificationError("Signature mismatch")
