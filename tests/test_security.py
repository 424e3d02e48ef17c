import base64

import pytest

from syntaxstate.utils.security import WebhookVerificationError, sign_svix_payload, verify_svix_signature


SECRET = "whsec_" + base64.b64encode(b"super-secret-signing-key").decode()
BODY = b'{"type": "user.created", "data": {"id": "user_1"}}'
NOW = 1_700_000_000


def _headers(signature=None, timestamp=NOW, msg_id="msg_1"):
	return {
		"svix-id": msg_id,
		"svix-timestamp": str(timestamp),
		"svix-signature": signature or sign_svix_payload(SECRET, msg_id, str(timestamp), BODY),
	}


def test_valid_signature_passes():
	verify_svix_signature(_headers(), BODY, SECRET, now=NOW)


def test_one_of_several_signatures_may_match():
	good = sign_svix_payload(SECRET, "msg_1", str(NOW), BODY)
	verify_svix_signature(_headers(signature=f"v1,bm9wZQ== {good}"), BODY, SECRET, now=NOW)


def test_tampered_body_is_rejected():
	with pytest.raises(WebhookVerificationError):
		verify_svix_signature(_headers(), BODY + b" ", SECRET, now=NOW)


def test_stale_timestamp_is_rejected():
	with pytest.raises(WebhookVerificationError, match="tolerance"):
		verify_svix_signature(_headers(), BODY, SECRET, now=NOW + 301)


def test_missing_headers_are_rejected():
	headers = _headers()
	del headers["svix-signature"]
	with pytest.raises(WebhookVerificationError, match="Missing"):
		verify_svix_signature(headers, BODY, SECRET, now=NOW)


def test_non_numeric_timestamp_is_rejected():
	headers = _headers()
	headers["svix-timestamp"] = "yesterday"
	with pytest.raises(WebhookVerificationError):
		verify_svix_signature(headers, BODY, SECRET, now=NOW)
