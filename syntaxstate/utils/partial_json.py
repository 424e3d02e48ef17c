from __future__ import annotations

import json
import re
from typing import Any, List, Optional


_decoder = json.JSONDecoder()
_PARTIAL_UNICODE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_PARTIAL_LITERAL = re.compile(r"[A-Za-z0-9.+\-]+$")


def strip_code_fences(text: str) -> str:
	# A closing fence after a complete document is ignored by raw_decode
	stripped = text.lstrip()
	if stripped.startswith("```"):
		newline = stripped.find("\n")
		stripped = stripped[newline + 1:] if newline != -1 else ""
	return stripped


def _scan(text: str) -> tuple[List[str], bool, bool]:
	closers: List[str] = []
	in_string = False
	escape = False
	for ch in text:
		if in_string:
			if escape:
				escape = False
			elif ch == "\\":
				escape = True
			elif ch == '"':
				in_string = False
			continue
		if ch == '"':
			in_string = True
		elif ch == "{":
			closers.append("}")
		elif ch == "[":
			closers.append("]")
		elif ch in "}]" and closers:
			closers.pop()
	return closers, in_string, escape


def _string_start(text: str) -> int:
	"""Index of the opening quote of the string literal that ends ``text``."""
	i = len(text) - 2
	while i >= 0:
		if text[i] == '"':
			backslashes = 0
			j = i - 1
			while j >= 0 and text[j] == "\\":
				backslashes += 1
				j -= 1
			if backslashes % 2 == 0:
				return i
		i -= 1
	return -1


def _trim_tail(body: str) -> Optional[str]:
	if body.endswith(","):
		return body[:-1].rstrip()
	if body.endswith(":"):
		body = body[:-1].rstrip()
		if body.endswith('"'):
			start = _string_start(body)
			if start != -1:
				return body[:start].rstrip()
		return None
	if body.endswith('"'):
		start = _string_start(body)
		if start != -1:
			return body[:start].rstrip()
		return None
	match = _PARTIAL_LITERAL.search(body)
	if match:
		return body[:match.start()].rstrip()
	return None


def parse_partial_json(text: str) -> Any:
	"""Best-effort parse of a JSON document that may be cut off mid-stream.

	Open strings, arrays and objects are closed; a dangling key, colon,
	comma or half-written literal at the tail is dropped. Returns None when
	no JSON value has started yet or the prefix cannot be repaired.
	"""
	if not text:
		return None
	body = strip_code_fences(text)
	starts = [i for i in (body.find("{"), body.find("[")) if i != -1]
	if not starts:
		return None
	body = body[min(starts):]

	try:
		value, _ = _decoder.raw_decode(body)
		return value
	except json.JSONDecodeError:
		pass

	closers, in_string, escape = _scan(body)
	if in_string:
		if escape:
			body = body[:-1]
		body = _PARTIAL_UNICODE.sub("", body) + '"'
	suffix = "".join(reversed(closers))

	body = body.rstrip()
	for _ in range(64):
		try:
			return json.loads(body + suffix)
		except json.JSONDecodeError:
			trimmed = _trim_tail(body)
			if trimmed is None or trimmed == body:
				return None
			body = trimmed
	return None
