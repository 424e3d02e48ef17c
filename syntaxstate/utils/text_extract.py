from __future__ import annotations

import logging
from io import BytesIO

from pdfminer.high_level import extract_text as pdfminer_extract_text
from PyPDF2 import PdfReader


logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".txt", ".md", ".pdf")


class UnsupportedResumeError(ValueError):
	pass


def extract_text_from_pdf(data: bytes) -> str:
	"""Extract text from PDF bytes.

	Strategy:
	1) Try PyPDF2 (fast, works on many text PDFs)
	2) Fallback to pdfminer.six (more robust)
	Returns empty string on failure.
	"""
	try:
		reader = PdfReader(BytesIO(data))
		parts: list[str] = []
		for page in reader.pages:
			text = page.extract_text() or ""
			if text:
				parts.append(text)
		if parts:
			return "\n".join(parts)
	except Exception as e:
		logger.info("PyPDF2 could not read resume, trying pdfminer: %s", e)

	try:
		return pdfminer_extract_text(BytesIO(data)) or ""
	except Exception as e:
		logger.warning("pdfminer could not read resume: %s", e)
		return ""


def extract_resume_text(filename: str, content_type: str, data: bytes) -> str:
	filename = (filename or "").lower()
	content_type = (content_type or "").lower()
	if filename.endswith(".pdf") or content_type == "application/pdf":
		return extract_text_from_pdf(data)
	if filename.endswith((".txt", ".md")) or content_type.startswith("text/"):
		return data.decode("utf-8", errors="ignore")
	raise UnsupportedResumeError("Resume must be a .txt, .md or .pdf file")
