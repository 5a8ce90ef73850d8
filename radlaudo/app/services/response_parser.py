"""Parsing of the model's raw answer into a GenerationResult."""

from __future__ import annotations

import json
import re

from ...utils.logging import get_logger
from ..models.generation import GenerationResult

logger = get_logger(__name__)

_OPENING_FENCE = re.compile(r"\A```[ \t]*(?:[A-Za-z0-9_-]+[ \t]*\n|\n?)")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```\Z")


def strip_code_fence(text: str) -> str:
    """Remove a leading and/or trailing Markdown fence, tagged (```json) or bare.

    Text without a fence is returned unchanged.
    """
    stripped = text.strip()
    body = _OPENING_FENCE.sub("", stripped, count=1)
    body = _CLOSING_FENCE.sub("", body, count=1)
    if body == stripped:
        return text
    return body.strip()


def parse_generation_result(raw: str) -> GenerationResult:
    """Parse the JSON answer; anything unparseable becomes the report itself."""
    candidate = strip_code_fence(raw)
    try:
        payload = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        logger.info("Model answer is not JSON; using raw text as report")
        return GenerationResult(report=raw, suggestions=[], error=None)

    if not isinstance(payload, dict):
        logger.info("Model answer is JSON but not an object; using raw text as report")
        return GenerationResult(report=raw, suggestions=[], error=None)

    report = payload.get("laudo")
    if report is not None and not str(report).strip():
        report = None
    suggestions = payload.get("sugestoes")
    error = payload.get("erro")

    if suggestions is None:
        suggestions = []
    elif isinstance(suggestions, str):
        suggestions = [suggestions]

    return GenerationResult(
        report=None if report is None else str(report),
        suggestions=[str(item) for item in suggestions if item is not None],
        error=None if error is None else str(error),
    )
