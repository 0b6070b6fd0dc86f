"""
Structured response parsing for completion output.

Providers are asked for bare JSON but frequently wrap it in markdown fences
or add prose around it. This module unwraps the payload and parses it
strictly; it never repairs malformed content. Field validation is the
caller's job.
"""

import json
import logging
import re
from typing import Any, Type

from ..core.exceptions import ParseError

logger = logging.getLogger(__name__)

FENCED_BLOCK_PATTERN = re.compile(r"```[a-zA-Z0-9_-]*\s*([\s\S]*?)\s*```")


def extract_json_payload(content: str) -> str:
    """
    Return the structured payload embedded in a raw completion.

    If the text contains a fenced code block, only that block's content is
    kept (descending into nested fences); otherwise the trimmed text is
    returned verbatim.
    """
    text = (content or "").strip()
    match = FENCED_BLOCK_PATTERN.search(text)
    while match:
        text = match.group(1).strip()
        match = FENCED_BLOCK_PATTERN.search(text) if "```" in text else None
    return text


def parse_structured_response(content: str, expected: Type = list) -> Any:
    """
    Parse JSON from a provider response.

    Args:
        content: Raw completion text
        expected: Required top-level type of the parsed value (list by default)

    Returns:
        The parsed value

    Raises:
        ParseError: If the payload is not valid JSON or has the wrong shape
    """
    payload = extract_json_payload(content)

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.debug(f"Raw content: {(content or '')[:500]}")
        raise ParseError(f"Failed to parse provider response as JSON: {e}", raw_content=content or "")

    if expected is not None and not isinstance(parsed, expected):
        raise ParseError(
            f"Expected JSON {expected.__name__}, got {type(parsed).__name__}",
            raw_content=content or "",
        )

    return parsed
