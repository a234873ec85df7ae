"""
Parse raw oracle text into a JSON value.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


def parse_json_payload(response: str) -> Any:
    """
    Parse JSON from LLM response, handling common issues.

    Strips markdown code fences and, when the text carries prose around the
    payload, decodes the first complete JSON object or array.

    Args:
        response: Raw response text from LLM

    Returns:
        Parsed JSON value

    Raises:
        ValueError: If the text is empty or holds no parseable JSON
    """
    text = (response or "").strip()

    # Remove markdown code fences if present
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    text = text.strip()
    if not text:
        raise ValueError("Empty response payload")

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error: {e}")

        # Decode from the first bracket; the payload may be followed by prose
        decoder = json.JSONDecoder()
        for match in re.finditer(r'[\{\[]', text):
            try:
                value, _ = decoder.raw_decode(text, match.start())
                return value
            except json.JSONDecodeError:
                continue

        logger.error(f"Failed to parse JSON response: {text[:500]}...")
        raise ValueError(f"Failed to parse JSON response: {e}")
