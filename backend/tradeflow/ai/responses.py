"""Helpers for turning LLM text output into JSON."""

import json
import logging
import re

logger = logging.getLogger("tradeflow.ai")

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def parse_json_response(response_text: str, provider: str = "model") -> dict:
    """Parse a JSON object from a model reply, handling markdown code fences."""
    text = (response_text or "").strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    # Models sometimes wrap the object in prose
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]

    try:
        parsed = json.loads(_TRAILING_COMMA_RE.sub(r"\1", text))
    except (json.JSONDecodeError, IndexError) as e:
        logger.error("Failed to parse %s response as JSON: %s", provider, e)
        raise ValueError(f"{provider} response was not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError(f"{provider} response was JSON but not an object")
    return parsed
