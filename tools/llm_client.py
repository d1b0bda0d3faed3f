"""Parsing helpers for structured LLM replies."""

import json
import re

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

# Tolerates raw newlines and tabs inside JSON strings
_LENIENT_DECODER = json.JSONDecoder(strict=False)


def _loads(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return _LENIENT_DECODER.decode(text)


def _candidates(text: str):
    yield text
    match = _JSON_FENCE_RE.search(text)
    if match:
        yield match.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        yield text[start:end + 1]


def parse_json_response(text: str) -> dict:
    """Extract a JSON object from an LLM reply.

    Accepts bare JSON, JSON inside a markdown fence, or an object embedded
    in surrounding prose. A top-level array is wrapped as ``{"items": [...]}``.

    Raises:
        ValueError: If no JSON object can be recovered.
    """
    text = text.strip()
    for candidate in _candidates(text):
        try:
            result = _loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result
        if isinstance(result, list):
            return {"items": result}
    raise ValueError(f"Failed to parse JSON from LLM response: {text[:200]}...")
