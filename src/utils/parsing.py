"""
Shared text parsing utilities for LLM response extraction.
"""

import json
import re
from typing import Any


_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Extract the first JSON object from an LLM response.

    Handles bare JSON, fenced ```json blocks, and prose around the object.

    Args:
        content: Raw completion text

    Returns:
        The decoded object

    Raises:
        ValueError: If no JSON object can be decoded
    """
    fenced = _FENCE_PATTERN.search(content)
    if fenced:
        content = fenced.group(1)

    json_start = content.find("{")
    json_end = content.rfind("}") + 1
    if json_start == -1 or json_end == 0:
        raise ValueError("No JSON found in response")

    try:
        data = json.loads(content[json_start:json_end])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
