"""
Validation predicates for raw oracle output.

Kept separate from the retry loops so the completeness heuristic can be
tested and replaced on its own.
"""

import json
import re
from typing import Any, Dict, Type

from finlink.exceptions import MalformedOracleResponseError

_OPEN_FENCE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_CLOSE_FENCE = re.compile(r"\s*```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    if text is None:
        return ""
    cleaned = _OPEN_FENCE.sub("", text, count=1)
    cleaned = _CLOSE_FENCE.sub("", cleaned, count=1)
    return cleaned.strip()


def looks_complete(text: str) -> bool:
    """
    Heuristic truncation check.

    A response that does not end with a closing brace or bracket is treated
    as cut off by the provider's output limit.
    """
    stripped = strip_code_fences(text)
    return stripped.endswith("}") or stripped.endswith("]")


def parse_oracle_json(
    text: str,
    required_key: str,
    error_cls: Type[MalformedOracleResponseError] = MalformedOracleResponseError,
) -> Dict[str, Any]:
    """
    Parse an oracle response that must hold a JSON object with a list field.

    Args:
        text: Raw oracle output.
        required_key: Key that must map to a JSON array.
        error_cls: Exception raised on any validation failure.

    Returns:
        The parsed JSON object.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise error_cls("Empty response from oracle")

    if not looks_complete(cleaned):
        raise error_cls(
            "Incomplete JSON response from oracle",
            details={"tail": cleaned[-50:]},
        )

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise error_cls(f"Invalid JSON from oracle: {e.msg}") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get(required_key), list):
        raise error_cls(f"Invalid JSON structure - missing {required_key} array")

    return parsed


def meets_coverage(count: int, batch_size: int, minimum: float = 0.7) -> bool:
    """Whether ``count`` accepted mappings cover enough of a batch."""
    if batch_size <= 0:
        return True
    # tolerance for float products such as 40 * 0.7
    return count >= batch_size * minimum - 1e-9
