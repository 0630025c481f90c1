"""Character-count based token estimation.

The context budget is enforced against this estimate, not a tokenizer, so
the assembler stays a pure function of its inputs.
"""

import json
import math
from typing import Any

DEFAULT_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate the token count of ``text`` as ceil(len / chars_per_token).

    Args:
        text: Text to measure.
        chars_per_token: Average characters per token.

    Returns:
        Estimated token count (0 for empty text).

    Raises:
        ValueError: If chars_per_token is not positive.
    """
    if chars_per_token <= 0:
        raise ValueError(f"chars_per_token must be positive, got {chars_per_token}")
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def estimate_json_tokens(data: Any, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Estimate tokens for ``data`` once serialized to compact JSON."""
    return estimate_tokens(json.dumps(data, ensure_ascii=False), chars_per_token)
