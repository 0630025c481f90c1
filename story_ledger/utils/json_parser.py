"""JSON extraction utilities for parsing model responses.

Model responses are dynamically-typed text. Everything that crosses the
boundary into the ledger goes through ``parse_json_to_model`` so that a
malformed response fails immediately as a MalformedResponseError instead
of leaking partial state downstream.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from story_ledger.utils.exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 500

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class ParseResult(Generic[T]):
    """Tagged result of parsing a model response into a pydantic model.

    Exactly one of ``value`` or ``error`` is set.
    """

    value: T | None = None
    error: str | None = None
    strategies_tried: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when the response parsed and validated."""
        return self.error is None and self.value is not None

    def __bool__(self) -> bool:
        """Allow ParseResult to be used in boolean context."""
        return self.success


def clean_llm_text(text: str) -> str:
    """Clean model output by removing thinking tags and special tokens.

    Args:
        text: Raw text from the model.

    Returns:
        Cleaned text.
    """
    if not text:
        return text

    cleaned = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL)
    cleaned = re.sub(r"</?think>", "", cleaned)
    cleaned = re.sub(r"<\|.*?\|>", "", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _try_parse_json(json_str: str) -> dict[str, Any] | list[Any] | None:
    """Try to parse a string as JSON, returning None on failure."""
    try:
        parsed: dict[str, Any] | list[Any] = json.loads(json_str.strip())
        return parsed
    except json.JSONDecodeError as e:
        logger.debug("try_parse failed: %s (input preview: %.100s...)", e, json_str)
        return None


def extract_json(response: str, strategies_tried: list[str] | None = None) -> dict[str, Any] | None:
    """Extract a JSON object from a model response.

    Tries, in order: a ```json fenced block, a bare ``` fenced block, and the
    outermost raw ``{...}`` object. Arrays are rejected because every ledger
    response is an object.

    Args:
        response: The model response text.
        strategies_tried: Optional list the strategy names are appended to.

    Returns:
        The parsed object, or None if no JSON object could be found.
    """
    tried = strategies_tried if strategies_tried is not None else []
    response = clean_llm_text(response or "")

    candidates = [
        ("json_code_block", re.search(r"```json\s*(.*?)\s*```", response, re.DOTALL)),
        ("plain_code_block", re.search(r"```\s*(.*?)\s*```", response, re.DOTALL)),
        ("raw_object", re.search(r"(\{[\s\S]*\})", response)),
    ]
    for name, match in candidates:
        tried.append(name)
        if not match:
            continue
        result = _try_parse_json(match.group(1))
        if isinstance(result, dict):
            return result
        logger.debug("Strategy %s matched but did not yield a JSON object", name)

    return None


def parse_response(response: str, model_class: type[M]) -> ParseResult[M]:
    """Parse a model response into ``model_class`` without raising.

    Args:
        response: The model response text.
        model_class: Pydantic model the response must conform to.

    Returns:
        ParseResult holding either the validated model or an error string.
    """
    result: ParseResult[M] = ParseResult()
    data = extract_json(response, result.strategies_tried)
    if data is None:
        result.error = f"No valid JSON object found in response for {model_class.__name__}"
        return result

    try:
        result.value = model_class.model_validate(data)
    except ValidationError as e:
        result.error = f"Response does not match {model_class.__name__}: {e}"
    return result


def parse_json_to_model(response: str, model_class: type[M]) -> M:
    """Extract JSON and validate it into a pydantic model.

    Args:
        response: The model response text.
        model_class: The pydantic model class to instantiate.

    Returns:
        Instance of model_class.

    Raises:
        MalformedResponseError: If the response is not JSON or fails validation.
    """
    result = parse_response(response, model_class)
    if result.value is None:
        logger.error(result.error)
        raise MalformedResponseError(
            result.error or f"Failed to parse {model_class.__name__}",
            response_preview=(response or "")[:PREVIEW_LENGTH],
            expected_type=model_class.__name__,
        )
    return result.value
