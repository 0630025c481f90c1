"""Tests for validation helpers and token estimation."""

import pytest

from story_ledger.utils.token_estimation import estimate_json_tokens, estimate_tokens
from story_ledger.utils.validation import (
    validate_not_empty,
    validate_not_none,
    validate_positive,
    validate_unit_index,
)


class TestValidators:
    """Tests for the validate_* helpers."""

    def test_not_none(self):
        """None is rejected, falsy values are not."""
        validate_not_none(0, "x")
        with pytest.raises(ValueError, match="'x' cannot be None"):
            validate_not_none(None, "x")

    @pytest.mark.parametrize(
        ("value", "error"), [(None, ValueError), ("  ", ValueError), (5, TypeError)]
    )
    def test_not_empty(self, value, error):
        """Blank strings and non-strings are rejected."""
        with pytest.raises(error):
            validate_not_empty(value, "work_id")

    @pytest.mark.parametrize(
        ("value", "error"), [(0, ValueError), (-1.5, ValueError), (True, TypeError)]
    )
    def test_positive(self, value, error):
        """Zero, negatives and booleans are rejected."""
        with pytest.raises(error):
            validate_positive(value, "timeout")

    def test_unit_index(self):
        """Unit indices are 1-based ints."""
        validate_unit_index(1)
        with pytest.raises(ValueError, match=">= 1"):
            validate_unit_index(0)
        with pytest.raises(TypeError):
            validate_unit_index(1.0)


class TestTokenEstimation:
    """Tests for character-based token estimates."""

    @pytest.mark.parametrize(("text", "tokens"), [("", 0), ("abcd", 1), ("abcde", 2)])
    def test_rounds_up(self, text, tokens):
        """Estimates are ceil(len / 4)."""
        assert estimate_tokens(text) == tokens

    def test_custom_ratio(self):
        """chars_per_token is honored."""
        assert estimate_tokens("a" * 10, chars_per_token=3) == 4

    def test_invalid_ratio(self):
        """The ratio must be positive."""
        with pytest.raises(ValueError):
            estimate_tokens("abc", chars_per_token=0)

    def test_json(self):
        """JSON data is measured in compact form."""
        assert estimate_json_tokens({"a": 1}) == estimate_tokens('{"a": 1}')
