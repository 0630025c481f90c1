"""Tests for JSON extraction from model responses."""

import pytest
from pydantic import BaseModel, Field

from story_ledger.utils.exceptions import MalformedResponseError
from story_ledger.utils.json_parser import (
    clean_llm_text,
    extract_json,
    parse_json_to_model,
    parse_response,
)


class Score(BaseModel):
    """Small model for parsing tests."""

    character: str
    score: float = Field(ge=0.0, le=1.0)


class TestCleanLlmText:
    """Tests for clean_llm_text."""

    def test_removes_think_blocks(self):
        """Reasoning blocks and stray tags are removed."""
        text = "<think>let me plan\nthis</think>\nAnswer</think>"
        assert clean_llm_text(text) == "Answer"

    def test_removes_special_tokens(self):
        """Chat template tokens are stripped."""
        assert clean_llm_text("<|im_start|>Hello<|im_end|>") == "Hello"

    def test_collapses_blank_lines(self):
        """Three or more newlines become a paragraph break."""
        assert clean_llm_text("a\n\n\n\nb") == "a\n\nb"

    def test_empty(self):
        """Empty input is returned unchanged."""
        assert clean_llm_text("") == ""


class TestExtractJson:
    """Tests for extract_json."""

    @pytest.mark.parametrize(
        ("response", "strategy"),
        [
            ('```json\n{"a": 1}\n```', "json_code_block"),
            ('Here:\n```\n{"a": 1}\n```', "plain_code_block"),
            ('Sure! {"a": 1} Hope that helps.', "raw_object"),
        ],
    )
    def test_strategies(self, response, strategy):
        """Each strategy finds the object."""
        tried: list[str] = []
        assert extract_json(response, tried) == {"a": 1}
        assert tried[-1] == strategy

    def test_think_block_ignored(self):
        """JSON inside a reasoning block is not picked up."""
        response = '<think>{"draft": true}</think>{"final": true}'
        assert extract_json(response) == {"final": True}

    def test_arrays_rejected(self):
        """Only objects are accepted."""
        assert extract_json("[1, 2, 3]") is None

    def test_no_json(self):
        """Plain prose yields None."""
        assert extract_json("I cannot help with that.") is None


class TestParseResponse:
    """Tests for parse_response and parse_json_to_model."""

    def test_success(self):
        """Valid JSON of the right shape parses."""
        result = parse_response('{"character": "Mara", "score": 0.9}', Score)
        assert result
        assert result.value == Score(character="Mara", score=0.9)

    def test_validation_failure_is_reported(self):
        """Out-of-contract values give an error, not an exception."""
        result = parse_response('{"character": "Mara", "score": 3}', Score)
        assert not result
        assert "Score" in result.error

    def test_parse_json_to_model_raises(self):
        """The raising variant carries a preview and the expected type."""
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_json_to_model("no json here", Score)

        assert exc_info.value.expected_type == "Score"
        assert exc_info.value.response_preview == "no json here"

    def test_preview_is_truncated(self):
        """Long responses are cut to the preview length."""
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_json_to_model("x" * 2000, Score)
        assert len(exc_info.value.response_preview) == 500
