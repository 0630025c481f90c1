"""Tests for ContinuityPipeline hooks."""

from unittest.mock import MagicMock

import pytest

from story_ledger.memory.ledger_models import VoiceReview, VoiceReviewRecord
from story_ledger.services.context_assembler import AssembledContext
from story_ledger.services.continuity_pipeline import ContinuityPipeline, UnitProcessingResult
from story_ledger.services.ledger_service import LedgerService
from story_ledger.utils.exceptions import (
    CircuitOpenError,
    LLMConnectionError,
    PersistenceError,
    SchemaNotFoundError,
)
from tests.shared.ledger_factories import make_entry


@pytest.fixture
def service():
    """LedgerService double."""
    svc = MagicMock(spec=LedgerService)
    svc.build_context.return_value = AssembledContext(
        block="<character_continuity/>", estimated_tokens=6
    )
    svc.extract_ledger.return_value = make_entry(2)
    svc.review_unit.return_value = VoiceReviewRecord(
        work_id="work-1", unit_index=2, review=VoiceReview()
    )
    svc.revise_unit.return_value = None
    return svc


@pytest.fixture
def pipeline(service):
    """ContinuityPipeline over the service double."""
    return ContinuityPipeline(service)


class TestBeforeUnit:
    """Tests for before_unit."""

    def test_returns_block(self, pipeline, service):
        """The assembled block is returned as text."""
        assert pipeline.before_unit("work-1", 2) == "<character_continuity/>"
        service.build_context.assert_called_once_with("work-1", 2)

    @pytest.mark.parametrize(
        "error",
        [PersistenceError("locked"), CircuitOpenError("open"), RuntimeError("bug")],
    )
    def test_failures_give_empty_block(self, pipeline, service, error):
        """Any failure degrades to no continuity."""
        service.build_context.side_effect = error
        assert pipeline.before_unit("work-1", 2) == ""


class TestAfterUnit:
    """Tests for after_unit."""

    def test_runs_every_step_in_order(self, pipeline, service):
        """Save, extract, review and revise all run for a unit."""
        result = pipeline.after_unit("work-1", 2, "Unit text.", unit_title="Fog")

        service.save_unit.assert_called_once_with("work-1", 2, "Unit text.")
        service.extract_ledger.assert_called_once_with("work-1", 2, "Unit text.", "Fog")
        service.review_unit.assert_called_once_with("work-1", 2, "Unit text.")
        service.revise_unit.assert_called_once_with(
            "work-1", 2, "Unit text.", service.review_unit.return_value
        )
        assert result.entry is service.extract_ledger.return_value
        assert not result.was_revised
        assert result.final_text == "Unit text."

    def test_revised_text_is_final(self, pipeline, service):
        """A revision replaces the final text."""
        service.revise_unit.return_value = "Better unit text."

        result = pipeline.after_unit("work-1", 2, "Unit text.")

        assert result.was_revised
        assert result.final_text == "Better unit text."

    def test_review_disabled(self, service):
        """With review off only saving and extraction run."""
        result = ContinuityPipeline(service, review_enabled=False).after_unit(
            "work-1", 2, "Unit text."
        )

        service.review_unit.assert_not_called()
        service.revise_unit.assert_not_called()
        assert result.review is None

    def test_no_review_means_no_revision(self, pipeline, service):
        """Revision is skipped when there is no review."""
        service.review_unit.return_value = None

        pipeline.after_unit("work-1", 2, "Unit text.")

        service.revise_unit.assert_not_called()

    def test_failed_extraction_still_reviews(self, pipeline, service):
        """Each step is guarded on its own."""
        service.extract_ledger.side_effect = SchemaNotFoundError("no roster", work_id="work-1")

        result = pipeline.after_unit("work-1", 2, "Unit text.")

        assert result.entry is None
        assert result.review is service.review_unit.return_value

    def test_hooks_never_raise(self, pipeline, service):
        """Every failure is absorbed and the original text survives."""
        service.save_unit.side_effect = PersistenceError("disk full")
        service.extract_ledger.side_effect = LLMConnectionError("refused")
        service.review_unit.side_effect = ValueError("unexpected")

        result = pipeline.after_unit("work-1", 2, "Unit text.")

        assert result == UnitProcessingResult(
            work_id="work-1", unit_index=2, original_text="Unit text."
        )
        service.revise_unit.assert_not_called()
