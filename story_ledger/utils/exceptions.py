"""Centralized exception hierarchy for Story Ledger.

Exception Hierarchy:

    StoryLedgerError (base for all application errors)
    ├── LLMError (model provider related errors)
    │   ├── LLMConnectionError (connection failures)
    │   ├── LLMGenerationError (generation failures after retries)
    │   └── CircuitOpenError (circuit breaker blocking requests)
    ├── SchemaNotFoundError (character roster missing for a work)
    ├── MalformedResponseError (model output unparseable or out of contract)
    ├── PersistenceError (ledger store read/write failures)
    ├── ConfigError (configuration parsing/validation failures)
    └── PromptTemplateError (prompt template loading/rendering failures)

Continuity is an enhancement to the generation pipeline, so only
SchemaNotFoundError and PersistenceError are meant to escape the service
layer. Everything else is caught, logged and degraded to "no continuity".

Usage:
    from story_ledger.utils.exceptions import MalformedResponseError

    try:
        review = reviewer.review(...)
    except MalformedResponseError as e:
        logger.warning("Review skipped: %s", e)
"""

import logging

logger = logging.getLogger(__name__)


class StoryLedgerError(Exception):
    """Base exception for all Story Ledger errors.

    All custom exceptions inherit from this class so callers can catch
    every continuity failure with a single except clause.
    """

    pass


class LLMError(StoryLedgerError):
    """Base exception for model provider errors."""

    pass


class LLMConnectionError(LLMError):
    """Raised when the Ollama server cannot be reached.

    This typically indicates the server is not running, the connection
    was refused, or the caller-supplied timeout elapsed.
    """

    pass


class LLMGenerationError(LLMError):
    """Raised when generation fails after retries."""

    pass


class CircuitOpenError(LLMError):
    """Raised when the circuit breaker is open and blocking requests.

    Attributes:
        time_until_retry: Seconds until the circuit may allow requests.
    """

    def __init__(self, message: str, time_until_retry: float | None = None):
        """Initialize CircuitOpenError with timing information.

        Args:
            message: Human-readable error message.
            time_until_retry: Seconds until circuit may transition to half-open.
        """
        super().__init__(message)
        self.time_until_retry = time_until_retry
        logger.debug(
            "CircuitOpenError initialized: message=%s, time_until_retry=%s",
            message,
            time_until_retry,
        )


class SchemaNotFoundError(StoryLedgerError):
    """Raised when the character roster for a work is missing.

    Extraction and review both need the roster to know whose experience
    to track. The failure is fatal to the single call that raised it.

    Attributes:
        work_id: The work whose roster could not be found.
    """

    def __init__(self, message: str, work_id: str | None = None):
        """Initialize SchemaNotFoundError.

        Args:
            message: Human-readable error message.
            work_id: The work whose roster is missing.
        """
        super().__init__(message)
        self.work_id = work_id


class MalformedResponseError(StoryLedgerError):
    """Raised when a model response is not valid JSON of the expected shape.

    Covers unparseable output as well as output that parses but violates
    the contract, e.g. an authenticity score outside [0, 1].

    Attributes:
        response_preview: First 500 chars of the raw response for debugging.
        expected_type: The expected model class name.
    """

    def __init__(
        self,
        message: str,
        response_preview: str | None = None,
        expected_type: str | None = None,
    ):
        """
        Initialize the MalformedResponseError with parsing context.

        Parameters:
            message (str): Human-readable error message describing the parse failure.
            response_preview (str | None): Preview of the raw response that failed to parse.
            expected_type (str | None): Name of the expected response model.
        """
        super().__init__(message)
        self.response_preview = response_preview
        self.expected_type = expected_type


class PersistenceError(StoryLedgerError):
    """Raised when the ledger store fails to read or write.

    A failed write leaves the continuity record incomplete, so this
    error is propagated to the caller rather than swallowed.
    """

    pass


class ConfigError(StoryLedgerError):
    """Raised when configuration parsing or validation fails."""

    pass


class PromptTemplateError(StoryLedgerError):
    """Raised when a prompt template cannot be loaded or rendered."""

    pass
