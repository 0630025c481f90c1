"""Base agent class for all Story Ledger agents."""

import logging
import threading
import time
from typing import TypeVar

import httpx
import ollama
from pydantic import BaseModel

from story_ledger.memory.cost_models import GenerationMetrics
from story_ledger.settings import Settings
from story_ledger.utils.circuit_breaker import CircuitBreaker, get_circuit_breaker
from story_ledger.utils.exceptions import (
    CircuitOpenError,
    LLMConnectionError,
    LLMGenerationError,
    MalformedResponseError,
)
from story_ledger.utils.json_parser import clean_llm_text, parse_json_to_model
from story_ledger.utils.logging_config import log_performance
from story_ledger.utils.prompt_registry import PromptRegistry
from story_ledger.utils.validation import validate_not_empty, validate_positive

T = TypeVar("T", bound=BaseModel)

# Minimum response length after cleaning (to detect truncated/empty responses)
MIN_RESPONSE_LENGTH = 10

# Transport failures: the connection dropped or the caller's timeout elapsed
TRANSIENT_ERRORS = (ConnectionError, TimeoutError, httpx.TransportError)

logger = logging.getLogger(__name__)

_llm_semaphore: threading.Semaphore | None = None
_llm_semaphore_lock = threading.Lock()


def _get_llm_semaphore(settings: Settings) -> threading.Semaphore:
    """Get or create the semaphore bounding concurrent model calls.

    The limit is read from settings on first use and fixed afterwards.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        with _llm_semaphore_lock:
            if _llm_semaphore is None:
                _llm_semaphore = threading.Semaphore(settings.llm_max_concurrent_requests)
                logger.debug(
                    f"Initialized LLM semaphore with limit {settings.llm_max_concurrent_requests}"
                )
    return _llm_semaphore


_prompt_registry: PromptRegistry | None = None
_prompt_registry_lock = threading.Lock()


def _get_prompt_registry(settings: Settings) -> PromptRegistry:
    """Get or create the prompt registry shared by all agents."""
    global _prompt_registry
    if _prompt_registry is None:
        with _prompt_registry_lock:
            if _prompt_registry is None:
                _prompt_registry = PromptRegistry(settings.prompt_templates_dir or None)
                logger.info(f"Initialized prompt registry with {len(_prompt_registry)} templates")
    return _prompt_registry


def reset_prompt_registry() -> None:
    """Forget the shared prompt registry so the next agent reloads templates."""
    global _prompt_registry
    with _prompt_registry_lock:
        _prompt_registry = None


class BaseAgent:
    """Base class for the agents that call the model provider.

    Every call goes through the same guard rails: the global circuit
    breaker, a process-wide concurrency semaphore, retries with backoff on
    transport failures, and the caller-supplied timeout on the client.
    """

    def __init__(
        self,
        name: str,
        agent_role: str,
        system_prompt: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        settings: Settings | None = None,
        timeout: float | None = None,
    ):
        """
        Create an agent bound to one role's model and prompts.

        Parameters:
            name (str): Display name used in logs.
            agent_role (str): Role key for model, temperature, pricing and prompt templates.
            system_prompt (str | None): System prompt; rendered from the role's
                ``system`` template when omitted.
            model (str | None): Explicit model; resolved from settings when None.
            temperature (float | None): Explicit temperature; resolved from settings when None.
            settings (Settings | None): Settings to use; loaded when None.
            timeout (float | None): Seconds before a model call is abandoned.
                Defaults to ``settings.ollama_timeout``.
        """
        validate_not_empty(name, "name")
        validate_not_empty(agent_role, "agent_role")

        self.name = name
        self.agent_role = agent_role
        self.settings = settings or Settings.load()

        self.model = model or self.settings.get_model_for_agent(agent_role)
        if temperature is not None:
            self.temperature = temperature
        else:
            self.temperature = self.settings.get_temperature_for_agent(agent_role)

        self.timeout = float(timeout) if timeout is not None else self.settings.ollama_timeout
        validate_positive(self.timeout, "timeout")

        self.system_prompt = system_prompt or self.get_registry().render_system(agent_role)

        self.client = ollama.Client(host=self.settings.ollama_url, timeout=self.timeout)

        self._last_generation_metrics: GenerationMetrics | None = None

    @property
    def last_generation_metrics(self) -> GenerationMetrics | None:
        """Metrics from the most recent successful call, or None."""
        return self._last_generation_metrics

    def _check_circuit(self) -> CircuitBreaker:
        circuit_breaker = get_circuit_breaker(
            failure_threshold=self.settings.circuit_breaker_failure_threshold,
            success_threshold=self.settings.circuit_breaker_success_threshold,
            timeout_seconds=self.settings.circuit_breaker_timeout,
            enabled=self.settings.circuit_breaker_enabled,
        )
        if not circuit_breaker.allow_request():
            time_until_retry = circuit_breaker.time_until_retry()
            logger.warning(
                "%s: Circuit breaker open; refusing LLM call for %.0fs",
                self.name,
                time_until_retry,
            )
            raise CircuitOpenError(
                f"Circuit breaker is open. Too many LLM failures. "
                f"Will retry in {time_until_retry:.0f}s.",
                time_until_retry=time_until_retry,
            )
        return circuit_breaker

    def _build_messages(self, prompt: str) -> list[dict[str, str]]:
        # Qwen models need /no_think to skip their reasoning preamble
        system_content = self.system_prompt
        if "qwen" in self.model.lower():
            system_content = f"/no_think\n{system_content}"
        return [
            {"role": "system", "content": system_content},
            {"role": "user", "content": prompt},
        ]

    def _record_metrics(self, response, duration: float) -> GenerationMetrics:
        prompt_tokens = response.get("prompt_eval_count")
        completion_tokens = response.get("eval_count")
        self._last_generation_metrics = GenerationMetrics(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=(prompt_tokens or 0) + (completion_tokens or 0),
            time_seconds=duration,
            model_id=self.model,
            agent_role=self.agent_role,
        )
        return self._last_generation_metrics

    def generate_structured(
        self,
        prompt: str,
        response_model: type[T],
        temperature: float | None = None,
        max_retries: int | None = None,
    ) -> T:
        """Generate output validated against a pydantic model.

        The model's JSON schema is sent as the Ollama ``format`` so output is
        constrained at the grammar level; the reply is still parsed and
        validated here, since range constraints are not always enforced.

        Args:
            prompt: The user prompt to send.
            response_model: Pydantic model the reply must conform to.
            temperature: Override temperature (defaults to the role's setting).
            max_retries: Attempts before giving up (defaults to settings.llm_max_retries).

        Returns:
            Instance of response_model with validated data.

        Raises:
            CircuitOpenError: If the circuit breaker is open.
            MalformedResponseError: If every attempt returned unusable output.
            LLMConnectionError: If every attempt failed to reach the server in time.
            LLMGenerationError: If the server rejected the request.
        """
        validate_not_empty(prompt, "prompt")
        attempts = max_retries if max_retries is not None else self.settings.llm_max_retries
        if attempts < 1:
            raise ValueError(f"max_retries must be >= 1, got {attempts}")

        circuit_breaker = self._check_circuit()
        messages = self._build_messages(prompt)
        use_temp = temperature if temperature is not None else self.temperature
        json_schema = response_model.model_json_schema()
        self._last_generation_metrics = None

        with _get_llm_semaphore(self.settings):
            with log_performance(logger, f"{self.name} structured generation"):
                last_error: Exception | None = None
                delay = self.settings.llm_retry_delay

                for attempt in range(attempts):
                    try:
                        logger.debug(
                            f"{self.name}: Calling LLM ({self.model}) for {response_model.__name__} "
                            f"(attempt {attempt + 1}/{attempts}, timeout={self.timeout:.0f}s)"
                        )
                        start_time = time.time()
                        response = self.client.chat(
                            model=self.model,
                            messages=messages,
                            format=json_schema,
                            options={
                                "temperature": use_temp,
                                "num_ctx": self.settings.context_size,
                            },
                        )
                        duration = time.time() - start_time
                        circuit_breaker.record_success()

                        result = parse_json_to_model(
                            response["message"]["content"], response_model
                        )
                        metrics = self._record_metrics(response, duration)
                        logger.info(
                            f"{self.name}: Structured output received "
                            f"({response_model.__name__}, {duration:.2f}s, "
                            f"tokens: {metrics.prompt_tokens}+{metrics.completion_tokens})"
                        )
                        return result

                    except MalformedResponseError as e:
                        last_error = e
                        logger.warning(
                            "%s: Malformed %s response (attempt %d/%d)",
                            self.name,
                            response_model.__name__,
                            attempt + 1,
                            attempts,
                        )

                    except TRANSIENT_ERRORS as e:
                        last_error = e
                        circuit_breaker.record_failure(e)
                        logger.warning(
                            "%s: Connection/timeout error on attempt %d/%d: %s",
                            self.name,
                            attempt + 1,
                            attempts,
                            e,
                        )
                        if attempt < attempts - 1:
                            time.sleep(delay)
                            delay *= self.settings.llm_retry_backoff

                    except ollama.ResponseError as e:
                        logger.error(f"{self.name}: Ollama response error: {e}")
                        circuit_breaker.record_failure(e)
                        raise LLMGenerationError(
                            f"Structured generation failed for {response_model.__name__}: {e}"
                        ) from e

                logger.error(
                    "%s: Structured generation failed after %d attempts", self.name, attempts
                )
                if isinstance(last_error, MalformedResponseError):
                    raise last_error
                raise LLMConnectionError(
                    f"{self.name}: no response for {response_model.__name__} "
                    f"after {attempts} attempts: {last_error}"
                ) from last_error

    def generate(
        self,
        prompt: str,
        temperature: float | None = None,
        min_response_length: int | None = None,
    ) -> str:
        """
        Generate a plain-text response.

        Retries on transport failures and on responses that are too short
        after cleaning, then records token/time metrics for the call.

        Parameters:
            prompt (str): The prompt to send.
            temperature (float | None): Optional temperature override.
            min_response_length (int | None): Minimum cleaned length to accept.
                Defaults to MIN_RESPONSE_LENGTH.

        Returns:
            str: The cleaned response text.

        Raises:
            CircuitOpenError: If the circuit breaker is open.
            LLMConnectionError: If every attempt failed to reach the server in time.
            LLMGenerationError: If the server rejected the request or every
                response was too short.
        """
        validate_not_empty(prompt, "prompt")
        circuit_breaker = self._check_circuit()
        messages = self._build_messages(prompt)
        use_temp = temperature if temperature is not None else self.temperature
        min_length = min_response_length if min_response_length is not None else MIN_RESPONSE_LENGTH
        attempts = self.settings.llm_max_retries
        delay = self.settings.llm_retry_delay
        last_error: Exception | None = None
        self._last_generation_metrics = None

        with _get_llm_semaphore(self.settings):
            with log_performance(logger, f"{self.name} generation"):
                for attempt in range(attempts):
                    try:
                        logger.debug(
                            f"{self.name}: Calling LLM ({self.model}) "
                            f"attempt {attempt + 1}/{attempts}"
                        )
                        start_time = time.time()
                        response = self.client.chat(
                            model=self.model,
                            messages=messages,
                            options={
                                "temperature": use_temp,
                                "num_predict": self.settings.max_tokens,
                                "num_ctx": self.settings.context_size,
                            },
                        )
                        duration = time.time() - start_time
                        circuit_breaker.record_success()

                        content = clean_llm_text(response["message"]["content"])
                        if len(content) < min_length:
                            last_error = LLMGenerationError(
                                f"{self.name}: response too short ({len(content)} < {min_length})"
                            )
                            logger.warning(str(last_error))
                            continue

                        metrics = self._record_metrics(response, duration)
                        logger.info(
                            f"{self.name}: LLM response received ({len(content)} chars, "
                            f"{duration:.2f}s, tokens: {metrics.prompt_tokens}"
                            f"+{metrics.completion_tokens})"
                        )
                        return content

                    except TRANSIENT_ERRORS as e:
                        last_error = e
                        circuit_breaker.record_failure(e)
                        logger.warning(
                            f"{self.name}: Connection/timeout error on attempt {attempt + 1}: {e}"
                        )
                        if attempt < attempts - 1:
                            time.sleep(delay)
                            delay *= self.settings.llm_retry_backoff

                    except ollama.ResponseError as e:
                        logger.error(f"{self.name}: Ollama response error: {e}")
                        circuit_breaker.record_failure(e)
                        raise LLMGenerationError(f"Model error: {e}") from e

                logger.error(f"{self.name}: All {attempts} attempts failed")
                if isinstance(last_error, LLMGenerationError):
                    raise last_error
                raise LLMConnectionError(
                    f"Failed to generate after {attempts} attempts: {last_error}"
                ) from last_error

    def render_prompt(self, task: str, **kwargs) -> str:
        """Render this role's prompt template for ``task``.

        Raises:
            PromptTemplateError: If template not found or rendering fails.
        """
        return self.get_registry().render(self.agent_role, task, **kwargs)

    def get_prompt_hash(self, task: str) -> str:
        """MD5 hash of this role's template for ``task``."""
        return self.get_registry().get_hash(self.agent_role, task)

    def get_registry(self) -> PromptRegistry:
        """The shared prompt registry."""
        return _get_prompt_registry(self.settings)

    def __repr__(self) -> str:
        """Return string representation of the agent."""
        return f"{self.__class__.__name__}(name='{self.name}', model='{self.model}')"
