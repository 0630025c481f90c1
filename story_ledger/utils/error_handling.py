"""Error handling utilities for Story Ledger."""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from story_ledger.utils.exceptions import StoryLedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEGRADED_MSG = "Continuing without continuity enhancement."


def handle_ledger_errors(
    default_return: Any = None, raise_on_error: bool = False
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that keeps continuity failures out of the generation flow.

    Known ledger errors are logged as warnings; anything else is logged
    with a traceback. Either way the wrapped call returns ``default_return``.

    Args:
        default_return: Value to return when the wrapped call fails (default: None)
        raise_on_error: If True, re-raise the exception after logging (default: False)

    Example:
        @handle_ledger_errors(default_return="")
        def before_unit(self, work_id, unit_index):
            return self.service.build_context(work_id, unit_index).block
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except StoryLedgerError as e:
                logger.warning(f"{type(e).__name__} in {func.__name__}: {e}. {DEGRADED_MSG}")
                if raise_on_error:
                    raise
                return cast(T, default_return)
            except Exception as e:
                logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
                if raise_on_error:
                    raise
                return cast(T, default_return)

        return wrapper

    return decorator
