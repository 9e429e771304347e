"""
Retry Policy - bounded retries with model fallback and exponential backoff

Attempt 0 uses the requested model; later attempts rotate through
``fallback_models`` so a persistently overloaded model does not eat every
retry. Waits happen only between attempts: base * 2**attempt for attempt >= 1.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

import structlog

from feedmap.domain.reconciliation.errors import (
    MalformedResponseError,
    RetryExhaustedError,
    TransientServiceError,
)

logger = structlog.get_logger()

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """
    Attributes:
        max_attempts: Total attempts per call, including the first
        backoff_base: Seconds; wait before attempt k is backoff_base * 2**k
        fallback_models: Ordered model ids used from attempt 1 on (wraps around)
        malformed_retries: How many malformed replies are retried before giving up
    """
    max_attempts: int = 3
    backoff_base: float = 1.0
    fallback_models: List[str] = field(default_factory=list)
    malformed_retries: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.reconciliation_max_attempts,
            backoff_base=settings.reconciliation_backoff_base_seconds,
            fallback_models=settings.fallback_models,
            malformed_retries=settings.reconciliation_malformed_retries,
        )

    def model_for_attempt(self, attempt: int, requested_model: str) -> str:
        """Model id to use on a given (0-based) attempt"""
        if attempt == 0 or not self.fallback_models:
            return requested_model
        return self.fallback_models[(attempt - 1) % len(self.fallback_models)]

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before a given attempt (0 for the first)"""
        if attempt <= 0:
            return 0.0
        return self.backoff_base * (2 ** attempt)

    async def run(
        self,
        operation: Callable[[str], Awaitable[T]],
        requested_model: str,
        sleep: Optional[Sleep] = None,
        context: Optional[dict] = None,
    ) -> T:
        """
        Call ``operation(model)`` until it succeeds or the policy gives up.

        Raises:
            Permanent ReconciliationError subclasses immediately
            MalformedResponseError after ``malformed_retries`` retries
            RetryExhaustedError when transient failures use up every attempt
            Any other (non-retryable) exception immediately, unchanged
        """
        sleep = sleep or asyncio.sleep
        context = context or {}
        malformed_failures = 0

        for attempt in range(self.max_attempts):
            if attempt:
                delay = self.delay_before(attempt)
                logger.info("ai_retry_backoff", attempt=attempt + 1, delay_seconds=delay, **context)
                await sleep(delay)

            model = self.model_for_attempt(attempt, requested_model)
            try:
                return await operation(model)
            except Exception as e:
                if getattr(e, "permanent", False):
                    logger.error("ai_permanent_error",
                                 attempt=attempt + 1,
                                 model=model,
                                 error_type=type(e).__name__,
                                 error=str(e),
                                 **context)
                    raise

                if isinstance(e, MalformedResponseError):
                    malformed_failures += 1
                    if malformed_failures > self.malformed_retries:
                        raise
                elif not getattr(e, "retryable", False):
                    logger.error("ai_non_retryable_error",
                                 attempt=attempt + 1,
                                 model=model,
                                 error_type=type(e).__name__,
                                 error=str(e),
                                 **context)
                    raise

                if attempt == self.max_attempts - 1:
                    logger.error("ai_retries_exhausted",
                                 attempts=self.max_attempts,
                                 model=model,
                                 error_type=type(e).__name__,
                                 error=str(e),
                                 **context)
                    if isinstance(e, TransientServiceError):
                        raise RetryExhaustedError(
                            f"Model service temporarily unavailable, retried {self.max_attempts} times: {e}",
                            attempts=self.max_attempts,
                            model=model,
                        ) from e
                    raise

                logger.warning("ai_attempt_failed",
                               attempt=attempt + 1,
                               max_attempts=self.max_attempts,
                               model=model,
                               next_model=self.model_for_attempt(attempt + 1, requested_model),
                               error_type=type(e).__name__,
                               error=str(e),
                               **context)

        # max_attempts >= 1, so the loop always returns or raises
        raise AssertionError("unreachable")
