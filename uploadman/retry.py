from __future__ import annotations

from dataclasses import dataclass

from uploadman.errors import ConfigurationError

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_S = 2.0


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S

    def __post_init__(self) -> None:
        # a failed task ends with retry_count == max_retries
        if self.max_retries < 1:
            object.__setattr__(self, "max_retries", 1)

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def delay_for(self, retry_count: int) -> float:
        """Backoff before the attempt that follows failure number ``retry_count``."""
        return float(self.backoff_base_s**retry_count)

    @staticmethod
    def is_retryable(exc: BaseException) -> bool:
        return not isinstance(exc, ConfigurationError)
