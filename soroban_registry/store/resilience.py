"""
Retry with exponential backoff for registry reads.

Only errors in retry_on are retried (TransientError by default); everything
else propagates on the first attempt. Writes are never wrapped in this helper.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

from soroban_registry.core.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""
    max_retries: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    backoff_factor: float = 1.5
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "RetryConfig":
        """Build from the retry: section of config (see config.retry_settings)."""
        return cls(
            max_retries=max(1, int(settings.get("max_retries", cls.max_retries))),
            base_delay_s=float(settings.get("base_delay_s", cls.base_delay_s)),
            max_delay_s=float(settings.get("max_delay_s", cls.max_delay_s)),
            backoff_factor=float(settings.get("backoff_factor", cls.backoff_factor)),
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_s * (self.backoff_factor ** (attempt - 1)), self.max_delay_s)


def resilient_call(
    func: Callable[..., T],
    *args: Any,
    retry_config: Optional[RetryConfig] = None,
    **kwargs: Any,
) -> T:
    """
    Execute func with bounded retries on retryable errors.

    Raises the last exception if all attempts are exhausted.
    """
    cfg = retry_config or RetryConfig()

    last_err: Optional[BaseException] = None
    for attempt in range(1, cfg.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except cfg.retry_on as exc:
            last_err = exc
            logger.debug(
                "Attempt %d/%d failed: %s: %s", attempt, cfg.max_retries, type(exc).__name__, exc
            )
            if attempt < cfg.max_retries:
                time.sleep(cfg.delay_for(attempt))

    logger.warning("Giving up after %d attempts: %s", cfg.max_retries, last_err)
    raise last_err  # type: ignore[misc]
