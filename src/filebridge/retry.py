"""Exponential-backoff retry used for reconnection."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from filebridge.errors import AuthError, ConnectError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry a callable with a doubling delay between attempts."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based). The first attempt is immediate."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (2 ** (attempt - 2)), self.max_delay)

    def run(
        self,
        func: Callable[[], T],
        give_up_on: tuple[type[BaseException], ...] = (AuthError,),
    ) -> T:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            delay = self.delay_for(attempt)
            if delay:
                logger.debug("Waiting %.1fs before attempt %d", delay, attempt)
                self.sleep(delay)
            try:
                return func()
            except give_up_on:
                raise
            except Exception as e:
                last_error = e
                logger.warning("Attempt %d/%d failed: %s", attempt, self.max_attempts, e)
        raise ConnectError(
            f"Failed to reconnect after {self.max_attempts} attempts. Last error: {last_error}"
        ) from last_error
