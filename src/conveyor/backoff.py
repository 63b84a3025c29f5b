"""Exponential backoff with jitter."""

import random

from conveyor.config import BackoffConfig


class Backoff:
    """Computes retry delays from a BackoffConfig.

    delay(1) is the initial delay; each further attempt multiplies it,
    capped at max_delay_s, then randomized by the jitter factor.
    """

    def __init__(self, config: BackoffConfig | None = None) -> None:
        self._config = config or BackoffConfig()

    @property
    def config(self) -> BackoffConfig:
        return self._config

    def delay(self, attempt: int) -> float:
        """Return the delay in seconds before the given 1-based retry."""
        if attempt < 1:
            return 0.0
        config = self._config
        base = min(
            config.initial_delay_s * config.multiplier ** (attempt - 1),
            config.max_delay_s,
        )
        if config.jitter <= 0:
            return base
        jitter_range = base * config.jitter
        return max(0.0, base + random.uniform(-jitter_range, jitter_range))
