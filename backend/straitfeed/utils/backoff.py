"""Exponential reconnect backoff.

The delay starts at a floor, doubles after every failed attempt and is
capped at a ceiling. Reaching a working connection resets it to the floor.

Usage:
    from straitfeed.utils.backoff import ExponentialBackoff

    backoff = ExponentialBackoff(initial=5, maximum=60)
    backoff.wait()      # sleeps 5s, next delay is 10s
    backoff.reset()     # back to 5s
"""
from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_DELAY: float = 5.0
DEFAULT_MAX_DELAY: float = 60.0


class ExponentialBackoff:
    def __init__(
        self,
        initial: float = DEFAULT_INITIAL_DELAY,
        maximum: float = DEFAULT_MAX_DELAY,
    ) -> None:
        if initial <= 0:
            raise ValueError("initial delay must be positive")
        if maximum < initial:
            raise ValueError("maximum delay must be >= initial delay")
        self.initial = initial
        self.maximum = maximum
        self.delay = initial
        self.attempts = 0

    def wait(self, sleep: Callable[[float], None] | None = None) -> float:
        """Sleep for the current delay, then double it (capped).

        Returns the delay that was slept.
        """
        if sleep is None:
            sleep = time.sleep
        delay = self.delay
        self.attempts += 1
        logger.info("Reconnecting in %gs (attempt %d)...", delay, self.attempts)
        sleep(delay)
        self.delay = min(self.delay * 2, self.maximum)
        return delay

    def reset(self) -> None:
        self.delay = self.initial
        self.attempts = 0
