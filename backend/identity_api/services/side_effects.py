# identity_api/services/side_effects.py
"""
Best-effort side effects (queue provisioning, webhooks, IdP attribute writes).

Side effects run after the primary write has committed. Each one gets a
bounded retry with exponential backoff; when it is exhausted the failure is
logged as a dead-letter line and dropped. They never propagate into the
request that scheduled them.
"""
from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Protocol

from fastapi import BackgroundTasks


logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 5.0


def run_with_retry(
    label: str,
    fn: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Run ``fn(*args)`` until it succeeds or attempts run out. Returns success."""
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            fn(*args)
        except Exception:  # noqa: BLE001
            if attempt == attempts:
                logger.exception("dead-letter: side effect %s failed after %s attempts", label, attempts)
                return False
            backoff = min(base_delay * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
            logger.warning("Side effect %s failed (attempt %s/%s), retrying", label, attempt, attempts)
            sleep(backoff + random.uniform(0, base_delay / 2))
        else:
            if attempt > 1:
                logger.info("Side effect %s succeeded on attempt %s", label, attempt)
            return True
    return False


class Scheduler(Protocol):
    def schedule(self, label: str, fn: Callable[..., Any], *args: Any) -> None: ...


class InlineScheduler:
    """Runs side effects immediately, in the caller's thread."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def schedule(self, label: str, fn: Callable[..., Any], *args: Any) -> None:
        run_with_retry(
            label,
            fn,
            *args,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )


class BackgroundScheduler:
    """Defers side effects until after the response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, max_attempts: int = 3, base_delay: float = 0.5) -> None:
        self.background_tasks = background_tasks
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def schedule(self, label: str, fn: Callable[..., Any], *args: Any) -> None:
        self.background_tasks.add_task(
            run_with_retry,
            label,
            fn,
            *args,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
        )
