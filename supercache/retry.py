"""Exponential backoff with jitter for outbound peer dial retries."""

from __future__ import annotations

import random
import threading
import time

BACKOFF_INITIAL = 1.0
BACKOFF_MAX = 30.0


def backoff_delay(attempt: int, rng: random.Random | None = None) -> float:
    """Seconds to wait before retry number attempt: doubling from 1s, capped at 30s, plus up to 25% jitter."""
    d = BACKOFF_INITIAL
    for _ in range(max(attempt, 0)):
        if d >= BACKOFF_MAX:
            break
        d = min(d * 2, BACKOFF_MAX)
    source = rng if rng is not None else random
    return d + source.random() * (d / 4)


def backoff_sleep(attempt: int, stop: threading.Event | None = None) -> bool:
    """Wait out the backoff delay; return False if stop was set before it elapsed."""
    delay = backoff_delay(attempt)
    if stop is None:
        time.sleep(delay)
        return True
    return not stop.wait(delay)