"""Delay computation between attempts."""

from __future__ import annotations

import random

from .models import BackoffKind, RetryPolicy


def next_delay(attempt_index: int, policy: RetryPolicy) -> float:
    """Delay in seconds after ``attempt_index`` attempts have been made."""
    if attempt_index < 1:
        raise ValueError(f"attempt_index must be >= 1, got {attempt_index}")
    if policy.backoff_kind is BackoffKind.FIXED:
        return policy.base_delay

    delay = policy.base_delay
    for _ in range(attempt_index - 1):
        delay *= 2
        if delay >= policy.max_delay:
            return policy.max_delay
    return min(delay, policy.max_delay)


def apply_jitter(delay: float, jitter: float, rng: random.Random | None = None) -> float:
    """Scale ``delay`` by a random factor in ``[1 - jitter, 1 + jitter]``."""
    if jitter <= 0:
        return delay
    source = rng or random
    factor = source.uniform(1 - jitter, 1 + jitter)
    jittered = delay * factor
    if jittered <= 0:
        return delay
    return jittered
