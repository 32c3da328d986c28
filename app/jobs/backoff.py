"""
Retry delay calculation for failed jobs.

delay = min(base * 2 ** (attempt - 1), cap) plus up to ``jitter_ratio`` of
that delay, so workers retrying together spread out instead of hitting the
payment provider at the same instant.

    attempt 1: 60s .. 66s
    attempt 2: 120s .. 132s
    attempt 7+: 3600s .. 3960s (capped)
"""

from __future__ import annotations

import random

from django.conf import settings


def compute_backoff_seconds(
    attempt: int,
    base: float | None = None,
    cap: float | None = None,
    jitter_ratio: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """
    Return the delay before the next attempt.

    Args:
        attempt: Failed attempts so far (1-indexed)
        base: Delay for the first retry (JOB_RETRY_BASE_SECONDS)
        cap: Maximum delay before jitter (JOB_RETRY_MAX_SECONDS)
        jitter_ratio: Max jitter as a fraction of the delay (JOB_RETRY_JITTER_RATIO)
        rng: Random source, injectable for deterministic tests
    """
    if base is None:
        base = getattr(settings, "JOB_RETRY_BASE_SECONDS", 60)
    if cap is None:
        cap = getattr(settings, "JOB_RETRY_MAX_SECONDS", 3600)
    if jitter_ratio is None:
        jitter_ratio = getattr(settings, "JOB_RETRY_JITTER_RATIO", 0.1)

    exponent = max(attempt, 1) - 1
    # Avoid huge powers for long-dead jobs
    delay = cap if exponent >= 32 else min(base * (2**exponent), cap)
    jitter = delay * (rng or random).uniform(0, jitter_ratio)
    return delay + jitter


__all__ = ["compute_backoff_seconds"]
