"""
Exponential backoff shared by the source fetcher and the dispatch coordinator.

Delays are deterministic (no jitter).
"""

from __future__ import annotations


def compute_backoff_delay(retry: int, base_delay_s: float, max_delay_s: float) -> float:
    """
    Delay before retry number `retry` (1-based).

    Doubles per retry from base_delay_s and is capped at max_delay_s, so
    the sequence is non-decreasing.

    Args:
        retry: Retry number, 1 for the first retry.
        base_delay_s: Delay before the first retry.
        max_delay_s: Upper bound for any delay.

    Returns:
        Delay in seconds (0 for retry < 1).
    """
    if retry < 1:
        return 0.0
    return min(base_delay_s * (2 ** (retry - 1)), max_delay_s)
