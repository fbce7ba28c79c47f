"""
Backoff policy for upload retries.

The wait before the next attempt doubles with each failed attempt:
attempt 1 failing waits 1 unit, attempt 2 waits 2 units, attempt 3 waits 4.
There is no jitter and, unless a cap is given, no upper bound. A large
max-retries value can therefore stall a run for a long time; callers that
need a bound pass ``cap`` (exposed as BACKUP_MAX_BACKOFF / --max-backoff).
"""

from typing import Optional


def backoff_delay(attempt: int, base: float = 1.0, cap: Optional[float] = None) -> float:
    """
    Compute the wait in seconds after a failed attempt.

    Args:
        attempt: Number of the attempt that just failed (1-based)
        base: Length of one time unit in seconds
        cap: Optional upper bound for the returned delay

    Returns:
        base * 2 ** (attempt - 1), clamped to cap when one is given

    Raises:
        ValueError: If attempt is lower than 1
    """
    if attempt < 1:
        raise ValueError(f"Attempt number must be >= 1, got {attempt}")

    delay = base * (2 ** (attempt - 1))

    if cap is not None:
        delay = min(delay, cap)

    return delay
