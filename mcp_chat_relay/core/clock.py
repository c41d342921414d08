from __future__ import annotations

import time


def monotonic_s() -> float:
    """Monotonic clock in seconds.

    Use this for idle bookkeeping; never compare it with wall time.
    """

    return time.monotonic()


def elapsed_ms(start: float) -> float:
    """Milliseconds since `start`, a `time.perf_counter()` reading."""

    return round((time.perf_counter() - start) * 1000, 2)
