"""Exponential backoff helpers for job retries."""
from __future__ import annotations

import random
from typing import Optional

from app.config import BACKOFF_POLICY


def compute_backoff_ms(
    attempt: int,
    base_delay_ms: int,
    *,
    backoff_type: str = "exponential",
    factor: Optional[int] = None,
    max_delay_ms: Optional[int] = None,
    jitter_pct: Optional[float] = None,
) -> int:
    """Delay before retrying after the ``attempt``-th failure (1-based).

    Exponential: ``base * factor ** (attempt - 1)`` -> 5000, 10000, 20000 for a
    5000ms base. Fixed: always ``base``.
    """
    if attempt < 1:
        attempt = 1
    factor = int(factor if factor is not None else BACKOFF_POLICY["factor"])  # type: ignore[arg-type]
    if max_delay_ms is None:
        max_delay_ms = BACKOFF_POLICY.get("max_delay_ms")  # type: ignore[assignment]
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])  # type: ignore[arg-type]

    if backoff_type == "fixed":
        delay = float(base_delay_ms)
    elif backoff_type == "exponential":
        delay = float(base_delay_ms * (factor ** (attempt - 1)))
    else:
        raise ValueError(f"Unknown backoff type '{backoff_type}'")
    if max_delay_ms is not None:
        delay = min(delay, float(max_delay_ms))
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, delay + jitter_amount)
    return int(max(delay, 0.0))


__all__ = ["compute_backoff_ms"]
