"""In-memory concurrency governor (admission control per key).

Bounds how many expensive requests (AI calls) one identity may have in flight
at the same time. Unlike the fixed-window rate limiter this counts *concurrent*
requests: a slot is taken on admission and handed back on release.

Usage pattern:
    admission, meta = governor.admit("user-7", max_concurrent=2)
    if admission is None:
        # meta == {"key": ..., "currentConcurrent": 2, "maxConcurrent": 2, "totalActive": ...}
        return 429
    try:
        ...
    finally:
        admission.release("completed")

Release is exactly-once per admission: whichever termination signal arrives
first (completed, closed, errored) decrements the count; later signals are
no-ops. A key whose count returns to zero is dropped from the map.

Thread-safety: every read-modify-write of the counts happens under one
threading.Lock, so the governor may be shared by the event loop and worker
threads. Process-local only; not shared across instances.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

from app.utils import get_logger

logger = get_logger(__name__)

RELEASE_REASONS = ("completed", "closed", "errored")


def derive_key(user_id: object = None, client_host: Optional[str] = None) -> str:
    """Authenticated user id when known, otherwise the client address."""
    if user_id is not None and str(user_id) != "":
        return f"user-{user_id}"
    return f"ip-{client_host or 'unknown'}"


class Admission:
    """Token for one admitted request. Release is idempotent."""

    __slots__ = ("key", "max_concurrent", "_governor", "_released", "released_by")

    def __init__(self, governor: "ConcurrencyGovernor", key: str, max_concurrent: int) -> None:
        self.key = key
        self.max_concurrent = max_concurrent
        self._governor = governor
        self._released = False
        self.released_by: Optional[str] = None

    @property
    def released(self) -> bool:
        return self._released

    def release(self, reason: str = "completed") -> bool:
        """Hand the slot back. Returns True only for the call that released it.

        Raises:
            ValueError: if ``reason`` is not one of RELEASE_REASONS
        """
        if reason not in RELEASE_REASONS:
            raise ValueError(f"Unknown release reason '{reason}'; expected one of {', '.join(RELEASE_REASONS)}")
        return self._governor._release(self, reason)

    def __repr__(self) -> str:  # pragma: no cover
        return f"Admission(key={self.key!r}, released={self._released})"


class ConcurrencyGovernor:
    def __init__(self) -> None:
        # key -> in-flight count (always > 0 while present)
        self._active: Dict[str, int] = {}
        self._lock = threading.Lock()

    def admit(self, key: str, max_concurrent: int) -> Tuple[Optional[Admission], dict]:
        """Take a slot for ``key`` unless it already holds ``max_concurrent``.

        Returns ``(admission, meta)``; admission is None on rejection and the
        count is left untouched.
        """
        with self._lock:
            current = self._active.get(key, 0)
            total = sum(self._active.values())
            if current >= max_concurrent:
                meta = {
                    "key": key,
                    "currentConcurrent": current,
                    "maxConcurrent": max_concurrent,
                    "totalActive": total,
                }
                allowed = False
            else:
                self._active[key] = current + 1
                meta = {
                    "key": key,
                    "currentConcurrent": current + 1,
                    "maxConcurrent": max_concurrent,
                    "totalActive": total + 1,
                }
                allowed = True

        if not allowed:
            logger.warning("Concurrent limit exceeded", **meta)
            return None, meta
        logger.info("Concurrent request admitted", **meta)
        return Admission(self, key, max_concurrent), meta

    def _release(self, admission: Admission, reason: str) -> bool:
        with self._lock:
            if admission._released:
                return False
            admission._released = True
            admission.released_by = reason
            key = admission.key
            current = self._active.get(key, 0)
            if current <= 0:
                # More releases than admissions for this key: defect, clamp at zero.
                self._active.pop(key, None)
                anomaly = True
                remaining = 0
            else:
                anomaly = False
                remaining = current - 1
                if remaining == 0:
                    del self._active[key]
                else:
                    self._active[key] = remaining
            total = sum(self._active.values())

        if anomaly:
            logger.error("Concurrency count would go negative; clamped to zero", key=key, reason=reason)
        else:
            logger.info("Concurrent request released", key=key, reason=reason, concurrent=remaining, totalActive=total)
        return True

    # ----------------------------- introspection ----------------------------- #
    def count(self, key: str) -> int:
        with self._lock:
            return self._active.get(key, 0)

    def total_active(self) -> int:
        with self._lock:
            return sum(self._active.values())

    def stats(self) -> dict:
        with self._lock:
            return {
                "totalActive": sum(self._active.values()),
                "activeRequests": [{"key": k, "count": v} for k, v in self._active.items()],
            }

    def reset(self) -> None:
        """Forget every slot (test isolation)."""
        with self._lock:
            self._active.clear()


__all__ = ["ConcurrencyGovernor", "Admission", "derive_key", "RELEASE_REASONS"]
