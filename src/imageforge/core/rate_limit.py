"""Fixed-window request rate governor.

:class:`RateGovernor` admits or denies a unit of work per client key.  Each
key owns one :class:`ThrottleWindow` counting every call since the window
started; once the window expires the next call starts a fresh one.

Algorithm
---------
For each ``check(client_key)``:

1. Resolve the key's window; if there is none, or ``now >= window_reset_at``,
   start a new one ``{count: 0, window_reset_at: now + window}``.
2. Increment ``count`` unconditionally, so denied calls count too.
3. ``allowed = count <= limit`` and ``remaining = max(0, limit - count)``.
4. ``reset_seconds = ceil((window_reset_at - now) / 1000 ms)``.

This is a fixed window, not a sliding window or token bucket: a burst that
straddles a window boundary can be admitted up to ``2 * limit`` times.
Callers needing smoother shaping must wrap this primitive.

Concurrency
-----------
Each key's read-modify-write runs under that key's own lock; there is no
global lock on the ``check`` path, so different keys never contend.  Expired
windows are removed by :meth:`RateGovernor.sweep`, which runs at most once per
``sweep_interval_ms`` from inside ``check``.  The sweep only bounds memory and
skips any key that is busy.

Client Keys
-----------
:func:`client_key_from_headers` takes the first ``X-Forwarded-For`` entry.
Anyone who can set that header can pick their own key, so behind an untrusted
proxy the governor is trivially bypassable.  It is a best-effort abuse guard,
not an access control.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace

logger = logging.getLogger(__name__)

FORWARDED_FOR_HEADER = "x-forwarded-for"
FALLBACK_CLIENT_KEY = "anonymous"


@dataclass
class ThrottleWindow:
    """Request counter for one client key.

    Attributes:
        count: Calls observed since the window started.
        window_reset_at: Clock time (seconds) at which the window expires.
    """

    count: int
    window_reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single :meth:`RateGovernor.check` call."""

    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    def headers(self) -> dict[str, str]:
        """Response headers advertising the caller's current budget."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


@dataclass
class _Slot:
    # A retired slot has been removed from the table by a sweep; callers that
    # were waiting on its lock must look the key up again.
    window: ThrottleWindow | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False


class RateGovernor:
    """Admit or deny work per client key under a fixed-window counter.

    Attributes:
        limit: Maximum admitted calls per window.
        window_ms: Window length in milliseconds.
        sweep_interval_ms: Minimum time between sweeps of expired windows.
    """

    def __init__(
        self,
        limit: int,
        window_ms: int,
        sweep_interval_ms: int = 3_600_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a governor.

        Args:
            limit: Maximum admitted calls per window (positive).
            window_ms: Window length in milliseconds (positive).
            sweep_interval_ms: Minimum milliseconds between sweeps.
            clock: Monotonic time source returning seconds.

        Raises:
            ValueError: If any of the intervals or the limit is not positive.
        """
        if limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        if window_ms < 1:
            raise ValueError(f"window_ms must be a positive integer, got {window_ms}")
        if sweep_interval_ms < 1:
            raise ValueError(f"sweep_interval_ms must be a positive integer, got {sweep_interval_ms}")

        self.limit = limit
        self.window_ms = window_ms
        self.sweep_interval_ms = sweep_interval_ms
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        self._sweep_lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._slots)

    def check(self, client_key: str) -> RateLimitResult:
        """Count one call for ``client_key`` and decide whether it is admitted.

        Args:
            client_key: Identifier bucketing the caller.

        Returns:
            The admission decision together with the caller's remaining budget.
        """
        self._maybe_sweep()

        window_seconds = self.window_ms / 1000
        while True:
            slot = self._slots.get(client_key)
            if slot is None:
                slot = self._slots.setdefault(client_key, _Slot())
            with slot.lock:
                if slot.retired:
                    continue

                now = self._clock()
                window = slot.window
                if window is None or now >= window.window_reset_at:
                    window = ThrottleWindow(count=0, window_reset_at=now + window_seconds)

                window.count += 1
                slot.window = window

                return RateLimitResult(
                    allowed=window.count <= self.limit,
                    limit=self.limit,
                    remaining=max(0, self.limit - window.count),
                    # Rounded first so float noise cannot add a whole second.
                    reset_seconds=math.ceil(round(window.window_reset_at - now, 6)),
                )

    def window_for(self, client_key: str) -> ThrottleWindow | None:
        """Return a copy of the current window for ``client_key``, if any."""
        slot = self._slots.get(client_key)
        if slot is None:
            return None
        with slot.lock:
            return replace(slot.window) if slot.window is not None else None

    def sweep(self, now: float | None = None) -> int:
        """Remove windows that have already expired.

        Keys whose lock is currently held are skipped and picked up by a
        later sweep.

        Args:
            now: Clock time to compare against (defaults to the governor clock).

        Returns:
            Number of windows removed.
        """
        now = self._clock() if now is None else now
        removed = 0
        for key, slot in list(self._slots.items()):
            if not slot.lock.acquire(blocking=False):
                continue
            try:
                if slot.window is not None and now < slot.window.window_reset_at:
                    continue
                slot.retired = True
                if self._slots.get(key) is slot:
                    del self._slots[key]
                removed += 1
            finally:
                slot.lock.release()

        if removed:
            logger.debug(f"Swept {removed} expired rate limit windows")
        return removed

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if (now - self._last_sweep) * 1000 < self.sweep_interval_ms:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self._last_sweep = now
            self.sweep(now)
        finally:
            self._sweep_lock.release()


def client_key_from_headers(headers: Mapping[str, str], fallback: str = FALLBACK_CLIENT_KEY) -> str:
    """Derive the client key from request headers.

    Uses the first entry of ``X-Forwarded-For``; falls back to ``fallback``
    when the header is missing or empty.  Header lookup is case-insensitive
    for Starlette ``Headers`` and for plain dicts with lowercase keys.
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER) or headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    return fallback
