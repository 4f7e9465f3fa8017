import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException

from ..auth.deps import get_current_actor


@dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: int


class SlidingWindowLimiter:
    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._max_window = 0
        self._last_sweep = 0.0

    def _sweep(self, now: float) -> None:
        # Keys with no event inside the longest window in use are dropped.
        cutoff = now - self._max_window
        for key in [k for k, dq in self._events.items() if not dq or dq[-1] <= cutoff]:
            del self._events[key]
        self._last_sweep = now

    def check(self, key: str, limit: int, window_seconds: int, now: float | None = None) -> RateDecision:
        now = time.time() if now is None else now
        cutoff = now - window_seconds
        with self._lock:
            self._max_window = max(self._max_window, window_seconds)
            if now - self._last_sweep >= self._max_window:
                self._sweep(now)
            dq = self._events[key]
            while dq and dq[0] <= cutoff:
                dq.popleft()
            if len(dq) >= limit:
                retry_after = max(1, int(dq[0] + window_seconds - now))
                return RateDecision(allowed=False, retry_after_seconds=retry_after)
            dq.append(now)
            return RateDecision(allowed=True, retry_after_seconds=0)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self._last_sweep = 0.0


limiter = SlidingWindowLimiter()


def actor_rate_limit(route_key: str, limit: int, window_seconds: int):
    def _dep(actor: dict[str, Any] = Depends(get_current_actor)) -> None:
        decision = limiter.check(f"{route_key}:{actor['id']}", limit=limit, window_seconds=window_seconds)
        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Too many requests. Retry in {decision.retry_after_seconds}s",
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    return Depends(_dep)
