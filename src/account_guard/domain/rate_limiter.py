"""
Fixed-window rate limiter keyed by an arbitrary identifier.

Each call site owns its own limiter instance with its own policy
(device registration, code requests, relay calls). Windows live in
memory for the process lifetime, so limits are per-replica and
best-effort: this deters abuse, it is not a quota service.

The window table is split into shards, each guarded by its own lock and
bounded by a least-recently-used capacity. Unrelated identifiers therefore
never wait on one global lock, and a flood of distinct identifiers cannot
grow memory without bound. An evicted identifier simply starts a new
window on its next event.
"""

import threading
import time
import zlib
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class RateWindow:
    """Event count for one identifier within the current window."""

    count: int
    reset_at: float


class _Shard:
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self.lock = threading.Lock()
        self.windows: OrderedDict[str, RateWindow] = OrderedDict()


class RateLimiter:
    """
    Fixed-window counter.

    On each check: no window, or the window has ended, starts a new window
    with count 1 and allows. A full window denies without counting the
    event. Otherwise the count is incremented and the event allowed.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        capacity: int = 10_000,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        per_shard = max(1, capacity // max(1, shards))
        self._shards = [_Shard(per_shard) for _ in range(max(1, shards))]

    def check(self, identifier: str) -> bool:
        """
        Record an event for ``identifier`` and report whether it is allowed.

        Never raises; an unknown identifier is simply a new window.
        """
        shard = self._shard_for(identifier)
        now = self._clock()
        with shard.lock:
            window = shard.windows.get(identifier)
            if window is None or now >= window.reset_at:
                shard.windows[identifier] = RateWindow(
                    count=1, reset_at=now + self.window_seconds
                )
                shard.windows.move_to_end(identifier)
                self._evict(shard)
                return True

            shard.windows.move_to_end(identifier)
            if window.count >= self.max_requests:
                return False
            window.count += 1
            return True

    def peek(self, identifier: str) -> RateWindow | None:
        """Return a copy of the current window without recording an event."""
        shard = self._shard_for(identifier)
        with shard.lock:
            window = shard.windows.get(identifier)
            return None if window is None else RateWindow(window.count, window.reset_at)

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total

    def _shard_for(self, identifier: str) -> _Shard:
        index = zlib.crc32(identifier.encode("utf-8")) % len(self._shards)
        return self._shards[index]

    @staticmethod
    def _evict(shard: _Shard) -> None:
        while len(shard.windows) > shard.capacity:
            shard.windows.popitem(last=False)
