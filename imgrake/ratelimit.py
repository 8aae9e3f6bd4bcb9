"""Per-host politeness gate: bounded concurrency plus a minimum interval between request starts."""

import random
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from imgrake.errors import CrawlCancelled

# Upper bound on a single blocking wait, so cancellation is noticed promptly.
WAIT_SLICE = 0.1


class _HostState:
    def __init__(self, max_concurrency: int) -> None:
        self.slots = threading.BoundedSemaphore(max_concurrency)
        self.lock = threading.Lock()
        self.next_start = 0.0


class HostRateLimiter:
    """
    acquire(host) blocks until the host has a free slot and its interval gate has
    passed. State is per host, so workers talking to different hosts never wait on
    each other.
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 2,
        interval: float = 0.5,
        jitter: float = 0.0,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._max_concurrency = max_concurrency
        self._interval = max(0.0, interval)
        self._jitter = max(0.0, jitter)
        self._cancel = cancel_event or threading.Event()
        self._hosts: dict[str, _HostState] = {}
        self._hosts_lock = threading.Lock()

    def _state(self, host: str) -> _HostState:
        with self._hosts_lock:
            st = self._hosts.get(host)
            if st is None:
                st = self._hosts[host] = _HostState(self._max_concurrency)
            return st

    def _gap(self) -> float:
        """Interval with ±jitter applied."""
        if self._interval <= 0 or self._jitter <= 0:
            return self._interval
        return self._interval * random.uniform(1 - self._jitter, 1 + self._jitter)

    def _sleep_until(self, deadline: float) -> None:
        while True:
            if self._cancel.is_set():
                raise CrawlCancelled("cancelled while waiting for rate limit")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._cancel.wait(min(remaining, WAIT_SLICE))

    @contextmanager
    def acquire(self, host: str) -> Iterator[None]:
        """Scoped permit for one request to host; released on every exit path."""
        st = self._state(host)
        while not st.slots.acquire(timeout=WAIT_SLICE):
            if self._cancel.is_set():
                raise CrawlCancelled("cancelled while waiting for a host slot")
        try:
            # Reserve a start time under the lock; the actual wait happens outside it.
            with st.lock:
                now = time.monotonic()
                start = max(now, st.next_start)
                st.next_start = start + self._gap()
            self._sleep_until(start)
            yield
        finally:
            st.slots.release()
