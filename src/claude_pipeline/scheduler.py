"""Deferred, cancellable callbacks keyed by pipeline id."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ResumeScheduler:
    """
    Run a callback once after a delay, at most one pending timer per key.

    Each callback runs on its own daemon timer thread. Scheduling a key that
    already has a pending timer replaces it.
    """

    def __init__(self) -> None:
        self._timers: Dict[str, threading.Timer] = {}
        self._started: List[threading.Timer] = []
        self._lock = threading.Lock()

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], None]) -> None:
        delay = max(0.0, delay_seconds)
        timer = threading.Timer(delay, self._fire, args=(key, callback))
        timer.daemon = True
        timer.name = f"resume-{key}"
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
            self._started = [t for t in self._started if t.is_alive()]
            self._started.append(timer)
        logger.debug("Scheduled %s in %.1fs", key, delay)
        timer.start()

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug("Cancelled scheduled resume %s", key)
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every scheduled callback, including ones scheduled by
        other callbacks, has finished. Returns ``False`` on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                alive = [t for t in self._started if t.is_alive()]
            if not alive:
                return True
            for timer in alive:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                timer.join(remaining)

    def _fire(self, key: str, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timers.get(key) is threading.current_thread():
                del self._timers[key]
        callback()
