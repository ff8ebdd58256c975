import threading
import time
from typing import Callable, Iterable

from tickerbar.schemas.common import MarketPair


class TickThrottler:
    """
    Drops ticks for a symbol that arrive sooner than `min_interval` seconds
    after the last one let through.
    """

    def __init__(
        self, min_interval: float = 0.1, clock: Callable[[], float] = time.monotonic
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._last_emit: dict[str, float] = {}
        self._lock = threading.Lock()

    def should_emit(self, symbol: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last_emit.get(symbol)
            if last is not None and now - last < self.min_interval:
                return False
            self._last_emit[symbol] = now
            return True

    def reset(self):
        with self._lock:
            self._last_emit.clear()


class SubscriptionDiff:
    def __init__(self):
        self._current: set[MarketPair] = set()
        self._lock = threading.Lock()

    @property
    def current(self) -> frozenset[MarketPair]:
        with self._lock:
            return frozenset(self._current)

    def compute(
        self, desired: Iterable[MarketPair]
    ) -> tuple[list[MarketPair], list[MarketPair]]:
        """
        Return (to_subscribe, to_unsubscribe) against the committed set and
        commit `desired` as the new set
        """
        desired = set(desired)
        with self._lock:
            to_subscribe = desired - self._current
            to_unsubscribe = self._current - desired
            self._current = desired

        return list(to_subscribe), list(to_unsubscribe)

    def clear(self):
        with self._lock:
            self._current.clear()
