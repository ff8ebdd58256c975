import threading
import time
from decimal import Decimal
from typing import Callable


class SparklineBuffer:
    """
    Recent prices of one symbol for the inline trend line.

    Keeps at most `max_points` points from the last `window` seconds;
    when the window holds more than that, points are thinned by picking
    every n-th one.
    """

    def __init__(
        self,
        window: float = 60.0,
        max_points: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self.max_points = max_points
        self._clock = clock

        self._buffer: list[tuple[float, Decimal]] = []
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._buffer)

    def add(self, price: Decimal):
        now = self._clock()
        cutoff = now - self.window

        with self._lock:
            self._buffer.append((now, price))
            self._buffer = [p for p in self._buffer if p[0] >= cutoff]

            if len(self._buffer) > self.max_points:
                self._buffer = downsample(self._buffer, self.max_points)

    def get_points(self) -> list[Decimal]:
        with self._lock:
            return [price for _, price in self._buffer]

    def get_normalized_points(self) -> list[float]:
        prices = [float(p) for p in self.get_points()]
        if len(prices) < 2:
            return []

        low, high = min(prices), max(prices)
        if high <= low:
            return [0.5] * len(prices)

        span = high - low
        return [(p - low) / span for p in prices]

    def clear(self):
        with self._lock:
            self._buffer.clear()


def downsample(points: list, count: int) -> list:
    if len(points) <= count:
        return points

    if count == 1:
        return points[-1:]

    # first and last points always survive
    step = (len(points) - 1) / (count - 1)
    return [points[round(i * step)] for i in range(count)]
