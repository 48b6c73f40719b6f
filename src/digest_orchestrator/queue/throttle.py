"""
Throttle для последовательных отправок во внешние воркеры.

Гарантирует минимальный интервал между соседними отправками одного
потребителя. Отправки идут строго последовательно, не параллельно.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class Throttle:
    def __init__(
        self,
        min_interval_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_sec = max(0.0, float(min_interval_sec))
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """
        Дождаться своей очереди. Возвращает, сколько секунд пришлось ждать.
        """
        with self._lock:
            now = self._clock()
            waited = 0.0
            if self._last is not None:
                remaining = self.min_interval_sec - (now - self._last)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
                    now = self._clock()
            self._last = now
            return waited

    def reset(self) -> None:
        with self._lock:
            self._last = None
