"""Build generation counter shared by the rebuild coordinator and readers.

The coordinator is the only writer; the notification endpoint and the
websocket broadcaster only read. Readers always see the value of the latest
completed advance.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

GENERATION_CEILING = 2**31 - 1


class BuildGeneration:
    """Bounded counter identifying the latest successful build.

    Attributes:
        ceiling: Largest value before the counter wraps back to zero.
    """

    def __init__(self, ceiling: int = GENERATION_CEILING):
        self.ceiling = ceiling
        self._value = 0
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[int], None]] = []

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def advance(self) -> int:
        """Move to the next generation and notify subscribers.

        Returns:
            The new value.
        """
        with self._lock:
            self._value = 0 if self._value >= self.ceiling else self._value + 1
            current = self._value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(current)
        return current

    def subscribe(self, callback: Callable[[int], None]) -> None:
        """Call ``callback(value)`` after every advance."""
        with self._lock:
            self._subscribers.append(callback)

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"BuildGeneration({self.value})"
