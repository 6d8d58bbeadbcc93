"""Timer scheduler for the log session.

Timers do not run callbacks on their own thread. They hold an Event that
becomes due at a point on the session clock; the session drains due events
with pop_due() on the same thread that processes log lines, so a timer can
never interleave with a line's mutation.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable, Hashable

from nebula.events import Event

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Scheduler:
    """Keyed one-shot timers over an injectable monotonic clock.

    Scheduling a key that is already pending replaces the old timer.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._heap: list[tuple[float, int, Hashable]] = []
        self._pending: dict[Hashable, tuple[float, int, Event]] = {}
        self._counter = itertools.count()

    def now(self) -> float:
        return self._clock()

    def schedule(self, key: Hashable, delay: float, event: Event) -> float:
        """Schedule event to fire after delay seconds. Returns the due time."""
        due = self._clock() + delay
        seq = next(self._counter)
        self._pending[key] = (due, seq, event)
        heapq.heappush(self._heap, (due, seq, key))
        return due

    def cancel(self, key: Hashable) -> bool:
        """Cancel a pending timer. Returns False if nothing was pending."""
        return self._pending.pop(key, None) is not None

    def cancel_all(self) -> None:
        if self._pending:
            logger.debug("Cancelling %d pending timers", len(self._pending))
        self._pending.clear()
        self._heap.clear()

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def due_time(self, key: Hashable) -> float | None:
        entry = self._pending.get(key)
        return entry[0] if entry else None

    def pop_due(self) -> list[Event]:
        """Remove and return events whose due time has passed, oldest first."""
        now = self._clock()
        fired: list[Event] = []
        while self._heap and self._heap[0][0] <= now:
            _, seq, key = heapq.heappop(self._heap)
            entry = self._pending.get(key)
            # Stale heap entry for a cancelled or rescheduled timer
            if entry is None or entry[1] != seq:
                continue
            del self._pending[key]
            fired.append(entry[2])
        return fired

    def __len__(self) -> int:
        return len(self._pending)
