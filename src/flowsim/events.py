"""
Event and EventQueue - the time-ordered driver of a run.

Same heap layout as the C++SIM Scheduler ready queue: entries order by
time, then by an insertion counter, so among equal timestamps the event
scheduled first fires first.
"""

from __future__ import annotations

import heapq
import math
from dataclasses import dataclass, field
from enum import Enum


class EventKind(Enum):
    ARRIVAL = "arrival"
    START_PROCESS = "start-process"
    END_PROCESS = "end-process"


# Handle value for "no entity / no step" (arrival events carry neither)
NO_HANDLE = -1


@dataclass(frozen=True, order=True)
class Event:
    """
    A scheduled (time, kind, payload) triple.

    The payload is integer handles into the kernel's arenas, never live
    objects. ``resumed`` marks a start-process issued by a resource
    release on behalf of a queued entity.
    """

    time: float
    seq: int
    kind: EventKind = field(compare=False)
    entity: int = field(default=NO_HANDLE, compare=False)
    step: int = field(default=NO_HANDLE, compare=False)
    resumed: bool = field(default=False, compare=False)


class EventQueue:
    """Priority queue of pending events."""

    def __init__(self) -> None:
        self._heap: list[Event] = []
        self._counter = 0

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def schedule(
        self,
        time: float,
        kind: EventKind,
        entity: int = NO_HANDLE,
        step: int = NO_HANDLE,
        resumed: bool = False,
    ) -> Event:
        """Insert an event and return it."""
        if math.isnan(time):
            raise ValueError(f"cannot schedule {kind.value} event at NaN time")
        event = Event(time, self._counter, kind, entity, step, resumed)
        self._counter += 1
        heapq.heappush(self._heap, event)
        return event

    def pop_next(self) -> Event | None:
        """Remove and return the earliest event, or None when drained."""
        if not self._heap:
            return None
        return heapq.heappop(self._heap)

    def peek_time(self) -> float | None:
        """Time of the earliest pending event."""
        return self._heap[0].time if self._heap else None

    def clear(self) -> None:
        """Drop all pending events and restart the insertion counter."""
        self._heap = []
        self._counter = 0

    def pending(self) -> list[Event]:
        """Pending events in firing order."""
        return sorted(self._heap)

    def __str__(self) -> str:
        lines = ["Event queue:"]
        for event in self.pending():
            lines.append(f"  t={event.time:.4f} #{event.seq} {event.kind.value} e={event.entity} s={event.step}")
        lines.append("End of event queue.")
        return "\n".join(lines)
