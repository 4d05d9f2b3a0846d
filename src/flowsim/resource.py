"""
Resource and WaitQueue - capacity-bounded servers.

Seize/release follows the C++SIM Semaphore: a free slot is taken at once,
otherwise the entity joins the waiting list; release hands the slot's
next claim to the head of that list.
"""

from __future__ import annotations

import heapq
import math
from enum import Enum

from flowsim.entity import Entity
from flowsim.errors import ConfigurationError, SimulationStateError
from flowsim.stats.summary import ResourceStats
from flowsim.stats.time_variance import TimeWeighted


class QueueDiscipline(Enum):
    """Order in which waiting entities are served."""

    FIFO = "fifo"
    LIFO = "lifo"
    PRIORITY = "priority"  # lower Entity.priority first, FIFO among equals
    EDD = "edd"  # earliest Entity.due_date first, no due date last

    @classmethod
    def parse(cls, value: QueueDiscipline | str) -> QueueDiscipline:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(d.value for d in cls)
            raise ConfigurationError(f"unknown queue discipline {value!r} (expected one of {choices})") from None


class WaitQueue:
    """
    Queue of entity handles waiting for a resource.

    Every entry carries an insertion ticket. The discipline turns
    (entity, ticket) into a sort key, so FIFO is simply ticket order.
    """

    def __init__(self, discipline: QueueDiscipline = QueueDiscipline.FIFO) -> None:
        self._discipline = discipline
        self._heap: list[tuple[tuple[float, ...], int]] = []
        self._members: dict[int, int] = {}
        self._counter = 0

    @property
    def discipline(self) -> QueueDiscipline:
        return self._discipline

    def __len__(self) -> int:
        return len(self._heap)

    def __contains__(self, handle: int) -> bool:
        return handle in self._members

    def empty(self) -> bool:
        """Check if queue is empty."""
        return not self._heap

    def clear(self) -> None:
        self._heap = []
        self._members = {}
        self._counter = 0

    def _key(self, entity: Entity, ticket: int) -> tuple[float, ...]:
        if self._discipline is QueueDiscipline.FIFO:
            return (ticket,)
        if self._discipline is QueueDiscipline.LIFO:
            return (-ticket,)
        if self._discipline is QueueDiscipline.PRIORITY:
            return (entity.priority, ticket)
        due = entity.due_date if entity.due_date is not None else math.inf
        return (due, ticket)

    def push(self, entity: Entity, ticket: int | None = None) -> bool:
        """
        Add an entity.

        Returns False (and changes nothing) if it is already queued.
        Passing a previous ticket restores the entity's old position.
        """
        if entity.id in self._members:
            return False
        if ticket is None:
            ticket = self._counter
            self._counter += 1
        heapq.heappush(self._heap, (self._key(entity, ticket), entity.id))
        self._members[entity.id] = ticket
        return True

    def pop_entry(self) -> tuple[int, int] | None:
        """Remove the head; return (handle, ticket) or None if empty."""
        if not self._heap:
            return None
        _, handle = heapq.heappop(self._heap)
        return handle, self._members.pop(handle)

    def pop(self) -> int | None:
        """Remove and return the head handle, or None if empty."""
        entry = self.pop_entry()
        return entry[0] if entry is not None else None

    def handles(self) -> list[int]:
        """Queued handles in service order."""
        return [handle for _, handle in sorted(self._heap)]


class Resource:
    """
    A capacity-bounded server with its own wait queue and statistics.

    Busy time is booked from the duration sampled for each seize,
    whichever process step caused it. Statistics taken mid-run count
    only the part of each service that has already elapsed.
    """

    def __init__(
        self,
        index: int,
        id: str,
        name: str,
        capacity: int,
        discipline: QueueDiscipline = QueueDiscipline.FIFO,
    ) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 1:
            raise ConfigurationError(f"resource {id!r}: capacity must be an integer >= 1, got {capacity!r}")
        self.index = index
        self.id = id
        self.name = name
        self.capacity = capacity
        self._queue = WaitQueue(discipline)
        self._queue_length = TimeWeighted()
        self.reset()

    def reset(self, time: float = 0.0) -> None:
        """Clear load, queue and statistics (between replications)."""
        self._load = 0
        self._queue.clear()
        self._handoff: dict[int, int] = {}
        self._in_service: list[float] = []
        self._queue_length.reset(time, 0)
        self._observed_from = time
        self.seized_count = 0
        self.busy_time = 0.0
        self.max_queue_length = 0

    @property
    def load(self) -> int:
        """Number of occupied capacity slots."""
        return self._load

    @property
    def discipline(self) -> QueueDiscipline:
        return self._queue.discipline

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def queue(self) -> list[int]:
        """Waiting entity handles in service order."""
        return self._queue.handles()

    @property
    def available(self) -> int:
        return self.capacity - self._load

    def is_waiting(self, handle: int) -> bool:
        return handle in self._queue

    def try_seize(self, entity: Entity, time: float) -> bool:
        """
        Take a slot for ``entity`` if one is free.

        Otherwise enqueue it (a no-op if already queued) and return False.
        """
        if self._load < self.capacity:
            self._load += 1
            self.seized_count += 1
            self._handoff.pop(entity.id, None)
            return True

        ticket = self._handoff.pop(entity.id, None)
        if self._queue.push(entity, ticket):
            length = len(self._queue)
            self._queue_length.set_value(length, time)
            if length > self.max_queue_length:
                self.max_queue_length = length
        return False

    def release(self, time: float) -> int | None:
        """
        Free one slot.

        Returns the handle of the next waiting entity, if any; the caller
        must immediately attempt to seize on its behalf.
        """
        if self._load == 0:
            raise SimulationStateError(f"resource {self.id!r} released while idle")
        self._load -= 1
        self._drop_finished(time)
        entry = self._queue.pop_entry()
        if entry is None:
            return None
        handle, ticket = entry
        self._handoff[handle] = ticket
        self._queue_length.set_value(len(self._queue), time)
        return handle

    def record_busy(self, duration: float, time: float) -> None:
        """Book one service of ``duration`` that starts at ``time``."""
        self.busy_time += duration
        heapq.heappush(self._in_service, time + duration)

    def _drop_finished(self, time: float) -> None:
        while self._in_service and self._in_service[0] <= time:
            heapq.heappop(self._in_service)

    def busy_time_at(self, time: float) -> float:
        """Busy time up to ``time``; services still running count only their elapsed part."""
        return self.busy_time - sum(max(end - time, 0.0) for end in self._in_service)

    def begin_observation(self, time: float) -> None:
        """
        Restart statistics at ``time`` without touching load or queue.

        Used at the end of a warm-up period; services in progress keep
        only the part that falls after ``time``.
        """
        self._drop_finished(time)
        self._observed_from = time
        self._queue_length.reset(time, len(self._queue))
        self.seized_count = 0
        self.max_queue_length = len(self._queue)
        self.busy_time = sum(end - time for end in self._in_service)

    def utilization(self, time: float) -> float:
        """Busy time over available capacity-time since observation began, capped at 1.0."""
        elapsed = time - self._observed_from
        if elapsed <= 0:
            return 0.0
        return min(1.0, self.busy_time_at(time) / (self.capacity * elapsed))

    def stats(self, time: float) -> ResourceStats:
        """Statistics over [start of observation, ``time``]."""
        return ResourceStats(
            id=self.id,
            name=self.name,
            capacity=self.capacity,
            seized_count=self.seized_count,
            busy_time=self.busy_time_at(time),
            utilization=self.utilization(time),
            max_queue_length=self.max_queue_length,
            avg_queue_length=self._queue_length.mean(time),
            queue_length=len(self._queue),
            load=self._load,
        )

    def __repr__(self) -> str:
        return f"Resource({self.id!r}, load={self._load}/{self.capacity}, queue={len(self._queue)})"
