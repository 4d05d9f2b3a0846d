"""
Entity and EntityStore - units of work flowing through the model.

Entities live in a dense arena addressed by integer handle. A departed
entity leaves the live set but its record (and history) stays readable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, NamedTuple


class EntityState(Enum):
    CREATED = "created"
    TRAVELING = "traveling"
    WAITING = "waiting"
    PROCESSING = "processing"
    DEPARTED = "departed"


class HistoryRecord(NamedTuple):
    time: float
    label: str
    location: str


@dataclass
class Entity:
    """
    A token representing one unit of work.

    ``priority`` and ``due_date`` are the declared attributes used by the
    PRIORITY and EDD queue disciplines; ``attributes`` holds anything else
    a model needs.
    """

    id: int
    arrival_time: float
    state: EntityState = EntityState.CREATED
    step: int | None = None
    resource: int | None = None
    priority: int = 0
    due_date: float | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    history: list[HistoryRecord] = field(default_factory=list)
    wait_time: float = 0.0
    process_time: float = 0.0
    queued_at: float | None = None
    departure_time: float | None = None

    def log(self, time: float, label: str, location: str) -> None:
        """Append to the history log."""
        self.history.append(HistoryRecord(time, label, location))

    @property
    def cycle_time(self) -> float | None:
        """Departure minus arrival, or None while in the system."""
        if self.departure_time is None:
            return None
        return self.departure_time - self.arrival_time


class EntityStore:
    """Arena of entities; the handle of an entity is its list index."""

    def __init__(self) -> None:
        self._entities: list[Entity] = []
        self._live: set[int] = set()
        self._departed = 0

    def __len__(self) -> int:
        return len(self._entities)

    def clear(self) -> None:
        self._entities = []
        self._live = set()
        self._departed = 0

    def create(self, time: float) -> Entity:
        """Create a live entity arriving at ``time``."""
        entity = Entity(id=len(self._entities), arrival_time=time)
        entity.log(time, "CREATED", "ENTRY")
        self._entities.append(entity)
        self._live.add(entity.id)
        return entity

    def get(self, handle: int) -> Entity:
        """Entity by handle (departed entities included)."""
        return self._entities[handle]

    def depart(self, handle: int, time: float) -> Entity:
        """Mark departed and remove from the live set."""
        if handle not in self._live:
            raise KeyError(f"entity {handle} is not in the system")
        entity = self._entities[handle]
        entity.state = EntityState.DEPARTED
        entity.departure_time = time
        entity.step = None
        entity.resource = None
        entity.log(time, "DEPARTED", "EXIT")
        self._live.discard(handle)
        self._departed += 1
        return entity

    def is_live(self, handle: int) -> bool:
        return handle in self._live

    def live(self) -> Iterator[Entity]:
        """Entities still in the system, in creation order."""
        for handle in sorted(self._live):
            yield self._entities[handle]

    def all(self) -> list[Entity]:
        return list(self._entities)

    @property
    def created(self) -> int:
        return len(self._entities)

    @property
    def departed(self) -> int:
        return self._departed

    @property
    def in_system(self) -> int:
        return len(self._live)
