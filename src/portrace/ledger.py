"""Per-port event history used to diagnose allocation races."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional

from .util.timing import Stopwatch


PORT_COUNT = 65536


class EventKind(Enum):
    ASSIGNED = "assigned"
    BINDING = "binding"
    BOUND = "bound"
    RELEASED = "released"

    @property
    def label(self) -> str:
        """Label used in debug traces."""
        return self.value.capitalize()

    @property
    def heading(self) -> str:
        """Section heading used in race reports."""
        return "Assignment" if self is EventKind.ASSIGNED else self.label


@dataclass(frozen=True)
class Event:
    worker_id: int
    timestamp: float
    kind: EventKind


class PortHistory:
    """The four event logs of a single port."""

    __slots__ = ("logs",)

    def __init__(self):
        self.logs: Dict[EventKind, List[Event]] = {kind: [] for kind in EventKind}


class EventLedger:
    """Fixed-size table of per-port event logs, indexed by port number.

    Appends never take a lock: list.append is atomic, and logs are fully
    partitioned by port. Only the first touch of a port creates its slot
    under a lock.
    """

    def __init__(self, clock: Optional[Stopwatch] = None):
        self.clock = clock or Stopwatch()
        self._slots: List[Optional[PortHistory]] = [None] * PORT_COUNT
        self._create_lock = Lock()

    @staticmethod
    def _validate(port: int) -> None:
        if not 0 <= port < PORT_COUNT:
            raise ValueError(f"Port out of range: {port}")

    def _slot(self, port: int) -> PortHistory:
        history = self._slots[port]
        if history is None:
            with self._create_lock:
                history = self._slots[port]
                if history is None:
                    history = PortHistory()
                    self._slots[port] = history
        return history

    def record(self, port: int, worker_id: int, kind: EventKind) -> Event:
        """Append an event stamped with the elapsed run time."""
        self._validate(port)
        event = Event(worker_id=worker_id, timestamp=self.clock.elapsed(), kind=kind)
        self._slot(port).logs[kind].append(event)
        return event

    def snapshot(self, port: int) -> Dict[EventKind, List[Event]]:
        """Copy of a port's logs, each sorted by timestamp."""
        self._validate(port)
        history = self._slots[port]
        if history is None:
            return {kind: [] for kind in EventKind}
        return {
            kind: sorted(history.logs[kind], key=lambda e: e.timestamp)
            for kind in EventKind
        }

    def counts(self, port: int, worker_id: Optional[int] = None) -> Dict[EventKind, int]:
        snap = self.snapshot(port)
        return {
            kind: sum(1 for e in events if worker_id is None or e.worker_id == worker_id)
            for kind, events in snap.items()
        }

    def is_balanced(self, port: int, worker_id: Optional[int] = None) -> bool:
        """True when every lifecycle stage was reached equally often."""
        return len(set(self.counts(port, worker_id).values())) == 1

    def touched_ports(self) -> List[int]:
        return [port for port, history in enumerate(self._slots) if history is not None]
