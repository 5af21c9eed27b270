# ═══════════════════════════════════════════════════════════════════════════════
# PART 7: OBSERVABILITY FEED
# Design: S2 (Distributed Systems) | Implementation: I4 (Integration)
# ═══════════════════════════════════════════════════════════════════════════════

"""
S2: "Displays and monitors watch the colony. The colony doesn't watch them
back. Events go out after the snapshot is on disk, and a broken subscriber
is a log line, not a stalled cycle."
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    CELL_UPDATED = "cell_updated"
    THOUGHT_CREATED = "thought_created"
    PLAN_TRANSITIONED = "plan_transitioned"
    MEMORY_DEGRADED = "memory_degraded"
    CELL_DORMANT = "cell_dormant"
    CELL_WOKE = "cell_woke"
    CELL_SPAWNED = "cell_spawned"
    CYCLE_COMPLETED = "cycle_completed"


@dataclass(frozen=True)
class ColonyEvent:
    """One published fact about a committed cycle."""
    kind: EventKind
    cycle: int
    position: Optional[tuple] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "cycle": self.cycle,
            "position": list(self.position) if self.position is not None else None,
            "data": dict(self.data),
        }


Handler = Callable[[ColonyEvent], None]


class EventFeed:
    """
    Bounded history of colony events plus synchronous subscribers.

    Subscribers may filter by kind. A handler that raises is logged and
    counted; publishing continues.
    """

    def __init__(self, history: int = 1000) -> None:
        self._history: Deque[ColonyEvent] = deque(maxlen=history)
        self._subs: Dict[int, Dict[str, Any]] = {}
        self._sub_seq = 0
        self._lock = threading.Lock()
        self.published = 0
        self.handler_errors = 0

    def subscribe(self, handler: Handler, kind: Optional[EventKind] = None) -> int:
        with self._lock:
            self._sub_seq += 1
            sid = self._sub_seq
            self._subs[sid] = {"handler": handler, "kind": kind}
            return sid

    def unsubscribe(self, sub_id: int) -> bool:
        with self._lock:
            return self._subs.pop(sub_id, None) is not None

    def publish(self, events: List[ColonyEvent]) -> None:
        with self._lock:
            self._history.extend(events)
            subs = list(self._subs.values())
        self.published += len(events)

        for event in events:
            for sub in subs:
                if sub["kind"] is not None and sub["kind"] is not event.kind:
                    continue
                try:
                    sub["handler"](event)
                except Exception:
                    self.handler_errors += 1
                    logger.exception("Event handler failed on %s", event.kind.value)

    def recent(self, n: Optional[int] = None, kind: Optional[EventKind] = None) -> List[ColonyEvent]:
        """Newest last."""
        with self._lock:
            events = list(self._history)
        if kind is not None:
            events = [e for e in events if e.kind is kind]
        if n is not None:
            events = events[-n:] if n > 0 else []
        return events

    def __len__(self) -> int:
        return len(self._history)
