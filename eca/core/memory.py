# ═══════════════════════════════════════════════════════════════════════════════
# PART 3: BOUNDED THOUGHT MEMORY
# Design: A5 (Continual Learning) + S2 (Distributed Systems)
# Implementation: I3 (State Management)
# ═══════════════════════════════════════════════════════════════════════════════

"""
A5: "A cell can't remember everything. When the budget fills, the oldest
stretch of thoughts gets folded into one summary. Recent detail, distant gist."

S2: "And the summary comes from a remote model, so it can fail. When it does,
drop the oldest thoughts and note that memory degraded. The budget holds
either way."
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Deque, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class MemoryCompressionFailure(Exception):
    """Raised by a compressor when no summary could be produced."""
    pass


@dataclass(frozen=True)
class Thought:
    """
    One generated unit of content held in a cell's memory.

    Immutable. A compressed summary carries the ids it replaced in `lineage`
    and the cycle range it covers in `cycle`..`cycle_end`.
    """
    id: str
    content: str
    cycle: int
    relevance: float
    created_at: str                          # ISO format
    embedding: Optional[Tuple[float, ...]] = None
    topics: Tuple[str, ...] = ()
    cycle_end: Optional[int] = None
    lineage: Tuple[str, ...] = ()
    compressed: bool = False

    @property
    def size(self) -> int:
        """Budgeted size: UTF-8 bytes of content."""
        return len(self.content.encode("utf-8"))

    @property
    def last_cycle(self) -> int:
        return self.cycle_end if self.cycle_end is not None else self.cycle

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "cycle": self.cycle,
            "relevance": self.relevance,
            "created_at": self.created_at,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "topics": list(self.topics),
            "cycle_end": self.cycle_end,
            "lineage": list(self.lineage),
            "compressed": self.compressed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Thought:
        embedding = d.get("embedding")
        return cls(
            id=d["id"],
            content=d["content"],
            cycle=d["cycle"],
            relevance=d["relevance"],
            created_at=d["created_at"],
            embedding=tuple(embedding) if embedding is not None else None,
            topics=tuple(d.get("topics", [])),
            cycle_end=d.get("cycle_end"),
            lineage=tuple(d.get("lineage", [])),
            compressed=d.get("compressed", False),
        )


def make_thought_id(*parts: object) -> str:
    """Deterministic id from the parts that make a thought unique."""
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode()).hexdigest()[:16]


def trim_to_bytes(text: str, max_bytes: int) -> str:
    """Cut `text` to at most `max_bytes` UTF-8 bytes without splitting a char."""
    if max_bytes <= 0:
        return ""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


@dataclass
class MemoryConfig:
    """Per-cell memory budget."""
    max_bytes: int = 50000           # Budget over all thought content
    min_summary_bytes: int = 1       # Below this a summary isn't worth keeping
    max_summary_topics: int = 5
    event_history: int = 100         # MemoryEvents kept per store


@dataclass
class MemoryEvent:
    """Something notable the store did while enforcing its budget."""
    kind: str                        # "compressed" | "degraded" | "trimmed"
    thought_ids: List[str] = field(default_factory=list)
    bytes_freed: int = 0
    detail: str = ""
    summary: Optional[Thought] = None  # Set on "compressed"


Compressor = Callable[[List[Thought]], Thought]


class MemoryStore:
    """
    Recency-ordered thoughts (newest first) under a byte budget.

    add() enforces total_size <= max_bytes on return, compressing the oldest
    run through `compressor` when one is given, else truncating.
    """

    def __init__(self, config: Optional[MemoryConfig] = None) -> None:
        self.config = config or MemoryConfig()
        self._thoughts: Deque[Thought] = deque()
        self._size: int = 0
        self.events: Deque[MemoryEvent] = deque(maxlen=self.config.event_history)
        self.degraded_count: int = 0
        self.compression_count: int = 0

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def total_size(self) -> int:
        return self._size

    @property
    def thoughts(self) -> List[Thought]:
        """Newest first."""
        return list(self._thoughts)

    def __len__(self) -> int:
        return len(self._thoughts)

    def __iter__(self) -> Iterator[Thought]:
        return iter(list(self._thoughts))

    # ── Public Methods ──────────────────────────────────────────────────────

    def newest(self, k: int) -> List[Thought]:
        return list(self._thoughts)[:k]

    def get(self, thought_id: str) -> Optional[Thought]:
        for t in self._thoughts:
            if t.id == thought_id:
                return t
        return None

    def ids(self) -> List[str]:
        return [t.id for t in self._thoughts]

    def select_compression_run(self, incoming: Thought) -> List[Thought]:
        """
        Preview: the oldest run add(incoming) would compress, oldest first.

        Empty when adding `incoming` keeps the store within budget.
        """
        incoming_size = min(incoming.size, self.config.max_bytes)
        overflow = self._size + incoming_size - self.config.max_bytes
        if overflow <= 0:
            return []
        return self._oldest_run(overflow, exclude_front=False)

    def add(
        self,
        thought: Thought,
        compressor: Optional[Compressor] = None,
    ) -> List[MemoryEvent]:
        """
        Put `thought` at the front and restore the budget.

        Returns the MemoryEvents produced by this call.
        """
        events: List[MemoryEvent] = []
        cfg = self.config

        if thought.size > cfg.max_bytes:
            original = thought.size
            thought = replace(thought, content=trim_to_bytes(thought.content, cfg.max_bytes))
            events.append(MemoryEvent(
                kind="trimmed",
                thought_ids=[thought.id],
                bytes_freed=original - thought.size,
                detail="incoming thought exceeded the whole budget",
            ))

        self._thoughts.appendleft(thought)
        self._size += thought.size

        overflow = self._size - cfg.max_bytes
        if overflow > 0:
            run = self._oldest_run(overflow)
            events.append(self._evict(run, compressor))

        for event in events:
            self.events.append(event)
        return events

    def clear(self) -> None:
        self._thoughts.clear()
        self._size = 0

    def to_list(self) -> List[dict]:
        return [t.to_dict() for t in self._thoughts]

    def restore(self, thoughts: List[dict]) -> None:
        """Replace contents from serialized thoughts (newest first)."""
        self.clear()
        for d in thoughts:
            t = Thought.from_dict(d)
            self._thoughts.append(t)
            self._size += t.size

    def get_state(self) -> dict:
        return {
            "thoughts": len(self._thoughts),
            "total_size": self._size,
            "max_bytes": self.config.max_bytes,
            "compressed": sum(1 for t in self._thoughts if t.compressed),
            "compressions": self.compression_count,
            "degraded": self.degraded_count,
        }

    # ── Internal ────────────────────────────────────────────────────────────

    def _oldest_run(self, overflow: int, exclude_front: bool = True) -> List[Thought]:
        """Shortest oldest-first run whose removal frees >= overflow bytes."""
        run: List[Thought] = []
        freed = 0
        candidates = list(self._thoughts)
        if exclude_front:
            # The thought just added is never part of the run
            candidates = candidates[1:]
        for t in reversed(candidates):
            if freed >= overflow:
                break
            run.append(t)
            freed += t.size
        return run

    def _evict(self, run: List[Thought], compressor: Optional[Compressor]) -> MemoryEvent:
        freed = sum(t.size for t in run)
        for _ in run:
            self._thoughts.pop()
        self._size -= freed
        available = self.config.max_bytes - self._size
        run_ids = [t.id for t in run]

        if compressor is None:
            return self._degraded(run_ids, freed, "no compressor available")
        if available < self.config.min_summary_bytes:
            return self._degraded(run_ids, freed, "no room for a summary")

        try:
            draft = compressor(list(run))
        except MemoryCompressionFailure as exc:
            return self._degraded(run_ids, freed, f"compression failed: {exc}")

        summary = self._build_summary(run, draft, available)
        if summary.size < self.config.min_summary_bytes:
            return self._degraded(run_ids, freed, "empty summary")

        self._thoughts.append(summary)
        self._size += summary.size
        self.compression_count += 1
        return MemoryEvent(
            kind="compressed",
            thought_ids=run_ids,
            bytes_freed=freed - summary.size,
            detail=f"summary {summary.id} ({summary.size} bytes)",
            summary=summary,
        )

    def _degraded(self, run_ids: List[str], freed: int, reason: str) -> MemoryEvent:
        self.degraded_count += 1
        logger.warning(
            "Memory degraded: dropped %d thought(s), %d bytes (%s)",
            len(run_ids), freed, reason,
        )
        return MemoryEvent(
            kind="degraded",
            thought_ids=run_ids,
            bytes_freed=freed,
            detail=reason,
        )

    def _build_summary(self, run: List[Thought], draft: Thought, available: int) -> Thought:
        """Summary thought covering `run` (oldest first), within `available` bytes."""
        lineage: List[str] = []
        for t in run:
            lineage.extend(t.lineage)
            lineage.append(t.id)

        topics = tuple(draft.topics) or self._dominant_topics(run)
        relevance = sum(t.relevance for t in run) / len(run)

        return Thought(
            id="c" + make_thought_id(*lineage)[:15],
            content=trim_to_bytes(draft.content, available),
            cycle=min(t.cycle for t in run),
            cycle_end=max(t.last_cycle for t in run),
            relevance=relevance,
            created_at=max(t.created_at for t in run),
            topics=topics[: self.config.max_summary_topics],
            lineage=tuple(lineage),
            compressed=True,
        )

    def _dominant_topics(self, run: List[Thought]) -> Tuple[str, ...]:
        counts: Dict[str, int] = Counter()
        for t in run:
            counts.update(t.topics)
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return tuple(topic for topic, _count in ranked)


def now_iso() -> str:
    return datetime.now().isoformat()
