# ═══════════════════════════════════════════════════════════════════════════════
# PART 9: COLONY SCHEDULER
# Design: I1 (Systems Architect) + S2 (Distributed Systems)
# Implementation: I1 (Systems Architect)
# ═══════════════════════════════════════════════════════════════════════════════

"""
I1: "The colony wires everything together. It owns the grid, the cells,
the cycle counter. Nobody else mutates them."

S2: "A cycle reads one frozen field, fans the slow calls out over a worker
pool batch by batch, stages every answer, then commits all cells at once in
position order. A call that times out costs that cell its thought, not the
colony its cycle. The snapshot lands before anyone hears about the cycle."
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

import numpy as np

from eca.core.calls import ExternalCall, run_calls
from eca.core.cell import AdvanceResult, Cell, CellStatus, Position
from eca.core.config import ColonyConfig, resume_config, validate_config
from eca.core.events import ColonyEvent, EventFeed, EventKind
from eca.core.interaction_rule import InteractionRule, Kernel
from eca.core.knowledge import KnowledgeBase, combine_documents, load_knowledge_files
from eca.core.llm_clients import MockLLMClient
from eca.core.memory import Compressor, MemoryCompressionFailure, Thought, now_iso
from eca.core.model_client import (
    ContextSignal,
    ContextSummary,
    ExternalCallError,
    ExternalCallFailure,
    ExternalCallTimeout,
    ExternalModelClient,
    LLMModelClient,
    ThoughtContext,
    describe_error,
)
from eca.core.persistence import ColonyPersistence, PersistenceFailure, StateCorruptionError
from eca.core.plans import PlanDraft, PlanRecord, PlanStatus, PlanSynthesisFailure, PlanTick
from eca.core.thought_dna import N_DIMENSIONS, ThoughtDNA, dimension_order

logger = logging.getLogger(__name__)

DEFAULT_FOCUS = "Exploring new opportunities"


# ── Data Classes ──────────────────────────────────────────────────────────────


@dataclass
class ColonyState:
    """
    Process-wide colony state.

    Created at startup, mutated only by the scheduler between cycles,
    persisted at the end of every cycle.
    """
    name: str
    mission: str
    grid_shape: Tuple[int, ...]
    cycle: int = 0
    created_at: str = field(default_factory=now_iso)
    context: Optional[ContextSummary] = None
    context_cycle: Optional[int] = None
    last_degraded: int = 0
    degraded_advances: int = 0
    cells_spawned: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "mission": self.mission,
            "grid_shape": list(self.grid_shape),
            "cycle": self.cycle,
            "created_at": self.created_at,
            "context": asdict(self.context) if self.context is not None else None,
            "context_cycle": self.context_cycle,
            "last_degraded": self.last_degraded,
            "degraded_advances": self.degraded_advances,
            "cells_spawned": self.cells_spawned,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ColonyState:
        context = d.get("context")
        return cls(
            name=d["name"],
            mission=d["mission"],
            grid_shape=tuple(d["grid_shape"]),
            cycle=d["cycle"],
            created_at=d.get("created_at", now_iso()),
            context=ContextSummary(**context) if context else None,
            context_cycle=d.get("context_cycle"),
            last_degraded=d.get("last_degraded", 0),
            degraded_advances=d.get("degraded_advances", 0),
            cells_spawned=d.get("cells_spawned", 0),
        )


@dataclass
class CycleReport:
    """What one run_cycle() did."""
    cycle: int
    advanced: int = 0
    degraded: int = 0
    skipped_dormant: int = 0
    thoughts: int = 0
    plan_transitions: int = 0
    plans_completed: int = 0
    plans_failed: int = 0
    compressions: int = 0
    truncations: int = 0
    woke: int = 0
    went_dormant: int = 0
    spawned: int = 0
    context_updated: bool = False
    saved: bool = False
    aborted: bool = False
    duration: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CellView:
    position: Position
    dna: Tuple[float, ...]
    status: str
    age: int
    memory_bytes: int
    thoughts: int
    plan_status: Optional[str]


@dataclass(frozen=True)
class ColonySnapshot:
    """Read-only view of the colony between cycles."""
    cycle: int
    name: str
    mission: str
    grid_shape: Tuple[int, ...]
    cells: Tuple[CellView, ...]

    def cell(self, position: Position) -> Optional[CellView]:
        position = tuple(position)
        for view in self.cells:
            if view.position == position:
                return view
        return None


@dataclass
class ColonyStatistics:
    cycle: int
    total_cells: int
    active_cells: int
    dormant_cells: int
    total_thoughts: int
    compressed_thoughts: int
    memory_bytes: int
    active_plans: int
    successful_plans: int
    failed_plans: int
    synthesis_failures: int
    degraded_advances: int
    memory_degradations: int
    mean_dna: Dict[str, float]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Staged:
    """Worker results for one cell, held until the commit."""
    thought: Optional[Thought] = None
    thought_error: Optional[str] = None
    plan_tick: PlanTick = field(default_factory=PlanTick)
    compressor: Optional[Compressor] = None

    @property
    def degraded(self) -> bool:
        return self.thought is None


def _precomputed_compressor(
    run_ids: List[str],
    summary: Optional[Thought],
    error: Optional[str],
) -> Compressor:
    """Compressor that hands back a summary fetched during the worker phase."""

    def compress(run: List[Thought]) -> Thought:
        if error is not None:
            raise MemoryCompressionFailure(error)
        if [t.id for t in run] != run_ids:
            raise MemoryCompressionFailure("compression run changed after the call")
        return summary

    return compress


# ── Colony ───────────────────────────────────────────────────────────────────


class Colony:
    """
    Grid of autonomous cells advanced in discrete cycles.

    Each cycle:
    1. Freeze the pre-cycle DNA field and compute every interaction delta
    2. Per batch, run thought / plan / compression calls concurrently
    3. Commit every active cell in position order
    4. Write records, save the snapshot, publish events
    """

    def __init__(
        self,
        config: Optional[ColonyConfig] = None,
        model_client: Optional[ExternalModelClient] = None,
        persistence: Optional[ColonyPersistence] = None,
        kernel: Optional[Kernel] = None,
        populate: bool = True,
    ) -> None:
        self.config = config or ColonyConfig()
        validate_config(self.config)
        sched = self.config.scheduler

        self.model_client = model_client or LLMModelClient(MockLLMClient())
        self.rule = InteractionRule(sched.grid_shape, self.config.interaction, kernel)
        self.state = ColonyState(
            name=self.config.name,
            mission=self.config.mission,
            grid_shape=tuple(sched.grid_shape),
        )
        self.cells: Dict[Position, Cell] = {}
        self.events = EventFeed(sched.event_history)
        self.knowledge: Optional[KnowledgeBase] = None

        if persistence is None and sched.data_dir is not None:
            persistence = ColonyPersistence(sched.data_dir)
        self.persistence = persistence

        self._stop = threading.Event()
        self._lock = threading.RLock()

        if populate:
            self._populate()
            logger.info(
                "Colony '%s' created: %d cells on grid %s",
                self.state.name, len(self.cells), self.state.grid_shape,
            )

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def cycle(self) -> int:
        return self.state.cycle

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    # ── Main Loop ───────────────────────────────────────────────────────────

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Run cycles until request_stop() or `max_cycles`.

        A stop requested before run() is honored: no cycle starts. Returns
        the number of completed cycles. PersistenceFailure propagates.
        """
        completed = 0
        while not self._stop.is_set():
            if max_cycles is not None and completed >= max_cycles:
                break
            report = self.run_cycle()
            if report.aborted:
                break
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            if self._stop.wait(self.config.scheduler.cycle_delay):
                break
        return completed

    def request_stop(self) -> None:
        """Finish or abandon the in-flight batch, then stop."""
        if not self._stop.is_set():
            logger.info("Stop requested for colony '%s'", self.state.name)
        self._stop.set()

    def load_knowledge(self) -> Optional[KnowledgeBase]:
        """
        Condense the files in `scheduler.knowledge_dir` once, through the model.

        Any failure leaves the colony without a knowledge base.
        """
        directory = self.config.scheduler.knowledge_dir
        if not directory:
            return None
        files = load_knowledge_files(directory)
        if not files:
            logger.info("No knowledge files in %s", directory)
            return None

        logger.info("Condensing %d knowledge file(s) from %s", len(files), directory)
        call = ExternalCall(
            "knowledge", self.model_client.compress_knowledge, combine_documents(files),
            label="compress_knowledge",
        )
        run_calls([call], 1, self.config.scheduler.call_timeout, "eca-knowledge")
        content, _error = self._outcome(call, None, str)
        if not content:
            return None

        self.knowledge = KnowledgeBase(content, [name for name, _text in files])
        logger.info("Knowledge base ready: %d chars from %d file(s)", len(content), len(files))
        return self.knowledge

    def run_cycle(self) -> CycleReport:
        """
        One full cycle. The cycle counter and snapshot only move on commit.

        A stop requested before the commit abandons the cycle: nothing is
        applied, written or published.
        """
        started = time.monotonic()
        cycle = self.state.cycle + 1
        report = CycleReport(cycle=cycle)

        waking = sorted(
            pos for pos, cell in self.cells.items()
            if not cell.is_active
            and cell.dormant_until is not None
            and cell.dormant_until <= cycle
        )
        active = sorted(
            [pos for pos, cell in self.cells.items() if cell.is_active] + waking
        )
        report.skipped_dormant = len(self.cells) - len(active)

        deltas = self.rule.delta_field(self.field())
        context, context_fresh = self._context_for(cycle)

        staged: Dict[Position, _Staged] = {}
        for batch in self._batches(active):
            if self._stop.is_set():
                return self._abort(report, started)
            staged.update(self._run_batch(batch, cycle, context))
        if self._stop.is_set():
            return self._abort(report, started)

        with self._lock:
            events = self._commit(
                cycle, active, set(waking), deltas, staged,
                context if context_fresh else None, report, started,
            )

        logger.info(
            "Cycle %d: %d advanced, %d degraded, %d thoughts, %d plan transitions, "
            "%d compressions, %d truncations (%.2fs)",
            cycle, report.advanced, report.degraded, report.thoughts,
            report.plan_transitions, report.compressions, report.truncations,
            report.duration,
        )
        self.events.publish(events)
        return report

    # ── Read-only Access ────────────────────────────────────────────────────

    def field(self) -> np.ndarray:
        """Current DNA lattice, shape (*grid_shape, 6). Empty sites are 0."""
        field_ = self.rule.empty_field()
        for pos, cell in self.cells.items():
            field_[pos] = cell.dna.values
        return field_

    def snapshot(self) -> ColonySnapshot:
        with self._lock:
            views = tuple(
                CellView(
                    position=pos,
                    dna=tuple(cell.dna.to_list()),
                    status=cell.status.value,
                    age=cell.age,
                    memory_bytes=cell.memory.total_size,
                    thoughts=len(cell.memory),
                    plan_status=cell.active_plan.status.value if cell.active_plan else None,
                )
                for pos, cell in sorted(self.cells.items())
            )
            return ColonySnapshot(
                cycle=self.state.cycle,
                name=self.state.name,
                mission=self.state.mission,
                grid_shape=self.state.grid_shape,
                cells=views,
            )

    def get_statistics(self) -> ColonyStatistics:
        with self._lock:
            cells = list(self.cells.values())
            if cells:
                mean = np.mean([c.dna.values for c in cells], axis=0)
            else:
                mean = np.zeros(N_DIMENSIONS)
            return ColonyStatistics(
                cycle=self.state.cycle,
                total_cells=len(cells),
                active_cells=sum(1 for c in cells if c.is_active),
                dormant_cells=sum(1 for c in cells if not c.is_active),
                total_thoughts=sum(len(c.memory) for c in cells),
                compressed_thoughts=sum(
                    1 for c in cells for t in c.memory.thoughts if t.compressed
                ),
                memory_bytes=sum(c.memory.total_size for c in cells),
                active_plans=sum(1 for c in cells if c.active_plan is not None),
                successful_plans=sum(c.plans.successful_plans for c in cells),
                failed_plans=sum(c.plans.failed_plans for c in cells),
                synthesis_failures=sum(c.plans.synthesis_failures for c in cells),
                degraded_advances=self.state.degraded_advances,
                memory_degradations=sum(c.memory.degraded_count for c in cells),
                mean_dna={d.value: float(mean[d.index]) for d in dimension_order()},
            )

    def leaderboard(self, k: int = 5) -> List[Tuple[Position, int]]:
        """Top cells by thoughts generated plus successful plans."""
        with self._lock:
            scored = [
                (pos, cell.thoughts_generated + cell.plans.successful_plans)
                for pos, cell in self.cells.items()
            ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:k]

    def get_state(self) -> dict:
        return {
            "name": self.state.name,
            "cycle": self.state.cycle,
            "statistics": self.get_statistics().to_dict(),
            "cells": {str(list(pos)): cell.get_state() for pos, cell in sorted(self.cells.items())},
        }

    def witness(self) -> str:
        """Generate human-readable status display."""
        stats = self.get_statistics()
        grid = "x".join(str(n) for n in self.state.grid_shape)
        dna = "\n".join(f"  {name:<13} {value:+7.2f}" for name, value in stats.mean_dna.items())
        leaders = "\n".join(
            f"  {list(pos)}: {score}" for pos, score in self.leaderboard(3)
        ) or "  (none)"
        context = self.state.context.summary if self.state.context else "(none yet)"

        return f"""
═══════════════════════════════════════════════════════════════════
COLONY: {self.state.name}
═══════════════════════════════════════════════════════════════════

MISSION
  {self.state.mission}

CYCLE {stats.cycle} | Grid: {grid}
  Cells: {stats.active_cells} active / {stats.dormant_cells} dormant / {stats.total_cells} total
  Degraded advances: {stats.degraded_advances}

MEMORY
  Thoughts: {stats.total_thoughts} ({stats.compressed_thoughts} compressed)
  Bytes: {stats.memory_bytes} | Degradations: {stats.memory_degradations}

PLANS
  Active: {stats.active_plans} | Completed: {stats.successful_plans} | Failed: {stats.failed_plans}
  Synthesis failures: {stats.synthesis_failures}

THOUGHT DNA (mean)
{dna}

CONTEXT
  {context}

LEADERBOARD
{leaders}

═══════════════════════════════════════════════════════════════════
"""

    # ── Serialization ───────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        with self._lock:
            d = self.state.to_dict()
            d["config"] = self.config.to_dict()
            d["cells"] = [self._cell_to_dict(cell) for _pos, cell in sorted(self.cells.items())]
            return d

    @classmethod
    def from_dict(
        cls,
        d: dict,
        model_client: Optional[ExternalModelClient] = None,
        persistence: Optional[ColonyPersistence] = None,
        kernel: Optional[Kernel] = None,
        startup: Optional[ColonyConfig] = None,
    ) -> Colony:
        """
        Rebuild a colony from to_dict() output.

        With `startup`, runtime scheduler options come from it and the rest
        from the saved config (see resume_config).

        Raises:
            StateCorruptionError: If the state is structurally invalid.
        """
        try:
            config = ColonyConfig.from_dict(d["config"])
            if startup is not None:
                config, applied, ignored = resume_config(config, startup)
                if applied:
                    logger.info("Runtime options from startup config: %s", ", ".join(applied))
                if ignored:
                    logger.warning(
                        "Startup options differ from the snapshot and were ignored: %s",
                        ", ".join(ignored),
                    )
            colony = cls(config, model_client, persistence, kernel, populate=False)
            colony.state = ColonyState.from_dict(d)
            for cell_dict in d["cells"]:
                cell = colony._cell_from_dict(cell_dict)
                if not colony.rule.contains(cell.position):
                    raise ValueError(f"cell {cell.position} outside grid")
                if cell.position in colony.cells:
                    raise ValueError(f"duplicate cell {cell.position}")
                colony.cells[cell.position] = cell
        except (KeyError, TypeError, ValueError) as exc:
            raise StateCorruptionError(f"invalid colony state: {exc}") from exc
        return colony

    # ── Internal: Cycle Phases ──────────────────────────────────────────────

    def _batches(self, positions: List[Position]) -> Iterator[List[Position]]:
        size = self.config.scheduler.batch_size
        for start in range(0, len(positions), size):
            yield positions[start:start + size]

    def _run_batch(
        self,
        batch: List[Position],
        cycle: int,
        context: Optional[ContextSummary],
    ) -> Dict[Position, _Staged]:
        """Worker phase for one batch. Reads cells, never mutates them."""
        sched = self.config.scheduler
        staged = {pos: _Staged() for pos in batch}

        # Stage 1: thoughts and due plan syntheses, concurrently
        calls: List[ExternalCall] = []
        windows: Dict[Position, List[str]] = {}
        for pos in batch:
            cell = self.cells[pos]
            calls.append(ExternalCall(
                ("thought", pos),
                self.model_client.generate_thought,
                self._thought_context(cell, cycle, context),
                label="generate_thought",
            ))
            window = cell.plans.due_window(cell.memory)
            if window:
                windows[pos] = [t.id for t in window]
                calls.append(ExternalCall(
                    ("plan", pos), self.model_client.synthesize_plan, list(window),
                    label="synthesize_plan",
                ))
        run_calls(calls, sched.workers, sched.call_timeout)

        for call in calls:
            kind, pos = call.key
            if kind == "thought":
                thought, error = self._outcome(call, pos, Thought)
                if thought is not None and not thought.content:
                    thought, error = None, "ExternalCallFailure: empty thought"
                staged[pos].thought = thought
                staged[pos].thought_error = error
            else:
                draft, error = self._outcome(call, pos, PlanDraft)
                staged[pos].plan_tick = PlanTick(window_ids=windows[pos], draft=draft, error=error)

        # Stage 2: summaries for memories the new thought would overflow
        runs: Dict[Position, List[Thought]] = {}
        calls = []
        for pos in batch:
            thought = staged[pos].thought
            if thought is None:
                continue
            run = self.cells[pos].memory.select_compression_run(thought)
            if run:
                runs[pos] = run
                calls.append(ExternalCall(
                    pos, self.model_client.compress_memory, list(run),
                    label="compress_memory",
                ))
        run_calls(calls, sched.workers, sched.call_timeout)

        for call in calls:
            summary, error = self._outcome(call, call.key, Thought)
            staged[call.key].compressor = _precomputed_compressor(
                [t.id for t in runs[call.key]], summary, error,
            )
        return staged

    def _outcome(self, call: ExternalCall, position: Optional[Position], expected: type):
        """(value, None) on success, (None, error text) on any failure."""
        if call.timed_out:
            error: Exception = ExternalCallTimeout(
                f"{call.label} exceeded {self.config.scheduler.call_timeout}s"
            )
        elif isinstance(call.error, (ExternalCallError, PlanSynthesisFailure, MemoryCompressionFailure)):
            error = call.error
        elif call.error is not None:
            error = ExternalCallFailure(f"{call.label} raised {describe_error(call.error)}")
        elif isinstance(call.value, expected):
            return call.value, None
        else:
            error = ExternalCallFailure(f"{call.label} returned {type(call.value).__name__}")

        where = f" for cell {list(position)}" if position is not None else ""
        logger.warning("%s failed%s: %s", call.label, where, describe_error(error))
        return None, describe_error(error)

    def _context_for(self, cycle: int) -> Tuple[Optional[ContextSummary], bool]:
        """Context for this cycle's thought requests, and whether it is new."""
        interval = self.config.scheduler.context_interval
        if not interval or (cycle - 1) % interval != 0 or not self.cells:
            return self.state.context, False

        call = ExternalCall(
            "context", self.model_client.analyze_context, self._context_signal(cycle),
            label="analyze_context",
        )
        run_calls([call], 1, self.config.scheduler.call_timeout, "eca-context")
        summary, _error = self._outcome(call, None, ContextSummary)
        if summary is None:
            return self.state.context, False
        return summary, True

    def _commit(
        self,
        cycle: int,
        active: List[Position],
        waking: Set[Position],
        deltas: np.ndarray,
        staged: Dict[Position, _Staged],
        new_context: Optional[ContextSummary],
        report: CycleReport,
        started: float,
    ) -> List[ColonyEvent]:
        sched = self.config.scheduler
        events: List[ColonyEvent] = []
        thoughts: List[Tuple[Position, Thought]] = []
        plan_records: List[PlanRecord] = []

        for pos in active:
            cell = self.cells[pos]
            if pos in waking:
                cell.wake()
                report.woke += 1
                events.append(ColonyEvent(EventKind.CELL_WOKE, cycle, pos))

            entry = staged[pos]
            result = cell.advance(
                deltas[pos],
                external_thought=entry.thought,
                plan_tick=entry.plan_tick,
                cycle=cycle,
                compressor=entry.compressor,
                degraded=entry.degraded,
            )
            report.advanced += 1
            self._tally(result, report)
            events.extend(self._advance_events(cycle, result))
            if result.thought is not None:
                thoughts.append((pos, result.thought))
            thoughts.extend(
                (pos, event.summary) for event in result.memory_events if event.summary is not None
            )
            plan_records.extend(result.plan_records)

            if entry.degraded:
                cell.consecutive_failures += 1
                report.degraded += 1
                limit = sched.dormancy_after_failures
                if limit and cell.consecutive_failures >= limit:
                    cell.go_dormant(cycle + sched.dormancy_cycles + 1)
                    report.went_dormant += 1
                    logger.warning(
                        "Cell %s dormant until cycle %d after %d degraded cycles",
                        list(pos), cell.dormant_until, cell.consecutive_failures,
                    )
                    events.append(ColonyEvent(
                        EventKind.CELL_DORMANT, cycle, pos,
                        {"until": cell.dormant_until, "reason": entry.thought_error},
                    ))
            else:
                cell.consecutive_failures = 0

        self._grow(cycle, events, report)

        self.state.cycle = cycle
        self.state.last_degraded = report.degraded
        self.state.degraded_advances += report.degraded
        if new_context is not None:
            self.state.context = new_context
            self.state.context_cycle = cycle
            report.context_updated = True

        if self.persistence is not None:
            try:
                for pos, thought in thoughts:
                    self.persistence.write_thought_record(cycle, pos, thought)
                for record in plan_records:
                    self.persistence.write_plan_record(cycle, record)
                if plan_records:
                    self.persistence.write_analysis_record(
                        cycle, self._plan_analysis(cycle, plan_records),
                    )
                self.persistence.save(self.to_dict())
            except PersistenceFailure:
                logger.exception("Persistence failed at cycle %d; halting", cycle)
                raise
            report.saved = True

        report.duration = time.monotonic() - started
        events.append(ColonyEvent(EventKind.CYCLE_COMPLETED, cycle, data=report.to_dict()))
        return events

    def _abort(self, report: CycleReport, started: float) -> CycleReport:
        report.aborted = True
        report.duration = time.monotonic() - started
        logger.info("Cycle %d abandoned: stop requested", report.cycle)
        return report

    def _grow(self, cycle: int, events: List[ColonyEvent], report: CycleReport) -> None:
        sched = self.config.scheduler
        if not sched.growth_enabled or sched.max_new_cells_per_cycle <= 0:
            return

        spawned = 0
        for pos in sorted(self.cells):
            if spawned >= sched.max_new_cells_per_cycle:
                break
            parent = self.cells[pos]
            if not parent.is_active or parent.dna.mean < sched.growth_threshold:
                continue
            site = next(
                (s for s in self.rule.neighbor_positions(pos) if s not in self.cells),
                None,
            )
            if site is None:
                continue
            child_dna = ThoughtDNA(parent.dna.values * sched.growth_inheritance)
            self.cells[site] = self._new_cell(site, child_dna)
            spawned += 1
            logger.info("Cell %s spawned %s", list(pos), list(site))
            events.append(ColonyEvent(
                EventKind.CELL_SPAWNED, cycle, site, {"parent": list(pos)},
            ))

        report.spawned = spawned
        self.state.cells_spawned += spawned

    # ── Internal: Helpers ───────────────────────────────────────────────────

    def _populate(self) -> None:
        sched = self.config.scheduler
        rng = np.random.default_rng(sched.seed)
        sites = list(itertools.product(*(range(n) for n in sched.grid_shape)))
        if sched.fill_fraction < 1.0:
            count = max(1, int(round(len(sites) * sched.fill_fraction)))
            chosen = rng.choice(len(sites), size=count, replace=False)
            sites = sorted(sites[i] for i in chosen)

        for site in sites:
            dna = ThoughtDNA(rng.normal(0.0, sched.initial_spread, N_DIMENSIONS))
            self.cells[site] = self._new_cell(site, dna)

    def _new_cell(self, position: Position, dna: ThoughtDNA) -> Cell:
        return Cell(
            position,
            dna=dna,
            memory_config=self.config.memory,
            plan_config=self.config.plans,
            thought_gain=self.config.scheduler.thought_gain,
        )

    def _thought_context(
        self,
        cell: Cell,
        cycle: int,
        context: Optional[ContextSummary],
    ) -> ThoughtContext:
        plan = cell.active_plan
        steps = []
        if plan is not None:
            steps = [
                f"[{s.dimension.value}] {s.description}" + (" (done)" if s.completed else "")
                for s in plan.steps
            ]
        return ThoughtContext(
            mission=self.state.mission,
            cycle=cycle,
            position=cell.position,
            dna=cell.dna.to_dict(),
            colony_name=self.state.name,
            current_focus=plan.summary if plan is not None and plan.summary else DEFAULT_FOCUS,
            recent_thoughts=[t.content for t in cell.memory.newest(self.config.scheduler.recent_thoughts)],
            plan_steps=steps,
            context_summary=context.summary if context else None,
            context_focus=context.focus if context else None,
            context_topics=list(context.topics) if context else [],
            knowledge=self.knowledge.content if self.knowledge else None,
        )

    def _context_signal(self, cycle: int) -> ContextSignal:
        cells = [self.cells[pos] for pos in sorted(self.cells)]
        mean = np.mean([c.dna.values for c in cells], axis=0)
        recent = []
        for cell in cells:
            newest = cell.memory.newest(1)
            if newest:
                recent.append(newest[0].content)
            if len(recent) >= 10:
                break
        return ContextSignal(
            mission=self.state.mission,
            cycle=cycle,
            cell_count=len(cells),
            mean_dna={d.value: float(mean[d.index]) for d in dimension_order()},
            recent_thoughts=recent,
            degraded_last_cycle=self.state.last_degraded,
        )

    @staticmethod
    def _tally(result: AdvanceResult, report: CycleReport) -> None:
        if result.thought is not None:
            report.thoughts += 1
        for event in result.memory_events:
            if event.kind == "compressed":
                report.compressions += 1
            elif event.kind == "degraded":
                report.truncations += 1
        report.plan_transitions += len(result.transitions)
        for transition in result.transitions:
            if transition.to_status is PlanStatus.COMPLETED:
                report.plans_completed += 1
            elif transition.to_status is PlanStatus.FAILED:
                report.plans_failed += 1

    @staticmethod
    def _advance_events(cycle: int, result: AdvanceResult) -> List[ColonyEvent]:
        pos = result.position
        events = [ColonyEvent(
            EventKind.CELL_UPDATED, cycle, pos,
            {"dna": result.dna.to_dict(), "degraded": result.degraded},
        )]
        if result.thought is not None:
            events.append(ColonyEvent(
                EventKind.THOUGHT_CREATED, cycle, pos,
                {
                    "thought_id": result.thought.id,
                    "relevance": result.thought.relevance,
                    "content": result.thought.content[:200],
                },
            ))
        for transition in result.transitions:
            events.append(ColonyEvent(
                EventKind.PLAN_TRANSITIONED, cycle, pos,
                {
                    "plan_id": transition.plan_id,
                    "from": transition.from_status.value if transition.from_status else None,
                    "to": transition.to_status.value if transition.to_status else None,
                    "reason": transition.reason,
                },
            ))
        for event in result.memory_events:
            if event.kind == "degraded":
                events.append(ColonyEvent(
                    EventKind.MEMORY_DEGRADED, cycle, pos,
                    {
                        "thought_ids": list(event.thought_ids),
                        "bytes_freed": event.bytes_freed,
                        "detail": event.detail,
                    },
                ))
        return events

    @staticmethod
    def _plan_analysis(cycle: int, records: List[PlanRecord]) -> dict:
        successful = [r for r in records if r.status == PlanStatus.COMPLETED.value]
        best = max(records, key=lambda r: (r.metric, r.plan_id))
        return {
            "cycle": cycle,
            "timestamp": now_iso(),
            "total_plans": len(records),
            "successful": len(successful),
            "failed": len(records) - len(successful),
            "average_metric": float(np.mean([r.metric for r in records])),
            "best_plan": {
                "plan_id": best.plan_id,
                "position": list(best.position),
                "status": best.status,
                "metric": best.metric,
                "summary": best.summary,
            },
        }

    @staticmethod
    def _cell_to_dict(cell: Cell) -> dict:
        return {
            "position": list(cell.position),
            "dna": cell.dna.to_list(),
            "status": cell.status.value,
            "age": cell.age,
            "consecutive_failures": cell.consecutive_failures,
            "dormant_until": cell.dormant_until,
            "thoughts_generated": cell.thoughts_generated,
            "memory": cell.memory.to_list(),
            "memory_counters": {
                "degraded": cell.memory.degraded_count,
                "compressions": cell.memory.compression_count,
            },
            "plans": cell.plans.to_dict(),
        }

    def _cell_from_dict(self, d: dict) -> Cell:
        cell = self._new_cell(tuple(d["position"]), ThoughtDNA.from_list(d["dna"]))
        cell.status = CellStatus(d["status"])
        cell.age = d["age"]
        cell.consecutive_failures = d.get("consecutive_failures", 0)
        cell.dormant_until = d.get("dormant_until")
        cell.thoughts_generated = d.get("thoughts_generated", 0)
        cell.memory.restore(d["memory"])
        counters = d.get("memory_counters", {})
        cell.memory.degraded_count = counters.get("degraded", 0)
        cell.memory.compression_count = counters.get("compressions", 0)
        cell.plans.restore(d["plans"])
        return cell

    def __repr__(self) -> str:
        return f"Colony({self.state.name!r}, cycle={self.state.cycle}, cells={len(self.cells)})"


# ── Factory ──────────────────────────────────────────────────────────────────


def create_colony(
    config: Optional[ColonyConfig] = None,
    model_client: Optional[ExternalModelClient] = None,
    persistence: Optional[ColonyPersistence] = None,
    resume: bool = True,
) -> Colony:
    """
    Create a colony, or reload it from its snapshot when one exists, then
    load its knowledge base.

    A reloaded colony keeps the grid, rules and population settings it was
    saved with; runtime scheduler options come from `config`.
    """
    config = config or ColonyConfig()
    if persistence is None and config.scheduler.data_dir is not None:
        persistence = ColonyPersistence(config.scheduler.data_dir)

    if resume and persistence is not None and persistence.exists():
        colony = Colony.from_dict(persistence.load(), model_client, persistence, startup=config)
        logger.info(
            "Resumed colony '%s' at cycle %d (%d cells)",
            colony.name, colony.cycle, len(colony.cells),
        )
    else:
        colony = Colony(config, model_client, persistence)

    colony.load_knowledge()
    return colony
