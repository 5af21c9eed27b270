# ═══════════════════════════════════════════════════════════════════════════════
# PART 5: CELL
# Design: A2 (Artificial Life) | Implementation: I1 (Systems Architect)
# ═══════════════════════════════════════════════════════════════════════════════

"""
I1: "A cell owns its DNA, its memory and its plan. It knows its position but
nothing about its neighbors; the colony hands it a precomputed delta. One
operation per cycle: advance. No I/O in here, ever."
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from eca.core.memory import MemoryConfig, MemoryEvent, MemoryStore, Thought, Compressor
from eca.core.plans import PlanConfig, PlanEngine, PlanRecord, PlanTick, PlanTransition
from eca.core.thought_dna import N_DIMENSIONS, ThoughtDNA

Position = Tuple[int, ...]

# How a thought's relevance (0-1, centered on 0.5) leans each dimension.
# Order: emergence, coherence, resilience, intelligence, efficiency, integration
RELEVANCE_WEIGHTS = np.array([1.0, 0.5, 0.25, 1.0, 0.25, 0.5])


class CellStatus(Enum):
    ACTIVE = "active"
    DORMANT = "dormant"


@dataclass
class AdvanceResult:
    """What one advance() produced."""
    position: Position
    dna: ThoughtDNA
    thought: Optional[Thought] = None
    memory_events: List[MemoryEvent] = field(default_factory=list)
    transitions: List[PlanTransition] = field(default_factory=list)
    plan_records: List[PlanRecord] = field(default_factory=list)
    degraded: bool = False


class Cell:
    """
    One lattice site's autonomous state.

    Created by the colony, advanced by the colony, never referenced by
    another cell.
    """

    def __init__(
        self,
        position: Position,
        dna: Optional[ThoughtDNA] = None,
        memory_config: Optional[MemoryConfig] = None,
        plan_config: Optional[PlanConfig] = None,
        thought_gain: float = 4.0,
    ) -> None:
        self.position: Position = tuple(int(p) for p in position)
        self.dna = dna.copy() if dna is not None else ThoughtDNA()
        self.memory = MemoryStore(memory_config)
        self.plans = PlanEngine(plan_config)
        self.thought_gain = thought_gain

        self.age: int = 0
        self.status = CellStatus.ACTIVE
        self.consecutive_failures: int = 0
        self.dormant_until: Optional[int] = None
        self.thoughts_generated: int = 0

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.status is CellStatus.ACTIVE

    @property
    def active_plan(self):
        return self.plans.active_plan

    # ── Public Methods ──────────────────────────────────────────────────────

    def advance(
        self,
        interaction_delta: np.ndarray,
        external_thought: Optional[Thought] = None,
        plan_tick: Optional[PlanTick] = None,
        cycle: int = 0,
        compressor: Optional[Compressor] = None,
        degraded: bool = False,
    ) -> AdvanceResult:
        """
        Single per-cycle update.

        1. Merge the neighbor delta into DNA (clamped)
        2. Store the external thought and fold its relevance into DNA
        3. Tick the plan engine
        """
        delta = np.asarray(interaction_delta, dtype=float)
        if delta.shape != (N_DIMENSIONS,):
            raise ValueError(f"interaction delta must have {N_DIMENSIONS} values")
        self.dna.apply_inplace(delta)

        memory_events: List[MemoryEvent] = []
        if external_thought is not None:
            memory_events = self.memory.add(external_thought, compressor=compressor)
            # As stored; an oversized thought comes back trimmed
            external_thought = self.memory.newest(1)[0]
            self.dna.apply_inplace(self.relevance_delta(external_thought.relevance))
            self.thoughts_generated += 1

        transitions, records = self.plans.tick(
            self.dna,
            self.memory,
            plan_tick or PlanTick.idle(),
            cycle,
            self.position,
        )

        self.age += 1
        return AdvanceResult(
            position=self.position,
            dna=self.dna.copy(),
            thought=external_thought,
            memory_events=memory_events,
            transitions=transitions,
            plan_records=records,
            degraded=degraded,
        )

    def relevance_delta(self, relevance: float) -> np.ndarray:
        r = float(np.clip(relevance, 0.0, 1.0))
        return (r - 0.5) * self.thought_gain * RELEVANCE_WEIGHTS

    def go_dormant(self, until_cycle: int) -> None:
        self.status = CellStatus.DORMANT
        self.dormant_until = until_cycle

    def wake(self) -> None:
        self.status = CellStatus.ACTIVE
        self.dormant_until = None
        self.consecutive_failures = 0

    def get_state(self) -> dict:
        plan = self.plans.active_plan
        return {
            "position": list(self.position),
            "dna": self.dna.to_dict(),
            "status": self.status.value,
            "age": self.age,
            "memory": self.memory.get_state(),
            "plan": plan.status.value if plan else None,
            "thoughts_generated": self.thoughts_generated,
        }

    def __repr__(self) -> str:
        return f"Cell({self.position}, {self.status.value}, age={self.age})"
