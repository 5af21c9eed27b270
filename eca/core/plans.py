# ═══════════════════════════════════════════════════════════════════════════════
# PART 4: PLAN ENGINE
# Design: H3 (Enactivism) + A5 (Continual Learning)
# Implementation: I3 (State Management)
# ═══════════════════════════════════════════════════════════════════════════════

"""
H3: "Thoughts accumulate; eventually they have to become action. A plan is a
claim about where the cell's DNA will move. We hold it to that."

A5: "Every step names a dimension. Progress is observable: did that dimension
actually rise? Run out of cycles first and the plan failed, with a small
bruise to resilience and coherence. No rollback, just consequences."

I3: "Strict state machine. Proposed never jumps to Completed."
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from eca.core.memory import MemoryStore, Thought, make_thought_id, now_iso
from eca.core.thought_dna import N_DIMENSIONS, Dimension, ThoughtDNA, dimension_order

logger = logging.getLogger(__name__)


class PlanSynthesisFailure(Exception):
    """Plan synthesis produced nothing usable."""
    pass


class InvalidPlanTransition(ValueError):
    """Transition not allowed by the plan state machine."""
    pass


class PlanStatus(Enum):
    """Plan lifecycle states."""
    PROPOSED = "proposed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.FAILED)


_ALLOWED_TRANSITIONS: Dict[PlanStatus, Set[PlanStatus]] = {
    PlanStatus.PROPOSED: {PlanStatus.IN_PROGRESS},
    PlanStatus.IN_PROGRESS: {PlanStatus.COMPLETED, PlanStatus.FAILED},
    PlanStatus.COMPLETED: set(),
    PlanStatus.FAILED: set(),
}

# Substrings that tie a step's text to a dimension
_DIMENSION_KEYWORDS: List[Tuple[str, Dimension]] = [
    ("emerg", Dimension.EMERGENCE),
    ("coheren", Dimension.COHERENCE),
    ("resilien", Dimension.RESILIENCE),
    ("intellig", Dimension.INTELLIGENCE),
    ("efficien", Dimension.EFFICIENCY),
    ("integrat", Dimension.INTEGRATION),
]


def infer_dimension(text: str) -> Optional[Dimension]:
    lowered = text.lower()
    for keyword, dimension in _DIMENSION_KEYWORDS:
        if keyword in lowered:
            return dimension
    return None


# ── Data Classes ──────────────────────────────────────────────────────────────


@dataclass
class StepDraft:
    description: str
    dimension: Optional[Dimension] = None


@dataclass
class PlanDraft:
    """What the model returned for a synthesis request."""
    summary: str
    steps: List[StepDraft] = field(default_factory=list)


@dataclass
class PlanTick:
    """
    Synthesis outcome handed to the engine for one tick.

    window_ids empty means no synthesis was requested this tick.
    """
    window_ids: List[str] = field(default_factory=list)
    draft: Optional[PlanDraft] = None
    error: Optional[str] = None

    @property
    def requested(self) -> bool:
        return bool(self.window_ids)

    @classmethod
    def idle(cls) -> PlanTick:
        return cls()


@dataclass
class PlanStep:
    description: str
    dimension: Dimension
    completed: bool = False
    completed_cycle: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "dimension": self.dimension.value,
            "completed": self.completed,
            "completed_cycle": self.completed_cycle,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PlanStep:
        return cls(
            description=d["description"],
            dimension=Dimension(d["dimension"]),
            completed=d.get("completed", False),
            completed_cycle=d.get("completed_cycle"),
        )


@dataclass
class Plan:
    """A multi-step action derived from a window of thoughts."""
    id: str
    cycle_created: int
    thought_ids: List[str]
    status: PlanStatus = PlanStatus.PROPOSED
    summary: str = ""
    steps: List[PlanStep] = field(default_factory=list)
    success_metric: float = 0.0
    started_cycle: Optional[int] = None
    ended_cycle: Optional[int] = None
    baseline: Optional[List[float]] = None
    history: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def target_dimensions(self) -> List[Dimension]:
        seen: List[Dimension] = []
        for step in self.steps:
            if step.dimension not in seen:
                seen.append(step.dimension)
        return seen

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.completed)

    def transition(self, new_status: PlanStatus, cycle: int) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidPlanTransition(
                f"plan {self.id}: {self.status.value} -> {new_status.value} not allowed"
            )
        self.status = new_status
        self.history.append((new_status.value, cycle))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cycle_created": self.cycle_created,
            "thought_ids": list(self.thought_ids),
            "status": self.status.value,
            "summary": self.summary,
            "steps": [s.to_dict() for s in self.steps],
            "success_metric": self.success_metric,
            "started_cycle": self.started_cycle,
            "ended_cycle": self.ended_cycle,
            "baseline": list(self.baseline) if self.baseline is not None else None,
            "history": [list(h) for h in self.history],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Plan:
        return cls(
            id=d["id"],
            cycle_created=d["cycle_created"],
            thought_ids=list(d["thought_ids"]),
            status=PlanStatus(d["status"]),
            summary=d.get("summary", ""),
            steps=[PlanStep.from_dict(s) for s in d.get("steps", [])],
            success_metric=d.get("success_metric", 0.0),
            started_cycle=d.get("started_cycle"),
            ended_cycle=d.get("ended_cycle"),
            baseline=d.get("baseline"),
            history=[tuple(h) for h in d.get("history", [])],
        )


@dataclass
class PlanTransition:
    """One state change. None on either side means "no plan"."""
    plan_id: str
    from_status: Optional[PlanStatus]
    to_status: Optional[PlanStatus]
    cycle: int
    reason: str = ""


@dataclass
class PlanRecord:
    """Immutable analysis record written on every terminal transition."""
    plan_id: str
    position: List[int]
    status: str
    metric: float
    thought_ids: List[str]
    cycle_start: int
    cycle_end: int
    summary: str
    steps: List[dict]
    created_at: str

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "position": list(self.position),
            "status": self.status,
            "metric": self.metric,
            "thought_ids": list(self.thought_ids),
            "cycle_start": self.cycle_start,
            "cycle_end": self.cycle_end,
            "summary": self.summary,
            "steps": list(self.steps),
            "created_at": self.created_at,
        }


# ── Configuration ─────────────────────────────────────────────────────────────


@dataclass
class PlanConfig:
    """Plan synthesis and evaluation parameters."""
    window_min: int = 5               # Un-planned thoughts needed to synthesize
    window_max: int = 42              # Thoughts handed to synthesis at most
    step_threshold: float = 5.0       # DNA gain that completes a step
    max_plan_cycles: int = 20         # Cycles in progress before failure
    completion_reward: float = 10.0   # Scaled by the success metric
    failure_penalty: float = 3.0      # Applied to Resilience and Coherence


# ── Plan Engine ──────────────────────────────────────────────────────────────


class PlanEngine:
    """
    Per-cell plan state machine: None -> Proposed -> InProgress -> {Completed, Failed}.

    The engine never calls the model. The scheduler asks due_window() what
    to synthesize, makes the call, and hands the outcome back in a PlanTick.
    """

    def __init__(self, config: Optional[PlanConfig] = None) -> None:
        self.config = config or PlanConfig()
        self.active_plan: Optional[Plan] = None
        self.considered_ids: Set[str] = set()

        self.successful_plans: int = 0
        self.failed_plans: int = 0
        self.synthesis_failures: int = 0

    # ── Public Methods ──────────────────────────────────────────────────────

    def unplanned(self, memory: MemoryStore) -> List[Thought]:
        """Non-summary thoughts not yet used by (or rejected for) a plan, newest first."""
        return [
            t for t in memory.thoughts
            if not t.compressed and t.id not in self.considered_ids
        ]

    def due_window(self, memory: MemoryStore) -> List[Thought]:
        """Window to synthesize now, newest first. Empty when nothing is due."""
        if self.active_plan is not None:
            return []
        candidates = self.unplanned(memory)
        if len(candidates) < self.config.window_min:
            return []

        ranked = sorted(
            enumerate(candidates), key=lambda pair: (-pair[1].relevance, pair[0])
        )[: self.config.window_max]
        return [t for _recency, t in sorted(ranked, key=lambda pair: pair[0])]

    def tick(
        self,
        dna: ThoughtDNA,
        memory: MemoryStore,
        plan_tick: PlanTick,
        cycle: int,
        position: Sequence[int] = (),
    ) -> Tuple[List[PlanTransition], List[PlanRecord]]:
        """Advance the state machine one step. Mutates `dna` on terminal feedback."""
        transitions: List[PlanTransition] = []
        records: List[PlanRecord] = []

        live_ids = set(memory.ids())
        self.considered_ids &= live_ids

        if self.active_plan is None:
            if plan_tick.requested:
                transitions.extend(self._start_plan(dna, plan_tick, cycle, position))
            return transitions, records

        plan = self.active_plan
        if plan.status is PlanStatus.IN_PROGRESS:
            outcome = self._evaluate(plan, dna, cycle)
            if outcome is not None:
                transitions.append(PlanTransition(
                    plan.id, PlanStatus.IN_PROGRESS, outcome, cycle,
                    reason=f"metric={plan.success_metric:.3f}",
                ))
                records.append(self._record(plan, position))
                self.active_plan = None

        return transitions, records

    def get_state(self) -> dict:
        plan = self.active_plan
        return {
            "active_plan": plan.id if plan else None,
            "status": plan.status.value if plan else None,
            "considered": len(self.considered_ids),
            "successful_plans": self.successful_plans,
            "failed_plans": self.failed_plans,
            "synthesis_failures": self.synthesis_failures,
        }

    # ── Internal ────────────────────────────────────────────────────────────

    def _start_plan(
        self,
        dna: ThoughtDNA,
        plan_tick: PlanTick,
        cycle: int,
        position: Sequence[int],
    ) -> List[PlanTransition]:
        window_ids = list(plan_tick.window_ids)
        plan = Plan(
            id=make_thought_id("plan", tuple(position), cycle, *window_ids),
            cycle_created=cycle,
            thought_ids=window_ids,
        )
        plan.history.append((PlanStatus.PROPOSED.value, cycle))
        transitions = [PlanTransition(plan.id, None, PlanStatus.PROPOSED, cycle)]

        # Considered either way, so a rejected window isn't re-synthesized
        self.considered_ids.update(window_ids)

        draft = plan_tick.draft
        if plan_tick.error is not None or draft is None or not draft.steps:
            reason = plan_tick.error or "empty plan"
            self.synthesis_failures += 1
            logger.warning("Plan synthesis failed at %s: %s", tuple(position), reason)
            transitions.append(PlanTransition(
                plan.id, PlanStatus.PROPOSED, None, cycle, reason=reason,
            ))
            return transitions

        order = dimension_order()
        plan.summary = draft.summary
        plan.steps = [
            PlanStep(
                description=step.description,
                dimension=(
                    step.dimension
                    or infer_dimension(step.description)
                    or order[i % N_DIMENSIONS]
                ),
            )
            for i, step in enumerate(draft.steps)
        ]
        plan.transition(PlanStatus.IN_PROGRESS, cycle)
        plan.started_cycle = cycle
        plan.baseline = dna.to_list()
        transitions.append(PlanTransition(
            plan.id, PlanStatus.PROPOSED, PlanStatus.IN_PROGRESS, cycle,
            reason=f"{len(plan.steps)} steps",
        ))
        self.active_plan = plan
        return transitions

    def _evaluate(self, plan: Plan, dna: ThoughtDNA, cycle: int) -> Optional[PlanStatus]:
        cfg = self.config
        baseline = np.asarray(plan.baseline, dtype=float)
        gains = dna.values - baseline

        for step in plan.steps:
            if not step.completed and gains[step.dimension.index] >= cfg.step_threshold:
                step.completed = True
                step.completed_cycle = cycle

        if plan.steps and all(s.completed for s in plan.steps):
            targets = [d.index for d in plan.target_dimensions]
            normalized = np.clip(gains[targets] / (2 * cfg.step_threshold), 0.0, 1.0)
            plan.success_metric = float(np.mean(normalized))
            plan.transition(PlanStatus.COMPLETED, cycle)
            plan.ended_cycle = cycle
            self.successful_plans += 1
            dna.apply_inplace(self._reward(plan))
            return PlanStatus.COMPLETED

        if cycle - plan.started_cycle >= cfg.max_plan_cycles:
            plan.success_metric = plan.completed_steps / len(plan.steps)
            plan.transition(PlanStatus.FAILED, cycle)
            plan.ended_cycle = cycle
            self.failed_plans += 1
            dna.nudge(Dimension.RESILIENCE, -cfg.failure_penalty)
            dna.nudge(Dimension.COHERENCE, -cfg.failure_penalty)
            return PlanStatus.FAILED

        return None

    def _reward(self, plan: Plan) -> np.ndarray:
        """Completion reward split across target dimensions by step count."""
        delta = np.zeros(N_DIMENSIONS)
        total = self.config.completion_reward * plan.success_metric
        for step in plan.steps:
            delta[step.dimension.index] += total / len(plan.steps)
        return delta

    def _record(self, plan: Plan, position: Sequence[int]) -> PlanRecord:
        return PlanRecord(
            plan_id=plan.id,
            position=[int(p) for p in position],
            status=plan.status.value,
            metric=plan.success_metric,
            thought_ids=list(plan.thought_ids),
            cycle_start=plan.cycle_created,
            cycle_end=plan.ended_cycle if plan.ended_cycle is not None else plan.cycle_created,
            summary=plan.summary,
            steps=[s.to_dict() for s in plan.steps],
            created_at=now_iso(),
        )

    # ── Serialization ───────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "active_plan": self.active_plan.to_dict() if self.active_plan else None,
            "considered_ids": sorted(self.considered_ids),
            "successful_plans": self.successful_plans,
            "failed_plans": self.failed_plans,
            "synthesis_failures": self.synthesis_failures,
        }

    def restore(self, d: dict) -> None:
        plan = d.get("active_plan")
        self.active_plan = Plan.from_dict(plan) if plan else None
        self.considered_ids = set(d.get("considered_ids", []))
        self.successful_plans = d.get("successful_plans", 0)
        self.failed_plans = d.get("failed_plans", 0)
        self.synthesis_failures = d.get("synthesis_failures", 0)
