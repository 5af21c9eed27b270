"""Tests for Cell.advance."""

import numpy as np
import pytest

from eca.core.cell import RELEVANCE_WEIGHTS, Cell, CellStatus
from eca.core.memory import MemoryConfig, Thought
from eca.core.plans import PlanConfig, PlanDraft, PlanStatus, PlanTick, StepDraft
from eca.core.thought_dna import Dimension, ThoughtDNA


def _thought(cid: str, relevance: float = 0.5, size: int = 10, cycle: int = 1) -> Thought:
    return Thought(
        id=cid, content="z" * size, cycle=cycle,
        relevance=relevance, created_at="2026-01-01T00:00:00",
    )


def test_zero_delta_no_thought_leaves_dna():
    """No push and no thought: DNA is unchanged, age still advances."""
    cell = Cell((1, 1))
    result = cell.advance(np.zeros(6), cycle=1)
    assert cell.dna == ThoughtDNA()
    assert result.thought is None
    assert cell.age == 1


def test_delta_is_clamped():
    """The interaction delta goes through the clamp."""
    cell = Cell((0, 0), dna=ThoughtDNA.uniform(95.0))
    cell.advance(np.full(6, 20.0), cycle=1)
    assert cell.dna.to_list() == [100.0] * 6


def test_relevance_folds_into_dna():
    """A relevant thought leans DNA by the fixed weights."""
    cell = Cell((0, 0), thought_gain=4.0)
    cell.advance(np.zeros(6), external_thought=_thought("a", relevance=1.0), cycle=1)
    expected = 0.5 * 4.0 * RELEVANCE_WEIGHTS
    assert np.allclose(cell.dna.values, expected)
    assert len(cell.memory) == 1
    assert cell.thoughts_generated == 1


def test_neutral_relevance_is_neutral():
    """Relevance 0.5 does not move DNA."""
    cell = Cell((0, 0))
    cell.advance(np.zeros(6), external_thought=_thought("a", relevance=0.5), cycle=1)
    assert cell.dna == ThoughtDNA()


def test_advance_returns_stored_thought():
    """An oversized thought is reported as stored, trimmed."""
    cell = Cell((0, 0), memory_config=MemoryConfig(max_bytes=8))
    result = cell.advance(np.zeros(6), external_thought=_thought("big", size=20), cycle=1)
    assert result.thought.size == 8
    assert result.memory_events[0].kind == "trimmed"


def test_advance_ticks_plan_engine():
    """A plan tick handed to advance reaches the engine."""
    cell = Cell((2, 3), plan_config=PlanConfig(window_min=2))
    for n in range(2):
        cell.advance(np.zeros(6), external_thought=_thought(f"t{n}"), cycle=n)

    window = [t.id for t in cell.plans.due_window(cell.memory)]
    draft = PlanDraft("go", [StepDraft("s", Dimension.EMERGENCE)])
    result = cell.advance(
        np.zeros(6), plan_tick=PlanTick(window_ids=window, draft=draft), cycle=3,
    )
    assert [t.to_status for t in result.transitions] == [
        PlanStatus.PROPOSED, PlanStatus.IN_PROGRESS,
    ]
    assert cell.active_plan is not None


def test_result_dna_is_a_copy():
    """Mutating the cell later does not change a returned result."""
    cell = Cell((0, 0))
    result = cell.advance(np.ones(6), cycle=1)
    cell.advance(np.ones(6), cycle=2)
    assert result.dna.to_list() == [1.0] * 6


def test_bad_delta_shape_rejected():
    """The delta must be one value per dimension."""
    cell = Cell((0, 0))
    with pytest.raises(ValueError):
        cell.advance(np.zeros(3))


def test_dormancy_flags():
    """go_dormant / wake flip status and reset failures."""
    cell = Cell((0, 0))
    cell.consecutive_failures = 3
    cell.go_dormant(10)
    assert cell.status is CellStatus.DORMANT
    assert not cell.is_active
    cell.wake()
    assert cell.is_active
    assert cell.consecutive_failures == 0
    assert cell.dormant_until is None


def test_get_state():
    """Status dict carries position and memory stats."""
    cell = Cell((4, 5))
    state = cell.get_state()
    assert state["position"] == [4, 5]
    assert state["status"] == "active"
    assert state["memory"]["thoughts"] == 0
