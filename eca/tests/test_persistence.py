"""Tests for colony snapshots and records."""

import json
import os
import shutil
import tempfile

import pytest

from eca.core.colony import Colony, create_colony
from eca.core.config import ColonyConfig, SchedulerConfig
from eca.core.llm_clients import MockLLMClient
from eca.core.memory import Thought
from eca.core.model_client import LLMModelClient
from eca.core.persistence import (
    ColonyPersistence,
    ContinuityError,
    PersistenceFailure,
    StateCorruptionError,
    state_hash,
)
from eca.core.plans import PlanRecord


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def _config(data_dir, **scheduler):
    fields = dict(grid_shape=(3, 3), data_dir=data_dir, cycle_delay=0.0, seed=3, context_interval=2)
    fields.update(scheduler)
    return ColonyConfig(name="persisted", mission="remember", scheduler=SchedulerConfig(**fields))


def _client():
    return LLMModelClient(MockLLMClient())


def _thought(tid="t1"):
    return Thought(id=tid, content="hello", cycle=1, relevance=0.5, created_at="2026-01-01T00:00:00")


# ── Snapshot ────────────────────────────────────────────────────────────────


def test_save_and_load(tmp_dir):
    """A saved state loads back unchanged."""
    persistence = ColonyPersistence(tmp_dir)
    state = {"cycle": 4, "name": "x", "values": [1.5, 2.5]}
    result = persistence.save(state)

    assert result.verified
    assert result.cycle == 4
    assert result.state_hash == state_hash(state)
    assert persistence.load() == state
    assert not any(name.endswith(".tmp") for name in os.listdir(tmp_dir))


def test_load_missing_snapshot(tmp_dir):
    """No snapshot is FileNotFoundError, not corruption."""
    with pytest.raises(FileNotFoundError):
        ColonyPersistence(tmp_dir).load()


def test_tampered_snapshot_fails_continuity(tmp_dir):
    """Editing the state without its hash is detected."""
    persistence = ColonyPersistence(tmp_dir)
    persistence.save({"cycle": 2, "name": "x"})

    with open(persistence.snapshot_path) as f:
        envelope = json.load(f)
    envelope["state"]["name"] = "y"
    with open(persistence.snapshot_path, "w") as f:
        json.dump(envelope, f)

    with pytest.raises(ContinuityError):
        persistence.load()
    result = persistence.verify_file()
    assert not result.valid
    assert "mismatch" in result.error


def test_garbage_snapshot_is_corruption(tmp_dir):
    """Non-JSON or wrong-version snapshots raise StateCorruptionError."""
    persistence = ColonyPersistence(tmp_dir)
    persistence.snapshot_path.write_text("{broken")
    with pytest.raises(StateCorruptionError):
        persistence.load()
    assert not persistence.verify_file().valid

    persistence.snapshot_path.write_text(json.dumps({"version": "9.0", "state": {}}))
    with pytest.raises(StateCorruptionError):
        persistence.load()


def test_undecodable_snapshot_is_corruption(tmp_dir):
    """A snapshot that isn't UTF-8 raises StateCorruptionError."""
    persistence = ColonyPersistence(tmp_dir)
    persistence.save({"cycle": 1})
    persistence.snapshot_path.write_bytes(b'{"state": "\xff\xfe"}')
    with pytest.raises(StateCorruptionError):
        persistence.load()
    assert not persistence.verify_file().valid


def test_failed_save_keeps_previous_snapshot(tmp_dir):
    """An unserializable state leaves the old snapshot in place."""
    persistence = ColonyPersistence(tmp_dir)
    persistence.save({"cycle": 1})
    with pytest.raises(PersistenceFailure):
        persistence.save({"cycle": 2, "bad": object()})
    assert persistence.load() == {"cycle": 1}
    assert not any(name.endswith(".tmp") for name in os.listdir(tmp_dir))


# ── Records ─────────────────────────────────────────────────────────────────


def test_thought_record_is_exclusive(tmp_dir):
    """A second write of the same record keeps the first."""
    persistence = ColonyPersistence(tmp_dir)
    path = persistence.write_thought_record(1, (0, 2), _thought())
    persistence.write_thought_record(1, (0, 2), Thought(
        id="t1", content="changed", cycle=1, relevance=0.9, created_at="2026-01-01T00:00:01",
    ))

    record = persistence.read_record(path)
    assert record["content"] == "hello"
    assert record["position"] == [0, 2]
    assert persistence.list_thought_records(1) == [path]
    assert persistence.list_thought_records(2) == []


def test_plan_and_analysis_records(tmp_dir):
    """Plan and analysis records land under their own directories."""
    persistence = ColonyPersistence(tmp_dir)
    record = PlanRecord(
        plan_id="p1", position=[1, 1], status="completed", metric=0.8,
        thought_ids=["t1"], cycle_start=3, cycle_end=9, summary="done",
        steps=[], created_at="2026-01-01T00:00:00",
    )
    persistence.write_plan_record(9, record)
    persistence.write_analysis_record(9, {"cycle": 9, "total_plans": 1})
    persistence.write_analysis_record(10, {"cycle": 10, "total_plans": 0})

    assert len(persistence.list_plan_records(9)) == 1
    assert persistence.read_record(persistence.list_plan_records()[0])["plan_id"] == "p1"
    assert [p.name for p in persistence.list_analysis_records()] == [
        "analysis_9.json", "analysis_10.json",
    ]


# ── Colony Round Trip ──────────────────────────────────────────────────────


def test_colony_writes_snapshot_and_records(tmp_dir):
    """Each cycle leaves a verified snapshot and one record per thought."""
    colony = create_colony(_config(tmp_dir), _client())
    colony.run(max_cycles=2)

    persistence = colony.persistence
    result = persistence.verify_file()
    assert result.valid
    assert result.cycle == 2
    assert len(persistence.list_thought_records(1)) == 9
    assert len(persistence.list_thought_records(2)) == 9


def test_resume_restores_colony(tmp_dir):
    """A resumed colony matches the one that was saved."""
    first = create_colony(_config(tmp_dir), _client())
    first.run(max_cycles=3)

    resumed = create_colony(_config(tmp_dir), _client())
    assert resumed.cycle == 3
    assert sorted(resumed.cells) == sorted(first.cells)
    for pos, cell in first.cells.items():
        other = resumed.cells[pos]
        assert other.dna == cell.dna
        assert other.age == cell.age
        assert [t.id for t in other.memory.thoughts] == [t.id for t in cell.memory.thoughts]
    assert resumed.state.context == first.state.context

    resumed.run(max_cycles=1)
    assert resumed.cycle == 4


def test_resume_keeps_shape_and_takes_runtime_options(tmp_dir):
    """The grid comes from the snapshot, runtime options from the new config."""
    create_colony(_config(tmp_dir), _client()).run(max_cycles=1)
    resumed = create_colony(
        _config(tmp_dir, grid_shape=(5, 5), call_timeout=2.0, cycle_delay=5.0, batch_size=1),
        _client(),
    )
    assert resumed.state.grid_shape == (3, 3)
    assert resumed.config.scheduler.grid_shape == (3, 3)
    assert len(resumed.cells) == 9
    assert resumed.config.scheduler.call_timeout == 2.0
    assert resumed.config.scheduler.cycle_delay == 5.0
    assert resumed.config.scheduler.batch_size == 1


def test_fresh_start_ignores_snapshot(tmp_dir):
    """resume=False starts over at cycle 0."""
    create_colony(_config(tmp_dir), _client()).run(max_cycles=1)
    fresh = create_colony(_config(tmp_dir), _client(), resume=False)
    assert fresh.cycle == 0


def test_from_dict_rejects_bad_cells():
    """Out-of-grid or duplicate cells are corruption."""
    colony = Colony(_config(None), _client())
    state = colony.to_dict()

    outside = json.loads(json.dumps(state))
    outside["cells"][0]["position"] = [7, 7]
    with pytest.raises(StateCorruptionError):
        Colony.from_dict(outside, _client())

    duplicate = json.loads(json.dumps(state))
    duplicate["cells"].append(duplicate["cells"][0])
    with pytest.raises(StateCorruptionError):
        Colony.from_dict(duplicate, _client())

    missing = json.loads(json.dumps(state))
    del missing["cells"]
    with pytest.raises(StateCorruptionError):
        Colony.from_dict(missing, _client())
