"""Tests for colony configuration."""

import json
import os
import shutil
import tempfile

import pytest

from eca.core.config import (
    ColonyConfig,
    ConfigurationError,
    SchedulerConfig,
    load_config,
    resume_config,
    validate_config,
)
from eca.core.interaction_rule import BoundaryPolicy


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


def _write(tmp_dir, data, name="colony.json"):
    path = os.path.join(tmp_dir, name)
    with open(path, "w") as f:
        if isinstance(data, str):
            f.write(data)
        else:
            json.dump(data, f)
    return path


def test_defaults_are_valid():
    """The default config passes validation."""
    config = ColonyConfig()
    validate_config(config)
    assert config.memory.max_bytes == 50000
    assert config.plans.window_max == 42
    assert config.scheduler.batch_size == 5
    assert config.scheduler.call_timeout == 300.0


def test_dict_roundtrip():
    """to_dict / from_dict preserve every option."""
    config = ColonyConfig(name="beta")
    config.scheduler.grid_shape = (3, 4, 2)
    config.interaction.boundary = BoundaryPolicy.WRAP
    restored = ColonyConfig.from_dict(config.to_dict())
    assert restored == config
    assert restored.scheduler.grid_shape == (3, 4, 2)


def test_load_partial_file(tmp_dir):
    """Missing sections and keys keep their defaults."""
    path = _write(tmp_dir, {
        "name": "gamma",
        "memory": {"max_bytes": 2048},
        "scheduler": {"grid_shape": [4, 4], "call_timeout": 2},
        "interaction": {"boundary": "wrap", "birth_range": [2, 3]},
    })
    config = load_config(path)
    assert config.name == "gamma"
    assert config.memory.max_bytes == 2048
    assert config.memory.event_history == 100
    assert config.scheduler.grid_shape == (4, 4)
    assert config.scheduler.call_timeout == 2.0
    assert config.interaction.boundary is BoundaryPolicy.WRAP
    assert config.interaction.birth_range == (2, 3)


def test_unknown_key_rejected(tmp_dir):
    """Typos are configuration errors, not silent defaults."""
    path = _write(tmp_dir, {"scheduler": {"batchsize": 3}})
    with pytest.raises(ConfigurationError, match="batchsize"):
        load_config(path)


def test_wrong_type_rejected(tmp_dir):
    """Values of the wrong type are rejected."""
    path = _write(tmp_dir, {"scheduler": {"batch_size": "five"}})
    with pytest.raises(ConfigurationError, match="batch_size"):
        load_config(path)


def test_bad_enum_rejected(tmp_dir):
    """Boundary must be a known policy."""
    path = _write(tmp_dir, {"interaction": {"boundary": "mirror"}})
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_unreadable_file(tmp_dir):
    """Missing files and broken JSON raise ConfigurationError."""
    with pytest.raises(ConfigurationError):
        load_config(os.path.join(tmp_dir, "missing.json"))
    with pytest.raises(ConfigurationError):
        load_config(_write(tmp_dir, "{not json", "broken.json"))


def test_out_of_range_values_listed():
    """Validation reports every problem at once."""
    config = ColonyConfig()
    config.scheduler.batch_size = 0
    config.plans.window_min = 50
    config.memory.max_bytes = 0
    with pytest.raises(ConfigurationError) as info:
        validate_config(config)
    message = str(info.value)
    assert "batch_size" in message
    assert "window_max" in message
    assert "max_bytes" in message


def test_config_error_is_value_error():
    """ConfigurationError is a ValueError."""
    assert issubclass(ConfigurationError, ValueError)


def test_default_worker_count():
    """Workers default to two per batch slot."""
    assert SchedulerConfig(batch_size=4).workers == 8
    assert SchedulerConfig(batch_size=4, max_workers=3).workers == 3


# ── Resume ─────────────────────────────────────────────────────────────────


def test_resume_config_takes_runtime_options():
    """Runtime scheduler options come from startup, the colony's shape from the save."""
    saved = ColonyConfig(name="saved", scheduler=SchedulerConfig(grid_shape=(3, 3), call_timeout=300.0))
    startup = ColonyConfig(name="saved", scheduler=SchedulerConfig(
        grid_shape=(5, 5), call_timeout=2.0, cycle_delay=5.0, batch_size=1, knowledge_dir="kb",
    ))
    startup.memory.max_bytes = 100

    merged, applied, ignored = resume_config(saved, startup)

    assert merged.scheduler.grid_shape == (3, 3)
    assert merged.memory.max_bytes == saved.memory.max_bytes
    assert merged.scheduler.call_timeout == 2.0
    assert merged.scheduler.cycle_delay == 5.0
    assert merged.scheduler.batch_size == 1
    assert merged.scheduler.knowledge_dir == "kb"
    assert sorted(applied) == [
        "scheduler.batch_size", "scheduler.call_timeout",
        "scheduler.cycle_delay", "scheduler.knowledge_dir",
    ]
    assert sorted(ignored) == ["memory.max_bytes", "scheduler.grid_shape"]
    assert saved.scheduler.call_timeout == 300.0


def test_resume_config_identical():
    """Matching configs change nothing and report nothing."""
    merged, applied, ignored = resume_config(ColonyConfig(), ColonyConfig())
    assert merged.to_dict() == ColonyConfig().to_dict()
    assert applied == []
    assert ignored == []
