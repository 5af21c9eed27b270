# ═══════════════════════════════════════════════════════════════════════════════
# PART 8: CONFIGURATION
# Design: I1 (Systems Architect) | Implementation: I1 (Systems Architect)
# ═══════════════════════════════════════════════════════════════════════════════

"""
I1: "One dataclass per component, one top-level config holding them all.
Fixed at startup. A bad value stops the process before the first cycle,
not halfway through the hundredth."
"""

from __future__ import annotations

import json
import typing
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from eca.core.interaction_rule import InteractionConfig
from eca.core.memory import MemoryConfig
from eca.core.plans import PlanConfig


class ConfigurationError(ValueError):
    """Invalid or unreadable configuration. Fatal at startup."""
    pass


@dataclass
class SchedulerConfig:
    """Cycle scheduling, population and external-call settings."""
    grid_shape: Tuple[int, ...] = (5, 5)
    batch_size: int = 5                  # Cells whose calls run concurrently
    max_workers: Optional[int] = None    # Default: 2 * batch_size (thought + plan)
    cycle_delay: float = 0.01            # Seconds slept between cycles
    call_timeout: float = 300.0          # Seconds per external call

    # Population
    seed: Optional[int] = None
    fill_fraction: float = 1.0           # Share of lattice sites holding a cell
    initial_spread: float = 10.0         # Std-dev of initial DNA around 0
    thought_gain: float = 4.0            # Relevance -> DNA fold-in strength
    recent_thoughts: int = 5             # Thoughts quoted in each thought request

    # Context analysis (0 disables)
    context_interval: int = 10

    # Dormancy (0 disables)
    dormancy_after_failures: int = 3
    dormancy_cycles: int = 5

    # Growth
    growth_enabled: bool = False
    growth_threshold: float = 90.0       # Mean DNA needed to spawn
    growth_inheritance: float = 0.5      # Child DNA = inheritance * parent DNA
    max_new_cells_per_cycle: int = 1

    # Persistence (None keeps the colony in memory only)
    data_dir: Optional[str] = "colony_data"
    event_history: int = 1000

    # Knowledge base (.txt / .md files condensed once at startup; None disables)
    knowledge_dir: Optional[str] = None

    @property
    def workers(self) -> int:
        return self.max_workers or 2 * self.batch_size


@dataclass
class ColonyConfig:
    """Top-level configuration aggregating all component configs."""
    name: str = "colony"
    mission: str = "Explore how collective cognition emerges from local interaction."

    interaction: InteractionConfig = field(default_factory=InteractionConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    plans: PlanConfig = field(default_factory=PlanConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    def to_dict(self) -> dict:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, d: dict) -> ColonyConfig:
        config = _from_plain(cls, d, "")
        validate_config(config)
        return config


# Scheduler options that describe how this process runs the colony rather than
# what the colony is. On resume these come from the startup config.
RUNTIME_OPTIONS = (
    "batch_size",
    "max_workers",
    "cycle_delay",
    "call_timeout",
    "context_interval",
    "data_dir",
    "event_history",
    "knowledge_dir",
)

# ── Validation ───────────────────────────────────────────────────────────────


def validate_config(config: ColonyConfig) -> None:
    """Raise ConfigurationError listing every problem found."""
    problems: List[str] = []

    def check(ok: bool, message: str) -> None:
        if not ok:
            problems.append(message)

    check(bool(config.name.strip()), "name must not be empty")

    s = config.scheduler
    check(len(s.grid_shape) >= 1, "scheduler.grid_shape needs at least one axis")
    check(all(n >= 1 for n in s.grid_shape), "scheduler.grid_shape sizes must be >= 1")
    check(s.batch_size >= 1, "scheduler.batch_size must be >= 1")
    check(s.max_workers is None or s.max_workers >= 1, "scheduler.max_workers must be >= 1")
    check(s.cycle_delay >= 0, "scheduler.cycle_delay must be >= 0")
    check(s.call_timeout > 0, "scheduler.call_timeout must be > 0")
    check(0 < s.fill_fraction <= 1, "scheduler.fill_fraction must be in (0, 1]")
    check(s.initial_spread >= 0, "scheduler.initial_spread must be >= 0")
    check(s.recent_thoughts >= 0, "scheduler.recent_thoughts must be >= 0")
    check(s.context_interval >= 0, "scheduler.context_interval must be >= 0")
    check(s.dormancy_after_failures >= 0, "scheduler.dormancy_after_failures must be >= 0")
    check(s.dormancy_cycles >= 1, "scheduler.dormancy_cycles must be >= 1")
    check(0 <= s.growth_inheritance <= 1, "scheduler.growth_inheritance must be in [0, 1]")
    check(s.max_new_cells_per_cycle >= 0, "scheduler.max_new_cells_per_cycle must be >= 0")
    check(s.event_history >= 1, "scheduler.event_history must be >= 1")

    m = config.memory
    check(m.max_bytes >= 1, "memory.max_bytes must be >= 1")
    check(m.min_summary_bytes >= 1, "memory.min_summary_bytes must be >= 1")
    check(m.max_summary_topics >= 0, "memory.max_summary_topics must be >= 0")
    check(m.event_history >= 1, "memory.event_history must be >= 1")

    p = config.plans
    check(p.window_min >= 1, "plans.window_min must be >= 1")
    check(p.window_max >= p.window_min, "plans.window_max must be >= plans.window_min")
    check(p.step_threshold > 0, "plans.step_threshold must be > 0")
    check(p.max_plan_cycles >= 1, "plans.max_plan_cycles must be >= 1")
    check(p.completion_reward >= 0, "plans.completion_reward must be >= 0")
    check(p.failure_penalty >= 0, "plans.failure_penalty must be >= 0")

    i = config.interaction
    check(i.kernel_radius >= 1, "interaction.kernel_radius must be >= 1")
    check(i.kernel_sigma > 0, "interaction.kernel_sigma must be > 0")
    check(i.growth_sigma > 0, "interaction.growth_sigma must be > 0")
    check(i.growth_rate >= 0, "interaction.growth_rate must be >= 0")
    check(i.alive_threshold > 0, "interaction.alive_threshold must be > 0")
    for name in ("birth_range", "survival_range"):
        lo, hi = getattr(i, name)
        check(0 <= lo <= hi, f"interaction.{name} must satisfy 0 <= low <= high")
    check(i.discrete_step >= 0, "interaction.discrete_step must be >= 0")

    if problems:
        raise ConfigurationError("; ".join(problems))


def load_config(path: Union[str, Path]) -> ColonyConfig:
    """Read a JSON config file. Missing sections keep their defaults."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"config {path} must hold a JSON object")
    return ColonyConfig.from_dict(data)


# ── Conversion ───────────────────────────────────────────────────────────────


def _to_plain(obj: Any) -> Any:
    if is_dataclass(obj):
        return {f.name: _to_plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, tuple):
        return [_to_plain(v) for v in obj]
    return obj


def _from_plain(cls: type, data: Any, path: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path or 'config'} must be an object")

    hints = typing.get_type_hints(cls)
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        where = path.rstrip(".") or "config"
        raise ConfigurationError(f"unknown option(s) in {where}: {', '.join(unknown)}")

    kwargs = {}
    for name, value in data.items():
        kwargs[name] = _coerce(value, hints[name], f"{path}{name}")
    return cls(**kwargs)


def _coerce(value: Any, hint: Any, path: str) -> Any:
    origin = typing.get_origin(hint)
    args = typing.get_args(hint)

    if origin is Union:
        if value is None and type(None) in args:
            return None
        inner = [a for a in args if a is not type(None)]
        return _coerce(value, inner[0], path)

    if isinstance(hint, type) and is_dataclass(hint):
        return _from_plain(hint, value, f"{path}.")

    if isinstance(hint, type) and issubclass(hint, Enum):
        try:
            return hint(value)
        except ValueError as exc:
            choices = [e.value for e in hint]
            raise ConfigurationError(f"{path} must be one of {choices}") from exc

    if origin is tuple:
        if not isinstance(value, (list, tuple)):
            raise ConfigurationError(f"{path} must be a list")
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_coerce(v, args[0], path) for v in value)
        if len(value) != len(args):
            raise ConfigurationError(f"{path} must have {len(args)} items")
        return tuple(_coerce(v, a, path) for v, a in zip(value, args))

    if hint is bool:
        if not isinstance(value, bool):
            raise ConfigurationError(f"{path} must be true or false")
        return value
    if hint is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{path} must be an integer")
        return value
    if hint is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{path} must be a number")
        return float(value)
    if hint is str:
        if not isinstance(value, str):
            raise ConfigurationError(f"{path} must be a string")
        return value

    return value


def config_summary(config: ColonyConfig) -> Dict[str, Any]:
    """The named options most runs care about, flat."""
    return {
        "name": config.name,
        "grid_shape": list(config.scheduler.grid_shape),
        "memory.max_bytes": config.memory.max_bytes,
        "plans.window_min": config.plans.window_min,
        "plans.window_max": config.plans.window_max,
        "scheduler.batch_size": config.scheduler.batch_size,
        "scheduler.cycle_delay": config.scheduler.cycle_delay,
        "scheduler.call_timeout": config.scheduler.call_timeout,
        "interaction.boundary": config.interaction.boundary.value,
    }


def resume_config(saved: ColonyConfig, startup: ColonyConfig) -> Tuple[ColonyConfig, List[str], List[str]]:
    """
    Configuration for a colony resumed from a snapshot.

    Everything that shapes the colony (grid, population, interaction, memory,
    plans, growth, dormancy) stays as saved. RUNTIME_OPTIONS are taken from
    `startup`.

    Returns (config, applied, ignored): `applied` names runtime options whose
    startup value replaced the saved one, `ignored` names startup values that
    differ from the snapshot and were not used.
    """
    merged = ColonyConfig.from_dict(saved.to_dict())
    applied = []
    for name in RUNTIME_OPTIONS:
        value = getattr(startup.scheduler, name)
        if getattr(merged.scheduler, name) != value:
            applied.append(f"scheduler.{name}")
            setattr(merged.scheduler, name, value)
    validate_config(merged)

    saved_plain = merged.to_dict()
    startup_plain = startup.to_dict()
    ignored = []
    for key, value in startup_plain.items():
        if isinstance(value, dict):
            ignored.extend(
                f"{key}.{name}" for name, v in value.items()
                if saved_plain[key][name] != v
            )
        elif saved_plain[key] != value:
            ignored.append(key)
    return merged, applied, ignored
