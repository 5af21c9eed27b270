# ═══════════════════════════════════════════════════════════════════════════════
# PART 1: THOUGHT DNA
# Design: P1 (Dynamical Systems) | Implementation: I2 (Numerics)
# ═══════════════════════════════════════════════════════════════════════════════

"""
P1: "Six axes, each a tension between two poles. Emergence vs reduction,
coherence vs chaos, and so on. The state is the position, nothing more."

I2: "Then it's a clamped float vector. Every mutation goes through one clamp,
so no code path can leave the box."
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Sequence, Union

import numpy as np

DNA_MIN: float = -100.0
DNA_MAX: float = 100.0


class Dimension(Enum):
    """The six Thought DNA axes, in storage order."""
    EMERGENCE = "emergence"          # Emergence vs Reduction
    COHERENCE = "coherence"          # Coherence vs Chaos
    RESILIENCE = "resilience"        # Resilience vs Fragility
    INTELLIGENCE = "intelligence"    # Intelligence vs Instinct
    EFFICIENCY = "efficiency"        # Efficiency vs Waste
    INTEGRATION = "integration"      # Integration vs Isolation

    @property
    def index(self) -> int:
        return _DIMENSION_ORDER.index(self)


_DIMENSION_ORDER: List[Dimension] = list(Dimension)

N_DIMENSIONS: int = len(_DIMENSION_ORDER)

DeltaLike = Union[np.ndarray, Sequence[float]]


def clamp_values(values: DeltaLike) -> np.ndarray:
    """Clamp an arbitrary vector into [DNA_MIN, DNA_MAX]; NaN becomes 0."""
    arr = np.nan_to_num(np.asarray(values, dtype=float), nan=0.0)
    return np.clip(arr, DNA_MIN, DNA_MAX)


class ThoughtDNA:
    """
    Bounded 6-dimensional cell state.

    Every component stays in [-100, 100]. The only way to change a value is
    clamp(current + delta), through apply() or apply_inplace().
    """

    __slots__ = ("_values",)

    def __init__(self, values: DeltaLike = None) -> None:
        if values is None:
            values = np.zeros(N_DIMENSIONS)
        arr = np.asarray(values, dtype=float)
        if arr.shape != (N_DIMENSIONS,):
            raise ValueError(
                f"ThoughtDNA needs {N_DIMENSIONS} values, got shape {arr.shape}"
            )
        self._values = clamp_values(arr)

    # ── Properties ──────────────────────────────────────────────────────────

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the underlying vector."""
        view = self._values.view()
        view.flags.writeable = False
        return view

    @property
    def emergence(self) -> float:
        return float(self._values[0])

    @property
    def coherence(self) -> float:
        return float(self._values[1])

    @property
    def resilience(self) -> float:
        return float(self._values[2])

    @property
    def intelligence(self) -> float:
        return float(self._values[3])

    @property
    def efficiency(self) -> float:
        return float(self._values[4])

    @property
    def integration(self) -> float:
        return float(self._values[5])

    @property
    def mean(self) -> float:
        return float(np.mean(self._values))

    # ── Public Methods ──────────────────────────────────────────────────────

    def get(self, dimension: Dimension) -> float:
        return float(self._values[dimension.index])

    def apply(self, delta: DeltaLike) -> ThoughtDNA:
        """Return a new ThoughtDNA equal to clamp(self + delta)."""
        return ThoughtDNA(self._values + _as_delta(delta))

    def apply_inplace(self, delta: DeltaLike) -> None:
        """Mutate in place: clamp(self + delta)."""
        self._values = clamp_values(self._values + _as_delta(delta))

    def nudge(self, dimension: Dimension, amount: float) -> None:
        """Apply a delta to a single dimension."""
        delta = np.zeros(N_DIMENSIONS)
        delta[dimension.index] = amount
        self.apply_inplace(delta)

    def copy(self) -> ThoughtDNA:
        return ThoughtDNA(self._values.copy())

    def to_list(self) -> List[float]:
        return [float(v) for v in self._values]

    def to_dict(self) -> dict:
        return {d.value: float(self._values[d.index]) for d in _DIMENSION_ORDER}

    @classmethod
    def from_list(cls, values: Iterable[float]) -> ThoughtDNA:
        return cls(list(values))

    @classmethod
    def uniform(cls, value: float) -> ThoughtDNA:
        return cls(np.full(N_DIMENSIONS, float(value)))

    # ── Dunder ──────────────────────────────────────────────────────────────

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ThoughtDNA):
            return NotImplemented
        return bool(np.array_equal(self._values, other._values))

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{d.value[:3]}={self._values[d.index]:.2f}" for d in _DIMENSION_ORDER
        )
        return f"ThoughtDNA({parts})"


def _as_delta(delta: DeltaLike) -> np.ndarray:
    arr = np.nan_to_num(np.asarray(delta, dtype=float), nan=0.0)
    if arr.shape != (N_DIMENSIONS,):
        raise ValueError(
            f"delta needs {N_DIMENSIONS} values, got shape {arr.shape}"
        )
    return arr


def dimension_order() -> List[Dimension]:
    """Dimensions in storage order."""
    return list(_DIMENSION_ORDER)
