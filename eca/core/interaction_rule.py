# ═══════════════════════════════════════════════════════════════════════════════
# PART 2: INTERACTION RULE
# Design: P1 (Dynamical Systems) + A2 (Artificial Life)
# Implementation: I2 (Numerics)
# ═══════════════════════════════════════════════════════════════════════════════

"""
A2: "Two automata layered on one lattice. Lenia gives the smooth part: a
kernel-weighted neighborhood potential pushed through a bell-shaped growth
curve. Larger-than-Life gives the crisp part: count live neighbors, compare
against birth and survival ranges."

P1: "Our states are signed, so the growth curve has to be odd. G(0) = 0,
bounded in [-1, 1]. A quiet neighborhood produces no push."

I2: "Whole-field numpy shifts, one per kernel offset. Summation order is
fixed by the offset list, so the same field always yields the same deltas."
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from eca.core.thought_dna import DNA_MAX, N_DIMENSIONS

Position = Tuple[int, ...]


class BoundaryPolicy(Enum):
    """How neighbors beyond the grid edge are read."""
    WRAP = "wrap"    # Toroidal lattice
    ZERO = "zero"    # Off-grid sites read as 0 and are never alive


@dataclass
class InteractionConfig:
    """Configuration for the neighbor interaction rule."""
    # Kernel
    kernel_radius: float = 1.5        # Euclidean radius in lattice units
    kernel_mu: float = 0.5            # Shell peak, as a fraction of radius
    kernel_sigma: float = 0.5         # Shell width

    # Continuous (Lenia-style) growth
    growth_mu: float = 0.3            # Potential at which growth peaks
    growth_sigma: float = 0.15
    growth_rate: float = 0.1          # dt; max push is growth_rate * 100

    # Discrete (Larger-than-Life style) rule
    alive_threshold: float = 50.0     # DNA value at which a site counts as alive
    birth_range: Tuple[int, int] = (3, 3)
    survival_range: Tuple[int, int] = (2, 3)
    discrete_step: float = 2.0

    boundary: BoundaryPolicy = BoundaryPolicy.ZERO


@dataclass
class Kernel:
    """Neighbor offsets and their weights."""
    offsets: np.ndarray    # (n, ndim) int
    weights: np.ndarray    # (n,) float

    @property
    def size(self) -> int:
        return int(self.weights.shape[0])

    @property
    def ndim(self) -> int:
        return int(self.offsets.shape[1]) if self.offsets.size else 0

    @property
    def reach(self) -> int:
        """Largest absolute offset along any axis."""
        if not self.offsets.size:
            return 0
        return int(np.max(np.abs(self.offsets)))

    @classmethod
    def gaussian_shell(
        cls,
        ndim: int,
        radius: float,
        mu: float = 0.5,
        sigma: float = 0.5,
        normalize: bool = True,
    ) -> Kernel:
        """
        Lattice offsets within `radius` (center excluded), weighted by
        exp(-((d/R - mu)^2) / (2 sigma^2)).
        """
        if ndim < 1:
            raise ValueError("ndim must be >= 1")
        if radius < 1.0:
            raise ValueError("radius must be >= 1 to include any neighbor")

        reach = int(np.floor(radius))
        offsets: List[Tuple[int, ...]] = []
        weights: List[float] = []
        for offset in itertools.product(range(-reach, reach + 1), repeat=ndim):
            if not any(offset):
                continue
            distance = float(np.sqrt(sum(o * o for o in offset)))
            if distance > radius:
                continue
            r = distance / radius
            offsets.append(offset)
            weights.append(float(np.exp(-((r - mu) ** 2) / (2 * sigma ** 2))))

        w = np.array(weights, dtype=float)
        if normalize and w.sum() > 0:
            w = w / w.sum()
        return cls(np.array(offsets, dtype=int).reshape(-1, ndim), w)

    @classmethod
    def from_weights(
        cls,
        offsets: Sequence[Sequence[int]],
        weights: Sequence[float],
    ) -> Kernel:
        """Explicit kernel, e.g. a zero-sum one."""
        off = np.array(offsets, dtype=int)
        w = np.array(weights, dtype=float)
        if off.ndim != 2 or off.shape[0] != w.shape[0]:
            raise ValueError("offsets must be (n, ndim) and match weights (n,)")
        if np.any(np.all(off == 0, axis=1)):
            raise ValueError("kernel must not contain the zero offset")
        return cls(off, w)


def growth_function(u: np.ndarray, mu: float, sigma: float) -> np.ndarray:
    """Odd bell-difference growth curve, G(0) = 0 and |G| <= 1."""
    pos = np.exp(-((u - mu) ** 2) / (2 * sigma ** 2))
    neg = np.exp(-((u + mu) ** 2) / (2 * sigma ** 2))
    return pos - neg


class InteractionRule:
    """
    Pure neighbor-driven delta for every cell of the lattice.

    Input is a field of shape (*grid_shape, 6) holding pre-cycle DNA values.
    Empty lattice sites hold 0. Output has the same shape and holds the
    per-dimension delta each site would receive.
    """

    def __init__(
        self,
        grid_shape: Sequence[int],
        config: Optional[InteractionConfig] = None,
        kernel: Optional[Kernel] = None,
    ) -> None:
        self.config = config or InteractionConfig()
        self.grid_shape: Tuple[int, ...] = tuple(int(s) for s in grid_shape)
        if not self.grid_shape or min(self.grid_shape) < 1:
            raise ValueError(f"invalid grid shape {grid_shape}")

        cfg = self.config
        self.kernel = kernel or Kernel.gaussian_shell(
            len(self.grid_shape), cfg.kernel_radius, cfg.kernel_mu, cfg.kernel_sigma,
        )
        if self.kernel.size and self.kernel.ndim != len(self.grid_shape):
            raise ValueError(
                f"kernel is {self.kernel.ndim}-D but grid is {len(self.grid_shape)}-D"
            )

    @property
    def boundary(self) -> BoundaryPolicy:
        return self.config.boundary

    # ── Public Methods ──────────────────────────────────────────────────────

    def empty_field(self) -> np.ndarray:
        return np.zeros(self.grid_shape + (N_DIMENSIONS,))

    def delta_field(self, field: np.ndarray) -> np.ndarray:
        """Deltas for every lattice site, computed from `field` only."""
        self._check_field(field)
        cfg = self.config
        normalized = field / DNA_MAX
        alive = (field >= cfg.alive_threshold).astype(float)

        potential = np.zeros_like(normalized)
        alive_count = np.zeros_like(normalized)
        for offset, weight in zip(self.kernel.offsets, self.kernel.weights):
            potential += weight * self._shift(normalized, offset)
            alive_count += self._shift(alive, offset)

        continuous = cfg.growth_rate * DNA_MAX * growth_function(
            potential, cfg.growth_mu, cfg.growth_sigma
        )

        b_lo, b_hi = cfg.birth_range
        s_lo, s_hi = cfg.survival_range
        is_alive = alive > 0
        survives = (alive_count >= s_lo) & (alive_count <= s_hi)
        born = (alive_count >= b_lo) & (alive_count <= b_hi)
        discrete = np.where(
            is_alive,
            np.where(survives, 0.0, -cfg.discrete_step),
            np.where(born, cfg.discrete_step, 0.0),
        )

        return continuous + discrete

    def delta_at(self, field: np.ndarray, position: Position) -> np.ndarray:
        """Delta for a single site. Same result as delta_field(field)[position]."""
        self._check_field(field)
        self._check_position(position)
        cfg = self.config

        values = np.zeros((self.kernel.size, N_DIMENSIONS))
        for i, offset in enumerate(self.kernel.offsets):
            site = self._neighbor_site(position, offset)
            if site is not None:
                values[i] = field[site]

        normalized = values / DNA_MAX
        potential = np.zeros(N_DIMENSIONS)
        for i in range(self.kernel.size):
            potential += self.kernel.weights[i] * normalized[i]
        alive_count = np.sum(values >= cfg.alive_threshold, axis=0)

        continuous = cfg.growth_rate * DNA_MAX * growth_function(
            potential, cfg.growth_mu, cfg.growth_sigma
        )

        own = field[tuple(position)]
        is_alive = own >= cfg.alive_threshold
        b_lo, b_hi = cfg.birth_range
        s_lo, s_hi = cfg.survival_range
        survives = (alive_count >= s_lo) & (alive_count <= s_hi)
        born = (alive_count >= b_lo) & (alive_count <= b_hi)
        discrete = np.where(
            is_alive,
            np.where(survives, 0.0, -cfg.discrete_step),
            np.where(born, cfg.discrete_step, 0.0),
        )
        return continuous + discrete

    def neighbor_positions(self, position: Position) -> List[Position]:
        """Lattice sites covered by the kernel around `position`."""
        self._check_position(position)
        sites = []
        for offset in self.kernel.offsets:
            site = self._neighbor_site(position, offset)
            if site is not None:
                sites.append(site)
        return sites

    def contains(self, position: Position) -> bool:
        return len(position) == len(self.grid_shape) and all(
            0 <= p < s for p, s in zip(position, self.grid_shape)
        )

    # ── Internal ────────────────────────────────────────────────────────────

    def _shift(self, arr: np.ndarray, offset: np.ndarray) -> np.ndarray:
        """result[x] = arr[x + offset], per boundary policy."""
        ndim = len(self.grid_shape)
        if self.config.boundary is BoundaryPolicy.WRAP:
            return np.roll(arr, shift=tuple(-int(o) for o in offset), axis=tuple(range(ndim)))

        pad = self.kernel.reach
        padded = np.pad(arr, [(pad, pad)] * ndim + [(0, 0)])
        index = tuple(
            slice(pad + int(o), pad + int(o) + size)
            for o, size in zip(offset, self.grid_shape)
        )
        return padded[index]

    def _neighbor_site(self, position: Position, offset: np.ndarray) -> Optional[Position]:
        site = tuple(int(p) + int(o) for p, o in zip(position, offset))
        if self.config.boundary is BoundaryPolicy.WRAP:
            return tuple(s % size for s, size in zip(site, self.grid_shape))
        if self.contains(site):
            return site
        return None

    def _check_field(self, field: np.ndarray) -> None:
        expected = self.grid_shape + (N_DIMENSIONS,)
        if field.shape != expected:
            raise ValueError(f"field shape {field.shape} != {expected}")

    def _check_position(self, position: Position) -> None:
        if not self.contains(tuple(position)):
            raise ValueError(f"position {position} outside grid {self.grid_shape}")
