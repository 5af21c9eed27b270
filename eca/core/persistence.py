# ═══════════════════════════════════════════════════════════════════════════════
# PART 10: PERSISTENCE
# Design: I3 (State Management) + S2 (Distributed Systems)
# Implementation: I3 (State Management)
# ═══════════════════════════════════════════════════════════════════════════════

"""
I3: "One snapshot file, replaced whole every cycle. Write to a temp file,
fsync, rename. A reader sees the old colony or the new one, never half of
each."

S2: "Records are the audit trail: one file per thought, one per finished
plan, one analysis per cycle. Created once, never rewritten. And the
snapshot carries its own hash, so a load proves it read what was saved."
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import numpy as np

from eca.core.memory import Thought
from eca.core.plans import PlanRecord

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"
SNAPSHOT_FILE = "colony_state.json"


# ── Exceptions ───────────────────────────────────────────────────────────────


class PersistenceError(Exception):
    """Base class for persistence errors."""
    pass


class PersistenceFailure(PersistenceError):
    """A snapshot or record could not be written. The cycle is not complete."""
    pass


class ContinuityError(PersistenceError):
    """Raised when the loaded state does not match its recorded hash."""
    pass


class StateCorruptionError(PersistenceError):
    """Raised when saved state is corrupted or invalid."""
    pass


# ── Result Dataclasses ───────────────────────────────────────────────────────


@dataclass
class SaveResult:
    path: str
    cycle: int
    state_hash: str
    timestamp: str
    size_bytes: int
    verified: bool


@dataclass
class VerificationResult:
    valid: bool
    cycle: int
    state_hash: str
    error: Optional[str] = None


class _NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def state_hash(state: dict) -> str:
    state_json = json.dumps(state, sort_keys=True, cls=_NumpyEncoder)
    return hashlib.sha256(state_json.encode()).hexdigest()


# ── Persistence Class ────────────────────────────────────────────────────────


class ColonyPersistence:
    """
    Snapshot and record storage under one data directory.

    Layout:
        colony_state.json                    snapshot, replaced atomically
        thoughts/<cycle>/<thought_id>.json   one per new thought
        plans/<cycle>/plan_<plan_id>.json    one per terminal plan
        analysis/analysis_<cycle>.json       one per cycle with terminal plans
    """

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.data_dir = Path(data_dir)
        self.snapshot_path = self.data_dir / SNAPSHOT_FILE
        self.thoughts_dir = self.data_dir / "thoughts"
        self.plans_dir = self.data_dir / "plans"
        self.analysis_dir = self.data_dir / "analysis"

    # ── Snapshot ─────────────────────────────────────────────────────────

    def exists(self) -> bool:
        return self.snapshot_path.exists()

    def save(self, state: dict) -> SaveResult:
        """
        Atomically replace the snapshot with `state`.

        Raises:
            PersistenceFailure: If anything stops the write. The previous
                snapshot is left untouched.
        """
        cycle = int(state.get("cycle", 0))
        saved_at = datetime.now().isoformat()
        tmp_path = self.snapshot_path.with_name(self.snapshot_path.name + ".tmp")

        try:
            digest = state_hash(state)
            envelope = {
                "version": SNAPSHOT_VERSION,
                "state": state,
                "verification": {
                    "state_hash": digest,
                    "cycle": cycle,
                    "saved_at": saved_at,
                },
            }
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(envelope, f, indent=2, cls=_NumpyEncoder)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.snapshot_path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise PersistenceFailure(
                f"snapshot for cycle {cycle} not written: {exc}"
            ) from exc

        verification = self.verify_file()
        logger.debug("Saved snapshot: cycle %d -> %s", cycle, self.snapshot_path)
        return SaveResult(
            path=str(self.snapshot_path),
            cycle=cycle,
            state_hash=digest,
            timestamp=saved_at,
            size_bytes=self.snapshot_path.stat().st_size,
            verified=verification.valid,
        )

    def load(self) -> dict:
        """
        Read and verify the snapshot.

        Raises:
            FileNotFoundError: If no snapshot exists.
            StateCorruptionError: If the file is not a readable snapshot.
            ContinuityError: If the state does not match its recorded hash.
        """
        with open(self.snapshot_path, "r", encoding="utf-8") as f:
            try:
                envelope = json.load(f)
            except json.JSONDecodeError as exc:
                raise StateCorruptionError(f"snapshot is not valid JSON: {exc}") from exc
            except UnicodeDecodeError as exc:
                raise StateCorruptionError(f"snapshot is not valid UTF-8: {exc}") from exc

        if not isinstance(envelope, dict) or "state" not in envelope:
            raise StateCorruptionError("snapshot envelope missing 'state'")
        version = str(envelope.get("version", ""))
        if version.split(".")[0] != SNAPSHOT_VERSION.split(".")[0]:
            raise StateCorruptionError(f"Unsupported version: {version}")

        verification = envelope.get("verification", {})
        state = envelope["state"]
        computed = state_hash(state)
        if computed != verification.get("state_hash"):
            raise ContinuityError(
                f"State hash mismatch: expected {verification.get('state_hash')}, "
                f"got {computed}"
            )
        if state.get("cycle") != verification.get("cycle"):
            raise ContinuityError(
                f"Cycle mismatch: envelope says {verification.get('cycle')}, "
                f"state says {state.get('cycle')}"
            )
        return state

    def verify_file(self, path: Optional[Union[str, Path]] = None) -> VerificationResult:
        """
        Verify a snapshot without restoring it.

        Checks that the file is JSON, the state hash matches its content and
        the recorded cycle matches the state.
        """
        target = Path(path) if path is not None else self.snapshot_path
        try:
            with open(target, "r", encoding="utf-8") as f:
                envelope = json.load(f)
            verification = envelope.get("verification", {})
            state = envelope["state"]
            computed = state_hash(state)
            cycle = int(verification.get("cycle", -1))

            if computed != verification.get("state_hash"):
                return VerificationResult(
                    valid=False,
                    cycle=cycle,
                    state_hash=computed,
                    error=f"Hash mismatch: expected {verification.get('state_hash')}, got {computed}",
                )
            if state.get("cycle") != cycle:
                return VerificationResult(
                    valid=False,
                    cycle=cycle,
                    state_hash=computed,
                    error="cycle in envelope does not match state",
                )
            return VerificationResult(valid=True, cycle=cycle, state_hash=computed)

        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            return VerificationResult(valid=False, cycle=-1, state_hash="", error=str(e))

    # ── Records ──────────────────────────────────────────────────────────

    def write_thought_record(self, cycle: int, position: Sequence[int], thought: Thought) -> Path:
        payload = thought.to_dict()
        payload["position"] = [int(p) for p in position]
        path = self.thoughts_dir / str(cycle) / f"{thought.id}.json"
        return self._write_record(path, payload)

    def write_plan_record(self, cycle: int, record: PlanRecord) -> Path:
        path = self.plans_dir / str(cycle) / f"plan_{record.plan_id}.json"
        return self._write_record(path, record.to_dict())

    def write_analysis_record(self, cycle: int, analysis: dict) -> Path:
        path = self.analysis_dir / f"analysis_{cycle}.json"
        return self._write_record(path, analysis)

    def list_thought_records(self, cycle: Optional[int] = None) -> List[Path]:
        return self._list(self.thoughts_dir, cycle, "*.json")

    def list_plan_records(self, cycle: Optional[int] = None) -> List[Path]:
        return self._list(self.plans_dir, cycle, "plan_*.json")

    def list_analysis_records(self) -> List[Path]:
        if not self.analysis_dir.exists():
            return []
        return sorted(
            self.analysis_dir.glob("analysis_*.json"),
            key=lambda p: int(p.stem.split("_")[-1]),
        )

    @staticmethod
    def read_record(path: Union[str, Path]) -> dict:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    # ── Internal ─────────────────────────────────────────────────────────

    def _write_record(self, path: Path, payload: dict) -> Path:
        """Create `path` exclusively. An existing record is kept as is."""
        try:
            text = json.dumps(payload, indent=2, cls=_NumpyEncoder)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "x", encoding="utf-8") as f:
                f.write(text)
        except FileExistsError:
            logger.warning("Record %s already exists; keeping the original", path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"record {path} not written: {exc}") from exc
        return path

    def _list(self, root: Path, cycle: Optional[int], pattern: str) -> List[Path]:
        if cycle is not None:
            directory = root / str(cycle)
            return sorted(directory.glob(pattern)) if directory.exists() else []
        if not root.exists():
            return []
        return sorted(root.glob(f"*/{pattern}"))
