# ═══════════════════════════════════════════════════════════════════════════════
# PART 11: EXTERNAL CALL RUNNER
# Design: S2 (Distributed Systems) | Implementation: I1 (Systems Architect)
# ═══════════════════════════════════════════════════════════════════════════════

"""
S2: "Every model call gets the full timeout, counted from the moment a worker
picks it up, never from when it was queued. At most `workers` calls run at
once. A call that blows its deadline is abandoned: its slot goes back to
the pool and its thread is a daemon, so a wedged backend can neither stall
the next call nor keep the process alive after shutdown."
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Hashable, List, Optional


@dataclass
class ExternalCall:
    """One model call and, once run, its outcome."""
    key: Hashable
    fn: Callable[[Any], Any]
    arg: Any
    label: str = "call"
    value: Any = None
    error: Optional[BaseException] = None
    started: Optional[float] = None
    timed_out: bool = False
    done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def finished(self) -> bool:
        return self.done.is_set() and not self.timed_out

    def _run(self, wake: threading.Event) -> None:
        try:
            self.value = self.fn(self.arg)
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()
            wake.set()


def run_calls(
    calls: List[ExternalCall],
    workers: int,
    timeout: float,
    thread_prefix: str = "eca-call",
) -> List[ExternalCall]:
    """
    Run `calls` on daemon threads, at most `workers` at a time.

    Returns when every call has finished or passed `timeout` seconds since
    it started. Timed-out calls are marked `timed_out`; whatever they do
    afterwards is ignored.
    """
    pending: Deque[ExternalCall] = deque(calls)
    running: List[ExternalCall] = []
    wake = threading.Event()
    workers = max(1, workers)

    while pending or running:
        wake.clear()
        while pending and len(running) < workers:
            call = pending.popleft()
            call.started = time.monotonic()
            threading.Thread(
                target=call._run,
                args=(wake,),
                name=f"{thread_prefix}-{call.label}",
                daemon=True,
            ).start()
            running.append(call)

        now = time.monotonic()
        still_running = []
        for call in running:
            if call.done.is_set():
                continue
            if now - call.started >= timeout:
                call.timed_out = True
                continue
            still_running.append(call)

        if len(still_running) == len(running):
            next_deadline = min(c.started for c in running) + timeout
            wake.wait(max(0.0, next_deadline - now))
        running = still_running

    return calls
