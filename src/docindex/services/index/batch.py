from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Event
import time
from typing import Callable

from docindex.services.index.errors import FormatError, SyncCancelled


class BatchStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def parse(cls, value: object) -> BatchStatus:
        try:
            return cls(value)
        except ValueError as exc:
            raise FormatError(f"Unknown indexing batch status: {value!r}") from exc


_TERMINAL = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED})

_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.QUEUED: frozenset(
        {BatchStatus.QUEUED, BatchStatus.IN_PROGRESS, *_TERMINAL}
    ),
    BatchStatus.IN_PROGRESS: frozenset({BatchStatus.IN_PROGRESS, *_TERMINAL}),
}


@dataclass(frozen=True)
class BatchState:
    batch_id: str
    status: BatchStatus


def advance(previous: BatchState, latest: BatchState) -> BatchState:
    if latest.batch_id != previous.batch_id:
        raise FormatError(
            f"Poll returned batch {latest.batch_id}, expected {previous.batch_id}"
        )
    allowed = _TRANSITIONS.get(previous.status, frozenset())
    if latest.status not in allowed:
        raise FormatError(
            f"Illegal batch transition {previous.status.value} -> {latest.status.value}"
        )
    return latest


def poll_batch(
    fetch: Callable[[str], BatchState],
    batch: BatchState,
    *,
    interval_seconds: float,
    timeout_seconds: float | None = None,
    cancel_event: Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BatchState:
    """Re-fetch ``batch`` every ``interval_seconds`` until it reaches a terminal state.

    Raises ``SyncCancelled`` when ``cancel_event`` is set or ``timeout_seconds``
    elapses first. Individual fetches carry their own network timeouts.
    """
    state = batch
    deadline = None if timeout_seconds is None else clock() + timeout_seconds

    while not state.status.is_terminal:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled(f"Polling of batch {state.batch_id} cancelled")

        delay = interval_seconds
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                raise SyncCancelled(
                    f"Batch {state.batch_id} still {state.status.value} "
                    f"after {timeout_seconds:g}s"
                )
            delay = min(delay, remaining)

        sleep(delay)
        state = advance(state, fetch(state.batch_id))
        print(f"[index-sync] batch={state.batch_id} status={state.status.value}", flush=True)

    return state
