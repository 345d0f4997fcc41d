"""Cancellation and deadline handling for a single reconcile pass."""

import time
from dataclasses import dataclass
from typing import Protocol

from racecourse_operator.errors import ReconcileCancelled


class StopFlag(Protocol):
    """Anything exposing ``is_set()``: threading.Event, kopf's stop flags."""

    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class ReconcileContext:
    """Deadline and stop flag shared by every store call in one pass."""

    deadline: float | None = None
    stopped: StopFlag | None = None

    @classmethod
    def with_timeout(
        cls, timeout: float | None, stopped: StopFlag | None = None
    ) -> "ReconcileContext":
        deadline = time.monotonic() + timeout if timeout else None
        return cls(deadline=deadline, stopped=stopped)

    @property
    def cancelled(self) -> bool:
        if self.stopped is not None and self.stopped.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        """Seconds left before the deadline, used as the request timeout."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.stopped is not None and self.stopped.is_set():
            raise ReconcileCancelled("Reconcile pass stopped")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ReconcileCancelled("Reconcile pass deadline exceeded")
