"""Cancellation and deadline propagation for blocking retrieval calls."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from devrag.errors import SearchCancelledError


@dataclass
class RequestContext:
    """Per-request cancellation flag with an optional deadline.

    The deadline is an absolute ``time.monotonic()`` value. Pipeline stages call
    :meth:`check` around every blocking collaborator call so that a cancelled or
    expired request stops before doing more work.
    """

    deadline: float | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float) -> "RequestContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, stage: str = "request") -> None:
        """Raise ``SearchCancelledError`` if the request should stop."""
        if self.cancelled:
            raise SearchCancelledError(f"{stage} cancelled")
        if self.expired:
            raise SearchCancelledError(f"{stage} deadline exceeded")


def check_context(ctx: RequestContext | None, stage: str) -> None:
    """Check ``ctx`` if one was supplied."""
    if ctx is not None:
        ctx.check(stage)
