"""Exception hierarchy for the fuzzing engine.

SUT behaviour never raises out of a step: failed or crashing calls are
recorded as ``Reverted`` outcomes. The exceptions below describe defects in
the harness itself (bad bounds, duplicate registrations, crashing handler
code) or a harness that cannot make progress.
"""

from __future__ import annotations

from typing import Any


class FuzzError(Exception):
    """Base class for all engine errors."""


class BoundError(FuzzError, ValueError):
    """Raised when a value cannot be mapped into the requested range."""


class RegistrationError(FuzzError):
    """Raised on duplicate or late registration of actions and invariants."""


class HandlerError(FuzzError):
    """Raised when harness code (bounds, precondition, ghost update) crashes."""

    def __init__(self, action: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"Handler '{action}' failed during {stage}: {cause!r}")
        self.action = action
        self.stage = stage
        self.cause = cause


class HarnessExhaustedError(FuzzError):
    """Raised when the harness cannot explore meaningfully.

    Either too many steps were rejected (handler bounds or preconditions are
    too narrow) or the wall-clock budget ran out.
    """

    def __init__(
        self, reason: str, rejects: int = 0, limit: int = 0, partial: Any = None
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.rejects = rejects
        self.limit = limit
        # Execution result of the run that hit the limit, when there is one.
        self.partial = partial
