"""Shared enums and report schemas used across the engine."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class Severity(str, enum.Enum):
    """Severity attached to an invariant."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFORMATIONAL = "informational"


class Verdict(str, enum.Enum):
    """Outcome of a whole campaign."""

    PASS = "pass"
    FAIL = "fail"
    HARNESS_EXHAUSTED = "harness_exhausted"


class OutcomeKind(str, enum.Enum):
    """Outcome of a single step."""

    SUCCESS = "success"
    REJECTED = "rejected"
    REVERTED = "reverted"


# ── Report Schemas ───────────────────────────────────────────────────────────


class StepRecord(BaseModel):
    """Serializable view of one executed step."""

    index: int
    origin: int
    actor: str
    actor_raw: int
    action: str
    args: dict[str, Any] = Field(default_factory=dict)
    raw_inputs: list[int] = Field(default_factory=list)
    outcome: OutcomeKind
    output: Any = None
    reason: str = ""
    ghost: dict[str, Any] | None = None

    @property
    def signature(self) -> str:
        """Human-readable call signature."""
        arg_str = ", ".join(f"{k}={v}" for k, v in self.args.items())
        return f"{self.actor} -> {self.action}({arg_str})"

    def describe(self) -> str:
        line = f"[{self.index}] {self.signature} => {self.outcome.value}"
        if self.reason:
            line += f" ({self.reason})"
        elif self.output is not None:
            line += f" -> {self.output}"
        return line


class FailureReport(BaseModel):
    """A reproducible failure found by a campaign.

    ``full_sequence`` is the executed prefix of the failing run, up to and
    including the step that broke the invariant. ``minimal_sequence`` is the
    shrunk counterexample, re-executed once more so that each record also
    carries the ghost snapshot taken after that step.
    """

    invariant_id: str
    message: str
    severity: Severity = Severity.HIGH
    seed: int
    run_index: int
    run_seed: int
    failing_step: int
    full_sequence: list[StepRecord] = Field(default_factory=list)
    minimal_sequence: list[StepRecord] = Field(default_factory=list)
    fully_minimized: bool = True
    shrink_attempts: int = 0

    @property
    def per_step_diagnostics(self) -> list[str]:
        return [record.describe() for record in self.minimal_sequence]

    def summary(self) -> str:
        status = "minimal" if self.fully_minimized else "not fully minimized"
        lines = [
            f"Invariant '{self.invariant_id}' violated ({self.severity.value}): {self.message}",
            f"  seed={self.seed} run={self.run_index} "
            f"steps {len(self.full_sequence)} -> {len(self.minimal_sequence)} ({status}, "
            f"{self.shrink_attempts} shrink replays)",
        ]
        lines.extend(f"  {line}" for line in self.per_step_diagnostics)
        return "\n".join(lines)
