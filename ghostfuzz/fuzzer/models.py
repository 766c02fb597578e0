"""Data models for generated and executed steps."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from ghostfuzz.core.types import OutcomeKind, StepRecord
from ghostfuzz.fuzzer.actors import Actor

_PLAIN = (int, float, str, bool, type(None))


@dataclass(frozen=True)
class Outcome:
    """Result of one step: ``success(output)``, ``rejected`` or ``reverted``."""

    kind: OutcomeKind
    output: Any = None
    reason: str = ""

    @classmethod
    def success(cls, output: Any = None) -> Outcome:
        return cls(OutcomeKind.SUCCESS, output=output)

    @classmethod
    def rejected(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.REJECTED, reason=reason)

    @classmethod
    def reverted(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.REVERTED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass(frozen=True)
class StepRequest:
    """What the generator drew for one step, before materialization.

    ``raw_inputs`` holds one raw 256-bit value per declared input of the
    action. Replaying a request re-applies the action's bounds against the
    state reached at that point, so a request stays meaningful after earlier
    steps have been removed by the shrinker.
    """

    action: str
    actor_raw: int
    raw_inputs: tuple[int, ...] = ()
    origin: int = 0

    def with_raw(self, position: int, raw: int) -> StepRequest:
        raws = list(self.raw_inputs)
        raws[position] = raw
        return replace(self, raw_inputs=tuple(raws))

    def with_actor(self, actor_raw: int) -> StepRequest:
        return replace(self, actor_raw=actor_raw)


@dataclass
class Step:
    """An executed step."""

    index: int
    request: StepRequest
    actor: Actor
    args: dict[str, Any] = field(default_factory=dict)
    outcome: Outcome = field(default_factory=lambda: Outcome.rejected("not executed"))
    # Offsets of the concrete inputs from their lower bounds, by input position.
    offsets: dict[int, int] = field(default_factory=dict)
    ghost: dict[str, Any] | None = None

    @property
    def action(self) -> str:
        return self.request.action

    @property
    def origin(self) -> int:
        return self.request.origin

    @property
    def signature(self) -> str:
        arg_str = ", ".join(f"{k}={_plain(v)}" for k, v in self.args.items())
        return f"{self.actor} -> {self.action}({arg_str})"

    def to_record(self) -> StepRecord:
        return StepRecord(
            index=self.index,
            origin=self.origin,
            actor=str(self.actor),
            actor_raw=self.request.actor_raw,
            action=self.action,
            args={k: _plain(v) for k, v in self.args.items()},
            raw_inputs=list(self.request.raw_inputs),
            outcome=self.outcome.kind,
            output=_plain(self.outcome.output),
            reason=self.outcome.reason,
            ghost=self.ghost,
        )


def _plain(value: Any) -> Any:
    """JSON-friendly rendering of argument and output values."""
    if isinstance(value, _PLAIN):
        return value
    if isinstance(value, Actor):
        return value.address
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return repr(value)


def request_from_record(record: StepRecord) -> StepRequest:
    """Rebuild the replayable request behind a stored step record."""
    return StepRequest(
        action=record.action,
        actor_raw=record.actor_raw,
        raw_inputs=tuple(record.raw_inputs),
        origin=record.origin,
    )
