"""Sequence executor — runs steps against a fresh SUT + ghost pair.

The driver and the shrinker both go through ``Executor``. A generated run
pulls its requests from a ``SequenceGenerator``; a replay pulls them from a
fixed list. Either way every execution starts from a brand new SUT instance
and a brand new ghost state, checks invariants on the initial state, and
then checks them after every step, rejected ones included.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ghostfuzz.core.config import FuzzConfig
from ghostfuzz.core.types import OutcomeKind, Severity
from ghostfuzz.fuzzer.actors import ActorPool
from ghostfuzz.fuzzer.errors import HarnessExhaustedError
from ghostfuzz.fuzzer.generator import SequenceGenerator
from ghostfuzz.fuzzer.ghost import GhostState, GhostView
from ghostfuzz.fuzzer.handlers import HandlerRegistry, SUTFactory, SystemUnderTest
from ghostfuzz.fuzzer.invariants import INITIAL_STEP, InvariantSet, Violation
from ghostfuzz.fuzzer.models import Step, StepRequest

logger = logging.getLogger(__name__)

REVERT_FINDING_ID = "unexpected_revert"


@dataclass
class CallStats:
    """Per-action call counters."""

    calls: int = 0
    successes: int = 0
    rejects: int = 0
    reverts: int = 0

    def record(self, kind: OutcomeKind) -> None:
        self.calls += 1
        if kind is OutcomeKind.SUCCESS:
            self.successes += 1
        elif kind is OutcomeKind.REJECTED:
            self.rejects += 1
        else:
            self.reverts += 1

    def merge(self, other: CallStats) -> None:
        self.calls += other.calls
        self.successes += other.successes
        self.rejects += other.rejects
        self.reverts += other.reverts

    def to_dict(self) -> dict[str, int]:
        return {
            "calls": self.calls,
            "successes": self.successes,
            "rejects": self.rejects,
            "reverts": self.reverts,
        }


@dataclass
class ExecutionResult:
    """Everything one execution of a sequence produced."""

    steps: list[Step] = field(default_factory=list)
    violation: Violation | None = None
    successes: int = 0
    rejects: int = 0
    reverts: int = 0
    stats: dict[str, CallStats] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.violation is not None

    @property
    def attempted(self) -> int:
        return len(self.steps)

    @property
    def failing_step(self) -> Step | None:
        if self.violation is None or self.violation.step == INITIAL_STEP:
            return None
        return self.steps[self.violation.step]

    @property
    def requests(self) -> list[StepRequest]:
        return [step.request for step in self.steps]

    def counted_rejects(self, fail_on_revert: bool) -> int:
        """Rejections charged against ``max_rejects``; tolerated reverts count too."""
        return self.rejects if fail_on_revert else self.rejects + self.reverts

    def add(self, step: Step) -> None:
        self.steps.append(step)
        kind = step.outcome.kind
        self.stats.setdefault(step.action, CallStats()).record(kind)
        if kind is OutcomeKind.SUCCESS:
            self.successes += 1
        elif kind is OutcomeKind.REJECTED:
            self.rejects += 1
        else:
            self.reverts += 1

    def budget_overrun(self, budget: int, fail_on_revert: bool) -> int | None:
        """Index of the step at which counted rejects first exceed ``budget``.

        Returns ``None`` when the budget holds up to the end of the execution
        or up to the violating step, which is reported ahead of the budget.
        """
        counted = 0
        for step in self.steps:
            if self.violation is not None and step.index == self.violation.step:
                return None
            kind = step.outcome.kind
            if kind is OutcomeKind.REJECTED or (
                kind is OutcomeKind.REVERTED and not fail_on_revert
            ):
                counted += 1
            if counted > budget:
                return step.index
        return None

    def truncated(self, length: int) -> ExecutionResult:
        """The first ``length`` steps with counters rebuilt and no violation."""
        result = ExecutionResult()
        for step in self.steps[:length]:
            result.add(step)
        return result


class Executor:
    """Executes request streams against fresh SUT + ghost instances."""

    def __init__(
        self,
        registry: HandlerRegistry,
        invariants: InvariantSet,
        pool: ActorPool,
        sut_factory: SUTFactory,
        config: FuzzConfig,
        ghost_factory: Callable[[], GhostState] | None = None,
    ) -> None:
        self.registry = registry
        self.invariants = invariants
        self.pool = pool
        self.config = config
        self._sut_factory = sut_factory
        self._ghost_factory = ghost_factory or GhostState

    def fresh(self) -> tuple[SystemUnderTest, GhostState]:
        return self._sut_factory(self.config), self._ghost_factory()

    def run(
        self,
        generator: SequenceGenerator,
        reject_budget: int | None = None,
    ) -> ExecutionResult:
        """Execute a generated run until depth, a violation, or the reject budget."""
        return self._execute(
            generator.next_request,
            on_success=generator.record_output,
            reject_budget=reject_budget,
        )

    def replay(
        self,
        requests: Iterable[StepRequest],
        record_ghost: bool = False,
    ) -> ExecutionResult:
        """Re-execute a fixed list of requests from scratch."""
        pending = iter(list(requests))

        def next_request(ghost: GhostView, view: Any) -> StepRequest | None:
            return next(pending, None)

        return self._execute(next_request, record_ghost=record_ghost)

    def _execute(
        self,
        next_request: Callable[[GhostView, Any], StepRequest | None],
        on_success: Callable[[Any], None] | None = None,
        reject_budget: int | None = None,
        record_ghost: bool = False,
    ) -> ExecutionResult:
        result = ExecutionResult()
        sut, ghost = self.fresh()
        view = sut.observe()

        result.violation = self.invariants.check(view, ghost.view(), INITIAL_STEP)
        if result.violation is not None:
            return result

        fail_on_revert = self.config.fail_on_revert
        index = 0
        while (request := next_request(ghost.view(), view)) is not None:
            step = self.registry.execute(request, index, ghost, sut, view, self.pool)
            result.add(step)
            kind = step.outcome.kind
            if kind is OutcomeKind.SUCCESS and on_success is not None:
                on_success(step.outcome.output)

            logger.debug(
                "step %d: %s => %s %s",
                index, step.signature, kind.value, step.outcome.reason,
            )

            view = sut.observe()
            if record_ghost:
                step.ghost = ghost.snapshot()

            result.violation = self.invariants.check(view, ghost.view(), index)
            if result.violation is None and fail_on_revert and kind is OutcomeKind.REVERTED:
                result.violation = Violation(
                    invariant_id=REVERT_FINDING_ID,
                    message=f"{step.signature} reverted: {step.outcome.reason}",
                    step=index,
                    severity=Severity.MEDIUM,
                )
            if result.violation is not None:
                return result

            if reject_budget is not None:
                counted = result.counted_rejects(fail_on_revert)
                if counted > reject_budget:
                    raise HarnessExhaustedError(
                        f"too many rejected steps ({counted} > {reject_budget} remaining); "
                        "handler bounds or preconditions are too narrow",
                        rejects=counted,
                        limit=reject_budget,
                        partial=result,
                    )
            index += 1

        return result

