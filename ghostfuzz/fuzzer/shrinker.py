"""Shrinker — reduces a failing sequence to a minimal counterexample.

Three reductions alternate until none makes progress:

* **Coarse** — delete contiguous blocks of steps, halves first, then
  quarters, down to single steps (delta debugging).
* **Fine** — for each remaining step, move the caller toward the first
  actor in the pool and each input's raw offset toward zero, i.e. the
  concrete value toward the input's lower bound: try zero, then
  binary-search between zero and the current offset.
* **Merge** — hand every call of one actor to another actor, either one
  already in the sequence or one earlier in the pool. A transfer between
  two merged actors becomes a rejected self-transfer, which the next
  coarse pass deletes.

A candidate is kept only if a full replay from a fresh SUT + ghost pair
fails the same invariant at the same original step or a later one. The
kept sequence is the executed prefix of that replay, so it always ends on
the failing step. Nothing is cached: every candidate is replayed.

The replay budget (``shrink_run_limit``) bounds the search. When it runs
out the best sequence found so far is returned with
``fully_minimized=False``. A candidate whose replay crashes harness code
is discarded the same way, and the result is also marked as not fully
minimized.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ghostfuzz.fuzzer.errors import HandlerError
from ghostfuzz.fuzzer.executor import ExecutionResult
from ghostfuzz.fuzzer.models import StepRequest

logger = logging.getLogger(__name__)

Replay = Callable[[Sequence[StepRequest]], ExecutionResult]


@dataclass
class ShrinkResult:
    """Outcome of shrinking one failing execution."""

    requests: list[StepRequest]
    execution: ExecutionResult
    attempts: int
    fully_minimized: bool

    @property
    def length(self) -> int:
        return len(self.requests)


class Shrinker:
    """Delta-debugging plus numeric minimization over replayable requests."""

    def __init__(self, replay: Replay, limit: int) -> None:
        self._replay = replay
        self._limit = limit
        self._attempts = 0
        self._exhausted = False
        self._harness_errors = 0
        self._target_id = ""
        self._target_origin = 0
        self._best: ExecutionResult | None = None

    @property
    def attempts(self) -> int:
        return self._attempts

    def shrink(self, failing: ExecutionResult) -> ShrinkResult:
        """Shrink ``failing``, whose last step must be the violating one."""
        if failing.violation is None:
            raise ValueError("Cannot shrink an execution without a violation")

        self._attempts = 0
        self._exhausted = False
        self._harness_errors = 0
        self._best = failing
        self._target_id = failing.violation.invariant_id
        step = failing.failing_step
        if step is None:
            # Initial-state violation: the empty sequence already reproduces it.
            return ShrinkResult([], failing, 0, True)
        self._target_origin = step.origin

        original = len(failing.steps)
        while True:
            progress = self._coarse()
            if not self._exhausted:
                progress = self._fine() or progress
            if not self._exhausted:
                progress = self._merge_actors() or progress
            if self._exhausted or not progress:
                break

        best = self._best
        logger.info(
            "Shrunk '%s' counterexample: %d -> %d steps in %d replays%s",
            self._target_id, original, len(best.steps), self._attempts,
            "" if not self._exhausted else " (replay limit reached)",
        )
        return ShrinkResult(
            requests=best.requests,
            execution=best,
            attempts=self._attempts,
            fully_minimized=not self._exhausted and not self._harness_errors,
        )

    # ── Candidate evaluation ─────────────────────────────────────────

    def _try(self, candidate: list[StepRequest]) -> bool:
        if self._attempts >= self._limit:
            self._exhausted = True
            return False
        self._attempts += 1

        try:
            result = self._replay(candidate)
        except HandlerError as exc:
            # The violation already found stays valid; drop this candidate only.
            self._harness_errors += 1
            logger.warning("Shrink candidate discarded: %s", exc)
            return False
        step = result.failing_step
        if (
            result.violation is None
            or result.violation.invariant_id != self._target_id
            or step is None
            or step.origin < self._target_origin
        ):
            return False

        self._best = result
        self._target_origin = step.origin
        return True

    # ── Coarse reduction ─────────────────────────────────────────────

    def _coarse(self) -> bool:
        """Delete blocks of steps before the failing step."""
        progress = False
        current = self._best.requests
        chunk = (len(current) - 1) // 2 or 1
        while chunk >= 1:
            i = 0
            while i < len(current) - 1:
                end = min(i + chunk, len(current) - 1)
                candidate = current[:i] + current[end:]
                if self._try(candidate):
                    current = self._best.requests
                    progress = True
                elif self._exhausted:
                    return progress
                else:
                    i += chunk
            chunk //= 2
        return progress

    # ── Fine reduction ───────────────────────────────────────────────

    def _fine(self) -> bool:
        """Shrink each caller toward the first actor and each raw offset toward zero."""
        progress = False
        position = 0
        while position < len(self._best.steps):
            if self._shrink_actor(position):
                progress = True
            if self._exhausted:
                return progress
            step = self._best.steps[position]
            for slot in range(len(step.request.raw_inputs)):
                if self._shrink_input(position, slot):
                    progress = True
                if self._exhausted:
                    return progress
            position += 1
        return progress

    def _shrink_input(self, position: int, slot: int) -> bool:
        step = self._best.steps[position]
        offset = step.offsets.get(slot)
        if offset is None:
            return False
        raw = step.request.raw_inputs[slot]
        if raw == 0:
            return False

        if self._try(self._with_raw(position, slot, 0)):
            return True
        if self._exhausted or offset <= 1:
            return False

        # ``low`` never reproduces the failure, ``high`` always does.
        low, high = 0, offset
        found = False
        while high - low > 1:
            mid = (low + high) // 2
            if self._try(self._with_raw(position, slot, mid)):
                high = mid
                found = True
            elif self._exhausted:
                break
            else:
                low = mid
        return found

    def _with_raw(self, position: int, slot: int, raw: int) -> list[StepRequest]:
        requests = self._best.requests
        requests[position] = requests[position].with_raw(slot, raw)
        return requests

    def _shrink_actor(self, position: int) -> bool:
        step = self._best.steps[position]
        # Raw values below the pool size select that actor directly.
        for index in range(step.actor.index + 1):
            if index == step.request.actor_raw:
                return False
            if self._try(self._with_actor(position, index)):
                return True
            if self._exhausted:
                return False
        return False

    def _with_actor(self, position: int, actor_raw: int) -> list[StepRequest]:
        requests = self._best.requests
        requests[position] = requests[position].with_actor(actor_raw)
        return requests

    # ── Actor merging ────────────────────────────────────────────────

    def _merge_actors(self) -> bool:
        """Reassign all calls of one actor to another actor.

        The target is either an actor already in the sequence or any actor
        earlier in the pool. Every accepted candidate lowers the number of
        distinct callers or the sum of their indices, so the loop ends.
        """
        progress = False
        merged = True
        while merged:
            merged = False
            for source, target in self._merge_pairs():
                candidate = [
                    step.request.with_actor(target) if step.actor.index == source else step.request
                    for step in self._best.steps
                ]
                if self._try(candidate):
                    progress = merged = True
                    break
                if self._exhausted:
                    return progress
        return progress

    def _merge_pairs(self) -> list[tuple[int, int]]:
        present = sorted({step.actor.index for step in self._best.steps})
        return [
            (source, target)
            for source in present
            for target in sorted(set(present) | set(range(source)))
            if target != source
        ]
