"""Campaign driver — runs, shrinks and reports.

Architecture
------------
::

    FuzzCampaign
      │
      ├── Executor            — fresh SUT + ghost per run / replay
      │     ├── SequenceGenerator   (one seeded stream per run)
      │     ├── HandlerRegistry     (bounds → precondition → call → ghost)
      │     └── InvariantSet        (checked after every step)
      ├── Shrinker            — minimizes the first failing run
      └── CampaignResult      — verdict, failure reports, call metrics

Each run gets its own seed derived from the campaign seed and its run
index, so runs are independent of each other and of the order they are
scheduled in. With ``workers > 1`` runs are executed in batches on worker
threads and merged back in run order; the reported failure is always the
lowest failing run index, whatever order the threads finished in.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import uuid
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from ghostfuzz.core.config import FuzzConfig
from ghostfuzz.core.logging import campaign_scope
from ghostfuzz.core.types import FailureReport, Verdict
from ghostfuzz.fuzzer.actors import ActorPool
from ghostfuzz.fuzzer.bounds import derive_seed
from ghostfuzz.fuzzer.errors import HarnessExhaustedError
from ghostfuzz.fuzzer.executor import CallStats, ExecutionResult, Executor
from ghostfuzz.fuzzer.generator import SequenceGenerator
from ghostfuzz.fuzzer.ghost import GhostState
from ghostfuzz.fuzzer.handlers import HandlerRegistry, SUTFactory
from ghostfuzz.fuzzer.invariants import InvariantSet
from ghostfuzz.fuzzer.models import request_from_record
from ghostfuzz.fuzzer.shrinker import Shrinker

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class RunResult:
    """Outcome of one independent run."""

    run_index: int
    run_seed: int
    execution: ExecutionResult | None = None
    exhausted: HarnessExhaustedError | None = None


@dataclass
class CampaignResult:
    """Results from an invariant fuzzing campaign."""

    campaign_id: str
    seed: int
    verdict: Verdict = Verdict.PASS
    runs_completed: int = 0
    total_steps: int = 0
    successes: int = 0
    rejects: int = 0
    reverts: int = 0
    failures: list[FailureReport] = field(default_factory=list)
    call_stats: dict[str, CallStats] = field(default_factory=dict)
    harness_error: str = ""
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    @property
    def failure(self) -> FailureReport | None:
        return self.failures[0] if self.failures else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "seed": self.seed,
            "verdict": self.verdict.value,
            "runs_completed": self.runs_completed,
            "total_steps": self.total_steps,
            "successes": self.successes,
            "rejects": self.rejects,
            "reverts": self.reverts,
            "failures": [f.model_dump(mode="json") for f in self.failures],
            "call_stats": {name: s.to_dict() for name, s in self.call_stats.items()},
            "harness_error": self.harness_error,
            "duration_seconds": round(self.duration_seconds, 3),
        }

    def summary(self) -> str:
        lines = [
            f"Campaign {self.campaign_id}: {self.verdict.value.upper()} "
            f"(seed={self.seed}, runs={self.runs_completed}, steps={self.total_steps}, "
            f"rejects={self.rejects}, reverts={self.reverts})",
        ]
        if self.harness_error:
            lines.append(f"  harness: {self.harness_error}")
        for name, stats in self.call_stats.items():
            lines.append(
                f"  {name}: calls={stats.calls} ok={stats.successes} "
                f"rejected={stats.rejects} reverted={stats.reverts}"
            )
        lines.extend(f.summary() for f in self.failures)
        return "\n".join(lines)


@dataclass
class _Progress:
    """Mutable campaign bookkeeping shared by the sync and async paths."""

    result: CampaignResult
    started: float
    counted_rejects: int = 0
    stop: bool = False


# ── Campaign ─────────────────────────────────────────────────────────────────


class FuzzCampaign:
    """Stateful invariant fuzzing campaign against one SUT factory.

    Usage::

        campaign = FuzzCampaign(registry, invariants, Ledger, FuzzConfig(seed=1))
        result = campaign.run()
        if not result.passed:
            print(result.failure.summary())
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        invariants: InvariantSet,
        sut_factory: SUTFactory,
        config: FuzzConfig,
        actors: ActorPool | None = None,
        ghost_factory: Callable[[], GhostState] | None = None,
        initial_ghost: Mapping[str, Any] | None = None,
    ) -> None:
        if ghost_factory is None:
            ghost_factory = functools.partial(GhostState, initial_ghost)
        self.config = config
        self.pool = actors or ActorPool(config.actors, config.actor_labels)
        self.registry = registry
        self.invariants = invariants
        registry.freeze()
        self.executor = Executor(
            registry, invariants, self.pool, sut_factory, config, ghost_factory
        )
        self.campaign_id = uuid.uuid4().hex[:12]
        # Fail fast on a registry the generator cannot draw from.
        self._generator(0)

    # ── Public API ───────────────────────────────────────────────────

    def run(self) -> CampaignResult:
        """Execute the campaign. Uses worker threads when ``workers > 1``."""
        if self.config.workers > 1:
            return asyncio.run(self.run_async())

        with campaign_scope(self.campaign_id):
            progress = self._start()
            for batch in self._batches():
                if self._deadline_passed(progress):
                    break
                budget = self._remaining_rejects(progress)
                results = [self._execute_run(i, budget) for i in batch]
                self._absorb(progress, results)
                if progress.stop:
                    break
            return self._finish(progress)

    async def run_async(self) -> CampaignResult:
        """Execute the campaign, scheduling each batch of runs on worker threads."""
        with campaign_scope(self.campaign_id):
            progress = self._start()
            for batch in self._batches():
                if self._deadline_passed(progress):
                    break
                budget = self._remaining_rejects(progress)
                # to_thread copies the context, so workers log under this campaign.
                results = await asyncio.gather(
                    *(asyncio.to_thread(self._execute_run, i, budget) for i in batch)
                )
                self._absorb(progress, list(results))
                if progress.stop:
                    break
            return self._finish(progress)

    def replay(self, report: FailureReport, minimal: bool = True) -> ExecutionResult:
        """Re-execute a stored counterexample from fresh state.

        Returns the execution; ``execution.violation`` is ``None`` when the
        failure no longer reproduces (e.g. after the SUT was fixed).
        """
        records = report.minimal_sequence if minimal else report.full_sequence
        return self.executor.replay(
            [request_from_record(r) for r in records], record_ghost=True
        )

    # ── Runs ─────────────────────────────────────────────────────────

    def _generator(self, run_index: int) -> SequenceGenerator:
        return SequenceGenerator(
            self.registry,
            self.pool,
            seed=derive_seed(self.config.seed, "run", run_index),
            depth=self.config.depth,
            dictionary=self.config.dictionary,
            dictionary_weight=self.config.dictionary_weight,
        )

    def _execute_run(self, run_index: int, reject_budget: int) -> RunResult:
        run_seed = derive_seed(self.config.seed, "run", run_index)
        run = RunResult(run_index=run_index, run_seed=run_seed)
        with campaign_scope(self.campaign_id, run_index):
            try:
                run.execution = self.executor.run(self._generator(run_index), reject_budget)
            except HarnessExhaustedError as exc:
                run.exhausted = exc
        return run

    def _batches(self) -> Iterator[list[int]]:
        size = self.config.workers
        for start in range(0, self.config.runs, size):
            yield list(range(start, min(start + size, self.config.runs)))

    # ── Bookkeeping ──────────────────────────────────────────────────

    def _start(self) -> _Progress:
        logger.info(
            "Invariant campaign: %d runs x depth %d, %d actions, %d invariants, seed=%d",
            self.config.runs, self.config.depth, len(self.registry),
            len(self.invariants), self.config.seed,
            extra={"campaign_id": self.campaign_id, "seed": self.config.seed},
        )
        return _Progress(
            result=CampaignResult(campaign_id=self.campaign_id, seed=self.config.seed),
            started=time.monotonic(),
        )

    def _remaining_rejects(self, progress: _Progress) -> int:
        return max(0, self.config.max_rejects - progress.counted_rejects)

    def _deadline_passed(self, progress: _Progress) -> bool:
        limit = self.config.max_duration_sec
        if limit is None or time.monotonic() - progress.started <= limit:
            return False
        progress.result.harness_error = (
            f"wall-clock budget of {limit:.1f}s exceeded after "
            f"{progress.result.runs_completed} runs"
        )
        progress.stop = True
        logger.warning("%s", progress.result.harness_error, extra={"campaign_id": self.campaign_id})
        return True

    def _tally(self, progress: _Progress, execution: ExecutionResult) -> None:
        result = progress.result
        result.total_steps += execution.attempted
        result.successes += execution.successes
        result.rejects += execution.rejects
        result.reverts += execution.reverts
        for name, stats in execution.stats.items():
            result.call_stats.setdefault(name, CallStats()).merge(stats)
        progress.counted_rejects += execution.counted_rejects(self.config.fail_on_revert)

    def _absorb(self, progress: _Progress, runs: list[RunResult]) -> None:
        """Merge a batch of run results in run order.

        Every run of a batch was started with the reject budget left at the
        start of the batch. The budget is charged again here, run by run, so
        a batch stops at the same step a sequential campaign would.
        """
        result = progress.result
        for run in sorted(runs, key=lambda r: r.run_index):
            budget = self._remaining_rejects(progress)
            execution = run.execution
            if run.exhausted is not None:
                execution = run.exhausted.partial or ExecutionResult()
            overrun = execution.budget_overrun(budget, self.config.fail_on_revert)
            if overrun is not None or run.exhausted is not None:
                if overrun is not None:
                    execution = execution.truncated(overrun + 1)
                self._exhaust(progress, run, execution, budget)
                return

            self._tally(progress, execution)
            result.runs_completed += 1

            if execution.failed:
                logger.warning(
                    "Run %d violated '%s' at step %d: %s",
                    run.run_index, execution.violation.invariant_id,
                    execution.violation.step, execution.violation.message,
                    extra={
                        "campaign_id": self.campaign_id,
                        "run_index": run.run_index,
                        "invariant_id": execution.violation.invariant_id,
                    },
                )
                with campaign_scope(self.campaign_id, run.run_index):
                    result.failures.append(self._report(run))
                if not self.config.continue_on_failure:
                    progress.stop = True
                    return

            if progress.counted_rejects > self.config.max_rejects:
                result.harness_error = (
                    f"too many rejected steps ({progress.counted_rejects} > "
                    f"max_rejects={self.config.max_rejects}); handler bounds or "
                    "preconditions are too narrow"
                )
                progress.stop = True
                logger.error("%s", result.harness_error, extra={"campaign_id": self.campaign_id})
                return

            if (run.run_index + 1) % self.config.progress_interval == 0:
                logger.info(
                    "Progress: %d/%d runs, %d steps, %d rejects, %d failures",
                    run.run_index + 1, self.config.runs, result.total_steps,
                    result.rejects, len(result.failures),
                    extra={"campaign_id": self.campaign_id},
                )

    def _exhaust(
        self, progress: _Progress, run: RunResult, execution: ExecutionResult, budget: int
    ) -> None:
        self._tally(progress, execution)
        counted = execution.counted_rejects(self.config.fail_on_revert)
        progress.result.harness_error = (
            f"too many rejected steps ({counted} > {budget} remaining); "
            "handler bounds or preconditions are too narrow"
        )
        progress.stop = True
        logger.error(
            "Harness exhausted in run %d: %s", run.run_index, progress.result.harness_error,
            extra={"campaign_id": self.campaign_id, "run_index": run.run_index},
        )

    def _finish(self, progress: _Progress) -> CampaignResult:
        result = progress.result
        result.duration_seconds = time.monotonic() - progress.started
        if result.failures:
            result.verdict = Verdict.FAIL
        elif result.harness_error:
            result.verdict = Verdict.HARNESS_EXHAUSTED
        else:
            result.verdict = Verdict.PASS

        logger.info(
            "Invariant campaign complete: %s, %d runs, %d steps (%d rejected, %d reverted) in %.1fs",
            result.verdict.value, result.runs_completed, result.total_steps,
            result.rejects, result.reverts, result.duration_seconds,
            extra={
                "campaign_id": self.campaign_id,
                "duration_ms": int(result.duration_seconds * 1000),
            },
        )
        return result

    # ── Failure reports ──────────────────────────────────────────────

    def _report(self, run: RunResult) -> FailureReport:
        execution = run.execution
        violation = execution.violation
        minimal = execution
        attempts = 0
        fully_minimized = True

        if self.config.shrink and execution.steps:
            shrinker = Shrinker(self.executor.replay, self.config.shrink_run_limit)
            shrunk = shrinker.shrink(execution)
            attempts = shrunk.attempts
            fully_minimized = shrunk.fully_minimized
            minimal = shrunk.execution
        elif execution.steps:
            fully_minimized = False

        # One more replay of the minimal sequence, recording ghost snapshots.
        diagnostics = self.executor.replay(minimal.requests, record_ghost=True)
        if (
            diagnostics.violation is None
            or diagnostics.violation.invariant_id != violation.invariant_id
        ):
            logger.warning(
                "Minimal sequence did not reproduce '%s' on the diagnostic replay; "
                "the SUT may be non-deterministic",
                violation.invariant_id,
                extra={"campaign_id": self.campaign_id, "run_index": run.run_index},
            )
            diagnostics = minimal

        final = diagnostics.violation or violation
        return FailureReport(
            invariant_id=violation.invariant_id,
            message=final.message,
            severity=violation.severity,
            seed=self.config.seed,
            run_index=run.run_index,
            run_seed=run.run_seed,
            failing_step=violation.step,
            full_sequence=[step.to_record() for step in execution.steps],
            minimal_sequence=[step.to_record() for step in diagnostics.steps],
            fully_minimized=fully_minimized,
            shrink_attempts=attempts,
        )
