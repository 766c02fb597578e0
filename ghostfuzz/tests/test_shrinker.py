"""Tests for the counterexample shrinker."""

from __future__ import annotations

import pytest

from ghostfuzz.core.types import OutcomeKind
from ghostfuzz.fuzzer.actors import ActorPool
from ghostfuzz.fuzzer.executor import ExecutionResult, Executor
from ghostfuzz.fuzzer.generator import SequenceGenerator
from ghostfuzz.fuzzer.handlers import Action
from ghostfuzz.fuzzer.invariants import Invariant, InvariantSet
from ghostfuzz.fuzzer.models import StepRequest
from ghostfuzz.fuzzer.shrinker import Shrinker
from ghostfuzz.targets.ledger import BuggyLedger, ledger_harness

from conftest import COUNTER_CAP, CounterSUT, build_counter_harness


def _failing_run(executor: Executor, pool: ActorPool, min_steps: int = 1) -> ExecutionResult:
    for seed in range(5, 500):
        gen = SequenceGenerator(executor.registry, pool, seed=seed, depth=40)
        result = executor.run(gen)
        if result.failed and len(result.steps) >= min_steps:
            return result
    raise AssertionError(f"no failing run with at least {min_steps} steps found")


@pytest.fixture
def executor(pool, counter_harness, make_config) -> Executor:
    registry, invariants = counter_harness
    return Executor(registry, invariants, pool, CounterSUT, make_config(depth=40))


class TestShrinker:
    """Coarse deletion plus numeric minimization."""

    def test_counter_minimal_total(self, executor, pool):
        failing = _failing_run(executor, pool)
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)

        steps = shrunk.execution.steps
        assert shrunk.fully_minimized
        assert shrunk.execution.violation.invariant_id == "cap"
        assert all(step.action == "bump" for step in steps)
        assert all(step.outcome.kind is OutcomeKind.SUCCESS for step in steps)
        assert sum(step.args["amount"] for step in steps) == COUNTER_CAP + 1
        assert len(shrunk.requests) == len(steps)
        assert all(step.actor.index == 0 for step in steps)
        assert all(request.actor_raw == 0 for request in shrunk.requests)

    def test_result_is_subsequence_of_failing_run(self, executor, pool):
        failing = _failing_run(executor, pool, min_steps=4)
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)

        origins = [request.origin for request in shrunk.requests]
        assert origins == sorted(set(origins))
        original = {request.origin: request for request in failing.requests}
        assert set(origins) <= set(original)
        for request in shrunk.requests:
            assert request.action == original[request.origin].action

    def test_minimal_is_not_longer(self, executor, pool):
        failing = _failing_run(executor, pool)
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)
        assert len(shrunk.requests) <= len(failing.steps)

    def test_minimal_still_fails_on_replay(self, executor, pool):
        failing = _failing_run(executor, pool)
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)
        replayed = executor.replay(shrunk.requests)
        assert replayed.violation is not None
        assert replayed.violation.invariant_id == "cap"

    def test_failing_step_is_last(self, executor, pool):
        failing = _failing_run(executor, pool)
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)
        assert shrunk.execution.violation.step == len(shrunk.execution.steps) - 1

    def test_replay_limit(self, executor, pool):
        failing = _failing_run(executor, pool, min_steps=6)
        assert len(failing.steps) >= 6
        shrunk = Shrinker(executor.replay, limit=3).shrink(failing)
        assert shrunk.attempts == 3
        assert not shrunk.fully_minimized
        assert shrunk.execution.violation.invariant_id == "cap"

    def test_zero_limit_keeps_original(self, executor, pool):
        failing = _failing_run(executor, pool)
        shrunk = Shrinker(executor.replay, limit=0).shrink(failing)
        assert shrunk.attempts == 0
        assert shrunk.requests == failing.requests

    def test_requires_violation(self, executor):
        with pytest.raises(ValueError):
            Shrinker(executor.replay, limit=10).shrink(ExecutionResult())

    def test_initial_violation_shrinks_to_empty(self, pool, counter_harness, make_config):
        registry, _ = counter_harness
        invariants = InvariantSet([Invariant("never", lambda view, ghost: False)])
        executor = Executor(registry, invariants, pool, CounterSUT, make_config())
        failing = executor.run(SequenceGenerator(registry, pool, seed=1, depth=5))
        assert failing.failing_step is None

        shrunk = Shrinker(executor.replay, limit=10).shrink(failing)
        assert shrunk.requests == []
        assert shrunk.fully_minimized

    def test_other_invariant_is_not_accepted(self, pool, counter_harness, make_config):
        registry, _ = counter_harness
        # A jump past both limits reports "cap"; anything else reports "small".
        invariants = InvariantSet([
            Invariant("cap", lambda view, ghost: view["count"] <= COUNTER_CAP),
            Invariant("small", lambda view, ghost: view["count"] <= 10),
        ])
        executor = Executor(registry, invariants, pool, CounterSUT, make_config(depth=40))
        failing = _failing_run(executor, pool)
        target = failing.violation.invariant_id
        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)
        assert shrunk.execution.violation.invariant_id == target


class TestActorShrinking:
    """Callers are reduced as well as values and steps."""

    @pytest.fixture
    def ledger_executor(self, pool, make_config) -> Executor:
        registry, invariants = ledger_harness()
        return Executor(registry, invariants, pool, BuggyLedger, make_config())

    def test_transfer_between_actors_is_removed(self, ledger_executor):
        # Actor 1 deposits 10 and hands it to actor 2, who withdraws three times.
        requests = [
            StepRequest("deposit", actor_raw=1, raw_inputs=(9,), origin=0),
            StepRequest("transfer", actor_raw=1, raw_inputs=(2, 9), origin=1),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=2),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=3),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=4),
        ]
        failing = ledger_executor.replay(requests)
        assert failing.violation.invariant_id == "conservation"
        assert failing.violation.step == 4

        shrunk = Shrinker(ledger_executor.replay, limit=5000).shrink(failing)
        steps = shrunk.execution.steps

        assert shrunk.fully_minimized
        assert [step.action for step in steps] == ["deposit", "withdraw", "withdraw", "withdraw"]
        assert {step.actor.index for step in steps} == {0}
        assert [step.args["amount"] for step in steps[1:]] == [1, 1, 1]
        assert steps[0].args["amount"] == 3

    def test_merge_keeps_single_actor_sequence(self, ledger_executor):
        requests = [
            StepRequest("deposit", actor_raw=2, raw_inputs=(2,), origin=0),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=1),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=2),
            StepRequest("withdraw", actor_raw=2, raw_inputs=(0,), origin=3),
        ]
        failing = ledger_executor.replay(requests)
        shrunk = Shrinker(ledger_executor.replay, limit=5000).shrink(failing)
        assert [request.origin for request in shrunk.requests] == [0, 1, 2, 3]
        assert [request.actor_raw for request in shrunk.requests] == [0, 0, 0, 0]


class TestHarnessErrorsDuringShrink:
    """A crashing candidate is dropped; the violation already found survives."""

    def test_crashing_candidate_is_discarded(self, pool, make_config):
        registry, invariants = build_counter_harness()
        # Divides by the ghost count, so it crashes once the first bump is removed.
        registry.register(Action(
            "peek",
            precondition=lambda ghost, view, actor, args: 1 // ghost.get("count") >= 0,
            target="noop",
        ))
        executor = Executor(registry, invariants, pool, CounterSUT, make_config())
        requests = [
            StepRequest("bump", actor_raw=0, raw_inputs=(30,), origin=0),
            StepRequest("peek", actor_raw=0, origin=1),
            StepRequest("bump", actor_raw=0, raw_inputs=(30,), origin=2),
        ]
        failing = executor.replay(requests)
        assert failing.violation.invariant_id == "cap"

        shrunk = Shrinker(executor.replay, limit=5000).shrink(failing)

        assert shrunk.execution.violation.invariant_id == "cap"
        assert not shrunk.fully_minimized
        assert [step.action for step in shrunk.execution.steps] == ["bump", "bump"]
        assert sum(step.args["amount"] for step in shrunk.execution.steps) == COUNTER_CAP + 1
