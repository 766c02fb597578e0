"""End-to-end campaigns against the reference ledger."""

from __future__ import annotations

import pytest

from ghostfuzz.core.config import FuzzConfig
from ghostfuzz.core.types import OutcomeKind, Verdict
from ghostfuzz.fuzzer.driver import FuzzCampaign
from ghostfuzz.fuzzer.handlers import Action, HandlerRegistry
from ghostfuzz.fuzzer.invariants import InvariantSet
from ghostfuzz.fuzzer.models import request_from_record
from ghostfuzz.targets.ledger import BuggyLedger, Ledger, ledger_harness

from conftest import CounterSUT, build_counter_harness


class TestCorrectLedger:
    """A correct ledger passes the full campaign."""

    def test_passes(self):
        registry, invariants = ledger_harness()
        config = FuzzConfig(runs=100, depth=50, seed=1)
        result = FuzzCampaign(registry, invariants, Ledger, config).run()

        assert result.verdict is Verdict.PASS
        assert result.runs_completed == 100
        assert result.total_steps == 100 * 50
        assert result.call_stats["deposit"].successes > 0
        assert result.call_stats["withdraw"].successes > 0
        assert result.call_stats["transfer"].successes > 0


class TestBuggyLedger:
    """The third-withdrawal bug is found and reduced to its essentials."""

    @pytest.fixture(scope="class")
    def report(self):
        registry, invariants = ledger_harness()
        config = FuzzConfig(runs=100, depth=50, seed=1)
        result = FuzzCampaign(registry, invariants, BuggyLedger, config).run()
        assert result.verdict is Verdict.FAIL
        return result.failure

    def test_conservation_violated(self, report):
        assert report.invariant_id == "conservation"
        assert report.severity.value == "critical"
        assert report.fully_minimized

    def test_minimal_sequence_shape(self, report):
        actions = [record.action for record in report.minimal_sequence]
        assert actions.count("withdraw") == 3
        assert set(actions) == {"deposit", "withdraw"}
        assert actions[-1] == "withdraw"
        assert all(r.outcome is OutcomeKind.SUCCESS for r in report.minimal_sequence)

    def test_transfers_are_shrunk_away(self, report):
        assert "transfer" not in {record.action for record in report.minimal_sequence}
        assert len({record.actor for record in report.minimal_sequence}) == 1
        assert all(record.actor_raw == 0 for record in report.minimal_sequence)

    def test_every_step_is_needed(self, report):
        registry, invariants = ledger_harness()
        campaign = FuzzCampaign(
            registry, invariants, BuggyLedger, FuzzConfig(seed=1, runs=1)
        )
        requests = [request_from_record(r) for r in report.minimal_sequence]
        for i in range(len(requests)):
            candidate = requests[:i] + requests[i + 1:]
            assert campaign.executor.replay(candidate).violation is None

    def test_minimal_amounts(self, report):
        for record in report.minimal_sequence:
            if record.action == "withdraw":
                assert record.args["amount"] == 1

    def test_diagnostics_show_divergence(self, report):
        last = report.minimal_sequence[-1].ghost
        assert last["withdrawn"] == 3
        assert len(report.per_step_diagnostics) == len(report.minimal_sequence)


class TestHarnessExhaustion:
    """A harness that cannot make progress is not a pass."""

    def test_always_false_precondition(self):
        registry = HandlerRegistry([
            Action("blocked", precondition=lambda ghost, view, actor, args: False),
        ])
        config = FuzzConfig(runs=10, depth=50, seed=1, max_rejects=10)
        result = FuzzCampaign(registry, InvariantSet(), CounterSUT, config).run()

        assert result.verdict is Verdict.HARNESS_EXHAUSTED
        assert not result.passed
        assert result.failures == []
        assert result.rejects == 11
        assert "too many rejected steps" in result.harness_error


class TestNoInvariants:
    """An empty invariant set still runs everything."""

    def test_runs_all_steps(self):
        registry, _ = build_counter_harness()
        config = FuzzConfig(runs=8, depth=25, seed=3)
        result = FuzzCampaign(registry, InvariantSet(), CounterSUT, config).run()

        assert result.verdict is Verdict.PASS
        assert result.runs_completed == 8
        assert result.total_steps == 8 * 25
        assert result.failures == []
