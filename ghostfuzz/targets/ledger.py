"""Reference target: a conserved-value accounting ledger.

``Ledger`` keeps per-account balances and a running total; deposits and
withdrawals move value in and out, transfers move it between accounts.
``BuggyLedger`` forgets to decrement the total from the third successful
withdrawal onward.

``ledger_harness`` returns the matching handler registry and invariant
set, so a campaign against either ledger is::

    registry, invariants = ledger_harness()
    FuzzCampaign(registry, invariants, Ledger, FuzzConfig(seed=1)).run()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ghostfuzz.core.types import Severity
from ghostfuzz.fuzzer.actors import Actor
from ghostfuzz.fuzzer.ghost import GhostState, GhostView
from ghostfuzz.fuzzer.handlers import (
    CallResult,
    HandlerRegistry,
    actor_input,
    dynamic,
    uint,
)
from ghostfuzz.fuzzer.invariants import Invariant, InvariantSet

MAX_DEPOSIT = 10**6


@dataclass(frozen=True)
class LedgerView:
    """Read-only snapshot of a ledger."""

    total: int
    balances: dict[str, int] = field(default_factory=dict)
    withdrawals: int = 0

    def balance_of(self, actor: Actor) -> int:
        return self.balances.get(str(actor), 0)


class Ledger:
    """Correct conserved-value ledger."""

    def __init__(self, config: Any = None) -> None:
        self._balances: dict[str, int] = {}
        self._total = 0
        self._withdrawals = 0

    def call(self, actor: Actor, action_name: str, args: dict[str, Any]) -> CallResult:
        if action_name == "deposit":
            return self.deposit(str(actor), args["amount"])
        if action_name == "withdraw":
            return self.withdraw(str(actor), args["amount"])
        if action_name == "transfer":
            return self.transfer(str(actor), str(args["to"]), args["amount"])
        return CallResult.failure(f"unknown function {action_name}")

    def observe(self) -> LedgerView:
        return LedgerView(
            total=self._total,
            balances=dict(self._balances),
            withdrawals=self._withdrawals,
        )

    def deposit(self, account: str, amount: int) -> CallResult:
        if amount <= 0:
            return CallResult.failure("zero deposit")
        self._balances[account] = self._balances.get(account, 0) + amount
        self._total += amount
        return CallResult.success(self._balances[account])

    def withdraw(self, account: str, amount: int) -> CallResult:
        balance = self._balances.get(account, 0)
        if amount <= 0 or amount > balance:
            return CallResult.failure("insufficient balance")
        self._balances[account] = balance - amount
        self._withdrawals += 1
        self._debit_total(amount)
        return CallResult.success(self._balances[account])

    def transfer(self, sender: str, recipient: str, amount: int) -> CallResult:
        balance = self._balances.get(sender, 0)
        if sender == recipient:
            return CallResult.failure("self transfer")
        if amount <= 0 or amount > balance:
            return CallResult.failure("insufficient balance")
        self._balances[sender] = balance - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        return CallResult.success(self._balances[sender])

    def _debit_total(self, amount: int) -> None:
        self._total -= amount


class BuggyLedger(Ledger):
    """Stops decrementing the total from the third successful withdrawal on."""

    def _debit_total(self, amount: int) -> None:
        if self._withdrawals >= 3:
            return
        super()._debit_total(amount)


# ── Harness ──────────────────────────────────────────────────────────────────


def _own_balance(ghost: GhostView, view: Any, actor: Actor) -> tuple[int, int]:
    return 1, ghost.get_for("balance", actor)


def _not_self(ghost: GhostView, view: Any, actor: Actor, args: dict[str, Any]) -> bool:
    return args["to"] != actor


def _conserved(view: LedgerView, ghost: GhostView) -> bool:
    return view.total == ghost.get("deposited") - ghost.get("withdrawn")


def _balances_match(view: LedgerView, ghost: GhostView) -> bool:
    return all(
        view.balances.get(str(actor), 0) == expected
        for actor, expected in ghost.entries("balance").items()
    )


def _solvent(view: LedgerView, ghost: GhostView) -> bool:
    return sum(view.balances.values()) == view.total


def ledger_harness(
    include_transfer: bool = True,
    max_deposit: int = MAX_DEPOSIT,
) -> tuple[HandlerRegistry, InvariantSet]:
    """Actions and invariants for fuzzing a ``Ledger``-compatible SUT."""
    registry = HandlerRegistry()

    @registry.action("deposit", inputs=[uint("amount", 1, max_deposit)], weight=2)
    def deposit(ghost: GhostState, actor: Actor, args: dict[str, Any], output: Any) -> None:
        ghost.add("deposited", args["amount"])
        ghost.add_for("balance", actor, args["amount"])

    @registry.action("withdraw", inputs=[dynamic("amount", _own_balance)], weight=2)
    def withdraw(ghost: GhostState, actor: Actor, args: dict[str, Any], output: Any) -> None:
        ghost.add("withdrawn", args["amount"])
        ghost.add_for("balance", actor, -args["amount"])

    if include_transfer:

        @registry.action(
            "transfer",
            inputs=[actor_input("to"), dynamic("amount", _own_balance)],
            precondition=_not_self,
        )
        def transfer(ghost: GhostState, actor: Actor, args: dict[str, Any], output: Any) -> None:
            ghost.add_for("balance", actor, -args["amount"])
            ghost.add_for("balance", args["to"], args["amount"])

    invariants = InvariantSet([
        Invariant(
            id="conservation",
            predicate=_conserved,
            severity=Severity.CRITICAL,
            message_template=(
                "total {view.total} != deposited {ghost[deposited]} - withdrawn {ghost[withdrawn]}"
            ),
        ),
        Invariant(
            id="balances_match",
            predicate=_balances_match,
            message_template="per-account balances diverged from the ghost model at step {step}",
        ),
        Invariant(
            id="solvency",
            predicate=_solvent,
            message_template="sum of balances != total {view.total}",
        ),
    ])
    return registry, invariants
