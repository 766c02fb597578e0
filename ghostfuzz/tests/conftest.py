"""Shared fixtures for the ghostfuzz test suite."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from ghostfuzz.core.config import FuzzConfig
from ghostfuzz.fuzzer.actors import Actor, ActorPool
from ghostfuzz.fuzzer.ghost import GhostState
from ghostfuzz.fuzzer.handlers import CallResult, HandlerRegistry, uint
from ghostfuzz.fuzzer.invariants import Invariant, InvariantSet

COUNTER_CAP = 50


class CounterSUT:
    """Tiny SUT: a counter that can be bumped, plus a few odd functions."""

    def __init__(self, config: Any = None) -> None:
        self.count = 0
        self.calls: list[str] = []

    def call(self, actor: Actor, action_name: str, args: dict[str, Any]) -> CallResult:
        self.calls.append(action_name)
        if action_name == "bump":
            self.count += args["amount"]
            return CallResult.success(self.count)
        if action_name == "noop":
            return CallResult.success()
        if action_name == "explode":
            raise RuntimeError("boom")
        return CallResult.failure(f"unsupported {action_name}")

    def observe(self) -> dict[str, int]:
        return {"count": self.count}


def build_counter_harness(cap: int = COUNTER_CAP) -> tuple[HandlerRegistry, InvariantSet]:
    registry = HandlerRegistry()

    @registry.action("bump", inputs=[uint("amount", 0, 100)])
    def bump(ghost: GhostState, actor: Actor, args: dict[str, Any], output: Any) -> None:
        ghost.add("count", args["amount"])

    @registry.action("noop")
    def noop(ghost: GhostState, actor: Actor, args: dict[str, Any], output: Any) -> None:
        ghost.add("noops", 1)

    invariants = InvariantSet([
        Invariant(
            id="cap",
            predicate=lambda view, ghost: view["count"] <= cap,
            message_template="count {view[count]} exceeds cap",
        ),
    ])
    return registry, invariants


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def pool() -> ActorPool:
    """Return a three-actor pool."""
    return ActorPool(3)


@pytest.fixture
def counter_harness() -> tuple[HandlerRegistry, InvariantSet]:
    """Return the counter registry and its cap invariant."""
    return build_counter_harness()


@pytest.fixture
def make_config() -> Callable[..., FuzzConfig]:
    """Return a factory for small campaign configs."""

    def _make(**overrides: Any) -> FuzzConfig:
        values: dict[str, Any] = {"seed": 1, "runs": 5, "depth": 20}
        values.update(overrides)
        return FuzzConfig(**values)

    return _make
