"""Handler registry — bounded, precondition-gated wrappers around SUT calls.

Each ``Action`` wraps exactly one state-mutating capability of the system
under test. The registry maps action names to actions explicitly; nothing
is discovered by reflection, so the set of callable actions is always
enumerable and stable for a campaign.

Executing a request runs the handler pipeline::

    request ──► actor (ActorPool.select)
            ──► bound every input against its policy   ── empty range ──► Rejected
            ──► precondition(ghost, view, actor, args)  ── False ───────► Rejected
            ──► sut.call(actor, action, args)            ── failure ─────► Reverted
            ──► update(ghost, actor, args, output)       ──────────────► Success

The ghost update must apply the arithmetic the SUT is *expected* to
perform. It receives the SUT output for bookkeeping such as ids, but
deriving the ghost delta from that output would hide exactly the
divergence invariants exist to catch.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ghostfuzz.fuzzer.actors import Actor, ActorPool
from ghostfuzz.fuzzer.bounds import bound, offset_for
from ghostfuzz.fuzzer.errors import BoundError, HandlerError, RegistrationError
from ghostfuzz.fuzzer.ghost import GhostState, GhostView
from ghostfuzz.fuzzer.models import Outcome, Step, StepRequest

logger = logging.getLogger(__name__)

UINT256_MAX = (1 << 256) - 1
INT256_MIN = -(1 << 255)
INT256_MAX = (1 << 255) - 1


# ── SUT contract ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CallResult:
    """What the SUT reports for one call."""

    ok: bool
    output: Any = None
    reason: str = ""

    @classmethod
    def success(cls, output: Any = None) -> CallResult:
        return cls(True, output=output)

    @classmethod
    def failure(cls, reason: str) -> CallResult:
        return cls(False, reason=reason)


@runtime_checkable
class SystemUnderTest(Protocol):
    """Abstract call interface of the system being fuzzed.

    Implementations must define:
        call(actor, action_name, args) -> CallResult — side-effecting
        observe() -> view — read-only snapshot used by bounds, preconditions
            and invariants
    """

    def call(self, actor: Actor, action_name: str, args: dict[str, Any]) -> CallResult:
        ...

    def observe(self) -> Any:
        ...


SUTFactory = Callable[[Any], SystemUnderTest]
BoundsPolicy = Callable[[GhostView, Any, Actor], tuple[int, int]]
Precondition = Callable[[GhostView, Any, Actor, dict[str, Any]], bool]
GhostUpdate = Callable[[GhostState, Actor, dict[str, Any], Any], None]


# ── Inputs ───────────────────────────────────────────────────────────────────


class InputKind(str, enum.Enum):
    UINT = "uint"
    INT = "int"
    BOOL = "bool"
    ACTOR = "actor"


@dataclass(frozen=True)
class InputSpec:
    """One declared input of an action and its bound policy.

    ``lo``/``hi`` give a static range. ``bounds`` overrides them with a
    callable evaluated against the current ghost view, SUT view and calling
    actor, for ranges that depend on state (e.g. "at most my balance"). A
    dynamic range with ``lo > hi`` means no valid value exists right now and
    the step is rejected.
    """

    name: str
    kind: InputKind = InputKind.UINT
    lo: int = 0
    hi: int = UINT256_MAX
    bounds: BoundsPolicy | None = None

    @property
    def numeric(self) -> bool:
        return self.kind in (InputKind.UINT, InputKind.INT)

    def resolve(
        self, ghost: GhostView, view: Any, actor: Actor, pool: ActorPool
    ) -> tuple[int, int]:
        if self.kind is InputKind.BOOL:
            return 0, 1
        if self.kind is InputKind.ACTOR:
            return 0, len(pool) - 1
        if self.bounds is not None:
            lo, hi = self.bounds(ghost, view, actor)
            return int(lo), int(hi)
        return self.lo, self.hi


def uint(name: str, lo: int = 0, hi: int = UINT256_MAX) -> InputSpec:
    return InputSpec(name, InputKind.UINT, lo, hi)


def sint(name: str, lo: int = INT256_MIN, hi: int = INT256_MAX) -> InputSpec:
    return InputSpec(name, InputKind.INT, lo, hi)


def boolean(name: str) -> InputSpec:
    return InputSpec(name, InputKind.BOOL, 0, 1)


def actor_input(name: str) -> InputSpec:
    return InputSpec(name, InputKind.ACTOR)


def dynamic(name: str, policy: BoundsPolicy, kind: InputKind = InputKind.UINT) -> InputSpec:
    return InputSpec(name, kind, bounds=policy)


# ── Actions ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Action:
    """A named, bounded, precondition-gated SUT capability."""

    name: str
    inputs: tuple[InputSpec, ...] = ()
    precondition: Precondition | None = None
    update: GhostUpdate | None = None
    weight: int = 1
    target: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise RegistrationError("Action name must not be empty")
        if self.weight < 0:
            raise RegistrationError(f"Action '{self.name}' has negative weight")
        names = [spec.name for spec in self.inputs]
        if len(set(names)) != len(names):
            raise RegistrationError(f"Action '{self.name}' declares duplicate inputs")

    @property
    def sut_action(self) -> str:
        return self.target or self.name


@dataclass
class Materialized:
    """Concrete inputs for one step, or the reason none exist."""

    args: dict[str, Any] = field(default_factory=dict)
    offsets: dict[int, int] = field(default_factory=dict)
    reject_reason: str = ""


class HandlerRegistry:
    """Catalog of actions, keyed by name, in registration order."""

    def __init__(self, actions: Sequence[Action] = ()) -> None:
        self._actions: dict[str, Action] = {}
        self._frozen = False
        for action in actions:
            self.register(action)

    # ── Registration ─────────────────────────────────────────────────

    def register(self, action: Action) -> Action:
        if self._frozen:
            raise RegistrationError(
                f"Cannot register '{action.name}': registry is frozen for a running campaign"
            )
        if action.name in self._actions:
            raise RegistrationError(f"Action '{action.name}' is already registered")
        self._actions[action.name] = action
        return action

    def action(
        self,
        name: str,
        *,
        inputs: Sequence[InputSpec] = (),
        precondition: Precondition | None = None,
        weight: int = 1,
        target: str | None = None,
    ) -> Callable[[GhostUpdate], GhostUpdate]:
        """Decorator registering the decorated function as the ghost update.

        Usage::

            @registry.action("deposit", inputs=[uint("amount", 1, 10**6)])
            def deposit(ghost, actor, args, output):
                ghost.add("deposited", args["amount"])
        """

        def decorator(update: GhostUpdate) -> GhostUpdate:
            self.register(
                Action(
                    name=name,
                    inputs=tuple(inputs),
                    precondition=precondition,
                    update=update,
                    weight=weight,
                    target=target,
                )
            )
            return update

        return decorator

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Lookup ───────────────────────────────────────────────────────

    def get(self, name: str) -> Action:
        try:
            return self._actions[name]
        except KeyError:
            raise RegistrationError(f"Unknown action '{name}'") from None

    def names(self) -> list[str]:
        return list(self._actions)

    def weighted(self) -> list[Action]:
        """Actions that can be selected by the generator (positive weight)."""
        return [a for a in self._actions.values() if a.weight > 0]

    def __iter__(self) -> Iterator[Action]:
        return iter(self._actions.values())

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    # ── Execution ────────────────────────────────────────────────────

    def materialize(
        self,
        request: StepRequest,
        actor: Actor,
        ghost: GhostView,
        view: Any,
        pool: ActorPool,
    ) -> Materialized:
        """Bound every raw input of ``request`` against the current state."""
        action = self.get(request.action)
        if len(request.raw_inputs) != len(action.inputs):
            raise RegistrationError(
                f"Request for '{action.name}' carries {len(request.raw_inputs)} inputs, "
                f"action declares {len(action.inputs)}"
            )

        result = Materialized()
        for position, (spec, raw) in enumerate(zip(action.inputs, request.raw_inputs)):
            try:
                lo, hi = spec.resolve(ghost, view, actor, pool)
            except Exception as exc:
                raise HandlerError(action.name, f"bounds of '{spec.name}'", exc) from exc
            if lo > hi:
                result.reject_reason = f"empty range for {spec.name}: [{lo}, {hi}]"
                return result

            try:
                value = bound(raw, lo, hi)
            except BoundError as exc:
                raise HandlerError(action.name, f"bounds of '{spec.name}'", exc) from exc
            result.offsets[position] = offset_for(value, lo)
            if spec.kind is InputKind.BOOL:
                result.args[spec.name] = bool(value)
            elif spec.kind is InputKind.ACTOR:
                result.args[spec.name] = pool.all()[value]
            else:
                result.args[spec.name] = value
        return result

    def execute(
        self,
        request: StepRequest,
        index: int,
        ghost: GhostState,
        sut: SystemUnderTest,
        view: Any,
        pool: ActorPool,
    ) -> Step:
        """Run the handler pipeline for one request; never raises for SUT behaviour."""
        action = self.get(request.action)
        actor = pool.select(request.actor_raw)
        step = Step(index=index, request=request, actor=actor)
        read_only = ghost.view()

        materialized = self.materialize(request, actor, read_only, view, pool)
        step.args = materialized.args
        step.offsets = materialized.offsets
        if materialized.reject_reason:
            step.outcome = Outcome.rejected(materialized.reject_reason)
            return step

        if action.precondition is not None:
            try:
                allowed = action.precondition(read_only, view, actor, dict(step.args))
            except Exception as exc:
                raise HandlerError(action.name, "precondition", exc) from exc
            if not allowed:
                step.outcome = Outcome.rejected("precondition failed")
                return step

        try:
            result = sut.call(actor, action.sut_action, dict(step.args))
        except Exception as exc:
            logger.debug("SUT raised during %s: %r", action.name, exc)
            step.outcome = Outcome.reverted(f"{type(exc).__name__}: {exc}")
            return step

        if not result.ok:
            step.outcome = Outcome.reverted(result.reason or "call failed")
            return step

        if action.update is not None:
            try:
                action.update(ghost, actor, dict(step.args), result.output)
            except Exception as exc:
                raise HandlerError(action.name, "ghost update", exc) from exc
        step.outcome = Outcome.success(result.output)
        return step
