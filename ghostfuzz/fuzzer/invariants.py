"""Invariant checker — global properties evaluated after every step.

Invariants are pure predicates over the SUT view and a read-only ghost
view. They are evaluated in registration order and the first failing one
wins, so the order in which invariants are added is part of what a failure
report means: if two properties break on the same step, only the first
registered is reported.

A predicate that raises counts as a violation, like a Solidity invariant
function that reverts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from ghostfuzz.core.types import Severity
from ghostfuzz.fuzzer.errors import RegistrationError
from ghostfuzz.fuzzer.ghost import GhostView

logger = logging.getLogger(__name__)

Predicate = Callable[[Any, GhostView], bool]

INITIAL_STEP = -1


@dataclass(frozen=True)
class Invariant:
    """A named global property.

    ``message_template`` is rendered with ``str.format`` and may reference
    ``{id}``, ``{step}``, ``{view}`` and ``{ghost}``, e.g.
    ``"ghost total {ghost[deposited]} != {view.total}"``.
    """

    id: str
    predicate: Predicate
    severity: Severity = Severity.HIGH
    message_template: str = "invariant {id} violated at step {step}"

    def render(self, step: int, view: Any, ghost: GhostView) -> str:
        try:
            return self.message_template.format(id=self.id, step=step, view=view, ghost=ghost)
        except (KeyError, IndexError, AttributeError, ValueError) as exc:
            logger.debug("Cannot render message for %s: %r", self.id, exc)
            return self.message_template


@dataclass(frozen=True)
class Violation:
    """The first failing invariant on a step (``step == -1``: initial state)."""

    invariant_id: str
    message: str
    step: int
    severity: Severity = Severity.HIGH


class InvariantSet:
    """Ordered collection of invariants."""

    def __init__(self, invariants: Sequence[Invariant] = ()) -> None:
        self._invariants: list[Invariant] = []
        for inv in invariants:
            self.add(inv)

    def add(self, invariant: Invariant) -> Invariant:
        if any(existing.id == invariant.id for existing in self._invariants):
            raise RegistrationError(f"Invariant '{invariant.id}' is already registered")
        self._invariants.append(invariant)
        return invariant

    def invariant(
        self,
        id: str,
        *,
        severity: Severity = Severity.HIGH,
        message: str = "invariant {id} violated at step {step}",
    ) -> Callable[[Predicate], Predicate]:
        """Decorator form of ``add``."""

        def decorator(predicate: Predicate) -> Predicate:
            self.add(Invariant(id=id, predicate=predicate, severity=severity, message_template=message))
            return predicate

        return decorator

    def ids(self) -> list[str]:
        return [inv.id for inv in self._invariants]

    def __iter__(self) -> Iterator[Invariant]:
        return iter(self._invariants)

    def __len__(self) -> int:
        return len(self._invariants)

    def check(self, view: Any, ghost: GhostView, step: int) -> Violation | None:
        """Evaluate every invariant in order; return the first violation."""
        for inv in self._invariants:
            try:
                held = bool(inv.predicate(view, ghost))
            except Exception as exc:
                return Violation(
                    invariant_id=inv.id,
                    message=f"{inv.render(step, view, ghost)} (predicate raised {exc!r})",
                    step=step,
                    severity=inv.severity,
                )
            if not held:
                return Violation(
                    invariant_id=inv.id,
                    message=inv.render(step, view, ghost),
                    step=step,
                    severity=inv.severity,
                )
        return None
