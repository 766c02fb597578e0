"""Sequence generator — lazy, seeded random walk over actions, actors and inputs.

One generator drives one run. It never builds a sequence up front: the
driver asks for the next request only after the previous step has been
executed, because dynamic bounds read the state that step produced.

Raw input values are drawn in two ways:

* uniformly from the 256-bit raw space (then reduced by ``bound``), or
* with probability ``dictionary_weight``, from the dictionary of
  interesting values that fit the current range: the range edges, their
  neighbours, configured values, and integers returned by successful calls
  earlier in the run. Dictionary picks are stored as offsets from the lower
  bound so that ``bound`` maps them back to the same concrete value.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from typing import Any

from ghostfuzz.fuzzer.actors import ActorPool
from ghostfuzz.fuzzer.bounds import RAW_BITS, offset_for
from ghostfuzz.fuzzer.errors import HandlerError, RegistrationError
from ghostfuzz.fuzzer.ghost import GhostView
from ghostfuzz.fuzzer.handlers import HandlerRegistry
from ghostfuzz.fuzzer.models import StepRequest

logger = logging.getLogger(__name__)

MAX_DICTIONARY = 4096


class SequenceGenerator:
    """Draws up to ``depth`` step requests from one seeded PRNG stream."""

    def __init__(
        self,
        registry: HandlerRegistry,
        pool: ActorPool,
        *,
        seed: int,
        depth: int,
        dictionary: Iterable[int] = (),
        dictionary_weight: float = 0.0,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._rng = random.Random(seed)
        self._depth = depth
        self._drawn = 0
        self._dictionary_weight = dictionary_weight

        self._actions = registry.weighted()
        if not self._actions:
            raise RegistrationError("No selectable actions registered")
        self._weights = [a.weight for a in self._actions]

        self._dictionary: list[int] = []
        self._known: set[int] = set()
        for value in dictionary:
            self.add_value(value)

    @property
    def drawn(self) -> int:
        return self._drawn

    @property
    def exhausted(self) -> bool:
        return self._drawn >= self._depth

    @property
    def dictionary(self) -> list[int]:
        return list(self._dictionary)

    def add_value(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            return
        if value in self._known or len(self._dictionary) >= MAX_DICTIONARY:
            return
        self._known.add(value)
        self._dictionary.append(value)

    def record_output(self, output: Any) -> None:
        """Harvest integers from a successful call's output into the dictionary."""
        if isinstance(output, int):
            self.add_value(output)
        elif isinstance(output, (list, tuple)):
            for item in output:
                self.add_value(item)
        elif isinstance(output, dict):
            for item in output.values():
                self.add_value(item)

    def next_request(self, ghost: GhostView, view: Any) -> StepRequest | None:
        """Draw the next request against the current state, or ``None`` at depth."""
        if self.exhausted:
            return None

        action = self._rng.choices(self._actions, weights=self._weights, k=1)[0]
        actor_raw = self._rng.getrandbits(RAW_BITS)
        actor = self._pool.select(actor_raw)

        raws: list[int] = []
        for spec in action.inputs:
            try:
                lo, hi = spec.resolve(ghost, view, actor, self._pool)
            except Exception as exc:
                raise HandlerError(action.name, f"bounds of '{spec.name}'", exc) from exc
            raws.append(self._draw(lo, hi))

        request = StepRequest(
            action=action.name,
            actor_raw=actor_raw,
            raw_inputs=tuple(raws),
            origin=self._drawn,
        )
        self._drawn += 1
        return request

    def _draw(self, lo: int, hi: int) -> int:
        uniform = self._rng.getrandbits(RAW_BITS)
        if lo > hi or self._rng.random() >= self._dictionary_weight:
            return uniform

        candidates = [lo, hi]
        if lo < hi:
            candidates.extend((lo + 1, hi - 1))
        candidates.extend(v for v in self._dictionary if lo <= v <= hi)
        return offset_for(self._rng.choice(candidates), lo)
