"""Ghost state — the independently maintained reference model.

A ``GhostState`` is created fresh for every execution of a sequence (each
fuzz run and each shrink replay) and is only written by handler code while
a step executes. Invariants receive a ``GhostView``, which exposes the same
readers over the same storage but no writers.

Two kinds of entries are kept:

* scalar counters, e.g. ``ghost.add("deposited", amount)``
* per-actor maps, e.g. ``ghost.add_for("balance", actor, amount)``
"""

from __future__ import annotations

import copy
from collections.abc import Hashable, Mapping
from typing import Any


class GhostView:
    """Read-only access to a ghost state."""

    def __init__(
        self,
        counters: dict[str, Any],
        maps: dict[str, dict[Hashable, Any]],
    ) -> None:
        self._counters = counters
        self._maps = maps

    def get(self, key: str, default: Any = 0) -> Any:
        return self._counters.get(key, default)

    def get_for(self, key: str, owner: Hashable, default: Any = 0) -> Any:
        return self._maps.get(key, {}).get(owner, default)

    def entries(self, key: str) -> dict[Hashable, Any]:
        """Copy of one per-owner map."""
        return dict(self._maps.get(key, {}))

    def total(self, key: str) -> Any:
        """Sum of a per-owner map across all owners."""
        return sum(self._maps.get(key, {}).values())

    def keys(self) -> list[str]:
        return sorted(set(self._counters) | set(self._maps))

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict deep copy, with per-owner maps keyed by ``str(owner)``."""
        snap: dict[str, Any] = copy.deepcopy(self._counters)
        for key, entries in self._maps.items():
            snap[key] = {str(owner): copy.deepcopy(v) for owner, v in entries.items()}
        return snap

    def __getitem__(self, key: str) -> Any:
        # Unset counters read as zero, like an untouched storage slot.
        if key in self._maps:
            return self.entries(key)
        return self._counters.get(key, 0)

    def __contains__(self, key: object) -> bool:
        return key in self._counters or key in self._maps

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.snapshot()!r})"


class GhostState(GhostView):
    """Mutable ghost state owned by one sequence execution."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        counters: dict[str, Any] = {}
        maps: dict[str, dict[Hashable, Any]] = {}
        for key, value in (initial or {}).items():
            if isinstance(value, Mapping):
                maps[key] = copy.deepcopy(dict(value))
            else:
                counters[key] = copy.deepcopy(value)
        super().__init__(counters, maps)

    def set(self, key: str, value: Any) -> None:
        self._counters[key] = value

    def add(self, key: str, delta: Any) -> Any:
        value = self._counters.get(key, 0) + delta
        self._counters[key] = value
        return value

    def set_for(self, key: str, owner: Hashable, value: Any) -> None:
        self._maps.setdefault(key, {})[owner] = value

    def add_for(self, key: str, owner: Hashable, delta: Any) -> Any:
        entries = self._maps.setdefault(key, {})
        value = entries.get(owner, 0) + delta
        entries[owner] = value
        return value

    def view(self) -> GhostView:
        """Read-only view sharing this state's storage."""
        return GhostView(self._counters, self._maps)
