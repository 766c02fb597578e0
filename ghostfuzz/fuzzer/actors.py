"""Actor pool — the fixed set of principals that issue calls."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from ghostfuzz.fuzzer.bounds import bound


@dataclass(frozen=True)
class Actor:
    """An opaque caller identity. Hashable so ghost state can key on it."""

    index: int
    address: str

    def __str__(self) -> str:
        return self.address


def default_address(index: int) -> str:
    return f"0x{index + 1:040x}"


class ActorPool:
    """Ordered, fixed-size set of actors created once per campaign."""

    def __init__(self, size: int = 5, labels: Sequence[str] | None = None) -> None:
        if labels is not None:
            names = list(labels)
        else:
            names = [default_address(i) for i in range(size)]
        if not names:
            raise ValueError("ActorPool needs at least one actor")
        if len(set(names)) != len(names):
            raise ValueError("Actor labels must be unique")
        self._actors = tuple(Actor(index=i, address=name) for i, name in enumerate(names))

    def select(self, raw: int) -> Actor:
        """Pick an actor from a raw fuzz value."""
        return self._actors[bound(raw, 0, len(self._actors) - 1)]

    def all(self) -> tuple[Actor, ...]:
        return self._actors

    def index(self, actor: Actor) -> int:
        return self._actors.index(actor)

    def __len__(self) -> int:
        return len(self._actors)

    def __iter__(self) -> Iterator[Actor]:
        return iter(self._actors)

    def __contains__(self, actor: object) -> bool:
        return actor in self._actors
