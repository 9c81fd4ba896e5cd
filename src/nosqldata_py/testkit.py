from __future__ import annotations

from collections.abc import Callable

from .mocks import ANY, FakeStoreClient, InMemoryStoreClient


class FixedClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self.now += seconds


def fixed_clock(start: float = 0.0) -> FixedClock:
    return FixedClock(start)


def rows_responder(rows: list[dict[str, object]]) -> Callable[[str, object], list[dict[str, object]]]:
    def respond(_statement: str, _variables: object) -> list[dict[str, object]]:
        return [dict(r) for r in rows]

    return respond


__all__ = [
    "ANY",
    "FakeStoreClient",
    "FixedClock",
    "InMemoryStoreClient",
    "fixed_clock",
    "rows_responder",
]
