from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def to_geojson(self) -> dict[str, object]:
        return {"type": "point", "coordinates": [self.x, self.y]}


@dataclass(frozen=True)
class Polygon:
    points: tuple[Point, ...]

    def __init__(self, points: Sequence[Point]) -> None:
        if len(points) < 3:
            raise ValueError("polygon requires at least 3 points")
        object.__setattr__(self, "points", tuple(points))

    def __iter__(self) -> Iterator[Point]:
        return iter(self.points)

    def to_geojson(self) -> dict[str, object]:
        return {"type": "polygon", "coordinates": [[[p.x, p.y] for p in self.points]]}


@dataclass(frozen=True)
class Circle:
    center: Point
    radius: float

    def __post_init__(self) -> None:
        if self.radius < 0:
            raise ValueError("radius must be >= 0")
