"""3D positions for the shared world.

All coordinates are world blocks. :class:`Vec3` is immutable so it can be
used as a dict key and shared between agents without copying.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, List

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


@dataclass(frozen=True)
class Vec3:
    """A point (or direction) in world space."""

    x: float
    y: float
    z: float

    def __add__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, factor: float) -> "Vec3":
        return Vec3(self.x * factor, self.y * factor, self.z * factor)

    def offset(self, dx: float = 0.0, dy: float = 0.0, dz: float = 0.0) -> "Vec3":
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def length(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def normalized(self) -> "Vec3":
        """Unit vector in the same direction; the zero vector stays zero."""
        mag = self.length()
        if mag < 1e-9:
            return Vec3(0.0, 0.0, 0.0)
        return self.scale(1.0 / mag)

    def distance_to(self, other: "Vec3") -> float:
        return (self - other).length()

    def horizontal_distance_to(self, other: "Vec3") -> float:
        """Distance ignoring the vertical axis."""
        return math.hypot(self.x - other.x, self.z - other.z)

    def rounded(self) -> "Vec3":
        return Vec3(float(round(self.x)), float(round(self.y)), float(round(self.z)))

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.z]

    def key(self) -> str:
        """Stable ``"x,y,z"`` string of the block this point falls in."""
        r = self.rounded()
        return f"{int(r.x)},{int(r.y)},{int(r.z)}"

    def __str__(self) -> str:
        return f"({self.x:g}, {self.y:g}, {self.z:g})"

    @classmethod
    def from_any(cls, value: Any) -> "Vec3":
        """Coerce a list/tuple, ``{"x":..}`` mapping, ``"x,y,z"`` string or Vec3.

        Raises:
            ValueError: If *value* does not describe exactly three numbers.
        """
        if isinstance(value, Vec3):
            return value
        if isinstance(value, dict):
            try:
                return cls(float(value["x"]), float(value["y"]), float(value["z"]))
            except KeyError as exc:
                raise ValueError(f"Position mapping missing {exc}") from exc
        if isinstance(value, str):
            numbers = _NUMBER.findall(value)
        elif isinstance(value, (list, tuple)):
            numbers = list(value)
        else:
            raise ValueError(f"Cannot interpret {value!r} as a position")
        if len(numbers) != 3:
            raise ValueError(f"Position needs 3 coordinates, got {len(numbers)}")
        return cls(float(numbers[0]), float(numbers[1]), float(numbers[2]))


def is_number(token: str) -> bool:
    """True if *token* is a plain integer or decimal literal."""
    return bool(_NUMBER.fullmatch(token.strip()))


def parse_points(tokens: Iterable[str]) -> List[Vec3]:
    """Parse coordinate tokens into points.

    Accepts ``0 0 0 10 0 10``, ``(0,0,0) (10,0,10)`` and mixed forms. The
    total number of numbers must be a multiple of three.

    Raises:
        ValueError: On a non-numeric token or a dangling coordinate.
    """
    numbers: List[float] = []
    for token in tokens:
        stripped = token.strip().strip("()[]")
        if not stripped:
            continue
        for part in filter(None, re.split(r"[,\s]+", stripped)):
            part = part.strip("()[]")
            if not part:
                continue
            if not is_number(part):
                raise ValueError(f"'{part}' is not a coordinate")
            numbers.append(float(part))
    if len(numbers) % 3 != 0:
        raise ValueError(f"Expected x y z triples, got {len(numbers)} number(s)")
    return [Vec3(*numbers[i : i + 3]) for i in range(0, len(numbers), 3)]


def nearest(origin: Vec3, points: Iterable[Vec3]) -> Vec3 | None:
    """Return the point closest to *origin*, or ``None`` for no points."""
    best = None
    best_d = math.inf
    for p in points:
        d = origin.distance_to(p)
        if d < best_d:
            best, best_d = p, d
    return best
