"""
Planar Geometry Kernel.

Point algebra, circle-circle intersection and the triangle containment
test used to discard triangulation artifacts.

Intersection follows the two-circle construction from
http://paulbourke.net/geometry/circlesphere/ with exact floating-point
edge policies (no epsilon): tangency is reported only when h is exactly 0.
"""

from typing import List, Sequence, Tuple
from dataclasses import dataclass
from enum import IntEnum
import math


@dataclass(frozen=True)
class Point:
    """Planar point / 2-D vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: 'Point') -> 'Point':
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: 'Point') -> 'Point':
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, k: float) -> 'Point':
        return Point(self.x * k, self.y * k)

    __rmul__ = __mul__

    def __truediv__(self, k: float) -> 'Point':
        return Point(self.x / k, self.y / k)

    def dist(self, other: 'Point') -> float:
        """Euclidean distance to another point."""
        return math.hypot(self.x - other.x, self.y - other.y)

    def midpoint(self, other: 'Point') -> 'Point':
        """Point halfway between self and other."""
        return (self + other) / 2.0

    def norm_sq(self) -> float:
        """Squared length of the vector from the origin."""
        return self.x * self.x + self.y * self.y

    def mirrored(self, axis: str = 'x') -> 'Point':
        """
        Mirror about a coordinate axis.

        Only used at the rendering boundary, where screen coordinates grow
        downwards ('x' flips the sign of y, 'y' flips the sign of x).
        """
        if axis == 'x':
            return Point(self.x, -self.y)
        if axis == 'y':
            return Point(-self.x, self.y)
        raise ValueError(f"Unknown mirror axis: {axis!r}")

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def __str__(self) -> str:
        return f"({self.x:g},{self.y:g})"


class IntersectionKind(IntEnum):
    """Outcome of a circle-circle intersection."""

    TWO_POINTS = 0
    ONE_POINT = 1
    SEPARATE = 2
    CONTAINED = 3
    IDENTICAL = 4


@dataclass(frozen=True)
class Circle:
    """Circle given by center and non-negative radius."""

    center: Point
    radius: float

    def __post_init__(self):
        """Validate radius."""
        if not self.radius >= 0:
            raise ValueError(f"Circle radius must be >= 0: {self.radius}")

    def intersection(self, other: 'Circle') -> Tuple[List[Point], IntersectionKind]:
        """Intersect with another circle, see intersect()."""
        return intersect(self, other)

    def __str__(self) -> str:
        return f"C[{self.center},{self.radius:g}]"


def intersect(a: Circle, b: Circle) -> Tuple[List[Point], IntersectionKind]:
    """
    Intersect two circles.

    Args:
        a: First circle
        b: Second circle

    Returns:
        Tuple of (points, kind). points holds 0, 1 or 2 Points.

    Notes:
        - SEPARATE, CONTAINED and IDENTICAL return no points
        - A negative h^2 caused by rounding is treated as tangency
    """
    d = a.center.dist(b.center)

    if d > a.radius + b.radius:
        return [], IntersectionKind.SEPARATE

    if d < abs(a.radius - b.radius):
        return [], IntersectionKind.CONTAINED

    if d == 0.0 and a.radius == b.radius:
        return [], IntersectionKind.IDENTICAL

    proj = (a.radius ** 2 - b.radius ** 2 + d ** 2) / (2.0 * d)
    h = math.sqrt(max(a.radius ** 2 - proj ** 2, 0.0))

    base = a.center + (proj / d) * (b.center - a.center)

    if h == 0:
        return [base], IntersectionKind.ONE_POINT

    offset = Point(h * (b.center.y - a.center.y) / d,
                   -h * (b.center.x - a.center.x) / d)
    return [base + offset, base - offset], IntersectionKind.TWO_POINTS


class Triangle:
    """
    Triangle with cached signed area.

    Vertices are expected in counter-clockwise order so that the signed
    area is positive. A degenerate (zero area) triangle is rejected.
    """

    def __init__(self, points: Sequence[Point]):
        if len(points) < 3:
            raise ValueError(f"Triangle needs 3 points, got {len(points)}")

        self.points: Tuple[Point, Point, Point] = (points[0], points[1], points[2])
        p0, p1, p2 = self.points

        self.area = 0.5 * (-p1.y * p2.x + p0.y * (-p1.x + p2.x)
                           + p0.x * (p1.y - p2.y) + p1.x * p2.y)

        if self.area == 0:
            raise ValueError(f"Degenerate triangle: {p0} {p1} {p2}")

    def __getitem__(self, i: int) -> Point:
        return self.points[i]

    def contains(self, p: Point) -> bool:
        """
        Barycentric containment test.

        Returns:
            True only for points strictly inside; edge and vertex points
            are outside.
        """
        p0, p1, p2 = self.points
        k = 1.0 / (2.0 * self.area)

        s = k * (p0.y * p2.x - p0.x * p2.y + (p2.y - p0.y) * p.x + (p0.x - p2.x) * p.y)
        t = k * (p0.x * p1.y - p0.y * p1.x + (p0.y - p1.y) * p.x + (p1.x - p0.x) * p.y)

        return s > 0.0 and t > 0.0 and 1.0 - s - t > 0.0


def dist(p1: Point, p2: Point) -> float:
    """Euclidean distance between two points."""
    return p1.dist(p2)


def midpoint(p1: Point, p2: Point) -> Point:
    """Point halfway between p1 and p2."""
    return p1.midpoint(p2)


def angle(p1: Point, p2: Point) -> float:
    """Bearing from p1 towards p2 in radians, in [0, 2*pi)."""
    p = p2 - p1
    a = math.atan2(p.y, p.x)
    return 2 * math.pi + a if a < 0.0 else a


def angle_deg(p1: Point, p2: Point) -> float:
    """Bearing from p1 towards p2 in degrees, in [0, 360)."""
    return 180.0 * angle(p1, p2) / math.pi
