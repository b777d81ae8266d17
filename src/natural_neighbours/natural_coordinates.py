"""
Natural-neighbour coordinates of a query point with respect to a triangulation.

The query is conceptually inserted into the triangulation with the
Bowyer-Watson algorithm. The triangles whose circumcircle strictly contains the
query form a star-shaped cavity; the vertices on the cavity boundary are the
natural neighbours of the query. The Voronoi cell the query would own is the
polygon of circumcentres of the triangles (v_k, v_k+1, q) along that boundary.

Sibson coordinates are computed with the circumcentre-polygon formulation: the
area the query steals from neighbour v_k is bounded by the circumcentres of
(v_k-1, v_k, q) and (v_k, v_k+1, q) and, in between, the circumcentres of the
cavity triangles incident to v_k in fan order. Laplace coordinates divide the
length of the new Voronoi edge between q and v_k by the distance |q - v_k|.

Degenerate configurations resolve deterministically:

- a triangle joins the cavity only if R^2 - |q - c|^2 > 1e-10 R^2, so triangles
  whose circumcircle passes through the query (co-circular sites) are left out;
  the triangle containing the query always joins;
- neighbours are listed counter-clockwise starting from the lowest vertex index;
- queries within ``Triangulation.tolerance`` of a vertex get that vertex with
  weight 1, and queries on a hull edge get linear two-point weights along it.

This file is part of natural-neighbours.

Copyright (c) 2025 natural-neighbours Developers.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

import numpy as np

from natural_neighbours.cache import EvaluationCache
from natural_neighbours.constants import CoordinateMethod, resolve_coordinate_method
from natural_neighbours.errors import DegenerateGeometryError, OutOfRangeError
from natural_neighbours.methods._geometry_kernels import barycentric_weights, circumcenter, polygon_area
from natural_neighbours.triangulation import GEOMETRIC_TOLERANCE, Triangulation

# Weights this close to the maximum count as tied when picking the nearest site
NEAREST_TIE_TOLERANCE = 1e-12


class LocationKind(enum.Enum):
    VERTEX = "vertex"
    EDGE = "edge"
    INTERIOR = "interior"


@dataclass(frozen=True)
class Location:
    """Where a query point sits relative to the triangulation.

    ``vertex`` is set for VERTEX, ``edge`` and ``t`` (the parameter along the edge
    from ``edge[0]`` to ``edge[1]``) for EDGE, and ``triangle`` for INTERIOR or
    whenever a containing triangle was found.
    """

    kind: LocationKind
    triangle: int = -1
    vertex: int = -1
    edge: tuple[int, int] = (-1, -1)
    t: float = 0.0


@dataclass(frozen=True)
class NaturalCoordinates:
    """Natural neighbours of a query point and their weights."""

    indices: np.ndarray
    weights: np.ndarray
    point: tuple[float, float]
    triangle: int = -1

    def __len__(self) -> int:
        return len(self.indices)

    @property
    def is_vertex(self) -> bool:
        return len(self.indices) == 1

    def nearest_index(self) -> int:
        return nearest_index(self.indices, self.weights, len(self.indices))


def nearest_index(indices: np.ndarray, weights: np.ndarray, n: int) -> int:
    """Neighbour with the largest weight; near-ties go to the lowest index."""
    w = weights[:n]
    threshold = w.max() - NEAREST_TIE_TOLERANCE
    return int(indices[:n][w >= threshold].min())


def _segment_distance(x: float, y: float, ax: float, ay: float, bx: float, by: float) -> tuple[float, float]:
    """Distance from (x, y) to the segment a-b and the clamped projection parameter."""
    abx = bx - ax
    aby = by - ay
    length_sq = abx * abx + aby * aby
    t = ((x - ax) * abx + (y - ay) * aby) / length_sq
    t = min(max(t, 0.0), 1.0)
    return math.hypot(ax + t * abx - x, ay + t * aby - y), t


def _edge_location(tri: Triangulation, a: int, b: int, t: float, triangle: int = -1) -> Location:
    pa = tri.points[a]
    pb = tri.points[b]
    length = math.hypot(pb[0] - pa[0], pb[1] - pa[1])
    if t * length <= tri.tolerance:
        return Location(LocationKind.VERTEX, triangle=triangle, vertex=a)
    if (1.0 - t) * length <= tri.tolerance:
        return Location(LocationKind.VERTEX, triangle=triangle, vertex=b)
    return Location(LocationKind.EDGE, triangle=triangle, edge=(a, b), t=t)


def locate(tri: Triangulation, x: float, y: float, extrapolate: bool = False) -> Location:
    """Classify a query point as on a vertex, on a hull edge, or interior.

    Args:
        tri: The triangulation.
        x, y: Query coordinates.
        extrapolate: Project points outside the hull onto the nearest hull edge
            instead of raising.

    Raises:
        OutOfRangeError: The point is outside the hull and ``extrapolate`` is False.
    """
    if not (math.isfinite(x) and math.isfinite(y)):
        msg = f"Query point ({x}, {y}) is not finite."
        raise OutOfRangeError(msg, point=(x, y))

    tol = tri.tolerance
    t = tri.find_triangle(x, y)
    if t >= 0:
        simplex = tri.simplices[t]
        for v in simplex:
            px, py = tri.points[v]
            if math.hypot(x - px, y - py) <= tol:
                return Location(LocationKind.VERTEX, triangle=t, vertex=int(v))
        for k in range(3):
            if tri.neighbors[t, k] != -1:
                continue
            a = int(simplex[(k + 1) % 3])
            b = int(simplex[(k + 2) % 3])
            dist, s = _segment_distance(x, y, *tri.points[a], *tri.points[b])
            if dist <= tol:
                return _edge_location(tri, a, b, s, triangle=t)
        return Location(LocationKind.INTERIOR, triangle=t)

    e, s, dist = tri.nearest_hull_edge(x, y)
    if dist > tol and not extrapolate:
        msg = f"Query point ({x}, {y}) lies outside the convex hull of the data sites."
        raise OutOfRangeError(msg, point=(x, y))
    a, b = (int(v) for v in tri.hull_edges[e])
    return _edge_location(tri, a, b, s)


def _in_circumcircle(tri: Triangulation, t: int, x: float, y: float) -> bool:
    cx, cy = tri.circumcenters[t]
    r2 = tri.circumradii_sq[t]
    d2 = (x - cx) ** 2 + (y - cy) ** 2
    return r2 - d2 > GEOMETRIC_TOLERANCE * r2


def _grow_cavity(tri: Triangulation, x: float, y: float, start: int, cache: EvaluationCache) -> list[int]:
    """Bowyer-Watson cavity boundary, counter-clockwise from the lowest vertex index."""
    cache.reset_cavity()
    cavity = cache.cavity
    members = cache.cavity_members
    cavity.append(start)
    members.add(start)
    stack = [start]
    neighbors = tri.neighbors
    while stack:
        t = stack.pop()
        for k in range(3):
            u = int(neighbors[t, k])
            if u == -1 or u in members:
                continue
            if _in_circumcircle(tri, u, x, y):
                members.add(u)
                cavity.append(u)
                stack.append(u)

    # Boundary edges keep the orientation of their cavity triangle, so the cavity
    # lies on their left and following them walks counter-clockwise.
    boundary = cache.boundary
    simplices = tri.simplices
    for t in cavity:
        for k in range(3):
            u = int(neighbors[t, k])
            if u != -1 and u in members:
                continue
            a = int(simplices[t, (k + 1) % 3])
            b = int(simplices[t, (k + 2) % 3])
            boundary[a] = (b, t)

    first = min(boundary)
    ring = [first]
    v = boundary[first][0]
    while v != first:
        ring.append(v)
        if len(ring) > len(boundary):
            msg = f"Cavity boundary around ({x}, {y}) is not a simple polygon."
            raise DegenerateGeometryError(msg, point=(x, y))
        v = boundary[v][0]
    return ring


def _new_circumcenters(tri: Triangulation, x: float, y: float, ring: list[int], cache: EvaluationCache) -> None:
    """Vertices of the query's Voronoi cell: circumcentre of (v_k, v_k+1, q) in row k."""
    n = len(ring)
    points = tri.points
    for k in range(n):
        a = ring[k]
        b = ring[(k + 1) % n]
        cx, cy = circumcenter(points[a, 0], points[a, 1], points[b, 0], points[b, 1], x, y)
        cache.coordinates[k, 0] = cx
        cache.coordinates[k, 1] = cy


def _sibson_areas(tri: Triangulation, ring: list[int], cache: EvaluationCache) -> None:
    n = len(ring)
    boundary = cache.boundary
    simplices = tri.simplices
    neighbors = tri.neighbors
    centres = tri.circumcenters
    new_centres = cache.coordinates
    for k in range(n):
        v = ring[k]
        previous = ring[k - 1]
        t = boundary[previous][1]
        t_out = boundary[v][1]

        polygon = cache.polygon
        polygon[0] = new_centres[(k - 1) % n]
        m = 1
        for _ in range(len(cache.cavity)):
            if m + 2 > len(polygon):
                cache.reserve_polygon(m + 2)
                cache.polygon[:m] = polygon[:m]
                polygon = cache.polygon
            polygon[m] = centres[t]
            m += 1
            if t == t_out:
                break
            a = int(np.nonzero(simplices[t] == v)[0][0])
            t = int(neighbors[t, (a + 2) % 3])
        polygon[m] = new_centres[k]
        m += 1
        cache.weights[k] = polygon_area(polygon, m)


def _laplace_ratios(tri: Triangulation, x: float, y: float, ring: list[int], cache: EvaluationCache) -> None:
    n = len(ring)
    new_centres = cache.coordinates
    for k in range(n):
        px, py = tri.points[ring[k]]
        j = (k - 1) % n
        edge = math.hypot(new_centres[k, 0] - new_centres[j, 0], new_centres[k, 1] - new_centres[j, 1])
        cache.weights[k] = edge / math.hypot(x - px, y - py)


def triangle_weights_into(tri: Triangulation, x: float, y: float, t: int, cache: EvaluationCache) -> int:
    cache.reserve(3)
    i, j, k = tri.simplices[t]
    points = tri.points
    weights = barycentric_weights(x, y, *points[i], *points[j], *points[k])
    for slot, (v, w) in enumerate(zip((i, j, k), weights)):
        cache.indices[slot] = v
        cache.weights[slot] = w
    return 3


def location_weights(tri: Triangulation, location: Location, cache: EvaluationCache) -> int | None:
    """Fill the cache with the weights of VERTEX and EDGE locations.

    Returns the number of weights written, or None for interior points.
    """
    if location.kind is LocationKind.VERTEX:
        cache.indices[0] = location.vertex
        cache.weights[0] = 1.0
        return 1
    if location.kind is LocationKind.EDGE:
        cache.indices[0], cache.indices[1] = location.edge
        cache.weights[0] = 1.0 - location.t
        cache.weights[1] = location.t
        return 2
    return None


def natural_coordinates_into(
    tri: Triangulation,
    x: float,
    y: float,
    method: CoordinateMethod,
    cache: EvaluationCache,
    extrapolate: bool = False,
    location: Location | None = None,
) -> int:
    """Write the natural coordinates of (x, y) into ``cache.indices``/``cache.weights``.

    Returns:
        The number of natural neighbours written.
    """
    if location is None:
        location = locate(tri, x, y, extrapolate)
    n = location_weights(tri, location, cache)
    if n is not None:
        return n

    ring = _grow_cavity(tri, x, y, location.triangle, cache)
    n = len(ring)
    cache.reserve(n)
    cache.indices[:n] = ring
    _new_circumcenters(tri, x, y, ring, cache)
    if method is CoordinateMethod.SIBSON:
        _sibson_areas(tri, ring, cache)
    else:
        _laplace_ratios(tri, x, y, ring, cache)

    weights = cache.weights[:n]
    total = weights.sum()
    if not (np.isfinite(total) and total > 0.0):
        # Cell too thin to measure; fall back to the containing triangle
        return triangle_weights_into(tri, x, y, location.triangle, cache)
    weights /= total
    return n


def compute_natural_coordinates(
    tri: Triangulation,
    x: float,
    y: float,
    method: CoordinateMethod | str = "sibson",
    cache: EvaluationCache | None = None,
    extrapolate: bool = False,
) -> NaturalCoordinates:
    """Natural-neighbour coordinates of (x, y).

    Args:
        tri: The triangulation of the data sites.
        x, y: Query coordinates.
        method: ``"sibson"`` or ``"laplace"``.
        cache: Scratch space to reuse; a temporary one is used if omitted.
        extrapolate: Project points outside the hull onto the nearest hull edge.

    Returns:
        NaturalCoordinates owning copies of the indices and weights.

    Raises:
        OutOfRangeError: The point is outside the hull and ``extrapolate`` is False.
    """
    method = resolve_coordinate_method(method)
    if cache is None:
        cache = EvaluationCache()
    x = float(x)
    y = float(y)
    location = locate(tri, x, y, extrapolate)
    n = natural_coordinates_into(tri, x, y, method, cache, extrapolate, location)
    return NaturalCoordinates(
        indices=cache.indices[:n].copy(),
        weights=cache.weights[:n].copy(),
        point=(x, y),
        triangle=location.triangle,
    )


def sibson_coordinates(tri: Triangulation, x: float, y: float, **kwargs) -> NaturalCoordinates:
    return compute_natural_coordinates(tri, x, y, CoordinateMethod.SIBSON, **kwargs)


def laplace_coordinates(tri: Triangulation, x: float, y: float, **kwargs) -> NaturalCoordinates:
    return compute_natural_coordinates(tri, x, y, CoordinateMethod.LAPLACE, **kwargs)


__all__ = [
    "Location",
    "LocationKind",
    "NaturalCoordinates",
    "compute_natural_coordinates",
    "laplace_coordinates",
    "locate",
    "natural_coordinates_into",
    "nearest_index",
    "sibson_coordinates",
    "triangle_weights_into",
]
