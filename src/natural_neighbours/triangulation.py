"""
Read-only adapter over a planar Delaunay triangulation.

The triangulation itself is built by :class:`scipy.spatial.Delaunay`; this module
only exposes the topology and coordinates the interpolation core needs:
counter-clockwise triangles, triangle adjacency, vertex adjacency, incident
triangles, hull membership and triangle circumcircles.

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

import numpy as np
from scipy.spatial import Delaunay, QhullError  # type: ignore

from natural_neighbours.errors import InvalidConfigurationError
from natural_neighbours.methods._geometry_kernels import compute_circumcircles

# Relative tolerance used for coincidence and on-edge tests
GEOMETRIC_TOLERANCE = 1e-10


def _readonly(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class Triangulation:
    """Immutable view of a 2D Delaunay triangulation.

    Args:
        points: Array of data sites with shape (n, 2).
        qhull_options: Options forwarded to :class:`scipy.spatial.Delaunay`.
    """

    def __init__(self, points: np.ndarray, qhull_options: str | None = None):
        points = np.ascontiguousarray(np.asarray(points, dtype=np.float64))
        if points.ndim != 2 or points.shape[1] != 2:
            msg = f"points must have shape (n, 2), got {points.shape}."
            raise InvalidConfigurationError(msg)
        if len(points) < 3:
            msg = "At least three data sites are required to build a triangulation."
            raise InvalidConfigurationError(msg)
        if not np.all(np.isfinite(points)):
            msg = "points must be finite."
            raise InvalidConfigurationError(msg)

        try:
            delaunay = Delaunay(points, qhull_options=qhull_options)
        except QhullError as e:
            msg = f"Could not build a Delaunay triangulation of the data sites: {e}"
            raise InvalidConfigurationError(msg) from e

        self._build(delaunay)

    @classmethod
    def from_delaunay(cls, delaunay: Delaunay) -> Triangulation:
        """Wrap an existing :class:`scipy.spatial.Delaunay` object."""
        if delaunay.ndim != 2:
            msg = f"Only planar triangulations are supported, got ndim={delaunay.ndim}."
            raise InvalidConfigurationError(msg)
        obj = cls.__new__(cls)
        obj._build(delaunay)
        return obj

    def _build(self, delaunay: Delaunay) -> None:
        self.delaunay = delaunay
        points = np.ascontiguousarray(delaunay.points, dtype=np.float64)
        n_points = len(points)

        if len(delaunay.coplanar) > 0:
            dropped = sorted({int(i) for i in delaunay.coplanar[:, 0]})
            msg = f"Data sites {dropped} are duplicated or were left out of the triangulation."
            raise InvalidConfigurationError(msg)

        # qhull does not guarantee an orientation, so flip clockwise triangles.
        # Neighbour k stays opposite vertex k when both arrays are permuted alike.
        simplices = np.array(delaunay.simplices, dtype=np.int64)
        neighbors = np.array(delaunay.neighbors, dtype=np.int64)
        p = points[simplices]
        orient = (p[:, 1, 0] - p[:, 0, 0]) * (p[:, 2, 1] - p[:, 0, 1]) - (p[:, 1, 1] - p[:, 0, 1]) * (
            p[:, 2, 0] - p[:, 0, 0]
        )
        clockwise = orient < 0
        simplices[clockwise] = simplices[clockwise][:, [0, 2, 1]]
        neighbors[clockwise] = neighbors[clockwise][:, [0, 2, 1]]

        # Vertex -> incident triangles (CSR)
        flat = simplices.ravel()
        order = np.argsort(flat, kind="stable")
        counts = np.bincount(flat, minlength=n_points)
        self._triangle_indptr = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)
        self._triangle_indices = (order // 3).astype(np.int64)

        # Vertex -> neighbouring vertices (CSR, sorted by index)
        edges = np.concatenate([simplices[:, [0, 1]], simplices[:, [1, 2]], simplices[:, [2, 0]]])
        edges = np.unique(np.concatenate([edges, edges[:, ::-1]]), axis=0)
        counts = np.bincount(edges[:, 0], minlength=n_points)
        self._neighbour_indptr = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)
        self._neighbour_indices = np.ascontiguousarray(edges[:, 1], dtype=np.int64)

        # Hull edges, directed counter-clockwise (the triangle lies on their left)
        boundary_t, boundary_k = np.nonzero(neighbors == -1)
        hull_edges = np.column_stack(
            (simplices[boundary_t, (boundary_k + 1) % 3], simplices[boundary_t, (boundary_k + 2) % 3])
        )
        hull_mask = np.zeros(n_points, dtype=bool)
        hull_mask[hull_edges.ravel()] = True

        # Build the point-location transforms now so concurrent readers never race on them
        _ = delaunay.transform

        centres, radii_sq = compute_circumcircles(points, simplices)

        lower = points.min(axis=0)
        upper = points.max(axis=0)
        self.scale = float(np.hypot(*(upper - lower)))
        self.tolerance = GEOMETRIC_TOLERANCE * self.scale

        self.points = _readonly(points)
        self.simplices = _readonly(simplices)
        self.neighbors = _readonly(neighbors)
        self.hull_edges = _readonly(np.ascontiguousarray(hull_edges, dtype=np.int64))
        self.hull_mask = _readonly(hull_mask)
        self.circumcenters = _readonly(centres)
        self.circumradii_sq = _readonly(radii_sq)

    @property
    def n_points(self) -> int:
        return len(self.points)

    @property
    def n_triangles(self) -> int:
        return len(self.simplices)

    def vertex_neighbours(self, i: int) -> np.ndarray:
        """Vertices sharing a Delaunay edge with vertex ``i``, sorted by index."""
        return self._neighbour_indices[self._neighbour_indptr[i] : self._neighbour_indptr[i + 1]]

    def vertex_triangles(self, i: int) -> np.ndarray:
        """Triangles incident to vertex ``i``."""
        return self._triangle_indices[self._triangle_indptr[i] : self._triangle_indptr[i + 1]]

    def is_hull_vertex(self, i: int) -> bool:
        return bool(self.hull_mask[i])

    def iterated_neighbourhood(self, i: int, depth: int) -> np.ndarray:
        """Vertices within ``depth`` Delaunay edges of vertex ``i``, excluding ``i``.

        The result is sorted by index.
        """
        ring = {int(i)}
        frontier = [int(i)]
        for _ in range(depth):
            reached = []
            for v in frontier:
                for u in self.vertex_neighbours(v):
                    u = int(u)
                    if u not in ring:
                        ring.add(u)
                        reached.append(u)
            frontier = reached
        ring.discard(int(i))
        return np.array(sorted(ring), dtype=np.int64)

    def find_triangle(self, x: float, y: float) -> int:
        """Index of a triangle containing (x, y), or -1 outside the hull."""
        return int(self.delaunay.find_simplex(np.array([[x, y]], dtype=np.float64))[0])

    def find_triangles(self, points: np.ndarray) -> np.ndarray:
        return np.asarray(self.delaunay.find_simplex(np.asarray(points, dtype=np.float64)), dtype=np.int64)

    def nearest_hull_edge(self, x: float, y: float) -> tuple[int, float, float]:
        """Closest hull edge to (x, y).

        Returns:
            Tuple of (edge index into ``hull_edges``, parameter t in [0, 1] of the
            projection along the edge, distance from the point to the edge).
        """
        a = self.points[self.hull_edges[:, 0]]
        b = self.points[self.hull_edges[:, 1]]
        ab = b - a
        length_sq = np.einsum("ij,ij->i", ab, ab)
        t = ((x - a[:, 0]) * ab[:, 0] + (y - a[:, 1]) * ab[:, 1]) / length_sq
        t = np.clip(t, 0.0, 1.0)
        dx = a[:, 0] + t * ab[:, 0] - x
        dy = a[:, 1] + t * ab[:, 1] - y
        dist = np.hypot(dx, dy)
        # argmin returns the first minimum, so ties resolve to the lowest edge index
        e = int(np.argmin(dist))
        return e, float(t[e]), float(dist[e])

    def contains(self, points: np.ndarray) -> np.ndarray:
        """Mask of the points inside the hull or within tolerance of its boundary."""
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        inside = self.find_triangles(points) >= 0
        for k in np.nonzero(~inside)[0]:
            _, _, dist = self.nearest_hull_edge(points[k, 0], points[k, 1])
            inside[k] = dist <= self.tolerance
        return inside

    def __repr__(self) -> str:
        return f"Triangulation(n_points={self.n_points}, n_triangles={self.n_triangles})"
