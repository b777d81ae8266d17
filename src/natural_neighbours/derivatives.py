"""
Gradient and Hessian estimation by local weighted least squares.

Derivatives at a centre point p0 (a data site or an arbitrary query) are fitted
from the values at a ring of surrounding data sites. With D = p - p0 the local
model is a Taylor polynomial

    z - z0 = gx Dx + gy Dy
             + hxx Dx^2/2 + hyy Dy^2/2 + hxy Dx Dy
             + cubic terms (Dx^3/6, Dy^3/6, Dx^2 Dy/2, Dx Dy^2/2)

solved through the weighted normal equations. Local coordinates are scaled by
the mean neighbour distance so the conditioning check does not depend on the
units of the data. When a system is rejected the polynomial order is lowered
(cubic -> quadratic -> linear) and a rejected linear system raises
:class:`SingularSystemError`.

Two strategies are available:

- Direct: one fit per site, linear for order 1 and quadratic (optionally with
  cubic terms) for order 2, weighted by inverse distance.
- Iterative: gradients from a Direct order-1 pass, then the residuals
  z - z0 - g.D are refitted with the quadratic terms only to get the Hessian.
  Weights blend inverse distance with Sibson coordinates through alpha.
  The second pass does not refine the gradients: the pass-1 gradients (or the
  supplied initial gradients) are returned unchanged. Without initial
  gradients they equal those of ``generate_gradients``.

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

import logging
from collections.abc import Sequence

import numpy as np

from natural_neighbours.cache import EvaluationCache
from natural_neighbours.constants import (
    DerivativeOptions,
    DifferentiationMethod,
    DifferentiatorLike,
    resolve_differentiator,
)
from natural_neighbours.errors import InvalidConfigurationError, SingularSystemError
from natural_neighbours.methods._geometry_kernels import voronoi_split_areas
from natural_neighbours.parallel import run_partitioned
from natural_neighbours.triangulation import Triangulation

logger = logging.getLogger(__name__)

LINEAR_TERMS = 2
QUADRATIC_TERMS = 5
CUBIC_TERMS = 9

# Normal matrices with a larger condition number are treated as singular
CONDITION_LIMIT = 1e12

_DOWNGRADES = {CUBIC_TERMS: QUADRATIC_TERMS, QUADRATIC_TERMS: LINEAR_TERMS}


def _validate_values(tri: Triangulation, z) -> np.ndarray:
    z = np.ascontiguousarray(np.asarray(z, dtype=np.float64))
    if z.shape != (tri.n_points,):
        msg = f"Expected {tri.n_points} values, one per data site, got shape {z.shape}."
        raise InvalidConfigurationError(msg)
    return z


def _validate_gradients(tri: Triangulation, gradients) -> np.ndarray:
    gradients = np.ascontiguousarray(np.asarray(gradients, dtype=np.float64))
    if gradients.shape != (tri.n_points, 2):
        msg = f"Expected gradients of shape ({tri.n_points}, 2), got {gradients.shape}."
        raise InvalidConfigurationError(msg)
    return gradients


def _validate_order(order: int) -> int:
    if order not in (1, 2):
        msg = f"Derivatives can only be generated up to order 1 or 2, got {order}."
        raise InvalidConfigurationError(msg)
    return order


def _fill_design(design: np.ndarray, dx: np.ndarray, dy: np.ndarray, n_terms: int, offset: int = 0) -> None:
    """Write the Taylor terms starting at column ``offset`` (0 = linear, 2 = quadratic)."""
    columns = []
    if offset == 0:
        columns += [dx, dy]
    if n_terms >= QUADRATIC_TERMS:
        columns += [0.5 * dx * dx, 0.5 * dy * dy, dx * dy]
    if n_terms >= CUBIC_TERMS:
        columns += [dx**3 / 6.0, dy**3 / 6.0, 0.5 * dx * dx * dy, 0.5 * dx * dy * dy]
    for j, column in enumerate(columns):
        design[:, j] = column


def _solve_normal_equations(design: np.ndarray, rhs: np.ndarray, weights: np.ndarray) -> np.ndarray | None:
    """Weighted least squares through the normal equations; None if the system is rejected."""
    n_rows, n_terms = design.shape
    if n_rows < n_terms:
        return None
    weighted = design.T * weights
    normal = weighted @ design
    if not np.all(np.isfinite(normal)):
        return None
    if np.linalg.cond(normal) > CONDITION_LIMIT:
        return None
    try:
        return np.linalg.solve(normal, weighted @ rhs)
    except np.linalg.LinAlgError:
        return None


def _neighbour_offsets(
    tri: Triangulation, x0: float, y0: float, neighbours: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray, float]:
    """Scaled offsets of the neighbours from (x0, y0), their distances and the scale."""
    points = tri.points[neighbours]
    dx = points[:, 0] - x0
    dy = points[:, 1] - y0
    distance = np.hypot(dx, dy)
    h = float(distance.mean()) if len(distance) else 1.0
    if not h > 0.0:
        h = 1.0
    return dx / h, dy / h, distance, h


def _inverse_distance(distance: np.ndarray) -> np.ndarray:
    weights = 1.0 / distance
    return weights / weights.sum()


def _fit_taylor(
    dx: np.ndarray,
    dy: np.ndarray,
    dz: np.ndarray,
    weights: np.ndarray,
    n_terms: int,
    cache: EvaluationCache,
    site: int | None = None,
) -> tuple[np.ndarray, int]:
    """Fit the Taylor model, lowering the order until the system is accepted.

    Returns:
        Tuple of (coefficients, number of terms actually used).
    """
    m = len(dx)
    cache.reserve(m)
    while True:
        design = cache.design[:m, :n_terms]
        _fill_design(design, dx, dy, n_terms)
        coefficients = _solve_normal_equations(design, dz, weights)
        if coefficients is not None:
            return coefficients, n_terms
        if n_terms not in _DOWNGRADES:
            where = f"data site {site}" if site is not None else "the query point"
            msg = f"Least-squares system at {where} is singular even for a linear fit ({m} neighbours)."
            raise SingularSystemError(msg, site=site)
        logger.debug("Lowering fit at %s from %d to %d terms", site, n_terms, _DOWNGRADES[n_terms])
        n_terms = _DOWNGRADES[n_terms]


def _unscale(coefficients: np.ndarray, n_terms: int, h: float) -> tuple[np.ndarray, np.ndarray]:
    gradient = coefficients[:2] / h
    if n_terms >= QUADRATIC_TERMS:
        hessian = coefficients[2:5] / (h * h)
    else:
        hessian = np.zeros(3)
    return gradient, hessian


def site_sibson_weights(tri: Triangulation, i: int) -> dict[int, float] | None:
    """Sibson coordinates of data site ``i`` with respect to its Delaunay neighbours.

    These are the coordinates the site would get if it were removed and then
    inserted again: the Voronoi cell of ``i`` is split among its neighbours by
    nearest site and the areas are normalised. Hull sites have unbounded
    Voronoi cells and return None.
    """
    if tri.is_hull_vertex(i):
        return None
    neighbours = tri.vertex_neighbours(i)
    origin = tri.points[i]
    # Work relative to the site to limit cancellation
    cell = tri.circumcenters[tri.vertex_triangles(i)] - origin
    cell = np.ascontiguousarray(cell[np.argsort(np.arctan2(cell[:, 1], cell[:, 0]))])
    sites = np.ascontiguousarray(tri.points[neighbours] - origin)
    areas = voronoi_split_areas(cell, sites)
    total = areas.sum()
    if not (np.isfinite(total) and total > 0.0):
        return None
    return {int(j): float(a / total) for j, a in zip(neighbours, areas)}


def _blended_weights(
    distance: np.ndarray,
    neighbours: np.ndarray,
    natural: dict[int, float] | None,
    options: DerivativeOptions,
) -> np.ndarray:
    weights = _inverse_distance(distance)
    if not options.use_sibson_weight or natural is None:
        return weights
    lam = np.array([natural.get(int(j), 0.0) for j in neighbours])
    total = lam.sum()
    if not total > 0.0:
        return weights
    return options.alpha * weights + (1.0 - options.alpha) * lam / total


def _direct(
    tri: Triangulation,
    z: np.ndarray,
    x0: float,
    y0: float,
    z0: float,
    neighbours: np.ndarray,
    order: int,
    options: DerivativeOptions,
    cache: EvaluationCache,
    site: int | None = None,
) -> tuple[np.ndarray, np.ndarray | None]:
    dx, dy, distance, h = _neighbour_offsets(tri, x0, y0, neighbours)
    dz = z[neighbours] - z0
    weights = _inverse_distance(distance)
    if order == 1:
        n_terms = LINEAR_TERMS
    else:
        n_terms = CUBIC_TERMS if options.use_cubic_terms else QUADRATIC_TERMS
    coefficients, used = _fit_taylor(dx, dy, dz, weights, n_terms, cache, site)
    gradient, hessian = _unscale(coefficients, used, h)
    return gradient, (hessian if order == 2 else None)


def _hessian_from_residuals(
    tri: Triangulation,
    z: np.ndarray,
    x0: float,
    y0: float,
    z0: float,
    gradient: np.ndarray,
    neighbours: np.ndarray,
    natural: dict[int, float] | None,
    options: DerivativeOptions,
    cache: EvaluationCache,
    site: int | None = None,
) -> np.ndarray:
    """Second pass of the Iterative strategy."""
    dx, dy, distance, h = _neighbour_offsets(tri, x0, y0, neighbours)
    # Residuals of the linear prediction, in the scaled frame
    residual = z[neighbours] - z0 - h * (gradient[0] * dx + gradient[1] * dy)
    weights = _blended_weights(distance, neighbours, natural, options)

    m = len(neighbours)
    cache.reserve(m)
    design = cache.design[:m, :3]
    _fill_design(design, dx, dy, QUADRATIC_TERMS, offset=2)
    coefficients = _solve_normal_equations(design, residual, weights)
    if coefficients is None:
        logger.debug("Quadratic residual fit at %s rejected; using a linear model", site)
        return np.zeros(3)
    return coefficients / (h * h)


def _site_neighbourhood(tri: Triangulation, i: int, order: int) -> np.ndarray:
    return tri.iterated_neighbourhood(i, order)


def estimate_site_derivatives(
    tri: Triangulation,
    z: np.ndarray,
    i: int,
    order: int,
    method: DifferentiationMethod,
    options: DerivativeOptions,
    cache: EvaluationCache,
    initial_gradient: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray | None]:
    """Gradient (and Hessian for order 2) at data site ``i``."""
    x0, y0 = tri.points[i]
    z0 = z[i]
    if method is DifferentiationMethod.DIRECT or order == 1:
        if initial_gradient is not None and order == 1:
            return initial_gradient, None
        return _direct(tri, z, x0, y0, z0, _site_neighbourhood(tri, i, order), order, options, cache, site=i)
    elif method is DifferentiationMethod.ITERATIVE:
        if initial_gradient is None:
            initial_gradient, _ = _direct(
                tri, z, x0, y0, z0, _site_neighbourhood(tri, i, 1), 1, options, cache, site=i
            )
        natural = site_sibson_weights(tri, i) if options.use_sibson_weight else None
        hessian = _hessian_from_residuals(
            tri, z, x0, y0, z0, initial_gradient, _site_neighbourhood(tri, i, 2), natural, options, cache, site=i
        )
        return initial_gradient, hessian
    else:
        msg = f"Unsupported differentiation method: {method!r}"
        raise InvalidConfigurationError(msg)


def _query_neighbourhood(tri: Triangulation, indices: np.ndarray, order: int) -> np.ndarray:
    """Natural neighbours of a query, grown by one ring for order 2 or when too few."""
    ring = {int(j) for j in indices}
    depth = order - 1
    if len(ring) < 3:
        depth += 1
    for _ in range(depth):
        ring.update(int(u) for v in list(ring) for u in tri.vertex_neighbours(v))
    return np.array(sorted(ring), dtype=np.int64)


def estimate_point_derivatives(
    tri: Triangulation,
    z: np.ndarray,
    x0: float,
    y0: float,
    z0: float,
    indices: np.ndarray,
    weights: np.ndarray,
    order: int,
    method: DifferentiationMethod,
    options: DerivativeOptions,
    cache: EvaluationCache,
) -> tuple[np.ndarray, np.ndarray | None]:
    """Derivatives at an arbitrary point from its natural coordinates.

    Args:
        tri: The triangulation.
        z: Values at the data sites.
        x0, y0: The point.
        z0: Estimate of the function value at the point.
        indices, weights: Natural coordinates of the point.
        order: 1 for the gradient, 2 for gradient and Hessian.
        method: Direct or Iterative.
        options: Fit options.
        cache: Worker scratch space.
    """
    if len(indices) == 1:
        return estimate_site_derivatives(tri, z, int(indices[0]), order, method, options, cache)

    neighbours = _query_neighbourhood(tri, indices, order)
    if method is DifferentiationMethod.DIRECT or order == 1:
        return _direct(tri, z, x0, y0, z0, neighbours, order, options, cache)
    elif method is DifferentiationMethod.ITERATIVE:
        gradient, _ = _direct(tri, z, x0, y0, z0, _query_neighbourhood(tri, indices, 1), 1, options, cache)
        natural = {int(j): float(w) for j, w in zip(indices, weights)}
        hessian = _hessian_from_residuals(tri, z, x0, y0, z0, gradient, neighbours, natural, options, cache)
        return gradient, hessian
    else:
        msg = f"Unsupported differentiation method: {method!r}"
        raise InvalidConfigurationError(msg)


def generate_gradients(
    tri: Triangulation,
    z,
    parallel: bool = True,
    caches: Sequence[EvaluationCache] | None = None,
) -> np.ndarray:
    """Gradients at every data site with the Direct linear fit.

    Args:
        tri: The triangulation of the data sites.
        z: Values at the data sites.
        parallel: Whether to spread the sites over several threads.
        caches: One cache per worker.

    Returns:
        Array of shape (n, 2) holding (dz/dx, dz/dy) per site.
    """
    z = _validate_values(tri, z)
    gradients = np.empty((tri.n_points, 2), dtype=np.float64)
    options = DerivativeOptions()

    def kernel(start: int, stop: int, cache: EvaluationCache) -> None:
        for i in range(start, stop):
            gradients[i], _ = estimate_site_derivatives(
                tri, z, i, 1, DifferentiationMethod.DIRECT, options, cache
            )

    run_partitioned(kernel, tri.n_points, parallel=parallel, caches=caches)
    return gradients


def generate_derivatives(
    tri: Triangulation,
    z,
    order: int = 2,
    method: DifferentiatorLike = "direct",
    use_cubic_terms: bool = True,
    alpha: float = 0.1,
    use_sibson_weight: bool = True,
    parallel: bool = True,
    caches: Sequence[EvaluationCache] | None = None,
    initial_gradients=None,
) -> tuple[np.ndarray, np.ndarray | None]:
    """Gradients and Hessians at every data site.

    Args:
        tri: The triangulation of the data sites.
        z: Values at the data sites.
        order: 1 for gradients only, 2 for gradients and Hessians.
        method: ``"direct"`` or ``"iterative"``.
        use_cubic_terms: Add cubic terms to the Direct second-order fit.
        alpha: Distance versus natural-coordinate weighting of the Iterative second pass.
        use_sibson_weight: Whether the Iterative second pass uses natural-coordinate weights.
        parallel: Whether to spread the sites over several threads.
        caches: One cache per worker.
        initial_gradients: Gradients for the Iterative first pass; generated if omitted.

    Returns:
        Tuple of (gradients (n, 2), Hessians (n, 3) or None for order 1). Hessian
        columns are (d2z/dx2, d2z/dy2, d2z/dxdy).
    """
    order = _validate_order(order)
    method = resolve_differentiator(method)
    options = DerivativeOptions(use_cubic_terms=use_cubic_terms, alpha=alpha, use_sibson_weight=use_sibson_weight)
    z = _validate_values(tri, z)

    if order == 1 and initial_gradients is None:
        return generate_gradients(tri, z, parallel=parallel, caches=caches), None

    gradients = np.empty((tri.n_points, 2), dtype=np.float64)
    hessians = np.empty((tri.n_points, 3), dtype=np.float64) if order == 2 else None

    if method is DifferentiationMethod.ITERATIVE or order == 1:
        if initial_gradients is None:
            initial_gradients = generate_gradients(tri, z, parallel=parallel, caches=caches)
        initial_gradients = _validate_gradients(tri, initial_gradients)
        gradients[:] = initial_gradients
        if order == 1:
            return gradients, None

    def kernel(start: int, stop: int, cache: EvaluationCache) -> None:
        for i in range(start, stop):
            initial = gradients[i] if method is DifferentiationMethod.ITERATIVE else None
            gradient, hessian = estimate_site_derivatives(tri, z, i, order, method, options, cache, initial)
            gradients[i] = gradient
            hessians[i] = hessian

    run_partitioned(kernel, tri.n_points, parallel=parallel, caches=caches)
    return gradients, hessians


__all__ = [
    "estimate_point_derivatives",
    "estimate_site_derivatives",
    "generate_derivatives",
    "generate_gradients",
    "site_sibson_weights",
]
