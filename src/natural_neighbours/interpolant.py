"""
Natural-neighbour interpolant over scattered planar data.

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

import threading
from collections.abc import Sequence
from typing import Any, Literal

import numpy as np
from scipy.spatial import Delaunay  # type: ignore

from natural_neighbours.cache import EvaluationCache
from natural_neighbours.constants import (
    CoordinateMethod,
    DerivativeOptions,
    DifferentiationMethod,
    DifferentiatorLike,
    InterpolationMethod,
    Interpolator,
    InterpolatorLike,
    resolve_differentiator,
    resolve_interpolator,
)
from natural_neighbours.derivatives import (
    _validate_gradients,
    _validate_order,
    _validate_values,
    estimate_point_derivatives,
    generate_derivatives,
)
from natural_neighbours.errors import InvalidConfigurationError, MissingGradientError
from natural_neighbours.methods._geometry_kernels import sibson1_value, weighted_sum
from natural_neighbours.natural_coordinates import (
    locate,
    location_weights,
    natural_coordinates_into,
    nearest_index,
    triangle_weights_into,
)
from natural_neighbours.parallel import run_partitioned
from natural_neighbours.triangulation import Triangulation


def _as_triangulation(data: Any) -> Triangulation:
    if isinstance(data, Triangulation):
        return data
    if isinstance(data, Delaunay):
        return Triangulation.from_delaunay(data)
    return Triangulation(data)


def _query_arrays(x, y) -> tuple[np.ndarray, np.ndarray, tuple[int, ...]]:
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.shape != y.shape:
        msg = f"x and y must have the same shape, got {x.shape} and {y.shape}."
        raise InvalidConfigurationError(msg)
    return x.ravel(), y.ravel(), x.shape


def _output_buffer(out: np.ndarray | None, shape: tuple[int, ...]) -> np.ndarray:
    if out is None:
        return np.empty(shape, dtype=np.float64)
    if out.shape != shape or not out.flags.c_contiguous:
        msg = f"out must be a C-contiguous array of shape {shape}, got {out.shape}."
        raise InvalidConfigurationError(msg)
    if out.dtype != np.float64:
        msg = f"out must have dtype float64, got {out.dtype}."
        raise InvalidConfigurationError(msg)
    return out


class NaturalNeighboursInterpolant:
    """Interpolant of values given at the vertices of a Delaunay triangulation.

    Values and derivatives are fixed once the interpolant is built, so one
    instance can serve any number of concurrent queries.

    Args:
        triangulation: The triangulation of the data sites.
        z: Values at the data sites.
        gradient: Gradients at the data sites, shape (n, 2).
        hessian: Hessians at the data sites, shape (n, 3) as (xx, yy, xy).
        derivatives: ``True`` to generate missing derivatives now, ``"lazy"`` to
            generate them the first time a scheme needs them, ``False`` never.
        **derivative_kwargs: Passed to :func:`generate_derivatives`.
    """

    def __init__(
        self,
        triangulation: Triangulation,
        z,
        gradient=None,
        hessian=None,
        derivatives: bool | Literal["lazy"] = False,
        **derivative_kwargs: Any,
    ):
        if derivatives not in (True, False, "lazy"):
            msg = f"derivatives must be True, False or 'lazy', got {derivatives!r}."
            raise InvalidConfigurationError(msg)
        unknown = set(derivative_kwargs) - {"method", "use_cubic_terms", "alpha", "use_sibson_weight", "parallel"}
        if unknown:
            msg = f"Unexpected derivative options: {sorted(unknown)}"
            raise InvalidConfigurationError(msg)

        self.triangulation = triangulation
        self.z = _validate_values(triangulation, z).copy()
        self.z.setflags(write=False)
        self._gradients = None if gradient is None else _validate_gradients(triangulation, gradient).copy()
        self._hessians = None if hessian is None else self._validate_hessians(hessian).copy()
        self._lazy = derivatives == "lazy"
        self._derivative_kwargs = derivative_kwargs
        self._lock = threading.Lock()

        # Fail early on invalid options instead of at the first lazy generation
        resolve_differentiator(derivative_kwargs.get("method", "direct"))
        DerivativeOptions(
            use_cubic_terms=derivative_kwargs.get("use_cubic_terms", True),
            alpha=derivative_kwargs.get("alpha", 0.1),
            use_sibson_weight=derivative_kwargs.get("use_sibson_weight", True),
        )

        if derivatives is True and (self._gradients is None or self._hessians is None):
            self._generate_derivatives()

    def _validate_hessians(self, hessian) -> np.ndarray:
        hessian = np.ascontiguousarray(np.asarray(hessian, dtype=np.float64))
        if hessian.shape != (self.triangulation.n_points, 3):
            msg = f"Expected hessians of shape ({self.triangulation.n_points}, 3), got {hessian.shape}."
            raise InvalidConfigurationError(msg)
        return hessian

    def _generate_derivatives(self) -> None:
        gradients, hessians = generate_derivatives(
            self.triangulation, self.z, order=2, initial_gradients=self._gradients, **self._derivative_kwargs
        )
        if self._hessians is None:
            self._hessians = hessians
            self._hessians.setflags(write=False)
        if self._gradients is None:
            gradients.setflags(write=False)
            self._gradients = gradients
        else:
            self._gradients.setflags(write=False)

    def _require_gradients(self) -> np.ndarray:
        if self._gradients is not None:
            return self._gradients
        if not self._lazy:
            msg = "This scheme needs gradients at the data sites; pass gradient= or derivatives=True."
            raise MissingGradientError(msg)
        with self._lock:
            if self._gradients is None:
                self._generate_derivatives()
        return self._gradients

    @property
    def gradients(self) -> np.ndarray | None:
        return self._gradients

    @property
    def hessians(self) -> np.ndarray | None:
        return self._hessians

    @property
    def has_gradients(self) -> bool:
        return self._gradients is not None

    def _evaluate_point(
        self,
        x: float,
        y: float,
        interpolator: Interpolator,
        gradients: np.ndarray | None,
        extrapolate: bool,
        cache: EvaluationCache,
    ) -> float:
        tri = self.triangulation
        location = locate(tri, x, y, extrapolate)
        method = interpolator.method

        if method is InterpolationMethod.TRIANGLE:
            n = location_weights(tri, location, cache)
            if n is None:
                n = triangle_weights_into(tri, x, y, location.triangle, cache)
            return weighted_sum(cache.indices, cache.weights, n, self.z)
        elif method is InterpolationMethod.LAPLACE:
            n = natural_coordinates_into(tri, x, y, CoordinateMethod.LAPLACE, cache, extrapolate, location)
            return weighted_sum(cache.indices, cache.weights, n, self.z)
        elif method is InterpolationMethod.NEAREST:
            n = natural_coordinates_into(tri, x, y, CoordinateMethod.SIBSON, cache, extrapolate, location)
            return float(self.z[nearest_index(cache.indices, cache.weights, n)])
        elif method is InterpolationMethod.SIBSON:
            n = natural_coordinates_into(tri, x, y, CoordinateMethod.SIBSON, cache, extrapolate, location)
            if interpolator.order == 1:
                return sibson1_value(x, y, cache.indices, cache.weights, n, tri.points, self.z, gradients)
            return weighted_sum(cache.indices, cache.weights, n, self.z)
        else:
            msg = f"Unsupported interpolation method: {method!r}"
            raise InvalidConfigurationError(msg)

    def _differentiate_point(
        self,
        x: float,
        y: float,
        z0: float | None,
        order: int,
        method: DifferentiationMethod,
        options: DerivativeOptions,
        interpolator: Interpolator,
        gradients: np.ndarray | None,
        extrapolate: bool,
        cache: EvaluationCache,
    ) -> tuple[np.ndarray, np.ndarray | None]:
        if z0 is None:
            z0 = self._evaluate_point(x, y, interpolator, gradients, extrapolate, cache)
        n = natural_coordinates_into(self.triangulation, x, y, CoordinateMethod.SIBSON, cache, extrapolate)
        indices = cache.indices[:n].copy()
        weights = cache.weights[:n].copy()
        return estimate_point_derivatives(
            self.triangulation, self.z, x, y, z0, indices, weights, order, method, options, cache
        )

    def evaluate(
        self,
        x,
        y,
        method: InterpolatorLike = "sibson",
        parallel: bool = True,
        out: np.ndarray | None = None,
        gradient: bool = False,
        extrapolate: bool = False,
        caches: Sequence[EvaluationCache] | None = None,
    ):
        """Evaluate the interpolant.

        Args:
            x, y: Query coordinates, scalars or arrays of the same shape.
            method: Interpolation scheme, e.g. ``"sibson"``, ``sibson(1)`` or ``"triangle"``.
            parallel: Spread array queries over several threads.
            out: Optional output array for array queries.
            gradient: Also return the gradient of the interpolant at the queries.
            extrapolate: Project queries outside the hull onto the nearest hull edge
                instead of raising :class:`OutOfRangeError`.
            caches: One cache per worker, reused across calls.

        Returns:
            A float for scalar queries or an array shaped like ``x``. With
            ``gradient=True`` a tuple of (values, gradients), gradients having a
            trailing dimension of size 2.
        """
        interpolator = resolve_interpolator(method)
        gradients = self._require_gradients() if interpolator.requires_gradients else self._gradients

        if np.ndim(x) == 0 and np.ndim(y) == 0:
            cache = caches[0] if caches else EvaluationCache()
            x = float(x)
            y = float(y)
            value = float(self._evaluate_point(x, y, interpolator, gradients, extrapolate, cache))
            if not gradient:
                return value
            grad, _ = self._differentiate_point(
                x, y, value, 1, self._default_differentiator(), DerivativeOptions(),
                interpolator, gradients, extrapolate, cache,
            )
            return value, grad

        xs, ys, shape = _query_arrays(x, y)
        values = _output_buffer(out, shape)
        flat = values.reshape(-1)
        grads = np.empty((len(xs), 2), dtype=np.float64) if gradient else None
        differentiator = self._default_differentiator()
        options = DerivativeOptions()

        def kernel(start: int, stop: int, cache: EvaluationCache) -> None:
            for k in range(start, stop):
                flat[k] = self._evaluate_point(xs[k], ys[k], interpolator, gradients, extrapolate, cache)
                if grads is not None:
                    grads[k], _ = self._differentiate_point(
                        xs[k], ys[k], flat[k], 1, differentiator, options,
                        interpolator, gradients, extrapolate, cache,
                    )

        run_partitioned(kernel, len(xs), parallel=parallel, caches=caches)
        if grads is not None:
            return values, grads.reshape((*shape, 2))
        return values

    def _default_differentiator(self) -> DifferentiationMethod:
        return DifferentiationMethod.ITERATIVE if self.has_gradients else DifferentiationMethod.DIRECT

    def differentiate(
        self,
        x,
        y,
        order: int = 1,
        method: DifferentiatorLike | None = None,
        interpolant_method: InterpolatorLike = "sibson",
        parallel: bool = True,
        extrapolate: bool = False,
        caches: Sequence[EvaluationCache] | None = None,
        use_cubic_terms: bool = True,
        alpha: float = 0.1,
        use_sibson_weight: bool = True,
        z0=None,
    ):
        """Estimate derivatives of the interpolated surface at arbitrary points.

        The value at each query is first estimated with ``interpolant_method``
        unless it is given as ``z0``; the derivatives are then fitted over the
        natural neighbours of the query (and their own neighbours for ``order=2``).

        Args:
            x, y: Query coordinates, scalars or arrays of the same shape.
            z0: Known values at the queries, broadcast to their shape.
            order: 1 for gradients, 2 for gradients and Hessians.
            method: ``"direct"`` or ``"iterative"``. Defaults to Direct when the
                interpolant has no gradients and Iterative otherwise.
            interpolant_method: Scheme used to estimate the value at the query.
            parallel: Spread array queries over several threads.
            extrapolate: Project queries outside the hull onto the hull.
            caches: One cache per worker.
            use_cubic_terms, alpha, use_sibson_weight: See :class:`DerivativeOptions`.

        Returns:
            For order 1 the gradient (shape (..., 2)); for order 2 a tuple of
            (gradient, Hessian), the Hessian having shape (..., 3).
        """
        order = _validate_order(order)
        method = self._default_differentiator() if method is None else resolve_differentiator(method)
        options = DerivativeOptions(use_cubic_terms=use_cubic_terms, alpha=alpha, use_sibson_weight=use_sibson_weight)
        interpolator = resolve_interpolator(interpolant_method)
        needs_gradients = z0 is None and interpolator.requires_gradients
        gradients = self._require_gradients() if needs_gradients else self._gradients

        if np.ndim(x) == 0 and np.ndim(y) == 0:
            cache = caches[0] if caches else EvaluationCache()
            value = None if z0 is None else float(z0)
            grad, hess = self._differentiate_point(
                float(x), float(y), value, order, method, options, interpolator, gradients, extrapolate, cache
            )
            return grad if order == 1 else (grad, hess)

        xs, ys, shape = _query_arrays(x, y)
        if z0 is not None:
            try:
                z0 = np.broadcast_to(np.asarray(z0, dtype=np.float64), shape).ravel()
            except ValueError as err:
                msg = f"z0 cannot be broadcast to the query shape {shape}."
                raise InvalidConfigurationError(msg) from err
        grads = np.empty((len(xs), 2), dtype=np.float64)
        hessians = np.empty((len(xs), 3), dtype=np.float64) if order == 2 else None

        def kernel(start: int, stop: int, cache: EvaluationCache) -> None:
            for k in range(start, stop):
                value = None if z0 is None else z0[k]
                grad, hess = self._differentiate_point(
                    xs[k], ys[k], value, order, method, options, interpolator, gradients, extrapolate, cache
                )
                grads[k] = grad
                if hessians is not None:
                    hessians[k] = hess

        run_partitioned(kernel, len(xs), parallel=parallel, caches=caches)
        if hessians is None:
            return grads.reshape((*shape, 2))
        return grads.reshape((*shape, 2)), hessians.reshape((*shape, 3))

    def __repr__(self) -> str:
        return (
            f"NaturalNeighboursInterpolant(n_points={self.triangulation.n_points}, "
            f"gradients={self.has_gradients}, hessians={self._hessians is not None})"
        )


def interpolate(
    data,
    *values,
    gradient=None,
    hessian=None,
    derivatives: bool | Literal["lazy"] = False,
    **derivative_kwargs: Any,
) -> NaturalNeighboursInterpolant:
    """Build a natural-neighbour interpolant.

    Called either as ``interpolate(data, z)`` or as ``interpolate(x, y, z)`` with
    the site coordinates given as two vectors.

    Args:
        data: A :class:`Triangulation`, a :class:`scipy.spatial.Delaunay` object or
            an array of data sites with shape (n, 2). In the three-argument form,
            the x coordinates of the sites.
        *values: ``z``, the values at the data sites, or ``y, z``.
        gradient: Known gradients at the data sites, shape (n, 2).
        hessian: Known Hessians at the data sites, shape (n, 3).
        derivatives: ``True`` to generate missing derivatives now, ``"lazy"`` to
            generate them on first need, ``False`` to never generate them.
        **derivative_kwargs: ``method``, ``use_cubic_terms``, ``alpha``,
            ``use_sibson_weight`` and ``parallel`` for :func:`generate_derivatives`.

    Returns:
        NaturalNeighboursInterpolant
    """
    if len(values) == 1:
        (z,) = values
    elif len(values) == 2:
        x = np.asarray(data, dtype=np.float64).ravel()
        y = np.asarray(values[0], dtype=np.float64).ravel()
        if x.shape != y.shape:
            msg = f"x and y must have the same length, got {len(x)} and {len(y)}."
            raise InvalidConfigurationError(msg)
        data = np.column_stack((x, y))
        z = values[1]
    else:
        msg = f"interpolate takes (data, z) or (x, y, z), got {len(values) + 1} positional arguments."
        raise InvalidConfigurationError(msg)
    return NaturalNeighboursInterpolant(
        _as_triangulation(data), z, gradient=gradient, hessian=hessian, derivatives=derivatives, **derivative_kwargs
    )


__all__ = ["NaturalNeighboursInterpolant", "interpolate"]
