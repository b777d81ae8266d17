"""
Tests for evaluating and differentiating the natural-neighbour interpolant.
"""

import threading

import numpy as np
import pytest
from scipy.spatial import Delaunay

from helpers import UNIT_SQUARE, jittered_grid, plane, query_points, quadratic, scattered_points
from natural_neighbours import (
    EvaluationCache,
    InvalidConfigurationError,
    MissingGradientError,
    NaturalNeighboursInterpolant,
    OutOfRangeError,
    Triangulation,
    interpolate,
    laplace,
    nearest,
    sibson,
    triangle,
)

SCHEMES = ["sibson", "laplace", "triangle", "nearest", sibson(1)]


@pytest.fixture(scope="module")
def points():
    return scattered_points(80)


@pytest.fixture(scope="module")
def itp(points):
    z = np.sin(2.0 * points[:, 0]) + points[:, 1] ** 2
    return interpolate(points, z, derivatives=True)


@pytest.mark.parametrize("method", SCHEMES)
def test_data_sites_are_reproduced(itp, points, method):
    values = itp.evaluate(points[:, 0], points[:, 1], method=method)
    np.testing.assert_array_equal(values, itp.z)


def test_unit_square_centre():
    itp = interpolate(UNIT_SQUARE, [0.0, 1.0, 2.0, 1.0])
    assert itp.evaluate(0.5, 0.5, method="sibson") == pytest.approx(1.0)
    assert itp.evaluate(0.5, 0.5, method=laplace()) == pytest.approx(1.0)
    assert itp.evaluate(0.5, 0.5, method=triangle()) == pytest.approx(1.0)
    # Four-way tie resolved to the lowest index
    assert itp.evaluate(0.5, 0.5, method=nearest()) == 0.0


@pytest.mark.parametrize("method", ["sibson", "laplace", "triangle"])
def test_linear_precision(points, method):
    itp = interpolate(points, plane(points))
    q = query_points(60)
    np.testing.assert_allclose(itp.evaluate(q[:, 0], q[:, 1], method=method), plane(q), atol=1e-9)


def test_sibson1_with_exact_gradients_reproduces_a_plane(points):
    gradient = np.tile([2.0, -0.5], (len(points), 1))
    itp = interpolate(points, plane(points), gradient=gradient)
    q = query_points(60)
    np.testing.assert_allclose(itp.evaluate(q[:, 0], q[:, 1], method=sibson(1)), plane(q), atol=1e-9)


def test_sibson1_is_closer_than_sibson0_on_smooth_data():
    points = jittered_grid(15)
    z = quadratic(points)
    itp = interpolate(points, z, derivatives=True)
    q = query_points(200, margin=0.1)
    exact = quadratic(q)
    err0 = np.abs(itp.evaluate(q[:, 0], q[:, 1], method="sibson") - exact).max()
    err1 = np.abs(itp.evaluate(q[:, 0], q[:, 1], method=sibson(1)) - exact).max()
    assert err1 < err0


def test_values_are_bounded_by_the_data(itp):
    """Sibson(0), Laplace and triangle are convex combinations of the data."""
    q = query_points(100)
    for method in ("sibson", "laplace", "triangle", "nearest"):
        values = itp.evaluate(q[:, 0], q[:, 1], method=method)
        assert values.min() >= itp.z.min() - 1e-12
        assert values.max() <= itp.z.max() + 1e-12


def test_nearest_returns_data_values(itp):
    q = query_points(50)
    values = itp.evaluate(q[:, 0], q[:, 1], method="nearest")
    assert np.isin(values, itp.z).all()


def test_scalar_and_array_queries_agree(itp):
    q = query_points(10)
    values = itp.evaluate(q[:, 0], q[:, 1])
    for k, (x, y) in enumerate(q):
        value = itp.evaluate(x, y)
        assert isinstance(value, float)
        assert value == values[k]


def test_output_shape_follows_the_query(itp):
    x, y = np.meshgrid(np.linspace(0.1, 0.9, 4), np.linspace(0.2, 0.8, 3))
    values = itp.evaluate(x, y)
    assert values.shape == (3, 4)

    out = np.empty((3, 4))
    result = itp.evaluate(x, y, out=out)
    assert result is out
    np.testing.assert_array_equal(out, values)


@pytest.mark.parametrize("dtype", [np.int64, np.float32])
def test_output_buffer_must_be_float64(itp, dtype):
    x, y = np.meshgrid(np.linspace(0.1, 0.9, 4), np.linspace(0.2, 0.8, 3))
    out = np.zeros((3, 4), dtype=dtype)
    with pytest.raises(InvalidConfigurationError, match="float64"):
        itp.evaluate(x, y, out=out)
    np.testing.assert_array_equal(out, 0)


def test_parallel_matches_sequential(itp):
    q = query_points(2000, seed=21)
    for method in SCHEMES:
        parallel = itp.evaluate(q[:, 0], q[:, 1], method=method, parallel=True)
        sequential = itp.evaluate(q[:, 0], q[:, 1], method=method, parallel=False)
        np.testing.assert_array_equal(parallel, sequential)


def test_caller_supplied_caches(itp):
    q = query_points(30)
    caches = [EvaluationCache()]
    values = itp.evaluate(q[:, 0], q[:, 1], parallel=False, caches=caches)
    np.testing.assert_array_equal(values, itp.evaluate(q[:, 0], q[:, 1], parallel=False))
    assert caches[0].capacity >= 3


def test_concurrent_callers_share_one_interpolant(itp):
    q = query_points(500, seed=8)
    expected = itp.evaluate(q[:, 0], q[:, 1], method=sibson(1), parallel=False)
    results = [None] * 4

    def work(k):
        results[k] = itp.evaluate(q[:, 0], q[:, 1], method=sibson(1), parallel=False)

    threads = [threading.Thread(target=work, args=(k,)) for k in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    for result in results:
        np.testing.assert_array_equal(result, expected)


@pytest.mark.parametrize("method", SCHEMES)
def test_outside_the_hull_raises(itp, method):
    with pytest.raises(OutOfRangeError):
        itp.evaluate(1.5, 0.5, method=method)
    with pytest.raises(OutOfRangeError):
        itp.evaluate(np.array([0.5, -0.2]), np.array([0.5, 0.5]), method=method)


def test_extrapolation_uses_the_nearest_hull_edge():
    itp = interpolate(UNIT_SQUARE, [0.0, 1.0, 2.0, 1.0])
    assert itp.evaluate(2.0, 0.5, extrapolate=True) == pytest.approx(1.5)
    assert itp.evaluate(-1.0, -1.0, extrapolate=True) == pytest.approx(0.0)


def test_sibson1_without_gradients_raises(points):
    itp = interpolate(points, plane(points))
    with pytest.raises(MissingGradientError):
        itp.evaluate(0.5, 0.5, method=sibson(1))
    assert not itp.has_gradients


def test_lazy_derivatives(points):
    itp = interpolate(points, plane(points), derivatives="lazy")
    assert itp.gradients is None
    value = itp.evaluate(0.5, 0.5, method=sibson(1))
    assert itp.has_gradients
    assert itp.hessians is not None
    np.testing.assert_allclose(value, plane(np.array([[0.5, 0.5]]))[0], atol=1e-9)


def test_lazy_derivatives_are_generated_once(points, monkeypatch):
    """Threads racing on the first Sibson(1) query share a single generation."""
    from natural_neighbours import interpolant

    calls = []
    lock = threading.Lock()
    real = interpolant.generate_derivatives

    def counting(*args, **kwargs):
        with lock:
            calls.append(threading.get_ident())
        return real(*args, **kwargs)

    monkeypatch.setattr(interpolant, "generate_derivatives", counting)
    itp = interpolate(points, quadratic(points), derivatives="lazy")
    n_threads = 8
    barrier = threading.Barrier(n_threads)
    results = [None] * n_threads

    def work(k):
        barrier.wait()
        results[k] = itp.evaluate(0.5, 0.5, method=sibson(1))

    threads = [threading.Thread(target=work, args=(k,)) for k in range(n_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert all(result == results[0] for result in results)


def test_eager_derivatives_keep_supplied_gradients(points):
    gradient = np.tile([2.0, -0.5], (len(points), 1))
    itp = interpolate(points, plane(points), gradient=gradient, derivatives=True)
    np.testing.assert_array_equal(itp.gradients, gradient)
    assert itp.hessians.shape == (len(points), 3)


def test_interpolant_does_not_alias_caller_arrays(points):
    z = plane(points)
    itp = interpolate(points, z)
    z[:] = 0.0
    assert z.flags.writeable
    assert not itp.z.flags.writeable
    np.testing.assert_allclose(itp.z, plane(points))


def test_accepts_triangulation_and_delaunay(points):
    z = plane(points)
    from_tri = interpolate(Triangulation(points), z)
    from_delaunay = interpolate(Delaunay(points), z)
    assert isinstance(from_tri, NaturalNeighboursInterpolant)
    np.testing.assert_allclose(from_tri.evaluate(0.3, 0.6), from_delaunay.evaluate(0.3, 0.6))


def test_accepts_separate_coordinate_vectors(points):
    z = quadratic(points)
    from_vectors = interpolate(points[:, 0], points[:, 1], z)
    from_points = interpolate(points, z)
    q = query_points(20)
    np.testing.assert_array_equal(from_vectors.triangulation.points, from_points.triangulation.points)
    np.testing.assert_array_equal(from_vectors.evaluate(q[:, 0], q[:, 1]), from_points.evaluate(q[:, 0], q[:, 1]))

    with pytest.raises(InvalidConfigurationError):
        interpolate(points[:, 0], points[:-1, 1], z)
    with pytest.raises(InvalidConfigurationError):
        interpolate(points[:, 0], points[:, 1], z, z)


def test_differentiate_a_plane(points):
    itp = interpolate(points, plane(points))
    q = query_points(30)
    gradients = itp.differentiate(q[:, 0], q[:, 1])
    assert gradients.shape == (30, 2)
    np.testing.assert_allclose(gradients, np.tile([2.0, -0.5], (30, 1)), atol=1e-8)

    gradients, hessians = itp.differentiate(q[:, 0], q[:, 1], order=2, method="direct")
    np.testing.assert_allclose(gradients, np.tile([2.0, -0.5], (30, 1)), atol=1e-8)
    np.testing.assert_allclose(hessians, 0.0, atol=1e-6)


def test_differentiate_iterative_and_scalar(points):
    itp = interpolate(points, plane(points), derivatives=True)
    gradient, hessian = itp.differentiate(0.4, 0.45, order=2)
    np.testing.assert_allclose(gradient, [2.0, -0.5], atol=1e-8)
    np.testing.assert_allclose(hessian, 0.0, atol=1e-6)


def test_differentiate_with_known_values(points):
    """A known value at the query replaces the interpolated one."""
    itp = interpolate(points, plane(points))
    q = query_points(10)
    exact = plane(q)
    gradients = itp.differentiate(q[:, 0], q[:, 1], z0=exact)
    np.testing.assert_allclose(gradients, np.tile([2.0, -0.5], (10, 1)), atol=1e-8)
    np.testing.assert_allclose(itp.differentiate(*q[0], z0=exact[0]), [2.0, -0.5], atol=1e-8)

    # A scalar z0 is broadcast over the queries
    xs, ys = np.full(3, q[0, 0]), np.full(3, q[0, 1])
    np.testing.assert_allclose(
        itp.differentiate(xs, ys, z0=exact[0]), np.tile([2.0, -0.5], (3, 1)), atol=1e-8
    )

    # Sibson(1) needs no gradients when the value is given
    itp.differentiate(q[:, 0], q[:, 1], z0=exact, interpolant_method=sibson(1))
    with pytest.raises(InvalidConfigurationError):
        itp.differentiate(q[:, 0], q[:, 1], z0=np.zeros(3))


def test_differentiate_at_a_data_site(points):
    itp = interpolate(points, plane(points))
    x, y = points[20]
    np.testing.assert_allclose(itp.differentiate(x, y), [2.0, -0.5], atol=1e-8)


def test_evaluate_with_gradient(points):
    itp = interpolate(points, plane(points))
    value, gradient = itp.evaluate(0.25, 0.75, gradient=True)
    np.testing.assert_allclose(value, plane(np.array([[0.25, 0.75]]))[0], atol=1e-9)
    np.testing.assert_allclose(gradient, [2.0, -0.5], atol=1e-8)

    q = query_points(5)
    values, gradients = itp.evaluate(q[:, 0], q[:, 1], gradient=True)
    assert values.shape == (5,)
    assert gradients.shape == (5, 2)


@pytest.mark.parametrize(
    "method",
    ["cubic", "sibsonx", 3],
)
def test_unknown_scheme(itp, method):
    with pytest.raises(InvalidConfigurationError):
        itp.evaluate(0.5, 0.5, method=method)


def test_invalid_construction(points):
    with pytest.raises(InvalidConfigurationError):
        sibson(2)
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, np.zeros(len(points) - 1))
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, plane(points), gradient=np.zeros((len(points), 3)))
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, plane(points), derivatives="sometimes")
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, plane(points), derivatives="lazy", alpha=2.0)
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, plane(points), smoothing=1.0)
    with pytest.raises(InvalidConfigurationError):
        interpolate(points, plane(points)).evaluate(np.zeros(3), np.zeros(4))


def test_repr(itp):
    assert "gradients=True" in repr(itp)
