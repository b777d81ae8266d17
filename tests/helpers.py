import numpy as np

UNIT_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


def scattered_points(n=60, seed=42):
    """Random sites in the unit square, with the four corners so the hull is the square."""
    rng = np.random.default_rng(seed)
    return np.vstack([UNIT_SQUARE, rng.uniform(0.0, 1.0, size=(n, 2))])


def jittered_grid(n=12, jitter=0.15, seed=7):
    """A regular n x n lattice on [0, 1]^2 with the interior nodes perturbed."""
    rng = np.random.default_rng(seed)
    x, y = np.meshgrid(np.linspace(0.0, 1.0, n), np.linspace(0.0, 1.0, n))
    points = np.column_stack([x.ravel(), y.ravel()])
    step = 1.0 / (n - 1)
    interior = (points > 0.0).all(axis=1) & (points < 1.0).all(axis=1)
    points[interior] += rng.uniform(-jitter * step, jitter * step, size=(interior.sum(), 2))
    return points


def query_points(n=40, seed=3, margin=0.05):
    rng = np.random.default_rng(seed)
    return rng.uniform(margin, 1.0 - margin, size=(n, 2))


def plane(points, a=1.5, b=2.0, c=-0.5):
    return a + b * points[:, 0] + c * points[:, 1]


def quadratic(points):
    """1 + 2x - y + x^2/2 + 3y^2 - 2xy; Hessian (1, 6, -2)."""
    x, y = points[:, 0], points[:, 1]
    return 1.0 + 2.0 * x - y + 0.5 * x**2 + 3.0 * y**2 - 2.0 * x * y


def quadratic_gradient(points):
    x, y = points[:, 0], points[:, 1]
    return np.column_stack([2.0 + x - 2.0 * y, -1.0 + 6.0 * y - 2.0 * x])


QUADRATIC_HESSIAN = np.array([1.0, 6.0, -2.0])
