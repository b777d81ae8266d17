"""
Numba-compiled geometric predicates and weight kernels.

These functions are the inner loops of the natural-coordinates engine and the
interpolant evaluator. They take plain floats or contiguous float64/int64
arrays so they can be called from worker threads without holding the GIL.
"""

import numpy as np
from numba import jit, prange


@jit(nopython=True, nogil=True)
def orient2d(ax, ay, bx, by, cx, cy):
    """
    Twice the signed area of the triangle (a, b, c).

    Positive when the vertices are ordered counter-clockwise.
    """
    return (bx - ax) * (cy - ay) - (by - ay) * (cx - ax)


@jit(nopython=True, nogil=True)
def circumcenter(ax, ay, bx, by, cx, cy):
    """
    Circumcentre of the triangle (a, b, c).

    Returns (nan, nan) for collinear vertices.
    """
    # Work relative to a to limit cancellation
    bx = bx - ax
    by = by - ay
    cx = cx - ax
    cy = cy - ay
    d = 2.0 * (bx * cy - by * cx)
    if d == 0.0:
        return np.nan, np.nan
    b2 = bx * bx + by * by
    c2 = cx * cx + cy * cy
    ux = (cy * b2 - by * c2) / d
    uy = (bx * c2 - cx * b2) / d
    return ax + ux, ay + uy


@jit(nopython=True, nogil=True, parallel=True)
def compute_circumcircles(points, simplices):
    """
    Circumcentres and squared circumradii of every triangle.

    Args:
        points: (n, 2) vertex coordinates
        simplices: (m, 3) vertex indices

    Returns:
        Tuple of (centres (m, 2), radii_sq (m,))
    """
    n_simplices = simplices.shape[0]
    centres = np.empty((n_simplices, 2), dtype=np.float64)
    radii_sq = np.empty(n_simplices, dtype=np.float64)

    for t in prange(n_simplices):
        i = simplices[t, 0]
        j = simplices[t, 1]
        k = simplices[t, 2]
        ux, uy = circumcenter(
            points[i, 0], points[i, 1], points[j, 0], points[j, 1], points[k, 0], points[k, 1]
        )
        centres[t, 0] = ux
        centres[t, 1] = uy
        dx = points[i, 0] - ux
        dy = points[i, 1] - uy
        radii_sq[t] = dx * dx + dy * dy

    return centres, radii_sq


@jit(nopython=True, nogil=True)
def polygon_area(vertices, n):
    """
    Area of the polygon made of the first n rows of vertices (shoelace formula).

    Args:
        vertices: (N, 2) array of (x, y) coordinates, N >= n.
        n: Number of vertices in use.

    Returns:
        float: Unsigned area of the polygon.
    """
    area = 0.0
    for i in range(n):
        j = (i + 1) % n
        area += vertices[i, 0] * vertices[j, 1]
        area -= vertices[j, 0] * vertices[i, 1]
    return 0.5 * abs(area)


@jit(nopython=True, nogil=True)
def clip_half_plane(vertices, n, nx, ny, c, out):
    """
    Clip a convex polygon against the half-plane nx * x + ny * y <= c.

    Sutherland-Hodgman against a single edge. The clipped polygon is written to
    the first rows of out, which must hold n + 1 rows.

    Returns:
        int: Number of vertices written.
    """
    if n == 0:
        return 0
    m = 0
    sx = vertices[n - 1, 0]
    sy = vertices[n - 1, 1]
    s_val = nx * sx + ny * sy - c
    for j in range(n):
        ex = vertices[j, 0]
        ey = vertices[j, 1]
        e_val = nx * ex + ny * ey - c
        if e_val <= 0.0:
            if s_val > 0.0:
                t = s_val / (s_val - e_val)
                out[m, 0] = sx + t * (ex - sx)
                out[m, 1] = sy + t * (ey - sy)
                m += 1
            out[m, 0] = ex
            out[m, 1] = ey
            m += 1
        elif s_val <= 0.0:
            t = s_val / (s_val - e_val)
            out[m, 0] = sx + t * (ex - sx)
            out[m, 1] = sy + t * (ey - sy)
            m += 1
        sx = ex
        sy = ey
        s_val = e_val
    return m


@jit(nopython=True, nogil=True)
def voronoi_split_areas(cell, sites):
    """
    Split a convex cell among sites by nearest site.

    Args:
        cell: (m, 2) vertices of a convex polygon, in order.
        sites: (d, 2) site coordinates.

    Returns:
        (d,) area of the part of the cell closer to each site than to any other.
    """
    m = cell.shape[0]
    d = sites.shape[0]
    areas = np.zeros(d, dtype=np.float64)
    size = m + d + 1
    for j in range(d):
        a = np.empty((size, 2), dtype=np.float64)
        b = np.empty((size, 2), dtype=np.float64)
        a[:m] = cell
        n = m
        pj2 = sites[j, 0] * sites[j, 0] + sites[j, 1] * sites[j, 1]
        for k in range(d):
            if k == j:
                continue
            # |x - p_j| <= |x - p_k|
            nx = sites[k, 0] - sites[j, 0]
            ny = sites[k, 1] - sites[j, 1]
            c = 0.5 * (sites[k, 0] * sites[k, 0] + sites[k, 1] * sites[k, 1] - pj2)
            n = clip_half_plane(a, n, nx, ny, c, b)
            a, b = b, a
            if n == 0:
                break
        if n >= 3:
            areas[j] = polygon_area(a, n)
    return areas


@jit(nopython=True, nogil=True)
def barycentric_weights(px, py, ax, ay, bx, by, cx, cy):
    """Barycentric coordinates of p with respect to the triangle (a, b, c)."""
    area = orient2d(ax, ay, bx, by, cx, cy)
    if area == 0.0:
        return 1.0 / 3.0, 1.0 / 3.0, 1.0 / 3.0
    la = orient2d(px, py, bx, by, cx, cy) / area
    lb = orient2d(ax, ay, px, py, cx, cy) / area
    return la, lb, 1.0 - la - lb


@jit(nopython=True, nogil=True)
def weighted_sum(indices, weights, n, values):
    """Sum of weights[k] * values[indices[k]] over the first n entries."""
    total = 0.0
    for k in range(n):
        total += weights[k] * values[indices[k]]
    return total


@jit(nopython=True, nogil=True)
def sibson1_value(px, py, indices, weights, n, points, values, gradients):
    """
    Sibson's C1 interpolant at p.

    Blends the Sibson(0) value with gradient-extrapolated neighbour values:

        f = (alpha * f0 + beta * zeta) / (alpha + beta)

    with zeta_k = z_k + grad_k . (p - p_k), gamma_k = lambda_k / r_k,
    zeta = sum(gamma zeta) / sum(gamma), alpha = sum(lambda r) / sum(gamma) and
    beta = sum(lambda r^2).
    """
    f0 = weighted_sum(indices, weights, n, values)
    if n <= 2:
        return f0

    alpha = 0.0
    beta = 0.0
    zeta = 0.0
    gamma_sum = 0.0
    for k in range(n):
        idx = indices[k]
        lam = weights[k]
        dx = px - points[idx, 0]
        dy = py - points[idx, 1]
        r = np.sqrt(dx * dx + dy * dy)
        if r == 0.0:
            return values[idx]
        gamma = lam / r
        zeta_k = values[idx] + gradients[idx, 0] * dx + gradients[idx, 1] * dy
        alpha += lam * r
        beta += lam * r * r
        zeta += gamma * zeta_k
        gamma_sum += gamma

    zeta /= gamma_sum
    alpha /= gamma_sum
    return (alpha * f0 + beta * zeta) / (alpha + beta)
