"""
natural-neighbours: natural-neighbour interpolation and derivative estimation
for scattered planar data.
"""

from natural_neighbours.cache import EvaluationCache
from natural_neighbours.constants import (
    CoordinateMethod,
    DerivativeOptions,
    DifferentiationMethod,
    InterpolationMethod,
    Interpolator,
    laplace,
    nearest,
    sibson,
    triangle,
)
from natural_neighbours.derivatives import generate_derivatives, generate_gradients
from natural_neighbours.errors import (
    DegenerateGeometryError,
    InvalidBoundsError,
    InvalidConfigurationError,
    MissingGradientError,
    NaturalNeighboursError,
    OutOfRangeError,
    SingularSystemError,
)
from natural_neighbours.grid import Grid, interpolate_to_grid
from natural_neighbours.interpolant import NaturalNeighboursInterpolant, interpolate
from natural_neighbours.natural_coordinates import (
    NaturalCoordinates,
    compute_natural_coordinates,
    laplace_coordinates,
    sibson_coordinates,
)
from natural_neighbours.triangulation import Triangulation

__version__ = "0.1.0"

__all__ = [
    "CoordinateMethod",
    "DegenerateGeometryError",
    "DerivativeOptions",
    "DifferentiationMethod",
    "EvaluationCache",
    "Grid",
    "InterpolationMethod",
    "Interpolator",
    "InvalidBoundsError",
    "InvalidConfigurationError",
    "MissingGradientError",
    "NaturalCoordinates",
    "NaturalNeighboursError",
    "NaturalNeighboursInterpolant",
    "OutOfRangeError",
    "SingularSystemError",
    "Triangulation",
    "compute_natural_coordinates",
    "generate_derivatives",
    "generate_gradients",
    "interpolate",
    "interpolate_to_grid",
    "laplace",
    "laplace_coordinates",
    "nearest",
    "sibson",
    "sibson_coordinates",
    "triangle",
]
