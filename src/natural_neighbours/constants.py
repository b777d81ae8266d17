"""
Closed sets of interpolation schemes and differentiation strategies.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Literal, Union

from natural_neighbours.errors import InvalidConfigurationError


class InterpolationMethod(enum.Enum):
    SIBSON = "sibson"
    LAPLACE = "laplace"
    TRIANGLE = "triangle"
    NEAREST = "nearest"


class DifferentiationMethod(enum.Enum):
    DIRECT = "direct"
    ITERATIVE = "iterative"


class CoordinateMethod(enum.Enum):
    """Which natural-neighbour coordinates to compute."""

    SIBSON = "sibson"
    LAPLACE = "laplace"


@dataclass(frozen=True)
class Interpolator:
    """An interpolation scheme together with its smoothness at the data sites.

    Only Sibson makes use of ``order``: ``Sibson(0)`` is C0 and ``Sibson(1)`` is
    C1 at the data sites and needs gradients. For the other schemes the order is
    ignored and normalised to 0.
    """

    method: InterpolationMethod
    order: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.method, InterpolationMethod):
            msg = f"Unsupported interpolation method: {self.method!r}"
            raise InvalidConfigurationError(msg)
        if self.method is InterpolationMethod.SIBSON:
            if self.order not in (0, 1):
                msg = f"Sibson interpolation is only defined for orders 0 and 1, got {self.order}."
                raise InvalidConfigurationError(msg)
        else:
            object.__setattr__(self, "order", 0)

    @property
    def requires_gradients(self) -> bool:
        return self.method is InterpolationMethod.SIBSON and self.order == 1


def sibson(d: int = 0) -> Interpolator:
    return Interpolator(InterpolationMethod.SIBSON, d)


def laplace(d: int = 0) -> Interpolator:
    return Interpolator(InterpolationMethod.LAPLACE, d)


def triangle(d: int = 0) -> Interpolator:
    return Interpolator(InterpolationMethod.TRIANGLE, d)


def nearest(d: int = 0) -> Interpolator:
    return Interpolator(InterpolationMethod.NEAREST, d)


InterpolatorLike = Union[Interpolator, InterpolationMethod, Literal["sibson", "laplace", "triangle", "nearest"]]
DifferentiatorLike = Union[DifferentiationMethod, Literal["direct", "iterative"]]


def resolve_interpolator(method: InterpolatorLike) -> Interpolator:
    """Normalise the accepted spellings of a scheme to an ``Interpolator``."""
    if isinstance(method, Interpolator):
        return method
    if isinstance(method, InterpolationMethod):
        return Interpolator(method)
    try:
        return Interpolator(InterpolationMethod(str(method).lower()))
    except ValueError as e:
        msg = f"Unsupported interpolation method: {method!r}"
        raise InvalidConfigurationError(msg) from e


def resolve_differentiator(method: DifferentiatorLike) -> DifferentiationMethod:
    if isinstance(method, DifferentiationMethod):
        return method
    try:
        return DifferentiationMethod(str(method).lower())
    except ValueError as e:
        msg = f"Unsupported differentiation method: {method!r}"
        raise InvalidConfigurationError(msg) from e


def resolve_coordinate_method(method: CoordinateMethod | str) -> CoordinateMethod:
    if isinstance(method, CoordinateMethod):
        return method
    try:
        return CoordinateMethod(str(method).lower())
    except ValueError as e:
        msg = f"Unsupported natural coordinate method: {method!r}"
        raise InvalidConfigurationError(msg) from e


@dataclass(frozen=True)
class DerivativeOptions:
    """Options for estimating derivatives at the data sites.

    Args:
        use_cubic_terms: Add cubic terms to the Direct second-order fit. The cubic
            coefficients are discarded once the system is solved.
        alpha: Blend between distance weights (``alpha``) and natural-coordinate
            weights (``1 - alpha``) in the Iterative second pass. Must lie in (0, 1).
        use_sibson_weight: Whether the Iterative second pass blends in
            natural-coordinate weights at all.
    """

    use_cubic_terms: bool = True
    alpha: float = 0.1
    use_sibson_weight: bool = True

    def __post_init__(self) -> None:
        if not 0.0 < self.alpha < 1.0:
            msg = f"alpha must lie in the open interval (0, 1), got {self.alpha}."
            raise InvalidConfigurationError(msg)


__all__ = [
    "CoordinateMethod",
    "DerivativeOptions",
    "DifferentiationMethod",
    "InterpolationMethod",
    "Interpolator",
    "laplace",
    "nearest",
    "resolve_coordinate_method",
    "resolve_differentiator",
    "resolve_interpolator",
    "sibson",
    "triangle",
]
