"""
Rectilinear target grids and evaluation of an interpolant onto them.

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

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import xarray as xr

from natural_neighbours.constants import InterpolatorLike
from natural_neighbours.errors import InvalidBoundsError, InvalidConfigurationError

if TYPE_CHECKING:
    from natural_neighbours.interpolant import NaturalNeighboursInterpolant


@dataclass
class Grid:
    """Object storing the bounds and resolution of a planar grid."""

    xmin: float
    xmax: float
    ymin: float
    ymax: float
    resolution_x: float
    resolution_y: float

    def __post_init__(self) -> None:
        """Validate the bounds and resolution."""
        problems = []
        if self.xmin > self.xmax:
            problems.append("Value of xmin is greater than xmax.")
        if self.ymin > self.ymax:
            problems.append("Value of ymin is greater than ymax.")
        if not (self.resolution_x > 0 and self.resolution_y > 0):
            problems.append("Grid resolution must be positive.")
        if problems:
            msg = "\n".join([*problems, "Please check the bounds input."])
            raise InvalidBoundsError(msg)

    def create_regridding_dataset(self, x_name: str = "x", y_name: str = "y") -> xr.Dataset:
        """Create a dataset holding the grid coordinates.

        Args:
            x_name: Name for the x coordinate and dimension. Defaults to "x".
            y_name: Name for the y coordinate and dimension. Defaults to "y".

        Returns:
            A dataset with the x and y coordinates of the grid and no data variables.
        """
        return create_regridding_dataset(self, x_name, y_name)


def create_grid_coords(grid: Grid) -> tuple[np.ndarray, np.ndarray]:
    """Create x and y coordinates covering the grid bounds, both ends included.

    Returns:
        x coordinates, y coordinates.
    """
    nx = int(np.floor((grid.xmax - grid.xmin) / grid.resolution_x + 1e-9)) + 1
    ny = int(np.floor((grid.ymax - grid.ymin) / grid.resolution_y + 1e-9)) + 1
    x_coords = grid.xmin + grid.resolution_x * np.arange(nx)
    y_coords = grid.ymin + grid.resolution_y * np.arange(ny)
    return x_coords, y_coords


def create_regridding_dataset(grid: Grid, x_name: str = "x", y_name: str = "y") -> xr.Dataset:
    x_coords, y_coords = create_grid_coords(grid)
    return xr.Dataset(
        coords={
            x_name: (x_name, x_coords, {"axis": "X"}),
            y_name: (y_name, y_coords, {"axis": "Y"}),
        }
    )


def interpolate_to_grid(
    itp: NaturalNeighboursInterpolant,
    target: xr.Dataset | Grid,
    x_name: str = "x",
    y_name: str = "y",
    method: InterpolatorLike = "sibson",
    fill_value: float | None = None,
    parallel: bool = True,
    name: str | None = None,
) -> xr.DataArray:
    """Evaluate an interpolant on every node of a rectilinear grid.

    Args:
        itp: The interpolant.
        target: Dataset with 1D ``x_name``/``y_name`` coordinates, or a Grid.
        x_name: Name of the x coordinate.
        y_name: Name of the y coordinate.
        method: Interpolation scheme.
        fill_value: Value for grid nodes outside the convex hull of the data
            sites. If None, such nodes raise :class:`OutOfRangeError`.
        parallel: Spread the grid nodes over several threads.
        name: Name of the returned DataArray.

    Returns:
        DataArray with dimensions (y_name, x_name).
    """
    if isinstance(target, Grid):
        target = target.create_regridding_dataset(x_name, y_name)
    if x_name not in target.coords or y_name not in target.coords:
        msg = f"Target grid must have '{x_name}' and '{y_name}' coordinates."
        raise InvalidConfigurationError(msg)

    x_coords = np.asarray(target[x_name].values, dtype=np.float64)
    y_coords = np.asarray(target[y_name].values, dtype=np.float64)
    if x_coords.ndim != 1 or y_coords.ndim != 1:
        msg = "Only rectilinear targets with 1D coordinates are supported."
        raise InvalidConfigurationError(msg)

    xx, yy = np.meshgrid(x_coords, y_coords)

    if fill_value is None:
        values = itp.evaluate(xx, yy, method=method, parallel=parallel)
    else:
        values = np.full(xx.shape, fill_value, dtype=np.float64)
        inside = itp.triangulation.contains(np.column_stack((xx.ravel(), yy.ravel()))).reshape(xx.shape)
        n_outside = int((~inside).sum())
        if n_outside:
            warnings.warn(
                f"{n_outside} grid nodes lie outside the convex hull and were set to {fill_value}.",
                stacklevel=2,
            )
        if inside.any():
            values[inside] = itp.evaluate(xx[inside], yy[inside], method=method, parallel=parallel)

    return xr.DataArray(
        values,
        dims=(y_name, x_name),
        coords={y_name: target[y_name], x_name: target[x_name]},
        name=name,
    )


__all__ = ["Grid", "create_grid_coords", "create_regridding_dataset", "interpolate_to_grid"]
