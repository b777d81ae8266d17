import numpy as np
import pytest
import xarray as xr

from helpers import plane, scattered_points
from natural_neighbours import (
    Grid,
    InvalidBoundsError,
    InvalidConfigurationError,
    OutOfRangeError,
    interpolate,
    interpolate_to_grid,
)
from natural_neighbours.grid import create_grid_coords


@pytest.fixture(scope="module")
def itp():
    points = scattered_points(50)
    return interpolate(points, plane(points))


def test_grid_coords_include_both_ends():
    grid = Grid(xmin=0.0, xmax=1.0, ymin=-1.0, ymax=1.0, resolution_x=0.25, resolution_y=0.5)
    x, y = create_grid_coords(grid)
    np.testing.assert_allclose(x, [0.0, 0.25, 0.5, 0.75, 1.0])
    np.testing.assert_allclose(y, [-1.0, -0.5, 0.0, 0.5, 1.0])


def test_grid_dataset():
    ds = Grid(0.0, 1.0, 0.0, 2.0, 0.5, 0.5).create_regridding_dataset(x_name="lon", y_name="lat")
    assert ds.sizes == {"lon": 3, "lat": 5}
    assert ds["lon"].attrs["axis"] == "X"
    assert ds["lat"].attrs["axis"] == "Y"


@pytest.mark.parametrize(
    "bounds",
    [
        (1.0, 0.0, 0.0, 1.0, 0.1, 0.1),
        (0.0, 1.0, 1.0, 0.0, 0.1, 0.1),
        (0.0, 1.0, 0.0, 1.0, 0.0, 0.1),
        (0.0, 1.0, 0.0, 1.0, 0.1, -0.1),
    ],
)
def test_invalid_bounds(bounds):
    with pytest.raises(InvalidBoundsError):
        Grid(*bounds)


def test_every_invalid_bound_is_reported():
    with pytest.raises(InvalidBoundsError) as excinfo:
        Grid(1.0, 0.0, 1.0, 0.0, 0.0, 0.1)
    message = str(excinfo.value)
    assert "xmin is greater than xmax" in message
    assert "ymin is greater than ymax" in message
    assert "resolution must be positive" in message


def test_interpolate_to_grid(itp):
    grid = Grid(0.0, 1.0, 0.0, 1.0, 0.25, 0.2)
    result = interpolate_to_grid(itp, grid, name="z")
    assert isinstance(result, xr.DataArray)
    assert result.dims == ("y", "x")
    assert result.shape == (6, 5)
    assert result.name == "z"

    xx, yy = np.meshgrid(result["x"].values, result["y"].values)
    expected = plane(np.column_stack([xx.ravel(), yy.ravel()])).reshape(xx.shape)
    np.testing.assert_allclose(result.values, expected, atol=1e-9)


def test_interpolate_to_dataset_target(itp):
    target = xr.Dataset(coords={"lon": np.linspace(0.1, 0.9, 4), "lat": np.linspace(0.2, 0.8, 3)})
    result = interpolate_to_grid(itp, target, x_name="lon", y_name="lat", method="triangle")
    assert result.dims == ("lat", "lon")
    np.testing.assert_array_equal(result["lon"].values, target["lon"].values)


def test_nodes_outside_the_hull(itp):
    grid = Grid(-0.5, 1.0, 0.0, 1.0, 0.5, 0.5)
    with pytest.raises(OutOfRangeError):
        interpolate_to_grid(itp, grid)

    with pytest.warns(UserWarning, match="outside the convex hull"):
        result = interpolate_to_grid(itp, grid, fill_value=np.nan)
    assert np.isnan(result.sel(x=-0.5)).all()
    assert np.isfinite(result.sel(x=[0.0, 0.5, 1.0])).all()


def test_missing_coordinates(itp):
    with pytest.raises(InvalidConfigurationError):
        interpolate_to_grid(itp, xr.Dataset(coords={"lon": [0.5]}))
