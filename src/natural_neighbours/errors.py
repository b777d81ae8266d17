"""
Exceptions raised by natural-neighbours.

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

from typing import Any


class NaturalNeighboursError(Exception):
    """Base class for all errors raised by this package."""


class OutOfRangeError(NaturalNeighboursError, ValueError):
    """A query point lies outside the convex hull of the data sites."""

    def __init__(self, msg: str, point: Any = None):
        super().__init__(msg)
        self.point = point


class MissingGradientError(NaturalNeighboursError): ...


class SingularSystemError(NaturalNeighboursError):
    """A local least-squares system stayed rank deficient after every order downgrade."""

    def __init__(self, msg: str, site: int | None = None):
        super().__init__(msg)
        self.site = site


class InvalidConfigurationError(NaturalNeighboursError, ValueError): ...


class InvalidBoundsError(InvalidConfigurationError): ...


class DegenerateGeometryError(NaturalNeighboursError):
    """The triangulation around a query point does not form a valid cavity."""

    def __init__(self, msg: str, point: Any = None):
        super().__init__(msg)
        self.point = point


__all__ = [
    "DegenerateGeometryError",
    "InvalidBoundsError",
    "InvalidConfigurationError",
    "MissingGradientError",
    "NaturalNeighboursError",
    "OutOfRangeError",
    "SingularSystemError",
]
