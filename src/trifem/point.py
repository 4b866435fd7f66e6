"""Module defining GeometricPoint, an identified mesh node.

A GeometricPoint carries physical coordinates (up to 3D) and a pair of
reference-triangle coordinates used when evaluating order-2 shape functions.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from .config import tolerances
from .errors import InvalidInput

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class GeometricPoint:
    """An immutable point with an id, physical and reference coordinates.

    Equality of positions is tolerance based (see `coincides`); the default
    identity comparison is kept for `==` so that two distinct nodes with the
    same position are never silently merged.

    Attributes:
        id (int): Identifier, unique within a mesh.
        x (float): First physical coordinate.
        y (float): Second physical coordinate.
        z (float): Third physical coordinate (0 for planar meshes).
        xi (float): First reference-triangle coordinate.
        eta (float): Second reference-triangle coordinate.
    """

    id: int
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    xi: float = 0.0
    eta: float = 0.0

    @classmethod
    def from_coords(
        cls,
        id: int,
        coords: Sequence[float] | NDArray[Any],
        ref: Sequence[float] = (0.0, 0.0),
    ) -> GeometricPoint:
        """Build a point from a 2- or 3-component coordinate sequence.

        Raises:
            InvalidInput: If `coords` does not have 2 or 3 components or
                `ref` does not have 2.
        """
        c = np.asarray(coords, dtype=float).reshape(-1)
        if c.shape[0] not in (2, 3):
            _LOGGER.error("GeometricPoint %d: got %d coordinates.", id, c.shape[0])
            raise InvalidInput(
                f"GeometricPoint needs 2 or 3 coordinates; got {c.shape[0]}"
            )
        r = np.asarray(ref, dtype=float).reshape(-1)
        if r.shape[0] != 2:
            raise InvalidInput(
                f"GeometricPoint needs 2 reference coordinates; got {r.shape[0]}"
            )
        z = float(c[2]) if c.shape[0] == 3 else 0.0
        return cls(int(id), float(c[0]), float(c[1]), z, float(r[0]), float(r[1]))

    @property
    def coords(self) -> NDArray[Any]:
        """Physical coordinates as a length-3 array."""
        return np.array([self.x, self.y, self.z], dtype=float)

    @property
    def ref_coords(self) -> NDArray[Any]:
        """Reference-triangle coordinates as a length-2 array."""
        return np.array([self.xi, self.eta], dtype=float)

    def coincides(self, other: GeometricPoint, tol: Optional[float] = None) -> bool:
        """Return True if every physical coordinate differs by at most `tol`.

        Args:
            other: Point to compare with.
            tol: Absolute tolerance; defaults to the configured midpoint
                tolerance.
        """
        if tol is None:
            tol = tolerances().midpoint
        return (
            abs(self.x - other.x) <= tol
            and abs(self.y - other.y) <= tol
            and abs(self.z - other.z) <= tol
        )

    def with_id(self, new_id: int) -> GeometricPoint:
        """Return a copy of this point carrying `new_id`."""
        return replace(self, id=int(new_id))

    def __repr__(self) -> str:
        """Return a string representation of the point."""
        return (
            f"GeometricPoint(id={self.id}, xyz=({self.x:g}, {self.y:g}, {self.z:g}), "
            f"ref=({self.xi:g}, {self.eta:g}))"
        )
