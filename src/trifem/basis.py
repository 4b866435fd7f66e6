"""Finite-element basis descriptor and basis expansions.

This module provides:
  - `FEMBasis`, the descriptor handed to the smoothing layer: the mesh, the
    element order, the number of basis functions and, for planar meshes,
    the per-element properties.
  - `create_fem_basis`, building the descriptor from a Mesh.
  - `FEMFunction`, a field defined by coefficients on a basis, with
    point evaluation.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from .element import element_class
from .errors import InvalidInput
from .mesh import Mesh
from .properties import ElementProperties, compute_element_properties

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FEMBasis:
    """Nodal Lagrange basis over a mesh.

    Attributes:
        mesh (Mesh): The triangulation the basis lives on.
        order (int): Element order (1 or 2).
        nbasis (int): Number of basis functions (one per node).
        properties (Optional[ElementProperties]): Per-element transform,
            determinant and metric; None for surface meshes.
    """

    mesh: Mesh
    order: int
    nbasis: int
    properties: Optional[ElementProperties] = None

    @property
    def detJ(self) -> Optional[NDArray[Any]]:
        """Jacobian determinants per element, or None for a surface mesh."""
        return None if self.properties is None else self.properties.detJ

    @property
    def transf(self) -> Optional[NDArray[Any]]:
        """Affine transforms per element, or None for a surface mesh."""
        return None if self.properties is None else self.properties.transf

    @property
    def metric(self) -> Optional[NDArray[Any]]:
        """Metric tensors per element, or None for a surface mesh."""
        return None if self.properties is None else self.properties.metric


def create_fem_basis(mesh: Mesh) -> FEMBasis:
    """Create the FEM basis of `mesh`.

    For a planar mesh the element properties are computed eagerly; for a
    surface mesh they are left out.

    Raises:
        InvalidInput: If `mesh` is not a Mesh.
        DegenerateElement: If a planar element has a non-positive Jacobian.
    """
    if not isinstance(mesh, Mesh):
        raise InvalidInput(f"expected a Mesh; got {type(mesh).__name__}")

    props = None if mesh.is_surface else compute_element_properties(mesh)
    basis = FEMBasis(mesh=mesh, order=mesh.order, nbasis=mesh.nnodes, properties=props)
    _LOGGER.info(
        "FEM basis: order=%d nbasis=%d properties=%s",
        basis.order,
        basis.nbasis,
        "yes" if props is not None else "no (surface mesh)",
    )
    return basis


class FEMFunction:
    """A field expanded on a FEM basis.

    Args:
        coeff (NDArray[Any]): Coefficients, shape (nbasis,) or
            (nbasis, nreplicates). A vector is stored as one column.
        basis (FEMBasis): The basis the coefficients refer to.

    Raises:
        InvalidInput: Missing arguments, or a row count different from
            ``basis.nbasis``.
    """

    def __init__(self, coeff: Any, basis: FEMBasis) -> None:
        if coeff is None:
            raise InvalidInput("coeff required; is None")
        if basis is None:
            raise InvalidInput("basis required; is None")
        if not isinstance(basis, FEMBasis):
            raise InvalidInput(f"basis must be a FEMBasis; got {type(basis).__name__}")

        c = np.asarray(coeff, dtype=float)
        if c.ndim == 1:
            c = c[:, None]
        if c.ndim != 2 or c.shape[0] != basis.nbasis:
            _LOGGER.error(
                "FEMFunction: coeff shape %s vs nbasis %d.", c.shape, basis.nbasis
            )
            raise InvalidInput(
                f"number of rows of coeff ({c.shape[0] if c.ndim else 0}) "
                f"differs from the number of basis functions ({basis.nbasis})"
            )
        c = c.copy()
        c.flags.writeable = False
        self.coeff = c
        self.basis = basis

    @property
    def nreplicates(self) -> int:
        """Number of coefficient columns."""
        return int(self.coeff.shape[1])

    def evaluate(self, locations: Sequence[Sequence[float]] | NDArray[Any]) -> NDArray[Any]:
        """Evaluate the expansion at `locations`.

        Args:
            locations: Points, shape (npoints, 2|3).

        Returns:
            NDArray[Any]: Shape (npoints, nreplicates); NaN rows for points
            outside the mesh.
        """
        locs = np.asarray(locations, dtype=float)
        if locs.ndim == 1:
            locs = locs[None, :]
        if locs.ndim != 2 or locs.shape[1] not in (2, 3):
            raise InvalidInput(f"locations must be (npoints, 2|3); got {locs.shape}")

        mesh = self.basis.mesh
        shape_functions = element_class(mesh.order).shape_functions
        out = np.full((locs.shape[0], self.nreplicates), np.nan, dtype=float)

        outside = 0
        for k, p in enumerate(locs):
            el = mesh.locate(p)
            if el < 0:
                outside += 1
                continue
            bary = mesh.bary_coordinates_many([el], p)[0]
            phi = shape_functions(bary)
            out[k] = phi @ self.coeff[mesh.triangles[el]]

        if outside:
            _LOGGER.warning(
                "FEMFunction.evaluate: %d of %d location(s) outside the mesh.",
                outside,
                locs.shape[0],
            )
        return out

    def __repr__(self) -> str:
        """Return a string representation of the function."""
        return (
            f"FEMFunction(nbasis={self.basis.nbasis}, order={self.basis.order}, "
            f"nreplicates={self.nreplicates})"
        )
