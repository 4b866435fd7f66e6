"""Per-element properties of a triangulation.

For every element with vertices V0, V1, V2 this module computes:
  - the affine transform T from the reference triangle (columns are the edge
    vectors V1 - V0 and V2 - V0 in the xy plane),
  - its determinant detJ (twice the element area, positive for a
    counter-clockwise element),
  - the metric tensor T^-1 T^-T used to map reference-element gradient
    integrals onto the physical element.

The computation is vectorised over all elements on the active array backend
and is all-or-nothing: one non-positive determinant aborts the whole batch.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .config import backend_name, to_cpu, xp
from .errors import DegenerateElement
from .mesh import Mesh

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ElementProperties:
    """Parallel per-element arrays, all indexed by element.

    Attributes:
        transf (NDArray[Any]): Affine transforms, shape (E, 2, 2).
        detJ (NDArray[Any]): Jacobian determinants, shape (E,).
        metric (NDArray[Any]): Metric tensors T^-1 T^-T, shape (E, 2, 2).
    """

    transf: NDArray[Any]
    detJ: NDArray[Any]
    metric: NDArray[Any]

    def __len__(self) -> int:
        return int(self.detJ.shape[0])

    @property
    def areas(self) -> NDArray[Any]:
        """Element areas, detJ / 2."""
        return self.detJ / 2.0


def compute_element_properties(mesh: Mesh) -> ElementProperties:
    """Compute transform, Jacobian determinant and metric for every element.

    Only the x and y coordinates of the vertices are used; for a surface
    mesh the result describes the elements projected on the xy plane.

    Args:
        mesh (Mesh): Order-1 or order-2 mesh; midpoints are ignored.

    Returns:
        ElementProperties: Read-only arrays, one entry per element.

    Raises:
        DegenerateElement: If any element has a non-positive determinant
            (degenerate or clockwise). The exception carries the index of
            the first offending element.
    """
    if mesh.is_surface:
        _LOGGER.warning(
            "compute_element_properties: surface mesh; using xy projection only."
        )

    n_tris = mesh.ntriangles
    vxp = xp.asarray(mesh.nodes[:, :2])  # (n_nodes, 2)
    txp = xp.asarray(mesh.triangles[:, :3])  # (n_tris, 3)

    v0 = vxp[txp[:, 0]]
    v1 = vxp[txp[:, 1]]
    v2 = vxp[txp[:, 2]]

    # Columns are the edge vectors from the base vertex.
    transf_xp = xp.stack([v1 - v0, v2 - v0], axis=2)  # (n_tris, 2, 2)

    a = transf_xp[:, 0, 0]
    b = transf_xp[:, 0, 1]
    c = transf_xp[:, 1, 0]
    d = transf_xp[:, 1, 1]
    det_xp = a * d - b * c

    det_cpu: NDArray[Any] = np.asarray(to_cpu(det_xp), dtype=float)
    bad = np.flatnonzero(~(det_cpu > 0.0))
    if bad.size:
        first = int(bad[0])
        _LOGGER.error(
            "compute_element_properties: %d element(s) with non-positive detJ; "
            "first is element %d (detJ=%g).",
            bad.size,
            first,
            det_cpu[first],
        )
        raise DegenerateElement(
            f"element {first} has non-positive Jacobian determinant "
            f"({det_cpu[first]:g}); it is degenerate or clockwise",
            element=first,
        )

    # Closed-form inverse of each 2x2 transform.
    inv_xp = xp.stack(
        [xp.stack([d, -b], axis=1), xp.stack([-c, a], axis=1)], axis=1
    ) / det_xp[:, None, None]
    metric_xp = inv_xp @ xp.swapaxes(inv_xp, 1, 2)

    transf = np.asarray(to_cpu(transf_xp), dtype=float)
    metric = np.asarray(to_cpu(metric_xp), dtype=float)
    for arr in (transf, det_cpu, metric):
        arr.flags.writeable = False

    if n_tris:
        _LOGGER.debug(
            "compute_element_properties (backend=%s): n=%d detJ min=%.6g max=%.6g",
            backend_name(),
            n_tris,
            float(det_cpu.min()),
            float(det_cpu.max()),
        )
    return ElementProperties(transf=transf, detJ=det_cpu, metric=metric)
