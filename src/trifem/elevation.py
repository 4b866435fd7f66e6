"""Order elevation of an order-1 triangulation.

This module provides:
  - `MeshOrderElevator`, a single pass over the elements that inserts the
    three edge midpoints of each element, sharing a midpoint between the
    two elements adjacent to an edge, and propagates boundary-condition
    node indices to midpoints of boundary edges.
  - `second_order_mesh`, the functional entry point.

New nodes are appended after the original vertices, in element-then-side
order, so the result is deterministic for a given element ordering.
"""
from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from .config import tolerances
from .element import EDGE_VERTICES
from .errors import InvalidInput
from .mesh import Mesh

_LOGGER = logging.getLogger(__name__)


class _MidpointScan:
    """Inserted midpoints searched by a linear scan (first match wins)."""

    def __init__(self, ndim: int, tol: float, capacity: int = 64) -> None:
        self._buf = np.empty((max(capacity, 1), ndim), dtype=float)
        self._n = 0
        self._tol = tol

    def __len__(self) -> int:
        return self._n

    def find(self, point: NDArray[Any]) -> Optional[int]:
        if self._n == 0:
            return None
        diff = np.abs(self._buf[: self._n] - point).max(axis=1)
        hits = np.flatnonzero(diff <= self._tol)
        return int(hits[0]) if hits.size else None

    def add(self, point: NDArray[Any]) -> int:
        if self._n == self._buf.shape[0]:
            grown = np.empty((2 * self._buf.shape[0], self._buf.shape[1]), dtype=float)
            grown[: self._n] = self._buf[: self._n]
            self._buf = grown
        self._buf[self._n] = point
        self._n += 1
        return self._n - 1

    def points(self) -> NDArray[Any]:
        return self._buf[: self._n].copy()


class _MidpointHash(_MidpointScan):
    """Inserted midpoints bucketed on a grid of cell size `tol`.

    A point within `tol` of a query lies in the query's cell or one of its
    neighbours, so only 3**ndim buckets are searched; among the matches the
    lowest index is returned, as the linear scan would. If a coordinate is
    too large for the grid (``point / tol`` overflows) the buckets are
    abandoned and every later query falls back to the linear scan.
    """

    def __init__(self, ndim: int, tol: float, capacity: int = 64) -> None:
        super().__init__(ndim, tol, capacity)
        self._cells: Optional[Dict[Tuple[Any, ...], List[int]]] = {}
        self._offsets = list(itertools.product((-1, 0, 1), repeat=ndim))

    def _key(self, point: NDArray[Any]) -> Optional[Tuple[Any, ...]]:
        if self._tol == 0.0:
            return tuple(float(c) for c in point)
        with np.errstate(over="ignore"):
            cell = np.floor(point / self._tol)
        if not np.isfinite(cell).all():
            return None
        return tuple(int(k) for k in cell)

    def _drop_grid(self) -> None:
        _LOGGER.warning(
            "elevate: coordinates overflow the hash grid (tol=%g); using linear scan.",
            self._tol,
        )
        self._cells = None

    def find(self, point: NDArray[Any]) -> Optional[int]:
        if self._cells is None:
            return super().find(point)
        key = self._key(point)
        if key is None:
            self._drop_grid()
            return super().find(point)
        if self._tol == 0.0:
            bucket = self._cells.get(key, [])
            return bucket[0] if bucket else None
        best: Optional[int] = None
        for off in self._offsets:
            cell = tuple(k + o for k, o in zip(key, off))
            for idx in self._cells.get(cell, ()):
                if best is not None and idx >= best:
                    continue
                if np.abs(self._buf[idx] - point).max() <= self._tol:
                    best = idx
        return best

    def add(self, point: NDArray[Any]) -> int:
        idx = super().add(point)
        if self._cells is not None:
            key = self._key(point)
            if key is None:
                self._drop_grid()
            else:
                self._cells.setdefault(key, []).append(idx)
        return idx


_SEARCH = {"scan": _MidpointScan, "hash": _MidpointHash}


class MeshOrderElevator:
    """Convert an order-1 mesh into an order-2 mesh by midpoint insertion.

    Args:
        mesh (Mesh): Order-1 mesh, planar or surface.
        bc (Optional[Sequence[int]]): Indices of boundary-condition nodes.
        tol (Optional[float]): Absolute per-coordinate tolerance under which
            two midpoints are the same node; defaults to the configured
            midpoint tolerance.
        method (str): "scan" (linear search over the inserted midpoints) or
            "hash" (grid buckets); both produce the same mesh.
        index_base (int): Base (0 or 1) of the indices in `bc` and of the
            returned boundary indices.

    Attributes:
        n_vertices (int): Number of original vertices.
        bc_index (Optional[List[int]]): Boundary node indices (0-based),
            extended while elevating.

    Raises:
        InvalidInput: If the mesh is not of order 1, or `bc` is malformed.
    """

    def __init__(
        self,
        mesh: Mesh,
        bc: Optional[Sequence[int] | NDArray[Any]] = None,
        *,
        tol: Optional[float] = None,
        method: str = "scan",
        index_base: int = 0,
    ) -> None:
        if not isinstance(mesh, Mesh):
            raise InvalidInput(f"expected a Mesh; got {type(mesh).__name__}")
        if mesh.order != 1:
            _LOGGER.error("MeshOrderElevator: mesh has order %d.", mesh.order)
            raise InvalidInput(f"the mesh must have order 1; got order {mesh.order}")
        if method not in _SEARCH:
            raise InvalidInput(f"method must be one of {sorted(_SEARCH)}; got {method!r}")
        if index_base not in (0, 1):
            raise InvalidInput(f"index_base must be 0 or 1; got {index_base!r}")

        self.mesh = mesh
        self.tol = tolerances().midpoint if tol is None else float(tol)
        if not (self.tol >= 0.0 and np.isfinite(self.tol)):
            raise InvalidInput(f"tol must be finite and >= 0; got {tol!r}")
        self.method = method
        self.index_base = index_base
        self.n_vertices = mesh.nnodes

        self.bc_index: Optional[List[int]] = None
        self._bc_set: Set[int] = set()
        if bc is not None:
            self.bc_index = self._normalize_bc(bc)
            self._bc_set = set(self.bc_index)

        self._midpoints = _SEARCH[method](mesh.ndim, self.tol, capacity=mesh.ntriangles)
        self._vertex_tree: Optional[cKDTree] = None
        self._rows = np.zeros((mesh.ntriangles, 6), dtype=np.int64)
        self._rows[:, :3] = mesh.triangles
        self._reused = 0

    def _normalize_bc(self, bc: Sequence[int] | NDArray[Any]) -> List[int]:
        arr = np.asarray(bc).reshape(-1)
        if arr.size and not np.issubdtype(arr.dtype, np.integer):
            arr_f = arr.astype(float)
            if not np.isfinite(arr_f).all() or np.any(arr_f != np.round(arr_f)):
                raise InvalidInput("bc must contain integral node indices")
        idx = arr.astype(np.int64) - self.index_base
        if idx.size and (idx.min() < 0 or idx.max() >= self.n_vertices):
            _LOGGER.error("MeshOrderElevator: bc indices out of range.")
            raise InvalidInput(
                f"bc references nodes outside [{self.index_base}, "
                f"{self.n_vertices + self.index_base})"
            )
        return [int(i) for i in idx]

    def _check_not_vertex(self, point: NDArray[Any], element: int) -> None:
        # Only inserted midpoints are searched for reuse; a midpoint sitting
        # on an original vertex means a non-conforming (hanging node) mesh.
        if self._vertex_tree is None:
            self._vertex_tree = cKDTree(self.mesh.nodes)
        d, idx = self._vertex_tree.query(
            point, k=1, p=np.inf, distance_upper_bound=np.nextafter(self.tol, np.inf)
        )
        if np.isfinite(d):
            _LOGGER.error(
                "MeshOrderElevator: midpoint of element %d coincides with vertex %d.",
                element,
                int(idx),
            )
            raise InvalidInput(
                f"an edge midpoint of element {element} coincides with vertex "
                f"{int(idx)}; the mesh is not conforming"
            )

    def _process_element(self, i: int) -> None:
        row = self._rows[i, :3]
        pts = self.mesh.nodes[row]

        is_bc = [False, False, False]
        if self.bc_index is not None:
            is_bc = [
                int(row[a]) in self._bc_set and int(row[b]) in self._bc_set
                for a, b in EDGE_VERTICES
            ]

        for side, (a, b) in enumerate(EDGE_VERTICES):
            mid = (pts[a] + pts[b]) / 2.0
            local = self._midpoints.find(mid)
            if local is not None:
                self._rows[i, 3 + side] = self.n_vertices + local
                self._reused += 1
                continue

            self._check_not_vertex(mid, i)
            index = self.n_vertices + self._midpoints.add(mid)
            self._rows[i, 3 + side] = index
            if is_bc[side] and self.bc_index is not None:
                self.bc_index.append(index)
                self._bc_set.add(index)

        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug(
                "elevate: element %d -> %s", i, self._rows[i].tolist()
            )

    def elevate(self) -> Union[Mesh, Tuple[Mesh, NDArray[Any]]]:
        """Run the pass over every element and build the order-2 mesh.

        Returns:
            The order-2 Mesh, or ``(mesh, bc_index)`` when boundary nodes
            were given; `bc_index` keeps the original entries first,
            followed by the new boundary midpoints in creation order.
        """
        for i in range(self.mesh.ntriangles):
            self._process_element(i)

        nodes = np.vstack([self.mesh.nodes, self._midpoints.points()])
        out = Mesh(nodes, self._rows, order=2)

        _LOGGER.info(
            "elevate: %d triangles, %d vertices + %d midpoints (%d shared references)",
            self.mesh.ntriangles,
            self.n_vertices,
            len(self._midpoints),
            self._reused,
        )

        if self.bc_index is None:
            return out
        bc_out = np.asarray(self.bc_index, dtype=np.int64) + self.index_base
        _LOGGER.debug("elevate: %d boundary nodes after elevation", bc_out.size)
        return out, bc_out


def second_order_mesh(
    mesh: Mesh,
    bc: Optional[Sequence[int] | NDArray[Any]] = None,
    *,
    tol: Optional[float] = None,
    method: str = "scan",
    index_base: int = 0,
) -> Union[Mesh, Tuple[Mesh, NDArray[Any]]]:
    """Double the order of an order-1 mesh by adding the edge midpoints.

    See `MeshOrderElevator` for the arguments.

    Returns:
        The order-2 Mesh if `bc` is None, else ``(mesh, bc_index)``.
    """
    return MeshOrderElevator(
        mesh, bc, tol=tol, method=method, index_base=index_base
    ).elevate()
