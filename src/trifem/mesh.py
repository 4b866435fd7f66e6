"""Module defining the Mesh class for order-1 and order-2 triangulations.

This module provides:
  - Validation and normalisation of node / element tables at construction.
  - Access to the node arena as GeometricPoints and to the element variants.
  - Edge topology (unique edges, boundary edges and nodes).
  - Point location through a KD-tree over element centroids.
  - In-memory conversion to and from `meshio.Mesh`.

A Mesh is read-only once constructed: its arrays are flagged non-writeable
and every transformation (e.g. order elevation) returns a new Mesh.
"""
from __future__ import annotations

import collections
from functools import cached_property
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import meshio
import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from .config import tolerances
from .element import Triangle, element_class, as_point_coords, PointLike
from .errors import InvalidInput
from .point import GeometricPoint

_LOGGER = logging.getLogger(__name__)

# meshio "triangle6" lists midpoints of edges (0,1), (1,2), (2,0).
_TO_MESHIO_TRI6 = [0, 1, 2, 5, 3, 4]
_FROM_MESHIO_TRI6 = [0, 1, 2, 4, 5, 3]
_MESHIO_CELL_TYPE = {1: "triangle", 2: "triangle6"}


def _readonly(a: NDArray[Any]) -> NDArray[Any]:
    a = np.array(a, copy=True)
    a.flags.writeable = False
    return a


class Mesh:
    """Planar (2D) or surface (2.5D) triangulation of order 1 or 2.

    Args:
        nodes (NDArray[Any]): Node coordinates, shape (nnodes, 2) or (nnodes, 3).
        triangles (NDArray[Any]): Element-to-node table, shape
            (ntriangles, 3*order). Order-2 rows list the three vertices
            then the midpoints opposite vertex 0, 1, 2.
        order (int): 1 or 2.
        index_base (int): 0 or 1; the base of the indices in `triangles`.
            Indices are stored 0-based.

    Attributes:
        nodes (NDArray[Any]): Read-only node table.
        triangles (NDArray[Any]): Read-only 0-based element table.
        order (int): Element order.

    Raises:
        InvalidInput: Wrong order, wrong column counts, non-integral or
            out-of-range indices, non-finite coordinates.
    """

    nodes: NDArray[Any]
    triangles: NDArray[Any]
    order: int

    def __init__(
        self,
        nodes: Any,
        triangles: Any,
        order: int = 1,
        index_base: int = 0,
    ) -> None:
        if order not in (1, 2):
            _LOGGER.error("Mesh: invalid order %r.", order)
            raise InvalidInput(f"order must be 1 or 2; got {order!r}")
        if index_base not in (0, 1):
            raise InvalidInput(f"index_base must be 0 or 1; got {index_base!r}")

        pts = np.asarray(nodes, dtype=float)
        if pts.ndim != 2 or pts.shape[1] not in (2, 3):
            _LOGGER.error("Mesh: nodes has shape %s.", pts.shape)
            raise InvalidInput(f"nodes must be (nnodes, 2) or (nnodes, 3); got {pts.shape}")
        if not np.isfinite(pts).all():
            raise InvalidInput("nodes contain non-finite coordinates")

        ncols = 3 * order
        tri = np.asarray(triangles)
        if tri.size == 0:
            tri = tri.reshape(0, ncols)
        if tri.ndim != 2:
            raise InvalidInput(f"triangles must be a 2D table; got ndim={tri.ndim}")
        if tri.shape[1] != ncols:
            _LOGGER.error(
                "Mesh: triangles has %d columns, expected %d for order %d.",
                tri.shape[1],
                ncols,
                order,
            )
            if order == 1 and tri.shape[1] == 6:
                raise InvalidInput(
                    "triangles has 6 columns but order=1; pass order=2, or build "
                    "the order-2 mesh with second_order_mesh(...)"
                )
            raise InvalidInput(
                f"triangles has {tri.shape[1]} columns; expected 3*order = {ncols}"
            )
        if not np.issubdtype(tri.dtype, np.integer):
            tri_f = tri.astype(float)
            if not np.isfinite(tri_f).all() or np.any(tri_f != np.round(tri_f)):
                raise InvalidInput("triangles must contain integral node indices")
        tri = tri.astype(np.int64) - index_base

        n_nodes = pts.shape[0]
        if tri.size and (tri.min() < 0 or tri.max() >= n_nodes):
            _LOGGER.error("Mesh: connectivity has out-of-range indices.")
            raise InvalidInput(
                f"triangles reference nodes outside [{index_base}, "
                f"{n_nodes + index_base})"
            )

        self.nodes = _readonly(pts)
        self.triangles = _readonly(tri)
        self.order = int(order)

        _LOGGER.info(
            "Mesh initialized with %d nodes and %d order-%d triangles (%dD)",
            self.nnodes,
            self.ntriangles,
            self.order,
            self.ndim,
        )

    @classmethod
    def from_flat(
        cls,
        nnodes: int,
        ntriangles: int,
        nodes: Sequence[float],
        triangles: Sequence[int],
        order: int = 1,
        ndim: int = 3,
        index_base: int = 0,
    ) -> Mesh:
        """Rebuild a mesh from row-major flattened node / element tables.

        Raises:
            InvalidInput: If the flat lengths do not match the counts.
        """
        flat_nodes = np.asarray(nodes, dtype=float).reshape(-1)
        flat_tri = np.asarray(triangles).reshape(-1)
        if flat_nodes.size != nnodes * ndim:
            raise InvalidInput(
                f"flat nodes has {flat_nodes.size} values; expected {nnodes}*{ndim}"
            )
        if order not in (1, 2):
            raise InvalidInput(f"order must be 1 or 2; got {order!r}")
        if flat_tri.size != ntriangles * 3 * order:
            raise InvalidInput(
                f"flat triangles has {flat_tri.size} values; "
                f"expected {ntriangles}*{3 * order}"
            )
        return cls(
            flat_nodes.reshape(nnodes, ndim),
            flat_tri.reshape(ntriangles, 3 * order),
            order=order,
            index_base=index_base,
        )

    # ------------------------------------------------------------------
    # Basic accessors
    # ------------------------------------------------------------------
    @property
    def nnodes(self) -> int:
        """Number of nodes."""
        return int(self.nodes.shape[0])

    @property
    def ntriangles(self) -> int:
        """Number of elements."""
        return int(self.triangles.shape[0])

    @property
    def ndim(self) -> int:
        """Number of physical coordinates per node (2 or 3)."""
        return int(self.nodes.shape[1])

    @property
    def is_surface(self) -> bool:
        """True for a 2.5D surface mesh (3 coordinates per node)."""
        return self.ndim == 3

    @property
    def flat_nodes(self) -> NDArray[Any]:
        """Row-major flattened node table."""
        return self.nodes.reshape(-1)

    @property
    def flat_triangles(self) -> NDArray[Any]:
        """Row-major flattened element table (0-based)."""
        return self.triangles.reshape(-1)

    @cached_property
    def points(self) -> Tuple[GeometricPoint, ...]:
        """The node arena as GeometricPoints, id = node index."""
        return tuple(
            GeometricPoint.from_coords(i, self.nodes[i]) for i in range(self.nnodes)
        )

    @cached_property
    def centroids(self) -> NDArray[Any]:
        """Vertex centroids of all elements, shape (ntriangles, ndim)."""
        return _readonly(self.nodes[self.triangles[:, :3]].mean(axis=1))

    def element(self, index: int) -> Triangle:
        """Return element `index` as its triangle variant."""
        if index < 0 or index >= self.ntriangles:
            raise IndexError(f"element index {index} outside [0, {self.ntriangles})")
        return element_class(self.order)(index, self.triangles[index], self.nodes)

    def elements(self) -> List[Triangle]:
        """Return every element as its triangle variant, in table order."""
        cls = element_class(self.order)
        return [cls(i, row, self.nodes) for i, row in enumerate(self.triangles)]

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------
    def _edge_counts(self) -> Dict[Tuple[int, int], int]:
        edge_count: Dict[Tuple[int, int], int] = collections.defaultdict(int)
        for a, b, c in self.triangles[:, :3].tolist():
            for u, v in ((a, b), (b, c), (c, a)):
                key = (u, v) if u < v else (v, u)
                edge_count[key] += 1
        return edge_count

    def unique_edges(self) -> NDArray[Any]:
        """Undirected vertex-to-vertex edges, shape (nedges, 2), sorted pairs."""
        edges = sorted(self._edge_counts())
        return np.asarray(edges, dtype=np.int64).reshape(-1, 2)

    def boundary_edges(self) -> NDArray[Any]:
        """Edges used by exactly one element, shape (n, 2)."""
        counts = self._edge_counts()
        nonmanifold = sum(1 for k in counts.values() if k > 2)
        if nonmanifold:
            _LOGGER.warning(
                "boundary_edges: %d non-manifold edge(s) detected (used by >2 tris).",
                nonmanifold,
            )
        edges = sorted(e for e, k in counts.items() if k == 1)
        return np.asarray(edges, dtype=np.int64).reshape(-1, 2)

    def boundary_nodes(self) -> NDArray[Any]:
        """Sorted indices of vertices lying on a boundary edge."""
        return np.unique(self.boundary_edges().reshape(-1))

    # ------------------------------------------------------------------
    # Point location
    # ------------------------------------------------------------------
    @cached_property
    def _centroid_tree(self) -> cKDTree:
        return cKDTree(self.centroids)

    def bary_coordinates_many(
        self, elements: Sequence[int] | NDArray[Any], point: PointLike
    ) -> NDArray[Any]:
        """Barycentric coordinates of `point` in several elements at once.

        Rows of degenerate elements are NaN instead of raising, so a
        search over many candidates is not interrupted by one bad cell.

        Returns:
            NDArray[Any]: Shape (len(elements), 3).
        """
        idx = np.asarray(elements, dtype=np.int64).reshape(-1)
        p = as_point_coords(point, self.ndim)
        v = self.nodes[self.triangles[idx, :3]]  # (k, 3, ndim)
        e1 = v[:, 1] - v[:, 0]
        e2 = v[:, 2] - v[:, 0]
        e3 = v[:, 2] - v[:, 1]
        w = p[None, :] - v[:, 0]

        g11 = np.einsum("ij,ij->i", e1, e1)
        g12 = np.einsum("ij,ij->i", e1, e2)
        g22 = np.einsum("ij,ij->i", e2, e2)
        det = g11 * g22 - g12 * g12
        longest = np.maximum(np.maximum(g11, g22), np.einsum("ij,ij->i", e3, e3))
        ok = np.sqrt(np.maximum(det, 0.0)) > tolerances().degenerate * longest

        safe = np.where(ok, det, 1.0)
        r1 = np.einsum("ij,ij->i", e1, w)
        r2 = np.einsum("ij,ij->i", e2, w)
        l2 = (g22 * r1 - g12 * r2) / safe
        l3 = (g11 * r2 - g12 * r1) / safe
        bary = np.stack([1.0 - l2 - l3, l2, l3], axis=1)
        bary[~ok] = np.nan
        return bary

    def contains_many(
        self,
        elements: Sequence[int] | NDArray[Any],
        point: PointLike,
        tol: Optional[float] = None,
    ) -> NDArray[Any]:
        """Closed point-in-triangle test against several elements at once.

        On a surface mesh the point must also lie on the element's plane,
        within the configured plane tolerance times the longest edge.
        Degenerate elements never contain the point.

        Returns:
            NDArray[Any]: Boolean mask, shape (len(elements),).
        """
        if tol is None:
            tol = tolerances().bary
        idx = np.asarray(elements, dtype=np.int64).reshape(-1)
        p = as_point_coords(point, self.ndim)
        bary = self.bary_coordinates_many(idx, p)
        with np.errstate(invalid="ignore"):
            inside = np.all((bary >= -tol) & (bary <= 1.0 + tol), axis=1)
        if self.ndim == 2 or not inside.any():
            return inside

        v = self.nodes[self.triangles[idx, :3]]
        normal = np.cross(v[:, 1] - v[:, 0], v[:, 2] - v[:, 0])
        norm = np.linalg.norm(normal, axis=1)
        offset = np.abs(np.einsum("ij,ij->i", p[None, :] - v[:, 0], normal))
        longest = np.max(
            np.linalg.norm(v[:, [1, 2, 0]] - v[:, [0, 1, 2]], axis=2), axis=1
        )
        with np.errstate(invalid="ignore", divide="ignore"):
            on_plane = offset / norm <= tolerances().plane * longest
        return inside & on_plane

    def locate(
        self,
        point: PointLike,
        candidates: int = 8,
        tol: Optional[float] = None,
    ) -> int:
        """Return the index of an element containing `point`, or -1.

        The `candidates` elements with the nearest centroids are tested
        first; if none contains the point every element is tested.

        Args:
            point: Query point (2 or 3 coordinates).
            candidates: Number of nearest-centroid elements tried first.
            tol: Barycentric slack; defaults to the configured tolerance.
        """
        if self.ntriangles == 0:
            return -1
        if tol is None:
            tol = tolerances().bary
        p = as_point_coords(point, self.ndim)

        k = max(1, min(int(candidates), self.ntriangles))
        _dists, idxs = self._centroid_tree.query(p, k=k)
        order = np.atleast_1d(idxs).astype(np.int64)

        for search in (order, np.arange(self.ntriangles)):
            hits = np.flatnonzero(self.contains_many(search, p, tol))
            if hits.size:
                found = int(search[hits[0]])
                _LOGGER.debug("locate(%s) -> element %d", p.tolist(), found)
                return found

        _LOGGER.debug("locate(%s): outside the mesh", p.tolist())
        return -1

    # ------------------------------------------------------------------
    # Interop / diagnostics
    # ------------------------------------------------------------------
    def to_meshio(self) -> meshio.Mesh:
        """Convert to a `meshio.Mesh` with one triangle / triangle6 block."""
        cells = self.triangles
        if self.order == 2:
            cells = cells[:, _TO_MESHIO_TRI6]
        return meshio.Mesh(
            points=np.array(self.nodes),
            cells=[(_MESHIO_CELL_TYPE[self.order], np.array(cells))],
        )

    @classmethod
    def from_meshio(cls, m: meshio.Mesh) -> Mesh:
        """Build a Mesh from the triangle6 (preferred) or triangle cells of `m`.

        Raises:
            InvalidInput: If `m` has no triangle cells.
        """
        cells = m.cells_dict
        if "triangle6" in cells:
            tri = np.asarray(cells["triangle6"])[:, _FROM_MESHIO_TRI6]
            order = 2
        elif "triangle" in cells:
            tri = np.asarray(cells["triangle"])
            order = 1
        else:
            raise InvalidInput(
                f"meshio mesh has no triangle cells; found {sorted(cells)}"
            )
        other = sorted(set(cells) - {"triangle", "triangle6", "line", "line3", "vertex"})
        if other:
            _LOGGER.warning("from_meshio: ignoring cell blocks %s", other)
        return cls(np.asarray(m.points), tri, order=order)

    def summary(self) -> Dict[str, Any]:
        """Return a read-only description of the mesh for diagnostics."""
        return {
            "nnodes": self.nnodes,
            "ntriangles": self.ntriangles,
            "order": self.order,
            "ndim": self.ndim,
            "is_surface": self.is_surface,
            "bbox_min": self.nodes.min(axis=0).tolist() if self.nnodes else [],
            "bbox_max": self.nodes.max(axis=0).tolist() if self.nnodes else [],
        }

    def __repr__(self) -> str:
        """Return a string representation of the mesh."""
        return (
            f"Mesh(nnodes={self.nnodes}, ntriangles={self.ntriangles}, "
            f"order={self.order}, ndim={self.ndim})"
        )
