"""Module defining the triangle element variants of a mesh.

This module provides:
  - `Triangle`, the common base with the geometric queries
    (barycentric coordinates, closed point-in-triangle test).
  - `Order1Triangle` (3 nodes) and `Order2Triangle` (6 nodes).
  - `make_element`, selecting the variant from a declared order.

Elements never own coordinates: they hold node indices into the node table
of the mesh they belong to, so two elements sharing a node always see the
same position.

Local node convention: vertices 0, 1, 2 first, then for order 2 the edge
midpoints 3, 4, 5 where midpoint ``3 + i`` lies on the edge opposite
vertex ``i``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Type, Union

import numpy as np
from numpy.typing import NDArray

from .config import tolerances
from .errors import DegenerateElement, InvalidElement, InvalidInput
from .point import GeometricPoint

_LOGGER = logging.getLogger(__name__)

# Edge i joins these two vertices; it is the edge opposite vertex i.
EDGE_VERTICES: Tuple[Tuple[int, int], ...] = ((1, 2), (0, 2), (0, 1))

PointLike = Union[GeometricPoint, Sequence[float], NDArray[Any]]


def as_point_coords(point: PointLike, ndim: int) -> NDArray[Any]:
    """Return `point` as a float array with `ndim` components.

    A planar query point against a surface element is lifted to z = 0; the
    z of a 3D query point against a planar element is dropped.
    """
    if isinstance(point, GeometricPoint):
        p = point.coords
    else:
        p = np.asarray(point, dtype=float).reshape(-1)
    if p.shape[0] not in (2, 3):
        raise InvalidInput(f"query point must have 2 or 3 coordinates; got {p.shape[0]}")
    if p.shape[0] == ndim:
        return p
    if ndim == 3:
        return np.append(p, 0.0)
    if p[2] != 0.0:
        _LOGGER.warning(
            "Planar element queried with a 3D point (z=%g); z is ignored.", p[2]
        )
    return p[:2]


class Triangle(ABC):
    """Base class of the triangle variants.

    Args:
        id (int): Element identifier.
        node_ids (Sequence[int]): Ordered node indices, vertices first.
        nodes (NDArray[Any]): Node table of the owning mesh, shape (n, 2|3).

    Attributes:
        id (int): Element identifier.
        node_ids (Tuple[int, ...]): Ordered node indices.

    Raises:
        InvalidElement: Wrong number of node indices, or an index outside
            the node table.
        InvalidInput: The node table is not an (n, 2) or (n, 3) array.
    """

    ORDER: ClassVar[int]
    NUM_NODES: ClassVar[int]
    REFERENCE_NODES: ClassVar[Tuple[Tuple[float, float], ...]]

    def __init__(
        self,
        id: int,
        node_ids: Sequence[int],
        nodes: NDArray[Any],
    ) -> None:
        ids = tuple(int(i) for i in node_ids)
        if len(ids) != self.NUM_NODES:
            _LOGGER.error(
                "%s %d: expected %d nodes, got %d.",
                type(self).__name__,
                id,
                self.NUM_NODES,
                len(ids),
            )
            raise InvalidElement(
                f"order-{self.ORDER} triangle needs {self.NUM_NODES} nodes; "
                f"got {len(ids)}"
            )

        table = np.asarray(nodes, dtype=float)
        if table.ndim != 2 or table.shape[1] not in (2, 3):
            raise InvalidInput(f"node table must be (n, 2) or (n, 3); got {table.shape}")

        bad = [i for i in ids if i < 0 or i >= table.shape[0]]
        if bad:
            _LOGGER.error(
                "%s %d: node indices %s outside [0, %d).",
                type(self).__name__,
                id,
                bad,
                table.shape[0],
            )
            raise InvalidElement(
                f"element {id} references nodes {bad} outside [0, {table.shape[0]})"
            )

        self.id = int(id)
        self.node_ids = ids
        self._nodes = table

    @property
    def ndim(self) -> int:
        """Number of physical coordinates (2 or 3)."""
        return int(self._nodes.shape[1])

    @property
    def node_table(self) -> NDArray[Any]:
        """The node table of the owning mesh (shared, not copied)."""
        return self._nodes

    @property
    def vertex_ids(self) -> Tuple[int, int, int]:
        """Node indices of the three vertices."""
        return self.node_ids[0], self.node_ids[1], self.node_ids[2]

    @property
    def vertices(self) -> NDArray[Any]:
        """Vertex coordinates, shape (3, ndim)."""
        return self._nodes[list(self.vertex_ids)]

    @property
    def coordinates(self) -> NDArray[Any]:
        """Coordinates of every local node, shape (NUM_NODES, ndim)."""
        return self._nodes[list(self.node_ids)]

    @property
    def centroid(self) -> NDArray[Any]:
        """Centroid of the vertices."""
        return self.vertices.mean(axis=0)

    @property
    def area(self) -> float:
        """Physical area (unsigned)."""
        e1, e2 = self._edge_vectors()
        return 0.5 * float(np.sqrt(max(self._gram_det(e1, e2), 0.0)))

    def points(self) -> Tuple[GeometricPoint, ...]:
        """Return the local nodes as GeometricPoints with reference coordinates."""
        return tuple(
            GeometricPoint.from_coords(nid, self._nodes[nid], ref)
            for nid, ref in zip(self.node_ids, self.REFERENCE_NODES)
        )

    def _edge_vectors(self) -> Tuple[NDArray[Any], NDArray[Any]]:
        v = self.vertices
        return v[1] - v[0], v[2] - v[0]

    @staticmethod
    def _gram_det(e1: NDArray[Any], e2: NDArray[Any]) -> float:
        # (twice the area)^2, valid in 2D and 3D
        return float(np.dot(e1, e1) * np.dot(e2, e2) - np.dot(e1, e2) ** 2)

    def get_bary_coordinates(self, point: PointLike) -> NDArray[Any]:
        """Compute the barycentric coordinates of `point` in this triangle.

        The point is expressed as ``l1*V0 + l2*V1 + l3*V2``. For a surface
        triangle the coordinates are those of the orthogonal projection of
        `point` onto the triangle's plane.

        Args:
            point: GeometricPoint or coordinate sequence (2 or 3 reals).

        Returns:
            NDArray[Any]: (l1, l2, l3), summing to 1.

        Raises:
            DegenerateElement: If the triangle has (near) zero area.
        """
        v = self.vertices
        e1 = v[1] - v[0]
        e2 = v[2] - v[0]
        w = as_point_coords(point, self.ndim) - v[0]

        g11 = float(np.dot(e1, e1))
        g12 = float(np.dot(e1, e2))
        g22 = float(np.dot(e2, e2))
        det = g11 * g22 - g12 * g12

        longest = max(g11, g22, float(np.dot(v[2] - v[1], v[2] - v[1])))
        twice_area = float(np.sqrt(max(det, 0.0)))
        if not np.isfinite(det) or twice_area <= tolerances().degenerate * longest:
            _LOGGER.error(
                "get_bary_coordinates: element %d is degenerate (2*area=%g).",
                self.id,
                twice_area,
            )
            raise DegenerateElement(
                f"element {self.id} is degenerate (near-zero area)", element=self.id
            )

        r1 = float(np.dot(e1, w))
        r2 = float(np.dot(e2, w))
        l2 = (g22 * r1 - g12 * r2) / det
        l3 = (g11 * r2 - g12 * r1) / det
        bary = np.array([1.0 - l2 - l3, l2, l3], dtype=float)

        _LOGGER.debug("get_bary_coordinates(elem=%d): %s", self.id, bary.tolist())
        return bary

    def distance_to_plane(self, point: PointLike) -> float:
        """Distance of `point` from the plane of the triangle (0 when planar).

        Raises:
            DegenerateElement: If the triangle has (near) zero area.
        """
        if self.ndim == 2:
            return 0.0
        e1, e2 = self._edge_vectors()
        normal = np.cross(e1, e2)
        norm = float(np.linalg.norm(normal))
        if norm == 0.0:
            raise DegenerateElement(
                f"element {self.id} is degenerate (near-zero area)", element=self.id
            )
        w = as_point_coords(point, 3) - self.vertices[0]
        return abs(float(np.dot(w, normal))) / norm

    def is_point_inside(self, point: PointLike, tol: Optional[float] = None) -> bool:
        """Return True if `point` lies in the closed triangle.

        Points on an edge or a vertex count as inside, so that adjacent
        elements leave no gap between them. For a surface triangle the point
        must also lie on its plane, up to the configured plane tolerance
        times the longest edge.

        Args:
            point: GeometricPoint or coordinate sequence.
            tol: Slack on each barycentric coordinate; defaults to the
                configured barycentric tolerance.

        Raises:
            DegenerateElement: If the triangle has (near) zero area.
        """
        if tol is None:
            tol = tolerances().bary
        bary = self.get_bary_coordinates(point)
        if not (np.all(bary >= -tol) and np.all(bary <= 1.0 + tol)):
            return False
        if self.ndim == 2:
            return True
        v = self.vertices
        longest = max(float(np.linalg.norm(v[a] - v[b])) for a, b in EDGE_VERTICES)
        return self.distance_to_plane(point) <= tolerances().plane * longest

    @staticmethod
    @abstractmethod
    def shape_functions(bary: NDArray[Any]) -> NDArray[Any]:
        """Nodal shape functions evaluated at barycentric coordinates.

        Args:
            bary: Array of shape (..., 3).

        Returns:
            Array of shape (..., NUM_NODES).
        """

    def __repr__(self) -> str:
        """Return a string representation of the element."""
        return f"{type(self).__name__}(id={self.id}, nodes={list(self.node_ids)})"


class Order1Triangle(Triangle):
    """Linear triangle: three vertex nodes."""

    ORDER = 1
    NUM_NODES = 3
    REFERENCE_NODES = ((0.0, 0.0), (1.0, 0.0), (0.0, 1.0))

    @staticmethod
    def shape_functions(bary: NDArray[Any]) -> NDArray[Any]:
        """Linear shape functions: the barycentric coordinates themselves."""
        return np.asarray(bary, dtype=float).copy()


class Order2Triangle(Triangle):
    """Quadratic triangle: three vertices then three edge midpoints."""

    ORDER = 2
    NUM_NODES = 6
    REFERENCE_NODES = (
        (0.0, 0.0),
        (1.0, 0.0),
        (0.0, 1.0),
        (0.5, 0.5),
        (0.0, 0.5),
        (0.5, 0.0),
    )

    @property
    def midpoint_ids(self) -> Tuple[int, int, int]:
        """Node indices of the edge midpoints (midpoint i opposite vertex i)."""
        return self.node_ids[3], self.node_ids[4], self.node_ids[5]

    def edge_endpoints(self, side: int) -> Tuple[int, int]:
        """Node indices of the two vertices joined by edge `side`."""
        a, b = EDGE_VERTICES[side]
        return self.node_ids[a], self.node_ids[b]

    @staticmethod
    def shape_functions(bary: NDArray[Any]) -> NDArray[Any]:
        """Quadratic Lagrange shape functions on the 6-node triangle."""
        lam = np.asarray(bary, dtype=float)
        out = np.empty(lam.shape[:-1] + (6,), dtype=float)
        for i in range(3):
            out[..., i] = lam[..., i] * (2.0 * lam[..., i] - 1.0)
        for i, (a, b) in enumerate(EDGE_VERTICES):
            out[..., 3 + i] = 4.0 * lam[..., a] * lam[..., b]
        return out


_VARIANTS: Dict[int, Type[Triangle]] = {1: Order1Triangle, 2: Order2Triangle}


def element_class(order: int) -> Type[Triangle]:
    """Return the triangle variant for `order`.

    Raises:
        InvalidInput: If `order` is not 1 or 2.
    """
    try:
        return _VARIANTS[int(order)]
    except (KeyError, TypeError, ValueError):
        raise InvalidInput(f"order must be 1 or 2; got {order!r}") from None


def make_element(
    order: int,
    id: int,
    node_ids: Sequence[int],
    nodes: NDArray[Any],
) -> Triangle:
    """Build the triangle variant matching `order`."""
    return element_class(order)(id, node_ids, nodes)
