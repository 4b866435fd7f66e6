"""Unit tests for Mesh construction, topology, point location and meshio interop."""

import meshio
import numpy as np
import pytest

from trifem.element import Order1Triangle, Order2Triangle
from trifem.errors import InvalidInput
from trifem.mesh import Mesh


def test_basic_counts(square_mesh):
    assert square_mesh.nnodes == 4
    assert square_mesh.ntriangles == 2
    assert square_mesh.ndim == 2
    assert square_mesh.order == 1
    assert not square_mesh.is_surface


def test_arrays_are_read_only(square_mesh):
    assert not square_mesh.nodes.flags.writeable
    assert not square_mesh.triangles.flags.writeable
    with pytest.raises(ValueError):
        square_mesh.nodes[0, 0] = 5.0


def test_constructor_copies_input():
    verts = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
    mesh = Mesh(verts, [[0, 1, 2]])
    verts[0, 0] = 9.0
    assert mesh.nodes[0, 0] == 0.0


def test_one_based_input_is_normalised():
    verts = [[0.0, 0.0, 0.0], [1.0, 0.0, 1.0], [1.0, 2.0, 3.0]]
    mesh = Mesh(verts, [[1, 2, 3]], index_base=1)
    np.testing.assert_array_equal(mesh.triangles, [[0, 1, 2]])
    assert mesh.is_surface


def test_float_indices_accepted_when_integral():
    mesh = Mesh(np.eye(3)[:, :2], np.array([[0.0, 1.0, 2.0]]))
    assert mesh.triangles.dtype == np.int64


@pytest.mark.parametrize(
    "triangles, message",
    [
        ([[0, 1]], "expected 3\\*order"),
        ([[0, 1, 3]], "outside"),
        ([[0, 1, -1]], "outside"),
        ([[0, 1, 1.5]], "integral"),
    ],
)
def test_invalid_connectivity(triangles, message):
    with pytest.raises(InvalidInput, match=message):
        Mesh(np.zeros((3, 2)), triangles)


def test_six_columns_with_order_one_points_to_elevation():
    with pytest.raises(InvalidInput, match="second_order_mesh"):
        Mesh(np.zeros((6, 2)), [[0, 1, 2, 3, 4, 5]], order=1)


@pytest.mark.parametrize("order", [0, 3])
def test_invalid_order(order):
    with pytest.raises(InvalidInput, match="order"):
        Mesh(np.zeros((3, 2)), [[0, 1, 2]], order=order)


@pytest.mark.parametrize("nodes", [np.zeros((3, 4)), np.zeros(3)])
def test_invalid_node_table(nodes):
    with pytest.raises(InvalidInput, match="nodes"):
        Mesh(nodes, [[0, 1, 2]])


def test_non_finite_nodes_rejected():
    nodes = np.array([[0.0, 0.0], [1.0, np.nan], [0.0, 1.0]])
    with pytest.raises(InvalidInput, match="non-finite"):
        Mesh(nodes, [[0, 1, 2]])


def test_invalid_input_is_a_value_error():
    with pytest.raises(ValueError):
        Mesh(np.zeros((3, 2)), [[0, 1, 7]])


def test_from_flat_matches_table_layout(square_mesh):
    rebuilt = Mesh.from_flat(
        4, 2, square_mesh.flat_nodes, square_mesh.flat_triangles, ndim=2
    )
    np.testing.assert_array_equal(rebuilt.nodes, square_mesh.nodes)
    np.testing.assert_array_equal(rebuilt.triangles, square_mesh.triangles)
    np.testing.assert_array_equal(square_mesh.flat_triangles, [0, 1, 2, 0, 2, 3])


def test_from_flat_length_mismatch():
    with pytest.raises(InvalidInput, match="flat nodes"):
        Mesh.from_flat(3, 1, np.zeros(8), [0, 1, 2], ndim=3)
    with pytest.raises(InvalidInput, match="flat triangles"):
        Mesh.from_flat(3, 1, np.zeros(9), [0, 1, 2], order=2)


def test_elements_are_variants(square_mesh):
    els = square_mesh.elements()
    assert len(els) == 2
    assert all(isinstance(e, Order1Triangle) for e in els)
    assert els[1].node_ids == (0, 2, 3)
    assert square_mesh.element(1).id == 1
    with pytest.raises(IndexError):
        square_mesh.element(2)


def test_order2_elements():
    nodes = np.array(
        [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.5, 0.5], [0.0, 0.5], [0.5, 0.0]]
    )
    mesh = Mesh(nodes, [[0, 1, 2, 3, 4, 5]], order=2)
    assert isinstance(mesh.element(0), Order2Triangle)
    np.testing.assert_allclose(mesh.centroids, [[1 / 3, 1 / 3]])


def test_points_are_geometric_points(square_mesh):
    pts = square_mesh.points
    assert [p.id for p in pts] == [0, 1, 2, 3]
    np.testing.assert_allclose(pts[2].coords, [1.0, 1.0, 0.0])


def test_edge_topology(grid_mesh):
    assert grid_mesh.unique_edges().shape == (23, 2)
    boundary = grid_mesh.boundary_edges()
    assert boundary.shape == (10, 2)
    assert np.all(boundary[:, 0] < boundary[:, 1])
    # Every node of a 4x3 grid except the two interior ones.
    np.testing.assert_array_equal(
        grid_mesh.boundary_nodes(), [0, 1, 2, 3, 4, 7, 8, 9, 10, 11]
    )


def test_locate(grid_mesh):
    for e, centroid in enumerate(grid_mesh.centroids):
        assert grid_mesh.locate(centroid) == e
    assert grid_mesh.locate((2.5, 0.2)) >= 0
    assert grid_mesh.locate((3.5, 1.0)) == -1
    # Vertices shared by several elements still resolve to one of them.
    el = grid_mesh.locate((1.0, 1.0))
    assert 5 in grid_mesh.triangles[el]


def test_locate_falls_back_to_full_search(grid_mesh):
    # The nearest centroid belongs to element 3, which does not contain the point.
    assert grid_mesh.locate((0.9, 0.85), candidates=1) == 0


def test_bary_coordinates_many_marks_degenerate_rows():
    nodes = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [2.0, 0.0]])
    mesh = Mesh(nodes, [[0, 1, 2], [0, 1, 3]])
    bary = mesh.bary_coordinates_many([0, 1], (0.25, 0.25))
    np.testing.assert_allclose(bary[0], [0.5, 0.25, 0.25])
    assert np.all(np.isnan(bary[1]))


def test_meshio_roundtrip_order1(square_mesh):
    m = square_mesh.to_meshio()
    assert isinstance(m, meshio.Mesh)
    assert m.cells[0].type == "triangle"
    back = Mesh.from_meshio(m)
    np.testing.assert_array_equal(back.triangles, square_mesh.triangles)
    np.testing.assert_allclose(back.nodes, square_mesh.nodes)


def test_meshio_triangle6_ordering():
    nodes = np.array(
        [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.5, 0.5], [0.0, 0.5], [0.5, 0.0]]
    )
    mesh = Mesh(nodes, [[0, 1, 2, 3, 4, 5]], order=2)
    m = mesh.to_meshio()
    assert m.cells[0].type == "triangle6"
    # meshio lists midpoints of edges (0,1), (1,2), (2,0).
    np.testing.assert_array_equal(m.cells[0].data, [[0, 1, 2, 5, 3, 4]])
    back = Mesh.from_meshio(m)
    assert back.order == 2
    np.testing.assert_array_equal(back.triangles, mesh.triangles)


def test_from_meshio_without_triangles():
    m = meshio.Mesh(points=np.zeros((2, 3)), cells=[("line", np.array([[0, 1]]))])
    with pytest.raises(InvalidInput, match="no triangle cells"):
        Mesh.from_meshio(m)


def test_summary_and_repr(square_mesh):
    s = square_mesh.summary()
    assert s["nnodes"] == 4
    assert s["ntriangles"] == 2
    assert s["bbox_min"] == [0.0, 0.0]
    assert s["bbox_max"] == [1.0, 1.0]
    assert "nnodes=4" in repr(square_mesh)


def _octahedron():
    verts = np.array(
        [
            [1.0, 0.0, 0.0],
            [-1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [0.0, -1.0, 0.0],
            [0.0, 0.0, 1.0],
            [0.0, 0.0, -1.0],
        ]
    )
    faces = [[x, y, z] for x in (0, 1) for y in (2, 3) for z in (4, 5)]
    return Mesh(verts, faces)


def test_locate_on_closed_surface():
    mesh = _octahedron()
    assert mesh.is_surface
    # Centre of the face spanned by +x, +y, +z.
    assert mesh.locate((1 / 3, 1 / 3, 1 / 3)) == 0
    # The interior of the closed surface is not on any element.
    assert mesh.locate((0.0, 0.0, 0.0)) == -1
    assert mesh.locate((0.2, 0.2, 0.2)) == -1


def test_contains_many_checks_plane_distance():
    mesh = _octahedron()
    every = np.arange(mesh.ntriangles)
    assert mesh.contains_many(every, (1 / 3, 1 / 3, 1 / 3)).tolist() == [
        True
    ] + [False] * 7
    assert not mesh.contains_many(every, (0.0, 0.0, 0.0)).any()
    # Barycentric coordinates alone accept the projected origin.
    bary = mesh.bary_coordinates_many([0], (0.0, 0.0, 0.0))[0]
    np.testing.assert_allclose(bary, [1 / 3, 1 / 3, 1 / 3], atol=1e-12)
