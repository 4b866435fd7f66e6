"""Unit tests for the FEM basis descriptor and FEMFunction."""

import numpy as np
import pytest

from trifem.basis import FEMBasis, FEMFunction, create_fem_basis
from trifem.elevation import second_order_mesh
from trifem.errors import DegenerateElement, InvalidInput
from trifem.mesh import Mesh


def test_planar_basis_has_properties(square_mesh):
    basis = create_fem_basis(square_mesh)
    assert isinstance(basis, FEMBasis)
    assert basis.order == 1
    assert basis.nbasis == 4
    assert basis.properties is not None
    np.testing.assert_allclose(basis.detJ, [1.0, 1.0])
    assert basis.transf.shape == (2, 2, 2)
    assert basis.metric.shape == (2, 2, 2)


def test_order2_basis_counts_all_nodes(square_mesh):
    basis = create_fem_basis(second_order_mesh(square_mesh))
    assert basis.order == 2
    assert basis.nbasis == 9


def test_surface_basis_has_no_properties():
    verts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 1.0], [1.0, 2.0, 3.0]])
    basis = create_fem_basis(Mesh(verts, [[0, 1, 2]]))
    assert basis.nbasis == 3
    assert basis.properties is None
    assert basis.detJ is None
    assert basis.metric is None


def test_basis_rejects_non_mesh():
    with pytest.raises(InvalidInput, match="Mesh"):
        create_fem_basis(np.zeros((3, 2)))  # type: ignore[arg-type]


def test_basis_propagates_degenerate_element(square_mesh):
    mesh = Mesh(square_mesh.nodes, [[0, 1, 2], [0, 3, 2]])
    with pytest.raises(DegenerateElement):
        create_fem_basis(mesh)


def test_basis_is_frozen(square_mesh):
    basis = create_fem_basis(square_mesh)
    with pytest.raises(AttributeError):
        basis.nbasis = 10  # type: ignore[misc]


def test_function_vector_becomes_column(square_mesh):
    f = FEMFunction([1.0, 2.0, 3.0, 4.0], create_fem_basis(square_mesh))
    assert f.coeff.shape == (4, 1)
    assert f.nreplicates == 1
    assert not f.coeff.flags.writeable
    assert "nreplicates=1" in repr(f)


def test_function_validates_rows(square_mesh):
    basis = create_fem_basis(square_mesh)
    with pytest.raises(InvalidInput, match="number of rows"):
        FEMFunction(np.ones((3, 2)), basis)
    with pytest.raises(InvalidInput, match="coeff required"):
        FEMFunction(None, basis)
    with pytest.raises(InvalidInput, match="basis required"):
        FEMFunction(np.ones(4), None)  # type: ignore[arg-type]
    with pytest.raises(InvalidInput, match="FEMBasis"):
        FEMFunction(np.ones(4), square_mesh)  # type: ignore[arg-type]


def test_linear_field_reproduced_on_order1(grid_mesh):
    def field(p):
        return 2.0 * p[..., 0] - 3.0 * p[..., 1] + 1.0

    basis = create_fem_basis(grid_mesh)
    f = FEMFunction(np.column_stack([field(grid_mesh.nodes), -field(grid_mesh.nodes)]), basis)
    locs = np.array([[0.3, 0.2], [2.7, 1.9], [1.5, 1.0], [3.0, 2.0]])
    values = f.evaluate(locs)
    assert values.shape == (4, 2)
    np.testing.assert_allclose(values[:, 0], field(locs), atol=1e-12)
    np.testing.assert_allclose(values[:, 1], -field(locs), atol=1e-12)


def test_quadratic_field_reproduced_on_order2(grid_mesh):
    def field(p):
        x, y = p[..., 0], p[..., 1]
        return x * x - 2.0 * x * y + 0.5 * y * y + x - 4.0

    mesh2 = second_order_mesh(grid_mesh)
    f = FEMFunction(field(mesh2.nodes), create_fem_basis(mesh2))
    locs = np.array([[0.3, 0.2], [2.7, 1.9], [1.25, 0.6], [0.0, 2.0]])
    np.testing.assert_allclose(f.evaluate(locs)[:, 0], field(locs), atol=1e-12)


def test_quadratic_field_not_reproduced_on_order1(grid_mesh):
    f = FEMFunction(grid_mesh.nodes[:, 0] ** 2, create_fem_basis(grid_mesh))
    assert f.evaluate([[0.5, 0.1]])[0, 0] != pytest.approx(0.25)


def test_evaluate_outside_is_nan(square_mesh, caplog):
    f = FEMFunction(np.arange(4.0), create_fem_basis(square_mesh))
    with caplog.at_level("WARNING", logger="trifem"):
        values = f.evaluate([[0.5, 0.25], [2.0, 2.0]])
    assert np.isfinite(values[0, 0])
    assert np.isnan(values[1, 0])
    assert "outside the mesh" in caplog.text


def test_evaluate_rejects_bad_locations(square_mesh):
    f = FEMFunction(np.arange(4.0), create_fem_basis(square_mesh))
    with pytest.raises(InvalidInput, match="locations"):
        f.evaluate(np.zeros((2, 4)))


def test_evaluate_on_closed_surface():
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
    basis = create_fem_basis(Mesh(verts, faces))
    f = FEMFunction(verts[:, 2], basis)
    values = f.evaluate([[1 / 3, 1 / 3, 1 / 3], [0.0, 0.0, 0.0], [-0.5, 0.0, -0.5]])
    assert values[0, 0] == pytest.approx(1 / 3)
    assert np.isnan(values[1, 0])
    assert values[2, 0] == pytest.approx(-0.5)
