from __future__ import annotations
import pytest

import numpy as np
from trifem.mesh import Mesh


def _gpu_available() -> bool:
    try:
        import cupy

        return cupy.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Auto-skip tests marked 'gpu' when no CUDA device is present."""
    if _gpu_available():
        return
    skip_marker = pytest.mark.skip(reason="GPU not available for CuPy.")
    for item in items:
        if "gpu" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture()
def tf_cpu():
    import trifem as tf

    with tf.use("cpu", strict=False):
        yield tf


@pytest.fixture()
def tf_gpu():
    if not _gpu_available():
        pytest.skip("No CUDA device available for CuPy.")
    import trifem as tf

    with tf.use("gpu", strict=True):
        yield tf


@pytest.fixture
def simple_triangle_mesh():
    """
    Provides a planar Mesh with a single counter-clockwise triangle:
        v0 = [0, 0]
        v1 = [1, 0]
        v2 = [0, 1]
    """
    verts = np.array(
        [
            [0.0, 0.0],  # v0
            [1.0, 0.0],  # v1
            [0.0, 1.0],  # v2
        ]
    )
    return Mesh(verts, np.array([[0, 1, 2]]))


@pytest.fixture
def square_mesh():
    """
    Unit square split along the diagonal (0,0)-(1,1) into two triangles
    sharing the edge 0-2.
    """
    verts = np.array(
        [
            [0.0, 0.0],
            [1.0, 0.0],
            [1.0, 1.0],
            [0.0, 1.0],
        ]
    )
    return Mesh(verts, np.array([[0, 1, 2], [0, 2, 3]]))


@pytest.fixture
def grid_mesh():
    """
    Structured 4x3 grid of the rectangle [0, 3] x [0, 2], two
    counter-clockwise triangles per cell (12 triangles, 12 nodes).
    """
    nx, ny = 4, 3
    xs, ys = np.meshgrid(np.arange(nx, dtype=float), np.arange(ny, dtype=float))
    verts = np.column_stack([xs.ravel(), ys.ravel()])
    tris = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            a = j * nx + i
            b = a + 1
            c = a + nx + 1
            d = a + nx
            tris.append([a, b, c])
            tris.append([a, c, d])
    return Mesh(verts, np.array(tris))
