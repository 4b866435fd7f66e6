"""Elevate a triangulated annulus to order 2 and write it as a VTU file.

Usage:
    python examples/example_elevate.py [output.vtu]
"""
import sys

import meshio
import numpy as np

import trifem as tf

tf.set_log_level("INFO")


def annulus(n_rings=4, n_sectors=24, r_in=0.5, r_out=1.0):
    """Structured annulus; sector k of ring j becomes two triangles."""
    radii = np.linspace(r_in, r_out, n_rings + 1)
    theta = np.linspace(0.0, 2.0 * np.pi, n_sectors, endpoint=False)
    nodes = np.array([[r * np.cos(t), r * np.sin(t)] for r in radii for t in theta])
    tris = []
    for j in range(n_rings):
        for k in range(n_sectors):
            a = j * n_sectors + k
            b = j * n_sectors + (k + 1) % n_sectors
            c = b + n_sectors
            d = a + n_sectors
            tris.append([a, d, c])
            tris.append([a, c, b])
    return tf.Mesh(nodes, np.array(tris))


mesh = annulus()
mesh2, bc = tf.second_order_mesh(mesh, bc=mesh.boundary_nodes(), method="hash")
basis = tf.create_fem_basis(mesh2)

print(mesh2)
print("boundary nodes:", len(bc))
print("area:", basis.properties.areas.sum(), "exact:", np.pi * (1.0 - 0.25))

# Nodal field r^2, evaluated between the nodes.
f = tf.FEMFunction((mesh2.nodes ** 2).sum(axis=1), basis)
probe = np.array([[0.75, 0.0], [0.0, -0.6], [2.0, 0.0]])
print("r^2 at probes:", f.evaluate(probe)[:, 0])

out = sys.argv[1] if len(sys.argv) > 1 else "annulus_p2.vtu"
m = mesh2.to_meshio()
m.point_data["r2"] = np.asarray(f.coeff[:, 0])
meshio.write(out, m)
print("wrote", out)
