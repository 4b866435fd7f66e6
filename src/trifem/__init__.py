"""The trifem package provides the geometric core of a triangular FEM basis.

This package offers:
  - Order-1 and order-2 triangle elements with barycentric queries.
  - Per-element affine transforms, Jacobian determinants and metric tensors.
  - Order elevation of linear triangulations (shared edge midpoints).
  - The FEM basis descriptor consumed by statistical smoothing code.

Submodules:
  - config: Tolerances, log level and array backend.
  - errors: InvalidInput, InvalidElement, DegenerateElement.
  - point: GeometricPoint.
  - element: Triangle variants and the local node convention.
  - mesh: Mesh construction, topology and point location.
  - properties: ElementProperties and their computation.
  - elevation: MeshOrderElevator / second_order_mesh.
  - basis: FEMBasis, create_fem_basis, FEMFunction.
"""

from .config import (
    config,
    configure,
    use,
    tolerances,
    Tolerances,
    is_gpu,
    backend_name,
    xp,
    to_cpu,
    to_device,
    set_log_level,
)

from trifem.errors import (
    TrifemError,
    InvalidInput,
    InvalidElement,
    DegenerateElement,
)
from trifem.point import GeometricPoint
from trifem.element import (
    EDGE_VERTICES,
    Triangle,
    Order1Triangle,
    Order2Triangle,
    element_class,
    make_element,
)
from trifem.mesh import Mesh
from trifem.properties import ElementProperties, compute_element_properties
from trifem.elevation import MeshOrderElevator, second_order_mesh
from trifem.basis import FEMBasis, FEMFunction, create_fem_basis

__all__ = [
    # Core classes
    "GeometricPoint",
    "Triangle",
    "Order1Triangle",
    "Order2Triangle",
    "Mesh",
    "ElementProperties",
    "MeshOrderElevator",
    "FEMBasis",
    "FEMFunction",
    # Operations
    "make_element",
    "element_class",
    "compute_element_properties",
    "second_order_mesh",
    "create_fem_basis",
    "EDGE_VERTICES",
    # Errors
    "TrifemError",
    "InvalidInput",
    "InvalidElement",
    "DegenerateElement",
    # Configuration and backend
    "config",
    "configure",
    "use",
    "tolerances",
    "Tolerances",
    "is_gpu",
    "backend_name",
    "xp",
    "to_cpu",
    "to_device",
    "set_log_level",
]
