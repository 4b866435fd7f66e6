"""Global configuration for trifem.

This module provides a package-wide configuration surface: numerical
tolerances used by the geometric queries and the order elevation, the log
level, and the array backend (NumPy on CPU or CuPy on GPU) used for the
vectorised per-element computations. A dynamic `xp` proxy always reflects
the current backend.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import contextlib
import logging
import os
from typing import Any, ContextManager, Iterator, Optional


# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
_LOGGER = logging.getLogger("trifem.config")
_PACKAGE_LOGGER = logging.getLogger("trifem")


def _parse_log_level(val: str | int | None, default: int = logging.WARNING) -> int:
    """Parse a logging level string or int into a `logging` level constant.

    Args:
        val: The desired level (e.g., "DEBUG", 10). May be None.
        default: Fallback level if `val` cannot be parsed.

    Returns:
        An integer logging level (e.g., logging.DEBUG).
    """
    if val is None:
        return default
    if isinstance(val, int):
        return val
    lvl = getattr(logging, str(val).strip().upper(), None)
    if isinstance(lvl, int):
        return lvl
    return default


def set_log_level(level: str | int = "WARNING") -> None:
    """Set the level of the package logger (``trifem`` and children).

    Args:
        level: A standard logging level name or integer.
    """
    _PACKAGE_LOGGER.setLevel(_parse_log_level(level))


# Default level can be overridden by env.
set_log_level(os.getenv("TRIFEM_LOGLEVEL", "WARNING"))


# -----------------------------------------------------------------------------
# Env helpers
# -----------------------------------------------------------------------------
def bool_env(varname: str, default: bool) -> bool:
    """Read an environment variable and interpret it as a boolean.

    True values: 'y', 'yes', 't', 'true', 'on', '1'.
    False values: 'n', 'no', 'f', 'false', 'off', '0'.

    Args:
        varname: The name of the environment variable.
        default: The default value if the variable is unset.

    Returns:
        A boolean value parsed from the environment.
    """
    val = os.getenv(varname, str(default)).lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return True
    if val in ("n", "no", "f", "false", "off", "0"):
        return False
    raise ValueError(f"invalid truth value {val!r} for environment {varname!r}")


def int_env(varname: str, default: int) -> int:
    """Read an environment variable and interpret it as an integer."""
    return int(os.getenv(varname, str(default)))


def float_env(varname: str, default: float) -> float:
    """Read an environment variable and interpret it as a float.

    Raises:
        ValueError: If the value is not a finite, non-negative number.
    """
    val = float(os.getenv(varname, repr(default)))
    if not (val >= 0.0 and val < float("inf")):
        raise ValueError(
            f"environment {varname!r} must be a finite non-negative number; got {val!r}"
        )
    return val


def _device_env() -> str:
    """Parse TRIFEM_GPU into a device string ('gpu'|'cpu'|'auto').

    Unset means 'cpu': the per-element kernels are small and a GPU only
    pays off for very large meshes, so it is opt-in.
    """
    raw = os.getenv("TRIFEM_GPU", "").strip().lower()
    if raw in {"1", "true", "y", "yes", "on", "gpu"}:
        dev = "gpu"
    elif raw == "auto":
        dev = "auto"
    else:
        dev = "cpu"
    _LOGGER.debug("Env TRIFEM_GPU=%r -> device=%s", raw, dev)
    return dev


# -----------------------------------------------------------------------------
# Tolerances
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Tolerances:
    """Numerical tolerances shared by the geometric routines.

    Attributes:
        midpoint: Absolute per-coordinate tolerance under which two points
            are considered the same node (midpoint deduplication).
        bary: Slack on barycentric coordinates for the closed
            point-in-triangle test.
        degenerate: Relative threshold; a triangle whose doubled area is at
            most ``degenerate * longest_edge**2`` is degenerate.
        plane: Relative slack on the distance of a query point from the plane
            of a surface triangle, in units of its longest edge.
    """

    midpoint: float = 1e-5
    bary: float = 1e-10
    degenerate: float = 1e-12
    plane: float = 1e-8


def _tolerances_env() -> Tolerances:
    defaults = Tolerances()
    return Tolerances(
        midpoint=float_env("TRIFEM_MIDPOINT_TOL", defaults.midpoint),
        bary=float_env("TRIFEM_BARY_TOL", defaults.bary),
        degenerate=float_env("TRIFEM_DEGENERATE_TOL", defaults.degenerate),
        plane=float_env("TRIFEM_PLANE_TOL", defaults.plane),
    )


# -----------------------------------------------------------------------------
# Array backend abstraction
# -----------------------------------------------------------------------------
@dataclass
class ArrayBackend:
    """Descriptor for the active array backend (NumPy or CuPy)."""

    name: str
    is_gpu: bool
    xp: Any

    def to_cpu(self, a: Any) -> Any:
        """Copy an array to CPU if it is a CuPy array."""
        if self.is_gpu:
            import cupy as cp

            if isinstance(a, cp.ndarray):
                _LOGGER.debug(
                    "Transferring array from GPU->CPU (shape=%s)",
                    getattr(a, "shape", None),
                )
                return cp.asnumpy(a)
        return a

    def to_device(self, a: Any, dtype: Any | None = None) -> Any:
        """Copy an array to the active backend (NumPy or CuPy)."""
        return self.xp.asarray(a, dtype=dtype)


def _make_cpu_backend() -> ArrayBackend:
    """Create a CPU (NumPy) backend."""
    import numpy as np

    _LOGGER.debug("Initialized CPU backend (NumPy)")
    return ArrayBackend(name="numpy", is_gpu=False, xp=np)


def _try_make_gpu_backend() -> ArrayBackend:
    """Create a GPU (CuPy) backend or raise if initialization fails.

    Raises:
        RuntimeError: If no CUDA device is visible to CuPy.
    """
    import cupy as cp

    dev_count = cp.cuda.runtime.getDeviceCount()
    _LOGGER.debug("CuPy detected devices: %d", dev_count)
    if dev_count < 1:
        raise RuntimeError("No CUDA device visible to CuPy")

    _LOGGER.info("Initialized GPU backend (CuPy)")
    return ArrayBackend(name="cupy", is_gpu=True, xp=cp)


def _auto_backend(device: str, *, strict: bool = False) -> ArrayBackend:
    """Select and initialize the backend based on `device` and availability.

    Args:
        device: One of 'cpu', 'gpu', or 'auto'.
        strict: If True, raise on GPU init failure instead of falling back.

    Returns:
        An initialized `ArrayBackend`.
    """
    _LOGGER.debug("Selecting backend: device=%s strict=%s", device, strict)
    if device == "cpu":
        return _make_cpu_backend()
    if device not in ("gpu", "auto"):
        raise ValueError(f"device must be 'cpu', 'gpu' or 'auto'; got {device!r}")
    try:
        return _try_make_gpu_backend()
    except Exception as err:
        if device == "gpu" and strict:
            _LOGGER.error("GPU backend init failed: %r", err)
            raise
        _LOGGER.warning("GPU backend unavailable (%r); using CPU.", err)
        return _make_cpu_backend()


# -----------------------------------------------------------------------------
# Config singleton + dynamic proxy
# -----------------------------------------------------------------------------
class Config:
    """Global configuration: tolerances and array backend.

    Code importing `xp` or reading `config.tolerances` always sees the
    current state, including inside a `use(...)` block.
    """

    def __init__(self) -> None:
        """Initialize config using environment defaults."""
        self._tolerances: Tolerances = _tolerances_env()
        device = _device_env()
        self._backend: ArrayBackend = _auto_backend(device)
        _LOGGER.info(
            "Config initialized: device=%s backend=%s tolerances=%s",
            device,
            self._backend.name,
            self._tolerances,
        )

    def configure(
        self,
        device: Optional[str] = None,
        *,
        strict: bool = False,
        midpoint_tol: Optional[float] = None,
        bary_tol: Optional[float] = None,
        degenerate_tol: Optional[float] = None,
        plane_tol: Optional[float] = None,
    ) -> Config:
        """Reconfigure the backend and/or tolerances.

        Args:
            device: One of 'cpu', 'gpu', or 'auto'; None keeps the backend.
            strict: If True, raise on GPU init failure instead of fallback.
            midpoint_tol: New midpoint deduplication tolerance.
            bary_tol: New barycentric slack for containment tests.
            degenerate_tol: New relative degeneracy threshold.
            plane_tol: New relative off-plane slack for surface containment.

        Returns:
            The `Config` instance (for chaining).
        """
        changes = {
            name: float(val)
            for name, val in (
                ("midpoint", midpoint_tol),
                ("bary", bary_tol),
                ("degenerate", degenerate_tol),
                ("plane", plane_tol),
            )
            if val is not None
        }
        for name, val in changes.items():
            if not (val >= 0.0 and val < float("inf")):
                raise ValueError(f"{name} tolerance must be finite and >= 0; got {val}")
        if changes:
            self._tolerances = replace(self._tolerances, **changes)
        if device is not None:
            self._backend = _auto_backend(device, strict=strict)
        _LOGGER.info(
            "Reconfigured: backend=%s tolerances=%s",
            self._backend.name,
            self._tolerances,
        )
        return self

    @contextlib.contextmanager
    def use(
        self,
        device: Optional[str] = None,
        *,
        strict: bool = False,
        midpoint_tol: Optional[float] = None,
        bary_tol: Optional[float] = None,
        degenerate_tol: Optional[float] = None,
        plane_tol: Optional[float] = None,
    ) -> Iterator[None]:
        """Temporarily reconfigure within a context manager.

        Yields:
            None. Restores the previous backend and tolerances on exit.
        """
        prev_backend = self._backend
        prev_tols = self._tolerances
        try:
            self.configure(
                device,
                strict=strict,
                midpoint_tol=midpoint_tol,
                bary_tol=bary_tol,
                degenerate_tol=degenerate_tol,
                plane_tol=plane_tol,
            )
            yield
        finally:
            self._backend = prev_backend
            self._tolerances = prev_tols
            _LOGGER.info("Restored previous configuration: %s", self._backend.name)

    @property
    def tolerances(self) -> Tolerances:
        """Return the active tolerances."""
        return self._tolerances

    @property
    def is_gpu(self) -> bool:
        """Return True if the active backend is a GPU backend."""
        return self._backend.is_gpu

    @property
    def backend_name(self) -> str:
        """Return the name of the active backend ('numpy' or 'cupy')."""
        return self._backend.name

    @property
    def xp(self) -> Any:
        """Return the active array module (NumPy or CuPy)."""
        return self._backend.xp

    def to_cpu(self, a: Any) -> Any:
        """Copy an array to CPU if needed."""
        return self._backend.to_cpu(a)

    def to_device(self, a: Any, dtype: Any | None = None) -> Any:
        """Copy an array to the active backend."""
        return self._backend.to_device(a, dtype=dtype)


class _XPProxy:
    """Proxy for `xp` that forwards attribute access to the current backend."""

    def __init__(self, _cfg: Config) -> None:
        self._cfg = _cfg

    def __getattr__(self, name: str) -> Any:  # noqa: D401
        return getattr(self._cfg.xp, name)


# Singleton & forwards
config = Config()
xp = _XPProxy(config)


def to_cpu(a: Any) -> Any:
    """Copy an array to CPU if needed (module-level)."""
    return config.to_cpu(a)


def to_device(a: Any, dtype: Any | None = None) -> Any:
    """Copy an array to the active backend (module-level)."""
    return config.to_device(a, dtype=dtype)


def tolerances() -> Tolerances:
    """Return the active tolerances (module-level)."""
    return config.tolerances


def is_gpu() -> bool:
    """Return True if the active backend is a GPU backend (module-level)."""
    return config.is_gpu


def backend_name() -> str:
    """Return the name of the active backend (module-level)."""
    return config.backend_name


def configure(
    device: Optional[str] = None,
    *,
    strict: bool = False,
    midpoint_tol: Optional[float] = None,
    bary_tol: Optional[float] = None,
    degenerate_tol: Optional[float] = None,
    plane_tol: Optional[float] = None,
) -> Config:
    """Reconfigure backend and/or tolerances (module-level)."""
    return config.configure(
        device,
        strict=strict,
        midpoint_tol=midpoint_tol,
        bary_tol=bary_tol,
        degenerate_tol=degenerate_tol,
        plane_tol=plane_tol,
    )


def use(
    device: Optional[str] = None,
    *,
    strict: bool = False,
    midpoint_tol: Optional[float] = None,
    bary_tol: Optional[float] = None,
    degenerate_tol: Optional[float] = None,
    plane_tol: Optional[float] = None,
) -> ContextManager[None]:
    """Temporarily reconfigure within a context manager (module-level)."""
    return config.use(
        device,
        strict=strict,
        midpoint_tol=midpoint_tol,
        bary_tol=bary_tol,
        degenerate_tol=degenerate_tol,
        plane_tol=plane_tol,
    )
