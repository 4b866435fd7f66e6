"""Exception types raised by trifem.

All errors derive from `TrifemError`, itself a `ValueError`, so callers that
only guard against bad values keep working.
"""
from __future__ import annotations


class TrifemError(ValueError):
    """Base class for all trifem errors."""


class InvalidInput(TrifemError):
    """Malformed table dimensions, indices, or a wrong declared order."""


class InvalidElement(TrifemError):
    """An element whose node count does not match its declared order."""


class DegenerateElement(TrifemError):
    """Zero-area or mis-oriented element (non-positive Jacobian determinant).

    Attributes:
        element (int | None): Index of the offending element, if known.
    """

    def __init__(self, message: str, element: int | None = None) -> None:
        super().__init__(message)
        self.element = element
