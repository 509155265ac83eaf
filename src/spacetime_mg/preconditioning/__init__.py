"""Slice preconditioners for the space-time system."""

from .base import SlicePreconditioner
from .block import BlockJacobiPreconditioner, ForwardBackwardGSPreconditioner

__all__ = [
    "SlicePreconditioner",
    "BlockJacobiPreconditioner",
    "ForwardBackwardGSPreconditioner",
]
