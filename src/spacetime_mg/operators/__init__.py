"""Space-time operators, right-hand side assembly and grid transfer."""

from .base import (
    BoundaryKind, SliceLayout, SpatialLevel, SpatialPreconditioner,
    SpatialTransfer, IdentityTransfer
)
from .stencil import StencilWeights, setup_weights, neighbour_offsets
from .spacetime import (
    AssemblyOptions, DefectAssembler, RHSAssembler, assemble_global_matrix
)
from .transfer import ProjectionOperator
from .functional import FunctionalValues, control_from_dual, evaluate_functional

__all__ = [
    "BoundaryKind",
    "SliceLayout",
    "SpatialLevel",
    "SpatialPreconditioner",
    "SpatialTransfer",
    "IdentityTransfer",
    "StencilWeights",
    "setup_weights",
    "neighbour_offsets",
    "AssemblyOptions",
    "DefectAssembler",
    "RHSAssembler",
    "assemble_global_matrix",
    "ProjectionOperator",
    "FunctionalValues",
    "evaluate_functional",
    "control_from_dual",
]
