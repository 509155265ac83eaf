"""Reference spatial discretizations."""

from .burgers1d import (
    OptimalControlProblem, Burgers1DLevel, Burgers1DTransfer,
    DirectSpatialPreconditioner, create_spatial_hierarchy, initial_guess
)

__all__ = [
    "OptimalControlProblem",
    "Burgers1DLevel",
    "Burgers1DTransfer",
    "DirectSpatialPreconditioner",
    "create_spatial_hierarchy",
    "initial_guess",
]
