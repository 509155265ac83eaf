"""
Space-Time Multigrid for Optimal Control

Solves the coupled primal/dual optimality system of parabolic optimal control
problems on the whole space-time cylinder, preconditioned by multigrid with
coarsening in time.
"""

from ._version import __version__

from .core import (
    TimeSliceStore, NormType, SpaceTimeDescriptor, CouplingConstants, TimeContext,
    save_store, load_store
)
from .core.exceptions import (
    SpaceTimeError, OutOfRangeError, SizeMismatchError,
    IncompatibleStoresError, CollaboratorError
)
from .operators import (
    StencilWeights, setup_weights, DefectAssembler, RHSAssembler, AssemblyOptions,
    ProjectionOperator, evaluate_functional
)
from .preconditioning import BlockJacobiPreconditioner, ForwardBackwardGSPreconditioner
from .solvers import (
    SliceSmoother, DefectCorrectionSolver, BiCGStabSolver, DirectSolver,
    MultigridLevel, TimeMultigrid, OuterSolver, OuterSolverResult
)
from .config import SpaceTimeConfig

__all__ = [
    "TimeSliceStore",
    "NormType",
    "SpaceTimeDescriptor",
    "CouplingConstants",
    "TimeContext",
    "save_store",
    "load_store",
    "SpaceTimeError",
    "OutOfRangeError",
    "SizeMismatchError",
    "IncompatibleStoresError",
    "CollaboratorError",
    "StencilWeights",
    "setup_weights",
    "DefectAssembler",
    "RHSAssembler",
    "AssemblyOptions",
    "ProjectionOperator",
    "evaluate_functional",
    "BlockJacobiPreconditioner",
    "ForwardBackwardGSPreconditioner",
    "SliceSmoother",
    "DefectCorrectionSolver",
    "BiCGStabSolver",
    "DirectSolver",
    "MultigridLevel",
    "TimeMultigrid",
    "OuterSolver",
    "OuterSolverResult",
    "SpaceTimeConfig",
]
