"""Smoothers, coarse solvers, time multigrid and the outer loop."""

from .base import BaseSolver, ConvergenceHistory
from .smoothers import SliceSmoother
from .coarse import DefectCorrectionSolver, BiCGStabSolver, DirectSolver
from .multigrid import MultigridCycle, MultigridLevel, TimeMultigrid
from .outer import OuterSolver, OuterSolverResult, remove_constraint_mean

__all__ = [
    "BaseSolver",
    "ConvergenceHistory",
    "SliceSmoother",
    "DefectCorrectionSolver",
    "BiCGStabSolver",
    "DirectSolver",
    "MultigridCycle",
    "MultigridLevel",
    "TimeMultigrid",
    "OuterSolver",
    "OuterSolverResult",
    "remove_constraint_mean",
]
