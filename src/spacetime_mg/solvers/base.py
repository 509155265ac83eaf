"""Base classes for space-time solvers."""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple, TYPE_CHECKING
import logging

import numpy as np

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..core.slice_store import TimeSliceStore

logger = logging.getLogger(__name__)


class ConvergenceHistory:
    """Track convergence history for solvers."""

    def __init__(self):
        """Initialize convergence history."""
        self.residual_norms = []
        self.iteration_times = []
        self.levels = []

    def record_iteration(
        self,
        residual_norm: float,
        iteration_time: float,
        level: Optional[int] = None
    ) -> None:
        """Record an iteration."""
        self.residual_norms.append(residual_norm)
        self.iteration_times.append(iteration_time)
        self.levels.append(level)

    def get_convergence_rate(self) -> float:
        """Estimate asymptotic convergence rate."""
        if len(self.residual_norms) < 3:
            return 0.0

        # Use last few iterations to estimate rate
        recent_residuals = self.residual_norms[-5:]
        ratios = []
        for i in range(1, len(recent_residuals)):
            if recent_residuals[i-1] > 0:
                ratio = recent_residuals[i] / recent_residuals[i-1]
                if 0 < ratio < 1:
                    ratios.append(ratio)

        return float(np.mean(ratios)) if ratios else 0.0

    def clear(self) -> None:
        """Clear convergence history."""
        self.residual_norms.clear()
        self.iteration_times.clear()
        self.levels.clear()


class BaseSolver(ABC):
    """
    Abstract base class for iterative space-time solvers.

    Iteration continues while fewer than ``min_iterations`` were performed, or
    while the defect is above both ``tolerance_rel`` times the initial defect
    and ``tolerance_abs`` and fewer than ``max_iterations`` were performed.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        tolerance_rel: float = 1e-5,
        tolerance_abs: float = 1e-5,
        min_iterations: int = 1,
        verbose: bool = False,
        name: str = "BaseSolver"
    ):
        """
        Initialize base solver.

        Args:
            max_iterations: Maximum number of iterations
            tolerance_rel: Relative convergence tolerance
            tolerance_abs: Absolute convergence tolerance
            min_iterations: Minimum number of iterations
            verbose: Enable verbose output
            name: Solver name for logging
        """
        if min_iterations < 0 or max_iterations < min_iterations:
            raise ValueError(f"Invalid iteration bounds [{min_iterations}, {max_iterations}]")

        self.max_iterations = max_iterations
        self.min_iterations = min_iterations
        self.tolerance_rel = tolerance_rel
        self.tolerance_abs = tolerance_abs
        self.verbose = verbose
        self.name = name

        # Convergence tracking
        self.history = ConvergenceHistory()
        self.converged = False
        self.initial_residual = float('inf')
        self.final_residual = float('inf')
        self.iterations_performed = 0

        logger.debug(f"Initialized {name}: iterations=[{min_iterations}, {max_iterations}], "
                     f"tol_rel={tolerance_rel}, tol_abs={tolerance_abs}")

    @abstractmethod
    def solve(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: 'TimeSliceStore',
        x: 'TimeSliceStore'
    ) -> Tuple['TimeSliceStore', Dict[str, Any]]:
        """
        Solve ``A x = rhs`` starting from (and overwriting) ``x``.

        Args:
            descriptor: Space-time level
            rhs: Right-hand side
            x: Initial guess, overwritten with the solution

        Returns:
            Tuple of (solution, convergence_info)
        """
        pass

    def is_converged(self, residual_norm: float, initial_residual: float) -> bool:
        """Relative or absolute tolerance reached."""
        return (residual_norm <= self.tolerance_rel * initial_residual or
                residual_norm <= self.tolerance_abs)

    def continue_iterating(self, residual_norm: float, initial_residual: float, iteration: int) -> bool:
        """Whether another iteration is required."""
        if iteration < self.min_iterations:
            return True
        return (not self.is_converged(residual_norm, initial_residual) and
                iteration < self.max_iterations)

    def check_convergence(self, residual_norm: float, initial_residual: float, iteration: int) -> bool:
        """
        Check convergence criteria and log the outcome.

        Args:
            residual_norm: Current residual norm
            initial_residual: Residual norm before the first iteration
            iteration: Current iteration number

        Returns:
            True if converged
        """
        converged = self.is_converged(residual_norm, initial_residual)

        if converged:
            logger.info(f"{self.name} converged in {iteration} iterations: "
                        f"residual = {residual_norm:.2e}")
        else:
            logger.warning(f"{self.name} reached max iterations ({self.max_iterations}): "
                           f"residual = {residual_norm:.2e}")

        return converged

    def log_iteration(self, iteration: int, residual_norm: float, level: Optional[int] = None) -> None:
        """Log iteration information."""
        level_str = f" (level {level})" if level is not None else ""
        message = f"{self.name} iteration {iteration}{level_str}: residual = {residual_norm:.2e}"
        if self.verbose:
            logger.info(message)
        else:
            logger.debug(message)

    def get_convergence_info(self) -> Dict[str, Any]:
        """
        Get convergence information.

        Returns:
            Dictionary with convergence statistics
        """
        return {
            "converged": self.converged,
            "iterations": self.iterations_performed,
            "initial_residual": self.initial_residual,
            "final_residual": self.final_residual,
            "convergence_rate": self.history.get_convergence_rate(),
            "residual_history": self.history.residual_norms.copy(),
            "total_time": sum(self.history.iteration_times),
            "average_time_per_iteration": (
                float(np.mean(self.history.iteration_times))
                if self.history.iteration_times else 0.0
            ),
        }

    def reset(self) -> None:
        """Reset solver state."""
        self.history.clear()
        self.converged = False
        self.initial_residual = float('inf')
        self.final_residual = float('inf')
        self.iterations_performed = 0

        logger.debug(f"Reset {self.name} solver state")
