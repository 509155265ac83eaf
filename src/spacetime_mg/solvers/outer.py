"""Outer defect-correction loop for the coupled primal/dual system."""

from dataclasses import dataclass, field
from typing import List, Optional, TYPE_CHECKING
import time
import logging

from ..core.slice_store import TimeSliceStore
from ..operators.base import BoundaryKind
from ..operators.functional import FunctionalValues, evaluate_functional
from ..operators.spacetime import AssemblyOptions, DefectAssembler, RHSAssembler, check_store
from ..utils.logging_utils import log_function_call

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..operators.base import SliceLayout
    from .multigrid import TimeMultigrid

logger = logging.getLogger(__name__)


@dataclass
class OuterSolverResult:
    """
    Outcome of an outer solve.

    Non-convergence is reported through ``converged``, the solution is the
    last iterate in either case.
    """
    solution: TimeSliceStore
    residual_norm: float
    initial_residual_norm: float
    iterations: int
    converged: bool
    residual_history: List[float] = field(default_factory=list)
    functional: Optional[FunctionalValues] = None
    solve_time: float = 0.0

    @property
    def reduction(self) -> float:
        """Ratio of final to initial defect norm."""
        if self.initial_residual_norm == 0.0:
            return 0.0
        return self.residual_norm / self.initial_residual_norm

    def __str__(self) -> str:
        status = "converged" if self.converged else "not converged"
        return (f"{status} after {self.iterations} iterations: "
                f"||d|| = {self.residual_norm:.6e} (reduction {self.reduction:.2e})")


def remove_constraint_mean(store: TimeSliceStore, layout: 'SliceLayout') -> None:
    """Shift every constraint block of every slice to zero mean."""
    if not layout.constraints:
        return
    for step in range(store.num_slices):
        if store.is_zero(step):
            continue
        vector = store.get(step)
        for name in layout.constraints:
            start, stop = layout.blocks[name]
            if stop > start:
                vector[start:stop] -= vector[start:stop].mean()
        store.set(step, vector)


class OuterSolver:
    """
    Nonlinear defect correction preconditioned by space-time multigrid.

    Every iteration computes the defect, preconditions it with the multigrid
    (linearized about the current iterate), adds the damped correction and
    recomputes the defect.
    """

    def __init__(
        self,
        preconditioner: 'TimeMultigrid',
        tolerance_rel: float = 1e-5,
        tolerance_abs: float = 1e-5,
        max_iterations: int = 10,
        min_iterations: int = 1,
        omega: float = 1.0,
        implement_bc: bool = True,
        evaluate_functional: bool = False
    ):
        """
        Initialize the outer solver.

        Args:
            preconditioner: Multigrid used to precondition the defect
            tolerance_rel: Stop once the defect fell below this fraction of the
                initial defect
            tolerance_abs: Stop once the defect fell below this value
            max_iterations: Maximum number of iterations
            min_iterations: Minimum number of iterations
            omega: Damping of the correction
            implement_bc: Implement boundary conditions into solution,
                right-hand side and defects
            evaluate_functional: Evaluate the cost functional every iteration
        """
        self._check_bounds(min_iterations, max_iterations)
        if not 0 < omega <= 2:
            logger.warning(f"Relaxation parameter {omega} may cause instability")

        self.preconditioner = preconditioner
        self.tolerance_rel = tolerance_rel
        self.tolerance_abs = tolerance_abs
        self.max_iterations = max_iterations
        self.min_iterations = min_iterations
        self.omega = omega
        self.implement_bc = implement_bc
        self.evaluate_functional = evaluate_functional

        options = AssemblyOptions(implement_bc=implement_bc)
        self.assembler = DefectAssembler(options)
        self.rhs_assembler = RHSAssembler()

    @staticmethod
    def _check_bounds(min_iterations: int, max_iterations: int) -> None:
        if min_iterations < 0 or max_iterations < min_iterations:
            raise ValueError(f"Invalid iteration bounds [{min_iterations}, {max_iterations}]")

    def _implement_solution_bc(self, descriptor: 'SpaceTimeDescriptor', x: TimeSliceStore) -> None:
        level = descriptor.level
        for step in range(descriptor.num_slices):
            vector = x.get(step)
            level.apply_boundary_conditions(vector, descriptor.context(step), BoundaryKind.SOLUTION)
            x.set(step, vector)

    @log_function_call
    def solve(
        self,
        descriptor: 'SpaceTimeDescriptor',
        x0: TimeSliceStore,
        tolerance_rel: Optional[float] = None,
        tolerance_abs: Optional[float] = None,
        max_iterations: Optional[int] = None,
        min_iterations: Optional[int] = None
    ) -> OuterSolverResult:
        """
        Solve the space-time system starting from ``x0``.

        The primal part of ``x0[0]`` is the initial condition. Keyword
        arguments override the configured stopping criteria for this call.

        Args:
            descriptor: Finest space-time level
            x0: Initial guess (left unchanged)
            tolerance_rel: Relative tolerance override
            tolerance_abs: Absolute tolerance override
            max_iterations: Maximum iterations override
            min_iterations: Minimum iterations override

        Returns:
            Solution, defect norms and convergence status
        """
        tol_rel = self.tolerance_rel if tolerance_rel is None else tolerance_rel
        tol_abs = self.tolerance_abs if tolerance_abs is None else tolerance_abs
        max_iter = self.max_iterations if max_iterations is None else max_iterations
        min_iter = self.min_iterations if min_iterations is None else min_iterations
        self._check_bounds(min_iter, max_iter)
        check_store(descriptor, x0, "x0")

        # The multigrid linearizes the finest level about the current iterate;
        # the caller's evaluation point is restored afterwards.
        previous_point = descriptor.evaluation_point
        try:
            return self._iterate(descriptor, x0, tol_rel, tol_abs, max_iter, min_iter)
        finally:
            descriptor.evaluation_point = previous_point

    def _iterate(
        self,
        descriptor: 'SpaceTimeDescriptor',
        x0: TimeSliceStore,
        tol_rel: float,
        tol_abs: float,
        max_iter: int,
        min_iter: int
    ) -> OuterSolverResult:
        start = time.time()
        if not self.preconditioner.setup_completed:
            self.preconditioner.setup()

        x = x0.copy()
        if self.implement_bc:
            self._implement_solution_bc(descriptor, x)

        rhs = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.rhs_assembler.build(descriptor, rhs, implement_bc=self.implement_bc)
        self.rhs_assembler.implement_initial_condition(descriptor, x, rhs)

        defect = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        initial_norm = self.assembler.residual(descriptor, rhs, x, defect)
        norm = initial_norm
        history = [initial_norm]
        logger.info(f"Outer solve on {descriptor}: initial defect = {initial_norm:.6e}")

        pure_neumann = descriptor.level.pure_neumann
        layout = descriptor.level.layout
        functional = None
        iteration = 0
        while iteration < min_iter or (norm > tol_rel * initial_norm and
                                       norm > tol_abs and iteration < max_iter):
            self.preconditioner.precondition(defect, evaluation_point=x)
            self.assembler.filter_defect(descriptor, defect)
            x.axpy(defect, self.omega, 1.0)
            if pure_neumann:
                remove_constraint_mean(x, layout)

            norm = self.assembler.residual(descriptor, rhs, x, defect)
            iteration += 1
            history.append(norm)
            logger.info(f"Outer iteration {iteration}: ||d|| = {norm:.6e} "
                        f"(reduction {norm / initial_norm if initial_norm > 0 else 0.0:.3e})")

            if self.evaluate_functional:
                functional = evaluate_functional(descriptor, x)
                logger.info(f"Outer iteration {iteration}: {functional}")

        converged = norm <= tol_rel * initial_norm or norm <= tol_abs
        if converged:
            logger.info(f"Outer solver converged in {iteration} iterations: ||d|| = {norm:.6e}")
        else:
            logger.warning(f"Outer solver did not converge in {iteration} iterations: "
                           f"||d|| = {norm:.6e}, initial {initial_norm:.6e}")

        return OuterSolverResult(
            solution=x,
            residual_norm=norm,
            initial_residual_norm=initial_norm,
            iterations=iteration,
            converged=converged,
            residual_history=history,
            functional=functional,
            solve_time=time.time() - start,
        )
