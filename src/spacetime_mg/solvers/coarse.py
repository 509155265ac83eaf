"""Solvers for the coarsest space-time level."""

from typing import Dict, Any, Tuple, TYPE_CHECKING
import time
import logging

from scipy.sparse.linalg import splu

from .base import BaseSolver
from ..core.exceptions import CollaboratorError
from ..core.slice_store import NormType, TimeSliceStore
from ..operators.spacetime import DefectAssembler, assemble_global_matrix

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..preconditioning.base import SlicePreconditioner

logger = logging.getLogger(__name__)


class DefectCorrectionSolver(BaseSolver):
    """Damped defect correction ``x <- x + omega * P^{-1}(b - A x)``."""

    def __init__(
        self,
        preconditioner: 'SlicePreconditioner',
        omega: float = 1.0,
        max_iterations: int = 100,
        tolerance_rel: float = 1e-5,
        tolerance_abs: float = 1e-5,
        min_iterations: int = 1,
        verbose: bool = False
    ):
        super().__init__(max_iterations, tolerance_rel, tolerance_abs, min_iterations,
                         verbose, f"DefectCorrection[{preconditioner.name}]")
        self.preconditioner = preconditioner
        self.omega = omega
        self.assembler = DefectAssembler()

        if not 0 < omega <= 2:
            logger.warning(f"Relaxation parameter {omega} may cause instability")

    def setup(self, descriptor: 'SpaceTimeDescriptor') -> None:
        self.preconditioner.setup(descriptor)

    def solve(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: TimeSliceStore,
        x: TimeSliceStore
    ) -> Tuple[TimeSliceStore, Dict[str, Any]]:
        self.reset()

        defect = TimeSliceStore(x.size, x.steps)
        residual_norm = self.assembler.residual(descriptor, rhs, x, defect)
        self.initial_residual = residual_norm

        iteration = 0
        while self.continue_iterating(residual_norm, self.initial_residual, iteration):
            iteration_start = time.time()

            self.preconditioner.apply(descriptor, defect)
            x.axpy(defect, self.omega, 1.0)
            residual_norm = self.assembler.residual(descriptor, rhs, x, defect)

            iteration += 1
            self.history.record_iteration(residual_norm, time.time() - iteration_start)
            self.log_iteration(iteration, residual_norm)

        self.iterations_performed = iteration
        self.final_residual = residual_norm
        self.converged = self.check_convergence(residual_norm, self.initial_residual, iteration)

        return x, self.get_convergence_info()


class BiCGStabSolver(BaseSolver):
    """
    Right-preconditioned BiCGStab on space-time vectors.

    The space-time operator is nonsymmetric, so the Krylov coarse solver is
    BiCGStab rather than CG.
    """

    def __init__(
        self,
        preconditioner: 'SlicePreconditioner',
        max_iterations: int = 100,
        tolerance_rel: float = 1e-5,
        tolerance_abs: float = 1e-5,
        min_iterations: int = 1,
        verbose: bool = False
    ):
        super().__init__(max_iterations, tolerance_rel, tolerance_abs, min_iterations,
                         verbose, f"BiCGStab[{preconditioner.name}]")
        self.preconditioner = preconditioner
        self.assembler = DefectAssembler()

    def setup(self, descriptor: 'SpaceTimeDescriptor') -> None:
        self.preconditioner.setup(descriptor)

    def _precondition(self, descriptor: 'SpaceTimeDescriptor', vector: TimeSliceStore) -> TimeSliceStore:
        result = vector.copy()
        self.preconditioner.apply(descriptor, result)
        return result

    def solve(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: TimeSliceStore,
        x: TimeSliceStore
    ) -> Tuple[TimeSliceStore, Dict[str, Any]]:
        self.reset()

        r = TimeSliceStore(x.size, x.steps)
        residual_norm = self.assembler.residual(descriptor, rhs, x, r)
        self.initial_residual = residual_norm

        r_hat = r.copy()
        p = TimeSliceStore(x.size, x.steps)
        v = TimeSliceStore(x.size, x.steps)
        t = TimeSliceStore(x.size, x.steps)
        rho, alpha, omega = 1.0, 1.0, 1.0

        iteration = 0
        while self.continue_iterating(residual_norm, self.initial_residual, iteration):
            iteration_start = time.time()

            rho_new = r_hat.scalar_product(r)
            if rho_new == 0.0:
                logger.warning(f"{self.name} breakdown (rho = 0) in iteration {iteration + 1}")
                break

            beta = (rho_new / rho) * (alpha / omega)
            p.axpy(v, -omega, 1.0)
            p.axpy(r, 1.0, beta)

            p_hat = self._precondition(descriptor, p)
            self.assembler.apply(descriptor, p_hat, v)
            denominator = r_hat.scalar_product(v)
            if denominator == 0.0:
                logger.warning(f"{self.name} breakdown (<r_hat, v> = 0) in iteration {iteration + 1}")
                break
            alpha = rho_new / denominator

            # r becomes s = r - alpha*v
            r.axpy(v, -alpha, 1.0)
            x.axpy(p_hat, alpha, 1.0)

            s_norm = r.norm(NormType.L2)
            if self.is_converged(s_norm, self.initial_residual):
                residual_norm = s_norm
            else:
                s_hat = self._precondition(descriptor, r)
                self.assembler.apply(descriptor, s_hat, t)
                tt = t.scalar_product(t)
                omega = t.scalar_product(r) / tt if tt > 0.0 else 0.0
                x.axpy(s_hat, omega, 1.0)
                r.axpy(t, -omega, 1.0)
                residual_norm = r.norm(NormType.L2)
                if omega == 0.0:
                    logger.warning(f"{self.name} breakdown (omega = 0) in iteration {iteration + 1}")
                    iteration += 1
                    break

            rho = rho_new
            iteration += 1
            self.history.record_iteration(residual_norm, time.time() - iteration_start)
            self.log_iteration(iteration, residual_norm)

        self.iterations_performed = iteration
        self.final_residual = residual_norm
        self.converged = self.check_convergence(residual_norm, self.initial_residual, iteration)

        return x, self.get_convergence_info()


class DirectSolver(BaseSolver):
    """
    Sparse LU solve of the assembled space-time matrix.

    Meant for small coarse problems. The factorization is reused between
    calls unless the operator is nonlinear.
    """

    def __init__(self, verbose: bool = False):
        super().__init__(max_iterations=1, min_iterations=1, verbose=verbose, name="Direct")
        self.assembler = DefectAssembler()
        self._factorization = None

    def setup(self, descriptor: 'SpaceTimeDescriptor') -> None:
        self._factorization = None if descriptor.nonlinear else self._factorize(descriptor)

    def _factorize(self, descriptor: 'SpaceTimeDescriptor'):
        matrix = assemble_global_matrix(descriptor).tocsc()
        try:
            return splu(matrix)
        except RuntimeError as e:
            raise CollaboratorError(f"Direct space-time solve failed: {e}") from e

    def solve(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: TimeSliceStore,
        x: TimeSliceStore
    ) -> Tuple[TimeSliceStore, Dict[str, Any]]:
        self.reset()
        start = time.time()

        defect = TimeSliceStore(x.size, x.steps)
        self.initial_residual = self.assembler.residual(descriptor, rhs, x, defect)

        factorization = self._factorization
        if factorization is None:
            factorization = self._factorize(descriptor)
        defect.from_dense(factorization.solve(defect.to_dense()))
        x.axpy(defect, 1.0, 1.0)

        residual_norm = self.assembler.residual(descriptor, rhs, x, defect)
        self.history.record_iteration(residual_norm, time.time() - start)
        self.iterations_performed = 1
        self.final_residual = residual_norm
        self.converged = True
        logger.debug(f"{self.name} solve: residual {self.initial_residual:.2e} -> {residual_norm:.2e}")

        return x, self.get_convergence_info()
