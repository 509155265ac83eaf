"""
Reference spatial level: 1D heat / Burgers optimal control by finite differences.

The state ``y`` solves ``y_t - nu*y_xx + nl*y*y_x = f + u`` on ``[0, 1]`` with
Dirichlet boundary values, the control is ``u = -lambda/alpha`` and the dual
state solves the adjoint equation backwards in time with the tracking term
``y - z``. Nodes include both boundary points; the mass matrix is the
identity (lumped nodal finite differences).
"""

from typing import Dict, List, Tuple, TYPE_CHECKING
import logging

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import splu

from ..core.exceptions import CollaboratorError
from ..core.slice_store import TimeSliceStore
from ..operators.base import (
    BoundaryKind, IdentityTransfer, SliceLayout, SpatialLevel,
    SpatialPreconditioner, SpatialTransfer
)

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor, TimeContext
    from ..operators.stencil import StencilWeights

logger = logging.getLogger(__name__)


class OptimalControlProblem:
    """
    Data of the control problem, evaluated at points in space and time.

    The default implementation returns the constants passed to the
    constructor; subclasses override the methods for space/time dependent data.
    """

    def __init__(
        self,
        forcing: float = 0.0,
        target: float = 0.0,
        boundary: float = 0.0,
        initial: float = 0.0
    ):
        self.forcing_value = forcing
        self.target_value = target
        self.boundary_value_constant = boundary
        self.initial_value = initial

    def forcing(self, x: np.ndarray, t: float) -> np.ndarray:
        """Right-hand side ``f`` of the state equation."""
        return np.full_like(x, self.forcing_value)

    def target(self, x: np.ndarray, t: float) -> np.ndarray:
        """Desired state ``z``."""
        return np.full_like(x, self.target_value)

    def boundary_value(self, x: np.ndarray, t: float) -> np.ndarray:
        """Dirichlet values of the state at the boundary points ``x``."""
        return np.full_like(x, self.boundary_value_constant)

    def initial_state(self, x: np.ndarray) -> np.ndarray:
        """State at the start time."""
        return np.full_like(x, self.initial_value)


class Burgers1DLevel(SpatialLevel):
    """
    Finite-difference discretization of the optimality system on one 1D grid.

    The level has no constraint blocks, so the gradient, divergence and
    constraint identity weights have nothing to act on.
    """

    def __init__(
        self,
        nodes: int,
        problem: OptimalControlProblem,
        viscosity: float = 1.0
    ):
        """
        Create the level.

        Args:
            nodes: Number of grid nodes including both boundary nodes
            problem: Problem data
            viscosity: Diffusion coefficient ``nu``
        """
        if nodes < 3:
            raise ValueError("Grid must have at least 3 nodes")
        if viscosity <= 0:
            raise ValueError(f"Viscosity must be positive, got {viscosity}")

        super().__init__(f"Burgers1D[{nodes}]")
        self.nodes = nodes
        self.problem = problem
        self.viscosity = viscosity
        self.h = 1.0 / (nodes - 1)
        self.x = np.linspace(0.0, 1.0, nodes)

        self._layout = SliceLayout(
            size=2 * nodes,
            blocks={"y": (0, nodes), "lambda": (nodes, 2 * nodes)},
            primal=("y",),
            dual=("lambda",),
        )
        self._boundary_nodes = np.array([0, nodes - 1])
        self._boundary_rows = np.concatenate([self._boundary_nodes, nodes + self._boundary_nodes])

        self._identity = sp.identity(nodes, format="csr")
        self._laplacian = self._build_laplacian()

        logger.info(f"Created {self.name}: h={self.h:.6f}, nu={viscosity}")

    @property
    def layout(self) -> SliceLayout:
        return self._layout

    def _build_laplacian(self) -> sp.csr_matrix:
        """``-nu * d^2/dx^2`` on interior rows, zero rows at the boundary."""
        n = self.nodes
        main = np.full(n, 2.0)
        off = np.full(n - 1, -1.0)
        matrix = sp.diags([off, main, off], [-1, 0, 1], format="lil")
        matrix[0, :] = 0.0
        matrix[n - 1, :] = 0.0
        return (self.viscosity / self.h ** 2) * matrix.tocsr()

    def _convection(self, velocity: np.ndarray) -> sp.csr_matrix:
        """Central difference of ``velocity * d/dx`` on interior rows."""
        n = self.nodes
        coeff = velocity[1:n - 1] / (2.0 * self.h)
        rows = np.arange(1, n - 1)
        data = np.concatenate([-coeff, coeff])
        cols = np.concatenate([rows - 1, rows + 1])
        return sp.csr_matrix((data, (np.concatenate([rows, rows]), cols)), shape=(n, n))

    def _velocity_gradient(self, velocity: np.ndarray) -> sp.csr_matrix:
        """Diagonal matrix of the central-difference derivative of ``velocity``."""
        gradient = np.zeros(self.nodes)
        gradient[1:-1] = (velocity[2:] - velocity[:-2]) / (2.0 * self.h)
        return sp.diags(gradient, format="csr")

    def assemble_local_block(
        self,
        weights: 'StencilWeights',
        evaluation: np.ndarray,
        context: 'TimeContext'
    ) -> sp.csr_matrix:
        identity, laplacian = self._identity, self._laplacian
        velocity = evaluation[:self.nodes]

        primal = ((weights.identity_primal + weights.mass_primal) * identity
                  + weights.diffusion_primal * laplacian)
        dual = ((weights.identity_dual + weights.mass_dual) * identity
                + weights.diffusion_dual * laplacian)

        if weights.convection_primal != 0.0:
            primal = primal + weights.convection_primal * self._convection(velocity)
        if weights.convection_dual != 0.0:
            dual = dual + weights.convection_dual * self._convection(velocity)
        if weights.newton_dual != 0.0:
            dual = dual + weights.newton_dual * self._velocity_gradient(velocity)

        return sp.bmat([
            [primal, weights.control_coupling * identity],
            [weights.dual_state_coupling * identity, dual],
        ], format="csr")

    def apply_boundary_conditions(
        self,
        vector: np.ndarray,
        context: 'TimeContext',
        kind: BoundaryKind
    ) -> None:
        if kind is BoundaryKind.DEFECT:
            vector[self._boundary_rows] = 0.0
            return
        boundary_x = self.x[self._boundary_nodes]
        vector[self._boundary_nodes] = self.problem.boundary_value(boundary_x, context.time)
        vector[self.nodes + self._boundary_nodes] = 0.0

    def filter_matrix(self, matrix: sp.spmatrix, diagonal: bool) -> sp.csr_matrix:
        filtered = sp.lil_matrix(matrix)
        filtered[self._boundary_rows, :] = 0.0
        if diagonal:
            filtered[self._boundary_rows, self._boundary_rows] = 1.0
        return filtered.tocsr()

    def forcing(self, context: 'TimeContext') -> np.ndarray:
        vector = np.zeros(self.layout.size)
        vector[:self.nodes] = self.problem.forcing(self.x, context.time)
        vector[self.nodes:] = -self.problem.target(self.x, context.time)
        return vector

    def target(self, context: 'TimeContext') -> np.ndarray:
        vector = np.zeros(self.layout.size)
        vector[:self.nodes] = self.problem.target(self.x, context.time)
        return vector

    def inner(self, u: np.ndarray, v: np.ndarray, names) -> float:
        """Trapezoidal rule on every requested block."""
        weights = np.full(self.nodes, self.h)
        weights[[0, -1]] = 0.5 * self.h
        total = 0.0
        for name in names:
            start, stop = self.layout.blocks[name]
            total += float(np.sum(weights * u[start:stop] * v[start:stop]))
        return total

    def initial_vector(self, context: 'TimeContext') -> np.ndarray:
        """Initial state in the primal block, zero dual state, boundary values implemented."""
        vector = np.zeros(self.layout.size)
        vector[:self.nodes] = self.problem.initial_state(self.x)
        self.apply_boundary_conditions(vector, context, BoundaryKind.SOLUTION)
        return vector

    def create_preconditioner(self, component: str = "full") -> SpatialPreconditioner:
        return DirectSpatialPreconditioner(self, component)


class DirectSpatialPreconditioner(SpatialPreconditioner):
    """
    Exact solve with the diagonal block, restricted to one component.

    Factorizations are cached per weight set unless the block depends on the
    linearization point.
    """

    COMPONENTS = ("full", "primal", "dual")

    def __init__(self, level: Burgers1DLevel, component: str = "full"):
        if component not in self.COMPONENTS:
            raise ValueError(f"Unknown component: {component}")
        self.level = level
        self.component = component
        layout = level.layout
        if component == "primal":
            self.indices = layout.primal_indices
        elif component == "dual":
            self.indices = layout.dual_indices
        else:
            self.indices = np.arange(layout.size)
        self._factorizations: Dict['StencilWeights', object] = {}

    def _factorize(self, weights: 'StencilWeights', evaluation: np.ndarray, context: 'TimeContext'):
        matrix = self.level.assemble_local_block(weights, evaluation, context)
        matrix = self.level.filter_matrix(matrix, diagonal=True)
        block = matrix[self.indices, :][:, self.indices].tocsc()
        try:
            return splu(block)
        except RuntimeError as e:
            raise CollaboratorError(
                f"Local {self.component} solve failed at step {context.step}: {e}"
            ) from e

    def apply(
        self,
        weights: 'StencilWeights',
        residual: np.ndarray,
        evaluation: np.ndarray,
        context: 'TimeContext'
    ) -> np.ndarray:
        depends_on_state = (weights.convection_primal != 0.0 or
                            weights.convection_dual != 0.0 or
                            weights.newton_dual != 0.0)
        if depends_on_state:
            factorization = self._factorize(weights, evaluation, context)
        else:
            factorization = self._factorizations.get(weights)
            if factorization is None:
                factorization = self._factorize(weights, evaluation, context)
                self._factorizations[weights] = factorization

        solution = factorization.solve(residual[self.indices])
        if not np.all(np.isfinite(solution)):
            raise CollaboratorError(f"Local {self.component} solve diverged at step {context.step}")

        correction = np.zeros_like(residual)
        correction[self.indices] = solution
        return correction


class Burgers1DTransfer(SpatialTransfer):
    """Linear interpolation and full weighting between ``2n-1`` and ``n`` nodes."""

    def __init__(self, fine: Burgers1DLevel, coarse: Burgers1DLevel):
        if fine.nodes != 2 * coarse.nodes - 1:
            raise ValueError(f"Cannot transfer between {fine.nodes} and {coarse.nodes} nodes")
        super().__init__(fine, coarse)
        self.prolongation = self._build_prolongation(fine.nodes, coarse.nodes)
        restriction = sp.lil_matrix(0.5 * self.prolongation.T)
        # Boundary rows by injection
        restriction[0, :] = 0.0
        restriction[coarse.nodes - 1, :] = 0.0
        restriction[0, 0] = 1.0
        restriction[coarse.nodes - 1, fine.nodes - 1] = 1.0
        self.restriction = restriction.tocsr()

    @staticmethod
    def _build_prolongation(fine_nodes: int, coarse_nodes: int) -> sp.csr_matrix:
        rows, cols, data = [], [], []
        for j in range(coarse_nodes):
            rows.append(2 * j)
            cols.append(j)
            data.append(1.0)
            if j < coarse_nodes - 1:
                rows.extend([2 * j + 1, 2 * j + 1])
                cols.extend([j, j + 1])
                data.extend([0.5, 0.5])
        return sp.csr_matrix((data, (rows, cols)), shape=(fine_nodes, coarse_nodes))

    def _blockwise(self, vector: np.ndarray, matrix: sp.csr_matrix, size: int) -> np.ndarray:
        half = vector.shape[0] // 2
        result = np.empty(2 * size)
        result[:size] = matrix @ vector[:half]
        result[size:] = matrix @ vector[half:]
        return result

    def restrict(self, vector: np.ndarray) -> np.ndarray:
        return self._blockwise(vector, self.restriction, self.coarse.nodes)

    def prolong(self, vector: np.ndarray) -> np.ndarray:
        return self._blockwise(vector, self.prolongation, self.fine.nodes)

    def interpolate(self, vector: np.ndarray) -> np.ndarray:
        nodes = self.fine.nodes
        return np.concatenate([vector[:nodes:2], vector[nodes::2]])


def create_spatial_hierarchy(
    problem: OptimalControlProblem,
    coarse_nodes: int,
    num_levels: int,
    refine_space: bool = False,
    viscosity: float = 1.0
) -> Tuple[List[Burgers1DLevel], List[SpatialTransfer]]:
    """
    Build spatial levels ordered coarse to fine.

    Args:
        problem: Problem data shared by all levels
        coarse_nodes: Nodes of the coarsest grid
        num_levels: Number of levels
        refine_space: Refine the grid together with the time step; otherwise
            all levels share the same grid
        viscosity: Diffusion coefficient

    Returns:
        Tuple of (levels, transfers) where ``transfers[k]`` couples level
        ``k+1`` (fine) with level ``k`` (coarse)
    """
    if num_levels < 1:
        raise ValueError("Need at least one level")

    if not refine_space:
        level = Burgers1DLevel(coarse_nodes, problem, viscosity)
        return [level] * num_levels, [IdentityTransfer(level) for _ in range(num_levels - 1)]

    levels = [Burgers1DLevel(coarse_nodes, problem, viscosity)]
    transfers: List[SpatialTransfer] = []
    for _ in range(1, num_levels):
        fine = Burgers1DLevel(2 * levels[-1].nodes - 1, problem, viscosity)
        transfers.append(Burgers1DTransfer(fine, levels[-1]))
        levels.append(fine)
    return levels, transfers


def initial_guess(descriptor: 'SpaceTimeDescriptor') -> TimeSliceStore:
    """Store holding the initial state in every slice (boundary values implemented)."""
    level = descriptor.level
    store = TimeSliceStore(descriptor.slice_size, descriptor.steps)
    for step in range(descriptor.num_slices):
        store.set(step, level.initial_vector(descriptor.context(step)))
    return store
