"""Matrix-free space-time operator and right-hand side assembly."""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING
import logging

import numpy as np
import scipy.sparse as sp

from .base import BoundaryKind
from .stencil import setup_weights, neighbour_offsets
from ..core.exceptions import IncompatibleStoresError, SizeMismatchError
from ..core.slice_store import NormType

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..core.slice_store import TimeSliceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssemblyOptions:
    """
    Switches of the defect assembly.

    Attributes:
        use_evaluation_point: Linearize about the descriptor's evaluation
            point if it has one (otherwise about the vector being applied)
        implement_bc: Implement boundary conditions into every slice
    """
    use_evaluation_point: bool = True
    implement_bc: bool = True


def check_store(descriptor: 'SpaceTimeDescriptor', store: 'TimeSliceStore', name: str = "store") -> None:
    """Raise IncompatibleStoresError unless ``store`` matches the descriptor."""
    if store.steps != descriptor.steps or store.size != descriptor.slice_size:
        raise IncompatibleStoresError(
            f"{name} ({store.size}, {store.steps}) does not match descriptor "
            f"({descriptor.slice_size}, {descriptor.steps})"
        )


class DefectAssembler:
    """
    Applies the space-time operator slice by slice.

    The full operator is never formed; every slice delegates the three
    stencil blocks to the spatial level.
    """

    def __init__(self, options: Optional[AssemblyOptions] = None):
        self.options = options if options is not None else AssemblyOptions()

    def _evaluation_slice(
        self,
        descriptor: 'SpaceTimeDescriptor',
        x: 'TimeSliceStore',
        index: int,
        options: AssemblyOptions
    ) -> np.ndarray:
        point = descriptor.evaluation_point
        if options.use_evaluation_point and point is not None:
            return point.get(index)
        return x.get(index)

    def accumulate(
        self,
        descriptor: 'SpaceTimeDescriptor',
        step: int,
        x: 'TimeSliceStore',
        accumulator: np.ndarray,
        scale: float = 1.0,
        options: Optional[AssemblyOptions] = None
    ) -> None:
        """
        Add ``scale * (A x)_step`` to ``accumulator``.

        The nonlinearity of every block is evaluated at the slice the block
        acts on, i.e. at ``step + offset``.
        """
        options = options or self.options
        level = descriptor.level
        context = descriptor.context(step)

        for offset in neighbour_offsets(descriptor, step):
            weights = setup_weights(descriptor, step, offset)
            if weights.is_zero():
                continue
            neighbour = step + offset
            if x.is_zero(neighbour):
                continue
            evaluation = self._evaluation_slice(descriptor, x, neighbour, options)
            level.apply_local_block(
                weights, x.get(neighbour), evaluation, accumulator, context, scale
            )

    def filter_slice(
        self,
        descriptor: 'SpaceTimeDescriptor',
        step: int,
        vector: np.ndarray,
        implement_bc: bool = True
    ) -> None:
        """Implement defect boundary conditions and the initial condition into one slice."""
        if implement_bc:
            descriptor.level.apply_boundary_conditions(
                vector, descriptor.context(step), BoundaryKind.DEFECT
            )
        if step == 0:
            layout = descriptor.level.layout
            layout.clear(vector, layout.primal)

    def filter_defect(self, descriptor: 'SpaceTimeDescriptor', defect: 'TimeSliceStore') -> None:
        """Apply ``filter_slice`` to every slice of ``defect``."""
        check_store(descriptor, defect, "defect")
        for step in range(descriptor.num_slices):
            if defect.is_zero(step):
                continue
            vector = defect.get(step)
            self.filter_slice(descriptor, step, vector, self.options.implement_bc)
            defect.set(step, vector)

    def apply(
        self,
        descriptor: 'SpaceTimeDescriptor',
        x: 'TimeSliceStore',
        out: 'TimeSliceStore',
        cx: float = 1.0,
        cy: float = 0.0,
        options: Optional[AssemblyOptions] = None
    ) -> float:
        """
        Compute ``out <- cx*A*x + cy*out``.

        Results are written one slice late, so ``out`` may be the same store
        as ``x``.

        Args:
            descriptor: Space-time level
            x: Input vector
            out: Output vector
            cx: Weight of the operator application
            cy: Weight of the previous content of ``out``
            options: Assembly switches, defaults to the assembler's options

        Returns:
            L2 norm of ``out``
        """
        options = options or self.options
        check_store(descriptor, x, "x")
        check_store(descriptor, out, "out")

        pending = None
        for step in range(descriptor.num_slices):
            if cy != 0.0:
                accumulator = cy * out.get(step)
            else:
                accumulator = np.zeros(descriptor.slice_size)

            self.accumulate(descriptor, step, x, accumulator, cx, options)
            self.filter_slice(descriptor, step, accumulator, options.implement_bc)

            if pending is not None:
                out.set(step - 1, pending)
            pending = accumulator

        out.set(descriptor.steps, pending)
        return out.norm(NormType.L2)

    def residual(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: 'TimeSliceStore',
        x: 'TimeSliceStore',
        out: 'TimeSliceStore',
        options: Optional[AssemblyOptions] = None
    ) -> float:
        """
        Compute the defect ``out <- rhs - A*x``.

        Returns:
            L2 norm of the defect
        """
        if out is x:
            raise ValueError("Defect output must not be the solution store")
        check_store(descriptor, rhs, "rhs")
        out.copy_from(rhs)
        norm = self.apply(descriptor, x, out, cx=-1.0, cy=1.0, options=options)
        logger.debug(f"Space-time defect norm: {norm:.6e}")
        return norm

    def slice_residual(
        self,
        descriptor: 'SpaceTimeDescriptor',
        step: int,
        rhs: np.ndarray,
        x: 'TimeSliceStore',
        options: Optional[AssemblyOptions] = None
    ) -> np.ndarray:
        """Defect ``rhs - (A x)_step`` of a single slice."""
        options = options or self.options
        residual = np.array(rhs, dtype=np.float64, copy=True)
        self.accumulate(descriptor, step, x, residual, -1.0, options)
        self.filter_slice(descriptor, step, residual, options.implement_bc)
        return residual


class RHSAssembler:
    """Builds the right-hand side of the space-time system from per-step forcing."""

    def _forcing(self, descriptor: 'SpaceTimeDescriptor', step: int) -> np.ndarray:
        vector = np.asarray(descriptor.level.forcing(descriptor.context(step)), dtype=np.float64)
        if vector.shape != (descriptor.slice_size,):
            raise SizeMismatchError(
                f"Forcing of step {step} has shape {vector.shape}, "
                f"expected ({descriptor.slice_size},)"
            )
        return vector

    @staticmethod
    def _blend(
        vector: np.ndarray,
        layout,
        first: np.ndarray,
        second: np.ndarray,
        weight_first: float,
        state_names,
        constraint_names,
        dt: float
    ) -> None:
        """Write ``dt*(w*first + (1-w)*second)`` into state blocks, without ``dt`` into constraints."""
        for name in state_names:
            start, stop = layout.blocks[name]
            vector[start:stop] = dt * (weight_first * first[start:stop]
                                       + (1.0 - weight_first) * second[start:stop])
        for name in constraint_names:
            start, stop = layout.blocks[name]
            vector[start:stop] = (weight_first * first[start:stop]
                                  + (1.0 - weight_first) * second[start:stop])

    def build(
        self,
        descriptor: 'SpaceTimeDescriptor',
        out: 'TimeSliceStore',
        implement_bc: bool = True
    ) -> 'TimeSliceStore':
        """
        Assemble the right-hand side into ``out``.

        Args:
            descriptor: Space-time level
            out: Target store
            implement_bc: Implement boundary values into every slice

        Returns:
            ``out``
        """
        check_store(descriptor, out, "rhs")
        level = descriptor.level
        layout = level.layout
        theta, dt, steps = descriptor.theta, descriptor.dt, descriptor.steps

        previous = None
        current = self._forcing(descriptor, 0)
        for step in range(descriptor.num_slices):
            following = self._forcing(descriptor, step + 1) if step < steps else None
            vector = np.zeros(descriptor.slice_size)

            if step == 0:
                for name in layout.primal:
                    start, stop = layout.blocks[name]
                    vector[start:stop] = current[start:stop]
            else:
                self._blend(vector, layout, current, previous, theta,
                            layout.primal_states, layout.primal_constraints, dt)

            if step < steps:
                self._blend(vector, layout, current, following, theta,
                            layout.dual_states, layout.dual_constraints, dt)
            else:
                for name in layout.dual:
                    start, stop = layout.blocks[name]
                    vector[start:stop] = current[start:stop]
                layout.scale(vector, layout.dual_states, descriptor.gamma)

            if implement_bc:
                level.apply_boundary_conditions(vector, descriptor.context(step), BoundaryKind.RHS)

            out.set(step, vector)
            previous, current = current, following

        logger.debug(f"Assembled space-time RHS on {descriptor}")
        return out

    def implement_initial_condition(
        self,
        descriptor: 'SpaceTimeDescriptor',
        x0: 'TimeSliceStore',
        rhs: 'TimeSliceStore'
    ) -> None:
        """Copy the primal blocks of ``x0[0]`` into ``rhs[0]``."""
        check_store(descriptor, x0, "x0")
        check_store(descriptor, rhs, "rhs")
        primal = descriptor.level.layout.primal_indices
        vector = rhs.get(0)
        vector[primal] = x0.get(0)[primal]
        rhs.set(0, vector)


def assemble_global_matrix(descriptor: 'SpaceTimeDescriptor') -> sp.csr_matrix:
    """
    Assemble the full space-time matrix as one sparse matrix.

    Only meant for small problems (direct solves, debugging). Dirichlet rows
    are filtered and the primal rows of slice 0 become identity rows.
    """
    level = descriptor.level
    layout = level.layout
    num_slices = descriptor.num_slices
    point = descriptor.evaluation_point
    blocks = [[None] * num_slices for _ in range(num_slices)]

    for step in range(num_slices):
        context = descriptor.context(step)
        for offset in neighbour_offsets(descriptor, step):
            neighbour = step + offset
            weights = setup_weights(descriptor, step, offset)
            if point is not None:
                evaluation = point.get(neighbour)
            else:
                evaluation = np.zeros(descriptor.slice_size)
            matrix = level.assemble_local_block(weights, evaluation, context)
            matrix = sp.lil_matrix(level.filter_matrix(matrix, diagonal=(offset == 0)))
            if step == 0:
                primal = layout.primal_indices
                matrix[primal, :] = 0.0
                if offset == 0:
                    matrix[primal, primal] = 1.0
            blocks[step][neighbour] = matrix.tocsr()

    return sp.bmat(blocks, format="csr")
