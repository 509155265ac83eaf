"""Block Jacobi and block Gauss-Seidel preconditioners in time."""

from typing import Optional, TYPE_CHECKING
import logging

import numpy as np

from .base import SlicePreconditioner
from ..core.slice_store import TimeSliceStore
from ..operators.spacetime import AssemblyOptions, DefectAssembler, check_store
from ..operators.stencil import setup_weights

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor

logger = logging.getLogger(__name__)


class BlockJacobiPreconditioner(SlicePreconditioner):
    """
    Solves with the diagonal block of every slice independently.

    No information crosses slices, so every slice could be handled in
    parallel.
    """

    components = ("full",)

    def __init__(self, omega: float = 1.0):
        super().__init__(omega, "BlockJacobi")

    def apply(self, descriptor: 'SpaceTimeDescriptor', defect: TimeSliceStore) -> None:
        self._check_setup()
        check_store(descriptor, defect, "defect")
        spatial = self.spatial["full"]

        for step in range(descriptor.num_slices):
            if defect.is_zero(step):
                continue
            weights = setup_weights(descriptor, step, 0)
            correction = spatial.apply(
                weights, defect.get(step), self.evaluation_slice(descriptor, step),
                descriptor.context(step)
            )
            defect.set(step, self.omega * correction)


class ForwardBackwardGSPreconditioner(SlicePreconditioner):
    """
    Block Gauss-Seidel with a forward sweep for the primal and a backward sweep for the dual part.

    The primal state propagates forward in time and the dual state backward,
    so each sweep follows the causality of the component it updates. Both
    sweeps compute the local residual against the current iterate, i.e. with
    the already updated neighbour slice.
    """

    components = ("primal", "dual")

    def __init__(self, omega: float = 1.0, options: Optional[AssemblyOptions] = None):
        super().__init__(omega, "ForwardBackwardGS")
        self.assembler = DefectAssembler(options)

    def _sweep(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: TimeSliceStore,
        correction: TimeSliceStore,
        component: str,
        steps
    ) -> None:
        spatial = self.spatial[component]
        for step in steps:
            residual = self.assembler.slice_residual(descriptor, step, rhs.get(step), correction)
            if not np.any(residual):
                continue
            weights = setup_weights(descriptor, step, 0)
            update = spatial.apply(
                weights, residual, self.evaluation_slice(descriptor, step),
                descriptor.context(step)
            )
            correction.set(step, correction.get(step) + self.omega * update)

    def apply(self, descriptor: 'SpaceTimeDescriptor', defect: TimeSliceStore) -> None:
        self._check_setup()
        check_store(descriptor, defect, "defect")

        rhs = defect.copy()
        correction = TimeSliceStore(defect.size, defect.steps)
        self._sweep(descriptor, rhs, correction, "primal", range(descriptor.num_slices))
        self._sweep(descriptor, rhs, correction, "dual", reversed(range(descriptor.num_slices)))

        defect.copy_from(correction)
