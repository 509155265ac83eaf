"""Smoothers built from slice preconditioners."""

from typing import Optional, TYPE_CHECKING
import logging

from ..core.slice_store import TimeSliceStore
from ..operators.spacetime import DefectAssembler

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..preconditioning.base import SlicePreconditioner

logger = logging.getLogger(__name__)


class SliceSmoother:
    """
    Damped defect correction with a fixed number of sweeps.

    One sweep computes ``x <- x + omega * P^{-1} (b - A x)`` with the wrapped
    slice preconditioner ``P``.
    """

    def __init__(
        self,
        preconditioner: 'SlicePreconditioner',
        sweeps: int = 1,
        omega: float = 1.0,
        assembler: Optional[DefectAssembler] = None
    ):
        """
        Initialize the smoother.

        Args:
            preconditioner: Slice preconditioner applied to the defect
            sweeps: Number of sweeps per call
            omega: Damping factor
            assembler: Defect assembler, a default one if omitted
        """
        if sweeps < 0:
            raise ValueError(f"Number of sweeps must be non-negative, got {sweeps}")
        if not 0 < omega <= 2:
            logger.warning(f"Relaxation parameter {omega} may cause instability")

        self.preconditioner = preconditioner
        self.sweeps = sweeps
        self.omega = omega
        self.assembler = assembler if assembler is not None else DefectAssembler()
        self.name = f"Smoother[{preconditioner.name}]"

    def setup(self, descriptor: 'SpaceTimeDescriptor') -> None:
        self.preconditioner.setup(descriptor)

    def smooth(
        self,
        descriptor: 'SpaceTimeDescriptor',
        rhs: TimeSliceStore,
        x: TimeSliceStore,
        sweeps: Optional[int] = None
    ) -> TimeSliceStore:
        """
        Apply smoothing sweeps to ``x`` in place.

        Args:
            descriptor: Space-time level
            rhs: Right-hand side
            x: Current iterate, updated in place
            sweeps: Override of the configured number of sweeps

        Returns:
            ``x``
        """
        sweeps = self.sweeps if sweeps is None else sweeps
        defect = TimeSliceStore(x.size, x.steps)
        for sweep in range(sweeps):
            norm = self.assembler.residual(descriptor, rhs, x, defect)
            self.preconditioner.apply(descriptor, defect)
            x.axpy(defect, self.omega, 1.0)
            logger.debug(f"{self.name} sweep {sweep + 1}/{sweeps}: defect = {norm:.3e}")
        return x
