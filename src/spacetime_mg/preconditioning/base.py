"""Base class for space-time slice preconditioners."""

from abc import ABC, abstractmethod
from typing import Dict, TYPE_CHECKING
import logging

import numpy as np

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..core.slice_store import TimeSliceStore
    from ..operators.base import SpatialPreconditioner

logger = logging.getLogger(__name__)


class SlicePreconditioner(ABC):
    """
    Approximate inverse of the space-time operator built from per-slice solves.

    ``apply`` works in place on a defect and leaves the preconditioned defect
    (the correction) in the same store.
    """

    components = ("full",)

    def __init__(self, omega: float = 1.0, name: str = "SlicePreconditioner"):
        """
        Initialize the preconditioner.

        Args:
            omega: Damping factor of the correction
            name: Human-readable name
        """
        self.omega = omega
        self.name = name
        self.setup_completed = False
        self.spatial: Dict[str, 'SpatialPreconditioner'] = {}

        if not 0 < omega <= 2:
            logger.warning(f"Damping parameter {omega} may cause instability")

    def setup(self, descriptor: 'SpaceTimeDescriptor') -> None:
        """Create the spatial preconditioners of the descriptor's level."""
        self.spatial = {component: descriptor.level.create_preconditioner(component)
                        for component in self.components}
        self.setup_completed = True
        logger.debug(f"Setup {self.name} on {descriptor}")

    def _check_setup(self) -> None:
        if not self.setup_completed:
            raise RuntimeError(f"{self.name} not setup")

    @staticmethod
    def evaluation_slice(descriptor: 'SpaceTimeDescriptor', index: int) -> np.ndarray:
        """Linearization point of slice ``index`` (zero if the descriptor has none)."""
        point = descriptor.evaluation_point
        if point is None:
            return np.zeros(descriptor.slice_size)
        return point.get(index)

    @abstractmethod
    def apply(self, descriptor: 'SpaceTimeDescriptor', defect: 'TimeSliceStore') -> None:
        """
        Replace ``defect`` by the preconditioned defect.

        Args:
            descriptor: Space-time level the defect lives on
            defect: Defect, overwritten with the correction
        """
        pass

    def is_setup(self) -> bool:
        return self.setup_completed

    def reset(self) -> None:
        """Drop the spatial preconditioners."""
        self.spatial = {}
        self.setup_completed = False
        logger.debug(f"Reset {self.name} preconditioner")

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', omega={self.omega})"
