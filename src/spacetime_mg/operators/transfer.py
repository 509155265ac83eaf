"""Grid transfer between space-time levels."""

from typing import Optional, TYPE_CHECKING
import logging

import numpy as np

from .base import IdentityTransfer
from ..core.exceptions import IncompatibleStoresError
from ..core.slice_store import TimeSliceStore

if TYPE_CHECKING:
    from .base import SpatialTransfer, SpatialLevel

logger = logging.getLogger(__name__)


class ProjectionOperator:
    """
    Transfers stores between a fine level with ``2T`` and a coarse level with ``T`` steps.

    In time, defects are restricted with the transpose of linear interpolation
    (weights 1/2, 1, 1/2) and corrections are prolongated by linear
    interpolation (``prolongation="linear"``) or by repeating the left coarse
    slice (``"constant"``). Each slice is additionally moved between spatial
    levels by a ``SpatialTransfer``.
    """

    def __init__(
        self,
        spatial_transfer: 'SpatialTransfer',
        restriction: str = "full_weighting",
        prolongation: str = "linear"
    ):
        """
        Initialize the projection.

        Args:
            spatial_transfer: Slice transfer between the fine and coarse spatial level
            restriction: Time restriction method ('injection', 'full_weighting')
            prolongation: Time prolongation method ('constant', 'linear')
        """
        if restriction not in ['injection', 'full_weighting']:
            raise ValueError(f"Unknown restriction method: {restriction}")
        if prolongation not in ['constant', 'linear']:
            raise ValueError(f"Unknown prolongation method: {prolongation}")

        self.spatial_transfer = spatial_transfer
        self.restriction = restriction
        self.prolongation = prolongation
        self.name = f"Projection({restriction}/{prolongation})"

    @classmethod
    def in_time_only(cls, level: 'SpatialLevel', **kwargs) -> 'ProjectionOperator':
        """Projection between two levels sharing the spatial discretization."""
        return cls(IdentityTransfer(level), **kwargs)

    @property
    def fine_size(self) -> int:
        return self.spatial_transfer.fine.layout.size

    @property
    def coarse_size(self) -> int:
        return self.spatial_transfer.coarse.layout.size

    def can_apply(self, fine: TimeSliceStore, coarse: TimeSliceStore) -> bool:
        """Check that the two stores form a fine/coarse pair of this projection."""
        return (fine.steps == 2 * coarse.steps and
                fine.size == self.fine_size and
                coarse.size == self.coarse_size)

    def _check(self, fine: TimeSliceStore, coarse: TimeSliceStore) -> None:
        if not self.can_apply(fine, coarse):
            raise IncompatibleStoresError(
                f"Cannot project between fine ({fine.size}, {fine.steps}) "
                f"and coarse ({coarse.size}, {coarse.steps})"
            )

    def _new_coarse(self, fine: TimeSliceStore) -> TimeSliceStore:
        if fine.steps % 2 != 0:
            raise IncompatibleStoresError(f"Fine store has an odd number of steps ({fine.steps})")
        return TimeSliceStore(self.coarse_size, fine.steps // 2)

    def restrict(self, fine: TimeSliceStore, coarse: Optional[TimeSliceStore] = None) -> TimeSliceStore:
        """
        Restrict a defect to the coarse level.

        Args:
            fine: Fine-level defect
            coarse: Optional target store, created if omitted

        Returns:
            Coarse-level defect
        """
        if coarse is None:
            coarse = self._new_coarse(fine)
        self._check(fine, coarse)

        for index in range(coarse.num_slices):
            centre = 2 * index
            vector = fine.get(centre)
            if self.restriction == "full_weighting":
                if centre > 0:
                    vector += 0.5 * fine.get(centre - 1)
                if centre < fine.steps:
                    vector += 0.5 * fine.get(centre + 1)
            coarse.set(index, self.spatial_transfer.restrict(vector))

        logger.debug(f"Restricted {fine.steps} -> {coarse.steps} steps ({self.restriction})")
        return coarse

    def prolong(self, coarse: TimeSliceStore, fine: Optional[TimeSliceStore] = None) -> TimeSliceStore:
        """
        Prolongate a correction to the fine level.

        Args:
            coarse: Coarse-level correction
            fine: Optional target store, created if omitted

        Returns:
            Fine-level correction
        """
        if fine is None:
            fine = TimeSliceStore(self.fine_size, 2 * coarse.steps)
        self._check(fine, coarse)

        spatial = [self.spatial_transfer.prolong(coarse.get(index))
                   for index in range(coarse.num_slices)]
        for index in range(coarse.num_slices):
            fine.set(2 * index, spatial[index])
            if index < coarse.steps:
                if self.prolongation == "linear":
                    fine.set(2 * index + 1, 0.5 * (spatial[index] + spatial[index + 1]))
                else:
                    fine.set(2 * index + 1, spatial[index])

        logger.debug(f"Prolongated {coarse.steps} -> {fine.steps} steps ({self.prolongation})")
        return fine

    def interpolate_solution(
        self,
        fine: TimeSliceStore,
        coarse: Optional[TimeSliceStore] = None
    ) -> TimeSliceStore:
        """Transfer a solution (e.g. an evaluation point) to the coarse level by injection in time."""
        if coarse is None:
            coarse = self._new_coarse(fine)
        self._check(fine, coarse)

        for index in range(coarse.num_slices):
            if fine.is_zero(2 * index):
                coarse.set(index, np.zeros(self.coarse_size))
            else:
                coarse.set(index, self.spatial_transfer.interpolate(fine.get(2 * index)))
        return coarse

    def __str__(self) -> str:
        return self.name
