"""Description of a space-time discretization level."""

from dataclasses import dataclass, field, replace
from typing import Optional, TYPE_CHECKING
import logging

if TYPE_CHECKING:
    from .slice_store import TimeSliceStore
    from ..operators.base import SpatialLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeContext:
    """Time step index and time value handed to the spatial collaborators."""
    step: int
    time: float


@dataclass(frozen=True)
class CouplingConstants:
    """
    Scaling of the primal/dual coupling terms of the stencil.

    All factors default to 1.0, which is the coupled optimality system.
    Setting a factor to 0.0 decouples the corresponding term.
    """
    primal_dual: float = 1.0
    dual_primal: float = 1.0
    terminal: float = 1.0


@dataclass
class SpaceTimeDescriptor:
    """
    Time grid and model parameters of one space-time level.

    Attributes:
        level: Spatial collaborator building the local operators
        steps: Number of time steps ``T``
        t0: Start time
        t_max: End time
        theta: Parameter of the one-step theta scheme (1 = implicit Euler,
            0.5 = Crank-Nicolson)
        alpha: Control cost weight, must be nonzero
        gamma: Terminal cost weight, zero disables the terminal cost
        nonlinear: Whether the convection terms are active
        coupling: Coupling constants of the primal/dual system
        evaluation_point: Optional fixed linearization point for the
            nonlinear operator
    """
    level: 'SpatialLevel'
    steps: int
    t0: float = 0.0
    t_max: float = 1.0
    theta: float = 1.0
    alpha: float = 1.0
    gamma: float = 0.0
    nonlinear: bool = False
    coupling: CouplingConstants = field(default_factory=CouplingConstants)
    evaluation_point: Optional['TimeSliceStore'] = None

    def __post_init__(self):
        if self.steps < 1:
            raise ValueError(f"Need at least one time step, got {self.steps}")
        if self.t_max <= self.t0:
            raise ValueError(f"Invalid time interval [{self.t0}, {self.t_max}]")
        if not 0.0 <= self.theta <= 1.0:
            raise ValueError(f"Theta must lie in [0, 1], got {self.theta}")
        if self.alpha == 0.0:
            raise ValueError("Control cost weight alpha must be nonzero")
        if self.gamma < 0.0:
            raise ValueError(f"Terminal cost weight gamma must be non-negative, got {self.gamma}")

    @property
    def dt(self) -> float:
        """Length of one time step."""
        return (self.t_max - self.t0) / self.steps

    @property
    def num_slices(self) -> int:
        return self.steps + 1

    @property
    def slice_size(self) -> int:
        """Length of one slice vector as defined by the spatial level."""
        return self.level.layout.size

    def time_at(self, step: int) -> float:
        return self.t0 + step * self.dt

    def context(self, step: int) -> TimeContext:
        """Time context of slice ``step``."""
        return TimeContext(step=step, time=self.time_at(step))

    def with_level(self, level: 'SpatialLevel', steps: int) -> 'SpaceTimeDescriptor':
        """Copy of this descriptor on another spatial level and time grid."""
        return replace(self, level=level, steps=steps, evaluation_point=None)

    def coarsen(self, level: Optional['SpatialLevel'] = None) -> 'SpaceTimeDescriptor':
        """
        Descriptor with half the number of time steps.

        Args:
            level: Spatial level of the coarse descriptor, defaults to this one

        Returns:
            Coarse descriptor
        """
        if self.steps % 2 != 0:
            raise ValueError(f"Cannot coarsen {self.steps} time steps (must be even)")
        return self.with_level(level if level is not None else self.level, self.steps // 2)

    def refine(self, level: Optional['SpatialLevel'] = None) -> 'SpaceTimeDescriptor':
        """Descriptor with twice the number of time steps."""
        return self.with_level(level if level is not None else self.level, self.steps * 2)

    def __str__(self) -> str:
        return (f"SpaceTimeDescriptor(T={self.steps}, dt={self.dt:.4g}, theta={self.theta}, "
                f"alpha={self.alpha}, gamma={self.gamma}, N={self.slice_size})")
