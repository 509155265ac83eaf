"""Block coefficients of the 3-point time stencil."""

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING
import logging

from ..core.exceptions import OutOfRangeError

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor

logger = logging.getLogger(__name__)

RELATIVE_POSITIONS = (-1, 0, 1)


@dataclass(frozen=True)
class StencilWeights:
    """
    Coefficients of one local block of the space-time operator.

    The ``*_primal`` weights parametrize the primal equation rows and the
    ``*_dual`` weights the dual equation rows. ``control_coupling`` multiplies
    the mass matrix acting on the dual state inside the primal equation,
    ``state_coupling`` the mass matrix acting on the primal state inside the
    dual equation. ``terminal_coupling`` is subtracted from ``state_coupling``
    and carries the terminal cost weight.
    """
    identity_primal: float = 0.0
    identity_dual: float = 0.0
    constraint_identity_primal: float = 0.0
    constraint_identity_dual: float = 0.0
    mass_primal: float = 0.0
    mass_dual: float = 0.0
    diffusion_primal: float = 0.0
    diffusion_dual: float = 0.0
    convection_primal: float = 0.0
    convection_dual: float = 0.0
    newton_primal: float = 0.0
    newton_dual: float = 0.0
    gradient_primal: float = 0.0
    gradient_dual: float = 0.0
    divergence_primal: float = 0.0
    divergence_dual: float = 0.0
    control_coupling: float = 0.0
    state_coupling: float = 0.0
    terminal_coupling: float = 0.0

    def is_zero(self) -> bool:
        """True if all coefficients vanish."""
        return all(getattr(self, f.name) == 0.0 for f in fields(self))

    @property
    def dual_state_coupling(self) -> float:
        """Total weight of the primal mass term in the dual equation."""
        return self.state_coupling - self.terminal_coupling


def _first_slice(descriptor: 'SpaceTimeDescriptor', offset: int, nonlinear: float) -> StencilWeights:
    theta, dt = descriptor.theta, descriptor.dt
    coupling = descriptor.coupling

    if offset == 0:
        # Primal rows carry the initial condition.
        return StencilWeights(
            identity_primal=1.0,
            constraint_identity_primal=1.0,
            mass_dual=1.0,
            diffusion_dual=theta * dt,
            convection_dual=-nonlinear * theta * dt,
            newton_dual=nonlinear * theta * dt,
            gradient_dual=dt,
            divergence_dual=1.0,
            state_coupling=-coupling.dual_primal * theta * dt,
        )
    return _right_neighbour(descriptor, nonlinear)


def _left_neighbour(descriptor: 'SpaceTimeDescriptor', nonlinear: float) -> StencilWeights:
    theta, dt = descriptor.theta, descriptor.dt
    return StencilWeights(
        mass_primal=-1.0,
        diffusion_primal=(1.0 - theta) * dt,
        convection_primal=nonlinear * (1.0 - theta) * dt,
        control_coupling=descriptor.coupling.primal_dual * (1.0 - theta) * dt / descriptor.alpha,
    )


def _right_neighbour(descriptor: 'SpaceTimeDescriptor', nonlinear: float) -> StencilWeights:
    theta, dt = descriptor.theta, descriptor.dt
    return StencilWeights(
        mass_dual=-1.0,
        diffusion_dual=(1.0 - theta) * dt,
        convection_dual=-nonlinear * (1.0 - theta) * dt,
        newton_dual=nonlinear * (1.0 - theta) * dt,
        state_coupling=-descriptor.coupling.dual_primal * (1.0 - theta) * dt,
    )


def _interior_diagonal(descriptor: 'SpaceTimeDescriptor', nonlinear: float) -> StencilWeights:
    theta, dt = descriptor.theta, descriptor.dt
    coupling = descriptor.coupling
    return StencilWeights(
        mass_primal=1.0,
        mass_dual=1.0,
        diffusion_primal=theta * dt,
        diffusion_dual=theta * dt,
        convection_primal=nonlinear * theta * dt,
        convection_dual=-nonlinear * theta * dt,
        newton_dual=nonlinear * theta * dt,
        gradient_primal=dt,
        gradient_dual=dt,
        divergence_primal=1.0,
        divergence_dual=1.0,
        control_coupling=coupling.primal_dual * theta * dt / descriptor.alpha,
        state_coupling=-coupling.dual_primal * theta * dt,
    )


def _terminal_diagonal(descriptor: 'SpaceTimeDescriptor', nonlinear: float) -> StencilWeights:
    theta, dt = descriptor.theta, descriptor.dt
    coupling = descriptor.coupling
    # Dual rows carry lambda(T) = gamma * (y(T) - z(T)).
    return StencilWeights(
        identity_dual=1.0 - coupling.dual_primal,
        constraint_identity_dual=1.0,
        mass_primal=1.0,
        mass_dual=1.0,
        diffusion_primal=theta * dt,
        convection_primal=nonlinear * theta * dt,
        gradient_primal=dt,
        divergence_primal=1.0,
        control_coupling=coupling.primal_dual * theta * dt / descriptor.alpha,
        terminal_coupling=coupling.dual_primal * coupling.terminal * descriptor.gamma,
    )


def setup_weights(descriptor: 'SpaceTimeDescriptor', step: int, offset: int) -> StencilWeights:
    """
    Coefficients of the block coupling slice ``step`` to slice ``step + offset``.

    Args:
        descriptor: Space-time level (read only)
        step: Slice index in ``[0, T]``
        offset: Relative position, -1 (left neighbour), 0 (diagonal) or
            +1 (right neighbour)

    Returns:
        Fresh immutable weights
    """
    steps = descriptor.steps
    if not 0 <= step <= steps:
        raise OutOfRangeError(f"Slice index {step} outside [0, {steps}]")
    if offset not in RELATIVE_POSITIONS:
        raise OutOfRangeError(f"Relative position must be -1, 0 or 1, got {offset}")
    if not 0 <= step + offset <= steps:
        raise OutOfRangeError(f"Slice {step} has no neighbour at offset {offset}")

    nonlinear = 1.0 if descriptor.nonlinear else 0.0

    if step == 0:
        return _first_slice(descriptor, offset, nonlinear)
    if offset == -1:
        return _left_neighbour(descriptor, nonlinear)
    if offset == 1:
        return _right_neighbour(descriptor, nonlinear)
    if step == steps:
        return _terminal_diagonal(descriptor, nonlinear)
    return _interior_diagonal(descriptor, nonlinear)


def neighbour_offsets(descriptor: 'SpaceTimeDescriptor', step: int):
    """Relative positions that exist at slice ``step``."""
    return [rel for rel in RELATIVE_POSITIONS if 0 <= step + rel <= descriptor.steps]
