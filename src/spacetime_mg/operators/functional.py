"""Evaluation of the optimal-control cost functional."""

from dataclasses import dataclass
from typing import TYPE_CHECKING
import logging

import numpy as np

from .spacetime import check_store
from ..core.exceptions import SizeMismatchError

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..core.slice_store import TimeSliceStore
    from .base import SliceLayout

logger = logging.getLogger(__name__)


def control_from_dual(layout: 'SliceLayout', vector: np.ndarray, alpha: float) -> np.ndarray:
    """
    Control ``u = -lambda/alpha`` placed in the primal state blocks of a slice.

    The i-th dual state block is paired with the i-th primal state block;
    constraint blocks carry no control.
    """
    control = np.zeros_like(vector)
    for primal, dual in zip(layout.primal_states, layout.dual_states):
        p_start, p_stop = layout.blocks[primal]
        d_start, d_stop = layout.blocks[dual]
        if p_stop - p_start != d_stop - d_start:
            raise SizeMismatchError(
                f"Dual block {dual} ({d_stop - d_start}) does not match "
                f"primal block {primal} ({p_stop - p_start})"
            )
        control[p_start:p_stop] = -vector[d_start:d_stop] / alpha
    return control


@dataclass(frozen=True)
class FunctionalValues:
    """Norms entering the cost functional and its total value."""
    tracking: float
    control: float
    terminal: float
    total: float

    def __str__(self) -> str:
        return (f"||y-z|| = {self.tracking:.6e}, ||u|| = {self.control:.6e}, "
                f"||y(T)-z(T)|| = {self.terminal:.6e}, J(y,u) = {self.total:.6e}")


def evaluate_functional(descriptor: 'SpaceTimeDescriptor', x: 'TimeSliceStore') -> FunctionalValues:
    """
    Evaluate ``J(y,u) = 1/2 ||y-z||^2 + alpha/2 ||u||^2 + gamma/2 ||y(T)-z(T)||^2``.

    Time integrals use the trapezoidal rule over the slices, space integrals
    the level's inner product. The control is recovered as ``u = -lambda/alpha``.

    Args:
        descriptor: Space-time level
        x: Solution holding primal and dual states

    Returns:
        The three norms and the functional value
    """
    check_store(descriptor, x, "solution")
    level = descriptor.level
    layout = level.layout

    tracking = 0.0
    control = 0.0
    terminal = 0.0
    for step in range(descriptor.num_slices):
        weight = descriptor.dt * (0.5 if step in (0, descriptor.steps) else 1.0)
        context = descriptor.context(step)
        vector = x.get(step)
        error = vector - level.target(context)

        control_vector = control_from_dual(layout, vector, descriptor.alpha)

        tracking += weight * level.inner(error, error, layout.primal_states)
        control += weight * level.inner(control_vector, control_vector, layout.primal_states)
        if step == descriptor.steps:
            terminal = level.inner(error, error, layout.primal_states)

    total = 0.5 * tracking + 0.5 * descriptor.alpha * control + 0.5 * descriptor.gamma * terminal
    return FunctionalValues(
        tracking=float(np.sqrt(tracking)),
        control=float(np.sqrt(control)),
        terminal=float(np.sqrt(terminal)),
        total=float(total),
    )
