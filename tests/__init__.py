"""
Test Suite for Space-Time Multigrid

Unit tests cover the individual components (slice stores, stencil weights,
operators, transfer, preconditioners, solvers, configuration); integration
tests run complete outer solves on small reference problems.
"""

import numpy as np
import sys
from pathlib import Path

# Add src directory to path for imports
test_dir = Path(__file__).parent
src_dir = test_dir.parent / 'src'
sys.path.insert(0, str(src_dir))

from spacetime_mg.core.discretization import SpaceTimeDescriptor
from spacetime_mg.core.slice_store import TimeSliceStore
from spacetime_mg.spatial.burgers1d import Burgers1DLevel, OptimalControlProblem

# Test configuration
TEST_CONFIG = {
    'consistency_tolerance': 1e-10,
    'solver_tolerance': 1e-10,
    'max_iterations': 50,
}


class QuadraticStateProblem(OptimalControlProblem):
    """
    Manufactured problem with exact solution ``y = x(1-x)``, ``lambda = 0``.

    The state is constant in time, the target equals the state and the
    forcing balances the diffusion, so the optimality system holds exactly
    for every theta, alpha and gamma.
    """

    def __init__(self, viscosity: float = 1.0):
        super().__init__()
        self.viscosity = viscosity

    def forcing(self, x, t):
        return np.full_like(x, 2.0 * self.viscosity)

    def target(self, x, t):
        return x * (1.0 - x)

    def initial_state(self, x):
        return x * (1.0 - x)


def generate_descriptor(
    nodes=5,
    steps=4,
    theta=1.0,
    alpha=1.0,
    gamma=0.0,
    nonlinear=False,
    problem=None,
    viscosity=1.0,
    **kwargs
):
    """Descriptor on a single Burgers level."""
    if problem is None:
        problem = OptimalControlProblem(forcing=1.0)
    level = Burgers1DLevel(nodes, problem, viscosity)
    return SpaceTimeDescriptor(
        level=level, steps=steps, theta=theta, alpha=alpha,
        gamma=gamma, nonlinear=nonlinear, **kwargs
    )


def generate_exact_solution(descriptor):
    """Store holding ``y = x(1-x)`` and ``lambda = 0`` in every slice."""
    level = descriptor.level
    store = TimeSliceStore(descriptor.slice_size, descriptor.steps)
    vector = np.zeros(descriptor.slice_size)
    vector[:level.nodes] = level.x * (1.0 - level.x)
    for step in range(descriptor.num_slices):
        store.set(step, vector)
    return store


def generate_random_store(size, steps, seed=0, zero_slices=()):
    """Store with reproducible random slices; ``zero_slices`` stay unset."""
    rng = np.random.default_rng(seed)
    store = TimeSliceStore(size, steps)
    for step in range(steps + 1):
        if step not in zero_slices:
            store.set(step, rng.standard_normal(size))
    return store
