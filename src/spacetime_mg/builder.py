"""Assemble solvers from a configuration."""

from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING
import logging

from .config.settings import CoarseSolverConfig, SpaceTimeConfig
from .core.discretization import SpaceTimeDescriptor
from .operators.transfer import ProjectionOperator
from .preconditioning.base import SlicePreconditioner
from .preconditioning.block import BlockJacobiPreconditioner, ForwardBackwardGSPreconditioner
from .solvers.base import BaseSolver
from .solvers.coarse import BiCGStabSolver, DefectCorrectionSolver, DirectSolver
from .solvers.multigrid import MultigridLevel, TimeMultigrid
from .solvers.outer import OuterSolver
from .solvers.smoothers import SliceSmoother
from .spatial.burgers1d import OptimalControlProblem, create_spatial_hierarchy

if TYPE_CHECKING:
    from .operators.base import SpatialLevel, SpatialTransfer

logger = logging.getLogger(__name__)


def create_preconditioner(kind: str, omega: float = 1.0) -> SlicePreconditioner:
    """
    Create a slice preconditioner by name.

    Args:
        kind: 'jacobi' or 'forward_backward_gs'
        omega: Damping factor

    Returns:
        Preconditioner instance
    """
    if kind == "jacobi":
        return BlockJacobiPreconditioner(omega)
    if kind == "forward_backward_gs":
        return ForwardBackwardGSPreconditioner(omega)
    raise ValueError(f"Unknown preconditioner type: {kind}")


def create_coarse_solver(config: CoarseSolverConfig) -> BaseSolver:
    """Create the coarsest-level solver described by ``config``."""
    if config.type == "direct":
        return DirectSolver()

    preconditioner = create_preconditioner(config.preconditioner)
    if config.type == "defect_correction":
        return DefectCorrectionSolver(
            preconditioner,
            omega=config.omega,
            max_iterations=config.max_iterations,
            tolerance_rel=config.tolerance_rel,
            tolerance_abs=config.tolerance_abs,
            min_iterations=config.min_iterations,
        )
    if config.type == "bicgstab":
        return BiCGStabSolver(
            preconditioner,
            max_iterations=config.max_iterations,
            tolerance_rel=config.tolerance_rel,
            tolerance_abs=config.tolerance_abs,
            min_iterations=config.min_iterations,
        )
    raise ValueError(f"Unknown coarse solver type: {config.type}")


def create_descriptors(
    config: SpaceTimeConfig,
    spatial_levels: Sequence['SpatialLevel']
) -> List[SpaceTimeDescriptor]:
    """
    One descriptor per level, coarse to fine, level ``k`` with ``coarse_steps * 2**k`` steps.

    Args:
        config: Run configuration
        spatial_levels: Spatial level of every multigrid level, coarse to fine

    Returns:
        Descriptors ordered coarse to fine
    """
    if len(spatial_levels) != config.multigrid.levels:
        raise ValueError(f"Expected {config.multigrid.levels} spatial levels, "
                         f"got {len(spatial_levels)}")

    return [
        SpaceTimeDescriptor(
            level=level,
            steps=config.time.coarse_steps * 2 ** index,
            t0=config.time.t0,
            t_max=config.time.t_max,
            theta=config.time.theta,
            alpha=config.control.alpha,
            gamma=config.control.gamma,
            nonlinear=config.control.nonlinear,
            coupling=config.control.coupling(),
        )
        for index, level in enumerate(spatial_levels)
    ]


def build_multigrid(
    config: SpaceTimeConfig,
    spatial_levels: Sequence['SpatialLevel'],
    transfers: Optional[Sequence['SpatialTransfer']] = None
) -> TimeMultigrid:
    """
    Build the space-time multigrid.

    Args:
        config: Run configuration
        spatial_levels: Spatial level of every multigrid level, coarse to fine
        transfers: ``transfers[k]`` moves slices between spatial level
            ``k+1`` and ``k``; time-only projections if omitted

    Returns:
        Multigrid (not yet set up)
    """
    config.validate()
    descriptors = create_descriptors(config, spatial_levels)
    settings = config.multigrid

    levels = [MultigridLevel(descriptors[0])]
    for index in range(1, len(descriptors)):
        if transfers is None:
            projection = ProjectionOperator.in_time_only(
                spatial_levels[index],
                restriction=settings.restriction,
                prolongation=settings.prolongation,
            )
        else:
            projection = ProjectionOperator(
                transfers[index - 1],
                restriction=settings.restriction,
                prolongation=settings.prolongation,
            )
        smoother = SliceSmoother(
            create_preconditioner(config.smoother.type),
            sweeps=config.smoother.sweeps,
            omega=config.smoother.omega,
        )
        levels.append(MultigridLevel(descriptors[index], smoother, projection))

    multigrid = TimeMultigrid(
        levels,
        create_coarse_solver(config.coarse_solver),
        cycle=settings.cycle,
        pre_smooth=settings.pre_smooth,
        post_smooth=settings.post_smooth,
        max_iterations=settings.iterations,
    )
    logger.info(f"Built multigrid from {config}")
    return multigrid


def build_outer_solver(config: SpaceTimeConfig, multigrid: TimeMultigrid) -> OuterSolver:
    """Outer solver preconditioned by ``multigrid``."""
    outer = config.outer_solver
    return OuterSolver(
        multigrid,
        tolerance_rel=outer.tolerance_rel,
        tolerance_abs=outer.tolerance_abs,
        max_iterations=outer.max_iterations,
        min_iterations=outer.min_iterations,
        omega=outer.omega,
        implement_bc=outer.implement_bc,
        evaluate_functional=outer.evaluate_functional,
    )


def build_reference_solver(
    config: SpaceTimeConfig,
    problem: OptimalControlProblem
) -> Tuple[SpaceTimeDescriptor, OuterSolver]:
    """
    Build the complete solver for the 1D reference problem.

    Returns:
        Tuple of (finest descriptor, outer solver)
    """
    space = config.space
    spatial_levels, transfers = create_spatial_hierarchy(
        problem,
        space.coarse_nodes,
        config.multigrid.levels,
        refine_space=space.refine_space,
        viscosity=space.viscosity,
    )
    multigrid = build_multigrid(config, spatial_levels, transfers)
    return multigrid.finest, build_outer_solver(config, multigrid)
