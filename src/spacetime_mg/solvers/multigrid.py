"""Space-time multigrid with coarsening in time."""

from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Union, TYPE_CHECKING
import time
import logging

from .base import BaseSolver, ConvergenceHistory
from .coarse import DefectCorrectionSolver
from ..core.slice_store import TimeSliceStore
from ..operators.base import BoundaryKind
from ..operators.spacetime import DefectAssembler, check_store
from ..preconditioning.block import BlockJacobiPreconditioner
from ..utils.performance import LevelProfiler

if TYPE_CHECKING:
    from ..core.discretization import SpaceTimeDescriptor
    from ..operators.transfer import ProjectionOperator
    from .smoothers import SliceSmoother

logger = logging.getLogger(__name__)


class MultigridCycle:
    """Enumeration of multigrid cycle types."""
    V_CYCLE = "V"
    W_CYCLE = "W"

    @classmethod
    def normalize(cls, cycle: Union[str, int]) -> str:
        """Map ``'V'``/``'W'`` (any case) or the integer shapes 0/1 to a cycle type."""
        if isinstance(cycle, str) and cycle.isdigit():
            cycle = int(cycle)
        if isinstance(cycle, int) and not isinstance(cycle, bool):
            mapping = {0: cls.V_CYCLE, 1: cls.W_CYCLE}
            if cycle not in mapping:
                raise ValueError(f"Unknown cycle shape: {cycle}")
            return mapping[cycle]
        if isinstance(cycle, str) and cycle.upper() in (cls.V_CYCLE, cls.W_CYCLE):
            return cycle.upper()
        raise ValueError(f"Unknown cycle type: {cycle}")


@dataclass
class MultigridLevel:
    """
    One level of the hierarchy.

    Attributes:
        descriptor: Space-time discretization of the level
        smoother: Smoother of the level, unused on the coarsest level
        projection: Transfer between this level (fine) and the next coarser
            one, None on the coarsest level
    """
    descriptor: 'SpaceTimeDescriptor'
    smoother: Optional['SliceSmoother'] = None
    projection: Optional['ProjectionOperator'] = None


class TimeMultigrid:
    """
    V- or W-cycle multigrid over a hierarchy of space-time levels.

    Levels are ordered coarse to fine. The coarsest level is solved by a
    dedicated coarse solver; all other levels smooth, restrict their defect,
    recurse and add the prolongated correction.
    """

    def __init__(
        self,
        levels: List[MultigridLevel],
        coarse_solver: Optional[BaseSolver] = None,
        cycle: Union[str, int] = MultigridCycle.V_CYCLE,
        pre_smooth: bool = True,
        post_smooth: bool = True,
        max_iterations: int = 1,
        verbose: bool = False
    ):
        """
        Initialize the multigrid hierarchy.

        Args:
            levels: Levels ordered coarse to fine
            coarse_solver: Solver of the coarsest level, defect correction
                with block Jacobi if None
            cycle: Cycle type ('V', 'W' or the shapes 0, 1)
            pre_smooth: Smooth before the coarse-grid correction
            post_smooth: Smooth after the coarse-grid correction
            max_iterations: Number of cycles per solve
            verbose: Log every cycle at info level
        """
        if not levels:
            raise ValueError("Multigrid needs at least one level")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        for index, level in enumerate(levels[1:], start=1):
            if level.smoother is None or level.projection is None:
                raise ValueError(f"Level {index} needs a smoother and a projection")
            if level.descriptor.steps != 2 * levels[index - 1].descriptor.steps:
                raise ValueError(
                    f"Level {index} has {level.descriptor.steps} steps, expected "
                    f"{2 * levels[index - 1].descriptor.steps}"
                )

        self.levels = levels
        self.coarse_solver = coarse_solver if coarse_solver is not None else DefectCorrectionSolver(
            BlockJacobiPreconditioner()
        )
        self.cycle_type = MultigridCycle.normalize(cycle)
        self.pre_smooth = pre_smooth
        self.post_smooth = post_smooth
        self.max_iterations = max_iterations
        self.verbose = verbose
        self.name = f"TimeMultigrid({self.cycle_type}-cycle)"

        self.assembler = DefectAssembler()
        self.history = ConvergenceHistory()
        self.profiler = LevelProfiler()
        self.setup_completed = False
        self.iterations_performed = 0
        self.initial_residual = float('inf')
        self.final_residual = float('inf')

        logger.info(f"Initialized {self.name}: {len(levels)} levels, "
                    f"steps {[level.descriptor.steps for level in levels]}")

    @property
    def finest(self) -> 'SpaceTimeDescriptor':
        return self.levels[-1].descriptor

    @property
    def level_stats(self) -> Dict[int, Dict[str, float]]:
        """Accumulated smoothing/restriction/prolongation times per level."""
        return self.profiler.get_level_summary()

    def setup(self) -> None:
        """Set up the smoothers and the coarse solver."""
        for level in self.levels[1:]:
            level.smoother.setup(level.descriptor)
        self.coarse_solver.setup(self.levels[0].descriptor)
        self.setup_completed = True
        logger.debug(f"Setup {self.name} complete")

    def _refresh_evaluation_points(self) -> None:
        """Interpolate the finest evaluation point down the hierarchy."""
        for index in range(len(self.levels) - 1, 0, -1):
            fine = self.levels[index]
            coarse_descriptor = self.levels[index - 1].descriptor
            point = fine.descriptor.evaluation_point
            if point is None:
                coarse_descriptor.evaluation_point = None
                continue

            coarse_point = fine.projection.interpolate_solution(point)
            for step in range(coarse_point.num_slices):
                vector = coarse_point.get(step)
                coarse_descriptor.level.apply_boundary_conditions(
                    vector, coarse_descriptor.context(step), BoundaryKind.SOLUTION
                )
                coarse_point.set(step, vector)
            coarse_descriptor.evaluation_point = coarse_point

    def _cycle(self, index: int, rhs: TimeSliceStore, x: TimeSliceStore) -> None:
        """Apply one cycle on level ``index``, updating ``x`` in place."""
        level = self.levels[index]
        descriptor = level.descriptor

        if index == 0:
            with self.profiler.time_level_operation(index, "coarse_solve"):
                self.coarse_solver.solve(descriptor, rhs, x)
            return

        if self.pre_smooth:
            with self.profiler.time_level_operation(index, "smooth"):
                level.smoother.smooth(descriptor, rhs, x)

        coarse_descriptor = self.levels[index - 1].descriptor
        defect = TimeSliceStore(x.size, x.steps)
        self.assembler.residual(descriptor, rhs, x, defect)

        with self.profiler.time_level_operation(index, "restrict"):
            coarse_rhs = level.projection.restrict(defect)
            self.assembler.filter_defect(coarse_descriptor, coarse_rhs)

        coarse_x = TimeSliceStore(coarse_rhs.size, coarse_rhs.steps)
        recursions = 2 if self.cycle_type == MultigridCycle.W_CYCLE else 1
        for _ in range(recursions):
            self._cycle(index - 1, coarse_rhs, coarse_x)

        with self.profiler.time_level_operation(index, "prolong"):
            correction = level.projection.prolong(coarse_x, defect)
            self.assembler.filter_defect(descriptor, correction)
        x.axpy(correction, 1.0, 1.0)

        if self.post_smooth:
            with self.profiler.time_level_operation(index, "smooth"):
                level.smoother.smooth(descriptor, rhs, x)

    def solve(self, rhs: TimeSliceStore, x: TimeSliceStore) -> TimeSliceStore:
        """
        Run ``max_iterations`` cycles on the finest level.

        Args:
            rhs: Right-hand side on the finest level
            x: Initial guess, updated in place

        Returns:
            ``x``
        """
        if not self.setup_completed:
            raise RuntimeError(f"{self.name} not setup")
        descriptor = self.finest
        check_store(descriptor, rhs, "rhs")
        check_store(descriptor, x, "x")

        self.history.clear()
        scratch = TimeSliceStore(x.size, x.steps)
        self.initial_residual = self.assembler.residual(descriptor, rhs, x, scratch)
        residual_norm = self.initial_residual

        for iteration in range(1, self.max_iterations + 1):
            iteration_start = time.time()
            if descriptor.nonlinear:
                self._refresh_evaluation_points()

            self._cycle(len(self.levels) - 1, rhs, x)

            residual_norm = self.assembler.residual(descriptor, rhs, x, scratch)
            self.history.record_iteration(residual_norm, time.time() - iteration_start)
            message = f"{self.name} cycle {iteration}: residual = {residual_norm:.2e}"
            if self.verbose:
                logger.info(message)
            else:
                logger.debug(message)

        self.iterations_performed = self.max_iterations
        self.final_residual = residual_norm
        return x

    def precondition(
        self,
        defect: TimeSliceStore,
        evaluation_point: Optional[TimeSliceStore] = None
    ) -> None:
        """
        Replace ``defect`` by an approximate solution ``e`` of ``A e = defect``.

        Args:
            defect: Finest-level defect, overwritten with the correction
            evaluation_point: Linearization point of a nonlinear operator,
                typically the current outer iterate
        """
        descriptor = self.finest
        if descriptor.nonlinear and evaluation_point is not None:
            descriptor.evaluation_point = evaluation_point

        rhs = defect.copy()
        correction = TimeSliceStore(defect.size, defect.steps)
        self.solve(rhs, correction)
        defect.copy_from(correction)

    def get_convergence_info(self) -> Dict[str, Any]:
        """Cycle statistics and per-level timings."""
        return {
            "iterations": self.iterations_performed,
            "initial_residual": self.initial_residual,
            "final_residual": self.final_residual,
            "convergence_rate": self.history.get_convergence_rate(),
            "residual_history": self.history.residual_norms.copy(),
            "cycle_type": self.cycle_type,
            "num_levels": len(self.levels),
            "time_steps": [level.descriptor.steps for level in self.levels],
            "level_timings": self.level_stats,
            "coarse_solver": self.coarse_solver.get_convergence_info(),
        }
