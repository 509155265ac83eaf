"""
End-to-End Integration Tests

Complete outer solves on the 1D reference problem: from problem setup through
multigrid preconditioning to the converged space-time solution.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add src directory to path
test_dir = Path(__file__).parent.parent
src_dir = test_dir.parent / 'src'
sys.path.insert(0, str(src_dir))

from spacetime_mg.builder import build_reference_solver
from spacetime_mg.config import create_crank_nicolson_config
from spacetime_mg.core.exceptions import CollaboratorError
from spacetime_mg.core.slice_io import load_store, save_store, slice_path
from spacetime_mg.core.slice_store import TimeSliceStore
from spacetime_mg.operators.base import SpatialPreconditioner
from spacetime_mg.operators.transfer import ProjectionOperator
from spacetime_mg.preconditioning.block import (
    BlockJacobiPreconditioner, ForwardBackwardGSPreconditioner
)
from spacetime_mg.solvers.coarse import BiCGStabSolver, DefectCorrectionSolver, DirectSolver
from spacetime_mg.solvers.multigrid import MultigridLevel, TimeMultigrid
from spacetime_mg.solvers.outer import OuterSolver
from spacetime_mg.solvers.smoothers import SliceSmoother
from spacetime_mg.spatial.burgers1d import OptimalControlProblem, initial_guess

from tests import (
    QuadraticStateProblem, TEST_CONFIG, generate_descriptor, generate_exact_solution
)


def single_level_solver(descriptor, coarse_solver, **kwargs):
    multigrid = TimeMultigrid([MultigridLevel(descriptor)], coarse_solver)
    return OuterSolver(multigrid, **kwargs)


def two_level_solver(fine, **kwargs):
    """Outer solver with a two-level time multigrid on a shared spatial grid."""
    levels = [
        MultigridLevel(fine.coarsen()),
        MultigridLevel(fine, SliceSmoother(ForwardBackwardGSPreconditioner()),
                       ProjectionOperator.in_time_only(fine.level)),
    ]
    return OuterSolver(TimeMultigrid(levels, DirectSolver()), **kwargs)


def zero_store(descriptor):
    return TimeSliceStore(descriptor.slice_size, descriptor.steps)


class TestReferenceScenarios:
    """Small scenarios with known outcomes."""

    @pytest.mark.parametrize("coarse_solver", [
        lambda: DefectCorrectionSolver(BlockJacobiPreconditioner(), max_iterations=1),
        lambda: DefectCorrectionSolver(ForwardBackwardGSPreconditioner(), max_iterations=1),
        lambda: BiCGStabSolver(BlockJacobiPreconditioner(), max_iterations=2),
        lambda: DirectSolver(),
    ], ids=["jacobi", "fbgs", "bicgstab", "direct"])
    def test_one_iteration_reduces_defect(self, coarse_solver):
        """Crank-Nicolson, T=4, N=6, unit forcing: one outer iteration reduces the defect."""
        descriptor = generate_descriptor(nodes=3, steps=4, theta=0.5, alpha=1.0, gamma=0.0)
        assert descriptor.slice_size == 6
        solver = single_level_solver(descriptor, coarse_solver(),
                                     max_iterations=1, min_iterations=1)

        result = solver.solve(descriptor, zero_store(descriptor))

        assert result.iterations == 1
        assert result.initial_residual_norm > 0.0
        assert result.residual_norm < result.initial_residual_norm

    @pytest.mark.parametrize("theta", [0.5, 1.0])
    @pytest.mark.parametrize("gamma", [0.0, 1.0])
    def test_recovers_manufactured_solution(self, theta, gamma):
        """Starting from the initial state only, the solve finds y = x(1-x), lambda = 0."""
        descriptor = generate_descriptor(
            nodes=9, steps=4, theta=theta, gamma=gamma, problem=QuadraticStateProblem()
        )
        x0 = zero_store(descriptor)
        x0.set(0, descriptor.level.initial_vector(descriptor.context(0)))
        solver = single_level_solver(descriptor, DirectSolver(),
                                     tolerance_rel=1e-12, tolerance_abs=1e-12)

        result = solver.solve(descriptor, x0)

        exact = generate_exact_solution(descriptor)
        np.testing.assert_allclose(result.solution.to_dense(), exact.to_dense(), atol=1e-10)
        assert result.residual_norm <= TEST_CONFIG['consistency_tolerance']

    @pytest.mark.parametrize("seed", range(5))
    def test_monotone_residual(self, seed):
        """Successive outer defects do not increase on random small problems."""
        rng = np.random.default_rng(seed)
        problem = OptimalControlProblem(
            forcing=rng.uniform(-2.0, 2.0), target=rng.uniform(-1.0, 1.0),
            initial=rng.uniform(-1.0, 1.0)
        )
        descriptor = generate_descriptor(
            nodes=int(rng.choice([3, 5])), steps=int(rng.choice([2, 4, 8])),
            theta=rng.uniform(0.5, 1.0), alpha=rng.uniform(0.5, 2.0),
            gamma=rng.uniform(0.0, 2.0), problem=problem
        )
        solver = two_level_solver(descriptor, tolerance_rel=1e-10, tolerance_abs=1e-12,
                                  max_iterations=10)

        result = solver.solve(descriptor, initial_guess(descriptor))

        history = result.residual_history
        assert len(history) >= 2
        for previous, current in zip(history, history[1:]):
            assert current <= previous or current < 1e-12

    def test_checkpoint_with_missing_slice(self, tmp_path, caplog):
        """A solution written slice by slice restores with a missing slice as zero."""
        descriptor = generate_descriptor(nodes=5, steps=4, theta=0.5)
        result = single_level_solver(descriptor, DirectSolver()).solve(
            descriptor, zero_store(descriptor)
        )
        save_store(result.solution, tmp_path)
        slice_path(tmp_path, 2).unlink()

        restored = load_store(tmp_path, descriptor.steps)

        np.testing.assert_array_equal(restored.get(2), np.zeros(descriptor.slice_size))
        np.testing.assert_array_equal(restored.get(3), result.solution.get(3))
        assert "missing" in caplog.text


class TestMultigridSolves:
    """Outer solves preconditioned by multilevel hierarchies."""

    def test_two_level_matches_direct_solution(self):
        """The multigrid-preconditioned solve converges to the direct solution."""
        fine = generate_descriptor(nodes=5, steps=8, theta=0.5, gamma=1.0,
                                   problem=OptimalControlProblem(forcing=1.0, target=0.5))
        reference = single_level_solver(fine, DirectSolver()).solve(fine, zero_store(fine))

        fine_mg = generate_descriptor(nodes=5, steps=8, theta=0.5, gamma=1.0,
                                      problem=OptimalControlProblem(forcing=1.0, target=0.5))
        result = two_level_solver(fine_mg, tolerance_rel=1e-11, tolerance_abs=1e-14,
                                  max_iterations=TEST_CONFIG['max_iterations']).solve(
            fine_mg, zero_store(fine_mg)
        )

        assert result.converged
        np.testing.assert_allclose(result.solution.to_dense(), reference.solution.to_dense(),
                                   atol=1e-7)

    def test_configured_three_level_solve(self):
        """A solver built from a Crank-Nicolson configuration converges."""
        config = create_crank_nicolson_config(levels=3)
        config.time.coarse_steps = 2
        config.space.coarse_nodes = 5
        config.coarse_solver.type = "direct"
        config.outer_solver.tolerance_rel = 1e-8
        config.outer_solver.tolerance_abs = 1e-12
        config.outer_solver.max_iterations = 30
        config.outer_solver.evaluate_functional = True

        descriptor, solver = build_reference_solver(config, OptimalControlProblem(forcing=1.0))
        result = solver.solve(descriptor, zero_store(descriptor))

        assert descriptor.steps == 8
        assert result.converged
        assert result.functional is not None
        assert result.iterations < config.outer_solver.max_iterations

    def test_space_and_time_coarsening(self):
        """Refining space together with time still gives a convergent solver."""
        config = create_crank_nicolson_config(levels=2)
        config.space.coarse_nodes = 5
        config.space.refine_space = True
        config.coarse_solver.type = "direct"
        config.outer_solver.tolerance_rel = 1e-6
        config.outer_solver.max_iterations = 30

        descriptor, solver = build_reference_solver(config, OptimalControlProblem(forcing=1.0))
        result = solver.solve(descriptor, zero_store(descriptor))

        assert descriptor.level.nodes == 9
        assert result.converged

    def test_nonlinear_solve(self):
        """The nonlinear system converges with the operator linearized about the iterate."""
        config = create_crank_nicolson_config(levels=2)
        config.control.nonlinear = True
        config.space.coarse_nodes = 5
        config.coarse_solver.type = "direct"
        config.outer_solver.tolerance_rel = 1e-6
        config.outer_solver.tolerance_abs = 1e-12
        config.outer_solver.max_iterations = 30

        descriptor, solver = build_reference_solver(
            config, OptimalControlProblem(forcing=1.0, target=0.2)
        )
        result = solver.solve(descriptor, zero_store(descriptor))

        assert descriptor.nonlinear
        assert result.converged
        assert descriptor.evaluation_point is None

    def test_repeated_nonlinear_solves_agree(self):
        """A solve leaves no linearization state behind on the descriptor."""
        config = create_crank_nicolson_config(levels=2)
        config.control.nonlinear = True
        config.space.coarse_nodes = 5
        config.coarse_solver.type = "direct"
        config.outer_solver.max_iterations = 3

        descriptor, solver = build_reference_solver(
            config, OptimalControlProblem(forcing=1.0, target=0.2)
        )
        first = solver.solve(descriptor, initial_guess(descriptor))
        second = solver.solve(descriptor, initial_guess(descriptor))

        assert second.initial_residual_norm == pytest.approx(first.initial_residual_norm, rel=1e-12)
        np.testing.assert_allclose(second.solution.to_dense(), first.solution.to_dense())


class _FailingPreconditioner(SpatialPreconditioner):
    def apply(self, weights, residual, evaluation, context):
        raise CollaboratorError(f"local solve diverged at step {context.step}")


class TestErrorPropagation:
    """Failures of spatial collaborators surface unchanged."""

    def test_collaborator_failure_propagates(self):
        """A failing local solve aborts the outer solve."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        descriptor.level.create_preconditioner = lambda component="full": _FailingPreconditioner()
        solver = single_level_solver(descriptor,
                                     DefectCorrectionSolver(BlockJacobiPreconditioner()))

        with pytest.raises(CollaboratorError, match="diverged"):
            solver.solve(descriptor, zero_store(descriptor))

    def test_incompatible_initial_guess(self):
        """An initial guess on another time grid is rejected."""
        descriptor = generate_descriptor(nodes=5, steps=4)
        solver = single_level_solver(descriptor, DirectSolver())

        with pytest.raises(ValueError):
            solver.solve(descriptor, TimeSliceStore(descriptor.slice_size, 2))
