"""Unit tests for the space-time defect and right-hand side assembly."""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from spacetime_mg.core.exceptions import IncompatibleStoresError, SizeMismatchError
from spacetime_mg.core.slice_store import TimeSliceStore
from spacetime_mg.operators.base import SliceLayout
from spacetime_mg.operators.functional import control_from_dual, evaluate_functional
from spacetime_mg.operators.spacetime import (
    AssemblyOptions, DefectAssembler, RHSAssembler, assemble_global_matrix, check_store
)
from spacetime_mg.operators.stencil import neighbour_offsets, setup_weights
from spacetime_mg.spatial.burgers1d import OptimalControlProblem
from tests import (
    QuadraticStateProblem, TEST_CONFIG, generate_descriptor,
    generate_exact_solution, generate_random_store
)


def boundary_rows(descriptor):
    """Dirichlet rows of one Burgers slice (state and dual)."""
    n = descriptor.level.nodes
    return np.array([0, n - 1, n, 2 * n - 1])


class TestDefectAssembler:
    """Test cases for DefectAssembler."""

    def setup_method(self):
        """Set up test fixtures."""
        self.assembler = DefectAssembler()

    @pytest.mark.parametrize("theta", [0.0, 0.5, 1.0])
    @pytest.mark.parametrize("gamma", [0.0, 2.5])
    def test_consistency_with_exact_solution(self, theta, gamma):
        """The defect of the exact discrete solution vanishes."""
        descriptor = generate_descriptor(
            nodes=9, steps=4, theta=theta, gamma=gamma, alpha=0.5,
            problem=QuadraticStateProblem(viscosity=0.3), viscosity=0.3
        )
        x = generate_exact_solution(descriptor)
        rhs = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        RHSAssembler().build(descriptor, rhs)
        RHSAssembler().implement_initial_condition(descriptor, x, rhs)

        defect = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        norm = self.assembler.residual(descriptor, rhs, x, defect)

        assert norm <= TEST_CONFIG['consistency_tolerance']

    def test_first_slice_primal_rows_are_zero(self):
        """The primal rows of slice 0 are cleared in every application."""
        descriptor = generate_descriptor(nodes=5, steps=3)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=1)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        self.assembler.apply(descriptor, x, out)

        first = out.get(0)
        assert np.all(first[:descriptor.level.nodes] == 0.0)
        assert np.any(first[descriptor.level.nodes:] != 0.0)

    def test_boundary_rows_are_filtered(self):
        """Dirichlet rows of every slice are zero after application."""
        descriptor = generate_descriptor(nodes=5, steps=3)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=2)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        self.assembler.apply(descriptor, x, out)

        for step in range(descriptor.num_slices):
            assert np.all(out.get(step)[boundary_rows(descriptor)] == 0.0)

    def test_without_boundary_filtering(self):
        """Disabling the boundary implementation keeps the Dirichlet rows."""
        descriptor = generate_descriptor(nodes=5, steps=3)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=2)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        options = AssemblyOptions(implement_bc=False)

        self.assembler.apply(descriptor, x, out, options=options)

        assert np.any(out.get(2)[boundary_rows(descriptor)] != 0.0)

    def test_apply_in_place(self):
        """Applying the operator with out = x matches a separate output store."""
        descriptor = generate_descriptor(nodes=5, steps=4, theta=0.5, gamma=1.0)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=3)
        expected = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, expected)

        self.assembler.apply(descriptor, x, x)

        np.testing.assert_allclose(x.to_dense(), expected.to_dense(), rtol=1e-14, atol=1e-14)

    def test_apply_scaling(self):
        """out <- cx*A*x + cy*out combines both terms."""
        descriptor = generate_descriptor(nodes=5, steps=2, theta=0.5)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=4)
        y = generate_random_store(descriptor.slice_size, descriptor.steps, seed=5)
        ax = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, ax)

        # cy*y is filtered too, so compare on the filtered rows only
        filtered_y = y.copy()
        self.assembler.filter_defect(descriptor, filtered_y)
        out = y.copy()
        self.assembler.apply(descriptor, x, out, cx=2.0, cy=-0.5)

        expected = 2.0 * ax.to_dense() - 0.5 * filtered_y.to_dense()
        np.testing.assert_allclose(out.to_dense(), expected, rtol=1e-12, atol=1e-12)

    def test_apply_returns_norm(self):
        """The returned value is the L2 norm of the output."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=6)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        norm = self.assembler.apply(descriptor, x, out)

        assert norm == pytest.approx(out.norm())

    def test_zero_input(self):
        """The operator maps the zero store to zero."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        x = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        assert self.assembler.apply(descriptor, x, out) == 0.0

    def test_residual_rejects_aliasing(self):
        """The defect cannot overwrite the solution."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        x = generate_random_store(descriptor.slice_size, descriptor.steps)
        rhs = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        with pytest.raises(ValueError, match="must not be the solution"):
            self.assembler.residual(descriptor, rhs, x, x)

    def test_residual_of_zero_solution(self):
        """With x = 0 the defect is the filtered right-hand side."""
        descriptor = generate_descriptor(nodes=5, steps=3, theta=0.5)
        rhs = generate_random_store(descriptor.slice_size, descriptor.steps, seed=7)
        x = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        defect = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        self.assembler.residual(descriptor, rhs, x, defect)

        expected = rhs.copy()
        self.assembler.filter_defect(descriptor, expected)
        np.testing.assert_allclose(defect.to_dense(), expected.to_dense())

    def test_incompatible_stores(self):
        """Stores that do not match the descriptor are rejected."""
        descriptor = generate_descriptor(nodes=5, steps=4)
        x = TimeSliceStore(descriptor.slice_size, 2)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        with pytest.raises(IncompatibleStoresError):
            self.assembler.apply(descriptor, x, out)
        with pytest.raises(IncompatibleStoresError):
            check_store(descriptor, TimeSliceStore(3, 4))

    def test_slice_residual_matches_residual(self):
        """The single-slice defect equals the corresponding slice of the full defect."""
        descriptor = generate_descriptor(nodes=5, steps=4, theta=0.5, gamma=1.0)
        rhs = generate_random_store(descriptor.slice_size, descriptor.steps, seed=8)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=9)
        defect = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.residual(descriptor, rhs, x, defect)

        for step in range(descriptor.num_slices):
            local = self.assembler.slice_residual(descriptor, step, rhs.get(step), x)
            np.testing.assert_allclose(local, defect.get(step), rtol=1e-12, atol=1e-12)

    @pytest.mark.parametrize("step", [0, 2, 4])
    def test_blocks_linearized_at_their_neighbour(self, step):
        """Each block of a nonlinear operator is evaluated at the slice it acts on."""
        descriptor = generate_descriptor(nodes=7, steps=4, theta=0.5, nonlinear=True)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=14)
        out = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, out, options=AssemblyOptions(implement_bc=False))

        expected = np.zeros(descriptor.slice_size)
        for offset in neighbour_offsets(descriptor, step):
            neighbour = x.get(step + offset)
            weights = setup_weights(descriptor, step, offset)
            block = descriptor.level.assemble_local_block(
                weights, neighbour, descriptor.context(step)
            )
            expected += block @ neighbour
        if step == 0:
            expected[descriptor.level.layout.primal_indices] = 0.0

        np.testing.assert_allclose(out.get(step), expected, rtol=1e-12, atol=1e-12)

    def test_evaluation_point_is_used(self):
        """A nonlinear operator is linearized about the descriptor's evaluation point."""
        descriptor = generate_descriptor(nodes=7, steps=2, nonlinear=True)
        x = generate_random_store(descriptor.slice_size, descriptor.steps, seed=10)
        about_x = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, about_x)

        descriptor.evaluation_point = generate_random_store(
            descriptor.slice_size, descriptor.steps, seed=11
        )
        about_point = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, about_point)
        ignored = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        self.assembler.apply(descriptor, x, ignored,
                             options=AssemblyOptions(use_evaluation_point=False))

        assert not np.allclose(about_point.to_dense(), about_x.to_dense())
        np.testing.assert_allclose(ignored.to_dense(), about_x.to_dense())


class TestGlobalMatrix:
    """Test cases for assemble_global_matrix."""

    @pytest.mark.parametrize("theta, gamma", [(1.0, 0.0), (0.5, 2.0)])
    def test_matches_matrix_free_application(self, theta, gamma):
        """The assembled matrix reproduces the operator on all non-Dirichlet rows."""
        descriptor = generate_descriptor(nodes=5, steps=3, theta=theta, gamma=gamma)
        size = descriptor.slice_size
        x = generate_random_store(size, descriptor.steps, seed=12)
        out = TimeSliceStore(size, descriptor.steps)
        DefectAssembler().apply(descriptor, x, out)

        matrix = assemble_global_matrix(descriptor)
        dense = matrix @ x.to_dense()

        mask = np.ones(size * descriptor.num_slices, dtype=bool)
        mask[:descriptor.level.nodes] = False
        for step in range(descriptor.num_slices):
            mask[step * size + boundary_rows(descriptor)] = False

        assert matrix.shape == (size * descriptor.num_slices,) * 2
        np.testing.assert_allclose(dense[mask], out.to_dense()[mask], rtol=1e-12, atol=1e-12)

    def test_nonlinear_matches_matrix_free_application(self):
        """With an evaluation point both paths linearize every block at the same slice."""
        descriptor = generate_descriptor(nodes=5, steps=3, theta=0.5, nonlinear=True)
        size = descriptor.slice_size
        descriptor.evaluation_point = generate_random_store(size, descriptor.steps, seed=15)
        x = generate_random_store(size, descriptor.steps, seed=16)
        out = TimeSliceStore(size, descriptor.steps)
        DefectAssembler().apply(descriptor, x, out)

        dense = assemble_global_matrix(descriptor) @ x.to_dense()

        mask = np.ones(size * descriptor.num_slices, dtype=bool)
        mask[:descriptor.level.nodes] = False
        for step in range(descriptor.num_slices):
            mask[step * size + boundary_rows(descriptor)] = False
        np.testing.assert_allclose(dense[mask], out.to_dense()[mask], rtol=1e-12, atol=1e-12)

    def test_identity_rows(self):
        """Primal rows of slice 0 and Dirichlet rows are identity rows."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        matrix = assemble_global_matrix(descriptor).toarray()

        for row in range(descriptor.level.nodes):
            expected = np.zeros(matrix.shape[1])
            expected[row] = 1.0
            np.testing.assert_array_equal(matrix[row], expected)


class TestRHSAssembler:
    """Test cases for RHSAssembler."""

    def setup_method(self):
        """Set up test fixtures."""
        self.assembler = RHSAssembler()

    def build(self, descriptor):
        rhs = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        return self.assembler.build(descriptor, rhs)

    def test_constant_forcing(self):
        """Interior slices carry dt-weighted forcing, slice 0 the unweighted value."""
        problem = OptimalControlProblem(forcing=1.0, target=2.0)
        descriptor = generate_descriptor(nodes=5, steps=4, theta=0.5, problem=problem)
        rhs = self.build(descriptor)
        n, dt = descriptor.level.nodes, descriptor.dt

        first = rhs.get(0)
        np.testing.assert_allclose(first[1:n - 1], 1.0)
        np.testing.assert_allclose(first[n + 1:2 * n - 1], -2.0 * dt)

        middle = rhs.get(2)
        np.testing.assert_allclose(middle[1:n - 1], dt)
        np.testing.assert_allclose(middle[n + 1:2 * n - 1], -2.0 * dt)

    def test_terminal_slice_carries_gamma(self):
        """The dual part of slice T is -gamma * z(T)."""
        problem = OptimalControlProblem(forcing=1.0, target=2.0)
        descriptor = generate_descriptor(nodes=5, steps=2, gamma=3.0, problem=problem)
        rhs = self.build(descriptor)
        n = descriptor.level.nodes

        last = rhs.get(descriptor.steps)
        np.testing.assert_allclose(last[n + 1:2 * n - 1], -6.0)
        np.testing.assert_allclose(last[1:n - 1], descriptor.dt)

    def test_time_dependent_forcing(self):
        """Theta blends the forcing of neighbouring time points."""

        class LinearInTime(OptimalControlProblem):
            def forcing(self, x, t):
                return np.full_like(x, t)

        descriptor = generate_descriptor(nodes=5, steps=4, theta=0.25, problem=LinearInTime())
        rhs = self.build(descriptor)
        dt = descriptor.dt

        # primal rows of slice 2 blend f(t2) and f(t1)
        expected = dt * (0.25 * descriptor.time_at(2) + 0.75 * descriptor.time_at(1))
        assert rhs.get(2)[2] == pytest.approx(expected)

    def test_boundary_values(self):
        """Boundary rows carry the Dirichlet values of the state and zero dual values."""
        problem = OptimalControlProblem(forcing=1.0, boundary=0.5)
        descriptor = generate_descriptor(nodes=5, steps=2, problem=problem)
        rhs = self.build(descriptor)
        n = descriptor.level.nodes

        for step in range(descriptor.num_slices):
            vector = rhs.get(step)
            np.testing.assert_allclose(vector[[0, n - 1]], 0.5)
            np.testing.assert_allclose(vector[[n, 2 * n - 1]], 0.0)

    def test_implement_initial_condition(self):
        """The primal part of x0[0] replaces the primal part of rhs[0]."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        rhs = self.build(descriptor)
        before = rhs.get(0)
        x0 = generate_random_store(descriptor.slice_size, descriptor.steps, seed=13)

        self.assembler.implement_initial_condition(descriptor, x0, rhs)

        n = descriptor.level.nodes
        after = rhs.get(0)
        np.testing.assert_array_equal(after[:n], x0.get(0)[:n])
        np.testing.assert_array_equal(after[n:], before[n:])

    def test_forcing_size_mismatch(self):
        """Forcing of the wrong length is reported."""
        descriptor = generate_descriptor(nodes=5, steps=2)
        descriptor.level.forcing = lambda context: np.zeros(3)

        with pytest.raises(SizeMismatchError):
            self.build(descriptor)


class TestFunctional:
    """Test cases for evaluate_functional."""

    def test_exact_tracking(self):
        """State equal to the target with zero dual state costs nothing."""
        descriptor = generate_descriptor(
            nodes=9, steps=4, gamma=1.0, problem=QuadraticStateProblem()
        )
        values = evaluate_functional(descriptor, generate_exact_solution(descriptor))

        assert values.tracking == pytest.approx(0.0, abs=1e-14)
        assert values.control == 0.0
        assert values.total == pytest.approx(0.0, abs=1e-14)

    def test_constant_target(self):
        """Zero state against a unit target over [0, 1] x [0, 1]."""
        problem = OptimalControlProblem(target=1.0)
        descriptor = generate_descriptor(nodes=9, steps=4, gamma=2.0, problem=problem)
        x = TimeSliceStore(descriptor.slice_size, descriptor.steps)

        values = evaluate_functional(descriptor, x)

        assert values.tracking == pytest.approx(1.0)
        assert values.terminal == pytest.approx(1.0)
        assert values.total == pytest.approx(0.5 + 0.5 * 2.0)

    def test_control_from_dual_state(self):
        """The control is recovered as -lambda/alpha."""
        descriptor = generate_descriptor(nodes=9, steps=4, alpha=0.5)
        n = descriptor.level.nodes
        x = TimeSliceStore(descriptor.slice_size, descriptor.steps)
        vector = np.zeros(descriptor.slice_size)
        vector[n:] = 1.0
        for step in range(descriptor.num_slices):
            x.set(step, vector)

        values = evaluate_functional(descriptor, x)

        assert values.control == pytest.approx(2.0)
        assert values.total == pytest.approx(0.5 * 0.5 * 4.0)

    def test_control_skips_constraint_blocks(self):
        """Dual states map onto primal states by block, constraint blocks stay zero."""
        layout = SliceLayout(
            size=7, blocks={"u": (0, 3), "p": (3, 4), "v": (4, 7)},
            primal=("u", "p"), dual=("v",), constraints=("p",)
        )
        vector = np.array([9.0, 9.0, 9.0, 9.0, 1.0, 2.0, 3.0])

        control = control_from_dual(layout, vector, alpha=0.5)

        np.testing.assert_array_equal(control, [-2.0, -4.0, -6.0, 0.0, 0.0, 0.0, 0.0])

    def test_control_block_size_mismatch(self):
        """Paired state blocks of different length are rejected."""
        layout = SliceLayout(size=5, blocks={"y": (0, 3), "l": (3, 5)}, primal=("y",), dual=("l",))

        with pytest.raises(SizeMismatchError):
            control_from_dual(layout, np.ones(5), alpha=1.0)
