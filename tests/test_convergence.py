"""
Unit Tests for the Convergence Checker and the Normal Equations
---------------------------------------------------------------
"""

import pytest
import numpy as np

from orbdet.errors import SingularInformationMatrixError
from orbdet.estimation.convergence import ConvergenceStatus, EstimationConvergenceChecker
from orbdet.estimation.orbit_determination_manager import normalize_design_matrix, solve_normal_equations
from orbdet.estimation.pod import EstimationState, PodOutput


class TestConvergenceChecker:

    def test_continue_while_improving(self):
        checker = EstimationConvergenceChecker(maximum_iterations=5)
        assert checker.check([])[0] == ConvergenceStatus.CONTINUE
        assert checker.check([10.0])[0] == ConvergenceStatus.CONTINUE
        assert checker.check([10.0, 1.0, 0.1])[0] == ConvergenceStatus.CONTINUE

    def test_minimum_residual(self):
        checker = EstimationConvergenceChecker(minimum_residual=1e-6)
        status, reason = checker.check([10.0, 1e-7])
        assert status == ConvergenceStatus.CONVERGED
        assert "below minimum" in reason

    def test_minimum_residual_change(self):
        checker = EstimationConvergenceChecker(minimum_residual_change=1e-3)
        assert checker.check([1.0, 0.5])[0] == ConvergenceStatus.CONTINUE
        assert checker.check([1.0, 0.5, 0.49999])[0] == ConvergenceStatus.CONVERGED

    def test_stalled_without_improvement(self):
        checker = EstimationConvergenceChecker(maximum_iterations=10, iterations_without_improvement=2)
        assert checker.check([1.0, 0.1, 0.2])[0] == ConvergenceStatus.CONTINUE
        status, reason = checker.check([1.0, 0.1, 0.2, 0.3])
        assert status == ConvergenceStatus.STALLED
        assert "No improvement" in reason

    def test_maximum_iterations(self):
        checker = EstimationConvergenceChecker(maximum_iterations=3)
        assert checker.check([3.0, 2.0])[0] == ConvergenceStatus.CONTINUE
        assert checker.check([3.0, 2.0, 1.0])[0] == ConvergenceStatus.MAX_ITERATIONS_REACHED

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            EstimationConvergenceChecker(maximum_iterations=0)
        with pytest.raises(ValueError):
            EstimationConvergenceChecker(iterations_without_improvement=0)


class TestNormalEquations:

    @pytest.fixture
    def linear_problem(self):
        rng = np.random.default_rng(11)
        design = rng.normal(size=(40, 3)) * np.array([1e3, 1.0, 1e-4])
        truth = np.array([0.2, -3.0, 500.0])
        return design, truth

    def test_normalization_terms(self):
        design = np.array([[1.0, -4.0, 0.0],
                           [-2.0, 3.0, 0.0]])
        np.testing.assert_allclose(normalize_design_matrix(design), [2.0, 4.0, 1.0])

    def test_exact_solution_of_linear_problem(self, linear_problem):
        design, truth = linear_problem
        residuals = design @ truth
        update, information, normalization, condition_number = solve_normal_equations(
            design, np.ones(len(residuals)), residuals, np.zeros((3, 3)), np.zeros(3))

        np.testing.assert_allclose(update, truth, rtol=1e-10)
        np.testing.assert_allclose(normalization, np.max(np.abs(design), axis=0))
        np.testing.assert_allclose(np.diag(information),
                                   np.sum((design / normalization)**2, axis=0), rtol=1e-12)
        assert condition_number < 1e3

    def test_weights_and_a_priori(self, linear_problem):
        design, truth = linear_problem
        rng = np.random.default_rng(5)
        residuals = design @ truth + rng.normal(scale=0.1, size=len(design))
        weights = np.full(len(residuals), 4.0)
        inverse_a_priori = np.diag([1.0, 2.0, 3.0])
        offset = np.array([0.1, 0.2, 0.3])

        update, _, _, _ = solve_normal_equations(design, weights, residuals, inverse_a_priori, offset)

        expected = np.linalg.solve(design.T @ (weights[:, None] * design) + inverse_a_priori,
                                   design.T @ (weights * residuals) + inverse_a_priori @ offset)
        np.testing.assert_allclose(update, expected, rtol=1e-9)

    def test_duplicate_column_is_singular(self, linear_problem):
        design, _ = linear_problem
        design = np.column_stack((design, 2.0 * design[:, 1]))
        with pytest.raises(SingularInformationMatrixError) as excinfo:
            solve_normal_equations(design, np.ones(len(design)), np.ones(len(design)),
                                   np.zeros((4, 4)), np.zeros(4))
        assert excinfo.value.partial_output is None

    def test_constraint_direction_resolves_null_space(self):
        """Columns summing to zero along v, as for the norm of an estimated quaternion."""
        rng = np.random.default_rng(3)
        base = rng.normal(size=(40, 2))
        design = np.column_stack((base, base[:, 0] + base[:, 1]))
        null_direction = np.array([1.0, 1.0, -1.0])
        truth = np.array([0.5, 0.3, 0.8])
        residuals = design @ truth

        with pytest.raises(SingularInformationMatrixError):
            solve_normal_equations(design, np.ones(40), residuals, np.zeros((3, 3)), np.zeros(3))

        update, information, _, condition_number = solve_normal_equations(
            design, np.ones(40), residuals, np.zeros((3, 3)), np.zeros(3), constraint_directions=[null_direction])
        assert update @ null_direction == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(update, truth, rtol=1e-10)
        assert np.all(np.isfinite(np.linalg.inv(information)))
        assert condition_number < 1e3

    def test_condition_number_limit(self, linear_problem):
        design, truth = linear_problem
        design = design.copy()
        design[:, 2] = design[:, 1] + 1e-5 * design[:, 2] / np.max(np.abs(design[:, 2]))
        with pytest.raises(SingularInformationMatrixError) as excinfo:
            solve_normal_equations(design, np.ones(len(design)), design @ truth, np.zeros((3, 3)),
                                   np.zeros(3), condition_number_limit=1e6)
        assert excinfo.value.condition_number > 1e6

    def test_non_finite_entries(self, linear_problem):
        design, _ = linear_problem
        design = design.copy()
        design[0, 0] = np.nan
        with pytest.raises(SingularInformationMatrixError):
            solve_normal_equations(design, np.ones(len(design)), np.ones(len(design)),
                                   np.zeros((3, 3)), np.zeros(3))


def test_pod_output_covariance():
    """Formal errors and correlations are unnormalized from the normalized information matrix."""
    design = np.array([[1.0, 0.0],
                       [0.0, 10.0],
                       [1.0, 10.0]])
    normalization = normalize_design_matrix(design)
    normalized = design / normalization
    information = normalized.T @ normalized
    output = PodOutput(np.zeros(2), np.zeros(3), design, normalization, information, np.ones(3), [np.zeros(2)],
                       [np.zeros(3)], [0.0], 0, EstimationState.CONVERGED, "")

    covariance = np.linalg.inv(design.T @ design)
    np.testing.assert_allclose(output.unnormalized_covariance, covariance)
    np.testing.assert_allclose(output.formal_errors, np.sqrt(np.diag(covariance)))
    np.testing.assert_allclose(np.diag(output.correlations), np.ones(2))
    assert output.converged
    assert output.number_of_iterations == 1


@pytest.mark.parametrize("state", [EstimationState.STALLED, EstimationState.MAX_ITERATIONS_REACHED,
                                   EstimationState.FAILED])
def test_only_converged_state_counts_as_converged(state):
    output = PodOutput(np.zeros(1), np.zeros(1), np.ones((1, 1)), np.ones(1), np.ones((1, 1)), np.ones(1),
                       [np.zeros(1)], [np.zeros(1)], [0.0], 0, state, "")
    assert not output.converged
