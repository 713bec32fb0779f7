"""
Orbit/Attitude Determination Manager.

Iterative batch least-squares adjustment of initial states and model parameters:

    1. Propagate the dynamics and variational equations with the current parameters.
    2. Compute the observations and their partials w.r.t. the parameters.
    3. Form residuals (observed - computed) and the column-normalized normal equations.
    4. Check the normal equations, solve them and update the parameters. The norms of
       estimated quaternions are constrained in the normal equations, and the quaternions
       are renormalized by the parameter set.
    5. Check convergence.

The estimate returned is the one with the lowest RMS residual over all iterations. The
run ends as CONVERGED, STALLED or MAX_ITERATIONS_REACHED. A failed solve ends it as FAILED
and raises SingularInformationMatrixError.
"""
import warnings
from typing import List, Optional

import numpy as np

from orbdet.environment.bodies import Environment
from orbdet.errors import SingularInformationMatrixError
from orbdet.estimation.convergence import ConvergenceStatus, EstimationConvergenceChecker
from orbdet.estimation.observation_models import ObservationSettings
from orbdet.estimation.observation_partials import ObservationPartialCalculator
from orbdet.estimation.observation_simulator import (
    ObservationSimulationSettings,
    create_observation_simulators,
    simulate_observations,
)
from orbdet.estimation.parameters import EstimatableParameterSet, InitialRotationalState
from orbdet.estimation.pod import EstimationState, PodInput, PodOutput
from orbdet.propagators.settings import IntegratorSettings
from orbdet.propagators.simulator import VariationalEquationsSolver

# Ratio of the last to the best RMS residual above which the estimation is reported as diverging
DIVERGENCE_WARNING_RATIO = 10.0

TERMINATION_STATES = {
    ConvergenceStatus.CONVERGED: EstimationState.CONVERGED,
    ConvergenceStatus.STALLED: EstimationState.STALLED,
    ConvergenceStatus.MAX_ITERATIONS_REACHED: EstimationState.MAX_ITERATIONS_REACHED,
}


def normalize_design_matrix(design_matrix: np.ndarray) -> np.ndarray:
    """
    Column scaling D of the design matrix: the largest absolute entry of each column
    (1 for all-zero columns).
    """
    normalization = np.max(np.abs(design_matrix), axis=0) if design_matrix.size else np.ones(design_matrix.shape[1])
    normalization = np.asarray(normalization, dtype=float)
    normalization[normalization == 0.0] = 1.0
    return normalization


def solve_normal_equations(design_matrix: np.ndarray, weights: np.ndarray, residuals: np.ndarray,
                           inverse_a_priori_covariance: np.ndarray, a_priori_offset: np.ndarray,
                           condition_number_limit: float = 1e14,
                           constraint_directions: Optional[List[np.ndarray]] = None):
    """
    Solves the column-normalized weighted least-squares normal equations

        D^-1 (H^T W H + P^-1 + C) D^-1 dp_n = D^-1 (H^T W r + P^-1 (p_apriori - p)),   dp = D^-1 dp_n

    Each constraint direction v (a direction in which the observations carry no information,
    such as the norm of an estimated quaternion) adds C = w v v^T, with w set to the mean
    diagonal of the normalized information matrix. The constraints are satisfied by the
    current parameters, so they add no right-hand side. Where neither the observations nor
    the a priori information act along v, the update has no component along v.

    Args:
        design_matrix (np.ndarray): H, shape (m, P).
        weights (np.ndarray): Diagonal of W, shape (m,).
        residuals (np.ndarray): r = observed - computed, shape (m,).
        inverse_a_priori_covariance (np.ndarray): P^-1, shape (P, P).
        a_priori_offset (np.ndarray): p_apriori - p, shape (P,).
        condition_number_limit (float): Largest accepted condition number of the normalized matrix.
        constraint_directions (list[np.ndarray]): Constrained parameter directions, shape (P,) each.

    Returns:
        tuple: (parameter update dp, normalized information matrix, normalization terms D,
                condition number).

    Raises:
        SingularInformationMatrixError: If the normalized matrix has non-finite entries, a
                                        condition number above the limit, or is not positive definite.
    """
    normalization = normalize_design_matrix(design_matrix)
    normalized_design = design_matrix / normalization
    normalized_inverse_a_priori = inverse_a_priori_covariance / np.outer(normalization, normalization)

    information = normalized_design.T @ (weights[:, np.newaxis] * normalized_design) + normalized_inverse_a_priori
    right_hand_side = (normalized_design.T @ (weights * residuals)
                       + (inverse_a_priori_covariance @ a_priori_offset) / normalization)

    if not (np.all(np.isfinite(information)) and np.all(np.isfinite(right_hand_side))):
        raise SingularInformationMatrixError("Normal equations contain non-finite entries.")

    if constraint_directions:
        constraint_weight = np.trace(information) / len(information)
        for direction in constraint_directions:
            normalized_direction = np.asarray(direction, dtype=float) / normalization
            information = information + constraint_weight * np.outer(normalized_direction, normalized_direction) / (
                normalized_direction @ normalized_direction)

    condition_number = np.linalg.cond(information)
    if not np.isfinite(condition_number) or condition_number > condition_number_limit:
        raise SingularInformationMatrixError(
            f"Normalized information matrix is ill-conditioned (condition number {condition_number:.3e} "
            f"exceeds {condition_number_limit:.3e}).", condition_number)

    try:
        lower = np.linalg.cholesky(information)
        normalized_update = np.linalg.solve(lower.T, np.linalg.solve(lower, right_hand_side))
    except np.linalg.LinAlgError as e:
        raise SingularInformationMatrixError(
            f"Cholesky factorization of the normalized information matrix failed: {e}", condition_number) from e

    return normalized_update / normalization, information, normalization, condition_number


class OrbitDeterminationManager:
    """
    Estimates initial states and model parameters from observations.

    Args:
        environment (Environment): Bodies of the simulation.
        parameter_set (EstimatableParameterSet): Estimated parameters.
        observation_settings (list[ObservationSettings]): Observation models.
        integrator_settings (IntegratorSettings): Integrator settings.
        propagator_settings: Translational, rotational or multi-type propagator settings.
        integrate_on_creation (bool): Propagate the variational equations immediately.
        condition_number_limit (float): Largest accepted condition number of the normal equations.
    """
    def __init__(self, environment: Environment, parameter_set: EstimatableParameterSet,
                 observation_settings: List[ObservationSettings], integrator_settings: IntegratorSettings,
                 propagator_settings, integrate_on_creation: bool = True, condition_number_limit: float = 1e14):
        self.environment = environment
        self.parameter_set = parameter_set
        self.condition_number_limit = condition_number_limit

        self.observation_simulators = create_observation_simulators(observation_settings, environment)
        self.variational_equations_solver = VariationalEquationsSolver(
            environment, integrator_settings, propagator_settings, parameter_set,
            integrate_on_creation=integrate_on_creation)
        self.partial_calculator = ObservationPartialCalculator(
            environment, self.variational_equations_solver, parameter_set)

        self.state = EstimationState.INITIALIZED
        self.state_history = [EstimationState.INITIALIZED]

    def _set_state(self, state: EstimationState):
        self.state = state
        self.state_history.append(state)

    def get_observation_simulators(self) -> dict:
        return self.observation_simulators

    def quaternion_norm_directions(self) -> List[np.ndarray]:
        """
        Parameter-space directions along the norm of each estimated initial quaternion, at
        the current parameter values. The observations carry no information along them.
        """
        directions = []
        size = self.parameter_set.parameter_set_size
        for parameter, (index, _) in zip(self.parameter_set.parameters, self.parameter_set.parameter_indices):
            if isinstance(parameter, InitialRotationalState):
                direction = np.zeros(size)
                direction[index:index + 4] = parameter.get_parameter_value()[0:4]
                directions.append(direction)
        return directions

    def simulate_observations(self, simulation_settings: List[ObservationSimulationSettings],
                              noise_std: Optional[float] = None, rng: Optional[np.random.Generator] = None) -> dict:
        """
        Propagates with the current parameter values and simulates observations.

        Returns:
            dict: {observable: {link_ends: SingleObservationSet}}.
        """
        self.variational_equations_solver.integrate_variational_and_dynamical_equations()
        return simulate_observations(simulation_settings, self.observation_simulators, noise_std, rng)

    def compute_observations_and_partials(self, pod_input: PodInput):
        """
        Computed observations and design matrix for the current propagation, concatenated
        in the order of the observations of pod_input.

        Returns:
            tuple: (computed observations (m,), design matrix (m, P)).
        """
        computed = []
        partials = []
        for observable, link_ends, observation_set in pod_input.observation_sets():
            model = self.observation_simulators[observable].get_observation_model(link_ends)
            for t in observation_set.times:
                value, partial = self.partial_calculator.compute(model, t, observation_set.reference_link_end)
                computed.append(value)
                partials.append(partial)
        return np.concatenate(computed), np.vstack(partials)

    def estimate_parameters(self, pod_input: PodInput,
                            convergence_checker: Optional[EstimationConvergenceChecker] = None,
                            verbose: bool = False) -> PodOutput:
        """
        Runs the iterative least-squares estimation.

        Args:
            pod_input (PodInput): Observations, weights and a priori information.
            convergence_checker (EstimationConvergenceChecker): Stopping criteria (defaults if None).
            verbose (bool): Print the RMS residual of every iteration.

        Returns:
            PodOutput: Best estimate and iteration histories. The parameter set and the
                       environment are reset to the best estimate.

        Raises:
            SingularInformationMatrixError: If the normal equations of an iteration cannot be
                solved; its `partial_output` holds the iterations completed so far.
        """
        if convergence_checker is None:
            convergence_checker = EstimationConvergenceChecker()
        if pod_input.number_of_parameters != self.parameter_set.parameter_set_size:
            raise ValueError(f"PodInput is set up for {pod_input.number_of_parameters} parameters, "
                             f"the parameter set has {self.parameter_set.parameter_set_size}.")

        solver = self.variational_equations_solver
        observations = pod_input.concatenated_observations
        weights = pod_input.concatenated_weights

        a_priori_parameters = self.parameter_set.get_full_parameter_values()
        self.parameter_set.reset_parameter_values(a_priori_parameters + pod_input.initial_parameter_deviation)
        parameters = self.parameter_set.get_full_parameter_values()

        parameter_history = []
        residual_history = []
        rms_history = []
        design_matrices = []
        information_matrices = []
        normalization_history = []

        if verbose:
            print(f"Estimating {self.parameter_set.parameter_set_size} parameters from "
                  f"{len(observations)} observations...")

        while True:
            self._set_state(EstimationState.PROPAGATING)
            solver.integrate_variational_and_dynamical_equations()

            self._set_state(EstimationState.COMPUTING_PARTIALS)
            computed, design_matrix = self.compute_observations_and_partials(pod_input)

            self._set_state(EstimationState.USING_OBSERVATIONS)
            residuals = observations - computed
            rms = float(np.sqrt(np.mean(residuals**2)))
            parameter_history.append(parameters.copy())
            residual_history.append(residuals)
            rms_history.append(rms)
            design_matrices.append(design_matrix)
            if verbose:
                print(f"Iteration {len(rms_history)}: RMS residual = {rms:.6e}")

            self._set_state(EstimationState.SOLVING_NORMAL_EQUATIONS)
            try:
                update, information, normalization, _ = solve_normal_equations(
                    design_matrix, weights, residuals, pod_input.inverse_a_priori_covariance,
                    a_priori_parameters - parameters, self.condition_number_limit,
                    self.quaternion_norm_directions())
            except SingularInformationMatrixError as e:
                normalization = normalize_design_matrix(design_matrix)
                information = np.full((len(parameters), len(parameters)), np.nan)
                self._set_state(EstimationState.FAILED)
                e.partial_output = self._create_output(
                    parameter_history, residual_history, rms_history, design_matrices,
                    information_matrices + [information], normalization_history + [normalization],
                    weights, EstimationState.FAILED, str(e))
                raise
            information_matrices.append(information)
            normalization_history.append(normalization)

            self._set_state(EstimationState.CHECKING_CONVERGENCE)
            status, reason = convergence_checker.check(rms_history)
            if status != ConvergenceStatus.CONTINUE:
                break

            self.parameter_set.reset_parameter_values(parameters + update)
            parameters = self.parameter_set.get_full_parameter_values()

        if status == ConvergenceStatus.STALLED:
            warnings.warn(f"Estimation stalled: {reason}")
        if rms_history[-1] > DIVERGENCE_WARNING_RATIO * min(rms_history):
            warnings.warn(f"Estimation diverged: final RMS {rms_history[-1]:.6e}, best RMS {min(rms_history):.6e}.")

        final_state = TERMINATION_STATES[status]

        output = self._create_output(parameter_history, residual_history, rms_history, design_matrices,
                                     information_matrices, normalization_history, weights, final_state, reason)

        # Leave the parameters and environment at the best estimate
        solver.reset_parameter_estimate(output.parameter_estimate)
        self._set_state(final_state)

        if verbose:
            print(f"Estimation terminated ({final_state.value}): {reason}")
            print(f"Best iteration: {output.best_iteration + 1}, RMS residual = {rms_history[output.best_iteration]:.6e}")
        return output

    @staticmethod
    def _create_output(parameter_history, residual_history, rms_history, design_matrices, information_matrices,
                       normalization_history, weights, termination_state, reason) -> PodOutput:
        best = int(np.argmin(rms_history))
        return PodOutput(
            parameter_estimate=parameter_history[best].copy(),
            residuals=residual_history[best],
            design_matrix=design_matrices[best],
            normalization_terms=normalization_history[best],
            normalized_information_matrix=information_matrices[best],
            weights=weights,
            parameter_history=parameter_history,
            residual_history=residual_history,
            rms_history=rms_history,
            best_iteration=best,
            termination_state=termination_state,
            termination_reason=reason)
