"""
Input and output of the orbit/attitude determination least-squares adjustment.
"""
from enum import Enum
from typing import Dict, Optional

import numpy as np

from orbdet.errors import ConfigurationError
from orbdet.estimation.observation_models import LinkEnds, ObservableType
from orbdet.estimation.observation_simulator import SingleObservationSet


class EstimationState(Enum):
    INITIALIZED = "initialized"
    PROPAGATING = "propagating"
    COMPUTING_PARTIALS = "computing_partials"
    USING_OBSERVATIONS = "using_observations"
    SOLVING_NORMAL_EQUATIONS = "solving_normal_equations"
    CHECKING_CONVERGENCE = "checking_convergence"
    CONVERGED = "converged"
    STALLED = "stalled"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


class PodInput:
    """
    Observations, weights and a priori information of an estimation.

    Args:
        observations_and_times (dict): {observable: {link_ends: SingleObservationSet}}.
        number_of_parameters (int): Size of the parameter vector.
        inverse_a_priori_covariance (np.ndarray): P^-1 (no a priori information if None).
        initial_parameter_deviation (np.ndarray): Perturbation added to the parameters before
                                                  the first iteration.
    """
    def __init__(self, observations_and_times: Dict[ObservableType, Dict[LinkEnds, SingleObservationSet]],
                 number_of_parameters: int,
                 inverse_a_priori_covariance: Optional[np.ndarray] = None,
                 initial_parameter_deviation: Optional[np.ndarray] = None):
        self.observations_and_times = observations_and_times
        self.number_of_parameters = number_of_parameters

        if inverse_a_priori_covariance is None:
            inverse_a_priori_covariance = np.zeros((number_of_parameters, number_of_parameters))
        self.inverse_a_priori_covariance = np.asarray(inverse_a_priori_covariance, dtype=float)
        if self.inverse_a_priori_covariance.shape != (number_of_parameters, number_of_parameters):
            raise ConfigurationError(
                f"Inverse a priori covariance must be {number_of_parameters}x{number_of_parameters}, "
                f"got {self.inverse_a_priori_covariance.shape}.")

        if initial_parameter_deviation is None:
            initial_parameter_deviation = np.zeros(number_of_parameters)
        self.initial_parameter_deviation = np.asarray(initial_parameter_deviation, dtype=float)
        if self.initial_parameter_deviation.shape != (number_of_parameters,):
            raise ConfigurationError(
                f"Initial parameter deviation must have {number_of_parameters} entries.")

        self.weights = {observable: {link_ends: np.ones(observation_set.number_of_observation_entries)
                                     for link_ends, observation_set in per_link_ends.items()}
                        for observable, per_link_ends in observations_and_times.items()}

    def observation_sets(self):
        """Yields (observable, link_ends, SingleObservationSet) in concatenation order."""
        for observable, per_link_ends in self.observations_and_times.items():
            for link_ends, observation_set in per_link_ends.items():
                yield observable, link_ends, observation_set

    @property
    def total_number_of_observations(self) -> int:
        return sum(observation_set.number_of_observation_entries for _, _, observation_set in self.observation_sets())

    @property
    def concatenated_observations(self) -> np.ndarray:
        return np.concatenate([s.concatenated_observations for _, _, s in self.observation_sets()])

    @property
    def concatenated_weights(self) -> np.ndarray:
        return np.concatenate([self.weights[observable][link_ends] for observable, link_ends, _ in self.observation_sets()])

    def set_constant_weight(self, weight: float):
        for observable, link_ends, _ in self.observation_sets():
            self.weights[observable][link_ends][:] = weight

    def set_constant_weight_per_observable(self, weights: Dict[ObservableType, float]):
        for observable, link_ends, _ in self.observation_sets():
            if observable in weights:
                self.weights[observable][link_ends][:] = weights[observable]

    def set_constant_weight_per_link_ends(self, observable: ObservableType, link_ends: LinkEnds, weight: float):
        if observable not in self.weights or link_ends not in self.weights[observable]:
            raise ConfigurationError(f"No {observable.value} observations for {link_ends}.")
        self.weights[observable][link_ends][:] = weight


class PodOutput:
    """
    Result of an estimation.

    Attributes:
        parameter_estimate (np.ndarray): Best parameter vector.
        residuals (np.ndarray): Residuals (observed - computed) of the best iteration.
        design_matrix (np.ndarray): Unnormalized design matrix of the best iteration.
        normalization_terms (np.ndarray): Column scaling D of the design matrix.
        normalized_information_matrix (np.ndarray): D^-1 (H^T W H + P^-1 + C) D^-1, with C the unit-norm
                                                    constraints of estimated quaternions.
        inverse_normalized_covariance (np.ndarray): Same as the normalized information matrix.
        weights (np.ndarray): Observation weights.
        parameter_history (list[np.ndarray]): Parameters used in each iteration.
        residual_history (list[np.ndarray]): Residuals of each iteration.
        rms_history (list[float]): RMS residual of each iteration.
        best_iteration (int): Index of the iteration with the lowest RMS residual.
        termination_state (EstimationState): CONVERGED, STALLED (no improvement on the best RMS
                                             residual), MAX_ITERATIONS_REACHED, or FAILED for the
                                             partial output of an estimation whose normal
                                             equations could not be solved.
        termination_reason (str): Description of the stopping criterion.
    """
    def __init__(self, parameter_estimate, residuals, design_matrix, normalization_terms,
                 normalized_information_matrix, weights, parameter_history, residual_history, rms_history,
                 best_iteration, termination_state, termination_reason):
        self.parameter_estimate = parameter_estimate
        self.residuals = residuals
        self.design_matrix = design_matrix
        self.normalization_terms = normalization_terms
        self.normalized_information_matrix = normalized_information_matrix
        self.weights = weights
        self.parameter_history = parameter_history
        self.residual_history = residual_history
        self.rms_history = rms_history
        self.best_iteration = best_iteration
        self.termination_state = termination_state
        self.termination_reason = termination_reason

    @property
    def inverse_normalized_covariance(self) -> np.ndarray:
        return self.normalized_information_matrix

    @property
    def normalized_design_matrix(self) -> np.ndarray:
        return self.design_matrix / self.normalization_terms

    @property
    def normalized_covariance(self) -> np.ndarray:
        return np.linalg.inv(self.normalized_information_matrix)

    @property
    def unnormalized_covariance(self) -> np.ndarray:
        D_inv = 1.0 / self.normalization_terms
        return self.normalized_covariance * np.outer(D_inv, D_inv)

    @property
    def formal_errors(self) -> np.ndarray:
        return np.sqrt(np.diag(self.unnormalized_covariance))

    @property
    def correlations(self) -> np.ndarray:
        covariance = self.unnormalized_covariance
        sigma = np.sqrt(np.diag(covariance))
        return covariance / np.outer(sigma, sigma)

    @property
    def converged(self) -> bool:
        return self.termination_state == EstimationState.CONVERGED

    @property
    def number_of_iterations(self) -> int:
        return len(self.rms_history)
