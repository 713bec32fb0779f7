"""
Propagation of the equations of motion, with or without variational equations.

After every propagation the ephemerides (and rotation models) of the integrated bodies are
replaced by interpolators of the propagated history, so that observation models evaluated
afterwards see the propagated states.
"""
from typing import Callable, List

import numpy as np

from orbdet.dynamics.state_derivatives import (
    AugmentedStateDerivative,
    RotationalStateDerivative,
    TranslationalStateDerivative,
)
from orbdet.dynamics.state_types import StateType, state_block_indices
from orbdet.environment.bodies import Environment
from orbdet.environment.ephemerides import TabulatedEphemeris
from orbdet.environment.rotation_models import TabulatedRotation
from orbdet.errors import ConfigurationError
from orbdet.partials.factory import create_state_derivative_partials
from orbdet.propagators.integrators import integrate
from orbdet.propagators.settings import IntegratorSettings, set_termination_direction
from orbdet.propagators.variational_equations import StatePartialAdditionIndex, VariationalEquations

# Relative slack on the propagated interval accepted by the interpolated histories
PROPAGATED_INTERVAL_TOLERANCE = 1e-9


def create_state_derivatives(environment: Environment, propagator_settings) -> list:
    """Creates the single-type state derivative models of the propagator settings."""
    derivatives = []
    for settings in propagator_settings.single_type_settings():
        if settings.state_type == StateType.TRANSLATIONAL:
            derivatives.append(TranslationalStateDerivative(
                environment, settings.bodies_to_integrate, settings.central_bodies, settings.acceleration_models))
        elif settings.state_type == StateType.ROTATIONAL:
            derivatives.append(RotationalStateDerivative(
                environment, settings.bodies_to_integrate, settings.torque_models))
        else:
            raise ConfigurationError(f"Unsupported state type {settings.state_type}.")
    return derivatives


class PropagationResult:
    """
    Propagated history of the (non-augmented) state.

    Attributes:
        times (np.ndarray): Step times in the order of integration.
        states (np.ndarray): States at the step times, shape (N, n) (relative to the central bodies).
        terminated (bool): True if a stopping condition other than the end time ended the run.
    """
    def __init__(self, times: np.ndarray, states: np.ndarray, dense_output: Callable, state_size: int,
                 terminated: bool = False):
        self.times = times
        self.states = states
        self._dense_output = dense_output
        self.state_size = state_size
        self.terminated = terminated

    def __len__(self):
        return len(self.times)

    @property
    def initial_time(self) -> float:
        return self.times[0]

    @property
    def final_time(self) -> float:
        return self.times[-1]

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1].copy()

    def check_time(self, t: float):
        """
        Raises:
            ConfigurationError: If t lies outside the propagated interval.
        """
        lower, upper = sorted((self.initial_time, self.final_time))
        tolerance = PROPAGATED_INTERVAL_TOLERANCE * max(1.0, upper - lower)
        if not lower - tolerance <= t <= upper + tolerance:
            raise ConfigurationError(f"Time {t} s is outside the propagated interval [{lower}, {upper}] s.")

    def state_at(self, t: float) -> np.ndarray:
        """Interpolated state at time t (within the propagated interval)."""
        self.check_time(t)
        return np.asarray(self._dense_output(t), dtype=float)[:self.state_size]

    def as_dict(self) -> dict:
        """State history as {time: state}."""
        return {t: state.copy() for t, state in zip(self.times, self.states)}


class DynamicsSimulator:
    """
    Propagates the equations of motion of the integrated bodies.

    Args:
        environment (Environment): Bodies of the simulation.
        integrator_settings (IntegratorSettings): Integrator settings.
        propagator_settings: Translational, rotational or multi-type propagator settings.
        integrate_on_creation (bool): Propagate immediately.
        set_integrated_result (bool): Reset the integrated bodies' ephemerides/rotation models
                                      to the propagated history.
        verbose (bool): Print propagation summaries.
    """
    def __init__(self, environment: Environment, integrator_settings: IntegratorSettings, propagator_settings,
                 integrate_on_creation: bool = True, set_integrated_result: bool = True, verbose: bool = False):
        self.environment = environment
        self.integrator_settings = integrator_settings
        self.propagator_settings = propagator_settings
        self.set_integrated_result = set_integrated_result
        self.verbose = verbose

        if propagator_settings.termination_settings is None:
            raise ConfigurationError("Propagation requires termination settings.")

        self.state_derivative = self._create_state_derivative()
        self.state_layout = state_block_indices(self.state_derivative.integrated_states)
        self.result = None

        if integrate_on_creation:
            self.integrate_equations_of_motion(propagator_settings.initial_states)

    def _create_state_derivative(self) -> AugmentedStateDerivative:
        return AugmentedStateDerivative(self.environment,
                                        create_state_derivatives(self.environment, self.propagator_settings))

    @property
    def state_size(self) -> int:
        return self.state_derivative.state_size

    def _time_bound(self) -> float:
        termination = self.propagator_settings.termination_settings
        t0 = self.integrator_settings.initial_time
        end_time = termination.end_time
        if end_time is not None:
            direction = 1.0 if end_time >= t0 else -1.0
        else:
            direction = -1.0 if self.integrator_settings.propagate_backwards else 1.0
            end_time = direction * np.inf
        set_termination_direction(termination, direction)
        return end_time

    def _is_terminated(self, t: float, y: np.ndarray) -> bool:
        global_state = self.state_derivative.global_states(t, y)
        return self.propagator_settings.termination_settings.is_met(
            t, global_state, self.environment, self.state_layout)

    def _integrate(self, y0: np.ndarray):
        t_bound = self._time_bound()
        if self.verbose:
            print(f"Propagating {len(y0)} states with {self.integrator_settings.method} "
                  f"from t = {self.integrator_settings.initial_time} s...")
        result = integrate(self.state_derivative.compute, y0, t_bound, self.integrator_settings, self._is_terminated)
        if self.verbose:
            print(f"Propagation ended at t = {result.times[-1]} s after {len(result.times) - 1} steps.")
        return result

    def integrate_equations_of_motion(self, initial_states: np.ndarray) -> PropagationResult:
        """
        Propagates the given initial states (relative to the central bodies).

        Returns:
            PropagationResult: Propagated history.
        """
        initial_states = np.asarray(initial_states, dtype=float)
        if initial_states.shape != (self.state_size,):
            raise ConfigurationError(f"Expected {self.state_size} initial state entries, got {initial_states.shape}.")

        integration = self._integrate(initial_states)
        self.result = PropagationResult(integration.times, integration.states, integration.dense_output,
                                        self.state_size, integration.terminated)
        if self.set_integrated_result:
            self._reset_environment_models(self.result.state_at)
        return self.result

    @property
    def state_history(self) -> PropagationResult:
        return self.result

    def _reset_environment_models(self, state_interpolator: Callable[[float], np.ndarray]):
        """Replaces the integrated bodies' ephemerides and rotation models by the propagated history."""
        derivatives = self.state_derivative.state_derivatives
        translational = derivatives.get(StateType.TRANSLATIONAL)
        if translational is not None:
            start = self.state_derivative.state_type_start_indices[StateType.TRANSLATIONAL]
            for i in translational.update_order:
                body = self.environment.get_body(translational.bodies_to_integrate[i])
                central = self.environment.get_body(translational.central_bodies[i])
                index = start + 6 * i
                body.ephemeris = TabulatedEphemeris(_block_interpolator(state_interpolator, index, 6),
                                                    origin=central.ephemeris)

        rotational = derivatives.get(StateType.ROTATIONAL)
        if rotational is not None:
            start = self.state_derivative.state_type_start_indices[StateType.ROTATIONAL]
            for i, name in enumerate(rotational.bodies_to_integrate):
                body = self.environment.get_body(name)
                body.rotation_model = TabulatedRotation(_block_interpolator(state_interpolator, start + 7 * i, 7))


def _block_interpolator(state_interpolator: Callable, start: int, size: int) -> Callable:
    return lambda t: state_interpolator(t)[start:start + size]


class VariationalEquationsSolver(DynamicsSimulator):
    """
    Propagates the equations of motion together with the state transition matrix Phi and
    the sensitivity matrix S of the estimated parameters.

    The initial states are taken from the initial state parameters of the parameter set.

    Args:
        environment (Environment): Bodies of the simulation.
        integrator_settings (IntegratorSettings): Integrator settings.
        propagator_settings: Translational, rotational or multi-type propagator settings.
        parameter_set (EstimatableParameterSet): Estimated parameters.
        integrate_on_creation (bool): Propagate immediately.
        verbose (bool): Print propagation summaries.
    """
    def __init__(self, environment: Environment, integrator_settings: IntegratorSettings, propagator_settings,
                 parameter_set, integrate_on_creation: bool = True, verbose: bool = False):
        self.parameter_set = parameter_set
        super().__init__(environment, integrator_settings, propagator_settings,
                         integrate_on_creation=False, set_integrated_result=True, verbose=verbose)
        if integrate_on_creation:
            self.integrate_variational_and_dynamical_equations()

    def _create_state_derivative(self) -> AugmentedStateDerivative:
        derivatives = create_state_derivatives(self.environment, self.propagator_settings)
        integrated_states = {d.state_type: d.bodies_to_integrate for d in derivatives}
        variational_equations = VariationalEquations(
            create_state_derivative_partials(self.propagator_settings, self.environment),
            integrated_states,
            self.parameter_set.estimated_initial_states,
            self.parameter_set,
            self._central_body_addition_indices(derivatives))
        return AugmentedStateDerivative(self.environment, derivatives, variational_equations)

    @staticmethod
    def _central_body_addition_indices(derivatives: list) -> List[StatePartialAdditionIndex]:
        """
        Column additions for bodies integrated w.r.t. an integrated central body: a partial
        w.r.t. the global position of the body also acts on the relative position of its
        central body. Deepest bodies come first so chained central bodies accumulate.

        Only the position columns are added: the velocity columns of the body hold the
        kinematic identity, which does not carry over to the central body. Velocity-dependent
        partials (drag) are therefore not chained to an integrated central body.
        """
        translational = [d for d in derivatives if d.state_type == StateType.TRANSLATIONAL]
        if not translational:
            return []
        translational = translational[0]
        depth_order = list(reversed(translational.update_order))
        pairs = dict(translational.integrated_central_body_pairs())
        # Translational states always start at index 0
        return [StatePartialAdditionIndex(6 * i, 6 * pairs[i], 3) for i in depth_order if i in pairs]

    @property
    def variational_equations(self) -> VariationalEquations:
        return self.state_derivative.variational_equations

    @property
    def number_of_columns(self) -> int:
        return self.state_derivative.number_of_variational_columns

    def initial_states_from_parameters(self) -> np.ndarray:
        states = []
        for state_type, bodies in self.state_derivative.integrated_states.items():
            for body in bodies:
                parameter = self.parameter_set.initial_state_parameter(state_type, body)
                if parameter is None:
                    raise ConfigurationError(f"No initial {state_type.value} state parameter for '{body}'.")
                states.append(parameter.get_parameter_value())
        return np.concatenate(states)

    def integrate_variational_and_dynamical_equations(self) -> PropagationResult:
        """
        Propagates [x | Phi | S] from the current parameter values, starting from Phi = I, S = 0.
        """
        x0 = self.initial_states_from_parameters()
        y0 = np.concatenate((x0, self.state_derivative.initial_variational_state()))

        integration = self._integrate(y0)
        n = self.state_size
        self._augmented_output = integration.dense_output
        self.variational_history = integration.states[:, n:].reshape((-1, n, self.number_of_columns))
        self.result = PropagationResult(integration.times, integration.states[:, :n], integration.dense_output,
                                        n, integration.terminated)
        self._reset_environment_models(self.result.state_at)
        return self.result

    def state_transition_and_sensitivity_matrix(self, t: float) -> np.ndarray:
        """[Phi | S] at time t, shape (n, n + p)."""
        if self.result is None:
            raise ConfigurationError("The variational equations have not been propagated yet.")
        self.result.check_time(t)
        n = self.state_size
        return np.asarray(self._augmented_output(t), dtype=float)[n:].reshape((n, self.number_of_columns))

    def state_transition_matrix(self, t: float) -> np.ndarray:
        return self.state_transition_and_sensitivity_matrix(t)[:, :self.state_size]

    def sensitivity_matrix(self, t: float) -> np.ndarray:
        return self.state_transition_and_sensitivity_matrix(t)[:, self.state_size:]

    def reset_parameter_estimate(self, values: np.ndarray) -> PropagationResult:
        """Sets new parameter values and propagates again."""
        self.parameter_set.reset_parameter_values(values)
        return self.integrate_variational_and_dynamical_equations()
