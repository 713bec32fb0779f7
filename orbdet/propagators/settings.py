"""
Integrator, termination and propagator settings.
"""
from typing import Callable, Dict, List, Optional

import numpy as np

from orbdet.dynamics.state_types import STATE_TYPE_ORDER, StateType
from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError

# Integration methods provided by scipy.integrate as step-wise OdeSolver classes
SCIPY_METHODS = ('RK23', 'RK45', 'DOP853', 'Radau', 'BDF', 'LSODA')


class IntegratorSettings:
    """
    Numerical integrator settings.

    Args:
        method (str): 'RK4' (fixed step) or a scipy.integrate solver name ('DOP853', 'RK45', ...).
        initial_time (float): Start time of the propagation [s].
        step_size (float): Fixed step for RK4, or the first step of a variable-step solver
                           (chosen by the solver if None).
        rtol (float): Relative tolerance (variable-step only).
        atol (float): Absolute tolerance (variable-step only).
        max_step (float): Maximum step size (variable-step only).
        propagate_backwards (bool): Integration direction when no stopping condition defines an end time.
    """
    def __init__(self, method: str = 'DOP853', initial_time: float = 0.0, step_size: Optional[float] = None,
                 rtol: float = 1e-10, atol: float = 1e-12, max_step: float = np.inf,
                 propagate_backwards: bool = False):
        if method != 'RK4' and method not in SCIPY_METHODS:
            raise ConfigurationError(f"Unknown integration method '{method}'.")
        if method == 'RK4' and (step_size is None or step_size <= 0.0):
            raise ConfigurationError("The RK4 integrator requires a positive step size.")
        self.method = method
        self.initial_time = initial_time
        self.step_size = step_size
        self.rtol = rtol
        self.atol = atol
        self.max_step = max_step
        self.propagate_backwards = propagate_backwards

    @property
    def is_fixed_step(self) -> bool:
        return self.method == 'RK4'


class TerminationSettings:
    """
    Base class of the propagation stopping conditions, evaluated after each accepted step.
    """
    def is_met(self, t: float, global_state: np.ndarray, environment: Environment, state_layout) -> bool:
        raise NotImplementedError

    @property
    def end_time(self) -> Optional[float]:
        """Time bound of the propagation, if this condition defines one."""
        return None


class TimeTermination(TerminationSettings):
    """Stops once the propagation time has reached end_time (in the direction of propagation)."""

    def __init__(self, end_time: float):
        self._end_time = end_time
        self.direction = 1.0

    @property
    def end_time(self) -> Optional[float]:
        return self._end_time

    def is_met(self, t, global_state, environment, state_layout) -> bool:
        return self.direction * (t - self._end_time) >= 0.0


class DependentVariableTermination(TerminationSettings):
    """
    Stops when the distance (or altitude, if reference_radius is given) of a body w.r.t.
    another body crosses a threshold.

    Args:
        body (str): Propagated or environment body.
        central_body (str): Body the distance is measured from.
        limit_value (float): Threshold [km].
        use_as_lower_limit (bool): Stop when the value falls below the limit (above otherwise).
        reference_radius (float): Subtracted from the distance (altitude).
    """
    def __init__(self, body: str, central_body: str, limit_value: float, use_as_lower_limit: bool = True,
                 reference_radius: float = 0.0):
        self.body = body
        self.central_body = central_body
        self.limit_value = limit_value
        self.use_as_lower_limit = use_as_lower_limit
        self.reference_radius = reference_radius

    def dependent_variable(self, t, global_state, environment, state_layout) -> float:
        positions = []
        for name in (self.body, self.central_body):
            index = state_layout.get((StateType.TRANSLATIONAL, name))
            if index is not None:
                positions.append(global_state[index:index + 3])
            else:
                positions.append(environment.get_body(name).state_at(t)[0:3])
        return np.linalg.norm(positions[0] - positions[1]) - self.reference_radius

    def is_met(self, t, global_state, environment, state_layout) -> bool:
        value = self.dependent_variable(t, global_state, environment, state_layout)
        if self.use_as_lower_limit:
            return value < self.limit_value
        return value > self.limit_value


class CustomTermination(TerminationSettings):
    """Stops when predicate(t, global_state) returns True."""

    def __init__(self, predicate: Callable[[float, np.ndarray], bool]):
        self.predicate = predicate

    def is_met(self, t, global_state, environment, state_layout) -> bool:
        return bool(self.predicate(t, global_state))


class HybridTermination(TerminationSettings):
    """
    Combination of conditions: stops when any (fulfil_single=True) or all of them are met.
    """
    def __init__(self, conditions: List[TerminationSettings], fulfil_single: bool = True):
        if not conditions:
            raise ConfigurationError("Hybrid termination requires at least one condition.")
        self.conditions = list(conditions)
        self.fulfil_single = fulfil_single

    @property
    def end_time(self) -> Optional[float]:
        end_times = [c.end_time for c in self.conditions if c.end_time is not None]
        if self.fulfil_single and len(end_times) == 1:
            return end_times[0]
        return None

    def is_met(self, t, global_state, environment, state_layout) -> bool:
        results = [c.is_met(t, global_state, environment, state_layout) for c in self.conditions]
        return any(results) if self.fulfil_single else all(results)


def set_termination_direction(termination: TerminationSettings, direction: float):
    """Sets the propagation direction on every time condition."""
    if isinstance(termination, TimeTermination):
        termination.direction = direction
    elif isinstance(termination, HybridTermination):
        for condition in termination.conditions:
            set_termination_direction(condition, direction)


class SingleTypePropagatorSettings:
    state_type: StateType = None

    def __init__(self, bodies_to_integrate: List[str], initial_states: np.ndarray,
                 termination_settings: TerminationSettings, state_size: int):
        self.bodies_to_integrate = list(bodies_to_integrate)
        self.initial_states = np.asarray(initial_states, dtype=float).copy()
        self.termination_settings = termination_settings
        if self.initial_states.shape != (state_size * len(self.bodies_to_integrate),):
            raise ConfigurationError(
                f"Expected {state_size * len(self.bodies_to_integrate)} initial state entries for "
                f"{self.state_type.value} propagation, got shape {self.initial_states.shape}.")
        if len(set(self.bodies_to_integrate)) != len(self.bodies_to_integrate):
            raise ConfigurationError(f"Duplicate integrated bodies in {self.bodies_to_integrate}.")

    def single_type_settings(self) -> list:
        return [self]

    @property
    def integrated_states(self) -> Dict[StateType, List[str]]:
        return {self.state_type: self.bodies_to_integrate}


class TranslationalPropagatorSettings(SingleTypePropagatorSettings):
    """
    Args:
        central_bodies (list[str]): Central body of each integrated body.
        acceleration_models (dict): Body name -> list of AccelerationModel.
        bodies_to_integrate (list[str]): Integrated bodies.
        initial_states (np.ndarray): Concatenated initial states w.r.t. the central bodies.
        termination_settings (TerminationSettings): Stopping condition.
    """
    state_type = StateType.TRANSLATIONAL

    def __init__(self, central_bodies: List[str], acceleration_models: Dict[str, list],
                 bodies_to_integrate: List[str], initial_states: np.ndarray,
                 termination_settings: TerminationSettings):
        super().__init__(bodies_to_integrate, initial_states, termination_settings, 6)
        if len(central_bodies) != len(self.bodies_to_integrate):
            raise ConfigurationError("Each integrated body requires exactly one central body.")
        self.central_bodies = list(central_bodies)
        self.acceleration_models = dict(acceleration_models)


class RotationalPropagatorSettings(SingleTypePropagatorSettings):
    """
    Args:
        torque_models (dict): Body name -> list of TorqueModel.
        bodies_to_integrate (list[str]): Integrated bodies (inertia tensors from the environment).
        initial_states (np.ndarray): Concatenated [q, w] of each body.
        termination_settings (TerminationSettings): Stopping condition.
    """
    state_type = StateType.ROTATIONAL

    def __init__(self, torque_models: Dict[str, list], bodies_to_integrate: List[str],
                 initial_states: np.ndarray, termination_settings: TerminationSettings):
        super().__init__(bodies_to_integrate, initial_states, termination_settings, 7)
        self.torque_models = dict(torque_models)


class MultiTypePropagatorSettings:
    """
    Concurrent propagation of several state types (at most one settings object per type).
    """
    def __init__(self, propagator_settings_list: list, termination_settings: TerminationSettings):
        types = [settings.state_type for settings in propagator_settings_list]
        if len(set(types)) != len(types):
            raise ConfigurationError("Multi-type propagation accepts one settings object per state type.")
        order = {state_type: i for i, state_type in enumerate(STATE_TYPE_ORDER)}
        self.propagator_settings_list = sorted(propagator_settings_list, key=lambda s: order[s.state_type])
        self.termination_settings = termination_settings

    def single_type_settings(self) -> list:
        return list(self.propagator_settings_list)

    @property
    def integrated_states(self) -> Dict[StateType, List[str]]:
        return {s.state_type: s.bodies_to_integrate for s in self.propagator_settings_list}

    @property
    def initial_states(self) -> np.ndarray:
        return np.concatenate([s.initial_states for s in self.propagator_settings_list])
