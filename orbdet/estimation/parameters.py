"""
Estimatable parameters and the ordered parameter set.

The parameter vector lists the initial states first, in integration order (translational
bodies, then rotational bodies), followed by all other parameters in the order given.
"""
import warnings
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from orbdet.astro.attitude import normalize_quaternion
from orbdet.dynamics.state_types import STATE_TYPE_ORDER, StateType
from orbdet.environment.bodies import Body
from orbdet.errors import ConfigurationError

# Quaternion norm deviation above which renormalization is reported
QUATERNION_NORM_WARNING_TOLERANCE = 1e-3


class EstimatableParameter(ABC):
    """
    Abstract base class for all estimatable parameters.

    Args:
        associated_body (str): Body the parameter belongs to.
    """
    is_initial_state = False

    def __init__(self, associated_body: str):
        self.associated_body = associated_body

    @property
    @abstractmethod
    def parameter_size(self) -> int:
        pass

    @abstractmethod
    def get_parameter_value(self) -> np.ndarray:
        pass

    @abstractmethod
    def set_parameter_value(self, value: np.ndarray):
        pass

    @property
    def description(self) -> str:
        return f"{type(self).__name__} of {self.associated_body}"

    def __repr__(self):
        return self.description


class InitialTranslationalState(EstimatableParameter):
    """
    Initial Cartesian state of a body w.r.t. its central body.
    """
    is_initial_state = True
    state_type = StateType.TRANSLATIONAL

    def __init__(self, body: str, initial_state: np.ndarray, central_body: str):
        super().__init__(body)
        self.central_body = central_body
        self.initial_state = np.asarray(initial_state, dtype=float).copy()
        if self.initial_state.shape != (6,):
            raise ConfigurationError(f"Initial translational state of '{body}' must have 6 entries.")

    @property
    def parameter_size(self) -> int:
        return 6

    def get_parameter_value(self) -> np.ndarray:
        return self.initial_state.copy()

    def set_parameter_value(self, value: np.ndarray):
        self.initial_state = np.asarray(value, dtype=float).copy()

    @property
    def description(self) -> str:
        return f"Initial translational state of {self.associated_body} w.r.t. {self.central_body}"


class InitialRotationalState(EstimatableParameter):
    """
    Initial rotational state [q0, q1, q2, q3, wx, wy, wz] of a body. The quaternion is
    renormalized whenever the value is set.
    """
    is_initial_state = True
    state_type = StateType.ROTATIONAL

    def __init__(self, body: str, initial_state: np.ndarray):
        super().__init__(body)
        self.initial_state = np.zeros(7)
        if np.asarray(initial_state).shape != (7,):
            raise ConfigurationError(f"Initial rotational state of '{body}' must have 7 entries.")
        self.set_parameter_value(initial_state)

    @property
    def parameter_size(self) -> int:
        return 7

    def get_parameter_value(self) -> np.ndarray:
        return self.initial_state.copy()

    def set_parameter_value(self, value: np.ndarray):
        value = np.asarray(value, dtype=float).copy()
        norm = np.linalg.norm(value[0:4])
        if abs(norm - 1.0) > QUATERNION_NORM_WARNING_TOLERANCE:
            warnings.warn(f"Renormalizing initial quaternion of {self.associated_body} with norm {norm:.6f}.")
        value[0:4] = normalize_quaternion(value[0:4])
        self.initial_state = value

    @property
    def description(self) -> str:
        return f"Initial rotational state of {self.associated_body}"


class GravitationalParameter(EstimatableParameter):
    """Gravitational parameter of a body [km^3/s^2], stored on the body itself."""

    def __init__(self, body: Body):
        super().__init__(body.name)
        if body.gravitational_parameter is None:
            raise ConfigurationError(f"Body '{body.name}' has no gravitational parameter to estimate.")
        self.body = body

    @property
    def parameter_size(self) -> int:
        return 1

    def get_parameter_value(self) -> np.ndarray:
        return np.array([self.body.gravitational_parameter])

    def set_parameter_value(self, value: np.ndarray):
        self.body.gravitational_parameter = float(np.asarray(value).reshape(-1)[0])


class RadiationPressureCoefficient(EstimatableParameter):
    """Radiation pressure coefficient Cr of a cannonball radiation pressure model."""

    def __init__(self, acceleration_model):
        super().__init__(acceleration_model.accelerated_body.name)
        self.acceleration_model = acceleration_model

    @property
    def parameter_size(self) -> int:
        return 1

    def get_parameter_value(self) -> np.ndarray:
        return np.array([self.acceleration_model.radiation_pressure_coefficient])

    def set_parameter_value(self, value: np.ndarray):
        self.acceleration_model.radiation_pressure_coefficient = float(np.asarray(value).reshape(-1)[0])


class DragCoefficient(EstimatableParameter):
    """Drag coefficient Cd of an exponential drag model."""

    def __init__(self, acceleration_model):
        super().__init__(acceleration_model.accelerated_body.name)
        self.acceleration_model = acceleration_model

    @property
    def parameter_size(self) -> int:
        return 1

    def get_parameter_value(self) -> np.ndarray:
        return np.array([self.acceleration_model.drag_coefficient])

    def set_parameter_value(self, value: np.ndarray):
        self.acceleration_model.drag_coefficient = float(np.asarray(value).reshape(-1)[0])


class EstimatableParameterSet:
    """
    Ordered collection of estimated parameters.

    Args:
        parameters (list[EstimatableParameter]): Parameters in any order; initial states are
            moved to the front (translational, then rotational, keeping their relative order).
    """
    def __init__(self, parameters: List[EstimatableParameter]):
        initial_states = []
        for state_type in STATE_TYPE_ORDER:
            initial_states += [p for p in parameters if p.is_initial_state and p.state_type == state_type]
        others = [p for p in parameters if not p.is_initial_state]

        seen = set()
        for parameter in initial_states:
            key = (parameter.state_type, parameter.associated_body)
            if key in seen:
                raise ConfigurationError(f"Duplicate initial state parameter: {parameter.description}.")
            seen.add(key)

        self.initial_state_parameters = initial_states
        self.other_parameters = others
        self.parameters = initial_states + others

        self.parameter_indices = []
        index = 0
        for parameter in self.parameters:
            self.parameter_indices.append((index, parameter.parameter_size))
            index += parameter.parameter_size
        self.parameter_set_size = index
        self.initial_state_size = sum(p.parameter_size for p in initial_states)

    def __len__(self):
        return len(self.parameters)

    def __iter__(self):
        return iter(self.parameters)

    @property
    def estimated_initial_states(self) -> dict:
        """Estimated bodies per state type, in parameter order."""
        estimated = {}
        for parameter in self.initial_state_parameters:
            estimated.setdefault(parameter.state_type, []).append(parameter.associated_body)
        return estimated

    def initial_state_parameter(self, state_type: StateType, body: str) -> Optional[EstimatableParameter]:
        for parameter in self.initial_state_parameters:
            if parameter.state_type == state_type and parameter.associated_body == body:
                return parameter
        return None

    def index_of(self, parameter: EstimatableParameter) -> int:
        for p, (index, _) in zip(self.parameters, self.parameter_indices):
            if p is parameter:
                return index
        raise ConfigurationError(f"Parameter '{parameter.description}' is not in the parameter set.")

    def get_full_parameter_values(self) -> np.ndarray:
        """Concatenated current values of all parameters."""
        if not self.parameters:
            return np.zeros(0)
        return np.concatenate([p.get_parameter_value() for p in self.parameters])

    def reset_parameter_values(self, values: np.ndarray):
        """
        Sets all parameter values from a concatenated vector. Initial rotational states are
        renormalized in the process.
        """
        values = np.asarray(values, dtype=float)
        if values.shape != (self.parameter_set_size,):
            raise ConfigurationError(
                f"Expected {self.parameter_set_size} parameter values, got shape {values.shape}.")
        for parameter, (index, size) in zip(self.parameters, self.parameter_indices):
            parameter.set_parameter_value(values[index:index + size])

    def print_parameter_entries(self):
        """Prints the index range and description of every parameter."""
        print("Parameter start index, Parameter definition")
        for parameter, (index, size) in zip(self.parameters, self.parameter_indices):
            print(f"[{index}:{index + size}], {parameter.description}")
