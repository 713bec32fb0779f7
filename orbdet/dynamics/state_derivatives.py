"""
State derivative models.

The concatenated state vector holds one block per state type (translational first, then
rotational) and, within a type, one block per integrated body in the order the bodies were
given. When variational equations are attached, the flattened [Phi | S] matrix is appended.
"""
from typing import Dict, List

import numpy as np

from orbdet.astro.attitude import quaternion_kinematics_matrix
from orbdet.dynamics.accelerations import AccelerationModel
from orbdet.dynamics.state_types import (
    StateType,
    ordered_state_types,
    single_integration_size,
    state_type_start_indices,
)
from orbdet.dynamics.torques import TorqueModel
from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError


class TranslationalStateDerivative:
    """
    Cowell formulation: each body is integrated relative to its central body and its state
    derivative is [v, sum of accelerations].

    Args:
        environment (Environment): Bodies of the simulation.
        bodies_to_integrate (list[str]): Integrated bodies.
        central_bodies (list[str]): Central body of each integrated body.
        acceleration_models (dict): Body name -> list of AccelerationModel acting on it.
    """
    state_type = StateType.TRANSLATIONAL

    def __init__(self, environment: Environment, bodies_to_integrate: List[str], central_bodies: List[str],
                 acceleration_models: Dict[str, List[AccelerationModel]]):
        if len(bodies_to_integrate) != len(central_bodies):
            raise ConfigurationError(
                f"Got {len(central_bodies)} central bodies for {len(bodies_to_integrate)} integrated bodies.")

        self.environment = environment
        self.bodies_to_integrate = list(bodies_to_integrate)
        self.central_bodies = list(central_bodies)
        self.acceleration_models = {name: list(acceleration_models.get(name, [])) for name in bodies_to_integrate}

        for name, central in zip(self.bodies_to_integrate, self.central_bodies):
            environment.get_body(name)
            central_body = environment.get_body(central)
            if central not in self.bodies_to_integrate and central_body.ephemeris is None:
                raise ConfigurationError(f"Central body '{central}' of '{name}' has no ephemeris.")
            for model in self.acceleration_models[name]:
                if model.accelerated_body.name != name:
                    raise ConfigurationError(
                        f"Acceleration model {type(model).__name__} acts on '{model.accelerated_body.name}', "
                        f"but is listed for '{name}'.")

        self.update_order = self._compute_update_order()

    def _compute_update_order(self) -> List[int]:
        """Orders integrated bodies so that integrated central bodies are resolved first."""
        order = []
        resolved = set()
        remaining = list(range(len(self.bodies_to_integrate)))
        while remaining:
            progress = False
            for i in list(remaining):
                central = self.central_bodies[i]
                if central not in self.bodies_to_integrate or central in resolved:
                    order.append(i)
                    resolved.add(self.bodies_to_integrate[i])
                    remaining.remove(i)
                    progress = True
            if not progress:
                raise ConfigurationError(
                    f"Circular central body dependency among {[self.bodies_to_integrate[i] for i in remaining]}.")
        return order

    @property
    def state_size(self) -> int:
        return 6 * len(self.bodies_to_integrate)

    def integrated_central_body_pairs(self):
        """(body index, central body index) for bodies whose central body is also integrated."""
        pairs = []
        for i, central in enumerate(self.central_bodies):
            if central in self.bodies_to_integrate:
                pairs.append((i, self.bodies_to_integrate.index(central)))
        return pairs

    def update_environment(self, t: float, state_block: np.ndarray):
        """Writes the global states of the integrated bodies into the environment."""
        for i in self.update_order:
            central = self.environment.get_body(self.central_bodies[i])
            relative_state = state_block[6 * i:6 * i + 6]
            self.environment.get_body(self.bodies_to_integrate[i]).set_state(relative_state + central.state)

    def global_states(self, t: float, state_block: np.ndarray) -> np.ndarray:
        """Global states of the integrated bodies for a relative state block, using the current environment."""
        global_block = np.array(state_block, dtype=float)
        for i in self.update_order:
            central = self.central_bodies[i]
            if central in self.bodies_to_integrate:
                j = self.bodies_to_integrate.index(central)
                global_block[6 * i:6 * i + 6] += global_block[6 * j:6 * j + 6]
            else:
                global_block[6 * i:6 * i + 6] += self.environment.get_body(central).state_at(t)
        return global_block

    def compute(self, t: float, state_block: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state_block, dtype=float)
        for i, name in enumerate(self.bodies_to_integrate):
            acceleration = np.zeros(3)
            for model in self.acceleration_models[name]:
                model.update(t)
                acceleration += model.compute_acceleration()
            derivative[6 * i:6 * i + 3] = state_block[6 * i + 3:6 * i + 6]
            derivative[6 * i + 3:6 * i + 6] = acceleration
        return derivative


class RotationalStateDerivative:
    """
    Quaternion kinematics and Euler's equations in the body frame:

        q_dot = 0.5 * q * [0, w]
        w_dot = I^-1 (sum of torques - w x I w)

    Args:
        environment (Environment): Bodies of the simulation (inertia tensors are read from it).
        bodies_to_integrate (list[str]): Integrated bodies.
        torque_models (dict): Body name -> list of TorqueModel acting on it.
    """
    state_type = StateType.ROTATIONAL

    def __init__(self, environment: Environment, bodies_to_integrate: List[str],
                 torque_models: Dict[str, List[TorqueModel]]):
        self.environment = environment
        self.bodies_to_integrate = list(bodies_to_integrate)
        self.torque_models = {name: list(torque_models.get(name, [])) for name in bodies_to_integrate}
        self.inverse_inertia_tensors = {}

        for name in self.bodies_to_integrate:
            body = environment.get_body(name)
            if body.inertia_tensor is None:
                raise ConfigurationError(f"Rotational propagation of '{name}' requires an inertia tensor.")
            self.inverse_inertia_tensors[name] = np.linalg.inv(body.inertia_tensor)

    @property
    def state_size(self) -> int:
        return 7 * len(self.bodies_to_integrate)

    def update_environment(self, t: float, state_block: np.ndarray):
        for i, name in enumerate(self.bodies_to_integrate):
            self.environment.get_body(name).set_rotational_state(state_block[7 * i:7 * i + 7])

    def global_states(self, t: float, state_block: np.ndarray) -> np.ndarray:
        return np.array(state_block, dtype=float)

    def compute(self, t: float, state_block: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state_block, dtype=float)
        for i, name in enumerate(self.bodies_to_integrate):
            quaternion = state_block[7 * i:7 * i + 4]
            omega = state_block[7 * i + 4:7 * i + 7]
            inertia = self.environment.get_body(name).inertia_tensor

            torque = np.zeros(3)
            for model in self.torque_models[name]:
                model.update(t)
                torque += model.compute_torque()

            derivative[7 * i:7 * i + 4] = quaternion_kinematics_matrix(omega) @ quaternion
            derivative[7 * i + 4:7 * i + 7] = self.inverse_inertia_tensors[name] @ (
                torque - np.cross(omega, inertia @ omega))
        return derivative


class AugmentedStateDerivative:
    """
    Derivative of the concatenated state vector, optionally augmented with the
    variational equations.

    Args:
        environment (Environment): Bodies of the simulation.
        state_derivatives (list): TranslationalStateDerivative and/or RotationalStateDerivative.
        variational_equations (VariationalEquations): If given, [Phi | S] is appended to the state.
    """
    def __init__(self, environment: Environment, state_derivatives: list, variational_equations=None):
        self.environment = environment
        self.state_derivatives = {}
        for derivative in state_derivatives:
            if derivative.state_type in self.state_derivatives:
                raise ConfigurationError(f"Duplicate state derivative for {derivative.state_type}.")
            self.state_derivatives[derivative.state_type] = derivative

        self.state_types = ordered_state_types(self.state_derivatives.keys())
        self.integrated_states = {state_type: self.state_derivatives[state_type].bodies_to_integrate
                                  for state_type in self.state_types}
        self.state_type_start_indices = state_type_start_indices(self.integrated_states)
        self.state_size = sum(d.state_size for d in self.state_derivatives.values())
        self.variational_equations = variational_equations

    @property
    def number_of_variational_columns(self) -> int:
        if self.variational_equations is None:
            return 0
        return self.state_size + self.variational_equations.number_of_parameter_columns

    def _blocks(self, y: np.ndarray):
        for state_type in self.state_types:
            derivative = self.state_derivatives[state_type]
            start = self.state_type_start_indices[state_type]
            yield derivative, start, y[start:start + derivative.state_size]

    def update_environment(self, t: float, y: np.ndarray):
        """
        Refreshes every body to time t, then overwrites the integrated bodies with the
        states in y (rotational first, as translational models may use orientations).
        """
        skip_translational = self.integrated_states.get(StateType.TRANSLATIONAL, [])
        skip_rotational = self.integrated_states.get(StateType.ROTATIONAL, [])
        self.environment.update(t, skip_translational=skip_translational, skip_rotational=skip_rotational)

        blocks = list(self._blocks(y))
        for derivative, _, block in reversed(blocks):
            derivative.update_environment(t, block)

    def compute(self, t: float, y: np.ndarray) -> np.ndarray:
        """
        Args:
            t (float): Time [s].
            y (np.ndarray): State vector, augmented with the flattened [Phi | S] if variational
                            equations are attached.

        Returns:
            np.ndarray: Time derivative of y.
        """
        y = np.asarray(y, dtype=float)
        self.update_environment(t, y)

        dy = np.zeros_like(y)
        for derivative, start, block in self._blocks(y):
            dy[start:start + derivative.state_size] = derivative.compute(t, block)

        if self.variational_equations is not None:
            n = self.state_size
            phi_s = y[n:].reshape((n, self.number_of_variational_columns))
            self.variational_equations.update_partials(t)
            dy[n:] = self.variational_equations.derivative(t, phi_s).flatten()

        return dy

    __call__ = compute

    def global_states(self, t: float, y: np.ndarray) -> np.ndarray:
        """Concatenated state in global coordinates (translational states w.r.t. the global origin)."""
        y = np.asarray(y, dtype=float)
        global_y = y[:self.state_size].copy()
        for derivative, start, block in self._blocks(y):
            global_y[start:start + derivative.state_size] = derivative.global_states(t, block)
        return global_y

    def initial_variational_state(self) -> np.ndarray:
        """Flattened [Phi | S] at the initial time: identity and zero."""
        n = self.state_size
        return np.eye(n, self.number_of_variational_columns).flatten()

    def body_block_start(self, state_type: StateType, body: str) -> int:
        bodies = self.integrated_states.get(state_type, [])
        if body not in bodies:
            raise ConfigurationError(f"Body '{body}' is not integrated for {state_type}.")
        return self.state_type_start_indices[state_type] + bodies.index(body) * single_integration_size(state_type)
