import numpy as np

from orbdet.astro.attitude import (
    cross_product_matrix,
    quaternion_kinematics_matrix,
    quaternion_kinematics_partial_wrt_angular_velocity,
    rotation_matrix_derivatives_wrt_quaternion,
)
from orbdet.dynamics.state_types import StateType
from orbdet.dynamics.torques import SecondDegreeGravitationalTorque
from orbdet.environment.bodies import Environment
from orbdet.errors import ConfigurationError
from orbdet.estimation.parameters import GravitationalParameter
from orbdet.partials.base import NO_DEPENDENCY, StateDerivativePartial


def _inertia_cross_term(vector: np.ndarray, inertia_tensor: np.ndarray) -> np.ndarray:
    """Derivative of v x (I v) w.r.t. v: [v x] I - [(I v) x]."""
    return cross_product_matrix(vector) @ inertia_tensor - cross_product_matrix(inertia_tensor @ vector)


class RotationalDynamicsPartial(StateDerivativePartial):
    """
    Partials of the rotational state derivative [q_dot, w_dot] of one body: quaternion
    kinematics, the inertial (gyroscopic) term of Euler's equations and the torques.

    Blocks passed to the functions have 7 rows (the full rotational block of the body).
    W.r.t. its own rotational state the block has 7 columns; w.r.t. a translational state
    (gravity-gradient torque) it has 6 columns, of which the position columns are filled.

    Args:
        environment (Environment): Bodies of the simulation.
        body (str): Rotating body.
        torque_models (list[TorqueModel]): Torques acting on the body.
    """
    def __init__(self, environment: Environment, body: str, torque_models: list):
        super().__init__(StateType.ROTATIONAL, body)
        self.body = environment.get_body(body)
        if self.body.inertia_tensor is None:
            raise ConfigurationError(f"Rotational partials of '{body}' require an inertia tensor.")
        self.inverse_inertia_tensor = np.linalg.inv(self.body.inertia_tensor)

        for model in torque_models:
            if not isinstance(model, SecondDegreeGravitationalTorque):
                raise ConfigurationError(f"No partials available for torque model {type(model).__name__}.")
        self.torque_models = list(torque_models)

        self.rotational_state_partial = np.zeros((7, 7))
        self.translational_partials = {}
        self.torque_per_model = []

    def _update_state_partials(self, t: float):
        state = self.body.rotational_state
        quaternion = state[0:4]
        omega = state[4:7]
        inertia = self.body.inertia_tensor
        inverse_inertia = self.inverse_inertia_tensor

        partial = np.zeros((7, 7))
        partial[0:4, 0:4] = quaternion_kinematics_matrix(omega)
        partial[0:4, 4:7] = quaternion_kinematics_partial_wrt_angular_velocity(quaternion)
        partial[4:7, 4:7] = -inverse_inertia @ _inertia_cross_term(omega, inertia)

        translational_partials = {}
        self.torque_per_model = []
        rotation_derivatives = rotation_matrix_derivatives_wrt_quaternion(quaternion)

        for model in self.torque_models:
            model.update(t)
            torque = model.compute_torque()
            self.torque_per_model.append((model, torque))

            d = model.relative_position()
            d_mag = np.linalg.norm(d)
            s = model.body_fixed_relative_position()
            mu = model.gravitational_parameter
            wrt_body_fixed_position = 3.0 * mu / d_mag**5 * _inertia_cross_term(s, inertia)

            # 1. Orientation: s = R(q)^T d
            wrt_quaternion = np.zeros((3, 4))
            for k in range(4):
                wrt_quaternion[:, k] = wrt_body_fixed_position @ (rotation_derivatives[k].T @ d)
            partial[4:7, 0:4] += inverse_inertia @ wrt_quaternion

            # 2. Relative position d = r_exerting - r_body
            wrt_relative_position = (-15.0 * mu / d_mag**7 * np.outer(np.cross(s, inertia @ s), d)
                                     + wrt_body_fixed_position @ self.body.rotation_matrix.T)
            exerting = model.body_exerting_torque.name
            translational_partials[exerting] = (translational_partials.get(exerting, np.zeros((3, 3)))
                                                + inverse_inertia @ wrt_relative_position)
            translational_partials[self.integrated_body] = (
                translational_partials.get(self.integrated_body, np.zeros((3, 3)))
                - inverse_inertia @ wrt_relative_position)

        self.rotational_state_partial = partial
        self.translational_partials = translational_partials

    def _add_rotational_state_partial(self, block: np.ndarray):
        block += self.rotational_state_partial

    def _add_translational_state_partial(self, block: np.ndarray, body: str):
        block[4:7, 0:3] += self.translational_partials[body]

    def get_derivative_function_wrt_state_of_integrated_body(self, body, state_type):
        if state_type == StateType.ROTATIONAL:
            if body == self.integrated_body:
                return self._add_rotational_state_partial, 7
            return NO_DEPENDENCY

        dependent_bodies = set()
        for model in self.torque_models:
            dependent_bodies.update((model.body_exerting_torque.name, self.integrated_body))
        if state_type == StateType.TRANSLATIONAL and body in dependent_bodies:
            return (lambda block: self._add_translational_state_partial(block, body)), 6
        return NO_DEPENDENCY

    def _add_gravitational_parameter_partial(self, block: np.ndarray, body: str):
        for model, torque in self.torque_per_model:
            if model.body_exerting_torque.name == body:
                block[4:7, 0] += self.inverse_inertia_tensor @ torque / model.gravitational_parameter

    def get_parameter_partial_function(self, parameter):
        if isinstance(parameter, GravitationalParameter):
            body = parameter.associated_body
            if any(model.body_exerting_torque.name == body for model in self.torque_models):
                return (lambda block: self._add_gravitational_parameter_partial(block, body)), 1
        return NO_DEPENDENCY
