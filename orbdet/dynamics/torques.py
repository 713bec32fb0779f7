from abc import ABC, abstractmethod

import numpy as np

from orbdet.environment.bodies import Body
from orbdet.errors import ConfigurationError


class TorqueModel(ABC):
    """
    Abstract base class for all torque models. Torques are expressed in the body-fixed frame
    of the body undergoing them.

    Args:
        body_undergoing_torque (Body): Rotating body.
        body_exerting_torque (Body): Body causing the torque.
    """
    def __init__(self, body_undergoing_torque: Body, body_exerting_torque: Body):
        self.body_undergoing_torque = body_undergoing_torque
        self.body_exerting_torque = body_exerting_torque
        self.current_time = np.nan
        self.current_torque = np.zeros(3)

    def update(self, t: float):
        self.current_torque = self._evaluate()
        self.current_time = t

    def compute_torque(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: Torque vector in the body-fixed frame at the last update time.
        """
        return self.current_torque.copy()

    @abstractmethod
    def _evaluate(self) -> np.ndarray:
        pass


class SecondDegreeGravitationalTorque(TorqueModel):
    """
    Gravity-gradient torque of a point mass on a body with inertia tensor I:

        tau = 3 mu / |d|^5 * (s x I s),   s = R^T d

    with d the position of the exerting body w.r.t. the rotating body (inertial frame) and R
    the body-fixed to inertial rotation of the rotating body.
    """
    def __init__(self, body_undergoing_torque: Body, body_exerting_torque: Body):
        super().__init__(body_undergoing_torque, body_exerting_torque)
        if body_undergoing_torque.inertia_tensor is None:
            raise ConfigurationError(f"Body '{body_undergoing_torque.name}' has no inertia tensor.")
        if body_exerting_torque.gravitational_parameter is None:
            raise ConfigurationError(f"Body '{body_exerting_torque.name}' has no gravitational parameter.")

    @property
    def gravitational_parameter(self) -> float:
        return self.body_exerting_torque.gravitational_parameter

    @property
    def inertia_tensor(self) -> np.ndarray:
        return self.body_undergoing_torque.inertia_tensor

    def relative_position(self) -> np.ndarray:
        """Inertial position of the exerting body w.r.t. the rotating body."""
        return self.body_exerting_torque.position - self.body_undergoing_torque.position

    def body_fixed_relative_position(self) -> np.ndarray:
        return self.body_undergoing_torque.rotation_matrix.T @ self.relative_position()

    def _evaluate(self) -> np.ndarray:
        d = self.relative_position()
        s = self.body_fixed_relative_position()
        return 3.0 * self.gravitational_parameter / np.linalg.norm(d)**5 * np.cross(s, self.inertia_tensor @ s)
