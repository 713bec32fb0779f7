from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from orbdet.astro.attitude import (
    normalize_quaternion,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
)
from orbdet.environment.spice_manager import spice_manager


class RotationModel(ABC):
    """
    Orientation of a body-fixed frame with respect to the global inertial (base) frame.
    """

    @abstractmethod
    def rotation_to_base_frame(self, t: float) -> np.ndarray:
        """
        Returns:
            np.ndarray: 3x3 rotation matrix from the body-fixed frame to the base frame.
        """
        pass

    @abstractmethod
    def angular_velocity(self, t: float) -> np.ndarray:
        """
        Returns:
            np.ndarray: Angular velocity of the body-fixed frame, expressed in the body frame [rad/s].
        """
        pass

    def quaternion(self, t: float) -> np.ndarray:
        return rotation_matrix_to_quaternion(self.rotation_to_base_frame(t))

    def rotational_state(self, t: float) -> np.ndarray:
        """
        Returns:
            np.ndarray: [q0, q1, q2, q3, wx, wy, wz] (body to base quaternion, body-frame rate).
        """
        return np.concatenate((self.quaternion(t), self.angular_velocity(t)))


class ConstantRotation(RotationModel):
    def __init__(self, rotation_matrix: Optional[np.ndarray] = None):
        self.rotation_matrix = np.eye(3) if rotation_matrix is None else np.asarray(rotation_matrix, dtype=float)

    def rotation_to_base_frame(self, t: float) -> np.ndarray:
        return self.rotation_matrix.copy()

    def angular_velocity(self, t: float) -> np.ndarray:
        return np.zeros(3)


class SimpleRotation(RotationModel):
    """
    Uniform rotation about the body z-axis.

    Args:
        rotation_rate (float): Spin rate [rad/s].
        initial_angle (float): Rotation angle at the epoch [rad].
        epoch (float): Reference time [s].
        base_orientation (np.ndarray): Orientation of the zero-angle body frame in the base frame.
    """
    def __init__(self, rotation_rate: float, initial_angle: float = 0.0, epoch: float = 0.0,
                 base_orientation: Optional[np.ndarray] = None):
        self.rotation_rate = rotation_rate
        self.initial_angle = initial_angle
        self.epoch = epoch
        self.base_orientation = np.eye(3) if base_orientation is None else np.asarray(base_orientation, dtype=float)

    def rotation_to_base_frame(self, t: float) -> np.ndarray:
        angle = self.initial_angle + self.rotation_rate * (t - self.epoch)
        c, s = np.cos(angle), np.sin(angle)
        spin = np.array([
            [c, -s, 0.0],
            [s, c, 0.0],
            [0.0, 0.0, 1.0]
        ])
        return self.base_orientation @ spin

    def angular_velocity(self, t: float) -> np.ndarray:
        return np.array([0.0, 0.0, self.rotation_rate])


class TabulatedRotation(RotationModel):
    """
    Rotation model interpolated from a propagated rotational state history.
    The interpolated quaternion is renormalized before use.

    Args:
        interpolator (Callable): Function t -> rotational state (7,).
    """
    def __init__(self, interpolator: Callable[[float], np.ndarray]):
        self.interpolator = interpolator

    def rotational_state(self, t: float) -> np.ndarray:
        state = np.asarray(self.interpolator(t), dtype=float).copy()
        state[0:4] = normalize_quaternion(state[0:4])
        return state

    def quaternion(self, t: float) -> np.ndarray:
        return self.rotational_state(t)[0:4]

    def rotation_to_base_frame(self, t: float) -> np.ndarray:
        return quaternion_to_rotation_matrix(self.quaternion(t))

    def angular_velocity(self, t: float) -> np.ndarray:
        return self.rotational_state(t)[4:7]


class SpiceRotation(RotationModel):
    """
    Rotation model read from the SPICE frame kernels.

    Args:
        body_frame (str): SPICE body-fixed frame (e.g., 'IAU_EARTH').
        base_frame (str): Global inertial frame.
    """
    def __init__(self, body_frame: str, base_frame: str = 'J2000'):
        self.body_frame = body_frame
        self.base_frame = base_frame

    def rotation_to_base_frame(self, t: float) -> np.ndarray:
        return spice_manager.get_coord_transform(self.body_frame, self.base_frame, t)

    def angular_velocity(self, t: float) -> np.ndarray:
        transform = spice_manager.get_state_transform(self.body_frame, self.base_frame, t)
        rotation = transform[0:3, 0:3]
        rotation_derivative = transform[3:6, 0:3]

        # dR/dt = R [w x] with w in the body frame
        skew = rotation.T @ rotation_derivative
        return np.array([skew[2, 1], skew[0, 2], skew[1, 0]])
