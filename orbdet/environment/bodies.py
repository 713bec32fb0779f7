"""
Bodies, ground stations and the environment that holds them.

A Body caches its current translational and rotational state. During propagation the
state derivative writes the states of integrated bodies into this cache and refreshes
every other body from its ephemeris and rotation model, so that acceleration models and
partials evaluated at the same time see a consistent environment.
"""
from typing import Dict, Iterable, Optional

import numpy as np

from orbdet.astro.attitude import normalize_quaternion, quaternion_to_rotation_matrix
from orbdet.environment.ephemerides import Ephemeris
from orbdet.environment.rotation_models import RotationModel
from orbdet.errors import ConfigurationError


class GroundStation:
    """
    A link end fixed to the surface (or interior) of a body.

    Args:
        name (str): Station name.
        body_fixed_position (np.ndarray): Position in the body-fixed frame [km].
    """
    def __init__(self, name: str, body_fixed_position: np.ndarray):
        self.name = name
        self.body_fixed_position = np.asarray(body_fixed_position, dtype=float)

    def __repr__(self):
        return f"GroundStation({self.name!r}, {self.body_fixed_position.tolist()})"


def spherical_station_position(radius: float, latitude: float, longitude: float) -> np.ndarray:
    """
    Body-fixed Cartesian position from spherical coordinates.

    Args:
        radius (float): Distance from the body center [km].
        latitude (float): Latitude [rad].
        longitude (float): Longitude [rad].
    """
    return radius * np.array([
        np.cos(latitude) * np.cos(longitude),
        np.cos(latitude) * np.sin(longitude),
        np.sin(latitude)
    ])


class Body:
    """
    A natural or artificial body of the simulation.

    Args:
        name (str): Body name.
        gravitational_parameter (float): GM [km^3/s^2], if the body exerts gravity.
        ephemeris (Ephemeris): Translational state model in the global frame.
        rotation_model (RotationModel): Orientation model (body-fixed to global frame).
        inertia_tensor (np.ndarray): 3x3 inertia tensor [kg km^2], for rotational dynamics.
        reference_radius (float): Mean equatorial radius [km] (altitude computations).
    """
    def __init__(self, name: str, gravitational_parameter: Optional[float] = None,
                 ephemeris: Optional[Ephemeris] = None, rotation_model: Optional[RotationModel] = None,
                 inertia_tensor: Optional[np.ndarray] = None, reference_radius: float = 0.0):
        self.name = name
        self.gravitational_parameter = gravitational_parameter
        self.ephemeris = ephemeris
        self.rotation_model = rotation_model
        self.inertia_tensor = None if inertia_tensor is None else np.asarray(inertia_tensor, dtype=float)
        self.reference_radius = reference_radius
        self.ground_stations: Dict[str, GroundStation] = {}

        self.state = np.zeros(6)
        self.rotational_state = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
        self.rotation_matrix = np.eye(3)
        self.current_time = np.nan

    def __repr__(self):
        return f"Body({self.name!r})"

    @property
    def position(self) -> np.ndarray:
        return self.state[0:3]

    @property
    def velocity(self) -> np.ndarray:
        return self.state[3:6]

    @property
    def angular_velocity(self) -> np.ndarray:
        return self.rotational_state[4:7]

    def set_state(self, state: np.ndarray):
        """Sets the current global translational state (used for integrated bodies)."""
        self.state = np.asarray(state, dtype=float).copy()

    def set_rotational_state(self, rotational_state: np.ndarray):
        """
        Sets the current rotational state (used for integrated bodies). The rotation matrix
        is the quadratic form of the quaternion as given, consistent with the rotational
        partials; the kinematics preserve the quaternion norm.
        """
        self.rotational_state = np.asarray(rotational_state, dtype=float).copy()
        self.rotation_matrix = quaternion_to_rotation_matrix(self.rotational_state[0:4])

    def update_translational_state(self, t: float):
        if self.ephemeris is None:
            raise ConfigurationError(f"Body '{self.name}' has no ephemeris.")
        self.set_state(self.ephemeris.get_state(t))

    def update_rotational_state(self, t: float):
        if self.rotation_model is None:
            return
        self.rotational_state = self.rotation_model.rotational_state(t)
        self.rotation_matrix = self.rotation_model.rotation_to_base_frame(t)

    def update(self, t: float, translational: bool = True, rotational: bool = True):
        if translational:
            self.update_translational_state(t)
        if rotational:
            self.update_rotational_state(t)
        self.current_time = t

    def state_at(self, t: float) -> np.ndarray:
        """Global translational state at time t from the ephemeris (does not touch the cache)."""
        if self.ephemeris is None:
            raise ConfigurationError(f"Body '{self.name}' has no ephemeris.")
        return self.ephemeris.get_state(t)

    def rotational_state_at(self, t: float) -> np.ndarray:
        if self.rotation_model is None:
            raise ConfigurationError(f"Body '{self.name}' has no rotation model.")
        return self.rotation_model.rotational_state(t)

    def add_ground_station(self, name: str, body_fixed_position: np.ndarray) -> GroundStation:
        station = GroundStation(name, body_fixed_position)
        self.ground_stations[name] = station
        return station

    def get_ground_station(self, name: str) -> GroundStation:
        if name not in self.ground_stations:
            raise ConfigurationError(f"Body '{self.name}' has no ground station '{name}'.")
        return self.ground_stations[name]

    def station_state(self, station_name: str, t: float) -> np.ndarray:
        """
        Global state of a ground station (or of the body center if station_name is empty).

        Args:
            station_name (str): Ground station name, '' for the body center.
            t (float): Time [s].

        Returns:
            np.ndarray: [x, y, z, vx, vy, vz] in the global frame.
        """
        body_state = self.state_at(t)
        if not station_name:
            return body_state

        offset = self.get_ground_station(station_name).body_fixed_position
        rotational_state = self.rotational_state_at(t)
        rotation = quaternion_to_rotation_matrix(normalize_quaternion(rotational_state[0:4]))
        omega = rotational_state[4:7]

        position = body_state[0:3] + rotation @ offset
        velocity = body_state[3:6] + rotation @ np.cross(omega, offset)
        return np.concatenate((position, velocity))


class Environment:
    """
    Explicit simulation context: the named bodies and their models.
    """
    def __init__(self, bodies: Optional[Iterable[Body]] = None):
        self.bodies: Dict[str, Body] = {}
        for body in bodies or []:
            self.add_body(body)

    def add_body(self, body: Body) -> Body:
        if body.name in self.bodies:
            raise ConfigurationError(f"Body '{body.name}' is already defined.")
        self.bodies[body.name] = body
        return body

    def get_body(self, name: str) -> Body:
        if name not in self.bodies:
            raise ConfigurationError(f"Body '{name}' is not defined in the environment.")
        return self.bodies[name]

    def __contains__(self, name: str) -> bool:
        return name in self.bodies

    def __getitem__(self, name: str) -> Body:
        return self.get_body(name)

    @property
    def body_names(self):
        return list(self.bodies.keys())

    def update(self, t: float, skip_translational: Iterable[str] = (), skip_rotational: Iterable[str] = ()):
        """
        Refreshes every body from its models at time t, except the translational or
        rotational states of the listed bodies (whose states are set by the integrator).
        """
        skip_translational = set(skip_translational)
        skip_rotational = set(skip_rotational)
        for name, body in self.bodies.items():
            translational = name not in skip_translational and body.ephemeris is not None
            rotational = name not in skip_rotational
            body.update(t, translational=translational, rotational=rotational)
