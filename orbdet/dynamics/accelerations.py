"""
Acceleration models.

Each model reads the current states of the bodies it couples from the environment cache,
so the environment must be updated to time t before `update(t)` is called.
"""
from abc import ABC, abstractmethod

import numpy as np
import sympy as sp

from orbdet.environment.bodies import Body
from orbdet.errors import ConfigurationError

# Solar radiation pressure at 1 AU [N/m^2] and the astronomical unit [km]
SOLAR_PRESSURE_1AU = 4.56e-6
ASTRONOMICAL_UNIT = 1.495978707e8

# Exponential atmosphere constants: (rho0 [kg/m^3], h0 [km], scale height [km], radius [km], rotation rate [rad/s])
EXPONENTIAL_ATMOSPHERES = {
    'EARTH': (1.225, 0.0, 7.2, 6378.14, 7.292115e-5),
    'MARS': (0.020, 0.0, 11.1, 3396.2, 7.088e-5),
}
# Drag is neglected above this altitude [km]
MAXIMUM_DRAG_ALTITUDE = 1000.0


def point_mass_acceleration(relative_position: np.ndarray, mu: float) -> np.ndarray:
    """Acceleration -mu x / |x|^3 of a point mass at relative position x."""
    distance = np.linalg.norm(relative_position)
    return -mu * relative_position / distance**3


def point_mass_gravity_gradient(relative_position: np.ndarray, mu: float) -> np.ndarray:
    """
    Gradient of the point mass acceleration w.r.t. the relative position.
    G = -mu/r^3 * I + 3*mu * x*x^T / r^5
    """
    r_mag = np.linalg.norm(relative_position)
    return (-(mu / r_mag**3) * np.eye(3)
            + (3.0 * mu / r_mag**5) * np.outer(relative_position, relative_position))


def _gravitational_parameter(body: Body) -> float:
    if body.gravitational_parameter is None:
        raise ConfigurationError(f"Body '{body.name}' has no gravitational parameter.")
    return body.gravitational_parameter


class AccelerationModel(ABC):
    """
    Abstract base class for all acceleration models.

    Args:
        accelerated_body (Body): Body undergoing the acceleration.
        exerting_body (Body): Body exerting the acceleration.
    """
    def __init__(self, accelerated_body: Body, exerting_body: Body):
        self.accelerated_body = accelerated_body
        self.exerting_body = exerting_body
        self.current_time = np.nan
        self.current_acceleration = np.zeros(3)

    def update(self, t: float):
        """Recomputes the acceleration for the environment state at time t."""
        self.current_acceleration = self._evaluate()
        self.current_time = t

    def compute_acceleration(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: Acceleration vector (km/s^2) at the last update time.
        """
        return self.current_acceleration.copy()

    @abstractmethod
    def _evaluate(self) -> np.ndarray:
        pass

    def relative_position(self) -> np.ndarray:
        """Position of the accelerated body w.r.t. the exerting body."""
        return self.accelerated_body.position - self.exerting_body.position


class CentralGravity(AccelerationModel):
    """
    Point mass gravity of the exerting body.
    """
    @property
    def gravitational_parameter(self) -> float:
        return _gravitational_parameter(self.exerting_body)

    def _evaluate(self) -> np.ndarray:
        return point_mass_acceleration(self.relative_position(), self.gravitational_parameter)


class ThirdBodyGravity(AccelerationModel):
    """
    Point mass gravity of a third body on a body integrated w.r.t. a central body:
    direct term minus the acceleration the third body imparts on the central body.

    Args:
        accelerated_body (Body): Body undergoing the acceleration.
        exerting_body (Body): Perturbing third body.
        central_body (Body): Central body of the accelerated body's propagation.
    """
    def __init__(self, accelerated_body: Body, exerting_body: Body, central_body: Body):
        super().__init__(accelerated_body, exerting_body)
        self.central_body = central_body

    @property
    def gravitational_parameter(self) -> float:
        return _gravitational_parameter(self.exerting_body)

    def central_body_relative_position(self) -> np.ndarray:
        return self.central_body.position - self.exerting_body.position

    def _evaluate(self) -> np.ndarray:
        mu = self.gravitational_parameter
        return (point_mass_acceleration(self.relative_position(), mu)
                - point_mass_acceleration(self.central_body_relative_position(), mu))


_J2_FUNCTIONS = {}


def j2_potential_functions():
    """
    Lambdified gradient and Hessian of the J2 disturbing potential in the body-fixed frame,
    derived symbolically once and cached.

    U = -(mu * J2 * R^2 / 2) * (3 z^2 / r^5 - 1 / r^3)

    Returns:
        tuple: (gradient(x, y, z, mu, j2, R) -> 3-list, hessian(x, y, z, mu, j2, R) -> 3x3 nested list)
    """
    if not _J2_FUNCTIONS:
        x, y, z, mu, j2, radius = sp.symbols('x y z mu j2 R', real=True)
        r = sp.sqrt(x**2 + y**2 + z**2)
        potential = -(mu * j2 * radius**2 / 2) * (3 * z**2 / r**5 - 1 / r**3)

        coordinates = (x, y, z)
        gradient = [sp.diff(potential, s) for s in coordinates]
        hessian = [[sp.diff(g, s) for s in coordinates] for g in gradient]

        arguments = (x, y, z, mu, j2, radius)
        _J2_FUNCTIONS['gradient'] = sp.lambdify(arguments, gradient, modules='numpy')
        _J2_FUNCTIONS['hessian'] = sp.lambdify(arguments, hessian, modules='numpy')

    return _J2_FUNCTIONS['gradient'], _J2_FUNCTIONS['hessian']


class J2Gravity(AccelerationModel):
    """
    J2 zonal harmonic acceleration of the exerting body, evaluated in its body-fixed frame
    (given by its rotation model) and rotated to the inertial frame.

    Args:
        accelerated_body (Body): Body undergoing the acceleration.
        exerting_body (Body): Oblate body.
        j2 (float): Unnormalized J2 coefficient.
        reference_radius (float): Reference radius [km] (exerting body's reference radius if None).
    """
    def __init__(self, accelerated_body: Body, exerting_body: Body, j2: float, reference_radius: float = None):
        super().__init__(accelerated_body, exerting_body)
        self.j2 = j2
        self.reference_radius = exerting_body.reference_radius if reference_radius is None else reference_radius
        if self.reference_radius <= 0.0:
            raise ConfigurationError(f"J2 gravity of '{exerting_body.name}' requires a positive reference radius.")
        self._gradient, self._hessian = j2_potential_functions()

    @property
    def gravitational_parameter(self) -> float:
        return _gravitational_parameter(self.exerting_body)

    def body_fixed_position(self) -> np.ndarray:
        return self.exerting_body.rotation_matrix.T @ self.relative_position()

    def _evaluate(self) -> np.ndarray:
        if self.j2 == 0.0:
            return np.zeros(3)
        x, y, z = self.body_fixed_position()
        a_fixed = np.array(self._gradient(x, y, z, self.gravitational_parameter, self.j2, self.reference_radius),
                           dtype=float)
        return self.exerting_body.rotation_matrix @ a_fixed

    def gradient_wrt_position(self) -> np.ndarray:
        """Inertial 3x3 Jacobian of the acceleration w.r.t. the relative position."""
        rotation = self.exerting_body.rotation_matrix
        x, y, z = self.body_fixed_position()
        hessian = np.array(self._hessian(x, y, z, self.gravitational_parameter, self.j2, self.reference_radius),
                           dtype=float)
        return rotation @ hessian @ rotation.T


class CannonballRadiationPressure(AccelerationModel):
    """
    Solar Radiation Pressure (Cannonball Model), no shadowing.

    Args:
        accelerated_body (Body): Spacecraft.
        source_body (Body): Radiating body (usually the Sun).
        area (float): Cross-sectional area [m^2].
        mass (float): Spacecraft mass [kg].
        radiation_pressure_coefficient (float): Cr.
    """
    def __init__(self, accelerated_body: Body, source_body: Body, area: float, mass: float,
                 radiation_pressure_coefficient: float):
        super().__init__(accelerated_body, source_body)
        self.area = area
        self.mass = mass
        self.radiation_pressure_coefficient = radiation_pressure_coefficient

    def acceleration_scaling(self) -> float:
        """k in a = k * d / |d|^3 [km^3/s^2]."""
        return (SOLAR_PRESSURE_1AU * ASTRONOMICAL_UNIT**2 * self.radiation_pressure_coefficient
                * self.area / self.mass / 1000.0)

    def _evaluate(self) -> np.ndarray:
        d = self.relative_position()
        return self.acceleration_scaling() * d / np.linalg.norm(d)**3


class ExponentialDrag(AccelerationModel):
    """
    Atmospheric Drag (Exponential Model) of an atmosphere co-rotating with its body about the
    inertial z-axis. Constants are available for Earth and Mars.

    Args:
        accelerated_body (Body): Spacecraft.
        central_body (Body): Body carrying the atmosphere.
        drag_coefficient (float): Cd.
        area (float): Cross-sectional area [m^2].
        mass (float): Spacecraft mass [kg].
    """
    def __init__(self, accelerated_body: Body, central_body: Body, drag_coefficient: float,
                 area: float, mass: float):
        super().__init__(accelerated_body, central_body)
        key = central_body.name.upper()
        if key not in EXPONENTIAL_ATMOSPHERES:
            raise ConfigurationError(f"Exponential atmosphere not configured for {central_body.name}.")
        self.rho0, self.h0, self.scale_height, self.body_radius, self.rotation_rate = EXPONENTIAL_ATMOSPHERES[key]
        self.drag_coefficient = drag_coefficient
        self.area = area
        self.mass = mass

    @property
    def atmosphere_angular_velocity(self) -> np.ndarray:
        return np.array([0.0, 0.0, self.rotation_rate])

    def drag_scaling(self) -> float:
        """K in a = K * rho * |u| * u, with u in km/s and a in km/s^2."""
        return -0.5 * self.drag_coefficient * self.area / self.mass * 1000.0

    def altitude(self) -> float:
        return np.linalg.norm(self.relative_position()) - self.body_radius

    def density(self) -> float:
        """Density [kg/m^3], zero outside the modelled altitude range."""
        h = self.altitude()
        if h < 0.0 or h > MAXIMUM_DRAG_ALTITUDE:
            return 0.0
        return self.rho0 * np.exp(-(h - self.h0) / self.scale_height)

    def airspeed_vector(self) -> np.ndarray:
        """Velocity relative to the co-rotating atmosphere [km/s]."""
        r = self.relative_position()
        v = self.accelerated_body.velocity - self.exerting_body.velocity
        return v - np.cross(self.atmosphere_angular_velocity, r)

    def _evaluate(self) -> np.ndarray:
        rho = self.density()
        if rho == 0.0:
            return np.zeros(3)
        u = self.airspeed_vector()
        return self.drag_scaling() * rho * np.linalg.norm(u) * u
