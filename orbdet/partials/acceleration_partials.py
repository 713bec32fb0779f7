"""
Partials of translational accelerations w.r.t. the translational states of the bodies
involved and w.r.t. model parameters.

Blocks passed to the translational partial functions have 3 rows (the acceleration rows of
the accelerated body) and 6 columns ([position | velocity] of the body the derivative is
taken w.r.t.). Parameter blocks have 3 rows and one column per parameter entry.
"""
import numpy as np

from orbdet.astro.attitude import cross_product_matrix
from orbdet.dynamics.accelerations import (
    CannonballRadiationPressure,
    CentralGravity,
    ExponentialDrag,
    J2Gravity,
    ThirdBodyGravity,
    point_mass_gravity_gradient,
)
from orbdet.dynamics.state_types import StateType
from orbdet.estimation.parameters import DragCoefficient, GravitationalParameter, RadiationPressureCoefficient
from orbdet.partials.base import NO_DEPENDENCY, StateDerivativePartial


class AccelerationPartial(StateDerivativePartial):
    """
    Common bookkeeping of acceleration partials: cached 3x3 position partials per body
    (and velocity partials where the model depends on velocity).
    """
    def __init__(self, acceleration_model):
        super().__init__(StateType.TRANSLATIONAL, acceleration_model.accelerated_body.name)
        self.acceleration_model = acceleration_model
        self.position_partials = {}
        self.velocity_partials = {}
        self.current_acceleration = np.zeros(3)

    @property
    def accelerated_body(self) -> str:
        return self.acceleration_model.accelerated_body.name

    @property
    def exerting_body(self) -> str:
        return self.acceleration_model.exerting_body.name

    def _update_state_partials(self, t: float):
        self.acceleration_model.update(t)
        self.current_acceleration = self.acceleration_model.compute_acceleration()
        self.position_partials, self.velocity_partials = self._compute_state_partials()

    def _compute_state_partials(self):
        """
        Returns:
            tuple: (dict body -> da/dr, dict body -> da/dv) for the current environment.
        """
        raise NotImplementedError

    def _dependent_bodies(self):
        return [self.accelerated_body, self.exerting_body]

    def _add_state_partial(self, block: np.ndarray, body: str):
        if body in self.position_partials:
            block[:, 0:3] += self.position_partials[body]
        if body in self.velocity_partials:
            block[:, 3:6] += self.velocity_partials[body]

    def get_derivative_function_wrt_state_of_integrated_body(self, body, state_type):
        if state_type != StateType.TRANSLATIONAL or body not in self._dependent_bodies():
            return NO_DEPENDENCY
        return (lambda block: self._add_state_partial(block, body)), 6


class CentralGravityPartial(AccelerationPartial):
    def _compute_state_partials(self):
        G = point_mass_gravity_gradient(self.acceleration_model.relative_position(),
                                        self.acceleration_model.gravitational_parameter)
        return {self.accelerated_body: G, self.exerting_body: -G}, {}

    def _add_gravitational_parameter_partial(self, block: np.ndarray):
        block[:, 0] += self.current_acceleration / self.acceleration_model.gravitational_parameter

    def get_parameter_partial_function(self, parameter):
        if isinstance(parameter, GravitationalParameter) and parameter.associated_body == self.exerting_body:
            return self._add_gravitational_parameter_partial, 1
        return NO_DEPENDENCY


class ThirdBodyGravityPartial(CentralGravityPartial):
    @property
    def central_body(self) -> str:
        return self.acceleration_model.central_body.name

    def _dependent_bodies(self):
        return [self.accelerated_body, self.exerting_body, self.central_body]

    def _compute_state_partials(self):
        mu = self.acceleration_model.gravitational_parameter
        G_direct = point_mass_gravity_gradient(self.acceleration_model.relative_position(), mu)
        G_central = point_mass_gravity_gradient(self.acceleration_model.central_body_relative_position(), mu)
        return {
            self.accelerated_body: G_direct,
            self.exerting_body: -G_direct + G_central,
            self.central_body: -G_central,
        }, {}


class J2GravityPartial(CentralGravityPartial):
    """
    Position partials of the J2 acceleration. The dependency on the orientation of the
    exerting body is not included.
    """
    def _compute_state_partials(self):
        G = self.acceleration_model.gradient_wrt_position()
        return {self.accelerated_body: G, self.exerting_body: -G}, {}


class RadiationPressurePartial(AccelerationPartial):
    def _compute_state_partials(self):
        d = self.acceleration_model.relative_position()
        d_mag = np.linalg.norm(d)
        k = self.acceleration_model.acceleration_scaling()
        partial = k * (np.eye(3) / d_mag**3 - 3.0 * np.outer(d, d) / d_mag**5)
        return {self.accelerated_body: partial, self.exerting_body: -partial}, {}

    def _add_coefficient_partial(self, block: np.ndarray):
        block[:, 0] += self.current_acceleration / self.acceleration_model.radiation_pressure_coefficient

    def get_parameter_partial_function(self, parameter):
        if isinstance(parameter, RadiationPressureCoefficient) and parameter.acceleration_model is self.acceleration_model:
            return self._add_coefficient_partial, 1
        return NO_DEPENDENCY


class ExponentialDragPartial(AccelerationPartial):
    def _compute_state_partials(self):
        model = self.acceleration_model
        rho = model.density()
        if rho == 0.0:
            zero = np.zeros((3, 3))
            return ({self.accelerated_body: zero, self.exerting_body: zero},
                    {self.accelerated_body: zero, self.exerting_body: zero})

        r = model.relative_position()
        u = model.airspeed_vector()
        u_mag = np.linalg.norm(u)
        K = model.drag_scaling()

        wrt_velocity = K * rho * (u_mag * np.eye(3) + np.outer(u, u) / u_mag)
        density_gradient = -rho / model.scale_height * r / np.linalg.norm(r)
        wrt_position = (K * u_mag * np.outer(u, density_gradient)
                        - wrt_velocity @ cross_product_matrix(model.atmosphere_angular_velocity))

        return ({self.accelerated_body: wrt_position, self.exerting_body: -wrt_position},
                {self.accelerated_body: wrt_velocity, self.exerting_body: -wrt_velocity})

    def _add_coefficient_partial(self, block: np.ndarray):
        block[:, 0] += self.current_acceleration / self.acceleration_model.drag_coefficient

    def get_parameter_partial_function(self, parameter):
        if isinstance(parameter, DragCoefficient) and parameter.acceleration_model is self.acceleration_model:
            return self._add_coefficient_partial, 1
        return NO_DEPENDENCY


ACCELERATION_PARTIAL_TYPES = {
    ThirdBodyGravity: ThirdBodyGravityPartial,
    CentralGravity: CentralGravityPartial,
    J2Gravity: J2GravityPartial,
    CannonballRadiationPressure: RadiationPressurePartial,
    ExponentialDrag: ExponentialDragPartial,
}
