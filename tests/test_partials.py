"""
Unit Tests for State Derivative Partials
----------------------------------------
Analytical partials of the acceleration and torque models are verified against central
finite differences of the models themselves.
"""

import pytest
import numpy as np

from orbdet.astro.attitude import quaternion_from_axis_angle
from orbdet.dynamics.accelerations import (
    CannonballRadiationPressure,
    CentralGravity,
    ExponentialDrag,
    J2Gravity,
    ThirdBodyGravity,
)
from orbdet.dynamics.state_derivatives import RotationalStateDerivative
from orbdet.dynamics.state_types import StateType
from orbdet.dynamics.torques import SecondDegreeGravitationalTorque
from orbdet.environment.bodies import Body, Environment
from orbdet.environment.ephemerides import ConstantEphemeris
from orbdet.environment.rotation_models import SimpleRotation
from orbdet.errors import ConfigurationError
from orbdet.estimation.parameters import DragCoefficient, GravitationalParameter, RadiationPressureCoefficient
from orbdet.partials.acceleration_partials import CentralGravityPartial
from orbdet.partials.base import NO_DEPENDENCY
from orbdet.partials.factory import create_acceleration_partial
from orbdet.partials.rotational_partials import RotationalDynamicsPartial

MU_EARTH = 398600.4418
MU_SUN = 1.32712440018e11


@pytest.fixture
def env():
    earth = Body('Earth', MU_EARTH, ConstantEphemeris(), SimpleRotation(7.292115e-5, initial_angle=0.4),
                 reference_radius=6378.137)
    sun = Body('Sun', MU_SUN, ConstantEphemeris(np.array([1.2e8, 0.8e8, 0.2e8, 0.0, 0.0, 0.0])))
    satellite = Body('Sat', inertia_tensor=np.array([[120.0, 3.0, -2.0],
                                                      [3.0, 250.0, 5.0],
                                                      [-2.0, 5.0, 310.0]]))
    environment = Environment([earth, sun, satellite])
    environment.update(0.0, skip_translational=['Sat'], skip_rotational=['Sat'])
    satellite.set_state(np.array([6378.14 + 250.0, 300.0, 900.0, -0.5, 7.3, 1.2]))
    q = quaternion_from_axis_angle(np.array([0.3, -0.5, 0.8]), 0.9)
    satellite.set_rotational_state(np.concatenate((q, [0.001, -0.002, 0.0015])))
    return environment


def _numerical_acceleration_partial(model, body: Body, index: int, h: float) -> np.ndarray:
    """Central difference of the acceleration w.r.t. one entry of a body's global state."""
    original = body.state.copy()
    results = []
    for sign in (1.0, -1.0):
        perturbed = original.copy()
        perturbed[index] += sign * h
        body.set_state(perturbed)
        model.update(0.0)
        results.append(model.compute_acceleration())
    body.set_state(original)
    model.update(0.0)
    return (results[0] - results[1]) / (2.0 * h)


def _analytical_block(partial, body: str) -> np.ndarray:
    partial.update(0.0)
    function, width = partial.get_derivative_function_wrt_state_of_integrated_body(body, StateType.TRANSLATIONAL)
    assert width == 6
    block = np.zeros((3, 6))
    function(block)
    return block


def _check_translational_partials(env, model, bodies, position_step=1e-2, velocity_step=1e-5, rtol=1e-6):
    partial = create_acceleration_partial(model)
    for name in bodies:
        block = _analytical_block(partial, name)
        partial.reset_time()
        numerical = np.column_stack([
            _numerical_acceleration_partial(model, env[name], k, position_step if k < 3 else velocity_step)
            for k in range(6)
        ])
        scale = np.max(np.abs(numerical))
        np.testing.assert_allclose(block, numerical, atol=rtol * scale)


def test_central_gravity_partials(env):
    model = CentralGravity(env['Sat'], env['Earth'])
    _check_translational_partials(env, model, ['Sat', 'Earth'])


def test_third_body_gravity_partials(env):
    model = ThirdBodyGravity(env['Sat'], env['Sun'], env['Earth'])
    _check_translational_partials(env, model, ['Sat'], position_step=10.0)
    _check_translational_partials(env, model, ['Earth'], position_step=10.0)


def test_j2_gravity_partials(env):
    model = J2Gravity(env['Sat'], env['Earth'], 1.08263e-3)
    _check_translational_partials(env, model, ['Sat'], rtol=1e-5)


def test_radiation_pressure_partials(env):
    model = CannonballRadiationPressure(env['Sat'], env['Sun'], 20.0, 800.0, 1.4)
    _check_translational_partials(env, model, ['Sat'], position_step=100.0)


def test_drag_partials(env):
    model = ExponentialDrag(env['Sat'], env['Earth'], 2.2, 4.0, 500.0)
    _check_translational_partials(env, model, ['Sat'], position_step=1e-3, velocity_step=1e-6, rtol=1e-5)


def test_gravitational_parameter_partial(env):
    model = CentralGravity(env['Sat'], env['Earth'])
    partial = CentralGravityPartial(model)
    partial.update(0.0)

    function, width = partial.get_parameter_partial_function(GravitationalParameter(env['Earth']))
    assert width == 1
    block = np.zeros((3, 1))
    function(block)
    np.testing.assert_allclose(block[:, 0], partial.current_acceleration / MU_EARTH)

    assert partial.get_parameter_partial_function(GravitationalParameter(env['Sun'])) == NO_DEPENDENCY


def test_coefficient_partials(env):
    srp = CannonballRadiationPressure(env['Sat'], env['Sun'], 20.0, 800.0, 1.4)
    drag = ExponentialDrag(env['Sat'], env['Earth'], 2.2, 4.0, 500.0)
    for model, parameter in ((srp, RadiationPressureCoefficient(srp)), (drag, DragCoefficient(drag))):
        partial = create_acceleration_partial(model)
        partial.update(0.0)
        function, width = partial.get_parameter_partial_function(parameter)
        assert width == 1
        block = np.zeros((3, 1))
        function(block)
        value = parameter.get_parameter_value()[0]
        np.testing.assert_allclose(block[:, 0] * value, model.compute_acceleration())


def test_no_dependency_on_unrelated_body(env):
    partial = create_acceleration_partial(CentralGravity(env['Sat'], env['Earth']))
    assert partial.get_derivative_function_wrt_state_of_integrated_body('Sun', StateType.TRANSLATIONAL) == NO_DEPENDENCY
    assert partial.get_derivative_function_wrt_state_of_integrated_body('Sat', StateType.ROTATIONAL) == NO_DEPENDENCY


def test_unsupported_acceleration_raises(env):
    class CustomAcceleration(CentralGravity):
        pass

    with pytest.raises(ConfigurationError):
        create_acceleration_partial(CustomAcceleration(env['Sat'], env['Earth']))


def test_partials_accumulate(env):
    """Partial functions add into the block instead of overwriting it."""
    partial = create_acceleration_partial(CentralGravity(env['Sat'], env['Earth']))
    single = _analytical_block(partial, 'Sat')
    function, _ = partial.get_derivative_function_wrt_state_of_integrated_body('Sat', StateType.TRANSLATIONAL)
    block = np.ones((3, 6))
    function(block)
    function(block)
    np.testing.assert_allclose(block, 1.0 + 2.0 * single)


class TestRotationalPartials:

    @staticmethod
    def _derivative(env, state_derivative, rotational_state):
        env['Sat'].set_rotational_state(rotational_state)
        return state_derivative.compute(0.0, rotational_state)

    def test_rotational_state_partials(self, env):
        torque = SecondDegreeGravitationalTorque(env['Sat'], env['Earth'])
        state_derivative = RotationalStateDerivative(env, ['Sat'], {'Sat': [torque]})
        partial = RotationalDynamicsPartial(env, 'Sat', [torque])

        x0 = env['Sat'].rotational_state.copy()
        partial.update(0.0)
        function, width = partial.get_derivative_function_wrt_state_of_integrated_body('Sat', StateType.ROTATIONAL)
        assert width == 7
        block = np.zeros((7, 7))
        function(block)

        numerical = np.zeros((7, 7))
        for k in range(7):
            h = 1e-7 if k < 4 else 1e-6
            dx = np.zeros(7)
            dx[k] = h
            numerical[:, k] = (self._derivative(env, state_derivative, x0 + dx)
                               - self._derivative(env, state_derivative, x0 - dx)) / (2.0 * h)
        env['Sat'].set_rotational_state(x0)

        np.testing.assert_allclose(block, numerical, atol=1e-9 * np.max(np.abs(numerical)))

    def test_translational_state_partials(self, env):
        torque = SecondDegreeGravitationalTorque(env['Sat'], env['Earth'])
        state_derivative = RotationalStateDerivative(env, ['Sat'], {'Sat': [torque]})
        partial = RotationalDynamicsPartial(env, 'Sat', [torque])
        x0 = env['Sat'].rotational_state.copy()

        for body in ('Sat', 'Earth'):
            partial.reset_time()
            partial.update(0.0)
            function, width = partial.get_derivative_function_wrt_state_of_integrated_body(
                body, StateType.TRANSLATIONAL)
            assert width == 6
            block = np.zeros((7, 6))
            function(block)

            original = env[body].state.copy()
            numerical = np.zeros((3, 3))
            h = 1e-2
            for k in range(3):
                results = []
                for sign in (1.0, -1.0):
                    perturbed = original.copy()
                    perturbed[k] += sign * h
                    env[body].set_state(perturbed)
                    results.append(state_derivative.compute(0.0, x0)[4:7])
                numerical[:, k] = (results[0] - results[1]) / (2.0 * h)
            env[body].set_state(original)

            np.testing.assert_allclose(block[4:7, 0:3], numerical, atol=1e-7 * np.max(np.abs(numerical)))
            np.testing.assert_allclose(block[0:4, :], np.zeros((4, 6)))
            np.testing.assert_allclose(block[4:7, 3:6], np.zeros((3, 3)))

    def test_gravitational_parameter_partial(self, env):
        torque = SecondDegreeGravitationalTorque(env['Sat'], env['Earth'])
        partial = RotationalDynamicsPartial(env, 'Sat', [torque])
        partial.update(0.0)
        function, width = partial.get_parameter_partial_function(GravitationalParameter(env['Earth']))
        assert width == 1
        block = np.zeros((7, 1))
        function(block)
        expected = np.linalg.solve(env['Sat'].inertia_tensor, torque.compute_torque()) / MU_EARTH
        np.testing.assert_allclose(block[4:7, 0], expected)

    def test_unsupported_torque_raises(self, env):
        with pytest.raises(ConfigurationError):
            RotationalDynamicsPartial(env, 'Sat', [object()])
