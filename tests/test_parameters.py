"""
Unit Tests for Estimatable Parameters
-------------------------------------
"""

import pytest
import numpy as np

from orbdet.astro.attitude import quaternion_from_axis_angle
from orbdet.dynamics.accelerations import CannonballRadiationPressure
from orbdet.dynamics.state_types import StateType
from orbdet.environment.bodies import Body
from orbdet.environment.ephemerides import ConstantEphemeris
from orbdet.errors import ConfigurationError
from orbdet.estimation.parameters import (
    EstimatableParameterSet,
    GravitationalParameter,
    InitialRotationalState,
    InitialTranslationalState,
    RadiationPressureCoefficient,
)


@pytest.fixture
def bodies():
    earth = Body('Earth', 398600.4418, ConstantEphemeris())
    sun = Body('Sun', 1.32712440018e11, ConstantEphemeris(np.array([1.496e8, 0.0, 0.0, 0.0, 0.0, 0.0])))
    satellite = Body('Sat')
    return earth, sun, satellite


@pytest.fixture
def rotational_state():
    return np.concatenate((quaternion_from_axis_angle(np.array([0.0, 0.0, 1.0]), 0.3), [0.0, 0.0, 0.01]))


def test_initial_states_are_ordered_first(bodies, rotational_state):
    earth, sun, satellite = bodies
    srp = CannonballRadiationPressure(satellite, sun, 1.0, 100.0, 1.2)
    parameters = EstimatableParameterSet([
        GravitationalParameter(earth),
        InitialRotationalState('Sat', rotational_state),
        RadiationPressureCoefficient(srp),
        InitialTranslationalState('Sat', np.arange(6.0), 'Earth'),
    ])

    assert [type(p).__name__ for p in parameters] == [
        'InitialTranslationalState', 'InitialRotationalState', 'GravitationalParameter',
        'RadiationPressureCoefficient']
    assert parameters.parameter_set_size == 15
    assert parameters.initial_state_size == 13
    assert parameters.parameter_indices == [(0, 6), (6, 7), (13, 1), (14, 1)]
    assert parameters.estimated_initial_states == {StateType.TRANSLATIONAL: ['Sat'], StateType.ROTATIONAL: ['Sat']}
    assert parameters.index_of(parameters.other_parameters[1]) == 14

    values = parameters.get_full_parameter_values()
    np.testing.assert_allclose(values[0:6], np.arange(6.0))
    np.testing.assert_allclose(values[6:13], rotational_state)
    assert values[13] == earth.gravitational_parameter
    assert values[14] == 1.2


def test_reset_parameter_values_updates_models(bodies):
    earth, sun, satellite = bodies
    srp = CannonballRadiationPressure(satellite, sun, 1.0, 100.0, 1.2)
    parameters = EstimatableParameterSet([
        InitialTranslationalState('Sat', np.zeros(6), 'Earth'),
        GravitationalParameter(earth),
        RadiationPressureCoefficient(srp),
    ])
    new_values = np.concatenate((np.ones(6), [398600.0, 1.5]))
    parameters.reset_parameter_values(new_values)

    assert earth.gravitational_parameter == 398600.0
    assert srp.radiation_pressure_coefficient == 1.5
    np.testing.assert_allclose(parameters.initial_state_parameter(StateType.TRANSLATIONAL, 'Sat').initial_state,
                               np.ones(6))
    np.testing.assert_allclose(parameters.get_full_parameter_values(), new_values)


def test_reset_with_wrong_size_raises(bodies):
    earth, _, _ = bodies
    parameters = EstimatableParameterSet([GravitationalParameter(earth)])
    with pytest.raises(ConfigurationError):
        parameters.reset_parameter_values(np.zeros(2))


def test_duplicate_initial_state_raises():
    with pytest.raises(ConfigurationError):
        EstimatableParameterSet([
            InitialTranslationalState('Sat', np.zeros(6), 'Earth'),
            InitialTranslationalState('Sat', np.ones(6), 'Earth'),
        ])


def test_parameter_not_in_set_raises(bodies):
    earth, sun, _ = bodies
    parameters = EstimatableParameterSet([GravitationalParameter(earth)])
    with pytest.raises(ConfigurationError):
        parameters.index_of(GravitationalParameter(sun))
    assert parameters.initial_state_parameter(StateType.TRANSLATIONAL, 'Sat') is None


def test_gravitational_parameter_requires_value(bodies):
    _, _, satellite = bodies
    with pytest.raises(ConfigurationError):
        GravitationalParameter(satellite)


def test_initial_state_sizes_are_checked():
    with pytest.raises(ConfigurationError):
        InitialTranslationalState('Sat', np.zeros(7), 'Earth')
    with pytest.raises(ConfigurationError):
        InitialRotationalState('Sat', np.zeros(6))


def test_quaternion_is_renormalized_on_update(rotational_state):
    parameter = InitialRotationalState('Sat', rotational_state)
    slightly_off = rotational_state.copy()
    slightly_off[0:4] *= 1.0 + 1e-6
    parameter.set_parameter_value(slightly_off)
    assert np.linalg.norm(parameter.get_parameter_value()[0:4]) == pytest.approx(1.0, abs=1e-15)
    np.testing.assert_allclose(parameter.get_parameter_value()[4:7], rotational_state[4:7])


def test_large_quaternion_deviation_warns(rotational_state):
    parameter = InitialRotationalState('Sat', rotational_state)
    off = rotational_state.copy()
    off[0:4] *= 1.1
    with pytest.warns(UserWarning):
        parameter.set_parameter_value(off)
    np.testing.assert_allclose(parameter.get_parameter_value()[0:4], rotational_state[0:4], atol=1e-15)


def test_zero_quaternion_raises():
    with pytest.raises(ValueError):
        InitialRotationalState('Sat', np.zeros(7))


def test_print_parameter_entries(bodies, capsys):
    earth, _, _ = bodies
    parameters = EstimatableParameterSet([
        GravitationalParameter(earth),
        InitialTranslationalState('Sat', np.zeros(6), 'Earth'),
    ])
    parameters.print_parameter_entries()
    output = capsys.readouterr().out
    assert "[0:6], Initial translational state of Sat w.r.t. Earth" in output
    assert "[6:7], GravitationalParameter of Earth" in output
