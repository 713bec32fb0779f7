"""
Unit Tests for the Environment
------------------------------
Bodies, ground stations, ephemerides and rotation models.
"""

import pytest
import numpy as np
from unittest.mock import patch

from orbdet.astro.attitude import quaternion_from_axis_angle, quaternion_to_rotation_matrix
from orbdet.astro.element_conversions import keplerian_to_cartesian
from orbdet.environment.bodies import Body, Environment, spherical_station_position
from orbdet.environment.ephemerides import ConstantEphemeris, KeplerEphemeris, SpiceEphemeris, TabulatedEphemeris
from orbdet.environment.rotation_models import (
    ConstantRotation,
    SimpleRotation,
    SpiceRotation,
    TabulatedRotation,
)
from orbdet.errors import ConfigurationError

MU_EARTH = 398600.4418
EARTH_ROTATION_RATE = 7.292115e-5


@pytest.fixture
def earth():
    body = Body('Earth', MU_EARTH, ConstantEphemeris(), SimpleRotation(EARTH_ROTATION_RATE),
                reference_radius=6378.0)
    body.add_ground_station('Station', spherical_station_position(6378.0, 0.0, 0.0))
    return body


def test_environment_lookup(earth):
    env = Environment([earth])
    assert 'Earth' in env
    assert env['Earth'] is earth
    assert env.body_names == ['Earth']
    with pytest.raises(ConfigurationError):
        env.get_body('Moon')
    with pytest.raises(ConfigurationError):
        env.add_body(Body('Earth'))


def test_station_state_on_rotating_body(earth):
    """Equatorial station on a rotating body: v = w x r."""
    t = 1000.0
    state = earth.station_state('Station', t)
    angle = EARTH_ROTATION_RATE * t
    expected_position = 6378.0 * np.array([np.cos(angle), np.sin(angle), 0.0])
    np.testing.assert_allclose(state[0:3], expected_position, atol=1e-9)
    np.testing.assert_allclose(state[3:6], np.cross([0.0, 0.0, EARTH_ROTATION_RATE], expected_position),
                               atol=1e-12)


def test_station_state_of_body_center(earth):
    np.testing.assert_allclose(earth.station_state('', 10.0), np.zeros(6))


def test_missing_ground_station_raises(earth):
    with pytest.raises(ConfigurationError):
        earth.get_ground_station('DSS-14')


def test_environment_update_skips_integrated_bodies(earth):
    satellite = Body('Sat', ephemeris=ConstantEphemeris(np.array([7000.0, 0, 0, 0, 7.5, 0])))
    env = Environment([earth, satellite])
    satellite.set_state(np.ones(6))
    env.update(50.0, skip_translational=['Sat'])
    np.testing.assert_allclose(satellite.state, np.ones(6))
    np.testing.assert_allclose(earth.rotation_matrix, SimpleRotation(EARTH_ROTATION_RATE).rotation_to_base_frame(50.0))


def test_set_rotational_state_uses_quadratic_form():
    body = Body('Rock', inertia_tensor=np.eye(3))
    q = 1.01 * quaternion_from_axis_angle(np.array([0.0, 1.0, 0.0]), 0.3)
    body.set_rotational_state(np.concatenate((q, np.zeros(3))))
    np.testing.assert_allclose(body.rotation_matrix, quaternion_to_rotation_matrix(q))


def test_kepler_ephemeris_relative_to_central_ephemeris():
    central = ConstantEphemeris(np.array([1.0e8, 0.0, 0.0, 0.0, 30.0, 0.0]))
    elements = np.array([7000.0, 0.01, 0.5, 0.2, 0.3, 0.0])
    ephemeris = KeplerEphemeris(elements, 0.0, MU_EARTH, central)
    np.testing.assert_allclose(ephemeris.get_state(0.0),
                               keplerian_to_cartesian(elements, MU_EARTH) + central.get_state(0.0))


def test_tabulated_ephemeris_adds_origin():
    origin = ConstantEphemeris(np.array([10.0, 0.0, 0.0, 0.0, 1.0, 0.0]))
    ephemeris = TabulatedEphemeris(lambda t: np.array([t, 0.0, 0.0, 1.0, 0.0, 0.0]), origin)
    np.testing.assert_allclose(ephemeris.get_state(5.0), [15.0, 0.0, 0.0, 1.0, 1.0, 0.0])
    np.testing.assert_allclose(ephemeris.get_position(5.0), [15.0, 0.0, 0.0])


def test_simple_rotation_quaternion_is_consistent():
    model = SimpleRotation(0.01, initial_angle=0.2)
    q = model.quaternion(30.0)
    np.testing.assert_allclose(quaternion_to_rotation_matrix(q), model.rotation_to_base_frame(30.0), atol=1e-14)
    np.testing.assert_allclose(model.rotational_state(30.0)[4:7], [0.0, 0.0, 0.01])


def test_tabulated_rotation_normalizes_quaternion():
    model = TabulatedRotation(lambda t: np.array([2.0, 0.0, 0.0, 0.0, 0.1, 0.0, 0.0]))
    np.testing.assert_allclose(model.rotational_state(0.0), [1.0, 0.0, 0.0, 0.0, 0.1, 0.0, 0.0])
    np.testing.assert_allclose(model.rotation_to_base_frame(0.0), np.eye(3))


def test_constant_rotation():
    model = ConstantRotation()
    np.testing.assert_allclose(model.quaternion(0.0), [1.0, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(model.angular_velocity(0.0), np.zeros(3))


def test_spice_rotation_angular_velocity():
    """Body-frame angular velocity recovered from the SPICE state transformation."""
    rate = 1e-4
    angle = 0.7
    c, s = np.cos(angle), np.sin(angle)
    rotation = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    rotation_derivative = rate * np.array([[-s, -c, 0.0], [c, -s, 0.0], [0.0, 0.0, 0.0]])
    transform = np.zeros((6, 6))
    transform[0:3, 0:3] = rotation
    transform[3:6, 0:3] = rotation_derivative
    transform[3:6, 3:6] = rotation

    with patch('orbdet.environment.rotation_models.spice_manager') as mock_spice:
        mock_spice.get_state_transform.return_value = transform
        mock_spice.get_coord_transform.return_value = rotation
        model = SpiceRotation('IAU_EARTH')
        np.testing.assert_allclose(model.angular_velocity(0.0), [0.0, 0.0, rate], atol=1e-18)
        np.testing.assert_allclose(model.rotation_to_base_frame(0.0), rotation)
        mock_spice.get_state_transform.assert_called_with('IAU_EARTH', 'J2000', 0.0)


def test_spice_ephemeris_queries_manager():
    with patch('orbdet.environment.ephemerides.spice_manager') as mock_spice:
        mock_spice.get_body_state.return_value = np.arange(6.0)
        ephemeris = SpiceEphemeris('MOON', 'EARTH', 'ECLIPJ2000')
        np.testing.assert_allclose(ephemeris.get_state(100.0), np.arange(6.0))
        mock_spice.get_body_state.assert_called_once_with('MOON', 'EARTH', 100.0, 'ECLIPJ2000')
