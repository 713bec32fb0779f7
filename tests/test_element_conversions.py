"""
Unit Tests for Element Conversions
----------------------------------
Verifies Cartesian / Keplerian / USM7 conversions, their validation and Kepler's equation.
"""

import pytest
import numpy as np

from orbdet.astro.element_conversions import (
    cartesian_to_keplerian,
    cartesian_to_usm7,
    eccentric_to_mean_anomaly,
    keplerian_to_cartesian,
    keplerian_to_usm7,
    mean_to_eccentric_anomaly,
    propagate_kepler_orbit,
    true_to_eccentric_anomaly,
    eccentric_to_true_anomaly,
    usm7_to_cartesian,
    usm7_to_keplerian,
)
from orbdet.errors import ElementRangeError, SingularityError

MU_EARTH = 398600.4418


@pytest.fixture
def elliptic_elements():
    # a, e, i, omega, RAAN, nu
    return np.array([8000.0, 0.12, 0.7, 1.1, 2.3, 0.4])


def test_keplerian_usm7_round_trip(elliptic_elements):
    """Keplerian -> USM7 -> Keplerian agrees to 1e-9."""
    usm = keplerian_to_usm7(elliptic_elements, MU_EARTH)
    assert np.isclose(np.linalg.norm(usm[3:7]), 1.0, atol=1e-15)

    kep = usm7_to_keplerian(usm, MU_EARTH)
    np.testing.assert_allclose(kep[0], elliptic_elements[0], rtol=1e-9)
    np.testing.assert_allclose(kep[1:], elliptic_elements[1:], atol=1e-9)


@pytest.mark.parametrize("kep", [
    [7000.0, 0.001, 0.3, 0.2, 5.9, 6.0],
    [26560.0, 0.7, 1.1, 4.0, 0.1, 3.0],
    [42164.0, 0.0, 0.1, 0.0, 1.0, 2.5],
    [7500.0, 0.05, 2.5, 3.0, 3.0, 1.0],
])
def test_keplerian_usm7_round_trip_various_orbits(kep):
    kep = np.array(kep)
    back = usm7_to_keplerian(keplerian_to_usm7(kep, MU_EARTH), MU_EARTH)
    np.testing.assert_allclose(back[0], kep[0], rtol=1e-9)
    np.testing.assert_allclose(back[1:], kep[1:], atol=1e-9)


def test_usm7_cartesian_consistent_with_keplerian(elliptic_elements):
    """Both routes from Keplerian elements give the same Cartesian state."""
    direct = keplerian_to_cartesian(elliptic_elements, MU_EARTH)
    via_usm = usm7_to_cartesian(keplerian_to_usm7(elliptic_elements, MU_EARTH), MU_EARTH)
    np.testing.assert_allclose(via_usm[0:3], direct[0:3], atol=1e-7)
    np.testing.assert_allclose(via_usm[3:6], direct[3:6], atol=1e-10)


def test_cartesian_usm7_round_trip(elliptic_elements):
    state = keplerian_to_cartesian(elliptic_elements, MU_EARTH)
    back = usm7_to_cartesian(cartesian_to_usm7(state, MU_EARTH), MU_EARTH)
    np.testing.assert_allclose(back[0:3], state[0:3], atol=1e-7)
    np.testing.assert_allclose(back[3:6], state[3:6], atol=1e-10)


def test_cartesian_keplerian_round_trip(elliptic_elements):
    state = keplerian_to_cartesian(elliptic_elements, MU_EARTH)
    kep = cartesian_to_keplerian(state, MU_EARTH)
    np.testing.assert_allclose(kep[0], elliptic_elements[0], rtol=1e-10)
    np.testing.assert_allclose(kep[1:], elliptic_elements[1:], atol=1e-9)


def test_circular_equatorial_conventions():
    """Circular, equatorial orbit: RAAN = omega = 0 and nu is the true longitude."""
    r = 7000.0
    v = np.sqrt(MU_EARTH / r)
    angle = 0.8
    state = np.array([r * np.cos(angle), r * np.sin(angle), 0.0,
                      -v * np.sin(angle), v * np.cos(angle), 0.0])
    kep = cartesian_to_keplerian(state, MU_EARTH)
    assert kep[1] == 0.0
    assert kep[3] == 0.0
    assert kep[4] == 0.0
    assert np.isclose(kep[5], angle, atol=1e-10)


def test_zero_inclination_with_nonzero_raan_raises():
    kep = np.array([7000.0, 0.1, 0.0, 0.5, 1.0, 0.3])
    with pytest.raises(ElementRangeError):
        keplerian_to_usm7(kep, MU_EARTH)


def test_zero_eccentricity_with_nonzero_periapsis_raises():
    kep = np.array([7000.0, 0.0, 0.5, 1.0, 1.0, 0.3])
    with pytest.raises(ElementRangeError):
        keplerian_to_usm7(kep, MU_EARTH)


@pytest.mark.parametrize("kep", [
    [7000.0, -0.1, 0.5, 1.0, 1.0, 0.3],     # negative eccentricity
    [7000.0, 0.1, 3.5, 1.0, 1.0, 0.3],      # inclination above pi
    [7000.0, 0.1, 0.5, 7.0, 1.0, 0.3],      # periapsis above 2 pi
    [-7000.0, 0.5, 0.5, 1.0, 1.0, 0.3],     # negative a, elliptic
    [7000.0, 1.5, 0.5, 1.0, 1.0, 0.3],      # positive a, hyperbolic
])
def test_out_of_range_elements_raise(kep):
    with pytest.raises(ElementRangeError):
        keplerian_to_usm7(np.array(kep), MU_EARTH)


def test_non_unit_usm_quaternion_raises(elliptic_elements):
    usm = keplerian_to_usm7(elliptic_elements, MU_EARTH)
    usm[3:7] *= 1.001
    with pytest.raises(SingularityError):
        usm7_to_keplerian(usm, MU_EARTH)
    with pytest.raises(SingularityError):
        usm7_to_cartesian(usm, MU_EARTH)


def test_pure_retrograde_orbit_raises():
    usm = keplerian_to_usm7(np.array([7000.0, 0.1, np.pi, 1.0, 0.0, 0.3]), MU_EARTH)
    with pytest.raises(SingularityError):
        usm7_to_keplerian(usm, MU_EARTH)


def test_kepler_equation_solution():
    e = 0.6
    for M in np.linspace(0.1, 6.2, 7):
        E = mean_to_eccentric_anomaly(M, e)
        assert np.isclose(eccentric_to_mean_anomaly(E, e), M, atol=1e-12)


def test_anomaly_conversions_inverse():
    e = 0.3
    nu = 2.0
    assert np.isclose(eccentric_to_true_anomaly(true_to_eccentric_anomaly(nu, e), e), nu, atol=1e-13)


def test_kepler_equation_rejects_hyperbolic():
    with pytest.raises(ElementRangeError):
        mean_to_eccentric_anomaly(1.0, 1.2)


def test_kepler_propagation_one_period(elliptic_elements):
    """After one orbital period the elements are unchanged."""
    period = 2.0 * np.pi * np.sqrt(elliptic_elements[0]**3 / MU_EARTH)
    propagated = propagate_kepler_orbit(elliptic_elements, period, MU_EARTH)
    np.testing.assert_allclose(propagated, elliptic_elements, atol=1e-10)
