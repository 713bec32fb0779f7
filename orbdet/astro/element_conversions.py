"""
Conversions between Cartesian states, Keplerian elements and the Unified State Model
with quaternions (USM7), plus Kepler's equation for elliptic orbits.

Element ordering:
    Cartesian: [x, y, z, vx, vy, vz]                       [km, km/s]
    Keplerian: [a, e, i, omega, RAAN, nu]                   [km, -, rad, rad, rad, rad]
               (a is replaced by the semi-latus rectum p for parabolic orbits)
    USM7:      [C, Rf1, Rf2, epsilon1, epsilon2, epsilon3, eta]

References:
    Vittaldev, V. (2010). The unified state model: Derivation and application in
    astrodynamics and navigation. Master's thesis, Delft University of Technology.
"""
import numpy as np
from scipy.optimize import newton

from orbdet.errors import ElementRangeError, SingularityError

SEMI_MAJOR_AXIS = 0
SEMI_LATUS_RECTUM = 0
ECCENTRICITY = 1
INCLINATION = 2
ARGUMENT_OF_PERIAPSIS = 3
RAAN = 4
TRUE_ANOMALY = 5

C_HODOGRAPH = 0
RF1_HODOGRAPH = 1
RF2_HODOGRAPH = 2
EPSILON1 = 3
EPSILON2 = 4
EPSILON3 = 5
ETA = 6

SINGULARITY_TOLERANCE = 20.0 * np.finfo(float).eps


def _wrap_angle(angle: float) -> float:
    """Rounds tiny angles to zero and maps the result to [0, 2*pi)."""
    if abs(angle) < SINGULARITY_TOLERANCE:
        return 0.0
    return angle % (2.0 * np.pi)


def _validate_keplerian_elements(kep: np.ndarray):
    """
    Checks that Keplerian elements lie in the domain of the conversion routines.

    Raises:
        ElementRangeError: On the first violated condition.
    """
    a, e, i, arg_p, raan, nu = kep

    if e < 0.0:
        raise ElementRangeError(f"Eccentricity is expected in range [0, inf), got {e}.")
    if i < 0.0 or i > np.pi:
        raise ElementRangeError(f"Inclination is expected in range [0, pi], got {i} rad.")
    if arg_p < 0.0 or arg_p > 2.0 * np.pi:
        raise ElementRangeError(f"Argument of periapsis is expected in range [0, 2 pi], got {arg_p} rad.")
    if raan < 0.0 or raan > 2.0 * np.pi:
        raise ElementRangeError(f"RAAN is expected in range [0, 2 pi], got {raan} rad.")
    if nu < 0.0 or nu > 2.0 * np.pi:
        raise ElementRangeError(f"True anomaly is expected in range [0, 2 pi], got {nu} rad.")
    if abs(i) < SINGULARITY_TOLERANCE and abs(raan) > SINGULARITY_TOLERANCE:
        raise ElementRangeError(
            f"When the inclination is zero, the RAAN must be zero by definition (got {raan} rad).")
    if abs(e) < SINGULARITY_TOLERANCE and abs(arg_p) > SINGULARITY_TOLERANCE:
        raise ElementRangeError(
            f"When the eccentricity is zero, the argument of periapsis must be zero by definition (got {arg_p} rad).")
    if a < 0.0 and e <= 1.0:
        raise ElementRangeError(
            f"A negative semi-major axis requires an eccentricity larger than one (a={a}, e={e}).")
    if a > 0.0 and e > 1.0:
        raise ElementRangeError(
            f"A positive semi-major axis requires an eccentricity of at most one (a={a}, e={e}).")


def _check_quaternion_norm(usm: np.ndarray):
    norm = np.linalg.norm(usm[EPSILON1:ETA + 1])
    if abs(norm - 1.0) > SINGULARITY_TOLERANCE:
        raise SingularityError(f"The norm of the USM quaternion must be one, got 1 + {norm - 1.0}.")


def _check_pure_retrograde(usm: np.ndarray):
    if abs(usm[EPSILON3]) < SINGULARITY_TOLERANCE and abs(usm[ETA]) < SINGULARITY_TOLERANCE:
        raise SingularityError("Pure-retrograde orbit (inclination = pi): USM elements are singular.")


def _right_ascension_of_latitude_terms(usm: np.ndarray) -> tuple[float, float]:
    """Cosine and sine of the right ascension of latitude lambda."""
    eps3, eta = usm[EPSILON3], usm[ETA]
    denominator = eps3**2 + eta**2
    cos_lambda = (eta**2 - eps3**2) / denominator
    sin_lambda = 2.0 * eps3 * eta / denominator
    return cos_lambda, sin_lambda


def keplerian_to_cartesian(kep: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts Keplerian elements to a Cartesian state.

    Args:
        kep (np.ndarray): Keplerian elements [a (or p if e == 1), e, i, omega, RAAN, nu].
        mu (float): Gravitational parameter [km^3/s^2].

    Returns:
        np.ndarray: Cartesian state [x, y, z, vx, vy, vz].
    """
    a, e, i, arg_p, raan, nu = kep

    if abs(e - 1.0) < SINGULARITY_TOLERANCE:
        p = a
    else:
        p = a * (1.0 - e**2)

    r_mag = p / (1.0 + e * np.cos(nu))
    r_pf = r_mag * np.array([np.cos(nu), np.sin(nu), 0.0])
    v_pf = np.sqrt(mu / p) * np.array([-np.sin(nu), e + np.cos(nu), 0.0])

    cO, sO = np.cos(raan), np.sin(raan)
    cw, sw = np.cos(arg_p), np.sin(arg_p)
    ci, si = np.cos(i), np.sin(i)

    # Perifocal to inertial: R3(-RAAN) R1(-i) R3(-omega)
    Q = np.array([
        [cO * cw - sO * sw * ci, -cO * sw - sO * cw * ci, sO * si],
        [sO * cw + cO * sw * ci, -sO * sw + cO * cw * ci, -cO * si],
        [sw * si, cw * si, ci]
    ])

    return np.concatenate((Q @ r_pf, Q @ v_pf))


def cartesian_to_keplerian(state: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts a Cartesian state to Keplerian elements.

    Conventions for singular orbits: for equatorial orbits RAAN = 0 and the argument of
    periapsis is measured from the x-axis; for circular orbits the argument of periapsis
    is 0 and the true anomaly is measured from the ascending node.

    Args:
        state (np.ndarray): Cartesian state [x, y, z, vx, vy, vz].
        mu (float): Gravitational parameter [km^3/s^2].

    Returns:
        np.ndarray: Keplerian elements [a (or p if parabolic), e, i, omega, RAAN, nu].
    """
    r = np.asarray(state[0:3], dtype=float)
    v = np.asarray(state[3:6], dtype=float)
    r_mag = np.linalg.norm(r)

    h_vec = np.cross(r, v)
    h_mag = np.linalg.norm(h_vec)
    h_hat = h_vec / h_mag

    e_vec = np.cross(v, h_vec) / mu - r / r_mag
    e = np.linalg.norm(e_vec)

    i = np.arccos(np.clip(h_hat[2], -1.0, 1.0))

    # Node vector n = k x h
    n_vec = np.array([-h_vec[1], h_vec[0], 0.0])
    n_mag = np.linalg.norm(n_vec)

    # Tolerance on direction cosines, loose enough to absorb round-off in r x v
    angle_tolerance = 1e-11

    if n_mag < angle_tolerance * h_mag:
        raan = 0.0
        node_hat = np.array([1.0, 0.0, 0.0])
    else:
        node_hat = n_vec / n_mag
        raan = np.arctan2(node_hat[1], node_hat[0])

    # In-plane frame with first axis along the line of nodes
    q_hat = np.cross(h_hat, node_hat)

    if e < angle_tolerance:
        e = 0.0
        arg_p = 0.0
        nu = np.arctan2(r @ q_hat, r @ node_hat)
    else:
        arg_p = np.arctan2(e_vec @ q_hat, e_vec @ node_hat)
        e_hat = e_vec / e
        nu = np.arctan2(np.cross(e_hat, r) @ h_hat, e_hat @ r)

    p = h_mag**2 / mu
    if abs(e - 1.0) < SINGULARITY_TOLERANCE:
        a = p
    else:
        a = p / (1.0 - e**2)

    return np.array([a, e, i, _wrap_angle(arg_p), _wrap_angle(raan), _wrap_angle(nu)])


def keplerian_to_usm7(kep: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts Keplerian elements to unified state model elements with quaternions.

    Args:
        kep (np.ndarray): Keplerian elements [a (or p if e == 1), e, i, omega, RAAN, nu].
        mu (float): Gravitational parameter [km^3/s^2].

    Returns:
        np.ndarray: USM7 elements [C, Rf1, Rf2, epsilon1, epsilon2, epsilon3, eta].

    Raises:
        ElementRangeError: If the elements are outside their documented domain.
    """
    kep = np.asarray(kep, dtype=float)
    _validate_keplerian_elements(kep)
    a, e, i, arg_p, raan, nu = kep

    usm = np.zeros(7)
    if abs(e - 1.0) < SINGULARITY_TOLERANCE:
        usm[C_HODOGRAPH] = np.sqrt(mu / kep[SEMI_LATUS_RECTUM])
    else:
        usm[C_HODOGRAPH] = np.sqrt(mu / (a * (1.0 - e**2)))

    r_hodograph = e * usm[C_HODOGRAPH]
    usm[RF1_HODOGRAPH] = -r_hodograph * np.sin(raan + arg_p)
    usm[RF2_HODOGRAPH] = r_hodograph * np.cos(raan + arg_p)

    # Argument of latitude
    u = arg_p + nu
    usm[EPSILON1] = np.sin(0.5 * i) * np.cos(0.5 * (raan - u))
    usm[EPSILON2] = np.sin(0.5 * i) * np.sin(0.5 * (raan - u))
    usm[EPSILON3] = np.cos(0.5 * i) * np.sin(0.5 * (raan + u))
    usm[ETA] = np.cos(0.5 * i) * np.cos(0.5 * (raan + u))

    return usm


def usm7_to_keplerian(usm: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts unified state model elements with quaternions to Keplerian elements.

    Args:
        usm (np.ndarray): USM7 elements [C, Rf1, Rf2, epsilon1, epsilon2, epsilon3, eta].
        mu (float): Gravitational parameter [km^3/s^2].

    Returns:
        np.ndarray: Keplerian elements [a (or p if parabolic), e, i, omega, RAAN, nu].

    Raises:
        SingularityError: If the quaternion is not unit-norm or the orbit is pure-retrograde.
    """
    usm = np.asarray(usm, dtype=float)
    _check_quaternion_norm(usm)
    _check_pure_retrograde(usm)

    C = usm[C_HODOGRAPH]
    eps1, eps2, eps3, eta = usm[EPSILON1:ETA + 1]

    cos_lambda, sin_lambda = _right_ascension_of_latitude_terms(usm)
    right_ascension_of_latitude = np.arctan2(sin_lambda, cos_lambda)

    v1 = usm[RF1_HODOGRAPH] * cos_lambda + usm[RF2_HODOGRAPH] * sin_lambda
    v2 = C - usm[RF1_HODOGRAPH] * sin_lambda + usm[RF2_HODOGRAPH] * cos_lambda
    r_hodograph = np.hypot(usm[RF1_HODOGRAPH], usm[RF2_HODOGRAPH])

    kep = np.zeros(6)
    kep[ECCENTRICITY] = r_hodograph / C
    if abs(kep[ECCENTRICITY] - 1.0) < SINGULARITY_TOLERANCE:
        kep[SEMI_LATUS_RECTUM] = mu / C**2
    else:
        kep[SEMI_MAJOR_AXIS] = mu / (C**2 * (1.0 - kep[ECCENTRICITY]**2))

    kep[INCLINATION] = np.arccos(np.clip(1.0 - 2.0 * (eps1**2 + eps2**2), -1.0, 1.0))

    sin_raan = eps1 * eps3 + eps2 * eta
    cos_raan = eps1 * eta - eps2 * eps3
    denominator = np.hypot(sin_raan, cos_raan)

    if abs(abs(kep[INCLINATION]) - np.pi) < SINGULARITY_TOLERANCE:
        raise SingularityError("Pure-retrograde orbit (inclination = pi): USM elements are singular.")
    elif denominator < SINGULARITY_TOLERANCE:
        kep[RAAN] = 0.0
    else:
        kep[RAAN] = _wrap_angle(np.arctan2(sin_raan / denominator, cos_raan / denominator))

    if abs(r_hodograph) < SINGULARITY_TOLERANCE:
        # Circular orbit: periapsis undefined, anomaly measured from the node
        kep[ARGUMENT_OF_PERIAPSIS] = 0.0
        kep[TRUE_ANOMALY] = _wrap_angle(right_ascension_of_latitude - kep[RAAN])
    else:
        kep[TRUE_ANOMALY] = _wrap_angle(
            np.arctan2(v1 / r_hodograph, (v2 - C) / r_hodograph))
        kep[ARGUMENT_OF_PERIAPSIS] = _wrap_angle(
            right_ascension_of_latitude - kep[RAAN] - kep[TRUE_ANOMALY])

    return kep


def cartesian_to_usm7(state: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts a Cartesian state to unified state model elements with quaternions.

    Raises:
        SingularityError: If the orbit is pure-retrograde.
    """
    state = np.asarray(state, dtype=float)
    r = state[0:3]
    v = state[3:6]
    r_mag = np.linalg.norm(r)

    h_vec = np.cross(r, v)
    h_mag = np.linalg.norm(h_vec)

    usm = np.zeros(7)
    usm[C_HODOGRAPH] = mu / h_mag

    # Direction cosine matrix of the local orbital frame (rows: r_hat, theta_hat, h_hat)
    dcm = np.vstack((h_mag * r, np.cross(h_vec, r), r_mag * h_vec)) / (r_mag * h_mag)

    trace = np.trace(dcm)
    eta_squared = (1.0 + trace) / 4.0
    epsilon_squared = (1.0 - trace + 2.0 * np.diag(dcm)) / 4.0
    maximum = max(epsilon_squared.max(), eta_squared)

    if abs(epsilon_squared[0] - maximum) < SINGULARITY_TOLERANCE:
        eps1 = np.sqrt(epsilon_squared[0])
        eps2 = (dcm[1, 0] + dcm[0, 1]) / (4.0 * eps1)
        eps3 = (dcm[2, 0] + dcm[0, 2]) / (4.0 * eps1)
        eta = (dcm[1, 2] - dcm[2, 1]) / (4.0 * eps1)
    elif abs(epsilon_squared[1] - maximum) < SINGULARITY_TOLERANCE:
        eps2 = np.sqrt(epsilon_squared[1])
        eps1 = (dcm[0, 1] + dcm[1, 0]) / (4.0 * eps2)
        eps3 = (dcm[2, 1] + dcm[1, 2]) / (4.0 * eps2)
        eta = (dcm[2, 0] - dcm[0, 2]) / (4.0 * eps2)
    elif abs(epsilon_squared[2] - maximum) < SINGULARITY_TOLERANCE:
        eps3 = np.sqrt(epsilon_squared[2])
        eps1 = (dcm[0, 2] + dcm[2, 0]) / (4.0 * eps3)
        eps2 = (dcm[1, 2] + dcm[2, 1]) / (4.0 * eps3)
        eta = (dcm[0, 1] - dcm[1, 0]) / (4.0 * eps3)
    elif abs(eta_squared - maximum) < SINGULARITY_TOLERANCE:
        eta = np.sqrt(eta_squared)
        eps1 = (dcm[1, 2] - dcm[2, 1]) / (4.0 * eta)
        eps2 = (dcm[2, 0] - dcm[0, 2]) / (4.0 * eta)
        eps3 = (dcm[0, 1] - dcm[1, 0]) / (4.0 * eta)
    else:
        raise SingularityError(
            f"Could not identify the largest quaternion component (epsilon^2={epsilon_squared}, eta^2={eta_squared}).")

    usm[EPSILON1:ETA + 1] = [eps1, eps2, eps3, eta]
    _check_pure_retrograde(usm)

    cos_lambda, sin_lambda = _right_ascension_of_latitude_terms(usm)

    radial_velocity = r @ v / r_mag
    radial_component = radial_velocity / r_mag * r
    v2 = np.linalg.norm(v - radial_component)
    v1 = np.copysign(np.linalg.norm(radial_component), radial_velocity)

    usm[RF1_HODOGRAPH] = v1 * cos_lambda - (v2 - usm[C_HODOGRAPH]) * sin_lambda
    usm[RF2_HODOGRAPH] = v1 * sin_lambda + (v2 - usm[C_HODOGRAPH]) * cos_lambda

    return usm


def usm7_to_cartesian(usm: np.ndarray, mu: float) -> np.ndarray:
    """
    Converts unified state model elements with quaternions to a Cartesian state.

    Raises:
        SingularityError: If the quaternion is not unit-norm or the orbit is pure-retrograde.
    """
    usm = np.asarray(usm, dtype=float)
    _check_quaternion_norm(usm)
    _check_pure_retrograde(usm)

    C = usm[C_HODOGRAPH]
    cos_lambda, sin_lambda = _right_ascension_of_latitude_terms(usm)

    v1 = usm[RF1_HODOGRAPH] * cos_lambda + usm[RF2_HODOGRAPH] * sin_lambda
    v2 = C - usm[RF1_HODOGRAPH] * sin_lambda + usm[RF2_HODOGRAPH] * cos_lambda

    eta = usm[ETA]
    eps = usm[EPSILON1:ETA]
    skew = np.array([
        [0.0, -eps[2], eps[1]],
        [eps[2], 0.0, -eps[0]],
        [-eps[1], eps[0], 0.0]
    ])
    # Local orbital frame to inertial
    inverse_dcm = ((eta**2 - eps @ eps) * np.eye(3)
                   + 2.0 * np.outer(eps, eps) - 2.0 * eta * skew).T

    position = mu / C / v2 * inverse_dcm @ np.array([1.0, 0.0, 0.0])
    velocity = inverse_dcm @ np.array([v1, v2, 0.0])

    return np.concatenate((position, velocity))


def true_to_eccentric_anomaly(nu: float, e: float) -> float:
    """Eccentric anomaly [rad] from true anomaly for an elliptic orbit."""
    return 2.0 * np.arctan2(np.sqrt(1.0 - e) * np.sin(nu / 2.0), np.sqrt(1.0 + e) * np.cos(nu / 2.0))


def eccentric_to_true_anomaly(E: float, e: float) -> float:
    """True anomaly [rad] from eccentric anomaly for an elliptic orbit."""
    return 2.0 * np.arctan2(np.sqrt(1.0 + e) * np.sin(E / 2.0), np.sqrt(1.0 - e) * np.cos(E / 2.0))


def eccentric_to_mean_anomaly(E: float, e: float) -> float:
    """Kepler's equation M = E - e sin(E)."""
    return E - e * np.sin(E)


def mean_to_eccentric_anomaly(M: float, e: float, tol: float = 1e-14, max_iter: int = 100) -> float:
    """
    Solves Kepler's equation for the eccentric anomaly with Newton-Raphson.

    Raises:
        ElementRangeError: If the orbit is not elliptic.
    """
    if e < 0.0 or e >= 1.0:
        raise ElementRangeError(f"Kepler's equation is only solved for elliptic orbits, got e={e}.")

    M = np.mod(M, 2.0 * np.pi)
    E0 = M if e < 0.8 else np.pi
    return newton(lambda E: E - e * np.sin(E) - M, E0,
                  fprime=lambda E: 1.0 - e * np.cos(E), tol=tol, maxiter=max_iter)


def mean_to_true_anomaly(M: float, e: float) -> float:
    """True anomaly [rad] from mean anomaly for an elliptic orbit."""
    return eccentric_to_true_anomaly(mean_to_eccentric_anomaly(M, e), e)


def propagate_kepler_orbit(kep: np.ndarray, dt: float, mu: float) -> np.ndarray:
    """
    Propagates Keplerian elements of an elliptic orbit over dt seconds (two-body motion).

    Returns:
        np.ndarray: Keplerian elements at the new epoch (true anomaly in [0, 2 pi)).
    """
    kep = np.asarray(kep, dtype=float)
    a, e = kep[SEMI_MAJOR_AXIS], kep[ECCENTRICITY]
    if a <= 0.0 or e >= 1.0:
        raise ElementRangeError(f"Kepler propagation requires an elliptic orbit (a={a}, e={e}).")

    n = np.sqrt(mu / a**3)
    E0 = true_to_eccentric_anomaly(kep[TRUE_ANOMALY], e)
    M = eccentric_to_mean_anomaly(E0, e) + n * dt

    propagated = kep.copy()
    propagated[TRUE_ANOMALY] = _wrap_angle(mean_to_true_anomaly(M, e))
    return propagated
