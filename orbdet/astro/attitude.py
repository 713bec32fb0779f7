"""
Quaternion and rotation matrix helpers.

Quaternions are scalar-first, q = [q0, q1, q2, q3], and represent the rotation from a
body-fixed frame to its base (inertial) frame:

    v_base = R(q) @ v_body,   R(q) = (q0^2 - |qv|^2) I + 2 qv qv^T + 2 q0 [qv x]
"""
import numpy as np


def cross_product_matrix(v: np.ndarray) -> np.ndarray:
    """
    Returns the skew-symmetric matrix [v x] such that [v x] @ w = v x w.
    """
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ])


def normalize_quaternion(q: np.ndarray) -> np.ndarray:
    """
    Returns the unit quaternion along q.

    Raises:
        ValueError: If q has zero norm.
    """
    q = np.asarray(q, dtype=float)
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("Cannot normalize a zero quaternion.")
    return q / norm


def normalization_jacobian(q: np.ndarray) -> np.ndarray:
    """
    Partial derivative of q / |q| w.r.t. q: (I - q_hat q_hat^T) / |q|.

    Returns:
        np.ndarray: 4x4 matrix.
    """
    q = np.asarray(q, dtype=float)
    q_hat = normalize_quaternion(q)
    return (np.eye(4) - np.outer(q_hat, q_hat)) / np.linalg.norm(q)


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """
    Rotation matrix (body-fixed to base frame) of a quaternion.

    The quadratic form is used as-is, so a non-unit quaternion yields a scaled
    rotation matrix (|q|^2 R). Normalize beforehand where that matters.
    """
    q0 = q[0]
    qv = np.asarray(q[1:4], dtype=float)
    return ((q0**2 - qv @ qv) * np.eye(3)
            + 2.0 * np.outer(qv, qv)
            + 2.0 * q0 * cross_product_matrix(qv))


def rotation_matrix_derivatives_wrt_quaternion(q: np.ndarray) -> np.ndarray:
    """
    Partial derivatives of the quadratic-form rotation matrix w.r.t. each quaternion entry.

    Args:
        q (np.ndarray): Quaternion [q0, q1, q2, q3].

    Returns:
        np.ndarray: Array of shape (4, 3, 3), entry k is dR/dq_k.
    """
    q0 = q[0]
    qv = np.asarray(q[1:4], dtype=float)
    derivatives = np.zeros((4, 3, 3))
    derivatives[0] = 2.0 * q0 * np.eye(3) + 2.0 * cross_product_matrix(qv)

    for i in range(3):
        e_i = np.zeros(3)
        e_i[i] = 1.0
        derivatives[i + 1] = (-2.0 * qv[i] * np.eye(3)
                              + 2.0 * (np.outer(e_i, qv) + np.outer(qv, e_i))
                              + 2.0 * q0 * cross_product_matrix(e_i))
    return derivatives


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """
    Converts a rotation matrix (body-fixed to base frame) to a unit quaternion with q0 >= 0.
    Uses the largest diagonal element to select the stable branch.
    """
    trace = np.trace(R)
    squared = np.array([
        (1.0 + trace) / 4.0,
        (1.0 + 2.0 * R[0, 0] - trace) / 4.0,
        (1.0 + 2.0 * R[1, 1] - trace) / 4.0,
        (1.0 + 2.0 * R[2, 2] - trace) / 4.0
    ])
    largest = int(np.argmax(squared))
    q = np.zeros(4)
    q[largest] = np.sqrt(squared[largest])
    scale = 4.0 * q[largest]

    if largest == 0:
        q[1] = (R[2, 1] - R[1, 2]) / scale
        q[2] = (R[0, 2] - R[2, 0]) / scale
        q[3] = (R[1, 0] - R[0, 1]) / scale
    elif largest == 1:
        q[0] = (R[2, 1] - R[1, 2]) / scale
        q[2] = (R[0, 1] + R[1, 0]) / scale
        q[3] = (R[0, 2] + R[2, 0]) / scale
    elif largest == 2:
        q[0] = (R[0, 2] - R[2, 0]) / scale
        q[1] = (R[0, 1] + R[1, 0]) / scale
        q[3] = (R[1, 2] + R[2, 1]) / scale
    else:
        q[0] = (R[1, 0] - R[0, 1]) / scale
        q[1] = (R[0, 2] + R[2, 0]) / scale
        q[2] = (R[1, 2] + R[2, 1]) / scale

    if q[0] < 0.0:
        q = -q
    return normalize_quaternion(q)


def quaternion_multiply(p: np.ndarray, q: np.ndarray) -> np.ndarray:
    """
    Hamilton product p * q (scalar-first).
    """
    p0, pv = p[0], np.asarray(p[1:4])
    q0, qv = q[0], np.asarray(q[1:4])
    scalar = p0 * q0 - pv @ qv
    vector = p0 * qv + q0 * pv + np.cross(pv, qv)
    return np.concatenate(([scalar], vector))


def quaternion_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """
    Unit quaternion of a rotation by `angle` [rad] about `axis`.
    """
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    return np.concatenate(([np.cos(angle / 2.0)], np.sin(angle / 2.0) * axis))


def quaternion_kinematics_matrix(omega: np.ndarray) -> np.ndarray:
    """
    Matrix Omega(w) such that q_dot = Omega(w) @ q, with w the angular velocity in the
    body frame (q_dot = 0.5 * q * [0, w]).
    """
    omega = np.asarray(omega, dtype=float)
    matrix = np.zeros((4, 4))
    matrix[0, 1:4] = -omega
    matrix[1:4, 0] = omega
    matrix[1:4, 1:4] = -cross_product_matrix(omega)
    return 0.5 * matrix


def quaternion_kinematics_partial_wrt_angular_velocity(q: np.ndarray) -> np.ndarray:
    """
    Partial derivative of q_dot = 0.5 * q * [0, w] w.r.t. the body-frame angular velocity w.

    Returns:
        np.ndarray: 4x3 matrix.
    """
    q0 = q[0]
    qv = np.asarray(q[1:4], dtype=float)
    partial = np.zeros((4, 3))
    partial[0, :] = -qv
    partial[1:4, :] = q0 * np.eye(3) + cross_product_matrix(qv)
    return 0.5 * partial
