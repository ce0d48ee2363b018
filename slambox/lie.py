"""Rotations, rigid-body transforms and their Lie-algebra maps.

Quaternions are given and returned in ``(w, x, y, z)`` order.  Tangent
vectors of SE(3) are ordered translation first, rotation second:
``(rho_x, rho_y, rho_z, phi_x, phi_y, phi_z)``.
"""

from __future__ import annotations

import math

import numpy as np

_EPS = 1e-10
_ROTATION_TOLERANCE = 1e-6


def _as_vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def hat(omega) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector."""
    x, y, z = _as_vector(omega, 3, "omega")
    return np.array(
        [[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]],
        dtype=float,
    )


def vee(matrix) -> np.ndarray:
    """Return the 3-vector of a skew-symmetric matrix."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def quaternion_to_matrix(q) -> np.ndarray:
    """Return the rotation matrix of a quaternion ``(w, x, y, z)``.

    The quaternion is normalised first; a zero quaternion is rejected.
    """
    w, x, y, z = _as_vector(q, 4, "quaternion")
    norm = math.sqrt(w * w + x * x + y * y + z * z)
    if norm < _EPS:
        raise ValueError("quaternion must be non-zero")
    w, x, y, z = w / norm, x / norm, y / norm, z / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(matrix) -> np.ndarray:
    """Return the unit quaternion ``(w, x, y, z)`` of a rotation matrix."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0:
        s = 2.0 * math.sqrt(trace + 1.0)
        q = np.array(
            [
                0.25 * s,
                (m[2, 1] - m[1, 2]) / s,
                (m[0, 2] - m[2, 0]) / s,
                (m[1, 0] - m[0, 1]) / s,
            ]
        )
    else:
        i = int(np.argmax(np.diag(m)))
        j, k = (i + 1) % 3, (i + 2) % 3
        s = 2.0 * math.sqrt(max(m[i, i] - m[j, j] - m[k, k] + 1.0, 0.0))
        q = np.empty(4)
        q[0] = (m[k, j] - m[j, k]) / s
        q[1 + i] = 0.25 * s
        q[1 + j] = (m[j, i] + m[i, j]) / s
        q[1 + k] = (m[k, i] + m[i, k]) / s
    return q / np.linalg.norm(q)


def angle_axis_to_matrix(angle: float, axis) -> np.ndarray:
    """Return the rotation matrix of a rotation by ``angle`` about ``axis``."""
    axis = _as_vector(axis, 3, "axis")
    norm = np.linalg.norm(axis)
    if norm < _EPS:
        raise ValueError("rotation axis must be non-zero")
    return SO3.exp(float(angle) * axis / norm).matrix


def yaw_pitch_roll(matrix) -> np.ndarray:
    """Return Z-Y-X Euler angles ``(yaw, pitch, roll)`` of a rotation matrix.

    The yaw is kept in ``[0, pi]``; pitch and roll lie in ``[-pi, pi]``,
    so that ``Rz(yaw) @ Ry(pitch) @ Rx(roll)`` reproduces the matrix.
    """
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def se3_hat(xi) -> np.ndarray:
    """Return the 4x4 matrix form of a 6-vector of se(3)."""
    xi = _as_vector(xi, 6, "xi")
    out = np.zeros((4, 4))
    out[:3, :3] = hat(xi[3:])
    out[:3, 3] = xi[:3]
    return out


def se3_vee(matrix) -> np.ndarray:
    """Return the 6-vector of a 4x4 matrix of se(3)."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (4, 4):
        raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
    return np.concatenate([m[:3, 3], vee(m[:3, :3])])


def transform_point(T1w: "SE3", T2w: "SE3", point) -> np.ndarray:
    """Move a point seen in frame 1 into frame 2, both given as world-to-frame poses."""
    return T2w * (T1w.inverse() * _as_vector(point, 3, "point"))


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    omega = hat(phi)
    omega2 = omega @ omega
    if theta < _EPS:
        return np.eye(3) + 0.5 * omega + omega2 / 6.0
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta**2 * omega
        + (theta - math.sin(theta)) / theta**3 * omega2
    )


def _left_jacobian_inverse(phi: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(phi))
    omega = hat(phi)
    omega2 = omega @ omega
    if theta < _EPS:
        return np.eye(3) - 0.5 * omega + omega2 / 12.0
    half = 0.5 * theta
    factor = (1.0 - 0.5 * theta * math.cos(half) / math.sin(half)) / theta**2
    return np.eye(3) - 0.5 * omega + factor * omega2


def _apply(matrix: np.ndarray, offset: np.ndarray | None, other) -> np.ndarray:
    arr = np.asarray(other, dtype=float)
    if arr.shape == (3,):
        out = matrix @ arr
    elif arr.ndim == 2 and arr.shape[1] == 3:
        out = arr @ matrix.T
    else:
        raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {arr.shape}")
    return out if offset is None else out + offset


class SO3:
    """A rotation in three dimensions."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            m = np.eye(3)
        else:
            m = np.array(matrix, dtype=float)
            if m.shape != (3, 3):
                raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
            if not np.allclose(m @ m.T, np.eye(3), atol=_ROTATION_TOLERANCE) or not math.isclose(
                np.linalg.det(m), 1.0, abs_tol=_ROTATION_TOLERANCE
            ):
                raise ValueError("matrix is not a rotation matrix")
        self._matrix = m

    @classmethod
    def _new(cls, matrix: np.ndarray) -> "SO3":
        obj = cls.__new__(cls)
        obj._matrix = matrix
        return obj

    @property
    def matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix."""
        return self._matrix.copy()

    @classmethod
    def from_quaternion(cls, q) -> "SO3":
        """Build a rotation from a quaternion ``(w, x, y, z)``."""
        return cls._new(quaternion_to_matrix(q))

    @classmethod
    def exp(cls, omega) -> "SO3":
        """Exponential map from a rotation vector."""
        omega = _as_vector(omega, 3, "omega")
        theta = float(np.linalg.norm(omega))
        k = hat(omega)
        if theta < _EPS:
            m = np.eye(3) + k + 0.5 * (k @ k)
        else:
            m = (
                np.eye(3)
                + math.sin(theta) / theta * k
                + (1.0 - math.cos(theta)) / theta**2 * (k @ k)
            )
        return cls._new(m)

    def log(self) -> np.ndarray:
        """Logarithmic map to a rotation vector."""
        w, x, y, z = self.quaternion()
        v = np.array([x, y, z])
        n = float(np.linalg.norm(v))
        if n < _EPS:
            factor = 2.0 / w - 2.0 / 3.0 * n * n / w**3
        elif abs(w) < _EPS:
            factor = (math.pi if w > 0 else -math.pi) / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * v

    def inverse(self) -> "SO3":
        """The inverse rotation."""
        return SO3._new(self._matrix.T.copy())

    def quaternion(self) -> np.ndarray:
        """The unit quaternion ``(w, x, y, z)``."""
        return matrix_to_quaternion(self._matrix)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._new(self._matrix @ other._matrix)
        if isinstance(other, (SE3, int, float)):
            return NotImplemented
        return _apply(self._matrix, None, other)

    def __repr__(self) -> str:
        return f"SO3(log={self.log().tolist()})"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("_so3", "_translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            so3 = SO3()
        elif isinstance(rotation, SO3):
            so3 = rotation
        else:
            so3 = SO3(rotation)
        self._so3 = so3
        if translation is None:
            self._translation = np.zeros(3)
        else:
            self._translation = _as_vector(translation, 3, "translation").copy()

    @property
    def so3(self) -> SO3:
        """The rotational part."""
        return self._so3

    @property
    def translation(self) -> np.ndarray:
        """The translational part."""
        return self._translation.copy()

    @classmethod
    def from_quaternion(cls, q, translation=None) -> "SE3":
        """Build a transform from a quaternion ``(w, x, y, z)`` and a translation."""
        return cls(SO3.from_quaternion(q), translation)

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Exponential map from a 6-vector ``(rho, phi)``."""
        xi = _as_vector(xi, 6, "xi")
        rho, phi = xi[:3], xi[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    def log(self) -> np.ndarray:
        """Logarithmic map to a 6-vector ``(rho, phi)``."""
        phi = self._so3.log()
        rho = _left_jacobian_inverse(phi) @ self._translation
        return np.concatenate([rho, phi])

    def inverse(self) -> "SE3":
        """The inverse transform."""
        r_inv = self._so3.inverse()
        return SE3(r_inv, -(r_inv * self._translation))

    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous matrix."""
        out = np.eye(4)
        out[:3, :3] = self._so3._matrix
        out[:3, 3] = self._translation
        return out

    def matrix3x4(self) -> np.ndarray:
        """The top three rows of the homogeneous matrix."""
        return self.matrix()[:3, :]

    def rotation_matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix."""
        return self._so3.matrix

    def adjoint(self) -> np.ndarray:
        """The 6x6 adjoint matrix acting on ``(rho, phi)`` vectors."""
        r = self._so3._matrix
        out = np.zeros((6, 6))
        out[:3, :3] = r
        out[:3, 3:] = hat(self._translation) @ r
        out[3:, 3:] = r
        return out

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self._so3 * other._so3,
                self._so3 * other._translation + self._translation,
            )
        if isinstance(other, (SO3, int, float)):
            return NotImplemented
        return _apply(self._so3._matrix, self._translation, other)

    def __repr__(self) -> str:
        return (
            f"SE3(translation={self._translation.tolist()}, "
            f"rotation={self._so3.log().tolist()})"
        )