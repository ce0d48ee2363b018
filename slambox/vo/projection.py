"""Reprojection error terms for bundle adjustment.

Poses are world-to-camera transforms updated by left multiplication with
the exponential of a 6-vector (translation first, then rotation).
Landmarks are 3-vectors updated by addition.
"""

from __future__ import annotations

import numpy as np

from slambox.lie import SE3


def _vec(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def _intrinsics(K) -> np.ndarray:
    arr = np.asarray(K, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError(f"K must be a 3x3 matrix, got shape {arr.shape}")
    return arr.copy()


def _project(K: np.ndarray, p_cam: np.ndarray) -> np.ndarray:
    pixel = K @ p_cam
    return pixel[:2] / pixel[2]


def _pose_jacobian(K: np.ndarray, pos_cam: np.ndarray) -> np.ndarray:
    fx, fy = K[0, 0], K[1, 1]
    X, Y, Z = pos_cam
    zinv = 1.0 / (Z + 1e-18)
    zinv2 = zinv * zinv
    return np.array(
        [
            [-fx * zinv, 0.0, fx * X * zinv2, fx * X * Y * zinv2, -fx - fx * X * X * zinv2, fx * Y * zinv],
            [0.0, -fy * zinv, fy * Y * zinv2, fy + fy * Y * Y * zinv2, -fy * X * Y * zinv2, -fy * X * zinv],
        ]
    )


def left_update(pose: SE3, delta) -> SE3:
    """Apply a 6-vector increment on the left: ``exp(delta) * pose``."""
    return SE3.exp(_vec(delta, 6, "delta")) * pose


class PoseOnlyProjectionEdge:
    """Reprojection of a fixed world point; only the camera pose varies."""

    def __init__(self, point, K, measurement=(0.0, 0.0)):
        self.point = _vec(point, 3, "point")
        self.K = _intrinsics(K)
        self.measurement = _vec(measurement, 2, "measurement")

    def error(self, pose: SE3) -> np.ndarray:
        """Measured pixel minus the projection of the point."""
        return self.measurement - _project(self.K, pose * self.point)

    def jacobian(self, pose: SE3) -> np.ndarray:
        """The 2x6 derivative of the error by a left pose increment."""
        return _pose_jacobian(self.K, pose * self.point)


class ProjectionEdge:
    """Reprojection of a landmark into one eye of a stereo rig.

    ``cam_ext`` maps the rig frame into the observing camera.
    """

    def __init__(self, K, cam_ext: SE3, measurement=(0.0, 0.0)):
        self.K = _intrinsics(K)
        self.cam_ext = cam_ext
        self.measurement = _vec(measurement, 2, "measurement")

    def error(self, pose: SE3, point) -> np.ndarray:
        """Measured pixel minus the projection of the landmark."""
        p = _vec(point, 3, "point")
        return self.measurement - _project(self.K, self.cam_ext * (pose * p))

    def jacobians(self, pose: SE3, point) -> tuple[np.ndarray, np.ndarray]:
        """Derivatives of the error: 2x6 by the pose, 2x3 by the landmark."""
        p = _vec(point, 3, "point")
        pos_cam = (self.cam_ext * pose) * p
        j_pose = _pose_jacobian(self.K, pos_cam)
        j_point = j_pose[:, :3] @ self.cam_ext.rotation_matrix() @ pose.rotation_matrix()
        return j_pose, j_point