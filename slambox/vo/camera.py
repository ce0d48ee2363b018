"""Pinhole camera model of one eye of a stereo rig."""

from __future__ import annotations

import numpy as np

from slambox.lie import SE3


def _vec(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


class Camera:
    """Intrinsics plus the extrinsic pose from the stereo rig to this camera."""

    def __init__(
        self,
        fx: float = 0.0,
        fy: float = 0.0,
        cx: float = 0.0,
        cy: float = 0.0,
        baseline: float = 0.0,
        pose: SE3 | None = None,
    ):
        self.fx = float(fx)
        self.fy = float(fy)
        self.cx = float(cx)
        self.cy = float(cy)
        self.baseline = float(baseline)
        self.pose = SE3() if pose is None else pose

    @property
    def pose_inv(self) -> SE3:
        """Inverse of the extrinsic pose."""
        return self.pose.inverse()

    def K(self) -> np.ndarray:
        """The 3x3 intrinsic matrix."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    def world2camera(self, p_w, T_c_w: SE3) -> np.ndarray:
        """World point to this camera's frame."""
        return (self.pose * T_c_w) * _vec(p_w, 3, "p_w")

    def camera2world(self, p_c, T_c_w: SE3) -> np.ndarray:
        """Point in this camera's frame to the world."""
        return (T_c_w.inverse() * self.pose_inv) * _vec(p_c, 3, "p_c")

    def camera2pixel(self, p_c) -> np.ndarray:
        """Project a camera-frame point to pixel coordinates."""
        x, y, z = _vec(p_c, 3, "p_c")
        if z == 0:
            raise ValueError("point lies on the camera plane and cannot be projected")
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel2camera(self, p_p, depth: float = 1.0) -> np.ndarray:
        """Back-project a pixel at the given depth into the camera frame."""
        u, v = _vec(p_p, 2, "p_p")
        return np.array(
            [(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, float(depth)]
        )

    def pixel2world(self, p_p, T_c_w: SE3, depth: float = 1.0) -> np.ndarray:
        """Back-project a pixel at the given depth into the world."""
        return self.camera2world(self.pixel2camera(p_p, depth), T_c_w)

    def world2pixel(self, p_w, T_c_w: SE3) -> np.ndarray:
        """Project a world point to pixel coordinates."""
        return self.camera2pixel(self.world2camera(p_w, T_c_w))

    def __repr__(self) -> str:
        return (
            f"Camera(fx={self.fx}, fy={self.fy}, cx={self.cx}, cy={self.cy}, "
            f"baseline={self.baseline})"
        )