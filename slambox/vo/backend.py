"""The back end: bundle adjustment of the active key frames and landmarks.

A worker thread waits for map updates and then optimises the active part
of the map, flagging observations whose reprojection error is too large.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slambox.lie import SE3
from slambox.vo.algorithm import to_vec2
from slambox.vo.projection import ProjectionEdge

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
OPTIMIZE_ITERATIONS = 10
_THRESHOLD_ROUNDS = 5
_TAU = 1e-5
_MAX_TRIALS = 10


@dataclass
class _Observation:
    keyframe_id: int
    landmark_id: int
    edge: ProjectionEdge
    feature: object


def _huber(e2: float, delta: float) -> tuple[float, float]:
    """Robust cost and weight of a squared error under a Huber kernel."""
    if e2 <= delta * delta:
        return e2, 1.0
    root = np.sqrt(e2)
    return 2.0 * root * delta - delta * delta, delta / root


def _bundle_adjust(poses: dict, points: dict, observations: list[_Observation], delta: float, iterations: int) -> None:
    pose_index = {kid: 6 * i for i, kid in enumerate(poses)}
    offset = 6 * len(poses)
    point_index = {lid: offset + 3 * i for i, lid in enumerate(points)}
    size = offset + 3 * len(points)
    if size == 0 or not observations:
        return

    def cost() -> float:
        total = 0.0
        for obs in observations:
            e = obs.edge.error(poses[obs.keyframe_id], points[obs.landmark_id])
            total += _huber(float(e @ e), delta)[0]
        return total

    def linearize():
        rows, cols, data = [], [], []
        b = np.zeros(size)
        for obs in observations:
            T = poses[obs.keyframe_id]
            p = points[obs.landmark_id]
            e = obs.edge.error(T, p)
            _, w = _huber(float(e @ e), delta)
            j_pose, j_point = obs.edge.jacobians(T, p)
            blocks = ((pose_index[obs.keyframe_id], j_pose), (point_index[obs.landmark_id], j_point))
            for ra, Ja in blocks:
                b[ra : ra + Ja.shape[1]] -= w * (Ja.T @ e)
                for rb, Jb in blocks:
                    r, c = np.meshgrid(
                        ra + np.arange(Ja.shape[1]), rb + np.arange(Jb.shape[1]), indexing="ij"
                    )
                    rows.append(r.ravel())
                    cols.append(c.ravel())
                    data.append((w * (Ja.T @ Jb)).ravel())
        H = coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))), shape=(size, size)
        ).tocsc()
        return H, b

    chi = cost()
    lam: float | None = None
    ni = 2.0
    for _ in range(iterations):
        H, b = linearize()
        if lam is None:
            lam = _TAU * max(float(H.diagonal().max()), 1e-12)
        pose_backup = dict(poses)
        point_backup = dict(points)
        step_taken = False
        for _trial in range(_MAX_TRIALS):
            dx = np.asarray(spsolve(H + lam * identity(size, format="csc"), b)).reshape(-1)
            new_chi, rho = float("inf"), -1.0
            if np.all(np.isfinite(dx)):
                for kid, k in pose_index.items():
                    poses[kid] = SE3.exp(dx[k : k + 6]) * pose_backup[kid]
                for lid, k in point_index.items():
                    points[lid] = point_backup[lid] + dx[k : k + 3]
                new_chi = cost()
                scale = float(dx @ (lam * dx + b)) + 1e-3
                rho = (chi - new_chi) / scale
            if np.isfinite(new_chi) and rho > 0:
                alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                lam *= max(1.0 / 3.0, alpha)
                ni = 2.0
                chi = new_chi
                step_taken = True
                break
            poses.update(pose_backup)
            points.update(point_backup)
            lam *= ni
            ni *= 2.0
        if not step_taken:
            break


class Backend:
    """Bundle adjustment running in its own thread, woken by map updates."""

    def __init__(self):
        self._map = None
        self._cam_left = None
        self._cam_right = None
        self._condition = threading.Condition()
        self._pending = False
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    @property
    def running(self) -> bool:
        """Whether the worker thread is still alive."""
        return self._thread.is_alive()

    def set_cameras(self, left, right) -> None:
        """Set the left and right cameras used for intrinsics and extrinsics."""
        self._cam_left = left
        self._cam_right = right

    def set_map(self, map_) -> None:
        """Set the map whose active part is optimised."""
        self._map = map_

    def update_map(self) -> None:
        """Ask the worker to optimise the map."""
        with self._condition:
            self._pending = True
            self._condition.notify()

    def stop(self) -> None:
        """Stop the worker thread and wait for it to finish."""
        with self._condition:
            self._running = False
            self._condition.notify()
        self._thread.join()

    def _loop(self) -> None:
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending or not self._running)
                self._pending = False
                running = self._running
                map_ = self._map
                if map_ is not None:
                    try:
                        self.optimize(map_.active_keyframes(), map_.active_map_points())
                    except (ValueError, RuntimeError) as exc:
                        logger.error("back-end optimisation failed: %s", exc)
            if not running:
                break

    def optimize(self, keyframes: dict, landmarks: dict) -> tuple[int, int]:
        """Optimise the given key frames and landmarks in place.

        Observations whose error stays above the threshold are flagged as
        outliers and removed from their landmark.  Returns the numbers of
        outlier and inlier observations.
        """
        if self._cam_left is None or self._cam_right is None:
            raise RuntimeError("cameras have not been set")
        K = self._cam_left.K()
        left_ext = self._cam_left.pose
        right_ext = self._cam_right.pose

        poses = {kid: kf.pose for kid, kf in keyframes.items()}
        points: dict[int, np.ndarray] = {}
        observations: list[_Observation] = []
        for lid, landmark in landmarks.items():
            if landmark.is_outlier:
                continue
            for feat in landmark.observations():
                frame = feat.frame
                if feat.is_outlier or frame is None:
                    continue
                if frame.keyframe_id not in poses:
                    raise ValueError(
                        f"landmark {lid} is observed by key frame {frame.keyframe_id}, "
                        "which is not being optimised"
                    )
                if lid not in points:
                    points[lid] = landmark.pos
                ext = left_ext if feat.is_on_left_image else right_ext
                edge = ProjectionEdge(K, ext, to_vec2(feat.position))
                observations.append(_Observation(frame.keyframe_id, lid, edge, feat))

        chi2_th = CHI2_THRESHOLD
        _bundle_adjust(poses, points, observations, chi2_th, OPTIMIZE_ITERATIONS)

        chi2 = []
        for obs in observations:
            e = obs.edge.error(poses[obs.keyframe_id], points[obs.landmark_id])
            chi2.append(float(e @ e))

        cnt_outlier = cnt_inlier = 0
        for _ in range(_THRESHOLD_ROUNDS):
            cnt_outlier = sum(1 for c in chi2 if c > chi2_th)
            cnt_inlier = len(chi2) - cnt_outlier
            total = cnt_inlier + cnt_outlier
            inlier_ratio = cnt_inlier / total if total else float("nan")
            if inlier_ratio > 0.5:
                break
            chi2_th *= 2

        for obs, c in zip(observations, chi2):
            feat = obs.feature
            if c > chi2_th:
                feat.is_outlier = True
                mp = feat.map_point
                if mp is not None:
                    mp.remove_observation(feat)
            else:
                feat.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kid, pose in poses.items():
            keyframes[kid].pose = pose
        for lid, pos in points.items():
            landmarks[lid].pos = pos
        return cnt_outlier, cnt_inlier