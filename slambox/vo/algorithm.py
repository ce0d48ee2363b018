"""Geometric algorithms used by the visual odometry."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from slambox.lie import SE3

_QUALITY_RATIO = 1e-2


def triangulation(poses: Sequence[SE3], points: Sequence) -> np.ndarray | None:
    """Linear triangulation of one point seen from several poses, by SVD.

    ``poses`` map the world into each camera; ``points`` are the matching
    observations on each camera's normalised plane.  Returns the world
    point, or ``None`` when the solution is poorly conditioned.
    """
    poses = list(poses)
    observations = [np.asarray(p, dtype=float).reshape(-1) for p in points]
    if len(poses) != len(observations):
        raise ValueError(
            f"need one point per pose: {len(poses)} poses, {len(observations)} points"
        )
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two views")

    rows = []
    for pose, obs in zip(poses, observations):
        if obs.size < 2:
            raise ValueError("each point needs at least two coordinates")
        m = pose.matrix3x4()
        rows.append(obs[0] * m[2] - m[0])
        rows.append(obs[1] * m[2] - m[1])
    A = np.vstack(rows)
    _, singular, vh = np.linalg.svd(A, full_matrices=False)
    solution = vh[3]
    if solution[3] == 0 or singular[2] == 0:
        return None
    if singular[3] / singular[2] < _QUALITY_RATIO:
        return solution[:3] / solution[3]
    return None


def to_vec2(point) -> np.ndarray:
    """Convert an ``(x, y)`` pair to a 2-vector."""
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"expected two coordinates, got {arr.size}")
    return arr