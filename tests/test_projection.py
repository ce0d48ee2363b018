import numpy as np
import pytest

from slambox.lie import SE3
from slambox.vo.projection import PoseOnlyProjectionEdge, ProjectionEdge, left_update

K = np.array([[500.0, 0.0, 320.0], [0.0, 480.0, 240.0], [0.0, 0.0, 1.0]])
POSE = SE3.exp(np.array([0.1, -0.2, 0.05, 0.02, -0.03, 0.01]))
POINT = np.array([0.4, -0.3, 5.0])


def _project(pose, point, ext=None):
    p = pose * point
    if ext is not None:
        p = ext * p
    pix = K @ p
    return pix[:2] / pix[2]


def test_left_update_with_zero_is_identity():
    updated = left_update(POSE, np.zeros(6))
    assert np.allclose(updated.matrix(), POSE.matrix())


def test_left_update_composes_exponential():
    delta = np.array([0.01, 0.02, 0.0, 0.0, 0.01, 0.0])
    assert np.allclose(left_update(POSE, delta).matrix(), (SE3.exp(delta) * POSE).matrix())


def test_left_update_rejects_wrong_size():
    with pytest.raises(ValueError):
        left_update(POSE, np.zeros(5))


def test_pose_only_error_zero_at_true_measurement():
    edge = PoseOnlyProjectionEdge(POINT, K, _project(POSE, POINT))
    assert np.allclose(edge.error(POSE), 0.0)


def test_pose_only_jacobian_matches_numeric():
    edge = PoseOnlyProjectionEdge(POINT, K, _project(POSE, POINT) + 1.0)
    J = edge.jacobian(POSE)
    eps = 1e-6
    numeric = np.zeros((2, 6))
    for k in range(6):
        d = np.zeros(6)
        d[k] = eps
        numeric[:, k] = (edge.error(left_update(POSE, d)) - edge.error(left_update(POSE, -d))) / (2 * eps)
    assert J.shape == (2, 6)
    assert np.allclose(J, numeric, rtol=1e-4, atol=1e-3)


def test_pose_only_rejects_bad_K():
    with pytest.raises(ValueError):
        PoseOnlyProjectionEdge(POINT, np.eye(2), (0.0, 0.0))


def test_projection_edge_error_zero_with_extrinsics():
    ext = SE3.from_quaternion((1.0, 0.0, 0.0, 0.0), (-0.5, 0.0, 0.0))
    edge = ProjectionEdge(K, ext, _project(POSE, POINT, ext))
    assert np.allclose(edge.error(POSE, POINT), 0.0)


def test_projection_edge_jacobians_match_numeric():
    ext = SE3.from_quaternion((1.0, 0.0, 0.0, 0.0), (-0.5, 0.0, 0.0))
    edge = ProjectionEdge(K, ext, _project(POSE, POINT, ext) - 2.0)
    j_pose, j_point = edge.jacobians(POSE, POINT)
    eps = 1e-6
    num_pose = np.zeros((2, 6))
    for k in range(6):
        d = np.zeros(6)
        d[k] = eps
        num_pose[:, k] = (
            edge.error(left_update(POSE, d), POINT) - edge.error(left_update(POSE, -d), POINT)
        ) / (2 * eps)
    num_point = np.zeros((2, 3))
    for k in range(3):
        d = np.zeros(3)
        d[k] = eps
        num_point[:, k] = (edge.error(POSE, POINT + d) - edge.error(POSE, POINT - d)) / (2 * eps)
    assert np.allclose(j_pose, num_pose, rtol=1e-4, atol=1e-3)
    assert np.allclose(j_point, num_point, rtol=1e-4, atol=1e-3)


def test_projection_edge_point_jacobian_is_first_block_when_identity():
    edge = ProjectionEdge(K, SE3(), (0.0, 0.0))
    j_pose, j_point = edge.jacobians(SE3(), POINT)
    assert np.allclose(j_point, j_pose[:, :3])