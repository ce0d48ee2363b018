import numpy as np
import pytest

from slambox.lie import SE3
from slambox.vo.camera import Camera


@pytest.fixture
def camera():
    ext = SE3.exp([0.1, -0.2, 0.05, 0.01, 0.02, -0.03])
    return Camera(400.0, 410.0, 320.0, 240.0, 0.5, ext)


@pytest.fixture
def T_c_w():
    return SE3.exp([0.3, 0.1, -0.4, 0.2, -0.1, 0.15])


def test_intrinsic_matrix(camera):
    np.testing.assert_allclose(
        camera.K(), [[400.0, 0.0, 320.0], [0.0, 410.0, 240.0], [0.0, 0.0, 1.0]]
    )


def test_pixel2camera_default_depth_is_unit(camera):
    p = camera.pixel2camera([100.0, 50.0])
    assert p[2] == 1.0


def test_principal_point_projects_to_center(camera):
    np.testing.assert_allclose(camera.camera2pixel([0.0, 0.0, 5.0]), [320.0, 240.0])


def test_pixel_camera_round_trip(camera):
    px = np.array([123.5, 321.25])
    p_c = camera.pixel2camera(px, 7.0)
    assert p_c[2] == pytest.approx(7.0)
    np.testing.assert_allclose(camera.camera2pixel(p_c), px)


def test_world_camera_round_trip(camera, T_c_w):
    p_w = np.array([1.0, -2.0, 3.0])
    np.testing.assert_allclose(camera.camera2world(camera.world2camera(p_w, T_c_w), T_c_w), p_w)


def test_pixel_world_round_trip(camera, T_c_w):
    px = np.array([200.0, 100.0])
    p_w = camera.pixel2world(px, T_c_w, 4.0)
    np.testing.assert_allclose(camera.world2pixel(p_w, T_c_w), px)


def test_pose_inverse(camera):
    np.testing.assert_allclose((camera.pose * camera.pose_inv).matrix(), np.eye(4), atol=1e-12)


def test_projection_of_point_on_camera_plane_raises(camera):
    with pytest.raises(ValueError):
        camera.camera2pixel([1.0, 1.0, 0.0])


def test_bad_vector_size_raises(camera):
    with pytest.raises(ValueError):
        camera.pixel2camera([1.0, 2.0, 3.0])