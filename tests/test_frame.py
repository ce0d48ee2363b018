import numpy as np
import pytest

from slambox.lie import SE3
from slambox.vo.frame import Feature, Frame
from slambox.vo.mappoint import MapPoint


def test_create_assigns_consecutive_ids():
    first = Frame.create()
    second = Frame.create()
    assert second.id == first.id + 1
    assert not first.is_keyframe


def test_set_keyframe_assigns_consecutive_keyframe_ids():
    a, b = Frame.create(), Frame.create()
    a.set_keyframe()
    b.set_keyframe()
    assert a.is_keyframe and b.is_keyframe
    assert b.keyframe_id == a.keyframe_id + 1


def test_pose_defaults_to_identity_and_can_be_set():
    frame = Frame()
    np.testing.assert_array_equal(frame.pose.matrix(), np.eye(4))
    pose = SE3(None, (1.0, 2.0, 3.0))
    frame.pose = pose
    np.testing.assert_array_equal(frame.pose.translation, [1.0, 2.0, 3.0])


def test_constructor_keeps_values():
    left = np.zeros((2, 2))
    frame = Frame(7, 1.5, None, left, None)
    assert frame.id == 7
    assert frame.time_stamp == 1.5
    assert frame.left_img is left
    assert frame.features_left == [] and frame.features_right == []


def test_feature_refers_to_frame_weakly():
    frame = Frame()
    feat = Feature(frame, (4.0, 5.0))
    assert feat.frame is frame
    del frame
    assert feat.frame is None


def test_feature_map_point_is_weak():
    feat = Feature(None, (1.0, 2.0))
    mp = MapPoint.create()
    feat.map_point = mp
    assert feat.map_point is mp
    del mp
    assert feat.map_point is None


def test_feature_defaults():
    feat = Feature()
    np.testing.assert_array_equal(feat.position, [0.0, 0.0])
    assert feat.is_on_left_image is True
    assert feat.is_outlier is False


def test_feature_bad_position_raises():
    with pytest.raises(ValueError):
        Feature(None, (1.0, 2.0, 3.0))