import numpy as np
import pytest

from slambox.lie import SE3
from slambox.vo.backend import Backend
from slambox.vo.camera import Camera
from slambox.vo.frame import Feature, Frame
from slambox.vo.map import Map
from slambox.vo.mappoint import MapPoint

BASELINE = 0.5


def _cameras():
    left = Camera(500.0, 500.0, 320.0, 240.0, BASELINE, SE3())
    right = Camera(
        500.0, 500.0, 320.0, 240.0, BASELINE,
        SE3.from_quaternion((1.0, 0.0, 0.0, 0.0), (-BASELINE, 0.0, 0.0)),
    )
    return left, right


def _scene():
    left, right = _cameras()
    frames = []
    for shift in (0.0, -0.3):
        frame = Frame.create()
        frame.pose = SE3.from_quaternion((1.0, 0.0, 0.0, 0.0), (shift, 0.0, 0.0))
        frame.set_keyframe()
        frames.append(frame)
    truths = {}
    points = []
    for x in (-1.0, -0.3, 0.4, 1.0):
        for y in (-0.5, 0.5):
            mp = MapPoint.create()
            truth = np.array([x, y, 5.0 + 0.3 * x])
            mp.pos = truth
            truths[mp.id] = truth
            points.append(mp)
            for frame in frames:
                for cam, on_left in ((left, True), (right, False)):
                    feat = Feature(frame, cam.world2pixel(truth, frame.pose))
                    feat.is_on_left_image = on_left
                    feat.map_point = mp
                    (frame.features_left if on_left else frame.features_right).append(feat)
                    mp.add_observation(feat)
    return {"frames": frames, "points": points, "truths": truths, "cameras": (left, right)}


@pytest.fixture
def backend():
    b = Backend()
    yield b
    b.stop()


def _dicts(scene):
    keyframes = {f.keyframe_id: f for f in scene["frames"]}
    landmarks = {mp.id: mp for mp in scene["points"]}
    return keyframes, landmarks


def test_exact_data_has_no_outliers(backend):
    scene = _scene()
    backend.set_cameras(*scene["cameras"])
    keyframes, landmarks = _dicts(scene)
    outliers, inliers = backend.optimize(keyframes, landmarks)
    assert outliers == 0
    assert inliers == sum(mp.observed_times for mp in scene["points"])
    for mp in scene["points"]:
        assert np.allclose(mp.pos, scene["truths"][mp.id], atol=1e-6)


def test_perturbed_landmark_moves_toward_truth(backend):
    scene = _scene()
    backend.set_cameras(*scene["cameras"])
    target = scene["points"][3]
    truth = scene["truths"][target.id]
    target.pos = truth + np.array([0.05, -0.04, 0.1])
    before = np.linalg.norm(target.pos - truth)
    keyframes, landmarks = _dicts(scene)
    backend.optimize(keyframes, landmarks)
    assert np.linalg.norm(target.pos - truth) < 0.5 * before


def test_gross_observation_flagged_and_removed(backend):
    scene = _scene()
    backend.set_cameras(*scene["cameras"])
    bad = scene["frames"][1].features_left[2]
    mp = bad.map_point
    count = mp.observed_times
    bad.position = bad.position + np.array([150.0, -120.0])
    keyframes, landmarks = _dicts(scene)
    outliers, _ = backend.optimize(keyframes, landmarks)
    assert outliers >= 1
    assert bad.is_outlier is True
    assert bad.map_point is None
    assert mp.observed_times == count - 1
    assert all(f is not bad for f in mp.observations())


def test_optimize_without_cameras_raises(backend):
    scene = _scene()
    keyframes, landmarks = _dicts(scene)
    with pytest.raises(RuntimeError):
        backend.optimize(keyframes, landmarks)


def test_unknown_keyframe_raises(backend):
    scene = _scene()
    backend.set_cameras(*scene["cameras"])
    keyframes, landmarks = _dicts(scene)
    keyframes.pop(scene["frames"][1].keyframe_id)
    with pytest.raises(ValueError):
        backend.optimize(keyframes, landmarks)


def test_stop_runs_pending_optimisation_on_map():
    scene = _scene()
    bad = scene["frames"][0].features_right[5]
    bad.position = bad.position + np.array([-140.0, 160.0])
    map_ = Map()
    for frame in scene["frames"]:
        map_.insert_keyframe(frame)
    for mp in scene["points"]:
        map_.insert_map_point(mp)
    backend = Backend()
    backend.set_cameras(*scene["cameras"])
    backend.set_map(map_)
    backend.update_map()
    backend.stop()
    assert backend.running is False
    assert bad.is_outlier is True