import math

import numpy as np
import pytest

from slambox.dense_depth import (
    BORDER,
    FX,
    HEIGHT,
    TRAJECTORY_FILE,
    WIDTH,
    bilinear,
    cam2px,
    epipolar_search,
    evaluate_depth,
    inside,
    main,
    ncc,
    px2cam,
    read_dataset,
    update,
    update_depth_filter,
)
from slambox.lie import SE3

SHIFT = 10
DEPTH_Z = 3.0


def _row(shift):
    u = np.arange(WIDTH)
    return np.round(128 + 100 * np.sin((u - shift) / 5.0)).astype(np.uint8)


@pytest.fixture
def scene():
    ref = np.tile(_row(0), (HEIGHT, 1))
    curr = np.tile(_row(SHIFT), (HEIGHT, 1))
    T_C_R = SE3(None, (SHIFT * DEPTH_Z / FX, 0.0, 0.0))
    return ref, curr, T_C_R


def test_px2cam_cam2px_round_trip():
    px = np.array([123.25, 321.5])
    assert np.allclose(cam2px(px2cam(px)), px)
    assert np.allclose(cam2px(3.0 * px2cam(px)), px)


def test_px2cam_principal_point():
    assert np.allclose(px2cam((319.5, 239.5)), [0.0, 0.0, 1.0])


def test_inside_borders():
    assert inside((BORDER, BORDER))
    assert not inside((BORDER - 1, BORDER))
    assert inside((WIDTH - BORDER - 1, HEIGHT - BORDER))
    assert not inside((WIDTH - BORDER, 100))
    assert not inside((100, HEIGHT - BORDER + 1))


def test_bilinear_integer_and_midpoint():
    img = np.array([[0, 100], [200, 250]], dtype=np.uint8)
    img = np.pad(img, ((0, 1), (0, 1)))
    assert bilinear(img, (0, 0)) == pytest.approx(0.0)
    assert bilinear(img, (1, 1)) == pytest.approx(250 / 255)
    expected = (0 + 100 + 200 + 250) / 4 / 255
    assert bilinear(img, (0.5, 0.5)) == pytest.approx(expected)


def test_ncc_identical_and_inverted(scene):
    ref, _, _ = scene
    assert ncc(ref, ref, (100, 100), (100, 100)) == pytest.approx(1.0, abs=1e-6)
    assert ncc(ref, 255 - ref, (100, 100), (100, 100)) < -0.99


def test_ncc_flat_image_is_zero(scene):
    ref, _, _ = scene
    flat = np.full_like(ref, 77)
    assert ncc(ref, flat, (100, 100), (100, 100)) == pytest.approx(0.0)


def test_epipolar_search_finds_shifted_match(scene):
    ref, curr, T_C_R = scene
    result = epipolar_search(ref, curr, T_C_R, (100.0, 100.0), 3.0, 0.5)
    assert result is not None
    pt_curr, direction = result
    assert abs(pt_curr[0] - (100 + SHIFT)) < 0.71
    assert pt_curr[1] == pytest.approx(100.0, abs=1e-6)
    assert np.allclose(direction, [-1.0, 0.0], atol=1e-9)


def test_epipolar_search_identity_returns_reference(scene):
    ref, _, _ = scene
    pt_curr, direction = epipolar_search(ref, ref, SE3(), (150.0, 120.0), 3.0, 1.0)
    assert np.allclose(pt_curr, [150.0, 120.0])
    assert np.allclose(direction, [0.0, 0.0])


def test_epipolar_search_rejects_featureless_image(scene):
    ref, _, T_C_R = scene
    flat = np.full_like(ref, 50)
    assert epipolar_search(ref, flat, T_C_R, (100.0, 100.0), 3.0, 0.5) is None


def test_update_depth_filter_triangulates_true_range(scene):
    _, _, T_C_R = scene
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov2 = np.full((HEIGHT, WIDTH), 1e12)
    pt_ref = np.array([100.0, 100.0])
    mu, sigma2 = update_depth_filter(
        pt_ref, (100.0 + SHIFT, 100.0), T_C_R, (-1.0, 0.0), depth, cov2
    )
    expected_range = DEPTH_Z * float(np.linalg.norm(px2cam(pt_ref)))
    assert mu == pytest.approx(expected_range, abs=1e-3)
    assert depth[100, 100] == mu
    assert cov2[100, 100] == sigma2
    assert sigma2 < 1e12


def test_update_depth_filter_fuses_between_prior_and_measurement(scene):
    _, _, T_C_R = scene
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov2 = np.full((HEIGHT, WIDTH), 3.0)
    pt_ref = np.array([100.0, 100.0])
    mu, sigma2 = update_depth_filter(
        pt_ref, (100.0 + SHIFT, 100.0), T_C_R, (-1.0, 0.0), depth, cov2
    )
    measured = DEPTH_Z * float(np.linalg.norm(px2cam(pt_ref)))
    assert 3.0 < mu < measured
    assert 0 < sigma2 < 3.0


def test_update_touches_only_unconverged_pixels(scene):
    ref, curr, T_C_R = scene
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov2 = np.full((HEIGHT, WIDTH), 100.0)
    cov2[100, 100] = 3.0
    count = update(ref, curr, T_C_R, depth, cov2)
    assert count == 1
    assert depth[100, 100] > 3.0
    assert cov2[100, 100] < 3.0
    mask = np.ones_like(depth, dtype=bool)
    mask[100, 100] = False
    assert np.all(depth[mask] == 3.0)
    assert np.all(cov2[mask] == 100.0)


def test_update_skips_converged_map(scene):
    ref, curr, T_C_R = scene
    depth = np.full((HEIGHT, WIDTH), 3.0)
    cov2 = np.full((HEIGHT, WIDTH), 0.05)
    assert update(ref, curr, T_C_R, depth, cov2) == 0
    assert np.all(depth == 3.0)


def test_update_rejects_mismatched_shapes(scene):
    ref, curr, T_C_R = scene
    with pytest.raises(ValueError):
        update(ref, curr, T_C_R, np.zeros((HEIGHT, WIDTH)), np.zeros((10, 10)))


def test_evaluate_depth():
    truth = np.full((HEIGHT, WIDTH), 2.0)
    assert evaluate_depth(truth, truth) == (0.0, 0.0)
    mean, mean_sq = evaluate_depth(truth + 1.0, truth)
    assert mean == pytest.approx(1.0)
    assert mean_sq == pytest.approx(1.0)


def test_evaluate_depth_ignores_border():
    truth = np.zeros((HEIGHT, WIDTH))
    estimate = np.zeros((HEIGHT, WIDTH))
    estimate[:BORDER, :] = 50.0
    assert evaluate_depth(truth, estimate) == (0.0, 0.0)


def _write_dataset(root, depth_value="250"):
    (root / TRAJECTORY_FILE).write_text(
        "scene_000.png 0.1 0.2 0.3 0 0 0 1\n"
        "scene_001.png 1.0 2.0 3.0 0 0 0 1\n"
        "\n",
        encoding="utf-8",
    )
    (root / "depthmaps").mkdir()
    (root / "depthmaps" / "scene_000.depth").write_text(
        " ".join([depth_value] * (WIDTH * HEIGHT)), encoding="utf-8"
    )


def test_read_dataset(tmp_path):
    _write_dataset(tmp_path)
    images, poses, ref_depth = read_dataset(tmp_path)
    assert [p.name for p in images] == ["scene_000.png", "scene_001.png"]
    assert images[0].parent.name == "images"
    assert np.allclose(poses[1].translation, [1.0, 2.0, 3.0])
    assert np.allclose(poses[0].rotation_matrix(), np.eye(3))
    assert ref_depth.shape == (HEIGHT, WIDTH)
    assert np.allclose(ref_depth, 2.5)


def test_read_dataset_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset(tmp_path)


def test_read_dataset_short_depth(tmp_path):
    _write_dataset(tmp_path)
    (tmp_path / "depthmaps" / "scene_000.depth").write_text("1 2 3", encoding="utf-8")
    with pytest.raises(ValueError):
        read_dataset(tmp_path)


def test_main_reports_missing_dataset(tmp_path, capsys):
    assert main([str(tmp_path / "nowhere")]) == 1
    assert "Reading image files failed!" in capsys.readouterr().out


def test_main_without_readable_images_fails(tmp_path, capsys):
    _write_dataset(tmp_path)
    assert main([str(tmp_path), "--output", str(tmp_path / "depth.png")]) == 1
    out = capsys.readouterr().out
    assert "read total 2 files." in out
    assert not math.isnan(0.0) and not (tmp_path / "depth.png").exists()