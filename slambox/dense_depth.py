"""Dense monocular depth estimation along a known camera trajectory.

Every reference pixel carries a Gaussian depth estimate.  For each new
image the pixel is matched along its epipolar line by zero-mean
normalised cross-correlation, the match is triangulated, and the result
is fused into the estimate.  Images are grey-scale ``(H, W)`` arrays;
points are ``(x, y)`` pixel coordinates.
"""

from __future__ import annotations

import argparse
import math
import sys
from collections.abc import Sequence
from os import PathLike
from pathlib import Path

import numpy as np
from PIL import Image

from slambox.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0

INIT_DEPTH = 3.0
INIT_COV2 = 3.0

_SEARCH_STEP = 0.7
_MAX_HALF_LENGTH = 100.0
_MIN_SEARCH_DEPTH = 0.1
_NCC_THRESHOLD = float(np.float32(0.85))

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
DEPTH_FILE = Path("depthmaps") / "scene_000.depth"

_OFFSETS = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1, dtype=float)
_WIN_X, _WIN_Y = np.meshgrid(_OFFSETS, _OFFSETS)


def _vec(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def _normalized(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 0 else v


def px2cam(px) -> np.ndarray:
    """Pixel to a camera-frame point on the plane ``z = 1``."""
    u, v = _vec(px, 2, "px")
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Project a camera-frame point to pixel coordinates."""
    x, y, z = _vec(p_cam, 3, "p_cam")
    return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pt) -> bool:
    """Whether a pixel lies far enough from the image border."""
    x, y = _vec(pt, 2, "pt")
    return bool(x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT)


def _bilinear_many(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    x0 = xs.astype(int)
    y0 = ys.astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = np.asarray(image, dtype=float)
    return (
        (1 - xx) * (1 - yy) * img[y0, x0]
        + xx * (1 - yy) * img[y0, x0 + 1]
        + (1 - xx) * yy * img[y0 + 1, x0]
        + xx * yy * img[y0 + 1, x0 + 1]
    ) / 255.0


def bilinear(image, pt) -> float:
    """Bilinearly interpolated intensity at ``pt``, scaled to ``[0, 1]``."""
    x, y = _vec(pt, 2, "pt")
    return float(_bilinear_many(image, np.array([x]), np.array([y]))[0])


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of two windows."""
    rx, ry = _vec(pt_ref, 2, "pt_ref")
    cx, cy = _vec(pt_curr, 2, "pt_curr")
    ref_arr = np.asarray(ref, dtype=float)
    values_ref = ref_arr[(_WIN_Y + ry).astype(int), (_WIN_X + rx).astype(int)] / 255.0
    values_curr = _bilinear_many(curr, _WIN_X + cx, _WIN_Y + cy)
    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    numerator = float(np.sum(dr * dc))
    denominator = float(np.sum(dr * dr)) * float(np.sum(dc * dc))
    return numerator / math.sqrt(denominator + 1e-10)


def epipolar_search(ref, curr, T_C_R: SE3, pt_ref, depth_mu: float, depth_cov: float):
    """Search the epipolar line of ``pt_ref`` in ``curr``.

    Returns ``(pt_curr, epipolar_direction)`` for a match whose NCC is at
    least 0.85, or ``None`` when no such match exists.
    """
    pt_ref = _vec(pt_ref, 2, "pt_ref")
    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(T_C_R * (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, _MIN_SEARCH_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(T_C_R * (f_ref * d_min))
    px_max_curr = cam2px(T_C_R * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), _MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    step = -half_length
    while step <= half_length:
        px_curr = px_mean_curr + step * direction
        if inside(px_curr):
            score = ncc(ref, curr, pt_ref, px_curr)
            if score > best_ncc:
                best_ncc = score
                best_px = px_curr
        step += _SEARCH_STEP
    if best_px is None or best_ncc < _NCC_THRESHOLD:
        return None
    return best_px, direction


def update_depth_filter(pt_ref, pt_curr, T_C_R: SE3, epipolar_direction, depth, depth_cov2):
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused ``(mean, variance)``, or ``None`` when the two rays
    cannot be triangulated.
    """
    pt_ref = _vec(pt_ref, 2, "pt_ref")
    pt_curr = _vec(pt_curr, 2, "pt_curr")
    direction = _vec(epipolar_direction, 2, "epipolar_direction")

    T_R_C = T_C_R.inverse()
    f_ref = _normalized(px2cam(pt_ref))
    f_curr = _normalized(px2cam(pt_curr))

    t = T_R_C.translation
    f2 = T_R_C.so3 * f_curr
    b = np.array([t @ f_ref, t @ f2])
    A = np.array([[f_ref @ f_ref, -(f_ref @ f2)], [f_ref @ f2, -(f2 @ f2)]])
    try:
        ans = np.linalg.inv(A) @ b
    except np.linalg.LinAlgError:
        return None
    xm = ans[0] * f_ref
    xn = t + ans[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    with np.errstate(invalid="ignore", divide="ignore"):
        p = f_ref * depth_estimation
        a = p - t
        t_norm = float(np.linalg.norm(t))
        a_norm = float(np.linalg.norm(a))
        alpha = np.arccos(f_ref @ t / t_norm)
        beta_prime_ray = _normalized(px2cam(pt_curr + direction))
        beta_prime = np.arccos(beta_prime_ray @ (-t) / t_norm)
        gamma = math.pi - alpha - beta_prime
        p_prime = t_norm * np.sin(beta_prime) / np.sin(gamma)
        d_cov = float(p_prime) - depth_estimation
        d_cov2 = d_cov * d_cov
        _ = np.arccos(-(a @ t) / (a_norm * t_norm))

        row, col = int(pt_ref[1]), int(pt_ref[0])
        mu = float(depth[row, col])
        sigma2 = float(depth_cov2[row, col])
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
        sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)

    depth[row, col] = mu_fuse
    depth_cov2[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, T_C_R: SE3, depth, depth_cov2) -> int:
    """Update every unconverged pixel of the depth maps in place.

    Returns the number of pixels that were matched and fused.
    """
    depth = np.asarray(depth)
    depth_cov2 = np.asarray(depth_cov2)
    if depth.shape != depth_cov2.shape:
        raise ValueError(f"depth shape {depth.shape} does not match variance shape {depth_cov2.shape}")
    rows, cols = depth.shape
    region = depth_cov2[BORDER : rows - BORDER, BORDER : cols - BORDER]
    active = ~((region < MIN_COV) | (region > MAX_COV))
    updated = 0
    for x, y in np.argwhere(active.T):
        x += BORDER
        y += BORDER
        pt_ref = np.array([x, y], dtype=float)
        match = epipolar_search(
            ref, curr, T_C_R, pt_ref, float(depth[y, x]), math.sqrt(depth_cov2[y, x])
        )
        if match is None:
            continue
        pt_curr, direction = match
        if update_depth_filter(pt_ref, pt_curr, T_C_R, direction, depth, depth_cov2) is not None:
            updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate) -> tuple[float, float]:
    """Average error and average squared error inside the border."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape:
        raise ValueError(f"shapes differ: {truth.shape} vs {estimate.shape}")
    rows, cols = truth.shape
    error = (truth - estimate)[BORDER : rows - BORDER, BORDER : cols - BORDER]
    if error.size == 0:
        raise ValueError("depth maps are too small to evaluate")
    return float(error.mean()), float((error * error).mean())


def read_dataset(path: str | PathLike) -> tuple[list[Path], list[SE3], np.ndarray]:
    """Read image paths, camera-to-world poses and the reference depth map.

    Missing files raise ``FileNotFoundError``; malformed content raises
    ``ValueError``.
    """
    root = Path(path)
    images: list[Path] = []
    poses: list[SE3] = []
    with open(root / TRAJECTORY_FILE, encoding="utf-8") as stream:
        for number, line in enumerate(stream, 1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) != 8:
                raise ValueError(f"line {number}: expected 8 fields, got {len(fields)}")
            try:
                tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[1:])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from exc
            images.append(root / "images" / fields[0])
            poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))

    with open(root / DEPTH_FILE, encoding="utf-8") as stream:
        tokens = stream.read().split()
    needed = WIDTH * HEIGHT
    if len(tokens) < needed:
        raise ValueError(f"reference depth needs {needed} values, got {len(tokens)}")
    try:
        values = np.array([float(tok) for tok in tokens[:needed]])
    except ValueError as exc:
        raise ValueError(f"reference depth: {exc}") from exc
    return images, poses, values.reshape(HEIGHT, WIDTH) / 100.0


def _load_gray(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("L"))


def main(argv: Sequence[str] | None = None) -> int:
    """Estimate the depth of the first image of a dataset and save it."""
    parser = argparse.ArgumentParser(description="Dense monocular depth estimation.")
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        images, poses, ref_depth = read_dataset(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(images)} files.")
    if not images:
        print("Reading image files failed!")
        return 1

    try:
        ref = _load_gray(images[0])
    except OSError:
        print("Reading image files failed!")
        return 1
    pose_ref = poses[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)

    for index in range(1, len(images)):
        print(f"*** loop {index} ***")
        try:
            curr = _load_gray(images[index])
        except OSError:
            continue
        T_C_R = poses[index].inverse() * pose_ref
        update(ref, curr, T_C_R, depth, depth_cov2)
        mean_error, mean_sq_error = evaluate_depth(ref_depth, depth)
        print(f"Average squared error = {mean_sq_error:g}, average error: {mean_error:g}")

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())