"""Image-level geometry: lens undistortion, RGB-D back-projection, stereo depth.

Images are numpy arrays.  Colour images are ``(H, W, 3)`` arrays in RGB
order; depth images hold raw integer depth values where ``0`` means
"no measurement".
"""

from __future__ import annotations

from os import PathLike

import numpy as np

from slambox.lie import SE3

MAX_DISPARITY = 96.0


def undistort_image(
    image,
    k1: float = -0.28340811,
    k2: float = 0.07395907,
    p1: float = 0.00019359,
    p2: float = 1.76187114e-05,
    fx: float = 458.654,
    fy: float = 457.296,
    cx: float = 367.215,
    cy: float = 248.375,
) -> np.ndarray:
    """Remove radial-tangential distortion from a grey-scale image.

    Every output pixel looks up its distorted position and takes the
    nearest source pixel; positions outside the source become ``0``.
    """
    src = np.asarray(image)
    if src.ndim != 2:
        raise ValueError(f"expected a grey-scale (H, W) image, got shape {src.shape}")
    rows, cols = src.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    x = (u - cx) / fx
    y = (v - cy) / fy
    r2 = x * x + y * y
    radial = 1.0 + k1 * r2 + k2 * r2 * r2
    x_distorted = x * radial + 2.0 * p1 * x * y + p2 * (r2 + 2.0 * x * x)
    y_distorted = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * x * y
    u_distorted = fx * x_distorted + cx
    v_distorted = fy * y_distorted + cy

    valid = (
        (u_distorted >= 0)
        & (v_distorted >= 0)
        & (u_distorted < cols)
        & (v_distorted < rows)
    )
    out = np.zeros_like(src)
    out[valid] = src[v_distorted[valid].astype(int), u_distorted[valid].astype(int)]
    return out


def read_poses(path: str | PathLike, count: int = 5) -> list[SE3]:
    """Read ``count`` poses given as ``tx ty tz qx qy qz qw`` from a text file.

    A missing file raises ``FileNotFoundError``; too few values raise
    ``ValueError``.
    """
    if count < 0:
        raise ValueError("count must not be negative")
    with open(path, encoding="utf-8") as stream:
        tokens = stream.read().split()
    needed = 7 * count
    if len(tokens) < needed:
        raise ValueError(f"{path}: expected {needed} values for {count} poses, got {len(tokens)}")
    try:
        values = [float(token) for token in tokens[:needed]]
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc
    poses = []
    for start in range(0, needed, 7):
        tx, ty, tz, qx, qy, qz, qw = values[start : start + 7]
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def rgbd_to_points(
    color,
    depth,
    pose: SE3 | None = None,
    fx: float = 518.0,
    fy: float = 519.0,
    cx: float = 325.5,
    cy: float = 253.5,
    depth_scale: float = 1000.0,
) -> np.ndarray:
    """Back-project an RGB-D pair into world points.

    Returns an ``(N, 6)`` array of ``x y z r g b`` in row-major pixel
    order; pixels with zero depth are skipped.  ``pose`` maps camera to
    world coordinates and defaults to the identity.
    """
    rgb = np.asarray(color)
    d = np.asarray(depth)
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"expected an (H, W, 3) colour image, got shape {rgb.shape}")
    if d.shape != rgb.shape[:2]:
        raise ValueError(f"depth shape {d.shape} does not match colour shape {rgb.shape[:2]}")
    if depth_scale <= 0:
        raise ValueError("depth_scale must be positive")
    pose = SE3() if pose is None else pose

    v, u = np.nonzero(d)
    z = d[v, u].astype(float) / depth_scale
    x = (u - cx) * z / fx
    y = (v - cy) * z / fy
    world = pose * np.column_stack([x, y, z])
    return np.column_stack([world, rgb[v, u].astype(float)])


def disparity_to_points(
    gray,
    disparity,
    fx: float = 718.856,
    fy: float = 718.856,
    cx: float = 607.1928,
    cy: float = 185.2157,
    baseline: float = 0.573,
) -> np.ndarray:
    """Turn a disparity map into camera-frame points.

    Returns an ``(N, 4)`` array of ``x y z intensity`` with intensity in
    ``[0, 1]``; disparities outside ``(0, 96)`` are skipped.
    """
    g = np.asarray(gray)
    disp = np.asarray(disparity, dtype=float)
    if g.ndim != 2:
        raise ValueError(f"expected a grey-scale (H, W) image, got shape {g.shape}")
    if disp.shape != g.shape:
        raise ValueError(f"disparity shape {disp.shape} does not match image shape {g.shape}")

    v, u = np.nonzero((disp > 0.0) & (disp < MAX_DISPARITY))
    d = disp[v, u]
    z = fx * baseline / d
    x = (u - cx) / fx * z
    y = (v - cy) / fy * z
    return np.column_stack([x, y, z, g[v, u].astype(float) / 255.0])