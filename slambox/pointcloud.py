"""Building a coloured point-cloud map from RGB-D frames with known poses."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from os import PathLike
from pathlib import Path

import numpy as np
from PIL import Image
from scipy.spatial import cKDTree

from slambox.imaging import read_poses, rgbd_to_points
from slambox.lie import SE3

FX, FY, CX, CY = 481.2, -480.0, 319.5, 239.5
DEPTH_SCALE = 5000.0
RESOLUTION = 0.03
MEAN_K = 50
STDDEV_MUL = 1.0

_PCD_DTYPE = np.dtype([("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])


def _as_cloud(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] < 3:
        raise ValueError(f"expected an (N, >=3) array of points, got shape {arr.shape}")
    return arr


def statistical_outlier_removal(points, mean_k: int = MEAN_K, stddev_mul: float = STDDEV_MUL) -> np.ndarray:
    """Drop points whose mean distance to their ``mean_k`` neighbours is unusual.

    A point is kept when that mean distance is at most the global mean
    plus ``stddev_mul`` standard deviations.  Only the first three
    columns are used as coordinates; the others are carried along.
    """
    cloud = _as_cloud(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(cloud)
    if n < 2:
        return cloud.copy()
    k = min(mean_k + 1, n)
    distances, _ = cKDTree(cloud[:, :3]).query(cloud[:, :3], k=k)
    mean_distances = distances[:, 1:].mean(axis=1)
    threshold = mean_distances.mean() + stddev_mul * mean_distances.std(ddof=1)
    return cloud[mean_distances <= threshold]


def voxel_filter(points, leaf_size=RESOLUTION) -> np.ndarray:
    """Replace the points in each voxel by their average.

    ``leaf_size`` is a scalar or a per-axis triple.  Voxels come out
    ordered with x varying fastest, then y, then z; points with
    non-finite coordinates are dropped.
    """
    cloud = _as_cloud(points)
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0) or not np.all(np.isfinite(leaf)):
        raise ValueError("leaf_size must be positive")
    cloud = cloud[np.all(np.isfinite(cloud[:, :3]), axis=1)]
    if len(cloud) == 0:
        return cloud.copy()
    keys = np.floor(cloud[:, :3] / leaf).astype(np.int64)
    _, inverse = np.unique(keys[:, ::-1], axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    counts = np.bincount(inverse)
    sums = np.zeros((len(counts), cloud.shape[1]))
    np.add.at(sums, inverse, cloud)
    return sums / counts[:, None]


def _stitch(colors, depths, poses, fx, fy, cx, cy, depth_scale) -> np.ndarray:
    if not len(colors) == len(depths) == len(poses):
        raise ValueError(
            f"need as many colour images, depth images and poses: "
            f"{len(colors)}, {len(depths)}, {len(poses)}"
        )
    clouds = [
        statistical_outlier_removal(
            rgbd_to_points(color, depth, pose, fx, fy, cx, cy, depth_scale), MEAN_K, STDDEV_MUL
        )
        for color, depth, pose in zip(colors, depths, poses)
    ]
    return np.concatenate(clouds) if clouds else np.zeros((0, 6))


def build_map(
    colors: Sequence,
    depths: Sequence,
    poses: Sequence[SE3],
    fx: float = FX,
    fy: float = FY,
    cx: float = CX,
    cy: float = CY,
    depth_scale: float = DEPTH_SCALE,
    resolution: float = RESOLUTION,
) -> np.ndarray:
    """Back-project, clean, stitch and down-sample RGB-D frames into one map.

    Returns an ``(N, 6)`` array of ``x y z r g b``.
    """
    merged = _stitch(colors, depths, poses, fx, fy, cx, cy, depth_scale)
    return voxel_filter(merged, resolution)


def write_pcd(path: str | PathLike, points) -> None:
    """Write ``x y z r g b`` points to a binary PCD file."""
    cloud = np.asarray(points, dtype=float)
    if cloud.ndim != 2 or cloud.shape[1] != 6:
        raise ValueError(f"expected an (N, 6) array of x y z r g b, got shape {cloud.shape}")
    rgb = np.clip(np.rint(cloud[:, 3:6]), 0, 255).astype(np.uint32)
    data = np.empty(len(cloud), dtype=_PCD_DTYPE)
    data["x"], data["y"], data["z"] = cloud[:, 0], cloud[:, 1], cloud[:, 2]
    data["rgb"] = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {len(cloud)}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {len(cloud)}\n"
        "DATA binary\n"
    )
    with open(path, "wb") as stream:
        stream.write(header.encode("ascii"))
        stream.write(data.tobytes())


def _load_frames(data_dir: Path, count: int):
    colors, depths = [], []
    for i in range(1, count + 1):
        with Image.open(data_dir / "color" / f"{i}.png") as img:
            colors.append(np.asarray(img.convert("RGB")))
        with Image.open(data_dir / "depth" / f"{i}.png") as img:
            depths.append(np.asarray(img).astype(np.int64))
    return colors, depths


def main(argv: Sequence[str] | None = None) -> int:
    """Build a point-cloud map from a directory of RGB-D frames and poses."""
    parser = argparse.ArgumentParser(description="Build a point-cloud map from RGB-D frames.")
    parser.add_argument("--data", default="./data", help="directory with pose.txt, color/ and depth/")
    parser.add_argument("--output", default="map.pcd")
    parser.add_argument("--frames", type=int, default=5)
    args = parser.parse_args(argv)

    data_dir = Path(args.data)
    try:
        poses = read_poses(data_dir / "pose.txt", args.frames)
    except FileNotFoundError:
        print("cannot find pose file", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    try:
        colors, depths = _load_frames(data_dir, args.frames)
    except OSError as exc:
        print(f"cannot read image: {exc}", file=sys.stderr)
        return 1

    print("converting images to a point cloud ...")
    try:
        merged = _stitch(colors, depths, poses, FX, FY, CX, CY, DEPTH_SCALE)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"the point cloud has {len(merged)} points.")
    cloud = voxel_filter(merged, RESOLUTION)
    print(f"after filtering, the point cloud has {len(cloud)} points.")
    write_pcd(args.output, cloud)
    return 0


if __name__ == "__main__":
    sys.exit(main())