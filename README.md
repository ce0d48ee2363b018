# slambox

Building blocks for visual SLAM in Python, on top of NumPy and SciPy.
Images are read with Pillow and parameter files with PyYAML.

## Modules

- `slambox.lie` – the groups `SO3` and `SE3` with `exp`, `log`, `inverse`,
  composition by `*` (also applied to a 3-vector or an `(N, 3)` array),
  `SE3.matrix()`, `SE3.matrix3x4()`, `SE3.rotation_matrix()` and
  `SE3.adjoint()`. Helpers: `hat`, `vee`, `se3_hat`, `se3_vee`,
  `quaternion_to_matrix`, `matrix_to_quaternion`, `angle_axis_to_matrix`,
  `yaw_pitch_roll` and `transform_point`. Quaternions are in `(w, x, y, z)`
  order; se(3) vectors put the translation first and the rotation last.
- `slambox.hello` – `print_hello()` prints `Hello SLAM`; `main()` prints
  `Hello SLAM!`.
- `slambox.trajectory` – `parse_trajectory` and `read_trajectory` read lines of
  `time tx ty tz qx qy qz qw` into `SE3` poses; `trajectory_rmse` gives the
  root-mean-square of the se(3) norm of the pose errors.
- `slambox.curve_fitting` – fitting `y = exp(a x² + b x + c)`: `model`,
  `generate_data`, `residuals`, `jacobian`, and the solvers `gauss_newton` and
  `levenberg_marquardt`, both returning a `FitResult` (`params`, `cost`,
  `iterations`).
- `slambox.pose_graph` – a `PoseGraph` of `PoseVertex` and `PoseEdge` read from
  `VERTEX_SE3:QUAT` / `EDGE_SE3:QUAT` text (`PoseGraph.parse`,
  `PoseGraph.read`), optimised with Levenberg-Marquardt on left Lie-algebra
  updates (`PoseGraph.optimize`, vertex 0 held fixed) and written back in the
  same format (`PoseGraph.write`). `total_error` sums `eᵀ Ω e` over the edges.
- `slambox.imaging` – `undistort_image` (radial-tangential model, nearest
  neighbour), `read_poses`, `rgbd_to_points` (returns `x y z r g b` rows) and
  `disparity_to_points` (returns `x y z intensity` rows).
- `slambox.pointcloud` – `statistical_outlier_removal`, `voxel_filter`,
  `build_map` from RGB-D frames with known poses, and `write_pcd` for binary
  PCD output.
- `slambox.dense_depth` – monocular dense depth estimation: epipolar search
  with zero-mean NCC matching (`epipolar_search`, `ncc`, `bilinear`),
  triangulation and Gaussian fusion (`update_depth_filter`, `update`),
  `evaluate_depth` and `read_dataset`.
- `slambox.vo` – stereo visual odometry components:
  - `camera.Camera` – pinhole model with `K()`, `world2camera`,
    `camera2world`, `camera2pixel`, `pixel2camera`, `pixel2world`,
    `world2pixel`;
  - `algorithm.triangulation` (linear SVD triangulation, `None` when poorly
    conditioned) and `algorithm.to_vec2`;
  - `frame.Feature` and `frame.Frame` (with `Frame.create()` and
    `set_keyframe()` handing out ids), `mappoint.MapPoint` (weakly held
    observations);
  - `map.Map` – key frames and landmarks with a bounded window of active key
    frames;
  - `config.Config` – process-wide parameters from a YAML file, including
    `!!opencv-matrix` nodes;
  - `projection` – `PoseOnlyProjectionEdge`, `ProjectionEdge` and
    `left_update`;
  - `backend.Backend` – bundle adjustment of the active map in a worker thread
    woken by `update_map()`, with outlier flagging; `optimize` can also be
    called directly;
  - `dataset.Dataset` – reads `calib.txt` and `image_0/`, `image_1/` stereo
    pairs (`000000.png`, …) at half resolution.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
import numpy as np
from slambox.lie import SE3, angle_axis_to_matrix

R = angle_axis_to_matrix(np.pi / 2, np.array([0.0, 0.0, 1.0]))
T = SE3(R, np.array([1.0, 0.0, 0.0]))
xi = T.log()
T_again = SE3.exp(xi)
p = T * np.array([1.0, 2.0, 3.0])
```

```python
import numpy as np
from slambox.lie import SE3
from slambox.vo.algorithm import triangulation

poses = [SE3(np.eye(3), np.zeros(3)), SE3(np.eye(3), np.array([0.0, -10.0, 0.0]))]
world = np.array([30.0, 20.0, 10.0])
points = [(T * world) / (T * world)[2] for T in poses]
result = triangulation(poses, points)
```

```python
from slambox.curve_fitting import generate_data, gauss_newton

x, y = generate_data(seed=0)
fit = gauss_newton(x, y)
print(fit.params, fit.cost, fit.iterations)
```

## Commands

| Command | What it does |
| --- | --- |
| `slambox-hello` | prints `Hello SLAM!` |
| `slambox-trajectory-error [GROUNDTRUTH] [ESTIMATED]` | prints the RMSE between two trajectory files (defaults `./example/groundtruth.txt` and `./example/estimated.txt`) |
| `slambox-curve-fit [--method gauss-newton\|levenberg-marquardt] [--points N] [--sigma S] [--seed N]` | fits the exponential curve to generated noisy data and prints the estimate |
| `slambox-pose-graph GRAPH [--output FILE] [--iterations N]` | optimises a pose graph file and writes the result (default `result_lie.g2o`) |
| `slambox-pointcloud [--data DIR] [--output FILE] [--frames N]` | joins the RGB-D frames in `DIR` (`pose.txt`, `color/N.png`, `depth/N.png`) into a filtered map written as PCD (default `map.pcd`) |
| `slambox-dense-depth DATASET [--output FILE]` | runs monocular dense depth estimation over a dataset and saves the depth map (default `depth.png`) |

For example:

```
slambox-pose-graph sphere.g2o --iterations 30
```

## What the package does not do

- There is no front end that detects and tracks features between images, and
  no command that runs the whole stereo visual odometry over a dataset: the
  `slambox.vo` pieces (camera, frames, map, back end, dataset reader) have to
  be combined by the caller.
- Nothing is drawn on screen: there is no viewer for trajectories, point
  clouds, depth maps or the map being built. Results are returned as arrays
  or written to files.
- There is no bag-of-words vocabulary or loop-closure detection, and no
  octree or surface-mesh mapping.