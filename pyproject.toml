[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slambox"
version = "0.1.0"
description = "Visual SLAM building blocks: Lie groups, curve fitting, pose graphs, dense mapping and stereo visual odometry components"
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual-odometry",
    "lie-groups",
    "se3",
    "pose-graph",
    "bundle-adjustment",
    "point-cloud",
    "depth-estimation",
    "computer-vision",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
    "pyyaml",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
slambox-hello = "slambox.hello:main"
slambox-trajectory-error = "slambox.trajectory:main"
slambox-curve-fit = "slambox.curve_fitting:main"
slambox-pose-graph = "slambox.pose_graph:main"
slambox-pointcloud = "slambox.pointcloud:main"
slambox-dense-depth = "slambox.dense_depth:main"

[tool.hatch.build.targets.wheel]
packages = ["slambox"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
