"""Reading trajectories and measuring the error between two of them."""

from __future__ import annotations

import argparse
import math
import sys
from collections.abc import Iterable, Sequence
from os import PathLike

from slambox.lie import SE3

DEFAULT_GROUNDTRUTH = "./example/groundtruth.txt"
DEFAULT_ESTIMATED = "./example/estimated.txt"


def parse_trajectory(lines: Iterable[str] | str) -> list[SE3]:
    """Parse lines of ``time tx ty tz qx qy qz qw`` into poses.

    Blank lines are skipped; any other malformed line raises ``ValueError``.
    """
    if isinstance(lines, str):
        lines = lines.splitlines()
    poses = []
    for number, line in enumerate(lines, 1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 8:
            raise ValueError(f"line {number}: expected 8 fields, got {len(fields)}")
        try:
            values = [float(field) for field in fields]
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
        _, tx, ty, tz, qx, qy, qz, qw = values
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def read_trajectory(path: str | PathLike) -> list[SE3]:
    """Read a trajectory file; a missing file raises ``FileNotFoundError``."""
    with open(path, encoding="utf-8") as stream:
        return parse_trajectory(stream)


def trajectory_rmse(groundtruth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root-mean-square of the se(3) norm of the pose errors."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError(
            f"trajectories differ in length: {len(groundtruth)} vs {len(estimated)}"
        )
    total = 0.0
    for truth, guess in zip(groundtruth, estimated):
        error = float(sum(v * v for v in (truth.inverse() * guess).log()))
        total += error
    return math.sqrt(total / len(estimated))


def main(argv: list[str] | None = None) -> int:
    """Print the RMSE between a ground-truth and an estimated trajectory."""
    parser = argparse.ArgumentParser(
        description="Compute the RMSE between two trajectories."
    )
    parser.add_argument("groundtruth", nargs="?", default=DEFAULT_GROUNDTRUTH)
    parser.add_argument("estimated", nargs="?", default=DEFAULT_ESTIMATED)
    args = parser.parse_args(argv)

    try:
        groundtruth = read_trajectory(args.groundtruth)
        estimated = read_trajectory(args.estimated)
        rmse = trajectory_rmse(groundtruth, estimated)
    except OSError as exc:
        print(f"trajectory {exc.filename} not found.", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(f"RMSE = {rmse:g}")
    return 0


if __name__ == "__main__":
    sys.exit(main())