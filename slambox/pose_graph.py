"""Pose-graph optimisation on SE(3) with Lie-algebra errors.

Graphs are read from and written to the text format with
``VERTEX_SE3:QUAT id tx ty tz qx qy qz qw`` and
``EDGE_SE3:QUAT id1 id2 tx ty tz qx qy qz qw`` followed by the 21
upper-triangular entries of the information matrix.  The vertex with
id 0 is held fixed.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from os import PathLike
from typing import TextIO

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slambox.lie import SE3

logger = logging.getLogger(__name__)

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"

_UPPER = np.triu_indices(6)
_TAU = 1e-5
_MAX_TRIALS = 10


def right_jacobian_inverse(error) -> np.ndarray:
    """Approximate inverse right Jacobian of an se(3) error.

    The approximation used is the identity, which holds for small errors.
    """
    err = np.asarray(error, dtype=float).reshape(-1)
    if err.shape != (6,):
        raise ValueError(f"error must have 6 elements, got {err.size}")
    return np.eye(6)


@dataclass
class PoseVertex:
    """A pose in the graph; fixed vertices are not optimised."""

    id: int
    estimate: SE3
    fixed: bool = False


@dataclass
class PoseEdge:
    """A relative-pose measurement from vertex ``first`` to vertex ``second``."""

    id: int
    first: int
    second: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def _poses(self, graph: "PoseGraph") -> tuple[SE3, SE3]:
        try:
            return graph.vertices[self.first].estimate, graph.vertices[self.second].estimate
        except KeyError as exc:
            raise ValueError(f"edge {self.id} refers to unknown vertex {exc.args[0]}") from None

    def error(self, graph: "PoseGraph") -> np.ndarray:
        """The 6-vector ``log(Z^-1 Ti^-1 Tj)``."""
        ti, tj = self._poses(graph)
        return (self.measurement.inverse() * ti.inverse() * tj).log()

    def jacobians(self, graph: "PoseGraph") -> tuple[np.ndarray, np.ndarray]:
        """Derivatives of the error by left perturbations of both vertices."""
        _, tj = self._poses(graph)
        J = right_jacobian_inverse(self.error(graph))
        adj = tj.inverse().adjoint()
        return -J @ adj, J @ adj


def _fmt(values: Iterable[float]) -> str:
    return " ".join(repr(float(v)) for v in values)


def _pose_fields(pose: SE3) -> str:
    w, x, y, z = pose.so3.quaternion()
    return _fmt([*pose.translation, x, y, z, w])


def _parse_pose(values: list[float]) -> SE3:
    tx, ty, tz, qx, qy, qz, qw = values
    return SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz))


class PoseGraph:
    """Vertices keyed by id and the edges between them."""

    def __init__(self):
        self.vertices: dict[int, PoseVertex] = {}
        self.edges: list[PoseEdge] = []

    @classmethod
    def parse(cls, text: str | Iterable[str]) -> "PoseGraph":
        """Build a graph from text; lines with other tags are ignored."""
        if isinstance(text, str):
            text = text.splitlines()
        graph = cls()
        for number, line in enumerate(text, 1):
            fields = line.split()
            if not fields or fields[0] not in (VERTEX_TAG, EDGE_TAG):
                continue
            try:
                if fields[0] == VERTEX_TAG:
                    graph._parse_vertex(fields[1:])
                else:
                    graph._parse_edge(fields[1:])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from exc
        return graph

    def _parse_vertex(self, fields: list[str]) -> None:
        if len(fields) != 8:
            raise ValueError(f"vertex needs 8 fields, got {len(fields)}")
        index = int(fields[0])
        if index in self.vertices:
            raise ValueError(f"duplicate vertex {index}")
        pose = _parse_pose([float(f) for f in fields[1:]])
        self.vertices[index] = PoseVertex(index, pose, fixed=index == 0)

    def _parse_edge(self, fields: list[str]) -> None:
        if len(fields) not in (9, 30):
            raise ValueError(f"edge needs 9 or 30 fields, got {len(fields)}")
        first, second = int(fields[0]), int(fields[1])
        for index in (first, second):
            if index not in self.vertices:
                raise ValueError(f"edge refers to unknown vertex {index}")
        values = [float(f) for f in fields[2:]]
        measurement = _parse_pose(values[:7])
        information = np.eye(6)
        if len(values) > 7:
            info = np.array(values[7:])
            information = np.zeros((6, 6))
            information[_UPPER] = info
            information[(_UPPER[1], _UPPER[0])] = info
        self.edges.append(PoseEdge(len(self.edges), first, second, measurement, information))

    @classmethod
    def read(cls, path: str | PathLike) -> "PoseGraph":
        """Read a graph file; a missing file raises ``FileNotFoundError``."""
        with open(path, encoding="utf-8") as stream:
            return cls.parse(stream)

    def write(self, stream: TextIO) -> None:
        """Write all vertices, then all edges, in the text format."""
        for vertex in self.vertices.values():
            stream.write(f"{VERTEX_TAG} {vertex.id} {_pose_fields(vertex.estimate)}\n")
        for edge in self.edges:
            stream.write(
                f"{EDGE_TAG} {edge.first} {edge.second} {_pose_fields(edge.measurement)} "
                f"{_fmt(edge.information[_UPPER])}\n"
            )

    def total_error(self) -> float:
        """Sum over edges of ``e^T Omega e``."""
        total = 0.0
        for edge in self.edges:
            e = edge.error(self)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]):
        size = 6 * len(index)
        rows, cols, data = [], [], []
        b = np.zeros(size)
        offsets = np.arange(6)
        for edge in self.edges:
            e = edge.error(self)
            ji, jj = edge.jacobians(self)
            omega = edge.information
            blocks = [(index.get(edge.first), ji), (index.get(edge.second), jj)]
            blocks = [(k, J) for k, J in blocks if k is not None]
            for ka, Ja in blocks:
                b[6 * ka : 6 * ka + 6] -= Ja.T @ omega @ e
                for kb, Jb in blocks:
                    block = Ja.T @ omega @ Jb
                    r, c = np.meshgrid(6 * ka + offsets, 6 * kb + offsets, indexing="ij")
                    rows.append(r.ravel())
                    cols.append(c.ravel())
                    data.append(block.ravel())
        if data:
            H = coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            H = coo_matrix((size, size)).tocsc()
        return H, b

    def optimize(self, iterations: int = 30) -> float:
        """Run Levenberg-Marquardt on the free vertices; return the final error."""
        free = [v.id for v in self.vertices.values() if not v.fixed]
        index = {vid: k for k, vid in enumerate(free)}
        chi = self.total_error()
        if not free or not self.edges:
            return chi
        size = 6 * len(free)
        lam: float | None = None
        ni = 2.0
        for it in range(iterations):
            H, b = self._linearize(index)
            if lam is None:
                lam = _TAU * max(float(H.diagonal().max()), 1e-12)
            backup = {vid: self.vertices[vid].estimate for vid in free}
            step_taken = False
            for _trial in range(_MAX_TRIALS):
                dx = np.asarray(spsolve(H + lam * identity(size, format="csc"), b)).reshape(-1)
                new_chi = float("inf")
                rho = -1.0
                if np.all(np.isfinite(dx)):
                    for vid, k in index.items():
                        vertex = self.vertices[vid]
                        vertex.estimate = SE3.exp(dx[6 * k : 6 * k + 6]) * backup[vid]
                    new_chi = self.total_error()
                    scale = float(dx @ (lam * dx + b)) + 1e-3
                    rho = (chi - new_chi) / scale
                if np.isfinite(new_chi) and rho > 0:
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, 2.0 / 3.0)
                    lam *= max(1.0 / 3.0, alpha)
                    ni = 2.0
                    chi = new_chi
                    step_taken = True
                    break
                for vid, pose in backup.items():
                    self.vertices[vid].estimate = pose
                lam *= ni
                ni *= 2.0
            logger.info("iteration %d: chi2 %g, lambda %g", it, chi, lam)
            if not step_taken:
                break
        return chi


def main(argv: Sequence[str] | None = None) -> int:
    """Optimise a pose graph file and save the result."""
    parser = argparse.ArgumentParser(description="Optimise an SE(3) pose graph.")
    parser.add_argument("graph", help="input graph, e.g. sphere.g2o")
    parser.add_argument("--output", default="result_lie.g2o")
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    try:
        graph = PoseGraph.read(args.graph)
    except OSError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    graph.optimize(args.iterations)
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as stream:
        graph.write(stream)
    return 0


if __name__ == "__main__":
    sys.exit(main())