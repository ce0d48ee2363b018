"""Reading a stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
import re
from os import PathLike
from pathlib import Path

import numpy as np
from PIL import Image

from slambox.lie import SE3
from slambox.vo.camera import Camera
from slambox.vo.frame import Frame

logger = logging.getLogger(__name__)

NUM_CAMERAS = 4
_NUMBER = re.compile(r"\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_SPACE = re.compile(r"\s*")


class _Scanner:
    """Reads characters and numbers from text the way a stream does."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def char(self) -> str:
        self.pos = _SPACE.match(self.text, self.pos).end()
        if self.pos >= len(self.text):
            raise ValueError("unexpected end of calibration data")
        ch = self.text[self.pos]
        self.pos += 1
        return ch

    def number(self) -> float:
        match = _NUMBER.match(self.text, self.pos)
        if match is None:
            raise ValueError(f"expected a number at offset {self.pos}")
        self.pos = match.end()
        return float(match.group(1))


def _half_size(image: np.ndarray) -> np.ndarray:
    rows, cols = image.shape[:2]
    out_rows, out_cols = round(rows * 0.5), round(cols * 0.5)
    return image[0 : 2 * out_rows : 2, 0 : 2 * out_cols : 2]


class Dataset:
    """A stereo dataset: ``calib.txt`` plus ``image_0`` and ``image_1`` folders."""

    def __init__(self, dataset_path: str | PathLike):
        self.dataset_path = str(dataset_path)
        self.current_image_index = 0
        self.cameras: list[Camera] = []

    def load(self) -> None:
        """Read the intrinsics and extrinsics of the four cameras.

        A missing calibration file raises ``FileNotFoundError`` and
        malformed content ``ValueError``.
        """
        calib = Path(self.dataset_path) / "calib.txt"
        try:
            text = calib.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.error("cannot find %s!", calib)
            raise

        scanner = _Scanner(text)
        cameras = []
        for i in range(NUM_CAMERAS):
            for _ in range(3):
                scanner.char()
            data = [scanner.number() for _ in range(12)]
            K = np.array([data[0:3], data[4:7], data[8:11]])
            t = np.array([data[3], data[7], data[11]])
            try:
                t = np.linalg.inv(K) @ t
            except np.linalg.LinAlgError as exc:
                raise ValueError(f"camera {i} has a singular projection matrix") from exc
            K = K * 0.5
            pose = SE3.from_quaternion((1.0, 0.0, 0.0, 0.0), t)
            cameras.append(
                Camera(K[0, 0], K[1, 1], K[0, 2], K[1, 2], float(np.linalg.norm(t)), pose)
            )
            logger.info("Camera %d extrinsics: %s", i, t)
        self.cameras = cameras
        self.current_image_index = 0

    def next_frame(self) -> Frame | None:
        """The next stereo pair at half resolution, or ``None`` at the end."""
        index = self.current_image_index
        images = []
        for side in (0, 1):
            path = Path(self.dataset_path) / f"image_{side}" / f"{index:06d}.png"
            try:
                with Image.open(path) as img:
                    images.append(np.asarray(img.convert("L")))
            except OSError:
                logger.warning("cannot find images at index %d", index)
                return None

        frame = Frame.create()
        frame.left_img = _half_size(images[0])
        frame.right_img = _half_size(images[1])
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        """The camera with the given index; an unknown one raises ``IndexError``."""
        if camera_id < 0 or camera_id >= len(self.cameras):
            raise IndexError(f"no camera {camera_id}")
        return self.cameras[camera_id]