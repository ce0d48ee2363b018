"""Frames of stereo images and the 2D features extracted from them."""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np

from slambox.lie import SE3


def _deref(ref):
    return None if ref is None else ref()


def _weak(obj):
    return None if obj is None else weakref.ref(obj)


class Feature:
    """A 2D feature; after triangulation it is linked to a map point.

    The owning frame and the map point are held weakly.
    """

    def __init__(self, frame=None, position=(0.0, 0.0)):
        self._frame = _weak(frame)
        arr = np.asarray(position, dtype=float).reshape(-1)
        if arr.shape != (2,):
            raise ValueError(f"position must have 2 elements, got {arr.size}")
        self.position = arr
        self._map_point = None
        self.is_outlier = False
        self.is_on_left_image = True

    @property
    def frame(self):
        """The frame holding this feature, if it still exists."""
        return _deref(self._frame)

    @frame.setter
    def frame(self, value) -> None:
        self._frame = _weak(value)

    @property
    def map_point(self):
        """The linked map point, if any and if it still exists."""
        return _deref(self._map_point)

    @map_point.setter
    def map_point(self, value) -> None:
        self._map_point = _weak(value)

    def __repr__(self) -> str:
        return f"Feature(position={self.position.tolist()}, left={self.is_on_left_image})"


class Frame:
    """A stereo frame; every frame has an id, key frames also a key-frame id."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()
    _counter_lock = threading.Lock()

    def __init__(
        self,
        id: int = 0,
        time_stamp: float = 0.0,
        pose: SE3 | None = None,
        left_img=None,
        right_img=None,
    ):
        self.id = int(id)
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = float(time_stamp)
        self._pose = SE3() if pose is None else pose
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        self.features_right: list[Feature | None] = []

    @property
    def pose(self) -> SE3:
        """World-to-camera pose ``T_c_w``."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, value: SE3) -> None:
        with self._pose_lock:
            self._pose = value

    @classmethod
    def create(cls) -> "Frame":
        """Create a frame with the next free id."""
        with cls._counter_lock:
            new_id = next(cls._ids)
        return cls(new_id)

    def set_keyframe(self) -> None:
        """Mark this frame as a key frame and give it the next key-frame id."""
        with Frame._counter_lock:
            self.keyframe_id = next(Frame._keyframe_ids)
        self.is_keyframe = True

    def __repr__(self) -> str:
        return f"Frame(id={self.id}, keyframe={self.is_keyframe}, keyframe_id={self.keyframe_id})"