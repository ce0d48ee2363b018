"""The map: key frames and landmarks, with a window of active ones."""

from __future__ import annotations

import logging
import threading

import numpy as np

from slambox.vo.frame import Frame
from slambox.vo.mappoint import MapPoint

logger = logging.getLogger(__name__)

_MIN_DISTANCE_THRESHOLD = 0.2
_FAR_AWAY = 9999.0


class Map:
    """Key frames and landmarks by id.

    When more than ``num_active_keyframes`` key frames are active, one is
    deactivated: the one closest to the newest key frame if it is very
    close, otherwise the farthest.
    """

    def __init__(self, num_active_keyframes: int = 7):
        self.num_active_keyframes = int(num_active_keyframes)
        self._lock = threading.RLock()
        self._landmarks: dict[int, MapPoint] = {}
        self._active_landmarks: dict[int, MapPoint] = {}
        self._keyframes: dict[int, Frame] = {}
        self._active_keyframes: dict[int, Frame] = {}
        self._current_frame: Frame | None = None

    def insert_keyframe(self, frame: Frame) -> None:
        """Add or replace a key frame and keep the active window bounded."""
        with self._lock:
            self._current_frame = frame
            self._keyframes[frame.keyframe_id] = frame
            self._active_keyframes[frame.keyframe_id] = frame
            if len(self._active_keyframes) > self.num_active_keyframes:
                self._remove_old_keyframe()

    def insert_map_point(self, map_point: MapPoint) -> None:
        """Add or replace a landmark; it starts out active."""
        with self._lock:
            self._landmarks[map_point.id] = map_point
            self._active_landmarks[map_point.id] = map_point

    def all_map_points(self) -> dict[int, MapPoint]:
        """A copy of all landmarks by id."""
        with self._lock:
            return dict(self._landmarks)

    def all_keyframes(self) -> dict[int, Frame]:
        """A copy of all key frames by key-frame id."""
        with self._lock:
            return dict(self._keyframes)

    def active_map_points(self) -> dict[int, MapPoint]:
        """A copy of the active landmarks by id."""
        with self._lock:
            return dict(self._active_landmarks)

    def active_keyframes(self) -> dict[int, Frame]:
        """A copy of the active key frames by key-frame id."""
        with self._lock:
            return dict(self._active_keyframes)

    def clean_map(self) -> int:
        """Deactivate landmarks no longer observed; return how many."""
        with self._lock:
            unobserved = [
                mid for mid, mp in self._active_landmarks.items() if mp.observed_times == 0
            ]
            for mid in unobserved:
                del self._active_landmarks[mid]
        logger.info("Removed %d active landmarks", len(unobserved))
        return len(unobserved)

    def _remove_old_keyframe(self) -> None:
        current = self._current_frame
        if current is None:
            return
        twc = current.pose.inverse()
        max_dis, min_dis = 0.0, _FAR_AWAY
        max_kf_id = min_kf_id = 0
        for kf_id, kf in self._active_keyframes.items():
            if kf is current:
                continue
            dis = float(np.linalg.norm((kf.pose * twc).log()))
            if dis > max_dis:
                max_dis, max_kf_id = dis, kf_id
            if dis < min_dis:
                min_dis, min_kf_id = dis, kf_id

        if min_dis < _MIN_DISTANCE_THRESHOLD:
            frame_to_remove = self._keyframes[min_kf_id]
        else:
            frame_to_remove = self._keyframes[max_kf_id]

        logger.info("remove keyframe %d", frame_to_remove.keyframe_id)
        self._active_keyframes.pop(frame_to_remove.keyframe_id, None)
        for feat in [*frame_to_remove.features_left, *frame_to_remove.features_right]:
            if feat is None:
                continue
            mp = feat.map_point
            if mp is not None:
                mp.remove_observation(feat)

        self.clean_map()