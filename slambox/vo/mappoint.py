"""Landmarks: world points created by triangulating features."""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np


class MapPoint:
    """A landmark and the features that observe it.

    Observations are held weakly, so a feature that disappears no longer
    counts as an observation.
    """

    _ids = itertools.count()
    _id_lock = threading.Lock()

    def __init__(self, id: int = 0, position=None):
        self.id = int(id)
        self.is_outlier = False
        self.observed_times = 0
        self._lock = threading.Lock()
        self._observations: list[weakref.ref] = []
        self._pos = np.zeros(3)
        if position is not None:
            self.pos = position

    @property
    def pos(self) -> np.ndarray:
        """Position in the world."""
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, value) -> None:
        arr = np.asarray(value, dtype=float).reshape(-1)
        if arr.shape != (3,):
            raise ValueError(f"position must have 3 elements, got {arr.size}")
        with self._lock:
            self._pos = arr.copy()

    @classmethod
    def create(cls) -> "MapPoint":
        """Create a landmark with the next free id."""
        with cls._id_lock:
            new_id = next(cls._ids)
        return cls(new_id)

    def add_observation(self, feature) -> None:
        """Record that ``feature`` observes this landmark."""
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature) -> bool:
        """Forget the observation by ``feature`` and unlink it from this landmark.

        Returns whether the feature was an observation.
        """
        with self._lock:
            for position, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[position]
                    feature.map_point = None
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list:
        """The features that still exist and observe this landmark."""
        with self._lock:
            return [f for ref in self._observations if (f := ref()) is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()})"