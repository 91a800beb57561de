"""The map: the sets of keyframes and map points known to the system."""

from __future__ import annotations

import threading
from typing import Any


class Map:
    """Thread-safe container of keyframes and map points.

    Keyframes must expose an integer ``id`` attribute. Insertion order is
    preserved, so listings come back in the order items were added.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._keyframes: dict[Any, None] = {}
        self._map_points: dict[Any, None] = {}
        self._reference_map_points: list[Any] = []
        self._max_kf_id = 0
        self._big_change_idx = 0
        self.keyframe_origins: list[Any] = []
        # Held by other components while they rewrite poses and points.
        self.map_update_lock = threading.RLock()

    def add_keyframe(self, keyframe: Any) -> None:
        with self._lock:
            self._keyframes[keyframe] = None
            if keyframe.id > self._max_kf_id:
                self._max_kf_id = keyframe.id

    def add_map_point(self, map_point: Any) -> None:
        with self._lock:
            self._map_points[map_point] = None

    def erase_map_point(self, map_point: Any) -> None:
        with self._lock:
            self._map_points.pop(map_point, None)

    def erase_keyframe(self, keyframe: Any) -> None:
        with self._lock:
            self._keyframes.pop(keyframe, None)

    def set_reference_map_points(self, map_points: list[Any]) -> None:
        with self._lock:
            self._reference_map_points = list(map_points)

    def inform_new_big_change(self) -> None:
        """Record a large change of the map (loop closure, global BA)."""
        with self._lock:
            self._big_change_idx += 1

    def last_big_change_idx(self) -> int:
        with self._lock:
            return self._big_change_idx

    def all_keyframes(self) -> list[Any]:
        with self._lock:
            return list(self._keyframes)

    def all_map_points(self) -> list[Any]:
        with self._lock:
            return list(self._map_points)

    def map_points_in_map(self) -> int:
        with self._lock:
            return len(self._map_points)

    def keyframes_in_map(self) -> int:
        with self._lock:
            return len(self._keyframes)

    def reference_map_points(self) -> list[Any]:
        with self._lock:
            return list(self._reference_map_points)

    def max_kf_id(self) -> int:
        with self._lock:
            return self._max_kf_id

    def clear(self) -> None:
        """Forget every keyframe and map point and reset the counters."""
        with self._lock:
            self._map_points.clear()
            self._keyframes.clear()
            self._max_kf_id = 0
            self._reference_map_points = []
            self.keyframe_origins = []