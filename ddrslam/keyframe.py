"""Keyframes: frames kept in the map, linked by a covisibility graph.

A keyframe is built from a frame object carrying the attributes ``id``,
``timestamp``, ``fx``, ``fy``, ``cx``, ``cy``, ``invfx``, ``invfy``, ``bf``,
``b``, ``th_depth``, ``keys``, ``keys_un``, ``u_right``, ``depth``, ``k``,
``map_points``, ``grid``, ``grid_element_width_inv``,
``grid_element_height_inv``, ``min_x``, ``min_y``, ``max_x``, ``max_y`` and
``tcw``; the descriptor, bag-of-words and scale attributes are optional.
Keypoints expose ``pt`` as ``(x, y)`` and ``octave``.

Map points used with a keyframe provide ``is_bad()``, ``observations()``
(a mapping keyframe -> index), ``observation_count()``,
``index_in_keyframe(kf)``, ``erase_observation(kf)`` and ``world_pos()``.
"""

from __future__ import annotations

import itertools
import math
import threading
from typing import Any

import numpy as np

_CONNECTION_THRESHOLD = 15


class KeyFrame:
    """A keyframe with its pose, observed map points and graph links."""

    _next_id = itertools.count()

    def __init__(self, frame: Any, slam_map: Any, database: Any) -> None:
        self.id = next(KeyFrame._next_id)
        self.frame_id = frame.id
        self.timestamp = getattr(frame, "timestamp", 0.0)

        self.fx, self.fy = frame.fx, frame.fy
        self.cx, self.cy = frame.cx, frame.cy
        self.invfx, self.invfy = frame.invfx, frame.invfy
        self.bf, self.b = frame.bf, frame.b
        self.th_depth = frame.th_depth
        self.k = np.array(frame.k, dtype=float)

        self.keys = list(frame.keys)
        self.keys_un = list(frame.keys_un)
        self.n = len(self.keys_un)
        self.u_right = list(frame.u_right)
        self.depth = list(frame.depth)
        descriptors = getattr(frame, "descriptors", None)
        self.descriptors = None if descriptors is None else np.array(descriptors)
        self.bow_vec = dict(getattr(frame, "bow_vec", {}) or {})
        self.feat_vec = dict(getattr(frame, "feat_vec", {}) or {})
        self.vocabulary = getattr(frame, "vocabulary", None)

        self.scale_levels = getattr(frame, "scale_levels", 1)
        self.scale_factor = getattr(frame, "scale_factor", 1.0)
        self.log_scale_factor = getattr(frame, "log_scale_factor", 0.0)
        self.scale_factors = list(getattr(frame, "scale_factors", [1.0]))
        self.level_sigma2 = list(getattr(frame, "level_sigma2", [1.0]))
        self.inv_level_sigma2 = list(getattr(frame, "inv_level_sigma2", [1.0]))

        self.min_x, self.min_y = frame.min_x, frame.min_y
        self.max_x, self.max_y = frame.max_x, frame.max_y
        self.grid_element_width_inv = frame.grid_element_width_inv
        self.grid_element_height_inv = frame.grid_element_height_inv
        self.grid = [[list(cell) for cell in column] for column in frame.grid]
        self.grid_cols = len(self.grid)
        self.grid_rows = len(self.grid[0]) if self.grid else 0

        # Bookkeeping used by tracking, local mapping and loop closing.
        self.track_reference_for_frame = 0
        self.fuse_target_for_kf = 0
        self.ba_local_for_kf = 0
        self.ba_fixed_for_kf = 0
        self.ba_global_for_kf = 0
        self.loop_query = 0
        self.loop_words = 0
        self.loop_score = 0.0
        self.reloc_query = 0
        self.reloc_words = 0
        self.reloc_score = 0.0
        self.tcw_gba: np.ndarray | None = None
        self.tcw_bef_gba: np.ndarray | None = None
        self.tcp: np.ndarray | None = None

        self._map_points: list[Any] = list(frame.map_points)
        self._map = slam_map
        self._database = database

        self._pose_lock = threading.RLock()
        self._connections_lock = threading.RLock()
        self._features_lock = threading.RLock()

        self._connected_weights: dict[KeyFrame, int] = {}
        self._ordered_connected: list[KeyFrame] = []
        self._ordered_weights: list[int] = []
        self._first_connection = True
        self._parent: KeyFrame | None = None
        self._children: set[KeyFrame] = set()
        self._loop_edges: set[KeyFrame] = set()
        self._not_erase = False
        self._to_be_erased = False
        self._bad = False
        self._half_baseline = frame.b / 2

        frame.is_keyframe = True
        self.set_pose(frame.tcw)

    # Pose -----------------------------------------------------------------

    def set_pose(self, tcw: Any) -> None:
        with self._pose_lock:
            self._tcw = np.array(tcw, dtype=float)
            rcw = self._tcw[:3, :3]
            t = self._tcw[:3, 3]
            rwc = rcw.T
            self._ow = -rwc @ t
            self._twc = np.eye(4)
            self._twc[:3, :3] = rwc
            self._twc[:3, 3] = self._ow
            center = np.array([self._half_baseline, 0.0, 0.0, 1.0])
            self._cw = (self._twc @ center)[:3]

    def pose(self) -> np.ndarray:
        with self._pose_lock:
            return self._tcw.copy()

    def pose_inverse(self) -> np.ndarray:
        with self._pose_lock:
            return self._twc.copy()

    def camera_center(self) -> np.ndarray:
        with self._pose_lock:
            return self._ow.copy()

    def stereo_center(self) -> np.ndarray:
        with self._pose_lock:
            return self._cw.copy()

    def rotation(self) -> np.ndarray:
        with self._pose_lock:
            return self._tcw[:3, :3].copy()

    def translation(self) -> np.ndarray:
        with self._pose_lock:
            return self._tcw[:3, 3].copy()

    # Covisibility graph ---------------------------------------------------

    def add_connection(self, keyframe: KeyFrame, weight: int) -> None:
        with self._connections_lock:
            if self._connected_weights.get(keyframe) == weight:
                return
            self._connected_weights[keyframe] = weight
        self.update_best_covisibles()

    @staticmethod
    def _order_by_weight(weights: dict[KeyFrame, int]) -> tuple[list[KeyFrame], list[int]]:
        pairs = sorted(((w, kf.id, kf) for kf, w in weights.items()),
                       key=lambda p: (p[0], p[1]), reverse=True)
        return [kf for _, _, kf in pairs], [w for w, _, _ in pairs]

    def update_best_covisibles(self) -> None:
        with self._connections_lock:
            self._ordered_connected, self._ordered_weights = self._order_by_weight(
                self._connected_weights)

    def connected_keyframes(self) -> set[KeyFrame]:
        with self._connections_lock:
            return set(self._connected_weights)

    def covisible_keyframes(self) -> list[KeyFrame]:
        with self._connections_lock:
            return list(self._ordered_connected)

    def best_covisibility_keyframes(self, n: int) -> list[KeyFrame]:
        with self._connections_lock:
            return list(self._ordered_connected[:n])

    def covisibles_by_weight(self, w: int) -> list[KeyFrame]:
        """Keyframes with weight at least ``w``.

        An empty list is also returned when every connection reaches ``w``.
        """
        with self._connections_lock:
            cut = next((i for i, weight in enumerate(self._ordered_weights) if weight < w),
                       None)
            if cut is None:
                return []
            return list(self._ordered_connected[:cut])

    def weight(self, keyframe: KeyFrame) -> int:
        with self._connections_lock:
            return self._connected_weights.get(keyframe, 0)

    # Map point associations -----------------------------------------------

    def add_map_point(self, map_point: Any, idx: int) -> None:
        with self._features_lock:
            self._map_points[idx] = map_point

    def erase_map_point_match(self, idx: int) -> None:
        with self._features_lock:
            self._map_points[idx] = None

    def erase_map_point(self, map_point: Any) -> None:
        idx = map_point.index_in_keyframe(self)
        if idx >= 0:
            self._map_points[idx] = None

    def replace_map_point_match(self, idx: int, map_point: Any) -> None:
        self._map_points[idx] = map_point

    def map_points(self) -> set[Any]:
        with self._features_lock:
            return {mp for mp in self._map_points if mp is not None and not mp.is_bad()}

    def tracked_map_points(self, min_obs: int) -> int:
        with self._features_lock:
            return sum(
                1 for mp in self._map_points[: self.n]
                if mp is not None and not mp.is_bad()
                and (min_obs <= 0 or mp.observation_count() >= min_obs)
            )

    def map_point_matches(self) -> list[Any]:
        with self._features_lock:
            return list(self._map_points)

    def map_point(self, idx: int) -> Any:
        with self._features_lock:
            return self._map_points[idx]

    def update_connections(self) -> None:
        """Rebuild covisibility links from the map points shared with others."""
        with self._features_lock:
            points = list(self._map_points)

        counter: dict[KeyFrame, int] = {}
        for mp in points:
            if mp is None or mp.is_bad():
                continue
            for kf in mp.observations():
                if kf.id == self.id:
                    continue
                counter[kf] = counter.get(kf, 0) + 1

        if not counter:
            return

        nmax = 0
        kf_max: KeyFrame | None = None
        strong: dict[KeyFrame, int] = {}
        for kf in sorted(counter, key=lambda k: k.id):
            count = counter[kf]
            if count > nmax:
                nmax, kf_max = count, kf
            if count >= _CONNECTION_THRESHOLD:
                strong[kf] = count
                kf.add_connection(self, count)

        if not strong and kf_max is not None:
            strong[kf_max] = nmax
            kf_max.add_connection(self, nmax)

        ordered, weights = self._order_by_weight(strong)

        with self._connections_lock:
            self._connected_weights = counter
            self._ordered_connected = ordered
            self._ordered_weights = weights
            if self._first_connection and self.id != 0:
                self._parent = ordered[0]
                self._parent.add_child(self)
                self._first_connection = False

    # Spanning tree ----------------------------------------------------------

    def add_child(self, keyframe: KeyFrame) -> None:
        with self._connections_lock:
            self._children.add(keyframe)

    def erase_child(self, keyframe: KeyFrame) -> None:
        with self._connections_lock:
            self._children.discard(keyframe)

    def change_parent(self, keyframe: KeyFrame) -> None:
        with self._connections_lock:
            self._parent = keyframe
            keyframe.add_child(self)

    def children(self) -> set[KeyFrame]:
        with self._connections_lock:
            return set(self._children)

    def parent(self) -> KeyFrame | None:
        with self._connections_lock:
            return self._parent

    def has_child(self, keyframe: KeyFrame) -> bool:
        with self._connections_lock:
            return keyframe in self._children

    def add_loop_edge(self, keyframe: KeyFrame) -> None:
        with self._connections_lock:
            self._not_erase = True
            self._loop_edges.add(keyframe)

    def loop_edges(self) -> set[KeyFrame]:
        with self._connections_lock:
            return set(self._loop_edges)

    # Removal ----------------------------------------------------------------

    def set_not_erase(self) -> None:
        with self._connections_lock:
            self._not_erase = True

    def set_erase(self) -> None:
        with self._connections_lock:
            if not self._loop_edges:
                self._not_erase = False
        if self._to_be_erased:
            self.set_bad_flag()

    def set_bad_flag(self) -> None:
        """Remove this keyframe from the graph, the map and the database."""
        with self._connections_lock:
            if self.id == 0:
                return
            if self._not_erase:
                self._to_be_erased = True
                return

        for kf in list(self._connected_weights):
            kf.erase_connection(self)
        for mp in self._map_points:
            if mp is not None:
                mp.erase_observation(self)

        with self._connections_lock, self._features_lock:
            self._connected_weights.clear()
            self._ordered_connected = []
            self._ordered_weights = []

            candidates: set[int] = set()
            if self._parent is not None:
                candidates.add(self._parent.id)

            while self._children:
                best: tuple[int, KeyFrame, KeyFrame] | None = None
                for child in sorted(self._children, key=lambda k: k.id):
                    if child.is_bad():
                        continue
                    for connected in child.covisible_keyframes():
                        if connected.id in candidates:
                            w = child.weight(connected)
                            if best is None or w > best[0]:
                                best = (w, child, connected)
                if best is None:
                    break
                _, child, new_parent = best
                child.change_parent(new_parent)
                candidates.add(child.id)
                self._children.discard(child)

            if self._parent is not None:
                for child in sorted(self._children, key=lambda k: k.id):
                    child.change_parent(self._parent)
                self._parent.erase_child(self)
                self.tcp = self._tcw @ self._parent.pose_inverse()
            self._bad = True

        if self._map is not None:
            self._map.erase_keyframe(self)
        if self._database is not None:
            self._database.erase(self)

    def is_bad(self) -> bool:
        with self._connections_lock:
            return self._bad

    def erase_connection(self, keyframe: KeyFrame) -> None:
        with self._connections_lock:
            if keyframe not in self._connected_weights:
                return
            del self._connected_weights[keyframe]
        self.update_best_covisibles()

    # Image queries ----------------------------------------------------------

    def features_in_area(self, x: float, y: float, r: float) -> list[int]:
        """Indices of undistorted keypoints within a square of half-side ``r``."""
        min_cell_x = max(0, math.floor((x - self.min_x - r) * self.grid_element_width_inv))
        if min_cell_x >= self.grid_cols:
            return []
        max_cell_x = min(self.grid_cols - 1,
                         math.ceil((x - self.min_x + r) * self.grid_element_width_inv))
        if max_cell_x < 0:
            return []
        min_cell_y = max(0, math.floor((y - self.min_y - r) * self.grid_element_height_inv))
        if min_cell_y >= self.grid_rows:
            return []
        max_cell_y = min(self.grid_rows - 1,
                         math.ceil((y - self.min_y + r) * self.grid_element_height_inv))
        if max_cell_y < 0:
            return []

        found = []
        for ix in range(min_cell_x, max_cell_x + 1):
            for iy in range(min_cell_y, max_cell_y + 1):
                for idx in self.grid[ix][iy]:
                    px, py = self.keys_un[idx].pt
                    if abs(px - x) < r and abs(py - y) < r:
                        found.append(idx)
        return found

    def is_in_image(self, x: float, y: float) -> bool:
        return self.min_x <= x < self.max_x and self.min_y <= y < self.max_y

    def unproject_stereo(self, i: int) -> np.ndarray | None:
        """World position of keypoint ``i`` from its depth, or None without depth."""
        z = self.depth[i]
        if z <= 0:
            return None
        u, v = self.keys[i].pt
        x3dc = np.array([(u - self.cx) * z * self.invfx, (v - self.cy) * z * self.invfy, z])
        with self._pose_lock:
            return self._twc[:3, :3] @ x3dc + self._twc[:3, 3]

    def compute_scene_median_depth(self, q: int) -> float:
        """The depth at position ``(n - 1) // q`` of the sorted map point depths."""
        with self._features_lock, self._pose_lock:
            points = list(self._map_points)
            tcw = self._tcw.copy()
        row = tcw[2, :3]
        zcw = tcw[2, 3]
        depths = sorted(
            float(row @ np.asarray(mp.world_pos(), dtype=float).reshape(3)) + zcw
            for mp in points[: self.n] if mp is not None
        )
        if not depths:
            raise ValueError("keyframe has no map points")
        return depths[(len(depths) - 1) // q]