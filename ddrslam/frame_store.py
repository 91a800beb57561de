"""Storage of past keyframes and selection of reference frames."""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from typing import Any

import numpy as np

_TRANSLATION_WEIGHT = 0.7
_ROTATION_WEIGHT = 0.3


def is_rotation_matrix(r: np.ndarray) -> bool:
    """Whether ``r`` is orthonormal to within 1e-6."""
    r = np.asarray(r, dtype=float)
    return float(np.linalg.norm(np.eye(3) - r.T @ r)) < 1e-6


def rotm2euler(r: np.ndarray) -> np.ndarray:
    """Euler angles ``(x, y, z)`` of a rotation matrix."""
    r = np.asarray(r, dtype=float)
    if not is_rotation_matrix(r):
        raise ValueError("not a rotation matrix")
    sy = math.hypot(r[0, 0], r[1, 0])
    if sy >= 1e-6:
        x = math.atan2(r[2, 1], r[2, 2])
        y = math.atan2(-r[2, 0], sy)
        z = math.atan2(r[1, 0], r[0, 0])
    else:
        x = math.atan2(-r[1, 2], r[1, 1])
        y = math.atan2(-r[2, 0], sy)
        z = 0.0
    return np.array([x, y, z])


def _scaled(values: np.ndarray) -> np.ndarray:
    top = values.max()
    return values / top if top > 0 else values


def select_ref_frames(frames: Sequence[Any], current_pose: np.ndarray,
                      max_ref_frames: int) -> list[Any]:
    """Up to ``max_ref_frames`` stored frames farthest from the current pose.

    Distance combines translation (0.7) and Euler-angle difference (0.3),
    each scaled by its maximum; frames are taken in decreasing distance.
    Each frame carries its pose as ``tcw``.
    """
    frames = list(frames)
    if not frames:
        return []
    current = np.asarray(current_pose, dtype=float)
    eul1 = rotm2euler(current[:3, :3])
    trans1 = current[:3, 3]

    dists, rots = [], []
    for frame in frames:
        pose = np.asarray(frame.tcw, dtype=float)
        rots.append(np.linalg.norm(rotm2euler(pose[:3, :3]) - eul1))
        dists.append(np.linalg.norm(pose[:3, 3] - trans1))

    score = (_TRANSLATION_WEIGHT * _scaled(np.array(dists))
             + _ROTATION_WEIGHT * _scaled(np.array(rots)))
    order = np.argsort(-score, kind="stable")
    count = min(max_ref_frames, len(frames))
    return [frames[i] for i in order[:count]]


class FrameDatabase:
    """Ring buffer of keyframes holding at most ``capacity - 1`` of them.

    Once full, each insertion overwrites the oldest slot in turn; only the
    first ``capacity - 1`` slots are reported by :attr:`frames`.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._slots: list[Any] = [None] * capacity
        self._ini = 0
        self._fin = 0
        self.num_elem = 0

    def is_full(self) -> bool:
        return self._ini == (self._fin + 1) % self.capacity

    def insert(self, frame: Any) -> None:
        if not self.is_full():
            self._slots[self._fin] = frame
            self._fin = (self._fin + 1) % self.capacity
            self.num_elem += 1
        else:
            self._slots[self._ini] = frame
            self._fin = self._ini
            self._ini = (self._ini + 1) % self.capacity

    @property
    def frames(self) -> list[Any]:
        return self._slots[: self.num_elem]

    def __len__(self) -> int:
        return self.num_elem

    def __iter__(self) -> Iterator[Any]:
        return iter(self.frames)