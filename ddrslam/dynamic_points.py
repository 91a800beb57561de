"""Detection of keypoints on moving objects by multi-view depth consistency.

Frames carry ``fx``, ``fy``, ``cx``, ``cy``, a 4x4 world-to-camera pose
``tcw`` and a depth image ``im_depth``. Reference frames also carry
``keys`` and ``keys_un``, keypoints whose ``pt`` is ``(x, y)``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np

DMAX = 20
_MAX_REF_DEPTH = 6.0
_MAX_PROJ_DEPTH = 7.0
_PARALLAX_THRESHOLD = 30.0
_DEPTH_THRESHOLD = 0.6
_VAR_THRESHOLD = 0.001


@dataclass(frozen=True)
class DynKeyPoint:
    """A pixel of the current frame judged to belong to a moving object."""

    x: float
    y: float
    ref_frame_label: int

    @property
    def point(self) -> tuple[float, float]:
        return self.x, self.y


def is_in_frame(x: float, y: float, depth: np.ndarray, dmax: int) -> bool:
    """Whether ``(x, y)`` lies more than ``dmax + 1`` pixels inside the image."""
    rows, cols = np.shape(depth)[:2]
    return dmax + 1 < x < cols - dmax - 1 and dmax + 1 < y < rows - dmax - 1


def _intrinsics(frame: Any) -> np.ndarray:
    k = np.eye(3)
    k[0, 0], k[1, 1] = frame.fx, frame.fy
    k[0, 2], k[1, 2] = frame.cx, frame.cy
    return k


def _reference_points(ref_frame: Any, k_inv: np.ndarray,
                      current_t: np.ndarray) -> np.ndarray:
    """Homogeneous world points of a reference frame with low parallax (4 x n)."""
    depth = np.asarray(ref_frame.im_depth, dtype=np.float32)
    pixels, inv_depths = [], []
    for key, key_un in zip(ref_frame.keys, ref_frame.keys_un):
        u, v = key.pt
        d = float(depth[int(v), int(u)])
        if 0 < d < _MAX_REF_DEPTH:
            pixels.append((key_un.pt[0], key_un.pt[1], 1.0))
            inv_depths.append(1.0 / d)
    if not pixels:
        return np.zeros((4, 0))

    inv_depth = np.array(inv_depths)
    rays = k_inv @ np.array(pixels, dtype=float).T
    tcw = np.asarray(ref_frame.tcw, dtype=float)
    mpw = np.linalg.inv(tcw) @ np.vstack([rays, inv_depth])

    mp = mpw[:3] / inv_depth
    to_ref = mp - tcw[:3, 3:4]
    to_cur = mp - current_t.reshape(3, 1)
    with np.errstate(divide="ignore", invalid="ignore"):
        cos = np.sum(to_ref * to_cur, axis=0) / (
            np.linalg.norm(to_ref, axis=0) * np.linalg.norm(to_cur, axis=0))
    angle = np.degrees(np.arccos(np.clip(cos, -1.0, 1.0)))
    return mpw[:, angle < _PARALLAX_THRESHOLD]


def extract_dyn_points(ref_frames: Sequence[Any], current_frame: Any) -> list[DynKeyPoint]:
    """Points of the current frame seen much nearer than the reference frames predict.

    Reference keypoints are lifted to 3D and projected into the current frame.
    Where the current depth around the projection is more than 0.6 closer
    than predicted and the depth patch is flat, the projection is reported,
    labelled with the index of the reference frame it came from.
    """
    k = _intrinsics(current_frame)
    k_inv = np.linalg.inv(k)
    current_tcw = np.asarray(current_frame.tcw, dtype=float)
    depth = np.asarray(current_frame.im_depth, dtype=np.float32)

    blocks, labels = [], []
    for label, ref_frame in enumerate(ref_frames):
        mpw = _reference_points(ref_frame, k_inv, current_tcw[:3, 3])
        blocks.append(mpw)
        labels.extend([label] * mpw.shape[1])
    if not labels:
        return []

    all_mpw = np.hstack(blocks)
    label_arr = np.array(labels)

    cur = current_tcw @ all_mpw
    with np.errstate(divide="ignore", invalid="ignore"):
        cur = cur / cur[3]
    proj_depth = cur[2]
    near = proj_depth < _MAX_PROJ_DEPTH
    cur, proj_depth, label_arr = cur[:, near], proj_depth[near], label_arr[near]

    pix = k @ cur[:3]
    with np.errstate(divide="ignore", invalid="ignore"):
        xs = np.ceil(pix[0] / pix[2])
        ys = np.ceil(pix[1] / pix[2])

    dyn_points: list[DynKeyPoint] = []
    for x, y, predicted, label in zip(xs, ys, proj_depth, label_arr):
        if not is_in_frame(x, y, depth, DMAX):
            continue
        xi, yi = int(x), int(y)
        if not depth[yi, xi] > 0:
            continue

        window = depth[yi - DMAX:yi + DMAX + 1, xi - DMAX:xi + DMAX + 1]
        closer = window[(window > 0) & (window < predicted)]
        if closer.size == 0:
            continue
        observed = float(closer.max())

        if predicted - observed > _DEPTH_THRESHOLD:
            if float(window.astype(np.float64).var()) < _VAR_THRESHOLD:
                dyn_points.append(DynKeyPoint(float(x), float(y), int(label)))

    return dyn_points