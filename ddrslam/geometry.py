"""Dynamic object masking and background inpainting for RGB-D frames.

Frames carry ``fx``, ``fy``, ``cx``, ``cy``, a 4x4 pose ``tcw`` (or None
when tracking is lost), ``im_depth``, ``im_mask`` (1 on static pixels),
``is_keyframe`` and, for stored frames, ``im_gray``, ``im_rgb``, ``keys``
and ``keys_un``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Any, NamedTuple

import numpy as np

from ddrslam.dynamic_points import extract_dyn_points
from ddrslam.frame_store import FrameDatabase, select_ref_frames
from ddrslam.masks import combine_masks, depth_region_growing, is_in_image

log = logging.getLogger(__name__)

MAX_DB_SIZE = 20
MAX_REF_FRAMES = 5
ELEM_INITIAL_MAP = 5
MIN_DEPTH_THRESHOLD = 0.2
_INITIAL_MIN_DEPTH = 100.0
_MAX_GRAY_ONLY_DEPTH = 7.0


class InpaintResult(NamedTuple):
    """Images after filling masked-out pixels from stored frames."""

    mask: np.ndarray
    gray: np.ndarray
    depth: np.ndarray
    rgb: np.ndarray | None


def pixel_overlap_area(x1: float, x2: float, y1: float, y2: float) -> float:
    """Signed overlap of two unit pixels centred at ``(x1, y1)`` and ``(x2, y2)``."""
    xc1 = max(x1 - 0.5, x2 - 0.5)
    xc2 = min(x1 + 0.5, x2 + 0.5)
    yc1 = max(y1 - 0.5, y2 - 0.5)
    yc2 = min(y1 + 0.5, y2 + 0.5)
    return (xc2 - xc1) * (yc2 - yc1)


def _intrinsics(frame: Any) -> np.ndarray:
    k = np.eye(3)
    k[0, 0], k[1, 1] = frame.fx, frame.fy
    k[0, 2], k[1, 2] = frame.cx, frame.cy
    return k


def _to_uint8(values: np.ndarray) -> np.ndarray:
    clean = np.nan_to_num(values, nan=0.0, posinf=255.0, neginf=0.0)
    return np.clip(np.rint(clean), 0, 255).astype(np.uint8)


def fill_rgbd(frames: Sequence[Any], current_frame: Any, mask: np.ndarray,
              gray: np.ndarray, depth: np.ndarray,
              rgb: np.ndarray | None = None) -> InpaintResult:
    """Fill pixels where ``mask`` is 0 with static content of stored frames.

    Static pixels of each stored frame are lifted with their depth, moved
    into the current camera and splatted onto the four neighbouring pixels
    with area weights, keeping only the nearest surface. Pixels still
    uncovered come out as 0. Without ``rgb`` only depths below 7 are used.
    """
    mask = np.array(mask, dtype=np.uint8)
    gray = np.asarray(gray)
    depth = np.asarray(depth, dtype=np.float32)

    counter = mask.astype(np.float64)
    gray_acc = gray.astype(np.float64) * counter
    depth_acc = depth.astype(np.float64) * counter
    color_acc = None if rgb is None else np.asarray(rgb, dtype=np.float64) * counter[..., None]
    min_depth = np.full(depth.shape, _INITIAL_MIN_DEPTH)

    k = _intrinsics(current_frame)
    k_inv = np.linalg.inv(k)
    current_tcw = np.asarray(current_frame.tcw, dtype=float)
    rows, cols = np.shape(current_frame.im_depth)[:2]

    def splat(px: int, py: int, weight: float, projected: float,
              gray_value: float, color_value: np.ndarray | None) -> None:
        current_min = min_depth[py, px]
        if abs(current_min - projected) < MIN_DEPTH_THRESHOLD:
            counter[py, px] += weight
            gray_acc[py, px] += weight * gray_value
            depth_acc[py, px] += weight * projected
            if color_acc is not None:
                color_acc[py, px] += weight * color_value
            mask[py, px] = 1
        elif current_min - projected > 0:
            counter[py, px] = weight
            gray_acc[py, px] = weight * gray_value
            depth_acc[py, px] = weight * projected
            if color_acc is not None:
                color_acc[py, px] = weight * color_value
            mask[py, px] = 1
        min_depth[py, px] = min(current_min, projected)

    for ref in frames:
        ref_mask = np.asarray(ref.im_mask)
        ref_depth = np.asarray(ref.im_depth, dtype=np.float32)
        ref_gray = np.asarray(ref.im_gray)
        ref_rgb = None if rgb is None else np.asarray(ref.im_rgb)

        # Column-major walk over the reference image.
        xs, ys = np.nonzero(ref_mask.T == 1)
        d = ref_depth[ys, xs].astype(np.float64)
        keep = d > 0
        if rgb is None:
            keep &= d < _MAX_GRAY_ONLY_DEPTH
        xs, ys, d = xs[keep], ys[keep], d[keep]
        if xs.size == 0:
            continue

        pixels = np.vstack([xs, ys, np.ones(xs.size)]).astype(float)
        mp_ref = np.vstack([k_inv @ pixels, 1.0 / d])
        mp_cur = current_tcw @ (np.linalg.inv(np.asarray(ref.tcw, dtype=float)) @ mp_ref)
        with np.errstate(divide="ignore", invalid="ignore"):
            mp_cur = mp_cur / mp_cur[3]
            image = k @ mp_cur[:3]
            px = image[0] / image[2]
            py = image[1] / image[2]
        projected_depth = mp_cur[2]

        with np.errstate(invalid="ignore"):
            in_frame = (px > 1) & (px < cols - 1) & (py > 1) & (py < rows - 1)
        selected = [j for j in np.nonzero(in_frame)[0]
                    if mask[int(py[j]), int(px[j])] == 0]

        for j in selected:
            x, y = float(px[j]), float(py[j])
            src_x, src_y = int(xs[j]), int(ys[j])
            projected = float(projected_depth[j])
            gray_value = float(ref_gray[src_y, src_x])
            color_value = None if ref_rgb is None else ref_rgb[src_y, src_x].astype(np.float64)

            x_a, y_a = math.floor(x), math.floor(y)
            x_b, y_b = math.ceil(x), math.floor(y)
            x_c, y_c = math.floor(x), math.ceil(y)
            x_d, y_d = math.ceil(x), math.ceil(y)

            corners = []
            if is_in_image(x_a, y_a, gray_acc):
                corners.append((x_a, y_a))
            if is_in_image(x_b, y_b, gray_acc) and x_a != x_b:
                corners.append((x_b, y_b))
            if (is_in_image(x_c, y_c, gray_acc) and y_a != y_c
                    and x_b != x_c and y_b != y_c):
                corners.append((x_c, y_c))
            if (is_in_image(x_d, y_d, gray_acc) and x_a != x_d and y_a != y_d
                    and y_b != y_d and x_d != x_c):
                corners.append((x_d, y_d))

            for cx_, cy_ in corners:
                weight = pixel_overlap_area(x, cx_, y, cy_)
                splat(cx_, cy_, weight, projected, gray_value, color_value)

    keep = mask != 0
    with np.errstate(divide="ignore", invalid="ignore"):
        gray_avg = gray_acc / counter
        depth_avg = depth_acc / counter
        color_avg = None if color_acc is None else color_acc / counter[..., None]

    out_gray = np.zeros(gray.shape, dtype=np.uint8)
    out_gray[keep] = _to_uint8(gray_avg[keep])
    out_depth = np.zeros(depth.shape, dtype=np.float32)
    out_depth[keep] = depth_avg[keep]

    out_rgb = None
    if color_avg is not None:
        out_rgb = np.zeros(np.shape(rgb), dtype=np.uint8)
        out_rgb[keep] = _to_uint8(color_avg[keep])

    return InpaintResult(mask, out_gray, out_depth, out_rgb)


class Geometry:
    """Keeps recent keyframes and uses them to mask and inpaint moving objects."""

    def __init__(self) -> None:
        self.db = FrameDatabase(MAX_DB_SIZE)
        self.n_ref_frames = 0

    def geometric_model_correction(self, current_frame: Any, depth: np.ndarray,
                                   mask: np.ndarray) -> np.ndarray:
        """The mask with pixels of detected moving objects set to 0."""
        if current_frame.tcw is None:
            log.warning("Geometry not working.")
            return mask
        if len(self.db) < ELEM_INITIAL_MAP:
            return mask

        ref_frames = select_ref_frames(self.db.frames, current_frame.tcw, MAX_REF_FRAMES)
        self.n_ref_frames = len(ref_frames)
        dyn_points = extract_dyn_points(ref_frames, current_frame)
        grown = depth_region_growing([p.point for p in dyn_points], depth)
        return combine_masks(current_frame.im_mask, grown)

    def inpaint_frames(self, current_frame: Any, gray: np.ndarray, depth: np.ndarray,
                       rgb: np.ndarray | None, mask: np.ndarray) -> InpaintResult:
        """Fill masked-out pixels from the stored keyframes."""
        return fill_rgbd(self.db.frames, current_frame, mask, gray, depth, rgb)

    def update_db(self, current_frame: Any) -> None:
        """Store the frame if it became a keyframe."""
        if getattr(current_frame, "is_keyframe", False):
            self.db.insert(current_frame)