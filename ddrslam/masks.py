"""Depth-based region growing and binary mask helpers."""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np

_SEGMENTATION_THRESHOLD = 0.20
_DILATION_RADIUS = 15
_NEIGHBOURS = ((-1, 0), (1, 0), (0, -1), (0, 1))


def is_in_image(x: float, y: float, image: np.ndarray) -> bool:
    rows, cols = image.shape[:2]
    return 0 <= x < cols and 0 <= y < rows


def region_growing(image: np.ndarray, x: int, y: int, max_dist: float) -> np.ndarray:
    """Grow a region from the seed ``(x, y)`` over pixels of similar value.

    Returns a float32 mask with 1 on the region and on the pixels examined
    at its border, 0 elsewhere.
    """
    im = np.asarray(image, dtype=np.float32)
    rows, cols = im.shape
    grown = np.zeros((rows, cols), dtype=np.float32)
    total = rows * cols

    reg_mean = float(im[y, x])
    reg_size = 1
    pending: list[tuple[int, int, float]] = []
    pixdist = 0.0

    while pixdist < max_dist and reg_size < total:
        for dx, dy in _NEIGHBOURS:
            xn, yn = x + dx, y + dy
            if 0 <= xn < cols and 0 <= yn < rows and grown[yn, xn] == 0.0:
                pending.append((xn, yn, float(im[yn, xn])))
                grown[yn, xn] = 1.0

        # The most recently queued pixel is left out of the search.
        candidates = pending[:-1]
        if not candidates:
            pixdist = max_dist
            continue

        dists = [abs(value - reg_mean) for _, _, value in candidates]
        index = int(np.argmin(dists))
        pixdist = dists[index]

        grown[y, x] = -1.0
        reg_size += 1
        chosen_x, chosen_y, chosen_value = pending[index]
        reg_mean = (reg_mean * reg_size + chosen_value) / (reg_size + 1)
        x, y = chosen_x, chosen_y
        pending[index] = pending[-1]
        pending.pop()

    return np.abs(grown)


def _ellipse_kernel(radius: int) -> np.ndarray:
    size = 2 * radius + 1
    kernel = np.zeros((size, size), dtype=np.uint8)
    r = c = radius
    inv_r2 = 1.0 / (r * r) if r else 0.0
    for i in range(size):
        dy = i - r
        if abs(dy) <= r:
            dx = int(round(c * np.sqrt((r * r - dy * dy) * inv_r2)))
            kernel[i, max(c - dx, 0):min(c + dx + 1, size)] = 1
    return kernel


def _dilate(mask: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    rows, cols = mask.shape
    cy, cx = kernel.shape[0] // 2, kernel.shape[1] // 2
    out = np.zeros_like(mask)
    for ky, kx in zip(*np.nonzero(kernel)):
        oy, ox = int(ky) - cy, int(kx) - cx
        y0, y1 = max(0, -oy), min(rows, rows - oy)
        x0, x1 = max(0, -ox), min(cols, cols - ox)
        if y0 >= y1 or x0 >= x1:
            continue
        np.maximum(out[y0:y1, x0:x1], mask[y0 + oy:y1 + oy, x0 + ox:x1 + ox],
                   out=out[y0:y1, x0:x1])
    return out


def depth_region_growing(dyn_points: Iterable[tuple[float, float]],
                         depth: np.ndarray) -> np.ndarray:
    """Mask of static pixels (1) given seed points ``(x, y)`` on dynamic objects.

    Each seed with positive depth not yet covered grows a depth region; the
    union of regions is dilated and the result inverted.
    """
    depth = np.asarray(depth, dtype=np.float32)
    grown = np.zeros(depth.shape, dtype=np.float32)
    seeds = list(dyn_points)

    if seeds:
        for px, py in seeds:
            x_seed, y_seed = int(px), int(py)
            d = depth[y_seed, x_seed]
            if grown[y_seed, x_seed] != 1.0 and d > 0:
                region = region_growing(depth, x_seed, y_seed, _SEGMENTATION_THRESHOLD)
                grown = np.maximum(grown, region)
        dynamic = _dilate(grown.astype(np.uint8), _ellipse_kernel(_DILATION_RADIUS))
    else:
        dynamic = grown.astype(np.uint8)

    return (1 - dynamic).astype(np.uint8)


def _complement(mask: np.ndarray) -> np.ndarray:
    return np.clip(1 - mask.astype(np.int64), 0, None).astype(mask.dtype)


def combine_masks(frame_mask: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Keep only pixels marked static (1) in both masks."""
    frame_mask = np.asarray(frame_mask)
    mask = np.asarray(mask)
    union = _complement(frame_mask) | _complement(mask).astype(frame_mask.dtype)
    return _complement(union)


def closest_non_empty_coordinates(mask: np.ndarray, x: int, y: int) -> tuple[int, int]:
    """Nearest pixel with value 1 along the four axis directions from ``(x, y)``.

    At equal distance the last of left, right, up, down wins. Raises
    ValueError when no such pixel exists along those directions.
    """
    mask = np.asarray(mask)
    rows, cols = mask.shape[:2]
    for step in range(1, max(rows, cols) + 1):
        found = None
        for dx, dy in _NEIGHBOURS:
            xn, yn = x + dx * step, y + dy * step
            if 0 <= xn < cols and 0 <= yn < rows and int(mask[yn, xn]) == 1:
                found = (xn, yn)
        if found is not None:
            return found
    raise ValueError("no non-empty pixel along the axes of the given point")