"""Two-view geometry: homography, fundamental matrix, triangulation."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

Point = Sequence[float]


def _as_points(points: Sequence[Point]) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError("points must be a sequence of (x, y) pairs")
    return arr


def _null_vector(a: np.ndarray) -> np.ndarray:
    _, _, vt = np.linalg.svd(a, full_matrices=True)
    return vt[-1]


def compute_h21(points1: Sequence[Point], points2: Sequence[Point]) -> np.ndarray:
    """Homography mapping ``points1`` onto ``points2`` by the direct linear method."""
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    if len(p1) != len(p2):
        raise ValueError("point sets differ in length")

    rows = []
    for (u1, v1), (u2, v2) in zip(p1, p2):
        rows.append([0.0, 0.0, 0.0, -u1, -v1, -1.0, v2 * u1, v2 * v1, v2])
        rows.append([u1, v1, 1.0, 0.0, 0.0, 0.0, -u2 * u1, -u2 * v1, -u2])
    return _null_vector(np.array(rows)).reshape(3, 3)


def compute_f21(points1: Sequence[Point], points2: Sequence[Point]) -> np.ndarray:
    """Rank-2 fundamental matrix with ``x2^T F x1 = 0`` by the eight-point method."""
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    if len(p1) != len(p2):
        raise ValueError("point sets differ in length")

    rows = [[u2 * u1, u2 * v1, u2, v2 * u1, v2 * v1, v2, u1, v1, 1.0]
            for (u1, v1), (u2, v2) in zip(p1, p2)]
    f_pre = _null_vector(np.array(rows)).reshape(3, 3)

    u, w, vt = np.linalg.svd(f_pre, full_matrices=True)
    w[2] = 0.0
    return u @ np.diag(w) @ vt


def triangulate(pt1: Point, pt2: Point, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """3D point seen at ``pt1`` by camera ``p1`` and at ``pt2`` by camera ``p2``.

    Points at infinity come back with non-finite coordinates.
    """
    p1 = np.asarray(p1, dtype=float)
    p2 = np.asarray(p2, dtype=float)
    x1, y1 = pt1
    x2, y2 = pt2
    a = np.vstack([
        x1 * p1[2] - p1[0],
        y1 * p1[2] - p1[1],
        x2 * p2[2] - p2[0],
        y2 * p2[2] - p2[1],
    ])
    x3d = _null_vector(a)
    with np.errstate(divide="ignore", invalid="ignore"):
        return x3d[:3] / x3d[3]


def normalize(points: Sequence[Point]) -> tuple[np.ndarray, np.ndarray]:
    """Centre points on their mean and scale to unit mean absolute deviation.

    Returns the normalised points and the 3x3 transform that produces them.
    """
    pts = _as_points(points)
    if len(pts) == 0:
        raise ValueError("cannot normalise an empty point set")

    mean = pts.mean(axis=0)
    centred = pts - mean
    mean_dev = np.abs(centred).mean(axis=0)
    if np.any(mean_dev == 0):
        raise ValueError("points have no spread along an axis")
    scale = 1.0 / mean_dev

    t = np.eye(3)
    t[0, 0], t[1, 1] = scale
    t[0, 2] = -mean[0] * scale[0]
    t[1, 2] = -mean[1] * scale[1]
    return centred * scale, t


def decompose_e(e: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The two rotations and the unit translation encoded by an essential matrix.

    The translation is known up to sign, giving four motion hypotheses.
    """
    u, _, vt = np.linalg.svd(np.asarray(e, dtype=float))
    t = u[:, 2].copy()
    t /= np.linalg.norm(t)

    w = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    if np.linalg.det(r1) < 0:
        r1 = -r1
    r2 = u @ w.T @ vt
    if np.linalg.det(r2) < 0:
        r2 = -r2
    return r1, r2, t