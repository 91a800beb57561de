"""Scoring of two-view models against keypoint matches.

Keypoints are either ``(x, y)`` pairs or objects whose ``pt`` attribute is
one. Matches are ``(index_in_keys1, index_in_keys2)`` pairs.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, NamedTuple

import numpy as np

from ddrslam.two_view import triangulate

_HOMOGRAPHY_TH = 5.991
_FUNDAMENTAL_TH = 3.841
_FUNDAMENTAL_SCORE_TH = 5.991
_LOW_PARALLAX_COS = 0.99998
_PARALLAX_RANK = 50


class RTCheck(NamedTuple):
    """Outcome of testing one motion hypothesis."""

    n_good: int
    points: np.ndarray
    good: list[bool]
    parallax: float


def _xy(key: Any) -> tuple[float, float]:
    pt = getattr(key, "pt", key)
    return float(pt[0]), float(pt[1])


def _matched_points(keys1: Sequence[Any], keys2: Sequence[Any],
                    matches: Sequence[tuple[int, int]]) -> tuple[np.ndarray, np.ndarray]:
    p1 = np.array([_xy(keys1[i1]) for i1, _ in matches], dtype=float).reshape(-1, 2)
    p2 = np.array([_xy(keys2[i2]) for _, i2 in matches], dtype=float).reshape(-1, 2)
    return p1, p2


def _transfer_chi2(h: np.ndarray, src: np.ndarray, dst: np.ndarray,
                   inv_sigma2: float) -> np.ndarray:
    hom = np.column_stack([src, np.ones(len(src))]) @ h.T
    with np.errstate(divide="ignore", invalid="ignore"):
        proj = hom[:, :2] / hom[:, 2:3]
    return np.sum((dst - proj) ** 2, axis=1) * inv_sigma2


def _score(chi: np.ndarray, reject_th: float, score_th: float) -> tuple[np.ndarray, float]:
    accepted = ~(chi > reject_th)
    return accepted, float(np.sum(score_th - chi[accepted]))


def check_homography(keys1: Sequence[Any], keys2: Sequence[Any],
                     matches: Sequence[tuple[int, int]], h21: np.ndarray,
                     h12: np.ndarray, sigma: float) -> tuple[float, list[bool]]:
    """Symmetric transfer score of a homography and the inlier flag of each match."""
    if not matches:
        return 0.0, []
    p1, p2 = _matched_points(keys1, keys2, matches)
    inv_sigma2 = 1.0 / (sigma * sigma)

    chi1 = _transfer_chi2(np.asarray(h12, dtype=float), p2, p1, inv_sigma2)
    chi2 = _transfer_chi2(np.asarray(h21, dtype=float), p1, p2, inv_sigma2)

    ok1, score1 = _score(chi1, _HOMOGRAPHY_TH, _HOMOGRAPHY_TH)
    ok2, score2 = _score(chi2, _HOMOGRAPHY_TH, _HOMOGRAPHY_TH)
    return score1 + score2, [bool(v) for v in ok1 & ok2]


def check_fundamental(keys1: Sequence[Any], keys2: Sequence[Any],
                      matches: Sequence[tuple[int, int]], f21: np.ndarray,
                      sigma: float) -> tuple[float, list[bool]]:
    """Epipolar-distance score of a fundamental matrix and the inlier flags."""
    if not matches:
        return 0.0, []
    p1, p2 = _matched_points(keys1, keys2, matches)
    f = np.asarray(f21, dtype=float)
    inv_sigma2 = 1.0 / (sigma * sigma)

    x1 = np.column_stack([p1, np.ones(len(p1))])
    x2 = np.column_stack([p2, np.ones(len(p2))])
    lines2 = x1 @ f.T
    lines1 = x2 @ f

    with np.errstate(divide="ignore", invalid="ignore"):
        num2 = np.sum(lines2 * x2, axis=1)
        dist2 = num2 * num2 / (lines2[:, 0] ** 2 + lines2[:, 1] ** 2)
        num1 = np.sum(lines1 * x1, axis=1)
        dist1 = num1 * num1 / (lines1[:, 0] ** 2 + lines1[:, 1] ** 2)

    ok1, score1 = _score(dist2 * inv_sigma2, _FUNDAMENTAL_TH, _FUNDAMENTAL_SCORE_TH)
    ok2, score2 = _score(dist1 * inv_sigma2, _FUNDAMENTAL_TH, _FUNDAMENTAL_SCORE_TH)
    return score1 + score2, [bool(v) for v in ok1 & ok2]


def check_rt(r: np.ndarray, t: np.ndarray, keys1: Sequence[Any], keys2: Sequence[Any],
             matches: Sequence[tuple[int, int]], inliers: Sequence[bool],
             k: np.ndarray, th2: float) -> RTCheck:
    """Triangulate inlier matches under motion ``(r, t)`` and count the good ones.

    A point counts when it lies in front of both cameras (unless its parallax
    is very low) and reprojects within ``th2`` squared pixels in both images.
    It is flagged good only when its parallax is not very low. The parallax
    reported is the angle, in degrees, at rank 50 of the sorted cosines.
    """
    r = np.asarray(r, dtype=float)
    t = np.asarray(t, dtype=float).reshape(3)
    k = np.asarray(k, dtype=float)
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]

    p1 = k @ np.hstack([np.eye(3), np.zeros((3, 1))])
    p2 = k @ np.hstack([r, t.reshape(3, 1)])
    o2 = -r.T @ t

    points = np.zeros((len(keys1), 3))
    good = [False] * len(keys1)
    cos_parallaxes: list[float] = []
    n_good = 0

    for (i1, i2), is_inlier in zip(matches, inliers):
        if not is_inlier:
            continue
        kp1 = _xy(keys1[i1])
        kp2 = _xy(keys2[i2])
        p3d = triangulate(kp1, kp2, p1, p2)
        if not np.all(np.isfinite(p3d)):
            good[i1] = False
            continue

        normal2 = p3d - o2
        cos_parallax = float(p3d @ normal2 / (np.linalg.norm(p3d) * np.linalg.norm(normal2)))
        low_parallax = not cos_parallax < _LOW_PARALLAX_COS

        if p3d[2] <= 0 and not low_parallax:
            continue
        p3d_c2 = r @ p3d + t
        if p3d_c2[2] <= 0 and not low_parallax:
            continue

        with np.errstate(divide="ignore", invalid="ignore"):
            inv_z1 = np.float64(1.0) / p3d[2]
            err1 = ((fx * p3d[0] * inv_z1 + cx - kp1[0]) ** 2
                    + (fy * p3d[1] * inv_z1 + cy - kp1[1]) ** 2)
        if err1 > th2:
            continue

        with np.errstate(divide="ignore", invalid="ignore"):
            inv_z2 = np.float64(1.0) / p3d_c2[2]
            err2 = ((fx * p3d_c2[0] * inv_z2 + cx - kp2[0]) ** 2
                    + (fy * p3d_c2[1] * inv_z2 + cy - kp2[1]) ** 2)
        if err2 > th2:
            continue

        cos_parallaxes.append(cos_parallax)
        points[i1] = p3d
        n_good += 1
        if not low_parallax:
            good[i1] = True

    if n_good > 0:
        cos_parallaxes.sort()
        idx = min(_PARALLAX_RANK, len(cos_parallaxes) - 1)
        parallax = math.degrees(math.acos(max(-1.0, min(1.0, cos_parallaxes[idx]))))
    else:
        parallax = 0.0

    return RTCheck(n_good, points, good, parallax)