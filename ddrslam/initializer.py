"""Map initialisation from two views of a monocular camera.

A homography and a fundamental matrix are fitted by RANSAC in parallel; the
model that explains the matches best is decomposed into a relative motion
and the matched keypoints are triangulated.
"""

from __future__ import annotations

import math
import random
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import numpy as np

from ddrslam.model_scoring import check_fundamental, check_homography, check_rt
from ddrslam.two_view import compute_f21, compute_h21, decompose_e, normalize

_MIN_SET = 8
_HOMOGRAPHY_RATIO = 0.40
_MIN_PARALLAX = 1.0
_MIN_TRIANGULATED = 50
_SINGULAR_RATIO = 1.00001


@dataclass
class Reconstruction:
    """Relative motion of the second camera and the triangulated points.

    ``points[i]`` is the 3D point of reference keypoint ``i`` and
    ``triangulated[i]`` tells whether it was reconstructed with parallax.
    """

    rotation: np.ndarray
    translation: np.ndarray
    points: np.ndarray
    triangulated: list[bool]


@dataclass
class ModelFit:
    """Best model found by RANSAC with its score and inlier flags."""

    inliers: list[bool]
    score: float
    model: np.ndarray | None


def _xy(key: Any) -> tuple[float, float]:
    pt = getattr(key, "pt", key)
    return float(pt[0]), float(pt[1])


class Initializer:
    """Two-view initialiser holding the keypoints of the reference frame."""

    def __init__(self, reference_keys: Sequence[Any], k: np.ndarray,
                 sigma: float = 1.0, iterations: int = 200) -> None:
        self.k = np.array(k, dtype=float)
        self.keys1 = [_xy(key) for key in reference_keys]
        self.sigma = sigma
        self.sigma2 = sigma * sigma
        self.max_iterations = iterations
        self.keys2: list[tuple[float, float]] = []
        self.matches: list[tuple[int, int]] = []
        self.matched1: list[bool] = []
        self.sets: list[list[int]] = []

    def initialize(self, current_keys: Sequence[Any],
                   matches12: Sequence[int]) -> Reconstruction | None:
        """Reconstruct from the current keypoints and ``matches12``.

        ``matches12[i]`` is the index of the current keypoint matched to
        reference keypoint ``i``, or a negative value. Returns None when no
        reliable reconstruction is found; raises ValueError with fewer than
        eight matches.
        """
        self.keys2 = [_xy(key) for key in current_keys]
        self.matches = [(i, int(j)) for i, j in enumerate(matches12) if j >= 0]
        self.matched1 = [j >= 0 for j in matches12]
        if len(self.matches) < _MIN_SET:
            raise ValueError("at least eight matches are needed")

        rng = random.Random(0)
        indices = range(len(self.matches))
        self.sets = [rng.sample(indices, _MIN_SET) for _ in range(self.max_iterations)]

        with ThreadPoolExecutor(max_workers=2) as pool:
            future_h = pool.submit(self.find_homography)
            future_f = pool.submit(self.find_fundamental)
            fit_h, fit_f = future_h.result(), future_f.result()

        total = fit_h.score + fit_f.score
        ratio_h = fit_h.score / total if total > 0 else 0.0

        if ratio_h > _HOMOGRAPHY_RATIO:
            if fit_h.model is None:
                return None
            return self.reconstruct_h(fit_h.inliers, fit_h.model, self.k,
                                      _MIN_PARALLAX, _MIN_TRIANGULATED)
        if fit_f.model is None:
            return None
        return self.reconstruct_f(fit_f.inliers, fit_f.model, self.k,
                                  _MIN_PARALLAX, _MIN_TRIANGULATED)

    def _minimal_sets(self) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        pn1, t1 = normalize(self.keys1)
        pn2, t2 = normalize(self.keys2)
        return pn1, t1, pn2, t2

    def _samples(self, pn1: np.ndarray, pn2: np.ndarray):
        for sample in self.sets:
            p1 = [pn1[self.matches[i][0]] for i in sample]
            p2 = [pn2[self.matches[i][1]] for i in sample]
            yield p1, p2

    def find_homography(self) -> ModelFit:
        """RANSAC over the prepared minimal sets for the best homography."""
        pn1, t1, pn2, t2 = self._minimal_sets()
        t2_inv = np.linalg.inv(t2)
        best = ModelFit([False] * len(self.matches), 0.0, None)
        for p1, p2 in self._samples(pn1, pn2):
            h21 = t2_inv @ compute_h21(p1, p2) @ t1
            try:
                h12 = np.linalg.inv(h21)
            except np.linalg.LinAlgError:
                continue
            score, inliers = check_homography(self.keys1, self.keys2, self.matches,
                                              h21, h12, self.sigma)
            if score > best.score:
                best = ModelFit(inliers, score, h21.copy())
        return best

    def find_fundamental(self) -> ModelFit:
        """RANSAC over the prepared minimal sets for the best fundamental matrix."""
        pn1, t1, pn2, t2 = self._minimal_sets()
        t2_t = t2.T
        best = ModelFit([False] * len(self.matches), 0.0, None)
        for p1, p2 in self._samples(pn1, pn2):
            f21 = t2_t @ compute_f21(p1, p2) @ t1
            score, inliers = check_fundamental(self.keys1, self.keys2, self.matches,
                                               f21, self.sigma)
            if score > best.score:
                best = ModelFit(inliers, score, f21.copy())
        return best

    def _check(self, r: np.ndarray, t: np.ndarray, inliers: Sequence[bool],
               k: np.ndarray):
        return check_rt(r, t, self.keys1, self.keys2, self.matches, inliers, k,
                        4.0 * self.sigma2)

    def reconstruct_f(self, inliers: Sequence[bool], f21: np.ndarray, k: np.ndarray,
                      min_parallax: float, min_triangulated: int) -> Reconstruction | None:
        """Pick among the four motions of the essential matrix, or None."""
        k = np.asarray(k, dtype=float)
        n = sum(bool(v) for v in inliers)
        e21 = k.T @ np.asarray(f21, dtype=float) @ k
        r1, r2, t = decompose_e(e21)

        hypotheses = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
        checks = [self._check(r, tt, inliers, k) for r, tt in hypotheses]

        max_good = max(c.n_good for c in checks)
        min_good = max(int(0.9 * n), min_triangulated)
        similar = sum(1 for c in checks if c.n_good > 0.7 * max_good)
        if max_good < min_good or similar > 1:
            return None

        best = next(i for i, c in enumerate(checks) if c.n_good == max_good)
        check = checks[best]
        if check.parallax <= min_parallax:
            return None
        r, tt = hypotheses[best]
        return Reconstruction(r.copy(), tt.copy(), check.points, check.good)

    def reconstruct_h(self, inliers: Sequence[bool], h21: np.ndarray, k: np.ndarray,
                      min_parallax: float, min_triangulated: int) -> Reconstruction | None:
        """Pick among the eight motions of the homography (Faugeras), or None."""
        k = np.asarray(k, dtype=float)
        n = sum(bool(v) for v in inliers)
        a = np.linalg.inv(k) @ np.asarray(h21, dtype=float) @ k
        u, w, vt = np.linalg.svd(a)
        s = np.linalg.det(u) * np.linalg.det(vt)
        d1, d2, d3 = (float(v) for v in w)

        if d2 == 0 or d3 == 0 or d1 / d2 < _SINGULAR_RATIO or d2 / d3 < _SINGULAR_RATIO:
            return None

        aux1 = math.sqrt((d1 * d1 - d2 * d2) / (d1 * d1 - d3 * d3))
        aux3 = math.sqrt((d2 * d2 - d3 * d3) / (d1 * d1 - d3 * d3))
        x1s = (aux1, aux1, -aux1, -aux1)
        x3s = (aux3, -aux3, aux3, -aux3)
        root = math.sqrt((d1 * d1 - d2 * d2) * (d2 * d2 - d3 * d3))

        hypotheses: list[tuple[np.ndarray, np.ndarray]] = []

        # Case d' = d2.
        aux_stheta = root / ((d1 + d3) * d2)
        ctheta = (d2 * d2 + d1 * d3) / ((d1 + d3) * d2)
        for x1, x3, stheta in zip(x1s, x3s, (aux_stheta, -aux_stheta, -aux_stheta, aux_stheta)):
            rp = np.eye(3)
            rp[0, 0], rp[0, 2], rp[2, 0], rp[2, 2] = ctheta, -stheta, stheta, ctheta
            tp = np.array([x1, 0.0, -x3]) * (d1 - d3)
            t = u @ tp
            hypotheses.append((s * u @ rp @ vt, t / np.linalg.norm(t)))

        # Case d' = -d2.
        aux_sphi = root / ((d1 - d3) * d2)
        cphi = (d1 * d3 - d2 * d2) / ((d1 - d3) * d2)
        for x1, x3, sphi in zip(x1s, x3s, (aux_sphi, -aux_sphi, -aux_sphi, aux_sphi)):
            rp = np.eye(3)
            rp[0, 0], rp[0, 2], rp[1, 1], rp[2, 0], rp[2, 2] = cphi, sphi, -1.0, sphi, -cphi
            tp = np.array([x1, 0.0, x3]) * (d1 + d3)
            t = u @ tp
            hypotheses.append((s * u @ rp @ vt, t / np.linalg.norm(t)))

        best_good = 0
        second_good = 0
        best = None
        for r, t in hypotheses:
            check = self._check(r, t, inliers, k)
            if check.n_good > best_good:
                second_good = best_good
                best_good = check.n_good
                best = (r, t, check)
            elif check.n_good > second_good:
                second_good = check.n_good

        if best is None:
            return None
        r, t, check = best
        if (second_good < 0.75 * best_good and check.parallax >= min_parallax
                and best_good > min_triangulated and best_good > 0.9 * n):
            return Reconstruction(r.copy(), t.copy(), check.points, check.good)
        return None