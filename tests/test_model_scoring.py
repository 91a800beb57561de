import math

import numpy as np
import pytest

from ddrslam.model_scoring import check_fundamental, check_homography, check_rt

TH = 5.991


def _grid_points():
    return [(10.0, 20.0), (50.0, 15.0), (30.0, 60.0), (80.0, 90.0), (5.0, 70.0)]


def test_homography_identity_all_inliers():
    pts = _grid_points()
    matches = [(i, i) for i in range(len(pts))]
    score, inliers = check_homography(pts, pts, matches, np.eye(3), np.eye(3), 1.0)
    assert inliers == [True] * len(pts)
    assert math.isclose(score, 2 * TH * len(pts), rel_tol=1e-9)


def test_homography_outlier_is_flagged():
    pts1 = _grid_points()
    pts2 = list(pts1)
    pts2[2] = (300.0, 300.0)
    matches = [(i, i) for i in range(len(pts1))]
    score, inliers = check_homography(pts1, pts2, matches, np.eye(3), np.eye(3), 1.0)
    assert inliers == [True, True, False, True, True]
    assert math.isclose(score, 2 * TH * (len(pts1) - 1), rel_tol=1e-9)


def test_homography_larger_sigma_scores_higher():
    pts1 = _grid_points()
    pts2 = [(x + 1.0, y) for x, y in pts1]
    matches = [(i, i) for i in range(len(pts1))]
    low, _ = check_homography(pts1, pts2, matches, np.eye(3), np.eye(3), 1.0)
    high, _ = check_homography(pts1, pts2, matches, np.eye(3), np.eye(3), 2.0)
    assert high > low
    assert high < 2 * TH * len(pts1)


def test_homography_accepts_keypoint_objects():
    class Key:
        def __init__(self, x, y):
            self.pt = (x, y)

    keys = [Key(x, y) for x, y in _grid_points()]
    matches = [(0, 0), (3, 3)]
    score, inliers = check_homography(keys, keys, matches, np.eye(3), np.eye(3), 1.0)
    assert inliers == [True, True]
    assert math.isclose(score, 4 * TH, rel_tol=1e-9)


def test_homography_empty_matches():
    assert check_homography([], [], [], np.eye(3), np.eye(3), 1.0) == (0.0, [])


F_TRANSLATION_X = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]])


def test_fundamental_same_row_matches_are_inliers():
    pts1 = _grid_points()
    pts2 = [(x + 7.0, y) for x, y in pts1]
    matches = [(i, i) for i in range(len(pts1))]
    score, inliers = check_fundamental(pts1, pts2, matches, F_TRANSLATION_X, 1.0)
    assert inliers == [True] * len(pts1)
    assert math.isclose(score, 2 * TH * len(pts1), rel_tol=1e-9)


def test_fundamental_off_line_match_rejected():
    pts1 = _grid_points()
    pts2 = [(x + 7.0, y) for x, y in pts1]
    pts2[1] = (pts2[1][0], pts2[1][1] + 5.0)
    matches = [(i, i) for i in range(len(pts1))]
    score, inliers = check_fundamental(pts1, pts2, matches, F_TRANSLATION_X, 1.0)
    assert inliers == [True, False, True, True, True]
    assert math.isclose(score, 2 * TH * (len(pts1) - 1), rel_tol=1e-9)


K = np.array([[100.0, 0.0, 50.0], [0.0, 100.0, 40.0], [0.0, 0.0, 1.0]])
WORLD = [np.array([0.0, 0.0, 5.0]), np.array([1.0, 1.0, 4.0]), np.array([-1.0, 0.5, 6.0])]


def _project(point, r, t):
    pc = r @ point + t
    return (K[0, 0] * pc[0] / pc[2] + K[0, 2], K[1, 1] * pc[1] / pc[2] + K[1, 2])


def _views(t):
    r = np.eye(3)
    keys1 = [_project(p, r, np.zeros(3)) for p in WORLD]
    keys2 = [_project(p, r, t) for p in WORLD]
    return r, keys1, keys2


def test_check_rt_recovers_points():
    t = np.array([-1.0, 0.0, 0.0])
    r, keys1, keys2 = _views(t)
    matches = [(i, i) for i in range(len(WORLD))]
    result = check_rt(r, t, keys1, keys2, matches, [True] * 3, K, 4.0)
    assert result.n_good == 3
    assert result.good == [True, True, True]
    np.testing.assert_allclose(result.points, np.array(WORLD), atol=1e-6)
    assert 0.0 < result.parallax < 90.0


def test_check_rt_skips_outliers():
    t = np.array([-1.0, 0.0, 0.0])
    r, keys1, keys2 = _views(t)
    matches = [(i, i) for i in range(len(WORLD))]
    result = check_rt(r, t, keys1, keys2, matches, [True, False, True], K, 4.0)
    assert result.n_good == 2
    assert result.good == [True, False, True]
    np.testing.assert_allclose(result.points[1], np.zeros(3))


def test_check_rt_wrong_translation_sign_gives_nothing():
    t = np.array([-1.0, 0.0, 0.0])
    r, keys1, keys2 = _views(t)
    matches = [(i, i) for i in range(len(WORLD))]
    result = check_rt(r, -t, keys1, keys2, matches, [True] * 3, K, 4.0)
    assert result.n_good == 0
    assert result.parallax == 0.0
    assert result.good == [False, False, False]


@pytest.mark.parametrize("th2", [4.0, 100.0])
def test_check_rt_points_shape_follows_keys1(th2):
    t = np.array([-1.0, 0.0, 0.0])
    r, keys1, keys2 = _views(t)
    result = check_rt(r, t, keys1, keys2, [(0, 0)], [True], K, th2)
    assert result.points.shape == (3, 3)
    assert result.n_good == 1