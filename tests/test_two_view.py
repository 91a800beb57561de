import numpy as np
import pytest

from ddrslam.two_view import (
    compute_f21,
    compute_h21,
    decompose_e,
    normalize,
    triangulate,
)


def _rot_y(a):
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, 0, s], [0, 1, 0], [-s, 0, c]])


def _skew(v):
    return np.array([[0, -v[2], v[1]], [v[2], 0, -v[0]], [-v[1], v[0], 0]])


def _scene():
    rng = np.random.default_rng(3)
    pts3d = rng.uniform([-1, -1, 3], [1, 1, 6], size=(12, 3))
    r = _rot_y(0.1)
    t = np.array([-0.4, 0.05, 0.1])
    x1 = pts3d[:, :2] / pts3d[:, 2:]
    cam2 = pts3d @ r.T + t
    x2 = cam2[:, :2] / cam2[:, 2:]
    return x1, x2


def test_compute_h21_recovers_homography():
    h_true = np.array([[1.1, 0.05, 0.2], [-0.03, 0.95, -0.1], [0.01, 0.02, 1.0]])
    rng = np.random.default_rng(0)
    p1 = rng.uniform(-1, 1, size=(8, 2))
    hom = np.hstack([p1, np.ones((8, 1))]) @ h_true.T
    p2 = hom[:, :2] / hom[:, 2:]
    h = compute_h21(p1, p2)
    assert np.allclose(h / h[2, 2], h_true / h_true[2, 2], atol=1e-8)


def test_compute_h21_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        compute_h21([(0, 0), (1, 1)], [(0, 0)])


def test_compute_f21_satisfies_epipolar_constraint():
    x1, x2 = _scene()
    f = compute_f21(x1[:8], x2[:8])
    h1 = np.hstack([x1, np.ones((len(x1), 1))])
    h2 = np.hstack([x2, np.ones((len(x2), 1))])
    residuals = np.einsum("ij,jk,ik->i", h2, f, h1)
    assert np.max(np.abs(residuals)) < 1e-8


def test_compute_f21_has_rank_two():
    x1, x2 = _scene()
    f = compute_f21(x1[:8], x2[:8])
    s = np.linalg.svd(f, compute_uv=False)
    assert s[2] < 1e-12
    assert s[1] > 1e-6


def test_triangulate_recovers_point():
    k = np.array([[500.0, 0, 320], [0, 500, 240], [0, 0, 1]])
    r = _rot_y(0.05)
    t = np.array([-0.5, 0.0, 0.0])
    p1 = k @ np.hstack([np.eye(3), np.zeros((3, 1))])
    p2 = k @ np.hstack([r, t[:, None]])
    x = np.array([0.3, -0.2, 4.0, 1.0])
    a = p1 @ x
    b = p2 @ x
    pt = triangulate(a[:2] / a[2], b[:2] / b[2], p1, p2)
    assert np.allclose(pt, x[:3], atol=1e-8)


def test_normalize_properties():
    pts = [(10.0, 4.0), (12.0, 8.0), (20.0, 1.0), (6.0, 11.0)]
    normed, t = normalize(pts)
    assert np.allclose(normed.mean(axis=0), 0.0)
    assert np.allclose(np.abs(normed).mean(axis=0), 1.0)
    hom = np.hstack([np.array(pts), np.ones((4, 1))]) @ t.T
    assert np.allclose(hom[:, :2], normed)


def test_normalize_rejects_degenerate_input():
    with pytest.raises(ValueError):
        normalize([(1.0, 2.0), (1.0, 3.0)])
    with pytest.raises(ValueError):
        normalize(np.zeros((0, 2)))


def test_decompose_e_contains_true_motion():
    r = _rot_y(0.1)
    t = np.array([1.0, 0.2, 0.1])
    r1, r2, t_hat = decompose_e(_skew(t) @ r)
    assert np.isclose(np.linalg.det(r1), 1.0)
    assert np.isclose(np.linalg.det(r2), 1.0)
    assert np.allclose(r1, r, atol=1e-8) or np.allclose(r2, r, atol=1e-8)
    assert np.isclose(np.linalg.norm(t_hat), 1.0)
    assert np.isclose(abs(t_hat @ t) / np.linalg.norm(t), 1.0)