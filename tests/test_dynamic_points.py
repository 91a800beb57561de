from types import SimpleNamespace

import numpy as np
import pytest

from ddrslam.dynamic_points import DynKeyPoint, extract_dyn_points, is_in_frame

ROWS, COLS = 100, 120
FX = FY = 50.0
CX, CY = 60.0, 50.0


def _key(x, y):
    return SimpleNamespace(pt=(x, y))


def _frame(depth, keys=()):
    return SimpleNamespace(
        fx=FX, fy=FY, cx=CX, cy=CY, tcw=np.eye(4),
        im_depth=depth, keys=list(keys), keys_un=list(keys),
    )


def _flat(value):
    return np.full((ROWS, COLS), value, dtype=np.float32)


def _with_square(background, value, half):
    depth = _flat(background)
    depth[50 - half:50 + half + 1, 60 - half:60 + half + 1] = value
    return depth


@pytest.mark.parametrize("x,expected", [(21, False), (22, True), (98, True), (99, False)])
def test_is_in_frame_x_bounds(x, expected):
    assert is_in_frame(x, 50, _flat(1.0), 20) is expected


@pytest.mark.parametrize("y,expected", [(21, False), (22, True), (78, True), (79, False)])
def test_is_in_frame_y_bounds(y, expected):
    assert is_in_frame(60, y, _flat(1.0), 20) is expected


def test_no_reference_frames_gives_nothing():
    assert extract_dyn_points([], _frame(_flat(3.0))) == []


def test_object_in_front_is_detected():
    ref = _frame(_flat(3.0), [_key(60.0, 50.0)])
    current = _frame(_with_square(3.0, 1.0, 25))
    points = extract_dyn_points([ref], current)
    assert points == [DynKeyPoint(60.0, 50.0, 0)]
    assert points[0].point == (60.0, 50.0)


def test_static_scene_gives_nothing():
    ref = _frame(_flat(3.0), [_key(60.0, 50.0)])
    current = _frame(_flat(3.0))
    assert extract_dyn_points([ref], current) == []


def test_far_reference_depth_is_ignored():
    ref = _frame(_flat(6.5), [_key(60.0, 50.0)])
    current = _frame(_with_square(3.0, 1.0, 25))
    assert extract_dyn_points([ref], current) == []


def test_uneven_patch_is_rejected():
    ref = _frame(_flat(3.0), [_key(60.0, 50.0)])
    current = _frame(_with_square(3.0, 1.0, 5))
    assert extract_dyn_points([ref], current) == []


def test_label_names_the_reference_frame():
    far_ref = _frame(_flat(6.5), [_key(60.0, 50.0)])
    ref = _frame(_flat(3.0), [_key(60.0, 50.0)])
    current = _frame(_with_square(3.0, 1.0, 25))
    points = extract_dyn_points([far_ref, ref], current)
    assert [p.ref_frame_label for p in points] == [1]


def test_point_near_border_is_skipped():
    ref = _frame(_flat(3.0), [_key(10.0, 50.0)])
    depth = _flat(3.0)
    depth[:, :40] = 1.0
    current = _frame(depth)
    assert extract_dyn_points([ref], current) == []