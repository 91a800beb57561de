import pytest

from ddrslam.slam_map import Map


class Item:
    def __init__(self, ident=0):
        self.id = ident


@pytest.fixture
def slam_map():
    return Map()


def test_add_and_count_keyframes(slam_map):
    kfs = [Item(3), Item(7), Item(5)]
    for kf in kfs:
        slam_map.add_keyframe(kf)
    assert slam_map.keyframes_in_map() == 3
    assert slam_map.all_keyframes() == kfs
    assert slam_map.max_kf_id() == 7


def test_adding_same_keyframe_twice_counts_once(slam_map):
    kf = Item(2)
    slam_map.add_keyframe(kf)
    slam_map.add_keyframe(kf)
    assert slam_map.keyframes_in_map() == 1


def test_erase_keyframe_keeps_max_id(slam_map):
    a, b = Item(1), Item(4)
    slam_map.add_keyframe(a)
    slam_map.add_keyframe(b)
    slam_map.erase_keyframe(b)
    assert slam_map.all_keyframes() == [a]
    assert slam_map.max_kf_id() == 4


def test_map_points_add_and_erase(slam_map):
    points = [Item(), Item(), Item()]
    for p in points:
        slam_map.add_map_point(p)
    slam_map.erase_map_point(points[1])
    assert slam_map.map_points_in_map() == 2
    assert slam_map.all_map_points() == [points[0], points[2]]


def test_erase_unknown_map_point_is_harmless(slam_map):
    slam_map.add_map_point(Item())
    slam_map.erase_map_point(Item())
    assert slam_map.map_points_in_map() == 1


def test_reference_map_points_are_copied(slam_map):
    refs = [Item(), Item()]
    slam_map.set_reference_map_points(refs)
    refs.append(Item())
    assert len(slam_map.reference_map_points()) == 2


def test_big_change_counter(slam_map):
    assert slam_map.last_big_change_idx() == 0
    slam_map.inform_new_big_change()
    slam_map.inform_new_big_change()
    assert slam_map.last_big_change_idx() == 2


def test_clear_resets_everything(slam_map):
    slam_map.add_keyframe(Item(9))
    slam_map.add_map_point(Item())
    slam_map.set_reference_map_points([Item()])
    slam_map.keyframe_origins.append(Item(9))
    slam_map.clear()
    assert slam_map.keyframes_in_map() == 0
    assert slam_map.map_points_in_map() == 0
    assert slam_map.max_kf_id() == 0
    assert slam_map.reference_map_points() == []
    assert slam_map.keyframe_origins == []