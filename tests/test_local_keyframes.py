from dataclasses import dataclass

from posekit.local_keyframes import (
    KeyFrameNode,
    LocalMapSelection,
    collect_local_points,
    select_local_keyframes,
)


@dataclass(eq=False)
class Point:
    bad: bool = False


def test_empty_observations_give_empty_selection():
    selection = select_local_keyframes([])
    assert selection.keyframes == []
    assert selection.reference is None
    assert selection.empty


def test_reference_is_keyframe_with_most_shared_points():
    a = KeyFrameNode(1)
    b = KeyFrameNode(2)
    selection = select_local_keyframes([[a, b], [b], [b], [a]])
    assert selection.reference is b
    assert selection.keyframes == [a, b]
    assert not selection.empty


def test_ties_keep_first_seen_keyframe():
    a = KeyFrameNode(1)
    b = KeyFrameNode(2)
    selection = select_local_keyframes([[a, b], [b, a]])
    assert selection.reference is a


def test_bad_keyframe_is_excluded_even_with_most_points():
    bad = KeyFrameNode(1, bad=True)
    good = KeyFrameNode(2)
    selection = select_local_keyframes([[bad], [bad], [bad], [good]])
    assert selection.keyframes == [good]
    assert selection.reference is good


def test_first_new_good_neighbour_is_added():
    b = KeyFrameNode(2)
    bad_c = KeyFrameNode(3, bad=True)
    d = KeyFrameNode(4)
    e = KeyFrameNode(5)
    a = KeyFrameNode(1, neighbours=[b, bad_c, d, e])
    selection = select_local_keyframes([[a, b]])
    assert selection.keyframes == [a, b, d]
    assert e not in selection.keyframes


def test_first_new_good_child_is_added():
    bad_child = KeyFrameNode(2, bad=True)
    child = KeyFrameNode(3)
    other = KeyFrameNode(4)
    a = KeyFrameNode(1, children=[bad_child, child, other])
    selection = select_local_keyframes([[a]])
    assert selection.keyframes == [a, child]


def test_new_parent_ends_extension():
    parent = KeyFrameNode(10)
    late_neighbour = KeyFrameNode(11)
    a = KeyFrameNode(1, parent=parent)
    b = KeyFrameNode(2, neighbours=[late_neighbour])
    selection = select_local_keyframes([[a], [b]])
    assert selection.keyframes == [a, b, parent]
    assert late_neighbour not in selection.keyframes


def test_only_best_ten_neighbours_are_considered():
    bad_ones = [KeyFrameNode(100 + i, bad=True) for i in range(10)]
    eleventh = KeyFrameNode(200)
    a = KeyFrameNode(1, neighbours=bad_ones + [eleventh])
    selection = select_local_keyframes([[a]])
    assert selection.keyframes == [a]


def test_limit_stops_extension():
    n1 = KeyFrameNode(10)
    n2 = KeyFrameNode(11)
    a = KeyFrameNode(1, neighbours=[n1])
    b = KeyFrameNode(2, neighbours=[n2])
    selection = select_local_keyframes([[a], [b]], limit=2)
    assert selection.keyframes == [a, b, n1]
    selection_tight = select_local_keyframes([[a], [b]], limit=1)
    assert selection_tight.keyframes == [a, b]


def test_selection_has_no_duplicates():
    shared = KeyFrameNode(3)
    a = KeyFrameNode(1, neighbours=[shared], children=[shared])
    b = KeyFrameNode(2, neighbours=[shared])
    selection = select_local_keyframes([[a], [b]])
    ids = [id(node) for node in selection.keyframes]
    assert len(ids) == len(set(ids))
    assert isinstance(selection, LocalMapSelection)


def test_collect_local_points_dedupes_and_skips():
    p1, p2, p3 = Point(), Point(), Point()
    bad = Point(bad=True)
    a = KeyFrameNode(1, map_points=[p1, None, p2, bad])
    b = KeyFrameNode(2, map_points=[p2, p3, None, p1])
    assert collect_local_points([a, b]) == [p1, p2, p3]


def test_collect_local_points_empty():
    assert collect_local_points([KeyFrameNode(1)]) == []