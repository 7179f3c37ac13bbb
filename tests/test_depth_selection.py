import pytest

from posekit.depth_selection import plan_depth_points


def test_orders_by_depth_and_skips_non_positive():
    plan = plan_depth_points([0.0, 2.0, 1.0, -1.0, 3.0], [False] * 5, 10.0)
    assert plan.create == [2, 1, 4]
    assert plan.keep == []


def test_tracked_points_are_kept_not_created():
    plan = plan_depth_points([1.0, 2.0, 3.0], [False, True, False], 10.0)
    assert plan.create == [0, 2]
    assert plan.keep == [1]
    assert plan.count == 3


def test_stops_after_far_point_once_enough_counted():
    plan = plan_depth_points([1.0, 2.0, 3.0, 4.0], [False] * 4, 0.5, min_points=2)
    assert plan.create == [0, 1, 2]


def test_close_points_all_taken_regardless_of_minimum():
    depths = [0.1, 0.2, 0.3, 0.4, 5.0]
    plan = plan_depth_points(depths, [False] * 5, 1.0, min_points=1)
    assert plan.create == [0, 1, 2, 3, 4]


def test_equal_depths_ordered_by_index():
    plan = plan_depth_points([1.0, 1.0, 1.0], [False, False, False], 5.0)
    assert plan.create == [0, 1, 2]


def test_empty_input_gives_empty_plan():
    plan = plan_depth_points([], [], 1.0)
    assert plan.count == 0


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        plan_depth_points([1.0, 2.0], [False], 1.0)