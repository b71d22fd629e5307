"""Tests for the running-average centroid."""

import pytest

from driftline.routing import calculate_centroid


def test_empty_centroid_takes_embedding():
    """An empty centroid is replaced by the embedding as-is."""
    assert calculate_centroid([], [0.1, 0.2, 0.3], 1) == [0.1, 0.2, 0.3]


def test_running_mean():
    """The second embedding moves the centroid halfway."""
    assert calculate_centroid([1, 2, 3], [2, 4, 6], 2) == [1.5, 3, 4.5]


def test_third_message_weight():
    """A third message contributes a third of the difference."""
    assert calculate_centroid([3.0], [6.0], 3) == [4.0]


def test_returns_new_list():
    """The old centroid is not mutated."""
    old = [1.0, 1.0]
    calculate_centroid(old, [3.0, 3.0], 2)
    assert old == [1.0, 1.0]


def test_dimension_mismatch_raises():
    with pytest.raises(ValueError, match="dimensions"):
        calculate_centroid([1.0, 2.0], [1.0], 2)


def test_non_positive_count_raises():
    with pytest.raises(ValueError):
        calculate_centroid([1.0], [2.0], 0)
