"""Tests for the recency-weighted class distribution."""

import math

import pytest

from simrec.recommender.weighting import calc_class_weights, position_contributions


def test_empty_history_gives_current_class_all_weight():
    """Test that a user without history gets a single-class distribution."""
    assert calc_class_weights("mug", []) == {"mug": 1.0}


def test_weights_sum_to_one_and_are_non_negative():
    """Test normalization over a mixed history."""
    history = ["ball", "mug", "laptop", "ball", "cat", "cat", "mug"] * 5
    weights = calc_class_weights("mug", history)

    assert math.isclose(sum(weights.values()), 1.0, rel_tol=1e-9)
    assert all(w >= 0 for w in weights.values())
    assert set(weights) == {"mug", "ball", "laptop", "cat"}


def test_current_class_is_first_key():
    """Test that the viewed product's class leads the ordering."""
    weights = calc_class_weights("laptop", ["ball", "mug"])
    assert list(weights) == ["laptop", "ball", "mug"]


def test_recent_views_weigh_more_than_older_views():
    """Test that contributions decay with position."""
    weights = calc_class_weights("mug", ["ball", "cat"])

    assert weights["mug"] > weights["ball"] > weights["cat"]


def test_contributions_match_closed_form():
    """Test the per-position formula (e^d - 1) / e^(d (i + 1))."""
    decay = 0.1
    contributions = position_contributions(3, decay)

    for i, value in enumerate(contributions):
        expected = (math.exp(decay) - 1) / math.exp(decay * (i + 1))
        assert value == pytest.approx(expected)


def test_repeated_class_accumulates():
    """Test that the same class at several positions adds up."""
    decay = 0.1
    weights = calc_class_weights("mug", ["mug", "ball"], decay)
    contributions = position_contributions(3, decay)

    expected_mug = (contributions[0] + contributions[1]) / contributions.sum()
    assert weights["mug"] == pytest.approx(expected_mug)
    assert weights["ball"] == pytest.approx(contributions[2] / contributions.sum())
