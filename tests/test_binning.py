from __future__ import annotations

import numpy as np
import pytest

from defectfit.binning import bin_frequencies, bin_label, greedy_bins, uniform_bins
from defectfit.distributions import Distribution


def _assert_partition(bounds, max_value):
    assert bounds[0][0] == 0
    assert bounds[-1][1] == max_value
    for (_, end), (start, _) in zip(bounds, bounds[1:]):
        assert start == end + 1
    for start, end in bounds:
        assert start <= end


def test_greedy_bins_meet_minimum_for_every_row():
    expected = np.array([
        [1.0, 4.0, 8.0, 9.0, 6.0, 2.0, 1.0],
        [3.0, 3.0, 6.0, 6.0, 6.0, 3.0, 1.0],
    ])
    bins = greedy_bins(expected, 5.0)
    assert bins == [(0, 1), (2, 2), (3, 3), (4, 6)]
    for start, end in bins:
        assert np.all(expected[:, start:end + 1].sum(axis=1) >= 5.0)


def test_deficient_trailing_bin_merges_left():
    expected = np.array([[6.0, 6.0, 1.0]])
    assert greedy_bins(expected, 5.0) == [(0, 0), (1, 2)]


def test_uniform_bins_split_evenly():
    assert uniform_bins(5, 3) == [(0, 1), (2, 3), (4, 4)]
    assert uniform_bins(2, 3) == [(0, 0), (1, 1)]


def test_bin_label():
    assert bin_label(3, 3) == "3"
    assert bin_label(7, 11) == "7-11"


def test_bin_frequencies_conserve_counts():
    observed = np.array([3, 8, 12, 10, 9, 5, 2, 1])
    expected = {
        Distribution.POISSON: np.array([2.0, 7.0, 11.0, 11.0, 9.0, 6.0, 2.0, 1.0]),
        Distribution.BINOMIAL: np.array([2.5, 7.5, 10.0, 10.0, 9.0, 6.0, 3.0, 1.0]),
    }
    table = bin_frequencies(observed, expected)
    assert table.n == observed.sum()
    assert len(table.bin_labels) == len(table.observed) == len(table)
    _assert_partition(table.bin_bounds, observed.size - 1)
    for distribution, values in table.expected.items():
        assert sum(values) == pytest.approx(np.sum(expected[distribution]))


def test_two_distinct_values_fall_back_to_uniform_split():
    # values 0 and 4, five batches each, expected counts too small to separate
    observed = np.array([5, 0, 0, 0, 5])
    expected = {Distribution.POISSON: np.array([1.35, 2.71, 2.71, 1.80, 0.90])}
    table = bin_frequencies(observed, expected, min_expected=5.0, min_bins=3)
    assert len(table) >= 3
    assert table.bin_bounds == ((0, 1), (2, 3), (4, 4))
    assert table.observed == (5, 0, 5)
    assert table.bin_labels == ("0-1", "2-3", "4")
