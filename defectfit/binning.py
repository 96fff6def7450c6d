"""
Adaptive merging of adjacent defect counts into chi-square bins.

Every family's expected frequency per bin should reach a minimum (5 by the
usual rule of thumb). Bins are grown greedily from zero upwards until all
families meet the minimum, and a trailing bin that never does is folded into
its left neighbour. When that leaves fewer than ``min_bins`` bins the support
is re-split into equal-width bins instead.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from defectfit.distributions import Distribution
from defectfit.logging import get_logger

log = get_logger(__name__, component="binning")


@dataclass(frozen=True)
class FrequencyTable:
    bin_bounds: Tuple[Tuple[int, int], ...]
    bin_labels: Tuple[str, ...]
    observed: Tuple[int, ...]
    expected: Dict[Distribution, Tuple[float, ...]]

    @property
    def n(self):
        return sum(self.observed)

    def __len__(self):
        return len(self.bin_bounds)


def bin_label(start, end):
    return f"{start}" if start == end else f"{start}-{end}"


def greedy_bins(expected_matrix, min_expected):
    """
    Grow bins left to right until every row's expected sum reaches min_expected.

    Parameters:
    -----------
    expected_matrix : numpy array, shape (n_distributions, support_size)
    min_expected : float

    Returns:
    --------
    list of (start, end) tuples
    """
    last = expected_matrix.shape[1] - 1
    bins = []
    start = 0
    while start <= last:
        end = start
        sums = expected_matrix[:, start].copy()
        while end < last and np.any(sums < min_expected):
            end += 1
            sums += expected_matrix[:, end]
        bins.append((start, end))
        start = end + 1

    if len(bins) > 1:
        tail_start, tail_end = bins[-1]
        tail_sums = expected_matrix[:, tail_start:tail_end + 1].sum(axis=1)
        if np.any(tail_sums < min_expected):
            bins[-2:] = [(bins[-2][0], tail_end)]
    return bins


def uniform_bins(support_size, n_bins):
    """Split 0..support_size-1 into n_bins contiguous, near-equal-width bins."""
    n_bins = max(1, min(n_bins, support_size))
    return [(int(chunk[0]), int(chunk[-1])) for chunk in np.array_split(np.arange(support_size), n_bins)]


def bin_frequencies(observed, expected, min_expected=5.0, min_bins=3):
    """
    Merge per-count frequencies into bins valid for the chi-square test.

    Parameters:
    -----------
    observed : array-like of int
        Observed count for each defect value 0..max
    expected : dict
        Distribution -> array of expected counts, same length as observed
    min_expected : float
        Minimum expected frequency per bin for every distribution
    min_bins : int
        Fewest bins accepted before falling back to a uniform split

    Returns:
    --------
    FrequencyTable
    """
    observed = np.asarray(observed)
    support_size = observed.size
    distributions = list(expected)
    expected_matrix = np.vstack([np.asarray(expected[d], dtype=float) for d in distributions]) \
        if distributions else np.zeros((0, support_size))

    bins = greedy_bins(expected_matrix, min_expected)
    if len(bins) < min_bins:
        log.warning(
            "Too few bins after merging, re-splitting support uniformly",
            extra={"bins": len(bins), "min_bins": min_bins, "support_size": support_size},
        )
        bins = uniform_bins(support_size, min_bins)

    binned_observed = tuple(int(observed[s:e + 1].sum()) for s, e in bins)
    binned_expected = {
        d: tuple(float(expected_matrix[i, s:e + 1].sum()) for s, e in bins)
        for i, d in enumerate(distributions)
    }
    table = FrequencyTable(
        bin_bounds=tuple(bins),
        bin_labels=tuple(bin_label(s, e) for s, e in bins),
        observed=binned_observed,
        expected=binned_expected,
    )

    log.info(
        "Frequency bins created",
        extra={"bins": len(bins), "bin_labels": list(table.bin_labels[:10]), "observed_total": table.n},
    )
    return table
