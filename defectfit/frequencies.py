"""
Observed and theoretical frequency vectors over the empirical support.
"""

import numpy as np

from defectfit.distributions import Distribution, clip_probabilities, pmf
from defectfit.logging import get_logger

log = get_logger(__name__, component="frequencies")


def empirical_frequencies(defects, max_defects=None):
    """Count how many batches have each defect count 0..max_defects."""
    defects = np.asarray(defects, dtype=int)
    if max_defects is None:
        max_defects = int(defects.max())
    return np.bincount(defects, minlength=max_defects + 1)[:max_defects + 1]


def _binomial_mixture(support, p, totals):
    # Each batch contributes with its own trial count, weighted by its share of all items.
    totals = np.asarray(totals, dtype=int)
    sizes, counts = np.unique(totals, return_counts=True)
    grand_total = float(np.sum(totals))
    mixture = np.zeros(support.shape, dtype=float)
    for size, count in zip(sizes, counts):
        if size <= 0:
            continue
        weight = count * size / grand_total
        mixture += weight * pmf(Distribution.BINOMIAL, support, {'n': int(size), 'p': p})
    return mixture


def build_expected(max_defects, fits, sample_size, totals=None, binomial_trials='representative'):
    """
    Expected frequencies of each fitted family over 0..max_defects.

    Parameters:
    -----------
    max_defects : int
        Largest observed defect count; the support is 0..max_defects
    fits : dict
        Distribution -> DistributionFit
    sample_size : int
        Number of batches after filtering; scales probabilities to counts
    totals : array-like of int, optional
        Batch sizes, used when binomial_trials == 'per_batch'
    binomial_trials : str
        'representative' evaluates one Binomial with the rounded mean batch size,
        'per_batch' mixes one Binomial per batch size

    Returns:
    --------
    expected : dict
        Distribution -> numpy array of length max_defects + 1
    """
    support = np.arange(max_defects + 1)
    expected = {}
    for distribution, fit in fits.items():
        if (distribution is Distribution.BINOMIAL and binomial_trials == 'per_batch'
                and totals is not None and fit.is_fitted):
            probabilities = _binomial_mixture(support, fit.parameters['p'], totals)
        else:
            probabilities = pmf(distribution, support, fit.parameters)
        expected[distribution] = clip_probabilities(probabilities * sample_size)

        log.debug(
            "Theoretical frequencies computed",
            extra={
                "distribution": distribution.value,
                "total": float(expected[distribution].sum()),
                "sample_size": sample_size,
                "missing_tail_mass": float(sample_size - expected[distribution].sum()),
            },
        )
    return expected
