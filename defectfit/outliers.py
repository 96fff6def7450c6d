"""
Outlier removal applied to the defect-count sample before fitting.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from defectfit.distributions import Distribution, cdf
from defectfit.errors import EmptySampleError
from defectfit.logging import get_logger
from defectfit.moments import DistributionFit, estimate

log = get_logger(__name__, component="outliers")


@dataclass(frozen=True)
class IQRPolicy:
    """Drop counts above Q3 + multiplier * IQR.

    Quartiles are taken by position in the sorted sample, without
    interpolation. Small counts are never outliers, so there is no lower bound.
    """

    multiplier: float = 1.5

    def upper_bound(self, defects, totals=None):
        ordered = np.sort(np.asarray(defects))
        n = len(ordered)
        q1 = float(ordered[int(math.floor(n * 0.25))])
        q3 = float(ordered[int(math.floor(n * 0.75))])
        iqr = q3 - q1
        bound = q3 + self.multiplier * iqr
        log.debug(
            "IQR bound computed",
            extra={"n_samples": n, "q1": q1, "q3": q3, "iqr": iqr, "upper_bound": bound},
        )
        return bound


@dataclass(frozen=True)
class TailProbabilityPolicy:
    """Drop counts beyond the (1 - tail_probability) quantile of a fitted family.

    ``reference`` pins the fit used for the tail; when omitted the family is
    estimated from the unfiltered sample. ``max_iterations`` caps the search
    for the unbounded families; hitting it disables the bound.
    """

    tail_probability: float = 0.001
    distribution: Distribution = Distribution.BINOMIAL
    max_iterations: int = 100
    reference: Optional[DistributionFit] = None

    def upper_bound(self, defects, totals=None):
        fit = self.reference
        if fit is None:
            fit = estimate(defects, totals).fits[self.distribution]
        if not fit.is_fitted:
            log.warning(
                "Reference fit is degenerate, no tail bound applied",
                extra={"distribution": fit.distribution.value, "reason": fit.reason},
            )
            return math.inf

        # Binomial support ends at n, so the search always terminates there.
        if fit.distribution is Distribution.BINOMIAL:
            limit = int(fit.parameters['n'])
        else:
            limit = self.max_iterations
        ks = np.arange(limit + 1)
        cumulative = cdf(fit.distribution, ks, fit.parameters)
        exceeded = np.flatnonzero(cumulative > 1 - self.tail_probability)
        if exceeded.size:
            k_star = int(ks[exceeded[0]])
        elif fit.distribution is Distribution.BINOMIAL:
            k_star = limit
        else:
            log.warning(
                "Tail search reached iteration cap, no tail bound applied",
                extra={
                    "distribution": fit.distribution.value,
                    "max_iterations": self.max_iterations,
                    "threshold": 1 - self.tail_probability,
                },
            )
            return math.inf

        log.debug(
            "Tail bound computed",
            extra={
                "distribution": fit.distribution.value,
                "upper_bound": k_star,
                "iterations": int(exceeded[0]) + 1 if exceeded.size else limit + 1,
                "threshold": 1 - self.tail_probability,
            },
        )
        return float(k_star)


def outlier_mask(defects, policy, totals=None):
    """
    Compute which defect counts survive the outlier policy.

    Parameters:
    -----------
    defects : array-like of int
        Defect counts in record order
    policy : IQRPolicy, TailProbabilityPolicy or None
        Policy to apply; None keeps everything
    totals : array-like of int, optional
        Batch sizes aligned with ``defects``, needed to estimate a Binomial reference

    Returns:
    --------
    tuple: (boolean numpy array, upper bound or None)
    """
    defects = np.asarray(defects)
    if policy is None or defects.size == 0:
        return np.ones(defects.shape, dtype=bool), None
    bound = policy.upper_bound(defects, totals)
    return defects <= bound, bound


def kept_mask(defects, policy, totals=None):
    """
    Apply the outlier policy and insist that something survives it.

    Returns:
    --------
    tuple: (boolean numpy array, upper bound or None), as ``outlier_mask``

    Raises:
    -------
    EmptySampleError
        When no count survives the filter
    """
    defects = np.asarray(defects)
    mask, bound = outlier_mask(defects, policy, totals)
    kept = int(mask.sum())

    log.info(
        "Outlier filtering finished",
        extra={
            "n_samples": int(defects.size),
            "filtered_count": kept,
            "outlier_count": int(defects.size - kept),
            "upper_bound": bound,
        },
    )
    if kept == 0:
        raise EmptySampleError()
    return mask, bound


def filter_outliers(defects, policy, totals=None):
    """
    Remove outliers, preserving order and multiplicity of the remaining counts.

    Raises:
    -------
    EmptySampleError
        When no count survives the filter
    """
    defects = np.asarray(defects)
    mask, _ = kept_mask(defects, policy, totals)
    return defects[mask]
