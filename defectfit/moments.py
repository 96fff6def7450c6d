"""
Sample moments and method-of-moments estimates for the candidate families.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from defectfit.distributions import NUM_PARAMS, Distribution, chi2_ppf
from defectfit.errors import DegenerateSampleError
from defectfit.logging import get_logger

log = get_logger(__name__, component="moments")

Z_95 = 1.96
OVERDISPERSION_MARGIN = 1.1


@dataclass(frozen=True)
class SampleStatistics:
    n: int
    mean: float
    variance: float
    std_dev: float
    defect_rate: float
    total_items: int
    mean_ci: Tuple[float, float]
    variance_ci: Tuple[Optional[float], Optional[float]]
    has_overdispersion: bool


@dataclass(frozen=True)
class DistributionFit:
    """Point estimate for one family. Use ``Fitted`` or ``Degenerate``."""

    distribution: Distribution
    parameters: Dict[str, float]

    @property
    def num_params(self):
        return NUM_PARAMS[self.distribution]


@dataclass(frozen=True)
class Fitted(DistributionFit):
    """A valid method-of-moments estimate."""

    is_fitted = True
    reason = None


@dataclass(frozen=True)
class Degenerate(DistributionFit):
    """The family is not identifiable from this sample.

    ``parameters`` holds neutral values so the family can still be drawn;
    they are not an estimate and the family is never accepted.
    """

    reason: str = ''
    is_fitted = False


@dataclass(frozen=True)
class Estimate:
    statistics: SampleStatistics
    fits: Dict[Distribution, DistributionFit]


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def _variance_ci(n, variance):
    df = n - 1
    upper_quantile = chi2_ppf(0.975, df)
    lower_quantile = chi2_ppf(0.025, df)
    if not (math.isfinite(upper_quantile) and math.isfinite(lower_quantile)
            and upper_quantile > 0 and lower_quantile > 0):
        return (None, None)
    return (df * variance / upper_quantile, df * variance / lower_quantile)


def fit_poisson(mean):
    if math.isfinite(mean) and mean > 0:
        return Fitted(Distribution.POISSON, {'lambda': mean})
    return Degenerate(Distribution.POISSON, {'lambda': max(mean, 0.0)},
                      reason='mean defect count is zero')


def fit_binomial(total_defects, total_items, n_batches):
    """
    Estimate Binomial parameters from pooled batch counts.

    p is the total-weighted defect rate, so larger batches weigh more; n is
    the representative trial count round(total_items / n_batches).
    """
    if total_items <= 0 or n_batches <= 0:
        return Degenerate(Distribution.BINOMIAL, {'n': 0, 'p': 0.0},
                          reason='batch sizes unavailable or zero')
    p = total_defects / total_items
    n = _round_half_up(total_items / n_batches)
    if n >= 1 and 0 < p < 1:
        return Fitted(Distribution.BINOMIAL, {'n': n, 'p': p})
    return Degenerate(Distribution.BINOMIAL, {'n': max(n, 0), 'p': min(max(p, 0.0), 1.0)},
                      reason=f'defect rate {p:.6g} is not strictly between 0 and 1')


def fit_negative_binomial(mean, variance):
    """
    Estimate Negative Binomial parameters by the method of moments.

    Only attempted when variance exceeds the mean by more than 10%; without
    overdispersion the family collapses towards Poisson and r is not
    identifiable. Parameters use mean = r(1-p)/p (see ``nbinom_library_p``).
    """
    neutral = {'r': mean if mean > 0 else 1.0, 'p': 0.5}
    if not variance > OVERDISPERSION_MARGIN * mean:
        return Degenerate(Distribution.NEGATIVE_BINOMIAL, neutral,
                          reason='no overdispersion (variance <= 1.1 * mean)')

    r = mean * mean / (variance - mean)
    p = mean / variance
    if math.isfinite(r) and r > 0 and math.isfinite(p) and 0 < p < 1:
        return Fitted(Distribution.NEGATIVE_BINOMIAL, {'r': r, 'p': p})
    return Degenerate(Distribution.NEGATIVE_BINOMIAL, neutral,
                      reason=f'method-of-moments estimate invalid (r={r:.6g}, p={p:.6g})')


def estimate(defects, totals=None):
    """
    Compute sample statistics and per-family estimates.

    Parameters:
    -----------
    defects : array-like of int
        Defect counts, one per batch (already outlier-filtered)
    totals : array-like of int, optional
        Batch sizes aligned with ``defects``; without them the Binomial is degenerate

    Returns:
    --------
    Estimate
        Statistics plus one DistributionFit per family

    Raises:
    -------
    DegenerateSampleError
        When the sample is empty or its moments are not finite
    """
    defects = np.asarray(defects, dtype=float)
    n = int(defects.size)
    if n == 0:
        raise DegenerateSampleError("cannot estimate moments of an empty sample")

    total_defects = float(np.sum(defects))
    mean = total_defects / n
    variance = float(np.sum((defects - mean) ** 2)) / max(n - 1, 1)
    if not (math.isfinite(mean) and math.isfinite(variance)):
        raise DegenerateSampleError(f"sample mean or variance is not finite (mean={mean}, variance={variance})")

    total_items = int(np.sum(totals)) if totals is not None else 0
    defect_rate = total_defects / total_items if total_items > 0 else 0.0
    std_error = math.sqrt(variance / n)

    statistics = SampleStatistics(
        n=n,
        mean=mean,
        variance=variance,
        std_dev=math.sqrt(variance),
        defect_rate=defect_rate,
        total_items=total_items,
        mean_ci=(mean - Z_95 * std_error, mean + Z_95 * std_error),
        variance_ci=_variance_ci(n, variance),
        has_overdispersion=variance > OVERDISPERSION_MARGIN * mean,
    )

    fits = {
        Distribution.POISSON: fit_poisson(mean),
        Distribution.BINOMIAL: fit_binomial(total_defects, total_items, n),
        Distribution.NEGATIVE_BINOMIAL: fit_negative_binomial(mean, variance),
    }

    log.info(
        "Sample statistics computed",
        extra={
            "n_samples": n,
            "mean": mean,
            "variance": variance,
            "defect_rate": defect_rate,
            "overdispersion_ratio": variance / mean if mean > 0 else None,
            "mean_ci": statistics.mean_ci,
            "variance_ci": statistics.variance_ci,
        },
    )
    for fit in fits.values():
        if not fit.is_fitted:
            log.warning(
                "Degenerate fit, using neutral parameters for display only",
                extra={"distribution": fit.distribution.value, "reason": fit.reason, "parameters": fit.parameters},
            )

    return Estimate(statistics=statistics, fits=fits)
