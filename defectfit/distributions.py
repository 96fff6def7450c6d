"""
Candidate distribution families and the scipy primitives behind them.
"""

from enum import Enum

import numpy as np
from scipy import stats


class Distribution(str, Enum):
    """The three discrete families compared by the goodness-of-fit test.

    Declaration order is the fixed tie-break order used by the selector.
    """

    POISSON = 'Poisson'
    BINOMIAL = 'Binomial'
    NEGATIVE_BINOMIAL = 'NegativeBinomial'

    @property
    def num_params(self):
        return NUM_PARAMS[self]

    @property
    def label(self):
        return DISPLAY_NAMES[self]


# Estimated parameters per family, subtracted from the chi-square degrees of freedom.
# Negative Binomial estimates both r and p from the data.
NUM_PARAMS = {
    Distribution.POISSON: 1,
    Distribution.BINOMIAL: 2,
    Distribution.NEGATIVE_BINOMIAL: 2,
}

DISPLAY_NAMES = {
    Distribution.POISSON: 'Poisson',
    Distribution.BINOMIAL: 'Binomial',
    Distribution.NEGATIVE_BINOMIAL: 'Negative Binomial',
}

PARAM_NAMES = {
    Distribution.POISSON: ['lambda'],
    Distribution.BINOMIAL: ['n', 'p'],
    Distribution.NEGATIVE_BINOMIAL: ['r', 'p'],
}

def check_parameter_tables(num_params=NUM_PARAMS, param_names=PARAM_NAMES):
    """Raise RuntimeError unless every family has a parameter count and names to match."""
    for distribution in Distribution:
        if distribution not in num_params or distribution not in param_names:
            raise RuntimeError(f"no parameter table entry for {distribution.value}")
        if len(param_names[distribution]) != num_params[distribution]:
            raise RuntimeError(f"parameter names and count disagree for {distribution.value}")


check_parameter_tables()


def nbinom_library_p(p):
    """
    Convert the stored Negative Binomial probability to scipy's ``nbinom`` argument.

    Parameters are stored so that mean = r(1-p)/p and variance = r(1-p)/p^2,
    i.e. p is the per-trial success probability and k counts failures before
    the r-th success. ``scipy.stats.nbinom(n=r, p=p)`` uses the same
    convention, so the value passes through unchanged. Libraries that take
    the failure probability instead need ``1 - p`` here.

    Parameters:
    -----------
    p : float
        Success probability in the stored convention, 0 < p < 1

    Returns:
    --------
    float
        Probability argument for ``scipy.stats.nbinom``
    """
    return p


def clip_probabilities(values):
    """Replace NaN, infinite and negative probabilities with zero."""
    values = np.asarray(values, dtype=float)
    return np.where(np.isfinite(values) & (values >= 0), values, 0.0)


def pmf(distribution, k, parameters):
    """
    Evaluate the probability mass function of a family at ``k``.

    Parameters:
    -----------
    distribution : Distribution
        Family to evaluate
    k : array-like of int
        Support points
    parameters : dict
        Parameter values keyed as in PARAM_NAMES

    Returns:
    --------
    numpy array
        Probabilities, with malformed values clipped to zero
    """
    k = np.asarray(k)
    with np.errstate(all='ignore'):
        if distribution is Distribution.POISSON:
            values = stats.poisson.pmf(k, parameters['lambda'])
        elif distribution is Distribution.BINOMIAL:
            values = stats.binom.pmf(k, int(parameters['n']), parameters['p'])
        elif distribution is Distribution.NEGATIVE_BINOMIAL:
            values = stats.nbinom.pmf(k, parameters['r'], nbinom_library_p(parameters['p']))
        else:
            raise ValueError(f"Unknown distribution: {distribution}")
    return clip_probabilities(values)


def cdf(distribution, k, parameters):
    """Cumulative distribution function, clipped like ``pmf``."""
    k = np.asarray(k)
    with np.errstate(all='ignore'):
        if distribution is Distribution.POISSON:
            values = stats.poisson.cdf(k, parameters['lambda'])
        elif distribution is Distribution.BINOMIAL:
            values = stats.binom.cdf(k, int(parameters['n']), parameters['p'])
        elif distribution is Distribution.NEGATIVE_BINOMIAL:
            values = stats.nbinom.cdf(k, parameters['r'], nbinom_library_p(parameters['p']))
        else:
            raise ValueError(f"Unknown distribution: {distribution}")
    return clip_probabilities(values)


def chi2_ppf(q, df):
    """Chi-square quantile; NaN when undefined (df <= 0)."""
    if df <= 0:
        return float('nan')
    return float(stats.chi2.ppf(q, df))


def chi2_sf(x, df):
    """Chi-square survival function, 1 - CDF."""
    return float(stats.chi2.sf(x, df))


def format_params(distribution, parameters):
    """
    Format distribution parameters for display.

    Parameters:
    -----------
    distribution : Distribution
        Family the parameters belong to
    parameters : dict
        Parameter values

    Returns:
    --------
    formatted : str
        Formatted parameter string
    """
    if distribution is Distribution.POISSON:
        return f"λ={parameters['lambda']:.4f}"
    elif distribution is Distribution.BINOMIAL:
        return f"n={int(parameters['n'])}, p={parameters['p']:.6f}"
    elif distribution is Distribution.NEGATIVE_BINOMIAL:
        return f"r={parameters['r']:.4f}, p={parameters['p']:.4f}"
    else:
        return str(parameters)
