"""Best-distribution selection by p-value."""

from defectfit.distributions import Distribution
from defectfit.logging import get_logger

log = get_logger(__name__, component="selection")

_ORDER = {distribution: index for index, distribution in enumerate(Distribution)}


def _ranking_key(result):
    return (-result.p_value, result.chi_square, _ORDER[result.distribution])


def select_best(results):
    """
    Pick the family with the strongest statistical support.

    Among accepted results the highest p-value wins, ties going to the lower
    chi-square and then to the fixed order Poisson, Binomial, NegativeBinomial.
    If nothing is accepted the same ordering is applied to every result, so a
    best-effort candidate is always returned.

    Parameters:
    -----------
    results : dict or iterable
        ChiSquareResult per family

    Returns:
    --------
    Distribution
    """
    candidates = list(results.values()) if isinstance(results, dict) else list(results)
    if not candidates:
        raise ValueError("no chi-square results to select from")

    accepted = [r for r in candidates if r.is_accepted]
    pool = accepted or candidates
    best = min(pool, key=_ranking_key)

    log.info(
        "Best distribution selected",
        extra={
            "distribution": best.distribution.value,
            "p_value": best.p_value,
            "accepted_count": len(accepted),
            "fallback": not accepted,
        },
    )
    return best.distribution
