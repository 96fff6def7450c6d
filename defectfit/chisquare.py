"""
Pearson chi-square goodness-of-fit evaluation per candidate family.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from defectfit.config import MIN_EXPECTED_FREQUENCY, validate_significance_level
from defectfit.distributions import Distribution, chi2_ppf, chi2_sf
from defectfit.logging import get_logger

log = get_logger(__name__, component="chisquare")


@dataclass(frozen=True)
class ChiSquareResult:
    distribution: Distribution
    chi_square: float
    valid_bins: int
    degrees_of_freedom: int
    critical_value: Optional[float]
    p_value: float
    is_accepted: bool
    below_critical: bool
    significance_level: float
    reason: Optional[str] = None

    @property
    def is_testable(self):
        return self.degrees_of_freedom > 0


def rejected_result(distribution, significance_level, reason, valid_bins=0):
    """Result for a family that cannot be tested; it is never accepted."""
    return ChiSquareResult(
        distribution=distribution,
        chi_square=math.inf,
        valid_bins=valid_bins,
        degrees_of_freedom=0,
        critical_value=None,
        p_value=0.0,
        is_accepted=False,
        below_critical=False,
        significance_level=significance_level,
        reason=reason,
    )


def evaluate(observed, expected, num_params, significance_level, distribution,
             min_expected=MIN_EXPECTED_FREQUENCY):
    """
    Compute the chi-square statistic and test decision for one family.

    Bins whose expected frequency is below ``min_expected`` are left out of
    both the statistic and the valid-bin count.

    Parameters:
    -----------
    observed : array-like
        Observed counts per bin
    expected : array-like
        Expected counts per bin, aligned with observed
    num_params : int
        Number of parameters estimated from the data
    significance_level : float
        Test level alpha, 0 < alpha < 1
    distribution : Distribution
        Family being tested, carried into the result

    Returns:
    --------
    ChiSquareResult
    """
    significance_level = validate_significance_level(significance_level)
    observed = np.asarray(observed, dtype=float)
    expected = np.asarray(expected, dtype=float)
    if observed.shape != expected.shape:
        raise ValueError(f"observed and expected differ in length: {observed.size} != {expected.size}")

    with np.errstate(invalid='ignore'):
        valid = np.isfinite(expected) & (expected >= min_expected) & np.isfinite(observed)
    valid_bins = int(valid.sum())
    required = num_params + 2
    if valid_bins < required:
        log.warning(
            "Insufficient valid bins for chi-square test",
            extra={"distribution": distribution.value, "valid_bins": valid_bins, "required": required},
        )
        return rejected_result(
            distribution, significance_level,
            reason=f"only {valid_bins} bins with expected frequency >= {min_expected:g}, need {required}",
            valid_bins=valid_bins,
        )

    o = observed[valid]
    e = expected[valid]
    chi_square = float(np.sum((o - e) ** 2 / e))
    if not math.isfinite(chi_square) or chi_square < 0:
        return rejected_result(distribution, significance_level, reason='chi-square statistic is not finite',
                               valid_bins=valid_bins)

    degrees_of_freedom = max(valid_bins - 1 - num_params, 1)
    critical_value = chi2_ppf(1 - significance_level, degrees_of_freedom)
    p_value = min(max(chi2_sf(chi_square, degrees_of_freedom), 0.0), 1.0)
    is_accepted = p_value >= significance_level
    below_critical = chi_square < critical_value

    if is_accepted != below_critical:
        log.warning(
            "p-value and critical-value checks disagree, using the p-value",
            extra={
                "distribution": distribution.value,
                "chi_square": chi_square,
                "critical_value": critical_value,
                "p_value": p_value,
            },
        )

    log.info(
        "Chi-square evaluated",
        extra={
            "distribution": distribution.value,
            "chi_square": chi_square,
            "valid_bins": valid_bins,
            "degrees_of_freedom": degrees_of_freedom,
            "critical_value": critical_value,
            "p_value": p_value,
            "is_accepted": is_accepted,
        },
    )
    return ChiSquareResult(
        distribution=distribution,
        chi_square=chi_square,
        valid_bins=valid_bins,
        degrees_of_freedom=degrees_of_freedom,
        critical_value=critical_value,
        p_value=p_value,
        is_accepted=is_accepted,
        below_critical=below_critical,
        significance_level=significance_level,
    )


def evaluate_fits(table, fits, significance_level, min_expected=MIN_EXPECTED_FREQUENCY):
    """Evaluate every family against a FrequencyTable; degenerate fits are rejected outright."""
    results = {}
    for distribution in Distribution:
        fit = fits[distribution]
        if not fit.is_fitted:
            results[distribution] = rejected_result(
                distribution, significance_level, reason=f"degenerate fit: {fit.reason}"
            )
            continue
        results[distribution] = evaluate(
            table.observed,
            table.expected[distribution],
            fit.num_params,
            significance_level,
            distribution,
            min_expected=min_expected,
        )
    return results
