from __future__ import annotations

import math

import pytest

from defectfit.binning import FrequencyTable
from defectfit.chisquare import evaluate, evaluate_fits
from defectfit.distributions import Distribution
from defectfit.errors import ConfigValidationError
from defectfit.moments import Degenerate, Fitted


def test_perfect_fit_is_accepted():
    result = evaluate([10, 20, 30, 40], [10.0, 20.0, 30.0, 40.0], 1, 0.05, Distribution.POISSON)
    assert result.chi_square == 0.0
    assert result.valid_bins == 4
    assert result.degrees_of_freedom == 2
    assert result.critical_value == pytest.approx(5.991, abs=1e-3)
    assert result.p_value == pytest.approx(1.0)
    assert result.is_accepted
    assert result.below_critical


def test_poor_fit_is_rejected():
    result = evaluate([40, 10, 10, 40], [25.0, 25.0, 25.0, 25.0], 1, 0.05, Distribution.POISSON)
    assert result.chi_square == pytest.approx(36.0)
    assert result.p_value < 1e-6
    assert not result.is_accepted
    assert not result.below_critical


def test_bins_below_minimum_are_excluded():
    result = evaluate([0, 10, 20, 30], [0.5, 10.0, 20.0, 30.0], 1, 0.05, Distribution.POISSON)
    assert result.valid_bins == 3
    assert result.degrees_of_freedom == 1
    assert result.chi_square == 0.0


def test_insufficient_valid_bins_rejects_family():
    result = evaluate([1, 2, 3], [1.0, 2.0, 100.0], 1, 0.05, Distribution.POISSON)
    assert math.isinf(result.chi_square)
    assert result.valid_bins == 1
    assert result.degrees_of_freedom == 0
    assert result.critical_value is None
    assert result.p_value == 0.0
    assert not result.is_accepted
    assert not result.is_testable
    assert "only 1 bins" in result.reason


def test_two_parameter_family_needs_four_valid_bins():
    result = evaluate([10, 20, 30], [10.0, 20.0, 30.0], 2, 0.05, Distribution.BINOMIAL)
    assert not result.is_accepted
    assert math.isinf(result.chi_square)


def test_significance_level_changes_only_the_decision():
    strict = evaluate([18, 32, 25, 25], [25.0, 25.0, 25.0, 25.0], 1, 0.01, Distribution.POISSON)
    loose = evaluate([18, 32, 25, 25], [25.0, 25.0, 25.0, 25.0], 1, 0.20, Distribution.POISSON)
    assert strict.chi_square == loose.chi_square
    assert strict.p_value == loose.p_value
    assert strict.critical_value > loose.critical_value
    # chi-square 3.92 on 2 df, p = 0.141
    assert strict.is_accepted
    assert not loose.is_accepted


def test_mismatched_lengths_raise():
    with pytest.raises(ValueError):
        evaluate([1, 2], [1.0, 2.0, 3.0], 1, 0.05, Distribution.POISSON)


@pytest.mark.parametrize("alpha", [0.0, 1.0, -0.1, 1.5])
def test_invalid_significance_level(alpha):
    with pytest.raises(ConfigValidationError):
        evaluate([10, 20, 30], [10.0, 20.0, 30.0], 1, alpha, Distribution.POISSON)


def test_evaluate_fits_rejects_degenerate_families():
    table = FrequencyTable(
        bin_bounds=((0, 0), (1, 1), (2, 2), (3, 5)),
        bin_labels=("0", "1", "2", "3-5"),
        observed=(10, 20, 30, 40),
        expected={d: (10.0, 20.0, 30.0, 40.0) for d in Distribution},
    )
    fits = {
        Distribution.POISSON: Fitted(Distribution.POISSON, {'lambda': 2.0}),
        Distribution.BINOMIAL: Fitted(Distribution.BINOMIAL, {'n': 10, 'p': 0.2}),
        Distribution.NEGATIVE_BINOMIAL: Degenerate(
            Distribution.NEGATIVE_BINOMIAL, {'r': 2.0, 'p': 0.5}, reason='no overdispersion'
        ),
    }
    results = evaluate_fits(table, fits, 0.05)
    assert list(results) == list(Distribution)
    assert results[Distribution.POISSON].is_accepted
    assert results[Distribution.BINOMIAL].degrees_of_freedom == 1
    nb = results[Distribution.NEGATIVE_BINOMIAL]
    assert not nb.is_accepted
    assert nb.reason == "degenerate fit: no overdispersion"
