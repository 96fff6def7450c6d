from __future__ import annotations

import math

import numpy as np
import pytest
from scipy import stats

from defectfit.config import AnalysisConfig
from defectfit.distributions import Distribution
from defectfit.errors import (
    ConfigValidationError,
    EmptyDatasetError,
    EmptySampleError,
    InputError,
    InvalidRecordError,
)
from defectfit.moments import Fitted
from defectfit.outliers import TailProbabilityPolicy
from defectfit.pipeline import BatchRecord, reevaluate, run_analysis, validate_records


def _check_invariants(result):
    table = result.table
    assert sum(table.observed) == result.n_filtered
    assert len(table.bin_labels) == len(table.observed)
    assert table.bin_bounds[0][0] == 0
    for (_, end), (start, _) in zip(table.bin_bounds, table.bin_bounds[1:]):
        assert start == end + 1
    for res in result.results.values():
        assert res.chi_square >= 0
        assert 0.0 <= res.p_value <= 1.0
        if res.is_testable:
            assert res.degrees_of_freedom >= 1
            assert res.critical_value > 0


def test_clean_poisson_fit(clean_poisson_records, keep_all):
    result = run_analysis(clean_poisson_records, keep_all)

    assert result.statistics.mean == pytest.approx(5.02)
    assert result.statistics.variance == pytest.approx(5.0, abs=0.01)
    assert not result.statistics.has_overdispersion

    poisson = result.results[Distribution.POISSON]
    assert poisson.is_accepted
    assert poisson.p_value >= 0.05
    assert result.hypothesis_accepted
    assert result.best_distribution in (Distribution.POISSON, Distribution.BINOMIAL)

    nb_fit = result.fits[Distribution.NEGATIVE_BINOMIAL]
    assert not nb_fit.is_fitted
    assert nb_fit.parameters == {'r': pytest.approx(5.02), 'p': 0.5}
    assert not result.results[Distribution.NEGATIVE_BINOMIAL].is_accepted
    _check_invariants(result)


def test_overdispersed_data_prefers_negative_binomial(overdispersed_records, keep_all):
    result = run_analysis(overdispersed_records, keep_all)

    assert result.statistics.has_overdispersion
    nb_fit = result.fits[Distribution.NEGATIVE_BINOMIAL]
    assert nb_fit.is_fitted
    assert nb_fit.parameters['r'] > 0
    assert 0 < nb_fit.parameters['p'] < 1

    nb = result.results[Distribution.NEGATIVE_BINOMIAL]
    assert nb.chi_square < result.results[Distribution.POISSON].chi_square
    assert result.best_distribution is Distribution.NEGATIVE_BINOMIAL
    _check_invariants(result)


def test_zero_variance_input_completes():
    records = [BatchRecord(total=10, defects=0)] * 40
    result = run_analysis(records)

    assert result.statistics.variance == 0.0
    assert all(not fit.is_fitted for fit in result.fits.values())
    assert result.fits[Distribution.NEGATIVE_BINOMIAL].parameters == {'r': 1.0, 'p': 0.5}
    assert not result.hypothesis_accepted
    assert result.best_distribution is Distribution.POISSON
    assert all(math.isinf(r.chi_square) for r in result.results.values())
    _check_invariants(result)


def test_every_value_filtered_raises(monkeypatch):
    policy = TailProbabilityPolicy(reference=Fitted(Distribution.POISSON, {'lambda': 0.5}))
    monkeypatch.setattr(AnalysisConfig, "outlier_policy", lambda self: policy)
    records = [BatchRecord(total=100, defects=d) for d in range(10, 50)]

    with pytest.raises(EmptySampleError, match="sample empty after outlier filtering"):
        run_analysis(records)


def test_two_distinct_values_still_get_three_bins(keep_all):
    records = [BatchRecord(total=100, defects=d) for d in [0] * 5 + [4] * 5]
    result = run_analysis(records, keep_all)

    assert len(result.table) >= 3
    assert result.bin_labels == ("0-1", "2-3", "4")
    assert result.warnings
    _check_invariants(result)


def test_iqr_filter_removes_extreme_batch():
    records = [BatchRecord(total=100, defects=d) for d in [3, 4, 5, 5, 6, 4, 5, 6, 4, 5] * 4]
    records.append(BatchRecord(total=100, defects=60))
    result = run_analysis(records)

    assert result.n_records == 41
    assert result.n_filtered == 40
    assert result.outliers_removed == 1
    assert result.outlier_upper_bound < 60
    assert result.table.bin_bounds[-1][1] == 6


def test_tail_filter_keeps_high_mean_binomial_sample():
    defects = stats.binom.ppf((np.arange(200) + 0.5) / 200, 10000, 0.012).astype(int)
    records = [BatchRecord(total=10000, defects=int(d)) for d in defects]
    result = run_analysis(records, AnalysisConfig(outlier_method='tail'))

    assert result.outlier_upper_bound > 140
    assert result.n_filtered >= 198
    assert result.statistics.mean > 100


def test_results_are_deterministic(overdispersed_records):
    assert run_analysis(overdispersed_records) == run_analysis(list(overdispersed_records))


def test_reevaluate_keeps_bins_and_statistics(clean_poisson_records, keep_all):
    first = run_analysis(clean_poisson_records, keep_all)
    second = reevaluate(first, 0.2)

    assert second.table == first.table
    assert second.fits == first.fits
    assert second.significance_level == 0.2
    for distribution in Distribution:
        before = first.results[distribution]
        after = second.results[distribution]
        assert after.chi_square == before.chi_square
        assert after.p_value == before.p_value
        if before.is_testable:
            assert after.critical_value < before.critical_value
            assert after.is_accepted == (after.p_value >= 0.2)

    fresh = run_analysis(clean_poisson_records, AnalysisConfig(include_outliers=True, significance_level=0.2))
    assert second == fresh


def test_reevaluate_rejects_invalid_level(clean_poisson_records):
    result = run_analysis(clean_poisson_records)
    with pytest.raises(ConfigValidationError):
        reevaluate(result, 1.5)


def test_small_sample_warns_but_runs():
    records = [BatchRecord(total=50, defects=d) for d in [1, 2, 3, 2, 1, 4, 2, 3]]
    result = run_analysis(records)
    assert any("recommended" in w for w in result.warnings)


def test_per_batch_binomial_mode():
    rng = np.random.default_rng(7)
    totals = rng.integers(80, 160, size=60)
    records = [BatchRecord(total=int(t), defects=int(rng.binomial(t, 0.04))) for t in totals]
    representative = run_analysis(records)
    per_batch = run_analysis(records, AnalysisConfig(binomial_trials='per_batch'))

    assert per_batch.fits == representative.fits
    assert per_batch.config.binomial_trials == 'per_batch'
    assert per_batch.table.expected[Distribution.BINOMIAL] != representative.table.expected[Distribution.BINOMIAL]
    _check_invariants(per_batch)


def test_validate_records_accepts_several_shapes():
    batches = validate_records([BatchRecord(10, 1), {'total': 12, 'defects': 0}, (8.0, 2.0)])
    assert batches == [BatchRecord(10, 1), BatchRecord(12, 0), BatchRecord(8, 2)]


def test_empty_records_rejected():
    with pytest.raises(EmptyDatasetError):
        run_analysis([])


@pytest.mark.parametrize(
    "bad, reason",
    [
        ((10, 11), "exceed total"),
        ((10, -1), "negative"),
        ((10, 1.5), "whole number"),
        ((float("nan"), 1), "not finite"),
        ((True, 1), "must be a number"),
        ({'total': 10}, "missing"),
    ],
)
def test_invalid_record_names_row(bad, reason):
    with pytest.raises(InvalidRecordError) as excinfo:
        validate_records([(10, 1), bad])
    assert excinfo.value.row == 2
    assert reason in str(excinfo.value)
    assert isinstance(excinfo.value, InputError)
