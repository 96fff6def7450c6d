"""
End-to-end goodness-of-fit analysis of batch defect counts.

``run_analysis`` is a pure function of the records and the configuration:
identical inputs give equal ``AnalysisResult`` objects, and nothing is kept
between calls.
"""

import dataclasses
import math
import numbers
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from defectfit.binning import FrequencyTable, bin_frequencies
from defectfit.chisquare import ChiSquareResult, evaluate_fits
from defectfit.config import AnalysisConfig, validate_significance_level
from defectfit.distributions import Distribution
from defectfit.errors import EmptyDatasetError, InvalidRecordError
from defectfit.frequencies import build_expected, empirical_frequencies
from defectfit.logging import get_logger
from defectfit.moments import DistributionFit, SampleStatistics, estimate
from defectfit.outliers import kept_mask
from defectfit.selection import select_best

log = get_logger(__name__, component="pipeline")


@dataclass(frozen=True)
class BatchRecord:
    total: int
    defects: int


@dataclass(frozen=True)
class AnalysisResult:
    config: AnalysisConfig
    statistics: SampleStatistics
    fits: Dict[Distribution, DistributionFit]
    table: FrequencyTable
    results: Dict[Distribution, ChiSquareResult]
    best_distribution: Distribution
    best_fit: DistributionFit
    hypothesis_accepted: bool
    n_records: int
    n_filtered: int
    outlier_upper_bound: Optional[float]
    warnings: Tuple[str, ...] = ()

    @property
    def significance_level(self):
        return self.config.significance_level

    @property
    def best_result(self):
        return self.results[self.best_distribution]

    @property
    def outliers_removed(self):
        return self.n_records - self.n_filtered

    @property
    def bin_labels(self):
        return self.table.bin_labels


def _coerce_count(value, field, row):
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidRecordError(row, f"{field} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidRecordError(row, f"{field} is not finite")
    if value != int(value):
        raise InvalidRecordError(row, f"{field} must be a whole number, got {value}")
    if value < 0:
        raise InvalidRecordError(row, f"{field} is negative ({int(value)})")
    return int(value)


def validate_records(records):
    """
    Check and normalise raw records into BatchRecord instances.

    Accepts BatchRecord objects, mappings with 'total' and 'defects' keys, or
    (total, defects) pairs. Rows are numbered from 1 in error messages.

    Raises:
    -------
    EmptyDatasetError
        When there are no records
    InvalidRecordError
        On the first record that is not 0 <= defects <= total
    """
    if records is None or len(records) == 0:
        raise EmptyDatasetError()

    batches = []
    for row, record in enumerate(records, start=1):
        if isinstance(record, BatchRecord):
            total, defects = record.total, record.defects
        elif isinstance(record, Mapping):
            if 'total' not in record or 'defects' not in record:
                raise InvalidRecordError(row, "missing 'total' or 'defects'")
            total, defects = record['total'], record['defects']
        else:
            try:
                total, defects = record
            except (TypeError, ValueError) as exc:
                raise InvalidRecordError(row, f"expected (total, defects), got {record!r}") from exc
        total = _coerce_count(total, 'total', row)
        defects = _coerce_count(defects, 'defects', row)
        if defects > total:
            raise InvalidRecordError(row, f"defects ({defects}) exceed total ({total})")
        batches.append(BatchRecord(total=total, defects=defects))
    return batches


def _assemble(config, statistics, fits, table, n_records, n_filtered, upper_bound, warnings):
    results = evaluate_fits(table, fits, config.significance_level, config.min_expected_frequency)
    best = select_best(results)
    return AnalysisResult(
        config=config,
        statistics=statistics,
        fits=fits,
        table=table,
        results=results,
        best_distribution=best,
        best_fit=fits[best],
        hypothesis_accepted=results[best].is_accepted,
        n_records=n_records,
        n_filtered=n_filtered,
        outlier_upper_bound=upper_bound,
        warnings=tuple(warnings),
    )


def run_analysis(records, config=None):
    """
    Run the full fitting pipeline on a set of batch records.

    Parameters:
    -----------
    records : sequence
        Batch records (see ``validate_records``)
    config : AnalysisConfig, optional
        Significance level, outlier handling and binning settings

    Returns:
    --------
    AnalysisResult

    Raises:
    -------
    InputError
        When the records are empty or invalid, filtering leaves nothing,
        or the sample moments are not finite
    """
    config = config or AnalysisConfig()
    started = time.perf_counter()
    batches = validate_records(records)
    log.info(
        "Analysis started",
        extra={
            "n_samples": len(batches),
            "significance_level": config.significance_level,
            "include_outliers": config.include_outliers,
            "outlier_method": config.outlier_method,
        },
    )

    warnings = []
    if len(batches) < config.min_recommended_records:
        message = (
            f"only {len(batches)} records; at least {config.min_recommended_records} "
            f"are recommended for a reliable chi-square test"
        )
        warnings.append(message)
        log.warning(message, extra={"n_samples": len(batches)})

    totals = np.array([b.total for b in batches], dtype=np.int64)
    defects = np.array([b.defects for b in batches], dtype=np.int64)

    mask, upper_bound = kept_mask(defects, config.outlier_policy(), totals)
    kept_defects = defects[mask]
    kept_totals = totals[mask]

    estimated = estimate(kept_defects, kept_totals)
    sample_size = int(kept_defects.size)
    max_defects = int(kept_defects.max())
    observed = empirical_frequencies(kept_defects, max_defects)
    expected = build_expected(
        max_defects,
        estimated.fits,
        sample_size,
        totals=kept_totals,
        binomial_trials=config.binomial_trials,
    )
    table = bin_frequencies(observed, expected, config.min_expected_frequency, config.min_bins)

    result = _assemble(
        config,
        estimated.statistics,
        estimated.fits,
        table,
        n_records=len(batches),
        n_filtered=sample_size,
        upper_bound=upper_bound,
        warnings=warnings,
    )
    log.info(
        "Analysis finished",
        extra={
            "distribution": result.best_distribution.value,
            "hypothesis_accepted": result.hypothesis_accepted,
            "duration_ms": round((time.perf_counter() - started) * 1000, 3),
        },
    )
    return result


def reevaluate(result, significance_level):
    """
    Re-test an existing analysis at a new significance level.

    Fits and bins are reused as they are; only the chi-square decisions and
    the selection are recomputed.
    """
    significance_level = validate_significance_level(significance_level)
    config = dataclasses.replace(result.config, significance_level=significance_level)
    return _assemble(
        config,
        result.statistics,
        result.fits,
        result.table,
        n_records=result.n_records,
        n_filtered=result.n_filtered,
        upper_bound=result.outlier_upper_bound,
        warnings=result.warnings,
    )
