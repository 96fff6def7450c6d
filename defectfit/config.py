"""
Analysis settings shared by the pipeline and the dashboard.
"""

from dataclasses import dataclass

from defectfit.distributions import Distribution
from defectfit.errors import ConfigValidationError
from defectfit.outliers import IQRPolicy, TailProbabilityPolicy

DEFAULT_SIGNIFICANCE_LEVEL = 0.05
SIGNIFICANCE_UI_RANGE = (0.001, 0.20)
DEFAULT_IQR_MULTIPLIER = 1.5
DEFAULT_TAIL_PROBABILITY = 0.001
MIN_EXPECTED_FREQUENCY = 5.0
MIN_BINS = 3
MIN_RECOMMENDED_RECORDS = 30
MAX_HISTORY_ENTRIES = 100

OUTLIER_METHODS = ('iqr', 'tail')
BINOMIAL_TRIAL_MODES = ('representative', 'per_batch')


@dataclass(frozen=True)
class AnalysisConfig:
    """Inputs that, together with the records, fully determine an analysis run."""

    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL
    include_outliers: bool = False
    outlier_method: str = 'iqr'
    outlier_threshold: float = DEFAULT_IQR_MULTIPLIER
    tail_probability: float = DEFAULT_TAIL_PROBABILITY
    tail_distribution: Distribution = Distribution.BINOMIAL
    tail_max_iterations: int = 100
    min_expected_frequency: float = MIN_EXPECTED_FREQUENCY
    min_bins: int = MIN_BINS
    binomial_trials: str = 'representative'
    min_recommended_records: int = MIN_RECOMMENDED_RECORDS

    def __post_init__(self):
        validate_significance_level(self.significance_level)
        if self.outlier_method not in OUTLIER_METHODS:
            raise ConfigValidationError(
                f"outlier_method must be one of {OUTLIER_METHODS}, got {self.outlier_method!r}"
            )
        if not self.outlier_threshold > 0:
            raise ConfigValidationError(f"outlier_threshold must be positive, got {self.outlier_threshold}")
        if not 0 < self.tail_probability < 1:
            raise ConfigValidationError(f"tail_probability must lie in (0, 1), got {self.tail_probability}")
        if not isinstance(self.tail_distribution, Distribution):
            raise ConfigValidationError(f"tail_distribution must be a Distribution, got {self.tail_distribution!r}")
        if self.tail_max_iterations < 1:
            raise ConfigValidationError("tail_max_iterations must be at least 1")
        if not self.min_expected_frequency > 0:
            raise ConfigValidationError("min_expected_frequency must be positive")
        if self.min_bins < 1:
            raise ConfigValidationError("min_bins must be at least 1")
        if self.binomial_trials not in BINOMIAL_TRIAL_MODES:
            raise ConfigValidationError(
                f"binomial_trials must be one of {BINOMIAL_TRIAL_MODES}, got {self.binomial_trials!r}"
            )

    def outlier_policy(self):
        """Build the configured outlier policy, or None when outliers are kept."""
        if self.include_outliers:
            return None
        if self.outlier_method == 'tail':
            return TailProbabilityPolicy(
                tail_probability=self.tail_probability,
                distribution=self.tail_distribution,
                max_iterations=self.tail_max_iterations,
            )
        return IQRPolicy(multiplier=self.outlier_threshold)


def validate_significance_level(value):
    if not isinstance(value, (int, float)) or not 0 < value < 1:
        raise ConfigValidationError(f"significance_level must lie in (0, 1), got {value!r}")
    return float(value)
