from __future__ import annotations

import numpy as np
import pytest
from scipy import stats

from defectfit.config import AnalysisConfig
from defectfit.pipeline import BatchRecord


def quantile_sample(dist, n):
    """Deterministic sample whose empirical distribution tracks ``dist`` closely."""
    u = (np.arange(n) + 0.5) / n
    return dist.ppf(u).astype(int)


@pytest.fixture
def clean_poisson_records() -> list[BatchRecord]:
    # 50 batches of 100 items, mean 5.02 and variance 5.0
    defects = quantile_sample(stats.poisson(5), 50)
    return [BatchRecord(total=100, defects=int(d)) for d in defects]


@pytest.fixture
def overdispersed_records() -> list[BatchRecord]:
    # Negative Binomial with mean 5 and variance 15
    defects = quantile_sample(stats.nbinom(2.5, 1 / 3), 200)
    return [BatchRecord(total=100, defects=int(d)) for d in defects]


@pytest.fixture
def keep_all() -> AnalysisConfig:
    return AnalysisConfig(include_outliers=True)
