"""Small statistics helpers shared by the forecaster, the miner and the affinity analyzers."""

from collections.abc import Sequence

import numpy as np


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0); 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=0))


def coefficient_of_variation(values: Sequence[float], zero_mean_value: float = 1.0) -> float:
    """
    std / mean of the values.

    A zero (or empty) mean has no meaningful spread ratio, so
    zero_mean_value is returned instead of dividing by zero.
    """
    avg = mean(values)
    if avg <= 0:
        return zero_mean_value
    return population_std(values) / avg


def pearson_correlation(a: Sequence[float], b: Sequence[float]) -> float | None:
    """
    Pearson correlation coefficient of two equal-length series.

    Returns None when either series has zero variance (or fewer than two
    points), since the coefficient is undefined there.
    """
    if len(a) != len(b):
        raise ValueError(f"Series lengths differ: {len(a)} != {len(b)}")
    if len(a) < 2:
        return None

    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    std_x = np.std(x)
    std_y = np.std(y)
    if std_x == 0 or std_y == 0:
        return None

    covariance = np.mean((x - x.mean()) * (y - y.mean()))
    return float(np.clip(covariance / (std_x * std_y), -1.0, 1.0))
