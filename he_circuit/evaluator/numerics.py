"""Norm helpers shared by the tracking and debugging evaluators."""

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

# Below this L2 norm both vectors are treated as zero
_ZERO_NORM = 2.0 ** -11


def linf_norm(values: np.ndarray) -> float:
    """Largest absolute value."""
    if values.size == 0:
        return 0.0
    return float(np.max(np.abs(values)))


def log2_linf(values: np.ndarray) -> float:
    """log2 of the largest absolute value; -inf for an all-zero vector."""
    norm = linf_norm(values)
    if norm == 0.0:
        return -math.inf
    return math.log2(norm)


def l2_norm(values: np.ndarray) -> float:
    return float(np.linalg.norm(values))


def diff2_norm(expected: np.ndarray, actual: np.ndarray) -> float:
    """
    Relative L2 distance between two vectors.

    Args:
        expected: Reference values
        actual: Values to compare

    Returns:
        ||expected - actual|| / ||expected||, the absolute distance when the
        reference is (almost) zero, or -1 when both vectors are (almost) zero.

    Raises:
        ValueError: If the vectors have different sizes.
    """
    expected = np.asarray(expected, dtype=np.float64).ravel()
    actual = np.asarray(actual, dtype=np.float64).ravel()
    if expected.size != actual.size:
        raise ValueError(
            f"Vectors have different sizes: {expected.size} != {actual.size}"
        )

    expected_norm = l2_norm(expected)
    actual_norm = l2_norm(actual)
    if expected_norm <= _ZERO_NORM and actual_norm <= _ZERO_NORM:
        return -1.0

    diff = l2_norm(expected - actual)
    if expected_norm <= _ZERO_NORM:
        logger.info(
            "Weird norm: expected vector is ~0 but actual has norm %g", actual_norm
        )
        return diff
    return diff / expected_norm
