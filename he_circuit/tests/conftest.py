"""Shared fixtures for he_circuit tests."""

import numpy as np
import pytest

from he_circuit.context import CKKSParams


@pytest.fixture
def small_params():
    """256 slots, three levels, 40-bit scale. Not secure; fast to simulate."""
    return CKKSParams(
        poly_modulus_degree=512,
        coeff_modulus_bits=(60, 40, 40, 40, 60),
        scale_bits=40,
        standard_params=False,
    )


@pytest.fixture
def standard_params():
    """Secure parameters: 4096 slots, depth 2, 40-bit scale."""
    return CKKSParams.from_circuit(num_slots=4096, multiplicative_depth=2, log_scale=40)


@pytest.fixture
def rng():
    return np.random.default_rng(42)
