"""
Tests for PlaintextEval and ScaleEstimator.
"""

import numpy as np
import pytest

from he_circuit.context import CKKSParams
from he_circuit.evaluator import (
    PlaintextEval,
    ScaleEstimator,
    ScaleInconsistencyError,
    ScaleOverflowError,
)


@pytest.fixture
def depth1_params():
    """One level with a 30-bit scale."""
    return CKKSParams.from_circuit(
        num_slots=256, multiplicative_depth=1, log_scale=30, standard_params=False
    )


def square_and_rescale(ev, x):
    x2 = ev.square(x)
    ev.relinearize_inplace(x2)
    ev.rescale_to_next_inplace(x2)
    return x2


# =============================================================================
# PLAINTEXT EVALUATION
# =============================================================================

class TestPlaintextEval:
    """Tests for the cleartext shadow evaluator."""

    def test_polynomial(self, small_params, rng):
        ev = PlaintextEval(small_params)
        values = rng.uniform(-2, 2, 256)
        x = ev.encrypt(values)

        x2 = square_and_rescale(ev, x)
        x_low = ev.mod_down_to(x, x2)
        result = ev.add_scalar(ev.sub(x2, x_low), 3.0)

        np.testing.assert_allclose(result.shadow, values ** 2 - values + 3.0)
        assert result.he_level == small_params.max_depth - 1
        assert ev.get_multiplicative_depth() == 1

    def test_max_log_plain(self, small_params):
        ev = PlaintextEval(small_params)
        x = ev.encrypt([4.0, -1.0])
        assert ev.get_exact_max_log_plain_val() == pytest.approx(2.0)

        ev.square(x)
        assert ev.get_exact_max_log_plain_val() == pytest.approx(4.0)

    def test_intermediate_values_count(self, small_params):
        ev = PlaintextEval(small_params)
        x = ev.encrypt([8.0])
        big = ev.multiply_scalar(x, 64.0)
        ev.multiply_scalar(big, 1.0 / 64.0)

        assert ev.get_exact_max_log_plain_val() == pytest.approx(9.0)

    def test_update_plaintext_max_val(self, small_params):
        ev = PlaintextEval(small_params)
        ev.encrypt([1.0])
        ev.update_plaintext_max_val(1024.0)

        assert ev.get_exact_max_log_plain_val() == pytest.approx(10.0)

    def test_zero_input(self, small_params):
        ev = PlaintextEval(small_params)
        ev.encrypt(np.zeros(4))

        assert ev.get_exact_max_log_plain_val() < -50

    def test_reset(self, small_params):
        ev = PlaintextEval(small_params)
        square_and_rescale(ev, ev.encrypt([4.0]))
        ev.reset()

        assert ev.get_exact_max_log_plain_val() < -50
        assert ev.get_multiplicative_depth() == 0


# =============================================================================
# SCALE ESTIMATION
# =============================================================================

class TestScaleEstimator:
    """Tests for the maximum scale estimate."""

    def test_unconstrained_circuit(self, small_params, rng):
        est = ScaleEstimator(small_params)
        square_and_rescale(est, est.encrypt(rng.uniform(-1, 1, 256)))

        assert est.get_estimated_max_log_scale() == pytest.approx(59.0)
        assert est.get_multiplicative_depth() == 1

    def test_bound_from_last_level(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        x = est.encrypt([16.0, -3.0])
        x2 = square_and_rescale(est, x)

        # 2^8 at scale^2 on level 1 leaves 59 - 8 bits
        assert est.get_estimated_max_log_scale() == pytest.approx(51.0)
        assert est.get_exact_max_log_plain_val() == pytest.approx(8.0)
        assert x2.he_level == 0

    def test_scale_tracking(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        x = est.encrypt([1.0])
        x2 = est.square(x)

        assert x2.scale == depth1_params.scale ** 2
        est.relinearize_inplace(x2)
        est.rescale_to_next_inplace(x2)
        assert x2.scale == pytest.approx(
            depth1_params.scale ** 2 / depth1_params.prime_at_level(1)
        )

    def test_mod_down_to_level_follows_nominal_chain(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        x = est.mod_down_to_level(est.encrypt([1.0]), 0)

        assert x.scale == pytest.approx(depth1_params.nominal_scale_at_level(0))

    def test_overflow(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        with pytest.raises(ScaleOverflowError, match="overflow imminent"):
            est.encrypt([2.0 ** 60])

    def test_mismatched_scales(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        x = est.encrypt([1.0])
        x2 = est.relinearize(est.square(x))

        with pytest.raises(ScaleInconsistencyError, match="scales do not match"):
            est.add(x2, x)

    def test_cubed_scale(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        x = est.encrypt([1.0])
        x2 = est.relinearize(est.square(x))

        with pytest.raises(ScaleInconsistencyError, match="base_scale"):
            est.multiply(x2, x)

    def test_update_plaintext_max_val_without_levels(self):
        params = CKKSParams.from_circuit(
            num_slots=256, multiplicative_depth=0, log_scale=30, standard_params=False
        )
        est = ScaleEstimator(params)
        est.update_plaintext_max_val(2.0 ** 10)

        assert est.get_estimated_max_log_scale() == pytest.approx(49.0)

    def test_security_budget(self):
        # 4096 slots: 218 - 120 bits for two levels
        params = CKKSParams.from_circuit(
            num_slots=4096, multiplicative_depth=2, log_scale=30, standard_params=False
        )
        est = ScaleEstimator(params)
        x = est.encrypt(np.full(4, 0.5))
        square_and_rescale(est, square_and_rescale(est, x))

        assert est.get_estimated_max_log_scale() == pytest.approx(49.0)

    def test_reset(self, depth1_params):
        est = ScaleEstimator(depth1_params)
        square_and_rescale(est, est.encrypt([16.0]))
        est.reset()

        assert est.get_estimated_max_log_scale() == pytest.approx(59.0)
        assert est.get_exact_max_log_plain_val() < -50
