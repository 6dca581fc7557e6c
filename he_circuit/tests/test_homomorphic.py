"""
Tests for HomomorphicEval and DebugEval on the simulation backend.
"""

import dataclasses
import logging

import numpy as np
import pytest

from he_circuit.backend import BackendType, create_backend
from he_circuit.context import CKKSParams
from he_circuit.evaluator import (
    BackendError,
    DebugEval,
    DivergenceError,
    HomomorphicEval,
    InvalidArgumentError,
    LevelMismatchError,
    PlaintextEval,
    ScaleInconsistencyError,
)


@pytest.fixture
def he(small_params):
    return HomomorphicEval(small_params, BackendType.SIMULATION, seed=1)


@pytest.fixture
def values(rng):
    return rng.uniform(-1, 1, 256)


def poly(ev, x):
    """0.5 * x^3 - x + 0.25, two levels deep."""
    x2 = ev.square(x)
    ev.relinearize_inplace(x2)
    ev.rescale_to_next_inplace(x2)

    half_x = ev.multiply_scalar(x, 0.5)
    ev.rescale_to_next_inplace(half_x)

    x3 = ev.multiply(x2, half_x)
    ev.relinearize_inplace(x3)
    ev.rescale_to_next_inplace(x3)

    x_low = ev.mod_down_to(x, x3)
    return ev.add_scalar(ev.sub(x3, x_low), 0.25)


# =============================================================================
# HOMOMORPHIC EVALUATION
# =============================================================================

class TestHomomorphicEval:
    """Tests for encrypted execution."""

    def test_encrypt_decrypt(self, he, values):
        ct = he.encrypt(values)

        assert ct.native is not None
        assert ct.shadow is None
        np.testing.assert_allclose(he.decrypt(ct), values, atol=1e-6)

    def test_decrypt_value(self, he, rng):
        mat = rng.uniform(-1, 1, (16, 16))
        np.testing.assert_allclose(he.decrypt_value(he.encrypt_matrix(mat)), mat, atol=1e-6)

        vec = rng.uniform(-1, 1, 32)
        col = he.encrypt_col_vector(vec, height=8)
        np.testing.assert_allclose(he.decrypt_value(col), vec, atol=1e-6)

    def test_polynomial_matches_plaintext(self, he, small_params, values):
        pt = PlaintextEval(small_params)
        expected = poly(pt, pt.encrypt(values))
        result = poly(he, he.encrypt(values))

        assert result.he_level == small_params.max_depth - 2
        np.testing.assert_allclose(he.decrypt(result), expected.shadow, atol=1e-5)
        np.testing.assert_allclose(he.decrypt(result), 0.5 * values ** 3 - values + 0.25, atol=1e-5)

    def test_handles_track_native_metadata(self, he, small_params, values):
        x = he.encrypt(values)
        x2 = he.rescale_to_next(he.relinearize(he.square(x)))

        assert x2.he_level == x2.native.level == 2
        assert x2.scale == x2.native.scale
        assert x2.scale == pytest.approx(small_params.nominal_scale_at_level(2))

    def test_encrypt_at_lower_level(self, he, small_params, values):
        ct = he.encrypt(values, level=1)

        assert ct.native.level == 1
        assert ct.scale == pytest.approx(small_params.nominal_scale_at_level(1))
        np.testing.assert_allclose(he.decrypt(ct), values, atol=1e-6)

    def test_mod_down_follows_nominal_chain(self, he, small_params, values):
        ct = he.mod_down_to_level(he.encrypt(values), 0)

        assert ct.he_level == 0
        assert ct.scale == pytest.approx(small_params.nominal_scale_at_level(0))
        np.testing.assert_allclose(he.decrypt(ct), values, atol=1e-6)
        assert he.counters.rescales == 3

    def test_multiply_scalar_zero(self, he, small_params, values):
        ct = he.encrypt(values)
        zero = he.multiply_scalar(ct, 0.0)

        assert zero.he_level == ct.he_level
        assert zero.scale == pytest.approx(small_params.scale ** 2)
        np.testing.assert_allclose(he.decrypt(zero), 0.0, atol=1e-6)

        # The zero ciphertext still combines with regular products
        product = he.multiply_scalar(ct, 2.0)
        np.testing.assert_allclose(he.decrypt(he.add(zero, product)), 2 * values, atol=1e-6)

    def test_rotations(self, he, values):
        ct = he.encrypt(values)

        np.testing.assert_allclose(he.decrypt(he.rotate_left(ct, 3)), np.roll(values, -3), atol=1e-6)
        np.testing.assert_allclose(he.decrypt(he.rotate_right(ct, 3)), np.roll(values, 3), atol=1e-6)

    def test_counters(self, he, values):
        ct = he.encrypt(values)
        he.rotate_left(ct, 1)
        he.rescale_to_next(he.relinearize(he.square(ct)))
        he.add(ct, ct)

        counters = he.counters
        assert counters.encryptions == 1
        assert counters.rotations == 1
        assert counters.multiplications == 1
        assert counters.relinearizations == 1
        assert counters.rescales == 1
        assert counters.additions == 1

    def test_level_mismatch(self, he, values):
        with pytest.raises(LevelMismatchError):
            he.add(he.encrypt(values), he.encrypt(values, level=2))

    def test_backend_failure_is_wrapped(self, he, values):
        ct = he.encrypt(values, level=0)
        with pytest.raises(BackendError, match="scale out of bounds"):
            he.square(ct)

    def test_decrypt_requires_ciphertext(self, he):
        from he_circuit.evaluator import CiphertextHandle

        with pytest.raises(InvalidArgumentError):
            he.decrypt(CiphertextHandle())

    def test_existing_backend(self, small_params, values):
        backend = create_backend(BackendType.SIMULATION, small_params, seed=3)
        he = HomomorphicEval(small_params, backend)
        he.encrypt(values)

        assert he.backend is backend
        assert backend.counters.encryptions == 1

    def test_parallel_safe(self, he, small_params):
        assert he.parallel_safe
        assert not PlaintextEval(small_params).parallel_safe


# =============================================================================
# DEBUG EVALUATION
# =============================================================================

class TestDebugEval:
    """Tests for the cross-checking evaluator."""

    @pytest.fixture
    def dbg(self, small_params):
        return DebugEval(small_params, BackendType.SIMULATION, seed=2)

    def test_polynomial(self, dbg, values):
        result = poly(dbg, dbg.encrypt(values))

        np.testing.assert_allclose(result.shadow, 0.5 * values ** 3 - values + 0.25)
        np.testing.assert_allclose(dbg.decrypt(result), result.shadow, atol=1e-5)
        assert dbg.get_exact_max_log_plain_val() < 1.5
        assert dbg.get_estimated_max_log_scale() == pytest.approx(59.0)

    def test_handles_carry_both_payloads(self, dbg, values):
        ct = dbg.encrypt(values)

        assert ct.shadow is not None
        assert ct.native is not None
        assert ct.scale == ct.native.scale

    def test_divergence(self):
        params = CKKSParams.from_circuit(
            num_slots=256, multiplicative_depth=1, log_scale=30, standard_params=False
        )
        dbg = DebugEval(params, BackendType.SIMULATION, seed=2)
        x = dbg.encrypt(np.full(256, 2.0 ** 25))

        # 2^50 at scale 2^60 wraps around the 90-bit modulus
        with pytest.raises(DivergenceError, match="diverged") as excinfo:
            dbg.square(x)
        assert excinfo.value.operation == 'square'
        assert excinfo.value.norm > 0.02

    def test_check_scale(self, dbg, values):
        ct = dbg.encrypt(values)
        dbg.check_scale(ct)

        ct.native = dataclasses.replace(ct.native, scale=ct.native.scale * 3)
        with pytest.raises(ScaleInconsistencyError, match="CHECK_SCALE"):
            dbg.check_scale(ct)

    def test_tracked_scale_mismatch(self, dbg, values):
        ct = dbg.encrypt(values)
        ct.scale = ct.scale * 4

        with pytest.raises(ScaleInconsistencyError, match="SCALE COMPUTATION"):
            dbg.print_stats(ct)

    def test_verbose_logs_values(self, small_params, values, caplog):
        dbg = DebugEval(small_params, BackendType.SIMULATION, verbose=True, seed=2)
        with caplog.at_level(logging.INFO, logger="he_circuit.evaluator"):
            dbg.encrypt(values)

        assert "L2 distance" in caplog.text
