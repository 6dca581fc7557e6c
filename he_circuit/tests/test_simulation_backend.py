"""
Tests for the simulation backend and the backend registry.
"""

import numpy as np
import pytest

from he_circuit.backend import (
    BackendType,
    SimulationBackend,
    create_backend,
    get_available_backends,
)


@pytest.fixture
def backend(small_params):
    return create_backend(BackendType.SIMULATION, small_params, seed=7)


@pytest.fixture
def values(small_params, rng):
    return rng.uniform(-1, 1, small_params.slot_count)


class TestRegistry:
    """Tests for backend registration."""

    def test_simulation_registered(self):
        assert BackendType.SIMULATION in get_available_backends()

    def test_create_initializes(self, small_params):
        backend = create_backend(BackendType.SIMULATION, small_params)
        assert isinstance(backend, SimulationBackend)
        assert backend.is_initialized()
        assert backend.max_level == 3
        assert backend.slot_count == 256


class TestSimulationBackend:
    """Tests for simulated ciphertext arithmetic."""

    def test_encrypt_decrypt(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)

        assert ct.level == 3
        assert ct.scale == small_params.scale
        np.testing.assert_allclose(backend.decrypt(ct), values, atol=1e-6)

    def test_encrypt_wrong_size(self, backend, small_params):
        with pytest.raises(ValueError, match="Expected 256 values"):
            backend.encrypt(np.ones(10), 3, small_params.scale)

    def test_add_and_sub(self, backend, small_params, values):
        ct1 = backend.encrypt(values, 3, small_params.scale)
        ct2 = backend.encrypt(2 * values, 3, small_params.scale)

        np.testing.assert_allclose(backend.decrypt(backend.add(ct1, ct2)), 3 * values, atol=1e-6)
        np.testing.assert_allclose(backend.decrypt(backend.sub(ct1, ct2)), -values, atol=1e-6)

    def test_add_level_mismatch(self, backend, small_params, values):
        ct1 = backend.encrypt(values, 3, small_params.scale)
        ct2 = backend.encrypt(values, 2, small_params.scale)

        with pytest.raises(ValueError, match="levels do not match"):
            backend.add(ct1, ct2)

    def test_multiply_rescale(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)
        product = backend.multiply(ct, ct)

        assert product.is_quadratic
        assert product.scale == small_params.scale ** 2

        product = backend.rescale(backend.relinearize(product))
        assert not product.is_quadratic
        assert product.level == 2
        assert product.scale == pytest.approx(
            small_params.scale ** 2 / small_params.prime_at_level(3)
        )
        np.testing.assert_allclose(backend.decrypt(product), values ** 2, atol=1e-6)

    def test_multiply_quadratic_rejected(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)
        quadratic = backend.square(ct)

        with pytest.raises(ValueError, match="relinearized"):
            backend.multiply(quadratic, ct)
        with pytest.raises(ValueError, match="relinearized"):
            backend.rotate(quadratic, 1)

    def test_rotate_left(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)

        np.testing.assert_allclose(
            backend.decrypt(backend.rotate(ct, 5)), np.roll(values, -5), atol=1e-6
        )
        np.testing.assert_allclose(
            backend.decrypt(backend.rotate(ct, -5)), np.roll(values, 5), atol=1e-6
        )

    def test_rescale_at_level_zero(self, backend, small_params, values):
        ct = backend.encrypt(values, 0, small_params.scale)
        with pytest.raises(ValueError, match="end of modulus switching chain"):
            backend.rescale(ct)

    def test_scale_out_of_bounds(self, backend, small_params, values):
        # 80-bit scale does not fit the 60-bit modulus at level 0
        ct = backend.encrypt(values, 0, small_params.scale)
        with pytest.raises(ValueError, match="scale out of bounds"):
            backend.multiply(ct, ct)

    def test_wrap_around(self, backend, small_params):
        # Level 0 leaves 60 - 1 - 40 = 19 bits for the value
        ct = backend.encrypt(np.full(256, 2.0 ** 20), 0, small_params.scale)
        decrypted = backend.decrypt(ct)
        assert np.max(np.abs(decrypted)) < 2.0 ** 20

    def test_mod_switch(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)
        switched = backend.mod_switch_to_level(ct, 1)

        assert switched.level == 1
        assert switched.scale == ct.scale
        with pytest.raises(ValueError, match="cannot switch up"):
            backend.mod_switch_to_level(switched, 2)

    def test_inputs_not_mutated(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)
        before = np.array(ct.handle)
        backend.negate(ct)
        backend.multiply_plain(ct, values)
        backend.add_plain(ct, values)
        np.testing.assert_array_equal(ct.handle, before)

    def test_counters(self, backend, small_params, values):
        ct = backend.encrypt(values, 3, small_params.scale)
        backend.rotate(ct, 1)
        backend.rotate(ct, 2)
        backend.rescale(backend.relinearize(backend.multiply(ct, ct)))
        backend.decrypt(ct)

        counters = backend.counters
        assert counters.encryptions == 1
        assert counters.rotations == 2
        assert counters.multiplications == 1
        assert counters.relinearizations == 1
        assert counters.rescales == 1
        assert counters.decryptions == 1

        assert counters.to_dict()["rotations"] == 2

        backend.reset_counters()
        assert backend.counters.rotations == 0
