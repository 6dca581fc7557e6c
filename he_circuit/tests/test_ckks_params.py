"""
Tests for CKKS parameters and the modulus chain.
"""

import logging
import math

import pytest

from he_circuit.context import (
    CKKSParams,
    generate_primes,
    is_pow2,
    is_prime,
    modulus_to_poly_degree,
    poly_degree_to_max_mod_bits,
)


class TestPrimes:
    """Tests for NTT-friendly prime generation."""

    def test_is_prime_small(self):
        assert [n for n in range(30) if is_prime(n)] == [2, 3, 5, 7, 11, 13, 17, 19, 23, 29]

    def test_is_prime_large(self):
        assert is_prime(2 ** 61 - 1)
        assert not is_prime(2 ** 61 + 1)
        assert not is_prime((2 ** 31 - 1) * (2 ** 19 - 1))

    def test_generated_primes_are_ntt_friendly(self):
        bits = (60, 40, 40, 40, 60)
        primes = generate_primes(8192, bits)

        assert len(primes) == len(bits)
        assert len(set(primes)) == len(primes)
        for p, b in zip(primes, bits):
            assert is_prime(p)
            assert p.bit_length() == b
            assert p % (2 * 8192) == 1

    def test_generation_is_deterministic(self):
        assert generate_primes(4096, (50, 50)) == generate_primes(4096, (50, 50))

    def test_rejects_bad_bit_size(self):
        with pytest.raises(ValueError):
            generate_primes(4096, (62,))


class TestSecurityTable:
    """Tests for modulus size bounds."""

    def test_modulus_to_poly_degree(self):
        assert modulus_to_poly_degree(109) == 4096
        assert modulus_to_poly_degree(218) == 8192
        assert modulus_to_poly_degree(219) == 16384

    def test_modulus_too_large(self):
        with pytest.raises(ValueError):
            modulus_to_poly_degree(2000)

    def test_poly_degree_to_max_mod_bits(self):
        assert poly_degree_to_max_mod_bits(8192) == 218
        with pytest.raises(ValueError):
            poly_degree_to_max_mod_bits(3000)

    def test_is_pow2(self):
        assert is_pow2(1) and is_pow2(4096)
        assert not is_pow2(0) and not is_pow2(12)


class TestCKKSParams:
    """Tests for CKKSParams."""

    def test_from_circuit(self):
        params = CKKSParams.from_circuit(num_slots=4096, multiplicative_depth=2, log_scale=40)

        assert params.poly_modulus_degree == 8192
        assert params.slot_count == 4096
        assert params.coeff_modulus_bits == (60, 40, 40, 60)
        assert params.max_depth == 2
        assert params.scale == 2.0 ** 40

    def test_wide_scale_widens_special_prime(self):
        params = CKKSParams.from_circuit(
            num_slots=256, multiplicative_depth=1, log_scale=59, standard_params=False
        )
        assert params.coeff_modulus_bits == (60, 59, 60)

    def test_scale_below_minimum(self):
        with pytest.raises(ValueError):
            CKKSParams.from_circuit(num_slots=4096, multiplicative_depth=1, log_scale=20)

    def test_too_few_slots_for_standard(self):
        with pytest.raises(ValueError, match="too small"):
            CKKSParams.from_circuit(num_slots=1024, multiplicative_depth=1, log_scale=30)

    def test_depth_exceeds_security_bound(self):
        # 120 + 5 * 40 = 320 bits needs N = 16384
        with pytest.raises(ValueError, match="poly_modulus_degree"):
            CKKSParams.from_circuit(num_slots=4096, multiplicative_depth=5, log_scale=40)

    def test_non_standard_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            params = CKKSParams.from_circuit(
                num_slots=16, multiplicative_depth=3, log_scale=40, standard_params=False
            )
        assert params.slot_count == 16
        assert "NOT secure" in caplog.text

    def test_non_pow2_slots(self):
        with pytest.raises(ValueError):
            CKKSParams.from_circuit(num_slots=1000, multiplicative_depth=1, log_scale=40)

    def test_nominal_scale_chain(self, small_params):
        primes = small_params.coeff_modulus_primes
        s3 = small_params.nominal_scale_at_level(3)
        s2 = small_params.nominal_scale_at_level(2)
        s1 = small_params.nominal_scale_at_level(1)

        assert s3 == small_params.scale
        assert s2 == pytest.approx(s3 * s3 / primes[3], rel=1e-12)
        assert s1 == pytest.approx(s2 * s2 / primes[2], rel=1e-12)

    def test_modulus_bits_at(self, small_params):
        assert 59 < small_params.modulus_bits_at(0) <= 60
        assert 139 < small_params.modulus_bits_at(2) <= 140
        with pytest.raises(ValueError):
            small_params.modulus_bits_at(4)

    def test_prime_at_level(self, small_params):
        assert small_params.prime_at_level(3) == small_params.coeff_modulus_primes[3]
        assert math.log2(small_params.prime_at_level(0)) > 59

    def test_serialization(self, standard_params):
        restored = CKKSParams.from_dict(standard_params.to_dict())

        assert restored == standard_params
        assert restored.coeff_modulus_primes == standard_params.coeff_modulus_primes
