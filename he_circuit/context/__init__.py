"""
CKKS context: parameters, modulus chain and numeric constants.
"""

from .ckks_params import (
    CKKSParams,
    INITIAL_MAX_LOG_PLAIN,
    MAX_MODULUS_BITS,
    MAX_NORM,
    MIN_LOG_SCALE,
    MIN_STANDARD_SLOTS,
    PLAINTEXT_LOG_MAX,
    generate_primes,
    is_pow2,
    is_prime,
    modulus_to_poly_degree,
    poly_degree_to_max_mod_bits,
)

__all__ = [
    'CKKSParams',
    'INITIAL_MAX_LOG_PLAIN',
    'MAX_MODULUS_BITS',
    'MAX_NORM',
    'MIN_LOG_SCALE',
    'MIN_STANDARD_SLOTS',
    'PLAINTEXT_LOG_MAX',
    'generate_primes',
    'is_pow2',
    'is_prime',
    'modulus_to_poly_degree',
    'poly_degree_to_max_mod_bits',
]
