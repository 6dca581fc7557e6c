"""
CKKS Parameters for HE Circuits

This module defines the CKKS encryption parameters shared by every evaluator.
A parameter set fixes:
  - the ring degree (and therefore the slot count)
  - the modulus chain (one prime per level plus the special prime)
  - the base scale used to encode fresh ciphertexts

The modulus chain follows the usual CKKS layout:

    [60] + [log_scale] * depth + [max(60, log_scale)]

so the top level equals the multiplicative depth, the prime consumed by a
rescale at level L is the L-th entry, and the last entry is reserved for
key switching.

Primes are generated the way SEAL's CoeffModulus::Create does: the largest
primes below 2^bits that are congruent to 1 modulo 2N.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging
import math

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Largest log2 plaintext magnitude a ciphertext can hold at level 0 before
# decryption wraps around the first (60-bit) prime.
PLAINTEXT_LOG_MAX = 59

# Largest acceptable L2 distance between shadow and decrypted values.
MAX_NORM = 0.02

# Smallest supported log2 scale.
MIN_LOG_SCALE = 22

# Starting value of the plaintext magnitude tracker.
INITIAL_MAX_LOG_PLAIN = -100.0

# Smallest slot count with standard 128-bit security.
MIN_STANDARD_SLOTS = 4096

# Bit size of the first and special primes.
SPECIAL_PRIME_BITS = 60

# Maximum total coefficient modulus bits for 128-bit classical security,
# keyed by polynomial modulus degree (HomomorphicEncryption.org standard).
MAX_MODULUS_BITS: Dict[int, int] = {
    1024: 27,
    2048: 54,
    4096: 109,
    8192: 218,
    16384: 438,
    32768: 881,
    65536: 1761,
}


# =============================================================================
# HELPERS
# =============================================================================

def is_pow2(x: int) -> bool:
    """Return True if x is a positive power of two."""
    return x > 0 and (x & (x - 1)) == 0


def poly_degree_to_max_mod_bits(poly_modulus_degree: int) -> int:
    """
    Maximum secure coefficient modulus size for a ring degree.

    Args:
        poly_modulus_degree: Ring degree N

    Returns:
        Maximum total bits of the coefficient modulus.

    Raises:
        ValueError: If N is not in the security table.
    """
    if poly_modulus_degree not in MAX_MODULUS_BITS:
        raise ValueError(
            f"poly_modulus_degree={poly_modulus_degree} has no security bound; "
            f"supported: {sorted(MAX_MODULUS_BITS)}"
        )
    return MAX_MODULUS_BITS[poly_modulus_degree]


def modulus_to_poly_degree(modulus_bits: int) -> int:
    """
    Smallest ring degree whose security bound admits a modulus of this size.

    Raises:
        ValueError: If the modulus is too large for any supported degree.
    """
    for degree in sorted(MAX_MODULUS_BITS):
        if modulus_bits <= MAX_MODULUS_BITS[degree]:
            return degree
    raise ValueError(
        f"Modulus of {modulus_bits} bits exceeds the largest secure "
        f"bound ({max(MAX_MODULUS_BITS.values())} bits)"
    )


# Witnesses that make Miller-Rabin deterministic for n < 3.3e24.
_MR_WITNESSES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41)


def is_prime(n: int) -> bool:
    """Deterministic Miller-Rabin primality test for moduli up to ~80 bits."""
    if n < 2:
        return False
    for p in _MR_WITNESSES:
        if n % p == 0:
            return n == p

    d = n - 1
    r = 0
    while d % 2 == 0:
        d //= 2
        r += 1

    for a in _MR_WITNESSES:
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(r - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


def generate_primes(poly_modulus_degree: int, bit_sizes: Tuple[int, ...]) -> Tuple[int, ...]:
    """
    Generate an NTT-friendly prime for every requested bit size.

    For each distinct bit size, primes are taken in descending order starting
    just below 2^bits, stepping by 2N so every candidate is 1 mod 2N. Primes
    sharing a bit size are therefore distinct.

    Args:
        poly_modulus_degree: Ring degree N
        bit_sizes: Requested bit size per modulus entry

    Returns:
        Tuple of primes in the same order as bit_sizes.

    Raises:
        ValueError: If a bit size is out of range or runs out of primes.
    """
    step = 2 * poly_modulus_degree
    counts: Dict[int, int] = {}
    for bits in bit_sizes:
        if bits < 2 or bits > 61:
            raise ValueError(f"Prime bit size {bits} out of range [2, 61]")
        counts[bits] = counts.get(bits, 0) + 1

    pools: Dict[int, List[int]] = {}
    for bits, count in counts.items():
        found: List[int] = []
        lower = 1 << (bits - 1)
        candidate = (1 << bits) - step + 1
        while len(found) < count:
            if candidate <= lower:
                raise ValueError(
                    f"Not enough {bits}-bit primes congruent to 1 mod {step}"
                )
            if is_prime(candidate):
                found.append(candidate)
            candidate -= step
        pools[bits] = found

    taken: Dict[int, int] = {}
    primes = []
    for bits in bit_sizes:
        index = taken.get(bits, 0)
        primes.append(pools[bits][index])
        taken[bits] = index + 1
    return tuple(primes)


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class CKKSParams:
    """
    Immutable CKKS encryption parameters.

    Levels are counted downwards: a fresh ciphertext sits at level
    ``max_depth`` and every rescale consumes the prime of the current level.
    """

    # Polynomial ring degree (N) - determines slot count (N/2)
    poly_modulus_degree: int

    # Coefficient modulus bit lengths, special prime last
    coeff_modulus_bits: Tuple[int, ...]

    # Base scale for encoding (2^scale_bits)
    scale_bits: int

    # Standard parameters enforce 128-bit security bounds
    standard_params: bool = True

    # Top level: number of rescales available (exclude first and last prime)
    max_depth: int = field(init=False)

    # Number of SIMD slots (N/2)
    slot_count: int = field(init=False)

    # Base scale value
    scale: float = field(init=False)

    # Actual primes of the modulus chain
    coeff_modulus_primes: Tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Compute derived parameters."""
        object.__setattr__(self, 'coeff_modulus_bits', tuple(self.coeff_modulus_bits))
        object.__setattr__(self, 'max_depth', len(self.coeff_modulus_bits) - 2)
        object.__setattr__(self, 'slot_count', self.poly_modulus_degree // 2)
        object.__setattr__(self, 'scale', 2.0 ** self.scale_bits)
        object.__setattr__(
            self,
            'coeff_modulus_primes',
            generate_primes(self.poly_modulus_degree, self.coeff_modulus_bits),
        )

    @classmethod
    def from_circuit(
        cls,
        num_slots: int,
        multiplicative_depth: int,
        log_scale: int,
        standard_params: bool = True,
    ) -> 'CKKSParams':
        """
        Build parameters for a circuit of known depth and precision.

        Args:
            num_slots: Number of plaintext slots (N/2)
            multiplicative_depth: Number of rescales the circuit performs
            log_scale: log2 of the base scale
            standard_params: Enforce 128-bit security bounds

        Returns:
            Validated CKKSParams.

        Raises:
            ValueError: If the parameters are invalid or insecure.
        """
        if multiplicative_depth < 0:
            raise ValueError(
                f"multiplicative_depth={multiplicative_depth} must be non-negative"
            )
        bits = (
            (SPECIAL_PRIME_BITS,)
            + (log_scale,) * multiplicative_depth
            + (max(SPECIAL_PRIME_BITS, log_scale),)
        )
        if not is_pow2(num_slots):
            raise ValueError(f"num_slots={num_slots} must be a power of 2")
        params = cls(
            poly_modulus_degree=2 * num_slots,
            coeff_modulus_bits=bits,
            scale_bits=log_scale,
            standard_params=standard_params,
        )
        params.validate()
        return params

    def validate(self) -> None:
        """
        Validate CKKS parameters for correctness and security.

        Non-standard parameters are accepted with a warning; they are only
        useful for fast experiments and offer no security.

        Raises:
            ValueError: If parameters are invalid or insecure.
        """
        if not is_pow2(self.slot_count):
            raise ValueError(f"slot_count={self.slot_count} must be a power of 2")

        if len(self.coeff_modulus_bits) < 2:
            raise ValueError("Need at least 2 primes in coefficient modulus")

        if self.scale_bits < MIN_LOG_SCALE or self.scale_bits > SPECIAL_PRIME_BITS:
            raise ValueError(
                f"scale_bits={self.scale_bits} out of valid range "
                f"[{MIN_LOG_SCALE}, {SPECIAL_PRIME_BITS}]"
            )

        if not self.standard_params:
            logger.warning(
                "Non-standard CKKS parameters (slots=%d); "
                "these parameters are NOT secure",
                self.slot_count,
            )
            return

        if self.slot_count < MIN_STANDARD_SLOTS:
            raise ValueError(
                f"slot_count={self.slot_count} too small for standard "
                f"parameters, minimum {MIN_STANDARD_SLOTS}"
            )

        # The first and special primes contribute 60 bits each
        modulus_bits = 2 * SPECIAL_PRIME_BITS + self.max_depth * self.scale_bits
        min_degree = modulus_to_poly_degree(modulus_bits)
        if self.poly_modulus_degree < min_degree:
            raise ValueError(
                f"Modulus of {modulus_bits} bits requires poly_modulus_degree "
                f">= {min_degree}, got {self.poly_modulus_degree}; increase "
                f"num_slots or reduce depth/log_scale"
            )

    # -------------------------------------------------------------------------
    # MODULUS CHAIN QUERIES
    # -------------------------------------------------------------------------

    def prime_at_level(self, level: int) -> int:
        """Prime removed by a rescale at the given level."""
        if level < 0 or level > self.max_depth:
            raise ValueError(f"level={level} out of range [0, {self.max_depth}]")
        return self.coeff_modulus_primes[level]

    def modulus_bits_at(self, level: int) -> float:
        """log2 of the ciphertext modulus at the given level."""
        if level < 0 or level > self.max_depth:
            raise ValueError(f"level={level} out of range [0, {self.max_depth}]")
        return sum(math.log2(p) for p in self.coeff_modulus_primes[:level + 1])

    def nominal_scale_at_level(self, level: int) -> float:
        """
        Scale of a fresh ciphertext encrypted at the given level.

        Starting from the base scale at the top level, each step down
        squares the scale and divides by the prime being dropped:
        S_{l-1} = S_l^2 / p_l.
        """
        if level < 0 or level > self.max_depth:
            raise ValueError(f"level={level} out of range [0, {self.max_depth}]")
        scale = self.scale
        for lvl in range(self.max_depth, level, -1):
            scale = scale * scale / self.coeff_modulus_primes[lvl]
        return scale

    def max_modulus_bits(self, poly_modulus_degree: Optional[int] = None) -> int:
        """
        Security bound on total modulus bits.

        Ring degrees outside the security table (only reachable with
        non-standard parameters) are bounded by the largest table entry.
        """
        degree = poly_modulus_degree or self.poly_modulus_degree
        return MAX_MODULUS_BITS.get(degree, max(MAX_MODULUS_BITS.values()))

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            'poly_modulus_degree': self.poly_modulus_degree,
            'coeff_modulus_bits': list(self.coeff_modulus_bits),
            'scale_bits': self.scale_bits,
            'standard_params': self.standard_params,
            'max_depth': self.max_depth,
            'slot_count': self.slot_count,
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'CKKSParams':
        """Deserialize from dictionary."""
        return cls(
            poly_modulus_degree=d['poly_modulus_degree'],
            coeff_modulus_bits=tuple(d['coeff_modulus_bits']),
            scale_bits=d['scale_bits'],
            standard_params=d.get('standard_params', True),
        )
