"""
ScaleEstimator: largest usable log2 scale for a circuit.

The estimator runs the circuit on cleartext shadows through PlaintextEval,
which also tracks levels, and tracks the exact scale of every handle
itself. After each operation it checks that the value can still be
represented in the modulus left at the handle's level, and tightens a global
upper bound on log2(scale) accordingly.

The bound relies on the modulus chain layout: at level L the modulus has
roughly 60 + L * log_scale bits, while a value of magnitude 2^m encoded at
scale^e occupies m + e * log_scale bits. Decryption stays correct while
m + e * log_scale < 59 + L * log_scale.
"""

import logging
import math

import numpy as np

from ..context.ckks_params import CKKSParams, PLAINTEXT_LOG_MAX, SPECIAL_PRIME_BITS
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .errors import ScaleInconsistencyError, ScaleOverflowError
from .numerics import linf_norm, log2_linf
from .plaintext import PlaintextEval

logger = logging.getLogger(__name__)


class ScaleEstimator(CKKSEvaluator):
    """
    Evaluator that estimates the maximum log2 scale a circuit tolerates.

    Args:
        params: Parameters with the circuit's depth as top level
        verbose: Log every operation at INFO
    """

    def __init__(self, params: CKKSParams, verbose: bool = False):
        super().__init__(params, verbose)
        self._plaintext = PlaintextEval(params, verbose)
        self._base_log_scale = math.log2(params.scale)
        self._max_log_scale = self._initial_max_log_scale()

    def _initial_max_log_scale(self) -> float:
        primes = self._params.coeff_modulus_primes[:self.top_level + 1]
        return PLAINTEXT_LOG_MAX - SPECIAL_PRIME_BITS + sum(math.log2(p) for p in primes)

    def _reset_internal(self) -> None:
        self._plaintext.reset()
        self._max_log_scale = self._initial_max_log_scale()

    # -------------------------------------------------------------------------
    # RESULTS
    # -------------------------------------------------------------------------

    @property
    def tracks_scale(self) -> bool:
        return True

    def get_estimated_max_log_scale(self) -> float:
        """
        Largest log2 scale that keeps every intermediate value decryptable.

        Also capped by the scale bits a secure modulus can afford once the
        first and special primes are accounted for.
        """
        estimate = min(PLAINTEXT_LOG_MAX, self._max_log_scale)
        if self.top_level > 0:
            budget = self._params.max_modulus_bits(2 * self.slot_count)
            estimate = min(estimate, (budget - 2 * SPECIAL_PRIME_BITS) / self.top_level)
        return estimate

    def get_multiplicative_depth(self) -> int:
        return self._plaintext.get_multiplicative_depth()

    def get_exact_max_log_plain_val(self) -> float:
        return self._plaintext.get_exact_max_log_plain_val()

    def update_plaintext_max_val(self, x: float) -> None:
        """
        Register an externally known bound on plaintext magnitude.

        With no levels left every value sits in the 60-bit base prime, so
        the bound on x directly bounds the scale.
        """
        self._plaintext.update_plaintext_max_val(x)
        if self.top_level == 0 and x > 0:
            self._max_log_scale = min(self._max_log_scale, PLAINTEXT_LOG_MAX - math.log2(x))

    def update_max_log_scale(self, ct: CiphertextHandle, op: str = 'update_max_log_scale') -> None:
        """
        Tighten the scale bound with a handle's current magnitude.

        Raises:
            ScaleInconsistencyError: If the scale is not base_scale^1 or ^2.
            ScaleOverflowError: If the value already exceeds the modulus.
        """
        exponent = int(round(math.log2(ct.scale) / self._base_log_scale))
        if exponent not in (1, 2):
            raise ScaleInconsistencyError(
                op,
                f"scale 2^{math.log2(ct.scale):.2f} is not base_scale^1 or ^2 "
                f"(base 2^{self._base_log_scale:.0f})",
                actual=ct.scale,
            )

        log_plain = log2_linf(ct.shadow)
        if log_plain == -math.inf:
            return

        level = ct.he_level
        if exponent > level:
            bound = (PLAINTEXT_LOG_MAX - log_plain) / (exponent - level)
            if bound < self._max_log_scale:
                logger.debug(
                    "%s: scale bound tightened to %.2f (log2 max=%.2f, level=%d)",
                    op, bound, log_plain, level,
                )
                self._max_log_scale = bound
        elif exponent == level and log_plain > PLAINTEXT_LOG_MAX:
            logger.error("%s: plaintext overflow imminent", op)
            raise ScaleOverflowError(op, log_plain, level, exponent)

    @staticmethod
    def _check_same_scale(op: str, ct1: CiphertextHandle, ct2: CiphertextHandle,
                          message: str) -> None:
        if not math.isclose(ct1.scale, ct2.scale, rel_tol=1e-9):
            raise ScaleInconsistencyError(op, message, expected=ct1.scale, actual=ct2.scale)

    # -------------------------------------------------------------------------
    # SCALE TRACKING
    # -------------------------------------------------------------------------

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        self._plaintext._encrypt_internal(ct, values)
        self.update_plaintext_max_val(linf_norm(ct.shadow))
        self.update_max_log_scale(ct, 'encrypt')

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._plaintext._rotate_left_inplace_internal(ct, steps)

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._plaintext._rotate_right_inplace_internal(ct, steps)

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._plaintext._negate_inplace_internal(ct)
        self.update_max_log_scale(ct, 'negate')

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._plaintext._add_inplace_internal(ct1, ct2)
        self._check_same_scale('add', ct1, ct2, "input scales do not match")
        self.update_max_log_scale(ct1, 'add')

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._plaintext._add_scalar_inplace_internal(ct, scalar)
        self.update_max_log_scale(ct, 'add_scalar')

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._plaintext._add_plain_inplace_internal(ct, plain)
        self.update_max_log_scale(ct, 'add_plain_array')

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._plaintext._sub_inplace_internal(ct1, ct2)
        self._check_same_scale('sub', ct1, ct2, "input scales do not match")
        self.update_max_log_scale(ct1, 'sub')

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._plaintext._multiply_inplace_internal(ct1, ct2)
        ct1.scale = ct1.scale * ct2.scale
        self.update_max_log_scale(ct1, 'multiply')

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._plaintext._multiply_scalar_inplace_internal(ct, scalar)
        ct.scale = ct.scale * ct.scale
        self.update_max_log_scale(ct, 'multiply_scalar')

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._plaintext._multiply_plain_inplace_internal(ct, plain)
        ct.scale = ct.scale * ct.scale
        self.update_max_log_scale(ct, 'multiply_plain_array')

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._plaintext._square_inplace_internal(ct)
        ct.scale = ct.scale * ct.scale
        self.update_max_log_scale(ct, 'square')

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        if ct.he_level == target.he_level:
            self._check_same_scale(
                'mod_down_to', ct, target, "levels match, but scales do not"
            )
        self._plaintext._mod_down_to_inplace_internal(ct, target)
        ct.scale = target.scale
        self.update_max_log_scale(ct, 'mod_down_to')

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        if ct1.he_level == ct2.he_level:
            self._check_same_scale(
                'mod_down_to_min', ct1, ct2, "levels match, but scales do not"
            )
        elif ct1.he_level > ct2.he_level:
            ct1.scale = ct2.scale
        else:
            ct2.scale = ct1.scale
        self._plaintext._mod_down_to_min_inplace_internal(ct1, ct2)
        self.update_max_log_scale(ct1, 'mod_down_to_min')
        self.update_max_log_scale(ct2, 'mod_down_to_min')

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        scale = ct.scale
        for lvl in range(ct.he_level, level, -1):
            scale = scale * scale / self._params.prime_at_level(lvl)
        self._plaintext._mod_down_to_level_inplace_internal(ct, level)
        ct.scale = scale
        self.update_max_log_scale(ct, 'mod_down_to_level')

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        prime = self._params.prime_at_level(ct.he_level)
        self._plaintext._rescale_to_next_inplace_internal(ct)
        ct.scale = ct.scale / prime
        self.update_max_log_scale(ct, 'rescale_to_next')

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._plaintext._relinearize_inplace_internal(ct)
