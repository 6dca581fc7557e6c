"""
DepthFinder: multiplicative depth of a circuit.

Only ciphertext levels are tracked. Running a circuit under DepthFinder
checks that every binary operation combines ciphertexts at the same level
and records how many rescales the deepest path performs.
"""

import logging

import numpy as np

from ..context.ckks_params import CKKSParams
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .errors import LevelMismatchError

logger = logging.getLogger(__name__)

# Levels available to a circuit under analysis
DEFAULT_ANALYSIS_LEVELS = 32


class DepthFinder(CKKSEvaluator):
    """
    Evaluator that computes the multiplicative depth of a circuit.

    The depth is the largest number of levels consumed from the top level
    by any ciphertext, i.e. the number of primes (besides the first and
    special ones) the real parameters will need.
    """

    def __init__(self, params: CKKSParams, verbose: bool = False):
        super().__init__(params, verbose)
        self._max_depth = 0

    @classmethod
    def for_analysis(cls, num_slots: int, max_levels: int = DEFAULT_ANALYSIS_LEVELS,
                     verbose: bool = False) -> 'DepthFinder':
        """
        DepthFinder with enough levels for depth discovery.

        The parameters are non-standard (insecure) and only used for
        bookkeeping; no ciphertext is ever created with them.
        """
        params = CKKSParams(
            poly_modulus_degree=2 * num_slots,
            coeff_modulus_bits=(60,) + (40,) * max_levels + (60,),
            scale_bits=40,
            standard_params=False,
        )
        return cls(params, verbose)

    def get_multiplicative_depth(self) -> int:
        """Largest number of levels consumed by any ciphertext so far."""
        return self._max_depth

    def _reset_internal(self) -> None:
        self._max_depth = 0

    @staticmethod
    def _check_same_level(op: str, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        if ct1.he_level != ct2.he_level:
            logger.error(
                "%s: input levels do not match: %d != %d",
                op, ct1.he_level, ct2.he_level,
            )
            raise LevelMismatchError(
                op,
                f"input levels do not match: {ct1.he_level} != {ct2.he_level}",
                (ct1.he_level, ct2.he_level),
            )

    # -------------------------------------------------------------------------
    # LEVEL TRACKING
    # -------------------------------------------------------------------------

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        pass

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('add', ct1, ct2)

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('sub', ct1, ct2)

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('multiply', ct1, ct2)

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        if ct.he_level < target.he_level:
            raise LevelMismatchError(
                'mod_down_to', "ct level is below target level",
                (ct.he_level, target.he_level),
            )
        ct.he_level = target.he_level

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        min_level = min(ct1.he_level, ct2.he_level)
        ct1.he_level = min_level
        ct2.he_level = min_level

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        if ct.he_level < level:
            raise LevelMismatchError(
                'mod_down_to_level', "ct level is below target level",
                (ct.he_level, level),
            )
        ct.he_level = level

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        if ct.he_level == 0:
            raise LevelMismatchError(
                'rescale_to_next', "cannot rescale a ciphertext at level 0", (0,)
            )
        ct.he_level -= 1
        self._max_depth = max(self._max_depth, self.top_level - ct.he_level)

    # Level-preserving operations

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        pass

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        pass

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        pass

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        pass

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        pass

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        pass

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass
