"""
PlaintextEval: cleartext shadow computation.

Every handle carries a ``shadow`` array holding the exact real-valued result
the circuit would produce without encryption. The evaluator also records the
largest magnitude any intermediate value reaches, which bounds how much
headroom the real parameters must leave above the scale.

Levels are tracked through a DepthFinder, so circuits that check levels
(e.g. encrypted matrix products) behave exactly as they do when encrypted.
"""

from typing import Optional
import logging
import math

import numpy as np

from ..context.ckks_params import CKKSParams, INITIAL_MAX_LOG_PLAIN
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .depth_finder import DepthFinder
from .errors import ShapeMismatchError
from .numerics import linf_norm, log2_linf

logger = logging.getLogger(__name__)


class PlaintextEval(CKKSEvaluator):
    """Evaluator that computes on cleartext shadows and tracks their magnitude."""

    def __init__(self, params: CKKSParams, verbose: bool = False,
                 depth_finder: Optional[DepthFinder] = None):
        super().__init__(params, verbose)
        self._depth_finder = depth_finder or DepthFinder(params, verbose)
        self._max_log_plain = INITIAL_MAX_LOG_PLAIN

    def get_exact_max_log_plain_val(self) -> float:
        """log2 of the largest absolute value seen in any shadow."""
        return self._max_log_plain

    def get_multiplicative_depth(self) -> int:
        return self._depth_finder.get_multiplicative_depth()

    def update_plaintext_max_val(self, x: float) -> None:
        """Register an externally known bound on plaintext magnitude."""
        if x > 0:
            self._max_log_plain = max(self._max_log_plain, math.log2(x))

    def _update_max_log_plain(self, ct: CiphertextHandle) -> None:
        self._max_log_plain = max(self._max_log_plain, log2_linf(ct.shadow))

    def _reset_internal(self) -> None:
        self._depth_finder.reset()
        self._max_log_plain = INITIAL_MAX_LOG_PLAIN

    @staticmethod
    def _check_public(op: str, ct: CiphertextHandle, plain: np.ndarray) -> None:
        if plain.size != ct.shadow.size:
            raise ShapeMismatchError(op, "public input has the wrong size")

    # -------------------------------------------------------------------------
    # SHADOW ARITHMETIC
    # -------------------------------------------------------------------------

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        self._depth_finder._encrypt_internal(ct, values)
        ct.shadow = np.array(values, dtype=np.float64)
        self.update_plaintext_max_val(linf_norm(ct.shadow))

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._depth_finder._rotate_left_inplace_internal(ct, steps)
        ct.shadow = np.roll(ct.shadow, -steps)

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._depth_finder._rotate_right_inplace_internal(ct, steps)
        ct.shadow = np.roll(ct.shadow, steps)

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._negate_inplace_internal(ct)
        ct.shadow = -ct.shadow

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._add_inplace_internal(ct1, ct2)
        ct1.shadow = ct1.shadow + ct2.shadow
        self._update_max_log_plain(ct1)

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._depth_finder._add_scalar_inplace_internal(ct, scalar)
        ct.shadow = ct.shadow + scalar
        self._update_max_log_plain(ct)

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._check_public('add_plain_array', ct, plain)
        self._depth_finder._add_plain_inplace_internal(ct, plain)
        ct.shadow = ct.shadow + plain
        self._update_max_log_plain(ct)

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._sub_inplace_internal(ct1, ct2)
        ct1.shadow = ct1.shadow - ct2.shadow
        self._update_max_log_plain(ct1)

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._multiply_inplace_internal(ct1, ct2)
        ct1.shadow = ct1.shadow * ct2.shadow
        self._update_max_log_plain(ct1)

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._depth_finder._multiply_scalar_inplace_internal(ct, scalar)
        ct.shadow = ct.shadow * scalar
        self._update_max_log_plain(ct)

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._check_public('multiply_plain_array', ct, plain)
        self._depth_finder._multiply_plain_inplace_internal(ct, plain)
        ct.shadow = ct.shadow * plain
        self._update_max_log_plain(ct)

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._square_inplace_internal(ct)
        ct.shadow = ct.shadow * ct.shadow
        self._update_max_log_plain(ct)

    # Level maintenance does not change the values

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        self._depth_finder._mod_down_to_inplace_internal(ct, target)

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        self._depth_finder._mod_down_to_min_inplace_internal(ct1, ct2)

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        self._depth_finder._mod_down_to_level_inplace_internal(ct, level)

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._rescale_to_next_inplace_internal(ct)

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._relinearize_inplace_internal(ct)
