"""
OpCount: operation counts of a circuit.

Wraps a DepthFinder so the circuit is also checked for level consistency
while it is being counted.
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np

from ..context.ckks_params import CKKSParams
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .depth_finder import DepthFinder

logger = logging.getLogger(__name__)


@dataclass
class CircuitOpCounts:
    """Homomorphic operation counts for one circuit run."""
    multiplies: int = 0  # Ciphertext, scalar and plaintext multiplications
    additions: int = 0  # Including subtractions and constant additions
    negations: int = 0
    rotations: int = 0
    mod_downs: int = 0  # mod_down calls that actually changed a level
    mod_down_muls: int = 0  # Scalar multiplications those mod_downs cost

    def reset(self) -> None:
        """Reset all counters to zero."""
        self.multiplies = 0
        self.additions = 0
        self.negations = 0
        self.rotations = 0
        self.mod_downs = 0
        self.mod_down_muls = 0

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            'multiplies': self.multiplies,
            'additions': self.additions,
            'negations': self.negations,
            'rotations': self.rotations,
            'mod_downs': self.mod_downs,
            'mod_down_muls': self.mod_down_muls,
        }


class OpCount(CKKSEvaluator):
    """
    Evaluator that counts homomorphic operations.

    Rescaling and relinearization are not counted; their number follows
    from the multiplications.
    """

    def __init__(self, params: CKKSParams, verbose: bool = False,
                 depth_finder: Optional[DepthFinder] = None):
        super().__init__(params, verbose)
        self._depth_finder = depth_finder or DepthFinder(params, verbose)
        self._counts = CircuitOpCounts()

    @property
    def counts(self) -> CircuitOpCounts:
        return self._counts

    def get_multiplicative_depth(self) -> int:
        return self._depth_finder.get_multiplicative_depth()

    def print_op_count(self) -> None:
        """Log the operation counts."""
        logger.info("Multiplications: %d", self._counts.multiplies)
        logger.info("ModDownMuls: %d", self._counts.mod_down_muls)
        logger.info("Additions: %d", self._counts.additions)
        logger.info("Negations: %d", self._counts.negations)
        logger.info("Rotations: %d", self._counts.rotations)
        logger.info("ModDownTos: %d", self._counts.mod_downs)

    def _reset_internal(self) -> None:
        self._counts.reset()
        self._depth_finder.reset()

    def _count_mod_down(self, levels: int) -> None:
        if levels > 0:
            self._counts.mod_downs += 1
            self._counts.mod_down_muls += levels

    # -------------------------------------------------------------------------
    # COUNTING
    # -------------------------------------------------------------------------

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        self._depth_finder._encrypt_internal(ct, values)

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._depth_finder._rotate_left_inplace_internal(ct, steps)
        self._counts.rotations += 1

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._depth_finder._rotate_right_inplace_internal(ct, steps)
        self._counts.rotations += 1

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._negate_inplace_internal(ct)
        self._counts.negations += 1

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._add_inplace_internal(ct1, ct2)
        self._counts.additions += 1

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._depth_finder._add_scalar_inplace_internal(ct, scalar)
        self._counts.additions += 1

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._depth_finder._add_plain_inplace_internal(ct, plain)
        self._counts.additions += 1

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._sub_inplace_internal(ct1, ct2)
        self._counts.additions += 1

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._depth_finder._multiply_inplace_internal(ct1, ct2)
        self._counts.multiplies += 1

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._depth_finder._multiply_scalar_inplace_internal(ct, scalar)
        self._counts.multiplies += 1

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._depth_finder._multiply_plain_inplace_internal(ct, plain)
        self._counts.multiplies += 1

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._square_inplace_internal(ct)
        self._counts.multiplies += 1

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        levels = ct.he_level - target.he_level
        self._depth_finder._mod_down_to_inplace_internal(ct, target)
        self._count_mod_down(levels)

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        levels = abs(ct1.he_level - ct2.he_level)
        self._depth_finder._mod_down_to_min_inplace_internal(ct1, ct2)
        self._count_mod_down(levels)

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        levels = ct.he_level - level
        self._depth_finder._mod_down_to_level_inplace_internal(ct, level)
        self._count_mod_down(levels)

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._rescale_to_next_inplace_internal(ct)

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._depth_finder._relinearize_inplace_internal(ct)
