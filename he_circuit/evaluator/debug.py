"""
DebugEval: encrypted execution cross-checked against the shadow.

Every operation is run twice, once homomorphically and once by the
ScaleEstimator, and the two results are merged into a single handle. The
merged handle is then decrypted and compared with its shadow, so the first
operation whose encrypted result drifts is the one that raises.
"""

from typing import Union
import logging
import math

import numpy as np

from ..backend.ckks_backend import BackendType, HEBackend
from ..context.ckks_params import CKKSParams, MAX_NORM
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .errors import DivergenceError, ScaleInconsistencyError
from .homomorphic import HomomorphicEval
from .numerics import diff2_norm
from .scale_estimator import ScaleEstimator

logger = logging.getLogger(__name__)

# Number of values kept in divergence reports
_REPORT_VALUES = 32

# Number of values logged in verbose mode
_VERBOSE_VALUES = 8

# Largest tolerated gap between tracked and native log2 scale
_LOG_SCALE_TOLERANCE = 0.1


class DebugEval(CKKSEvaluator):
    """
    Evaluator that runs HomomorphicEval and ScaleEstimator side by side.

    Args:
        params: CKKS parameters
        backend: Initialized backend, or the type of backend to create
        verbose: Log every operation, and the decrypted values, at INFO
        **backend_options: Passed to create_backend when a type is given
    """

    def __init__(
        self,
        params: CKKSParams,
        backend: Union[HEBackend, BackendType] = BackendType.SIMULATION,
        verbose: bool = False,
        **backend_options,
    ):
        super().__init__(params, verbose)
        self._homomorphic = HomomorphicEval(params, backend, verbose, **backend_options)
        self._scale_estimator = ScaleEstimator(params, verbose)

    @property
    def homomorphic(self) -> HomomorphicEval:
        return self._homomorphic

    @property
    def scale_estimator(self) -> ScaleEstimator:
        return self._scale_estimator

    @property
    def tracks_scale(self) -> bool:
        return True

    def decrypt(self, ct: CiphertextHandle) -> np.ndarray:
        return self._homomorphic.decrypt(ct)

    def get_estimated_max_log_scale(self) -> float:
        return self._scale_estimator.get_estimated_max_log_scale()

    def get_exact_max_log_plain_val(self) -> float:
        return self._scale_estimator.get_exact_max_log_plain_val()

    def _reset_internal(self) -> None:
        self._scale_estimator.reset()

    # -------------------------------------------------------------------------
    # CHECKS
    # -------------------------------------------------------------------------

    def check_scale(self, ct: CiphertextHandle, op: str = 'check_scale') -> None:
        """
        Verify the native scale against the nominal scale of its level.

        A ciphertext at level L must carry S_L or S_L^2, where S_top is the
        base scale and S_{l-1} = S_l^2 / p_l.

        Raises:
            ScaleInconsistencyError: If the native scale is neither.
        """
        expected = self._params.nominal_scale_at_level(ct.native.level)
        actual = ct.native.scale
        if not (math.isclose(actual, expected, rel_tol=1e-9)
                or math.isclose(actual, expected * expected, rel_tol=1e-9)):
            logger.error(
                "%s: CHECK_SCALE: Expected %g^{1,2}, got %g", op, expected, actual
            )
            raise ScaleInconsistencyError(
                op,
                f"CHECK_SCALE: Expected {expected:g}^{{1,2}}, got {actual:g}",
                expected=expected,
                actual=actual,
            )

    def print_stats(self, ct: CiphertextHandle, op: str = 'print_stats') -> None:
        """
        Decrypt a handle and compare it with its shadow.

        Raises:
            ScaleInconsistencyError: If tracked and native scales disagree.
            DivergenceError: If the L2 distance exceeds MAX_NORM.
        """
        decrypted = self._homomorphic.decrypt(ct)

        tracked_log_scale = math.log2(ct.scale)
        native_log_scale = math.log2(ct.native.scale)
        if abs(tracked_log_scale - native_log_scale) > _LOG_SCALE_TOLERANCE:
            logger.error(
                "%s: scale computation is incorrect: tracked 2^%.2f, native 2^%.2f",
                op, tracked_log_scale, native_log_scale,
            )
            raise ScaleInconsistencyError(
                op,
                f"SCALE COMPUTATION IS INCORRECT: tracked 2^{tracked_log_scale:.2f}, "
                f"native 2^{native_log_scale:.2f}",
                expected=ct.scale,
                actual=ct.native.scale,
            )

        norm = diff2_norm(ct.shadow, decrypted)
        if self._verbose:
            logger.info(
                "%s: level %d, log2(scale)=%.2f, L2 distance %.3g, values %s",
                op, ct.he_level, native_log_scale, norm, decrypted[:_VERBOSE_VALUES],
            )
        if norm > MAX_NORM:
            logger.error(
                "%s: plaintext and homomorphic results diverged (L2 distance %g)",
                op, norm,
            )
            raise DivergenceError(
                op,
                norm,
                math.log2(self._params.scale),
                ct.shadow[:_REPORT_VALUES].copy(),
                decrypted[:_REPORT_VALUES].copy(),
            )

    # -------------------------------------------------------------------------
    # DUAL DISPATCH
    # -------------------------------------------------------------------------

    def _run(self, op: str, hook: str, ct: CiphertextHandle, *args) -> None:
        operands = [ct] + [a for a in args if isinstance(a, CiphertextHandle)]
        for operand in operands:
            self.check_scale(operand, op)

        he_ct = ct.copy()
        getattr(self._homomorphic, hook)(he_ct, *args)
        getattr(self._scale_estimator, hook)(ct, *args)
        ct.native = he_ct.native

        self.print_stats(ct, op)
        self.check_scale(ct, op)

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        he_ct = ct.copy()
        self._homomorphic._encrypt_internal(he_ct, values)
        self._scale_estimator._encrypt_internal(ct, values)
        ct.native = he_ct.native
        self.print_stats(ct, 'encrypt')
        self.check_scale(ct, 'encrypt')

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._run('rotate_left', '_rotate_left_inplace_internal', ct, steps)

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        self._run('rotate_right', '_rotate_right_inplace_internal', ct, steps)

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._run('negate', '_negate_inplace_internal', ct)

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._run('add', '_add_inplace_internal', ct1, ct2)

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._run('add_scalar', '_add_scalar_inplace_internal', ct, scalar)

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._run('add_plain_array', '_add_plain_inplace_internal', ct, plain)

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._run('sub', '_sub_inplace_internal', ct1, ct2)

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._run('multiply', '_multiply_inplace_internal', ct1, ct2)

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        self._run('multiply_scalar', '_multiply_scalar_inplace_internal', ct, scalar)

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        self._run('multiply_plain_array', '_multiply_plain_inplace_internal', ct, plain)

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._run('square', '_square_inplace_internal', ct)

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        self._run('mod_down_to', '_mod_down_to_inplace_internal', ct, target)

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        self.check_scale(ct1, 'mod_down_to_min')
        self.check_scale(ct2, 'mod_down_to_min')

        he_ct1, he_ct2 = ct1.copy(), ct2.copy()
        self._homomorphic._mod_down_to_min_inplace_internal(he_ct1, he_ct2)
        self._scale_estimator._mod_down_to_min_inplace_internal(ct1, ct2)
        ct1.native = he_ct1.native
        ct2.native = he_ct2.native

        for ct in (ct1, ct2):
            self.print_stats(ct, 'mod_down_to_min')
            self.check_scale(ct, 'mod_down_to_min')

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        self._run('mod_down_to_level', '_mod_down_to_level_inplace_internal', ct, level)

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._run('rescale_to_next', '_rescale_to_next_inplace_internal', ct)

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        self._run('relinearize', '_relinearize_inplace_internal', ct)
