"""
HomomorphicEval: real encrypted execution on a CKKS backend.

The evaluator itself is stateless; all key material and counters live in
the backend, which guards its own mutable state. Handles may therefore be
processed concurrently from several threads, which LinearAlgebra exploits.
"""

from typing import Union
import logging

import numpy as np

from ..backend.ckks_backend import (
    BackendType,
    HEBackend,
    OperationCounters,
    create_backend,
)
from ..context.ckks_params import CKKSParams
from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle
from .errors import InvalidArgumentError, LevelMismatchError, backend_errors

logger = logging.getLogger(__name__)


class HomomorphicEval(CKKSEvaluator):
    """
    Evaluator that executes the circuit on encrypted data.

    Args:
        params: CKKS parameters
        backend: Initialized backend, or the type of backend to create
        verbose: Log every operation at INFO
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
        if isinstance(backend, BackendType):
            backend = create_backend(backend, params, **backend_options)
        elif not backend.is_initialized():
            backend.initialize()
        self._backend = backend

    @property
    def backend(self) -> HEBackend:
        return self._backend

    @property
    def counters(self) -> OperationCounters:
        """Snapshot of the backend operation counters."""
        return self._backend.counters

    @property
    def parallel_safe(self) -> bool:
        return True

    @property
    def tracks_scale(self) -> bool:
        return True

    def decrypt(self, ct: CiphertextHandle) -> np.ndarray:
        if ct.native is None:
            raise InvalidArgumentError('decrypt', "handle has no ciphertext")
        with backend_errors('decrypt'):
            return self._backend.decrypt(ct.native)

    @staticmethod
    def _sync(ct: CiphertextHandle) -> None:
        ct.he_level = ct.native.level
        ct.scale = ct.native.scale

    @staticmethod
    def _check_same_level(op: str, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        if ct1.he_level != ct2.he_level:
            raise LevelMismatchError(
                op,
                f"input levels do not match: {ct1.he_level} != {ct2.he_level}",
                (ct1.he_level, ct2.he_level),
            )

    # -------------------------------------------------------------------------
    # BACKEND DISPATCH
    # -------------------------------------------------------------------------

    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        with backend_errors('encrypt'):
            native = self._backend.encrypt(values, self.top_level, ct.scale)
            if ct.he_level < self.top_level:
                native = self._backend.mod_switch_to_level(native, ct.he_level)
        ct.native = native
        self._sync(ct)

    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        with backend_errors('rotate_left'):
            ct.native = self._backend.rotate(ct.native, steps)

    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        with backend_errors('rotate_right'):
            ct.native = self._backend.rotate(ct.native, -steps)

    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        with backend_errors('negate'):
            ct.native = self._backend.negate(ct.native)

    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('add', ct1, ct2)
        with backend_errors('add'):
            ct1.native = self._backend.add(ct1.native, ct2.native)
        self._sync(ct1)

    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        with backend_errors('add_scalar'):
            ct.native = self._backend.add_plain(ct.native, np.full(ct.num_slots, scalar))

    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        with backend_errors('add_plain_array'):
            ct.native = self._backend.add_plain(ct.native, plain)

    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('sub', ct1, ct2)
        with backend_errors('sub'):
            ct1.native = self._backend.sub(ct1.native, ct2.native)
        self._sync(ct1)

    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        self._check_same_level('multiply', ct1, ct2)
        with backend_errors('multiply'):
            ct1.native = self._backend.multiply(ct1.native, ct2.native)
        self._sync(ct1)

    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        with backend_errors('multiply_scalar'):
            if scalar == 0.0:
                # A zero plaintext yields a transparent ciphertext; encrypt a
                # fresh zero with the scale and level the product would have
                scale = ct.scale * ct.scale
                native = self._backend.encrypt(np.zeros(ct.num_slots), self.top_level, scale)
                ct.native = self._backend.mod_switch_to_level(native, ct.he_level)
            else:
                ct.native = self._backend.multiply_plain(
                    ct.native, np.full(ct.num_slots, scalar)
                )
        self._sync(ct)

    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        with backend_errors('multiply_plain_array'):
            ct.native = self._backend.multiply_plain(ct.native, plain)
        self._sync(ct)

    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        with backend_errors('square'):
            ct.native = self._backend.square(ct.native)
        self._sync(ct)

    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        self._mod_down_to_level_inplace_internal(ct, target.he_level)

    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        if ct1.he_level > ct2.he_level:
            self._mod_down_to_level_inplace_internal(ct1, ct2.he_level)
        elif ct2.he_level > ct1.he_level:
            self._mod_down_to_level_inplace_internal(ct2, ct1.he_level)

    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        if ct.he_level < level:
            raise LevelMismatchError(
                'mod_down_to_level', "ct level is below target level",
                (ct.he_level, level),
            )
        # Multiply by one and rescale so the scale follows the nominal chain
        while ct.he_level > level:
            self._multiply_scalar_inplace_internal(ct, 1.0)
            self._rescale_to_next_inplace_internal(ct)

    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        with backend_errors('rescale_to_next'):
            ct.native = self._backend.rescale(ct.native)
        self._sync(ct)

    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        with backend_errors('relinearize'):
            ct.native = self._backend.relinearize(ct.native)
