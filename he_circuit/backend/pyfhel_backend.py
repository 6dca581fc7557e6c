"""
Pyfhel (Microsoft SEAL) CKKS Backend

Uses Pyfhel (Python wrapper for Microsoft SEAL) for real CKKS operations.
Importing this module requires Pyfhel to be installed:

    pip install Pyfhel

The backend registers itself as BackendType.PYFHEL on import.
"""

from typing import Optional
import logging

import numpy as np
from Pyfhel import Pyfhel, PyCtxt

from ..context.ckks_params import CKKSParams
from .ckks_backend import (
    BackendCiphertext,
    BackendType,
    HEBackend,
    register_backend,
)

logger = logging.getLogger(__name__)


@register_backend(BackendType.PYFHEL)
class PyfhelBackend(HEBackend):
    """
    CKKS backend backed by SEAL.

    Level and scale are tracked alongside each PyCtxt so the evaluators see
    the same metadata the simulation backend reports. SEAL's in-place
    operations are always applied to a fresh copy so inputs stay untouched.
    """

    def __init__(self, params: CKKSParams):
        super().__init__(params)
        self._he: Optional[Pyfhel] = None

    def initialize(self) -> None:
        """Create the SEAL context and generate all keys."""
        self._he = Pyfhel()
        self._he.contextGen(
            scheme="CKKS",
            n=self._params.poly_modulus_degree,
            scale=self._params.scale,
            qi_sizes=list(self._params.coeff_modulus_bits),
            sec=128 if self._params.standard_params else 0,
        )
        self._he.keyGen()  # Secret and public key
        self._he.relinKeyGen()  # Relinearization key
        self._he.rotateKeyGen()  # Galois keys for power-of-two rotations
        self._initialized = True
        logger.info(
            f"CKKS context initialized: "
            f"N={self._params.poly_modulus_degree}, "
            f"scale=2^{self._params.scale_bits}, "
            f"slots={self.slot_count}"
        )

    def is_initialized(self) -> bool:
        return self._initialized

    def _wrap(self, ctxt: PyCtxt, level: int, scale: float,
              is_quadratic: bool = False) -> BackendCiphertext:
        return BackendCiphertext(
            handle=ctxt,
            level=level,
            scale=scale,
            slot_count=self.slot_count,
            is_quadratic=is_quadratic,
        )

    @staticmethod
    def _copy(ct: BackendCiphertext) -> PyCtxt:
        return PyCtxt(copy_ctxt=ct.handle)

    def _encode_at(self, ct: BackendCiphertext, values: np.ndarray):
        """Encode values at the ciphertext's scale and modulus level."""
        values = np.asarray(values, dtype=np.float64).ravel()
        ptxt = self._he.encodeFrac(values, scale=ct.scale)
        for _ in range(self.max_level - ct.level):
            self._he.mod_switch_to_next(ptxt)
        return ptxt

    def encrypt(self, values: np.ndarray, level: int, scale: float) -> BackendCiphertext:
        values = np.asarray(values, dtype=np.float64).ravel()
        with self.timed_section('encrypt'):
            ctxt = self._he.encryptFrac(values, scale=scale)
            for _ in range(self.max_level - level):
                self._he.mod_switch_to_next(ctxt)
        self._count('encryptions')
        return self._wrap(ctxt, level, scale)

    def decrypt(self, ct: BackendCiphertext) -> np.ndarray:
        self._count('decryptions')
        with self.timed_section('decrypt'):
            values = self._he.decryptFrac(ct.handle)
        return np.asarray(values, dtype=np.float64)[:self.slot_count]

    def add(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        if ct1.level != ct2.level:
            raise ValueError(
                f"ciphertext levels do not match: {ct1.level} != {ct2.level}"
            )
        self._count('additions')
        result = self._he.add(ct1.handle, ct2.handle, in_new_ctxt=True)
        return self._wrap(result, ct1.level, ct1.scale,
                          ct1.is_quadratic or ct2.is_quadratic)

    def add_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        self._count('additions')
        ptxt = self._encode_at(ct, values)
        result = self._he.add_plain(ct.handle, ptxt, in_new_ctxt=True)
        return self._wrap(result, ct.level, ct.scale, ct.is_quadratic)

    def sub(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        if ct1.level != ct2.level:
            raise ValueError(
                f"ciphertext levels do not match: {ct1.level} != {ct2.level}"
            )
        self._count('additions')
        result = self._he.sub(ct1.handle, ct2.handle, in_new_ctxt=True)
        return self._wrap(result, ct1.level, ct1.scale,
                          ct1.is_quadratic or ct2.is_quadratic)

    def negate(self, ct: BackendCiphertext) -> BackendCiphertext:
        result = self._he.negate(ct.handle, in_new_ctxt=True)
        return self._wrap(result, ct.level, ct.scale, ct.is_quadratic)

    def multiply(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        self._count('multiplications')
        result = self._he.multiply(ct1.handle, ct2.handle, in_new_ctxt=True)
        return self._wrap(result, ct1.level, ct1.scale * ct2.scale, True)

    def multiply_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        self._count('multiplications')
        ptxt = self._encode_at(ct, values)
        result = self._he.multiply_plain(ct.handle, ptxt, in_new_ctxt=True)
        return self._wrap(result, ct.level, ct.scale * ct.scale, ct.is_quadratic)

    def square(self, ct: BackendCiphertext) -> BackendCiphertext:
        self._count('multiplications')
        result = self._he.square(ct.handle, in_new_ctxt=True)
        return self._wrap(result, ct.level, ct.scale * ct.scale, True)

    def rotate(self, ct: BackendCiphertext, steps: int) -> BackendCiphertext:
        self._count('rotations')
        result = self._he.rotate(ct.handle, steps, in_new_ctxt=True)
        return self._wrap(result, ct.level, ct.scale)

    def rescale(self, ct: BackendCiphertext) -> BackendCiphertext:
        if ct.level == 0:
            raise ValueError("end of modulus switching chain reached")
        self._count('rescales')
        result = self._copy(ct)
        self._he.rescale_to_next(result)
        return self._wrap(result, ct.level - 1, ct.scale / self.prime_at(ct.level),
                          ct.is_quadratic)

    def relinearize(self, ct: BackendCiphertext) -> BackendCiphertext:
        self._count('relinearizations')
        result = self._copy(ct)
        self._he.relinearize(result)
        return self._wrap(result, ct.level, ct.scale)

    def mod_switch_to_level(self, ct: BackendCiphertext, level: int) -> BackendCiphertext:
        if level > ct.level:
            raise ValueError(
                f"cannot switch up from level {ct.level} to level {level}"
            )
        self._count('modswitches', ct.level - level)
        result = self._copy(ct)
        for _ in range(ct.level - level):
            self._he.mod_switch_to_next(result)
        return self._wrap(result, level, ct.scale, ct.is_quadratic)
