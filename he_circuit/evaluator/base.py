"""
CKKS Evaluator Contract

A circuit is written once against CKKSEvaluator and can then be run under
any evaluator variant:
  - DepthFinder: multiplicative depth
  - OpCount: operation counts
  - PlaintextEval: cleartext shadow computation
  - ScaleEstimator: largest usable scale
  - HomomorphicEval: real encrypted execution
  - DebugEval: encrypted execution cross-checked against the shadow

The public methods defined here perform all argument validation shared by
the variants (encoding compatibility, level ordering, sizes), derive the
result's encoding metadata and then dispatch to a variant's
``_<op>_inplace_internal`` hook, which only updates the state that variant
tracks (level, scale, shadow or native ciphertext).

Every value-returning operation has an ``*_inplace`` twin that overwrites
its first argument instead.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
import logging

import numpy as np

from ..context.ckks_params import CKKSParams
from .ciphertext import CiphertextHandle, EncodingKind, decode_slots
from .errors import InvalidArgumentError, LevelMismatchError, ShapeMismatchError

logger = logging.getLogger(__name__)

K = EncodingKind

# Mixed pairs whose operands must have identical logical shapes
_SAME_SHAPE_PAIRS = {
    (K.ROW_MATRIX, K.MATRIX),
    (K.MATRIX, K.COL_MATRIX),
}

# add(): operand orders rewritten into the canonical order above
_ADD_SWAPS = {
    (K.MATRIX, K.ROW_MATRIX),
    (K.COL_MATRIX, K.MATRIX),
}


class CKKSEvaluator(ABC):
    """
    Abstract interface for CKKS circuit evaluators.

    Tracking evaluators are synchronous and not thread-safe. Only variants
    that report ``parallel_safe`` may be driven from several threads.
    """

    def __init__(self, params: CKKSParams, verbose: bool = False):
        """
        Args:
            params: CKKS parameters (slot count, modulus chain, base scale)
            verbose: Log every operation at INFO instead of DEBUG
        """
        self._params = params
        self._verbose = verbose

    @property
    def params(self) -> CKKSParams:
        return self._params

    @property
    def slot_count(self) -> int:
        return self._params.slot_count

    @property
    def top_level(self) -> int:
        """Level of a freshly encrypted ciphertext."""
        return self._params.max_depth

    @property
    def verbose(self) -> bool:
        return self._verbose

    @property
    def parallel_safe(self) -> bool:
        """Whether operations may be issued concurrently from several threads."""
        return False

    @property
    def tracks_scale(self) -> bool:
        """
        Whether handle scales follow the modulus chain.

        Evaluators that do not track scales leave every handle at the base
        scale, so scale comparisons between their handles always agree.
        """
        return False

    def reset(self) -> None:
        """Reset the evaluator's accumulated state."""
        self._reset_internal()

    def _reset_internal(self) -> None:
        pass

    def _log_op(self, op: str, *handles: CiphertextHandle) -> None:
        level = logging.INFO if self._verbose else logging.DEBUG
        if logger.isEnabledFor(level):
            logger.log(
                level, "%s.%s(%s)", type(self).__name__, op,
                "; ".join(h.describe() for h in handles),
            )

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def _check_initialized(op: str, *handles: CiphertextHandle) -> None:
        for ct in handles:
            if not ct.initialized:
                raise InvalidArgumentError(op, "ciphertext is not initialized")

    @staticmethod
    def _check_linear(op: str, *handles: CiphertextHandle) -> None:
        for ct in handles:
            if ct.needs_relin:
                raise InvalidArgumentError(
                    op, "ciphertext must be relinearized first"
                )

    @staticmethod
    def is_valid_args(ct1: CiphertextHandle, ct2: CiphertextHandle) -> bool:
        """
        Check that two operands can be combined.

        Operands of the same encoding kind (or one of the mixed pairs
        row_matrix/matrix and matrix/col_matrix) must have identical encoded
        and logical shapes. Any other combination must have identical encoded
        shapes and a matching inner dimension (ct1 width == ct2 height).
        """
        if ct1.encoded_shape != ct2.encoded_shape:
            return False
        kinds = (ct1.encoding_kind, ct2.encoding_kind)
        if ct1.encoding_kind == ct2.encoding_kind or kinds in _SAME_SHAPE_PAIRS:
            return ct1.logical_shape == ct2.logical_shape
        return ct1.logical_width == ct2.logical_height

    def _check_args(self, op: str, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        if not self.is_valid_args(ct1, ct2):
            logger.error(
                "%s: incompatible arguments %s and %s",
                op, ct1.describe(), ct2.describe(),
            )
            raise ShapeMismatchError(
                op,
                f"incompatible arguments: {ct1.describe()} and {ct2.describe()}",
            )

    def _check_plain(self, op: str, ct: CiphertextHandle, plain) -> np.ndarray:
        plain = np.asarray(plain, dtype=np.float64).ravel()
        if plain.size != ct.num_slots:
            raise ShapeMismatchError(
                op,
                f"plaintext has {plain.size} values, ciphertext encodes "
                f"{ct.encoded_height}x{ct.encoded_width}={ct.num_slots}",
            )
        return plain

    def _check_level(self, op: str, level: int) -> None:
        if level < 0 or level > self.top_level:
            raise LevelMismatchError(
                op, f"level {level} out of range [0, {self.top_level}]", (level,)
            )

    @staticmethod
    def _reshape(result: CiphertextHandle, source: CiphertextHandle,
                 kind: EncodingKind) -> None:
        result.logical_height = source.logical_height
        result.logical_width = source.logical_width
        result.encoded_height = source.encoded_height
        result.encoded_width = source.encoded_width
        result.encoding_kind = kind

    def _additive_result(self, op: str, ct1: CiphertextHandle,
                         ct2: CiphertextHandle) -> CiphertextHandle:
        """Validate an add/sub pair and build the result template from ct1."""
        self._check_initialized(op, ct1, ct2)
        a, b = (ct2, ct1) if (ct1.encoding_kind, ct2.encoding_kind) in _ADD_SWAPS else (ct1, ct2)
        self._check_args(op, a, b)

        result = ct1.copy()
        kinds = (a.encoding_kind, b.encoding_kind)
        if a.encoding_kind == b.encoding_kind:
            pass
        elif kinds == (K.ROW_MATRIX, K.MATRIX):
            self._reshape(result, b, K.ROW_MATRIX)
        elif kinds == (K.MATRIX, K.COL_MATRIX):
            self._reshape(result, a, K.COL_MATRIX)
        else:
            logger.error(
                "%s: unsupported encodings %s and %s", op, a.describe(), b.describe()
            )
            raise ShapeMismatchError(
                op, f"cannot combine {a.describe()} with {b.describe()}"
            )
        result.needs_relin = ct1.needs_relin or ct2.needs_relin
        return result

    # =========================================================================
    # ENCRYPTION
    # =========================================================================

    def encrypt(self, values, level: Optional[int] = None) -> CiphertextHandle:
        """
        Encrypt a raw slot vector.

        Args:
            values: Up to slot_count values; the rest are zero-padded
            level: Level to encrypt at (default: top level)

        Returns:
            Column vector of height slot_count encoded in a single row, so
            two such handles can be multiplied slot-wise.
        """
        values = np.asarray(values, dtype=np.float64).ravel()
        if values.size > self.slot_count:
            raise ShapeMismatchError(
                'encrypt',
                f"{values.size} values do not fit in {self.slot_count} slots",
            )
        padded = np.zeros(self.slot_count)
        padded[:values.size] = values
        return self._encrypt_handle(
            'encrypt', padded, K.COL_VECTOR,
            (self.slot_count, 1), (1, self.slot_count), level,
        )

    def encrypt_matrix(self, mat, level: Optional[int] = None) -> CiphertextHandle:
        """
        Encrypt a matrix filling every slot, in row-major order.

        Raises:
            ShapeMismatchError: If the matrix size differs from slot_count.
        """
        mat = np.asarray(mat, dtype=np.float64)
        if mat.ndim != 2 or mat.size != self.slot_count:
            raise ShapeMismatchError(
                'encrypt_matrix',
                f"matrix of shape {mat.shape} does not fill {self.slot_count} slots",
            )
        return self._encrypt_handle(
            'encrypt_matrix', mat.ravel(), K.MATRIX, mat.shape, mat.shape, level
        )

    def encrypt_row_vector(self, vec, width: int,
                           level: Optional[int] = None) -> CiphertextHandle:
        """
        Encrypt a row vector as a len(vec) x width matrix whose columns are vec.

        Raises:
            ShapeMismatchError: If len(vec) * width differs from slot_count.
        """
        vec = np.asarray(vec, dtype=np.float64).ravel()
        if vec.size * width != self.slot_count:
            raise ShapeMismatchError(
                'encrypt_row_vector',
                f"{vec.size}x{width} encoding does not fill {self.slot_count} slots",
            )
        encoded = np.repeat(vec[:, None], width, axis=1)
        return self._encrypt_handle(
            'encrypt_row_vector', encoded.ravel(), K.ROW_VECTOR,
            (1, vec.size), encoded.shape, level,
        )

    def encrypt_col_vector(self, vec, height: int,
                           level: Optional[int] = None) -> CiphertextHandle:
        """
        Encrypt a column vector as a height x len(vec) matrix whose rows are vec.

        Raises:
            ShapeMismatchError: If height * len(vec) differs from slot_count.
        """
        vec = np.asarray(vec, dtype=np.float64).ravel()
        if vec.size * height != self.slot_count:
            raise ShapeMismatchError(
                'encrypt_col_vector',
                f"{height}x{vec.size} encoding does not fill {self.slot_count} slots",
            )
        encoded = np.tile(vec, (height, 1))
        return self._encrypt_handle(
            'encrypt_col_vector', encoded.ravel(), K.COL_VECTOR,
            (vec.size, 1), encoded.shape, level,
        )

    def _encrypt_handle(
        self,
        op: str,
        values: np.ndarray,
        kind: EncodingKind,
        logical: Tuple[int, int],
        encoded: Tuple[int, int],
        level: Optional[int],
    ) -> CiphertextHandle:
        level = self.top_level if level is None else level
        self._check_level(op, level)
        if self.tracks_scale:
            scale = self._params.nominal_scale_at_level(level)
        else:
            scale = self._params.scale
        ct = CiphertextHandle(
            logical_height=logical[0],
            logical_width=logical[1],
            encoded_height=encoded[0],
            encoded_width=encoded[1],
            encoding_kind=kind,
            he_level=level,
            scale=scale,
        )
        self._log_op(op, ct)
        self._encrypt_internal(ct, values)
        return ct

    def decrypt(self, ct: CiphertextHandle) -> np.ndarray:
        """
        Decrypt a handle into its raw slot values.

        Raises:
            InvalidArgumentError: If this evaluator holds no ciphertexts.
        """
        raise InvalidArgumentError(
            'decrypt', f"{type(self).__name__} does not hold ciphertexts"
        )

    def decrypt_value(self, ct: CiphertextHandle) -> np.ndarray:
        """Decrypt and decode a handle into the matrix or vector it encodes."""
        return decode_slots(ct, self.decrypt(ct))

    # =========================================================================
    # ROTATION
    # =========================================================================

    def rotate_left(self, ct: CiphertextHandle, steps: int) -> CiphertextHandle:
        """
        Rotate slots cyclically to the left.

        Args:
            ct: Linear ciphertext
            steps: Non-negative rotation amount

        Raises:
            InvalidArgumentError: If steps is negative or ct is quadratic.
        """
        result = self._rotation_result('rotate_left', ct, steps)
        self._rotate_left_inplace_internal(result, steps)
        return result

    def rotate_left_inplace(self, ct: CiphertextHandle, steps: int) -> None:
        ct.assign(self.rotate_left(ct, steps))

    def rotate_right(self, ct: CiphertextHandle, steps: int) -> CiphertextHandle:
        """Rotate slots cyclically to the right; see rotate_left."""
        result = self._rotation_result('rotate_right', ct, steps)
        self._rotate_right_inplace_internal(result, steps)
        return result

    def rotate_right_inplace(self, ct: CiphertextHandle, steps: int) -> None:
        ct.assign(self.rotate_right(ct, steps))

    def _rotation_result(self, op: str, ct: CiphertextHandle, steps: int) -> CiphertextHandle:
        self._check_initialized(op, ct)
        if steps < 0:
            raise InvalidArgumentError(op, f"rotation steps must be >= 0, got {steps}")
        self._check_linear(op, ct)
        self._log_op(op, ct)
        return ct.copy()

    # =========================================================================
    # ADDITION / SUBTRACTION
    # =========================================================================

    def negate(self, ct: CiphertextHandle) -> CiphertextHandle:
        self._check_initialized('negate', ct)
        self._log_op('negate', ct)
        result = ct.copy()
        self._negate_inplace_internal(result)
        return result

    def negate_inplace(self, ct: CiphertextHandle) -> None:
        ct.assign(self.negate(ct))

    def add(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> CiphertextHandle:
        """
        Add two ciphertexts.

        A row_matrix plus a matrix is a row_matrix and a matrix plus a
        col_matrix is a col_matrix; otherwise both operands must share
        their encoding.

        Raises:
            ShapeMismatchError: If the encodings are incompatible.
            LevelMismatchError: If the levels differ.
        """
        result = self._additive_result('add', ct1, ct2)
        self._log_op('add', ct1, ct2)
        self._add_inplace_internal(result, ct2)
        return result

    def add_inplace(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        ct1.assign(self.add(ct1, ct2))

    def add_scalar(self, ct: CiphertextHandle, scalar: float) -> CiphertextHandle:
        """Add a constant to every slot."""
        self._check_initialized('add_scalar', ct)
        self._log_op('add_scalar', ct)
        result = ct.copy()
        self._add_scalar_inplace_internal(result, float(scalar))
        return result

    def add_scalar_inplace(self, ct: CiphertextHandle, scalar: float) -> None:
        ct.assign(self.add_scalar(ct, scalar))

    def add_plain_array(self, ct: CiphertextHandle, plain) -> CiphertextHandle:
        """
        Add a public vector slot-wise.

        Raises:
            ShapeMismatchError: If the vector does not have one value per slot.
        """
        self._check_initialized('add_plain_array', ct)
        plain = self._check_plain('add_plain_array', ct, plain)
        self._log_op('add_plain_array', ct)
        result = ct.copy()
        self._add_plain_inplace_internal(result, plain)
        return result

    def add_plain_array_inplace(self, ct: CiphertextHandle, plain) -> None:
        ct.assign(self.add_plain_array(ct, plain))

    def add_many(self, cts: Sequence[CiphertextHandle]) -> CiphertextHandle:
        """Sum a non-empty list of ciphertexts."""
        if len(cts) == 0:
            raise InvalidArgumentError('add_many', "vector of summands is empty")
        result = cts[0].copy()
        for ct in cts[1:]:
            result = self.add(result, ct)
        return result

    def sub(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> CiphertextHandle:
        """Subtract ct2 from ct1; encodings combine as in add."""
        result = self._additive_result('sub', ct1, ct2)
        self._log_op('sub', ct1, ct2)
        self._sub_inplace_internal(result, ct2)
        return result

    def sub_inplace(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        ct1.assign(self.sub(ct1, ct2))

    def sub_scalar(self, ct: CiphertextHandle, scalar: float) -> CiphertextHandle:
        return self.add_scalar(ct, -scalar)

    def sub_scalar_inplace(self, ct: CiphertextHandle, scalar: float) -> None:
        ct.assign(self.sub_scalar(ct, scalar))

    def sub_plain_array(self, ct: CiphertextHandle, plain) -> CiphertextHandle:
        return self.add_plain_array(ct, -np.asarray(plain, dtype=np.float64))

    def sub_plain_array_inplace(self, ct: CiphertextHandle, plain) -> None:
        ct.assign(self.sub_plain_array(ct, plain))

    # =========================================================================
    # MULTIPLICATION
    # =========================================================================

    def multiply(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> CiphertextHandle:
        """
        Multiply two ciphertexts slot-wise.

        Only these encoding pairs can be multiplied:
          - row vector x (row_)matrix: a row_matrix of the matrix's shape
          - (col_)matrix x column vector: a col_matrix of the matrix's shape
          - row vector x row vector, column vector x column vector: unchanged

        Operands given in the other order are swapped. The result is
        quadratic and carries the squared scale.

        Raises:
            ShapeMismatchError: If the encodings are incompatible, including
                any two matrix kinds.
            LevelMismatchError: If the levels differ.
            InvalidArgumentError: If an operand still needs relinearization.
        """
        self._check_initialized('multiply', ct1, ct2)
        self._check_linear('multiply', ct1, ct2)
        if ct2.encoding_kind == K.ROW_VECTOR and ct1.encoding_kind in (K.ROW_MATRIX, K.MATRIX):
            ct1, ct2 = ct2, ct1
        if ct1.encoding_kind == K.COL_VECTOR and ct2.encoding_kind in (K.COL_MATRIX, K.MATRIX):
            ct1, ct2 = ct2, ct1
        self._check_args('multiply', ct1, ct2)

        result = ct1.copy()
        k1, k2 = ct1.encoding_kind, ct2.encoding_kind
        if k1 == K.ROW_VECTOR and k2 in (K.ROW_MATRIX, K.MATRIX):
            self._reshape(result, ct2, K.ROW_MATRIX)
        elif k2 == K.COL_VECTOR and k1 in (K.COL_MATRIX, K.MATRIX):
            self._reshape(result, ct1, K.COL_MATRIX)
        elif not (k1 == k2 and k1 in (K.ROW_VECTOR, K.COL_VECTOR)):
            logger.error(
                "multiply: unsupported encodings %s and %s",
                ct1.describe(), ct2.describe(),
            )
            raise ShapeMismatchError(
                'multiply', f"cannot multiply {ct1.describe()} by {ct2.describe()}"
            )

        self._log_op('multiply', ct1, ct2)
        self._multiply_inplace_internal(result, ct2)
        result.needs_relin = True
        return result

    def multiply_inplace(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        ct1.assign(self.multiply(ct1, ct2))

    def multiply_many(self, cts: Sequence[CiphertextHandle]) -> CiphertextHandle:
        """
        Multiply a non-empty list of ciphertexts with a balanced product tree.

        Every tree level relinearizes and rescales, so n inputs consume
        ceil(log2 n) levels. Inputs must share level and scale.
        """
        if len(cts) == 0:
            raise InvalidArgumentError('multiply_many', "vector of factors is empty")
        layer: List[CiphertextHandle] = [ct.copy() for ct in cts]
        while len(layer) > 1:
            next_layer = []
            for i in range(0, len(layer) - 1, 2):
                product = self.multiply(layer[i], layer[i + 1])
                self.relinearize_inplace(product)
                self.rescale_to_next_inplace(product)
                next_layer.append(product)
            if len(layer) % 2 == 1:
                next_layer.append(self.mod_down_to(layer[-1], next_layer[0]))
            layer = next_layer
        return layer[0]

    def multiply_scalar(self, ct: CiphertextHandle, scalar: float) -> CiphertextHandle:
        """Multiply every slot by a constant; the result has squared scale."""
        self._check_initialized('multiply_scalar', ct)
        self._log_op('multiply_scalar', ct)
        result = ct.copy()
        self._multiply_scalar_inplace_internal(result, float(scalar))
        return result

    def multiply_scalar_inplace(self, ct: CiphertextHandle, scalar: float) -> None:
        ct.assign(self.multiply_scalar(ct, scalar))

    def multiply_plain_array(self, ct: CiphertextHandle, plain) -> CiphertextHandle:
        """
        Multiply slot-wise by a public vector; the result has squared scale.

        Raises:
            ShapeMismatchError: If the vector does not have one value per slot.
        """
        self._check_initialized('multiply_plain_array', ct)
        plain = self._check_plain('multiply_plain_array', ct, plain)
        self._log_op('multiply_plain_array', ct)
        result = ct.copy()
        self._multiply_plain_inplace_internal(result, plain)
        return result

    def multiply_plain_array_inplace(self, ct: CiphertextHandle, plain) -> None:
        ct.assign(self.multiply_plain_array(ct, plain))

    def square(self, ct: CiphertextHandle) -> CiphertextHandle:
        """Square a ciphertext; the result is quadratic with squared scale."""
        self._check_initialized('square', ct)
        self._check_linear('square', ct)
        self._log_op('square', ct)
        result = ct.copy()
        self._square_inplace_internal(result)
        result.needs_relin = True
        return result

    def square_inplace(self, ct: CiphertextHandle) -> None:
        ct.assign(self.square(ct))

    # =========================================================================
    # LEVEL MAINTENANCE
    # =========================================================================

    def mod_down_to(self, ct: CiphertextHandle, target: CiphertextHandle) -> CiphertextHandle:
        """
        Bring ct down to target's level (and scale).

        Raises:
            LevelMismatchError: If ct is already below target.
        """
        self._check_initialized('mod_down_to', ct, target)
        if ct.he_level < target.he_level:
            raise LevelMismatchError(
                'mod_down_to', "ct level is below target level",
                (ct.he_level, target.he_level),
            )
        self._log_op('mod_down_to', ct, target)
        result = ct.copy()
        self._mod_down_to_inplace_internal(result, target)
        return result

    def mod_down_to_inplace(self, ct: CiphertextHandle, target: CiphertextHandle) -> None:
        ct.assign(self.mod_down_to(ct, target))

    def mod_down_to_min(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        """Bring whichever handle is higher down to the other's level, in place."""
        self._check_initialized('mod_down_to_min', ct1, ct2)
        self._log_op('mod_down_to_min', ct1, ct2)
        self._mod_down_to_min_inplace_internal(ct1, ct2)

    def mod_down_to_level(self, ct: CiphertextHandle, level: int) -> CiphertextHandle:
        """
        Bring ct down to an absolute level.

        Raises:
            InvalidArgumentError: If level is negative.
            LevelMismatchError: If ct is already below level.
        """
        self._check_initialized('mod_down_to_level', ct)
        if level < 0:
            raise InvalidArgumentError(
                'mod_down_to_level', f"level must be >= 0, got {level}"
            )
        if ct.he_level < level:
            raise LevelMismatchError(
                'mod_down_to_level', "ct level is below target level",
                (ct.he_level, level),
            )
        self._log_op('mod_down_to_level', ct)
        result = ct.copy()
        self._mod_down_to_level_inplace_internal(result, level)
        return result

    def mod_down_to_level_inplace(self, ct: CiphertextHandle, level: int) -> None:
        ct.assign(self.mod_down_to_level(ct, level))

    def rescale_to_next(self, ct: CiphertextHandle) -> CiphertextHandle:
        """
        Divide by the prime of the current level and drop one level.

        Raises:
            LevelMismatchError: If ct is at level 0.
        """
        self._check_initialized('rescale_to_next', ct)
        if ct.he_level == 0:
            raise LevelMismatchError(
                'rescale_to_next', "cannot rescale a ciphertext at level 0", (0,)
            )
        self._log_op('rescale_to_next', ct)
        result = ct.copy()
        self._rescale_to_next_inplace_internal(result)
        return result

    def rescale_to_next_inplace(self, ct: CiphertextHandle) -> None:
        ct.assign(self.rescale_to_next(ct))

    def relinearize(self, ct: CiphertextHandle) -> CiphertextHandle:
        """Turn a quadratic ciphertext back into a linear one."""
        self._check_initialized('relinearize', ct)
        self._log_op('relinearize', ct)
        result = ct.copy()
        self._relinearize_inplace_internal(result)
        result.needs_relin = False
        return result

    def relinearize_inplace(self, ct: CiphertextHandle) -> None:
        ct.assign(self.relinearize(ct))

    # =========================================================================
    # VARIANT HOOKS
    # =========================================================================

    @abstractmethod
    def _encrypt_internal(self, ct: CiphertextHandle, values: np.ndarray) -> None:
        """Attach the variant's payload to a freshly created handle."""
        pass

    @abstractmethod
    def _rotate_left_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        pass

    @abstractmethod
    def _rotate_right_inplace_internal(self, ct: CiphertextHandle, steps: int) -> None:
        pass

    @abstractmethod
    def _negate_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _add_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _add_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        pass

    @abstractmethod
    def _add_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        pass

    @abstractmethod
    def _sub_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _multiply_inplace_internal(self, ct1: CiphertextHandle, ct2: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _multiply_scalar_inplace_internal(self, ct: CiphertextHandle, scalar: float) -> None:
        pass

    @abstractmethod
    def _multiply_plain_inplace_internal(self, ct: CiphertextHandle, plain: np.ndarray) -> None:
        pass

    @abstractmethod
    def _square_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _mod_down_to_inplace_internal(self, ct: CiphertextHandle,
                                      target: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _mod_down_to_min_inplace_internal(self, ct1: CiphertextHandle,
                                          ct2: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _mod_down_to_level_inplace_internal(self, ct: CiphertextHandle, level: int) -> None:
        pass

    @abstractmethod
    def _rescale_to_next_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def _relinearize_inplace_internal(self, ct: CiphertextHandle) -> None:
        pass
