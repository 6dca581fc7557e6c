"""
Encrypted Linear Algebra

LinearAlgebra builds matrix and vector arithmetic on top of any CKKS
evaluator. Objects are tiled onto encoding units (see encoding.py) and the
products are assembled from three ingredients:

  - slot-wise products of tiles (hadamard_multiply)
  - rotate-and-add reductions that sum a tile's rows or columns (rot)
  - plaintext masks that select one row or column of a tile

Cost summary (per output tile):
  - sum_rows: log2(unit.height) rotations, no level
  - sum_cols: 2*log2(unit.width) rotations, one plaintext multiply
  - row_vector x matrix: one level (the hadamard product is not rescaled)
  - matrix x col_vector: one level plus a squared-scale mask
  - matrix x matrix: two levels below A^T, which must sit one level above B

When the evaluator is parallel_safe (HomomorphicEval), independent tiles
are processed on a fixed-size thread pool. Nested maps issued from a
worker run sequentially so the pool can never deadlock on itself.
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Sequence, TypeVar, Union
import logging
import math
import numbers
import threading

import numpy as np

from ..evaluator.base import CKKSEvaluator
from ..evaluator.ciphertext import CiphertextHandle, EncodingKind
from ..evaluator.errors import (
    InvalidArgumentError,
    LevelMismatchError,
    ScaleInconsistencyError,
    ShapeMismatchError,
)
from .encoding import (
    EncodingUnit,
    ceil_div,
    decode_col_vector,
    decode_matrix,
    decode_row_vector,
    encode_col_vector,
    encode_matrix,
    encode_row_vector,
)
from .encrypted import (
    EncryptedColVector,
    EncryptedMatrix,
    EncryptedObject,
    EncryptedRowVector,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')

Encrypted = Union[EncryptedMatrix, EncryptedRowVector, EncryptedColVector]


class RotationDirection(Enum):
    """Direction of a rotate-and-add reduction."""
    SUM = "sum"  # Rotate left: accumulate into the first slot of each window
    REPLICATE = "replicate"  # Rotate right: copy the first slot across the window


class LinearAlgebra:
    """
    Linear algebra over encrypted matrices and vectors.

    Args:
        evaluator: Any CKKS evaluator
        max_workers: Thread pool size for parallel_safe evaluators
            (None lets ThreadPoolExecutor pick, 1 disables the pool)
    """

    def __init__(self, evaluator: CKKSEvaluator, max_workers: Optional[int] = None):
        self._eval = evaluator
        self._max_workers = max_workers
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()
        self._local = threading.local()

    @property
    def evaluator(self) -> CKKSEvaluator:
        return self._eval

    def close(self) -> None:
        """Shut down the worker pool."""
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=True)
                self._pool = None

    def __enter__(self) -> 'LinearAlgebra':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # PARALLEL MAP
    # =========================================================================

    def _use_pool(self) -> bool:
        return (
            self._eval.parallel_safe
            and self._max_workers != 1
            and not getattr(self._local, 'in_worker', False)
        )

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix='he-linalg',
                )
            return self._pool

    def _worker(self, fn: Callable[[T], R]) -> Callable[[T], R]:
        def run(item: T) -> R:
            self._local.in_worker = True
            try:
                return fn(item)
            finally:
                self._local.in_worker = False
        return run

    def _map(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        """Apply fn to every item, in parallel when the evaluator allows it."""
        items = list(items)
        if len(items) <= 1 or not self._use_pool():
            return [fn(item) for item in items]
        return list(self._get_pool().map(self._worker(fn), items))

    # =========================================================================
    # ENCODING UNITS AND ENCRYPTION
    # =========================================================================

    def make_unit(self, height: int) -> EncodingUnit:
        """
        Encoding unit of the given height filling every slot.

        Raises:
            ShapeMismatchError: If height does not divide the slot count into
                a power-of-two width.
        """
        slots = self._eval.slot_count
        if height <= 0 or slots % height != 0:
            raise ShapeMismatchError(
                'make_unit', f"unit height {height} does not divide {slots} slots"
            )
        return EncodingUnit(height, slots // height)

    def _check_unit(self, op: str, unit: EncodingUnit) -> None:
        if unit.num_slots != self._eval.slot_count:
            raise ShapeMismatchError(
                op, f"unit {unit} does not fill {self._eval.slot_count} slots"
            )

    def encrypt_matrix(self, mat, unit: EncodingUnit,
                       level: Optional[int] = None) -> EncryptedMatrix:
        """Tile and encrypt a plaintext matrix."""
        self._check_unit('encrypt_matrix', unit)
        tiles = encode_matrix(mat, unit)
        height, width = np.shape(np.asarray(mat, dtype=np.float64))
        cts = [
            self._map(lambda tile: self._eval.encrypt_matrix(tile, level), row)
            for row in tiles
        ]
        return EncryptedMatrix(height, width, unit, cts)

    def encrypt_row_vector(self, vec, unit: EncodingUnit,
                           level: Optional[int] = None) -> EncryptedRowVector:
        """Tile and encrypt a plaintext row vector."""
        self._check_unit('encrypt_row_vector', unit)
        tiles = encode_row_vector(vec, unit)
        cts = self._map(
            lambda tile: self._eval.encrypt_row_vector(tile[:, 0], unit.width, level), tiles
        )
        return EncryptedRowVector(len(vec), unit, cts)

    def encrypt_col_vector(self, vec, unit: EncodingUnit,
                           level: Optional[int] = None) -> EncryptedColVector:
        """Tile and encrypt a plaintext column vector."""
        self._check_unit('encrypt_col_vector', unit)
        tiles = encode_col_vector(vec, unit)
        cts = self._map(
            lambda tile: self._eval.encrypt_col_vector(tile[0], unit.height, level), tiles
        )
        return EncryptedColVector(len(vec), unit, cts)

    def decrypt(self, obj: Encrypted) -> np.ndarray:
        """Decrypt an encrypted matrix or vector into its plaintext value."""
        unit = obj.unit
        tiles = self._map(
            lambda ct: self._eval.decrypt(ct).reshape(unit.height, unit.width),
            obj.cells(),
        )
        if isinstance(obj, EncryptedMatrix):
            cols = obj.num_horizontal_units
            grid = [tiles[i * cols:(i + 1) * cols] for i in range(obj.num_vertical_units)]
            return decode_matrix(grid, obj.height, obj.width)
        if isinstance(obj, EncryptedRowVector):
            return decode_row_vector(tiles, obj.width)
        return decode_col_vector(tiles, obj.height)

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def _check_same_size(op: str, a: EncryptedObject, b: EncryptedObject) -> None:
        if not a.same_size(b):
            raise ShapeMismatchError(
                op,
                f"arguments do not match: {a.shape_description()} with unit "
                f"{a.unit} and {b.shape_description()} with unit {b.unit}",
            )

    @staticmethod
    def _check_same_unit(op: str, a: EncryptedObject, b: EncryptedObject) -> None:
        if a.unit != b.unit:
            raise ShapeMismatchError(
                op, f"encoding units do not match: {a.unit} != {b.unit}"
            )

    @staticmethod
    def _check_same_level_and_scale(op: str, a: EncryptedObject, b: EncryptedObject) -> None:
        if a.he_level != b.he_level:
            raise LevelMismatchError(
                op, f"arguments are at different levels: {a.he_level} != {b.he_level}",
                (a.he_level, b.he_level),
            )
        if not math.isclose(a.scale, b.scale, rel_tol=1e-9):
            raise ScaleInconsistencyError(
                op, "arguments have different scales", expected=a.scale, actual=b.scale
            )

    def _check_nominal(self, op: str, *objs: EncryptedObject) -> None:
        """Inputs to products must be linear and carry the base scale (not its square)."""
        base_log = math.log2(self._eval.params.scale)
        for obj in objs:
            if any(ct.needs_relin for ct in obj.cells()):
                raise InvalidArgumentError(op, "arguments must be relinearized")
            if round(math.log2(obj.scale) / base_log) != 1:
                raise ScaleInconsistencyError(
                    op, "arguments must have nominal scale", actual=obj.scale
                )

    def _mask_array(self, unit: EncodingUnit, mask: np.ndarray) -> np.ndarray:
        return mask.reshape(unit.height * unit.width)

    # =========================================================================
    # CELL-WISE OPERATIONS
    # =========================================================================

    def _map_cells(self, obj: Encrypted, fn: Callable[[CiphertextHandle], CiphertextHandle]):
        return obj.with_cells(self._map(fn, obj.cells()))

    def _zip_cells(self, op: str, a: Encrypted, b: Encrypted,
                   fn: Callable[[CiphertextHandle, CiphertextHandle], CiphertextHandle]):
        self._check_same_size(op, a, b)
        pairs = list(zip(a.cells(), b.cells()))
        return a.with_cells(self._map(lambda pair: fn(*pair), pairs))

    @staticmethod
    def _assign(target: Encrypted, source: Encrypted) -> None:
        target._cts = source._cts

    def add(self, a: Encrypted, b: Union[Encrypted, np.ndarray, float]) -> Encrypted:
        """
        Add an encrypted object, a plaintext of the same shape, or a scalar.

        Raises:
            ShapeMismatchError: If the operands' shapes or units differ.
        """
        if isinstance(b, EncryptedObject):
            return self._zip_cells('add', a, b, self._eval.add)
        if isinstance(b, numbers.Real):
            return self.add_scalar(a, b)
        return self.add_plain(a, b)

    def add_inplace(self, a: Encrypted, b: Union[Encrypted, np.ndarray, float]) -> None:
        self._assign(a, self.add(a, b))

    def sub(self, a: Encrypted, b: Encrypted) -> Encrypted:
        return self._zip_cells('sub', a, b, self._eval.sub)

    def sub_inplace(self, a: Encrypted, b: Encrypted) -> None:
        self._assign(a, self.sub(a, b))

    def negate(self, a: Encrypted) -> Encrypted:
        return self._map_cells(a, self._eval.negate)

    def add_scalar(self, a: Encrypted, scalar: float) -> Encrypted:
        return self._map_cells(a, lambda ct: self._eval.add_scalar(ct, scalar))

    def add_plain(self, a: Encrypted, plain) -> Encrypted:
        """Add a plaintext matrix or vector with the same shape as ``a``."""
        plain = np.asarray(plain, dtype=np.float64)
        if isinstance(a, EncryptedMatrix):
            if plain.shape != (a.height, a.width):
                raise ShapeMismatchError(
                    'add_plain', f"plaintext shape {plain.shape} != {(a.height, a.width)}"
                )
            tiles = [tile for row in encode_matrix(plain, a.unit) for tile in row]
        elif isinstance(a, EncryptedRowVector):
            if plain.shape != (a.width,):
                raise ShapeMismatchError(
                    'add_plain', f"plaintext shape {plain.shape} != {(a.width,)}"
                )
            tiles = encode_row_vector(plain, a.unit)
        else:
            if plain.shape != (a.height,):
                raise ShapeMismatchError(
                    'add_plain', f"plaintext shape {plain.shape} != {(a.height,)}"
                )
            tiles = encode_col_vector(plain, a.unit)
        pairs = list(zip(a.cells(), tiles))
        return a.with_cells(self._map(
            lambda pair: self._eval.add_plain_array(pair[0], pair[1].ravel()), pairs
        ))

    def add_many(self, objs: Sequence[Encrypted]) -> Encrypted:
        """Sum a non-empty list of same-shaped objects."""
        if len(objs) == 0:
            raise InvalidArgumentError('add_many', "vector of summands is empty")
        for obj in objs[1:]:
            self._check_same_size('add_many', objs[0], obj)
        columns = list(zip(*[obj.cells() for obj in objs]))
        return objs[0].with_cells(self._map(self._eval.add_many, columns))

    def hadamard_square(self, a: Encrypted) -> Encrypted:
        """Square every element; the result is quadratic with squared scale."""
        return self._map_cells(a, self._eval.square)

    def multiply_scalar(self, a: Encrypted, scalar: float) -> Encrypted:
        return self._map_cells(a, lambda ct: self._eval.multiply_scalar(ct, scalar))

    # -------------------------------------------------------------------------
    # LEVEL MAINTENANCE
    # -------------------------------------------------------------------------

    def mod_down_to(self, a: Encrypted, target: EncryptedObject) -> Encrypted:
        """Bring every cell of ``a`` to the level and scale of ``target``."""
        anchor = target.cells()[0]
        return self._map_cells(a, lambda ct: self._eval.mod_down_to(ct, anchor))

    def mod_down_to_inplace(self, a: Encrypted, target: EncryptedObject) -> None:
        self._assign(a, self.mod_down_to(a, target))

    def mod_down_to_min(self, a: Encrypted, b: Encrypted) -> None:
        """Bring whichever object is higher down to the other's level, in place."""
        if a.he_level > b.he_level:
            self.mod_down_to_inplace(a, b)
        elif b.he_level > a.he_level:
            self.mod_down_to_inplace(b, a)

    def mod_down_to_level(self, a: Encrypted, level: int) -> Encrypted:
        return self._map_cells(a, lambda ct: self._eval.mod_down_to_level(ct, level))

    def mod_down_to_level_inplace(self, a: Encrypted, level: int) -> None:
        self._assign(a, self.mod_down_to_level(a, level))

    def rescale_to_next(self, a: Encrypted) -> Encrypted:
        return self._map_cells(a, self._eval.rescale_to_next)

    def rescale_to_next_inplace(self, a: Encrypted) -> None:
        self._assign(a, self.rescale_to_next(a))

    def relinearize(self, a: Encrypted) -> Encrypted:
        return self._map_cells(a, self._eval.relinearize)

    def relinearize_inplace(self, a: Encrypted) -> None:
        self._assign(a, self.relinearize(a))

    # =========================================================================
    # REDUCTIONS
    # =========================================================================

    def rot(self, ct: CiphertextHandle, max_: int, stride: int,
            direction: RotationDirection) -> CiphertextHandle:
        """
        Rotate-and-add over a window of ``max_`` strides.

        With SUM, slot 0 of every window ends up holding the window's sum.
        With REPLICATE, a value alone in slot 0 of its window is copied to
        every slot of the window.
        """
        result = ct
        i = 1
        while i < max_:
            if direction == RotationDirection.SUM:
                rotated = self._eval.rotate_left(result, i * stride)
            else:
                rotated = self._eval.rotate_right(result, i * stride)
            result = self._eval.add(result, rotated)
            i <<= 1
        return result

    def sum_cols_core(self, ct: CiphertextHandle, unit: EncodingUnit,
                      scalar: float = 1.0) -> CiphertextHandle:
        """
        Sum each row of a tile into every slot of that row, times ``scalar``.

        The mask multiplication squares the scale; no rescale is performed.
        """
        summed = self.rot(ct, unit.width, 1, RotationDirection.SUM)
        mask = np.zeros((unit.height, unit.width))
        mask[:, 0] = scalar
        masked = self._eval.multiply_plain_array(summed, self._mask_array(unit, mask))
        return self.rot(masked, unit.width, 1, RotationDirection.REPLICATE)

    def sum_rows_core(self, ct: CiphertextHandle, unit: EncodingUnit) -> CiphertextHandle:
        """Sum each column of a tile into every slot of that column."""
        return self.rot(ct, unit.height, unit.width, RotationDirection.SUM)

    def sum_cols(self, mat: EncryptedMatrix, scalar: float = 1.0) -> EncryptedRowVector:
        """
        Row sums of a matrix, times ``scalar``, as a row vector.

        The result stays at the input level with squared scale.
        """
        def reduce_row(i: int) -> CiphertextHandle:
            summed = self.sum_cols_core(self._eval.add_many(mat[i]), mat.unit, scalar)
            return self._retag(summed, EncodingKind.ROW_VECTOR, mat.unit)

        cts = self._map(reduce_row, range(mat.num_vertical_units))
        return EncryptedRowVector(mat.height, mat.unit, cts)

    def sum_rows(self, mat: EncryptedMatrix) -> EncryptedColVector:
        """Column sums of a matrix as a column vector; level and scale unchanged."""
        def reduce_col(j: int) -> CiphertextHandle:
            column = [mat[i][j] for i in range(mat.num_vertical_units)]
            summed = self.sum_rows_core(self._eval.add_many(column), mat.unit)
            return self._retag(summed, EncodingKind.COL_VECTOR, mat.unit)

        cts = self._map(reduce_col, range(mat.num_horizontal_units))
        return EncryptedColVector(mat.width, mat.unit, cts)

    def sum_cols_many(self, mats: Sequence[EncryptedMatrix],
                      scalar: float = 1.0) -> EncryptedRowVector:
        """sum_cols of the sum of several matrices."""
        return self.sum_cols(self.add_many(mats), scalar)

    def sum_rows_many(self, mats: Sequence[EncryptedMatrix]) -> EncryptedColVector:
        """sum_rows of the sum of several matrices."""
        return self.sum_rows(self.add_many(mats))

    # =========================================================================
    # HADAMARD PRODUCTS
    # =========================================================================

    def hadamard_multiply(self, a: Encrypted, b: Encrypted) -> Encrypted:
        """
        Slot-wise product of compatible objects.

        Supported combinations:
          - row vector (width n) x matrix (n x m): every column of the matrix
            scaled by the vector, an n x m matrix
          - matrix (n x m) x column vector (height m): every row of the matrix
            scaled by the vector, an n x m matrix
          - two row vectors or two column vectors of the same size:
            element-wise product

        Two matrices cannot be multiplied element-wise; their tiles are
        not a valid ciphertext product.

        The result is quadratic with squared scale.

        Raises:
            ShapeMismatchError: If units or inner dimensions differ, or for
                any other combination.
            LevelMismatchError: If the operands are at different levels.
        """
        if isinstance(a, EncryptedRowVector) and isinstance(b, EncryptedMatrix):
            return self._hadamard_row_matrix(a, b)
        if isinstance(a, EncryptedMatrix) and isinstance(b, EncryptedColVector):
            return self._hadamard_matrix_col(a, b)
        if isinstance(a, EncryptedMatrix):
            raise ShapeMismatchError(
                'hadamard_multiply',
                f"cannot multiply {a.shape_description()} by "
                f"{b.shape_description()} element-wise",
            )
        self._check_same_size('hadamard_multiply', a, b)
        self._check_same_level_and_scale('hadamard_multiply', a, b)
        return self._zip_cells('hadamard_multiply', a, b, self._eval.multiply)

    def _hadamard_row_matrix(self, vec: EncryptedRowVector,
                             mat: EncryptedMatrix) -> EncryptedMatrix:
        op = 'hadamard_multiply'
        self._check_same_unit(op, vec, mat)
        if mat.height != vec.width:
            raise ShapeMismatchError(
                op, f"inner dimensions do not match: row vector of width "
                    f"{vec.width} and {mat.height}x{mat.width} matrix",
            )
        self._check_same_level_and_scale(op, vec, mat)
        self._check_nominal(op, vec, mat)

        def column(j: int) -> List[CiphertextHandle]:
            return [
                self._eval.multiply(mat[i][j], vec[i])
                for i in range(mat.num_vertical_units)
            ]

        columns = self._map(column, range(mat.num_horizontal_units))
        cts = [
            [columns[j][i] for j in range(mat.num_horizontal_units)]
            for i in range(mat.num_vertical_units)
        ]
        return EncryptedMatrix(mat.height, mat.width, mat.unit, cts)

    def _hadamard_matrix_col(self, mat: EncryptedMatrix,
                             vec: EncryptedColVector) -> EncryptedMatrix:
        op = 'hadamard_multiply'
        self._check_same_unit(op, mat, vec)
        if mat.width != vec.height:
            raise ShapeMismatchError(
                op, f"inner dimensions do not match: {mat.height}x{mat.width} "
                    f"matrix and column vector of height {vec.height}",
            )
        self._check_same_level_and_scale(op, mat, vec)
        self._check_nominal(op, mat, vec)

        def row(i: int) -> List[CiphertextHandle]:
            return [
                self._eval.multiply(mat[i][j], vec[j])
                for j in range(mat.num_horizontal_units)
            ]

        cts = self._map(row, range(mat.num_vertical_units))
        return EncryptedMatrix(mat.height, mat.width, mat.unit, cts)

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def multiply(self, a: Encrypted, b: Union[Encrypted, float],
                 scalar: float = 1.0) -> Encrypted:
        """
        Encrypted product.

        Supported combinations:
          - row vector x matrix: column vector of the matrix width, at the
            input level with squared scale
          - matrix x column vector (times scalar): row vector of the matrix
            height, one level down with squared scale
          - A^T x B (times scalar): the matrix scalar * A * B; A^T must sit
            exactly one level above B and the result is
            two levels below A^T with squared scale
          - any object x float: element-wise scaling with squared scale

        Raises:
            ShapeMismatchError: If the combination or dimensions are invalid.
            LevelMismatchError: If A^T is not exactly one level above B.
        """
        if isinstance(b, numbers.Real):
            return self.multiply_scalar(a, b)
        if isinstance(a, EncryptedRowVector) and isinstance(b, EncryptedMatrix):
            return self._multiply_row_matrix(a, b)
        if isinstance(a, EncryptedMatrix) and isinstance(b, EncryptedColVector):
            return self._multiply_matrix_col(a, b, scalar)
        if isinstance(a, EncryptedMatrix) and isinstance(b, EncryptedMatrix):
            return self._multiply_matrix_matrix(a, b, scalar)
        raise ShapeMismatchError(
            'multiply',
            f"cannot multiply {a.shape_description()} by {b.shape_description()}",
        )

    def _multiply_row_matrix(self, vec: EncryptedRowVector,
                             mat: EncryptedMatrix) -> EncryptedColVector:
        hadamard = self.hadamard_multiply(vec, mat)
        self.relinearize_inplace(hadamard)
        return self.sum_rows(hadamard)

    def _multiply_matrix_col(self, mat: EncryptedMatrix, vec: EncryptedColVector,
                             scalar: float) -> EncryptedRowVector:
        hadamard = self.hadamard_multiply(mat, vec)
        self.relinearize_inplace(hadamard)
        self.rescale_to_next_inplace(hadamard)
        return self.sum_cols(hadamard, scalar)

    def extract_row(self, a_t: EncryptedMatrix, k: int) -> EncryptedRowVector:
        """
        Row k of A, taken from column k of A^T, as a row vector.

        Consumes one level.
        """
        unit = a_t.unit
        col_in_unit = k % unit.width
        unit_col = k // unit.width
        mask = np.zeros((unit.height, unit.width))
        mask[:, col_in_unit] = 1.0
        mask = self._mask_array(unit, mask)

        cts = []
        for i in range(a_t.num_vertical_units):
            ct = self._eval.multiply_plain_array(a_t[i][unit_col], mask)
            ct = self._eval.rescale_to_next(ct)
            if col_in_unit > 0:
                ct = self._eval.rotate_left(ct, col_in_unit)
            ct = self.rot(ct, unit.width, 1, RotationDirection.REPLICATE)
            cts.append(self._retag(ct, EncodingKind.ROW_VECTOR, unit))
        return EncryptedRowVector(a_t.height, unit, cts)

    def _matrix_matrix_mul_loop(self, a_t: EncryptedMatrix, b: EncryptedMatrix,
                                scalar: float, k: int,
                                transpose_unit: bool) -> List[CiphertextHandle]:
        """Row k of scalar * A * B, masked into its slot of the output tile."""
        unit = a_t.unit
        row = self.extract_row(a_t, k)
        product = self.multiply(row, b)
        self.rescale_to_next_inplace(product)

        mask = np.zeros(unit.height * unit.width)
        if transpose_unit:
            # Row k of the transposed (width x height) unit
            start = k * unit.height
            mask[start:start + b.width] = scalar
        else:
            row_in_unit = k % unit.height
            mask[row_in_unit * unit.width:(row_in_unit + 1) * unit.width] = scalar
        return [self._eval.multiply_plain_array(ct, mask) for ct in product.cells()]

    def _check_matrix_product(self, op: str, a_t: EncryptedMatrix,
                              b: EncryptedMatrix) -> None:
        if a_t.he_level != b.he_level + 1:
            raise LevelMismatchError(
                op, f"B must be one level below A^T, got levels {a_t.he_level} "
                    f"and {b.he_level}",
                (a_t.he_level, b.he_level),
            )
        self._check_same_unit(op, a_t, b)
        if a_t.height != b.height:
            raise ShapeMismatchError(
                op, f"inner dimensions do not match: A^T is {a_t.height}x{a_t.width}, "
                    f"B is {b.height}x{b.width}",
            )
        self._check_nominal(op, a_t, b)

    def _multiply_matrix_matrix(self, a_t: EncryptedMatrix, b: EncryptedMatrix,
                                scalar: float) -> EncryptedMatrix:
        """scalar * A * B from A^T and B; the result has aT.width rows."""
        op = 'multiply'
        self._check_matrix_product(op, a_t, b)
        unit = a_t.unit
        logger.debug(
            "multiply: A^T %dx%d by B %dx%d with unit %s at level %d",
            a_t.height, a_t.width, b.height, b.width, unit, a_t.he_level,
        )
        row_results = self._map(
            lambda k: self._matrix_matrix_mul_loop(a_t, b, scalar, k, False),
            range(a_t.width),
        )

        cts = []
        for i in range(ceil_div(a_t.width, unit.height)):
            first = i * unit.height
            rows = row_results[first:min(first + unit.height, a_t.width)]
            cts.append([
                self._retag(self._eval.add_many([r[j] for r in rows]),
                            EncodingKind.MATRIX, unit)
                for j in range(b.num_horizontal_units)
            ])
        return EncryptedMatrix(a_t.width, b.width, unit, cts)

    def multiply_unit_transpose(self, a_t: EncryptedMatrix, b: EncryptedMatrix,
                                scalar: float = 1.0) -> EncryptedMatrix:
        """
        scalar * A * B for matrices that fit in a single tile.

        The product is written into the transposed unit, so the output is a
        single ciphertext. Requires a portrait unit (width <= height) with
        B.height <= unit.height and A^T.width, B.width <= unit.width.
        """
        op = 'multiply_unit_transpose'
        unit = a_t.unit
        if not (b.height <= unit.height and unit.width <= unit.height
                and a_t.width <= unit.width and b.width <= unit.width):
            raise ShapeMismatchError(
                op, f"A^T ({a_t.height}x{a_t.width}) and B ({b.height}x{b.width}) "
                    f"do not fit the single-tile product with unit {unit}",
            )
        self._check_matrix_product(op, a_t, b)
        row_results = self._map(
            lambda k: self._matrix_matrix_mul_loop(a_t, b, scalar, k, True)[0],
            range(a_t.width),
        )
        result = self._eval.add_many(row_results)
        return EncryptedMatrix(
            a_t.width, b.width, unit.transpose(),
            [[self._retag(result, EncodingKind.MATRIX, unit.transpose())]],
        )

    # =========================================================================
    # UNIT TRANSPOSITION
    # =========================================================================

    @staticmethod
    def _retag(ct: CiphertextHandle, kind: EncodingKind,
               unit: EncodingUnit) -> CiphertextHandle:
        """Copy of a tile labelled as a ``kind`` cell of ``unit``."""
        result = ct.copy()
        result.encoding_kind = kind
        result.encoded_height = unit.height
        result.encoded_width = unit.width
        if kind == EncodingKind.ROW_VECTOR:
            result.logical_height, result.logical_width = 1, unit.height
        elif kind == EncodingKind.COL_VECTOR:
            result.logical_height, result.logical_width = unit.width, 1
        else:
            result.logical_height, result.logical_width = unit.height, unit.width
        return result

    def transpose_unit(self, mat: EncryptedMatrix) -> EncryptedMatrix:
        """
        Reinterpret a single-tile matrix under the transposed unit.

        No ciphertext operation is performed. The unit must be landscape
        (height <= width) and the matrix must fit in its leading
        height x height square. Row r of the matrix then lands on row
        r * (width/height) of the transposed unit, so the result has
        unit.width rows.

        Raises:
            ShapeMismatchError: For a portrait unit or a matrix that does
                not fit.
        """
        unit = mat.unit
        if not (unit.height <= unit.width and mat.height <= unit.height
                and mat.width <= unit.height):
            raise ShapeMismatchError(
                'transpose_unit',
                f"{mat.height}x{mat.width} matrix cannot be transposed within unit {unit}",
            )
        transposed = unit.transpose()
        cts = [[self._retag(ct, EncodingKind.MATRIX, transposed) for ct in row]
               for row in mat.cts]
        return EncryptedMatrix(unit.width, mat.width, transposed, cts)
