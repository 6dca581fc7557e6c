"""
Tiling of matrices and vectors onto encoding units.

An encoding unit is the 2D shape a single ciphertext's slots are viewed as,
in row-major order. Large objects are cut into unit-sized tiles:

  - matrices: row-major tiles, zero padded at the bottom/right edge
  - row vectors: chunk i holds vec[i*unit.height : (i+1)*unit.height] down
    the rows, every value replicated across all unit.width columns
  - column vectors: chunk i holds vec[i*unit.width : (i+1)*unit.width]
    across the columns, the chunk replicated down all unit.height rows

With these layouts a row vector tile multiplies a matrix tile row-wise and
a column vector tile multiplies it column-wise, slot for slot.
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from ..context.ckks_params import is_pow2
from ..evaluator.errors import ShapeMismatchError


@dataclass(frozen=True)
class EncodingUnit:
    """Shape of one ciphertext's slots; both dimensions are powers of two."""
    height: int
    width: int

    def __post_init__(self):
        if not (is_pow2(self.height) and is_pow2(self.width)):
            raise ShapeMismatchError(
                'EncodingUnit',
                f"unit dimensions must be powers of two, got "
                f"{self.height}x{self.width}",
            )

    @property
    def num_slots(self) -> int:
        return self.height * self.width

    def transpose(self) -> 'EncodingUnit':
        return EncodingUnit(self.width, self.height)

    def __str__(self) -> str:
        return f"{self.height}x{self.width}"


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def _as_matrix(mat) -> np.ndarray:
    if isinstance(mat, np.ndarray):
        array = mat
    else:
        rows = list(mat)
        if rows and len({len(row) for row in rows}) > 1:
            raise ShapeMismatchError('encode_matrix', "matrix rows have different lengths")
        array = np.asarray(rows, dtype=np.float64)
    if array.ndim != 2 or array.size == 0:
        raise ShapeMismatchError(
            'encode_matrix', f"expected a non-empty 2D matrix, got shape {array.shape}"
        )
    return array.astype(np.float64)


def _as_vector(op: str, vec) -> np.ndarray:
    array = np.asarray(vec, dtype=np.float64)
    if array.ndim != 1 or array.size == 0:
        raise ShapeMismatchError(
            op, f"expected a non-empty 1D vector, got shape {array.shape}"
        )
    return array


# =============================================================================
# ENCODING
# =============================================================================

def encode_matrix(mat, unit: EncodingUnit) -> List[List[np.ndarray]]:
    """
    Cut a matrix into a grid of unit-shaped tiles.

    Returns:
        ceil(height/unit.height) x ceil(width/unit.width) grid of tiles.
    """
    mat = _as_matrix(mat)
    height, width = mat.shape
    padded = np.zeros((
        ceil_div(height, unit.height) * unit.height,
        ceil_div(width, unit.width) * unit.width,
    ))
    padded[:height, :width] = mat

    tiles = []
    for i in range(0, padded.shape[0], unit.height):
        row = []
        for j in range(0, padded.shape[1], unit.width):
            row.append(padded[i:i + unit.height, j:j + unit.width].copy())
        tiles.append(row)
    return tiles


def encode_row_vector(vec, unit: EncodingUnit) -> List[np.ndarray]:
    """Encode a row vector as ceil(len/unit.height) tiles of replicated columns."""
    vec = _as_vector('encode_row_vector', vec)
    count = ceil_div(vec.size, unit.height)
    padded = np.zeros(count * unit.height)
    padded[:vec.size] = vec
    return [
        np.repeat(padded[i * unit.height:(i + 1) * unit.height, None], unit.width, axis=1)
        for i in range(count)
    ]


def encode_col_vector(vec, unit: EncodingUnit) -> List[np.ndarray]:
    """Encode a column vector as ceil(len/unit.width) tiles of replicated rows."""
    vec = _as_vector('encode_col_vector', vec)
    count = ceil_div(vec.size, unit.width)
    padded = np.zeros(count * unit.width)
    padded[:vec.size] = vec
    return [
        np.tile(padded[i * unit.width:(i + 1) * unit.width], (unit.height, 1))
        for i in range(count)
    ]


# =============================================================================
# DECODING
# =============================================================================

def _check_tiles(op: str, tiles: Sequence[np.ndarray]) -> None:
    if len(tiles) == 0:
        raise ShapeMismatchError(op, "no tiles to decode")
    shape = np.shape(tiles[0])
    if len(shape) != 2:
        raise ShapeMismatchError(op, f"tiles must be 2D, got shape {shape}")
    for tile in tiles:
        if np.shape(tile) != shape:
            raise ShapeMismatchError(
                op, f"tiles have different dimensions: {np.shape(tile)} != {shape}"
            )


def decode_matrix(tiles: Sequence[Sequence[np.ndarray]], trim_height: int = -1,
                  trim_width: int = -1) -> np.ndarray:
    """
    Reassemble a matrix from a grid of tiles.

    Args:
        tiles: Grid of equally shaped tiles
        trim_height: Rows to keep; negative keeps the full padded height
        trim_width: Columns to keep; negative keeps the full padded width
    """
    if len(tiles) == 0 or any(len(row) != len(tiles[0]) for row in tiles):
        raise ShapeMismatchError('decode_matrix', "tile grid is empty or ragged")
    _check_tiles('decode_matrix', [tile for row in tiles for tile in row])
    mat = np.block([[np.asarray(tile) for tile in row] for row in tiles])
    if trim_height < 0:
        trim_height = mat.shape[0]
    if trim_width < 0:
        trim_width = mat.shape[1]
    return mat[:trim_height, :trim_width].copy()


def decode_row_vector(tiles: Sequence[np.ndarray], trim_length: int = -1) -> np.ndarray:
    """Reassemble a row vector from column 0 of each tile."""
    _check_tiles('decode_row_vector', tiles)
    vec = np.concatenate([np.asarray(tile)[:, 0] for tile in tiles])
    if trim_length < 0:
        trim_length = vec.size
    return vec[:trim_length].copy()


def decode_col_vector(tiles: Sequence[np.ndarray], trim_length: int = -1) -> np.ndarray:
    """Reassemble a column vector from row 0 of each tile."""
    _check_tiles('decode_col_vector', tiles)
    vec = np.concatenate([np.asarray(tile)[0, :] for tile in tiles])
    if trim_length < 0:
        trim_length = vec.size
    return vec[:trim_length].copy()
