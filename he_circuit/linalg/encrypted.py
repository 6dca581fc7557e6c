"""
Encrypted matrices and vectors.

Each object is a grid (or list) of ciphertext handles, one per encoding
unit tile. All cells of an object share their level and scale, which is
checked whenever an object is built.
"""

from typing import List, Sequence
import math

import numpy as np

from ..evaluator.ciphertext import CiphertextHandle
from ..evaluator.errors import (
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
)


class EncryptedObject:
    """Common behaviour of encrypted matrices and vectors."""

    def __init__(self, unit: EncodingUnit):
        self._unit = unit

    @property
    def unit(self) -> EncodingUnit:
        return self._unit

    def cells(self) -> List[CiphertextHandle]:
        """All ciphertexts in row-major order."""
        raise NotImplementedError

    def with_cells(self, cells: Sequence[CiphertextHandle]) -> 'EncryptedObject':
        """Object of the same shape built from replacement cells."""
        raise NotImplementedError

    def same_size(self, other: 'EncryptedObject') -> bool:
        raise NotImplementedError

    def shape_description(self) -> str:
        raise NotImplementedError

    @property
    def num_cts(self) -> int:
        return len(self.cells())

    @property
    def he_level(self) -> int:
        return self.cells()[0].he_level

    @property
    def scale(self) -> float:
        return self.cells()[0].scale

    @property
    def initialized(self) -> bool:
        return all(ct.initialized for ct in self.cells())

    def _validate_cells(self, expected_count: int) -> None:
        cells = self.cells()
        name = type(self).__name__
        if len(cells) != expected_count:
            raise ShapeMismatchError(
                name,
                f"{self.shape_description()} with unit {self._unit} needs "
                f"{expected_count} ciphertexts, got {len(cells)}",
            )
        for ct in cells:
            if ct.encoded_shape != (self._unit.height, self._unit.width):
                raise ShapeMismatchError(
                    name,
                    f"ciphertext encoded as {ct.encoded_height}x{ct.encoded_width} "
                    f"does not match unit {self._unit}",
                )
        first = cells[0]
        for ct in cells[1:]:
            if ct.he_level != first.he_level:
                raise LevelMismatchError(
                    name, "ciphertexts are at different levels",
                    (first.he_level, ct.he_level),
                )
            if not math.isclose(ct.scale, first.scale, rel_tol=1e-9):
                raise ScaleInconsistencyError(
                    name, "ciphertexts have different scales",
                    expected=first.scale, actual=ct.scale,
                )

    def _tile_shadows(self) -> List[np.ndarray]:
        """Raw shadow of every cell as a unit-shaped tile."""
        tiles = []
        for ct in self.cells():
            if ct.shadow is None:
                raise ValueError("Handle has no plaintext shadow")
            tiles.append(ct.shadow.reshape(self._unit.height, self._unit.width))
        return tiles


class EncryptedMatrix(EncryptedObject):
    """
    A height x width matrix tiled over
    ceil(height/unit.height) x ceil(width/unit.width) ciphertexts.
    """

    def __init__(self, height: int, width: int, unit: EncodingUnit,
                 cts: Sequence[Sequence[CiphertextHandle]]):
        super().__init__(unit)
        if height <= 0 or width <= 0:
            raise ShapeMismatchError(
                'EncryptedMatrix', f"invalid dimensions {height}x{width}"
            )
        self.height = height
        self.width = width
        self._cts = [list(row) for row in cts]
        if len(self._cts) != self.num_vertical_units or any(
            len(row) != self.num_horizontal_units for row in self._cts
        ):
            raise ShapeMismatchError(
                'EncryptedMatrix',
                f"{height}x{width} matrix with unit {unit} needs a "
                f"{self.num_vertical_units}x{self.num_horizontal_units} grid",
            )
        self._validate_cells(self.num_vertical_units * self.num_horizontal_units)

    @property
    def num_vertical_units(self) -> int:
        return ceil_div(self.height, self._unit.height)

    @property
    def num_horizontal_units(self) -> int:
        return ceil_div(self.width, self._unit.width)

    @property
    def cts(self) -> List[List[CiphertextHandle]]:
        return self._cts

    def __getitem__(self, i: int) -> List[CiphertextHandle]:
        return self._cts[i]

    def cells(self) -> List[CiphertextHandle]:
        return [ct for row in self._cts for ct in row]

    def with_cells(self, cells: Sequence[CiphertextHandle]) -> 'EncryptedMatrix':
        cols = self.num_horizontal_units
        grid = [list(cells[i * cols:(i + 1) * cols]) for i in range(self.num_vertical_units)]
        return EncryptedMatrix(self.height, self.width, self._unit, grid)

    def same_size(self, other: EncryptedObject) -> bool:
        return (
            isinstance(other, EncryptedMatrix)
            and self.height == other.height
            and self.width == other.width
            and self._unit == other.unit
        )

    def shape_description(self) -> str:
        return f"{self.height}x{self.width} matrix"

    def plaintext(self) -> np.ndarray:
        """Decode the shadows of all cells into the matrix."""
        tiles = self._tile_shadows()
        cols = self.num_horizontal_units
        grid = [tiles[i * cols:(i + 1) * cols] for i in range(self.num_vertical_units)]
        return decode_matrix(grid, self.height, self.width)


class EncryptedRowVector(EncryptedObject):
    """A row vector of the given width, tiled in chunks of unit.height."""

    def __init__(self, width: int, unit: EncodingUnit, cts: Sequence[CiphertextHandle]):
        super().__init__(unit)
        if width <= 0:
            raise ShapeMismatchError('EncryptedRowVector', f"invalid width {width}")
        self.width = width
        self._cts = list(cts)
        self._validate_cells(self.num_units)

    @property
    def num_units(self) -> int:
        return ceil_div(self.width, self._unit.height)

    @property
    def cts(self) -> List[CiphertextHandle]:
        return self._cts

    def __getitem__(self, i: int) -> CiphertextHandle:
        return self._cts[i]

    def cells(self) -> List[CiphertextHandle]:
        return list(self._cts)

    def with_cells(self, cells: Sequence[CiphertextHandle]) -> 'EncryptedRowVector':
        return EncryptedRowVector(self.width, self._unit, cells)

    def same_size(self, other: EncryptedObject) -> bool:
        return (
            isinstance(other, EncryptedRowVector)
            and self.width == other.width
            and self._unit == other.unit
        )

    def shape_description(self) -> str:
        return f"row vector of width {self.width}"

    def plaintext(self) -> np.ndarray:
        return decode_row_vector(self._tile_shadows(), self.width)


class EncryptedColVector(EncryptedObject):
    """A column vector of the given height, tiled in chunks of unit.width."""

    def __init__(self, height: int, unit: EncodingUnit, cts: Sequence[CiphertextHandle]):
        super().__init__(unit)
        if height <= 0:
            raise ShapeMismatchError('EncryptedColVector', f"invalid height {height}")
        self.height = height
        self._cts = list(cts)
        self._validate_cells(self.num_units)

    @property
    def num_units(self) -> int:
        return ceil_div(self.height, self._unit.width)

    @property
    def cts(self) -> List[CiphertextHandle]:
        return self._cts

    def __getitem__(self, i: int) -> CiphertextHandle:
        return self._cts[i]

    def cells(self) -> List[CiphertextHandle]:
        return list(self._cts)

    def with_cells(self, cells: Sequence[CiphertextHandle]) -> 'EncryptedColVector':
        return EncryptedColVector(self.height, self._unit, cells)

    def same_size(self, other: EncryptedObject) -> bool:
        return (
            isinstance(other, EncryptedColVector)
            and self.height == other.height
            and self._unit == other.unit
        )

    def shape_description(self) -> str:
        return f"column vector of height {self.height}"

    def plaintext(self) -> np.ndarray:
        return decode_col_vector(self._tile_shadows(), self.height)
