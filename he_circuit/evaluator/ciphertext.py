"""
Ciphertext handles shared by all evaluators.

A handle carries the linear-algebra metadata every evaluator needs (shape,
encoding kind, level, scale) plus the variant-specific payloads: a cleartext
``shadow`` for the tracking evaluators and a ``native`` backend ciphertext
for the homomorphic ones.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from ..backend.ckks_backend import BackendCiphertext


class EncodingKind(Enum):
    """How a matrix or vector is packed into the slots of a ciphertext."""
    UNINITIALIZED = "uninitialized"
    MATRIX = "matrix"
    ROW_VECTOR = "row_vector"  # Each column of the encoded matrix is the vector
    COL_VECTOR = "col_vector"  # Each row of the encoded matrix is the vector
    ROW_MATRIX = "row_matrix"  # Row vector combined with a matrix
    COL_MATRIX = "col_matrix"  # Matrix combined with a column vector


@dataclass
class CiphertextHandle:
    """
    An encrypted (or tracked) value.

    ``encoded_height * encoded_width`` always equals the slot count once the
    handle is initialized. The logical shape is the shape of the value the
    handle represents: a row vector of width n has logical shape (1, n) and
    encoded shape (n, w), a column vector of height n has logical shape (n, 1)
    and encoded shape (h, n).
    """
    logical_height: int = 0
    logical_width: int = 0
    encoded_height: int = 0
    encoded_width: int = 0
    encoding_kind: EncodingKind = EncodingKind.UNINITIALIZED
    he_level: int = 0
    scale: float = 1.0

    # Cleartext shadow (plaintext, scale estimator and debug evaluators)
    shadow: Optional[np.ndarray] = None

    # Backend ciphertext (homomorphic and debug evaluators)
    native: Optional[BackendCiphertext] = None

    # Set by ciphertext multiplication until relinearized
    needs_relin: bool = False

    @property
    def initialized(self) -> bool:
        return self.encoding_kind != EncodingKind.UNINITIALIZED

    @property
    def num_slots(self) -> int:
        return self.encoded_height * self.encoded_width

    @property
    def logical_shape(self) -> Tuple[int, int]:
        return (self.logical_height, self.logical_width)

    @property
    def encoded_shape(self) -> Tuple[int, int]:
        return (self.encoded_height, self.encoded_width)

    def copy(self) -> 'CiphertextHandle':
        """Deep copy of metadata and shadow. Native ciphertexts are immutable."""
        shadow = None if self.shadow is None else self.shadow.copy()
        return replace(self, shadow=shadow)

    def assign(self, other: 'CiphertextHandle') -> None:
        """Overwrite this handle with a copy of ``other``."""
        self.copy_metadata(other)
        self.shadow = None if other.shadow is None else other.shadow.copy()
        self.native = other.native

    def copy_metadata(self, other: 'CiphertextHandle') -> None:
        """Copy shape, encoding, level and scale from ``other``."""
        self.logical_height = other.logical_height
        self.logical_width = other.logical_width
        self.encoded_height = other.encoded_height
        self.encoded_width = other.encoded_width
        self.encoding_kind = other.encoding_kind
        self.he_level = other.he_level
        self.scale = other.scale
        self.needs_relin = other.needs_relin

    def describe(self) -> str:
        """Short description of encoding and shapes for error messages."""
        return (
            f"{self.encoding_kind.value} "
            f"{self.logical_height}x{self.logical_width} "
            f"(encoded {self.encoded_height}x{self.encoded_width})"
        )

    def plaintext(self) -> np.ndarray:
        """
        Decode the shadow into the value this handle represents.

        Returns:
            A 2D array for matrix kinds, a 1D array for vectors.

        Raises:
            ValueError: If the handle has no shadow.
        """
        if self.shadow is None:
            raise ValueError("Handle has no plaintext shadow")
        return decode_slots(self, self.shadow)


def decode_slots(handle: CiphertextHandle, values: np.ndarray) -> np.ndarray:
    """
    Decode raw slot values according to a handle's encoding.

    Args:
        handle: Handle describing the packing
        values: Slot values (shadow or decrypted)

    Returns:
        A 2D array for matrix kinds, a 1D array for vectors.
    """
    grid = np.asarray(values).reshape(handle.encoded_height, handle.encoded_width)
    if handle.encoding_kind == EncodingKind.ROW_VECTOR:
        return grid[:handle.logical_width, 0].copy()
    if handle.encoding_kind == EncodingKind.COL_VECTOR:
        return grid[0, :handle.logical_height].copy()
    return grid[:handle.logical_height, :handle.logical_width].copy()
