"""
Encrypted linear algebra over CKKS evaluators.

    la = LinearAlgebra(HomomorphicEval(params))
    unit = la.make_unit(64)
    mat = la.encrypt_matrix(np.ones((64, 64)), unit)
    vec = la.encrypt_col_vector(np.ones(64), unit)
    la.decrypt(la.multiply(mat, vec))  # row sums
"""

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
from .linear_algebra import LinearAlgebra, RotationDirection

__all__ = [
    'EncodingUnit',
    'ceil_div',
    'decode_col_vector',
    'decode_matrix',
    'decode_row_vector',
    'encode_col_vector',
    'encode_matrix',
    'encode_row_vector',
    'EncryptedColVector',
    'EncryptedMatrix',
    'EncryptedObject',
    'EncryptedRowVector',
    'LinearAlgebra',
    'RotationDirection',
]
