"""
CKKS Circuit Evaluators

A circuit written against CKKSEvaluator runs unchanged under every variant:

    def poly(ev, x):
        x2 = ev.square(x)
        ev.relinearize_inplace(x2)
        ev.rescale_to_next_inplace(x2)
        return ev.add_scalar(x2, 1.0)

    depth = DepthFinder.for_analysis(num_slots=4096)
    poly(depth, depth.encrypt(values))
    depth.get_multiplicative_depth()  # 1
"""

from .base import CKKSEvaluator
from .ciphertext import CiphertextHandle, EncodingKind, decode_slots
from .debug import DebugEval
from .depth_finder import DepthFinder
from .errors import (
    BackendError,
    CircuitError,
    DivergenceError,
    InvalidArgumentError,
    LevelMismatchError,
    ScaleInconsistencyError,
    ScaleOverflowError,
    ShapeMismatchError,
)
from .homomorphic import HomomorphicEval
from .numerics import diff2_norm, linf_norm, log2_linf
from .op_count import CircuitOpCounts, OpCount
from .plaintext import PlaintextEval
from .scale_estimator import ScaleEstimator

__all__ = [
    # Contract
    'CKKSEvaluator',
    'CiphertextHandle',
    'EncodingKind',
    'decode_slots',
    # Variants
    'DebugEval',
    'DepthFinder',
    'HomomorphicEval',
    'OpCount',
    'CircuitOpCounts',
    'PlaintextEval',
    'ScaleEstimator',
    # Errors
    'BackendError',
    'CircuitError',
    'DivergenceError',
    'InvalidArgumentError',
    'LevelMismatchError',
    'ScaleInconsistencyError',
    'ScaleOverflowError',
    'ShapeMismatchError',
    # Numerics
    'diff2_norm',
    'linf_norm',
    'log2_linf',
]
