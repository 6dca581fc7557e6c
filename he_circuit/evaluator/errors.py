"""
Error taxonomy for circuit evaluation.

Every error is fatal for the circuit being evaluated: evaluators never retry
or repair a bad input. The hierarchy is

    CircuitError
    ├── InvalidArgumentError (also a ValueError)
    │   ├── ShapeMismatchError
    │   └── LevelMismatchError
    ├── ScaleInconsistencyError
    ├── ScaleOverflowError
    ├── DivergenceError
    └── BackendError
"""

from contextlib import contextmanager
from typing import Optional, Sequence

import numpy as np


# =============================================================================
# BASE ERRORS
# =============================================================================

class CircuitError(Exception):
    """Base class for circuit evaluation errors."""
    pass


class InvalidArgumentError(CircuitError, ValueError):
    """Raised when an operation receives an argument it cannot accept."""
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ShapeMismatchError(InvalidArgumentError):
    """Raised when operand encodings, shapes or units are incompatible."""
    pass


class LevelMismatchError(InvalidArgumentError):
    """Raised when operand levels are incompatible with an operation."""
    def __init__(self, operation: str, message: str, levels: Sequence[int] = ()):
        self.levels = tuple(levels)
        super().__init__(operation, message)


# =============================================================================
# NUMERIC ERRORS
# =============================================================================

class ScaleInconsistencyError(CircuitError):
    """Raised when a ciphertext scale is not the one the circuit implies."""
    def __init__(
        self,
        operation: str,
        message: str,
        expected: Optional[float] = None,
        actual: Optional[float] = None,
    ):
        self.operation = operation
        self.expected = expected
        self.actual = actual
        super().__init__(f"[{operation}] {message}")


class ScaleOverflowError(CircuitError):
    """Raised when a plaintext value is about to wrap around the modulus."""
    def __init__(self, operation: str, log_plain: float, level: int, scale_exponent: int):
        self.operation = operation
        self.log_plain = log_plain
        self.level = level
        self.scale_exponent = scale_exponent
        super().__init__(
            f"[{operation}] Plaintext overflow imminent: log2(max value)="
            f"{log_plain:.2f} at level {level} with scale exponent "
            f"{scale_exponent}. Reduce the input range or add levels."
        )


class DivergenceError(CircuitError):
    """Raised when decrypted values drift away from the shadow computation."""
    def __init__(
        self,
        operation: str,
        norm: float,
        log_scale: float,
        expected: np.ndarray,
        actual: np.ndarray,
    ):
        self.operation = operation
        self.norm = norm
        self.log_scale = log_scale
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"[{operation}] Homomorphic result diverged from plaintext: "
            f"L2 distance {norm:.6g} with log2(scale)={log_scale:.2f}. "
            f"Expected {np.array2string(expected, precision=6)}, "
            f"got {np.array2string(actual, precision=6)}"
        )


class BackendError(CircuitError):
    """Raised when the HE backend rejects an operation."""
    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"[{operation}] Backend failure: {cause}")


@contextmanager
def backend_errors(operation: str):
    """Re-raise backend exceptions as BackendError."""
    try:
        yield
    except CircuitError:
        raise
    except (ValueError, RuntimeError, TypeError, ArithmeticError) as e:
        raise BackendError(operation, e) from e
