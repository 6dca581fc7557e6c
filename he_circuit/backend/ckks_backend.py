"""
CKKS Backend Abstraction for HE Circuits

This module provides a backend-agnostic API for the CKKS primitives the
homomorphic evaluators are built on. Two backends are registered:
  - SIMULATION: plaintext arithmetic that models levels, scales and noise
  - PYFHEL: Microsoft SEAL through the Pyfhel bindings

Backends never mutate their input ciphertexts: every operation returns a new
BackendCiphertext. This lets evaluator handles be copied freely and makes a
single backend instance safe to share between worker threads.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional
from contextlib import contextmanager
import importlib
import logging
import math
import threading
import time

import numpy as np

from ..context.ckks_params import CKKSParams

logger = logging.getLogger(__name__)


# =============================================================================
# OPERATION COUNTERS
# =============================================================================

@dataclass
class OperationCounters:
    """
    Counters for tracking HE operation costs at the backend level.

    Unlike the OpCount evaluator these count primitive calls, so a mod-down
    shows up as the multiplications and rescales it is built from.
    """
    rotations: int = 0
    rescales: int = 0
    relinearizations: int = 0
    modswitches: int = 0
    multiplications: int = 0
    additions: int = 0
    encryptions: int = 0
    decryptions: int = 0

    # Timing
    total_time_ms: float = 0.0
    encrypt_time_ms: float = 0.0
    compute_time_ms: float = 0.0
    decrypt_time_ms: float = 0.0

    def reset(self) -> None:
        """Reset all counters to zero."""
        for counter in fields(self):
            setattr(self, counter.name, counter.default)

    def snapshot(self) -> 'OperationCounters':
        """Copy of the current counts."""
        return replace(self)

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# CIPHERTEXT WRAPPER
# =============================================================================

@dataclass
class BackendCiphertext:
    """
    Backend ciphertext wrapper.

    Tracks the ciphertext's level in the modulus chain and its scale.
    The actual encrypted data is held in ``handle`` and is opaque to the
    evaluators.
    """
    # Backend-specific handle
    handle: Any

    # Metadata
    level: int  # Levels remaining (top = max_depth, 0 = exhausted)
    scale: float  # Current scale
    slot_count: int  # Number of SIMD slots
    is_quadratic: bool = False  # Three-component ciphertext awaiting relinearization


# =============================================================================
# BACKEND INTERFACE
# =============================================================================

class HEBackend(ABC):
    """
    Abstract interface for CKKS backends.

    Levels follow the evaluator convention: a fresh ciphertext is at
    ``max_level`` and rescaling moves it one level down. Implementations
    must return new ciphertexts rather than mutating their arguments.
    """

    def __init__(self, params: CKKSParams):
        """
        Initialize backend with CKKS parameters.

        Args:
            params: CKKS encryption parameters
        """
        self._params = params
        self._counters = OperationCounters()
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def params(self) -> CKKSParams:
        """Get CKKS parameters."""
        return self._params

    @property
    def counters(self) -> OperationCounters:
        """Snapshot of the operation counters."""
        with self._lock:
            return self._counters.snapshot()

    @property
    def slot_count(self) -> int:
        """Number of plaintext slots per ciphertext."""
        return self._params.slot_count

    @property
    def max_level(self) -> int:
        """Level of a freshly encrypted ciphertext."""
        return self._params.max_depth

    def reset_counters(self) -> None:
        """Reset operation counters."""
        with self._lock:
            self._counters.reset()

    def _count(self, counter: str, n: int = 1) -> None:
        with self._lock:
            setattr(self._counters, counter, getattr(self._counters, counter) + n)

    # -------------------------------------------------------------------------
    # MODULUS CHAIN
    # -------------------------------------------------------------------------

    def modulus_bits_at(self, level: int) -> float:
        """log2 of the ciphertext modulus at a level."""
        return self._params.modulus_bits_at(level)

    def prime_at(self, level: int) -> int:
        """Prime consumed by a rescale at a level."""
        return self._params.prime_at_level(level)

    def max_modulus_bits(self, poly_modulus_degree: Optional[int] = None) -> int:
        """Security bound on total modulus bits for a ring degree."""
        return self._params.max_modulus_bits(poly_modulus_degree)

    # -------------------------------------------------------------------------
    # INITIALIZATION
    # -------------------------------------------------------------------------

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the backend with keys and context.

        This generates:
          - Secret key
          - Public key
          - Relinearization keys
          - Galois keys (for rotations)
        """
        pass

    @abstractmethod
    def is_initialized(self) -> bool:
        """Check if backend is initialized."""
        pass

    # -------------------------------------------------------------------------
    # ENCRYPTION / DECRYPTION
    # -------------------------------------------------------------------------

    @abstractmethod
    def encrypt(self, values: np.ndarray, level: int, scale: float) -> BackendCiphertext:
        """
        Encode and encrypt a vector.

        Args:
            values: 1D numpy array of FP64 values (length == slot_count)
            level: Level to place the fresh ciphertext at
            scale: Encoding scale

        Returns:
            Fresh ciphertext

        Note:
            Increments encryptions counter and encrypt_time_ms
        """
        pass

    @abstractmethod
    def decrypt(self, ct: BackendCiphertext) -> np.ndarray:
        """
        Decrypt and decode a ciphertext.

        Returns:
            1D numpy array of FP64 values (length == slot_count)
        """
        pass

    # -------------------------------------------------------------------------
    # ARITHMETIC OPERATIONS
    # -------------------------------------------------------------------------

    @abstractmethod
    def add(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        """
        Add two ciphertexts.

        Args:
            ct1: First ciphertext
            ct2: Second ciphertext (same level and scale required)

        Returns:
            ct1 + ct2
        """
        pass

    @abstractmethod
    def add_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        """Add a plaintext vector encoded at the ciphertext's level and scale."""
        pass

    @abstractmethod
    def sub(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        """Subtract ct2 from ct1 (same level and scale required)."""
        pass

    @abstractmethod
    def negate(self, ct: BackendCiphertext) -> BackendCiphertext:
        """Negate every slot."""
        pass

    @abstractmethod
    def multiply(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        """
        Multiply two ciphertexts.

        The result is quadratic and carries the product of the scales.
        It must be relinearized before it is rotated or multiplied again.
        """
        pass

    @abstractmethod
    def multiply_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        """
        Multiply by a plaintext vector.

        The plaintext is encoded at the ciphertext's scale, so the result
        carries the squared scale.
        """
        pass

    @abstractmethod
    def square(self, ct: BackendCiphertext) -> BackendCiphertext:
        """Square a ciphertext."""
        pass

    @abstractmethod
    def rotate(self, ct: BackendCiphertext, steps: int) -> BackendCiphertext:
        """
        Rotate slots cyclically.

        Args:
            ct: Linear ciphertext
            steps: Positive rotates left, negative rotates right

        Note:
            Increments rotations counter
        """
        pass

    @abstractmethod
    def rescale(self, ct: BackendCiphertext) -> BackendCiphertext:
        """
        Divide by the prime of the current level and drop one level.

        Raises:
            ValueError: If the ciphertext is already at level 0.
        """
        pass

    @abstractmethod
    def relinearize(self, ct: BackendCiphertext) -> BackendCiphertext:
        """Reduce a quadratic ciphertext back to two components."""
        pass

    @abstractmethod
    def mod_switch_to_level(self, ct: BackendCiphertext, level: int) -> BackendCiphertext:
        """Drop primes without changing the scale until ``level`` is reached."""
        pass

    # -------------------------------------------------------------------------
    # UTILITY
    # -------------------------------------------------------------------------

    @contextmanager
    def timed_section(self, section_name: str):
        """
        Context manager for timing a section.

        Args:
            section_name: Name of section ('encrypt', 'compute', 'decrypt')
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            with self._lock:
                if section_name == 'encrypt':
                    self._counters.encrypt_time_ms += elapsed_ms
                elif section_name == 'decrypt':
                    self._counters.decrypt_time_ms += elapsed_ms
                elif section_name == 'compute':
                    self._counters.compute_time_ms += elapsed_ms
                self._counters.total_time_ms += elapsed_ms


# =============================================================================
# BACKEND REGISTRY
# =============================================================================

class BackendType(Enum):
    """Available CKKS backend types."""
    SIMULATION = "simulation"  # Plaintext model, no security
    PYFHEL = "pyfhel"  # Microsoft SEAL via Pyfhel


_BACKEND_REGISTRY: Dict[BackendType, type] = {}

# Backends living in optional modules, imported on first use
_LAZY_BACKENDS: Dict[BackendType, str] = {
    BackendType.PYFHEL: 'he_circuit.backend.pyfhel_backend',
}


def register_backend(backend_type: BackendType):
    """Decorator to register a backend implementation."""
    def decorator(cls):
        _BACKEND_REGISTRY[backend_type] = cls
        return cls
    return decorator


def get_available_backends() -> List[BackendType]:
    """Get list of available (registered) backends."""
    return list(_BACKEND_REGISTRY.keys())


def create_backend(
    backend_type: BackendType,
    params: CKKSParams,
    **kwargs: Any,
) -> HEBackend:
    """
    Create a CKKS backend instance.

    Args:
        backend_type: Which backend to use
        params: CKKS encryption parameters
        **kwargs: Backend-specific options (e.g. ``seed`` for simulation)

    Returns:
        Initialized backend instance

    Raises:
        ValueError: If backend type not registered
        ImportError: If the backend's library is not installed
    """
    if backend_type not in _BACKEND_REGISTRY and backend_type in _LAZY_BACKENDS:
        importlib.import_module(_LAZY_BACKENDS[backend_type])

    if backend_type not in _BACKEND_REGISTRY:
        available = [b.value for b in _BACKEND_REGISTRY.keys()]
        raise ValueError(
            f"Backend '{backend_type.value}' not registered. "
            f"Available: {available}"
        )

    backend_cls = _BACKEND_REGISTRY[backend_type]
    backend = backend_cls(params, **kwargs)
    backend.initialize()
    return backend


# =============================================================================
# SIMULATION BACKEND (FOR TESTING)
# =============================================================================

@register_backend(BackendType.SIMULATION)
class SimulationBackend(HEBackend):
    """
    Simulation backend for testing without a real HE library.

    Ciphertexts are numpy arrays holding the (noisy) message. The backend
    follows the same bookkeeping a SEAL context would:
      - exact prime chain, levels and scales
      - Gaussian encoding and rescaling noise proportional to 1/scale
      - quadratic ciphertexts must be relinearized before rotation
      - modular wrap-around when a value outgrows the modulus
      - "scale out of bounds" when a scale outgrows the modulus

    WARNING: This provides NO SECURITY. Use only for testing.
    """

    def __init__(
        self,
        params: CKKSParams,
        seed: Optional[int] = None,
        noise_stddev: float = 3.2,
    ):
        super().__init__(params)
        self._seed = seed
        self._noise_stddev = noise_stddev
        self._rng: Optional[np.random.Generator] = None

    def initialize(self) -> None:
        """Initialize (simulated) keys."""
        self._rng = np.random.default_rng(self._seed)
        self._initialized = True
        logger.debug(
            "Simulation backend initialized: slots=%d, levels=%d",
            self.slot_count, self.max_level,
        )

    def is_initialized(self) -> bool:
        return self._initialized

    def _noise(self, scale: float) -> np.ndarray:
        std = self._noise_stddev * math.sqrt(self._params.poly_modulus_degree) / scale
        with self._lock:
            return self._rng.normal(0.0, std, self.slot_count)

    def _check_level(self, level: int) -> None:
        if level < 0 or level > self.max_level:
            raise ValueError(f"level={level} out of range [0, {self.max_level}]")

    def _check_scale(self, scale: float, level: int) -> None:
        if math.log2(scale) >= self.modulus_bits_at(level):
            raise ValueError(
                f"scale out of bounds: log2(scale)={math.log2(scale):.2f} >= "
                f"modulus bits {self.modulus_bits_at(level):.2f} at level {level}"
            )

    @staticmethod
    def _check_same(ct1: BackendCiphertext, ct2: BackendCiphertext) -> None:
        if ct1.level != ct2.level:
            raise ValueError(
                f"ciphertext levels do not match: {ct1.level} != {ct2.level}"
            )

    def _encode(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64).ravel()
        if len(values) != self.slot_count:
            raise ValueError(
                f"Expected {self.slot_count} values, got {len(values)}"
            )
        return values

    def encrypt(self, values: np.ndarray, level: int, scale: float) -> BackendCiphertext:
        self._check_level(level)
        self._check_scale(scale, level)
        with self.timed_section('encrypt'):
            data = self._encode(values) + self._noise(scale)
        self._count('encryptions')
        return BackendCiphertext(
            handle=data,
            level=level,
            scale=scale,
            slot_count=self.slot_count,
        )

    def decrypt(self, ct: BackendCiphertext) -> np.ndarray:
        self._count('decryptions')
        with self.timed_section('decrypt'):
            data = np.array(ct.handle, dtype=np.float64)
            # Values past q/2 wrap around the modulus
            log_bound = self.modulus_bits_at(ct.level) - 1 - math.log2(ct.scale)
            if log_bound < 1000:
                bound = 2.0 ** log_bound
                if np.max(np.abs(data)) >= bound:
                    data = np.mod(data + bound, 2 * bound) - bound
        return data

    def add(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        self._check_same(ct1, ct2)
        if not math.isclose(ct1.scale, ct2.scale, rel_tol=1e-9):
            raise ValueError(
                f"scale mismatch: {ct1.scale} != {ct2.scale}"
            )
        self._count('additions')
        return BackendCiphertext(
            handle=ct1.handle + ct2.handle,
            level=ct1.level,
            scale=ct1.scale,
            slot_count=self.slot_count,
            is_quadratic=ct1.is_quadratic or ct2.is_quadratic,
        )

    def add_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        self._count('additions')
        return BackendCiphertext(
            handle=ct.handle + self._encode(values),
            level=ct.level,
            scale=ct.scale,
            slot_count=self.slot_count,
            is_quadratic=ct.is_quadratic,
        )

    def sub(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        return self.add(ct1, self.negate(ct2))

    def negate(self, ct: BackendCiphertext) -> BackendCiphertext:
        return BackendCiphertext(
            handle=-ct.handle,
            level=ct.level,
            scale=ct.scale,
            slot_count=self.slot_count,
            is_quadratic=ct.is_quadratic,
        )

    def multiply(self, ct1: BackendCiphertext, ct2: BackendCiphertext) -> BackendCiphertext:
        self._check_same(ct1, ct2)
        if ct1.is_quadratic or ct2.is_quadratic:
            raise ValueError("multiply requires relinearized inputs")
        scale = ct1.scale * ct2.scale
        self._check_scale(scale, ct1.level)
        self._count('multiplications')
        return BackendCiphertext(
            handle=ct1.handle * ct2.handle,
            level=ct1.level,
            scale=scale,
            slot_count=self.slot_count,
            is_quadratic=True,
        )

    def multiply_plain(self, ct: BackendCiphertext, values: np.ndarray) -> BackendCiphertext:
        scale = ct.scale * ct.scale
        self._check_scale(scale, ct.level)
        self._count('multiplications')
        return BackendCiphertext(
            handle=ct.handle * self._encode(values),
            level=ct.level,
            scale=scale,
            slot_count=self.slot_count,
            is_quadratic=ct.is_quadratic,
        )

    def square(self, ct: BackendCiphertext) -> BackendCiphertext:
        return self.multiply(ct, ct)

    def rotate(self, ct: BackendCiphertext, steps: int) -> BackendCiphertext:
        if ct.is_quadratic:
            raise ValueError("rotate requires a relinearized ciphertext")
        self._count('rotations')
        return BackendCiphertext(
            handle=np.roll(ct.handle, -steps),
            level=ct.level,
            scale=ct.scale,
            slot_count=self.slot_count,
        )

    def rescale(self, ct: BackendCiphertext) -> BackendCiphertext:
        if ct.level == 0:
            raise ValueError("end of modulus switching chain reached")
        prime = self.prime_at(ct.level)
        scale = ct.scale / prime
        self._count('rescales')
        return BackendCiphertext(
            handle=ct.handle + self._noise(scale),
            level=ct.level - 1,
            scale=scale,
            slot_count=self.slot_count,
            is_quadratic=ct.is_quadratic,
        )

    def relinearize(self, ct: BackendCiphertext) -> BackendCiphertext:
        self._count('relinearizations')
        return BackendCiphertext(
            handle=ct.handle,
            level=ct.level,
            scale=ct.scale,
            slot_count=self.slot_count,
        )

    def mod_switch_to_level(self, ct: BackendCiphertext, level: int) -> BackendCiphertext:
        self._check_level(level)
        if level > ct.level:
            raise ValueError(
                f"cannot switch up from level {ct.level} to level {level}"
            )
        self._count('modswitches', ct.level - level)
        return BackendCiphertext(
            handle=ct.handle,
            level=level,
            scale=ct.scale,
            slot_count=self.slot_count,
            is_quadratic=ct.is_quadratic,
        )
