"""
CKKS backends for HE circuits.

The simulation backend is always registered. The Pyfhel backend registers
itself when he_circuit.backend.pyfhel_backend is imported, which
create_backend does on demand.
"""

from .ckks_backend import (
    BackendCiphertext,
    BackendType,
    HEBackend,
    OperationCounters,
    SimulationBackend,
    create_backend,
    get_available_backends,
    register_backend,
)

__all__ = [
    'BackendCiphertext',
    'BackendType',
    'HEBackend',
    'OperationCounters',
    'SimulationBackend',
    'create_backend',
    'get_available_backends',
    'register_backend',
]
