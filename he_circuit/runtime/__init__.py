"""Evaluator factory and circuit runner."""

from .circuit_runner import (
    CircuitAnalysis,
    CircuitRunner,
    EvaluatorType,
    create_evaluator,
)

__all__ = [
    'CircuitAnalysis',
    'CircuitRunner',
    'EvaluatorType',
    'create_evaluator',
]
