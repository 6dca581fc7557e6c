"""
Circuit Runner

A circuit is a plain function written against the evaluator contract:

    def circuit(ev, x):
        ...
        return result_handle

CircuitRunner drives it through the usual workflow:

  1. analyze(): DepthFinder and OpCount find the multiplicative depth and
     operation counts; ScaleEstimator, sized for that depth, finds the
     largest safe scale.
  2. params_for(): secure CKKSParams for the analysed circuit.
  3. run_homomorphic() / run_debug(): the real encrypted run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Union
import logging
import math

import numpy as np

from ..backend.ckks_backend import BackendType, HEBackend
from ..context.ckks_params import CKKSParams, MIN_LOG_SCALE
from ..evaluator.base import CKKSEvaluator
from ..evaluator.ciphertext import CiphertextHandle
from ..evaluator.debug import DebugEval
from ..evaluator.depth_finder import DEFAULT_ANALYSIS_LEVELS, DepthFinder
from ..evaluator.errors import InvalidArgumentError
from ..evaluator.homomorphic import HomomorphicEval
from ..evaluator.op_count import CircuitOpCounts, OpCount
from ..evaluator.plaintext import PlaintextEval
from ..evaluator.scale_estimator import ScaleEstimator

logger = logging.getLogger(__name__)

Circuit = Callable[..., CiphertextHandle]

# Scale used while estimating; only the modulus chain length matters
ESTIMATOR_LOG_SCALE = 30


# =============================================================================
# EVALUATOR FACTORY
# =============================================================================

class EvaluatorType(Enum):
    """Evaluator variants a circuit can run under."""
    DEPTH_FINDER = "depth_finder"
    OP_COUNT = "op_count"
    PLAINTEXT = "plaintext"
    SCALE_ESTIMATOR = "scale_estimator"
    HOMOMORPHIC = "homomorphic"
    DEBUG = "debug"


def create_evaluator(
    kind: EvaluatorType,
    params: CKKSParams,
    backend: Union[HEBackend, BackendType] = BackendType.SIMULATION,
    verbose: bool = False,
    **backend_options,
) -> CKKSEvaluator:
    """
    Create an evaluator of the given kind.

    Args:
        kind: Evaluator variant
        params: CKKS parameters
        backend: Backend (or backend type) for HOMOMORPHIC and DEBUG
        verbose: Log every operation at INFO
        **backend_options: Passed to create_backend

    Returns:
        The evaluator.
    """
    if kind == EvaluatorType.DEPTH_FINDER:
        return DepthFinder(params, verbose)
    if kind == EvaluatorType.OP_COUNT:
        return OpCount(params, verbose)
    if kind == EvaluatorType.PLAINTEXT:
        return PlaintextEval(params, verbose)
    if kind == EvaluatorType.SCALE_ESTIMATOR:
        return ScaleEstimator(params, verbose)
    if kind == EvaluatorType.HOMOMORPHIC:
        return HomomorphicEval(params, backend, verbose, **backend_options)
    if kind == EvaluatorType.DEBUG:
        return DebugEval(params, backend, verbose, **backend_options)
    raise ValueError(f"Unknown evaluator type: {kind}")


# =============================================================================
# ANALYSIS
# =============================================================================

@dataclass
class CircuitAnalysis:
    """Result of analysing a circuit on plaintext inputs."""
    num_slots: int
    multiplicative_depth: int
    op_counts: CircuitOpCounts = field(default_factory=CircuitOpCounts)
    max_log_plain: float = -math.inf
    estimated_max_log_scale: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'num_slots': self.num_slots,
            'multiplicative_depth': self.multiplicative_depth,
            'op_counts': self.op_counts.to_dict(),
            'max_log_plain': self.max_log_plain,
            'estimated_max_log_scale': self.estimated_max_log_scale,
        }


class CircuitRunner:
    """
    Runs one circuit under the analysis and execution evaluators.

    Args:
        num_slots: Slots per ciphertext
        backend: Backend type used for encrypted runs
        standard_params: Enforce 128-bit security for encrypted runs
        verbose: Log every operation at INFO
        max_analysis_levels: Levels available during depth discovery
        **backend_options: Passed to create_backend
    """

    def __init__(
        self,
        num_slots: int,
        backend: BackendType = BackendType.SIMULATION,
        standard_params: bool = True,
        verbose: bool = False,
        max_analysis_levels: int = DEFAULT_ANALYSIS_LEVELS,
        **backend_options,
    ):
        self.num_slots = num_slots
        self.backend = backend
        self.standard_params = standard_params
        self.verbose = verbose
        self.max_analysis_levels = max_analysis_levels
        self.backend_options = backend_options

    @staticmethod
    def _execute(evaluator: CKKSEvaluator, circuit: Circuit,
                 inputs: Sequence[np.ndarray]) -> CiphertextHandle:
        handles = [evaluator.encrypt(values) for values in inputs]
        result = circuit(evaluator, *handles)
        if not isinstance(result, CiphertextHandle):
            raise InvalidArgumentError(
                'circuit', f"circuit must return a ciphertext, got {type(result).__name__}"
            )
        return result

    def analyze(self, circuit: Circuit, *inputs: np.ndarray) -> CircuitAnalysis:
        """
        Find the depth, operation counts and largest safe scale of a circuit.

        Args:
            circuit: Function (evaluator, *handles) -> handle
            *inputs: Plaintext input vectors, one per circuit argument

        Returns:
            CircuitAnalysis for these inputs.
        """
        depth_finder = DepthFinder.for_analysis(
            self.num_slots, self.max_analysis_levels, self.verbose
        )
        op_count = OpCount(depth_finder.params, self.verbose, depth_finder=depth_finder)
        self._execute(op_count, circuit, inputs)
        depth = op_count.get_multiplicative_depth()
        if self.verbose:
            op_count.print_op_count()

        estimator_params = CKKSParams.from_circuit(
            self.num_slots, depth, ESTIMATOR_LOG_SCALE, standard_params=False
        )
        estimator = ScaleEstimator(estimator_params, self.verbose)
        self._execute(estimator, circuit, inputs)

        analysis = CircuitAnalysis(
            num_slots=self.num_slots,
            multiplicative_depth=depth,
            op_counts=op_count.counts,
            max_log_plain=estimator.get_exact_max_log_plain_val(),
            estimated_max_log_scale=estimator.get_estimated_max_log_scale(),
        )
        logger.info(
            "Circuit analysis: depth=%d, max log plain=%.2f, max log scale=%.2f",
            analysis.multiplicative_depth,
            analysis.max_log_plain,
            analysis.estimated_max_log_scale,
        )
        return analysis

    def params_for(self, analysis: CircuitAnalysis,
                   log_scale: Optional[int] = None) -> CKKSParams:
        """
        Parameters for an encrypted run of an analysed circuit.

        Args:
            analysis: Result of analyze()
            log_scale: Scale to use; defaults to the estimated maximum

        Raises:
            ValueError: If the circuit cannot run at MIN_LOG_SCALE or above.
        """
        if log_scale is None:
            log_scale = int(math.floor(analysis.estimated_max_log_scale))
        if log_scale < MIN_LOG_SCALE:
            raise ValueError(
                f"Circuit needs log_scale={log_scale}, below the minimum of "
                f"{MIN_LOG_SCALE}; increase num_slots or reduce depth"
            )
        if log_scale > analysis.estimated_max_log_scale:
            logger.warning(
                "log_scale=%d exceeds the estimated maximum of %.2f",
                log_scale, analysis.estimated_max_log_scale,
            )
        return CKKSParams.from_circuit(
            analysis.num_slots,
            analysis.multiplicative_depth,
            log_scale,
            standard_params=self.standard_params,
        )

    # -------------------------------------------------------------------------
    # EXECUTION
    # -------------------------------------------------------------------------

    def run_plaintext(self, circuit: Circuit, *inputs: np.ndarray) -> np.ndarray:
        """Evaluate the circuit in the clear; returns the output slots."""
        params = DepthFinder.for_analysis(self.num_slots, self.max_analysis_levels).params
        result = self._execute(PlaintextEval(params, self.verbose), circuit, inputs)
        return result.shadow.copy()

    def _run_encrypted(self, kind: EvaluatorType, circuit: Circuit,
                       inputs: Sequence[np.ndarray], analysis: Optional[CircuitAnalysis],
                       log_scale: Optional[int]) -> np.ndarray:
        if analysis is None:
            analysis = self.analyze(circuit, *inputs)
        params = self.params_for(analysis, log_scale)
        evaluator = create_evaluator(
            kind, params, self.backend, self.verbose, **self.backend_options
        )
        result = self._execute(evaluator, circuit, inputs)
        return evaluator.decrypt(result)

    def run_homomorphic(self, circuit: Circuit, *inputs: np.ndarray,
                        analysis: Optional[CircuitAnalysis] = None,
                        log_scale: Optional[int] = None) -> np.ndarray:
        """
        Encrypt the inputs, evaluate the circuit and decrypt the output slots.

        The circuit is analysed first unless an analysis is given.
        """
        return self._run_encrypted(
            EvaluatorType.HOMOMORPHIC, circuit, inputs, analysis, log_scale
        )

    def run_debug(self, circuit: Circuit, *inputs: np.ndarray,
                  analysis: Optional[CircuitAnalysis] = None,
                  log_scale: Optional[int] = None) -> np.ndarray:
        """Like run_homomorphic, checking every operation against the shadow."""
        return self._run_encrypted(
            EvaluatorType.DEBUG, circuit, inputs, analysis, log_scale
        )
