"""
End-to-end tests: analysis, parameter selection and encrypted runs.
"""

import numpy as np
import pytest

from he_circuit.context import CKKSParams, MIN_LOG_SCALE
from he_circuit.evaluator import (
    DebugEval,
    DepthFinder,
    HomomorphicEval,
    InvalidArgumentError,
    OpCount,
    PlaintextEval,
    ScaleEstimator,
)
from he_circuit.linalg import LinearAlgebra
from he_circuit.runtime import (
    CircuitAnalysis,
    CircuitRunner,
    EvaluatorType,
    create_evaluator,
)
from he_circuit.runtime.circuit_runner import ESTIMATOR_LOG_SCALE

NUM_SLOTS = 4096


def cubic(ev, x):
    """-0.0002 x^3 + 0.0843 x + 0.5 at depth 2."""
    x2 = ev.square(x)
    ev.relinearize_inplace(x2)
    ev.rescale_to_next_inplace(x2)

    ax = ev.multiply_scalar(x, -0.0002)
    ev.rescale_to_next_inplace(ax)

    x3 = ev.multiply(x2, ax)
    ev.relinearize_inplace(x3)
    ev.rescale_to_next_inplace(x3)

    bx = ev.multiply_scalar(x, 0.0843)
    ev.rescale_to_next_inplace(bx)
    bx = ev.mod_down_to(bx, x3)

    return ev.add_scalar(ev.add(x3, bx), 0.5)


def cubic_plain(x):
    return -0.0002 * x ** 3 + 0.0843 * x + 0.5


def matrix_product(ev, a, b):
    """A @ B with LinearAlgebra; B is encrypted one level below A^T."""
    la = LinearAlgebra(ev, max_workers=1)
    unit = la.make_unit(64)
    a_t = la.encrypt_matrix(a.T, unit)
    enc_b = la.encrypt_matrix(b, unit, level=ev.top_level - 1)
    return la, la.multiply(a_t, enc_b)


def relative_error(expected, actual):
    return np.linalg.norm(expected - actual) / np.linalg.norm(expected)


@pytest.fixture
def inputs(rng):
    return rng.uniform(-16, 16, NUM_SLOTS)


@pytest.fixture
def runner():
    return CircuitRunner(NUM_SLOTS, seed=7)


class TestCreateEvaluator:
    """Tests for the evaluator factory."""

    @pytest.mark.parametrize("kind,cls", [
        (EvaluatorType.DEPTH_FINDER, DepthFinder),
        (EvaluatorType.OP_COUNT, OpCount),
        (EvaluatorType.PLAINTEXT, PlaintextEval),
        (EvaluatorType.SCALE_ESTIMATOR, ScaleEstimator),
        (EvaluatorType.HOMOMORPHIC, HomomorphicEval),
        (EvaluatorType.DEBUG, DebugEval),
    ])
    def test_kinds(self, small_params, kind, cls):
        assert isinstance(create_evaluator(kind, small_params), cls)

    def test_unknown_kind(self, small_params):
        with pytest.raises(ValueError):
            create_evaluator('bogus', small_params)


class TestAnalysis:
    """Tests for circuit analysis and parameter selection."""

    def test_analyze_cubic(self, runner, inputs):
        analysis = runner.analyze(cubic, inputs)

        assert analysis.multiplicative_depth == 2
        assert analysis.op_counts.multiplies == 4
        assert analysis.op_counts.additions == 2
        assert analysis.op_counts.mod_downs == 1
        # Bounded by the security budget of a 4096-slot ring
        assert analysis.estimated_max_log_scale == pytest.approx(49.0)
        assert 7.0 < analysis.max_log_plain < 12.0

    def test_params_for(self, runner, inputs):
        analysis = runner.analyze(cubic, inputs)
        params = runner.params_for(analysis)

        assert params.slot_count == NUM_SLOTS
        assert params.max_depth == 2
        assert params.scale_bits == 49
        assert params.standard_params

    def test_params_for_scale_too_small(self, runner):
        analysis = CircuitAnalysis(
            num_slots=NUM_SLOTS, multiplicative_depth=2, estimated_max_log_scale=10.0
        )
        with pytest.raises(ValueError, match="below the minimum"):
            runner.params_for(analysis)

    def test_params_for_explicit_scale(self, runner):
        analysis = CircuitAnalysis(
            num_slots=NUM_SLOTS, multiplicative_depth=2, estimated_max_log_scale=49.0
        )
        params = runner.params_for(analysis, log_scale=30)

        assert params == CKKSParams.from_circuit(NUM_SLOTS, 2, 30)

    def test_analysis_to_dict(self, runner, inputs):
        result = runner.analyze(cubic, inputs).to_dict()

        assert result['multiplicative_depth'] == 2
        assert result['op_counts']['multiplies'] == 4

    def test_circuit_must_return_handle(self, runner, inputs):
        with pytest.raises(InvalidArgumentError):
            runner.analyze(lambda ev, x: None, inputs)


class TestExecution:
    """Tests for plaintext and encrypted runs."""

    def test_run_plaintext(self, runner, inputs):
        np.testing.assert_allclose(runner.run_plaintext(cubic, inputs), cubic_plain(inputs))

    def test_run_homomorphic(self, runner, inputs):
        result = runner.run_homomorphic(cubic, inputs)

        assert result.shape == (NUM_SLOTS,)
        assert relative_error(cubic_plain(inputs), result) < 1e-4

    def test_run_debug(self, runner, inputs):
        analysis = runner.analyze(cubic, inputs)
        result = runner.run_debug(cubic, inputs, analysis=analysis)

        assert relative_error(cubic_plain(inputs), result) < 1e-4

    def test_run_at_lower_scale(self, runner, inputs):
        result = runner.run_homomorphic(cubic, inputs, log_scale=35)

        assert relative_error(cubic_plain(inputs), result) < 1e-4


class TestLinearAlgebraCircuit:
    """Tests that a matrix product runs at the scale estimated for it."""

    @pytest.fixture
    def operands(self, rng):
        return rng.uniform(-1, 1, (16, 20)), rng.uniform(-1, 1, (20, 8))

    @pytest.fixture
    def analysis(self, operands):
        depth_finder = DepthFinder.for_analysis(NUM_SLOTS)
        matrix_product(depth_finder, *operands)
        depth = depth_finder.get_multiplicative_depth()

        estimator = ScaleEstimator(CKKSParams.from_circuit(
            NUM_SLOTS, depth, ESTIMATOR_LOG_SCALE, standard_params=False
        ))
        matrix_product(estimator, *operands)
        return CircuitAnalysis(
            num_slots=NUM_SLOTS,
            multiplicative_depth=depth,
            max_log_plain=estimator.get_exact_max_log_plain_val(),
            estimated_max_log_scale=estimator.get_estimated_max_log_scale(),
        )

    def test_analysis(self, analysis):
        assert analysis.multiplicative_depth == 2
        assert MIN_LOG_SCALE <= analysis.estimated_max_log_scale <= 49.0

    @pytest.mark.parametrize("kind", [EvaluatorType.HOMOMORPHIC, EvaluatorType.DEBUG])
    def test_run_at_estimated_scale(self, runner, analysis, operands, kind):
        a, b = operands
        params = runner.params_for(analysis)
        la, result = matrix_product(create_evaluator(kind, params, seed=7), a, b)

        assert params.scale_bits == int(analysis.estimated_max_log_scale)
        assert result.he_level == 0
        np.testing.assert_allclose(la.decrypt(result), a @ b, atol=1e-3)
