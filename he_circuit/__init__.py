"""
HE Circuit

Write a CKKS circuit once and run it under interchangeable evaluators:
depth discovery, operation counting, plaintext execution, scale
estimation, encrypted execution, and a debug mode that cross-checks every
encrypted operation against its plaintext shadow. An encoded linear-algebra
layer builds matrix and vector products on top of any evaluator.

Quick Start:
    import numpy as np
    from he_circuit.runtime import CircuitRunner

    def f(ev, x):
        x2 = ev.square(x)
        ev.relinearize_inplace(x2)
        ev.rescale_to_next_inplace(x2)
        ...
        return result

    runner = CircuitRunner(num_slots=4096)
    analysis = runner.analyze(f, xs)
    # analysis.multiplicative_depth, analysis.estimated_max_log_scale
    ys = runner.run_homomorphic(f, xs, analysis=analysis)

Linear algebra:
    from he_circuit.evaluator import HomomorphicEval
    from he_circuit.linalg import LinearAlgebra

    with LinearAlgebra(HomomorphicEval(params)) as la:
        unit = la.make_unit(64)
        mat = la.encrypt_matrix(A, unit)
        vec = la.encrypt_col_vector(x, unit)
        la.decrypt(la.multiply(mat, vec))  # A @ x
"""

__version__ = '1.0.0'

# Version info
VERSION_INFO = {
    'version': __version__,
    'evaluators': [
        'DEPTH_FINDER', 'OP_COUNT', 'PLAINTEXT',
        'SCALE_ESTIMATOR', 'HOMOMORPHIC', 'DEBUG',
    ],
    'backends': ['SIMULATION', 'PYFHEL'],
}
