"""
Tests for the shared evaluator contract: argument validation, encoding
kinds and value semantics. PlaintextEval is used as the concrete variant
since its shadows make results easy to inspect.
"""

import numpy as np
import pytest

from he_circuit.evaluator import (
    EncodingKind,
    InvalidArgumentError,
    LevelMismatchError,
    PlaintextEval,
    ShapeMismatchError,
)


@pytest.fixture
def ev(small_params):
    return PlaintextEval(small_params)


@pytest.fixture
def values(rng):
    return rng.uniform(-1, 1, 256)


# =============================================================================
# ENCRYPTION
# =============================================================================

class TestEncrypt:
    """Tests for handle creation."""

    def test_encrypt_pads(self, ev):
        ct = ev.encrypt([1.0, 2.0, 3.0])

        assert ct.encoding_kind == EncodingKind.COL_VECTOR
        assert ct.logical_shape == (256, 1)
        assert ct.encoded_shape == (1, 256)
        assert ct.he_level == ev.top_level
        np.testing.assert_array_equal(ct.shadow[:4], [1.0, 2.0, 3.0, 0.0])
        np.testing.assert_array_equal(ct.plaintext()[:4], [1.0, 2.0, 3.0, 0.0])

    def test_encrypt_too_many_values(self, ev):
        with pytest.raises(ShapeMismatchError):
            ev.encrypt(np.ones(257))

    def test_encrypt_at_level(self, ev, small_params):
        ct = ev.encrypt(np.ones(4), level=1)

        assert ct.he_level == 1
        # Shadow-only evaluators keep every handle at the base scale
        assert ct.scale == small_params.scale

    def test_encrypt_invalid_level(self, ev):
        with pytest.raises(LevelMismatchError):
            ev.encrypt(np.ones(4), level=4)

    def test_encrypt_matrix_must_fill_slots(self, ev):
        with pytest.raises(ShapeMismatchError):
            ev.encrypt_matrix(np.ones((8, 8)))

    def test_row_vector_layout(self, ev):
        vec = np.arange(16.0)
        ct = ev.encrypt_row_vector(vec, width=16)

        assert ct.encoding_kind == EncodingKind.ROW_VECTOR
        assert ct.logical_shape == (1, 16)
        assert ct.encoded_shape == (16, 16)
        grid = ct.shadow.reshape(16, 16)
        np.testing.assert_array_equal(grid[:, 0], vec)
        np.testing.assert_array_equal(grid[:, 7], vec)
        np.testing.assert_array_equal(ct.plaintext(), vec)

    def test_col_vector_layout(self, ev):
        vec = np.arange(32.0)
        ct = ev.encrypt_col_vector(vec, height=8)

        assert ct.encoding_kind == EncodingKind.COL_VECTOR
        assert ct.logical_shape == (32, 1)
        assert ct.encoded_shape == (8, 32)
        grid = ct.shadow.reshape(8, 32)
        np.testing.assert_array_equal(grid[0], vec)
        np.testing.assert_array_equal(grid[5], vec)
        np.testing.assert_array_equal(ct.plaintext(), vec)

    def test_plaintext_cannot_decrypt(self, ev):
        with pytest.raises(InvalidArgumentError):
            ev.decrypt(ev.encrypt(np.ones(4)))


# =============================================================================
# ENCODING KINDS
# =============================================================================

class TestEncodingKinds:
    """Tests for the result kinds of mixed-encoding operations."""

    @pytest.fixture
    def mat(self, ev, rng):
        return ev.encrypt_matrix(rng.uniform(-1, 1, (16, 16)))

    @pytest.fixture
    def row_vec(self, ev, rng):
        return ev.encrypt_row_vector(rng.uniform(-1, 1, 16), width=16)

    @pytest.fixture
    def col_vec(self, ev, rng):
        return ev.encrypt_col_vector(rng.uniform(-1, 1, 16), height=16)

    def test_row_vector_times_matrix(self, ev, mat, row_vec):
        for result in (ev.multiply(row_vec, mat), ev.multiply(mat, row_vec)):
            assert result.encoding_kind == EncodingKind.ROW_MATRIX
            assert result.logical_shape == (16, 16)
            assert result.needs_relin
            np.testing.assert_allclose(result.shadow, mat.shadow * row_vec.shadow)

    def test_matrix_times_col_vector(self, ev, mat, col_vec):
        for result in (ev.multiply(mat, col_vec), ev.multiply(col_vec, mat)):
            assert result.encoding_kind == EncodingKind.COL_MATRIX
            assert result.logical_shape == (16, 16)

    def test_vector_pairs_keep_kind(self, ev, row_vec, col_vec):
        assert ev.multiply(row_vec, row_vec).encoding_kind == EncodingKind.ROW_VECTOR
        assert ev.multiply(col_vec, col_vec).encoding_kind == EncodingKind.COL_VECTOR
        assert ev.add(row_vec, row_vec).encoding_kind == EncodingKind.ROW_VECTOR

    def test_matrix_pairs_rejected(self, ev, mat, row_vec, col_vec):
        row_mat = ev.relinearize(ev.multiply(row_vec, mat))
        col_mat = ev.relinearize(ev.multiply(mat, col_vec))

        for a, b in [(mat, mat), (row_mat, row_mat), (col_mat, col_mat),
                     (row_mat, col_mat), (mat, row_mat)]:
            with pytest.raises(ShapeMismatchError, match="cannot multiply"):
                ev.multiply(a, b)
        assert ev.add(mat, mat).encoding_kind == EncodingKind.MATRIX

    def test_row_matrix_plus_matrix(self, ev, mat, row_vec):
        row_mat = ev.relinearize(ev.multiply(row_vec, mat))

        assert ev.add(row_mat, mat).encoding_kind == EncodingKind.ROW_MATRIX
        assert ev.add(mat, row_mat).encoding_kind == EncodingKind.ROW_MATRIX
        assert ev.sub(mat, row_mat).encoding_kind == EncodingKind.ROW_MATRIX

    def test_matrix_plus_col_matrix(self, ev, mat, col_vec):
        col_mat = ev.relinearize(ev.multiply(mat, col_vec))

        assert ev.add(mat, col_mat).encoding_kind == EncodingKind.COL_MATRIX
        assert ev.add(col_mat, mat).encoding_kind == EncodingKind.COL_MATRIX

    def test_vector_plus_matrix_rejected(self, ev, mat, row_vec):
        with pytest.raises(ShapeMismatchError):
            ev.add(row_vec, mat)

    def test_row_times_col_vector_rejected(self, ev, row_vec, col_vec):
        with pytest.raises(ShapeMismatchError):
            ev.multiply(row_vec, col_vec)

    def test_shape_mismatch(self, ev, mat):
        other = ev.encrypt_matrix(np.ones((8, 32)))
        with pytest.raises(ShapeMismatchError):
            ev.add(mat, other)

    def test_inner_dimension_mismatch(self, ev):
        row_vec = ev.encrypt_row_vector(np.ones(8), width=32)
        mat = ev.encrypt_matrix(np.ones((8, 32)))
        bad = ev.encrypt_row_vector(np.ones(16), width=16)

        assert ev.multiply(row_vec, mat).logical_shape == (8, 32)
        with pytest.raises(ShapeMismatchError):
            ev.multiply(bad, mat)


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidation:
    """Tests for argument validation shared by all variants."""

    def test_quadratic_inputs_rejected(self, ev, values):
        ct = ev.encrypt(values)
        quadratic = ev.square(ct)

        with pytest.raises(InvalidArgumentError, match="relinearized"):
            ev.multiply(quadratic, ct)
        with pytest.raises(InvalidArgumentError, match="relinearized"):
            ev.square(quadratic)
        with pytest.raises(InvalidArgumentError, match="relinearized"):
            ev.rotate_left(quadratic, 1)

        ev.relinearize_inplace(quadratic)
        assert not quadratic.needs_relin
        ev.rotate_left(quadratic, 1)

    def test_negative_rotation(self, ev, values):
        with pytest.raises(InvalidArgumentError):
            ev.rotate_left(ev.encrypt(values), -1)
        with pytest.raises(InvalidArgumentError):
            ev.rotate_right(ev.encrypt(values), -1)

    def test_uninitialized_handle(self, ev, values):
        from he_circuit.evaluator import CiphertextHandle

        with pytest.raises(InvalidArgumentError, match="not initialized"):
            ev.add(CiphertextHandle(), ev.encrypt(values))

    def test_empty_add_many(self, ev):
        with pytest.raises(InvalidArgumentError):
            ev.add_many([])

    def test_empty_multiply_many(self, ev):
        with pytest.raises(InvalidArgumentError):
            ev.multiply_many([])

    def test_plain_array_size(self, ev, values):
        ct = ev.encrypt(values)
        with pytest.raises(ShapeMismatchError):
            ev.multiply_plain_array(ct, np.ones(10))
        with pytest.raises(ShapeMismatchError):
            ev.add_plain_array(ct, np.ones(10))

    def test_rescale_at_level_zero(self, ev, values):
        ct = ev.encrypt(values, level=0)
        with pytest.raises(LevelMismatchError):
            ev.rescale_to_next(ct)

    def test_mod_down_to_level(self, ev, values):
        ct = ev.encrypt(values, level=1)

        with pytest.raises(InvalidArgumentError):
            ev.mod_down_to_level(ct, -1)
        with pytest.raises(LevelMismatchError):
            ev.mod_down_to_level(ct, 2)
        assert ev.mod_down_to_level(ct, 0).he_level == 0

    def test_mod_down_to_below_target(self, ev, values):
        low = ev.encrypt(values, level=0)
        high = ev.encrypt(values)
        with pytest.raises(LevelMismatchError, match="below target"):
            ev.mod_down_to(low, high)

    def test_level_mismatch(self, ev, values):
        with pytest.raises(LevelMismatchError):
            ev.add(ev.encrypt(values), ev.encrypt(values, level=1))


# =============================================================================
# VALUE SEMANTICS
# =============================================================================

class TestValueSemantics:
    """Tests for copy and in-place behaviour."""

    def test_operations_do_not_mutate_inputs(self, ev, values):
        ct = ev.encrypt(values)
        before = ct.shadow.copy()

        ev.add(ct, ct)
        ev.multiply_scalar(ct, 3.0)
        ev.rotate_left(ct, 3)
        ev.rescale_to_next(ct)

        np.testing.assert_array_equal(ct.shadow, before)
        assert ct.he_level == ev.top_level

    def test_inplace_variants(self, ev, values):
        ct = ev.encrypt(values)
        ev.add_scalar_inplace(ct, 1.0)
        ev.multiply_plain_array_inplace(ct, np.full(256, 2.0))
        ev.rescale_to_next_inplace(ct)
        ev.negate_inplace(ct)

        np.testing.assert_allclose(ct.shadow, -2.0 * (values + 1.0))
        assert ct.he_level == ev.top_level - 1

    def test_remaining_inplace_variants(self, ev, values):
        ct = ev.encrypt(values)
        other = ev.encrypt(values)
        plain = np.linspace(0, 1, 256)

        ev.rotate_left_inplace(ct, 5)
        ev.rotate_right_inplace(ct, 5)
        ev.sub_scalar_inplace(ct, 0.25)
        ev.add_plain_array_inplace(ct, plain)
        ev.sub_plain_array_inplace(ct, plain)
        np.testing.assert_allclose(ct.shadow, values - 0.25)

        ev.multiply_scalar_inplace(ct, 2.0)
        ev.multiply_inplace(other, other)
        ev.relinearize_inplace(other)
        ev.square_inplace(ct)
        np.testing.assert_allclose(ct.shadow, (2.0 * (values - 0.25)) ** 2)
        np.testing.assert_allclose(other.shadow, values ** 2)

    def test_subtraction_helpers(self, ev, values):
        ct = ev.encrypt(values)
        plain = np.linspace(0, 1, 256)

        np.testing.assert_allclose(ev.sub_scalar(ct, 0.5).shadow, values - 0.5)
        np.testing.assert_allclose(ev.sub_plain_array(ct, plain).shadow, values - plain)
        np.testing.assert_allclose(ev.sub(ct, ct).shadow, 0.0)

    def test_rotations(self, ev, values):
        ct = ev.encrypt(values)

        np.testing.assert_array_equal(ev.rotate_left(ct, 4).shadow, np.roll(values, -4))
        np.testing.assert_array_equal(ev.rotate_right(ct, 4).shadow, np.roll(values, 4))

    def test_add_many(self, ev, values):
        cts = [ev.encrypt(values * i) for i in range(1, 5)]
        np.testing.assert_allclose(ev.add_many(cts).shadow, 10 * values)

    def test_multiply_many_tree(self, ev, values):
        cts = [ev.encrypt(values) for _ in range(3)]
        product = ev.multiply_many(cts)

        # Two tree layers, two levels
        assert product.he_level == ev.top_level - 2
        assert not product.needs_relin
        np.testing.assert_allclose(product.shadow, values ** 3)

    def test_mod_down_to_min(self, ev, values):
        ct1 = ev.encrypt(values)
        ct2 = ev.encrypt(values, level=1)
        ev.mod_down_to_min(ct1, ct2)

        assert ct1.he_level == ct2.he_level == 1
