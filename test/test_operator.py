import importlib.util
import pytest
import numpy as np

from csq.core import backend
from csq.core.errors import ConfigurationError
from csq.core.operator import MeasurementOperator

cupy_spec = importlib.util.find_spec("cupy")
has_cupy = cupy_spec is not None
if has_cupy:
    import cupy as cp

backend_libs = [np]
if has_cupy:
    backend_libs.append(cp)


@pytest.mark.parametrize("xp", backend_libs)
def test_common_matrix_matches_matmul(xp):
    backend.set_backend(xp)
    rng = np.random.default_rng(0)
    A = xp.asarray(rng.normal(size=(6, 10)))
    x = xp.asarray(rng.normal(size=(10, 3)))
    s = xp.asarray(rng.normal(size=(6, 3)))

    op = MeasurementOperator(A)
    assert op.is_common
    assert op.forward(x).shape == (6, 3)
    assert xp.allclose(op.forward(x), A @ x)
    assert xp.allclose(op.adjoint(s), A.T @ s)
    assert xp.allclose(op.forward_squared(x), (A ** 2) @ x)
    assert xp.allclose(op.adjoint_squared(s), (A ** 2).T @ s)


@pytest.mark.parametrize("xp", backend_libs)
def test_per_column_matrices(xp):
    backend.set_backend(xp)
    rng = np.random.default_rng(1)
    mats = [xp.asarray(rng.normal(size=(4, 5))) for _ in range(3)]
    x = xp.asarray(rng.normal(size=(5, 3)))

    op = MeasurementOperator(mats, n_columns=3)
    assert not op.is_common
    out = op.forward(x)
    for t in range(3):
        assert xp.allclose(out[:, t], mats[t] @ x[:, t])
    back = op.adjoint(out)
    for t in range(3):
        assert xp.allclose(back[:, t], mats[t].T @ out[:, t])


def test_stack_of_identical_matrices_equals_common():
    backend.set_backend(np)
    rng = np.random.default_rng(2)
    A = rng.normal(size=(4, 7))
    x = rng.normal(size=(7, 2))
    common = MeasurementOperator(A)
    stacked = MeasurementOperator(np.stack([A, A]), n_columns=2)
    assert np.allclose(common.forward(x), stacked.forward(x))
    assert np.allclose(common.adjoint_squared(common.forward(x)), stacked.adjoint_squared(stacked.forward(x)))


def test_operator_validation():
    backend.set_backend(np)
    with pytest.raises(ConfigurationError):
        MeasurementOperator(np.ones(5))
    with pytest.raises(ConfigurationError):
        MeasurementOperator([np.ones((2, 3)), np.ones((3, 3))])
    with pytest.raises(ConfigurationError):
        MeasurementOperator(np.array([[1.0, np.inf]]))
    with pytest.raises(ConfigurationError) as exc:
        MeasurementOperator(np.ones((2, 3, 4)), n_columns=3)
    assert exc.value.field == "matrix"


def test_operator_properties():
    backend.set_backend(np)
    op = MeasurementOperator(np.ones((3, 6)))
    assert op.input_size == 6
    assert op.output_size == 3
    assert op.undersampling_ratio == pytest.approx(0.5)
    op.check_columns(10)  # common matrix accepts any number of columns
