import warnings
from concurrent.futures import ThreadPoolExecutor

import pytest
import numpy as np

from csq.core import backend
from csq.core.errors import ConfigurationError, DivergenceWarning
from csq.core.linalg_utils import gaussian_sensing_matrix, random_orthogonal_matrix
from csq.core.types import EstimatorState
from csq.engine import RBPConfig, RBPEstimator, reconstruct
from csq.core.operator import MeasurementOperator
from csq.observation import make_observation
from csq.prior import GaussBernoulliPrior, LaplacianPrior, LaplacianParams
from csq.quantizer import PassThroughQuantizer, uniform_quantizer


@pytest.fixture(autouse=True)
def numpy_backend():
    backend.set_backend(np)


def make_problem(m, n, rho=0.1, noise_var=1e-3, quantizer=None, seed=0, n_columns=1):
    rng = np.random.default_rng(seed)
    A = gaussian_sensing_matrix(m, n, rng=rng)
    x = GaussBernoulliPrior(rho).sample((n, n_columns), rng=rng)
    z = A @ x + np.sqrt(noise_var) * rng.normal(size=(m, n_columns))
    quantizer = PassThroughQuantizer() if quantizer is None else quantizer
    return A, x, quantizer.quantize(z)


@pytest.mark.parametrize("uniform_variance", [False, True])
def test_noiseless_orthogonal_recovery(uniform_variance):
    rng = np.random.default_rng(1)
    n = 256
    A = random_orthogonal_matrix(n, rng=rng)
    x = GaussBernoulliPrior(0.1).sample((n,), rng=rng)
    y = A @ x

    result = reconstruct(
        A, y, 0.0, 0.1, PassThroughQuantizer(), ground_truth=x, uniform_variance=uniform_variance
    )
    estimate, trace = result
    assert estimate.shape == (n,)
    assert result.status == EstimatorState.CONVERGED
    assert result.converged
    assert result.estimate_iteration == result.n_iter - 1
    assert trace[-1] < 1e-6
    assert trace[-1] < 1e-3 * trace[0]
    # error decreases round after round until it reaches the numerical floor
    for prev, cur in zip(trace[:-1], trace[1:]):
        if prev > 1e-10:
            assert cur < prev


def test_noisy_gaussian_recovery_and_support():
    A, x, y = make_problem(250, 500, rho=0.1, noise_var=1e-4, seed=2)
    result = reconstruct(A, y[:, 0], 1e-4, 0.1, PassThroughQuantizer(), ground_truth=x[:, 0])
    assert result.status in (EstimatorState.CONVERGED, EstimatorState.MAX_ITERATIONS)
    assert result.final_mse < 1e-3
    assert len(result.mse_trace) == result.n_iter == len(result.change_trace)
    assert result.support.shape == (500,)
    assert result.variance.shape == (500,)


def test_quantized_recovery_beats_prior_variance():
    q = uniform_quantizer(3, variance=0.2)
    A, x, y = make_problem(500, 1000, rho=0.1, noise_var=1e-3, quantizer=q, seed=3)
    result = reconstruct(A, y, 1e-3, 0.1, q, ground_truth=x)
    assert not result.diverged
    assert result.estimate.shape == (1000, 1)
    assert np.all(np.isfinite(result.estimate))
    assert result.final_mse < 0.1 * 0.1


def test_round_budget_ends_in_max_iterations():
    A, x, y = make_problem(250, 500, rho=0.1, noise_var=1e-4, seed=15)
    result = reconstruct(A, y, 1e-4, 0.1, PassThroughQuantizer(), ground_truth=x, max_iterations=3)
    assert result.status == EstimatorState.MAX_ITERATIONS
    assert not result.converged and not result.diverged
    assert result.n_iter == len(result.mse_trace) == len(result.change_trace) == 3


def laplacian_map_problem(seed, m=500, n=1000, noise_var=1e-3):
    rng = np.random.default_rng(seed)
    A = gaussian_sensing_matrix(m, n, rng=rng)
    prior = LaplacianPrior(rate=np.sqrt(2.0), message_mode="map")
    x = prior.sample((n,), rng=rng)
    y = A @ x + np.sqrt(noise_var) * rng.normal(size=m)
    return A, x, y, prior


def test_max_iterations_returns_lowest_mse_round():
    # the soft-threshold error rises over the first rounds before it falls
    A, x, y, prior = laplacian_map_problem(16)
    result = reconstruct(
        A, y, 1e-3, 1.0, PassThroughQuantizer(), ground_truth=x, prior=prior, max_iterations=3
    )
    assert result.status == EstimatorState.MAX_ITERATIONS
    best = int(np.argmin(result.mse_trace))
    assert result.estimate_iteration == best
    assert np.mean((result.estimate - x) ** 2) == pytest.approx(min(result.mse_trace))
    assert min(result.mse_trace) < result.mse_trace[-1]
    assert result.final_mse == result.mse_trace[-1]


def test_max_iterations_without_ground_truth_returns_last_round():
    A, x, y, prior = laplacian_map_problem(17)
    est = RBPEstimator(
        MeasurementOperator(A),
        make_observation(PassThroughQuantizer(), y, 1e-3),
        prior,
        RBPConfig(max_iterations=3),
    )
    result = est.run()
    assert result.status == EstimatorState.MAX_ITERATIONS
    assert result.estimate_iteration == 2
    assert np.array_equal(result.estimate, est.xhat)


def test_result_without_ground_truth_has_empty_trace():
    A, x, y = make_problem(100, 200, seed=4)
    estimate, trace = reconstruct(A, y, 1e-3, 0.1, PassThroughQuantizer(), max_iterations=20)
    assert trace == []
    assert estimate.shape == (200, 1)


def test_common_matrix_equals_identical_stack():
    A, x, y = make_problem(120, 200, n_columns=3, seed=5)
    kwargs = dict(max_iterations=10, tolerance=0.0)
    common = reconstruct(A, y, 1e-3, 0.1, PassThroughQuantizer(), ground_truth=x, **kwargs)
    stacked = reconstruct(np.stack([A] * 3), y, 1e-3, 0.1, PassThroughQuantizer(), ground_truth=x, **kwargs)
    assert common.n_iter == stacked.n_iter == 10
    assert np.allclose(common.estimate, stacked.estimate, rtol=1e-10, atol=1e-12)
    assert np.allclose(common.mse_trace, stacked.mse_trace, rtol=1e-10)


def test_per_column_matrices_match_independent_runs():
    rng = np.random.default_rng(6)
    m, n, t = 100, 200, 3
    mats = [gaussian_sensing_matrix(m, n, rng=rng) for _ in range(t)]
    x = GaussBernoulliPrior(0.1).sample((n, t), rng=rng)
    y = np.stack([mats[k] @ x[:, k] for k in range(t)], axis=1) + 0.03 * rng.normal(size=(m, t))

    kwargs = dict(max_iterations=10, tolerance=0.0)
    joint = reconstruct(mats, y, 1e-3, 0.1, PassThroughQuantizer(), **kwargs)
    for k in range(t):
        single = reconstruct(mats[k], y[:, k], 1e-3, 0.1, PassThroughQuantizer(), **kwargs)
        assert np.allclose(joint.estimate[:, k], single.estimate, rtol=1e-8, atol=1e-10)


def test_divergence_on_nonzero_mean_matrix():
    rng = np.random.default_rng(7)
    m, n = 200, 400
    A = gaussian_sensing_matrix(m, n, rng=rng, mean=3.0)
    x = GaussBernoulliPrior(0.1).sample((n,), rng=rng)
    z = A @ x + 1e-2 * rng.normal(size=m)
    q = uniform_quantizer(8, variance=float(np.mean(z ** 2)))

    with pytest.warns(DivergenceWarning):
        result = reconstruct(A, q.quantize(z), 1e-4, 0.1, q, ground_truth=x, tail="naive")

    assert result.status == EstimatorState.DIVERGED
    assert result.diverged
    assert np.all(np.isfinite(result.estimate))
    assert len(result.mse_trace) == result.n_iter
    divergence = [d for d in result.diagnostics if d.kind == "divergence"]
    assert len(divergence) == 1


def test_adaptive_damping_run_completes():
    A, x, y = make_problem(250, 500, rho=0.1, noise_var=1e-4, seed=8)
    result = reconstruct(
        A, y, 1e-4, 0.1, PassThroughQuantizer(), ground_truth=x, damping="auto", max_iterations=300
    )
    assert not result.diverged
    assert result.final_mse < 1e-2


def test_fixed_damping_slows_but_converges():
    A, x, y = make_problem(250, 500, rho=0.1, noise_var=1e-4, seed=9)
    plain = reconstruct(A, y, 1e-4, 0.1, PassThroughQuantizer(), ground_truth=x)
    damped = reconstruct(A, y, 1e-4, 0.1, PassThroughQuantizer(), ground_truth=x, damping=0.5)
    assert not damped.diverged
    assert damped.n_iter >= plain.n_iter
    assert damped.final_mse == pytest.approx(plain.final_mse, rel=0.5)


def test_laplacian_prior_with_em():
    rng = np.random.default_rng(10)
    n = 400
    A = gaussian_sensing_matrix(n, n, rng=rng)
    truth = LaplacianPrior(rate=2.0)
    x = truth.sample((n, 1), rng=rng)
    y = A @ x + 0.1 * rng.normal(size=(n, 1))

    prior = LaplacianPrior(rate=0.5, learn_rate=True, message_mode="mmse")
    result = reconstruct(A, y, 1e-2, 1.0, PassThroughQuantizer(), ground_truth=x, prior=prior)
    assert not result.diverged
    assert isinstance(result.params, LaplacianParams)
    assert result.params.rate.shape == (n, 1)
    assert 1.0 < float(result.params.rate[0, 0]) < 4.0
    assert result.final_mse < truth.second_moment()
    # the prior object itself is never modified by a run
    assert prior.rate == pytest.approx(0.5)


def test_em_degeneracy_is_recorded_and_run_continues():
    A, x, y = make_problem(100, 200, seed=11)
    prior = LaplacianPrior(rate=1e6, learn_rate=True, message_mode="map")
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = reconstruct(A, y, 1e-3, 0.1, PassThroughQuantizer(), prior=prior, max_iterations=5, tolerance=0.0)
    discarded = [d for d in result.diagnostics if d.kind == "em_update_discarded"]
    assert discarded
    assert all(d.value is not None for d in discarded)
    assert any("degenerate" in str(w.message) for w in caught)
    assert result.n_iter >= 1


def test_concurrent_runs_record_their_own_diagnostics():
    A, x, y = make_problem(100, 200, seed=11)

    def run(rate):
        prior = LaplacianPrior(rate=rate, learn_rate=True, message_mode="map")
        return reconstruct(A, y, 1e-3, 0.1, PassThroughQuantizer(), prior=prior, max_iterations=5, tolerance=0.0)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run, [1e6, 1e6, 1e6, 1e6]))
    counts = [sum(d.kind == "em_update_discarded" for d in r.diagnostics) for r in results]
    assert all(c == counts[0] and c > 0 for c in counts)


def test_callback_and_iterate():
    A, x, y = make_problem(100, 200, seed=12)
    seen = []
    reconstruct(
        A, y, 1e-3, 0.1, PassThroughQuantizer(), ground_truth=x,
        max_iterations=5, tolerance=0.0, callback=lambda snap, t: seen.append((t, snap.iteration, snap.mse)),
    )
    assert [s[0] for s in seen] == list(range(5))
    assert all(s[0] == s[1] for s in seen)
    assert all(s[2] is not None for s in seen)

    est = RBPEstimator(
        MeasurementOperator(A),
        make_observation(PassThroughQuantizer(), y, 1e-3),
        GaussBernoulliPrior(0.1),
        RBPConfig(max_iterations=50),
        ground_truth=x,
    )
    for snap in est.iterate():
        if snap.iteration == 2:
            break
    partial = est.result()
    assert partial.n_iter == 3
    assert len(partial.mse_trace) == 3
    assert est.state == EstimatorState.ITERATING


def test_verbose_prints_summary(capsys):
    A, x, y = make_problem(60, 120, seed=13)
    reconstruct(A, y, 1e-3, 0.1, PassThroughQuantizer(), ground_truth=x, max_iterations=3, verbose=True)
    out = capsys.readouterr().out
    assert "[RBP]" in out
    assert "Bernoulli-Gaussian" in out


def test_configuration_errors():
    A, x, y = make_problem(50, 100, seed=14)
    q = PassThroughQuantizer()

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y, 1e-3, 0.0, q)
    assert exc.value.field == "sparsity_rate"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y, -1.0, 0.1, q)
    assert exc.value.field == "noise_variance"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y[:-1], 1e-3, 0.1, q)
    assert exc.value.field == "quantized_measurements"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y, 1e-3, 0.1, q, damping=1.0)
    assert exc.value.field == "damping"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y, 1e-3, 0.1, q, ground_truth=x[:-1])
    assert exc.value.field == "ground_truth"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct([A, A], np.tile(y, (1, 3)), 1e-3, 0.1, q)
    assert exc.value.field == "matrix"

    with pytest.raises(ConfigurationError) as exc:
        reconstruct(A, y, 1e-3, 0.1, q, tail="approximate")
    assert exc.value.field == "tail"
