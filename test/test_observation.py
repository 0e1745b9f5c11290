import pytest
import numpy as np
from scipy import integrate, stats

from csq.core import backend
from csq.core.errors import ConfigurationError
from csq.observation import GaussianObservation, QuantizedObservation, make_observation
from csq.quantizer import PassThroughQuantizer, uniform_quantizer


@pytest.fixture(autouse=True)
def numpy_backend():
    backend.set_backend(np)


def quadrature_posterior(p, pvar, lower, upper, noise_var):
    """Posterior moments of z ~ N(p, pvar) given z + N(0, noise_var) in [lower, upper)."""
    s = np.sqrt(noise_var)

    def weight(z, k):
        mass = stats.norm.cdf((upper - z) / s) - stats.norm.cdf((lower - z) / s)
        return z ** k * stats.norm.pdf(z, loc=p, scale=np.sqrt(pvar)) * mass

    span = 12 * np.sqrt(pvar)
    moments = [integrate.quad(weight, p - span, p + span, args=(k,), limit=200)[0] for k in range(3)]
    mean = moments[1] / moments[0]
    return mean, moments[2] / moments[0] - mean ** 2


def test_gaussian_noiseless_pins_to_data():
    y = np.array([0.3, -1.2, 2.0])
    obs = GaussianObservation(y, noise_var=0.0)
    assert obs.shape == (3, 1)
    zhat, zvar = obs.estimate(np.zeros((3, 1)), 0.7 * np.ones((3, 1)))
    assert np.allclose(zhat[:, 0], y)
    assert np.allclose(zvar, 0.0)


def test_gaussian_posterior_and_fitness():
    y = np.array([[1.0], [-0.5]])
    obs = GaussianObservation(y, noise_var=0.5)
    p = np.array([[0.0], [0.5]])
    pvar = np.array([[1.5], [0.5]])
    zhat, zvar = obs.estimate(p, pvar)
    assert np.allclose(zhat, p + pvar / (pvar + 0.5) * (y - p))
    assert np.allclose(zvar, pvar * 0.5 / (pvar + 0.5))
    expected = -np.mean(stats.norm.logpdf(y, loc=p, scale=np.sqrt(pvar + 0.5)))
    assert obs.compute_fitness(p, pvar) == pytest.approx(expected)


def test_quantized_posterior_matches_quadrature():
    q = uniform_quantizer(2, variance=1.0, loading=2.0)  # boundaries -1, 0, 1
    indices = np.array([0, 1, 2, 3])
    noise_var = 0.2
    obs = QuantizedObservation(indices, q, noise_var=noise_var)
    p = np.array([[0.4], [-0.3], [1.5], [0.0]])
    pvar = np.array([[0.8], [0.3], [1.0], [0.05]])
    zhat, zvar = obs.estimate(p, pvar)

    edges = np.concatenate([[-np.inf], q.boundaries, [np.inf]])
    for i, idx in enumerate(indices):
        ref_mean, ref_var = quadrature_posterior(p[i, 0], pvar[i, 0], edges[idx], edges[idx + 1], noise_var)
        assert zhat[i, 0] == pytest.approx(ref_mean, abs=1e-6)
        assert zvar[i, 0] == pytest.approx(ref_var, abs=1e-6)


def test_quantized_noiseless_posterior_is_truncated_gaussian():
    q = uniform_quantizer(1)  # single boundary at 0
    obs = QuantizedObservation(np.array([1, 0]), q, noise_var=0.0)
    zhat, zvar = obs.estimate(np.zeros((2, 1)), np.ones((2, 1)))
    half_normal_mean = np.sqrt(2.0 / np.pi)
    assert np.allclose(zhat[:, 0], [half_normal_mean, -half_normal_mean])
    assert np.allclose(zvar[:, 0], 1.0 - 2.0 / np.pi)


def test_quantized_variance_never_exceeds_prior_variance():
    rng = np.random.default_rng(0)
    q = uniform_quantizer(3)
    indices = rng.integers(0, q.n_levels, size=(200, 2))
    obs = QuantizedObservation(indices, q, noise_var=1e-3)
    p = 5.0 * rng.normal(size=(200, 2))
    pvar = rng.uniform(1e-4, 2.0, size=(200, 2))
    zhat, zvar = obs.estimate(p, pvar)
    assert np.all(np.isfinite(zhat))
    assert np.all(zvar >= 0.0)
    assert np.all(zvar <= pvar * (1 + 1e-12))


def test_quantized_fitness_is_negative_log_mass():
    q = uniform_quantizer(1)
    obs = QuantizedObservation(np.array([[1], [1]]), q, noise_var=0.25)
    p = np.array([[0.0], [1.0]])
    pvar = np.array([[0.75], [0.75]])
    expected = -np.mean(np.log(stats.norm.sf(0.0, loc=p, scale=1.0)))
    assert obs.compute_fitness(p, pvar) == pytest.approx(expected)


def test_quantized_sample_applies_quantizer():
    q = uniform_quantizer(2, loading=2.0)
    obs = QuantizedObservation(np.zeros(3, dtype=int), q)
    z = np.array([[-5.0], [0.5], [5.0]])
    assert obs.sample(z).tolist() == [[0], [2], [3]]


def test_make_observation_dispatch():
    y = np.array([0.1, 0.2])
    assert isinstance(make_observation(PassThroughQuantizer(), y), GaussianObservation)
    assert isinstance(make_observation(None, y, noise_var=0.1), GaussianObservation)
    obs = make_observation(uniform_quantizer(1), np.array([0, 1]), tail="naive")
    assert isinstance(obs, QuantizedObservation)
    assert str(obs.tail) == "naive"


def test_configuration_errors():
    q = uniform_quantizer(1)
    with pytest.raises(ConfigurationError) as exc:
        GaussianObservation(np.ones(3), noise_var=-1.0)
    assert exc.value.field == "noise_variance"
    with pytest.raises(ConfigurationError) as exc:
        QuantizedObservation(np.array([0, 2]), q)
    assert exc.value.field == "quantized_measurements"
    with pytest.raises(ConfigurationError):
        QuantizedObservation(np.zeros((2, 2, 2), dtype=int), q)
    with pytest.raises(ConfigurationError) as exc:
        QuantizedObservation(np.array([0.1]), PassThroughQuantizer())
    assert exc.value.field == "quantizer"
    with pytest.raises(ConfigurationError) as exc:
        make_observation(q, np.array([0, 1]), tail="exact")
    assert exc.value.field == "tail"
