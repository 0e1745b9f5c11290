"""
State evolution (SE) for RBP with quantized measurements.

SE follows RBP in the large-system limit of an i.i.d. Gaussian matrix with
N(0, 1/M) entries and undersampling ratio δ = M / N (β = 1 / δ). Each round
carries two variances per side. The error variance is what the pseudo-data
actually suffer from. The assumed variance is what RBP believes and feeds to
its denoisers. They coincide only for a matched MMSE prior; a mismatched or
max-sum denoiser (e.g. Laplacian "map") makes them drift apart.

    input side  : r = x + sqrt(τ_r) v,          x ~ prior, v ~ N(0, 1)
                  (xhat, xvar) = prior.denoise(r, ν_r)
                  mse = E (xhat - x)²
                  τ_p = β mse,                  ν_p = β E[xvar]
    output side : p ~ N(0, β E[x²] - τ_p),      z = p + sqrt(τ_p) n
                  y = Q(z + w),                 w ~ N(0, σ²)
                  (zhat, zvar) = observation.estimate(p, ν_p)
                  shat = (zhat - p) / ν_p,      svar = (1 - zvar / ν_p) / ν_p
                  ν_r = 1 / E[svar],            τ_r = E[shat²] / E[svar]²

(τ are error variances, ν assumed ones.) All expectations are Monte Carlo
averages. The random draws (x, v, p, n, w) are made once per run and reused
every round, so the recursion is a deterministic map and its trace is free of
sampling jitter. For unquantized data the assumed output step reduces to
ν_r = ν_p + σ².

The start mirrors RBP: with `initial_effective_snr = 0` the first round
sees the uninformed state mse = E[xvar] = E[x²]; otherwise round 0 starts
from the pseudo-measurements at τ_r = ν_r = E[x²] / snr.
"""

from typing import Optional, Tuple

from .config import SEConfig
from .result import StateEvolutionResult
from ..core.backend import np
from ..core.errors import ConfigurationError
from ..core.rng_utils import get_rng, normal
from ..core.types import EstimatorState
from ..observation import make_observation
from ..prior import GaussBernoulliPrior, Prior


class StateEvolution:
    """
    Matrix-free predictor of the per-round MSE of RBP.

    Args:
        prior: Prior adapter used by RBP. It also generates the Monte Carlo
            signal unless `signal_prior` is given.
        quantizer: `Quantizer` or `PassThroughQuantizer` of the measurements.
        undersampling_ratio: δ = M / N > 0.
        noise_variance: σ² >= 0 of the noise added before quantization.
        config: `SEConfig`.
        seed: Seed of the Monte Carlo draws.
        signal_prior: Prior the true signal is drawn from, when it differs
            from the prior RBP runs with.
    """

    def __init__(
        self,
        prior: Prior,
        quantizer,
        undersampling_ratio: float,
        noise_variance: float,
        config: Optional[SEConfig] = None,
        *,
        seed=None,
        signal_prior: Optional[Prior] = None,
        verbose: bool = False,
    ) -> None:
        if not undersampling_ratio > 0:
            raise ConfigurationError("undersampling_ratio", f"must be positive, got {undersampling_ratio}")
        if not noise_variance >= 0:
            raise ConfigurationError("noise_variance", f"must be >= 0, got {noise_variance}")

        self.prior = prior
        self.signal_prior = signal_prior if signal_prior is not None else prior
        self.quantizer = quantizer
        self.beta = 1.0 / float(undersampling_ratio)
        self.noise_variance = float(noise_variance)
        self.config = config if config is not None else SEConfig()
        self.verbose = verbose

        n = self.config.mc_samples
        rng = get_rng(seed)
        self.params = prior.initial_params((n, 1))
        signal_params = self.signal_prior.initial_params((n, 1))
        self.second_moment = self.signal_prior.second_moment(signal_params)
        # RBP starts from the variance its own prior assigns
        self.initial_variance = prior.second_moment(self.params)

        # Common random numbers for every round
        self._x = self.signal_prior.sample((n, 1), rng=rng, params=signal_params)
        self._v = normal(rng, size=(n, 1))
        self._p = normal(rng, size=(n, 1))
        self._n = normal(rng, size=(n, 1))
        self._w = normal(rng, size=(n, 1))

        self.state = EstimatorState.INITIALIZING

    def input_step(self, tau_r: float, nu_r: Optional[float] = None) -> Tuple[float, float]:
        """
        Return (mse, mean posterior variance) of the denoiser.

        The pseudo-measurements carry noise of variance `tau_r`; the denoiser
        is told `nu_r` (defaults to `tau_r`).
        """
        nu_r = tau_r if nu_r is None else nu_r
        r = self._x + np().sqrt(tau_r) * self._v
        xhat, xvar = self.prior.denoise(r, nu_r, self.params)
        mse = float(np().mean((xhat - self._x) ** 2))
        return mse, float(np().mean(xvar))

    def output_step(self, tau_p: float, nu_p: Optional[float] = None) -> Tuple[float, float]:
        """
        Return (τ_r, ν_r), the error and assumed variances of the next
        pseudo-measurements, from output-side error variance `tau_p` and
        assumed variance `nu_p` (defaults to `tau_p`).
        """
        nu_p = tau_p if nu_p is None else nu_p
        p_var = max(self.beta * self.second_moment - tau_p, 0.0)
        p = np().sqrt(p_var) * self._p
        z = p + np().sqrt(tau_p) * self._n
        u = z + np().sqrt(self.noise_variance) * self._w
        y = self.quantizer.quantize(u)

        observation = make_observation(self.quantizer, y, self.noise_variance)
        zhat, zvar = observation.estimate(p, nu_p)
        zvar = np().clip(zvar, 0.0, nu_p)
        shat = (zhat - p) / nu_p
        svar = float(np().mean((1.0 - zvar / nu_p) / nu_p))
        if not svar > 0:
            return float("inf"), float("inf")
        return float(np().mean(shat ** 2)) / svar ** 2, 1.0 / svar

    def run(self, initial_effective_snr: float = 0.0) -> StateEvolutionResult:
        if not initial_effective_snr >= 0:
            raise ConfigurationError(
                "initial_effective_snr", f"must be >= 0, got {initial_effective_snr}"
            )
        cfg = self.config
        c = cfg.damping_constant
        floor = 1e-300

        if initial_effective_snr > 0:
            mse, xvar_mean = self.input_step(self.second_moment / initial_effective_snr)
        else:
            mse, xvar_mean = self.second_moment, self.initial_variance

        mse_trace, tau_r_trace, tau_p_trace, noise_trace = [], [], [], []
        self.state = EstimatorState.ITERATING

        iterator = range(cfg.max_iterations)
        if self.verbose:
            print(f"[SE] beta={self.beta:.4g}, noise_variance={self.noise_variance:g}, {self.quantizer}")
            print(self.prior.describe())
            from tqdm import tqdm
            iterator = tqdm(iterator, desc="SE Iteration")

        for t in iterator:
            tau_p = self.beta * mse
            nu_p = max(self.beta * xvar_mean, floor)
            tau_r, nu_r = self.output_step(tau_p, nu_p)
            mse_new, xvar_new = self.input_step(tau_r, nu_r)

            if t > 0 and c > 0:
                mse_new = c * mse + (1 - c) * mse_new
                xvar_new = c * xvar_mean + (1 - c) * xvar_new

            mse_prev = mse
            mse, xvar_mean = mse_new, xvar_new
            mse_trace.append(mse)
            tau_p_trace.append(nu_p)
            tau_r_trace.append(nu_r)
            noise_trace.append(tau_r)

            if t > 0 and abs(mse - mse_prev) < cfg.tolerance * max(mse_prev, floor):
                self.state = EstimatorState.CONVERGED
                break

        if self.state != EstimatorState.CONVERGED:
            self.state = EstimatorState.MAX_ITERATIONS
        if self.verbose:
            print(f"[SE] {self.state} after {len(mse_trace)} iterations, mse={mse_trace[-1]:.4e}")

        return StateEvolutionResult(
            mse_trace=mse_trace,
            status=self.state,
            n_iter=len(mse_trace),
            tau_r_trace=tau_r_trace,
            tau_p_trace=tau_p_trace,
            effective_noise_trace=noise_trace,
        )


def predict(
    initial_effective_snr: float,
    sparsity_rate: float,
    undersampling_ratio: float,
    noise_variance: float,
    quantizer,
    max_iterations: int = 200,
    tolerance: float = 1e-4,
    mc_samples: int = 10000,
    damping_constant: float = 0.0,
    verbose: bool = False,
    *,
    prior: Optional[Prior] = None,
    signal_prior: Optional[Prior] = None,
    seed=None,
) -> StateEvolutionResult:
    """
    Predict the per-round MSE trace of RBP for a problem ensemble.

    Args:
        initial_effective_snr: E[x²] / τ_r of the starting pseudo-measurements;
            0 starts uninformed, as RBP does.
        sparsity_rate: Fraction of active coefficients in (0, 1]. Configures the
            default Bernoulli-Gaussian prior (unit active variance).
        undersampling_ratio: δ = M / N.
        noise_variance: Variance of the noise added before quantization.
        quantizer: `Quantizer` or `PassThroughQuantizer`.
        max_iterations, tolerance: Stopping rule on the relative MSE change.
        mc_samples: Monte Carlo sample count per side.
        damping_constant: Weight of the previous round in [0, 1).
        verbose: Print a summary and a progress bar.
        prior: Prior RBP runs with, overriding the default Bernoulli-Gaussian one.
        signal_prior: Prior of the true signal; defaults to `prior`.
        seed: Seed of the Monte Carlo draws.

    Returns:
        StateEvolutionResult: `.mse_trace` holds the prediction; iterating the
        result yields the trace.
    """
    rho = float(sparsity_rate)
    if not 0.0 < rho <= 1.0:
        raise ConfigurationError("sparsity_rate", f"must lie in (0, 1], got {sparsity_rate}")
    if prior is None:
        prior = GaussBernoulliPrior(sparsity_rate=rho, active_mean=0.0, active_var=1.0)

    config = SEConfig(
        max_iterations=max_iterations,
        tolerance=tolerance,
        mc_samples=mc_samples,
        damping_constant=damping_constant,
    )
    se = StateEvolution(
        prior, quantizer, undersampling_ratio, noise_variance, config,
        seed=seed, signal_prior=signal_prior, verbose=verbose,
    )
    return se.run(initial_effective_snr)
