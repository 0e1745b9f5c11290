"""
Relaxed belief propagation (RBP) for quantized compressed sensing.

The estimator solves y = Q(A x + w) for a sparse x with the sum-product GAMP
recursion of Rangan (2011). Each round runs

    (1) forward  : pvar = (A∘A) xvar,          p = A xhat - pvar · shat
    (2) output   : (zhat, zvar) = observation.estimate(p, pvar)
                   shat = (zhat - p) / pvar,   svar = (1 - zvar / pvar) / pvar
    (3) backward : rvar = 1 / ((A∘A)ᵀ svar),   r = xhat + rvar · Aᵀ shat
    (4) input    : (xhat, xvar) = prior.denoise(r, rvar, params)
    (5) EM       : params = prior.em_step(r, rvar, params)     (if learning)
    (6) MSE against the ground truth, if given
    (7) stop when ‖xhat_t - xhat_{t-1}‖ / ‖xhat_t‖ < tolerance

All quantities are (rows, T) arrays; T measurement vectors share one code
path whether they share a matrix or not (see `MeasurementOperator`).

Plain RBP is fragile on matrices far from i.i.d. zero-mean Gaussian and on
quantized data whose bins lie deep in the tails of the pseudo-prior. Such runs
end in the DIVERGED state with the partial trace and the last finite estimate.
A run that exhausts `max_iterations` returns its best round against the
ground truth, if one was given.
"""

import warnings
from typing import Callable, Iterator, Optional

import numpy as _np

from .config import RBPConfig
from .monitor import DivergenceMonitor
from .result import RBPResult, RBPSnapshot
from ..core.adaptive_damping import AdaptiveDamping
from ..core.backend import np
from ..core.errors import ConfigurationError, Diagnostic, DivergenceWarning, NumericalDegeneracyWarning
from ..core.operator import MeasurementOperator
from ..core.types import EstimatorState
from ..core.uncertain_array import UncertainArray as UA
from ..observation import Observation, make_observation
from ..prior import GaussBernoulliPrior, Prior


class RBPEstimator:
    """
    Stateful RBP run over one operator, one observation model and one prior.

    Typical use goes through `reconstruct()`. Driving the estimator directly
    allows stepping round by round:

    >>> est = RBPEstimator(operator, observation, prior, ground_truth=x)
    >>> for snap in est.iterate():
    ...     if snap.mse is not None and snap.mse < 1e-4:
    ...         break
    >>> result = est.result()

    Args:
        operator: `MeasurementOperator` mapping (N, T) signals to (M, T) outputs.
        observation: `Observation` holding the (M, T) data.
        prior: `Prior` adapter for the coefficients.
        config: `RBPConfig`; defaults apply when omitted.
        ground_truth: Optional (N,) or (N, T) signal for the diagnostic MSE trace.
        callback: Optional `callback(snapshot, t)` invoked after each round.
        verbose: Print a configuration summary and show a progress bar.
    """

    def __init__(
        self,
        operator: MeasurementOperator,
        observation: Observation,
        prior: Prior,
        config: Optional[RBPConfig] = None,
        *,
        ground_truth=None,
        callback: Optional[Callable] = None,
        verbose: bool = False,
    ) -> None:
        self.operator = operator
        self.observation = observation
        self.prior = prior
        self.config = config if config is not None else RBPConfig()
        self.callback = callback
        self.verbose = verbose

        if operator.output_size != observation.n_rows:
            raise ConfigurationError(
                "quantized_measurements",
                f"{observation.n_rows} measurements for a matrix with {operator.output_size} rows",
            )
        operator.check_columns(observation.n_columns)

        self.shape = (operator.input_size, observation.n_columns)
        self.ground_truth = None
        if ground_truth is not None:
            gt = np().asarray(ground_truth, dtype=np().float64)
            if gt.ndim == 1:
                gt = gt.reshape(-1, 1)
            if gt.shape != self.shape:
                raise ConfigurationError(
                    "ground_truth", f"expected shape {self.shape} (or ({self.shape[0]},) when T = 1), got {gt.shape}"
                )
            self.ground_truth = gt

        self.state = EstimatorState.INITIALIZING
        self._initialize()

    # ---- Setup ----

    def _initialize(self) -> None:
        n, t = self.shape
        cfg = self.config
        self.params = self.prior.initial_params(self.shape)
        prior_var = max(self.prior.second_moment(self.params), cfg.variance_floor)

        # Neutral start: zero mean, prior variance
        self.x_belief = UA.zeros(n, t, precision=1.0 / prior_var, scalar_precision=cfg.uniform_variance)
        self.shat = np().zeros((self.operator.output_size, t), dtype=np().float64)
        self.svar = None

        self.mse_trace: list = []
        self.change_trace: list = []
        self.diagnostics: list = []
        self.n_iter = 0
        # (round, belief) with the lowest ground-truth MSE so far
        self._best = None
        self.damping = 0.0 if cfg.adaptive else float(cfg.damping)
        self._scheduler = AdaptiveDamping(cfg.adaptive_cfg) if cfg.adaptive else None
        self._monitor = DivergenceMonitor(cfg.divergence_factor, cfg.divergence_patience)

    @property
    def xhat(self):
        return self.x_belief.data

    @property
    def xvar(self):
        return self.x_belief.variance()

    # ---- One round ----

    def _floor(self, var):
        return np().maximum(var, self.config.variance_floor)

    def _uniform(self, var):
        """Column mean of a variance array, kept with shape (1, T)."""
        return np().mean(var, axis=0, keepdims=True)

    def _output_step(self):
        op, obs = self.operator, self.observation
        xvar = self.x_belief.variance()

        pvar = self._floor(op.forward_squared(xvar))
        if self.config.uniform_variance:
            pvar = self._uniform(pvar) * np().ones_like(pvar)
        p = op.forward(self.xhat) - pvar * self.shat

        zhat, zvar = obs.estimate(p, pvar)
        zvar = np().clip(zvar, 0.0, pvar)
        shat = (zhat - p) / pvar
        svar = (1.0 - zvar / pvar) / pvar
        return p, pvar, shat, svar

    def _input_step(self, shat, svar):
        op = self.operator
        with _np.errstate(divide="ignore"):
            rvar = 1.0 / self._floor(op.adjoint_squared(svar))
        rvar = self._floor(rvar)
        if self.config.uniform_variance:
            rvar = self._uniform(rvar) * np().ones_like(rvar)
        r = self.xhat + rvar * op.adjoint(shat)
        return r, rvar

    def _learn(self, r, rvar, t: int) -> None:
        self.params, issues = self.prior.em_step(r, rvar, self.params)
        for message, value in issues:
            self.diagnostics.append(Diagnostic(t, "em_update_discarded", message, value))
            warnings.warn(message, NumericalDegeneracyWarning, stacklevel=4)

    def _monitored_error(self, xhat) -> float:
        if self.ground_truth is not None:
            return float(np().mean((xhat - self.ground_truth) ** 2))
        return float(np().mean(xhat ** 2))

    def _diverge(self, t: int, reason: str, value: Optional[float] = None) -> None:
        self.state = EstimatorState.DIVERGED
        self.diagnostics.append(Diagnostic(t, "divergence", reason, value))
        warnings.warn(f"RBP diverged at iteration {t}: {reason}", DivergenceWarning, stacklevel=3)

    def step(self, t: int) -> Optional[RBPSnapshot]:
        """
        Run round `t`. Returns the snapshot of the round, or None if the round
        produced non-finite values (the estimator is then DIVERGED and keeps
        the previous estimate).
        """
        cfg = self.config
        p, pvar, shat_new, svar_new = self._output_step()

        if self._scheduler is not None:
            fitness = self.observation.compute_fitness(p, pvar)
            self.damping, _ = self._scheduler.step(fitness if _np.isfinite(fitness) else float("inf"))

        d = self.damping
        if d > 0 and self.svar is not None:
            shat_new = (1 - d) * shat_new + d * self.shat
            svar_new = (1 - d) * svar_new + d * self.svar

        r, rvar = self._input_step(shat_new, svar_new)
        xhat_new, xvar_new = self.prior.denoise(r, rvar, self.params)

        if not (np().all(np().isfinite(xhat_new)) and np().all(np().isfinite(xvar_new))):
            self._diverge(t, "non-finite estimate")
            return None

        x_new = UA.from_variance(xhat_new, self._floor(xvar_new) * np().ones_like(xhat_new))
        if cfg.uniform_variance:
            x_new = x_new.as_scalar_precision()
        if d > 0 and t > 0:
            x_new = x_new.damp_with(self.x_belief, alpha=d)

        if self.prior.learns:
            self._learn(r, rvar, t)

        xhat_prev = self.xhat
        self.x_belief = x_new
        self.shat, self.svar = shat_new, svar_new
        self.n_iter = t + 1

        norm_new = float(np().linalg.norm(self.xhat))
        norm_diff = float(np().linalg.norm(self.xhat - xhat_prev))
        change = 0.0 if norm_diff == 0 else norm_diff / max(norm_new, 1e-300)
        self.change_trace.append(change)

        mse = None
        if self.ground_truth is not None:
            mse = float(np().mean((self.xhat - self.ground_truth) ** 2))
            self.mse_trace.append(mse)
            if self._best is None or mse < self.mse_trace[self._best[0]]:
                self._best = (t, self.x_belief)

        if self._monitor.update(self._monitored_error(self.xhat)):
            self._diverge(t, self._monitor.reason, self._monitor.value)
        elif t > 0 and change < cfg.tolerance:
            self.state = EstimatorState.CONVERGED

        return RBPSnapshot(
            iteration=t,
            estimate=self.xhat.copy(),
            variance=self.xvar.copy(),
            mse=mse,
            change=change,
            damping=d,
            params=self.params,
        )

    # ---- Driving ----

    def iterate(self) -> Iterator[RBPSnapshot]:
        """
        Generator over rounds. Stops at a terminal state; callers may also stop
        early by breaking out of the loop.
        """
        if self.state.is_terminal:
            return
        self.state = EstimatorState.ITERATING
        for t in range(self.n_iter, self.config.max_iterations):
            snap = self.step(t)
            if snap is None:
                return
            if self.callback is not None:
                self.callback(snap, t)
            yield snap
            if self.state.is_terminal:
                return
        self.state = EstimatorState.MAX_ITERATIONS

    def run(self) -> RBPResult:
        if self.verbose:
            print(f"[RBP] {self.operator}, {self.observation}")
            print(self.prior.describe())
            from tqdm import tqdm
            bar = tqdm(self.iterate(), total=self.config.max_iterations, desc="RBP Iteration")
            for snap in bar:
                if snap.mse is not None:
                    bar.set_postfix(mse=f"{snap.mse:.3e}")
            bar.close()
            print(f"[RBP] {self.state} after {self.n_iter} iterations")
        else:
            for _ in self.iterate():
                pass
        return self.result()

    def result(self, squeeze: bool = False) -> RBPResult:
        """
        Package the run. A run that used up its round budget returns the
        lowest-MSE round when ground truth was given; every other run
        returns the current estimate.
        """
        belief, estimate_iteration = self.x_belief, (self.n_iter - 1 if self.n_iter else None)
        if self.state == EstimatorState.MAX_ITERATIONS and self._best is not None:
            estimate_iteration, belief = self._best

        xhat = belief.data.copy()
        xvar = belief.variance().copy()
        support = self.prior.hard_support_estimate(xhat)
        if squeeze:
            xhat, xvar, support = xhat[:, 0], xvar[:, 0], support[:, 0]
        return RBPResult(
            estimate=xhat,
            mse_trace=list(self.mse_trace),
            status=self.state,
            n_iter=self.n_iter,
            estimate_iteration=estimate_iteration,
            variance=xvar,
            change_trace=list(self.change_trace),
            support=support,
            params=self.params,
            diagnostics=list(self.diagnostics),
        )

    def __repr__(self) -> str:
        return f"RBPEstimator(state='{self.state}', n_iter={self.n_iter}, shape={self.shape})"


def reconstruct(
    matrix,
    quantized_measurements,
    noise_variance: float,
    sparsity_rate: float,
    quantizer,
    ground_truth=None,
    max_iterations: int = 200,
    tolerance: float = 1e-4,
    verbose: bool = False,
    *,
    prior: Optional[Prior] = None,
    damping=0.0,
    tail="stable",
    uniform_variance: bool = False,
    variance_floor: float = 1e-12,
    divergence_factor: float = 1e2,
    divergence_patience: int = 3,
    adaptive_cfg=None,
    callback: Optional[Callable] = None,
) -> RBPResult:
    """
    Recover a sparse signal from quantized noisy linear measurements.

    Args:
        matrix: (M, N) matrix shared by all columns, or a (T, M, N) array /
            sequence of T matrices, one per measurement vector.
        quantized_measurements: (M,) or (M, T) level indices of `quantizer`,
            or real values for a `PassThroughQuantizer`.
        noise_variance: Variance of the Gaussian noise added before quantization.
        sparsity_rate: Fraction of active coefficients, in (0, 1]. Configures the
            default Bernoulli-Gaussian prior (unit active variance).
        quantizer: `Quantizer` or `PassThroughQuantizer`.
        ground_truth: Optional signal for the diagnostic MSE trace.
        max_iterations, tolerance: Stopping rule.
        verbose: Print a summary and a progress bar.
        prior: Prior adapter overriding the default Bernoulli-Gaussian one.
        damping, tail, uniform_variance, variance_floor, divergence_factor,
        divergence_patience, adaptive_cfg: See `RBPConfig`.
        callback: Optional `callback(snapshot, t)` run after every round.

    Returns:
        RBPResult: unpacks as `(estimate, mse_trace)`; the estimate has the
        dimensionality of the measurements ((N,) for (M,) input).
    """
    rho = float(sparsity_rate)
    if not 0.0 < rho <= 1.0:
        raise ConfigurationError("sparsity_rate", f"must lie in (0, 1], got {sparsity_rate}")

    config = RBPConfig(
        max_iterations=max_iterations,
        tolerance=tolerance,
        damping=damping,
        variance_floor=variance_floor,
        divergence_factor=divergence_factor,
        divergence_patience=divergence_patience,
        uniform_variance=uniform_variance,
        tail=tail,
        adaptive_cfg=adaptive_cfg,
    )
    if prior is None:
        prior = GaussBernoulliPrior(sparsity_rate=rho, active_mean=0.0, active_var=1.0)

    squeeze = np().ndim(quantized_measurements) == 1
    observation = make_observation(quantizer, quantized_measurements, noise_variance, tail=config.tail)
    operator = MeasurementOperator(matrix, n_columns=observation.n_columns)

    estimator = RBPEstimator(
        operator,
        observation,
        prior,
        config,
        ground_truth=ground_truth,
        callback=callback,
        verbose=verbose,
    )
    estimator.run()
    return estimator.result(squeeze=squeeze)
