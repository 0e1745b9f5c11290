from dataclasses import dataclass
from typing import Union

import numpy as _np

from .base import Prior
from ..core.backend import np
from ..core.errors import ConfigurationError
from ..core.linalg_utils import resize_param, sparse_random_array
from ..core.rng_utils import get_rng
from ..core.special import expit, LOG_SQRT_2PI
from ..core.types import MessageMode, Param, coerce_enum


@dataclass(frozen=True)
class GaussBernoulliParams:
    """
    Hyperparameters of the Bernoulli-Gaussian prior.

    Attributes:
        sparsity_rate: ρ, probability that a coefficient is active.
        active_mean: θ, mean of an active coefficient.
        active_var: φ, variance of an active coefficient.
    """

    sparsity_rate: Param
    active_mean: Param = 0.0
    active_var: Param = 1.0


def _log_gauss(x, mean, var):
    return -0.5 * (x - mean) ** 2 / var - 0.5 * np().log(var) - LOG_SQRT_2PI


class GaussBernoulliPrior(Prior):
    """
    Bernoulli-Gaussian (spike-and-slab) signal prior.

        x ~ (1 - ρ) δ(x) + ρ N(θ, φ)

    Only sum-product ("mmse") updates are defined. Given r = x + N(0, v):

        llr  = log(ρ / (1 - ρ)) + log N(r; θ, φ + v) - log N(r; 0, v)
        π    = sigmoid(llr)                       posterior activity
        γ    = (r / v + θ / φ) / (1 / v + 1 / φ)  slab posterior mean
        ν    = 1 / (1 / v + 1 / φ)                slab posterior variance
        xhat = π γ
        xvar = π (ν + γ²) - xhat²

    Working with the log-odds keeps the activity probability accurate when
    both the spike and slab likelihoods underflow.

    EM learning (EM-BG, Vila & Schniter 2013) re-estimates each enabled
    hyperparameter as a scalar:

        ρ = mean(π)
        θ = Σ π γ / Σ π
        φ = Σ π ((θ - γ)² + ν) / Σ π

    Args:
        sparsity_rate: Initial ρ in [0, 1].
        active_mean: Initial θ.
        active_var: Initial φ (> 0).
        learn_sparsity_rate, learn_active_mean, learn_active_var: EM switches.
        message_mode: Must be "mmse".
    """

    def __init__(
        self,
        sparsity_rate: Param = 0.1,
        active_mean: Param = 0.0,
        active_var: Param = 1.0,
        *,
        learn_sparsity_rate: bool = False,
        learn_active_mean: bool = False,
        learn_active_var: bool = False,
        message_mode: Union[str, MessageMode] = MessageMode.MMSE,
    ) -> None:
        rho = np().asarray(sparsity_rate, dtype=np().float64)
        if not np().all((rho >= 0.0) & (rho <= 1.0)):
            raise ConfigurationError("sparsity_rate", f"must lie in [0, 1], got {sparsity_rate!r}")
        theta = np().asarray(active_mean, dtype=np().float64)
        if not np().all(np().isfinite(theta)):
            raise ConfigurationError("active_mean", f"must be finite, got {active_mean!r}")
        phi = np().asarray(active_var, dtype=np().float64)
        if not np().all(np().isfinite(phi) & (phi > 0)):
            raise ConfigurationError("active_var", f"must be positive and finite, got {active_var!r}")

        self.message_mode = coerce_enum(MessageMode, message_mode, "message_mode")
        if self.message_mode != MessageMode.MMSE:
            raise ConfigurationError("message_mode", "GaussBernoulliPrior supports only 'mmse' updates")

        self.sparsity_rate = rho if rho.ndim > 0 else float(rho)
        self.active_mean = theta if theta.ndim > 0 else float(theta)
        self.active_var = phi if phi.ndim > 0 else float(phi)
        self.learn_sparsity_rate = bool(learn_sparsity_rate)
        self.learn_active_mean = bool(learn_active_mean)
        self.learn_active_var = bool(learn_active_var)

    def _default_params(self) -> GaussBernoulliParams:
        return GaussBernoulliParams(self.sparsity_rate, self.active_mean, self.active_var)

    @property
    def learns(self) -> bool:
        return self.learn_sparsity_rate or self.learn_active_mean or self.learn_active_var

    def _posterior_terms(self, r, rvar, params: GaussBernoulliParams):
        xp = np()
        rho, theta, phi = params.sparsity_rate, params.active_mean, params.active_var
        with _np.errstate(divide="ignore"):
            prior_odds = xp.log(rho) - xp.log1p(-xp.asarray(rho))
        llr = prior_odds + _log_gauss(r, theta, phi + rvar) - _log_gauss(r, 0.0, rvar)
        pi = expit(llr)
        nu = 1.0 / (1.0 / rvar + 1.0 / phi)
        gamma = nu * (r / rvar + theta / phi)
        return pi, gamma, nu

    def denoise(self, r, rvar, params: GaussBernoulliParams):
        pi, gamma, nu = self._posterior_terms(r, rvar, params)
        xhat = pi * gamma
        xvar = np().maximum(pi * (nu + gamma ** 2) - xhat ** 2, 0.0)
        return xhat, xvar

    def activity(self, r, rvar, params: GaussBernoulliParams):
        """Posterior probability that each coefficient is active."""
        return self._posterior_terms(r, rvar, params)[0]

    def em_step(self, r, rvar, params: GaussBernoulliParams):
        if not self.learns:
            return params, []

        pi, gamma, nu = self._posterior_terms(r, rvar, params)
        shape = pi.shape
        pi_sum = float(np().sum(pi))
        if not pi_sum > 0:
            return params, [
                ("EM update of Bernoulli-Gaussian parameters skipped: no coefficient is active.", pi_sum)
            ]

        issues = []
        rho, theta, phi = params.sparsity_rate, params.active_mean, params.active_var
        if self.learn_sparsity_rate:
            rho = resize_param(pi_sum / pi.size, shape)
        if self.learn_active_mean:
            theta = resize_param(float(np().sum(pi * gamma)) / pi_sum, shape)
        if self.learn_active_var:
            phi_upd = float(np().sum(pi * ((theta - gamma) ** 2 + nu))) / pi_sum
            if _np.isfinite(phi_upd) and phi_upd > 0:
                phi = resize_param(phi_upd, shape)
            else:
                issues.append(
                    (f"EM update of active variance was degenerate ({phi_upd}); keeping previous value.", phi_upd)
                )
        return GaussBernoulliParams(rho, theta, phi), issues

    def sample(self, shape, rng=None, params: GaussBernoulliParams = None):
        rng = get_rng() if rng is None else rng
        params = self._default_params() if params is None else params
        return sparse_random_array(
            shape,
            params.sparsity_rate,
            rng=rng,
            active_mean=params.active_mean,
            active_var=params.active_var,
        )

    def second_moment(self, params: GaussBernoulliParams = None) -> float:
        params = self._default_params() if params is None else params
        rho = np().asarray(params.sparsity_rate)
        theta = np().asarray(params.active_mean)
        phi = np().asarray(params.active_var)
        return float(np().mean(rho * (theta ** 2 + phi)))

    def describe(self) -> str:
        flags = [
            name
            for name, on in (
                ("sparsity_rate", self.learn_sparsity_rate),
                ("active_mean", self.learn_active_mean),
                ("active_var", self.learn_active_var),
            )
            if on
        ]
        return "\n".join(
            [
                "SIGNAL PRIOR: Bernoulli-Gaussian",
                f"   sparsity rate: {self._format_param(self.sparsity_rate)}",
                f"     active mean: {self._format_param(self.active_mean)}",
                f" active variance: {self._format_param(self.active_var)}",
                f"     EM learning: {', '.join(flags) if flags else 'none'}",
            ]
        )

    def __repr__(self) -> str:
        return (
            f"GaussBernoulliPrior(sparsity_rate={self._format_param(self.sparsity_rate)}, "
            f"active_mean={self._format_param(self.active_mean)}, "
            f"active_var={self._format_param(self.active_var)})"
        )
