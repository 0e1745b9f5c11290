from dataclasses import dataclass
from typing import Union

import numpy as _np

from .base import Prior
from ..core.backend import np
from ..core.errors import ConfigurationError
from ..core.linalg_utils import resize_param
from ..core.rng_utils import get_rng, exponential
from ..core.special import expit, normal_cdf, normal_logcdf, normal_pdf, truncated_normal_moments
from ..core.types import EMMode, MessageMode, Param, coerce_enum


@dataclass(frozen=True)
class LaplacianParams:
    """Rate λ of the Laplacian density (λ/2) exp(-λ|x|). Scalar or per-coefficient."""

    rate: Param


class LaplacianPrior(Prior):
    """
    Laplacian (double-exponential) signal prior.

        p(x | λ) = (λ / 2) exp(-λ |x|)

    With λ = √2 the prior has unit variance. Two message-passing variants are
    available:

    - "map" (max-sum): the denoiser is the soft-threshold
          xhat = sign(r) max(|r| - λ rvar, 0)
          xvar = rvar · 1{|r| > λ rvar}
      i.e. the LASSO proximal operator.
    - "mmse" (sum-product): exact posterior mean and variance of a Laplacian
      times a Gaussian. The posterior is a two-component mixture of Gaussians
      truncated to x > 0 and x < 0; the mixture weights are computed from log
      normal CDFs so that large |r| / sqrt(rvar) never overflows.

    EM learning of λ (`learn_rate=True`) uses the posterior moments of each
    coefficient, approximates the posterior by N(xhat, xvar), and sets

        E|x|  = 2σ φ(μ/σ) + μ (1 - 2Φ(-μ/σ)),   μ = xhat, σ = sqrt(xvar)
        λ_new = 2 N T / Σ E|x|                  (em_mode="broadcast")
        λ_nt  = 2 / E|x_nt|                     (em_mode="per_coefficient")

    A non-positive or non-finite update is discarded: "broadcast" reuses the
    mean of the previous rate, "per_coefficient" keeps the previous entry. In
    both cases a `NumericalDegeneracyWarning` is emitted and the run continues.

    Args:
        rate: Initial λ (> 0), scalar or broadcastable to (N, T).
        learn_rate: Learn λ by EM once per round.
        message_mode: "map" or "mmse".
        em_mode: "broadcast" or "per_coefficient".

    Raises:
        ConfigurationError: Invalid mode string or non-positive rate.
    """

    def __init__(
        self,
        rate: Param = _np.sqrt(2.0),
        learn_rate: bool = False,
        message_mode: Union[str, MessageMode] = MessageMode.MAP,
        em_mode: Union[str, EMMode] = EMMode.BROADCAST,
    ) -> None:
        rate_arr = np().asarray(rate, dtype=np().float64)
        if rate_arr.size == 0 or not np().all(np().isfinite(rate_arr)) or np().any(rate_arr <= 0):
            raise ConfigurationError("rate", f"must be positive and finite elementwise, got {rate!r}")
        self.rate = rate_arr if rate_arr.ndim > 0 else float(rate_arr)
        self.learn_rate = bool(learn_rate)
        self.message_mode = coerce_enum(MessageMode, message_mode, "message_mode")
        self.em_mode = coerce_enum(EMMode, em_mode, "em_mode")

    def _default_params(self) -> LaplacianParams:
        return LaplacianParams(rate=self.rate)

    @property
    def learns(self) -> bool:
        return self.learn_rate

    # ---- Denoising ----

    def denoise(self, r, rvar, params: LaplacianParams):
        lam = params.rate
        if self.message_mode == MessageMode.MAP:
            return self._denoise_map(r, rvar, lam)
        return self._denoise_mmse(r, rvar, lam)

    @staticmethod
    def _denoise_map(r, rvar, lam):
        threshold = lam * rvar
        active = np().abs(r) > threshold
        xhat = np().sign(r) * np().maximum(np().abs(r) - threshold, 0.0)
        xvar = np().where(active, rvar, 0.0) * np().ones_like(r)
        return xhat, xvar

    @staticmethod
    def _denoise_mmse(r, rvar, lam):
        xp = np()
        std = xp.sqrt(rvar)
        mu_pos = r - lam * rvar
        mu_neg = r + lam * rvar

        # log masses of the x > 0 and x < 0 components, common factors dropped
        log_pos = -lam * r + normal_logcdf(mu_pos / std)
        log_neg = lam * r + normal_logcdf(-mu_neg / std)
        w_pos = expit(log_pos - log_neg)
        w_neg = 1.0 - w_pos

        m_pos, v_pos = truncated_normal_moments(mu_pos, std, 0.0, xp.inf)
        m_neg, v_neg = truncated_normal_moments(mu_neg, std, -xp.inf, 0.0)

        xhat = w_pos * m_pos + w_neg * m_neg
        second = w_pos * (v_pos + m_pos ** 2) + w_neg * (v_neg + m_neg ** 2)
        xvar = xp.maximum(second - xhat ** 2, 0.0)
        return xhat, xvar

    # ---- EM learning ----

    @staticmethod
    def expected_abs(xhat, xvar):
        """E|x| for x ~ N(xhat, xvar); reduces to |xhat| where xvar = 0."""
        xp = np()
        sig = xp.sqrt(xvar)
        with _np.errstate(divide="ignore", invalid="ignore"):
            ratio = xhat / sig
            folded = 2.0 * sig * normal_pdf(ratio) + xhat * (1.0 - 2.0 * normal_cdf(-ratio))
        return xp.where(sig > 0, folded, xp.abs(xhat))

    def em_step(self, r, rvar, params: LaplacianParams):
        if not self.learn_rate:
            return params, []

        xhat, xvar = self.denoise(r, rvar, params)
        e_abs = self.expected_abs(xhat, xvar)
        shape = xhat.shape
        issues = []

        if self.em_mode == EMMode.BROADCAST:
            n_coef = xhat.size  # N * T
            with _np.errstate(divide="ignore", invalid="ignore"):
                lam_upd = float(2.0 * n_coef / np().sum(e_abs))
            if not (_np.isfinite(lam_upd) and lam_upd > 0):
                lam_prev = float(np().mean(np().asarray(params.rate)))
                issues.append((
                    f"EM update of Laplacian rate was degenerate ({lam_upd}); keeping previous mean {lam_prev:g}.",
                    lam_upd,
                ))
                lam_upd = lam_prev
            return LaplacianParams(rate=resize_param(lam_upd, shape)), issues

        prev = resize_param(params.rate, shape)
        with _np.errstate(divide="ignore", invalid="ignore"):
            lam_upd = 2.0 / e_abs
        bad = ~(np().isfinite(lam_upd) & (lam_upd > 0))
        n_bad = int(np().sum(bad))
        if n_bad:
            issues.append((
                f"EM update of Laplacian rate was degenerate for {n_bad} of {lam_upd.size} coefficients; "
                "keeping their previous values.",
                float(n_bad),
            ))
        return LaplacianParams(rate=np().where(bad, prev, lam_upd)), issues

    # ---- Generative side ----

    def sample(self, shape, rng=None, params: LaplacianParams = None):
        """Draw Laplacian samples as the difference of two exponentials of scale 1/λ."""
        rng = get_rng() if rng is None else rng
        params = self._default_params() if params is None else params
        scale = 1.0 / resize_param(params.rate, shape)
        e1 = exponential(rng, size=shape)
        e2 = exponential(rng, size=shape)
        return scale * (e2 - e1)

    def second_moment(self, params: LaplacianParams = None) -> float:
        params = self._default_params() if params is None else params
        lam = np().asarray(params.rate, dtype=np().float64)
        return float(np().mean(2.0 / lam ** 2))

    def describe(self) -> str:
        return "\n".join(
            [
                "SIGNAL PRIOR: Laplacian",
                f"            rate: {self._format_param(self.rate)}",
                f"  rate EM learning: {str(self.learn_rate).lower()} ({self.em_mode})",
                f"      message mode: {self.message_mode}",
            ]
        )

    def __repr__(self) -> str:
        return (
            f"LaplacianPrior(rate={self._format_param(self.rate)}, learn_rate={self.learn_rate}, "
            f"message_mode='{self.message_mode}', em_mode='{self.em_mode}')"
        )
