from typing import Union

from .base import Observation
from .gaussian import GaussianObservation
from ..core.backend import np
from ..core.errors import ConfigurationError
from ..core.linalg_utils import random_normal_array
from ..core.rng_utils import get_rng
from ..core.special import log_normal_mass, truncated_normal_moments
from ..core.types import TailEvaluation, coerce_enum


class QuantizedObservation(Observation):
    """
    Noise-then-quantize channel: y = Q(z + w), w ~ N(0, σ²).

    The data are level indices of `quantizer`; index q constrains the noisy
    value u = z + w to the bin [lower_q, upper_q). Under the pseudo-prior
    z ~ N(p, pvar) we have u ~ N(p, pvar + σ²), and with

        k      = pvar / (pvar + σ²)
        E_u, V_u = mean and variance of N(p, pvar + σ²) truncated to the bin

    the posterior moments of z are

        zhat = p + k (E_u - p)
        zvar = pvar (1 - k) + k² V_u

    Truncated moments of bins lying many standard deviations away from p are
    the delicate part. `tail="stable"` evaluates bin masses in the log domain
    and never feeds a zero mass forward. `tail="naive"` forms them from plain
    CDF differences, which underflow to 0 in the far tail and produce
    non-finite estimates; it is retained for reproducing that failure mode.

    Args:
        indices: Level indices, shape (M,) or (M, T).
        quantizer: The `Quantizer` that produced the indices.
        noise_var: σ² >= 0.
        tail: "stable" (default) or "naive".
    """

    def __init__(
        self,
        indices,
        quantizer,
        noise_var: float = 0.0,
        tail: Union[str, TailEvaluation] = TailEvaluation.STABLE,
    ) -> None:
        if getattr(quantizer, "is_pass_through", False):
            raise ConfigurationError(
                "quantizer", "pass-through data carry no bins; use GaussianObservation or make_observation"
            )
        super().__init__(indices, noise_var)
        self.quantizer = quantizer
        self.tail = coerce_enum(TailEvaluation, tail, "tail")
        try:
            self.lower, self.upper = quantizer.bin_edges(self.data)
        except ValueError as exc:
            raise ConfigurationError("quantized_measurements", str(exc)) from exc

    def _total_std(self, pvar):
        return np().sqrt(pvar + self.noise_var)

    def estimate(self, p, pvar):
        total_std = self._total_std(pvar)
        e_u, v_u = truncated_normal_moments(p, total_std, self.lower, self.upper, tail=self.tail)
        gain = pvar / (pvar + self.noise_var)
        zhat = p + gain * (e_u - p)
        zvar = pvar * (1.0 - gain) + gain ** 2 * v_u
        return zhat, zvar

    def sample(self, z, rng=None):
        rng = get_rng() if rng is None else rng
        u = np().asarray(z, dtype=np().float64)
        if self.noise_var > 0:
            u = u + np().sqrt(self.noise_var) * random_normal_array(u.shape, rng=rng)
        return self.quantizer.quantize(u)

    def compute_fitness(self, p, pvar) -> float:
        total_std = self._total_std(pvar)
        alpha = (self.lower - p) / total_std
        beta = (self.upper - p) / total_std
        return float(-np().mean(log_normal_mass(alpha, beta)))

    def __repr__(self) -> str:
        return (
            f"QuantizedObservation(shape={self.shape}, n_levels={self.quantizer.n_levels}, "
            f"noise_var={self.noise_var:g}, tail='{self.tail}')"
        )


def make_observation(quantizer, y, noise_var: float = 0.0, tail="stable") -> Observation:
    """
    Build the observation model matching `quantizer`.

    Pass-through data become a `GaussianObservation`; anything else becomes a
    `QuantizedObservation` over the quantizer's bins.
    """
    if quantizer is None or getattr(quantizer, "is_pass_through", False):
        return GaussianObservation(y, noise_var)
    return QuantizedObservation(y, quantizer, noise_var, tail=tail)
