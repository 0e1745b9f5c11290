from .base import Observation
from ..core.backend import np
from ..core.errors import ConfigurationError
from ..core.linalg_utils import random_normal_array
from ..core.rng_utils import get_rng
from ..core.special import LOG_SQRT_2PI


class GaussianObservation(Observation):
    """
    Unquantized additive white Gaussian noise channel: y = z + w, w ~ N(0, σ²).

    Posterior of z under the pseudo-prior N(p, pvar):

        zhat = p + pvar / (pvar + σ²) · (y - p)
        zvar = pvar σ² / (pvar + σ²)

    `noise_var = 0` is allowed and pins z to the data (zvar = 0).
    """

    def __init__(self, y, noise_var: float = 0.0) -> None:
        super().__init__(np().asarray(y, dtype=np().float64), noise_var)
        if not np().all(np().isfinite(self.data)):
            raise ConfigurationError("quantized_measurements", "measurements must be finite")

    def estimate(self, p, pvar):
        gain = pvar / (pvar + self.noise_var)
        zhat = p + gain * (self.data - p)
        zvar = gain * self.noise_var * np().ones_like(p)
        return zhat, zvar

    def sample(self, z, rng=None):
        rng = get_rng() if rng is None else rng
        z = np().asarray(z, dtype=np().float64)
        if self.noise_var == 0:
            return z.copy()
        return z + np().sqrt(self.noise_var) * random_normal_array(z.shape, rng=rng)

    def compute_fitness(self, p, pvar) -> float:
        total_var = pvar + self.noise_var
        nll = 0.5 * (self.data - p) ** 2 / total_var + 0.5 * np().log(total_var) + LOG_SQRT_2PI
        return float(np().mean(nll))
