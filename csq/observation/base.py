from abc import ABC, abstractmethod
from typing import Tuple

from ..core.backend import np
from ..core.errors import ConfigurationError


class Observation(ABC):
    """
    Abstract base class for measurement-side likelihoods.

    An `Observation` binds the realized measurements y (shape (M, T)) to the
    channel that produced them from the noiseless linear outputs z = A x.
    Its role mirrors `Prior` on the coefficient side: given the Gaussian
    pseudo-prior z ~ N(p, pvar) formed by the forward pass of RBP, it returns
    the posterior mean and variance of z given y.

    Subclasses implement:
        - `estimate(p, pvar)`: posterior moments (zhat, zvar), with 0 <= zvar <= pvar
        - `sample(z, rng)`: draw data y given noiseless z
        - `compute_fitness(p, pvar)`: mean negative log-likelihood of y under
          N(p, pvar + noise_var), used as the damping-schedule cost

    Attributes:
        noise_var (float): Variance of the additive Gaussian noise before quantization.
        data (ndarray): Observed data, always stored with shape (M, T).
    """

    def __init__(self, data, noise_var: float) -> None:
        noise_var = float(noise_var)
        if not (noise_var >= 0 and np().isfinite(noise_var)):
            raise ConfigurationError("noise_variance", f"must be finite and >= 0, got {noise_var}")
        self.noise_var = noise_var

        arr = np().asarray(data)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2:
            raise ConfigurationError("quantized_measurements", f"expected (M,) or (M, T), got shape {arr.shape}")
        self.data = arr

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def n_rows(self) -> int:
        return self.data.shape[0]

    @property
    def n_columns(self) -> int:
        return self.data.shape[1]

    @abstractmethod
    def estimate(self, p, pvar):
        ...

    @abstractmethod
    def sample(self, z, rng=None):
        ...

    @abstractmethod
    def compute_fitness(self, p, pvar) -> float:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(shape={self.shape}, noise_var={self.noise_var:g})"
