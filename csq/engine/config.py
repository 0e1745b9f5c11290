from dataclasses import dataclass
from typing import Optional, Union

from ..core.adaptive_damping import DampingScheduleConfig
from ..core.errors import ConfigurationError
from ..core.types import TailEvaluation, coerce_enum


@dataclass
class RBPConfig:
    """
    Iteration settings of the RBP estimator.

    Attributes
    ----------
    max_iterations : int
        Round budget. Reaching it without meeting `tolerance` ends the run
        with status MAX_ITERATIONS.
    tolerance : float
        Convergence threshold on ‖xhat_t - xhat_{t-1}‖ / ‖xhat_t‖. Zero
        disables the convergence test.
    damping : float | "auto"
        Weight of the previous round in the (shat, svar) and (xhat, xvar)
        updates, in [0, 1). "auto" selects it each round with `AdaptiveDamping`.
    variance_floor : float
        Lower bound applied to every propagated variance.
    divergence_factor : float
        A monitored error above `divergence_factor` times its first value
        counts as a divergent round.
    divergence_patience : int
        Number of consecutive divergent rounds that end the run.
    uniform_variance : bool
        Replace per-coefficient variances by their column mean ("uniform
        variance" RBP).
    tail : "stable" | "naive"
        Truncated-Gaussian evaluation used by quantized observations.
    adaptive_cfg : DampingScheduleConfig | None
        Schedule parameters when `damping="auto"`.
    """

    max_iterations: int = 200
    tolerance: float = 1e-4
    damping: Union[float, str] = 0.0
    variance_floor: float = 1e-12
    divergence_factor: float = 1e2
    divergence_patience: int = 3
    uniform_variance: bool = False
    tail: Union[str, TailEvaluation] = TailEvaluation.STABLE
    adaptive_cfg: Optional[DampingScheduleConfig] = None

    def __post_init__(self):
        if isinstance(self.max_iterations, bool) or int(self.max_iterations) != self.max_iterations \
                or self.max_iterations < 1:
            raise ConfigurationError("max_iterations", f"must be a positive integer, got {self.max_iterations!r}")
        self.max_iterations = int(self.max_iterations)
        if not self.tolerance >= 0:
            raise ConfigurationError("tolerance", f"must be >= 0, got {self.tolerance}")
        if isinstance(self.damping, str):
            if self.damping != "auto":
                raise ConfigurationError("damping", f"expected a float in [0, 1) or 'auto', got {self.damping!r}")
        elif not 0.0 <= self.damping < 1.0:
            raise ConfigurationError("damping", f"must lie in [0, 1), got {self.damping}")
        if not self.variance_floor > 0:
            raise ConfigurationError("variance_floor", f"must be positive, got {self.variance_floor}")
        if not self.divergence_factor > 1:
            raise ConfigurationError("divergence_factor", f"must be > 1, got {self.divergence_factor}")
        if int(self.divergence_patience) != self.divergence_patience or self.divergence_patience < 1:
            raise ConfigurationError(
                "divergence_patience", f"must be a positive integer, got {self.divergence_patience!r}"
            )
        self.tail = coerce_enum(TailEvaluation, self.tail, "tail")

    @property
    def adaptive(self) -> bool:
        return self.damping == "auto"


@dataclass
class SEConfig:
    """
    Iteration settings of the state evolution predictor.

    Attributes
    ----------
    max_iterations : int
        Round budget.
    tolerance : float
        Convergence threshold on the relative change of the predicted MSE.
    mc_samples : int
        Number of Monte Carlo draws on each side of the recursion.
    damping_constant : float
        Weight in [0, 1) of the previous round in the state update.
    """

    max_iterations: int = 200
    tolerance: float = 1e-4
    mc_samples: int = 10000
    damping_constant: float = 0.0

    def __post_init__(self):
        if isinstance(self.max_iterations, bool) or int(self.max_iterations) != self.max_iterations \
                or self.max_iterations < 1:
            raise ConfigurationError("max_iterations", f"must be a positive integer, got {self.max_iterations!r}")
        self.max_iterations = int(self.max_iterations)
        if not self.tolerance >= 0:
            raise ConfigurationError("tolerance", f"must be >= 0, got {self.tolerance}")
        if int(self.mc_samples) != self.mc_samples or self.mc_samples < 2:
            raise ConfigurationError("mc_samples", f"must be an integer >= 2, got {self.mc_samples!r}")
        self.mc_samples = int(self.mc_samples)
        if not 0.0 <= self.damping_constant < 1.0:
            raise ConfigurationError("damping_constant", f"must lie in [0, 1), got {self.damping_constant}")
