"""
Adaptive damping schedule for relaxed belief propagation.

RBP is known to diverge on sensing matrices far from i.i.d. zero-mean
Gaussian. Damping the output-side (shat, svar) and input-side (xhat, xvar)
messages restores convergence at the cost of speed. This module picks the
damping per round from the trajectory of a scalar cost, following

    J. Vila, P. Schniter, S. Rangan, F. Krzakala and L. Zdeborová,
    "Adaptive damping and mean removal for the generalized approximate message passing algorithm,"
    ICASSP 2015, pp. 2021–2025, doi: 10.1109/ICASSP.2015.7178325.

The paper's step size β ∈ (0, 1] maps to the estimator's `damping` as
    damping = 1 - β
so `damping = 0` applies the new messages unchanged and `damping = 1`
freezes them.
"""

from collections import deque
from dataclasses import dataclass
from typing import Tuple

from .errors import ConfigurationError


@dataclass
class DampingScheduleConfig:
    """
    Parameters of the adaptive damping schedule.

    Attributes
    ----------
    G_pass : float
        Factor (> 1) applied to β after a round whose cost did not increase.
    G_fail : float
        Factor in (0, 1) applied to β after a round whose cost increased.
    beta_min : float
        Smallest allowed β (strongest damping).
    beta_max : float
        Largest allowed β (weakest damping).
    T_beta : int
        Number of past accepted costs the current cost is compared against.
    """

    G_pass: float = 1.1
    G_fail: float = 0.5
    beta_min: float = 0.01
    beta_max: float = 1.0
    T_beta: int = 3

    def __post_init__(self):
        if not self.G_pass > 1.0:
            raise ConfigurationError("G_pass", f"must be > 1, got {self.G_pass}")
        if not 0.0 < self.G_fail < 1.0:
            raise ConfigurationError("G_fail", f"must lie in (0, 1), got {self.G_fail}")
        if not 0.0 < self.beta_min <= self.beta_max <= 1.0:
            raise ConfigurationError(
                "beta_min", f"require 0 < beta_min <= beta_max <= 1, got {self.beta_min}, {self.beta_max}"
            )
        if self.T_beta < 1:
            raise ConfigurationError("T_beta", f"must be >= 1, got {self.T_beta}")


class AdaptiveDamping:
    """
    Per-run damping controller.

        if J_t <= max{J_{t-1}, ..., J_{t-T_β}} or β <= β_min:
            β ← min(β_max, G_pass · β)      (pass)
        else:
            β ← max(β_min, G_fail · β)      (fail)

    The RBP estimator uses the observation's negative log-likelihood at the
    current pseudo-prior, J_t = -mean log p(y | p_t, pvar_t), and simply
    applies the returned damping to the next round; it does not roll back
    failed rounds.

    Example
    -------
    >>> sched = AdaptiveDamping(DampingScheduleConfig())
    >>> damping, failed = sched.step(J=1.23)
    >>> damping
    0.0
    """

    def __init__(self, cfg: DampingScheduleConfig = None):
        self.cfg = cfg if cfg is not None else DampingScheduleConfig()
        self.beta: float = self.cfg.beta_max
        self.hist: deque[float] = deque(maxlen=self.cfg.T_beta)

    @property
    def damping(self) -> float:
        return 1.0 - self.beta

    def step(self, J: float) -> Tuple[float, bool]:
        """
        Feed the latest cost and return `(damping, failed)`.

        `failed` is True when J exceeded every cost in the recent window.
        """
        worst_recent = max(self.hist) if self.hist else float("inf")
        passed = (J <= worst_recent) or (self.beta <= self.cfg.beta_min)

        if passed:
            self.beta = min(self.cfg.beta_max, self.cfg.G_pass * self.beta)
            self.hist.append(J)
        else:
            self.beta = max(self.cfg.beta_min, self.cfg.G_fail * self.beta)

        return self.damping, not passed

    def __repr__(self) -> str:
        return f"AdaptiveDamping(beta={self.beta:.4f}, hist_len={len(self.hist)})"
