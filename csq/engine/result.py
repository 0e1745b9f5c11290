from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..core.errors import Diagnostic
from ..core.types import EstimatorState


@dataclass
class RBPSnapshot:
    """Read-only view of an RBP run after one round, passed to callbacks."""

    iteration: int
    estimate: Any
    variance: Any
    mse: Optional[float]
    change: float
    damping: float
    params: Any


@dataclass
class RBPResult:
    """
    Outcome of an RBP run.

    Unpacks as `(estimate, mse_trace)`:

    >>> estimate, mse_trace = reconstruct(...)

    Attributes:
        estimate: Posterior mean, same dimensionality as the input signal. The
            last (finite) round, except for MAX_ITERATIONS runs with ground
            truth, which return the round of lowest MSE.
        mse_trace: Per-round MSE against the ground truth; empty without ground truth.
        status: Terminal `EstimatorState`.
        n_iter: Number of completed rounds.
        estimate_iteration: Zero-based round that produced `estimate`.
        variance: Posterior variance matching `estimate`.
        change_trace: Per-round relative change of the estimate.
        support: Hard support estimate of the prior for `estimate`.
        params: Prior hyperparameters after the last round.
        diagnostics: Non-fatal events recorded during the run.
    """

    estimate: Any
    mse_trace: List[float]
    status: EstimatorState
    n_iter: int
    estimate_iteration: Optional[int] = None
    variance: Any = None
    change_trace: List[float] = field(default_factory=list)
    support: Any = None
    params: Any = None
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def __iter__(self):
        yield self.estimate
        yield self.mse_trace

    @property
    def converged(self) -> bool:
        return self.status == EstimatorState.CONVERGED

    @property
    def diverged(self) -> bool:
        return self.status == EstimatorState.DIVERGED

    @property
    def final_mse(self) -> Optional[float]:
        return self.mse_trace[-1] if self.mse_trace else None

    def __repr__(self) -> str:
        mse = f"{self.final_mse:.3e}" if self.final_mse is not None else "-"
        return f"RBPResult(status='{self.status}', n_iter={self.n_iter}, final_mse={mse})"


@dataclass
class StateEvolutionResult:
    """
    Outcome of a state evolution run. Iterating over it yields the MSE trace.

    Attributes:
        mse_trace: Predicted per-round MSE.
        status: CONVERGED or MAX_ITERATIONS.
        n_iter: Number of completed rounds.
        tau_r_trace: Pseudo-measurement variance assumed by RBP (its rvar) per round.
        tau_p_trace: Linear-output variance assumed by RBP (its pvar) per round.
        effective_noise_trace: Actual noise variance of the pseudo-measurements
            per round. Equal to `tau_r_trace` up to sampling error when the
            prior is a matched MMSE denoiser.
    """

    mse_trace: List[float]
    status: EstimatorState
    n_iter: int
    tau_r_trace: List[float] = field(default_factory=list)
    tau_p_trace: List[float] = field(default_factory=list)
    effective_noise_trace: List[float] = field(default_factory=list)

    def __iter__(self):
        return iter(self.mse_trace)

    def __len__(self) -> int:
        return len(self.mse_trace)

    @property
    def converged(self) -> bool:
        return self.status == EstimatorState.CONVERGED

    @property
    def final_mse(self) -> Optional[float]:
        return self.mse_trace[-1] if self.mse_trace else None

    def __repr__(self) -> str:
        mse = f"{self.final_mse:.3e}" if self.final_mse is not None else "-"
        return f"StateEvolutionResult(status='{self.status}', n_iter={self.n_iter}, final_mse={mse})"
