import warnings
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from typing import Any, List, Optional, Tuple

from ..core.backend import np
from ..core.errors import NumericalDegeneracyWarning
from ..core.linalg_utils import resize_param
from ..core.types import MessageMode


class Prior(ABC):
    """
    Abstract base class for coefficient-side prior adapters.

    A `Prior` describes a separable density p(x_n | θ) over the signal
    coefficients and exposes it to the estimators through a fixed capability
    set, so that RBP and state evolution never depend on a concrete family:

        denoise(r, rvar, params)      -> (xhat, xvar)
        em_update(r, rvar, params)    -> new params
        hard_support_estimate(xhat)   -> boolean mask

    Here (r, rvar) is the Gaussian pseudo-measurement of each coefficient,
    r = x + N(0, rvar), produced by the backward pass of RBP (or synthesized
    by state evolution).

    Hyperparameters are held in a separate frozen dataclass (`params`). The
    prior object itself only carries configuration and is never mutated by a
    run, so one instance can serve several concurrent runs. A run obtains its
    own starting parameters from `initial_params(shape)` and replaces them
    (copy-on-write) at most once per round through `em_update`.

    Subclasses implement:
        - `_default_params()`: starting hyperparameters (scalars or arrays)
        - `denoise()`: posterior moments of x given (r, rvar)
        - `sample()`: draws from the prior
        - `second_moment()`: E[x²] under the prior
    and override `em_step()` when they can learn their hyperparameters.
    """

    message_mode: MessageMode = MessageMode.MMSE

    @abstractmethod
    def _default_params(self) -> Any:
        ...

    def initial_params(self, shape: Optional[Tuple[int, int]] = None) -> Any:
        """
        Starting hyperparameters of a run.

        With `shape` given (usually (N, T)), every field is broadcast to a full
        per-coefficient array with `resize_param`.
        """
        params = self._default_params()
        if shape is None:
            return params
        return replace(
            params,
            **{f.name: resize_param(getattr(params, f.name), shape) for f in fields(params)},
        )

    @property
    def learns(self) -> bool:
        """True if `em_update` may change the hyperparameters."""
        return False

    @abstractmethod
    def denoise(self, r, rvar, params) -> Tuple[Any, Any]:
        """Posterior mean and variance of each coefficient given r = x + N(0, rvar)."""
        ...

    def em_step(self, r, rvar, params) -> Tuple[Any, List[Tuple[str, float]]]:
        """
        One EM re-estimation of the hyperparameters from this round's
        pseudo-measurements.

        Returns `(params, issues)`. Each issue is a `(message, value)` pair
        describing a degenerate update that was discarded. Nothing is
        emitted through `warnings`, so estimators running in threads can
        record the issues themselves. The default prior learns nothing.
        """
        return params, []

    def em_update(self, r, rvar, params):
        """`em_step` that reports discarded updates as `NumericalDegeneracyWarning`s."""
        params, issues = self.em_step(r, rvar, params)
        for message, _ in issues:
            warnings.warn(message, NumericalDegeneracyWarning, stacklevel=2)
        return params

    def hard_support_estimate(self, xhat):
        """A coefficient is declared active iff its posterior mean is nonzero."""
        return xhat != 0

    @abstractmethod
    def sample(self, shape: Tuple[int, ...], rng=None, params=None):
        ...

    @abstractmethod
    def second_moment(self, params=None) -> float:
        ...

    def describe(self) -> str:
        """Human-readable summary of the prior configuration."""
        return f"SIGNAL PRIOR: {type(self).__name__}"

    @staticmethod
    def _format_param(value) -> str:
        arr = np().asarray(value)
        if arr.size == 1:
            return f"{float(arr.reshape(-1)[0]):g}"
        return f"{arr.shape[0]}-by-{arr.shape[1] if arr.ndim > 1 else 1} array (Min: {float(arr.min()):g}, Max: {float(arr.max()):g})"
