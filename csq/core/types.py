from enum import Enum
from typing import Union
from numpy.typing import NDArray

# === Precision Modes ===

class PrecisionMode(Enum):
    """Precision mode of a Gaussian message: one shared variance or one per entry."""
    SCALAR = "scalar"
    ARRAY = "array"

    def __str__(self) -> str:
        return self.value


# === Message-passing variants ===

class MessageMode(Enum):
    """
    Message-passing semantics applied by a prior adapter.

    - MMSE: sum-product updates, posterior mean and variance.
    - MAP: max-sum updates, posterior mode and local curvature.
    """
    MMSE = "mmse"
    MAP = "map"

    def __str__(self) -> str:
        return self.value


class EMMode(Enum):
    """How a learned hyperparameter is stored after an EM update."""
    BROADCAST = "broadcast"
    PER_COEFFICIENT = "per_coefficient"

    def __str__(self) -> str:
        return self.value


class TailEvaluation(Enum):
    """Evaluation of truncated-Gaussian bin masses in quantized observations."""
    STABLE = "stable"
    NAIVE = "naive"

    def __str__(self) -> str:
        return self.value


# === Run states ===

class EstimatorState(Enum):
    """Lifecycle of an iterative run (RBP or state evolution)."""
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max iterations reached"
    DIVERGED = "diverged"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (
            EstimatorState.CONVERGED,
            EstimatorState.MAX_ITERATIONS,
            EstimatorState.DIVERGED,
        )


# === Backend-agnostic Array Type Hints ===

# Scalar or array-valued variance/precision
Precision = Union[
    float,
    NDArray["float64"]
]

# Scalar or per-coefficient hyperparameter
Param = Union[
    float,
    NDArray["float64"]
]


def coerce_enum(enum_cls, value, field: str):
    """
    Convert a string (case-insensitive) or enum member into `enum_cls`.

    Raises:
        ConfigurationError: If `value` names no member of `enum_cls`.
    """
    from .errors import ConfigurationError

    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            pass
    allowed = ", ".join(repr(m.value) for m in enum_cls)
    raise ConfigurationError(field, f"got {value!r}, expected one of {allowed}")
