"""
Error and diagnostic types shared by the estimators.

Three kinds of abnormal outcome are distinguished:

- Configuration errors are fatal and raised before the first round
  (`ConfigurationError`, a `ValueError`).
- Numerical degeneracies are recoverable. They are reported through the
  `warnings` module (`NumericalDegeneracyWarning`) and recorded as
  `Diagnostic` entries on the run result; the run continues.
- Divergence ends a run (not the process). It is a run status, announced with
  a `DivergenceWarning`, and the partial trace is returned.
"""

from dataclasses import dataclass
from typing import Optional


class ConfigurationError(ValueError):
    """
    Invalid configuration detected before any iteration.

    Args:
        field: Name of the offending parameter (e.g. "message_mode").
        detail: Human-readable description of what is wrong.
    """

    def __init__(self, field: str, detail: str) -> None:
        self.field = field
        self.detail = detail
        super().__init__(f"Invalid '{field}': {detail}")


class NumericalDegeneracyWarning(RuntimeWarning):
    """A numerically degenerate update was discarded; the run continues."""


class DivergenceWarning(RuntimeWarning):
    """An iterative run was terminated because its iterates diverged."""


@dataclass(frozen=True)
class Diagnostic:
    """
    Structured record of a non-fatal event during a run.

    Attributes:
        iteration: Zero-based round index in which the event occurred.
        kind: Short machine-readable tag (e.g. "em_update_discarded").
        message: Human-readable description.
        value: The offending number, when there is one (a rejected EM
            update, the count of rejected entries, or the monitored error).
    """

    iteration: int
    kind: str
    message: str
    value: Optional[float] = None

    def __str__(self) -> str:
        return f"[iter {self.iteration}] {self.kind}: {self.message}"
