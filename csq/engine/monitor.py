import math
from typing import Optional


class DivergenceMonitor:
    """
    Tracks a scalar error across rounds and flags divergence.

    A run is divergent when
        - the monitored value is non-finite, or
        - it exceeds `factor` times its baseline for `patience` consecutive rounds.

    The baseline is the first positive finite value observed. `value` holds
    the most recent monitored error.

    Example
    -------
    >>> mon = DivergenceMonitor(factor=10.0, patience=2)
    >>> [mon.update(v) for v in (1.0, 20.0, 30.0)]
    [False, False, True]
    """

    def __init__(self, factor: float = 1e2, patience: int = 3):
        self.factor = float(factor)
        self.patience = int(patience)
        self.baseline: Optional[float] = None
        self.strikes = 0
        self.value: Optional[float] = None
        self.reason: Optional[str] = None

    def update(self, value: float) -> bool:
        self.value = value
        if not math.isfinite(value):
            self.reason = f"non-finite monitored error ({value})"
            return True

        if self.baseline is None:
            if value > 0:
                self.baseline = value
            return False

        if value > self.factor * self.baseline:
            self.strikes += 1
        else:
            self.strikes = 0

        if self.strikes >= self.patience:
            self.reason = (
                f"monitored error {value:.3e} above {self.factor:g} x initial {self.baseline:.3e} "
                f"for {self.strikes} consecutive rounds"
            )
            return True
        return False
