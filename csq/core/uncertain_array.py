from __future__ import annotations
from numbers import Number

from .backend import np
from .types import PrecisionMode, Precision
from .linalg_utils import reduce_precision_to_scalar


class UncertainArray:
    """
    UncertainArray

    Represents a block of independent real Gaussian beliefs used as message
    state in relaxed belief propagation. Each UncertainArray encodes:
    - Mean values: real-valued data of shape (n, T)
    - Precision: inverse variance, either one value per column ("scalar") or
      one value per entry ("array")

    Columns index measurement vectors (timesteps). With T = 1 the array holds
    a single signal vector; no separate code path exists for that case.

    Typical operations:
    - Damping: Stabilize updates by interpolation
    - Conversion: `.as_scalar_precision()` for uniform-variance runs

    Precision model:

    - "scalar": every entry of a column shares the same uncertainty. This is the
      "uniform variance" simplification of RBP/GAMP, where the per-coefficient
      variances are replaced by their column average.
    - "array": per-entry uncertainty.
    """

    def __init__(
        self,
        array,
        precision: Precision = 1.0,
        *,
        dtype=None,
    ) -> None:
        """
        Initialize an UncertainArray.

        Args:
            array: Mean values, shape (n,) or (n, T). 1-D input is treated as a
                single column.
            precision: Inverse variance. Scalar, shape (T,), (1, T) or (n, T).
            dtype: Optional real dtype. Defaults to float64.

        Raises:
            ValueError: If precision is non-positive or has an incompatible shape.
        """
        dtype = dtype or np().float64
        arr = np().asarray(array, dtype=dtype)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2:
            raise ValueError(f"UncertainArray expects 1-D or 2-D data, got shape {arr.shape}.")

        self.data = arr
        self.dtype = arr.dtype
        self._set_precision_internal(precision)

    @classmethod
    def from_variance(cls, array, variance: Precision, **kwargs) -> "UncertainArray":
        """Build an UncertainArray from variances instead of precisions."""
        if isinstance(variance, Number):
            return cls(array, precision=1.0 / variance, **kwargs)
        return cls(array, precision=1.0 / np().asarray(variance, dtype=np().float64), **kwargs)

    @classmethod
    def zeros(
        cls,
        n: int,
        n_columns: int = 1,
        *,
        precision: float = 1.0,
        scalar_precision: bool = True,
    ) -> "UncertainArray":
        """
        Create a zero-mean UncertainArray of shape (n, n_columns).

        Args:
            n: Number of entries per column.
            n_columns: Number of columns (measurement vectors).
            precision: Precision value (must be positive).
            scalar_precision: Whether to use scalar or elementwise precision.
        """
        if n < 1 or n_columns < 1:
            raise ValueError("UncertainArray dimensions must be positive.")
        data = np().zeros((n, n_columns), dtype=np().float64)
        if scalar_precision:
            return cls(data, precision=precision)
        return cls(data, precision=np().full((n, n_columns), precision, dtype=np().float64))

    def _set_precision_internal(self, value: Precision) -> None:
        """
        Internal setter for precision.

        - Scalar mode: stored with shape (1, T)
        - Array mode: stored with shape (n, T)
        """
        n, n_columns = self.data.shape

        if isinstance(value, Number) or (hasattr(value, "shape") and value.shape == ()):
            if not value > 0:
                raise ValueError("Precision must be positive.")
            self._precision = np().full((1, n_columns), float(value), dtype=self.dtype)
            self._scalar_precision = True
            return

        arr = np().asarray(value, dtype=self.dtype)
        if np().any(~(arr > 0)):
            raise ValueError("Precision must be positive.")

        if arr.shape in ((n_columns,), (1, n_columns)):
            self._precision = arr.reshape(1, n_columns)
            self._scalar_precision = True
            return

        if arr.shape == (n,) and n_columns == 1:
            arr = arr.reshape(n, 1)

        if arr.shape != (n, n_columns):
            raise ValueError(
                f"Precision shape {arr.shape} is not compatible with data shape {self.data.shape}."
            )
        self._precision = arr
        self._scalar_precision = False

    def precision(self, raw: bool = False):
        """
        Return the precision (inverse variance).

        Args:
            raw (bool):
                - If False (default): broadcast to `self.data.shape`.
                - If True: internal representation, (1, T) in scalar mode.
        """
        if raw:
            return self._precision
        return np().broadcast_to(self._precision, self.data.shape)

    def variance(self, raw: bool = False):
        return 1.0 / self.precision(raw=raw)

    @property
    def mean(self):
        return self.data

    @property
    def precision_mode(self) -> PrecisionMode:
        return PrecisionMode.SCALAR if self._scalar_precision else PrecisionMode.ARRAY

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def n_columns(self) -> int:
        return self.data.shape[1]

    def assert_compatible(self, other: "UncertainArray", context: str = "") -> None:
        """
        Ensure that another UncertainArray has the same shape and precision mode.

        Raises:
            ValueError: If shape or mode mismatch.
        """
        where = f" in {context}" if context else ""
        if self.data.shape != other.data.shape:
            raise ValueError(f"Shape mismatch{where}: {self.data.shape} vs {other.data.shape}")
        if self.precision_mode != other.precision_mode:
            raise ValueError(
                f"Precision mode mismatch{where}: {self.precision_mode} vs {other.precision_mode}"
            )

    def damp_with(self, other: "UncertainArray", alpha: float) -> "UncertainArray":
        """
        Apply damping between this UncertainArray and a previous one.

        Performs convex interpolation of:
            - mean values (data)
            - standard deviation (not precision)

        Args:
            other: Previous belief to interpolate toward.
            alpha: Damping coefficient in [0, 1]. 0 keeps `self`, 1 keeps `other`.

        Returns:
            New damped UncertainArray.
        """
        self.assert_compatible(other, context="damp_with")
        if not (0.0 <= alpha <= 1.0):
            raise ValueError(f"Alpha must be in [0, 1], but got {alpha}")

        damped_data = (1 - alpha) * self.data + alpha * other.data

        std1 = np().sqrt(1.0 / self.precision(raw=True))
        std2 = np().sqrt(1.0 / other.precision(raw=True))
        damped_std = (1 - alpha) * std1 + alpha * std2
        return UncertainArray(damped_data, precision=1.0 / (damped_std ** 2))

    def as_scalar_precision(self) -> "UncertainArray":
        """Convert to scalar precision mode (column-wise harmonic reduction)."""
        if self._scalar_precision:
            return self
        scalar_prec = reduce_precision_to_scalar(self._precision, axis=0)
        return UncertainArray(self.data, precision=scalar_prec)

    def __repr__(self) -> str:
        return (
            f"UA(shape={self.data.shape}, "
            f"precision={self.precision_mode}, "
            f"dtype={self.dtype.name})"
        )
