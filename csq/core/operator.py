from typing import Sequence, Union

from .backend import np, move_array_to_current_backend
from .errors import ConfigurationError


class MeasurementOperator:
    """
    MeasurementOperator
    -------------------
    Linear map from signal columns (N, T) to measurement columns (M, T).

    The operator holds a stack of matrices of shape (S, M, N) where either
    S = 1 (one matrix shared by every column) or S = T (one matrix per
    column). All products are batched matmuls, so both cases share a single
    code path and a common matrix is never copied T times.

        forward         :  z[:, t]  = A_t  x[:, t]
        adjoint         :  x[:, t]  = A_tᵀ s[:, t]
        forward_squared :  p[:, t]  = (A_t ∘ A_t)  v[:, t]
        adjoint_squared :  r[:, t]  = (A_t ∘ A_t)ᵀ s[:, t]

    The elementwise-squared stack is cached, as it is used twice per round
    for variance propagation.

    Parameters
    ----------
    matrix : ndarray | Sequence[ndarray]
        A single (M, N) matrix, a (T, M, N) array, or a sequence of T
        (M, N) matrices.
    n_columns : int, optional
        Number of measurement vectors T. Required to validate a per-column
        stack; a common matrix accepts any T.
    """

    def __init__(self, matrix: Union[np().ndarray, Sequence], n_columns: int = None):
        if isinstance(matrix, (list, tuple)):
            if len(matrix) == 0:
                raise ConfigurationError("matrix", "empty sequence of matrices")
            shapes = {np().shape(m) for m in matrix}
            if len(shapes) != 1:
                raise ConfigurationError("matrix", f"per-column matrices differ in shape: {sorted(shapes)}")
            stack = np().stack([move_array_to_current_backend(m, dtype=np().float64) for m in matrix])
        else:
            stack = move_array_to_current_backend(matrix, dtype=np().float64)
            if stack.ndim == 2:
                stack = stack[None, :, :]

        if stack.ndim != 3:
            raise ConfigurationError("matrix", f"expected (M, N) or (T, M, N), got shape {stack.shape}")
        if not np().all(np().isfinite(stack)):
            raise ConfigurationError("matrix", "contains non-finite entries")

        self.stack = stack
        self._rebuild_cached_fields()

        if n_columns is not None:
            self.check_columns(n_columns)

    def _rebuild_cached_fields(self) -> None:
        self.stack_sq = self.stack ** 2
        self.stack_T = np().swapaxes(self.stack, -1, -2)
        self.stack_sq_T = np().swapaxes(self.stack_sq, -1, -2)

    @property
    def is_common(self) -> bool:
        return self.stack.shape[0] == 1

    @property
    def n_stack(self) -> int:
        return self.stack.shape[0]

    @property
    def input_size(self) -> int:
        return self.stack.shape[2]

    @property
    def output_size(self) -> int:
        return self.stack.shape[1]

    @property
    def undersampling_ratio(self) -> float:
        """M / N."""
        return self.output_size / self.input_size

    def check_columns(self, n_columns: int) -> None:
        if not self.is_common and self.n_stack != n_columns:
            raise ConfigurationError(
                "matrix", f"{self.n_stack} per-column matrices given for {n_columns} measurement vectors"
            )

    @staticmethod
    def _apply(stack, x):
        # (S, M, N) @ (T, N, 1) -> (T, M, 1), S broadcasts against T
        out = stack @ x.T[:, :, None]
        return out[:, :, 0].T

    def forward(self, x):
        return self._apply(self.stack, x)

    def adjoint(self, s):
        return self._apply(self.stack_T, s)

    def forward_squared(self, v):
        return self._apply(self.stack_sq, v)

    def adjoint_squared(self, s):
        return self._apply(self.stack_sq_T, s)

    def __repr__(self) -> str:
        kind = "common" if self.is_common else f"per-column x{self.n_stack}"
        return f"MeasurementOperator(M={self.output_size}, N={self.input_size}, {kind})"
