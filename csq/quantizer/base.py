from typing import Tuple

from ..core.backend import np
from ..core.errors import ConfigurationError


class Quantizer:
    """
    Scalar quantizer defined by decision boundaries and reconstruction levels.

    A quantizer with Q levels has Q - 1 strictly increasing boundaries
    b_1 < ... < b_{Q-1} and partitions the real line into the bins

        (-inf, b_1), [b_1, b_2), ..., [b_{Q-1}, +inf)

    Bin q carries the reconstruction level l_q, which must lie inside the bin.
    Level indices are zero-based.

    The object is an immutable value: both RBP and state evolution only read
    it, so one instance can be shared by any number of concurrent runs.

    Args:
        boundaries: Sequence of Q - 1 finite, strictly increasing decision boundaries.
        levels: Sequence of Q finite reconstruction levels.

    Raises:
        ConfigurationError: If boundaries are not strictly increasing, the
            number of levels is not len(boundaries) + 1, or a level falls
            outside its bin.
    """

    is_pass_through = False

    def __init__(self, boundaries, levels):
        b = np().asarray(boundaries, dtype=np().float64).reshape(-1)
        lv = np().asarray(levels, dtype=np().float64).reshape(-1)

        if b.size == 0:
            raise ConfigurationError(
                "boundaries", "at least one boundary is required; use PassThroughQuantizer for unquantized data"
            )
        if not np().all(np().isfinite(b)):
            raise ConfigurationError("boundaries", "boundaries must be finite")
        if b.size > 1 and not np().all(np().diff(b) > 0):
            raise ConfigurationError("boundaries", f"must be strictly increasing, got {b.tolist()}")
        if lv.size != b.size + 1:
            raise ConfigurationError(
                "levels", f"expected {b.size + 1} reconstruction levels for {b.size} boundaries, got {lv.size}"
            )
        if not np().all(np().isfinite(lv)):
            raise ConfigurationError("levels", "reconstruction levels must be finite")

        edges = np().concatenate([np().asarray([-np().inf]), b, np().asarray([np().inf])])
        inside = (lv >= edges[:-1]) & (lv < edges[1:])
        if not np().all(inside):
            bad = int(np().argmin(inside))
            raise ConfigurationError(
                "levels",
                f"level {bad} ({float(lv[bad])}) lies outside its bin "
                f"[{float(edges[bad])}, {float(edges[bad + 1])})",
            )

        self._boundaries = b
        self._levels = lv
        self._edges = edges

    @classmethod
    def from_levels(cls, levels) -> "Quantizer":
        """
        Nearest-neighbour quantizer for a table of reconstruction levels.

        Boundaries are placed at the midpoints between consecutive levels,
        which is the decision rule of a Lloyd-Max design.
        """
        lv = np().asarray(levels, dtype=np().float64).reshape(-1)
        if lv.size < 2:
            raise ConfigurationError("levels", "at least two reconstruction levels are required")
        if not np().all(np().diff(lv) > 0):
            raise ConfigurationError("levels", f"must be strictly increasing, got {lv.tolist()}")
        return cls(0.5 * (lv[:-1] + lv[1:]), lv)

    @property
    def boundaries(self):
        return self._boundaries.copy()

    @property
    def levels(self):
        return self._levels.copy()

    @property
    def n_levels(self) -> int:
        return int(self._levels.size)

    @property
    def bits(self) -> float:
        return float(np().log2(self.n_levels))

    def quantize(self, value):
        """
        Map real values to zero-based level indices.

        A value equal to a boundary b_q falls in the bin that starts at b_q.
        Scalars give a Python int; arrays give an integer array of the same shape.

        Raises:
            ValueError: If any value is NaN or infinite.
        """
        arr = np().asarray(value, dtype=np().float64)
        if not np().all(np().isfinite(arr)):
            raise ValueError("Quantizer input must be finite.")
        idx = np().searchsorted(self._boundaries, arr, side="right")
        if arr.ndim == 0:
            return int(idx)
        return idx.astype(np().int64)

    def _check_indices(self, indices):
        idx = np().asarray(indices)
        if not np().issubdtype(idx.dtype, np().integer):
            if not np().all(idx == np().round(idx)):
                raise ValueError("Quantizer level indices must be integers.")
            idx = idx.astype(np().int64)
        if np().any(idx < 0) or np().any(idx >= self.n_levels):
            raise ValueError(f"Level index out of range [0, {self.n_levels - 1}].")
        return idx

    def level_info(self, index: int) -> Tuple[float, float, float]:
        """Return `(lower_bound, upper_bound, reconstruction_point)` of one level."""
        idx = int(self._check_indices(index))
        return (
            float(self._edges[idx]),
            float(self._edges[idx + 1]),
            float(self._levels[idx]),
        )

    def bin_edges(self, indices):
        """Vectorized lower and upper bin edges for an array of level indices."""
        idx = self._check_indices(indices)
        return self._edges[idx], self._edges[idx + 1]

    def reconstruct(self, indices):
        """Reconstruction points for an array of level indices."""
        return self._levels[self._check_indices(indices)]

    def __call__(self, value):
        return self.quantize(value)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Quantizer):
            return NotImplemented
        return (
            self._levels.shape == other._levels.shape
            and bool(np().all(self._boundaries == other._boundaries))
            and bool(np().all(self._levels == other._levels))
        )

    def __hash__(self):
        return hash((tuple(self._boundaries.tolist()), tuple(self._levels.tolist())))

    def __repr__(self) -> str:
        return f"Quantizer(n_levels={self.n_levels}, range=[{float(self._levels[0]):.4g}, {float(self._levels[-1]):.4g}])"


class PassThroughQuantizer:
    """
    Identity "quantizer" for unquantized measurements.

    Each measurement is its own bin of zero width: `quantize` is the identity
    and the bin edges of a value are the value itself. Observation models
    treat data quantized this way as plain additive Gaussian measurements.
    """

    is_pass_through = True
    n_levels = None
    bits = float("inf")

    def quantize(self, value):
        return np().asarray(value, dtype=np().float64)

    def level_info(self, value) -> Tuple[float, float, float]:
        v = float(value)
        return v, v, v

    def bin_edges(self, values):
        v = np().asarray(values, dtype=np().float64)
        return v, v

    def reconstruct(self, values):
        return np().asarray(values, dtype=np().float64)

    def __call__(self, value):
        return self.quantize(value)

    def __eq__(self, other) -> bool:
        return isinstance(other, PassThroughQuantizer)

    def __hash__(self):
        return hash(PassThroughQuantizer)

    def __repr__(self) -> str:
        return "PassThroughQuantizer()"
