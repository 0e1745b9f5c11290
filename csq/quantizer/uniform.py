from ..core.backend import np
from ..core.errors import ConfigurationError
from .base import Quantizer


def uniform_quantizer(bits: int, variance: float = 1.0, loading: float = 4.0) -> Quantizer:
    """
    Mid-rise uniform quantizer with 2**bits levels.

    The granular range [-L, L] with L = loading * sqrt(variance) is split into
    2**bits cells of width Δ = 2L / 2**bits. Reconstruction levels sit at the
    cell centres; the two outer cells extend to ±inf (overload regions).

    Args:
        bits: Bit depth, >= 1.
        variance: Reference variance of the signal being quantized (> 0).
        loading: Loading factor, the granular half-range in standard deviations.
    """
    if isinstance(bits, bool) or int(bits) != bits or bits < 1:
        raise ConfigurationError("bits", f"must be a positive integer, got {bits!r}")
    if not variance > 0:
        raise ConfigurationError("variance", f"must be positive, got {variance}")
    if not loading > 0:
        raise ConfigurationError("loading", f"must be positive, got {loading}")

    n_levels = 2 ** int(bits)
    half_range = loading * float(np().sqrt(variance))
    step = 2.0 * half_range / n_levels
    k = np().arange(n_levels, dtype=np().float64)
    levels = -half_range + (k + 0.5) * step
    boundaries = -half_range + k[1:] * step
    return Quantizer(boundaries, levels)
